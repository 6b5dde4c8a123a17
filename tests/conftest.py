"""Shared test fixtures for the FormBridge test suite.

Provides test settings, an in-memory storage backend, a scriptable fake
of the remote HTTP APIs, and a FastAPI test client wired to them.
"""

from __future__ import annotations

import json
import re
from collections.abc import AsyncGenerator, Callable
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from formbridge.core.config import Settings
from formbridge.integrations.storage import InMemoryBackend
from formbridge.integrations.types import IntegrationCredentials

MAILCHIMP_KEY = "0123456789abcdef0123456789abcdef-us21"


class FakeRemote:
    """Routes outgoing HTTP requests to canned responses and records them.

    Routes are matched in the order they were added against the request
    method and the full URL path. Unmatched requests get a 404.
    """

    def __init__(self) -> None:
        self.routes: list[tuple[str, re.Pattern[str], Callable[[httpx.Request], httpx.Response]]] = []
        self.calls: list[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        status: int = 200,
        json_body: Any = None,
        handler: Callable[[httpx.Request], httpx.Response] | None = None,
    ) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json=json_body if json_body is not None else {})

        self.routes.append((method.upper(), re.compile(path), handler or respond))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        for method, pattern, handler in self.routes:
            if method == request.method and pattern.fullmatch(request.url.path):
                return handler(request)
        return httpx.Response(404, json={"message": f"no route for {request.method} {request.url.path}"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def calls_to(self, method: str, path_fragment: str = "") -> list[httpx.Request]:
        return [c for c in self.calls if c.method == method.upper() and path_fragment in c.url.path]

    @staticmethod
    def body(request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings that don't connect to real services."""
    return Settings(
        app_env="testing",
        debug=False,
        storage_backend="memory",
        credentials_source="store",
        redis_url="redis://localhost:6379/1",
        cors_origins=["http://localhost:3000"],
        _env_file=None,  # type: ignore[call-arg]
    )


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def hubspot_credentials() -> IntegrationCredentials:
    return IntegrationCredentials("hubspot", {"access_token": "pat-na1-secret-token", "portal_id": "123456"})


@pytest.fixture
def mailchimp_credentials() -> IntegrationCredentials:
    return IntegrationCredentials("mailchimp", {"api_key": MAILCHIMP_KEY, "audience_id": "abc123"})


@pytest.fixture
def mock_redis_client() -> AsyncMock:
    """Create a mock Redis client."""
    client = AsyncMock()
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock()
    client.setex = AsyncMock()
    client.delete = AsyncMock(return_value=1)
    client.lpush = AsyncMock(return_value=1)
    client.ltrim = AsyncMock()
    client.lrange = AsyncMock(return_value=[])
    return client


@pytest.fixture
async def test_app(test_settings: Settings, backend: InMemoryBackend, remote: FakeRemote) -> AsyncGenerator[Any, None]:
    """Create a test FastAPI application backed by memory storage and the fake remote.

    The lifespan is skipped; instead, we manually set app.state.
    """
    from formbridge.api.main import create_app
    from formbridge.integrations.service import create_service

    app = create_app()
    app.state.redis_client = None
    app.state.integration_service = create_service(test_settings, backend, transport=remote.transport)
    yield app


@pytest.fixture
async def client(test_app: Any) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
