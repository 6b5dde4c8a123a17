"""Tests for integration HTTP utilities."""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

from formbridge.integrations.errors import (
    NotFound,
    RemoteTimeout,
    RemoteUnavailable,
    Unauthenticated,
    ValidationFailed,
    error_for_response,
)
from formbridge.integrations.utils import paginate_offset, send_request


def _make_response(status_code: int = 200, json_data: dict | None = None) -> httpx.Response:
    """Create a mock httpx Response."""
    return httpx.Response(
        status_code=status_code,
        json=json_data or {},
        request=httpx.Request("GET", "https://example.com"),
    )


class TestSendRequest:
    """Tests for send_request utility."""

    async def test_successful_request(self) -> None:
        """Should return response on success."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.request.return_value = _make_response(200, {"ok": True})

        result = await send_request(mock_client, "GET", "https://api.example.com/test")
        assert result.status_code == 200
        mock_client.request.assert_called_once()

    async def test_server_error_not_retried(self) -> None:
        """A 500 is raised as RemoteUnavailable after a single attempt."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.request.return_value = _make_response(500, {"message": "boom"})

        with pytest.raises(RemoteUnavailable, match="boom"):
            await send_request(mock_client, "GET", "https://api.example.com/test")
        assert mock_client.request.call_count == 1

    async def test_connection_error(self) -> None:
        """Connection errors become RemoteUnavailable."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.request.side_effect = httpx.ConnectError("fail")

        with pytest.raises(RemoteUnavailable):
            await send_request(mock_client, "GET", "https://api.example.com/test")

    async def test_timeout(self) -> None:
        """Timeouts become RemoteTimeout."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.request.side_effect = httpx.ReadTimeout("slow")

        with pytest.raises(RemoteTimeout, match="Example API"):
            await send_request(mock_client, "GET", "https://api.example.com/test", context="Example API")

    async def test_allowed_status_returned(self) -> None:
        """Statuses listed in allowed_status are returned to the caller."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.request.return_value = _make_response(404)

        result = await send_request(mock_client, "GET", "https://api.example.com/test", allowed_status=(404,))
        assert result.status_code == 404

    async def test_kwargs_forwarded(self) -> None:
        """Extra keyword arguments reach client.request."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.request.return_value = _make_response(200)

        await send_request(mock_client, "POST", "https://api.example.com/x", json={"a": 1}, headers={"X": "1"})
        mock_client.request.assert_called_once_with("POST", "https://api.example.com/x", json={"a": 1}, headers={"X": "1"})


class TestErrorForResponse:
    """Tests for status code to typed error mapping."""

    @pytest.mark.parametrize(
        ("status_code", "error_cls"),
        [
            (401, Unauthenticated),
            (404, NotFound),
            (429, RemoteUnavailable),
            (502, RemoteUnavailable),
            (400, ValidationFailed),
            (409, ValidationFailed),
        ],
    )
    def test_mapping(self, status_code: int, error_cls: type) -> None:
        assert isinstance(error_for_response(_make_response(status_code)), error_cls)

    def test_remote_detail_included(self) -> None:
        error = error_for_response(_make_response(400, {"message": "Property values were not valid"}), "HubSpot create")
        assert error.message == "HubSpot create: API Error (400): Property values were not valid"
        assert isinstance(error, ValidationFailed)
        assert error.errors == ["Property values were not valid"]

    def test_status_codes_exposed(self) -> None:
        assert error_for_response(_make_response(401)).status_code == 401
        assert error_for_response(_make_response(503)).kind == "remote_unavailable"


class TestPaginateOffset:
    """Tests for paginate_offset utility."""

    async def test_single_page(self) -> None:
        """Should yield a single page when results < page_size."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.request.return_value = _make_response(200, {"results": [{"id": 1}, {"id": 2}]})

        pages = []
        async for page in paginate_offset(mock_client, "https://api.example.com/items", page_size=10, total_key=None):
            pages.append(page)

        assert len(pages) == 1
        assert len(pages[0]) == 2

    async def test_stops_at_total(self) -> None:
        """Should stop when the reported total has been fetched."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.request.side_effect = [
            _make_response(200, {"members": [{"id": 1}, {"id": 2}], "total_items": 3}),
            _make_response(200, {"members": [{"id": 3}], "total_items": 3}),
        ]

        pages = []
        async for page in paginate_offset(
            mock_client,
            "https://api.example.com/members",
            page_size=2,
            results_key="members",
            total_key="total_items",
            limit_param="count",
        ):
            pages.append(page)

        assert [len(p) for p in pages] == [2, 1]
        second_params = mock_client.request.call_args_list[1].kwargs["params"]
        assert second_params == {"offset": 2, "count": 2}

    async def test_empty_response(self) -> None:
        """Should yield nothing for an empty response."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.request.return_value = _make_response(200, {"results": []})

        pages = []
        async for page in paginate_offset(mock_client, "https://api.example.com/items"):
            pages.append(page)

        assert len(pages) == 0

    async def test_auth_forwarded(self) -> None:
        """Extra keyword arguments such as auth reach every request."""
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.request.return_value = _make_response(200, {"results": [{"id": 1}]})
        auth = httpx.BasicAuth("user", "key")

        async for _ in paginate_offset(mock_client, "https://api.example.com/items", total_key=None, auth=auth):
            pass

        assert mock_client.request.call_args.kwargs["auth"] is auth
