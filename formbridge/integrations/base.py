"""Abstract integration adapter and adapter registry.

An adapter is the thin vendor-specific layer under the generic mapping
and dispatch engine: it knows endpoints, auth and payload shapes for
one remote system (HubSpot, Mailchimp) and nothing about forms.
"""

from __future__ import annotations

import abc
import logging
from typing import Any

import httpx

from formbridge.integrations.errors import NotFound, ValidationFailed
from formbridge.integrations.types import (
    ConnectionInfo,
    DealPipeline,
    IntegrationCredentials,
    RemoteObjectType,
    RemoteProperty,
    RemoteWorkflow,
    Value,
)
from formbridge.integrations.utils import DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)


class IntegrationAdapter(abc.ABC):
    """Abstract base class for integration adapters.

    Subclasses must implement the remote calls: object type and property
    discovery, search, create, update, association, workflow enrollment
    and the connection test. Every remote failure is raised as an
    ``IntegrationError`` subclass.

    Adapters are stateless with respect to accounts: credentials are
    passed on each call because they are owned by the settings store and
    can change between calls.
    """

    integration_id: str = ""
    label: str = ""
    description: str = "Base integration adapter"
    identity_key: str = "email"
    default_object_type: str = ""
    deal_object_type: str | None = None
    company_object_type: str | None = None
    required_credentials: tuple[str, ...] = ()
    list_separator: str = ";"

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    # -- Credentials ---------------------------------------------------------

    def is_configured(self, credentials: IntegrationCredentials | None) -> bool:
        """Return True when every required credential is present. No I/O."""
        if credentials is None or credentials.is_empty:
            return False
        return all(credentials.get(key).strip() for key in self.required_credentials)

    def missing_credentials(self, credentials: IntegrationCredentials | None) -> list[str]:
        if credentials is None:
            return list(self.required_credentials)
        return [key for key in self.required_credentials if not credentials.get(key).strip()]

    def validate_credentials(self, credentials: IntegrationCredentials) -> None:  # noqa: B027
        """Check credential formats locally.

        Raises:
            ValidationFailed: If a credential is malformed.
        """

    # -- Schema discovery ----------------------------------------------------

    def standard_object_types(self) -> list[RemoteObjectType]:
        """Return the fixed object types the adapter always supports."""
        return []

    def is_standard_object_type(self, object_type: str) -> bool:
        return any(t.name == object_type for t in self.standard_object_types())

    def primary_object_type(self, object_type: str, credentials: IntegrationCredentials) -> str:
        """Resolve the object type a form's primary record is written to."""
        return object_type or self.default_object_type

    async def list_object_types(self, credentials: IntegrationCredentials) -> list[RemoteObjectType]:
        """Return standard and custom object types for the account."""
        return self.standard_object_types()

    @abc.abstractmethod
    async def fetch_properties(
        self, credentials: IntegrationCredentials, object_type: str
    ) -> list[RemoteProperty]:
        """Fetch the property schema of one object type.

        Returns:
            Properties in the order the remote system lists them.
        """
        ...

    # -- Record operations ---------------------------------------------------

    @abc.abstractmethod
    async def search_by_key(
        self, credentials: IntegrationCredentials, object_type: str, key_value: str
    ) -> str | None:
        """Find a record by identity key.

        Returns:
            The record id, or None if no record matches.
        """
        ...

    @abc.abstractmethod
    async def create(
        self,
        credentials: IntegrationCredentials,
        object_type: str,
        properties: dict[str, Any],
        extra: dict[str, Any] | None = None,
    ) -> str:
        """Create a record and return its id."""
        ...

    @abc.abstractmethod
    async def update(
        self,
        credentials: IntegrationCredentials,
        object_type: str,
        object_id: str,
        properties: dict[str, Any],
        extra: dict[str, Any] | None = None,
    ) -> str:
        """Apply a partial update to a record and return its id."""
        ...

    async def associate(
        self,
        credentials: IntegrationCredentials,
        from_type: str,
        from_id: str,
        to_type: str,
        to_id: str,
    ) -> None:
        """Associate two records."""
        raise ValidationFailed(f"{self.label} does not support record associations")

    async def enroll(self, credentials: IntegrationCredentials, workflow_id: str, key_value: str) -> None:
        """Enroll a record, identified by its key, in a workflow."""
        raise ValidationFailed(f"{self.label} does not support workflow enrollment")

    async def list_pipelines(self, credentials: IntegrationCredentials) -> list[DealPipeline]:
        """Return the deal pipelines and their stages."""
        raise ValidationFailed(f"{self.label} does not support deals")

    async def list_workflows(self, credentials: IntegrationCredentials) -> list[RemoteWorkflow]:
        """Return the workflows a contact can be enrolled in."""
        raise ValidationFailed(f"{self.label} does not support listing workflows")

    @abc.abstractmethod
    async def test_connection(self, credentials: IntegrationCredentials) -> ConnectionInfo:
        """Perform one lightweight authenticated read.

        Raises:
            IntegrationError: Typed failure describing why the test failed.
        """
        ...

    # -- Value serialization -------------------------------------------------

    def serialize_value(self, value: Value) -> Any:
        """Convert a submitted value into the remote wire representation."""
        if isinstance(value, list):
            return self.list_separator.join(str(v) for v in value)
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, str):
            return value.strip()
        return str(value)

    def serialize_properties(self, mapped: dict[str, Value]) -> dict[str, Any]:
        return {name: self.serialize_value(value) for name, value in mapped.items()}


class AdapterRegistry:
    """Registry of available integration adapters."""

    _adapters: dict[str, type[IntegrationAdapter]] = {}
    _builtins_loaded = False

    @classmethod
    def _ensure_builtins(cls) -> None:
        if not cls._builtins_loaded:
            cls._builtins_loaded = True
            _register_builtin_adapters()

    @classmethod
    def register(cls, name: str, adapter_cls: type[IntegrationAdapter]) -> None:
        """Register an adapter type."""
        cls._adapters[name] = adapter_cls

    @classmethod
    def get(cls, name: str) -> type[IntegrationAdapter] | None:
        """Get an adapter class by name."""
        cls._ensure_builtins()
        return cls._adapters.get(name)

    @classmethod
    def create(cls, name: str, **kwargs: Any) -> IntegrationAdapter:
        """Instantiate a registered adapter.

        Raises:
            NotFound: If no adapter is registered under ``name``.
        """
        adapter_cls = cls.get(name)
        if adapter_cls is None:
            raise NotFound(f"Unknown integration: {name}")
        return adapter_cls(**kwargs)

    @classmethod
    def list_adapters(cls) -> dict[str, type[IntegrationAdapter]]:
        """List all registered adapters."""
        cls._ensure_builtins()
        return dict(cls._adapters)


def _register_builtin_adapters() -> None:
    """Register built-in adapters."""
    from formbridge.integrations.hubspot import HubSpotAdapter
    from formbridge.integrations.mailchimp import MailchimpAdapter

    AdapterRegistry.register("hubspot", HubSpotAdapter)
    AdapterRegistry.register("mailchimp", MailchimpAdapter)
