"""Persistence of field mappings, form dispatch options and credentials.

Mappings are keyed by (form, integration, object type) so switching a
form's object type never carries entries across. Saving validates every
entry against the current schema first and writes nothing if any entry
is rejected. Credentials are global per integration and are read through
an injected ``CredentialsProvider``.
"""

from __future__ import annotations

import abc
import enum
import logging

from formbridge.core.config import Settings
from formbridge.integrations.errors import ValidationFailed
from formbridge.integrations.field_mapping import validate_mapping
from formbridge.integrations.storage import GLOBAL_OWNER, KeyValueBackend, make_key
from formbridge.integrations.types import (
    DispatchOptions,
    FieldMapping,
    IntegrationCredentials,
    RemoteProperty,
)

logger = logging.getLogger(__name__)


# -- Credential Provider ---


class CredentialSource(enum.StrEnum):
    """Supported credential sources."""

    STORE = "store"
    ENV = "env"


class CredentialsProvider(abc.ABC):
    """Source of account-level credentials for each integration."""

    @abc.abstractmethod
    async def get(self, integration_id: str) -> IntegrationCredentials | None:
        """Return the credentials for an integration, or None if none are set."""
        ...

    @abc.abstractmethod
    async def save(self, credentials: IntegrationCredentials) -> None:
        """Persist credentials for ``credentials.integration_id``."""
        ...


class StoredCredentialsProvider(CredentialsProvider):
    """Credentials kept in the key-value backend, editable at runtime."""

    def __init__(self, backend: KeyValueBackend) -> None:
        self._backend = backend

    async def get(self, integration_id: str) -> IntegrationCredentials | None:
        data = await self._backend.get(make_key("credentials", GLOBAL_OWNER, integration_id))
        if not data:
            return None
        return IntegrationCredentials(integration_id, {k: str(v) for k, v in data.items()})

    async def save(self, credentials: IntegrationCredentials) -> None:
        await self._backend.set(
            make_key("credentials", GLOBAL_OWNER, credentials.integration_id),
            {k: v.strip() for k, v in credentials.values.items()},
        )
        logger.info("Saved credentials for %s", credentials.integration_id)


class EnvCredentialsProvider(CredentialsProvider):
    """Credentials read from application settings (environment or .env)."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def get(self, integration_id: str) -> IntegrationCredentials | None:
        s = self._settings
        if integration_id == "hubspot":
            values = {
                "access_token": s.hubspot_access_token.get_secret_value(),
                "portal_id": s.hubspot_portal_id,
            }
        elif integration_id == "mailchimp":
            values = {
                "api_key": s.mailchimp_api_key.get_secret_value(),
                "audience_id": s.mailchimp_audience_id,
            }
        else:
            return None
        credentials = IntegrationCredentials(integration_id, values)
        return None if credentials.is_empty else credentials

    async def save(self, credentials: IntegrationCredentials) -> None:
        raise ValidationFailed(
            "Credentials are read from the environment and cannot be changed at runtime",
            remediation_hint="Set CREDENTIALS_SOURCE=store to manage credentials through the API",
        )


def create_credentials_provider(settings: Settings, backend: KeyValueBackend) -> CredentialsProvider:
    """Build the provider selected by ``settings.credentials_source``."""
    if CredentialSource(settings.credentials_source) == CredentialSource.ENV:
        return EnvCredentialsProvider(settings)
    return StoredCredentialsProvider(backend)


# -- Mapping Store ---


class FieldMappingStore:
    """Persists mappings and per-form dispatch options.

    Args:
        backend: Key-value store for mappings and options.
        credentials: Provider of account-level credentials.
    """

    def __init__(self, backend: KeyValueBackend, credentials: CredentialsProvider) -> None:
        self._backend = backend
        self._credentials = credentials

    async def get(self, form_id: str, integration_id: str, object_type: str) -> FieldMapping:
        """Return the saved mapping, or an empty one if nothing was saved."""
        data = await self._backend.get(make_key("mapping", form_id, integration_id, object_type))
        if not data:
            return FieldMapping(form_id, integration_id, object_type)
        mapping = FieldMapping.from_dict(data)
        return FieldMapping(form_id, integration_id, object_type, mapping.entries)

    async def save(self, mapping: FieldMapping, properties: list[RemoteProperty]) -> None:
        """Validate and persist a mapping.

        Args:
            mapping: The full mapping to store.
            properties: Current schema of ``mapping.object_type``.

        Raises:
            ValidationFailed: If any entry targets an unknown or read-only
                property. Nothing is written in that case.
        """
        errors = validate_mapping(mapping.entries, properties)
        if errors:
            logger.warning(
                "Rejected mapping for form %s (%s/%s): %s",
                mapping.form_id, mapping.integration_id, mapping.object_type, "; ".join(errors),
            )
            raise ValidationFailed("Mapping rejected", errors=errors)

        await self._backend.set(
            make_key("mapping", mapping.form_id, mapping.integration_id, mapping.object_type),
            mapping.to_dict(),
        )
        logger.info(
            "Saved %d mapping entries for form %s (%s/%s)",
            len(mapping), mapping.form_id, mapping.integration_id, mapping.object_type,
        )

    async def clear(self, form_id: str, integration_id: str, object_type: str | None = None) -> None:
        """Delete a saved mapping. Without ``object_type`` every object type is cleared."""
        if object_type:
            await self._backend.delete(make_key("mapping", form_id, integration_id, object_type))
            return
        key = make_key("mapping", form_id, integration_id)
        await self._backend.delete(key)
        await self._backend.delete_prefix(f"{key}:")

    async def get_options(self, form_id: str, integration_id: str) -> DispatchOptions:
        """Return the form's dispatch options, disabled by default."""
        data = await self._backend.get(make_key("options", form_id, integration_id))
        if not data:
            return DispatchOptions()
        return DispatchOptions.from_dict(data)

    async def save_options(self, form_id: str, integration_id: str, options: DispatchOptions) -> None:
        await self._backend.set(make_key("options", form_id, integration_id), options.to_dict())
        logger.info("Saved %s options for form %s (enabled=%s)", integration_id, form_id, options.enabled)

    async def get_credentials(self, integration_id: str) -> IntegrationCredentials | None:
        return await self._credentials.get(integration_id)

    async def save_credentials(self, credentials: IntegrationCredentials) -> None:
        await self._credentials.save(credentials)
