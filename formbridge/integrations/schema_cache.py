"""Read-through cache of remote object types and property schemas.

Schemas are fetched through the integration adapter on a miss and kept
in the key-value backend for a fixed TTL. Entries are keyed by a
fingerprint of the credentials so two accounts never share a schema.
Remote failures propagate as typed errors and are never cached.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Mapping

from formbridge.integrations.base import IntegrationAdapter
from formbridge.integrations.errors import NotConfigured, NotFound
from formbridge.integrations.schema_drift import SchemaDriftDetector, SchemaDriftReport
from formbridge.integrations.storage import KEY_PREFIX, KeyValueBackend
from formbridge.integrations.types import IntegrationCredentials, RemoteObjectType, RemoteProperty

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_TTL_SECONDS = 300


def credentials_fingerprint(credentials: IntegrationCredentials) -> str:
    """Return a short, non-reversible id for an account's credentials."""
    digest = hashlib.sha256()
    for key in sorted(credentials.values):
        digest.update(f"{key}={credentials.values[key]}\n".encode())
    return digest.hexdigest()[:16]


class RemoteSchemaCache:
    """Fetches and caches remote schemas per (account, object type).

    Args:
        adapters: Adapters keyed by integration id.
        backend: Key-value store holding cached snapshots.
        ttl_seconds: How long a snapshot is served without refetching.
        drift_detector: Compares a replaced snapshot against the new one.
    """

    def __init__(
        self,
        adapters: Mapping[str, IntegrationAdapter],
        backend: KeyValueBackend,
        *,
        ttl_seconds: int = DEFAULT_SCHEMA_TTL_SECONDS,
        drift_detector: SchemaDriftDetector | None = None,
    ) -> None:
        self._adapters = adapters
        self._backend = backend
        self._ttl = ttl_seconds
        self._detector = drift_detector or SchemaDriftDetector()
        self._last_drift: dict[tuple[str, str], SchemaDriftReport] = {}

    def _adapter(self, credentials: IntegrationCredentials) -> IntegrationAdapter:
        adapter = self._adapters.get(credentials.integration_id)
        if adapter is None:
            raise NotFound(f"Unknown integration: {credentials.integration_id}")
        if not adapter.is_configured(credentials):
            raise NotConfigured(f"{adapter.label} is not connected: missing credentials")
        return adapter

    @staticmethod
    def _properties_key(credentials: IntegrationCredentials, object_type: str) -> str:
        fingerprint = credentials_fingerprint(credentials)
        return f"{KEY_PREFIX}:schema:{credentials.integration_id}:{fingerprint}:{object_type}"

    @staticmethod
    def _types_key(credentials: IntegrationCredentials) -> str:
        fingerprint = credentials_fingerprint(credentials)
        return f"{KEY_PREFIX}:object_types:{credentials.integration_id}:{fingerprint}"

    async def fetch_object_types(
        self, credentials: IntegrationCredentials, *, refresh: bool = False
    ) -> list[RemoteObjectType]:
        """Return the object types valid for this account, standard ones first."""
        adapter = self._adapter(credentials)
        key = self._types_key(credentials)
        if not refresh:
            cached = await self._backend.get(key)
            if cached is not None:
                return [RemoteObjectType.from_dict(item) for item in cached]

        types = await adapter.list_object_types(credentials)
        await self._backend.set(key, [t.to_dict() for t in types], ttl_seconds=self._ttl)
        logger.debug("Cached %d object types for %s", len(types), credentials.integration_id)
        return types

    async def fetch_properties(
        self,
        credentials: IntegrationCredentials,
        object_type: str,
        *,
        refresh: bool = False,
    ) -> list[RemoteProperty]:
        """Return the property schema for an object type.

        Args:
            credentials: Account credentials for the integration.
            object_type: Standard or custom object type name.
            refresh: Bypass the cache and rewrite it.

        Returns:
            Properties in the order the remote system lists them.

        Raises:
            NotConfigured: If the credentials are incomplete.
            NotFound: If ``object_type`` is not valid for the account.
            IntegrationError: Any remote failure, unchanged.
        """
        adapter = self._adapter(credentials)
        key = self._properties_key(credentials, object_type)

        previous = await self._backend.get(key)
        if previous is not None and not refresh:
            return [RemoteProperty.from_dict(item) for item in previous]

        if not adapter.is_standard_object_type(object_type):
            known = await self.fetch_object_types(credentials, refresh=refresh)
            if object_type not in {t.name for t in known}:
                raise NotFound(f"{adapter.label} object type '{object_type}' does not exist")

        properties = await adapter.fetch_properties(credentials, object_type)
        await self._backend.set(key, [p.to_dict() for p in properties], ttl_seconds=self._ttl)
        logger.info(
            "Fetched %d properties for %s/%s", len(properties), credentials.integration_id, object_type
        )

        if previous is not None:
            report = self._detector.detect(
                credentials.integration_id,
                object_type,
                [RemoteProperty.from_dict(item) for item in previous],
                properties,
            )
            self._last_drift[(credentials.integration_id, object_type)] = report

        return properties

    def last_drift(self, integration_id: str, object_type: str) -> SchemaDriftReport | None:
        """Return the drift found by the most recent refresh of an object type."""
        return self._last_drift.get((integration_id, object_type))

    async def invalidate(self, credentials: IntegrationCredentials, object_type: str | None = None) -> int:
        """Drop cached schemas for an account, or for one of its object types.

        Returns:
            Number of cache entries removed.
        """
        if object_type is not None:
            key = self._properties_key(credentials, object_type)
            existed = await self._backend.get(key) is not None
            await self._backend.delete(key)
            return int(existed)

        fingerprint = credentials_fingerprint(credentials)
        removed = await self._backend.delete_prefix(
            f"{KEY_PREFIX}:schema:{credentials.integration_id}:{fingerprint}:"
        )
        removed += await self._backend.delete_prefix(self._types_key(credentials))
        logger.info("Invalidated %d schema cache entries for %s", removed, credentials.integration_id)
        return removed
