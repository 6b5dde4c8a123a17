"""Form integration service.

Wires the mapping store, schema cache, reconciler and dispatcher
together for the two things the host application needs: the mapping
surface shown while editing a form's integration settings, and the
``submissionReceived`` handler that dispatches a submission to every
integration enabled on the form.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx
from redis.exceptions import RedisError

from formbridge.core.config import Settings
from formbridge.integrations.base import AdapterRegistry, IntegrationAdapter
from formbridge.integrations.connection import ConnectionTester
from formbridge.integrations.dispatch_log import DispatchLogStore
from formbridge.integrations.dispatcher import SubmissionDispatcher
from formbridge.integrations.errors import NotFound, ValidationFailed
from formbridge.integrations.field_mapping import apply_edits, describe_mapping, fallback_entries
from formbridge.integrations.mapping_store import FieldMappingStore, create_credentials_provider
from formbridge.integrations.reconciler import MappingReconciler, find_orphans
from formbridge.integrations.schema_cache import RemoteSchemaCache
from formbridge.integrations.schema_drift import SchemaDriftDetector, SchemaDriftReport
from formbridge.integrations.storage import KeyValueBackend
from formbridge.integrations.types import (
    ConnectionInfo,
    DealPipeline,
    DispatchOptions,
    DispatchResult,
    FieldMapping,
    FormField,
    IntegrationCredentials,
    MappingEdit,
    RemoteObjectType,
    RemoteProperty,
    RemoteWorkflow,
    SubmissionRecord,
)

logger = logging.getLogger(__name__)


@dataclass
class MappingSurface:
    """Everything the settings screen needs to render a form's mapping."""

    mapping: FieldMapping
    properties: list[RemoteProperty] = field(default_factory=list)
    orphans: list[str] = field(default_factory=list)
    duplicates: dict[str, list[str]] = field(default_factory=dict)
    drift: SchemaDriftReport | None = None
    auto_mapped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "mapping": self.mapping.to_dict(),
            "rows": describe_mapping(self.mapping, self.properties),
            "properties": [p.to_dict() for p in self.properties],
            "orphans": list(self.orphans),
            "duplicates": dict(self.duplicates),
            "drift": self.drift.to_dict() if self.drift else None,
            "auto_mapped": self.auto_mapped,
        }


class FormIntegrationService:
    """Facade over the mapping and dispatch engine."""

    def __init__(
        self,
        adapters: Mapping[str, IntegrationAdapter],
        store: FieldMappingStore,
        schema_cache: RemoteSchemaCache,
        dispatcher: SubmissionDispatcher,
        *,
        reconciler: MappingReconciler | None = None,
        connection_tester: ConnectionTester | None = None,
        dispatch_log: DispatchLogStore | None = None,
        drift_detector: SchemaDriftDetector | None = None,
    ) -> None:
        self._adapters = adapters
        self._store = store
        self._cache = schema_cache
        self._dispatcher = dispatcher
        self._tester = connection_tester or ConnectionTester(adapters)
        self._reconciler = reconciler or MappingReconciler()
        self._log = dispatch_log
        self._detector = drift_detector or SchemaDriftDetector()

    @property
    def integration_ids(self) -> list[str]:
        return list(self._adapters)

    def adapter(self, integration_id: str) -> IntegrationAdapter:
        adapter = self._adapters.get(integration_id)
        if adapter is None:
            raise NotFound(f"Unknown integration: {integration_id}")
        return adapter

    async def credentials_for(self, integration_id: str) -> IntegrationCredentials:
        """Return stored credentials, or an empty set when none are stored."""
        self.adapter(integration_id)
        credentials = await self._store.get_credentials(integration_id)
        return credentials or IntegrationCredentials(integration_id, {})

    async def save_credentials(self, credentials: IntegrationCredentials) -> IntegrationCredentials:
        """Persist credentials and drop schemas cached for the previous account."""
        adapter = self.adapter(credentials.integration_id)
        if adapter.is_configured(credentials):
            adapter.validate_credentials(credentials)
        previous = await self._store.get_credentials(credentials.integration_id)
        await self._store.save_credentials(credentials)
        if previous is not None and previous.values != credentials.values:
            await self._cache.invalidate(previous)
        return credentials

    async def test_connection(
        self, integration_id: str, credentials: IntegrationCredentials | None = None
    ) -> ConnectionInfo:
        """Test supplied credentials, or the stored ones when none are supplied."""
        if credentials is None:
            credentials = await self.credentials_for(integration_id)
        return await self._tester.test(credentials)

    async def list_object_types(self, integration_id: str, *, refresh: bool = False) -> list[RemoteObjectType]:
        credentials = await self.credentials_for(integration_id)
        return await self._cache.fetch_object_types(credentials, refresh=refresh)

    async def fetch_properties(
        self, integration_id: str, object_type: str, *, refresh: bool = False
    ) -> list[RemoteProperty]:
        credentials = await self.credentials_for(integration_id)
        return await self._cache.fetch_properties(credentials, object_type, refresh=refresh)

    async def list_pipelines(self, integration_id: str) -> list[DealPipeline]:
        """List deal pipelines and stages to choose ``deal_pipeline`` and ``deal_stage`` from."""
        adapter = self.adapter(integration_id)
        credentials = self._tester.ensure_configured(integration_id, await self.credentials_for(integration_id))
        return await adapter.list_pipelines(credentials)

    async def list_workflows(self, integration_id: str) -> list[RemoteWorkflow]:
        """List workflows to choose ``workflow_id`` from."""
        adapter = self.adapter(integration_id)
        credentials = self._tester.ensure_configured(integration_id, await self.credentials_for(integration_id))
        return await adapter.list_workflows(credentials)

    async def get_options(self, form_id: str, integration_id: str) -> DispatchOptions:
        self.adapter(integration_id)
        return await self._store.get_options(form_id, integration_id)

    async def save_options(self, form_id: str, integration_id: str, options: DispatchOptions) -> DispatchOptions:
        self.adapter(integration_id)
        await self._store.save_options(form_id, integration_id, options)
        return options

    async def recent_dispatches(self, form_id: str, integration_id: str, limit: int = 50) -> list[dict[str, Any]]:
        self.adapter(integration_id)
        if self._log is None:
            return []
        return await self._log.recent(form_id, integration_id, limit)

    async def _resolve_target(
        self, form_id: str, integration_id: str, object_type: str | None
    ) -> tuple[IntegrationCredentials, str]:
        adapter = self.adapter(integration_id)
        credentials = await self.credentials_for(integration_id)
        if object_type is None:
            options = await self._store.get_options(form_id, integration_id)
            object_type = options.object_type
        resolved = adapter.primary_object_type(object_type, credentials)
        if not resolved:
            raise ValidationFailed(f"No {adapter.label} object type selected for form {form_id}")
        return credentials, resolved

    async def mapping_surface(
        self,
        form_id: str,
        integration_id: str,
        fields: list[FormField],
        *,
        object_type: str | None = None,
        refresh: bool = False,
    ) -> MappingSurface:
        """Load, reconcile and annotate a form's mapping for display.

        The reconciled mapping is returned, not saved: it becomes durable
        when the user saves the mapping.
        """
        credentials, resolved = await self._resolve_target(form_id, integration_id, object_type)
        properties = await self._cache.fetch_properties(credentials, resolved, refresh=refresh)
        saved = await self._store.get(form_id, integration_id, resolved)
        reconciled = self._reconciler.reconcile(fields, properties, saved)
        return MappingSurface(
            mapping=reconciled,
            properties=properties,
            orphans=find_orphans(reconciled, fields),
            duplicates=reconciled.duplicate_targets(),
            drift=self._detector.check_mapping(reconciled, fields, properties),
            auto_mapped=saved.is_empty,
        )

    async def propose_auto_map(
        self,
        form_id: str,
        integration_id: str,
        fields: list[FormField],
        *,
        object_type: str | None = None,
    ) -> MappingSurface:
        """Return an auto-mapped proposal, ignoring any saved mapping."""
        credentials, resolved = await self._resolve_target(form_id, integration_id, object_type)
        properties = await self._cache.fetch_properties(credentials, resolved)
        proposal = self._reconciler.auto_map(
            fields, properties, template=FieldMapping(form_id, integration_id, resolved)
        )
        return MappingSurface(mapping=proposal, properties=properties, auto_mapped=True)

    async def save_edits(
        self,
        form_id: str,
        integration_id: str,
        edits: list[MappingEdit],
        *,
        object_type: str | None = None,
        base: FieldMapping | None = None,
    ) -> FieldMapping:
        """Apply user edits to the saved (or supplied) mapping and persist it.

        Raises:
            ValidationFailed: If any resulting entry targets an unknown or
                read-only property. The stored mapping is left unchanged.
        """
        credentials, resolved = await self._resolve_target(form_id, integration_id, object_type)
        properties = await self._cache.fetch_properties(credentials, resolved)
        current = base if base is not None else await self._store.get(form_id, integration_id, resolved)
        current = FieldMapping(form_id, integration_id, resolved, current.entries)
        updated = apply_edits(current, edits)
        await self._store.save(updated, properties)
        return updated

    async def clear_mapping(self, form_id: str, integration_id: str, object_type: str | None = None) -> None:
        self.adapter(integration_id)
        await self._store.clear(form_id, integration_id, object_type)

    async def handle_submission(
        self,
        submission: SubmissionRecord,
        fields: list[FormField] | None = None,
    ) -> list[DispatchResult]:
        """Dispatch a submission to every integration enabled on its form.

        Args:
            submission: The completed submission.
            fields: The form's current fields. When given, saved mappings
                are reconciled against them before dispatch.

        Returns:
            One result per enabled integration.
        """
        results: list[DispatchResult] = []
        for integration_id, adapter in self._adapters.items():
            options = await self._store.get_options(submission.form_id, integration_id)
            if not options.enabled:
                continue

            credentials = await self._store.get_credentials(integration_id)
            object_type = adapter.primary_object_type(
                options.object_type, credentials or IntegrationCredentials(integration_id, {})
            )
            mapping = await self._store.get(submission.form_id, integration_id, object_type)
            if mapping.is_empty:
                mapping = mapping.with_entries(fallback_entries(integration_id, list(submission.values)))
                logger.info(
                    "Form %s has no saved %s mapping, using %d default entries",
                    submission.form_id, integration_id, len(mapping),
                )
            elif fields is not None:
                mapping = self._reconciler.reconcile(fields, [], mapping)

            result = await self._dispatcher.dispatch(submission, mapping, credentials, options)
            if self._log is not None:
                try:
                    await self._log.append(result)
                except (RedisError, OSError):
                    logger.exception(
                        "Failed to record %s dispatch for form %s", integration_id, submission.form_id
                    )
            results.append(result)

        if not results:
            logger.debug("No integrations enabled for form %s", submission.form_id)
        return results


_BASE_URL_SETTINGS = {
    "hubspot": "hubspot_base_url",
    "mailchimp": "mailchimp_base_url_template",
}


def create_service(
    settings: Settings,
    backend: KeyValueBackend,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FormIntegrationService:
    """Build the service and its collaborators from application settings.

    Args:
        settings: Application settings.
        backend: Key-value store for mappings, options, credentials and caches.
        transport: Optional httpx transport shared by all adapters.
    """
    adapters: dict[str, IntegrationAdapter] = {}
    for name, adapter_cls in AdapterRegistry.list_adapters().items():
        setting = _BASE_URL_SETTINGS.get(name)
        adapters[name] = adapter_cls(
            base_url=getattr(settings, setting) if setting else None,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    tester = ConnectionTester(adapters)
    store = FieldMappingStore(backend, create_credentials_provider(settings, backend))
    return FormIntegrationService(
        adapters,
        store,
        RemoteSchemaCache(adapters, backend, ttl_seconds=settings.schema_cache_ttl_seconds),
        SubmissionDispatcher(
            adapters,
            connection_tester=tester,
            verify_connection=settings.dispatch_verify_connection,
        ),
        connection_tester=tester,
        dispatch_log=DispatchLogStore(backend, max_entries=settings.dispatch_log_max_entries),
    )
