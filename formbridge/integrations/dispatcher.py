"""Submission dispatch to a remote integration.

Takes one form submission through a field mapping and performs the
remote operations the form is configured for: a contact upsert first,
then deal, custom object, workflow and company operations concurrently.
Each operation succeeds or fails on its own; a dispatch counts as
successful when any operation succeeds, and every failure is logged and
reported in the result.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Mapping
from typing import Any

from formbridge.integrations.base import IntegrationAdapter
from formbridge.integrations.connection import ConnectionTester
from formbridge.integrations.errors import IntegrationError, ValidationFailed
from formbridge.integrations.field_mapping import apply_field_mapping
from formbridge.integrations.types import (
    CustomObjectConfig,
    DispatchOptions,
    DispatchResult,
    FieldMapping,
    IntegrationCredentials,
    ObjectAction,
    OperationResult,
    SubmissionRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_DEAL_NAME = "Form Submission Deal"
DEFAULT_DEAL_AMOUNT = "0"

# Outcome of one operation: (remote object id, human readable message)
Outcome = tuple[str | None, str]


class SubmissionDispatcher:
    """Dispatches submissions through adapters.

    Args:
        adapters: Adapters keyed by integration id.
        connection_tester: Used for the credential precondition and, when
            ``verify_connection`` is set, for a live check before dispatch.
        verify_connection: Gate every dispatch on a successful connection test.
    """

    def __init__(
        self,
        adapters: Mapping[str, IntegrationAdapter],
        *,
        connection_tester: ConnectionTester | None = None,
        verify_connection: bool = False,
    ) -> None:
        self._adapters = adapters
        self._tester = connection_tester or ConnectionTester(adapters)
        self._verify_connection = verify_connection

    async def dispatch(
        self,
        submission: SubmissionRecord,
        mapping: FieldMapping,
        credentials: IntegrationCredentials | None,
        options: DispatchOptions,
    ) -> DispatchResult:
        """Send one submission to one integration.

        Args:
            submission: The submitted values.
            mapping: Form field id to remote property mapping for the
                primary object type.
            credentials: Account credentials, None when not connected.
            options: The form's dispatch options for this integration.

        Returns:
            The aggregate result. Remote failures never raise.
        """
        integration_id = mapping.integration_id or (credentials.integration_id if credentials else "")
        result = DispatchResult(
            integration_id=integration_id,
            form_id=submission.form_id,
            submission_id=submission.submission_id,
        )

        adapter = self._adapters.get(integration_id)
        if adapter is None:
            return self._short_circuit(result, f"Unknown integration: {integration_id or '(none)'}", "not_found")

        if not options.enabled:
            return self._short_circuit(result, f"{adapter.label} integration not enabled", "not_configured")

        try:
            credentials = self._tester.ensure_configured(integration_id, credentials)
        except IntegrationError as exc:
            return self._short_circuit(result, exc.message, exc.kind)

        if self._verify_connection:
            try:
                await self._tester.test(credentials)
            except IntegrationError as exc:
                return self._short_circuit(result, f"Connection check failed: {exc.message}", exc.kind)

        object_type = adapter.primary_object_type(options.object_type or mapping.object_type, credentials)
        mapped = apply_field_mapping(submission.values, mapping.entries)
        properties = adapter.serialize_properties(mapped)
        identity = properties.get(adapter.identity_key) or None

        contact_id: str | None = None
        if options.create_or_update_contact:
            contact = await self._run(
                "contact",
                self._upsert_contact(adapter, credentials, object_type, properties, identity, options),
            )
            result.results.append(contact)
            if contact.success:
                contact_id = contact.object_id

        operations: list[tuple[str, Awaitable[Outcome]]] = []

        if options.create_deal or options.update_deal:
            operations.append(("deal", self._deal(adapter, credentials, submission, options)))

        if options.enable_custom_objects:
            for config in options.custom_object_configs:
                if not config.enabled:
                    continue
                payload = adapter.serialize_properties(apply_field_mapping(submission.values, config.field_mapping))
                if not payload:
                    logger.info(
                        "Skipping custom object %s for form %s: no mapped values",
                        config.object_name, submission.form_id,
                    )
                    continue
                operations.append(
                    (f"custom_object:{config.object_name}", self._custom_object(adapter, credentials, config, payload))
                )

        if options.enroll_workflow:
            operations.append(("workflow", self._workflow(adapter, credentials, identity, options)))

        skipped_company: OperationResult | None = None
        if options.associate_company:
            if contact_id is None:
                skipped_company = OperationResult(
                    "company", False, "skipped: no contact id", error_kind="skipped"
                )
                logger.warning(
                    "%s dispatch for form %s: company association skipped, no contact id",
                    adapter.label, submission.form_id,
                )
            else:
                operations.append(
                    ("company", self._company(adapter, credentials, object_type, contact_id, options))
                )

        if operations:
            outcomes = await asyncio.gather(*(self._run(name, op) for name, op in operations))
            result.results.extend(outcomes)
        if skipped_company is not None:
            result.results.append(skipped_company)

        logger.info(
            "%s dispatch for form %s finished: %d/%d operations succeeded",
            adapter.label, submission.form_id,
            len(result.results) - len(result.failures), len(result.results),
        )
        return result

    def _short_circuit(self, result: DispatchResult, message: str, kind: str) -> DispatchResult:
        result.error = message
        result.error_kind = kind
        logger.warning(
            "Dispatch of form %s to %s not attempted: %s", result.form_id, result.integration_id, message
        )
        return result

    async def _run(self, name: str, operation: Awaitable[Outcome]) -> OperationResult:
        """Await one operation and convert its outcome or failure into a result."""
        try:
            object_id, message = await operation
        except IntegrationError as exc:
            logger.warning("Operation %s failed (%s): %s", name, exc.kind, exc.message)
            return OperationResult(name, False, exc.message, error_kind=exc.kind)
        except Exception as exc:
            logger.exception("Operation %s failed unexpectedly", name)
            return OperationResult(name, False, f"Unexpected error: {exc}", error_kind="internal_error")
        return OperationResult(name, True, message, object_id)

    async def _upsert_contact(
        self,
        adapter: IntegrationAdapter,
        credentials: IntegrationCredentials,
        object_type: str,
        properties: dict[str, Any],
        identity: str | None,
        options: DispatchOptions,
    ) -> Outcome:
        if not object_type:
            raise ValidationFailed(f"No {adapter.label} object type selected for this form")
        if not identity:
            raise ValidationFailed("Email is required for contact creation")

        existing_id = await adapter.search_by_key(credentials, object_type, identity)
        if existing_id:
            object_id = await adapter.update(credentials, object_type, existing_id, properties, extra=options.extra)
            return object_id, "Contact updated"
        object_id = await adapter.create(credentials, object_type, properties, extra=options.extra)
        return object_id, "Contact created"

    async def _deal(
        self,
        adapter: IntegrationAdapter,
        credentials: IntegrationCredentials,
        submission: SubmissionRecord,
        options: DispatchOptions,
    ) -> Outcome:
        if adapter.deal_object_type is None:
            raise ValidationFailed(f"{adapter.label} does not support deals")
        properties = adapter.serialize_properties(apply_field_mapping(submission.values, options.deal_field_mapping))

        if options.update_deal:
            if not options.deal_id:
                raise ValidationFailed("Deal ID not specified for update")
            if not properties:
                raise ValidationFailed("No deal fields mapped for update")
            object_id = await adapter.update(credentials, adapter.deal_object_type, options.deal_id, properties)
            return object_id, "Deal updated"

        if not options.deal_pipeline or not options.deal_stage:
            raise ValidationFailed("Deal pipeline and stage are required")
        properties.setdefault("dealname", DEFAULT_DEAL_NAME)
        properties.setdefault("amount", DEFAULT_DEAL_AMOUNT)
        properties["pipeline"] = options.deal_pipeline
        properties["dealstage"] = options.deal_stage
        object_id = await adapter.create(credentials, adapter.deal_object_type, properties)
        return object_id, "Deal created"

    async def _custom_object(
        self,
        adapter: IntegrationAdapter,
        credentials: IntegrationCredentials,
        config: CustomObjectConfig,
        payload: dict[str, Any],
    ) -> Outcome:
        if config.action == ObjectAction.UPDATE:
            if not config.object_id:
                raise ValidationFailed(f"Object ID not specified for update of {config.object_name}")
            object_id = await adapter.update(credentials, config.object_name, config.object_id, payload)
            return object_id, f"{config.object_name} updated"
        object_id = await adapter.create(credentials, config.object_name, payload)
        return object_id, f"{config.object_name} created"

    async def _workflow(
        self,
        adapter: IntegrationAdapter,
        credentials: IntegrationCredentials,
        identity: str | None,
        options: DispatchOptions,
    ) -> Outcome:
        if not options.workflow_id:
            raise ValidationFailed("Workflow ID not specified")
        if not identity:
            raise ValidationFailed("Email is required for workflow enrollment")
        await adapter.enroll(credentials, options.workflow_id, identity)
        return None, f"Enrolled in workflow {options.workflow_id}"

    async def _company(
        self,
        adapter: IntegrationAdapter,
        credentials: IntegrationCredentials,
        object_type: str,
        contact_id: str,
        options: DispatchOptions,
    ) -> Outcome:
        if not options.company_id:
            raise ValidationFailed("Company ID not specified")
        await adapter.associate(
            credentials, object_type, contact_id, adapter.company_object_type or "companies", options.company_id
        )
        return options.company_id, "Contact associated with company"
