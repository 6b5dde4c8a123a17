"""Tests for submission dispatch."""

from __future__ import annotations

from typing import Any

import pytest

from formbridge.integrations.base import IntegrationAdapter
from formbridge.integrations.dispatcher import DEFAULT_DEAL_NAME, SubmissionDispatcher
from formbridge.integrations.hubspot import HubSpotAdapter
from formbridge.integrations.mailchimp import MailchimpAdapter, subscriber_hash
from formbridge.integrations.types import (
    ConnectionInfo,
    CustomObjectConfig,
    DispatchOptions,
    FieldMapping,
    IntegrationCredentials,
    ObjectAction,
    SubmissionRecord,
)

SUBMISSION = SubmissionRecord(
    form_id="form-1",
    submission_id="sub-1",
    values={"f_email": "ada@example.com", "f_name": "Ada", "f_topics": ["billing", "api"], "f_budget": "5000"},
)
MAPPING = FieldMapping("form-1", "hubspot", "contacts", {"f_email": "email", "f_name": "firstname", "f_topics": "topics"})


class BrokenAdapter(IntegrationAdapter):
    """Adapter whose record calls fail with a programming error."""

    integration_id = "broken"
    label = "Broken"
    default_object_type = "people"
    required_credentials = ("token",)

    async def fetch_properties(self, credentials: IntegrationCredentials, object_type: str) -> list[Any]:
        return []

    async def search_by_key(self, credentials: IntegrationCredentials, object_type: str, key_value: str) -> str | None:
        raise RuntimeError("boom")

    async def create(self, credentials: IntegrationCredentials, object_type: str, properties: dict[str, Any], extra: dict[str, Any] | None = None) -> str:
        raise RuntimeError("boom")

    async def update(
        self,
        credentials: IntegrationCredentials,
        object_type: str,
        object_id: str,
        properties: dict[str, Any],
        extra: dict[str, Any] | None = None,
    ) -> str:
        raise RuntimeError("boom")

    async def test_connection(self, credentials: IntegrationCredentials) -> ConnectionInfo:
        return ConnectionInfo(self.integration_id)


@pytest.fixture
def dispatcher(remote: Any) -> SubmissionDispatcher:
    adapters = {
        "hubspot": HubSpotAdapter(transport=remote.transport),
        "mailchimp": MailchimpAdapter(transport=remote.transport),
    }
    return SubmissionDispatcher(adapters)


def _no_contact_found(remote: Any) -> None:
    remote.add("POST", "/crm/v3/objects/contacts/search", json_body={"total": 0, "results": []})
    remote.add("POST", "/crm/v3/objects/contacts", status=201, json_body={"id": "77"})


# =============================================================================
# Preconditions
# =============================================================================


class TestPreconditions:
    async def test_missing_credentials_makes_no_calls(self, dispatcher: SubmissionDispatcher, remote: Any) -> None:
        result = await dispatcher.dispatch(SUBMISSION, MAPPING, None, DispatchOptions(enabled=True))
        assert result.success is False
        assert result.error_kind == "not_configured"
        assert "not connected" in result.message
        assert result.results == []
        assert remote.calls == []

    async def test_incomplete_credentials_name_missing_keys(self, dispatcher: SubmissionDispatcher, remote: Any) -> None:
        creds = IntegrationCredentials("hubspot", {"access_token": "t"})
        result = await dispatcher.dispatch(SUBMISSION, MAPPING, creds, DispatchOptions(enabled=True))
        assert "portal_id" in result.message
        assert remote.calls == []

    async def test_disabled_integration(self, dispatcher: SubmissionDispatcher, remote: Any, hubspot_credentials: IntegrationCredentials) -> None:
        result = await dispatcher.dispatch(SUBMISSION, MAPPING, hubspot_credentials, DispatchOptions(enabled=False))
        assert result.success is False
        assert result.message == "HubSpot integration not enabled"
        assert remote.calls == []

    async def test_unknown_integration(self, dispatcher: SubmissionDispatcher, hubspot_credentials: IntegrationCredentials) -> None:
        mapping = FieldMapping("form-1", "salesforce", "Lead", {})
        result = await dispatcher.dispatch(SUBMISSION, mapping, hubspot_credentials, DispatchOptions(enabled=True))
        assert result.error_kind == "not_found"

    async def test_malformed_key_rejected_locally(self, dispatcher: SubmissionDispatcher, remote: Any) -> None:
        mapping = FieldMapping("form-1", "mailchimp", "abc123", {"f_email": "email"})
        creds = IntegrationCredentials("mailchimp", {"api_key": "not-a-key"})
        result = await dispatcher.dispatch(SUBMISSION, mapping, creds, DispatchOptions(enabled=True))
        assert result.error_kind == "validation_failed"
        assert result.message == "Invalid API key format"
        assert remote.calls == []

    async def test_connection_gate(self, remote: Any, hubspot_credentials: IntegrationCredentials) -> None:
        remote.add("GET", "/crm/v3/objects/contacts", status=401, json_body={"message": "expired"})
        dispatcher = SubmissionDispatcher({"hubspot": HubSpotAdapter(transport=remote.transport)}, verify_connection=True)

        result = await dispatcher.dispatch(SUBMISSION, MAPPING, hubspot_credentials, DispatchOptions(enabled=True))

        assert result.success is False
        assert result.error_kind == "unauthenticated"
        assert result.message.startswith("Connection check failed:")
        assert len(remote.calls) == 1


# =============================================================================
# Contact upsert
# =============================================================================


class TestContactUpsert:
    async def test_creates_when_search_finds_nothing(self, dispatcher: SubmissionDispatcher, remote: Any, hubspot_credentials: IntegrationCredentials) -> None:
        _no_contact_found(remote)
        result = await dispatcher.dispatch(SUBMISSION, MAPPING, hubspot_credentials, DispatchOptions(enabled=True))

        assert result.success is True
        assert result.message == "Data sent successfully"
        contact = result.result_for("contact")
        assert contact is not None
        assert (contact.object_id, contact.message) == ("77", "Contact created")
        assert remote.body(remote.calls[1]) == {
            "properties": {"email": "ada@example.com", "firstname": "Ada", "topics": "billing;api"}
        }

    async def test_updates_existing_contact(self, dispatcher: SubmissionDispatcher, remote: Any, hubspot_credentials: IntegrationCredentials) -> None:
        remote.add("POST", "/crm/v3/objects/contacts/search", json_body={"total": 1, "results": [{"id": "501"}]})
        remote.add("PATCH", "/crm/v3/objects/contacts/501", json_body={"id": "501"})

        result = await dispatcher.dispatch(SUBMISSION, MAPPING, hubspot_credentials, DispatchOptions(enabled=True))

        contact = result.result_for("contact")
        assert contact is not None and contact.message == "Contact updated"
        assert remote.calls_to("POST", "/crm/v3/objects/contacts") == [remote.calls[0]]

    async def test_blank_values_left_out_of_update(self, dispatcher: SubmissionDispatcher, remote: Any, hubspot_credentials: IntegrationCredentials) -> None:
        remote.add("POST", "/crm/v3/objects/contacts/search", json_body={"total": 1, "results": [{"id": "501"}]})
        remote.add("PATCH", "/crm/v3/objects/contacts/501", json_body={"id": "501"})
        submission = SubmissionRecord("form-1", {"f_email": "ada@example.com", "f_name": "  ", "f_topics": []})

        result = await dispatcher.dispatch(submission, MAPPING, hubspot_credentials, DispatchOptions(enabled=True))

        assert result.success is True
        patch = remote.calls_to("PATCH", "/crm/v3/objects/contacts/501")[0]
        assert remote.body(patch) == {"properties": {"email": "ada@example.com"}}

    async def test_missing_email_fails_without_remote_call(self, dispatcher: SubmissionDispatcher, remote: Any, hubspot_credentials: IntegrationCredentials) -> None:
        submission = SubmissionRecord("form-1", {"f_email": "  ", "f_name": "Ada"})
        result = await dispatcher.dispatch(submission, MAPPING, hubspot_credentials, DispatchOptions(enabled=True))

        assert result.success is False
        assert result.message == "contact: Email is required for contact creation"
        assert remote.calls == []

    async def test_remote_failure_reported_not_raised(self, dispatcher: SubmissionDispatcher, remote: Any, hubspot_credentials: IntegrationCredentials) -> None:
        remote.add("POST", "/crm/v3/objects/contacts/search", status=500, json_body={"message": "oops"})
        result = await dispatcher.dispatch(SUBMISSION, MAPPING, hubspot_credentials, DispatchOptions(enabled=True))

        contact = result.result_for("contact")
        assert contact is not None
        assert contact.error_kind == "remote_unavailable"
        assert result.success is False

    async def test_unexpected_exception_becomes_internal_error(self) -> None:
        dispatcher = SubmissionDispatcher({"broken": BrokenAdapter()})
        mapping = FieldMapping("form-1", "broken", "people", {"f_email": "email"})
        creds = IntegrationCredentials("broken", {"token": "t"})

        result = await dispatcher.dispatch(SUBMISSION, mapping, creds, DispatchOptions(enabled=True))

        contact = result.result_for("contact")
        assert contact is not None
        assert contact.error_kind == "internal_error"
        assert "boom" in contact.message

    async def test_mailchimp_subscribes_to_credential_audience(self, dispatcher: SubmissionDispatcher, remote: Any, mailchimp_credentials: IntegrationCredentials) -> None:
        member = subscriber_hash("ada@example.com")
        remote.add("GET", f"/3.0/lists/abc123/members/{member}", status=404, json_body={"title": "Resource Not Found"})
        remote.add("POST", "/3.0/lists/abc123/members", json_body={"id": member})
        mapping = FieldMapping("form-1", "mailchimp", "", {"f_email": "email", "f_name": "FNAME"})
        options = DispatchOptions(enabled=True, extra={"double_optin": True, "tags": ["website"]})

        result = await dispatcher.dispatch(SUBMISSION, mapping, mailchimp_credentials, options)

        assert result.success is True
        assert remote.body(remote.calls[1]) == {
            "email_address": "ada@example.com",
            "merge_fields": {"FNAME": "Ada"},
            "status": "pending",
            "tags": ["website"],
        }


# =============================================================================
# Secondary operations
# =============================================================================


class TestSecondaryOperations:
    async def test_partial_failure_still_succeeds(self, dispatcher: SubmissionDispatcher, remote: Any, hubspot_credentials: IntegrationCredentials) -> None:
        _no_contact_found(remote)
        options = DispatchOptions(enabled=True, create_deal=True)

        result = await dispatcher.dispatch(SUBMISSION, MAPPING, hubspot_credentials, options)

        assert result.success is True
        assert result.errors == ["deal: Deal pipeline and stage are required"]

    async def test_deal_created_with_defaults(self, dispatcher: SubmissionDispatcher, remote: Any, hubspot_credentials: IntegrationCredentials) -> None:
        _no_contact_found(remote)
        remote.add("POST", "/crm/v3/objects/deals", status=201, json_body={"id": "d1"})
        options = DispatchOptions(
            enabled=True,
            create_deal=True,
            deal_pipeline="default",
            deal_stage="appointmentscheduled",
            deal_field_mapping={"f_budget": "amount"},
        )

        result = await dispatcher.dispatch(SUBMISSION, MAPPING, hubspot_credentials, options)

        deal = result.result_for("deal")
        assert deal is not None and deal.success and deal.object_id == "d1"
        assert remote.body(remote.calls_to("POST", "/crm/v3/objects/deals")[0]) == {
            "properties": {
                "amount": "5000",
                "dealname": DEFAULT_DEAL_NAME,
                "pipeline": "default",
                "dealstage": "appointmentscheduled",
            }
        }

    async def test_deal_update_requires_id(self, dispatcher: SubmissionDispatcher, remote: Any, hubspot_credentials: IntegrationCredentials) -> None:
        options = DispatchOptions(enabled=True, create_or_update_contact=False, update_deal=True)
        result = await dispatcher.dispatch(SUBMISSION, MAPPING, hubspot_credentials, options)
        assert result.message == "deal: Deal ID not specified for update"
        assert remote.calls == []

    async def test_deal_update_requires_mapped_fields(self, dispatcher: SubmissionDispatcher, hubspot_credentials: IntegrationCredentials) -> None:
        options = DispatchOptions(enabled=True, create_or_update_contact=False, update_deal=True, deal_id="d1")
        result = await dispatcher.dispatch(SUBMISSION, MAPPING, hubspot_credentials, options)
        assert result.message == "deal: No deal fields mapped for update"

    async def test_deals_unsupported_by_mailchimp(self, dispatcher: SubmissionDispatcher, mailchimp_credentials: IntegrationCredentials) -> None:
        mapping = FieldMapping("form-1", "mailchimp", "abc123", {})
        options = DispatchOptions(enabled=True, create_or_update_contact=False, create_deal=True)
        result = await dispatcher.dispatch(SUBMISSION, mapping, mailchimp_credentials, options)
        assert result.message == "deal: Mailchimp does not support deals"

    async def test_custom_objects(self, dispatcher: SubmissionDispatcher, remote: Any, hubspot_credentials: IntegrationCredentials) -> None:
        remote.add("POST", "/crm/v3/objects/p123456_cars", status=201, json_body={"id": "c1"})
        options = DispatchOptions(
            enabled=True,
            create_or_update_contact=False,
            enable_custom_objects=True,
            custom_object_configs=[
                CustomObjectConfig("p123456_cars", field_mapping={"f_name": "owner"}),
                CustomObjectConfig("p123456_boats", field_mapping={"f_missing": "owner"}),
                CustomObjectConfig("p123456_bikes", ObjectAction.UPDATE, {"f_name": "owner"}),
                CustomObjectConfig("p123456_vans", field_mapping={"f_name": "owner"}, enabled=False),
            ],
        )

        result = await dispatcher.dispatch(SUBMISSION, MAPPING, hubspot_credentials, options)

        assert [r.operation for r in result.results] == ["custom_object:p123456_cars", "custom_object:p123456_bikes"]
        assert result.results[0].success is True
        assert result.results[1].message == "Object ID not specified for update of p123456_bikes"
        assert result.success is True

    async def test_workflow_enrollment(self, dispatcher: SubmissionDispatcher, remote: Any, hubspot_credentials: IntegrationCredentials) -> None:
        remote.add("POST", r"/automation/v2/workflows/42/enrollments/contacts/.+", status=204)
        options = DispatchOptions(enabled=True, create_or_update_contact=False, enroll_workflow=True, workflow_id="42")

        result = await dispatcher.dispatch(SUBMISSION, MAPPING, hubspot_credentials, options)

        workflow = result.result_for("workflow")
        assert workflow is not None and workflow.success
        assert workflow.message == "Enrolled in workflow 42"

    async def test_workflow_requires_id(self, dispatcher: SubmissionDispatcher, hubspot_credentials: IntegrationCredentials) -> None:
        options = DispatchOptions(enabled=True, create_or_update_contact=False, enroll_workflow=True)
        result = await dispatcher.dispatch(SUBMISSION, MAPPING, hubspot_credentials, options)
        assert result.message == "workflow: Workflow ID not specified"

    async def test_company_associated_after_contact(self, dispatcher: SubmissionDispatcher, remote: Any, hubspot_credentials: IntegrationCredentials) -> None:
        _no_contact_found(remote)
        remote.add("PUT", "/crm/v4/objects/contacts/77/associations/default/companies/900")
        options = DispatchOptions(enabled=True, associate_company=True, company_id="900")

        result = await dispatcher.dispatch(SUBMISSION, MAPPING, hubspot_credentials, options)

        company = result.result_for("company")
        assert company is not None and company.success and company.object_id == "900"
        assert len(remote.calls_to("PUT")) == 1

    async def test_company_skipped_without_contact(self, dispatcher: SubmissionDispatcher, remote: Any, hubspot_credentials: IntegrationCredentials) -> None:
        options = DispatchOptions(enabled=True, create_or_update_contact=False, associate_company=True, company_id="900")

        result = await dispatcher.dispatch(SUBMISSION, MAPPING, hubspot_credentials, options)

        company = result.result_for("company")
        assert company is not None
        assert company.error_kind == "skipped"
        assert remote.calls == []
