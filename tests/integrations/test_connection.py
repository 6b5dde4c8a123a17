"""Tests for the connection tester."""

from __future__ import annotations

from typing import Any

import pytest

from formbridge.integrations.connection import ConnectionTester
from formbridge.integrations.errors import Forbidden, NotConfigured, NotFound, ValidationFailed
from formbridge.integrations.hubspot import HubSpotAdapter
from formbridge.integrations.mailchimp import MailchimpAdapter
from formbridge.integrations.types import IntegrationCredentials


@pytest.fixture
def tester(remote: Any) -> ConnectionTester:
    return ConnectionTester(
        {
            "hubspot": HubSpotAdapter(transport=remote.transport),
            "mailchimp": MailchimpAdapter(transport=remote.transport),
        }
    )


class TestConnectionTester:
    async def test_success_returns_account_details(self, tester: ConnectionTester, remote: Any, hubspot_credentials: IntegrationCredentials) -> None:
        remote.add("GET", "/crm/v3/objects/contacts", json_body={"results": []})
        info = await tester.test(hubspot_credentials)
        assert info.integration_id == "hubspot"
        assert info.account_id == "123456"

    async def test_empty_credentials_fail_without_request(self, tester: ConnectionTester, remote: Any) -> None:
        with pytest.raises(NotConfigured, match="missing access_token, portal_id"):
            await tester.test(IntegrationCredentials("hubspot", {"access_token": "", "portal_id": ""}))
        assert remote.calls == []

    async def test_malformed_key_fails_without_request(self, tester: ConnectionTester, remote: Any) -> None:
        with pytest.raises(ValidationFailed):
            await tester.test(IntegrationCredentials("mailchimp", {"api_key": "1234"}))
        assert remote.calls == []

    async def test_remote_error_propagates(self, tester: ConnectionTester, remote: Any, hubspot_credentials: IntegrationCredentials) -> None:
        remote.add("GET", "/crm/v3/objects/contacts", status=403, json_body={"message": "missing scopes"})
        with pytest.raises(Forbidden, match="missing scopes"):
            await tester.test(hubspot_credentials)

    def test_unknown_integration(self, tester: ConnectionTester) -> None:
        with pytest.raises(NotFound):
            tester.ensure_configured("pipedrive", IntegrationCredentials("pipedrive", {"token": "t"}))

    def test_none_credentials_not_configured(self, tester: ConnectionTester) -> None:
        with pytest.raises(NotConfigured) as exc_info:
            tester.ensure_configured("mailchimp", None)
        assert exc_info.value.remediation_hint

    def test_ensure_configured_returns_credentials(self, tester: ConnectionTester, hubspot_credentials: IntegrationCredentials) -> None:
        assert tester.ensure_configured("hubspot", hubspot_credentials) is hubspot_credentials
