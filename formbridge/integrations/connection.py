"""Connection testing for configured integrations."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from formbridge.integrations.base import IntegrationAdapter
from formbridge.integrations.errors import IntegrationError, NotConfigured, NotFound
from formbridge.integrations.types import ConnectionInfo, IntegrationCredentials

logger = logging.getLogger(__name__)


class ConnectionTester:
    """Verifies credentials with one side-effect-free remote read.

    Args:
        adapters: Adapters keyed by integration id.
    """

    def __init__(self, adapters: Mapping[str, IntegrationAdapter]) -> None:
        self._adapters = adapters

    def _adapter(self, integration_id: str) -> IntegrationAdapter:
        adapter = self._adapters.get(integration_id)
        if adapter is None:
            raise NotFound(f"Unknown integration: {integration_id}")
        return adapter

    def ensure_configured(
        self, integration_id: str, credentials: IntegrationCredentials | None
    ) -> IntegrationCredentials:
        """Check credentials are present and well formed without any I/O.

        Returns:
            The same credentials, known to be present.

        Raises:
            NotConfigured: If required credentials are missing.
            ValidationFailed: If a credential is malformed.
        """
        adapter = self._adapter(integration_id)
        if credentials is None or not adapter.is_configured(credentials):
            missing = adapter.missing_credentials(credentials)
            raise NotConfigured(
                f"{adapter.label} integration is not connected: missing {', '.join(missing)}",
                remediation_hint=f"Enter the {adapter.label} credentials in the integration settings",
            )
        adapter.validate_credentials(credentials)
        return credentials

    async def test(self, credentials: IntegrationCredentials) -> ConnectionInfo:
        """Test the connection for a set of credentials.

        Args:
            credentials: Credentials to test. Empty values count as missing.

        Returns:
            Identifying details of the connected account.

        Raises:
            IntegrationError: Typed failure describing why the test failed.
        """
        self.ensure_configured(credentials.integration_id, credentials)
        adapter = self._adapter(credentials.integration_id)
        try:
            info = await adapter.test_connection(credentials)
        except IntegrationError as exc:
            logger.warning("%s connection test failed (%s): %s", adapter.label, exc.kind, exc)
            raise
        logger.info("%s connection test succeeded for account %s", adapter.label, info.account_id)
        return info
