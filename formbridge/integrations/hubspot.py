"""HubSpot CRM adapter.

Uses the CRM v3 objects, properties and schemas endpoints, the v4
default association endpoint, the deal pipelines endpoint, and the
automation v3 workflow listing and v2 enrollment endpoints.
Authenticates with a private-app access token (Bearer).
"""

from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import quote

from formbridge.integrations.base import IntegrationAdapter
from formbridge.integrations.errors import ValidationFailed
from formbridge.integrations.types import (
    ConnectionInfo,
    DealPipeline,
    IntegrationCredentials,
    PipelineStage,
    RemoteObjectType,
    RemoteProperty,
    RemoteWorkflow,
)
from formbridge.integrations.utils import send_request

logger = logging.getLogger(__name__)

HUBSPOT_BASE_URL = "https://api.hubapi.com"

_CUSTOM_OBJECT_NAME_RE = re.compile(r"^p\d+_")
_OBJECT_TYPE_RE = re.compile(r"^[A-Za-z0-9_\-]+$")

STANDARD_OBJECT_TYPES = (
    RemoteObjectType("contacts", "Contacts"),
    RemoteObjectType("companies", "Companies"),
    RemoteObjectType("deals", "Deals"),
    RemoteObjectType("tickets", "Tickets"),
)


def _validate_object_type(object_type: str) -> str:
    """Validate an object type name before it is placed in a URL path."""
    if not _OBJECT_TYPE_RE.match(object_type):
        raise ValidationFailed(f"Invalid HubSpot object type: {object_type!r}")
    return object_type


def _is_custom_schema(schema: dict[str, Any]) -> bool:
    if schema.get("objectType") == "CUSTOM_OBJECT":
        return True
    return bool(_CUSTOM_OBJECT_NAME_RE.match(schema.get("fullyQualifiedName", "")))


def _parse_property(raw: dict[str, Any]) -> RemoteProperty:
    metadata = raw.get("modificationMetadata") or {}
    read_only = bool(metadata.get("readOnlyValue", False)) or bool(raw.get("calculated", False))
    options = tuple(str(o.get("value", "")) for o in raw.get("options") or [] if o.get("value") is not None)
    return RemoteProperty(
        name=raw["name"],
        label=raw.get("label") or raw["name"],
        data_type=raw.get("type", "string"),
        read_only=read_only,
        required=bool(raw.get("required", False)),
        options=options,
    )


def _parse_pipeline(raw: dict[str, Any]) -> DealPipeline:
    stages = sorted(
        (
            PipelineStage(str(s["id"]), s.get("label") or str(s["id"]), int(s.get("displayOrder") or 0))
            for s in raw.get("stages") or []
            if s.get("id") is not None and not s.get("archived", False)
        ),
        key=lambda s: s.display_order,
    )
    return DealPipeline(
        id=str(raw["id"]),
        label=raw.get("label") or str(raw["id"]),
        display_order=int(raw.get("displayOrder") or 0),
        stages=tuple(stages),
    )


class HubSpotAdapter(IntegrationAdapter):
    """Adapter for HubSpot CRM.

    Credentials:
        access_token: Private app access token.
        portal_id: HubSpot account (portal) id.
    """

    integration_id = "hubspot"
    label = "HubSpot"
    description = "HubSpot CRM contacts, deals, custom objects and workflows"
    default_object_type = "contacts"
    deal_object_type = "deals"
    company_object_type = "companies"
    required_credentials = ("access_token", "portal_id")
    list_separator = ";"

    @property
    def base_url(self) -> str:
        return (self._base_url or HUBSPOT_BASE_URL).rstrip("/")

    def _headers(self, credentials: IntegrationCredentials) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {credentials.get('access_token')}",
            "Content-Type": "application/json",
        }

    def standard_object_types(self) -> list[RemoteObjectType]:
        return list(STANDARD_OBJECT_TYPES)

    async def list_object_types(self, credentials: IntegrationCredentials) -> list[RemoteObjectType]:
        """Return the standard types followed by the account's custom object schemas."""
        async with self._client() as client:
            response = await send_request(
                client, "GET", f"{self.base_url}/crm/v3/schemas",
                headers=self._headers(credentials),
                context="HubSpot schemas",
            )
        custom: list[RemoteObjectType] = []
        for schema in response.json().get("results", []):
            if not _is_custom_schema(schema):
                continue
            name = schema.get("fullyQualifiedName") or schema.get("objectTypeId") or schema.get("name")
            if not name:
                continue
            labels = schema.get("labels") or {}
            custom.append(RemoteObjectType(name, labels.get("plural") or schema.get("name", name), custom=True))
        return self.standard_object_types() + custom

    async def fetch_properties(
        self, credentials: IntegrationCredentials, object_type: str
    ) -> list[RemoteProperty]:
        object_type = _validate_object_type(object_type)
        async with self._client() as client:
            response = await send_request(
                client, "GET", f"{self.base_url}/crm/v3/properties/{object_type}",
                headers=self._headers(credentials),
                context=f"HubSpot properties ({object_type})",
            )
        return [
            _parse_property(raw)
            for raw in response.json().get("results", [])
            if raw.get("name") and not raw.get("hidden", False)
        ]

    async def search_by_key(
        self, credentials: IntegrationCredentials, object_type: str, key_value: str
    ) -> str | None:
        object_type = _validate_object_type(object_type)
        body = {
            "filterGroups": [
                {"filters": [{"propertyName": self.identity_key, "operator": "EQ", "value": key_value}]}
            ],
            "properties": [self.identity_key],
            "limit": 1,
        }
        async with self._client() as client:
            response = await send_request(
                client, "POST", f"{self.base_url}/crm/v3/objects/{object_type}/search",
                headers=self._headers(credentials),
                json=body,
                context=f"HubSpot search ({object_type})",
            )
        results = response.json().get("results") or []
        if not results:
            return None
        return str(results[0]["id"])

    async def create(
        self,
        credentials: IntegrationCredentials,
        object_type: str,
        properties: dict[str, Any],
        extra: dict[str, Any] | None = None,
    ) -> str:
        object_type = _validate_object_type(object_type)
        async with self._client() as client:
            response = await send_request(
                client, "POST", f"{self.base_url}/crm/v3/objects/{object_type}",
                headers=self._headers(credentials),
                json={"properties": properties},
                context=f"HubSpot create ({object_type})",
            )
        object_id = response.json().get("id")
        if not object_id:
            raise ValidationFailed(f"HubSpot create ({object_type}): response did not include an id")
        return str(object_id)

    async def update(
        self,
        credentials: IntegrationCredentials,
        object_type: str,
        object_id: str,
        properties: dict[str, Any],
        extra: dict[str, Any] | None = None,
    ) -> str:
        object_type = _validate_object_type(object_type)
        async with self._client() as client:
            response = await send_request(
                client, "PATCH", f"{self.base_url}/crm/v3/objects/{object_type}/{quote(object_id, safe='')}",
                headers=self._headers(credentials),
                json={"properties": properties},
                context=f"HubSpot update ({object_type})",
            )
        return str(response.json().get("id") or object_id)

    async def associate(
        self,
        credentials: IntegrationCredentials,
        from_type: str,
        from_id: str,
        to_type: str,
        to_id: str,
    ) -> None:
        from_type = _validate_object_type(from_type)
        to_type = _validate_object_type(to_type)
        url = (
            f"{self.base_url}/crm/v4/objects/{from_type}/{quote(from_id, safe='')}"
            f"/associations/default/{to_type}/{quote(to_id, safe='')}"
        )
        async with self._client() as client:
            await send_request(
                client, "PUT", url,
                headers=self._headers(credentials),
                context=f"HubSpot associate ({from_type} -> {to_type})",
            )

    async def enroll(self, credentials: IntegrationCredentials, workflow_id: str, key_value: str) -> None:
        url = (
            f"{self.base_url}/automation/v2/workflows/{quote(workflow_id, safe='')}"
            f"/enrollments/contacts/{quote(key_value, safe='')}"
        )
        async with self._client() as client:
            await send_request(
                client, "POST", url,
                headers=self._headers(credentials),
                context="HubSpot workflow enrollment",
            )

    async def list_pipelines(self, credentials: IntegrationCredentials) -> list[DealPipeline]:
        """Return deal pipelines in display order, each with its active stages."""
        async with self._client() as client:
            response = await send_request(
                client, "GET", f"{self.base_url}/crm/v3/pipelines/deals",
                headers=self._headers(credentials),
                context="HubSpot deal pipelines",
            )
        pipelines = [
            _parse_pipeline(raw)
            for raw in response.json().get("results", [])
            if raw.get("id") is not None and not raw.get("archived", False)
        ]
        return sorted(pipelines, key=lambda p: p.display_order)

    async def list_workflows(self, credentials: IntegrationCredentials) -> list[RemoteWorkflow]:
        """Return enabled workflows. Disabled workflows cannot take enrollments."""
        async with self._client() as client:
            response = await send_request(
                client, "GET", f"{self.base_url}/automation/v3/workflows",
                headers=self._headers(credentials),
                context="HubSpot workflows",
            )
        data = response.json()
        workflows: list[RemoteWorkflow] = []
        for raw in data.get("workflows", data.get("results", [])):
            if raw.get("id") is None or not raw.get("enabled", False):
                continue
            workflows.append(
                RemoteWorkflow(
                    id=str(raw["id"]),
                    name=raw.get("name", ""),
                    type=raw.get("type", ""),
                    enabled=True,
                    description=raw.get("description") or "",
                )
            )
        return workflows

    async def test_connection(self, credentials: IntegrationCredentials) -> ConnectionInfo:
        async with self._client() as client:
            await send_request(
                client, "GET", f"{self.base_url}/crm/v3/objects/contacts",
                headers=self._headers(credentials),
                params={"limit": 1},
                context="HubSpot connection test",
            )
        portal_id = credentials.get("portal_id")
        logger.info("HubSpot connection verified for portal %s", portal_id)
        return ConnectionInfo(
            integration_id=self.integration_id,
            account_id=portal_id,
            account_name=f"HubSpot portal {portal_id}",
            details={"portal_id": portal_id, "api_version": "v3"},
        )
