"""Mailchimp Marketing API adapter.

Audiences (lists) are the object types; each audience's merge fields
plus the subscriber email address are its properties. Members are
addressed by the MD5 hash of the lowercased email address.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Any

import httpx

from formbridge.integrations.base import IntegrationAdapter
from formbridge.integrations.errors import ValidationFailed
from formbridge.integrations.types import (
    ConnectionInfo,
    IntegrationCredentials,
    RemoteObjectType,
    RemoteProperty,
)
from formbridge.integrations.utils import paginate_offset, send_request

logger = logging.getLogger(__name__)

MAILCHIMP_BASE_URL_TEMPLATE = "https://{dc}.api.mailchimp.com/3.0"

_API_KEY_RE = re.compile(r"^[a-f0-9]{32}-[a-z0-9]+$")
_LIST_ID_RE = re.compile(r"^[A-Za-z0-9]+$")

EMAIL_PROPERTY = RemoteProperty(
    name="email",
    label="Email Address",
    data_type="email",
    read_only=False,
    required=True,
)


def subscriber_hash(email: str) -> str:
    """Return the member id Mailchimp derives from an email address."""
    return hashlib.md5(email.strip().lower().encode("utf-8"), usedforsecurity=False).hexdigest()


def datacenter_from_key(api_key: str) -> str:
    """Extract the datacenter suffix (``us21``) from an API key.

    Raises:
        ValidationFailed: If the key does not look like ``<32 hex>-<dc>``.
    """
    if not _API_KEY_RE.match(api_key.strip()):
        raise ValidationFailed(
            "Invalid API key format",
            errors=["api_key must look like <32 hex characters>-<datacenter>"],
            remediation_hint="Copy the full key from Mailchimp Account > Extras > API keys",
        )
    return api_key.strip().rsplit("-", 1)[1]


def _validate_list_id(list_id: str) -> str:
    if not _LIST_ID_RE.match(list_id):
        raise ValidationFailed(f"Invalid Mailchimp audience id: {list_id!r}")
    return list_id


class MailchimpAdapter(IntegrationAdapter):
    """Adapter for Mailchimp audiences.

    Credentials:
        api_key: Marketing API key including the datacenter suffix.
        audience_id: Optional default audience used when a form has none.
    """

    integration_id = "mailchimp"
    label = "Mailchimp"
    description = "Mailchimp audience subscriptions, merge fields and customer journeys"
    required_credentials = ("api_key",)
    list_separator = ", "

    def _base(self, credentials: IntegrationCredentials) -> str:
        template = self._base_url or MAILCHIMP_BASE_URL_TEMPLATE
        return template.format(dc=datacenter_from_key(credentials.get("api_key"))).rstrip("/")

    def _auth(self, credentials: IntegrationCredentials) -> httpx.BasicAuth:
        return httpx.BasicAuth("user", credentials.get("api_key").strip())

    def validate_credentials(self, credentials: IntegrationCredentials) -> None:
        datacenter_from_key(credentials.get("api_key"))

    def primary_object_type(self, object_type: str, credentials: IntegrationCredentials) -> str:
        return object_type or credentials.get("audience_id")

    def is_standard_object_type(self, object_type: str) -> bool:
        return False

    async def list_object_types(self, credentials: IntegrationCredentials) -> list[RemoteObjectType]:
        """Return every audience on the account."""
        audiences: list[RemoteObjectType] = []
        async with self._client() as client:
            async for page in paginate_offset(
                client, f"{self._base(credentials)}/lists",
                params={"fields": "lists.id,lists.name,total_items"},
                page_size=100,
                results_key="lists",
                total_key="total_items",
                limit_param="count",
                context="Mailchimp audiences",
                auth=self._auth(credentials),
            ):
                audiences.extend(
                    RemoteObjectType(item["id"], item.get("name", item["id"]), custom=True)
                    for item in page
                )
        return audiences

    async def fetch_properties(
        self, credentials: IntegrationCredentials, object_type: str
    ) -> list[RemoteProperty]:
        list_id = _validate_list_id(object_type)
        properties = [EMAIL_PROPERTY]
        async with self._client() as client:
            async for page in paginate_offset(
                client, f"{self._base(credentials)}/lists/{list_id}/merge-fields",
                page_size=100,
                results_key="merge_fields",
                total_key="total_items",
                limit_param="count",
                context=f"Mailchimp merge fields ({list_id})",
                auth=self._auth(credentials),
            ):
                for field in page:
                    choices = (field.get("options") or {}).get("choices") or []
                    properties.append(
                        RemoteProperty(
                            name=field["tag"],
                            label=field.get("name") or field["tag"],
                            data_type=field.get("type", "text"),
                            read_only=False,
                            required=bool(field.get("required", False)),
                            options=tuple(str(c) for c in choices),
                        )
                    )
        return properties

    async def search_by_key(
        self, credentials: IntegrationCredentials, object_type: str, key_value: str
    ) -> str | None:
        list_id = _validate_list_id(object_type)
        member_id = subscriber_hash(key_value)
        async with self._client() as client:
            response = await send_request(
                client, "GET", f"{self._base(credentials)}/lists/{list_id}/members/{member_id}",
                params={"fields": "id,status"},
                auth=self._auth(credentials),
                allowed_status=(404,),
                context="Mailchimp member lookup",
            )
        if response.status_code == 404:
            return None
        return str(response.json().get("id") or member_id)

    def _member_body(self, properties: dict[str, Any]) -> dict[str, Any]:
        merge_fields = {k: v for k, v in properties.items() if k != EMAIL_PROPERTY.name}
        body: dict[str, Any] = {}
        if properties.get(EMAIL_PROPERTY.name):
            body["email_address"] = properties[EMAIL_PROPERTY.name]
        if merge_fields:
            body["merge_fields"] = merge_fields
        return body

    async def create(
        self,
        credentials: IntegrationCredentials,
        object_type: str,
        properties: dict[str, Any],
        extra: dict[str, Any] | None = None,
    ) -> str:
        list_id = _validate_list_id(object_type)
        extra = extra or {}
        body = self._member_body(properties)
        if "email_address" not in body:
            raise ValidationFailed("Email is required for Mailchimp subscription")
        body["status"] = "pending" if extra.get("double_optin") else "subscribed"
        tags = [t for t in extra.get("tags") or [] if t]
        if tags:
            body["tags"] = tags
        async with self._client() as client:
            response = await send_request(
                client, "POST", f"{self._base(credentials)}/lists/{list_id}/members",
                json=body,
                auth=self._auth(credentials),
                context="Mailchimp subscribe",
            )
        return str(response.json().get("id") or subscriber_hash(body["email_address"]))

    async def update(
        self,
        credentials: IntegrationCredentials,
        object_type: str,
        object_id: str,
        properties: dict[str, Any],
        extra: dict[str, Any] | None = None,
    ) -> str:
        list_id = _validate_list_id(object_type)
        body = self._member_body(properties)
        async with self._client() as client:
            response = await send_request(
                client, "PATCH", f"{self._base(credentials)}/lists/{list_id}/members/{object_id}",
                json=body,
                auth=self._auth(credentials),
                context="Mailchimp member update",
            )
        return str(response.json().get("id") or object_id)

    async def enroll(self, credentials: IntegrationCredentials, workflow_id: str, key_value: str) -> None:
        """Trigger a customer journey step. ``workflow_id`` is ``<journey_id>:<step_id>``."""
        journey_id, _, step_id = workflow_id.partition(":")
        if not journey_id.isdigit() or not step_id.isdigit():
            raise ValidationFailed(f"Invalid Mailchimp journey step: {workflow_id!r}")
        url = f"{self._base(credentials)}/customer-journeys/journeys/{journey_id}/steps/{step_id}/actions/trigger"
        async with self._client() as client:
            await send_request(
                client, "POST", url,
                json={"email_address": key_value},
                auth=self._auth(credentials),
                context="Mailchimp journey trigger",
            )

    async def test_connection(self, credentials: IntegrationCredentials) -> ConnectionInfo:
        base = self._base(credentials)
        async with self._client() as client:
            response = await send_request(
                client, "GET", f"{base}/",
                auth=self._auth(credentials),
                context="Mailchimp connection test",
            )
        account = response.json()
        logger.info("Mailchimp connection verified for account %s", account.get("account_id", ""))
        return ConnectionInfo(
            integration_id=self.integration_id,
            account_id=str(account.get("account_id", "")),
            account_name=account.get("account_name", ""),
            details={
                "email": account.get("email", ""),
                "total_subscribers": account.get("total_subscribers", 0),
                "datacenter": datacenter_from_key(credentials.get("api_key")),
            },
        )
