"""Integration management and dispatch routes.

Exposes credentials, connection tests, remote schemas, per-form dispatch
options, the mapping surface and the submission handler over JSON.
Typed integration errors are turned into HTTP responses by the handler
registered in ``formbridge.api.main``.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from formbridge.api.deps import get_service
from formbridge.integrations.errors import IntegrationError
from formbridge.integrations.service import FormIntegrationService
from formbridge.integrations.types import (
    CustomObjectConfig,
    DispatchOptions,
    FieldMapping,
    FormField,
    IntegrationCredentials,
    MappingEdit,
    SubmissionRecord,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/integrations", tags=["integrations"])

SubmittedValue = str | int | float | bool | list[str] | None


# -- Request/Response Schemas ------------------------------------------------


class IntegrationSummary(BaseModel):
    """Schema for a registered integration."""

    id: str
    label: str
    description: str
    required_credentials: list[str]
    configured: bool


class CredentialsPayload(BaseModel):
    """Schema for saving or testing credentials."""

    values: dict[str, str] = Field(default_factory=dict)


class CredentialsResponse(BaseModel):
    """Schema for saved credentials. Values are masked."""

    integration_id: str
    values: dict[str, str]
    configured: bool


class TestResult(BaseModel):
    """Schema for connection test results."""

    integration_id: str
    success: bool
    message: str
    error_kind: str | None = None
    info: dict[str, Any] | None = None


class FormFieldPayload(BaseModel):
    """Schema for a form field as defined by the form builder."""

    id: str = Field(..., min_length=1)
    label: str = ""
    type: str = "text"
    required: bool = False

    def to_field(self) -> FormField:
        return FormField(id=self.id, label=self.label, type=self.type, required=self.required)


class MappingRequest(BaseModel):
    """Schema for requesting the mapping surface or an auto-map proposal."""

    fields: list[FormFieldPayload]
    object_type: str | None = None
    refresh: bool = False


class MappingEditPayload(BaseModel):
    """A single mapping edit. A null property clears the field's entry."""

    field_id: str = Field(..., min_length=1)
    property_name: str | None = None


class MappingEditsRequest(BaseModel):
    """Schema for saving mapping edits."""

    edits: list[MappingEditPayload]
    object_type: str | None = None
    base_entries: dict[str, str] | None = None


class CustomObjectPayload(BaseModel):
    object_name: str = Field(..., min_length=1)
    action: str = Field(default="create", pattern="^(create|update)$")
    field_mapping: dict[str, str] = Field(default_factory=dict)
    object_id: str | None = None
    enabled: bool = True


class OptionsPayload(BaseModel):
    """Schema for a form's dispatch options."""

    enabled: bool = False
    object_type: str = ""
    create_or_update_contact: bool = True
    create_deal: bool = False
    update_deal: bool = False
    deal_id: str | None = None
    deal_pipeline: str = ""
    deal_stage: str = ""
    deal_field_mapping: dict[str, str] = Field(default_factory=dict)
    enable_custom_objects: bool = False
    custom_object_configs: list[CustomObjectPayload] = Field(default_factory=list)
    enroll_workflow: bool = False
    workflow_id: str = ""
    associate_company: bool = False
    company_id: str = ""
    extra: dict[str, Any] = Field(default_factory=dict)

    def to_options(self) -> DispatchOptions:
        data = self.model_dump()
        data["custom_object_configs"] = [CustomObjectConfig.from_dict(c) for c in data["custom_object_configs"]]
        return DispatchOptions(**data)


class SubmissionPayload(BaseModel):
    """Schema for a completed form submission."""

    values: dict[str, SubmittedValue]
    submission_id: str | None = None
    fields: list[FormFieldPayload] | None = None
    context: dict[str, Any] = Field(default_factory=dict)


class SubmissionResponse(BaseModel):
    """Schema for dispatch results of one submission."""

    form_id: str
    dispatched: int
    results: list[dict[str, Any]]


# -- Routes -------------------------------------------------------------------


@router.get("/", response_model=list[IntegrationSummary])
async def list_integrations(
    service: FormIntegrationService = Depends(get_service),
) -> list[dict[str, Any]]:
    """List registered integrations and whether each has credentials."""
    items = []
    for integration_id in service.integration_ids:
        adapter = service.adapter(integration_id)
        credentials = await service.credentials_for(integration_id)
        items.append(
            {
                "id": integration_id,
                "label": adapter.label,
                "description": adapter.description,
                "required_credentials": list(adapter.required_credentials),
                "configured": adapter.is_configured(credentials),
            }
        )
    return items


@router.put("/{integration_id}/credentials", response_model=CredentialsResponse)
async def save_credentials(
    integration_id: str,
    payload: CredentialsPayload,
    service: FormIntegrationService = Depends(get_service),
) -> dict[str, Any]:
    """Save account-level credentials for an integration."""
    credentials = await service.save_credentials(IntegrationCredentials(integration_id, payload.values))
    return {
        "integration_id": integration_id,
        "values": credentials.masked(),
        "configured": service.adapter(integration_id).is_configured(credentials),
    }


@router.post("/{integration_id}/test", response_model=TestResult)
async def test_connection(
    integration_id: str,
    payload: CredentialsPayload | None = None,
    service: FormIntegrationService = Depends(get_service),
) -> dict[str, Any]:
    """Test supplied credentials, or the stored ones when the body is empty."""
    credentials = None
    if payload is not None and payload.values:
        credentials = IntegrationCredentials(integration_id, payload.values)
    service.adapter(integration_id)
    try:
        info = await service.test_connection(integration_id, credentials)
    except IntegrationError as exc:
        return {
            "integration_id": integration_id,
            "success": False,
            "message": exc.message,
            "error_kind": exc.kind,
        }
    return {
        "integration_id": integration_id,
        "success": True,
        "message": "Connection successful",
        "info": info.to_dict(),
    }


@router.get("/{integration_id}/object-types", response_model=list[dict[str, Any]])
async def list_object_types(
    integration_id: str,
    refresh: bool = False,
    service: FormIntegrationService = Depends(get_service),
) -> list[dict[str, Any]]:
    """List the standard and custom object types of the connected account."""
    types = await service.list_object_types(integration_id, refresh=refresh)
    return [t.to_dict() for t in types]


@router.get("/{integration_id}/object-types/{object_type}/properties", response_model=list[dict[str, Any]])
async def list_properties(
    integration_id: str,
    object_type: str,
    refresh: bool = False,
    service: FormIntegrationService = Depends(get_service),
) -> list[dict[str, Any]]:
    """List the properties of one object type."""
    properties = await service.fetch_properties(integration_id, object_type, refresh=refresh)
    return [p.to_dict() for p in properties]


@router.get("/{integration_id}/pipelines", response_model=list[dict[str, Any]])
async def list_pipelines(
    integration_id: str,
    service: FormIntegrationService = Depends(get_service),
) -> list[dict[str, Any]]:
    """List deal pipelines with their stages."""
    pipelines = await service.list_pipelines(integration_id)
    return [p.to_dict() for p in pipelines]


@router.get("/{integration_id}/workflows", response_model=list[dict[str, Any]])
async def list_workflows(
    integration_id: str,
    service: FormIntegrationService = Depends(get_service),
) -> list[dict[str, Any]]:
    """List workflows that accept enrollments."""
    workflows = await service.list_workflows(integration_id)
    return [w.to_dict() for w in workflows]


@router.get("/forms/{form_id}/{integration_id}/options", response_model=OptionsPayload)
async def get_options(
    form_id: str,
    integration_id: str,
    service: FormIntegrationService = Depends(get_service),
) -> dict[str, Any]:
    """Get a form's dispatch options for an integration."""
    options = await service.get_options(form_id, integration_id)
    return options.to_dict()


@router.put("/forms/{form_id}/{integration_id}/options", response_model=OptionsPayload)
async def save_options(
    form_id: str,
    integration_id: str,
    payload: OptionsPayload,
    service: FormIntegrationService = Depends(get_service),
) -> dict[str, Any]:
    """Save a form's dispatch options for an integration."""
    options = await service.save_options(form_id, integration_id, payload.to_options())
    return options.to_dict()


@router.post("/forms/{form_id}/{integration_id}/mapping/reconcile")
async def reconcile_mapping(
    form_id: str,
    integration_id: str,
    payload: MappingRequest,
    service: FormIntegrationService = Depends(get_service),
) -> dict[str, Any]:
    """Return the saved mapping reconciled against the form's current fields."""
    surface = await service.mapping_surface(
        form_id,
        integration_id,
        [f.to_field() for f in payload.fields],
        object_type=payload.object_type,
        refresh=payload.refresh,
    )
    return surface.to_dict()


@router.post("/forms/{form_id}/{integration_id}/mapping/auto")
async def auto_map(
    form_id: str,
    integration_id: str,
    payload: MappingRequest,
    service: FormIntegrationService = Depends(get_service),
) -> dict[str, Any]:
    """Propose a mapping from field labels. Nothing is saved."""
    surface = await service.propose_auto_map(
        form_id, integration_id, [f.to_field() for f in payload.fields], object_type=payload.object_type
    )
    return surface.to_dict()


@router.put("/forms/{form_id}/{integration_id}/mapping")
async def save_mapping(
    form_id: str,
    integration_id: str,
    payload: MappingEditsRequest,
    service: FormIntegrationService = Depends(get_service),
) -> dict[str, Any]:
    """Apply mapping edits and save. Rejected as a whole if any entry is invalid."""
    base = None
    if payload.base_entries is not None:
        base = FieldMapping(form_id, integration_id, payload.object_type or "", dict(payload.base_entries))
    mapping = await service.save_edits(
        form_id,
        integration_id,
        [MappingEdit(e.field_id, e.property_name) for e in payload.edits],
        object_type=payload.object_type,
        base=base,
    )
    return mapping.to_dict()


@router.delete("/forms/{form_id}/{integration_id}/mapping", status_code=status.HTTP_204_NO_CONTENT)
async def clear_mapping(
    form_id: str,
    integration_id: str,
    object_type: str | None = None,
    service: FormIntegrationService = Depends(get_service),
) -> None:
    """Delete a form's saved mapping."""
    await service.clear_mapping(form_id, integration_id, object_type)


@router.post("/forms/{form_id}/submissions", response_model=SubmissionResponse)
async def submit(
    form_id: str,
    payload: SubmissionPayload,
    service: FormIntegrationService = Depends(get_service),
) -> dict[str, Any]:
    """Dispatch a completed submission to every integration enabled on the form."""
    submission = SubmissionRecord(
        form_id=form_id,
        values=dict(payload.values),
        submission_id=payload.submission_id,
        context=payload.context,
    )
    fields = [f.to_field() for f in payload.fields] if payload.fields is not None else None
    results = await service.handle_submission(submission, fields)
    return {"form_id": form_id, "dispatched": len(results), "results": [r.to_dict() for r in results]}


@router.get("/forms/{form_id}/{integration_id}/logs", response_model=list[dict[str, Any]])
async def dispatch_logs(
    form_id: str,
    integration_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    service: FormIntegrationService = Depends(get_service),
) -> list[dict[str, Any]]:
    """Return recent dispatch results for a form, newest first."""
    return await service.recent_dispatches(form_id, integration_id, limit)
