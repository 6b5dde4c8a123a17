"""Domain types shared by the mapping and dispatch engine.

Form fields, remote properties, saved mappings, per-form dispatch options
and the results produced by a dispatch all live here so adapters, the
store and the dispatcher agree on one vocabulary.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from formbridge.integrations.errors import ValidationFailed

Value = str | int | float | bool | list[str] | None


def is_empty_value(value: Value) -> bool:
    """Return True when a submitted value carries no data.

    ``None``, blank strings and empty lists are empty. ``False`` and ``0``
    are real answers and are kept.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, list):
        return len(value) == 0
    return False


class FieldType(enum.StrEnum):
    """Form field types understood by the mapper."""

    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    NUMBER = "number"
    PHONE = "phone"
    URL = "url"
    SELECT = "select"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    FILE = "file"
    DATE = "date"
    HIDDEN = "hidden"
    SUBMIT = "submit"
    HTML = "html"
    CAPTCHA = "captcha"

    @classmethod
    def coerce(cls, raw: str | FieldType | None) -> FieldType:
        """Map an arbitrary type string onto a known type, defaulting to text."""
        if isinstance(raw, FieldType):
            return raw
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            return cls.TEXT

    @property
    def carries_data(self) -> bool:
        return self not in NON_DATA_FIELD_TYPES


NON_DATA_FIELD_TYPES = frozenset({FieldType.SUBMIT, FieldType.HTML, FieldType.CAPTCHA})


class ObjectAction(enum.StrEnum):
    """What to do with a custom object on dispatch."""

    CREATE = "create"
    UPDATE = "update"


@dataclass
class FormField:
    """A field as defined on the form. Owned by the form builder."""

    id: str
    label: str = ""
    type: FieldType = FieldType.TEXT
    required: bool = False

    def __post_init__(self) -> None:
        self.type = FieldType.coerce(self.type)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "label": self.label, "type": str(self.type), "required": self.required}


@dataclass(frozen=True)
class RemoteProperty:
    """One writable or read-only attribute on a remote object type."""

    name: str
    label: str = ""
    data_type: str = "string"
    read_only: bool = False
    required: bool = False
    options: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "label": self.label,
            "data_type": self.data_type,
            "read_only": self.read_only,
            "required": self.required,
            "options": list(self.options),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteProperty:
        return cls(
            name=data["name"],
            label=data.get("label", ""),
            data_type=data.get("data_type", "string"),
            read_only=bool(data.get("read_only", False)),
            required=bool(data.get("required", False)),
            options=tuple(data.get("options", ())),
        )


@dataclass(frozen=True)
class RemoteObjectType:
    """A record type exposed by the remote system (contacts, deals, p123_cars)."""

    name: str
    label: str = ""
    custom: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "label": self.label, "custom": self.custom}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteObjectType:
        return cls(name=data["name"], label=data.get("label", ""), custom=bool(data.get("custom", False)))


@dataclass(frozen=True)
class PipelineStage:
    id: str
    label: str = ""
    display_order: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "label": self.label, "display_order": self.display_order}


@dataclass(frozen=True)
class DealPipeline:
    """A deal pipeline and its stages, offered as choices for deal creation."""

    id: str
    label: str = ""
    display_order: int = 0
    stages: tuple[PipelineStage, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "display_order": self.display_order,
            "stages": [s.to_dict() for s in self.stages],
        }


@dataclass(frozen=True)
class RemoteWorkflow:
    """A workflow a contact can be enrolled in."""

    id: str
    name: str = ""
    type: str = ""
    enabled: bool = True
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "enabled": self.enabled,
            "description": self.description,
        }


@dataclass
class FieldMapping:
    """Saved correspondence from form field ids to remote property names.

    Entries keep insertion order: the order in which the assignments were
    saved is what lets the reconciler re-associate them after field ids
    have been regenerated.
    """

    form_id: str = ""
    integration_id: str = ""
    object_type: str = ""
    entries: dict[str, str] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def copy(self) -> FieldMapping:
        return FieldMapping(self.form_id, self.integration_id, self.object_type, dict(self.entries))

    def with_entries(self, entries: dict[str, str]) -> FieldMapping:
        return FieldMapping(self.form_id, self.integration_id, self.object_type, dict(entries))

    def duplicate_targets(self) -> dict[str, list[str]]:
        """Return remote properties targeted by more than one field."""
        by_target: dict[str, list[str]] = {}
        for field_id, target in self.entries.items():
            by_target.setdefault(target, []).append(field_id)
        return {target: ids for target, ids in by_target.items() if len(ids) > 1}

    def to_dict(self) -> dict[str, Any]:
        return {
            "form_id": self.form_id,
            "integration_id": self.integration_id,
            "object_type": self.object_type,
            "entries": [[field_id, target] for field_id, target in self.entries.items()],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldMapping:
        raw_entries = data.get("entries") or []
        if isinstance(raw_entries, dict):
            entries = {str(k): str(v) for k, v in raw_entries.items()}
        else:
            entries = {str(pair[0]): str(pair[1]) for pair in raw_entries}
        return cls(
            form_id=data.get("form_id", ""),
            integration_id=data.get("integration_id", ""),
            object_type=data.get("object_type", ""),
            entries=entries,
        )


@dataclass(frozen=True)
class MappingEdit:
    """A single user edit. ``property_name=None`` clears the field's entry."""

    field_id: str
    property_name: str | None = None


@dataclass(frozen=True)
class IntegrationCredentials:
    """Account-level credentials for one integration.

    Values are never rendered by ``repr`` so they stay out of logs.
    """

    integration_id: str
    values: dict[str, str] = field(default_factory=dict)

    def __repr__(self) -> str:
        masked = {key: "***" for key in self.values}
        return f"IntegrationCredentials(integration_id={self.integration_id!r}, values={masked})"

    def get(self, key: str, default: str = "") -> str:
        return self.values.get(key) or default

    @property
    def is_empty(self) -> bool:
        return not any((v or "").strip() for v in self.values.values())

    def masked(self) -> dict[str, str]:
        """Return values with all but the last four characters hidden."""
        out: dict[str, str] = {}
        for key, value in self.values.items():
            if not value:
                out[key] = ""
            elif len(value) <= 4:
                out[key] = "****"
            else:
                out[key] = "*" * (len(value) - 4) + value[-4:]
        return out


@dataclass
class SubmissionRecord:
    """A completed form submission."""

    form_id: str
    values: dict[str, Value] = field(default_factory=dict)
    submission_id: str | None = None
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class CustomObjectConfig:
    """Per-form instruction to write one custom object on dispatch."""

    object_name: str
    action: ObjectAction = ObjectAction.CREATE
    field_mapping: dict[str, str] = field(default_factory=dict)
    object_id: str | None = None
    enabled: bool = True

    def __post_init__(self) -> None:
        self.action = ObjectAction(self.action)

    def to_dict(self) -> dict[str, Any]:
        return {
            "object_name": self.object_name,
            "action": str(self.action),
            "field_mapping": dict(self.field_mapping),
            "object_id": self.object_id,
            "enabled": self.enabled,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CustomObjectConfig:
        return cls(
            object_name=data["object_name"],
            action=ObjectAction(data.get("action", "create")),
            field_mapping=dict(data.get("field_mapping") or {}),
            object_id=data.get("object_id"),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass
class DispatchOptions:
    """Per-form, per-integration dispatch settings.

    Attributes:
        enabled: Whether submissions of this form go to this integration.
        object_type: Primary object type for the field mapping. Empty means
            the adapter's default.
        create_or_update_contact: Upsert the primary record by identity key.
        create_deal: Create a deal from the submission.
        update_deal: Update an existing deal (``deal_id``). Exclusive with
            ``create_deal``.
        deal_field_mapping: Form field id to deal property for deal payloads.
        enable_custom_objects: Run ``custom_object_configs``.
        enroll_workflow: Enroll the contact in ``workflow_id``.
        associate_company: Associate the upserted contact with ``company_id``.
        extra: Vendor specific knobs, e.g. Mailchimp ``double_optin`` and ``tags``.
    """

    enabled: bool = False
    object_type: str = ""
    create_or_update_contact: bool = True
    create_deal: bool = False
    update_deal: bool = False
    deal_id: str | None = None
    deal_pipeline: str = ""
    deal_stage: str = ""
    deal_field_mapping: dict[str, str] = field(default_factory=dict)
    enable_custom_objects: bool = False
    custom_object_configs: list[CustomObjectConfig] = field(default_factory=list)
    enroll_workflow: bool = False
    workflow_id: str = ""
    associate_company: bool = False
    company_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.create_deal and self.update_deal:
            raise ValidationFailed(
                "create_deal and update_deal cannot both be enabled",
                errors=["create_deal and update_deal are mutually exclusive"],
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "object_type": self.object_type,
            "create_or_update_contact": self.create_or_update_contact,
            "create_deal": self.create_deal,
            "update_deal": self.update_deal,
            "deal_id": self.deal_id,
            "deal_pipeline": self.deal_pipeline,
            "deal_stage": self.deal_stage,
            "deal_field_mapping": dict(self.deal_field_mapping),
            "enable_custom_objects": self.enable_custom_objects,
            "custom_object_configs": [c.to_dict() for c in self.custom_object_configs],
            "enroll_workflow": self.enroll_workflow,
            "workflow_id": self.workflow_id,
            "associate_company": self.associate_company,
            "company_id": self.company_id,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DispatchOptions:
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        known["custom_object_configs"] = [
            c if isinstance(c, CustomObjectConfig) else CustomObjectConfig.from_dict(c)
            for c in known.get("custom_object_configs") or []
        ]
        return cls(**known)


@dataclass
class OperationResult:
    """Outcome of one remote operation within a dispatch."""

    operation: str
    success: bool
    message: str = ""
    object_id: str | None = None
    error_kind: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "success": self.success,
            "message": self.message,
            "object_id": self.object_id,
            "error_kind": self.error_kind,
        }


@dataclass
class DispatchResult:
    """Aggregate outcome of dispatching one submission to one integration.

    A dispatch succeeds when no precondition short-circuited it and at
    least one operation succeeded. Failed operations are still reported
    in ``results`` and ``message``.
    """

    integration_id: str = ""
    form_id: str = ""
    submission_id: str | None = None
    results: list[OperationResult] = field(default_factory=list)
    error: str | None = None
    error_kind: str | None = None
    dispatched_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def success(self) -> bool:
        if self.error is not None:
            return False
        return any(r.success for r in self.results)

    @property
    def failures(self) -> list[OperationResult]:
        return [r for r in self.results if not r.success]

    @property
    def errors(self) -> list[str]:
        return [f"{r.operation}: {r.message}" for r in self.failures]

    @property
    def message(self) -> str:
        if self.error is not None:
            return self.error
        if self.success:
            return "Data sent successfully"
        if not self.results:
            return "No operations were performed"
        return "; ".join(self.errors)

    def result_for(self, operation: str) -> OperationResult | None:
        for result in self.results:
            if result.operation == operation:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "integration_id": self.integration_id,
            "form_id": self.form_id,
            "submission_id": self.submission_id,
            "success": self.success,
            "message": self.message,
            "error": self.error,
            "error_kind": self.error_kind,
            "results": [r.to_dict() for r in self.results],
            "dispatched_at": self.dispatched_at,
        }


@dataclass
class ConnectionInfo:
    """Identifying details returned by a successful connection test."""

    integration_id: str
    account_id: str = ""
    account_name: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "integration_id": self.integration_id,
            "account_id": self.account_id,
            "account_name": self.account_name,
            "details": dict(self.details),
        }
