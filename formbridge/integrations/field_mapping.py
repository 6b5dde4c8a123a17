"""Field mapping helpers for form-to-CRM integrations.

Applies a saved mapping to submitted values, validates mapping targets
against a remote schema and applies user edits. Also holds the fallback
name-based mappings used when a form has never been mapped.
"""

from __future__ import annotations

import logging
from typing import Any

from formbridge.integrations.types import (
    FieldMapping,
    MappingEdit,
    RemoteProperty,
    Value,
    is_empty_value,
)

logger = logging.getLogger(__name__)


DEFAULT_MAPPINGS: dict[str, dict[str, str]] = {
    "hubspot": {
        "email": "email",
        "email_address": "email",
        "first_name": "firstname",
        "firstname": "firstname",
        "name": "firstname",
        "last_name": "lastname",
        "lastname": "lastname",
        "phone": "phone",
        "company": "company",
        "website": "website",
        "message": "message",
    },
    "mailchimp": {
        "email": "email",
        "email_address": "email",
        "first_name": "FNAME",
        "firstname": "FNAME",
        "name": "FNAME",
        "last_name": "LNAME",
        "lastname": "LNAME",
        "phone": "PHONE",
        "address": "ADDRESS",
        "birthday": "BIRTHDAY",
    },
}


def get_default_mapping(integration_id: str) -> dict[str, str]:
    """Get the name-based fallback mapping for an integration."""
    return dict(DEFAULT_MAPPINGS.get(integration_id, {}))


def fallback_entries(integration_id: str, field_keys: list[str]) -> dict[str, str]:
    """Build mapping entries for submitted keys that match a conventional name.

    Args:
        integration_id: Integration whose default names apply.
        field_keys: Submitted field ids, in form order.

    Returns:
        Entries for every key found in the default mapping.
    """
    defaults = get_default_mapping(integration_id)
    entries: dict[str, str] = {}
    for key in field_keys:
        target = defaults.get(key.strip().lower().replace("-", "_"))
        if target:
            entries[key] = target
    return entries


def apply_field_mapping(
    values: dict[str, Value],
    mapping: dict[str, str],
) -> dict[str, Value]:
    """Apply a field mapping to a submission's values.

    Empty values are omitted so that they never overwrite data already
    held by the remote record. When two fields target the same property
    the later non-empty value wins.

    Args:
        values: Submitted values keyed by form field id.
        mapping: Mapping from form field id to remote property name.

    Returns:
        Values keyed by remote property name.
    """
    result: dict[str, Value] = {}
    for field_id, target in mapping.items():
        if not target or field_id not in values:
            continue
        value = values[field_id]
        if is_empty_value(value):
            continue
        result[target] = value
    return result


def validate_mapping(
    mapping: dict[str, str],
    properties: list[RemoteProperty],
) -> list[str]:
    """Validate that every mapping target is a known, writable property.

    Args:
        mapping: Field mapping to validate.
        properties: Current schema of the target object type.

    Returns:
        List of error messages (empty if valid).
    """
    by_name = {p.name: p for p in properties}
    errors: list[str] = []
    for field_id, target in mapping.items():
        prop = by_name.get(target)
        if prop is None:
            errors.append(f"Field '{field_id}': property '{target}' not in schema")
        elif prop.read_only:
            errors.append(f"Field '{field_id}': property '{target}' is read-only")
    return errors


def apply_edits(mapping: FieldMapping, edits: list[MappingEdit]) -> FieldMapping:
    """Return a copy of ``mapping`` with user edits applied in order.

    An edit with no property clears that field's entry. Reassigning an
    existing field keeps its position so positional reconciliation still
    sees the original order.
    """
    entries = dict(mapping.entries)
    for edit in edits:
        if edit.property_name:
            entries[edit.field_id] = edit.property_name
        else:
            entries.pop(edit.field_id, None)
    return mapping.with_entries(entries)


def describe_mapping(mapping: FieldMapping, properties: list[RemoteProperty]) -> list[dict[str, Any]]:
    """Return mapping entries annotated with their property labels for display."""
    by_name = {p.name: p for p in properties}
    rows: list[dict[str, Any]] = []
    for field_id, target in mapping.entries.items():
        prop = by_name.get(target)
        rows.append(
            {
                "field_id": field_id,
                "property": target,
                "property_label": prop.label if prop else "",
                "known": prop is not None,
            }
        )
    return rows
