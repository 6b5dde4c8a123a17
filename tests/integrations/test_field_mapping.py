"""Tests for the field mapping helpers."""

from __future__ import annotations

from formbridge.integrations.field_mapping import (
    apply_edits,
    apply_field_mapping,
    describe_mapping,
    fallback_entries,
    get_default_mapping,
    validate_mapping,
)
from formbridge.integrations.types import FieldMapping, MappingEdit, RemoteProperty

PROPERTIES = [
    RemoteProperty("email", "Email", "string"),
    RemoteProperty("firstname", "First Name", "string"),
    RemoteProperty("hs_object_id", "Record ID", "number", read_only=True),
]


class TestDefaultMappings:
    def test_get_default_mapping_hubspot(self) -> None:
        mapping = get_default_mapping("hubspot")
        assert mapping["first_name"] == "firstname"
        assert mapping["email"] == "email"

    def test_get_default_mapping_returns_copy(self) -> None:
        mapping = get_default_mapping("hubspot")
        mapping["email"] = "changed"
        assert get_default_mapping("hubspot")["email"] == "email"

    def test_unknown_integration(self) -> None:
        assert get_default_mapping("unknown") == {}

    def test_fallback_entries_match_conventional_names(self) -> None:
        entries = fallback_entries("mailchimp", ["Email", "first-name", "field_17"])
        assert entries == {"Email": "email", "first-name": "FNAME"}


class TestApplyFieldMapping:
    def test_basic_mapping(self) -> None:
        values = {"f1": "ada@example.com", "f2": "Ada"}
        result = apply_field_mapping(values, {"f1": "email", "f2": "firstname"})
        assert result == {"email": "ada@example.com", "firstname": "Ada"}

    def test_empty_values_are_omitted(self) -> None:
        values = {"f1": "ada@example.com", "f2": "", "f3": "   ", "f4": None, "f5": []}
        mapping = {"f1": "email", "f2": "firstname", "f3": "lastname", "f4": "phone", "f5": "tags"}
        assert apply_field_mapping(values, mapping) == {"email": "ada@example.com"}

    def test_false_and_zero_are_kept(self) -> None:
        values = {"f1": False, "f2": 0}
        assert apply_field_mapping(values, {"f1": "opt_in", "f2": "employees"}) == {"opt_in": False, "employees": 0}

    def test_unmapped_fields_are_dropped(self) -> None:
        values = {"f1": "x", "other": "y"}
        assert apply_field_mapping(values, {"f1": "company"}) == {"company": "x"}

    def test_missing_submission_value_is_skipped(self) -> None:
        assert apply_field_mapping({}, {"f1": "email"}) == {}


class TestValidateMapping:
    def test_valid_mapping(self) -> None:
        assert validate_mapping({"f1": "email", "f2": "firstname"}, PROPERTIES) == []

    def test_read_only_and_unknown_targets(self) -> None:
        errors = validate_mapping({"f1": "hs_object_id", "f2": "nope", "f3": "email"}, PROPERTIES)
        assert len(errors) == 2
        assert "read-only" in errors[0]
        assert "not in schema" in errors[1]


class TestApplyEdits:
    def test_edit_keeps_position_and_clear_removes(self) -> None:
        mapping = FieldMapping("form", "hubspot", "contacts", {"a": "email", "b": "firstname", "c": "phone"})
        updated = apply_edits(
            mapping,
            [MappingEdit("a", "lastname"), MappingEdit("b", None), MappingEdit("d", "company")],
        )
        assert list(updated.entries.items()) == [("a", "lastname"), ("c", "phone"), ("d", "company")]
        assert mapping.entries["a"] == "email"

    def test_describe_mapping_flags_unknown_targets(self) -> None:
        rows = describe_mapping(FieldMapping(entries={"a": "email", "b": "gone"}), PROPERTIES)
        assert rows[0]["property_label"] == "Email"
        assert rows[1]["known"] is False
