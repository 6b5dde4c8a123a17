"""Tests for schema drift detection."""

from __future__ import annotations

from formbridge.integrations.schema_drift import DriftSeverity, SchemaDriftDetector
from formbridge.integrations.types import FieldMapping, FormField, RemoteProperty


class TestSchemaDriftDetector:
    def test_no_drift(self) -> None:
        props = [RemoteProperty("email", "Email", "string")]
        report = SchemaDriftDetector().detect("hubspot", "contacts", props, list(props))
        assert report.drift_count == 0
        assert report.is_compatible

    def test_type_change_is_warning(self) -> None:
        report = SchemaDriftDetector().detect(
            "hubspot",
            "contacts",
            [RemoteProperty("age", "Age", "string")],
            [RemoteProperty("age", "Age", "number")],
        )
        event = report.events[0]
        assert (event.drift_type, event.expected, event.observed) == ("type_changed", "string", "number")
        assert event.severity == DriftSeverity.WARNING
        assert report.is_compatible

    def test_became_writable_is_info(self) -> None:
        report = SchemaDriftDetector().detect(
            "hubspot",
            "contacts",
            [RemoteProperty("score", "Score", read_only=True)],
            [RemoteProperty("score", "Score")],
        )
        assert [e.drift_type for e in report.events] == ["became_writable"]
        assert report.is_compatible

    def test_custom_removed_severity(self) -> None:
        detector = SchemaDriftDetector(removed_property_severity=DriftSeverity.WARNING)
        report = detector.detect("hubspot", "contacts", [RemoteProperty("gone", "Gone")], [])
        assert report.events[0].severity == DriftSeverity.WARNING
        assert report.is_compatible

    def test_report_to_dict(self) -> None:
        report = SchemaDriftDetector().detect("hubspot", "contacts", [RemoteProperty("gone", "Gone")], [])
        data = report.to_dict()
        assert data["is_compatible"] is False
        assert data["events"][0]["severity"] == "error"
        assert data["events"][0]["detected_at"]


class TestCheckMapping:
    def test_reports_missing_fields_and_broken_targets(self) -> None:
        mapping = FieldMapping("form-1", "hubspot", "contacts", {"a": "email", "b": "hs_object_id", "gone": "phone", "c": "fax"})
        fields = [FormField("a"), FormField("b"), FormField("c")]
        properties = [
            RemoteProperty("email", "Email"),
            RemoteProperty("phone", "Phone"),
            RemoteProperty("hs_object_id", "Record ID", read_only=True),
        ]
        report = SchemaDriftDetector().check_mapping(mapping, fields, properties)
        assert [(e.drift_type, e.name) for e in report.events] == [
            ("property_read_only", "hs_object_id"),
            ("field_missing", "gone"),
            ("property_removed", "fax"),
        ]

    def test_healthy_mapping(self) -> None:
        mapping = FieldMapping("form-1", "hubspot", "contacts", {"a": "email"})
        report = SchemaDriftDetector().check_mapping(mapping, [FormField("a")], [RemoteProperty("email", "Email")])
        assert report.events == []
