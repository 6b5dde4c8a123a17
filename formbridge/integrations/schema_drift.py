"""Remote schema drift detection.

Compares two snapshots of a remote object type's properties to detect
property additions, removals, type changes and writability changes, and
checks a saved mapping against the current form and schema so the
mapping surface can warn about targets that no longer work.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from formbridge.integrations.types import FieldMapping, FormField, RemoteProperty

logger = logging.getLogger(__name__)


class DriftSeverity(StrEnum):
    """Severity level for schema drift events."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class SchemaDriftEvent:
    """A detected difference between an expected and an observed schema."""

    integration_id: str
    object_type: str
    drift_type: str  # "property_added", "property_removed", "type_changed", "became_read_only", ...
    name: str
    expected: str | None = None
    observed: str | None = None
    severity: DriftSeverity = DriftSeverity.WARNING
    detected_at: str = ""

    def __post_init__(self) -> None:
        if not self.detected_at:
            self.detected_at = datetime.now(UTC).isoformat()

    def to_dict(self) -> dict[str, Any]:
        return {
            "integration_id": self.integration_id,
            "object_type": self.object_type,
            "drift_type": self.drift_type,
            "name": self.name,
            "expected": self.expected,
            "observed": self.observed,
            "severity": self.severity.value,
            "detected_at": self.detected_at,
        }


@dataclass
class SchemaDriftReport:
    """Summary of drift for one object type."""

    integration_id: str
    object_type: str
    events: list[SchemaDriftEvent] = field(default_factory=list)
    analyzed_at: str = ""

    def __post_init__(self) -> None:
        if not self.analyzed_at:
            self.analyzed_at = datetime.now(UTC).isoformat()

    @property
    def has_breaking_changes(self) -> bool:
        return any(e.severity == DriftSeverity.ERROR for e in self.events)

    @property
    def is_compatible(self) -> bool:
        return not self.has_breaking_changes

    @property
    def drift_count(self) -> int:
        return len(self.events)

    def to_dict(self) -> dict[str, Any]:
        return {
            "integration_id": self.integration_id,
            "object_type": self.object_type,
            "events": [e.to_dict() for e in self.events],
            "analyzed_at": self.analyzed_at,
            "is_compatible": self.is_compatible,
        }


class SchemaDriftDetector:
    """Detects drift between property snapshots and between a mapping and its schema."""

    def __init__(
        self,
        *,
        removed_property_severity: DriftSeverity = DriftSeverity.ERROR,
        added_property_severity: DriftSeverity = DriftSeverity.INFO,
        type_change_severity: DriftSeverity = DriftSeverity.WARNING,
    ) -> None:
        self._removed_severity = removed_property_severity
        self._added_severity = added_property_severity
        self._type_change_severity = type_change_severity

    def detect(
        self,
        integration_id: str,
        object_type: str,
        expected: list[RemoteProperty],
        observed: list[RemoteProperty],
    ) -> SchemaDriftReport:
        """Compare two schema snapshots.

        Args:
            integration_id: Integration identifier.
            object_type: Object type both snapshots describe.
            expected: Previously known properties.
            observed: Freshly fetched properties.

        Returns:
            SchemaDriftReport with any detected drift events.
        """
        report = SchemaDriftReport(integration_id=integration_id, object_type=object_type)
        old = {p.name: p for p in expected}
        new = {p.name: p for p in observed}

        def event(drift_type: str, name: str, severity: DriftSeverity, **kwargs: Any) -> None:
            report.events.append(
                SchemaDriftEvent(integration_id, object_type, drift_type, name, severity=severity, **kwargs)
            )

        for name in sorted(old.keys() - new.keys()):
            event("property_removed", name, self._removed_severity, expected=old[name].data_type)

        for name in sorted(new.keys() - old.keys()):
            event("property_added", name, self._added_severity, observed=new[name].data_type)

        for name in sorted(old.keys() & new.keys()):
            before, after = old[name], new[name]
            if before.data_type != after.data_type:
                event(
                    "type_changed", name, self._type_change_severity,
                    expected=before.data_type, observed=after.data_type,
                )
            if not before.read_only and after.read_only:
                event("became_read_only", name, DriftSeverity.ERROR, expected="writable", observed="read_only")
            elif before.read_only and not after.read_only:
                event("became_writable", name, DriftSeverity.INFO, expected="read_only", observed="writable")

        if report.events:
            logger.info(
                "Schema drift detected for %s/%s: %d events (%s)",
                integration_id,
                object_type,
                report.drift_count,
                "BREAKING" if report.has_breaking_changes else "compatible",
            )

        return report

    def check_mapping(
        self,
        mapping: FieldMapping,
        fields: list[FormField],
        properties: list[RemoteProperty],
    ) -> SchemaDriftReport:
        """Report mapping entries whose field or target property no longer works."""
        report = SchemaDriftReport(integration_id=mapping.integration_id, object_type=mapping.object_type)
        field_ids = {f.id for f in fields}
        by_name = {p.name: p for p in properties}

        for field_id, target in mapping.entries.items():
            prop = by_name.get(target)
            if field_id not in field_ids:
                report.events.append(
                    SchemaDriftEvent(
                        mapping.integration_id, mapping.object_type, "field_missing", field_id,
                        expected=target, severity=DriftSeverity.WARNING,
                    )
                )
            if prop is None:
                report.events.append(
                    SchemaDriftEvent(
                        mapping.integration_id, mapping.object_type, "property_removed", target,
                        expected=field_id, severity=DriftSeverity.ERROR,
                    )
                )
            elif prop.read_only:
                report.events.append(
                    SchemaDriftEvent(
                        mapping.integration_id, mapping.object_type, "property_read_only", target,
                        expected=field_id, severity=DriftSeverity.ERROR,
                    )
                )
        return report
