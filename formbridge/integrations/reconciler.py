"""Reconciliation of saved field mappings against the live form and schema.

Form builders regenerate field ids when a form is edited or re-imported,
so a saved mapping can reference ids that no longer exist. The
reconciler keeps what still matches, re-associates regenerated ids by
position, and proposes mappings for never-mapped forms by comparing
field labels with remote property names.
"""

from __future__ import annotations

import logging
import re

from formbridge.integrations.types import FieldMapping, FieldType, FormField, RemoteProperty

logger = logging.getLogger(__name__)

MIN_AUTO_MAP_SCORE = 0.3
EXACT_SCORE = 1.0
CONTAINS_SCORE = 0.75
TOKEN_OVERLAP_WEIGHT = 0.5
EMAIL_PROPERTY_NAME = "email"

_SEPARATORS_RE = re.compile(r"[\s_\-.]+")


def _compact(text: str) -> str:
    return _SEPARATORS_RE.sub("", text.strip().lower())


def _tokens(text: str) -> set[str]:
    return {t for t in _SEPARATORS_RE.split(text.strip().lower()) if t}


def is_email_field(field: FormField) -> bool:
    """Return True for email-typed fields and fields labelled as an email address."""
    if field.type == FieldType.EMAIL:
        return True
    label = field.label.lower()
    return "email" in label or "e-mail" in label or "email" in field.id.lower()


def match_score(field: FormField, prop: RemoteProperty) -> float:
    """Score how well a form field corresponds to a remote property.

    Exact equality of label or id with property label or name, ignoring
    case and separators, scores 1.0. Containment of one in the other
    scores 0.75. Otherwise the shared-token ratio is scaled to at most 0.5.
    """
    best = 0.0
    for a in (field.label, field.id):
        for b in (prop.label, prop.name):
            ca, cb = _compact(a or ""), _compact(b or "")
            if not ca or not cb:
                continue
            if ca == cb:
                return EXACT_SCORE
            shorter = min(len(ca), len(cb))
            if shorter >= 3 and (ca in cb or cb in ca):
                best = max(best, CONTAINS_SCORE)
                continue
            ta, tb = _tokens(a), _tokens(b)
            overlap = len(ta & tb)
            if overlap:
                best = max(best, TOKEN_OVERLAP_WEIGHT * overlap / max(len(ta), len(tb)))
    return best


def find_orphans(mapping: FieldMapping, fields: list[FormField]) -> list[str]:
    """Return mapped field ids that are not on the form."""
    field_ids = {f.id for f in fields}
    return [field_id for field_id in mapping.entries if field_id not in field_ids]


class MappingReconciler:
    """Pure reconciliation and auto-mapping. Inputs are never mutated."""

    def __init__(self, *, min_score: float = MIN_AUTO_MAP_SCORE) -> None:
        self._min_score = min_score

    def reconcile(
        self,
        current_fields: list[FormField],
        remote_properties: list[RemoteProperty],
        saved: FieldMapping,
    ) -> FieldMapping:
        """Bring a saved mapping in line with the current form.

        Args:
            current_fields: Fields currently on the form, in form order.
            remote_properties: Current schema of the target object type.
            saved: The mapping as last saved.

        Returns:
            A new mapping. Entries that cannot be re-associated are carried
            over unchanged rather than dropped.
        """
        if saved.is_empty:
            return self.auto_map(current_fields, remote_properties, template=saved)

        data_fields = [f for f in current_fields if f.type.carries_data]
        current_ids = {f.id for f in data_fields}
        kept = [fid for fid in saved.entries if fid in current_ids]
        stale = [fid for fid in saved.entries if fid not in current_ids]

        if not stale:
            return saved.copy()

        if not kept and len(stale) <= len(data_fields):
            # Every id was regenerated: saved order is the only signal left.
            entries = {data_fields[i].id: saved.entries[fid] for i, fid in enumerate(stale)}
            logger.info(
                "Re-associated %d mapping entries by position for form %s (%s)",
                len(entries), saved.form_id, saved.integration_id,
            )
            return saved.with_entries(entries)

        free = [f for f in data_fields if f.id not in saved.entries]
        if kept and len(stale) == len(free):
            replacements = iter(free)
            remapped: dict[str, str] = {}
            for fid, target in saved.entries.items():
                new_id = fid if fid in current_ids else next(replacements).id
                remapped[new_id] = target
            logger.info(
                "Re-associated %d of %d mapping entries by position for form %s (%s)",
                len(stale), len(saved), saved.form_id, saved.integration_id,
            )
            return saved.with_entries(remapped)

        logger.warning(
            "Mapping for form %s (%s) has %d entries for fields no longer on the form: %s",
            saved.form_id, saved.integration_id, len(stale), ", ".join(stale),
        )
        return saved.copy()

    def auto_map(
        self,
        fields: list[FormField],
        properties: list[RemoteProperty],
        template: FieldMapping | None = None,
    ) -> FieldMapping:
        """Propose a mapping by comparing field labels with property names.

        The writable property named ``email`` goes to the first email-typed
        field, or failing that to the first field whose label or id
        mentions email, and is never scored for any other field. Every
        other field takes the best scoring unassigned writable property
        above the threshold; ties go to the property listed first. No
        property is proposed for two fields.
        """
        template = template or FieldMapping()
        data_fields = [f for f in fields if f.type.carries_data]
        writable = [p for p in properties if not p.read_only]
        email_prop = next((p for p in writable if p.name.lower() == EMAIL_PROPERTY_NAME), None)
        taken: set[str] = set()
        entries: dict[str, str] = {}

        if email_prop is not None:
            taken.add(email_prop.name)
            email_field = next((f for f in data_fields if f.type == FieldType.EMAIL), None)
            if email_field is None:
                email_field = next((f for f in data_fields if is_email_field(f)), None)
            if email_field is not None:
                entries[email_field.id] = email_prop.name

        for field in data_fields:
            if field.id in entries:
                continue

            best: RemoteProperty | None = None
            best_score = 0.0
            for prop in writable:
                if prop.name in taken:
                    continue
                score = match_score(field, prop)
                if score > best_score:
                    best, best_score = prop, score

            if best is not None and best_score >= self._min_score:
                entries[field.id] = best.name
                taken.add(best.name)

        logger.debug("Auto-mapped %d of %d fields", len(entries), len(fields))
        return template.with_entries(entries)
