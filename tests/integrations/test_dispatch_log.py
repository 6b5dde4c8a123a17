"""Tests for the dispatch log."""

from __future__ import annotations

from formbridge.integrations.dispatch_log import DispatchLogStore
from formbridge.integrations.storage import InMemoryBackend
from formbridge.integrations.types import DispatchResult, OperationResult


def _result(submission_id: str, form_id: str = "form-1", integration_id: str = "hubspot") -> DispatchResult:
    return DispatchResult(
        integration_id=integration_id,
        form_id=form_id,
        submission_id=submission_id,
        results=[OperationResult("contact", True, "Contact created", "1")],
    )


class TestDispatchLogStore:
    async def test_recent_newest_first(self, backend: InMemoryBackend) -> None:
        log = DispatchLogStore(backend)
        for i in range(3):
            await log.append(_result(f"s{i}"))

        entries = await log.recent("form-1", "hubspot")

        assert [e["submission_id"] for e in entries] == ["s2", "s1", "s0"]
        assert entries[0]["success"] is True
        assert entries[0]["results"][0]["operation"] == "contact"

    async def test_bounded(self, backend: InMemoryBackend) -> None:
        log = DispatchLogStore(backend, max_entries=2)
        for i in range(5):
            await log.append(_result(f"s{i}"))
        assert [e["submission_id"] for e in await log.recent("form-1", "hubspot", limit=10)] == ["s4", "s3"]

    async def test_scoped_per_form_and_integration(self, backend: InMemoryBackend) -> None:
        log = DispatchLogStore(backend)
        await log.append(_result("s1"))
        await log.append(_result("s2", integration_id="mailchimp"))
        await log.append(_result("s3", form_id="form-2"))

        assert [e["submission_id"] for e in await log.recent("form-1", "hubspot")] == ["s1"]
        assert await log.recent("form-9", "hubspot") == []
