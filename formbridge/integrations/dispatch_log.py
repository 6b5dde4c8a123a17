"""Dispatch logging.

Keeps the most recent dispatch results per form and integration so
failures can be inspected after the fact. Storage is abstracted via the
key-value backend (in production, a Redis list with key pattern
``formbridge:dispatch_log:{form_id}:{integration_id}``).
"""

from __future__ import annotations

import logging
from typing import Any

from formbridge.integrations.storage import KeyValueBackend, make_key
from formbridge.integrations.types import DispatchResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 500


class DispatchLogStore:
    """Bounded, newest-first log of dispatch results."""

    def __init__(self, backend: KeyValueBackend, *, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        self._backend = backend
        self._max_entries = max_entries

    async def append(self, result: DispatchResult) -> None:
        await self._backend.push(
            make_key("dispatch_log", result.form_id, result.integration_id),
            result.to_dict(),
            max_len=self._max_entries,
        )

    async def recent(self, form_id: str, integration_id: str, limit: int = 50) -> list[dict[str, Any]]:
        """Return up to ``limit`` logged results, newest first."""
        limit = max(1, min(limit, self._max_entries))
        return await self._backend.range(make_key("dispatch_log", form_id, integration_id), limit)
