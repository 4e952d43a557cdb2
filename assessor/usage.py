"""Token usage recording: fire-and-forget metering of model calls.

Recording never takes part in grading decisions: failures are logged and
swallowed so a metering problem can never fail an assessment.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class UsageEntry(BaseModel):
    """One metered model call."""

    model: str
    operation: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    raw: dict[str, Any] = Field(default_factory=dict)
    recorded_at: float = Field(default_factory=time.time)


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def normalize_usage(model: str, operation: str, usage: dict[str, Any]) -> UsageEntry:
    """Map Responses-style and Chat-style usage objects onto one shape."""
    input_tokens = _as_int(usage.get("input_tokens"))
    if input_tokens is None:
        input_tokens = _as_int(usage.get("prompt_tokens")) or 0
    output_tokens = _as_int(usage.get("output_tokens"))
    if output_tokens is None:
        output_tokens = _as_int(usage.get("completion_tokens")) or 0
    total_tokens = _as_int(usage.get("total_tokens"))
    if total_tokens is None:
        total_tokens = input_tokens + output_tokens
    return UsageEntry(
        model=model,
        operation=operation,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=total_tokens,
        raw=dict(usage),
    )


# ── Abstract Interface ───────────────────────────────────────


class UsageRecorder(ABC):
    """Collaborator that meters model usage."""

    def record(self, model: str, operation: str, usage: dict[str, Any] | None) -> None:
        """Record usage for one call. Never raises."""
        if not usage:
            return
        try:
            self._store(normalize_usage(model, operation, usage))
        except Exception:  # noqa: BLE001 - metering must not fail grading
            logger.warning("Usage recording failed for %s/%s", model, operation, exc_info=True)

    @abstractmethod
    def _store(self, entry: UsageEntry) -> None:
        """Persist a normalised entry."""
        ...


# ── In-Memory Implementation ────────────────────────────────


class InMemoryUsageRecorder(UsageRecorder):
    """Keeps the most recent usage entries and running totals in memory."""

    def __init__(self, max_entries: int = 1000) -> None:
        self.entries: deque[UsageEntry] = deque(maxlen=max_entries)
        self._totals = {"input_tokens": 0, "output_tokens": 0, "total_tokens": 0}

    def _store(self, entry: UsageEntry) -> None:
        self.entries.append(entry)
        self._totals["input_tokens"] += entry.input_tokens
        self._totals["output_tokens"] += entry.output_tokens
        self._totals["total_tokens"] += entry.total_tokens
        logger.debug(
            "Usage recorded model=%s op=%s total_tokens=%d",
            entry.model,
            entry.operation,
            entry.total_tokens,
        )

    def totals(self) -> dict[str, int]:
        """Summed token counts since start-up, including evicted entries."""
        return dict(self._totals)


_recorder: UsageRecorder | None = None


def get_usage_recorder() -> UsageRecorder:
    """Return the process-wide usage recorder."""
    global _recorder
    if _recorder is None:
        _recorder = InMemoryUsageRecorder()
    return _recorder
