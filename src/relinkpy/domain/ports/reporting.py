"""Port for consumers of engine progress (UI, logs, history)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from relinkpy.domain.model import BatchResult, RunProgress


@dataclass(slots=True, frozen=True)
class ProgressSnapshot:
    """Point-in-time copy of a run, safe to hand to reporters.

    ``progress.processed_record_ids`` is always empty here; the engine keeps the
    growing id set to itself and reporters get the counters.
    """

    migration: str
    progress: RunProgress
    latest_batch: BatchResult | None = None
    latest_log: str | None = None


@runtime_checkable
class ProgressReporter(Protocol):
    """Sink for snapshots emitted after every engine state change."""

    def __call__(self, snapshot: ProgressSnapshot) -> None: ...


__all__ = ["ProgressReporter", "ProgressSnapshot"]
