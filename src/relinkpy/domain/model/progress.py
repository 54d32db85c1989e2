"""Run progress aggregate and the per-run state owned by one engine instance."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .record import ReconciliationGroup, Record
    from .results import BatchResult


class RunPhase(StrEnum):
    IDLE = "idle"
    SCANNING = "scanning"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(slots=True)
class RunProgress:
    """Aggregate counters for one run.

    ``processed_records`` always equals ``successful + skipped + errors``; it only
    grows through :meth:`apply_batch`.
    """

    phase: RunPhase = RunPhase.IDLE
    total_records: int = 0
    scanned_records: int = 0
    processed_records: int = 0
    successful: int = 0
    skipped: int = 0
    errors: int = 0
    targets_created: int = 0
    no_target_found: int = 0
    current_batch: int = 0
    total_batches: int = 0
    completed_units: int = 0
    keyed_records: int = 0
    individual_records: int = 0
    group_count: int = 0
    scan_pages: int = 0
    scan_truncated: bool = False
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error_message: str | None = None
    processed_record_ids: set[str] = field(default_factory=set["str"])

    @property
    def progress_percentage(self) -> int:
        if self.total_records == 0:
            return 100 if self.phase is RunPhase.COMPLETED else 0
        ratio = self.processed_records / max(self.total_records, 1)
        return min(100, max(0, round(ratio * 100)))

    @property
    def remaining_records(self) -> int:
        return max(0, self.total_records - self.processed_records)

    @property
    def can_resume(self) -> bool:
        return self.phase is RunPhase.PAUSED

    def apply_batch(self, result: BatchResult) -> None:
        self.processed_records += result.processed
        self.successful += result.successful
        self.skipped += result.skipped
        self.errors += result.errors
        self.targets_created += result.targets_created
        self.no_target_found += result.no_target_found
        self.completed_units += 1

    def copy(self, *, include_ids: bool = True) -> RunProgress:
        """Detached copy; without ``include_ids`` the processed id set is left empty."""

        ids = set(self.processed_record_ids) if include_ids else set[str]()
        return replace(self, processed_record_ids=ids)


@dataclass(slots=True)
class RunState:
    """Everything one run accumulates in memory. Lost on process exit."""

    history_size: int = 10
    debug_log_size: int = 50
    progress: RunProgress = field(default_factory=RunProgress)
    groups: list[ReconciliationGroup] = field(default_factory=list["ReconciliationGroup"])
    individuals: list[Record] = field(default_factory=list["Record"])
    current_batch_records: list[Record] = field(default_factory=list["Record"])
    recent_batches: deque[BatchResult] = field(init=False)
    debug_log: deque[str] = field(init=False)

    def __post_init__(self) -> None:
        self.recent_batches = deque(maxlen=self.history_size)
        self.debug_log = deque(maxlen=self.debug_log_size)

    def add_log(self, message: str) -> str:
        line = f"[{datetime.now(UTC).isoformat()}] {message}"
        self.debug_log.append(line)
        return line

    def record_batch(self, result: BatchResult) -> None:
        self.recent_batches.appendleft(result)
        self.progress.apply_batch(result)

    @property
    def latest_batch(self) -> BatchResult | None:
        return self.recent_batches[0] if self.recent_batches else None

    @property
    def latest_log(self) -> str | None:
        return self.debug_log[-1] if self.debug_log else None
