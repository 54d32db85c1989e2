"""Per-unit outcomes emitted by the reconciliation engine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime


class OperationType(StrEnum):
    KEYED_GROUP = "keyed_group"
    INDIVIDUAL_RECORDS = "individual_records"


@dataclass(slots=True, frozen=True, kw_only=True)
class BatchResult:
    """Outcome of one committed unit of work. Immutable once produced."""

    batch_number: int
    operation_type: OperationType
    total_in_batch: int
    successful: int = 0
    skipped: int = 0
    errors: int = 0
    targets_created: int = 0
    no_target_found: int = 0
    error_messages: tuple[str, ...] = ()
    processing_time_ms: int = 0
    timestamp: datetime
    group_key: str | None = None

    @property
    def processed(self) -> int:
        return self.successful + self.skipped + self.errors
