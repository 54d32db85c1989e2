"""Domain model for reconciliation runs."""

from __future__ import annotations

from .progress import RunPhase, RunProgress, RunState
from .record import ClassifiedRecord, ReconciliationGroup, Record
from .results import BatchResult, OperationType

__all__ = [
    "BatchResult",
    "ClassifiedRecord",
    "OperationType",
    "ReconciliationGroup",
    "Record",
    "RunPhase",
    "RunProgress",
    "RunState",
]
