"""Error taxonomy of the reconciliation engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from relinkpy.domain.model import RunPhase


class ReconciliationError(RuntimeError):
    """Base class for engine errors."""


class RecordValidationError(ReconciliationError):
    """A record fails a precondition; counted against the record, never fatal."""

    def __init__(self, record_id: str, message: str) -> None:
        super().__init__(f"Record {record_id}: {message}")
        self.record_id = record_id


class StoreError(ReconciliationError):
    """Base class for failures reported by a document store adapter."""


class TransientStoreError(StoreError):
    """Network/timeout/unavailable failure that may succeed when retried."""


class PermanentStoreError(StoreError):
    """Store failure that will not succeed on retry."""


class RunPausedError(ReconciliationError):
    """Raised inside the scan loop when a pause was requested."""


class FatalRunError(ReconciliationError):
    """Failure that makes forward progress impossible; moves the run to ``error``."""


class InvalidTransitionError(ReconciliationError):
    """A command is not valid in the run's current phase."""

    def __init__(self, command: str, phase: RunPhase) -> None:
        super().__init__(f"Cannot {command} while run is {phase.value}")
        self.command = command
        self.phase = phase
