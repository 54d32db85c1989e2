"""Batch reconciliation of records against shared target records."""

from __future__ import annotations

from .cancellation import PauseToken
from .classify import classify, partition
from .definitions import (
    BUILTIN_MIGRATIONS,
    IndividualStrategy,
    LookupSource,
    MigrationDefinition,
    get_migration,
)
from .engine import ReconciliationEngine
from .errors import (
    FatalRunError,
    InvalidTransitionError,
    PermanentStoreError,
    ReconciliationError,
    RecordValidationError,
    RunPausedError,
    StoreError,
    TransientStoreError,
)
from .group import Grouper, group_by_key
from .history import HISTORY_COLLECTION, HistoryEntry, MigrationHistoryRecorder
from .retry import BackoffPolicy, is_transient_error, with_retry
from .validation import is_valid_target_reference, normalize_link_key

__all__ = [
    "BUILTIN_MIGRATIONS",
    "HISTORY_COLLECTION",
    "BackoffPolicy",
    "FatalRunError",
    "Grouper",
    "HistoryEntry",
    "IndividualStrategy",
    "InvalidTransitionError",
    "LookupSource",
    "MigrationDefinition",
    "MigrationHistoryRecorder",
    "PauseToken",
    "PermanentStoreError",
    "ReconciliationEngine",
    "ReconciliationError",
    "RecordValidationError",
    "RunPausedError",
    "StoreError",
    "TransientStoreError",
    "classify",
    "get_migration",
    "group_by_key",
    "is_transient_error",
    "is_valid_target_reference",
    "normalize_link_key",
    "partition",
    "with_retry",
]
