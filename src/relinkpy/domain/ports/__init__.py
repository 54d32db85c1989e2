"""Domain port definitions for adapters."""

from __future__ import annotations

from .reporting import ProgressReporter, ProgressSnapshot
from .store import Cursor, DocumentStore, FieldUpdate, Page, RecordFilter

__all__ = [
    "Cursor",
    "DocumentStore",
    "FieldUpdate",
    "Page",
    "ProgressReporter",
    "ProgressSnapshot",
    "RecordFilter",
]
