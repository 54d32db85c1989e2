"""Public interface for the Firestore adapter."""

from __future__ import annotations

from .store import (
    FirestoreAPIError,
    FirestoreDocumentStore,
    FirestoreUnavailableError,
    create_client,
)

__all__ = [
    "FirestoreAPIError",
    "FirestoreDocumentStore",
    "FirestoreUnavailableError",
    "create_client",
]
