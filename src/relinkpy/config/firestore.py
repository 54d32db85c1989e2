"""Cloud Firestore configuration values."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .env import env_float, env_int, optional_env_var, require_env_var

FIRESTORE_DEFAULT_DATABASE = "(default)"
FIRESTORE_TIMEOUT_SECONDS = 20.0
# Firestore rejects commits with more than 500 writes.
FIRESTORE_MAX_BATCH_WRITES = 500
FIRESTORE_MAX_CALLS_PER_SECOND = 20


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float


@dataclass(frozen=True, slots=True)
class FirestoreConfig:
    """Holds Firestore client configuration values.

    Without ``credentials_file`` the client falls back to Application Default
    Credentials; ``FIRESTORE_EMULATOR_HOST`` is honoured by the client library.
    """

    project_id: str
    database: str = FIRESTORE_DEFAULT_DATABASE
    credentials_file: Path | None = None
    timeout_seconds: float = FIRESTORE_TIMEOUT_SECONDS
    max_batch_writes: int = FIRESTORE_MAX_BATCH_WRITES
    ratelimit: RateLimit | None = None


def get_firestore_config() -> FirestoreConfig:
    project_id = require_env_var("FIRESTORE_PROJECT_ID")
    credentials_file = optional_env_var("FIRESTORE_CREDENTIALS_FILE")
    return FirestoreConfig(
        project_id=project_id,
        database=optional_env_var("FIRESTORE_DATABASE") or FIRESTORE_DEFAULT_DATABASE,
        credentials_file=Path(credentials_file).expanduser() if credentials_file else None,
        timeout_seconds=env_float("FIRESTORE_TIMEOUT", FIRESTORE_TIMEOUT_SECONDS, minimum=0.1),
        ratelimit=RateLimit(
            max_calls=env_int(
                "FIRESTORE_MAX_CALLS_PER_SECOND", FIRESTORE_MAX_CALLS_PER_SECOND, minimum=1
            ),
            per_seconds=1.0,
        ),
    )
