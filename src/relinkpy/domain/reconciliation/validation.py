"""Field predicates shared by classification, grouping and write staging."""

from __future__ import annotations

MIN_TARGET_REFERENCE_LENGTH = 3


def is_valid_target_reference(value: object) -> bool:
    """Return whether ``value`` is usable as a reference to a target record."""

    if not isinstance(value, str):
        return False
    stripped = value.strip()
    return bool(stripped) and len(value) >= MIN_TARGET_REFERENCE_LENGTH


def normalize_link_key(value: object) -> str | None:
    """Return the trimmed linking key, or ``None`` when it cannot group records."""

    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None
