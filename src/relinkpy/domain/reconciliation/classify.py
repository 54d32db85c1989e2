"""Scan-time classification of records."""

from __future__ import annotations

from typing import TYPE_CHECKING

from relinkpy.domain.model import ClassifiedRecord

from .validation import is_valid_target_reference, normalize_link_key

if TYPE_CHECKING:
    from collections.abc import Iterable

    from relinkpy.domain.model import Record

    from .definitions import MigrationDefinition


def classify(record: Record, definition: MigrationDefinition) -> ClassifiedRecord:
    """Decide whether ``record`` needs work and which group, if any, it joins.

    Pure and total: malformed field values classify the record, they never raise.
    """

    needs_reconciliation = not is_valid_target_reference(record.get(definition.target_field))
    group_key = None
    if definition.link_field is not None:
        group_key = normalize_link_key(record.get(definition.link_field))
    return ClassifiedRecord(
        record=record,
        needs_reconciliation=needs_reconciliation,
        group_key=group_key,
    )


def partition(
    classified: Iterable[ClassifiedRecord],
) -> tuple[list[ClassifiedRecord], list[ClassifiedRecord]]:
    """Split records needing work into ``(keyed, individual)``, preserving order."""

    keyed: list[ClassifiedRecord] = []
    individual: list[ClassifiedRecord] = []
    for item in classified:
        if not item.needs_reconciliation:
            continue
        if item.is_keyed:
            keyed.append(item)
        else:
            individual.append(item)
    return keyed, individual
