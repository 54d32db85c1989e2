"""Grouping of keyed records and resolution of their shared target."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

from relinkpy.domain.model import ReconciliationGroup
from relinkpy.domain.ports.store import RecordFilter

from .retry import BackoffPolicy, RetryListener, Sleep, with_retry
from .validation import is_valid_target_reference

if TYPE_CHECKING:
    from collections.abc import Iterable

    from relinkpy.domain.model import ClassifiedRecord, Record
    from relinkpy.domain.ports.store import DocumentStore

    from .definitions import MigrationDefinition


def group_by_key(keyed: Iterable[ClassifiedRecord]) -> dict[str, list[Record]]:
    """Partition keyed records by group key in first-seen order."""

    members_by_key: dict[str, list[Record]] = {}
    for item in keyed:
        if item.group_key is None:
            raise ValueError(f"Record {item.record.id} has no group key")
        members_by_key.setdefault(item.group_key, []).append(item.record)
    return members_by_key


@dataclass(slots=True)
class Grouper:
    """Build reconciliation groups, probing the store once per group key.

    The probe is bounded to a single record: the grouper never scans the
    collection per group. When several records sharing a key carry different
    targets, whichever one the store returns first is used.
    """

    store: DocumentStore
    definition: MigrationDefinition
    policy: BackoffPolicy
    on_retry: RetryListener | None = None
    sleep: Sleep = asyncio.sleep

    async def build_groups(self, keyed: Iterable[ClassifiedRecord]) -> list[ReconciliationGroup]:
        groups: list[ReconciliationGroup] = []
        for group_key, members in group_by_key(keyed).items():
            existing_target_id = await self.find_existing_target(group_key)
            groups.append(
                ReconciliationGroup(
                    group_key=group_key,
                    members=members,
                    existing_target_id=existing_target_id,
                )
            )
        return groups

    async def find_existing_target(self, group_key: str) -> str | None:
        link_field = self.definition.link_field
        if link_field is None:
            raise ValueError(f"Migration {self.definition.name!r} does not group records")

        record_filter = RecordFilter(
            equals={link_field: group_key},
            not_null=(self.definition.target_field,),
        )
        found = await with_retry(
            lambda: self.store.probe_one(self.definition.collection, record_filter),
            policy=self.policy,
            on_retry=self.on_retry,
            sleep=self.sleep,
        )
        if found is None:
            return None
        target = found.get(self.definition.target_field)
        if not is_valid_target_reference(target):
            return None
        return str(target)
