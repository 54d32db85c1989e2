"""Records read from the document store and the derived classification types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(slots=True, frozen=True)
class Record:
    """A document as read from the store.

    The engine never mutates a record; field changes are staged as updates and
    committed through the store port.
    """

    id: str
    fields: Mapping[str, object] = field(default_factory=dict["str", "object"])

    def get(self, name: str, default: object = None) -> object:
        return self.fields.get(name, default)


@dataclass(slots=True, frozen=True)
class ClassifiedRecord:
    record: Record
    needs_reconciliation: bool
    group_key: str | None = None

    @property
    def is_keyed(self) -> bool:
        return self.group_key is not None


@dataclass(slots=True)
class ReconciliationGroup:
    """Records sharing one linking key, resolved against at most one target."""

    group_key: str
    members: list[Record] = field(default_factory=list["Record"])
    existing_target_id: str | None = None

    def __post_init__(self) -> None:
        if not self.group_key.strip():
            raise ValueError("Reconciliation group requires a non-empty group key")

    @property
    def needs_new_target(self) -> bool:
        return self.existing_target_id is None

    @property
    def member_ids(self) -> tuple[str, ...]:
        return tuple(member.id for member in self.members)

    def without(self, record_ids: set[str]) -> ReconciliationGroup:
        """Return a copy holding only members whose id is not in ``record_ids``."""

        return ReconciliationGroup(
            group_key=self.group_key,
            members=[member for member in self.members if member.id not in record_ids],
            existing_target_id=self.existing_target_id,
        )
