"""Migration definitions: the configuration that turns the engine into one migration.

Each concrete migration only states which collection to scan, which field holds
the target reference, how records are grouped, and how records outside any
group obtain a target. Two strategies exist for those individual records:

- ``CREATE_TARGET``: every record gets its own freshly created target record.
- ``LOOKUP_TARGET``: the target reference is copied from a related record found
  by point lookup (for example the seller's user document).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator
    from datetime import datetime

    from relinkpy.domain.model import Record


class IndividualStrategy(StrEnum):
    CREATE_TARGET = "create_target"
    LOOKUP_TARGET = "lookup_target"


@dataclass(frozen=True, slots=True, kw_only=True)
class LookupSource:
    """Where to find the related record holding a target reference.

    ``key_fields`` are tried in order; a field may hold a single id or a list of
    ids (as chat participant lists do). The first related record carrying a
    valid target reference wins.
    """

    collection: str
    key_fields: tuple[str, ...]
    target_field: str = "company_id"
    min_key_length: int = 1

    def __post_init__(self) -> None:
        if not self.key_fields:
            raise ValueError("Lookup source requires at least one key field")

    def candidate_keys(self, record: Record) -> Iterator[str]:
        seen: set[str] = set()
        for name in self.key_fields:
            value = record.get(name)
            values = value if isinstance(value, list) else [value]
            for candidate in values:
                if not isinstance(candidate, str):
                    continue
                key = candidate.strip()
                if len(key) < self.min_key_length or key in seen:
                    continue
                seen.add(key)
                yield key


@dataclass(frozen=True, slots=True, kw_only=True)
class MigrationDefinition:
    name: str
    description: str
    collection: str
    migration_source: str
    target_field: str = "company_id"
    link_field: str | None = None
    target_collection: str = "companies"
    individual_strategy: IndividualStrategy = IndividualStrategy.CREATE_TARGET
    lookup: LookupSource | None = None

    def __post_init__(self) -> None:
        if self.individual_strategy is IndividualStrategy.LOOKUP_TARGET and self.lookup is None:
            raise ValueError(f"Migration {self.name!r} uses lookups but defines no lookup source")

    @property
    def groups_records(self) -> bool:
        return self.link_field is not None

    def new_target_fields(self, *, now: datetime) -> dict[str, object]:
        return {
            "name": "",
            "description": "",
            "created_at": now,
            "updated_at": now,
            "active": True,
            "migration_source": self.migration_source,
            "migration_timestamp": now.isoformat(),
        }

    def update_fields(
        self,
        target_id: str,
        *,
        batch_number: int,
        now: datetime,
        group_key: str | None = None,
        lookup_key: str | None = None,
    ) -> dict[str, object]:
        fields: dict[str, object] = {
            self.target_field: target_id,
            "updated_at": now,
            "migration_source": self.migration_source,
            "migration_timestamp": now.isoformat(),
            "migration_batch": batch_number,
        }
        if group_key is not None:
            fields["migration_link_key"] = group_key
        if lookup_key is not None:
            fields["migration_lookup_key"] = lookup_key
        return fields


USER_COMPANIES = MigrationDefinition(
    name="companies",
    description="Link users to companies, sharing one company per license key",
    collection="iboard_users",
    link_field="license_key",
    target_collection="companies",
    migration_source="user_company_migration",
)

_SELLER_LOOKUP = LookupSource(
    collection="iboard_users",
    key_fields=("seller_id",),
    min_key_length=10,
)

QUOTATION_COMPANIES = MigrationDefinition(
    name="quotation-companies",
    description="Copy the seller's company onto quotation requests",
    collection="quotation_request",
    individual_strategy=IndividualStrategy.LOOKUP_TARGET,
    lookup=_SELLER_LOOKUP,
    migration_source="quotation_seller_migration_v1",
)

FOLLOWER_COMPANIES = MigrationDefinition(
    name="follower-companies",
    description="Copy the seller's company onto followers",
    collection="followers",
    individual_strategy=IndividualStrategy.LOOKUP_TARGET,
    lookup=_SELLER_LOOKUP,
    migration_source="follower_seller_migration_v3",
)

PRODUCT_COMPANIES = MigrationDefinition(
    name="product-companies",
    description="Copy the seller's company onto products",
    collection="products",
    individual_strategy=IndividualStrategy.LOOKUP_TARGET,
    lookup=_SELLER_LOOKUP,
    migration_source="product_company_migration_v3",
)

BOOKING_COMPANIES = MigrationDefinition(
    name="booking-companies",
    description="Copy the seller's (or else the buyer's) company onto bookings",
    collection="booking",
    individual_strategy=IndividualStrategy.LOOKUP_TARGET,
    lookup=LookupSource(collection="iboard_users", key_fields=("seller_id", "buyer_id")),
    migration_source="booking_company_migration",
)

CHAT_COMPANIES = MigrationDefinition(
    name="chat-companies",
    description="Copy the first participant's company onto chats",
    collection="chats",
    individual_strategy=IndividualStrategy.LOOKUP_TARGET,
    lookup=LookupSource(collection="iboard_users", key_fields=("users",)),
    migration_source="chat_company_migration",
)

BUILTIN_MIGRATIONS: dict[str, MigrationDefinition] = {
    definition.name: definition
    for definition in (
        USER_COMPANIES,
        QUOTATION_COMPANIES,
        FOLLOWER_COMPANIES,
        PRODUCT_COMPANIES,
        BOOKING_COMPANIES,
        CHAT_COMPANIES,
    )
}


def get_migration(name: str) -> MigrationDefinition:
    try:
        return BUILTIN_MIGRATIONS[name]
    except KeyError:
        known = ", ".join(sorted(BUILTIN_MIGRATIONS))
        raise ValueError(f"Unknown migration {name!r} (known: {known})") from None
