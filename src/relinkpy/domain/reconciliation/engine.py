"""Resumable scan-classify-reconcile-write engine.

One engine instance drives one migration run at a time through the phases

    idle -> scanning -> processing -> completed | error | paused

Scanning pages through the whole collection and classifies every record.
Processing then works through units: first every keyed group, then the
individual records in fixed-size sub-batches. Each unit ends in exactly one
bounded batch commit, so a unit is either fully written or not at all. A pause
is honoured only between pages and between units.

All run state lives in :class:`~relinkpy.domain.model.RunState` and is lost when
the process exits; a new run rediscovers committed work by rescanning.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from relinkpy.config.engine import EngineSettings
from relinkpy.domain.model import BatchResult, OperationType, RunPhase, RunState
from relinkpy.domain.ports.reporting import ProgressSnapshot
from relinkpy.domain.ports.store import FieldUpdate

from .cache import LookupCache
from .cancellation import PauseToken
from .classify import classify, partition
from .definitions import IndividualStrategy
from .errors import (
    FatalRunError,
    InvalidTransitionError,
    RecordValidationError,
    RunPausedError,
)
from .group import Grouper
from .retry import BackoffPolicy, Sleep, with_retry
from .validation import is_valid_target_reference

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from relinkpy.domain.model import (
        ClassifiedRecord,
        ReconciliationGroup,
        Record,
        RunProgress,
    )
    from relinkpy.domain.ports.reporting import ProgressReporter
    from relinkpy.domain.ports.store import DocumentStore

    from .definitions import LookupSource, MigrationDefinition

log = getLogger(__name__)

_RUNNING_PHASES = frozenset({RunPhase.SCANNING, RunPhase.PROCESSING})
_RESETTABLE_PHASES = frozenset(
    {RunPhase.IDLE, RunPhase.PAUSED, RunPhase.ERROR, RunPhase.COMPLETED}
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _chunks(records: Sequence[Record], size: int) -> Iterable[Sequence[Record]]:
    for start in range(0, len(records), size):
        yield records[start : start + size]


class ReconciliationEngine:
    """Run one :class:`MigrationDefinition` against a :class:`DocumentStore`."""

    def __init__(
        self,
        *,
        store: DocumentStore,
        definition: MigrationDefinition,
        settings: EngineSettings | None = None,
        reporters: Iterable[ProgressReporter] = (),
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.definition = definition
        self.settings = settings or EngineSettings()
        self._reporters: list[ProgressReporter] = list(reporters)
        self._sleep = sleep
        self._clock = clock
        self._pause = PauseToken()
        self._policy = BackoffPolicy(
            attempts=self.settings.retry_attempts,
            backoff_seconds=self.settings.retry_backoff_seconds,
            timeout_seconds=self.settings.call_timeout_seconds,
        )
        self._grouper = Grouper(
            store=store,
            definition=definition,
            policy=self._policy,
            on_retry=self._log_retry,
            sleep=sleep,
        )
        self._lookup_cache: LookupCache[Record | None] = LookupCache(
            max_size=self.settings.lookup_cache_size,
            ttl_seconds=self.settings.lookup_cache_ttl_seconds,
        )
        self._scan_complete = False
        self.state = self._new_state()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @property
    def phase(self) -> RunPhase:
        return self.state.progress.phase

    @property
    def progress(self) -> RunProgress:
        return self.state.progress

    def add_reporter(self, reporter: ProgressReporter) -> None:
        self._reporters.append(reporter)

    def snapshot(self) -> ProgressSnapshot:
        """Counters, latest unit and latest log line; processed ids are not copied."""

        return ProgressSnapshot(
            migration=self.definition.name,
            progress=self.state.progress.copy(include_ids=False),
            latest_batch=self.state.latest_batch,
            latest_log=self.state.latest_log,
        )

    async def start(self) -> RunProgress:
        """Scan the collection and process everything that needs work."""

        if self.phase is not RunPhase.IDLE:
            raise InvalidTransitionError("start", self.phase)
        self._pause.clear()
        self.state.progress.started_at = self._clock()
        self._log(
            f"Starting migration {self.definition.name!r} on collection "
            f"{self.definition.collection!r}"
        )
        return await self._scan_and_process()

    async def resume(self) -> RunProgress:
        """Continue a paused run, skipping every record already processed."""

        if self.phase is not RunPhase.PAUSED:
            raise InvalidTransitionError("resume", self.phase)
        self._pause.clear()
        if not self._scan_complete:
            self._log("Resuming an interrupted scan from the beginning")
            return await self._scan_and_process()
        self._log(
            f"Resuming after {self.state.progress.completed_units} completed units "
            f"({len(self.state.progress.processed_record_ids)} records processed)"
        )
        return await self._process_all()

    def pause(self) -> None:
        """Ask the running scan or processing loop to stop at its next checkpoint."""

        if self.phase not in _RUNNING_PHASES:
            raise InvalidTransitionError("pause", self.phase)
        self._pause.request()
        self._log("Pause requested")
        self._emit()

    def reset(self) -> None:
        """Drop all run state and return to ``idle``."""

        if self.phase not in _RESETTABLE_PHASES:
            raise InvalidTransitionError("reset", self.phase)
        self._pause.clear()
        self._lookup_cache.clear()
        self._scan_complete = False
        self.state = self._new_state()
        self._log("Migration state reset")
        self._emit()

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    async def _scan_and_process(self) -> RunProgress:
        progress = self.state.progress
        self._set_phase(RunPhase.SCANNING)
        try:
            keyed, individual = await self._scan()
            self.state.groups = await self._build_groups(keyed)
        except RunPausedError:
            self._log("Pause requested during scanning - stopping scan")
            self._set_phase(RunPhase.PAUSED)
            return progress.copy()
        except Exception as exc:  # noqa: BLE001
            self._fail(exc)
            return progress.copy()

        self.state.individuals = [item.record for item in individual]
        self._scan_complete = True
        progress.group_count = len(self.state.groups)
        progress.total_batches = len(self.state.groups) + math.ceil(
            len(self.state.individuals) / self.settings.unit_size
        )
        self._log(
            f"Categorization complete: {progress.keyed_records} keyed records in "
            f"{progress.group_count} groups, {progress.individual_records} individual records, "
            f"{progress.total_batches} units"
        )

        if progress.total_records == 0:
            self._log("No records need reconciliation")
            self._complete()
            return progress.copy()
        return await self._process_all()

    async def _scan(self) -> tuple[list[ClassifiedRecord], list[ClassifiedRecord]]:
        progress = self.state.progress
        progress.scanned_records = 0
        progress.scan_pages = 0
        progress.scan_truncated = False
        needing_work: list[ClassifiedRecord] = []
        cursor: str | None = None

        while True:
            self._pause.raise_if_requested()
            if progress.scan_pages >= self.settings.max_scan_pages:
                progress.scan_truncated = True
                self._log(
                    f"Safety limit reached: scanned {progress.scan_pages} pages, stopping scan "
                    "with records left unscanned",
                    level=logging.WARNING,
                )
                break

            page_cursor = cursor
            page = await with_retry(
                lambda: self.store.scan_page(
                    self.definition.collection,
                    page_size=self.settings.page_size,
                    cursor=page_cursor,
                ),
                policy=self._policy,
                on_retry=self._log_retry,
                sleep=self._sleep,
            )
            progress.scan_pages += 1
            for record in page.records:
                progress.scanned_records += 1
                classified = classify(record, self.definition)
                if classified.needs_reconciliation:
                    needing_work.append(classified)
            progress.total_records = len(needing_work)
            self._log(
                f"Scan page {progress.scan_pages}: {len(needing_work)} records need work "
                f"({progress.scanned_records} scanned)",
                level=logging.DEBUG,
            )
            self._emit()

            if page.next_cursor is None or not page.records:
                break
            cursor = page.next_cursor
            await self._sleep(self.settings.page_delay_seconds)

        keyed, individual = partition(needing_work)
        progress.keyed_records = len(keyed)
        progress.individual_records = len(individual)
        self._log(
            f"Scan finished after {progress.scan_pages} pages: {progress.scanned_records} scanned, "
            f"{progress.total_records} need reconciliation"
        )
        return keyed, individual

    async def _build_groups(self, keyed: list[ClassifiedRecord]) -> list[ReconciliationGroup]:
        if not keyed:
            return []
        groups = await self._grouper.build_groups(keyed)
        for group in groups:
            if group.needs_new_target:
                self._log(
                    f"No existing target for key {group.group_key!r}, a new one will be created",
                    level=logging.DEBUG,
                )
            else:
                self._log(
                    f"Found existing target {group.existing_target_id} for key "
                    f"{group.group_key!r}",
                    level=logging.DEBUG,
                )
        return groups

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def _process_all(self) -> RunProgress:
        progress = self.state.progress
        processed = progress.processed_record_ids
        remaining_groups = [group.without(processed) for group in self.state.groups]
        remaining_groups = [group for group in remaining_groups if group.members]
        remaining_individuals = [
            record for record in self.state.individuals if record.id not in processed
        ]
        self._set_phase(RunPhase.PROCESSING)
        self._log(
            f"Processing {len(remaining_groups)} groups and "
            f"{len(remaining_individuals)} individual records"
        )

        try:
            for group in remaining_groups:
                if self._pause.requested:
                    return self._enter_paused()
                await self.process_group(group)
                await self._sleep(self.settings.unit_delay_seconds)

            for records in _chunks(remaining_individuals, self.settings.unit_size):
                if self._pause.requested:
                    return self._enter_paused()
                await self.process_individuals(records)
                await self._sleep(self.settings.unit_delay_seconds)
        except Exception as exc:  # noqa: BLE001
            self._fail(exc)
            return progress.copy()

        self._complete()
        return progress.copy()

    async def process_group(self, group: ReconciliationGroup) -> BatchResult:
        """Link every unprocessed member of ``group`` to one shared target."""

        started = time.perf_counter()
        batch_number = self._begin_unit(group.members)
        self._log(
            f"Processing group {group.group_key!r} ({len(group.members)} records) "
            f"as unit {batch_number}"
        )
        processed = self.state.progress.processed_record_ids
        pending = [member for member in group.members if member.id not in processed]
        skipped = len(group.members) - len(pending)
        targets_created = 0

        if pending:
            target_id = group.existing_target_id
            if target_id is None:
                target_id = await self._create_target_or_fail(group.group_key)
                targets_created = 1
            if not is_valid_target_reference(target_id):
                raise FatalRunError(
                    f"No valid target available for group {group.group_key!r}: {target_id!r}"
                )
            now = self._clock()
            updates = [
                FieldUpdate(
                    collection=self.definition.collection,
                    record_id=member.id,
                    fields=self.definition.update_fields(
                        target_id,
                        batch_number=batch_number,
                        now=now,
                        group_key=group.group_key,
                    ),
                )
                for member in pending
            ]
            await self._commit(updates, batch_number)

        result = BatchResult(
            batch_number=batch_number,
            operation_type=OperationType.KEYED_GROUP,
            total_in_batch=len(group.members),
            successful=len(pending),
            skipped=skipped,
            targets_created=targets_created,
            processing_time_ms=self._elapsed_ms(started),
            timestamp=self._clock(),
            group_key=group.group_key,
        )
        self._finish_unit(result, group.member_ids)
        return result

    async def process_individuals(self, records: Sequence[Record]) -> BatchResult:
        """Resolve a target per record and commit all resolved records together."""

        started = time.perf_counter()
        batch_number = self._begin_unit(records)
        self._log(f"Processing {len(records)} individual records as unit {batch_number}")
        processed = self.state.progress.processed_record_ids
        updates: list[FieldUpdate] = []
        skipped = 0
        errors = 0
        targets_created = 0
        no_target_found = 0
        error_messages: list[str] = []

        for record in records:
            if record.id in processed:
                skipped += 1
                continue
            try:
                if self.definition.individual_strategy is IndividualStrategy.CREATE_TARGET:
                    target_id = await self._create_target(record.id)
                    targets_created += 1
                    lookup_key = None
                else:
                    found, target_id, lookup_key = await self._lookup_target(record)
                    if not found:
                        no_target_found += 1
                        skipped += 1
                        self._log(f"No related record found for {record.id}", level=logging.DEBUG)
                        continue
                    if target_id is None:
                        skipped += 1
                        self._log(
                            f"Related records of {record.id} carry no valid target",
                            level=logging.DEBUG,
                        )
                        continue
                updates.append(self._stage(record, target_id, batch_number, lookup_key))
            except Exception as exc:  # noqa: BLE001
                errors += 1
                message = f"Error processing record {record.id}: {exc}"
                error_messages.append(message)
                self._log(message, level=logging.ERROR)

        if updates:
            await self._commit(updates, batch_number)

        result = BatchResult(
            batch_number=batch_number,
            operation_type=OperationType.INDIVIDUAL_RECORDS,
            total_in_batch=len(records),
            successful=len(updates),
            skipped=skipped,
            errors=errors,
            targets_created=targets_created,
            no_target_found=no_target_found,
            error_messages=tuple(error_messages),
            processing_time_ms=self._elapsed_ms(started),
            timestamp=self._clock(),
        )
        self._finish_unit(result, [record.id for record in records])
        return result

    # ------------------------------------------------------------------
    # Store calls
    # ------------------------------------------------------------------

    async def _create_target(self, for_record: str) -> str:
        fields = self.definition.new_target_fields(now=self._clock())
        target_id = await with_retry(
            lambda: self.store.create_record(self.definition.target_collection, fields),
            policy=self._policy,
            on_retry=self._log_retry,
            sleep=self._sleep,
        )
        self._log(
            f"Created target {target_id} in {self.definition.target_collection!r} for {for_record}",
            level=logging.DEBUG,
        )
        return target_id

    async def _create_target_or_fail(self, group_key: str) -> str:
        try:
            return await self._create_target(f"group {group_key!r}")
        except Exception as exc:
            raise FatalRunError(f"Could not create target for group {group_key!r}: {exc}") from exc

    async def _lookup_target(self, record: Record) -> tuple[bool, str | None, str | None]:
        """Return ``(found_any, target_id, key)`` for the first usable related record."""

        lookup = self._require_lookup()
        keys = list(lookup.candidate_keys(record))
        if not keys:
            fields = ", ".join(lookup.key_fields)
            raise RecordValidationError(record.id, f"missing or invalid lookup key ({fields})")

        found_any = False
        for key in keys:
            related = await self._get_related(lookup, key)
            if related is None:
                continue
            found_any = True
            target = related.get(lookup.target_field)
            if is_valid_target_reference(target):
                return True, str(target), key
        return found_any, None, None

    async def _get_related(self, lookup: LookupSource, key: str) -> Record | None:
        hit, cached = self._lookup_cache.get(key)
        if hit:
            return cached
        related = await with_retry(
            lambda: self.store.get_record(lookup.collection, key),
            policy=self._policy,
            on_retry=self._log_retry,
            sleep=self._sleep,
        )
        self._lookup_cache.put(key, related)
        return related

    async def _commit(self, updates: Sequence[FieldUpdate], batch_number: int) -> None:
        limit = max(1, self.store.max_batch_writes)
        if len(updates) > limit:
            self._log(
                f"Unit {batch_number} holds {len(updates)} updates, "
                f"committing in chunks of {limit}",
                level=logging.WARNING,
            )
        for start in range(0, len(updates), limit):
            chunk = updates[start : start + limit]
            try:
                await with_retry(
                    lambda chunk=chunk: self.store.commit_batch(chunk),
                    policy=self._policy,
                    on_retry=self._log_retry,
                    sleep=self._sleep,
                )
            except Exception as exc:
                raise FatalRunError(f"Unit {batch_number}: error committing batch: {exc}") from exc
        self._log(f"Unit {batch_number}: committed {len(updates)} updates")

    # ------------------------------------------------------------------
    # State bookkeeping
    # ------------------------------------------------------------------

    def _new_state(self) -> RunState:
        return RunState(
            history_size=self.settings.history_size,
            debug_log_size=self.settings.debug_log_size,
        )

    def _require_lookup(self) -> LookupSource:
        if self.definition.lookup is None:
            raise ValueError(f"Migration {self.definition.name!r} defines no lookup source")
        return self.definition.lookup

    def _stage(
        self,
        record: Record,
        target_id: str,
        batch_number: int,
        lookup_key: str | None,
    ) -> FieldUpdate:
        if not is_valid_target_reference(target_id):
            raise RecordValidationError(record.id, f"invalid target reference {target_id!r}")
        return FieldUpdate(
            collection=self.definition.collection,
            record_id=record.id,
            fields=self.definition.update_fields(
                target_id,
                batch_number=batch_number,
                now=self._clock(),
                lookup_key=lookup_key,
            ),
        )

    def _begin_unit(self, records: Sequence[Record]) -> int:
        progress = self.state.progress
        progress.current_batch += 1
        self.state.current_batch_records = list(records)
        self._emit()
        return progress.current_batch

    def _finish_unit(self, result: BatchResult, record_ids: Iterable[str]) -> None:
        self.state.progress.processed_record_ids.update(record_ids)
        self.state.record_batch(result)
        self.state.current_batch_records = []
        self._log(
            f"Unit {result.batch_number} completed: {result.successful} successful, "
            f"{result.skipped} skipped, {result.errors} errors, "
            f"{result.targets_created} targets created"
        )
        self._emit()

    def _enter_paused(self) -> RunProgress:
        progress = self.state.progress
        self._log(f"Paused after {progress.completed_units} completed units")
        self._set_phase(RunPhase.PAUSED)
        return progress.copy()

    def _complete(self) -> None:
        progress = self.state.progress
        progress.finished_at = self._clock()
        self._log(
            f"Migration completed: {progress.successful} successful, {progress.skipped} skipped, "
            f"{progress.errors} errors, {progress.targets_created} targets created"
        )
        self._set_phase(RunPhase.COMPLETED)

    def _fail(self, exc: BaseException) -> None:
        progress = self.state.progress
        progress.error_message = str(exc) or type(exc).__name__
        progress.finished_at = self._clock()
        log.error("Migration %s failed", self.definition.name, exc_info=exc)
        self.state.add_log(f"Migration failed: {progress.error_message}")
        self._set_phase(RunPhase.ERROR)

    def _set_phase(self, phase: RunPhase) -> None:
        self.state.progress.phase = phase
        self._log(f"Phase changed to {phase.value}", level=logging.DEBUG)
        self._emit()

    def _log_retry(self, attempt: int, attempts: int, exc: BaseException) -> None:
        self._log(
            f"Transient error, retrying ({attempt}/{attempts}): {exc}",
            level=logging.WARNING,
        )

    def _log(self, message: str, *, level: int = logging.INFO) -> None:
        self.state.add_log(message)
        log.log(level, "[%s] %s", self.definition.name, message)

    def _emit(self) -> None:
        if not self._reporters:
            return
        snapshot = self.snapshot()
        for reporter in self._reporters:
            try:
                reporter(snapshot)
            except Exception:
                log.exception("Progress reporter %r failed", reporter)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)
