from __future__ import annotations

from datetime import UTC, datetime

from relinkpy.domain.model import BatchResult, OperationType, RunPhase, RunProgress, RunState

NOW = datetime(2024, 5, 1, tzinfo=UTC)


def _batch(number: int, **counts: int) -> BatchResult:
    return BatchResult(
        batch_number=number,
        operation_type=OperationType.INDIVIDUAL_RECORDS,
        total_in_batch=sum(counts.values()),
        timestamp=NOW,
        **counts,
    )


def test_percentage_is_bounded_and_complete_when_nothing_to_do() -> None:
    assert RunProgress().progress_percentage == 0
    assert RunProgress(phase=RunPhase.COMPLETED).progress_percentage == 100
    assert RunProgress(total_records=3, processed_records=1).progress_percentage == 33
    assert RunProgress(total_records=2, processed_records=5).progress_percentage == 100


def test_apply_batch_keeps_counters_consistent() -> None:
    progress = RunProgress(total_records=10)

    progress.apply_batch(_batch(1, successful=3, skipped=1, errors=1))
    progress.apply_batch(_batch(2, successful=2, no_target_found=0))

    assert progress.processed_records == 7
    assert progress.processed_records == progress.successful + progress.skipped + progress.errors
    assert progress.completed_units == 2
    assert progress.remaining_records == 3


def test_copy_does_not_share_processed_ids() -> None:
    progress = RunProgress(processed_record_ids={"u1"})

    snapshot = progress.copy()
    progress.processed_record_ids.add("u2")

    assert snapshot.processed_record_ids == {"u1"}
    assert progress.copy(include_ids=False).processed_record_ids == set()


def test_state_keeps_newest_batches_and_bounded_log() -> None:
    state = RunState(history_size=2, debug_log_size=2)

    for number in (1, 2, 3):
        state.record_batch(_batch(number, successful=1))
        state.add_log(f"unit {number}")

    assert [batch.batch_number for batch in state.recent_batches] == [3, 2]
    assert state.latest_batch is not None
    assert state.latest_batch.batch_number == 3
    assert len(state.debug_log) == 2
    assert state.latest_log is not None
    assert state.latest_log.endswith("unit 3")
    assert state.progress.successful == 3
