"""Progress reporters writing engine snapshots to the log."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from relinkpy.domain.model import BatchResult
    from relinkpy.domain.ports.reporting import ProgressReporter, ProgressSnapshot

log = getLogger(__name__)


@dataclass(slots=True)
class LoggingProgressReporter:
    """Log one line per finished unit and one per phase change.

    Snapshots that carry neither are dropped so a long scan does not flood the
    log with identical progress lines.
    """

    logger: logging.Logger = field(default=log)
    level: int = logging.INFO
    _last_phase: str | None = field(default=None, init=False)
    _last_batch: BatchResult | None = field(default=None, init=False)

    def __call__(self, snapshot: ProgressSnapshot) -> None:
        progress = snapshot.progress
        phase = progress.phase.value
        if phase != self._last_phase:
            self._last_phase = phase
            self.logger.log(
                self.level,
                "%s: %s (%s/%s records, %s%%)",
                snapshot.migration,
                phase,
                progress.processed_records,
                progress.total_records,
                progress.progress_percentage,
            )

        batch = snapshot.latest_batch
        if batch is None or batch is self._last_batch:
            return
        self._last_batch = batch
        self.logger.log(
            self.level,
            "%s: unit %s/%s done, %s successful, %s skipped, %s errors (%s%%)",
            snapshot.migration,
            batch.batch_number,
            progress.total_batches,
            batch.successful,
            batch.skipped,
            batch.errors,
            progress.progress_percentage,
        )
        for message in batch.error_messages:
            self.logger.warning("%s: %s", snapshot.migration, message)


if TYPE_CHECKING:
    _reporter_check: ProgressReporter = LoggingProgressReporter()
