"""Retention sweep for raw samples and closed window summaries."""

import time
from dataclasses import dataclass
from typing import Callable

from config import configure_logging
from processor.time_windows import TIME_RANGES
from storage.raw_samples import RawSampleStore
from storage.summaries import SummaryStore

DAY_MS = 86_400_000


@dataclass
class SweepResult:
    raw_samples_deleted: int
    summaries_deleted: int
    raw_cutoff: float
    summary_cutoff: float


class RetentionSweeper:
    """
    Deletes raw samples older than ``raw_retention_days`` and summaries whose
    window ended more than ``summary_retention_days`` ago. A summary past that
    horizon is necessarily complete, so open windows are never touched.
    """

    def __init__(
        self,
        samples: RawSampleStore,
        summaries: SummaryStore,
        raw_retention_days: int = 90,
        summary_retention_days: int = 180,
        clock: Callable[[], float] = time.time,
        log_level: str = "INFO",
    ):
        if raw_retention_days < 1 or summary_retention_days < 1:
            raise ValueError("retention must be at least one day")
        self._samples = samples
        self._summaries = summaries
        self.raw_retention_days = raw_retention_days
        self.summary_retention_days = summary_retention_days
        self._clock = clock
        self.log = configure_logging("retention-sweeper", log_level)

    def sweep(self, now_ms: float | None = None, retention_days: int | None = None) -> SweepResult:
        """
        Run one sweep as of ``now_ms`` (defaults to the sweeper's clock).
        ``retention_days`` overrides both horizons for this run.
        """
        if retention_days is not None and retention_days < 1:
            raise ValueError("retention must be at least one day")
        if now_ms is None:
            now_ms = self._clock() * 1000
        raw_days = retention_days or self.raw_retention_days
        summary_days = retention_days or self.summary_retention_days
        raw_cutoff = now_ms - raw_days * DAY_MS
        summary_cutoff = now_ms - summary_days * DAY_MS

        raw_deleted = self._samples.delete_before(raw_cutoff)
        summaries_deleted = self._summaries.delete_ended_before(
            self._samples.tracked_campaigns(), list(TIME_RANGES), summary_cutoff
        )

        self.log.info(
            "retention_sweep_completed",
            raw_retention_days=raw_days,
            summary_retention_days=summary_days,
            raw_samples_deleted=raw_deleted,
            summaries_deleted=summaries_deleted,
        )
        return SweepResult(
            raw_samples_deleted=raw_deleted,
            summaries_deleted=summaries_deleted,
            raw_cutoff=raw_cutoff,
            summary_cutoff=summary_cutoff,
        )
