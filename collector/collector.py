"""Scheduled collection of vendor snapshots for every eligible campaign."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field, replace
from typing import Callable, Protocol

from collector.retry import FetchResult, RetryPolicy, fetch_with_retry
from collector.schemas import Campaign, CollectionSource, RawSample
from config import Settings, configure_logging
from processor.errors import ValidationError
from storage.campaigns import CampaignRegistry

MIN_INTERVAL_MS = 10_000


class SnapshotFetcher(Protocol):
    def fetch_snapshot(
        self,
        campaign: Campaign,
        timestamp_ms: float | None = None,
        source: CollectionSource = CollectionSource.AUTO,
    ) -> RawSample: ...


@dataclass
class CollectionRunSummary:
    total_campaigns: int = 0
    successful: int = 0
    errors: int = 0
    started_at: float = 0.0
    finished_at: float = 0.0
    failed_campaigns: list[str] = field(default_factory=list)


@dataclass
class CollectorStats:
    runs: int = 0
    ticks_skipped: int = 0
    samples_collected: int = 0
    fetch_errors: int = 0


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


class Collector:
    """
    Polls the vendor for every eligible campaign on a fixed interval.

    One loop thread drives ticks. Each tick fetches campaigns in batches of
    ``max_concurrent_requests`` on a thread pool, pausing ``batch_delay``
    seconds between batches, and hands every snapshot to ``record``. A
    failing campaign never aborts the rest of its batch. Ticks are
    single-flight: one that fires while a collection is still running is
    skipped.
    """

    def __init__(
        self,
        campaigns: CampaignRegistry,
        fetcher: SnapshotFetcher,
        record: Callable[[RawSample], bool],
        interval_ms: int = 60_000,
        max_concurrent_requests: int = 3,
        retry_policy: RetryPolicy | None = None,
        batch_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        log_level: str = "INFO",
    ):
        self._campaigns = campaigns
        self._fetcher = fetcher
        self._record = record
        self.interval_ms = interval_ms
        self.max_concurrent_requests = max_concurrent_requests
        self.retry_policy = retry_policy or RetryPolicy()
        self.batch_delay = batch_delay
        self._sleep = sleep
        self._clock = clock
        self.log = configure_logging("collector", log_level)

        self.stats = CollectorStats()
        self.last_run: CollectionRunSummary | None = None
        self._next_run_at: float | None = None
        self._collect_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        campaigns: CampaignRegistry,
        fetcher: SnapshotFetcher,
        record: Callable[[RawSample], bool],
        **kwargs,
    ) -> "Collector":
        policy = RetryPolicy(
            max_attempts=_clamp(settings.retry_attempts, 1, 5),
            base_delay=_clamp(settings.retry_base_delay_ms, 1000, 10_000) / 1000,
            max_jitter=settings.retry_jitter_ms / 1000,
        )
        return cls(
            campaigns,
            fetcher,
            record,
            interval_ms=settings.collection_interval_ms,
            max_concurrent_requests=_clamp(settings.max_concurrent_requests, 1, 10),
            retry_policy=policy,
            batch_delay=settings.batch_delay_ms / 1000,
            log_level=settings.log_level,
            **kwargs,
        )

    @property
    def is_running(self) -> bool:
        return self._stop_event is not None and not self._stop_event.is_set()

    # ─── Scheduling ─────────────────────────────────────────────────

    def start(self, interval_ms: int | None = None) -> bool:
        """Start the loop thread. Returns False if it is already running."""
        with self._state_lock:
            if self.is_running:
                self.log.warning("collector_already_running", interval_ms=self.interval_ms)
                return False
            if interval_ms is not None:
                self.interval_ms = interval_ms
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._next_run_at = self._clock() * 1000 + self.interval_ms
            self._thread = threading.Thread(
                target=self._run_loop, args=(stop_event,), name="traffic-collector", daemon=True
            )
            self._thread.start()
        self.log.info("collector_started", interval_ms=self.interval_ms)
        return True

    def stop(self) -> bool:
        """Stop scheduling further ticks. An in-flight collection runs to completion."""
        with self._state_lock:
            if not self.is_running:
                return False
            self._stop_event.set()
            self._next_run_at = None
        self.log.info("collector_stopped")
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Join the loop thread. Returns True once it has exited."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _run_loop(self, stop_event: threading.Event):
        while not stop_event.wait(self.interval_ms / 1000):
            self._next_run_at = self._clock() * 1000 + self.interval_ms
            try:
                self.collect_all()
            except Exception as e:
                self.log.error("collection_tick_failed", error=str(e), error_type=type(e).__name__)

    # ─── Collection ─────────────────────────────────────────────────

    def _fetch_and_record(self, campaign: Campaign, source: CollectionSource) -> FetchResult:
        result = fetch_with_retry(
            campaign.id,
            lambda: self._fetcher.fetch_snapshot(campaign, self._clock() * 1000, source),
            self.retry_policy,
            self.log,
            sleep=self._sleep,
        )
        if not result.ok:
            return result
        try:
            self._record(result.sample)
        except Exception as e:
            self.log.error(
                "sample_record_failed",
                campaign_id=campaign.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return FetchResult(campaign_id=campaign.id, error=e, attempts=result.attempts)
        return result

    def collect_all(self) -> CollectionRunSummary | None:
        """
        Run one collection over every eligible campaign.

        Returns None without doing anything when another collection is
        already in progress.
        """
        if not self._collect_lock.acquire(blocking=False):
            self.stats.ticks_skipped += 1
            self.log.warning("tick_skipped", reason="previous collection still running")
            return None
        try:
            return self._collect_all()
        finally:
            self._collect_lock.release()

    def _collect_all(self) -> CollectionRunSummary:
        campaigns = self._campaigns.list_eligible()
        summary = CollectionRunSummary(total_campaigns=len(campaigns), started_at=self._clock() * 1000)
        self.log.info("collection_started", campaigns=len(campaigns))

        batch_size = max(self.max_concurrent_requests, 1)
        if campaigns:
            with ThreadPoolExecutor(max_workers=batch_size, thread_name_prefix="collector") as pool:
                for i in range(0, len(campaigns), batch_size):
                    batch = campaigns[i:i + batch_size]
                    results = pool.map(lambda c: self._fetch_and_record(c, CollectionSource.AUTO), batch)
                    for result in results:
                        if result.ok:
                            summary.successful += 1
                        else:
                            summary.errors += 1
                            summary.failed_campaigns.append(result.campaign_id)
                    if i + batch_size < len(campaigns):
                        self._sleep(self.batch_delay)

        summary.finished_at = self._clock() * 1000
        self.stats.runs += 1
        self.stats.samples_collected += summary.successful
        self.stats.fetch_errors += summary.errors
        self.last_run = summary
        self.log.info(
            "collection_completed",
            total_campaigns=summary.total_campaigns,
            successful=summary.successful,
            errors=summary.errors,
            duration_ms=round(summary.finished_at - summary.started_at, 1),
        )
        return summary

    def collect_campaign(self, campaign_id: str) -> FetchResult:
        """Fetch one campaign immediately, tagged as a manual collection."""
        campaign = self._campaigns.require_tracked(campaign_id)
        result = self._fetch_and_record(campaign, CollectionSource.MANUAL)
        if result.ok:
            self.stats.samples_collected += 1
        else:
            self.stats.fetch_errors += 1
        self.log.info("manual_collection", campaign_id=campaign_id, ok=result.ok, attempts=result.attempts)
        return result

    # ─── Configuration ──────────────────────────────────────────────

    def update_interval(self, interval_ms: int) -> None:
        """Change the tick interval, restarting the loop if it is running."""
        if interval_ms < MIN_INTERVAL_MS:
            raise ValidationError(f"interval must be at least {MIN_INTERVAL_MS} ms")
        was_running = self.stop()
        self.interval_ms = interval_ms
        if was_running:
            self.start()
        self.log.info("collection_interval_updated", interval_ms=interval_ms, restarted=was_running)

    def update_configuration(
        self,
        max_concurrent_requests: int | None = None,
        retry_attempts: int | None = None,
        retry_delay_ms: int | None = None,
    ) -> None:
        """Adjust concurrency and retry settings; values are clamped to safe bounds."""
        if max_concurrent_requests is not None:
            self.max_concurrent_requests = _clamp(max_concurrent_requests, 1, 10)
        if retry_attempts is not None:
            self.retry_policy = replace(self.retry_policy, max_attempts=_clamp(retry_attempts, 1, 5))
        if retry_delay_ms is not None:
            self.retry_policy = replace(self.retry_policy, base_delay=_clamp(retry_delay_ms, 1000, 10_000) / 1000)
        self.log.info(
            "collector_configuration_updated",
            max_concurrent_requests=self.max_concurrent_requests,
            retry_attempts=self.retry_policy.max_attempts,
            retry_delay_ms=int(self.retry_policy.base_delay * 1000),
        )

    def status(self) -> dict:
        return {
            "running": self.is_running,
            "collecting": self._collect_lock.locked(),
            "interval_ms": self.interval_ms,
            "next_run_at": self._next_run_at if self.is_running else None,
            "max_concurrent_requests": self.max_concurrent_requests,
            "retry_attempts": self.retry_policy.max_attempts,
            "retry_delay_ms": int(self.retry_policy.base_delay * 1000),
            "batch_delay_ms": int(self.batch_delay * 1000),
            "last_run": asdict(self.last_run) if self.last_run else None,
            "stats": asdict(self.stats),
        }
