"""Tracker engine: builds every component from Settings and runs the headless process."""

import signal
import threading
import time
from dataclasses import dataclass
from typing import Callable

import redis

from collector.collector import Collector, SnapshotFetcher
from collector.vendor_client import VendorClient
from config import Settings, configure_logging
from processor.aggregator import WindowAggregator
from processor.on_demand import OnDemandMetricsCalculator
from processor.retention import RetentionSweeper
from processor.service import TrafficTrackingService
from processor.time_windows import TIME_RANGES, resolve_timezone
from storage import CampaignRegistry, RawSampleStore, RedisClient, SummaryStore


@dataclass
class TrackingEngine:
    settings: Settings
    redis: RedisClient
    campaigns: CampaignRegistry
    samples: RawSampleStore
    summaries: SummaryStore
    service: TrafficTrackingService
    collector: Collector
    sweeper: RetentionSweeper
    started_at: float

    def close(self):
        self.collector.stop()
        self.collector.wait(timeout=5)
        self.redis.close()


def build_engine(
    settings: Settings,
    redis_client: redis.Redis | None = None,
    fetcher: SnapshotFetcher | None = None,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], None] = time.sleep,
) -> TrackingEngine:
    """
    Wire stores, aggregation, queries, collection and retention.

    ``redis_client`` and ``fetcher`` replace the pooled Redis connection and
    the HTTP vendor client, which is how tests run the engine in-process.
    """
    unknown = [key for key in settings.summary_backed_ranges if key not in TIME_RANGES]
    if unknown:
        raise ValueError(f"Unknown summary-backed ranges: {unknown}")
    tz = resolve_timezone(settings.timezone)

    client = RedisClient(settings, client=redis_client)
    campaigns = CampaignRegistry(client)
    samples = RawSampleStore(client, campaigns)
    summaries = SummaryStore(client)

    aggregator = WindowAggregator(samples, summaries, tz=tz, clock=clock, log_level=settings.log_level)
    on_demand = OnDemandMetricsCalculator(samples, log_level=settings.log_level)
    service = TrafficTrackingService(
        campaigns,
        samples,
        summaries,
        aggregator,
        on_demand,
        summary_backed_ranges=settings.summary_backed_ranges,
        tz=tz,
        clock=clock,
        log_level=settings.log_level,
    )
    collector = Collector.from_settings(
        settings,
        campaigns,
        fetcher or VendorClient(settings),
        service.record_sample,
        sleep=sleep,
        clock=clock,
    )
    sweeper = RetentionSweeper(
        samples,
        summaries,
        raw_retention_days=settings.raw_retention_days,
        summary_retention_days=settings.summary_retention_days,
        clock=clock,
        log_level=settings.log_level,
    )
    return TrackingEngine(
        settings=settings,
        redis=client,
        campaigns=campaigns,
        samples=samples,
        summaries=summaries,
        service=service,
        collector=collector,
        sweeper=sweeper,
        started_at=clock(),
    )


class TrackerProcess:
    """
    Headless tracker: the collector loop plus a periodic retention sweep.
    Stops cleanly on SIGINT/SIGTERM.
    """

    def __init__(self, settings: Settings, engine: TrackingEngine | None = None):
        self.settings = settings
        self.log = configure_logging("tracker-process", settings.log_level)
        self.engine = engine or build_engine(settings)
        self._shutdown = threading.Event()
        self._sweep_thread = threading.Thread(target=self._sweep_loop, name="retention-sweep", daemon=True)

    def _sweep_loop(self):
        """Run the retention sweep every ``retention_sweep_interval_sec`` until shutdown."""
        while not self._shutdown.wait(self.settings.retention_sweep_interval_sec):
            try:
                self.engine.sweeper.sweep()
            except Exception as e:
                self.log.error("retention_sweep_failed", error=str(e))

    def _handle_signal(self, signum, frame):
        self.log.info("shutdown_signal_received", signal=signum)
        self._shutdown.set()

    def run(self):
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

        self.log.info(
            "tracker_process_starting",
            interval_ms=self.settings.collection_interval_ms,
            timezone=self.settings.timezone,
        )
        self.engine.collector.start()
        self._sweep_thread.start()
        try:
            self._shutdown.wait()
        finally:
            self.engine.close()
            self.log.info("tracker_process_stopped")


if __name__ == "__main__":
    settings = Settings()
    TrackerProcess(settings).run()
