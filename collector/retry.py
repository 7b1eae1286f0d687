"""Explicit retry loop for vendor fetches with a typed policy and a tagged result."""

import random
import time
from dataclasses import dataclass, field
from typing import Callable

import structlog

from collector.schemas import RawSample
from processor.errors import VendorTransientError


def is_transient(error: Exception) -> bool:
    return isinstance(error, VendorTransientError)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: ``base_delay * 2^(attempt-1)`` seconds plus up to ``max_jitter``."""

    max_attempts: int = 3
    base_delay: float = 2.0
    max_jitter: float = 0.25
    retryable: Callable[[Exception], bool] = field(default=is_transient)

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * 2 ** (attempt - 1) + random.uniform(0, self.max_jitter)


@dataclass
class FetchResult:
    campaign_id: str
    sample: RawSample | None = None
    error: Exception | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.sample is not None


def fetch_with_retry(
    campaign_id: str,
    fetch: Callable[[], RawSample],
    policy: RetryPolicy,
    log: structlog.BoundLogger,
    sleep: Callable[[float], None] = time.sleep,
) -> FetchResult:
    """
    Call ``fetch`` until it succeeds, fails with a non-retryable error, or the
    policy's attempts run out. Never raises; the outcome is in the result.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return FetchResult(campaign_id=campaign_id, sample=fetch(), attempts=attempt)
        except Exception as e:
            retryable = policy.retryable(e)
            if not retryable or attempt == policy.max_attempts:
                log.error(
                    "vendor_fetch_failed",
                    campaign_id=campaign_id,
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    retryable=retryable,
                    error_type=type(e).__name__,
                    error=str(e),
                    status=getattr(e, "status", None),
                )
                return FetchResult(campaign_id=campaign_id, error=e, attempts=attempt)

            delay = policy.delay_for(attempt)
            log.warning(
                "vendor_retry",
                campaign_id=campaign_id,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                backoff=round(delay, 3),
                error_type=type(e).__name__,
                error=str(e),
            )
            sleep(delay)

    raise ValueError("RetryPolicy.max_attempts must be at least 1")
