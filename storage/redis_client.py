"""Resilient Redis client with connection pooling and circuit breaker."""

import threading
import time
from typing import Any, Callable

import redis

from config import Settings, configure_logging
from processor.errors import PersistenceError


class CircuitBreaker:
    """
    Three-state circuit breaker shared by every thread touching Redis.

    closed:    calls pass; consecutive failures are counted.
    open:      ``failure_threshold`` failures reached; calls are rejected.
    half_open: ``recovery_timeout`` seconds after the last failure one probe
               call is let through; its outcome closes or re-opens the circuit.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self.state = "closed"
        self.failure_count = 0
        self.opened_at = 0.0

    def can_execute(self) -> bool:
        with self._lock:
            if self.state != "open":
                return True
            if self._clock() - self.opened_at >= self.recovery_timeout:
                self.state = "half_open"
                return True
            return False

    def record_success(self):
        with self._lock:
            self.failure_count = 0
            self.state = "closed"

    def record_failure(self):
        with self._lock:
            self.failure_count += 1
            if self.state == "half_open" or self.failure_count >= self.failure_threshold:
                self.state = "open"
                self.opened_at = self._clock()


class CircuitOpenError(PersistenceError):
    pass


class RedisClient:
    """
    Redis access for the sample and summary stores.

    Every store operation goes through ``execute``: the circuit breaker fails
    fast while Redis is down, connection and timeout errors are retried with
    backoff, and anything Redis still rejects surfaces as PersistenceError.
    A pre-built ``client`` may be injected in place of the pool.
    """

    def __init__(self, settings: Settings, client: redis.Redis | None = None):
        self.log = configure_logging("redis-client", settings.log_level)
        self._client = client
        self._pool = None
        if client is None:
            self._pool = redis.ConnectionPool.from_url(
                settings.redis_url,
                max_connections=settings.redis_pool_size,
                decode_responses=True,
            )
            self.log.info("redis_pool_created", url=settings.redis_url, pool_size=settings.redis_pool_size)
        self._circuit = CircuitBreaker(failure_threshold=5, recovery_timeout=30)

    def get_client(self) -> redis.Redis:
        if self._client is not None:
            return self._client
        return redis.Redis(connection_pool=self._pool)

    def execute(self, func: Callable[[redis.Redis], Any], max_retries: int = 3) -> Any:
        """Run a Redis operation under the circuit breaker, retrying transient failures."""
        if not self._circuit.can_execute():
            raise CircuitOpenError("Redis circuit breaker is OPEN, failing fast")

        last_error: Exception | None = None
        for attempt in range(max_retries):
            try:
                result = func(self.get_client())
                self._circuit.record_success()
                return result
            except (redis.ConnectionError, redis.TimeoutError) as e:
                last_error = e
                self._circuit.record_failure()
                if attempt < max_retries - 1:
                    backoff = 0.1 * (2 ** attempt)
                    self.log.warning(
                        "redis_retry",
                        attempt=attempt + 1,
                        backoff=backoff,
                        error=str(e),
                    )
                    time.sleep(backoff)
            except redis.RedisError as e:
                raise PersistenceError(f"Redis operation failed: {e}") from e

        raise PersistenceError(f"Redis unavailable after {max_retries} attempts: {last_error}") from last_error

    def ping(self) -> bool:
        try:
            return bool(self.execute(lambda r: r.ping()))
        except PersistenceError:
            return False

    def close(self):
        if self._pool is not None:
            self._pool.disconnect()
        elif self._client is not None:
            self._client.close()
        self.log.info("redis_closed")

    @property
    def circuit_state(self) -> str:
        return self._circuit.state
