"""Window summary storage with per-key serialized read-modify-write."""

from typing import Callable

from processor.schemas import WindowSummary
from storage.redis_client import RedisClient

SummaryMutator = Callable[[WindowSummary | None], WindowSummary | None]


def _field(window_start: float) -> str:
    return repr(float(window_start))


class SummaryStore:
    """
    One Redis hash per (campaign, range) holds the summaries, keyed by window start,
    so (campaign, range, window_start) can only ever map to one summary.
    A sorted set per (campaign, range) orders the windows for history queries.

    ``update`` runs the mutator inside WATCH/MULTI on the summary hash: a
    concurrent writer to the same key aborts the transaction and the mutator is
    re-run on the fresh state, so no update is lost.
    """

    def __init__(self, client: RedisClient):
        self._client = client

    @staticmethod
    def _data_key(campaign_id: str, range_key: str) -> str:
        return f"traffic:summary:{campaign_id}:{range_key}"

    @staticmethod
    def _index_key(campaign_id: str, range_key: str) -> str:
        return f"traffic:summary_idx:{campaign_id}:{range_key}"

    def get(self, campaign_id: str, range_key: str, window_start: float) -> WindowSummary | None:
        raw = self._client.execute(
            lambda r: r.hget(self._data_key(campaign_id, range_key), _field(window_start))
        )
        return WindowSummary.model_validate_json(raw) if raw else None

    def update(
        self, campaign_id: str, range_key: str, window_start: float, mutate: SummaryMutator
    ) -> WindowSummary | None:
        """
        Apply ``mutate`` to the stored summary (None if absent) and persist the result.
        A mutator returning None leaves the stored state untouched.
        """
        data_key = self._data_key(campaign_id, range_key)
        index_key = self._index_key(campaign_id, range_key)
        field = _field(window_start)

        def _txn(pipe):
            raw = pipe.hget(data_key, field)
            current = WindowSummary.model_validate_json(raw) if raw else None
            updated = mutate(current)
            if updated is None:
                return current
            pipe.multi()
            pipe.hset(data_key, field, updated.model_dump_json())
            pipe.zadd(index_key, {field: window_start})
            return updated

        return self._client.execute(
            lambda r: r.transaction(_txn, data_key, value_from_callable=True)
        )

    def history(self, campaign_id: str, range_key: str, limit: int = 24) -> list[WindowSummary]:
        """The most recent ``limit`` summaries, ascending by window start."""
        def _query(r):
            fields = r.zrevrange(self._index_key(campaign_id, range_key), 0, limit - 1)
            if not fields:
                return []
            payloads = r.hmget(self._data_key(campaign_id, range_key), fields)
            summaries = [WindowSummary.model_validate_json(p) for p in payloads if p]
            summaries.reverse()
            return summaries

        return self._client.execute(_query)

    def count(self, campaign_ids: list[str], range_keys: list[str]) -> int:
        def _query(r):
            return sum(
                r.hlen(self._data_key(cid, key)) for cid in campaign_ids for key in range_keys
            )

        return self._client.execute(_query)

    def delete_ended_before(self, campaign_ids: list[str], range_keys: list[str], cutoff: float) -> int:
        """Delete summaries whose window ended before ``cutoff``. Returns the number removed."""
        def _op(r):
            deleted = 0
            for campaign_id in campaign_ids:
                for range_key in range_keys:
                    data_key = self._data_key(campaign_id, range_key)
                    index_key = self._index_key(campaign_id, range_key)
                    candidates = r.zrangebyscore(index_key, "-inf", f"({cutoff}")
                    if not candidates:
                        continue
                    expired = [
                        field
                        for field, payload in zip(candidates, r.hmget(data_key, candidates))
                        if payload is None or WindowSummary.model_validate_json(payload).window_end < cutoff
                    ]
                    if not expired:
                        continue
                    pipe = r.pipeline()
                    pipe.hdel(data_key, *expired)
                    pipe.zrem(index_key, *expired)
                    pipe.execute()
                    deleted += len(expired)
            return deleted

        return self._client.execute(_op)
