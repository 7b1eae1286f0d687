"""Append-only raw sample storage using Redis sorted sets."""

from collector.schemas import RawSample
from storage.campaigns import CampaignRegistry
from storage.redis_client import RedisClient


def _member(timestamp: float) -> str:
    return repr(float(timestamp))


class RawSampleStore:
    """
    Stores each campaign's samples in two keys:

        traffic:samples:{campaign}       sorted set, member = timestamp, score = timestamp
        traffic:samples:{campaign}:data  hash, field = timestamp, value = sample JSON

    ZADD NX on the index makes ``append`` idempotent per (campaign, timestamp);
    the sorted set serves range and "latest before" queries.
    """

    TRACKED_KEY = "traffic:tracked"

    def __init__(self, client: RedisClient, campaigns: CampaignRegistry):
        self._client = client
        self._campaigns = campaigns

    @staticmethod
    def _index_key(campaign_id: str) -> str:
        return f"traffic:samples:{campaign_id}"

    @staticmethod
    def _data_key(campaign_id: str) -> str:
        return f"traffic:samples:{campaign_id}:data"

    def append(self, sample: RawSample) -> bool:
        """Store a sample. Returns False if one already exists for that timestamp."""
        self._campaigns.require_tracked(sample.campaign_id)
        member = _member(sample.timestamp)
        payload = sample.model_dump_json()
        index_key = self._index_key(sample.campaign_id)
        data_key = self._data_key(sample.campaign_id)

        def _op(r):
            # one MULTI/EXEC, so a retried write never finds half of itself applied
            pipe = r.pipeline(transaction=True)
            pipe.zadd(index_key, {member: sample.timestamp}, nx=True)
            pipe.hsetnx(data_key, member, payload)
            pipe.sadd(self.TRACKED_KEY, sample.campaign_id)
            added, _, _ = pipe.execute()
            return bool(added)

        return self._client.execute(_op)

    def _load(self, r, campaign_id: str, members: list[str]) -> list[RawSample]:
        if not members:
            return []
        payloads = r.hmget(self._data_key(campaign_id), members)
        return [RawSample.model_validate_json(p) for p in payloads if p]

    def query_range(self, campaign_id: str, start: float, end: float) -> list[RawSample]:
        """Samples with start <= timestamp <= end, ascending."""
        def _query(r):
            members = r.zrangebyscore(self._index_key(campaign_id), start, end)
            return self._load(r, campaign_id, members)

        return self._client.execute(_query)

    def latest_before(self, campaign_id: str, timestamp: float) -> RawSample | None:
        """The most recent sample strictly before ``timestamp``."""
        def _query(r):
            members = r.zrevrangebyscore(
                self._index_key(campaign_id), f"({timestamp}", "-inf", start=0, num=1
            )
            samples = self._load(r, campaign_id, members)
            return samples[0] if samples else None

        return self._client.execute(_query)

    def page(
        self, campaign_id: str, start: float, end: float, offset: int = 0, limit: int = 100
    ) -> tuple[list[RawSample], int]:
        """Newest-first page of samples in [start, end] plus the total count in that range."""
        def _query(r):
            index_key = self._index_key(campaign_id)
            members = r.zrevrangebyscore(index_key, end, start, start=offset, num=limit)
            total = r.zcount(index_key, start, end)
            return self._load(r, campaign_id, members), total

        return self._client.execute(_query)

    def tracked_campaigns(self) -> list[str]:
        return sorted(self._client.execute(lambda r: r.smembers(self.TRACKED_KEY)))

    def count(self) -> int:
        def _query(r):
            return sum(r.zcard(self._index_key(cid)) for cid in r.smembers(self.TRACKED_KEY))

        return self._client.execute(_query)

    def delete_before(self, cutoff: float) -> int:
        """Delete every sample older than ``cutoff``. Returns the number removed."""
        def _op(r):
            deleted = 0
            for campaign_id in r.smembers(self.TRACKED_KEY):
                index_key = self._index_key(campaign_id)
                members = r.zrangebyscore(index_key, "-inf", f"({cutoff}")
                if not members:
                    continue
                pipe = r.pipeline()
                pipe.hdel(self._data_key(campaign_id), *members)
                pipe.zremrangebyscore(index_key, "-inf", f"({cutoff}")
                pipe.execute()
                deleted += len(members)
            return deleted

        return self._client.execute(_op)
