"""Campaign lookup, the seam between the tracker and the campaign management system."""

from collector.schemas import Campaign
from processor.errors import CampaignNotFound, ValidationError
from storage.redis_client import RedisClient


class CampaignRegistry:
    """
    Campaigns known to the tracker, kept in one Redis hash (id → JSON).

    The surrounding campaign CRUD owns these records and mirrors them here via
    ``upsert``/``remove``; the tracker only reads them.
    """

    KEY = "traffic:campaigns"

    def __init__(self, client: RedisClient):
        self._client = client

    def upsert(self, campaign: Campaign) -> None:
        payload = campaign.model_dump_json()
        self._client.execute(lambda r: r.hset(self.KEY, campaign.id, payload))

    def remove(self, campaign_id: str) -> bool:
        return bool(self._client.execute(lambda r: r.hdel(self.KEY, campaign_id)))

    def get(self, campaign_id: str) -> Campaign | None:
        raw = self._client.execute(lambda r: r.hget(self.KEY, campaign_id))
        return Campaign.model_validate_json(raw) if raw else None

    def require_tracked(self, campaign_id: str) -> Campaign:
        """Return the campaign or raise ValidationError if it is unknown or not vendor-tracked."""
        campaign = self.get(campaign_id)
        if campaign is None:
            raise CampaignNotFound(f"Campaign {campaign_id} not found")
        if not campaign.is_vendor_tracked:
            raise ValidationError(f"Campaign {campaign_id} is not tracked by the traffic vendor")
        return campaign

    def list_all(self) -> list[Campaign]:
        raw = self._client.execute(lambda r: r.hgetall(self.KEY))
        return [Campaign.model_validate_json(v) for v in raw.values()]

    def list_eligible(self) -> list[Campaign]:
        """Non-archived, vendor-tracked campaigns in a collectable lifecycle state."""
        campaigns = [c for c in self.list_all() if c.is_collectable]
        return sorted(campaigns, key=lambda c: c.id)
