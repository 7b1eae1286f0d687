from .redis_client import RedisClient
from .campaigns import CampaignRegistry
from .raw_samples import RawSampleStore
from .summaries import SummaryStore

__all__ = ["RedisClient", "CampaignRegistry", "RawSampleStore", "SummaryStore"]
