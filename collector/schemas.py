"""Canonical sample and campaign schemas shared by the collector, storage and processor."""

from enum import Enum

from pydantic import BaseModel, Field


class ProjectStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"
    UNKNOWN = "unknown"


class CollectionSource(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    WEBHOOK = "webhook"


class CampaignState(str, Enum):
    CREATED = "created"
    OK = "ok"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"
    DELETED = "deleted"


COLLECTABLE_STATES = frozenset({CampaignState.CREATED, CampaignState.OK, CampaignState.RUNNING})


class CountryStat(BaseModel):
    country: str
    hits: int = Field(default=0, ge=0)
    visits: int = Field(default=0, ge=0)
    views: int = Field(default=0, ge=0)


class DailyStat(BaseModel):
    hits: int = 0
    visits: int = 0
    views: int = 0


class RawSample(BaseModel):
    """One polled vendor snapshot. Counters are cumulative since campaign inception."""

    campaign_id: str = Field(min_length=1)
    timestamp: float = Field(gt=0, description="Unix epoch in milliseconds")
    hits: int = Field(default=0, ge=0)
    visits: int = Field(default=0, ge=0)
    views: int = Field(default=0, ge=0)
    unique_visitors: int = Field(default=0, ge=0)
    speed: float = Field(default=0.0, ge=0)
    bounce_rate: float = Field(default=0.0, ge=0)
    avg_session_duration: float = Field(default=0.0, ge=0)
    country_breakdown: list[CountryStat] = Field(default_factory=list)
    daily_stats: dict[str, DailyStat] = Field(default_factory=dict)
    project_status: ProjectStatus = ProjectStatus.ACTIVE
    collection_source: CollectionSource = CollectionSource.AUTO


class Campaign(BaseModel):
    id: str = Field(min_length=1)
    title: str = ""
    state: CampaignState = CampaignState.CREATED
    is_archived: bool = False
    vendor_project_id: str | None = None
    created_at: float | None = Field(default=None, description="Unix epoch in milliseconds")

    @property
    def is_vendor_tracked(self) -> bool:
        return bool(self.vendor_project_id)

    @property
    def is_collectable(self) -> bool:
        return (
            not self.is_archived
            and self.state in COLLECTABLE_STATES
            and self.is_vendor_tracked
        )
