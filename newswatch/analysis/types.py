"""
Analysis types using Pydantic models.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ThreatLevel(str, Enum):
    """Threat level tags, ranked by ``priority``."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @property
    def priority(self) -> int:
        return _THREAT_PRIORITY[self]

    @classmethod
    def parse(cls, value: Any) -> "ThreatLevel":
        """Map a free-form tag to a level; unknown tags become INFO."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.INFO


_THREAT_PRIORITY = {
    ThreatLevel.CRITICAL: 5,
    ThreatLevel.HIGH: 4,
    ThreatLevel.MEDIUM: 3,
    ThreatLevel.LOW: 2,
    ThreatLevel.INFO: 1,
}


class SourceType(str, Enum):
    """Editorial category of a news source."""

    WIRE = "wire"
    GOV = "gov"
    INTEL = "intel"
    MAINSTREAM = "mainstream"
    MARKET = "market"
    TECH = "tech"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "SourceType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.OTHER


class StreamType(str, Enum):
    NEWS = "news"
    MARKET = "market"
    PREDICTION = "prediction"


class SignalType(str, Enum):
    VELOCITY_SPIKE = "velocity_spike"
    CONVERGENCE = "convergence"
    TRIANGULATION = "triangulation"
    PREDICTION_LEADS_NEWS = "prediction_leads_news"
    NEWS_MOVES_PREDICTION = "news_moves_prediction"
    NEWS_LEADS_MARKETS = "news_leads_markets"
    SILENT_DIVERGENCE = "silent_divergence"


class Threat(BaseModel):
    """Threat classification attached to an item or event."""

    model_config = ConfigDict(frozen=True)

    level: ThreatLevel = ThreatLevel.INFO
    category: str = "general"
    confidence: float = 0.5
    source: str = "keyword"

    @field_validator("level", mode="before")
    @classmethod
    def _parse_level(cls, value: Any) -> ThreatLevel:
        return ThreatLevel.parse(value)


class NewsItem(BaseModel):
    """One ingested headline. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    source: str
    title: str = ""
    link: str = ""
    published_at: datetime
    is_alert: bool = False
    summary: str | None = None
    trust_score: float | None = None
    lat: float | None = None
    lon: float | None = None
    location_name: str | None = None
    monitor_color: str | None = None
    threat: Threat | None = None

    @field_validator("published_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def has_geo(self) -> bool:
        return self.lat is not None and self.lon is not None


class SourceRef(BaseModel):
    """A contributing source of a clustered event."""

    model_config = ConfigDict(frozen=True)

    name: str
    url: str
    tier: int


class ClusteredEvent(BaseModel):
    """A deduplicated group of news items describing one occurrence."""

    id: str
    primary_title: str
    primary_link: str
    primary_source: str
    source_count: int
    top_sources: list[SourceRef] = Field(default_factory=list)
    all_items: list[NewsItem] = Field(default_factory=list)
    first_seen: datetime
    last_updated: datetime
    is_alert: bool = False
    monitor_color: str | None = None
    velocity: float = 0.0
    threat: Threat | None = None
    lat: float | None = None
    lon: float | None = None

    @field_validator("first_seen", "last_updated")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def _check_invariants(self) -> "ClusteredEvent":
        if self.source_count != len(self.all_items):
            raise ValueError(
                f"source_count {self.source_count} != {len(self.all_items)} items"
            )
        if len(self.top_sources) > 5:
            raise ValueError("top_sources holds more than 5 entries")
        return self

    @property
    def has_geo(self) -> bool:
        return self.lat is not None and self.lon is not None


class PredictionMarket(BaseModel):
    """Prediction market quote; ``yes_price`` is in percentage points (0-100)."""

    id: str
    title: str
    yes_price: float = Field(ge=0, le=100, allow_inf_nan=False)
    volume: float | None = None
    timestamp: datetime | None = None


class MarketData(BaseModel):
    """Quote for a tradable instrument."""

    symbol: str = Field(min_length=1)
    name: str = ""
    price: float = Field(gt=0, allow_inf_nan=False)
    change_percent: float | None = None
    timestamp: datetime | None = None


class CorrelationSignal(BaseModel):
    """A detected cross-stream correlation. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: SignalType
    title: str
    description: str
    confidence: float
    timestamp: datetime
    dedup_key: str
    stream_types: list[StreamType]
    subject: str
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class StreamSnapshot(BaseModel):
    """Values derived by the previous correlation pass, used to compute deltas."""

    taken_at: datetime
    cluster_velocity: dict[str, float] = Field(default_factory=dict)
    market_prices: dict[str, float] = Field(default_factory=dict)
    prediction_prices: dict[str, float] = Field(default_factory=dict)

    @field_validator("taken_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)
