import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    # Clustering
    cluster_similarity_threshold: float = Field(
        default=0.4, alias="CLUSTER_SIMILARITY_THRESHOLD"
    )
    velocity_half_life_minutes: float = Field(
        default=60.0, alias="VELOCITY_HALF_LIFE_MINUTES"
    )
    velocity_window_hours: float = Field(default=6.0, alias="VELOCITY_WINDOW_HOURS")

    # Semantic refinement
    semantic_min_clusters: int = Field(default=5, alias="SEMANTIC_MIN_CLUSTERS")
    semantic_similarity_threshold: float = Field(
        default=0.75, alias="SEMANTIC_SIMILARITY_THRESHOLD"
    )
    semantic_oracle_url: str | None = Field(default=None, alias="SEMANTIC_ORACLE_URL")
    semantic_oracle_timeout: float = Field(
        default=10.0, alias="SEMANTIC_ORACLE_TIMEOUT"
    )

    # Analysis worker
    worker_ready_timeout: float = Field(default=10.0, alias="WORKER_READY_TIMEOUT")
    cluster_request_timeout: float = Field(
        default=30.0, alias="CLUSTER_REQUEST_TIMEOUT"
    )
    correlation_request_timeout: float = Field(
        default=10.0, alias="CORRELATION_REQUEST_TIMEOUT"
    )

    # Correlation
    signal_dedup_minutes: float = Field(default=30.0, alias="SIGNAL_DEDUP_MINUTES")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = {"populate_by_name": True}

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment (after .env is loaded)."""
        return cls.model_validate(dict(os.environ))


global_settings = Settings.from_env()
