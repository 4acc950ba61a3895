"""
Offload channel protocol

Messages crossing the boundary to the analysis worker are JSON strings.
Datetimes are encoded as ISO-8601 with their UTC offset so they decode to the
same instant on the other side.

Envelope:
  {"kind": "cluster" | "correlation" | "reset"
           | "ready" | "cluster-result" | "correlation-result",
   "id": "req-1-1700000000000" | null,
   "payload": {...}}
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from newswatch.analysis.correlation import coerce_records
from newswatch.analysis.types import (
    ClusteredEvent,
    CorrelationSignal,
    MarketData,
    NewsItem,
    PredictionMarket,
)
from newswatch.services.errors import WorkerError


class MessageKind(str, Enum):
    CLUSTER = "cluster"
    CORRELATION = "correlation"
    RESET = "reset"
    READY = "ready"
    CLUSTER_RESULT = "cluster-result"
    CORRELATION_RESULT = "correlation-result"


class WorkerMessage(BaseModel):
    kind: MessageKind
    id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class ClusterRequest(BaseModel):
    items: list[NewsItem]
    source_tiers: dict[str, int]


class CorrelationRequest(BaseModel):
    clusters: list[ClusteredEvent]
    # Records already validated by the sender, as plain JSON objects
    predictions: list[Any] = Field(default_factory=list)
    markets: list[Any] = Field(default_factory=list)
    source_types: dict[str, str]


_CLUSTERS = TypeAdapter(list[ClusteredEvent])
_SIGNALS = TypeAdapter(list[CorrelationSignal])


def encode_message(
    kind: MessageKind, request_id: str | None = None, payload: dict[str, Any] | None = None
) -> str:
    return WorkerMessage(kind=kind, id=request_id, payload=payload or {}).model_dump_json()


def decode_message(raw: str | bytes) -> WorkerMessage:
    """Raises WorkerError if the envelope is malformed."""
    try:
        return WorkerMessage.model_validate_json(raw)
    except ValidationError as exc:
        raise WorkerError(f"Malformed worker message: {exc}") from exc


def _records(records: list[Any], model: type[BaseModel], label: str) -> list[Any]:
    # Only records the analyzer would accept cross the channel
    return [r.model_dump(mode="json") for r in coerce_records(records, model, label)]


def cluster_request_payload(items: list[NewsItem], source_tiers: dict[str, int]) -> dict[str, Any]:
    return ClusterRequest(items=items, source_tiers=source_tiers).model_dump(mode="json")


def correlation_request_payload(
    clusters: list[ClusteredEvent],
    predictions: list[Any],
    markets: list[Any],
    source_types: dict[str, str],
) -> dict[str, Any]:
    return {
        "clusters": _CLUSTERS.dump_python(clusters, mode="json"),
        "predictions": _records(predictions, PredictionMarket, "prediction"),
        "markets": _records(markets, MarketData, "market"),
        "source_types": source_types,
    }


def clusters_payload(clusters: list[ClusteredEvent]) -> dict[str, Any]:
    return {"clusters": _CLUSTERS.dump_python(clusters, mode="json")}


def signals_payload(signals: list[CorrelationSignal]) -> dict[str, Any]:
    return {"signals": _SIGNALS.dump_python(signals, mode="json")}


def load_clusters(payload: dict[str, Any]) -> list[ClusteredEvent]:
    return _CLUSTERS.validate_python(payload.get("clusters", []))


def load_signals(payload: dict[str, Any]) -> list[CorrelationSignal]:
    return _SIGNALS.validate_python(payload.get("signals", []))
