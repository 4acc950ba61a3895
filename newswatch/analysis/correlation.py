"""
Correlation analysis - detects notable joint movement across news clusters,
prediction markets and market quotes.

Detects:
- Velocity spikes (a story accelerating since the previous pass)
- Convergence / triangulation (one story confirmed by several source types)
- Prediction markets moving with or ahead of the news
- Market moves explained by alert-level news, or by nothing at all

Delta-based detectors compare against the snapshot produced by the previous
pass; without one they stay silent. Every pass returns a fresh snapshot.
"""

import hashlib
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

from loguru import logger
from pydantic import BaseModel, ValidationError

from newswatch.analysis.clustering import tokenize
from newswatch.analysis.config import (
    CONVERGENCE_MIN_SOURCE_TYPES,
    DEDUP_BUCKET_HOURS,
    MARKET_MOVE_PERCENT,
    PREDICTION_MATCH_MIN_TOKENS,
    PREDICTION_SHIFT_POINTS,
    SILENT_DIVERGENCE_PERCENT,
    TRIANGULATION_SOURCE_TYPES,
    VELOCITY_SPIKE_MIN_INCREASE,
    VELOCITY_SPIKE_THRESHOLD,
)
from newswatch.analysis.types import (
    ClusteredEvent,
    CorrelationSignal,
    MarketData,
    PredictionMarket,
    SignalType,
    SourceType,
    StreamSnapshot,
    StreamType,
)

SourceTypeLookup = Callable[[str], SourceType]
M = TypeVar("M", bound=BaseModel)


@dataclass
class CorrelationOutcome:
    signals: list[CorrelationSignal]
    snapshot: StreamSnapshot


def make_dedup_key(
    signal_type: SignalType,
    stream_types: Iterable[StreamType],
    subject: str,
    now: datetime,
) -> str:
    """``type:streams:subject:bucket`` with a coarse time bucket."""
    streams = "+".join(sorted(s.value for s in stream_types))
    bucket = int(now.timestamp() // (DEDUP_BUCKET_HOURS * 3600))
    return f"{signal_type.value}:{streams}:{subject}:{bucket}"


def coerce_records(records: Iterable[Any], model: type[M], label: str) -> list[M]:
    """Validate records against ``model``, dropping the ones that fail."""
    valid: list[M] = []
    skipped = 0
    for record in records or ():
        try:
            valid.append(record if isinstance(record, model) else model.model_validate(record))
        except ValidationError:
            skipped += 1
    if skipped:
        logger.debug(f"Skipped {skipped} malformed {label} records")
    return valid


def _related_clusters(
    keywords: frozenset[str], clusters: Sequence[ClusteredEvent], min_overlap: int
) -> list[ClusteredEvent]:
    if not keywords:
        return []
    return [
        c for c in clusters if len(keywords & tokenize(c.primary_title)) >= min_overlap
    ]


def _market_keywords(market: MarketData) -> frozenset[str]:
    return tokenize(market.name) | {market.symbol.lower()}


class _SignalCollector:
    """Builds signals and applies the dedup window."""

    def __init__(
        self,
        now: datetime,
        is_duplicate: Callable[[str], bool],
        mark_seen: Callable[[str], None],
    ):
        self.now = now
        self.is_duplicate = is_duplicate
        self.mark_seen = mark_seen
        self.signals: list[CorrelationSignal] = []
        self.suppressed = 0

    def emit(
        self,
        signal_type: SignalType,
        stream_types: list[StreamType],
        subject: str,
        title: str,
        description: str,
        confidence: float,
        data: dict[str, Any] | None = None,
    ) -> None:
        key = make_dedup_key(signal_type, stream_types, subject, self.now)
        # A key marked just before a bucket boundary still suppresses its repeat
        previous_key = make_dedup_key(
            signal_type,
            stream_types,
            subject,
            self.now - timedelta(hours=DEDUP_BUCKET_HOURS),
        )
        if self.is_duplicate(key) or self.is_duplicate(previous_key):
            self.suppressed += 1
            return
        self.mark_seen(key)

        digest = hashlib.md5(f"{key}|{self.now.isoformat()}".encode()).hexdigest()[:12]
        self.signals.append(
            CorrelationSignal(
                id=f"sig-{digest}",
                type=signal_type,
                title=title,
                description=description,
                confidence=round(min(0.95, max(0.0, confidence)), 3),
                timestamp=self.now,
                dedup_key=key,
                stream_types=stream_types,
                subject=subject,
                data=data or {},
            )
        )


def _detect_cluster_signals(
    clusters: Sequence[ClusteredEvent],
    previous: StreamSnapshot | None,
    source_type_lookup: SourceTypeLookup,
    out: _SignalCollector,
) -> None:
    for cluster in clusters:
        source_types = {
            source_type_lookup(item.source) for item in cluster.all_items
        } - {SourceType.OTHER}

        if TRIANGULATION_SOURCE_TYPES <= source_types:
            out.emit(
                SignalType.TRIANGULATION,
                [StreamType.NEWS],
                cluster.id,
                f"Triangulated: {cluster.primary_title}",
                "Wire, government and intelligence sources all report this story",
                0.6 + 0.05 * len(source_types),
                {"source_types": sorted(t.value for t in source_types)},
            )
        elif len(source_types) >= CONVERGENCE_MIN_SOURCE_TYPES:
            out.emit(
                SignalType.CONVERGENCE,
                [StreamType.NEWS],
                cluster.id,
                f"Convergence: {cluster.primary_title}",
                f"{len(source_types)} distinct source types report this story",
                0.4 + 0.1 * len(source_types),
                {"source_types": sorted(t.value for t in source_types)},
            )

        if previous is None:
            continue
        prior = previous.cluster_velocity.get(cluster.id, 0.0)
        increase = cluster.velocity - prior
        if (
            cluster.velocity >= VELOCITY_SPIKE_THRESHOLD
            and increase >= VELOCITY_SPIKE_MIN_INCREASE
        ):
            out.emit(
                SignalType.VELOCITY_SPIKE,
                [StreamType.NEWS],
                cluster.id,
                f"Velocity spike: {cluster.primary_title}",
                f"Coverage velocity rose from {prior:.1f} to {cluster.velocity:.1f}",
                0.5 + increase / 10,
                {"velocity": cluster.velocity, "previous": prior},
            )


def _detect_prediction_signals(
    clusters: Sequence[ClusteredEvent],
    predictions: Sequence[PredictionMarket],
    previous: StreamSnapshot | None,
    out: _SignalCollector,
) -> None:
    if previous is None:
        return
    for market in predictions:
        prior = previous.prediction_prices.get(market.id)
        if prior is None:
            continue
        shift = market.yes_price - prior
        if abs(shift) < PREDICTION_SHIFT_POINTS:
            continue

        related = _related_clusters(
            tokenize(market.title), clusters, PREDICTION_MATCH_MIN_TOKENS
        )
        data = {"previous": prior, "current": market.yes_price, "shift": round(shift, 2)}
        direction = "up" if shift > 0 else "down"

        if not related:
            out.emit(
                SignalType.PREDICTION_LEADS_NEWS,
                [StreamType.PREDICTION],
                market.id,
                f"Prediction market moving: {market.title}",
                f"Odds moved {direction} {abs(shift):.1f} pts with no matching news",
                0.4 + abs(shift) / 40,
                data,
            )
        elif any(c.is_alert for c in related):
            alert = next(c for c in related if c.is_alert)
            out.emit(
                SignalType.NEWS_MOVES_PREDICTION,
                [StreamType.NEWS, StreamType.PREDICTION],
                market.id,
                f"News moving odds: {market.title}",
                f"Odds moved {direction} {abs(shift):.1f} pts alongside "
                f"'{alert.primary_title}'",
                0.5 + abs(shift) / 40,
                {**data, "cluster_id": alert.id},
            )


def _detect_market_signals(
    clusters: Sequence[ClusteredEvent],
    markets: Sequence[MarketData],
    previous: StreamSnapshot | None,
    out: _SignalCollector,
) -> None:
    if previous is None:
        return
    for market in markets:
        prior = previous.market_prices.get(market.symbol)
        if not prior:
            continue
        move = (market.price - prior) / prior * 100
        if abs(move) < MARKET_MOVE_PERCENT:
            continue

        related = _related_clusters(_market_keywords(market), clusters, 1)
        alerts = [c for c in related if c.is_alert]
        data = {"previous": prior, "current": market.price, "move_percent": round(move, 2)}

        if alerts:
            out.emit(
                SignalType.NEWS_LEADS_MARKETS,
                [StreamType.NEWS, StreamType.MARKET],
                market.symbol,
                f"{market.symbol} moving on news",
                f"{market.symbol} {move:+.1f}% alongside '{alerts[0].primary_title}'",
                0.5 + abs(move) / 20,
                {**data, "cluster_id": alerts[0].id},
            )
        elif not related and abs(move) >= SILENT_DIVERGENCE_PERCENT:
            out.emit(
                SignalType.SILENT_DIVERGENCE,
                [StreamType.MARKET],
                market.symbol,
                f"Silent divergence: {market.symbol}",
                f"{market.symbol} {move:+.1f}% with no related news",
                0.4 + abs(move) / 20,
                data,
            )


def analyze_correlations(
    clusters: Sequence[ClusteredEvent],
    predictions: Sequence[PredictionMarket | dict[str, Any]],
    markets: Sequence[MarketData | dict[str, Any]],
    previous_snapshot: StreamSnapshot | None,
    source_type_lookup: SourceTypeLookup,
    is_duplicate: Callable[[str], bool],
    mark_seen: Callable[[str], None],
    now: datetime | None = None,
) -> CorrelationOutcome:
    """
    Run one correlation pass.

    Args:
        clusters: Clustered events from this pass
        predictions: Prediction market quotes (malformed records are skipped)
        markets: Market quotes (malformed records are skipped)
        previous_snapshot: Snapshot returned by the previous pass, if any
        source_type_lookup: ``source -> SourceType``
        is_duplicate: True when a dedup key is inside its suppression window
        mark_seen: Starts the suppression window for a dedup key
        now: Pass timestamp (defaults to the current UTC time)

    Returns:
        CorrelationOutcome with signals (highest confidence first) and the
        snapshot the next pass must receive
    """
    now = now or datetime.now(timezone.utc)
    valid_predictions = coerce_records(predictions, PredictionMarket, "prediction")
    valid_markets = coerce_records(markets, MarketData, "market")

    out = _SignalCollector(now, is_duplicate, mark_seen)
    _detect_cluster_signals(clusters, previous_snapshot, source_type_lookup, out)
    _detect_prediction_signals(clusters, valid_predictions, previous_snapshot, out)
    _detect_market_signals(clusters, valid_markets, previous_snapshot, out)

    previous_markets = previous_snapshot.market_prices if previous_snapshot else {}
    previous_predictions = (
        previous_snapshot.prediction_prices if previous_snapshot else {}
    )
    snapshot = StreamSnapshot(
        taken_at=now,
        cluster_velocity={c.id: c.velocity for c in clusters},
        market_prices={
            **previous_markets,
            **{m.symbol: m.price for m in valid_markets},
        },
        prediction_prices={
            **previous_predictions,
            **{p.id: p.yes_price for p in valid_predictions},
        },
    )

    signals = sorted(out.signals, key=lambda s: s.confidence, reverse=True)
    logger.info(
        f"Correlation: {len(signals)} signals "
        f"({out.suppressed} suppressed as duplicates)"
    )
    return CorrelationOutcome(signals=signals, snapshot=snapshot)
