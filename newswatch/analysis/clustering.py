"""
Similarity clustering - groups near-duplicate headlines into events.

Items are processed newest-first. Each item joins the existing cluster whose
primary title is most similar to it (Jaccard over title tokens, at or above
the threshold), otherwise it starts a new cluster. A cluster's primary item
is the most trusted member, then the most recent one.

Everything here is pure and synchronous so the same code runs inside the
analysis worker and on the fallback path.
"""

import hashlib
import re
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime

from loguru import logger

from newswatch.analysis.config import (
    MAX_TOP_SOURCES,
    MIN_TOKEN_LENGTH,
    STOP_WORDS,
    get_source_tier,
)
from newswatch.analysis.types import ClusteredEvent, NewsItem, SourceRef, Threat
from newswatch.settings import global_settings

TierLookup = Callable[[str], int]

_NON_WORD = re.compile(r"[^\w\s]")


def normalize_text(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    text = _NON_WORD.sub(" ", text.lower())
    return " ".join(text.split())


def tokenize(text: str) -> frozenset[str]:
    """Meaningful title tokens: no stop words, no very short words."""
    return frozenset(
        w
        for w in normalize_text(text).split()
        if len(w) >= MIN_TOKEN_LENGTH and w not in STOP_WORDS
    )


def jaccard_similarity(a: frozenset[str], b: frozenset[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def select_threat(threats: Iterable[Threat | None]) -> Threat | None:
    """Highest-priority threat; the first one wins among equal levels."""
    best: Threat | None = None
    for threat in threats:
        if threat is None:
            continue
        if best is None or threat.level.priority > best.level.priority:
            best = threat
    return best


def compute_velocity(
    timestamps: Iterable[datetime],
    reference: datetime,
    half_life_minutes: float | None = None,
    window_hours: float | None = None,
) -> float:
    """
    Exponentially decayed arrival count over a trailing window.

    Each arrival within ``window_hours`` before ``reference`` contributes
    ``0.5 ** (age / half_life)``, so one arrival right at ``reference`` counts
    1.0 and one a half-life earlier counts 0.5. More arrivals, or more recent
    ones, always give a higher value.
    """
    half_life = half_life_minutes or global_settings.velocity_half_life_minutes
    window = (window_hours or global_settings.velocity_window_hours) * 60

    velocity = 0.0
    for ts in timestamps:
        age = (reference - ts).total_seconds() / 60
        if 0 <= age <= window:
            velocity += 0.5 ** (age / half_life)
    return round(velocity, 6)


def compute_event_id(items: Sequence[NewsItem]) -> str:
    """Stable id derived from the first-seen (earliest) member item."""
    first = min(items, key=lambda i: (i.published_at, i.link, i.title))
    key = f"{first.link}|{first.title}|{first.published_at.isoformat()}"
    return "evt-" + hashlib.md5(key.encode()).hexdigest()[:12]


class _Group:
    """Working state of one cluster while items are being assigned."""

    def __init__(self, item: NewsItem, tokens: frozenset[str], tier: int):
        self.members: list[tuple[NewsItem, int]] = [(item, tier)]
        self.primary = item
        self.primary_tier = tier
        self.primary_tokens = tokens

    def add(self, item: NewsItem, tokens: frozenset[str], tier: int) -> None:
        self.members.append((item, tier))
        if (tier, -item.published_at.timestamp()) < (
            self.primary_tier,
            -self.primary.published_at.timestamp(),
        ):
            self.primary = item
            self.primary_tier = tier
            self.primary_tokens = tokens


def _build_event(group: _Group, reference: datetime) -> ClusteredEvent:
    # Members in primary order: tier ascending, then newest first
    ranked = sorted(
        group.members, key=lambda m: (m[1], -m[0].published_at.timestamp())
    )
    items = [item for item, _ in ranked]
    primary = group.primary

    top_sources: list[SourceRef] = []
    seen_urls: set[str] = set()
    for item, tier in ranked:
        if not item.link or item.link in seen_urls:
            continue
        seen_urls.add(item.link)
        top_sources.append(SourceRef(name=item.source, url=item.link, tier=tier))
        if len(top_sources) >= MAX_TOP_SOURCES:
            break

    timestamps = [item.published_at for item in items]
    geo = next((item for item in items if item.has_geo), None)

    return ClusteredEvent(
        id=compute_event_id(items),
        primary_title=primary.title,
        primary_link=primary.link,
        primary_source=primary.source,
        source_count=len(items),
        top_sources=top_sources,
        all_items=items,
        first_seen=min(timestamps),
        last_updated=max(timestamps),
        is_alert=any(item.is_alert for item in items),
        monitor_color=primary.monitor_color,
        velocity=compute_velocity(timestamps, reference),
        threat=select_threat(item.threat for item in items),
        lat=geo.lat if geo else None,
        lon=geo.lon if geo else None,
    )


def cluster_news(
    items: Sequence[NewsItem],
    tier_lookup: TierLookup = get_source_tier,
    similarity_threshold: float | None = None,
) -> list[ClusteredEvent]:
    """
    Group items into events by title similarity.

    Args:
        items: Ingested news items, in any order
        tier_lookup: ``source -> tier`` (lower is more trusted)
        similarity_threshold: Minimum Jaccard similarity to join a cluster

    Returns:
        Clustered events, most recently updated first. Items without a
        title are skipped.
    """
    threshold = (
        similarity_threshold
        if similarity_threshold is not None
        else global_settings.cluster_similarity_threshold
    )

    valid = [item for item in items if item.title and item.title.strip()]
    if len(valid) < len(items):
        logger.debug(f"Skipped {len(items) - len(valid)} items without a title")
    if not valid:
        return []

    ordered = sorted(
        valid, key=lambda i: (i.published_at, i.link, i.title), reverse=True
    )
    reference = ordered[0].published_at

    groups: list[_Group] = []
    for item in ordered:
        tokens = tokenize(item.title)
        tier = tier_lookup(item.source)

        best: _Group | None = None
        best_similarity = 0.0
        for group in groups:
            similarity = jaccard_similarity(tokens, group.primary_tokens)
            if similarity >= threshold and similarity > best_similarity:
                best, best_similarity = group, similarity

        if best is None:
            groups.append(_Group(item, tokens, tier))
        else:
            best.add(item, tokens, tier)

    events = [_build_event(group, reference) for group in groups]
    events.sort(key=lambda e: e.last_updated, reverse=True)

    logger.info(f"Clustered {len(valid)} items into {len(events)} events")
    return events
