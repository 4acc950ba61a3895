"""
Semantic refinement - merges Jaccard clusters that an external similarity
oracle considers the same story.

The oracle is optional. When it is missing, unavailable, or fails, the
Jaccard clusters are returned unchanged.
"""

import math
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Protocol

from loguru import logger
from pydantic import BaseModel

from newswatch.analysis.clustering import TierLookup, select_threat
from newswatch.analysis.config import MAX_TOP_SOURCES, get_source_tier
from newswatch.analysis.types import ClusteredEvent, NewsItem, SourceRef
from newswatch.services.client import ServiceClient, ServiceConfig
from newswatch.services.errors import OracleUnavailableError, ServiceError
from newswatch.settings import global_settings


class ClusterText(BaseModel):
    id: str
    text: str


class SimilarityOracle(Protocol):
    """Groups cluster ids whose texts are semantically equivalent."""

    @property
    def is_available(self) -> bool: ...

    async def group_similar(
        self, texts: list[ClusterText], threshold: float
    ) -> list[list[str]]: ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return dot / norm


def group_by_cosine(
    ids: Sequence[str], vectors: Sequence[Sequence[float]], threshold: float
) -> list[list[str]]:
    """Greedy grouping: each ungrouped id collects every later id close to it."""
    groups: list[list[str]] = []
    assigned: set[int] = set()
    for i in range(len(ids)):
        if i in assigned:
            continue
        assigned.add(i)
        group = [ids[i]]
        for j in range(i + 1, len(ids)):
            if j not in assigned and cosine_similarity(vectors[i], vectors[j]) >= threshold:
                assigned.add(j)
                group.append(ids[j])
        groups.append(group)
    return groups


class EmbeddingSimilarityOracle(ABC):
    """Oracle that embeds texts and groups them by cosine similarity."""

    @property
    def is_available(self) -> bool:
        return True

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Return one vector per text, in order."""

    async def group_similar(
        self, texts: list[ClusterText], threshold: float
    ) -> list[list[str]]:
        vectors = await self.embed([t.text for t in texts])
        if len(vectors) != len(texts):
            raise ServiceError(
                f"Oracle returned {len(vectors)} embeddings for {len(texts)} texts"
            )
        return group_by_cosine([t.id for t in texts], vectors, threshold)


class HttpSimilarityOracle(EmbeddingSimilarityOracle):
    """
    Embedding oracle backed by an HTTP service.

    The service accepts ``POST /embed {"texts": [...]}`` and answers
    ``{"embeddings": [[...], ...]}``.
    """

    def __init__(self, client: ServiceClient | None = None, base_url: str | None = None):
        if client is None:
            url = base_url or global_settings.semantic_oracle_url
            client = (
                ServiceClient(
                    ServiceConfig(
                        service_id="embedding-oracle",
                        base_url=url,
                        timeout=global_settings.semantic_oracle_timeout,
                    )
                )
                if url
                else None
            )
        self._client = client

    @property
    def is_available(self) -> bool:
        return self._client is not None and self._client.is_available

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if self._client is None:
            raise OracleUnavailableError("No embedding oracle URL configured")
        data = await self._client.post_json("/embed", {"texts": texts})
        embeddings = data.get("embeddings") if isinstance(data, dict) else None
        if not isinstance(embeddings, list):
            raise ServiceError(
                "Embedding response has no 'embeddings' list",
                service_id=self._client.config.service_id,
            )
        return embeddings

    def get_status(self) -> dict[str, Any]:
        """Circuit breaker status of the backing service."""
        if self._client is None:
            return {"service_id": "embedding-oracle", "state": "UNCONFIGURED"}
        return self._client.breaker.get_status()

    async def close(self) -> None:
        if self._client:
            await self._client.close()


def _select_geo(
    primary: ClusteredEvent, others: Sequence[ClusteredEvent], items: Sequence[NewsItem]
) -> tuple[float | None, float | None]:
    if primary.has_geo:
        return primary.lat, primary.lon
    for cluster in others:
        if cluster.has_geo:
            return cluster.lat, cluster.lon
    for item in items:
        if item.has_geo:
            return item.lat, item.lon
    return None, None


def merge_cluster_group(
    group: Sequence[ClusteredEvent], tier_lookup: TierLookup = get_source_tier
) -> ClusteredEvent:
    """Merge clusters judged equivalent into one event."""
    if len(group) == 1:
        return group[0]

    ranked = sorted(
        group,
        key=lambda c: (tier_lookup(c.primary_source), -c.last_updated.timestamp()),
    )
    primary, others = ranked[0], ranked[1:]

    all_items = list(primary.all_items)
    sources: dict[str, SourceRef] = {s.url: s for s in primary.top_sources}
    for other in others:
        all_items.extend(other.all_items)
        for source in other.top_sources:
            sources.setdefault(source.url, source)

    top_sources = sorted(sources.values(), key=lambda s: s.tier)[:MAX_TOP_SOURCES]
    timestamps = [item.published_at for item in all_items]
    lat, lon = _select_geo(primary, others, all_items)

    return ClusteredEvent(
        id=primary.id,
        primary_title=primary.primary_title,
        primary_link=primary.primary_link,
        primary_source=primary.primary_source,
        source_count=len(all_items),
        top_sources=top_sources,
        all_items=all_items,
        first_seen=min(timestamps),
        last_updated=max(timestamps),
        is_alert=any(item.is_alert for item in all_items),
        monitor_color=primary.monitor_color,
        velocity=primary.velocity,
        threat=select_threat(c.threat for c in ranked),
        lat=lat,
        lon=lon,
    )


def merge_semantic_groups(
    clusters: Sequence[ClusteredEvent],
    groups: Sequence[Sequence[str]],
    tier_lookup: TierLookup = get_source_tier,
) -> list[ClusteredEvent]:
    """
    Apply oracle groupings to ``clusters``.

    Unknown ids and ids already consumed by an earlier group are ignored.
    Clusters not named by any group pass through unchanged.
    """
    by_id = {c.id: c for c in clusters}
    used: set[str] = set()
    merged: list[ClusteredEvent] = []

    for group in groups:
        members = []
        for cluster_id in group:
            cluster = by_id.get(cluster_id)
            if cluster is not None and cluster_id not in used:
                used.add(cluster_id)
                members.append(cluster)
        if members:
            merged.append(merge_cluster_group(members, tier_lookup))

    merged.extend(c for c in clusters if c.id not in used)
    merged.sort(key=lambda c: c.last_updated, reverse=True)
    return merged


async def refine_clusters(
    clusters: list[ClusteredEvent],
    oracle: SimilarityOracle | None,
    tier_lookup: TierLookup = get_source_tier,
    min_clusters: int | None = None,
    threshold: float | None = None,
) -> list[ClusteredEvent]:
    """
    Second clustering pass using a semantic similarity oracle.

    Skipped when there is no available oracle or fewer than ``min_clusters``
    clusters. Any oracle error degrades to the Jaccard-only result.
    """
    min_clusters = (
        min_clusters if min_clusters is not None else global_settings.semantic_min_clusters
    )
    threshold = (
        threshold
        if threshold is not None
        else global_settings.semantic_similarity_threshold
    )

    if oracle is None or not oracle.is_available or len(clusters) < min_clusters:
        return clusters

    texts = [ClusterText(id=c.id, text=c.primary_title) for c in clusters]
    try:
        groups = await oracle.group_similar(texts, threshold)
    except Exception as e:
        logger.warning(f"Semantic refinement failed, using Jaccard clusters only: {e}")
        return clusters

    refined = merge_semantic_groups(clusters, groups, tier_lookup)
    if len(refined) < len(clusters):
        logger.info(f"Semantic refinement merged {len(clusters)} -> {len(refined)} clusters")
    return refined
