"""
Tests for newswatch.analysis.semantic

Oracles are replaced with in-test fakes; the HTTP oracle runs against
httpx.MockTransport, no network required.
"""
import json

import httpx
import pytest

from newswatch.analysis.clustering import cluster_news
from newswatch.analysis.semantic import (
    ClusterText,
    HttpSimilarityOracle,
    group_by_cosine,
    merge_semantic_groups,
    refine_clusters,
)
from newswatch.analysis.types import Threat, ThreatLevel
from newswatch.services.client import ServiceClient, ServiceConfig
from newswatch.services.retry import BackoffConfig


class FakeOracle:
    def __init__(self, groups=None, error=None, available=True):
        self.groups = groups or []
        self.error = error
        self.available = available
        self.calls = 0

    @property
    def is_available(self) -> bool:
        return self.available

    async def group_similar(self, texts: list[ClusterText], threshold: float):
        self.calls += 1
        if self.error:
            raise self.error
        return self.groups


@pytest.fixture
def abc_tiers():
    tiers = {"A": 1, "B": 2, "C": 3}
    return lambda source: tiers.get(source, 4)


@pytest.fixture
def abc_clusters(make_item, abc_tiers):
    """Three singleton clusters: A(tier 1, t=10), B(tier 2, t=20), C(tier 3, t=5)."""
    a = cluster_news([make_item("Refinery blast injures workers", source="A", seconds=10)], abc_tiers)[0]
    b = cluster_news([make_item("Explosion at oil plant", source="B", seconds=20)], abc_tiers)[0]
    c = cluster_news([make_item("Blast rocks petrochemical site", source="C", seconds=5)], abc_tiers)[0]
    return a, b, c


# ── merge rules ──────────────────────────────────────────────────────────────

def test_merge_picks_most_trusted_primary_and_sums_members(abc_clusters, abc_tiers):
    a, b, c = abc_clusters

    (merged,) = merge_semantic_groups([a, b, c], [[b.id, c.id, a.id]], abc_tiers)

    assert merged.id == a.id
    assert merged.primary_source == "A"
    assert merged.primary_title == a.primary_title
    assert merged.source_count == 3
    assert len(merged.all_items) == 3
    urls = [s.url for s in merged.top_sources]
    assert len(urls) == len(set(urls))
    assert merged.first_seen == c.first_seen
    assert merged.last_updated == b.last_updated


def test_merge_equal_tiers_prefers_most_recent(make_item, tier_lookup):
    older = cluster_news([make_item("Dam breach floods valley", source="A", seconds=0)], tier_lookup)[0]
    newer = cluster_news([make_item("Valley flooded after breach", source="C", seconds=90)], tier_lookup)[0]

    (merged,) = merge_semantic_groups([older, newer], [[older.id, newer.id]], tier_lookup)

    assert merged.primary_source == "C"


def test_merge_deduplicates_shared_source_urls(make_item, abc_tiers):
    shared = "https://example.com/shared-story"
    x = cluster_news([make_item("Refinery blast injures workers", source="A", link=shared)], abc_tiers)[0]
    y = cluster_news([make_item("Explosion at oil plant", source="B", seconds=5, link=shared)], abc_tiers)[0]

    (merged,) = merge_semantic_groups([x, y], [[x.id, y.id]], abc_tiers)

    assert [s.url for s in merged.top_sources] == [shared]
    assert merged.source_count == 2


def test_merged_top_sources_are_capped_and_tier_sorted(make_item, tier_lookup):
    first = cluster_news(
        [
            make_item("Refinery blast injures workers", source=source, seconds=i)
            for i, source in enumerate(["D", "E", "F"])
        ],
        tier_lookup,
    )[0]
    second = cluster_news(
        [
            make_item("Explosion at oil plant", source=source, seconds=10 + i)
            for i, source in enumerate(["G", "B", "A"])
        ],
        tier_lookup,
    )[0]

    (merged,) = merge_semantic_groups([first, second], [[first.id, second.id]], tier_lookup)

    assert merged.source_count == 6
    assert [s.tier for s in merged.top_sources] == [1, 2, 3, 4, 4]
    assert len({s.url for s in merged.top_sources}) == 5


def test_merge_threat_uses_existing_cluster_threats(abc_clusters, abc_tiers):
    a, b, c = abc_clusters
    b = b.model_copy(update={"threat": Threat(level=ThreatLevel.HIGH)})
    c = c.model_copy(update={"threat": Threat(level=ThreatLevel.MEDIUM)})

    (merged,) = merge_semantic_groups([a, b, c], [[a.id, b.id, c.id]], abc_tiers)

    assert merged.threat.level == ThreatLevel.HIGH


def test_merge_geo_prefers_primary_then_other_clusters(abc_clusters, abc_tiers):
    a, b, c = abc_clusters
    b = b.model_copy(update={"lat": 10.0, "lon": 20.0})
    c = c.model_copy(update={"lat": 30.0, "lon": 40.0})

    (merged,) = merge_semantic_groups([a, b, c], [[a.id, b.id, c.id]], abc_tiers)
    assert (merged.lat, merged.lon) == (10.0, 20.0)

    a_geo = a.model_copy(update={"lat": 1.0, "lon": 2.0})
    (merged,) = merge_semantic_groups([a_geo, b, c], [[a.id, b.id, c.id]], abc_tiers)
    assert (merged.lat, merged.lon) == (1.0, 2.0)


def test_merge_geo_falls_back_to_items(make_item, abc_tiers):
    a = cluster_news([make_item("Refinery blast injures workers", source="A")], abc_tiers)[0]
    b = cluster_news(
        [make_item("Explosion at oil plant", source="B", seconds=5, lat=5.5, lon=6.5)], abc_tiers
    )[0]
    b = b.model_copy(update={"lat": None, "lon": None})

    (merged,) = merge_semantic_groups([a, b], [[a.id, b.id]], abc_tiers)

    assert (merged.lat, merged.lon) == (5.5, 6.5)


def test_ungrouped_clusters_pass_through_unchanged(abc_clusters, abc_tiers):
    a, b, c = abc_clusters

    result = merge_semantic_groups([a, b, c], [[a.id, b.id], ["unknown-id"]], abc_tiers)

    assert len(result) == 2
    assert any(cluster is c for cluster in result)


# ── refine_clusters ──────────────────────────────────────────────────────────

async def test_refine_merges_groups_from_oracle(abc_clusters, abc_tiers):
    a, b, c = abc_clusters
    oracle = FakeOracle(groups=[[a.id, b.id, c.id]])

    refined = await refine_clusters([a, b, c], oracle, abc_tiers, min_clusters=2)

    assert oracle.calls == 1
    assert len(refined) == 1
    assert refined[0].source_count == 3


async def test_refine_degrades_silently_on_oracle_error(abc_clusters, abc_tiers):
    clusters = list(abc_clusters)
    oracle = FakeOracle(error=RuntimeError("model crashed"))

    refined = await refine_clusters(clusters, oracle, abc_tiers, min_clusters=2)

    assert refined is clusters


async def test_refine_skips_unavailable_oracle_and_small_batches(abc_clusters, abc_tiers):
    clusters = list(abc_clusters)

    unavailable = FakeOracle(groups=[[c.id for c in clusters]], available=False)
    assert await refine_clusters(clusters, unavailable, abc_tiers, min_clusters=2) is clusters
    assert unavailable.calls == 0

    too_few = FakeOracle(groups=[[c.id for c in clusters]])
    assert await refine_clusters(clusters, too_few, abc_tiers, min_clusters=5) is clusters
    assert too_few.calls == 0

    assert await refine_clusters(clusters, None, abc_tiers) is clusters


# ── embedding oracle ─────────────────────────────────────────────────────────

def test_group_by_cosine_groups_close_vectors():
    groups = group_by_cosine(
        ["a", "b", "c"], [[1.0, 0.0], [0.99, 0.05], [0.0, 1.0]], threshold=0.9
    )
    assert groups == [["a", "b"], ["c"]]


def _oracle_with(handler, max_attempts: int = 1) -> HttpSimilarityOracle:
    client = ServiceClient(
        ServiceConfig(
            service_id="embedding-oracle",
            base_url="http://oracle.test",
            backoff=BackoffConfig(max_attempts=max_attempts, initial_delay=0, max_delay=0),
        ),
        transport=httpx.MockTransport(handler),
    )
    return HttpSimilarityOracle(client=client)


async def test_http_oracle_groups_by_embeddings(abc_clusters, abc_tiers):
    a, b, c = abc_clusters
    vectors = {
        a.primary_title: [1.0, 0.0],
        b.primary_title: [0.98, 0.1],
        c.primary_title: [0.0, 1.0],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        texts = json.loads(request.content)["texts"]
        return httpx.Response(200, json={"embeddings": [vectors[t] for t in texts]})

    oracle = _oracle_with(handler)
    refined = await refine_clusters([a, b, c], oracle, abc_tiers, min_clusters=2, threshold=0.9)
    await oracle.close()

    assert len(refined) == 2
    merged = next(cl for cl in refined if cl.source_count == 2)
    assert merged.primary_source == "A"


async def test_http_oracle_failure_returns_jaccard_clusters(abc_clusters, abc_tiers):
    clusters = list(abc_clusters)
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503, text="overloaded")

    oracle = _oracle_with(handler, max_attempts=2)
    refined = await refine_clusters(clusters, oracle, abc_tiers, min_clusters=2)
    status = oracle.get_status()
    await oracle.close()

    assert refined is clusters
    assert len(calls) == 2
    assert status["failure_count"] == 2
    assert status["state"] == "CLOSED"


def test_http_oracle_without_url_is_unavailable(monkeypatch):
    from newswatch.analysis import semantic

    monkeypatch.setattr(semantic.global_settings, "semantic_oracle_url", None)
    assert HttpSimilarityOracle().is_available is False
    assert HttpSimilarityOracle().get_status()["state"] == "UNCONFIGURED"
