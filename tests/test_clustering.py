"""
Tests for newswatch.analysis.clustering

Pure unit tests, no worker involved.
"""
import random
from datetime import timedelta

import pytest

from newswatch.analysis.clustering import (
    cluster_news,
    compute_velocity,
    jaccard_similarity,
    tokenize,
)
from newswatch.analysis.types import NewsItem, Threat, ThreatLevel


# ── tokenize / jaccard ───────────────────────────────────────────────────────

def test_tokenize_strips_punctuation_stop_words_and_short_words():
    assert tokenize("The Fire at Factory, confirmed!") == {"fire", "factory", "confirmed"}


def test_jaccard_of_empty_sets_is_zero():
    assert jaccard_similarity(frozenset(), frozenset({"fire"})) == 0.0


def test_jaccard_similarity_of_scenario_titles():
    a = tokenize("Factory fire reported")
    b = tokenize("Fire at factory confirmed")
    assert jaccard_similarity(a, b) == pytest.approx(0.5)


# ── end-to-end scenario ──────────────────────────────────────────────────────

def test_fire_story_and_market_story_form_two_clusters(make_item, tier_lookup):
    items = [
        make_item("Factory fire reported", source="A", seconds=100),
        make_item("Fire at factory confirmed", source="B", seconds=110),
        make_item("Stock market rallies", source="C", seconds=105),
    ]

    clusters = cluster_news(items, tier_lookup)

    assert len(clusters) == 2
    by_size = sorted(clusters, key=lambda c: c.source_count, reverse=True)
    fire, market = by_size
    assert fire.source_count == 2
    assert fire.primary_source == "A"
    assert fire.primary_title == "Factory fire reported"
    assert market.source_count == 1
    assert market.primary_source == "C"


def test_clusters_are_ordered_by_last_update(make_item, tier_lookup):
    items = [
        make_item("Factory fire reported", source="A", seconds=100),
        make_item("Fire at factory confirmed", source="B", seconds=110),
        make_item("Stock market rallies", source="C", seconds=105),
    ]
    clusters = cluster_news(items, tier_lookup)
    assert [c.last_updated for c in clusters] == sorted(
        (c.last_updated for c in clusters), reverse=True
    )


# ── partition invariant ──────────────────────────────────────────────────────

def test_every_item_lands_in_exactly_one_cluster(make_item, tier_lookup):
    titles = [
        "Earthquake strikes coastal city",
        "Coastal city hit by earthquake",
        "Central bank raises interest rates",
        "Interest rates raised by central bank",
        "Election results delayed",
        "Volcano erupts near village",
    ]
    items = [make_item(t, source="ABCD"[i % 4], seconds=i * 30) for i, t in enumerate(titles)]
    malformed = make_item("   ", source="A", seconds=999)

    clusters = cluster_news(items + [malformed], tier_lookup)

    members = [id(item) for c in clusters for item in c.all_items]
    assert len(members) == len(set(members))
    assert set(members) == {id(item) for item in items}
    assert sum(c.source_count for c in clusters) == len(items)
    for cluster in clusters:
        assert cluster.source_count == len(cluster.all_items)


def test_items_without_title_are_skipped(base_time):
    items = [NewsItem(source="A", published_at=base_time)]
    assert cluster_news(items) == []


def test_members_are_referenced_not_copied(make_item, tier_lookup):
    item = make_item("Volcano erupts near village", source="A")
    (cluster,) = cluster_news([item], tier_lookup)
    assert cluster.all_items[0] is item


# ── tie-break law ────────────────────────────────────────────────────────────

def test_more_trusted_item_is_primary_even_if_older(make_item, tier_lookup):
    trusted = make_item("Bridge collapse kills three", source="A", seconds=0)
    fresher = make_item("Bridge collapse kills three people", source="D", seconds=500)

    (cluster,) = cluster_news([fresher, trusted], tier_lookup)

    assert cluster.primary_source == "A"
    assert cluster.primary_link == trusted.link


def test_equal_tiers_prefer_most_recent(make_item, tier_lookup):
    older = make_item("Bridge collapse kills three", source="A", seconds=0)
    newer = make_item("Bridge collapse kills three people", source="C", seconds=60)

    (cluster,) = cluster_news([older, newer], tier_lookup)

    assert cluster.primary_source == "C"


# ── idempotence ──────────────────────────────────────────────────────────────

def test_clustering_is_stable_across_runs_and_input_order(make_item, tier_lookup):
    titles = [
        "Earthquake strikes coastal city",
        "Coastal city hit by earthquake",
        "Strong earthquake strikes coastal city",
        "Central bank raises interest rates",
        "Interest rates raised by central bank",
        "Volcano erupts near village",
    ]
    items = [make_item(t, source="ABCD"[i % 4], seconds=i * 45) for i, t in enumerate(titles)]
    shuffled = items[:]
    random.Random(7).shuffle(shuffled)

    first = cluster_news(items, tier_lookup)
    second = cluster_news(shuffled, tier_lookup)

    def summary(clusters):
        return {(c.id, frozenset(i.link for i in c.all_items)) for c in clusters}

    assert summary(first) == summary(second)


def test_event_id_comes_from_first_seen_item(make_item, tier_lookup):
    first_seen = make_item("Wildfire spreads across hills", source="D", seconds=0)
    later = make_item("Wildfire spreads across the hills", source="A", seconds=300)

    (cluster,) = cluster_news([first_seen, later], tier_lookup)
    (alone,) = cluster_news([first_seen], tier_lookup)

    assert cluster.id == alone.id
    assert cluster.first_seen == first_seen.published_at
    assert cluster.last_updated == later.published_at


# ── top sources ──────────────────────────────────────────────────────────────

def test_top_sources_are_deduplicated_tier_sorted_and_capped(make_item, tier_lookup):
    shared_link = "https://example.com/shared"
    items = [
        make_item("Port strike halts shipping", source="D", seconds=0),
        make_item("Port strike halts shipping", source="B", seconds=10, link=shared_link),
        make_item("Port strike halts shipping", source="B", seconds=20, link=shared_link),
        make_item("Port strike halts shipping", source="A", seconds=30),
        make_item("Port strike halts shipping", source="C", seconds=40),
        make_item("Port strike halts shipping", source="E", seconds=50),
        make_item("Port strike halts shipping", source="F", seconds=60),
        make_item("Port strike halts shipping", source="G", seconds=70),
    ]

    (cluster,) = cluster_news(items, tier_lookup)

    urls = [s.url for s in cluster.top_sources]
    assert len(cluster.top_sources) == 5
    assert len(urls) == len(set(urls))
    assert [s.tier for s in cluster.top_sources] == sorted(s.tier for s in cluster.top_sources)
    assert cluster.top_sources[0].tier == 1
    assert cluster.source_count == 8


# ── threat, alerts and geo ───────────────────────────────────────────────────

def test_highest_priority_threat_wins(make_item, tier_lookup):
    items = [
        make_item("Missile strike on depot", source="A", seconds=0, threat=Threat(level="low")),
        make_item("Missile strike on fuel depot", source="B", seconds=10,
                  threat=Threat(level="critical", category="conflict")),
        make_item("Missile strike hits depot", source="C", seconds=20, threat=Threat(level="high")),
    ]

    (cluster,) = cluster_news(items, tier_lookup)

    assert cluster.threat.level == ThreatLevel.CRITICAL
    assert cluster.threat.category == "conflict"


def test_unknown_threat_level_maps_to_info():
    assert Threat(level="apocalyptic").level == ThreatLevel.INFO
    assert ThreatLevel.parse("HIGH") == ThreatLevel.HIGH


def test_alert_flag_and_geo_come_from_members(make_item, tier_lookup):
    items = [
        make_item("Flooding closes highway", source="A", seconds=0),
        make_item("Flooding closes main highway", source="B", seconds=10,
                  is_alert=True, lat=48.1, lon=11.6),
    ]

    (cluster,) = cluster_news(items, tier_lookup)

    assert cluster.is_alert is True
    assert (cluster.lat, cluster.lon) == (48.1, 11.6)


def test_lower_threshold_merges_more(make_item, tier_lookup):
    items = [
        make_item("Factory fire reported", source="A", seconds=100),
        make_item("Fire at factory confirmed", source="B", seconds=110),
    ]
    assert len(cluster_news(items, tier_lookup, similarity_threshold=0.6)) == 2
    assert len(cluster_news(items, tier_lookup, similarity_threshold=0.4)) == 1


# ── velocity ─────────────────────────────────────────────────────────────────

def test_velocity_grows_with_arrival_rate(base_time):
    slow = [base_time - timedelta(minutes=m) for m in (0, 120, 240)]
    fast = [base_time - timedelta(minutes=m) for m in (0, 5, 10, 15)]

    assert compute_velocity(fast, base_time, 60, 6) > compute_velocity(slow, base_time, 60, 6)


def test_velocity_halves_per_half_life_and_ignores_old_arrivals(base_time):
    assert compute_velocity([base_time], base_time, 60, 6) == pytest.approx(1.0)
    assert compute_velocity(
        [base_time - timedelta(minutes=60)], base_time, 60, 6
    ) == pytest.approx(0.5)
    assert compute_velocity([base_time - timedelta(hours=7)], base_time, 60, 6) == 0.0
