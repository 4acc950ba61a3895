"""
Clustering, semantic refinement and correlation analysis of news streams.
"""

from newswatch.analysis.types import (
    ClusteredEvent,
    CorrelationSignal,
    MarketData,
    NewsItem,
    PredictionMarket,
    SignalType,
    SourceRef,
    SourceType,
    StreamSnapshot,
    StreamType,
    Threat,
    ThreatLevel,
)
from newswatch.analysis.clustering import cluster_news, jaccard_similarity, tokenize
from newswatch.analysis.semantic import (
    EmbeddingSimilarityOracle,
    HttpSimilarityOracle,
    SimilarityOracle,
    merge_semantic_groups,
    refine_clusters,
)
from newswatch.analysis.correlation import CorrelationOutcome, analyze_correlations
from newswatch.analysis.config import (
    SOURCE_TIERS,
    SOURCE_TYPES,
    get_source_tier,
    get_source_type,
)

__all__ = [
    # Types
    "ClusteredEvent",
    "CorrelationSignal",
    "MarketData",
    "NewsItem",
    "PredictionMarket",
    "SignalType",
    "SourceRef",
    "SourceType",
    "StreamSnapshot",
    "StreamType",
    "Threat",
    "ThreatLevel",
    # Clustering
    "cluster_news",
    "jaccard_similarity",
    "tokenize",
    # Semantic refinement
    "EmbeddingSimilarityOracle",
    "HttpSimilarityOracle",
    "SimilarityOracle",
    "merge_semantic_groups",
    "refine_clusters",
    # Correlation
    "CorrelationOutcome",
    "analyze_correlations",
    # Config
    "SOURCE_TIERS",
    "SOURCE_TYPES",
    "get_source_tier",
    "get_source_type",
]
