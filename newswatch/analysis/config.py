"""
Analysis configuration - stop words, source trust tables and thresholds.
"""

from newswatch.analysis.types import SourceType

# Words ignored when tokenizing titles for similarity
STOP_WORDS: frozenset[str] = frozenset(
    {
        "the", "a", "an", "is", "are", "was", "were", "be", "been", "have",
        "has", "had", "do", "does", "did", "will", "would", "could", "should",
        "may", "might", "must", "shall", "can", "to", "of", "in", "for", "on",
        "with", "at", "by", "from", "as", "into", "through", "during",
        "before", "after", "above", "below", "between", "under", "again",
        "further", "then", "once", "and", "but", "or", "nor", "so", "yet",
        "both", "either", "neither", "not", "only", "own", "same", "than",
        "too", "very", "just", "also", "now", "here", "there", "when",
        "where", "why", "how", "all", "each", "every", "few", "more", "most",
        "other", "some", "such", "no", "any", "new", "says", "said", "its",
        "report", "reports", "according", "news", "update", "live", "breaking",
    }
)

# Tokens shorter than this are dropped
MIN_TOKEN_LENGTH = 3

# Lower tier = more trusted. Unknown sources get DEFAULT_SOURCE_TIER.
DEFAULT_SOURCE_TIER = 4

SOURCE_TIERS: dict[str, int] = {
    # Tier 1 - wire services and official sources
    "Reuters": 1,
    "AP News": 1,
    "AFP": 1,
    "Bloomberg": 1,
    "White House": 1,
    "State Dept": 1,
    "Pentagon": 1,
    "UN News": 1,
    # Tier 2 - major outlets
    "BBC World": 2,
    "Guardian World": 2,
    "Al Jazeera": 2,
    "CNN World": 2,
    "Financial Times": 2,
    "WSJ": 2,
    "CNBC": 2,
    "MarketWatch": 2,
    "Defense One": 2,
    # Tier 3 - specialty and regional outlets
    "The War Zone": 3,
    "Bellingcat": 3,
    "Krebs on Security": 3,
    "The Record": 3,
    "Ars Technica": 3,
    "The Verge": 3,
    "TechCrunch": 3,
    "Hacker News": 3,
}

SOURCE_TYPES: dict[str, str] = {
    "Reuters": SourceType.WIRE.value,
    "AP News": SourceType.WIRE.value,
    "AFP": SourceType.WIRE.value,
    "Bloomberg": SourceType.WIRE.value,
    "White House": SourceType.GOV.value,
    "State Dept": SourceType.GOV.value,
    "Pentagon": SourceType.GOV.value,
    "UN News": SourceType.GOV.value,
    "BBC World": SourceType.MAINSTREAM.value,
    "Guardian World": SourceType.MAINSTREAM.value,
    "Al Jazeera": SourceType.MAINSTREAM.value,
    "CNN World": SourceType.MAINSTREAM.value,
    "Financial Times": SourceType.MARKET.value,
    "WSJ": SourceType.MARKET.value,
    "CNBC": SourceType.MARKET.value,
    "MarketWatch": SourceType.MARKET.value,
    "Defense One": SourceType.INTEL.value,
    "The War Zone": SourceType.INTEL.value,
    "Bellingcat": SourceType.INTEL.value,
    "Krebs on Security": SourceType.INTEL.value,
    "The Record": SourceType.INTEL.value,
    "Ars Technica": SourceType.TECH.value,
    "The Verge": SourceType.TECH.value,
    "TechCrunch": SourceType.TECH.value,
    "Hacker News": SourceType.TECH.value,
}

# Clustered events keep at most this many contributing sources
MAX_TOP_SOURCES = 5

# Correlation thresholds
VELOCITY_SPIKE_THRESHOLD = 3.0  # decayed arrivals, see clustering.compute_velocity
VELOCITY_SPIKE_MIN_INCREASE = 1.5
CONVERGENCE_MIN_SOURCE_TYPES = 3
TRIANGULATION_SOURCE_TYPES: frozenset[SourceType] = frozenset(
    {SourceType.WIRE, SourceType.GOV, SourceType.INTEL}
)
PREDICTION_SHIFT_POINTS = 5.0  # yes-price move, percentage points
MARKET_MOVE_PERCENT = 1.5  # move that counts when news explains it
SILENT_DIVERGENCE_PERCENT = 3.0  # move that is notable with no news at all
PREDICTION_MATCH_MIN_TOKENS = 2
DEDUP_BUCKET_HOURS = 6


def make_tier_lookup(tiers: dict[str, int] | None = None):
    """Build a ``source -> tier`` lookup with the default for unknown sources."""
    table = SOURCE_TIERS if tiers is None else tiers

    def lookup(source: str) -> int:
        return table.get(source, DEFAULT_SOURCE_TIER)

    return lookup


def make_type_lookup(types: dict[str, str] | None = None):
    """Build a ``source -> SourceType`` lookup; unknown sources map to OTHER."""
    table = SOURCE_TYPES if types is None else types

    def lookup(source: str) -> SourceType:
        return SourceType.parse(table.get(source, SourceType.OTHER))

    return lookup


get_source_tier = make_tier_lookup()
get_source_type = make_type_lookup()
