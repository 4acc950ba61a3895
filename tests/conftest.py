from datetime import datetime, timedelta, timezone

import pytest

from newswatch.analysis.types import NewsItem

BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def base_time() -> datetime:
    return BASE_TIME


@pytest.fixture
def make_item():
    """Factory for news items; ``seconds`` is an offset from BASE_TIME."""
    counter = iter(range(10_000))

    def _make(
        title: str,
        source: str = "Reuters",
        seconds: float = 0,
        link: str | None = None,
        **kwargs,
    ) -> NewsItem:
        return NewsItem(
            source=source,
            title=title,
            link=link or f"https://example.com/{source.lower()}/{next(counter)}",
            published_at=BASE_TIME + timedelta(seconds=seconds),
            **kwargs,
        )

    return _make


@pytest.fixture
def tier_lookup():
    tiers = {"A": 1, "B": 2, "C": 1, "D": 3}
    return lambda source: tiers.get(source, 4)
