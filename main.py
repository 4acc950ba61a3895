"""
newswatch entry point
Clusters a batch of news items and runs correlation analysis on the result.

Usage:
    python main.py [items.json]

``items.json`` holds a list of news item objects; without it a small demo
batch is used.
"""

import asyncio
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

from loguru import logger

from newswatch.analysis import HttpSimilarityOracle, NewsItem
from newswatch.settings import global_settings
from newswatch.worker import AnalysisWorkerManager


def demo_items() -> list[NewsItem]:
    now = datetime.now(timezone.utc)
    return [
        NewsItem(
            source="Reuters",
            title="Factory fire reported",
            link="https://example.com/reuters/factory-fire",
            published_at=now - timedelta(minutes=10),
            is_alert=True,
        ),
        NewsItem(
            source="BBC World",
            title="Fire at factory confirmed",
            link="https://example.com/bbc/factory-fire",
            published_at=now,
        ),
        NewsItem(
            source="Bloomberg",
            title="Stock market rallies",
            link="https://example.com/bloomberg/rally",
            published_at=now - timedelta(minutes=5),
        ),
    ]


def load_items(path: Path) -> list[NewsItem]:
    raw = json.loads(path.read_text())
    return [NewsItem.model_validate(entry) for entry in raw]


async def main() -> None:
    logger.remove()
    logger.add(sys.stderr, level=global_settings.log_level)

    items = load_items(Path(sys.argv[1])) if len(sys.argv) > 1 else demo_items()
    logger.info(f"Starting newswatch with {len(items)} items...")

    manager = AnalysisWorkerManager()
    oracle = HttpSimilarityOracle()
    try:
        clusters = await manager.cluster_news_hybrid(items, oracle)
        for cluster in clusters:
            logger.info(
                f"[{cluster.source_count}] {cluster.primary_title} "
                f"({cluster.primary_source}, velocity {cluster.velocity:.2f})"
            )

        signals = await manager.analyze_correlations(clusters)
        for signal in signals:
            logger.info(f"Signal {signal.type.value}: {signal.title}")
        if not signals:
            logger.info("No correlation signals")

    finally:
        logger.debug(f"Similarity oracle: {oracle.get_status()}")
        await oracle.close()
        manager.terminate()
        logger.info("newswatch stopped")


if __name__ == "__main__":
    asyncio.run(main())
