"""
Run-level deduplication and freshness filtering.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from tftblog.models.domain import Article, utcnow


def deduplicate(articles: Iterable[Article]) -> list[Article]:
    """Keep the first occurrence of each id, preserving order."""
    seen_ids = set()
    unique = []
    for article in articles:
        if article.id in seen_ids:
            continue
        seen_ids.add(article.id)
        unique.append(article)
    return unique


def filter_recent(
    articles: Iterable[Article],
    window: timedelta,
    now: Optional[datetime] = None,
) -> list[Article]:
    """
    Drop articles published before `now - window`.

    Returns the survivors sorted newest first.
    """
    cutoff = (now or utcnow()) - window
    recent = [a for a in articles if a.published_at >= cutoff]
    recent.sort(key=lambda a: a.published_at, reverse=True)
    return recent
