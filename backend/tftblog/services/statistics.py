"""
Aggregate statistics over stored articles.

Used to spot sources that went quiet and to populate filter controls.
"""
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Optional

from tftblog.models.domain import AuthorActivity, AuthorCount, utcnow
from tftblog.services.persistence import ArticleStore

ACTIVITY_WINDOW = timedelta(days=7)


class StatisticsService:
    def __init__(self, store: ArticleStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self._clock = clock

    async def author_activity(self, window: timedelta = ACTIVITY_WINDOW) -> list[AuthorActivity]:
        """
        Total and recent counts per (platform, author).

        Sorted by platform, then by total count descending. `weekly_count`
        counts articles published within `window` of now.
        """
        return await self.store.author_activity(since=self._clock() - window)

    async def authors_by_platform(
        self, platform: Optional[str] = None
    ) -> dict[str, list[AuthorCount]]:
        """Authors per platform with their article counts, busiest first."""
        grouped: dict[str, list[AuthorCount]] = defaultdict(list)
        for row in await self.store.author_activity(since=self._clock()):
            if platform and row.platform != platform:
                continue
            grouped[row.platform].append(AuthorCount(name=row.author, count=row.total_count))

        for authors in grouped.values():
            authors.sort(key=lambda a: (-a.count, a.name))
        return dict(grouped)

    async def platforms(self) -> list[str]:
        return await self.store.distinct_values("platform")

    async def authors(self) -> list[str]:
        return await self.store.distinct_values("author")

    async def platform_counts(self) -> dict[str, int]:
        return dict(await self.store.count_grouped_by("platform"))
