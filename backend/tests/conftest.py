"""
Shared fixtures: a throwaway sqlite database, virtual time for the
orchestrator, and a scripted adapter that never touches the network.
"""

from datetime import datetime, timedelta
from typing import Optional, Union

import pytest

from tftblog.models.database import Database
from tftblog.models.domain import Article, Platform, SourceTarget
from tftblog.services.data_ingestion.base import BaseAdapter, RawArticle
from tftblog.services.persistence import SqlArticleStore
from tftblog.services.sources import SourceRegistry

NOW = datetime(2024, 3, 1, 12, 0, 0)


@pytest.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await db.create_tables()
    yield db
    await db.dispose()


@pytest.fixture
def store(database):
    return SqlArticleStore(database)


@pytest.fixture
def registry(database):
    return SourceRegistry(database)


class VirtualTime:
    """Clock and sleep pair; sleeping advances the clock instantly."""

    def __init__(self, start: datetime = NOW):
        self.now = start
        self.sleeps: list[float] = []

    def clock(self) -> datetime:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def virtual_time():
    return VirtualTime()


class ScriptedAdapter(BaseAdapter):
    """
    Adapter whose result per target identifier is fixed up front.

    An exception outcome is raised on every attempt; a list is returned.
    """

    def __init__(
        self,
        outcomes: dict[str, Union[list[RawArticle], Exception]],
        platform: Platform = Platform.BILIBILI,
    ):
        super().__init__()
        self.platform = platform
        self.outcomes = outcomes
        self.calls: list[str] = []

    async def fetch(self, target: SourceTarget) -> list[RawArticle]:
        self.calls.append(target.identifier)
        outcome = self.outcomes[target.identifier]
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)


def make_target(
    identifier: str,
    platform: Platform = Platform.BILIBILI,
    name: Optional[str] = None,
    **metadata,
) -> SourceTarget:
    return SourceTarget(
        platform=platform,
        display_name=name or f"Creator {identifier}",
        identifier=identifier,
        metadata=metadata,
    )


def make_raw(
    slug: str,
    platform: Platform = Platform.BILIBILI,
    author: str = "Creator",
    published_at: Optional[datetime] = NOW,
) -> RawArticle:
    return RawArticle(
        platform=platform,
        title=f"Video {slug}",
        link=f"https://www.bilibili.com/video/BV{slug}",
        author=author,
        external_id=f"bilibili-BV{slug}",
        description=f"Description for video {slug}",
        published_at=published_at,
        fetched_at=NOW,
    )


def make_article(
    article_id: str,
    platform: Platform = Platform.BILIBILI,
    author: str = "Creator",
    published_at: datetime = NOW,
    title: Optional[str] = None,
) -> Article:
    return Article(
        id=article_id,
        title=title or f"Title {article_id}",
        description="Some description",
        link=f"https://example.com/{article_id}",
        platform=platform,
        author=author,
        category="视频",
        published_at=published_at,
        fetched_at=NOW,
    )
