"""
Article persistence gateway.

Upsert-by-id is the only write path, so repeated and overlapping runs never
produce duplicate rows. Each upsert commits on its own; one bad item does
not roll back the rest of a batch.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional

import structlog
from sqlalchemy import case, func, select

from tftblog.models.database import Database, DBArticle
from tftblog.models.domain import (
    Article,
    ArticlePage,
    AuthorActivity,
    Platform,
    SaveResult,
    UpsertOutcome,
    utcnow,
)
from tftblog.services.data_ingestion.errors import PersistenceError

logger = structlog.get_logger()

GROUPABLE_FIELDS = ("platform", "author", "category")


class ArticleStore(ABC):
    """Storage contract consumed by the orchestrator and the query surface."""

    @abstractmethod
    async def upsert(self, article: Article) -> UpsertOutcome:
        """Insert, or overwrite every field of the existing row with this id."""
        pass

    @abstractmethod
    async def exists(self, article_id: str) -> bool:
        pass

    @abstractmethod
    async def get(self, article_id: str) -> Optional[Article]:
        pass

    @abstractmethod
    async def query(
        self,
        platform: Optional[str] = None,
        author: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> ArticlePage:
        """Newest-first page of matching articles plus the total match count."""
        pass

    @abstractmethod
    async def count_grouped_by(self, field: str) -> list[tuple[str, int]]:
        pass

    @abstractmethod
    async def author_activity(self, since: datetime) -> list[AuthorActivity]:
        """Totals per (platform, author), with counts published since `since`."""
        pass

    @abstractmethod
    async def distinct_values(self, field: str) -> list[str]:
        pass

    async def save_all(self, articles: Iterable[Article]) -> SaveResult:
        """
        Upsert a batch, counting failures per item instead of aborting.

        Returns:
            SaveResult with created/updated/failed tallies
        """
        result = SaveResult()
        for article in articles:
            result.article_count += 1
            try:
                outcome = await self._upsert_one(article)
            except PersistenceError as e:
                logger.error("Article upsert failed", article_id=e.article_id, error=str(e.cause))
                result.failed += 1
                continue

            if outcome == UpsertOutcome.CREATED:
                result.created += 1
            else:
                result.updated += 1
        return result

    async def _upsert_one(self, article: Article) -> UpsertOutcome:
        try:
            return await self.upsert(article)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(article.id, e) from e


def _check_field(field: str) -> str:
    if field not in GROUPABLE_FIELDS:
        raise ValueError(f"Cannot group by {field!r}; expected one of {GROUPABLE_FIELDS}")
    return field


def _to_domain(row: DBArticle) -> Article:
    return Article(
        id=row.id,
        title=row.title,
        description=row.description or "",
        link=row.link or "",
        thumbnail=row.thumbnail or "",
        platform=Platform(row.platform),
        author=row.author,
        category=row.category or "",
        published_at=row.published_at,
        fetched_at=row.fetched_at,
    )


def _apply(row: DBArticle, article: Article) -> None:
    row.title = article.title
    row.description = article.description
    row.link = article.link
    row.thumbnail = article.thumbnail
    row.platform = article.platform.value
    row.author = article.author
    row.category = article.category
    row.published_at = article.published_at
    row.fetched_at = article.fetched_at


class SqlArticleStore(ArticleStore):
    """ArticleStore over the SQLAlchemy async engine."""

    def __init__(self, database: Database):
        self.database = database

    async def upsert(self, article: Article) -> UpsertOutcome:
        async with self.database.async_session() as session:
            existing = await session.get(DBArticle, article.id)
            if existing is None:
                row = DBArticle(id=article.id)
                _apply(row, article)
                session.add(row)
                outcome = UpsertOutcome.CREATED
            else:
                _apply(existing, article)
                existing.updated_at = utcnow()
                outcome = UpsertOutcome.UPDATED
            await session.commit()
        return outcome

    async def exists(self, article_id: str) -> bool:
        async with self.database.async_session() as session:
            result = await session.execute(
                select(func.count(DBArticle.id)).where(DBArticle.id == article_id)
            )
            return result.scalar() > 0

    async def get(self, article_id: str) -> Optional[Article]:
        async with self.database.async_session() as session:
            row = await session.get(DBArticle, article_id)
            return _to_domain(row) if row else None

    async def query(
        self,
        platform: Optional[str] = None,
        author: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> ArticlePage:
        page = max(page, 1)
        conditions = []
        if platform:
            conditions.append(DBArticle.platform == platform)
        if author:
            conditions.append(DBArticle.author == author)

        async with self.database.async_session() as session:
            total = (
                await session.execute(select(func.count(DBArticle.id)).where(*conditions))
            ).scalar()

            result = await session.execute(
                select(DBArticle)
                .where(*conditions)
                .order_by(DBArticle.published_at.desc(), DBArticle.id)
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            items = [_to_domain(row) for row in result.scalars().all()]

        return ArticlePage(items=items, total=total, page=page, page_size=page_size)

    async def count_grouped_by(self, field: str) -> list[tuple[str, int]]:
        column = getattr(DBArticle, _check_field(field))
        async with self.database.async_session() as session:
            result = await session.execute(
                select(column, func.count(DBArticle.id).label("count"))
                .group_by(column)
                .order_by(func.count(DBArticle.id).desc(), column)
            )
            return [(value, count) for value, count in result.all()]

    async def author_activity(self, since: datetime) -> list[AuthorActivity]:
        total = func.count(DBArticle.id)
        weekly = func.sum(case((DBArticle.published_at >= since, 1), else_=0))
        latest = func.max(DBArticle.published_at)

        async with self.database.async_session() as session:
            result = await session.execute(
                select(DBArticle.platform, DBArticle.author, total, weekly, latest)
                .group_by(DBArticle.platform, DBArticle.author)
                .order_by(DBArticle.platform.asc(), total.desc(), DBArticle.author)
            )
            return [
                AuthorActivity(
                    platform=platform,
                    author=author,
                    total_count=total_count,
                    weekly_count=weekly_count or 0,
                    latest_published=latest_published,
                )
                for platform, author, total_count, weekly_count, latest_published in result.all()
            ]

    async def distinct_values(self, field: str) -> list[str]:
        column = getattr(DBArticle, _check_field(field))
        async with self.database.async_session() as session:
            result = await session.execute(select(column).distinct().order_by(column))
            return [value for value in result.scalars().all() if value]
