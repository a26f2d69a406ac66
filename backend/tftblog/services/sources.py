"""
Source registry - the configured accounts, channels and categories to poll.
"""
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from tftblog.models.database import Database, DBSource
from tftblog.models.domain import Platform, SourceTarget
from tftblog.services.data_ingestion.tftimes import DEFAULT_TFTIMES_CATEGORIES

logger = structlog.get_logger()

# Targets of these platforms are managed by seeding, not by users
PROTECTED_PLATFORMS = {Platform.TFTIMES}


class SourceError(Exception):
    pass


class DuplicateSourceError(SourceError):
    """A target with the same platform and identifier is already registered."""


class ProtectedSourceError(SourceError):
    """The target's platform does not allow removal."""


class SourceNotFoundError(SourceError):
    pass


def _to_target(row: DBSource) -> SourceTarget:
    return SourceTarget(
        id=row.id,
        platform=Platform(row.platform),
        display_name=row.name,
        identifier=row.identifier,
        enabled=row.enabled,
        metadata=row.metadata_json or {},
    )


class SourceRegistry:
    """Read and manage source targets stored in the `sources` table."""

    def __init__(self, database: Database):
        self.database = database

    async def list_enabled_targets(self, platform: Platform) -> list[SourceTarget]:
        """Enabled targets of one platform, in registration order."""
        async with self.database.async_session() as session:
            result = await session.execute(
                select(DBSource)
                .where(DBSource.platform == platform.value, DBSource.enabled.is_(True))
                .order_by(DBSource.id)
            )
            return [_to_target(row) for row in result.scalars().all()]

    async def list_targets(self, platform: Optional[Platform] = None) -> list[SourceTarget]:
        query = select(DBSource).order_by(DBSource.platform, DBSource.id)
        if platform is not None:
            query = query.where(DBSource.platform == platform.value)
        async with self.database.async_session() as session:
            result = await session.execute(query)
            return [_to_target(row) for row in result.scalars().all()]

    async def get_target(self, source_id: int) -> SourceTarget:
        async with self.database.async_session() as session:
            row = await session.get(DBSource, source_id)
            if row is None:
                raise SourceNotFoundError(f"Source {source_id} not found")
            return _to_target(row)

    async def add_target(self, target: SourceTarget) -> SourceTarget:
        """
        Register a target.

        Raises:
            DuplicateSourceError: same platform and identifier already exist
        """
        async with self.database.async_session() as session:
            existing = await session.execute(
                select(DBSource.id).where(
                    DBSource.platform == target.platform.value,
                    DBSource.identifier == target.identifier,
                )
            )
            if existing.scalar_one_or_none() is not None:
                raise DuplicateSourceError(
                    f"{target.platform.value} source {target.identifier!r} already exists"
                )

            row = DBSource(
                platform=target.platform.value,
                name=target.display_name,
                identifier=target.identifier,
                enabled=target.enabled,
                metadata_json=dict(target.metadata),
            )
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateSourceError(
                    f"{target.platform.value} source {target.identifier!r} already exists"
                ) from e
            await session.refresh(row)

        logger.info("Source added", platform=target.platform.value, identifier=target.identifier)
        return _to_target(row)

    async def set_enabled(self, source_id: int, enabled: bool) -> SourceTarget:
        async with self.database.async_session() as session:
            row = await session.get(DBSource, source_id)
            if row is None:
                raise SourceNotFoundError(f"Source {source_id} not found")
            row.enabled = enabled
            await session.commit()
            await session.refresh(row)
            return _to_target(row)

    async def remove_target(self, source_id: int) -> None:
        """
        Delete a target.

        Raises:
            SourceNotFoundError: no such id
            ProtectedSourceError: the platform's targets cannot be removed
        """
        async with self.database.async_session() as session:
            row = await session.get(DBSource, source_id)
            if row is None:
                raise SourceNotFoundError(f"Source {source_id} not found")
            if Platform(row.platform) in PROTECTED_PLATFORMS:
                raise ProtectedSourceError(f"{row.platform} sources cannot be removed")
            await session.delete(row)
            await session.commit()

        logger.info("Source removed", source_id=source_id)

    async def seed_defaults(self) -> int:
        """Register the built-in TFTimes categories; returns how many were added."""
        added = 0
        for name, path in DEFAULT_TFTIMES_CATEGORIES:
            try:
                await self.add_target(
                    SourceTarget(platform=Platform.TFTIMES, display_name=name, identifier=path)
                )
                added += 1
            except DuplicateSourceError:
                continue
        return added
