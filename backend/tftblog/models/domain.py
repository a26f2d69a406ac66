"""
Domain models for the TFT Blog aggregator.
These are the core business entities, independent of database/API representation.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Naive UTC now; every timestamp in the pipeline is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC, leaving naive values alone."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# =============================================================================
# Enums
# =============================================================================

class Platform(str, Enum):
    """Upstream integrations that produce articles."""
    BILIBILI = "Bilibili"
    YOUTUBE = "YouTube"
    TACTER = "Tacter"
    TFTIMES = "TFTimes"

    @classmethod
    def parse(cls, value: str) -> "Platform":
        """Case-insensitive lookup by value or member name."""
        for platform in cls:
            if value.lower() in (platform.value.lower(), platform.name.lower()):
                return platform
        raise ValueError(f"Unknown platform: {value}")


class Role(str, Enum):
    """Principal roles known to the admin gate."""
    ADMIN = "admin"
    USER = "user"


# =============================================================================
# Articles
# =============================================================================

class Article(BaseModel):
    """Canonical, normalized article record."""
    id: str  # Stable id, e.g. bilibili-BV1xx411c7mD or a link hash
    title: str
    description: str = ""
    link: str = ""
    thumbnail: str = ""
    platform: Platform
    author: str
    category: str = ""
    published_at: datetime
    fetched_at: datetime = Field(default_factory=utcnow)


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


class SaveResult(BaseModel):
    """Insert/update accounting for one batch of upserts."""
    article_count: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0

    def __add__(self, other: "SaveResult") -> "SaveResult":
        return SaveResult(
            article_count=self.article_count + other.article_count,
            created=self.created + other.created,
            updated=self.updated + other.updated,
            failed=self.failed + other.failed,
        )


# =============================================================================
# Source targets
# =============================================================================

class SourceTarget(BaseModel):
    """
    One configured account/channel/category to poll.

    `identifier` is the platform-specific key: Bilibili UID, YouTube channel
    id or username, Tacter username, or TFTimes category path.
    """
    id: Optional[int] = None  # Store id, absent until registered
    platform: Platform
    display_name: str
    identifier: str
    enabled: bool = True
    metadata: dict[str, str] = Field(default_factory=dict)  # fans, description, type

    @property
    def label(self) -> str:
        return f"{self.platform.value}:{self.display_name}"


# =============================================================================
# Query surface
# =============================================================================

class AuthorActivity(BaseModel):
    """Per (platform, author) counts used to spot sources that went quiet."""
    platform: str
    author: str
    total_count: int
    weekly_count: int
    latest_published: Optional[datetime] = None


class AuthorCount(BaseModel):
    name: str
    count: int


class ArticlePage(BaseModel):
    """One page of the article listing plus the total matching count."""
    items: list[Article]
    total: int
    page: int
    page_size: int

    @property
    def page_count(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size
