"""
Domain and persistence models for the TFT Blog aggregator.
"""
from tftblog.models.domain import (
    Article,
    ArticlePage,
    AuthorActivity,
    AuthorCount,
    Platform,
    Role,
    SaveResult,
    SourceTarget,
    UpsertOutcome,
)

__all__ = [
    "Article",
    "ArticlePage",
    "AuthorActivity",
    "AuthorCount",
    "Platform",
    "Role",
    "SaveResult",
    "SourceTarget",
    "UpsertOutcome",
]
