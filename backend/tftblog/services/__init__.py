"""
Services layer - core business logic for the TFT Blog aggregator.

1. Text and ids (text.py, ids.py):
   - Description sanitization with a placeholder for markup debris
   - Stable article ids from upstream ids or a link hash

2. Normalization and dedup (normalize.py, dedup.py):
   - Candidate -> Article conversion
   - Run-level dedup by id and the freshness window

3. Persistence (persistence.py):
   - Upsert-by-id article store with per-item failure accounting

4. Sources (sources.py):
   - Registry of accounts/channels/categories to poll

5. Statistics (statistics.py):
   - Per-author activity and filter values

6. Pipeline (pipeline.py):
   - Runs one fetch orchestrator per platform, platforms concurrently
"""

from tftblog.services.text import sanitize_description, clean_text
from tftblog.services.ids import derive_article_id, link_hash
from tftblog.services.cache import TTLCache
from tftblog.services.dedup import deduplicate, filter_recent
from tftblog.services.normalize import normalize
from tftblog.services.persistence import ArticleStore, SqlArticleStore
from tftblog.services.sources import (
    DuplicateSourceError,
    ProtectedSourceError,
    SourceNotFoundError,
    SourceRegistry,
)
from tftblog.services.statistics import StatisticsService
from tftblog.services.auth import ApiKeyAuthGate, AuthGate
from tftblog.services.pipeline import PipelineService

__all__ = [
    # Text and ids
    "sanitize_description",
    "clean_text",
    "derive_article_id",
    "link_hash",
    # Caching
    "TTLCache",
    # Normalization
    "deduplicate",
    "filter_recent",
    "normalize",
    # Persistence
    "ArticleStore",
    "SqlArticleStore",
    # Sources
    "DuplicateSourceError",
    "ProtectedSourceError",
    "SourceNotFoundError",
    "SourceRegistry",
    # Statistics
    "StatisticsService",
    # Auth
    "ApiKeyAuthGate",
    "AuthGate",
    # Pipeline
    "PipelineService",
]
