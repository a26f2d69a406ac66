"""
Data Ingestion Services for the TFT Blog aggregator.

This module provides adapters that fetch content from each upstream:
- Bilibili and YouTube feeds through RSSHub proxy instances
- TFTimes category pages (HTML)
- Tacter creator profiles (embedded JSON)

The fetch orchestrator (orchestrator.py) drives one adapter over a
platform's targets with pacing and retries.
"""

from tftblog.services.data_ingestion.errors import (
    FetchError,
    TransientFetchError,
    RateLimitError,
    AllInstancesExhaustedError,
    ParseError,
    PersistenceError,
    AuthorizationError,
)
from tftblog.services.data_ingestion.base import BaseAdapter, RawArticle
from tftblog.services.data_ingestion.rss import BilibiliAdapter, RSSFeedAdapter, YouTubeAdapter
from tftblog.services.data_ingestion.tftimes import TFTimesAdapter
from tftblog.services.data_ingestion.tacter import TacterAdapter
from tftblog.services.data_ingestion.registry import build_adapter

__all__ = [
    "FetchError",
    "TransientFetchError",
    "RateLimitError",
    "AllInstancesExhaustedError",
    "ParseError",
    "PersistenceError",
    "AuthorizationError",
    "BaseAdapter",
    "RawArticle",
    "RSSFeedAdapter",
    "BilibiliAdapter",
    "YouTubeAdapter",
    "TFTimesAdapter",
    "TacterAdapter",
    "build_adapter",
]
