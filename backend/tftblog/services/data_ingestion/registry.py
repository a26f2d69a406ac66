"""
Platform -> adapter registry.

Adding a platform means adding one adapter class here; nothing downstream
branches on platform names.
"""

from typing import Callable, Optional

import httpx

from tftblog.config import Settings
from tftblog.models.domain import Platform
from tftblog.services.data_ingestion.base import BaseAdapter
from tftblog.services.data_ingestion.rss import BilibiliAdapter, YouTubeAdapter
from tftblog.services.data_ingestion.tacter import TacterAdapter
from tftblog.services.data_ingestion.tftimes import TFTimesAdapter

AdapterFactory = Callable[[Settings, Optional[httpx.AsyncClient]], BaseAdapter]


def _common(settings: Settings, client: Optional[httpx.AsyncClient]) -> dict:
    return {
        "client": client,
        "timeout": settings.request_timeout_seconds,
        "item_limit": settings.fetch.items_per_target,
    }


ADAPTERS: dict[Platform, AdapterFactory] = {
    Platform.BILIBILI: lambda s, c: BilibiliAdapter(
        s.rsshub_instances, cookie=s.bilibili_cookie, **_common(s, c)
    ),
    Platform.YOUTUBE: lambda s, c: YouTubeAdapter(s.rsshub_instances, **_common(s, c)),
    Platform.TFTIMES: lambda s, c: TFTimesAdapter(**_common(s, c)),
    Platform.TACTER: lambda s, c: TacterAdapter(**_common(s, c)),
}


def build_adapter(
    platform: Platform,
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
) -> BaseAdapter:
    """Construct the adapter for a platform from application settings."""
    try:
        factory = ADAPTERS[platform]
    except KeyError:
        raise ValueError(f"No adapter registered for {platform}")
    return factory(settings, client)
