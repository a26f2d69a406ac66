"""
Base classes and data models for data ingestion.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
import logging

import httpx

from tftblog.models.domain import Platform, SourceTarget, utcnow
from tftblog.services.data_ingestion.errors import RateLimitError, TransientFetchError

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

BROWSER_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

DEFAULT_ITEM_LIMIT = 5
DEFAULT_TIMEOUT = 30.0


@dataclass
class RawArticle:
    """
    Candidate article from an adapter before normalization.

    This is the intermediate format between upstream-specific data and the
    normalized Article model. Descriptions may still contain HTML.
    """
    # Required fields
    platform: Platform
    title: str
    link: str
    author: str

    # Upstream-stable id (bilibili-BV..., tftimes-123); None means hash the link
    external_id: Optional[str] = None

    # Content
    description: str = ""
    thumbnail: str = ""
    category: str = ""

    # Timing
    published_at: Optional[datetime] = None
    fetched_at: datetime = field(default_factory=utcnow)


class BaseAdapter(ABC):
    """
    Abstract base class for upstream adapters.

    Each adapter implementation handles:
    - Fetching one target's page or feed
    - Parsing the upstream-specific format
    - Mapping items to RawArticle candidates

    Adapters never sleep; pacing belongs to the orchestrator.
    """

    platform: Platform

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
        item_limit: int = DEFAULT_ITEM_LIMIT,
    ):
        self._client = client
        self.timeout = timeout
        self.item_limit = item_limit

    @property
    def name(self) -> str:
        return self.platform.value

    @abstractmethod
    async def fetch(self, target: SourceTarget) -> list[RawArticle]:
        """
        Fetch the latest items for one target.

        Args:
            target: The configured account/channel/category

        Returns:
            Candidates in upstream order, at most `item_limit`

        Raises:
            FetchError: when the target could not be fetched at all
        """
        pass

    async def _get(self, url: str, headers: Optional[dict] = None) -> httpx.Response:
        """GET with the adapter's timeout; transport failures become TransientFetchError."""
        try:
            if self._client is not None:
                return await self._client.get(
                    url, headers=headers, timeout=self.timeout, follow_redirects=True
                )
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                return await client.get(url, headers=headers)
        except httpx.TimeoutException as e:
            raise TransientFetchError(f"Timeout fetching {url}: {e}") from e
        except httpx.HTTPError as e:
            raise TransientFetchError(f"HTTP error fetching {url}: {e}") from e

    def _check_status(self, response: httpx.Response) -> None:
        """Raise for anything but 200, singling out anti-bot rejections."""
        if response.status_code == 200:
            return
        if is_rate_limited(response):
            raise RateLimitError(
                f"Rate limited by upstream (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        raise TransientFetchError(
            f"HTTP {response.status_code}", status_code=response.status_code
        )


_RATE_LIMIT_MARKERS = ("-352", "风控校验失败")


def is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    if response.status_code == 503:
        body = response.text
        return any(marker in body for marker in _RATE_LIMIT_MARKERS)
    return False
