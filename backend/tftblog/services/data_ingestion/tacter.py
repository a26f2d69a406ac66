"""
Tacter creator guides, read from the Next.js state embedded in profile pages.

The profile HTML carries a __NEXT_DATA__ script whose
props.pageProps.dehydratedState is itself a JSON-encoded string holding the
react-query cache. Guides live under queries[].state.data.pages.
"""

from datetime import datetime, timezone
from typing import Any, Iterator, Optional
import json
import logging
import re

from tftblog.models.domain import Platform, SourceTarget, as_naive_utc, utcnow
from tftblog.services.data_ingestion.base import BROWSER_HEADERS, BaseAdapter, RawArticle
from tftblog.services.data_ingestion.errors import ParseError
from tftblog.services.ids import prefixed_id

logger = logging.getLogger(__name__)

TACTER_BASE_URL = "https://www.tacter.com"
GUIDE_CATEGORY = "攻略"
CHAMPIONS_PREFIX = "英雄: "
MAX_CHAMPIONS = 5
UNTITLED = "Untitled"

_NEXT_DATA_RE = re.compile(r'<script[^>]*id="__NEXT_DATA__"[^>]*>([\s\S]*?)</script>')
_BARE_TITLE_RE = re.compile(r'"title":"([^"]+)"')


def has_next_data(html: str) -> bool:
    return _NEXT_DATA_RE.search(html) is not None


def extract_next_data(html: str) -> dict:
    """Decode the embedded state, including the nested dehydratedState string."""
    match = _NEXT_DATA_RE.search(html)
    if not match:
        raise ParseError("__NEXT_DATA__ script not found")

    try:
        next_data = json.loads(match.group(1))
        dehydrated = next_data["props"]["pageProps"]["dehydratedState"]
        if isinstance(dehydrated, str):
            dehydrated = json.loads(dehydrated)
    except (ValueError, KeyError, TypeError) as e:
        raise ParseError(f"Malformed embedded state: {e}") from e

    if not isinstance(dehydrated, dict):
        raise ParseError("dehydratedState is not an object")
    return dehydrated


def iter_guides(state: dict) -> Iterator[dict]:
    """Yield every guide object in the paginated query cache, in order."""
    queries = state.get("queries") or []
    if not isinstance(queries, list):
        raise ParseError("queries is not a list")

    for query in queries:
        data = ((query or {}).get("state") or {}).get("data")
        if not isinstance(data, dict) or not data.get("pages"):
            continue
        for page in data["pages"]:
            items = page if isinstance(page, list) else list(page.values())
            for guide in items:
                if isinstance(guide, dict) and guide.get("id"):
                    yield guide


def guide_link(slug: str) -> str:
    return f"{TACTER_BASE_URL}/tft/guides/{slug}" if slug else ""


def absolute_url(path: str) -> str:
    if not path or path.startswith("http"):
        return path
    return f"{TACTER_BASE_URL}{'' if path.startswith('/') else '/'}{path}"


def champion_description(guide: dict) -> Optional[str]:
    """`英雄: a, b, c` from the guide header's champion list, if any."""
    champions = (((guide.get("header") or {}).get("content") or {}).get("champions"))
    if not champions:
        return None
    if isinstance(champions, dict):
        champions = list(champions.values())
    names = [c.get("name") for c in champions if isinstance(c, dict) and c.get("name")]
    if not names:
        return None
    return CHAMPIONS_PREFIX + ", ".join(names[:MAX_CHAMPIONS])


def parse_guide_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        if isinstance(value, (int, float)):
            # Epoch milliseconds
            return as_naive_utc(datetime.fromtimestamp(value / 1000, tz=timezone.utc))
        return as_naive_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except (OverflowError, OSError, ValueError):
        return None


class TacterAdapter(BaseAdapter):
    """
    Guides from one Tacter creator profile (`/@{username}`).

    A page without the embedded state script yields no guides. When the
    state is present but cannot be walked, a regex scan for bare
    `"title":"..."` pairs yields degraded records instead of failing the
    target. Degraded ids are `tacter-{username}-{index}`, which are not
    stable if the page reorders.
    """

    platform = Platform.TACTER

    def __init__(self, base_url: str = TACTER_BASE_URL, **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")

    async def fetch(self, target: SourceTarget) -> list[RawArticle]:
        url = f"{self.base_url}/@{target.identifier}"
        response = await self._get(url, headers=BROWSER_HEADERS)
        self._check_status(response)

        return self.parse_profile(response.text, target)

    def parse_profile(self, html: str, target: SourceTarget) -> list[RawArticle]:
        if not has_next_data(html):
            logger.info(f"No embedded state on {target.label}")
            return []

        fetched_at = utcnow()
        try:
            state = extract_next_data(html)
            articles = [self.parse_guide(g, target, fetched_at) for g in iter_guides(state)]
        except Exception as e:
            logger.warning(f"Embedded state unusable for {target.label}, using title scan: {e}")
            articles = self.scan_titles(html, target, fetched_at)

        return self._unique_titles(articles)[: self.item_limit]

    def parse_guide(self, guide: dict, target: SourceTarget, fetched_at: datetime) -> RawArticle:
        published_at = parse_guide_time(guide.get("createdAt")) or parse_guide_time(
            guide.get("updatedAt")
        )
        return RawArticle(
            platform=self.platform,
            title=guide.get("title") or guide.get("displayName") or UNTITLED,
            link=guide_link(guide.get("slug") or ""),
            author=target.display_name,
            external_id=prefixed_id("tacter", str(guide["id"])),
            description=champion_description(guide) or target.metadata.get("description", ""),
            thumbnail=absolute_url(guide.get("authorProfilePicture") or ""),
            category=GUIDE_CATEGORY,
            published_at=published_at,
            fetched_at=fetched_at,
        )

    def scan_titles(self, html: str, target: SourceTarget, fetched_at: datetime) -> list[RawArticle]:
        """Degraded records: title only, no link, no thumbnail."""
        articles = []
        for i, title in enumerate(_BARE_TITLE_RE.findall(html)[: self.item_limit]):
            articles.append(
                RawArticle(
                    platform=self.platform,
                    title=title,
                    link="",
                    author=target.display_name,
                    external_id=prefixed_id("tacter", f"{target.identifier}-{i}"),
                    description=target.metadata.get("description", ""),
                    category=GUIDE_CATEGORY,
                    published_at=fetched_at,
                    fetched_at=fetched_at,
                )
            )
        return articles

    def _unique_titles(self, articles: list[RawArticle]) -> list[RawArticle]:
        # Overlapping cache pages repeat guides
        seen = set()
        unique = []
        for article in articles:
            if article.title in seen:
                continue
            seen.add(article.title)
            unique.append(article)
        return unique
