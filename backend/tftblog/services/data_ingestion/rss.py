"""
RSS/Atom feeds for video platforms, reached through RSSHub proxy instances.

Feeds are read with small named regex rules rather than an XML parser:
proxy output is frequently not well-formed (stray entities, truncated
CDATA) and only a handful of fields are needed per item.
"""

from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Optional
import logging
import re

import httpx

from tftblog.models.domain import Platform, SourceTarget, as_naive_utc, utcnow
from tftblog.services.data_ingestion.base import (
    BROWSER_USER_AGENT,
    BaseAdapter,
    RawArticle,
)
from tftblog.services.data_ingestion.errors import (
    AllInstancesExhaustedError,
    ParseError,
    TransientFetchError,
)
from tftblog.services.ids import bilibili_video_id, prefixed_id, youtube_video_id
from tftblog.services.text import clean_text, decode_entities

logger = logging.getLogger(__name__)

RSS = "rss"
ATOM = "atom"

VIDEO_CATEGORY = "视频"


# =============================================================================
# Extraction rules
# =============================================================================

def detect_feed_format(xml: str) -> Optional[str]:
    """RSS 2.0 if the document has <item> elements, Atom if it has <entry>."""
    if re.search(r"<item[\s>]", xml):
        return RSS
    if re.search(r"<entry[\s>]", xml):
        return ATOM
    return None


def split_items(xml: str, feed_format: str) -> list[str]:
    tag = "item" if feed_format == RSS else "entry"
    pattern = re.compile(rf"<{tag}(?:\s[^>]*)?>([\s\S]*?)</{tag}>")
    return pattern.findall(xml)


def extract_tag_text(block: str, tag: str) -> str:
    """Inner text of the first <tag>, unwrapping CDATA when present."""
    name = re.escape(tag)
    match = re.search(
        rf"<{name}(?:\s[^>]*)?>\s*(?:<!\[CDATA\[([\s\S]*?)\]\]>|([\s\S]*?))\s*</{name}>",
        block,
    )
    if not match:
        return ""
    if match.group(1) is not None:
        return match.group(1)
    return match.group(2) or ""


def extract_feed_title(xml: str, feed_format: str) -> str:
    """Channel/feed title: the first <title> before the first item or entry."""
    first_item = re.search(r"<(?:item|entry)[\s>]", xml)
    head = xml[: first_item.start()] if first_item else xml
    return clean_text(extract_tag_text(head, "title"))


def extract_link(block: str, feed_format: str) -> str:
    if feed_format == RSS:
        return extract_tag_text(block, "link").strip()

    alternate = re.search(r"<link[^>]*rel=[\"']alternate[\"'][^>]*href=[\"']([^\"']+)[\"']", block)
    if alternate:
        return decode_entities(alternate.group(1))
    any_link = re.search(r"<link[^>]*href=[\"']([^\"']+)[\"']", block)
    return decode_entities(any_link.group(1)) if any_link else ""


def extract_description(block: str, feed_format: str) -> str:
    """Raw description HTML (still encoded), used for text and thumbnail."""
    if feed_format == RSS:
        candidates = ("description", "content:encoded")
    else:
        candidates = ("summary", "content", "media:description")
    for tag in candidates:
        text = extract_tag_text(block, tag)
        if text:
            return text
    return ""


def extract_published(block: str, feed_format: str) -> str:
    if feed_format == RSS:
        candidates = ("pubDate", "dc:date")
    else:
        candidates = ("published", "updated")
    for tag in candidates:
        text = extract_tag_text(block, tag).strip()
        if text:
            return text
    return ""


_THUMBNAIL_RULES = (
    ("enclosure", re.compile(r"<enclosure[^>]*url=[\"']([^\"']+)[\"'][^>]*>")),
    ("media:thumbnail", re.compile(r"<media:thumbnail[^>]*url=[\"']([^\"']+)[\"'][^>]*>")),
    ("media:content", re.compile(r"<media:content[^>]*url=[\"']([^\"']+)[\"'][^>]*type=[\"']image")),
    ("itunes:image", re.compile(r"<itunes:image[^>]*href=[\"']([^\"']+)[\"'][^>]*>")),
)

_IMG_SRC_RE = re.compile(r"<img[^>]*src=[\"']([^\"']+)[\"'][^>]*>")
_BACKGROUND_IMAGE_RE = re.compile(
    r"style=[\"'][^\"']*background-image:\s*url\([\"']?([^\"')]+)[\"']?\)"
)


def extract_thumbnail(block: str, raw_description: str) -> str:
    """
    First thumbnail found, in priority order: enclosure, media:thumbnail,
    media:content (images only), itunes:image, then an <img> or
    background-image inside the entity-decoded description.
    """
    for _, pattern in _THUMBNAIL_RULES:
        match = pattern.search(block)
        if match:
            return decode_entities(match.group(1))

    if raw_description:
        decoded = decode_entities(raw_description)
        for pattern in (_IMG_SRC_RE, _BACKGROUND_IMAGE_RE):
            match = pattern.search(decoded)
            if match:
                return match.group(1)
    return ""


def parse_feed_date(value: str) -> Optional[datetime]:
    """Parse RFC 822 (RSS) or ISO 8601 (Atom) dates to naive UTC."""
    if not value:
        return None

    try:
        return as_naive_utc(parsedate_to_datetime(value))
    except (ValueError, TypeError):
        pass

    try:
        return as_naive_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        pass

    try:
        # Try without timezone
        return datetime.fromisoformat(value[:19])
    except ValueError:
        return None


# =============================================================================
# Adapters
# =============================================================================

class RSSFeedAdapter(BaseAdapter):
    """
    Generic RSSHub-backed adapter.

    Subclasses provide the route for a target, how to read the upstream
    video id, and optionally a feed-title pattern that reveals the
    creator's display name.
    """

    author_title_pattern: Optional[re.Pattern] = None
    category = VIDEO_CATEGORY

    def __init__(
        self,
        instances: list[str],
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        item_limit: int = 5,
    ):
        super().__init__(client=client, timeout=timeout, item_limit=item_limit)
        self.instances = [i.rstrip("/") for i in instances]

    def route(self, target: SourceTarget) -> str:
        raise NotImplementedError

    def external_id(self, block: str, link: str) -> Optional[str]:
        return None

    def request_headers(self) -> dict:
        return {"User-Agent": BROWSER_USER_AGENT}

    async def fetch(self, target: SourceTarget) -> list[RawArticle]:
        """Try each proxy instance in order; the first valid feed wins."""
        errors = []
        path = self.route(target)

        for instance in self.instances:
            url = f"{instance}{path}"
            try:
                response = await self._get(url, headers=self.request_headers())
                self._check_status(response)
                body = response.text
                if not looks_like_feed(response.headers.get("content-type", ""), body):
                    raise TransientFetchError("Response is not an RSS/Atom document")
            except TransientFetchError as e:
                logger.warning(f"{instance} failed for {target.label}: {e}")
                errors.append(f"{instance}: {e}")
                continue

            articles = self.parse_feed(body, target)
            logger.debug(f"Fetched {len(articles)} items for {target.label} from {instance}")
            return articles

        raise AllInstancesExhaustedError(target.label, errors)

    def parse_feed(self, xml: str, target: SourceTarget) -> list[RawArticle]:
        """Parse up to `item_limit` items; a broken item is skipped, not fatal."""
        feed_format = detect_feed_format(xml)
        if feed_format is None:
            logger.info(f"No items in feed for {target.label}")
            return []

        author = self.resolve_author(extract_feed_title(xml, feed_format), target)
        fetched_at = utcnow()

        articles = []
        for block in split_items(xml, feed_format):
            if len(articles) >= self.item_limit:
                break
            try:
                articles.append(self.parse_item(block, feed_format, author, fetched_at))
            except ParseError as e:
                logger.warning(f"Skipping item from {target.label}: {e}")
        return articles

    def parse_item(
        self,
        block: str,
        feed_format: str,
        author: str,
        fetched_at: datetime,
    ) -> RawArticle:
        title = clean_text(extract_tag_text(block, "title"))
        if not title:
            raise ParseError("item has no title")

        link = extract_link(block, feed_format)
        if not link:
            raise ParseError(f"item '{title}' has no link")

        raw_description = extract_description(block, feed_format)

        return RawArticle(
            platform=self.platform,
            title=title,
            link=link,
            author=author,
            external_id=self.external_id(block, link),
            description=raw_description,
            thumbnail=extract_thumbnail(block, raw_description),
            category=self.category,
            published_at=parse_feed_date(extract_published(block, feed_format)),
            fetched_at=fetched_at,
        )

    def resolve_author(self, feed_title: str, target: SourceTarget) -> str:
        """Display name from the feed title, else the configured name."""
        if self.author_title_pattern is not None and feed_title:
            match = self.author_title_pattern.match(feed_title)
            if match and match.group(1).strip():
                return match.group(1).strip()
        return target.display_name


def looks_like_feed(content_type: str, body: str) -> bool:
    content_type = content_type.lower()
    if "xml" in content_type or "rss" in content_type:
        return True
    # Some proxies serve feeds as text/html or without a content type
    return "<rss" in body or "<feed" in body


class BilibiliAdapter(RSSFeedAdapter):
    """Bilibili uploader videos via /bilibili/user/video/{uid}."""

    platform = Platform.BILIBILI
    author_title_pattern = re.compile(r"^(.+?)\s*的\s*bilibili\s*空间$", re.IGNORECASE)

    def __init__(self, instances: list[str], cookie: Optional[str] = None, **kwargs):
        super().__init__(instances, **kwargs)
        self.cookie = cookie

    def route(self, target: SourceTarget) -> str:
        return f"/bilibili/user/video/{target.identifier}"

    def request_headers(self) -> dict:
        headers = super().request_headers()
        if self.cookie:
            headers["Cookie"] = self.cookie
        return headers

    def external_id(self, block: str, link: str) -> Optional[str]:
        video_id = bilibili_video_id(link)
        return prefixed_id("bilibili", video_id) if video_id else None


class YouTubeAdapter(RSSFeedAdapter):
    """YouTube channel or user uploads via RSSHub."""

    platform = Platform.YOUTUBE

    def route(self, target: SourceTarget) -> str:
        kind = target.metadata.get("type", "channel")
        if kind == "user":
            return f"/youtube/user/{target.identifier}"
        return f"/youtube/channel/{target.identifier}"

    def external_id(self, block: str, link: str) -> Optional[str]:
        video_id = youtube_video_id(extract_tag_text(block, "yt:videoId").strip())
        if not video_id and "watch?v=" in link:
            video_id = youtube_video_id(link)
        return prefixed_id("youtube", video_id) if video_id else None
