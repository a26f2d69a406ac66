"""
TFTimes category pages, scraped from raw HTML.

Each article on a category listing is an <article class="... entry-card ...">
block; fields inside it are located by class-name substrings.
"""

from datetime import datetime
from typing import Optional
import logging
import re

from tftblog.models.domain import Platform, SourceTarget, utcnow
from tftblog.services.data_ingestion.base import BROWSER_HEADERS, BaseAdapter, RawArticle
from tftblog.services.data_ingestion.errors import ParseError
from tftblog.services.ids import prefixed_id
from tftblog.services.text import clean_text

logger = logging.getLogger(__name__)

TFTIMES_BASE_URL = "https://www.tftimes.jp"
TFTIMES_AUTHOR = "TFTimes"
GENERAL_CATEGORY = "综合"

META_AND_STRATEGY_PATH = "/category/%e3%83%a1%e3%82%bf%ef%bc%86%e6%94%bb%e7%95%a5/"
PATCH_NOTES_PATH = (
    "/category/%e3%83%91%e3%83%83%e3%83%81%e3%83%8e%e3%83%bc%e3%83%88"
    "%ef%bc%88%e3%83%a9%e3%82%a4%e3%83%96%e3%83%bbpbe%ef%bc%89/"
)
NEWS_PATH = "/category/%e3%83%8b%e3%83%a5%e3%83%bc%e3%82%b9/"

# Category path -> label used when a block carries no category markup
CATEGORY_LABELS = {
    META_AND_STRATEGY_PATH: "攻略",
    PATCH_NOTES_PATH: "版本",
    NEWS_PATH: "新闻",
}

# (display name, path) registered by default
DEFAULT_TFTIMES_CATEGORIES = [
    ("メタ＆攻略", META_AND_STRATEGY_PATH),
    ("パッチノート", PATCH_NOTES_PATH),
    ("ニュース", NEWS_PATH),
]

_ARTICLE_BLOCK_RE = re.compile(r'<article[^>]*class="[^"]*entry-card[^"]*"[^>]*>[\s\S]*?</article>')
_TITLE_RE = re.compile(
    r'<h2[^>]*class="[^"]*entry-card-title[^"]*"[^>]*itemprop="headline"[^>]*>([\s\S]*?)</h2>'
)
_POST_ID_RE = re.compile(r'id="post-(\d+)"')
_SNIPPET_RE = re.compile(r'<div[^>]*class="[^"]*entry-card-snippet[^"]*"[^>]*>([\s\S]*?)</div>')
_DATE_RE = re.compile(r'<span[^>]*class="[^"]*entry-date[^"]*"[^>]*>([\s\S]*?)</span>')
_CATEGORY_RES = (
    re.compile(r'<span[^>]*class="[^"]*cat-name[^"]*"[^>]*>([\s\S]*?)</span>'),
    re.compile(r'<a[^>]*class="[^"]*cat-link[^"]*"[^>]*>([\s\S]*?)</a>'),
    re.compile(r'<span[^>]*class="[^"]*category[^"]*"[^>]*>([\s\S]*?)</span>'),
)


def category_label(path: str) -> str:
    return CATEGORY_LABELS.get(path, GENERAL_CATEGORY)


def split_article_blocks(html: str) -> list[str]:
    return _ARTICLE_BLOCK_RE.findall(html)


def extract_title(block: str) -> str:
    match = _TITLE_RE.search(block)
    return clean_text(match.group(1)) if match else ""


def extract_post_id(block: str) -> Optional[str]:
    match = _POST_ID_RE.search(block)
    return match.group(1) if match else None


def extract_snippet(block: str) -> str:
    match = _SNIPPET_RE.search(block)
    return match.group(1) if match else ""


def extract_category(block: str) -> Optional[str]:
    for pattern in _CATEGORY_RES:
        match = pattern.search(block)
        if match:
            label = clean_text(match.group(1))
            if label:
                return label
    return None


def parse_listing_date(value: str) -> Optional[datetime]:
    """Parse the site's YYYY.MM.DD date format."""
    parts = value.strip().split(".")
    if len(parts) != 3:
        return None
    try:
        year, month, day = (int(p) for p in parts)
        return datetime(year, month, day)
    except ValueError:
        return None


def extract_published(block: str) -> Optional[datetime]:
    match = _DATE_RE.search(block)
    return parse_listing_date(clean_text(match.group(1))) if match else None


def post_link(post_id: str) -> str:
    return f"{TFTIMES_BASE_URL}/?p={post_id}"


class TFTimesAdapter(BaseAdapter):
    """
    Scrape one TFTimes category listing.

    The target identifier is the category path, e.g. `/category/news/`.
    """

    platform = Platform.TFTIMES

    def __init__(self, base_url: str = TFTIMES_BASE_URL, **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")

    async def fetch(self, target: SourceTarget) -> list[RawArticle]:
        url = f"{self.base_url}{target.identifier}"
        headers = dict(BROWSER_HEADERS)
        headers["Accept-Language"] = "ja,en-US;q=0.7,en;q=0.3"

        response = await self._get(url, headers=headers)
        self._check_status(response)

        return self.parse_listing(response.text, target)

    def parse_listing(self, html: str, target: SourceTarget) -> list[RawArticle]:
        """Parse article blocks until `item_limit` well-formed ones are collected."""
        blocks = split_article_blocks(html)
        if not blocks:
            logger.info(f"No article blocks found for {target.label}")
            return []

        fallback_category = category_label(target.identifier)
        fetched_at = utcnow()

        articles = []
        for i, block in enumerate(blocks):
            if len(articles) >= self.item_limit:
                break
            try:
                articles.append(self.parse_block(block, fallback_category, fetched_at))
            except ParseError as e:
                logger.warning(f"Skipping block {i} from {target.label}: {e}")
        return articles

    def parse_block(self, block: str, fallback_category: str, fetched_at: datetime) -> RawArticle:
        title = extract_title(block)
        if not title:
            raise ParseError("block has no headline")

        # The post id is the only way to build a stable link
        post_id = extract_post_id(block)
        if not post_id:
            raise ParseError(f"'{title}' has no post id")

        return RawArticle(
            platform=self.platform,
            title=title,
            link=post_link(post_id),
            author=TFTIMES_AUTHOR,
            external_id=prefixed_id("tftimes", post_id),
            description=extract_snippet(block),
            category=extract_category(block) or fallback_category,
            published_at=extract_published(block),
            fetched_at=fetched_at,
        )
