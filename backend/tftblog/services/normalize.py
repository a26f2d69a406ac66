"""
Candidate -> canonical Article conversion.
"""

from tftblog.models.domain import Article, as_naive_utc
from tftblog.services.data_ingestion.base import RawArticle
from tftblog.services.data_ingestion.errors import ParseError
from tftblog.services.ids import derive_article_id
from tftblog.services.text import clean_text, sanitize_description


def normalize(raw: RawArticle) -> Article:
    """
    Build the canonical record for a candidate.

    Titles are cleaned but not capped; descriptions are sanitized. The id
    comes from the upstream id when there is one, else the link hash. A
    missing or unparseable publish time falls back to the fetch time.

    Raises:
        ParseError: the candidate has neither an upstream id nor a link
    """
    try:
        article_id = derive_article_id(raw.external_id, raw.link)
    except ValueError as e:
        raise ParseError(f"'{raw.title}': {e}") from e

    fetched_at = as_naive_utc(raw.fetched_at)
    published_at = as_naive_utc(raw.published_at) if raw.published_at else fetched_at

    return Article(
        id=article_id,
        title=clean_text(raw.title),
        description=sanitize_description(raw.description),
        link=raw.link,
        thumbnail=raw.thumbnail,
        platform=raw.platform,
        author=raw.author,
        category=raw.category,
        published_at=published_at,
        fetched_at=fetched_at,
    )
