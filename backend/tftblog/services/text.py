"""
Text sanitization for upstream titles and descriptions.

Upstream HTML is often truncated mid-tag, double-encoded, or stuffed with
embedded players, so cleaning runs to a fixed point and falls back to a
placeholder when the result is still markup debris.
"""

import re

DESCRIPTION_MAX_LENGTH = 200
ELLIPSIS = "..."
NO_DESCRIPTION = "暂无描述"

# Decoded in this order; &amp; last so "&amp;lt;" takes two passes, not one
_ENTITIES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&nbsp;", " "),
    ("&amp;", "&"),
)

_TAG_RE = re.compile(r"<[^>]*>")
_UNTERMINATED_TAG_RE = re.compile(r"<[^>]*$")
_WHITESPACE_RE = re.compile(r"\s+")

# Substrings that survive tag stripping when an embed was cut off mid-tag
_REMNANT_MARKERS = ("iframe", "<div", "div>", "script>", "<script")


def decode_entities(text: str) -> str:
    """Decode the standard HTML entities once."""
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return text


def strip_tags(text: str) -> str:
    """Remove complete tags, then any tag left open at the end of the string."""
    text = _TAG_RE.sub(" ", text)
    return _UNTERMINATED_TAG_RE.sub("", text)


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def _decode_and_strip(text: str) -> str:
    # Each pass either shrinks the string or leaves it unchanged
    while True:
        cleaned = strip_tags(decode_entities(text))
        if cleaned == text:
            return cleaned
        text = cleaned


def clean_text(text: str) -> str:
    """Plain text from an HTML fragment: decode, strip tags, collapse whitespace."""
    if not text:
        return ""
    return collapse_whitespace(_decode_and_strip(text))


def truncate(text: str, limit: int = DESCRIPTION_MAX_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + ELLIPSIS


def has_markup_remnants(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in _REMNANT_MARKERS)


def sanitize_description(text: str) -> str:
    """
    Normalize an upstream description for storage.

    Entities are decoded before tags are stripped so encoded markup is
    removed as well. Anything that still looks like an embed, or is shorter
    than three characters, becomes the placeholder. The result is capped at
    200 characters plus an ellipsis, and sanitizing it again is a no-op.
    """
    cleaned = clean_text(text or "")
    if has_markup_remnants(cleaned):
        return NO_DESCRIPTION
    if len(cleaned) < 3:
        return NO_DESCRIPTION
    return truncate(cleaned)
