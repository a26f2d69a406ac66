"""
Stable article id derivation.

Ids must come out identical on every run for the same upstream item,
since persistence is an upsert keyed on them.
"""

import re
from typing import Optional

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"

_BILIBILI_VIDEO_RE = re.compile(r"/video/(BV[a-zA-Z0-9]+)")
_YOUTUBE_WATCH_RE = re.compile(r"watch\?v=([a-zA-Z0-9_-]+)")


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def link_hash(link: str) -> str:
    """
    Order-sensitive 32-bit rolling hash of a link, in base 36.

    Runs over UTF-16 code units with h = h * 31 + c wrapped to a signed
    32-bit integer, then takes the absolute value. This matches ids already
    stored by the previous JavaScript fetchers.
    """
    h = 0
    data = link.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))


def prefixed_id(prefix: str, upstream_id: str) -> str:
    return f"{prefix}-{upstream_id}"


def bilibili_video_id(link: str) -> Optional[str]:
    match = _BILIBILI_VIDEO_RE.search(link or "")
    return match.group(1) if match else None


def youtube_video_id(value: str) -> Optional[str]:
    """Video id from a watch URL; a bare id is returned unchanged."""
    if not value:
        return None
    match = _YOUTUBE_WATCH_RE.search(value)
    if match:
        return match.group(1)
    if re.fullmatch(r"[a-zA-Z0-9_-]{6,}", value):
        return value
    return None


def derive_article_id(external_id: Optional[str], link: str) -> str:
    """Prefer the upstream-stable id; otherwise hash the canonical link."""
    if external_id:
        return external_id
    if not link:
        raise ValueError("Cannot derive an id without an upstream id or link")
    return link_hash(link)
