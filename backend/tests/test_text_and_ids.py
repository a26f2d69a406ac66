"""
Tests for description sanitization and article id derivation.
"""

import pytest

from tftblog.services.ids import (
    bilibili_video_id,
    derive_article_id,
    link_hash,
    youtube_video_id,
)
from tftblog.services.text import (
    NO_DESCRIPTION,
    clean_text,
    decode_entities,
    sanitize_description,
    strip_tags,
    truncate,
)


SANITIZE_SAMPLES = [
    "",
    "ok",
    "Plain description of a TFT guide",
    "<p>Hello <b>world</b></p>",
    "&lt;p&gt;Encoded &amp;amp; doubled&lt;/p&gt;",
    "Video intro <iframe src=\"https://player.bilibili.com/player.html?bvid=BV1",
    "</div> broken div> embed",
    "x" * 500,
    "   lots    of\n\nwhitespace\t here  ",
    "&lt;img src=&quot;https://i0.hdslb.com/cover.jpg&quot;&gt;Cover text",
    "a" * 199 + "&amp;" + "b" * 10,
]


class TestSanitizeDescription:
    """Tests for description sanitization."""

    def test_strips_tags_and_collapses_whitespace(self):
        """Test tags are removed and whitespace runs collapsed."""
        assert sanitize_description("<p>Hello   <b>world</b></p>\n") == "Hello world"

    def test_encoded_tags_are_removed(self):
        """Test entities are decoded before stripping so encoded markup goes too."""
        assert sanitize_description("&lt;b&gt;Bold&lt;/b&gt; text") == "Bold text"

    def test_unterminated_tag_is_removed(self):
        """Test a tag cut off at the end of the string is dropped."""
        text = 'Great comp <iframe src="https://player.bilibili.com/player.html?bvid='
        assert sanitize_description(text) == "Great comp"

    def test_markup_remnants_become_placeholder(self):
        """Test leftover embed fragments are replaced by the placeholder."""
        assert sanitize_description("</div> broken div> embed") == NO_DESCRIPTION

    def test_short_or_empty_becomes_placeholder(self):
        """Test results under three characters use the placeholder."""
        assert sanitize_description("") == NO_DESCRIPTION
        assert sanitize_description("ab") == NO_DESCRIPTION
        assert sanitize_description("<br/>") == NO_DESCRIPTION
        assert sanitize_description("abc") == "abc"

    def test_truncation_boundary(self):
        """Test 200 characters pass unchanged and 201 are cut with an ellipsis."""
        exact = "a" * 200
        assert sanitize_description(exact) == exact

        over = "a" * 201
        assert sanitize_description(over) == "a" * 200 + "..."

    @pytest.mark.parametrize("sample", SANITIZE_SAMPLES)
    def test_idempotent(self, sample):
        """Test sanitizing twice gives the same result as once."""
        once = sanitize_description(sample)
        assert sanitize_description(once) == once


class TestTextHelpers:
    """Tests for the lower-level text helpers."""

    def test_decode_entities(self):
        assert decode_entities("&lt;a&gt; &quot;b&quot; &#39;c&#39; d&nbsp;e") == "<a> \"b\" 'c' d e"

    def test_strip_tags(self):
        assert strip_tags("a<br>b<span") == "a b"

    def test_clean_text_keeps_long_titles(self):
        """Test clean_text does not cap length."""
        title = "T" * 300
        assert clean_text(title) == title

    def test_truncate(self):
        assert truncate("abcdef", 3) == "abc..."
        assert truncate("abc", 3) == "abc"


class TestArticleIds:
    """Tests for id derivation."""

    def test_link_hash_matches_known_values(self):
        """Test the rolling hash renders in base 36."""
        assert link_hash("a") == "2p"
        assert link_hash("ab") == "2e9"

    def test_link_hash_is_deterministic(self):
        """Test identical links always hash identically."""
        link = "https://www.tftimes.jp/?p=12345"
        assert link_hash(link) == link_hash(link)

    def test_link_hash_distinguishes_links(self):
        """Test a corpus of distinct links gives distinct ids."""
        links = [f"https://www.youtube.com/watch?v=video{i}" for i in range(500)]
        links += [f"https://www.bilibili.com/video/BV1{i:08d}" for i in range(500)]
        hashes = {link_hash(link) for link in links}
        assert len(hashes) == len(links)

    def test_link_hash_handles_non_ascii(self):
        """Test non-ASCII links hash without error and stay stable."""
        link = "https://www.tftimes.jp/category/ニュース/"
        assert link_hash(link) == link_hash(link)
        assert link_hash(link) != link_hash("https://www.tftimes.jp/category/news/")

    def test_bilibili_video_id(self):
        assert bilibili_video_id("https://www.bilibili.com/video/BV1xx411c7mD") == "BV1xx411c7mD"
        assert bilibili_video_id("https://space.bilibili.com/123") is None

    def test_youtube_video_id(self):
        assert youtube_video_id("https://www.youtube.com/watch?v=dQw4w9WgXcQ") == "dQw4w9WgXcQ"
        assert youtube_video_id("dQw4w9WgXcQ") == "dQw4w9WgXcQ"
        assert youtube_video_id("") is None

    def test_derive_prefers_upstream_id(self):
        """Test an upstream id wins over the link hash."""
        assert derive_article_id("tftimes-42", "https://www.tftimes.jp/?p=42") == "tftimes-42"
        assert derive_article_id(None, "a") == "2p"

    def test_derive_requires_id_or_link(self):
        """Test a candidate with neither id nor link is rejected."""
        with pytest.raises(ValueError):
            derive_article_id(None, "")
