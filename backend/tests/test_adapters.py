"""
Tests for the upstream adapters.

These tests use canned payloads and httpx.MockTransport so parsing and
proxy fallback are verified without network access.
"""

import json
from datetime import datetime

import httpx
import pytest

from tftblog.models.domain import Platform
from tftblog.services.data_ingestion.errors import (
    AllInstancesExhaustedError,
    RateLimitError,
    TransientFetchError,
)
from tftblog.services.data_ingestion.rss import (
    ATOM,
    RSS,
    BilibiliAdapter,
    YouTubeAdapter,
    detect_feed_format,
    extract_tag_text,
    extract_thumbnail,
    parse_feed_date,
)
from tftblog.services.data_ingestion.tacter import TacterAdapter, parse_guide_time
from tftblog.services.data_ingestion.tftimes import (
    NEWS_PATH,
    TFTimesAdapter,
    parse_listing_date,
)
from tftblog.services.normalize import normalize

from conftest import make_target


def bilibili_feed(count: int) -> str:
    items = "\n".join(
        f"""
    <item>
      <title><![CDATA[阵容攻略 第{i}期]]></title>
      <description><![CDATA[<img src="https://i0.hdslb.com/bfs/archive/{i}.jpg"><br>本期讲解 &amp; 演示]]></description>
      <pubDate>Mon, {10 + i:02d} Jun 2024 09:00:00 GMT</pubDate>
      <link>https://www.bilibili.com/video/BV1ab{i:03d}cd</link>
    </item>"""
        for i in range(count)
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title><![CDATA[云顶老师 的 bilibili 空间]]></title>
    <link>https://space.bilibili.com/12345</link>
    {items}
  </channel>
</rss>
"""


SAMPLE_YOUTUBE_ATOM = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns:yt="http://www.youtube.com/xml/schemas/2015" xmlns:media="http://search.yahoo.com/mrss/" xmlns="http://www.w3.org/2005/Atom">
  <title>TFT Academy</title>
  <entry>
    <id>yt:video:dQw4w9WgXcQ</id>
    <yt:videoId>dQw4w9WgXcQ</yt:videoId>
    <title>Patch 14.12 Tier List</title>
    <link rel="alternate" href="https://www.youtube.com/watch?v=dQw4w9WgXcQ"/>
    <published>2024-06-12T15:00:00+00:00</published>
    <updated>2024-06-13T01:00:00+00:00</updated>
    <media:group>
      <media:thumbnail url="https://i1.ytimg.com/vi/dQw4w9WgXcQ/hqdefault.jpg" width="480" height="360"/>
      <media:description>Best comps this patch</media:description>
    </media:group>
  </entry>
</feed>
"""


def tftimes_block(post_id, title, date="2024.06.10", category=None):
    id_attr = f' id="post-{post_id}"' if post_id else ""
    cat = f'<span class="cat-name">{category}</span>' if category else ""
    return f"""
<article{id_attr} class="post-card entry-card e-card">
  <a href="https://www.tftimes.jp/archives/{post_id}">
    <h2 class="entry-card-title card-title e-card-title" itemprop="headline">{title}</h2>
  </a>
  <div class="entry-card-snippet card-snippet">Snippet for {title}</div>
  <span class="entry-date">{date}</span>
  {cat}
</article>"""


def tacter_page(state) -> str:
    next_data = {"props": {"pageProps": {"dehydratedState": json.dumps(state)}}}
    return (
        "<html><body>"
        f'<script id="__NEXT_DATA__" type="application/json">{json.dumps(next_data)}</script>'
        "</body></html>"
    )


GUIDE_A = {
    "id": 11,
    "title": "Reroll Guide",
    "slug": "reroll-guide",
    "authorProfilePicture": "/avatars/tftips.png",
    "createdAt": "2024-06-01T08:00:00.000Z",
    "header": {
        "content": {
            "champions": {
                "a": {"name": "Ahri"},
                "b": {"name": "Jinx"},
                "c": {"name": ""},
            }
        }
    },
}
GUIDE_B = {"id": 12, "displayName": "Fast 8 Guide", "updatedAt": "2024-06-02T08:00:00Z"}
GUIDE_A_DUPLICATE = {"id": 13, "title": "Reroll Guide", "slug": "reroll-guide-2"}


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestFeedRules:
    """Tests for the named RSS/Atom extraction rules."""

    def test_detect_format(self):
        assert detect_feed_format(bilibili_feed(1)) == RSS
        assert detect_feed_format(SAMPLE_YOUTUBE_ATOM) == ATOM
        assert detect_feed_format("<rss><channel></channel></rss>") is None

    def test_extract_tag_text_with_cdata(self):
        assert extract_tag_text("<title><![CDATA[A & B]]></title>", "title") == "A & B"
        assert extract_tag_text("<title> plain </title>", "title") == "plain"

    def test_thumbnail_priority(self):
        """Test enclosure wins over media:thumbnail and description images."""
        block = (
            '<media:thumbnail url="https://img/media.jpg"/>'
            '<enclosure url="https://img/enclosure.jpg" type="image/jpeg"/>'
        )
        assert extract_thumbnail(block, '<img src="https://img/desc.jpg">') == "https://img/enclosure.jpg"

    def test_thumbnail_from_encoded_description(self):
        """Test an entity-encoded <img> in the description is found."""
        description = "&lt;img src=&quot;https://img/cover.jpg&quot;&gt; text"
        assert extract_thumbnail("", description) == "https://img/cover.jpg"

    def test_thumbnail_from_background_image(self):
        description = '<div style="background-image: url(\'https://img/bg.jpg\')"></div>'
        assert extract_thumbnail("", description) == "https://img/bg.jpg"

    def test_parse_feed_date(self):
        assert parse_feed_date("Mon, 10 Jun 2024 09:00:00 GMT") == datetime(2024, 6, 10, 9, 0)
        assert parse_feed_date("2024-06-12T15:00:00+02:00") == datetime(2024, 6, 12, 13, 0)
        assert parse_feed_date("not a date") is None
        assert parse_feed_date("") is None


class TestBilibiliAdapter:
    """Tests for the Bilibili RSS adapter."""

    def test_caps_at_five_items(self):
        """Test a feed with 8 items yields the first 5, each with id, title and link."""
        adapter = BilibiliAdapter(["http://rsshub.local"])
        articles = adapter.parse_feed(bilibili_feed(8), make_target("12345"))

        assert len(articles) == 5
        for article in articles:
            assert article.title
            assert article.link
            assert normalize(article).id

        assert [a.external_id for a in articles] == [f"bilibili-BV1ab{i:03d}cd" for i in range(5)]

    def test_parses_fields(self):
        """Test author recovery, thumbnail and date parsing."""
        adapter = BilibiliAdapter(["http://rsshub.local"])
        article = adapter.parse_feed(bilibili_feed(1), make_target("12345", name="12345"))[0]

        assert article.author == "云顶老师"
        assert article.title == "阵容攻略 第0期"
        assert article.thumbnail == "https://i0.hdslb.com/bfs/archive/0.jpg"
        assert article.published_at == datetime(2024, 6, 10, 9, 0)
        assert normalize(article).description == "本期讲解 & 演示"

    def test_author_falls_back_to_configured_name(self):
        """Test the configured name is used when the feed title has no match."""
        adapter = BilibiliAdapter(["http://rsshub.local"])
        feed = bilibili_feed(1).replace("云顶老师 的 bilibili 空间", "Some other title")
        article = adapter.parse_feed(feed, make_target("12345", name="Configured"))[0]
        assert article.author == "Configured"

    def test_item_without_link_is_skipped(self):
        """Test a broken item does not drop its siblings."""
        feed = bilibili_feed(3).replace("<link>https://www.bilibili.com/video/BV1ab001cd</link>", "")
        adapter = BilibiliAdapter(["http://rsshub.local"])
        articles = adapter.parse_feed(feed, make_target("12345"))
        assert [a.external_id for a in articles] == ["bilibili-BV1ab000cd", "bilibili-BV1ab002cd"]

    async def test_falls_back_to_next_instance(self):
        """Test a rate-limited instance is skipped in favour of the next one."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            if request.url.host == "first.local":
                return httpx.Response(503, text='{"code":-352,"message":"风控校验失败"}')
            return httpx.Response(
                200, text=bilibili_feed(2), headers={"content-type": "application/xml"}
            )

        async with mock_client(handler) as client:
            adapter = BilibiliAdapter(
                ["http://first.local", "http://second.local/"], cookie="SESSDATA=x", client=client
            )
            articles = await adapter.fetch(make_target("12345"))

        assert len(articles) == 2
        assert seen == [
            "http://first.local/bilibili/user/video/12345",
            "http://second.local/bilibili/user/video/12345",
        ]

    async def test_body_sniffing_when_content_type_is_wrong(self):
        """Test a feed served as text/plain is still accepted."""

        def handler(request):
            return httpx.Response(200, text=bilibili_feed(1))

        async with mock_client(handler) as client:
            adapter = BilibiliAdapter(["http://rsshub.local"], client=client)
            assert len(await adapter.fetch(make_target("1"))) == 1

    async def test_all_instances_exhausted(self):
        """Test the error lists every failed instance."""

        def handler(request):
            if request.url.host == "a.local":
                return httpx.Response(500, text="boom")
            return httpx.Response(200, text="<html>not a feed</html>", headers={"content-type": "text/html"})

        async with mock_client(handler) as client:
            adapter = BilibiliAdapter(["http://a.local", "http://b.local"], client=client)
            with pytest.raises(AllInstancesExhaustedError) as exc_info:
                await adapter.fetch(make_target("1"))

        assert len(exc_info.value.errors) == 2
        assert isinstance(exc_info.value, TransientFetchError)


class TestYouTubeAdapter:
    """Tests for the YouTube Atom adapter."""

    def test_parse_atom(self):
        adapter = YouTubeAdapter(["http://rsshub.local"])
        articles = adapter.parse_feed(SAMPLE_YOUTUBE_ATOM, make_target("UC123", Platform.YOUTUBE, "TFT Academy"))

        assert len(articles) == 1
        article = articles[0]
        assert article.external_id == "youtube-dQw4w9WgXcQ"
        assert article.link == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
        assert article.thumbnail == "https://i1.ytimg.com/vi/dQw4w9WgXcQ/hqdefault.jpg"
        assert article.published_at == datetime(2024, 6, 12, 15, 0)
        assert article.author == "TFT Academy"
        assert article.description == "Best comps this patch"

    def test_route_by_id_type(self):
        adapter = YouTubeAdapter(["http://rsshub.local"])
        assert adapter.route(make_target("UC123", Platform.YOUTUBE)) == "/youtube/channel/UC123"
        assert adapter.route(make_target("tftacademy", Platform.YOUTUBE, type="user")) == "/youtube/user/tftacademy"


class TestTFTimesAdapter:
    """Tests for the TFTimes HTML adapter."""

    def test_block_without_post_id_is_discarded(self):
        """Test siblings survive when one block lacks its post id."""
        html = "".join(
            [
                tftimes_block(101, "メタ解説"),
                tftimes_block(None, "IDなし"),
                tftimes_block(103, "パッチノート 14.12"),
            ]
        )
        articles = TFTimesAdapter().parse_listing(html, make_target(NEWS_PATH, Platform.TFTIMES))

        assert [a.external_id for a in articles] == ["tftimes-101", "tftimes-103"]
        assert articles[0].link == "https://www.tftimes.jp/?p=101"
        assert articles[0].author == "TFTimes"

    def test_parses_fields(self):
        html = tftimes_block(101, "メタ &amp; 攻略", date="2024.06.10", category="メタ＆攻略")
        article = TFTimesAdapter().parse_listing(html, make_target(NEWS_PATH, Platform.TFTIMES))[0]

        assert article.title == "メタ & 攻略"
        assert article.category == "メタ＆攻略"
        assert article.published_at == datetime(2024, 6, 10)
        assert "Snippet for" in article.description

    def test_category_falls_back_to_path_label(self):
        """Test the category path map is used without category markup."""
        article = TFTimesAdapter().parse_listing(
            tftimes_block(5, "News"), make_target(NEWS_PATH, Platform.TFTIMES)
        )[0]
        assert article.category == "新闻"

        other = TFTimesAdapter().parse_listing(
            tftimes_block(6, "Other"), make_target("/category/other/", Platform.TFTIMES)
        )[0]
        assert other.category == "综合"

    def test_only_first_five_blocks(self):
        html = "".join(tftimes_block(i, f"Post {i}") for i in range(1, 9))
        articles = TFTimesAdapter().parse_listing(html, make_target(NEWS_PATH, Platform.TFTIMES))
        assert len(articles) == 5

    def test_cap_counts_parsed_blocks(self):
        """Test a discarded block among the first five does not shrink the result."""
        blocks = [tftimes_block(i, f"Post {i}") for i in range(1, 9)]
        blocks[1] = tftimes_block(None, "IDなし")
        articles = TFTimesAdapter().parse_listing(
            "".join(blocks), make_target(NEWS_PATH, Platform.TFTIMES)
        )

        assert [a.external_id for a in articles] == [f"tftimes-{i}" for i in (1, 3, 4, 5, 6)]

    def test_parse_listing_date(self):
        assert parse_listing_date("2024.01.05") == datetime(2024, 1, 5)
        assert parse_listing_date("2024/01/05") is None
        assert parse_listing_date("2024.13.40") is None

    async def test_fetch_raises_on_http_error(self):
        def handler(request):
            return httpx.Response(429, text="slow down")

        async with mock_client(handler) as client:
            adapter = TFTimesAdapter(client=client)
            with pytest.raises(RateLimitError):
                await adapter.fetch(make_target(NEWS_PATH, Platform.TFTIMES))


class TestTacterAdapter:
    """Tests for the Tacter embedded-JSON adapter."""

    def test_walks_query_cache(self):
        """Test guides are read from list and dict pages and deduplicated by title."""
        state = {
            "queries": [
                {"state": {"data": {"user": "tftips"}}},
                {
                    "state": {
                        "data": {
                            "pages": [
                                [GUIDE_A, {"no_id": True}, "junk"],
                                {"x": GUIDE_B, "y": GUIDE_A_DUPLICATE},
                            ]
                        }
                    }
                },
            ]
        }
        target = make_target("tftips", Platform.TACTER, "TFTips", description="I create guides")
        articles = TacterAdapter().parse_profile(tacter_page(state), target)

        assert [a.external_id for a in articles] == ["tacter-11", "tacter-12"]

        guide = articles[0]
        assert guide.link == "https://www.tacter.com/tft/guides/reroll-guide"
        assert guide.description == "英雄: Ahri, Jinx"
        assert guide.thumbnail == "https://www.tacter.com/avatars/tftips.png"
        assert guide.published_at == datetime(2024, 6, 1, 8, 0)
        assert guide.author == "TFTips"

        fallback = articles[1]
        assert fallback.title == "Fast 8 Guide"
        assert fallback.link == ""
        assert fallback.description == "I create guides"
        assert fallback.published_at == datetime(2024, 6, 2, 8, 0)

    def test_malformed_state_uses_title_scan(self):
        """Test malformed inner JSON still yields up to 5 degraded records."""
        titles = "".join(f'{{"title":"Guide {i}"}},' for i in range(7))
        html = (
            '<script id="__NEXT_DATA__" type="application/json">'
            '{"props":{"pageProps":{"dehydratedState":"{broken"}}}'
            "</script>"
            f"<script>window.__cache=[{titles}]</script>"
        )
        target = make_target("tftips", Platform.TACTER, "TFTips", description="I create guides")
        articles = TacterAdapter().parse_profile(html, target)

        assert len(articles) == 5
        assert [a.external_id for a in articles] == [f"tacter-tftips-{i}" for i in range(5)]
        for article in articles:
            assert article.link == ""
            assert article.thumbnail == ""
            assert normalize(article).id.startswith("tacter-tftips-")

    def test_missing_state_yields_nothing(self):
        """Test a page without the embedded state script gives no guides."""
        html = '<div data-x=\'{"title":"Unrelated"}\'></div>'
        articles = TacterAdapter().parse_profile(html, make_target("extiria", Platform.TACTER))
        assert articles == []

    def test_out_of_range_timestamp_is_ignored(self):
        """Test an unrepresentable epoch falls through to updatedAt."""
        guide = {
            "id": 21,
            "title": "Far Future",
            "slug": "far-future",
            "createdAt": 10**20,
            "updatedAt": "2024-06-03T08:00:00Z",
        }
        state = {"queries": [{"state": {"data": {"pages": [[guide]]}}}]}
        articles = TacterAdapter().parse_profile(
            tacter_page(state), make_target("tftips", Platform.TACTER)
        )

        assert [a.external_id for a in articles] == ["tacter-21"]
        assert articles[0].published_at == datetime(2024, 6, 3, 8, 0)

    def test_parse_guide_time_rejects_unrepresentable_values(self):
        assert parse_guide_time(10**20) is None
        assert parse_guide_time(-(10**20)) is None
        assert parse_guide_time("not a date") is None
        assert parse_guide_time(1717228800000) == datetime(2024, 6, 1, 8, 0)

    def test_unexpected_walk_error_uses_title_scan(self):
        """Test any error while walking the state falls back instead of failing the target."""

        class BrokenGuideAdapter(TacterAdapter):
            def parse_guide(self, guide, target, fetched_at):
                raise OverflowError("date value out of range")

        state = {"queries": [{"state": {"data": {"pages": [[GUIDE_A]]}}}]}
        html = tacter_page(state) + '<script>window.__cache=[{"title":"Cached Guide"}]</script>'
        articles = BrokenGuideAdapter().parse_profile(html, make_target("tftips", Platform.TACTER))

        assert [a.title for a in articles] == ["Cached Guide"]
        assert articles[0].external_id == "tacter-tftips-0"
        assert articles[0].link == ""

    async def test_fetch_requests_profile(self):
        seen = []

        def handler(request):
            seen.append((request.url.host, request.url.path))
            return httpx.Response(200, text=tacter_page({"queries": []}))

        async with mock_client(handler) as client:
            articles = await TacterAdapter(client=client).fetch(make_target("tftips", Platform.TACTER))

        assert articles == []
        assert seen == [("www.tacter.com", "/@tftips")]
