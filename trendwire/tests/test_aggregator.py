"""
Tests for the source adapters and NewsAggregator
"""

from unittest.mock import Mock

import pytest
import requests

from trendwire.aggregator import (
    CompanySiteAdapter,
    MediaRSSAdapter,
    NewsAggregator,
    PressReleaseAdapter,
    SocialRSSAdapter,
    SourceAdapter,
    compose_content,
)
from trendwire.config import Company, MediaFeed, SocialFeeds, SourcesConfig
from trendwire.models import FetchedItem
from trendwire.shared.resilience import get_health_tracker


# =============================================================================
# HELPERS
# =============================================================================

def _response(text: str, status: int = 200) -> Mock:
    response = Mock()
    response.text = text
    response.content = text.encode("utf-8")
    response.status_code = status
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status} Error")
    return response


def _session(pages: dict) -> Mock:
    """Session whose GET answers from a url → response map (unknown urls 404)"""
    session = Mock()
    session.get.side_effect = lambda url, **kwargs: pages.get(url, _response("", 404))
    return session


MEDIA_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Housing News</title>
    <item>
      <title>ZEH subsidy extended</title>
      <link>https://news.example/zeh</link>
      <description>The subsidy runs another year.</description>
      <pubDate>Mon, 19 Oct 2026 09:00:00 GMT</pubDate>
    </item>
    <item>
      <title>No link here</title>
      <description>Skipped</description>
    </item>
  </channel>
</rss>
"""

SOCIAL_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Bridge</title>
    <item>
      <title>Open house</title>
      <link>https://social.example/p/1</link>
      <description>Visiting today #注文住宅 #solar</description>
    </item>
  </channel>
</rss>
"""


# =============================================================================
# ADAPTERS
# =============================================================================

class TestComposeContent:

    def test_title_and_body(self):
        assert compose_content(" Title ", "Body ") == "Title\n\nBody"

    def test_missing_parts(self):
        assert compose_content("", "Body") == "Body"
        assert compose_content("Title", None) == "Title"


class TestMediaRSSAdapter:

    def test_entries_become_items(self):
        session = _session({"https://news.example/rss": _response(MEDIA_RSS)})
        adapter = MediaRSSAdapter([MediaFeed(name="Housing News", url="https://news.example/rss")],
                                  session=session, min_interval=0)
        items = adapter.fetch()

        assert len(items) == 1
        item = items[0]
        assert item.source_type == "media"
        assert item.url == "https://news.example/zeh"
        assert item.content == "ZEH subsidy extended\n\nThe subsidy runs another year."
        assert item.metadata["feed"] == "Housing News"
        assert item.metadata["published_at"] == "2026-10-19T09:00:00Z"

    def test_failing_feed_is_skipped(self):
        session = _session({"https://ok.example/rss": _response(MEDIA_RSS)})
        adapter = MediaRSSAdapter(
            [MediaFeed(name="down", url="https://down.example/rss"),
             MediaFeed(name="ok", url="https://ok.example/rss")],
            session=session, min_interval=0,
        )
        assert len(adapter.fetch()) == 1
        assert get_health_tracker("fetch:media").failed_calls == 1

    def test_unreadable_feed_is_skipped(self):
        session = _session({"https://bad.example/rss": _response("not a feed at all <<<")})
        adapter = MediaRSSAdapter([MediaFeed(name="bad", url="https://bad.example/rss")],
                                  session=session, min_interval=0)
        assert adapter.fetch() == []


class TestSocialRSSAdapter:

    def test_hashtags_captured(self):
        session = _session({"https://rss.app/feed/1": _response(SOCIAL_RSS)})
        feeds = SocialFeeds(tags=["注文住宅"], provider="rss.app", urls=["https://rss.app/feed/1"])
        items = SocialRSSAdapter(feeds, session=session, min_interval=0).fetch()

        assert len(items) == 1
        assert items[0].source_type == "social"
        assert items[0].content == "Visiting today #注文住宅 #solar"
        assert items[0].metadata["hashtags"] == ["注文住宅", "solar"]
        assert items[0].metadata["platform"] == "rss.app"

    def test_no_urls_no_requests(self):
        session = Mock()
        assert SocialRSSAdapter(SocialFeeds(tags=["x"]), session=session, min_interval=0).fetch() == []
        session.get.assert_not_called()


class TestCompanySiteAdapter:

    def test_pages_kept_as_html(self):
        html = "<html><head><title>Acme News</title></head><body><h1>New model</h1></body></html>"
        session = _session({
            "https://acme.example/news": _response(html),
            "https://acme.example/empty": _response("<html><body>  </body></html>"),
        })
        company = Company(name="Acme", domain="acme.example", paths=["/news", "/empty", "/gone"])
        items = CompanySiteAdapter([company], session=session, min_interval=0).fetch()

        assert len(items) == 1
        assert items[0].url == "https://acme.example/news"
        assert items[0].content == html
        assert items[0].title == "Acme News"
        assert items[0].metadata == {"company": "Acme", "title": "Acme News"}

    def test_h1_title_fallback(self):
        html = "<html><body><h1>Heading only</h1></body></html>"
        session = _session({"https://acme.example/": _response(html)})
        items = CompanySiteAdapter([Company(name="Acme", domain="acme.example")],
                                   session=session, min_interval=0).fetch()
        assert items[0].title == "Heading only"


class TestPressReleaseAdapter:

    LISTING = """
    <ul class="list-article">
      <li>
        <a href="/main/html/rd/p/000000001.html"><h3>Acme launches Smart Roof</h3></a>
        <span class="name">Acme Homes</span>
        <time datetime="2026-10-19T10:00:00+09:00">today</time>
      </li>
      <li><span>no link</span></li>
    </ul>
    """

    def test_listing_then_body(self):
        search = PressReleaseAdapter.SEARCH_URL.format(query="solar")
        article = "https://prtimes.jp/main/html/rd/p/000000001.html"
        session = _session({
            search: _response(self.LISTING),
            article: _response("<article><p>Solar roof with battery.</p></article>"),
        })
        items = PressReleaseAdapter(["solar"], session=session, min_interval=0).fetch()

        assert len(items) == 1
        item = items[0]
        assert item.url == article
        assert item.content == "Acme launches Smart Roof\n\nSolar roof with battery."
        assert item.metadata == {
            "query": "solar",
            "company": "Acme Homes",
            "published_at": "2026-10-19T10:00:00+09:00",
        }

    def test_missing_body_keeps_title(self):
        search = PressReleaseAdapter.SEARCH_URL.format(query="solar")
        session = _session({search: _response(self.LISTING)})
        items = PressReleaseAdapter(["solar"], session=session, min_interval=0).fetch()
        assert items[0].content == "Acme launches Smart Roof"

    def test_failed_search_skips_query(self):
        items = PressReleaseAdapter(["solar"], session=_session({}), min_interval=0).fetch()
        assert items == []


# =============================================================================
# AGGREGATOR
# =============================================================================

class StaticAdapter(SourceAdapter):

    def __init__(self, kind, items=None, error=None):
        self._kind = kind
        self._items = items or []
        self._error = error
        super().__init__(session=Mock(), min_interval=0)

    @property
    def source_type(self):
        return self._kind

    def fetch(self):
        if self._error:
            raise self._error
        return self._items


def _item(kind, n):
    return FetchedItem(source_type=kind, url=f"https://{kind}.example/{n}", content=f"{kind} {n}")


class TestNewsAggregator:

    def test_sources_run_in_fixed_order(self):
        aggregator = NewsAggregator([
            StaticAdapter("social", [_item("social", 1)]),
            StaticAdapter("company_site", [_item("company_site", 1)]),
            StaticAdapter("press_release", [_item("press_release", 1)]),
            StaticAdapter("media", [_item("media", 1)]),
        ])
        kinds = [item.source_type for item in aggregator.collect_all()]
        assert kinds == ["press_release", "media", "company_site", "social"]

    def test_failing_source_does_not_stop_others(self):
        aggregator = NewsAggregator([
            StaticAdapter("press_release", error=RuntimeError("blocked")),
            StaticAdapter("media", [_item("media", 1), _item("media", 2)]),
        ])
        items = aggregator.collect_all()
        assert len(items) == 2
        assert aggregator.errors == [("press_release", "blocked")]

    def test_from_config_builds_every_adapter(self):
        sources = SourcesConfig(press_release_queries=["solar"])
        aggregator = NewsAggregator.from_config(sources, [Company(name="Acme", domain="acme.example")])
        assert [a.source_type for a in aggregator.adapters] == ["press_release", "media", "company_site", "social"]

    @pytest.mark.parametrize("kind", ["press_release", "media", "company_site", "social"])
    def test_each_adapter_has_own_throttle(self, kind):
        adapter = StaticAdapter(kind)
        assert adapter.throttle.name == kind
