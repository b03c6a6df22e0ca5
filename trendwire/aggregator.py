"""
TRENDWIRE COLLECTION LAYER
Fetches candidate content from every configured source

Sources (always crawled in this order):
- press_release: press-release search result listings plus article bodies
- media: industry media RSS feeds
- company_site: configured pages on company websites (raw HTML kept for extraction)
- social: social-network RSS bridges, hashtags captured in metadata
"""

import re
import time
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple
from urllib.parse import quote, urljoin

import feedparser
import requests
from bs4 import BeautifulSoup

from .config import Company, MediaFeed, SocialFeeds, SourcesConfig, get_settings, load_companies, load_sources
from .models import FetchedItem, SOURCE_TYPES
from .shared.resilience import (
    get_health_tracker,
    get_http_session,
    get_throttle,
    collect_with_partial_failure,
)

logger = logging.getLogger(__name__)

# company pages are stored as HTML; anything past this is navigation and footer noise
MAX_PAGE_CHARS = 200_000

_HASHTAG = re.compile(r"#([^\s#]+)")


def compose_content(title: str, body: str) -> str:
    """Title and body joined the way raw rows are fingerprinted"""
    title = (title or "").strip()
    body = (body or "").strip()
    if title and body:
        return f"{title}\n\n{body}"
    return title or body


def _entry_published(entry) -> Optional[str]:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if parsed:
        return time.strftime("%Y-%m-%dT%H:%M:%SZ", parsed)
    return entry.get("published") or entry.get("updated")


# =============================================================================
# SOURCE ADAPTERS (Abstract base + implementations)
# =============================================================================

class SourceAdapter(ABC):
    """Base class for all source adapters"""

    def __init__(self, session: Optional[requests.Session] = None, min_interval: Optional[float] = None):
        self._session = session
        if min_interval is None:
            min_interval = get_settings().request_delay_seconds
        self.throttle = get_throttle(self.source_type, min_interval=min_interval)

    @property
    @abstractmethod
    def source_type(self) -> str:
        ...

    @abstractmethod
    def fetch(self) -> List[FetchedItem]:
        """Fetch every configured target; a failing target is logged and skipped"""

    @property
    def session(self) -> requests.Session:
        return self._session if self._session is not None else get_http_session()

    def _get(self, url: str, **kwargs) -> requests.Response:
        """Throttled GET with health tracking; non-2xx raises"""
        self.throttle.wait()
        tracker = get_health_tracker(f"fetch:{self.source_type}")
        start_time = time.time()
        try:
            response = self.session.get(url, **kwargs)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            tracker.record_call(False, (time.time() - start_time) * 1000, str(e)[:200])
            raise
        tracker.record_call(True, (time.time() - start_time) * 1000)
        return response

    def _parse_feed(self, url: str):
        response = self._get(url)
        feed = feedparser.parse(response.content)
        if feed.bozo and not feed.entries:
            raise ValueError(f"Unreadable feed {url}: {feed.get('bozo_exception')}")
        return feed


class PressReleaseAdapter(SourceAdapter):
    """Press-release search: listing page per query, then each article body"""

    SEARCH_URL = "https://prtimes.jp/main/action.php?run=html&page=searchkey&search_word={query}"
    BASE_URL = "https://prtimes.jp"

    def __init__(self, queries: List[str], limit_per_query: int = 5, **kwargs):
        super().__init__(**kwargs)
        self.queries = queries
        self.limit_per_query = limit_per_query

    @property
    def source_type(self) -> str:
        return "press_release"

    def _parse_listing(self, html: str) -> List[dict]:
        soup = BeautifulSoup(html, "html.parser")
        listings = []
        for item in soup.select(".list-article li, article.item"):
            link = item.find("a", href=True)
            if link is None:
                continue
            heading = item.find(["h2", "h3"])
            title = (heading or link).get_text(strip=True)
            if not title:
                continue
            company = item.select_one(".name, .company-name")
            published = item.find("time")
            listings.append({
                "url": urljoin(self.BASE_URL, link["href"]),
                "title": title,
                "company": company.get_text(strip=True) if company else "",
                "published_at": published.get("datetime", "") if published else "",
            })
            if len(listings) >= self.limit_per_query:
                break
        return listings

    def _fetch_body(self, url: str) -> str:
        try:
            soup = BeautifulSoup(self._get(url).text, "html.parser")
        except requests.exceptions.RequestException as e:
            logger.warning(f"Press release body unavailable for {url}: {e}")
            return ""
        body = soup.select_one(".content-body, .rich-text, article")
        return body.get_text(separator="\n", strip=True) if body else ""

    def fetch(self) -> List[FetchedItem]:
        items = []
        for query in self.queries:
            try:
                listing = self._parse_listing(self._get(self.SEARCH_URL.format(query=quote(query))).text)
            except Exception as e:
                logger.error(f"Press release search failed for '{query}': {e}")
                continue

            for entry in listing:
                body = self._fetch_body(entry["url"])
                items.append(FetchedItem(
                    source_type=self.source_type,
                    url=entry["url"],
                    title=entry["title"],
                    content=compose_content(entry["title"], body),
                    metadata={
                        "query": query,
                        "company": entry["company"],
                        "published_at": entry["published_at"],
                    },
                ))
            logger.info(f"  press_release '{query}': {len(listing)} listings")
        return items


class MediaRSSAdapter(SourceAdapter):
    """Industry media RSS feeds"""

    def __init__(self, feeds: List[MediaFeed], **kwargs):
        super().__init__(**kwargs)
        self.feeds = feeds

    @property
    def source_type(self) -> str:
        return "media"

    def fetch(self) -> List[FetchedItem]:
        items = []
        for feed_cfg in self.feeds:
            try:
                feed = self._parse_feed(feed_cfg.url)
            except Exception as e:
                logger.error(f"Media feed {feed_cfg.name} failed: {e}")
                continue

            count = 0
            for entry in feed.entries:
                link = entry.get("link")
                title = entry.get("title", "")
                if not link or not title:
                    continue
                items.append(FetchedItem(
                    source_type=self.source_type,
                    url=link,
                    title=title,
                    content=compose_content(title, entry.get("summary", "")),
                    metadata={"feed": feed_cfg.name, "published_at": _entry_published(entry)},
                ))
                count += 1
            logger.info(f"  media {feed_cfg.name}: {count} entries")
        return items


class CompanySiteAdapter(SourceAdapter):
    """Configured company pages, kept as HTML so tables and images survive to extraction"""

    def __init__(self, companies: List[Company], **kwargs):
        super().__init__(**kwargs)
        self.companies = companies

    @property
    def source_type(self) -> str:
        return "company_site"

    @staticmethod
    def _page_title(soup: BeautifulSoup) -> str:
        if soup.title and soup.title.get_text(strip=True):
            return soup.title.get_text(strip=True)
        h1 = soup.find("h1")
        return h1.get_text(strip=True) if h1 else ""

    def fetch(self) -> List[FetchedItem]:
        items = []
        for company in self.companies:
            for path in company.paths:
                url = f"https://{company.domain}{path}"
                try:
                    html = self._get(url).text
                except Exception as e:
                    logger.error(f"Company page {company.name} {url} failed: {e}")
                    continue

                soup = BeautifulSoup(html, "html.parser")
                if not (soup.body or soup).get_text(strip=True):
                    logger.warning(f"Company page {url} has no text, skipping")
                    continue

                items.append(FetchedItem(
                    source_type=self.source_type,
                    url=url,
                    title=self._page_title(soup),
                    content=html[:MAX_PAGE_CHARS],
                    metadata={"company": company.name, "title": self._page_title(soup)},
                ))
        return items


class SocialRSSAdapter(SourceAdapter):
    """Social posts via RSS bridge feeds"""

    def __init__(self, feeds: SocialFeeds, **kwargs):
        super().__init__(**kwargs)
        self.feeds = feeds

    @property
    def source_type(self) -> str:
        return "social"

    def fetch(self) -> List[FetchedItem]:
        if not self.feeds.urls:
            logger.info("  social: no feed urls configured")
            return []

        items = []
        for url in self.feeds.urls:
            try:
                feed = self._parse_feed(url)
            except Exception as e:
                logger.error(f"Social feed {url} failed: {e}")
                continue

            for entry in feed.entries:
                link = entry.get("link")
                title = entry.get("title", "")
                if not link or not title:
                    continue
                body = entry.get("summary", "") or title
                items.append(FetchedItem(
                    source_type=self.source_type,
                    url=link,
                    title=title,
                    content=body,
                    metadata={
                        "platform": self.feeds.provider,
                        "title": title,
                        "hashtags": _HASHTAG.findall(body),
                        "published_at": _entry_published(entry),
                    },
                ))
        return items


# =============================================================================
# AGGREGATOR
# =============================================================================

class NewsAggregator:
    """Runs the adapters in source order and concatenates what they return"""

    def __init__(self, adapters: List[SourceAdapter]):
        order = {source: i for i, source in enumerate(SOURCE_TYPES)}
        self.adapters = sorted(adapters, key=lambda a: order.get(a.source_type, len(order)))
        self.errors: List[Tuple[str, str]] = []

    @classmethod
    def from_config(
        cls,
        sources: Optional[SourcesConfig] = None,
        companies: Optional[List[Company]] = None,
    ) -> "NewsAggregator":
        sources = sources if sources is not None else load_sources()
        companies = companies if companies is not None else load_companies()
        return cls([
            PressReleaseAdapter(sources.press_release_queries),
            MediaRSSAdapter(sources.media_rss),
            CompanySiteAdapter(companies),
            SocialRSSAdapter(sources.social_rss),
        ])

    def collect_all(self) -> List[FetchedItem]:
        def runner(adapter):
            def run():
                logger.info(f"Fetching from {adapter.source_type}...")
                fetched = adapter.fetch()
                logger.info(f"  Got {len(fetched)} items from {adapter.source_type}")
                return fetched
            run.__name__ = adapter.source_type
            return run

        items, self.errors = collect_with_partial_failure([runner(a) for a in self.adapters])
        logger.info(f"Total fetched: {len(items)} items from {len(self.adapters)} sources")
        return items
