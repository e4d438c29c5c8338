"""
PyTest Configuration and Fixtures
=================================

Shared fixtures and fakes for SkillFeed tests.

Collaborators with I/O (fetch layer, LLM, clock) are replaced by in-process
fakes so scheduler, generator and extraction behaviour is deterministic.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

import pytest

# Set test environment variables before any imports
os.environ["SKILLFEED_DEBUG"] = "true"
os.environ.pop("SKILLFEED_LLM__API_KEY", None)

from skillfeed.ai.limiter import LLMGate
from skillfeed.ai.providers.base import LLMClient
from skillfeed.config.settings import SkillFeedSettings
from skillfeed.database.models import Ruleset, Source, SourceType
from skillfeed.ingestion.fetcher import FetchedPage
from skillfeed.storage.memory import InMemoryStore
from skillfeed.utils.clock import Clock
from skillfeed.utils.exceptions import SourceGoneError


BASE_URL = "https://blog.example.com"
LIST_URL = f"{BASE_URL}/news/"
ARTICLE_URLS = [
    f"{BASE_URL}/2024/05/01/first-post/",
    f"{BASE_URL}/2024/05/02/second-post/",
    f"{BASE_URL}/2024/05/03/third-post/",
]

PARAGRAPH = (
    "The city council met on Tuesday evening to discuss the proposed changes "
    "to the downtown parking plan, which would convert two surface lots into "
    "housing and extend meter hours on weekends. "
)


def list_page_html(urls: Optional[List[str]] = None) -> str:
    """List page linking to article pages with date-shaped paths."""
    urls = ARTICLE_URLS if urls is None else urls
    items = "\n".join(
        f'<li class="post-item"><h2><a class="post-link" href="{url}">Post number {i}</a></h2>'
        f'<time datetime="2024-05-0{i}">May {i}</time></li>'
        for i, url in enumerate(urls, 1)
    )
    return (
        "<html><head><title>Example Blog - News</title></head><body>"
        '<nav><a href="/">Home</a> <a href="/about">About</a></nav>'
        f'<ul class="posts">{items}</ul>'
        "<footer>Copyright Example Blog</footer></body></html>"
    )


def article_html(title: str, paragraphs: int = 3, canonical: Optional[str] = None) -> str:
    """Well-formed article page."""
    canonical_tag = f'<link rel="canonical" href="{canonical}">' if canonical else ""
    body = "".join(f"<p>{PARAGRAPH}Paragraph {i}.</p>" for i in range(paragraphs))
    return (
        f"<html><head><title>{title} | Example Blog</title>{canonical_tag}</head><body>"
        '<nav><a href="/">Home</a></nav>'
        f'<article><h1 class="entry-title">{title}</h1>'
        '<time class="published" datetime="2024-05-01T10:00:00Z">May 1, 2024</time>'
        '<span class="byline">Jane Reporter</span>'
        f'<div class="entry-content">{body}</div></article>'
        "<footer>Copyright Example Blog</footer></body></html>"
    )


def redesigned_article_html(title: str) -> str:
    """Same article after a site redesign broke the old selectors."""
    body = "".join(f"<p>{PARAGRAPH}</p>" for _ in range(3))
    return (
        f"<html><head><title>{title}</title></head><body>"
        f'<main><h2 class="headline">{title}</h2><section class="story">{body}</section></main>'
        "</body></html>"
    )


RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example Feed</title>
    <link>https://feeds.example.com</link>
    <description>Test feed</description>
    <item>
      <title>Feed Article One</title>
      <link>https://feeds.example.com/articles/one</link>
      <description>&lt;p&gt;First article body with &lt;strong&gt;markup&lt;/strong&gt;.&lt;/p&gt;</description>
      <pubDate>Thu, 05 Sep 2024 12:00:00 GMT</pubDate>
      <author>editor@example.com (Editor)</author>
    </item>
    <item>
      <title>Feed Article Two</title>
      <link>https://feeds.example.com/articles/two</link>
      <description>Second article body.</description>
      <pubDate>Wed, 04 Sep 2024 15:30:00 GMT</pubDate>
    </item>
  </channel>
</rss>"""


def ruleset_dict(link_selector: Optional[str] = "ul.posts h2 a") -> Dict[str, Any]:
    """Ruleset matching article_html pages."""
    return {
        "link_selector": link_selector,
        "rules": [
            {"field": "title", "selector": "h1.entry-title", "transform": "text", "required": True},
            {"field": "body", "selector": "div.entry-content", "transform": "text", "required": True},
            {"field": "published_at", "selector": "time.published", "transform": "datetime"},
            {"field": "author", "selector": "span.byline", "transform": "text"},
        ],
    }


def broken_ruleset_dict() -> Dict[str, Any]:
    """Ruleset whose selectors match nothing on article_html pages."""
    return {
        "link_selector": "ul.posts h2 a",
        "rules": [
            {"field": "title", "selector": "h1.missing-title", "required": True},
            {"field": "body", "selector": "div.missing-body", "required": True},
        ],
    }


def redesigned_ruleset_dict() -> Dict[str, Any]:
    """Ruleset matching redesigned_article_html pages."""
    return {
        "link_selector": "ul.posts h2 a",
        "rules": [
            {"field": "title", "selector": "h2.headline", "required": True},
            {"field": "body", "selector": "section.story", "required": True},
        ],
    }


class FakeClock(Clock):
    """Manually advanced clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class FakeFetcher:
    """In-memory fetch layer.

    ``pages`` maps URL to HTML or to an exception instance that is raised.
    Unknown URLs raise ``SourceGoneError``.
    """

    def __init__(self, pages: Optional[Dict[str, Union[str, Exception]]] = None):
        self.pages: Dict[str, Union[str, Exception]] = dict(pages or {})
        self.calls: List[str] = []
        self.render_calls: List[str] = []
        self.gate: Optional[asyncio.Event] = None

    async def fetch(self, url: str, render: bool = False) -> FetchedPage:
        self.calls.append(url)
        if render:
            self.render_calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)

        page = self.pages.get(url)
        if page is None:
            raise SourceGoneError(f"HTTP 404 for {url}", url=url, status=404)
        if isinstance(page, Exception):
            raise page
        return FetchedPage(url=url, final_url=url, html=page, rendered=render)

    async def close(self) -> None:
        return None


class FakeLLM(LLMClient):
    """Scripted LLM client returning queued responses in order."""

    def __init__(self, responses: Optional[List[Union[dict, Exception]]] = None):
        super().__init__(model_name="fake-model", provider_name="fake")
        self.responses = list(responses or [])
        self.prompts: List[str] = []

    async def complete(self, prompt: str, system: Optional[str] = None) -> str:
        raise NotImplementedError

    async def generate_structured(self, prompt, schema, system=None) -> dict:
        self.prompts.append(prompt)
        if not self.responses:
            raise AssertionError("FakeLLM ran out of scripted responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def call_count(self) -> int:
        return len(self.prompts)


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment and the filesystem."""
    return SkillFeedSettings(
        database={"path": str(tmp_path / "skillfeed_test.db"), "pool_size": 2},
        logging={"file_path": None, "console_logging": False},
        health={
            "degraded_after": 2,
            "failing_after": 5,
            "disabled_after": 10,
            "backoff_base_seconds": 60,
            "backoff_cap_seconds": 3600,
            "backoff_jitter_ratio": 0.1,
            "rate_limit_backoff_seconds": 900,
        },
        skills={"sample_pages": 3, "max_turns": 2, "min_body_chars": 200},
        extraction={"drift_window": 10, "drift_threshold": 0.5, "drift_min_samples": 3},
        scheduler={"max_concurrent_jobs": 4, "job_timeout_seconds": 5, "shutdown_grace_seconds": 1},
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def web_source():
    return Source(id="example-blog", url=LIST_URL, name="Example Blog", type=SourceType.WEB)


@pytest.fixture
def feed_source():
    return Source(
        id="example-feed",
        url="https://feeds.example.com/rss.xml",
        name="Example Feed",
        type=SourceType.FEED,
    )


@pytest.fixture
def store(web_source, feed_source):
    return InMemoryStore([web_source, feed_source])


@pytest.fixture
def site_pages():
    """List page plus three well-formed articles."""
    pages = {LIST_URL: list_page_html()}
    for i, url in enumerate(ARTICLE_URLS, 1):
        pages[url] = article_html(f"Council Story {i}")
    return pages


@pytest.fixture
def fetcher(site_pages):
    pages = dict(site_pages)
    pages["https://feeds.example.com/rss.xml"] = RSS_FEED
    return FakeFetcher(pages)


@pytest.fixture
def gate():
    return LLMGate(max_concurrent=2, requests_per_minute=100, acquire_timeout=1.0)


@pytest.fixture
def valid_ruleset():
    return Ruleset.model_validate(ruleset_dict())
