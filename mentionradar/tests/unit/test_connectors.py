"""
Unit tests for platform connectors against mocked HTTP transports
"""
from datetime import datetime, timezone
from types import SimpleNamespace

import httpx
import pytest

from mentionradar.core.config import Settings
from mentionradar.core.exceptions import ConnectorConfigurationError, TransientUpstreamError
from mentionradar.core.http_client import http_client_context
from mentionradar.services.connectors.base import CandidateItem
from mentionradar.services.connectors.hackernews import HackerNewsConnector
from mentionradar.services.connectors.reddit import RedditConnector
from mentionradar.services.connectors.registry import build_default_registry


def _monitor(**kwargs):
    values = {"id": "m1", "company_name": None, "keywords": ["acme"], "platform_urls": {}}
    values.update(kwargs)
    return SimpleNamespace(**values)


def _settings(**kwargs):
    values = {"database_url": "sqlite://", "reddit_client_id": None, "reddit_client_secret": None}
    values.update(kwargs)
    return Settings(**values)


class TestHackerNewsConnector:

    @pytest.mark.asyncio
    async def test_hits_become_candidates(self):
        seen = []

        def handler(request):
            seen.append(request.url.params["query"])
            hits = [
                {
                    "objectID": "101",
                    "title": "Show HN: acme",
                    "story_text": "We built acme",
                    "author": "pg",
                    "created_at_i": 1773150000,
                    "points": 12,
                    "num_comments": 3,
                    "url": "https://acme.dev",
                },
                {"objectID": "102", "comment_text": "acme is neat", "story_title": "Tools", "author": "dang"},
            ]
            return httpx.Response(200, json={"hits": hits})

        connector = HackerNewsConnector()
        async with http_client_context(transport=httpx.MockTransport(handler)) as client:
            items = await connector.fetch(_monitor(company_name="Acme", keywords=["acme", "acme pricing"]), client)

        assert seen == ["Acme", "acme", "acme pricing"]
        assert len(items) == 2
        story = items[0]
        assert story.source_url == "https://news.ycombinator.com/item?id=101"
        assert story.engagement == 15
        assert story.posted_at.tzinfo is not None
        assert story.metadata["external_url"] == "https://acme.dev"
        assert items[1].title == "Tools"
        assert items[1].body == "acme is neat"

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        connector = HackerNewsConnector()
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        async with http_client_context(transport=transport) as client:
            with pytest.raises(TransientUpstreamError) as exc_info:
                await connector.fetch(_monitor(), client)
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with http_client_context(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(TransientUpstreamError):
                await HackerNewsConnector().fetch(_monitor(), client)

    def test_search_terms_are_capped(self):
        terms = HackerNewsConnector().search_terms(_monitor(keywords=[f"k{i}" for i in range(10)]))
        assert terms == ["k0", "k1", "k2", "k3", "k4"]


class RedditAPI:
    """Token endpoint plus search endpoint, optionally expiring the first token"""

    def __init__(self, expire_first_token=False):
        self.tokens_issued = 0
        self.search_urls = []
        self.expire_first_token = expire_first_token

    def __call__(self, request):
        if request.url.path == "/api/v1/access_token":
            self.tokens_issued += 1
            return httpx.Response(200, json={"access_token": f"token-{self.tokens_issued}"})

        if self.expire_first_token and request.headers["Authorization"] == "Bearer token-1":
            return httpx.Response(401)
        self.search_urls.append(f"{request.url.scheme}://{request.url.host}{request.url.path}")
        post = {
            "permalink": "/r/saas/comments/abc/acme_alternatives/",
            "title": "acme alternatives?",
            "selftext": "",
            "author": "founder",
            "subreddit": "saas",
            "created_utc": 1773150000,
            "score": 40,
            "num_comments": 10,
        }
        return httpx.Response(200, json={"data": {"children": [{"data": post}]}})


class TestRedditConnector:

    def _connector(self):
        return RedditConnector(_settings(reddit_client_id="id", reddit_client_secret="secret"))

    @pytest.mark.asyncio
    async def test_search_maps_posts(self):
        api = RedditAPI()
        async with http_client_context(transport=httpx.MockTransport(api)) as client:
            items = await self._connector().fetch(_monitor(keywords=["acme", "acme pricing"]), client)

        # Same permalink from both terms collapses to one candidate
        assert len(items) == 1
        item = items[0]
        assert item.source_url == "https://www.reddit.com/r/saas/comments/abc/acme_alternatives/"
        assert item.body is None
        assert item.engagement == 50
        assert item.metadata["subreddit"] == "saas"
        assert api.tokens_issued == 1
        assert api.search_urls == ["https://oauth.reddit.com/search"] * 2

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed_once(self):
        api = RedditAPI(expire_first_token=True)
        async with http_client_context(transport=httpx.MockTransport(api)) as client:
            items = await self._connector().fetch(_monitor(), client)

        assert api.tokens_issued == 2
        assert len(items) == 1

    @pytest.mark.parametrize("configured", ["r/saas", "/r/saas/", "saas"])
    def test_subreddit_search_url(self, configured):
        url = self._connector().search_url(_monitor(platform_urls={"reddit": configured}))
        assert url == "https://oauth.reddit.com/r/saas/search"

    def test_company_name_is_quoted(self):
        terms = self._connector().search_terms(_monitor(company_name="Acme Inc", keywords=["acme"]))
        assert terms == ['"Acme Inc"', "acme"]

    @pytest.mark.asyncio
    async def test_rate_limit_is_transient(self):
        def handler(request):
            if request.url.path == "/api/v1/access_token":
                return httpx.Response(200, json={"access_token": "t"})
            return httpx.Response(429)

        async with http_client_context(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(TransientUpstreamError):
                await self._connector().fetch(_monitor(), client)


class TestRegistry:

    def test_reddit_without_credentials_is_unconfigured(self):
        registry = build_default_registry(_settings())

        with pytest.raises(ConnectorConfigurationError) as exc_info:
            registry.get("reddit")

        assert exc_info.value.platform == "reddit"
        assert "reddit_client_id" in str(exc_info.value)
        assert registry.is_available("hackernews")

    def test_unknown_platform(self):
        registry = build_default_registry(_settings())
        assert not registry.is_available("tiktok")
        assert registry.platforms() == ["hackernews", "reddit"]

    def test_configured_reddit(self):
        registry = build_default_registry(_settings(reddit_client_id="id", reddit_client_secret="secret"))
        assert registry.get("reddit").platform == "reddit"


class TestCandidateItem:

    def test_dict_round_trip_keeps_timezone(self):
        item = CandidateItem(
            source_url="https://example.com/1",
            title="acme",
            posted_at=datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc),
            metadata={"subreddit": "saas"},
        )
        assert CandidateItem.from_dict(item.to_dict()) == item
