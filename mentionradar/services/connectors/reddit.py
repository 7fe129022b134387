"""
Reddit connector (OAuth application-only search)

Needs a Reddit app's client id and secret. The access token is fetched
once per connector instance and refreshed when Reddit reports it expired.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

import httpx

from mentionradar.core.config import Settings, get_settings
from mentionradar.core.exceptions import TransientUpstreamError
from mentionradar.core.http_client import HTTPClient
from mentionradar.services.connectors.base import BaseConnector, CandidateItem

logger = logging.getLogger(__name__)

TOKEN_URL = "https://www.reddit.com/api/v1/access_token"
SEARCH_URL = "https://oauth.reddit.com/search"
SUBREDDIT_SEARCH_URL = "https://oauth.reddit.com/r/{}/search"
PERMALINK_URL = "https://www.reddit.com{}"
MAX_TERMS = 5
RESULTS_PER_TERM = 50


class RedditConnector(BaseConnector):
    platform = "reddit"
    required_settings = ("reddit_client_id", "reddit_client_secret")

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._token: Optional[str] = None

    def search_terms(self, monitor) -> List[str]:
        terms = []
        if monitor.company_name:
            terms.append(f'"{monitor.company_name}"')
        terms.extend(k for k in (monitor.keywords or []) if k)
        return terms[:MAX_TERMS]

    def search_url(self, monitor) -> str:
        subreddit = (monitor.platform_urls or {}).get("reddit")
        if subreddit:
            name = subreddit.strip().strip("/")
            if name.startswith("r/"):
                name = name[2:]
            return SUBREDDIT_SEARCH_URL.format(name)
        return SEARCH_URL

    def _check_status(self, response: httpx.Response, action: str) -> None:
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientUpstreamError(
                self.platform,
                f"Reddit {action} returned {response.status_code}",
                status_code=response.status_code,
            )
        response.raise_for_status()

    async def _access_token(self, client: HTTPClient) -> str:
        if self._token:
            return self._token
        try:
            response = await client.post(
                TOKEN_URL,
                data={"grant_type": "client_credentials"},
                auth=(self.settings.reddit_client_id, self.settings.reddit_client_secret),
            )
        except httpx.HTTPError as e:
            raise TransientUpstreamError(self.platform, f"Reddit token request failed: {e}") from e
        self._check_status(response, "token request")
        self._token = response.json()["access_token"]
        return self._token

    async def _search(self, client: HTTPClient, url: str, term: str) -> httpx.Response:
        token = await self._access_token(client)
        params = {"q": term, "sort": "new", "limit": RESULTS_PER_TERM, "restrict_sr": "on" if url != SEARCH_URL else "off"}
        try:
            response = await client.get(url, params=params, headers={"Authorization": f"Bearer {token}"})
            if response.status_code == 401:
                self._token = None
                token = await self._access_token(client)
                response = await client.get(url, params=params, headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as e:
            raise TransientUpstreamError(self.platform, f"Reddit search failed: {e}") from e
        self._check_status(response, "search")
        return response

    async def fetch(self, monitor, client: HTTPClient) -> List[CandidateItem]:
        url = self.search_url(monitor)
        items: Dict[str, CandidateItem] = {}
        for term in self.search_terms(monitor):
            response = await self._search(client, url, term)
            for child in response.json().get("data", {}).get("children", []):
                item = self._to_candidate(child.get("data") or {})
                items.setdefault(item.source_url, item)

        logger.debug(f"Reddit returned {len(items)} candidates for monitor {monitor.id}")
        return list(items.values())

    def _to_candidate(self, post: dict) -> CandidateItem:
        created = post.get("created_utc")
        score = post.get("score") or 0
        comments = post.get("num_comments") or 0
        return CandidateItem(
            source_url=PERMALINK_URL.format(post.get("permalink", "")),
            title=post.get("title") or "",
            body=post.get("selftext") or None,
            author=post.get("author"),
            posted_at=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
            engagement=score + comments,
            metadata={
                "subreddit": post.get("subreddit"),
                "score": score,
                "upvotes": score,
                "num_comments": comments,
            },
        )
