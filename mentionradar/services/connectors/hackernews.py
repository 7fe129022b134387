"""
Hacker News connector (Algolia search API, no credentials needed)
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List

import httpx

from mentionradar.core.exceptions import TransientUpstreamError
from mentionradar.core.http_client import HTTPClient
from mentionradar.services.connectors.base import BaseConnector, CandidateItem

logger = logging.getLogger(__name__)

SEARCH_URL = "https://hn.algolia.com/api/v1/search_by_date"
ITEM_URL = "https://news.ycombinator.com/item?id={}"
MAX_TERMS = 5
HITS_PER_TERM = 30


class HackerNewsConnector(BaseConnector):
    platform = "hackernews"

    def search_terms(self, monitor) -> List[str]:
        terms = []
        if monitor.company_name:
            terms.append(monitor.company_name)
        terms.extend(k for k in (monitor.keywords or []) if k not in terms)
        return terms[:MAX_TERMS]

    async def fetch(self, monitor, client: HTTPClient) -> List[CandidateItem]:
        items: Dict[str, CandidateItem] = {}
        for term in self.search_terms(monitor):
            try:
                response = await client.get(
                    SEARCH_URL,
                    params={"query": term, "tags": "(story,comment)", "hitsPerPage": HITS_PER_TERM},
                )
            except httpx.HTTPError as e:
                raise TransientUpstreamError(self.platform, f"Hacker News search failed: {e}") from e

            if response.status_code == 429 or response.status_code >= 500:
                raise TransientUpstreamError(
                    self.platform,
                    f"Hacker News search returned {response.status_code}",
                    status_code=response.status_code,
                )
            response.raise_for_status()

            for hit in response.json().get("hits", []):
                item = self._to_candidate(hit)
                items.setdefault(item.source_url, item)

        logger.debug(f"Hacker News returned {len(items)} candidates for monitor {monitor.id}")
        return list(items.values())

    def _to_candidate(self, hit: dict) -> CandidateItem:
        created = hit.get("created_at_i")
        points = hit.get("points") or 0
        comments = hit.get("num_comments") or 0
        return CandidateItem(
            source_url=ITEM_URL.format(hit["objectID"]),
            title=hit.get("title") or hit.get("story_title") or "",
            body=hit.get("story_text") or hit.get("comment_text"),
            author=hit.get("author"),
            posted_at=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
            engagement=points + comments,
            metadata={
                "score": points,
                "num_comments": comments,
                "external_url": hit.get("url"),
            },
        )
