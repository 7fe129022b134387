"""
Platform connector contract

A connector turns one platform's API or page responses into a uniform list
of CandidateItem objects. Nothing downstream looks at platform-specific
response shapes.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from mentionradar.core.config import Settings
from mentionradar.core.http_client import HTTPClient
from mentionradar.services.search_parser import MatchableContent


@dataclass
class CandidateItem:
    source_url: str
    title: str
    body: Optional[str] = None
    author: Optional[str] = None
    posted_at: Optional[datetime] = None
    engagement: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_matchable(self, platform: str) -> MatchableContent:
        return MatchableContent(
            title=self.title,
            body=self.body,
            author=self.author,
            subreddit=self.metadata.get("subreddit"),
            platform=platform,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["posted_at"] = self.posted_at.isoformat() if self.posted_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidateItem":
        posted_at = data.get("posted_at")
        return cls(
            source_url=data["source_url"],
            title=data.get("title") or "",
            body=data.get("body"),
            author=data.get("author"),
            posted_at=datetime.fromisoformat(posted_at) if posted_at else None,
            engagement=data.get("engagement"),
            metadata=data.get("metadata") or {},
        )


class BaseConnector(ABC):
    """One platform's fetcher"""

    platform: str = ""
    # Settings attributes that must be set for the connector to run
    required_settings: Tuple[str, ...] = ()

    def missing_settings(self, settings: Settings) -> List[str]:
        return [name for name in self.required_settings if not getattr(settings, name, None)]

    @abstractmethod
    async def fetch(self, monitor, client: HTTPClient) -> List[CandidateItem]:
        """Return candidate items for the monitor's keywords on this platform"""
        raise NotImplementedError
