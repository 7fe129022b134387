"""
Content matching for monitors

Strategies are evaluated in order and the first one that decides wins:
boolean search (when configured it decides alone), company name, keywords.
"""
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from mentionradar.services import search_parser
from mentionradar.services.search_parser import MatchableContent


@dataclass
class MonitorMatchConfig:
    keywords: List[str] = field(default_factory=list)
    search_query: Optional[str] = None
    company_name: Optional[str] = None

    @classmethod
    def from_monitor(cls, monitor) -> "MonitorMatchConfig":
        return cls(
            keywords=list(monitor.keywords or []),
            search_query=monitor.search_query,
            company_name=monitor.company_name,
        )


@dataclass
class MonitorMatch:
    matches: bool
    match_type: str  # boolean_search, company, keyword
    matched_terms: List[str]
    reason: str


# A strategy returns None when it does not apply, otherwise a final decision
MatchStrategy = Callable[[MatchableContent, str, MonitorMatchConfig], Optional[MonitorMatch]]


def _searchable_text(content: MatchableContent) -> str:
    return f"{content.title or ''} {content.body or ''}".lower()


def boolean_search_strategy(content: MatchableContent, text: str, config: MonitorMatchConfig) -> Optional[MonitorMatch]:
    if not config.search_query or not config.search_query.strip():
        return None
    result = search_parser.match(content, search_parser.parse(config.search_query))
    return MonitorMatch(result.matches, "boolean_search", result.matched_terms, result.reason)


def company_strategy(content: MatchableContent, text: str, config: MonitorMatchConfig) -> Optional[MonitorMatch]:
    if not config.company_name or config.company_name.lower() not in text:
        return None
    return MonitorMatch(True, "company", [config.company_name], f"Direct company name mention: {config.company_name}")


def keyword_strategy(content: MatchableContent, text: str, config: MonitorMatchConfig) -> Optional[MonitorMatch]:
    hits = [k for k in config.keywords if k and k.lower() in text]
    if not hits:
        return None
    return MonitorMatch(True, "keyword", hits, "Keyword match: " + ", ".join(hits))


DEFAULT_STRATEGIES: List[MatchStrategy] = [
    boolean_search_strategy,
    company_strategy,
    keyword_strategy,
]


def content_matches_monitor(
    content: MatchableContent,
    config: MonitorMatchConfig,
    strategies: Optional[List[MatchStrategy]] = None,
) -> MonitorMatch:
    text = _searchable_text(content)
    for strategy in strategies or DEFAULT_STRATEGIES:
        decision = strategy(content, text, config)
        if decision is not None:
            return decision
    return MonitorMatch(False, "keyword", [], "No matches found")
