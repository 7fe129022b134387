"""
Lead Scoring

Scores a result 0-100 as a sales lead:
- intent (0-40): buying-signal phrases in title and body
- engagement (0-20): upvotes/comments on a diminishing scale
- recency (0-15): newer posts are fresher leads
- author quality (0-15): karma and account age
- category (0-10): conversation category from enrichment

Pure and deterministic, so scores can be recomputed when weights change.
"""
import math
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, Optional

from mentionradar.core.clock import utc_now, ensure_utc

HIGH_INTENT_PHRASES = [
    # Direct purchase intent
    "looking for",
    "need a tool",
    "need a solution",
    "recommend a",
    "recommend me",
    "suggestions for",
    "best tool for",
    "best software for",
    "best app for",
    "anyone use",
    "anyone using",
    "what do you use for",
    "what should i use",
    "what would you recommend",
    "can anyone recommend",
    "trying to find",
    "searching for",
    "in the market for",
    "want to buy",
    "ready to pay",
    "willing to pay",
    "budget for",
    # Comparison/evaluation
    "alternatives to",
    "alternative to",
    "vs",
    "compared to",
    "comparison",
    "which is better",
    "should i switch",
    "thinking of switching",
    "migrating from",
    # Problem statements
    "frustrated with",
    "struggling with",
    "pain point",
    "problem with",
    "issue with",
    "challenge with",
    "fed up with",
    "tired of",
]

MEDIUM_INTENT_PHRASES = [
    "how do you",
    "how does",
    "is there a way to",
    "does anyone know",
    "has anyone tried",
    "thoughts on",
    "opinions on",
    "experience with",
    "review of",
    "feedback on",
]

CATEGORY_SCORES = {
    "solution_request": 10,
    "money_talk": 8,
    "pain_point": 6,
    "advice_request": 4,
    "hot_discussion": 3,
}
DEFAULT_CATEGORY_SCORE = 2


@dataclass
class LeadScoreInput:
    title: str
    content: Optional[str] = None
    conversation_category: Optional[str] = None
    engagement: Optional[float] = None
    posted_at: Optional[datetime] = None
    author_karma: Optional[int] = None
    author_account_age_days: Optional[int] = None
    platform: Optional[str] = None


@dataclass
class LeadScore:
    intent: int
    engagement: int
    recency: int
    author_quality: int
    category: int
    total: int
    label: str

    def factors(self) -> Dict[str, int]:
        data = asdict(self)
        data.pop("label")
        return data


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def intent_score(title: str, content: Optional[str] = None) -> int:
    text = f"{title or ''} {content or ''}".lower()
    high = sum(1 for phrase in HIGH_INTENT_PHRASES if phrase in text)
    medium = sum(1 for phrase in MEDIUM_INTENT_PHRASES if phrase in text)

    score = 0
    if high:
        score += 15 + min((high - 1) * 5, 15)
    if medium:
        score += 5 + min((medium - 1) * 2, 5)
    return min(score, 40)


def engagement_score(engagement: Optional[float]) -> int:
    if not engagement or engagement <= 0:
        return 0
    if engagement <= 10:
        return _round_half_up(engagement / 10 * 5)
    if engagement <= 50:
        return 5 + _round_half_up((engagement - 10) / 40 * 5)
    if engagement <= 100:
        return 10 + _round_half_up((engagement - 50) / 50 * 5)
    return min(15 + _round_half_up(max(0.0, math.log10(engagement - 100)) * 2), 20)


def recency_score(posted_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    if posted_at is None:
        return 7
    now = ensure_utc(now) if now else utc_now()
    hours_old = (now - ensure_utc(posted_at)).total_seconds() / 3600

    if hours_old < 24:
        return 15
    if hours_old < 72:
        return 12
    if hours_old < 168:
        return 9
    if hours_old < 336:
        return 6
    if hours_old < 720:
        return 3
    return 1


def author_quality_score(karma: Optional[int], account_age_days: Optional[int]) -> int:
    if karma is None and account_age_days is None:
        return 7

    score = 0
    if karma is None:
        score += 5
    elif karma >= 10000:
        score += 10
    elif karma >= 5000:
        score += 8
    elif karma >= 1000:
        score += 6
    elif karma >= 500:
        score += 4
    elif karma >= 100:
        score += 2
    else:
        score += 1

    if account_age_days is None:
        score += 2
    elif account_age_days >= 730:
        score += 5
    elif account_age_days >= 365:
        score += 4
    elif account_age_days >= 180:
        score += 3
    elif account_age_days >= 30:
        score += 2
    else:
        score += 1

    return min(score, 15)


def category_score(category: Optional[str]) -> int:
    return CATEGORY_SCORES.get(category or "", DEFAULT_CATEGORY_SCORE)


def score_label(total: int) -> str:
    if total >= 70:
        return "hot"
    if total >= 50:
        return "warm"
    if total >= 30:
        return "cool"
    return "cold"


def calculate_lead_score(data: LeadScoreInput, now: Optional[datetime] = None) -> LeadScore:
    intent = intent_score(data.title, data.content)
    engagement = engagement_score(data.engagement)
    recency = recency_score(data.posted_at, now)
    author = author_quality_score(data.author_karma, data.author_account_age_days)
    category = category_score(data.conversation_category)

    total = max(0, min(intent + engagement + recency + author + category, 100))
    return LeadScore(
        intent=intent,
        engagement=engagement,
        recency=recency,
        author_quality=author,
        category=category,
        total=total,
        label=score_label(total),
    )


def lead_score_input_from_result(result, conversation_category: Optional[str] = None) -> LeadScoreInput:
    """Build scorer input from a Result row and its platform metadata"""
    metadata = result.platform_metadata or {}
    return LeadScoreInput(
        title=result.title,
        content=result.content,
        conversation_category=conversation_category or result.conversation_category,
        engagement=result.engagement if result.engagement is not None else metadata.get("score"),
        posted_at=result.posted_at,
        author_karma=metadata.get("author_karma"),
        author_account_age_days=metadata.get("author_account_age_days"),
        platform=result.platform,
    )
