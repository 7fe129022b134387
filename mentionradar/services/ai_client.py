"""
AI enrichment client

The enrichment worker talks to the model through the EnrichmentClient
protocol. OpenAIEnrichmentClient is the production implementation; tests
pass a fake with the same two coroutines.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from openai import AsyncOpenAI, OpenAIError

from mentionradar.core.config import get_settings
from mentionradar.core.exceptions import ConnectorConfigurationError, TransientUpstreamError

logger = logging.getLogger(__name__)

AI_PROVIDER = "openai"

SENTIMENTS = ("positive", "negative", "neutral")
CONVERSATION_CATEGORIES = ("solution_request", "money_talk", "pain_point", "advice_request", "hot_discussion", "general")

CONTENT_ANALYSIS_PROMPT = """You analyze online conversations that mention a brand or a problem space.
Return strict JSON with these keys:
{
  "sentiment": "positive" | "negative" | "neutral",
  "sentiment_score": <number from -1.0 to 1.0>,
  "category": "solution_request" | "money_talk" | "pain_point" | "advice_request" | "hot_discussion" | "general",
  "summary": "<one or two sentences>"
}
solution_request: the author is looking for a tool or service.
money_talk: pricing, budgets or willingness to pay.
pain_point: a complaint or frustration with an existing solution.
advice_request: a general how-to question.
hot_discussion: a heavily debated thread."""

BATCH_SUMMARY_PROMPT = """You are a brand intelligence analyst summarizing a sample of {total_count} items from {platform}.
Return strict JSON with these keys:
{{
  "overall_sentiment": "positive" | "negative" | "neutral" | "mixed",
  "sentiment_score": <number from -1.0 to 1.0>,
  "sentiment_breakdown": {{"positive": <0-100>, "negative": <0-100>, "neutral": <0-100>}},
  "key_themes": ["<theme>", ...],
  "actionable_insights": ["<insight>", ...],
  "summary": "<2-3 sentence executive summary>"
}}
Use "mixed" when positive and negative are both above 30%."""


@dataclass
class ContentAnalysis:
    sentiment: str
    sentiment_score: float
    category: str
    summary: str
    model: Optional[str] = None


@dataclass
class BatchSummary:
    overall_sentiment: str
    sentiment_score: float
    summary: str
    key_themes: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)
    model: Optional[str] = None

    @property
    def result_sentiment(self) -> str:
        """Sentiment applied to each result in the batch"""
        return "neutral" if self.overall_sentiment == "mixed" else self.overall_sentiment


class EnrichmentClient(Protocol):
    async def analyze(self, text: str) -> ContentAnalysis:
        ...

    async def summarize_batch(self, platform: str, total_count: int, items: List[Dict[str, Any]]) -> BatchSummary:
        ...


def _clamp_score(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(-1.0, min(score, 1.0))


def parse_content_analysis(data: Dict[str, Any], model: Optional[str] = None) -> ContentAnalysis:
    sentiment = str(data.get("sentiment", "neutral")).lower()
    category = str(data.get("category", "general")).lower()
    return ContentAnalysis(
        sentiment=sentiment if sentiment in SENTIMENTS else "neutral",
        sentiment_score=_clamp_score(data.get("sentiment_score")),
        category=category if category in CONVERSATION_CATEGORIES else "general",
        summary=str(data.get("summary") or ""),
        model=model,
    )


def parse_batch_summary(data: Dict[str, Any], model: Optional[str] = None) -> BatchSummary:
    overall = str(data.get("overall_sentiment", "neutral")).lower()
    if overall not in SENTIMENTS + ("mixed",):
        overall = "neutral"
    return BatchSummary(
        overall_sentiment=overall,
        sentiment_score=_clamp_score(data.get("sentiment_score")),
        summary=str(data.get("summary") or ""),
        key_themes=[str(t) for t in data.get("key_themes") or []],
        raw=data,
        model=model,
    )


class OpenAIEnrichmentClient:
    """Chat-completions backed enrichment with JSON responses"""

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None):
        settings = get_settings()
        if client is None:
            if not settings.openai_api_key:
                raise ConnectorConfigurationError(AI_PROVIDER, "OPENAI_API_KEY is not configured")
            client = AsyncOpenAI(api_key=settings.openai_api_key, timeout=settings.ai_request_timeout_seconds)
        self.client = client
        self.model = model or settings.openai_model

    async def _complete_json(self, system_prompt: str, user_content: str) -> Dict[str, Any]:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},
                ],
                response_format={"type": "json_object"},
                temperature=0.2,
            )
        except OpenAIError as e:
            raise TransientUpstreamError(AI_PROVIDER, f"Enrichment request failed: {e}") from e

        content = response.choices[0].message.content or "{}"
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise TransientUpstreamError(AI_PROVIDER, f"Enrichment response was not valid JSON: {e}") from e

    async def analyze(self, text: str) -> ContentAnalysis:
        data = await self._complete_json(CONTENT_ANALYSIS_PROMPT, text)
        return parse_content_analysis(data, self.model)

    async def summarize_batch(self, platform: str, total_count: int, items: List[Dict[str, Any]]) -> BatchSummary:
        prompt = BATCH_SUMMARY_PROMPT.format(total_count=total_count, platform=platform)
        data = await self._complete_json(prompt, json.dumps(items, default=str))
        logger.debug(f"Batch summary for {platform}: {len(items)} sampled of {total_count}")
        return parse_batch_summary(data, self.model)
