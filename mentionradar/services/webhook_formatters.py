"""
Webhook payload formatting

Chat webhooks get rich messages (Slack Block Kit, Discord embeds); every
other endpoint gets the generic JSON envelope. The target type is detected
from the URL.
"""
from typing import Any, Dict, List, Optional

import httpx

from mentionradar.core.clock import utc_now

SLACK = "slack"
DISCORD = "discord"
GENERIC = "generic"

MAX_RICH_RESULTS = 5
SUMMARY_PREVIEW_CHARS = 200
DEFAULT_COLOR = "#0ea5e9"

CATEGORY_STYLES = {
    "solution_request": {"color": "#22c55e", "label": "Looking for Solution"},
    "money_talk": {"color": "#f59e0b", "label": "Budget Talk"},
    "pain_point": {"color": "#ef4444", "label": "Pain Point"},
    "advice_request": {"color": "#3b82f6", "label": "Seeking Advice"},
    "hot_discussion": {"color": "#8b5cf6", "label": "Trending"},
}

SENTIMENT_COLORS = {
    "positive": "#22c55e",
    "negative": "#ef4444",
    "neutral": "#6b7280",
}


SLACK_HOSTS = {"hooks.slack.com"}
SLACK_SERVICE_HOSTS = {"slack.com", "www.slack.com"}
DISCORD_HOSTS = {"discord.com", "www.discord.com", "discordapp.com", "www.discordapp.com"}


def detect_webhook_type(url: str) -> str:
    """Match on the parsed host and path; query strings never decide the target"""
    try:
        parsed = httpx.URL(url or "")
    except httpx.InvalidURL:
        return GENERIC

    host = (parsed.host or "").lower()
    path = parsed.path.lower()
    if host in SLACK_HOSTS or (host in SLACK_SERVICE_HOSTS and path.startswith("/services/")):
        return SLACK
    if host in DISCORD_HOSTS and path.startswith("/api/webhooks/"):
        return DISCORD
    return GENERIC


def _plural(count: int) -> str:
    return "" if count == 1 else "s"


def _color_for(result: Dict[str, Any]) -> str:
    category = CATEGORY_STYLES.get(result.get("conversation_category") or "")
    if category:
        return category["color"]
    return SENTIMENT_COLORS.get(result.get("sentiment") or "", DEFAULT_COLOR)


def _escape_slack(text: str) -> str:
    return (text or "").replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _preview(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    if len(text) > SUMMARY_PREVIEW_CHARS:
        return text[:SUMMARY_PREVIEW_CHARS] + "..."
    return text


def format_slack_payload(monitor_name: str, results: List[Dict[str, Any]], dashboard_url: Optional[str] = None) -> Dict[str, Any]:
    count = len(results)
    blocks: List[Dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"{monitor_name} - {count} new mention{_plural(count)}", "emoji": True},
        },
        {"type": "divider"},
    ]

    attachments = []
    for result in results[:MAX_RICH_RESULTS]:
        title = _escape_slack(result.get("title") or "Untitled")
        url = result.get("source_url")
        attachment_blocks: List[Dict[str, Any]] = [
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*<{url}|{title}>*"},
                "accessory": {"type": "button", "text": {"type": "plain_text", "text": "View", "emoji": True}, "url": url},
            }
        ]

        badges = [f"`{result.get('platform')}`"]
        category = CATEGORY_STYLES.get(result.get("conversation_category") or "")
        if category:
            badges.append(category["label"])
        if result.get("sentiment"):
            badges.append(result["sentiment"])
        if result.get("lead_score") is not None:
            badges.append(f"lead score {result['lead_score']}")
        attachment_blocks.append({"type": "context", "elements": [{"type": "mrkdwn", "text": " | ".join(badges)}]})

        summary = _preview(result.get("ai_summary"))
        if summary:
            attachment_blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"> {_escape_slack(summary)}"}})

        if result.get("author"):
            attachment_blocks.append({"type": "context", "elements": [{"type": "mrkdwn", "text": f"by {result['author']}"}]})

        attachments.append({"color": _color_for(result), "blocks": attachment_blocks})

    if dashboard_url:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"<{dashboard_url}|View all results>"}})

    return {
        "text": f"{count} new mention{_plural(count)} for {monitor_name}",
        "blocks": blocks,
        "attachments": attachments,
    }


def _hex_to_int(color: str) -> int:
    return int(color.lstrip("#"), 16)


def format_discord_payload(monitor_name: str, results: List[Dict[str, Any]], dashboard_url: Optional[str] = None) -> Dict[str, Any]:
    count = len(results)
    embeds = []
    for result in results[:MAX_RICH_RESULTS]:
        fields = [{"name": "Platform", "value": str(result.get("platform")), "inline": True}]
        category = CATEGORY_STYLES.get(result.get("conversation_category") or "")
        if category:
            fields.append({"name": "Category", "value": category["label"], "inline": True})
        if result.get("sentiment"):
            fields.append({"name": "Sentiment", "value": result["sentiment"], "inline": True})
        if result.get("lead_score") is not None:
            fields.append({"name": "Lead score", "value": str(result["lead_score"]), "inline": True})

        embed = {
            "title": (result.get("title") or "Untitled")[:256],
            "url": result.get("source_url"),
            "color": _hex_to_int(_color_for(result)),
            "fields": fields,
        }
        description = _preview(result.get("ai_summary") or result.get("content"))
        if description:
            embed["description"] = description
        if result.get("author"):
            embed["footer"] = {"text": f"by {result['author']}"}
        if result.get("posted_at"):
            embed["timestamp"] = result["posted_at"]
        embeds.append(embed)

    if count > MAX_RICH_RESULTS:
        more = {
            "title": f"+{count - MAX_RICH_RESULTS} more result{_plural(count - MAX_RICH_RESULTS)}",
            "color": _hex_to_int(DEFAULT_COLOR),
            "fields": [],
        }
        if dashboard_url:
            more["url"] = dashboard_url
        embeds.append(more)

    return {
        "content": f"**{monitor_name}** - {count} new mention{_plural(count)}",
        "embeds": embeds,
    }


def format_generic_payload(event_type: str, data: Dict[str, Any], timestamp: Optional[str] = None) -> Dict[str, Any]:
    return {
        "event": event_type,
        "timestamp": timestamp or utc_now().isoformat(),
        "data": data,
    }


def format_payload(url: str, event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Render the stored delivery payload for the target endpoint.

    Rich formats apply to events carrying a result list; anything else falls
    back to the generic envelope even for chat URLs.
    """
    data = payload.get("data") or {}
    target = detect_webhook_type(url)
    results = data.get("results")
    if target == SLACK and isinstance(results, list):
        return format_slack_payload(data.get("monitor_name") or "Monitor", results, data.get("dashboard_url"))
    if target == DISCORD and isinstance(results, list):
        return format_discord_payload(data.get("monitor_name") or "Monitor", results, data.get("dashboard_url"))
    return format_generic_payload(event_type, data, payload.get("timestamp"))
