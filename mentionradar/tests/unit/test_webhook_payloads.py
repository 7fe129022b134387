"""
Unit tests for webhook signing and payload formatting
"""
import hashlib
import hmac

import pytest

from mentionradar.core import webhook_security
from mentionradar.core.webhook_security import InvalidSignatureError, MissingSignatureError
from mentionradar.services import webhook_formatters


def _results(count):
    return [
        {
            "id": f"r{i}",
            "platform": "reddit",
            "source_url": f"https://www.reddit.com/r/saas/comments/{i}",
            "title": f"Looking for <acme> alternative {i}",
            "content": "body",
            "author": "jane",
            "posted_at": "2026-03-10T12:00:00+00:00",
            "sentiment": "negative",
            "conversation_category": "pain_point" if i == 0 else None,
            "ai_summary": "x" * 250,
            "lead_score": 61,
        }
        for i in range(count)
    ]


class TestSigning:

    def test_signature_is_hmac_sha256_of_body(self):
        body = b'{"event":"test"}'
        expected = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()

        assert webhook_security.compute_signature(body, "s3cret") == expected
        assert webhook_security.signature_header_value(body, "s3cret") == f"sha256={expected}"

    def test_verify_round_trip(self):
        body = '{"event":"new_results"}'
        header = webhook_security.signature_header_value(body, "s3cret")
        assert webhook_security.verify_signature(body, header, "s3cret")

    def test_verify_rejects_tampered_body(self):
        header = webhook_security.signature_header_value(b"original", "s3cret")
        with pytest.raises(InvalidSignatureError):
            webhook_security.verify_signature(b"tampered", header, "s3cret")

    def test_verify_requires_header(self):
        with pytest.raises(MissingSignatureError):
            webhook_security.verify_signature(b"body", None, "s3cret")

    def test_generated_secrets_are_unique(self):
        assert webhook_security.generate_webhook_secret() != webhook_security.generate_webhook_secret()


class TestTargetDetection:

    @pytest.mark.parametrize("url,target", [
        ("https://hooks.slack.com/services/T000/B000/XXX", "slack"),
        ("https://discord.com/api/webhooks/1/abc", "discord"),
        ("https://discordapp.com/api/webhooks/1/abc", "discord"),
        ("https://example.com/hooks/mentions", "generic"),
        ("https://example.com/?u=hooks.slack.com", "generic"),
        ("https://example.com/relay/discord.com/api/webhooks/1/abc", "generic"),
        ("https://hooks.slack.com.example.net/services/T/B/X", "generic"),
        ("https://slack.com/services/T000/B000/XXX", "slack"),
        ("HTTPS://Hooks.Slack.com/services/T000/B000/XXX", "slack"),
        ("not a url", "generic"),
        ("", "generic"),
    ])
    def test_detect(self, url, target):
        assert webhook_formatters.detect_webhook_type(url) == target


class TestFormatters:

    def test_slack_payload(self):
        payload = webhook_formatters.format_slack_payload("Acme", _results(7), "https://app.example.com/m/1")

        assert payload["text"] == "7 new mentions for Acme"
        assert payload["blocks"][0]["text"]["text"] == "Acme - 7 new mentions"
        assert len(payload["attachments"]) == 5
        first = payload["attachments"][0]
        assert first["color"] == "#ef4444"
        assert "&lt;acme&gt;" in first["blocks"][0]["text"]["text"]
        assert "View all results" in payload["blocks"][-1]["text"]["text"]

    def test_slack_summary_is_truncated(self):
        payload = webhook_formatters.format_slack_payload("Acme", _results(1))
        summary_block = payload["attachments"][0]["blocks"][2]
        assert summary_block["text"]["text"].endswith("...")

    def test_discord_payload_has_overflow_embed(self):
        payload = webhook_formatters.format_discord_payload("Acme", _results(7), "https://app.example.com/m/1")

        assert payload["content"] == "**Acme** - 7 new mentions"
        assert len(payload["embeds"]) == 6
        assert payload["embeds"][-1]["title"] == "+2 more results"
        assert payload["embeds"][0]["color"] == int("ef4444", 16)
        assert payload["embeds"][1]["color"] == int("ef4444", 16)

    def test_single_result_is_singular(self):
        payload = webhook_formatters.format_discord_payload("Acme", _results(1))
        assert payload["content"] == "**Acme** - 1 new mention"

    def test_generic_envelope(self):
        stored = {"event_type": "new_results", "data": {"count": 1}, "timestamp": "2026-03-10T15:00:00+00:00"}
        payload = webhook_formatters.format_payload("https://example.com/hook", "new_results", stored)
        assert payload == {"event": "new_results", "timestamp": "2026-03-10T15:00:00+00:00", "data": {"count": 1}}

    def test_chat_url_without_results_falls_back_to_generic(self):
        stored = {"event_type": "test", "data": {"message": "hello"}, "timestamp": "t"}
        payload = webhook_formatters.format_payload("https://hooks.slack.com/services/x", "test", stored)
        assert payload["event"] == "test"

    def test_chat_url_with_results_is_rich(self):
        stored = {"data": {"monitor_name": "Acme", "results": _results(2)}}
        payload = webhook_formatters.format_payload("https://hooks.slack.com/services/x", "new_results", stored)
        assert payload["text"] == "2 new mentions for Acme"
