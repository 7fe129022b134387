"""
Outbound webhook signing

Payloads sent to tenant endpoints are signed with HMAC-SHA256 over the raw
body using the webhook's secret. The header value has the form
``sha256=<hex>`` so receivers can verify with any standard HMAC helper.
"""
import hmac
import hashlib
import logging
import secrets
from typing import Optional, Union

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
DELIVERY_ID_HEADER = "X-Webhook-Delivery-Id"
SIGNATURE_PREFIX = "sha256="


class WebhookSecurityError(Exception):
    """Base class for webhook security errors"""
    pass


class InvalidSignatureError(WebhookSecurityError):
    """Raised when webhook signature is invalid"""
    pass


class MissingSignatureError(WebhookSecurityError):
    """Raised when required webhook signature is missing"""
    pass


def generate_webhook_secret() -> str:
    """Generate a new per-webhook signing secret"""
    return secrets.token_hex(32)


def _to_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def compute_signature(body: Union[str, bytes], secret: str) -> str:
    """Hex-encoded HMAC-SHA256 of the raw body"""
    return hmac.new(_to_bytes(secret), _to_bytes(body), hashlib.sha256).hexdigest()


def signature_header_value(body: Union[str, bytes], secret: str) -> str:
    return f"{SIGNATURE_PREFIX}{compute_signature(body, secret)}"


def verify_signature(body: Union[str, bytes], header_value: Optional[str], secret: str) -> bool:
    """
    Verify a signature header against a body.

    Raises:
        MissingSignatureError: header absent
        InvalidSignatureError: header present but does not match
    """
    if not header_value:
        raise MissingSignatureError(f"Missing {SIGNATURE_HEADER} header")

    provided = header_value[len(SIGNATURE_PREFIX):] if header_value.startswith(SIGNATURE_PREFIX) else header_value
    expected = compute_signature(body, secret)

    # Constant-time comparison
    if not hmac.compare_digest(provided, expected):
        logger.warning("Webhook signature mismatch")
        raise InvalidSignatureError("Webhook signature does not match payload")
    return True
