"""Stripe webhook signature verification

Header format: ``t=<unix-seconds>,v1=<hex-hmac>[,v1=...]``. The signed payload is
``"<t>." + raw body`` and the signature is HMAC-SHA256 with the endpoint secret.
The raw body must be used verbatim, never a re-serialized JSON document.
"""
import hmac
import hashlib
import time
from typing import Optional

import stripe

from billing_webhooks.core.config import DEFAULT_WEBHOOK_TOLERANCE
from billing_webhooks.core.exceptions import InvalidSignature
from billing_webhooks.core.logging import security_logger


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    """HMAC-SHA256(secret, "<timestamp>.<payload>") as hex"""
    signed_payload = str(timestamp).encode("utf-8") + b"." + payload
    return hmac.new(
        secret.encode("utf-8"),
        signed_payload,
        hashlib.sha256
    ).hexdigest()


def build_signature_header(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Build a header the way Stripe sends it (used by tests and replay tooling)"""
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},{stripe.WebhookSignature.EXPECTED_SCHEME}={compute_signature(payload, ts, secret)}"


def verify_signature(
    payload: bytes,
    sig_header: str,
    secret: str,
    tolerance: int = DEFAULT_WEBHOOK_TOLERANCE
) -> bool:
    """Verify a Stripe webhook signature.

    Args:
        payload: Raw request body bytes
        sig_header: Value of the Stripe-Signature header
        secret: Endpoint signing secret (whsec_...)
        tolerance: Maximum accepted age of the signature timestamp, in seconds

    Returns:
        True when the signature is valid

    Raises:
        InvalidSignature: Header incomplete, signature mismatch, or timestamp too old
    """
    if not sig_header:
        raise InvalidSignature("Missing signature header")

    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError:
        security_logger.warning("Webhook payload is not valid UTF-8")
        raise InvalidSignature("Payload is not valid UTF-8")

    try:
        return stripe.WebhookSignature.verify_header(body, sig_header, secret, tolerance=tolerance)
    except stripe.SignatureVerificationError as e:
        security_logger.warning(f"Invalid webhook signature: {e.user_message or e}")
        raise InvalidSignature(str(e.user_message or e))
