"""Signature verification for listing-change webhooks."""

import hmac
import hashlib
import time
import logging
from typing import Optional
from motorwise.utils.config import PipelineConfig
from motorwise.utils.errors import WebhookVerificationError

logger = logging.getLogger(__name__)

SIGNATURE_VERSION = "v1"
REPLAY_WINDOW_SECONDS = 300


def should_bypass_verification(config: PipelineConfig) -> bool:
    """Unsigned webhooks are accepted outside production when no secret is configured."""
    return not config.webhook_secret and not config.is_production


def get_webhook_secret(config: PipelineConfig) -> str:
    if not config.webhook_secret:
        raise WebhookVerificationError("LISTING_WEBHOOK_SECRET not set")
    return config.webhook_secret


def compute_signature(secret: str, timestamp: str, body: str) -> str:
    """Signature header value for a request body: 'v1=<hex hmac-sha256>'."""
    digest = hmac.new(
        secret.encode("utf-8"),
        f"{SIGNATURE_VERSION}:{timestamp}:{body}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def verify_webhook_signature(
    secret: str,
    timestamp: str,
    body: str,
    signature: str,
    now: Optional[float] = None,
) -> bool:
    """Verify an HMAC-SHA256 signature, rejecting timestamps outside the replay window."""
    if not secret or not timestamp or not signature:
        return False

    try:
        ts = int(timestamp)
    except ValueError:
        return False
    current_time = int(now if now is not None else time.time())
    if abs(current_time - ts) > REPLAY_WINDOW_SECONDS:
        logger.warning("Webhook timestamp outside replay window")
        return False

    return hmac.compare_digest(compute_signature(secret, timestamp, body), signature)


def verify_webhook_request(
    config: PipelineConfig,
    timestamp: str,
    signature: str,
    raw_body: str,
) -> bool:
    """Verify a webhook request. True if verification passes or is bypassed."""
    if should_bypass_verification(config):
        logger.debug("Webhook signature verification bypassed (no secret, non-production)")
        return True

    try:
        secret = get_webhook_secret(config)
    except WebhookVerificationError as e:
        logger.error(f"Webhook verification error: {e}")
        return False

    result = verify_webhook_signature(secret, timestamp, raw_body, signature)
    if not result:
        logger.warning(
            "Webhook signature mismatch",
            extra={"has_timestamp": bool(timestamp), "body_length": len(raw_body)}
        )
    return result
