"""Test helper functions."""

import json
import time
from typing import Any, Callable, Dict, Optional

import httpx

from motorwise.services.webhook_verifier import compute_signature


def generate_webhook_signature(secret: str, timestamp: str, body: str) -> str:
    """Generate a valid listing-webhook signature for testing."""
    return compute_signature(secret, timestamp, body)


def create_listing_event(
    record: Dict[str, Any],
    event_type: str = "INSERT",
    old_record: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Create a database-webhook payload for the listings table."""
    return {
        "type": event_type,
        "table": "listings",
        "schema": "public",
        "record": record,
        "old_record": old_record,
    }


def signed_headers(secret: str, body: str, timestamp: Optional[str] = None) -> Dict[str, str]:
    """Headers carrying a valid signature for ``body``."""
    timestamp = timestamp or str(int(time.time()))
    return {
        "X-Motorwise-Timestamp": timestamp,
        "X-Motorwise-Signature": generate_webhook_signature(secret, timestamp, body),
        "Content-Type": "application/json",
    }


def json_transport(
    payload: Any,
    status_code: int = 200,
    calls: Optional[list] = None,
) -> httpx.MockTransport:
    """MockTransport answering every request with ``payload``; records requests in ``calls``."""
    def handle(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(status_code, json=payload)
    return httpx.MockTransport(handle)


def failing_transport(error: Callable[[httpx.Request], Exception]) -> httpx.MockTransport:
    """MockTransport raising the exception built by ``error`` for every request."""
    def handle(request: httpx.Request) -> httpx.Response:
        raise error(request)
    return httpx.MockTransport(handle)


def create_vercel_request(query: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Create a Vercel cron request object for testing."""
    return {
        "method": "GET",
        "path": "/api/pipeline/process",
        "headers": {},
        "body": "",
        "query": query or {},
    }


def response_json(response: Dict[str, Any]) -> Dict[str, Any]:
    return json.loads(response["body"])
