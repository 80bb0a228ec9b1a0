"""Listing change webhook endpoint for Vercel.

Receives database webhooks for the ``listings`` table, runs extraction and
merge for the changed listing and enqueues the first enrichment stage.
"""

from http.server import BaseHTTPRequestHandler
import json
import asyncio
import logging
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from motorwise.models.listing import Listing
from motorwise.services.pipeline import PipelineOrchestrator, build_orchestrator
from motorwise.services.webhook_verifier import verify_webhook_request
from motorwise.utils.config import PipelineConfig
from motorwise.utils.errors import DuplicateRegistrationError
from motorwise.utils.logging import correlation_context, generate_correlation_id, setup_logging

setup_logging()
_logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Motorwise-Signature"
TIMESTAMP_HEADER = "X-Motorwise-Timestamp"
HANDLED_EVENT_TYPES = ("INSERT", "UPDATE")


def _header(headers: Mapping[str, str], name: str) -> str:
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, item in headers.items():
            if key.lower() == lowered:
                return item
    return value or ""


def process_listing_event(
    raw_body: str,
    headers: Mapping[str, str],
    orchestrator: Optional[PipelineOrchestrator] = None,
    config: Optional[PipelineConfig] = None,
) -> tuple[int, dict[str, Any]]:
    """Verify and handle one webhook delivery. Returns (status code, response body)."""
    config = config or (orchestrator.config if orchestrator else PipelineConfig.from_env())

    timestamp = _header(headers, TIMESTAMP_HEADER)
    signature = _header(headers, SIGNATURE_HEADER)
    if not verify_webhook_request(config, timestamp, signature, raw_body):
        _logger.warning(
            "Listing webhook signature verification failed",
            extra={"has_timestamp": bool(timestamp), "has_signature": bool(signature)}
        )
        return 401, {"error": "invalid signature"}

    try:
        body = json.loads(raw_body) if raw_body else {}
    except json.JSONDecodeError:
        return 400, {"error": "invalid JSON"}
    if not isinstance(body, dict):
        return 400, {"error": "invalid payload"}

    event_type = (body.get("type") or "").upper()
    if event_type not in HANDLED_EVENT_TYPES:
        _logger.info("Ignoring listing event", extra={"event_type": event_type})
        return 200, {"ok": True, "ignored": True}

    record = body.get("record")
    if not isinstance(record, dict):
        return 400, {"error": "missing record"}

    try:
        listing = Listing.model_validate(record)
        old_record = body.get("old_record")
        previous = Listing.model_validate(old_record) if event_type == "UPDATE" and isinstance(old_record, dict) else None
    except ValidationError as e:
        _logger.warning("Invalid listing record", extra={"error": str(e)})
        return 400, {"error": "invalid listing record"}

    orchestrator = orchestrator or build_orchestrator(config)
    with correlation_context(generate_correlation_id()):
        try:
            vehicle = asyncio.run(orchestrator.on_listing_saved(listing, previous))
        except DuplicateRegistrationError as e:
            _logger.error(
                "Duplicate registration for listing",
                extra={"listing_id": listing.listing_id, "error": str(e)}
            )
            return 409, {"error": "duplicate registration"}

    _logger.info(
        "Listing event processed",
        extra={"listing_id": listing.listing_id, "event_type": event_type}
    )
    return 200, {
        "ok": True,
        "listing_id": listing.listing_id,
        "vehicle_id": vehicle.vehicle_id if vehicle else None,
    }


class handler(BaseHTTPRequestHandler):
    """Vercel serverless function handler for listing change webhooks."""

    def _send_json(self, status: int, payload: dict):
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.end_headers()
        self.wfile.write(json.dumps(payload).encode('utf-8'))

    def do_POST(self):
        """Handle POST request from the database webhook."""
        try:
            content_length = int(self.headers.get('Content-Length', 0))
            raw_body = self.rfile.read(content_length).decode('utf-8') if content_length > 0 else ""

            status, payload = process_listing_event(raw_body, self.headers)
            self._send_json(status, payload)

        except Exception as e:
            _logger.error(f"Error processing listing event: {e}", exc_info=True)
            self._send_json(500, {"error": "internal error"})
