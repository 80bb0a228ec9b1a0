"""Shared Supabase client for the vehicle store and the stage queue."""

import os
from typing import Optional
from supabase import create_client, Client
from supabase.client import ClientOptions
from motorwise.utils.errors import ConfigurationError
import logging

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"

_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """Return the process-wide client, creating it from the service-role credentials."""
    global _client

    if _client is None:
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
        if not url or not key:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

        # Service role, no user session to refresh
        _client = create_client(url, key, ClientOptions(auto_refresh_token=False, persist_session=False))
        logger.info("Supabase client initialized", extra={"url": url})

    return _client


def reset_supabase_client() -> None:
    global _client
    _client = None


def is_unique_violation(error: BaseException, constraint_hint: Optional[str] = None) -> bool:
    """True when ``error`` is a Postgres unique violation, optionally on a matching constraint."""
    message = str(error).lower()
    violated = getattr(error, "code", None) == UNIQUE_VIOLATION or "duplicate key" in message
    if not violated:
        return False
    return constraint_hint is None or constraint_hint.lower() in message


class SupabaseClient:
    """``async with SupabaseClient("create vehicle") as client:``

    Logs failures raised inside the block with the operation name and lets them propagate.
    """

    def __init__(self, operation: str = "supabase"):
        self.operation = operation
        self.client: Optional[Client] = None

    async def __aenter__(self) -> Client:
        self.client = get_supabase_client()
        return self.client

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            level = logging.INFO if is_unique_violation(exc_val) else logging.ERROR
            logger.log(level, "Supabase operation failed", extra={
                "operation": self.operation,
                "error": str(exc_val),
                "type": exc_type.__name__,
            })
        return False
