"""Structured logging for the pipeline.

``get_structured_logger(__name__)`` returns a logger whose keyword arguments
become record fields. Every record carries the correlation id of the queue
job or webhook event being handled (see ``correlation_context``), and
``registration`` fields are masked before they reach the handler.
"""

import asyncio
import logging
import time
import re
from typing import Any, Callable, Optional, Dict
from contextlib import contextmanager
from functools import wraps

from motorwise.utils.ids import generate_id
from motorwise.utils.logging_config import LoggingConfig, correlation_id_var, get_logger

MASKED_FIELDS = ("registration", "plate")


def generate_correlation_id(prefix: str = "evt") -> str:
    return f"{prefix}_{generate_id()}"


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


@contextmanager
def correlation_context(correlation_id: Optional[str] = None):
    """Run a block under ``correlation_id`` (a fresh event id when omitted)."""
    correlation_id = correlation_id or generate_correlation_id()
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)


def mask_sensitive_data(text: str) -> str:
    """Redact emails and credentials (API keys, bearer tokens, webhook secrets) in free text."""
    if not text or not LoggingConfig.LOG_MASK_SENSITIVE:
        return text

    text = re.sub(r'[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}', '[REDACTED_EMAIL]', text, flags=re.IGNORECASE)
    text = re.sub(
        r'(?i)(api[_-]?key|token|secret|password|authorization)[\s:=]+([A-Za-z0-9_\-]{16,})',
        r'\1=[REDACTED]',
        text,
    )
    # OpenAI and Anthropic keys
    return re.sub(r'sk-(?:ant-)?[A-Za-z0-9_\-]{16,}', '[REDACTED_KEY]', text)


def mask_registration(registration: Optional[str]) -> Optional[str]:
    """``AB12 CDE`` -> ``AB1****``. Partial plates keep their ``?`` placeholders in the count."""
    if not registration or not LoggingConfig.LOG_MASK_SENSITIVE:
        return registration

    compact = re.sub(r'[^A-Za-z0-9?]', '', registration)
    if len(compact) <= 3:
        return "***"
    return f"{compact[:3]}{'*' * (len(compact) - 3)}"


class StructuredLogger:
    """Wraps a ``logging.Logger``; keyword arguments are passed as ``extra`` fields."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def _get_extra(self, **kwargs: Any) -> Dict[str, Any]:
        extra: Dict[str, Any] = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            extra["correlation_id"] = correlation_id

        for key, value in kwargs.items():
            if key in MASKED_FIELDS and isinstance(value, str):
                value = mask_registration(value)
            extra[key] = value
        return extra

    def _log(self, level: int, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        if self.logger.isEnabledFor(level):
            self.logger.log(level, message, extra=self._get_extra(**kwargs), exc_info=exc_info)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, exc_info=exc_info, **kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, exc_info=exc_info, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, exc_info=True, **kwargs)


def get_structured_logger(name: str) -> StructuredLogger:
    return StructuredLogger(get_logger(name))


@contextmanager
def log_timing(operation_name: str, logger: Optional[StructuredLogger] = None, **context: Any):
    """Log the duration of a block; warns past LOG_SLOW_OPERATION_THRESHOLD_MS.

    Stage runs and model calls are wrapped in this, so slow external
    services show up without extra instrumentation.
    """
    logger = logger or get_structured_logger(__name__)
    start = time.perf_counter()
    logger.debug(f"Starting {operation_name}", operation=operation_name, **context)

    try:
        yield
    finally:
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(f"Completed {operation_name}", operation=operation_name, processing_time_ms=elapsed_ms, **context)

        threshold = LoggingConfig.LOG_SLOW_OPERATION_THRESHOLD_MS
        if elapsed_ms > threshold:
            logger.warning(
                f"Slow operation detected: {operation_name}",
                operation=operation_name,
                processing_time_ms=elapsed_ms,
                threshold_ms=threshold,
                **context,
            )


def timed(operation_name: Optional[str] = None, logger: Optional[StructuredLogger] = None):
    """Decorator form of ``log_timing`` for sync and async callables."""
    def decorator(func: Callable) -> Callable:
        op_name = operation_name or func.__name__
        log = logger or get_structured_logger(func.__module__)

        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                with log_timing(op_name, logger=log):
                    return await func(*args, **kwargs)
            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            with log_timing(op_name, logger=log):
                return func(*args, **kwargs)
        return sync_wrapper

    return decorator


def setup_logging() -> logging.Logger:
    LoggingConfig.setup_logging()
    return get_logger("motorwise")
