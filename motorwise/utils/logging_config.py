"""Root logger setup for the serverless handlers and the stage worker."""

import os
import logging
import sys
from contextvars import ContextVar
from typing import Optional
from pythonjsonlogger import jsonlogger

SERVICE_NAME = "motorwise-backend"

# Chatty at INFO; one line per HTTP call or model request
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "langchain_core", "supabase", "postgrest")

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


class CorrelationIdFilter(logging.Filter):
    """Stamps the current job/event id on every record, including plain ``logging`` callers."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = correlation_id_var.get()
        return True


class LoggingConfig:
    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"
    LOG_MASK_SENSITIVE = True
    LOG_SLOW_OPERATION_THRESHOLD_MS = 5000

    @classmethod
    def load(cls) -> None:
        """Read LOG_* variables from the environment."""
        cls.LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
        cls.LOG_FORMAT = os.environ.get("LOG_FORMAT", "json").lower()
        cls.LOG_MASK_SENSITIVE = os.environ.get("LOG_MASK_SENSITIVE", "true").lower() == "true"
        cls.LOG_SLOW_OPERATION_THRESHOLD_MS = int(os.environ.get("LOG_SLOW_OPERATION_THRESHOLD_MS", "5000"))

    @classmethod
    def level(cls) -> int:
        return getattr(logging, cls.LOG_LEVEL, logging.INFO)

    @classmethod
    def build_formatter(cls) -> logging.Formatter:
        if cls.LOG_FORMAT == "json":
            return jsonlogger.JsonFormatter(
                "%(timestamp)s %(levelname)s %(name)s %(correlation_id)s %(message)s",
                timestamp=True,
                static_fields={"service": SERVICE_NAME},
            )
        return logging.Formatter("%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s")

    @classmethod
    def setup_logging(cls) -> None:
        cls.load()
        root_logger = logging.getLogger()
        root_logger.setLevel(cls.level())
        root_logger.handlers.clear()

        # Vercel collects stdout
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(cls.level())
        handler.setFormatter(cls.build_formatter())
        handler.addFilter(CorrelationIdFilter())
        root_logger.addHandler(handler)

        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


LoggingConfig.load()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
