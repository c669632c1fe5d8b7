"""Structured logging utilities."""

import logging
import sys
from typing import Any, Optional

import structlog


def setup_logging(debug: bool = False) -> None:
    """Configure structured logging for the application."""

    log_level = logging.DEBUG if debug else logging.INFO

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance for the given name."""
    return structlog.get_logger(name)


class ProcessingLogger:
    """Logger bound to a single webhook delivery."""

    def __init__(self, processing_id: str, conversation_id: Optional[str] = None):
        self.logger = get_logger("webhooks.processing")
        self.processing_id = processing_id
        self.conversation_id = conversation_id

    def _context(self, kwargs: dict) -> dict:
        return {
            "processing_id": self.processing_id,
            "conversation_id": self.conversation_id or "unknown",
            **kwargs,
        }

    def info(self, event: str, **kwargs: Any) -> None:
        self.logger.info(event, **self._context(kwargs))

    def debug(self, event: str, **kwargs: Any) -> None:
        self.logger.debug(event, **self._context(kwargs))

    def warning(self, event: str, **kwargs: Any) -> None:
        self.logger.warning(event, **self._context(kwargs))

    def error(self, event: str, **kwargs: Any) -> None:
        self.logger.error(event, **self._context(kwargs))

    def step_failed(self, step: str, error: BaseException, **kwargs: Any) -> None:
        """Log a side-effect step that failed without aborting the pipeline."""
        self.logger.error(
            "webhook_step_failed",
            **self._context(
                {
                    "step": step,
                    "error": str(error) or type(error).__name__,
                    "error_type": type(error).__name__,
                    **kwargs,
                }
            ),
        )
