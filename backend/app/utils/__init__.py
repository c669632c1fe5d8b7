"""Utils package initialization."""

from app.utils.logging import ProcessingLogger, get_logger, setup_logging
from app.utils.utils import billing_minutes, format_duration, normalize_phone

__all__ = [
    # Logging
    "get_logger",
    "setup_logging",
    "ProcessingLogger",
    # Call math
    "billing_minutes",
    "format_duration",
    "normalize_phone",
]
