import logging
import traceback
from typing import Any, Optional


def setup_logging(level: int = logging.INFO, fmt: Optional[str] = None) -> None:
    """Configure root logging once. Subsequent calls only adjust the level.
    If fmt is not provided, a sensible default is used.
    """
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level)
        return
    format_str = fmt or '%(asctime)s - %(levelname)s - %(name)s - %(message)s'
    logging.basicConfig(level=level, format=format_str)
    # botocore is chatty at DEBUG; keep it at WARNING unless asked otherwise
    logging.getLogger("botocore").setLevel(max(level, logging.WARNING))
    logging.getLogger("urllib3").setLevel(max(level, logging.WARNING))


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a module/logger by name, after ensuring logging is configured."""
    setup_logging()
    return logging.getLogger(name) if name else logging.getLogger(__name__)


def format_fields(**fields: Any) -> str:
    """Render structured context as ``key=value`` pairs for a log line.

    Underscores in keys become dashes so that ``ami_id`` is logged as
    ``ami-id``. Fields whose value is None are dropped.

    Example:
        >>> format_fields(ami_id="ami-123", snapshot_id=None)
        'ami-id=ami-123'
    """
    parts = []
    for key, value in fields.items():
        if value is None:
            continue
        parts.append(f"{key.replace('_', '-')}={value}")
    return " ".join(parts)


def log_exception(logger: logging.Logger, message: str = "An error occurred", exc_info: Exception = None) -> None:
    """Centralized exception logging with full traceback.

    Args:
        logger: Logger instance to use
        message: Custom error message to log before the traceback
        exc_info: Exception instance (if None, uses current exception context)
    """
    logger.error(message)
    if exc_info is not None:
        logger.error(f"Exception type: {type(exc_info).__name__}")
        logger.error(f"Exception message: {str(exc_info)}")
    logger.debug("Full traceback:")
    logger.debug(traceback.format_exc())
