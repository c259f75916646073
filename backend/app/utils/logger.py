import logging
from typing import Any, Dict, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
QUIET_LOGGERS = ("uvicorn.access", "pymongo", "multipart")

logger = logging.getLogger("qced")


def configure_logging(level: str = "INFO"):
    """
    Configure root logging for the API process and the seed script
    """
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT
    )
    # Request lines duplicate the audit trail; driver chatter is noise
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _with_context(message: str, user_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> str:
    parts = [message]
    if user_id:
        parts.append(f"user={user_id}")
    if details:
        parts.extend(f"{key}={value}" for key, value in details.items())
    return " | ".join(parts)


def log_error(message: str, error: Exception, user_id: Optional[str] = None):
    """Log a handled exception together with the acting user."""
    logger.error(_with_context(f"{message}: {type(error).__name__}: {error}", user_id))


def log_warning(message: str, user_id: Optional[str] = None):
    logger.warning(_with_context(message, user_id))


def log_debug(message: str, details: Optional[Dict[str, Any]] = None):
    logger.debug(_with_context(message, details=details))
