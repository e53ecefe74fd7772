"""
logging.py — Backend Logging Setup

Purpose:
- One line format for API requests, repository writes and AI command runs:
  timestamp | level | module | message
- Keep chatty third-party loggers (SQL echo, HTTP client, OpenAI SDK) at
  WARNING unless the backend itself runs at DEBUG.

This module does NOT:
- Ship logs anywhere but stderr (uvicorn collects them).
"""

import logging
from typing import Sequence

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Libraries that log every statement / request at INFO or DEBUG
NOISY_LOGGERS: Sequence[str] = (
    "sqlalchemy.engine",
    "httpx",
    "httpcore",
    "openai",
)


def resolve_level(level: str) -> int:
    """"debug" → logging.DEBUG; unknown names fall back to INFO."""
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: str = "INFO") -> None:
    """
    Configure the root logger from the LOG_LEVEL setting.

    Called once from main.py. Third-party loggers in NOISY_LOGGERS follow
    the root level at DEBUG and stay at WARNING otherwise.
    """
    root_level = resolve_level(level)
    logging.basicConfig(level=root_level, format=LOG_FORMAT)

    library_level = root_level if root_level <= logging.DEBUG else max(root_level, logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    logging.getLogger(__name__).info(
        "Logging initialized with level %s (libraries at %s)",
        logging.getLevelName(root_level),
        logging.getLevelName(library_level),
    )


def get_logger(name: str) -> logging.Logger:
    """Module logger; use as `logger = get_logger(__name__)`."""
    return logging.getLogger(name)
