"""
Logging utilities for the FastAPI application and operational scripts.

Provides a consistent logging format and configuration.
"""

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )


def redact_user_id(user_id: str | None, visible: int = 8) -> str:
    """Shorten an identifier for log lines that are emitted in production."""
    if not user_id:
        return "<none>"
    if len(user_id) <= visible:
        return user_id
    return f"{user_id[:visible]}..."


__all__ = ["configure_logging", "redact_user_id"]
