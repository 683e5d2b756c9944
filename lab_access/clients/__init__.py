"""Expose constructed client wrappers."""

from .slack_api import SlackAPIError, SlackOAuthClient
from .sqlite_store import PersistenceError, SQLiteStore

__all__ = [
    "PersistenceError",
    "SQLiteStore",
    "SlackAPIError",
    "SlackOAuthClient",
]
