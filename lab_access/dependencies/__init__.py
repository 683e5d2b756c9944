"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_key_lease_service,
    get_oauth_state_service,
    get_relay_page_renderer,
    get_slack_login_service,
    get_slack_message_service,
    get_slack_oauth_client,
    get_sqlite_store,
    get_token_cipher_service,
    get_user_record_service,
)
from .config import SettingsDependency, get_app_settings

__all__ = [
    "SettingsDependency",
    "get_app_settings",
    "get_key_lease_service",
    "get_oauth_state_service",
    "get_relay_page_renderer",
    "get_slack_login_service",
    "get_slack_message_service",
    "get_slack_oauth_client",
    "get_sqlite_store",
    "get_token_cipher_service",
    "get_user_record_service",
]
