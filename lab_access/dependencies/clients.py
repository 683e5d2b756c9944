"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

from lab_access.clients import SlackOAuthClient, SQLiteStore
from lab_access.core.config import get_settings
from lab_access.services import (
    KeyLeaseService,
    OAuthStateService,
    RelayPageRenderer,
    SlackLoginService,
    SlackMessageService,
    TokenCipherService,
    UserRecordService,
)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_oauth_state_service() -> OAuthStateService:
    """Provide the signer for OAuth state tokens."""
    settings = _settings()
    return OAuthStateService(secret_key=settings.security.effective_state_secret)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    return TokenCipherService(secret=settings.security.encryption_key)


@lru_cache()
def get_slack_oauth_client() -> SlackOAuthClient:
    """Create a singleton Slack Web API client."""
    settings = _settings()
    return SlackOAuthClient(settings.slack)


@lru_cache()
def get_sqlite_store() -> SQLiteStore:
    """Provide shared SQLite record store."""
    settings = _settings()
    return SQLiteStore(settings.database_path)


@lru_cache()
def get_user_record_service() -> UserRecordService:
    return UserRecordService(get_sqlite_store())


@lru_cache()
def get_key_lease_service() -> KeyLeaseService:
    """Provide the transactional key lease and room presence service."""
    return KeyLeaseService(get_sqlite_store())


@lru_cache()
def get_relay_page_renderer() -> RelayPageRenderer:
    settings = _settings()
    frontend = str(settings.frontend_base_url) if settings.frontend_base_url else None
    return RelayPageRenderer(settings.relay, frontend_base_url=frontend)


def get_slack_login_service() -> SlackLoginService:
    """Build the login orchestrator from the shared services."""
    settings = _settings()
    return SlackLoginService(
        oauth_client=get_slack_oauth_client(),
        state_service=get_oauth_state_service(),
        token_cipher=get_token_cipher_service(),
        user_records=get_user_record_service(),
        allowed_team_id=settings.slack.allowed_team_id,
    )


def get_slack_message_service() -> SlackMessageService:
    return SlackMessageService(
        oauth_client=get_slack_oauth_client(),
        token_cipher=get_token_cipher_service(),
        user_records=get_user_record_service(),
    )


__all__ = [
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
