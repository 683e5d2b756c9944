"""Service layer exports."""

from .key_lease import KeyLeaseService, UserNotFoundError
from .oauth_state import OAuthStateService
from .relay import RelayPageRenderer, RelaySession
from .slack_login import SlackLoginService
from .slack_messages import SlackMessageService
from .token_cipher import TokenCipherService
from .user_records import UserRecordService

__all__ = [
    "KeyLeaseService",
    "OAuthStateService",
    "RelayPageRenderer",
    "RelaySession",
    "SlackLoginService",
    "SlackMessageService",
    "TokenCipherService",
    "UserNotFoundError",
    "UserRecordService",
]
