"""Post Slack messages on behalf of a logged-in user."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from lab_access.clients.slack_api import SlackAPIError, SlackOAuthClient
from lab_access.core.logging import redact_user_id
from lab_access.models.timestamps import ProviderTimestamp, to_datetime
from lab_access.services.token_cipher import TokenCipherError, TokenCipherService
from lab_access.services.user_records import UserRecordService

logger = logging.getLogger(__name__)

REVOKED_TOKEN_ERRORS = frozenset(
    {"invalid_auth", "token_revoked", "token_expired", "account_inactive", "not_authed"}
)


class SlackTokenMissingError(LookupError):
    """The user has no stored Slack token; a fresh login is required."""


class SlackTokenInvalidError(Exception):
    """The stored token could not be used and has been deleted."""


@dataclass(frozen=True, slots=True)
class PostedMessage:
    channel: str
    ts: ProviderTimestamp

    @property
    def posted_at(self):
        return to_datetime(self.ts)


class SlackMessageService:
    def __init__(
        self,
        *,
        oauth_client: SlackOAuthClient,
        token_cipher: TokenCipherService,
        user_records: UserRecordService,
    ) -> None:
        self._oauth = oauth_client
        self._cipher = token_cipher
        self._users = user_records

    async def post_as_user(self, uid: str, *, channel: str, text: str) -> PostedMessage:
        profile = self._users.get(uid)
        if profile is None or not profile.encrypted_token:
            raise SlackTokenMissingError(f"No Slack token stored for {uid}.")

        try:
            token = self._cipher.decrypt(profile.encrypted_token)
        except TokenCipherError as exc:
            logger.error(
                "Stored Slack token for %s failed decryption (%s); deleting it",
                redact_user_id(uid),
                type(exc).__name__,
            )
            self._users.clear_token(uid)
            raise SlackTokenInvalidError("Stored Slack token is no longer valid.") from exc

        try:
            response = await self._oauth.post_message(token=token, channel=channel, text=text)
        except SlackAPIError as exc:
            if exc.error_code in REVOKED_TOKEN_ERRORS:
                logger.warning(
                    "Slack rejected token for %s (%s); deleting it",
                    redact_user_id(uid),
                    exc.error_code,
                )
                self._users.clear_token(uid)
                raise SlackTokenInvalidError("Slack token was revoked.") from exc
            raise

        return PostedMessage(
            channel=str(response.get("channel") or channel),
            ts=ProviderTimestamp.from_slack_ts(str(response.get("ts") or "0")),
        )


__all__ = [
    "PostedMessage",
    "SlackMessageService",
    "SlackTokenInvalidError",
    "SlackTokenMissingError",
]
