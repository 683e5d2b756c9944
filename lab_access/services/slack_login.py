"""
Slack login: from the OAuth redirect to a persisted, encrypted user record.

``SlackLoginService.complete`` raises ``LoginError`` subclasses for every
expected failure; each carries the HTTP status and the user-facing message
the callback page shows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from lab_access.clients.slack_api import SlackAPIError, SlackOAuthClient
from lab_access.core.logging import redact_user_id
from lab_access.models.users import SlackIdentity
from lab_access.services.oauth_state import OAuthStateService
from lab_access.services.token_cipher import TokenCipherService
from lab_access.services.user_records import UserRecordService

logger = logging.getLogger(__name__)

WORKSPACE_NOT_ALLOWED_ERRORS = frozenset(
    {"invalid_team_for_non_distributed_app", "team_not_allowed", "access_denied_for_team"}
)
WORKSPACE_NOT_ALLOWED_MESSAGE = (
    "このSlackワークスペースからのログインは許可されていません。"
    "研究室のワークスペースを選択して再度ログインしてください。"
)
INVALID_STATE_MESSAGE = "invalid or expired request"


class LoginError(Exception):
    """Expected login failure that is reported back to the opener."""

    status_code = 400

    def __init__(self, message: str, *, state: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.state = state


class LoginProtocolError(LoginError):
    """Missing or malformed redirect parameters."""


class ForgedStateError(LoginError):
    """State failed signature or expiry checks."""


class ProviderLoginError(LoginError):
    """Slack refused the exchange or returned an unusable identity."""

    status_code = 200


@dataclass(frozen=True, slots=True)
class LoginResult:
    identity: SlackIdentity
    is_new_user: bool


def describe_provider_error(exc: SlackAPIError) -> str:
    if exc.error_code in WORKSPACE_NOT_ALLOWED_ERRORS:
        return WORKSPACE_NOT_ALLOWED_MESSAGE
    return f"Slack API error: {exc.error_code}"


def diagnose_authed_user(token_payload: Mapping[str, Any]) -> Optional[str]:
    """Explain why the exchange response lacks a usable user id and token.

    Returns ``None`` when both are present. The remediation differs per case,
    so each reason names what to change in the Slack app setup.
    """
    authed_user = token_payload.get("authed_user")
    if not isinstance(authed_user, Mapping) or not authed_user:
        if token_payload.get("is_enterprise_install"):
            return (
                "authed_user missing: the app was installed org-wide by an admin; "
                "sign in through the user consent flow (user_scope) instead."
            )
        return (
            "authed_user missing: the app was installed without user consent "
            "(bot-only install); request user_scope in the authorize URL so "
            "Slack returns the signing-in user."
        )
    user_id = authed_user.get("id")
    user_token = authed_user.get("access_token")
    if not user_id and not user_token:
        return (
            "authed_user is empty: no user identity was granted; re-run the "
            "login with user scopes configured."
        )
    if not user_id:
        return (
            "authed_user.id missing: Slack returned a user token without an id; "
            "the install flow is not the user consent flow."
        )
    if not user_token:
        return (
            "authed_user.access_token missing: no user scopes were requested; "
            "add user scopes (e.g. users:read) to the Slack app and the authorize URL."
        )
    return None


def build_identity(user: Mapping[str, Any], team_id: str) -> SlackIdentity:
    profile: Mapping[str, Any] = user.get("profile") or {}
    return SlackIdentity(
        uid=f"slack_{user['id']}",
        name=(
            profile.get("display_name")
            or profile.get("real_name")
            or user.get("name")
            or "Unknown User"
        ),
        email=profile.get("email") or "",
        avatar=profile.get("image_192") or profile.get("image_72") or "",
        provider="slack",
        slack_user_id=user["id"],
        slack_team_id=team_id,
    )


class SlackLoginService:
    """Complete the Slack OAuth redirect for one login attempt."""

    def __init__(
        self,
        *,
        oauth_client: SlackOAuthClient,
        state_service: OAuthStateService,
        token_cipher: TokenCipherService,
        user_records: UserRecordService,
        allowed_team_id: Optional[str] = None,
    ) -> None:
        self._oauth = oauth_client
        self._states = state_service
        self._cipher = token_cipher
        self._users = user_records
        self._allowed_team_id = allowed_team_id

    def check_request(self, code: Optional[str], state: Optional[str]) -> tuple[str, str]:
        """Validate redirect parameters before any network or storage call."""
        if not code:
            logger.warning("Slack callback without authorization code")
            raise LoginProtocolError("認証コードがありません (missing code)", state=state)
        if not state:
            logger.warning("Slack callback without state parameter")
            # No state to echo: the opener shows this message only once its wait ends.
            raise LoginProtocolError("stateパラメータがありません (missing state)")
        if self._states.issued_at(state) is None:
            logger.warning("Slack callback with malformed state parameter")
            raise LoginProtocolError(INVALID_STATE_MESSAGE, state=state)
        if not self._states.validate(state):
            logger.error(
                "Rejected Slack callback: state failed verification "
                "(possible forgery, expired=%s)",
                self._states.is_expired(state),
            )
            raise ForgedStateError(INVALID_STATE_MESSAGE, state=state)
        return code, state

    async def complete(self, code: Optional[str], state: Optional[str]) -> LoginResult:
        code, state = self.check_request(code, state)

        try:
            token_payload = await self._oauth.exchange_authorization_code(code)
        except SlackAPIError as exc:
            logger.warning("Slack code exchange failed: %s", exc.error_code)
            raise ProviderLoginError(describe_provider_error(exc), state=state) from exc

        team_id = _team_id(token_payload)
        if self._allowed_team_id and team_id != self._allowed_team_id:
            logger.warning("Slack login from unexpected workspace %s", team_id)
            raise ProviderLoginError(WORKSPACE_NOT_ALLOWED_MESSAGE, state=state)

        reason = diagnose_authed_user(token_payload)
        if reason:
            logger.error("Slack exchange returned no usable user: %s", reason)
            raise ProviderLoginError(reason, state=state)

        authed_user = token_payload["authed_user"]
        bot_token = token_payload.get("access_token") or authed_user["access_token"]
        try:
            user = await self._oauth.fetch_user_info(authed_user["id"], bot_token)
        except SlackAPIError as exc:
            logger.warning("Slack users.info failed: %s", exc.error_code)
            raise ProviderLoginError(
                f"Slackユーザー情報の取得に失敗しました: {exc.error_code}", state=state
            ) from exc

        identity = build_identity(user, team_id)
        encrypted = self._cipher.encrypt(authed_user["access_token"])
        result = self._users.upsert(identity, encrypted)

        logger.info(
            "User authenticated: %s (new=%s)",
            redact_user_id(identity.uid),
            result.is_new_user,
        )
        return LoginResult(identity=identity, is_new_user=result.is_new_user)


def _team_id(token_payload: Dict[str, Any]) -> str:
    team = token_payload.get("team") or {}
    return str(team.get("id") or token_payload.get("team_id") or "")


__all__ = [
    "ForgedStateError",
    "INVALID_STATE_MESSAGE",
    "LoginError",
    "LoginProtocolError",
    "LoginResult",
    "ProviderLoginError",
    "SlackLoginService",
    "WORKSPACE_NOT_ALLOWED_MESSAGE",
    "build_identity",
    "describe_provider_error",
    "diagnose_authed_user",
]
