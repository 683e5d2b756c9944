"""
Slack Web API utilities.

These helpers cover the OAuth v2 code exchange, profile lookup and posting
messages with a user token.
"""

from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from lab_access.core.config import SlackSettings


class SlackAPIError(Exception):
    """Raised when Slack answers ``ok: false`` or an unusable HTTP response."""

    def __init__(self, error_code: str, *, method: str) -> None:
        super().__init__(f"Slack API error from {method}: {error_code}")
        self.error_code = error_code
        self.method = method


class SlackOAuthClient:
    """Build Slack authorization URLs and call the Web API."""

    AUTH_BASE_URL = "https://slack.com/oauth/v2/authorize"
    API_BASE_URL = "https://slack.com/api"

    def __init__(
        self,
        slack_settings: SlackSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._slack = slack_settings
        self._transport = transport
        self._timeout = timeout

    def build_authorization_url(self, state: str) -> str:
        """Construct the Slack consent URL for the login popup."""
        params = {
            "client_id": self._slack.client_id,
            "scope": ",".join(self._slack.bot_scopes),
            "user_scope": ",".join(self._slack.user_scopes),
            "state": state,
        }
        if self._slack.redirect_uri:
            params["redirect_uri"] = str(self._slack.redirect_uri)
        if self._slack.allowed_team_id:
            params["team"] = self._slack.allowed_team_id
        return f"{self.AUTH_BASE_URL}?{urlencode(params)}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.API_BASE_URL,
            timeout=self._timeout,
            transport=self._transport,
        )

    @staticmethod
    def _parse(response: httpx.Response, method: str) -> Dict[str, Any]:
        if response.status_code != httpx.codes.OK:
            raise SlackAPIError(f"http_{response.status_code}", method=method)
        try:
            payload = response.json()
        except ValueError as exc:
            raise SlackAPIError("invalid_json", method=method) from exc
        if not isinstance(payload, dict):
            raise SlackAPIError("invalid_json", method=method)
        if not payload.get("ok"):
            raise SlackAPIError(str(payload.get("error") or "unknown_error"), method=method)
        return payload

    async def exchange_authorization_code(self, code: str) -> Dict[str, Any]:
        """Exchange an authorization code via ``oauth.v2.access``.

        Returns the raw response; ``authed_user`` may be partial or absent
        depending on how the app was installed.
        """
        payload = {
            "client_id": self._slack.client_id,
            "client_secret": self._slack.client_secret,
            "code": code,
        }
        if self._slack.redirect_uri:
            payload["redirect_uri"] = str(self._slack.redirect_uri)

        async with self._client() as client:
            response = await client.post("/oauth.v2.access", data=payload)

        return self._parse(response, "oauth.v2.access")

    async def fetch_user_info(self, user_id: str, token: str) -> Dict[str, Any]:
        """Return the ``user`` object from ``users.info``."""
        async with self._client() as client:
            response = await client.get(
                "/users.info",
                params={"user": user_id},
                headers={"Authorization": f"Bearer {token}"},
            )

        payload = self._parse(response, "users.info")
        user = payload.get("user")
        if not isinstance(user, dict) or not user.get("id"):
            raise SlackAPIError("user_not_found", method="users.info")
        return user

    async def post_message(
        self, *, token: str, channel: str, text: str, thread_ts: Optional[str] = None
    ) -> Dict[str, Any]:
        """Post ``text`` to ``channel`` as whoever owns ``token``."""
        body: Dict[str, Any] = {"channel": channel, "text": text}
        if thread_ts:
            body["thread_ts"] = thread_ts
        async with self._client() as client:
            response = await client.post(
                "/chat.postMessage",
                json=body,
                headers={"Authorization": f"Bearer {token}"},
            )

        return self._parse(response, "chat.postMessage")


__all__ = ["SlackAPIError", "SlackOAuthClient"]
