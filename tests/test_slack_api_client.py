try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from lab_access.clients.slack_api import SlackAPIError, SlackOAuthClient
from lab_access.core.config import SlackSettings


def _settings(**overrides) -> SlackSettings:
    values = {
        "SLACK_CLIENT_ID": "client-id",
        "SLACK_CLIENT_SECRET": "client-secret",
        "SLACK_REDIRECT_URI": "https://example.com/api/auth/slack/callback",
    }
    values.update(overrides)
    return SlackSettings(**values)


def _client(handler, **overrides) -> SlackOAuthClient:
    return SlackOAuthClient(_settings(**overrides), transport=httpx.MockTransport(handler))


def test_authorization_url_carries_scopes_and_state() -> None:
    client = SlackOAuthClient(_settings(SLACK_ALLOWED_TEAM_ID="T1"))

    url = urlparse(client.build_authorization_url("state-123"))
    params = parse_qs(url.query)

    assert f"{url.scheme}://{url.netloc}{url.path}" == SlackOAuthClient.AUTH_BASE_URL
    assert params["client_id"] == ["client-id"]
    assert params["state"] == ["state-123"]
    assert params["team"] == ["T1"]
    assert params["redirect_uri"] == ["https://example.com/api/auth/slack/callback"]
    assert "users:read" in params["user_scope"][0].split(",")
    assert "chat:write" in params["user_scope"][0].split(",")


def test_scopes_can_be_configured_as_csv() -> None:
    settings = _settings(SLACK_USER_SCOPES="users:read, chat:write")

    assert settings.user_scopes == ("users:read", "chat:write")


@pytest.mark.anyio
async def test_exchange_posts_form_and_returns_payload() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["form"] = parse_qs(request.content.decode("utf-8"))
        return httpx.Response(
            200, json={"ok": True, "authed_user": {"id": "U1", "access_token": "tok"}}
        )

    payload = await _client(handler).exchange_authorization_code("abc")

    assert seen["path"] == "/api/oauth.v2.access"
    assert seen["form"]["code"] == ["abc"]
    assert seen["form"]["client_secret"] == ["client-secret"]
    assert payload["authed_user"]["id"] == "U1"


@pytest.mark.anyio
async def test_exchange_raises_slack_error_code() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": False, "error": "invalid_code"})

    with pytest.raises(SlackAPIError) as excinfo:
        await _client(handler).exchange_authorization_code("abc")

    assert excinfo.value.error_code == "invalid_code"
    assert excinfo.value.method == "oauth.v2.access"


@pytest.mark.anyio
async def test_http_failure_is_reported_as_error_code() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    with pytest.raises(SlackAPIError) as excinfo:
        await _client(handler).exchange_authorization_code("abc")

    assert excinfo.value.error_code == "http_503"


@pytest.mark.anyio
async def test_fetch_user_info_sends_bearer_token() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["authorization"]
        seen["user"] = request.url.params["user"]
        return httpx.Response(200, json={"ok": True, "user": {"id": "U1", "name": "u1"}})

    user = await _client(handler).fetch_user_info("U1", "bot")

    assert seen == {"auth": "Bearer bot", "user": "U1"}
    assert user["name"] == "u1"


@pytest.mark.anyio
async def test_fetch_user_info_without_user_fails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": True})

    with pytest.raises(SlackAPIError) as excinfo:
        await _client(handler).fetch_user_info("U1", "bot")

    assert excinfo.value.error_code == "user_not_found"


@pytest.mark.anyio
async def test_post_message_sends_json_body() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers["authorization"]
        return httpx.Response(200, json={"ok": True, "channel": "C1", "ts": "1.000002"})

    response = await _client(handler).post_message(token="tok", channel="C1", text="hello")

    assert seen["body"] == {"channel": "C1", "text": "hello"}
    assert seen["auth"] == "Bearer tok"
    assert response["ts"] == "1.000002"
