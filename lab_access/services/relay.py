"""
Delivery of OAuth results from the callback popup back to its opener.

The callback page posts the result to the opener for every allowed origin,
writes it to ``localStorage`` and closes itself. When the popup has no opener
(or cannot close because a script did not open it) it redirects to the relay
bridge path with the payload in the URL fragment; the bridge stores it under
the same key and forwards it to its own opener.

``RelaySession`` models the opener side: message events, storage events and
synchronous storage checks all feed one terminal transition, guarded by a
comparison against the state the opener stored before opening the popup.
``static/slack_auth_listener.js`` is the browser implementation.
"""

from __future__ import annotations

import hmac
import html
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from pydantic import TypeAdapter, ValidationError

from lab_access.core.config import RelaySettings
from lab_access.schemas.auth import (
    AuthErrorPayload,
    AuthSuccessPayload,
    RelayClientConfig,
    RelayPayload,
)

logger = logging.getLogger(__name__)

RELAY_TIMEOUT_SECONDS = 300
POPUP_CLOSE_GRACE_SECONDS = 1.0
SUCCESS_CLOSE_DELAY_MS = 1000
ERROR_CLOSE_DELAY_MS = 3000

_payload_adapter: TypeAdapter[RelayPayload] = TypeAdapter(RelayPayload)

_SCRIPT_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def embed_json(value: Any) -> str:
    """Serialize ``value`` for inclusion inside an inline ``<script>``."""
    encoded = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    for raw, escaped in _SCRIPT_ESCAPES.items():
        encoded = encoded.replace(raw, escaped)
    return encoded


def payload_to_dict(payload: RelayPayload) -> dict:
    return payload.model_dump(by_alias=True, mode="json")


_RESULT_TEMPLATE = """<!DOCTYPE html>
<html lang="ja">
  <head>
    <meta charset="utf-8">
    <meta name="referrer" content="no-referrer">
    <title>{title}</title>
  </head>
  <body>
    <h1>{heading}</h1>
    <p>{message}</p>
    <script>
      (function () {{
        var payload = {payload};
        var origins = {origins};
        var storageKey = {storage_key};
        var relayUrl = {relay_url};
        var closeDelay = {close_delay};
        var serialized = JSON.stringify(payload);
        var delivered = false;

        function toRelay() {{
          window.location.replace(relayUrl + "#payload=" + encodeURIComponent(serialized));
        }}

        if (window.opener && !window.opener.closed) {{
          origins.forEach(function (origin) {{
            try {{
              window.opener.postMessage(payload, origin);
              delivered = true;
            }} catch (e) {{
              console.warn("postMessage failed for origin", origin);
            }}
          }});
        }}

        try {{
          window.localStorage.setItem(storageKey, serialized);
        }} catch (e) {{
          console.warn("localStorage unavailable");
        }}

        if (!delivered) {{
          toRelay();
          return;
        }}

        setTimeout(function () {{
          try {{
            window.close();
          }} catch (e) {{
            console.warn("Could not close window automatically");
          }}
          setTimeout(function () {{
            if (!window.closed) {{
              toRelay();
            }}
          }}, 500);
        }}, closeDelay);
      }})();
    </script>
  </body>
</html>
"""

_BRIDGE_TEMPLATE = """<!DOCTYPE html>
<html lang="ja">
  <head>
    <meta charset="utf-8">
    <meta name="referrer" content="no-referrer">
    <title>Slack認証</title>
  </head>
  <body>
    <h1>Slack認証</h1>
    <p id="relay-message">認証処理を完了しています...</p>
    <script>
      (function () {{
        var storageKey = {storage_key};
        var messageEl = document.getElementById("relay-message");
        var params = new URLSearchParams(window.location.hash.replace(/^#/, ""));
        var raw = params.get("payload");

        if (window.history && window.history.replaceState) {{
          window.history.replaceState(null, document.title, window.location.pathname);
        }}

        if (!raw) {{
          messageEl.textContent = "認証情報が見つかりませんでした。タブを閉じて再度お試しください。";
          return;
        }}

        try {{
          var payload = JSON.parse(raw);
          window.localStorage.setItem(storageKey, JSON.stringify(payload));
          if (window.opener) {{
            try {{
              window.opener.postMessage(payload, window.location.origin);
            }} catch (e) {{
              console.warn("postMessage to opener failed");
            }}
          }}
          messageEl.textContent = "認証が完了しました。ウィンドウを閉じています...";
          setTimeout(function () {{
            window.close();
            window.location.replace("/");
          }}, 500);
        }} catch (e) {{
          messageEl.textContent = "認証情報の処理に失敗しました。タブを閉じて再度お試しください。";
        }}
      }})();
    </script>
  </body>
</html>
"""


class RelayPageRenderer:
    """Render the callback result page and the relay bridge page."""

    def __init__(
        self, relay_settings: RelaySettings, *, frontend_base_url: Optional[str] = None
    ) -> None:
        self._relay = relay_settings
        self._frontend = frontend_base_url.rstrip("/") if frontend_base_url else ""

    @property
    def relay_url(self) -> str:
        return f"{self._frontend}{self._relay.relay_path}"

    def allowed_origins(self) -> list[str]:
        origins = list(self._relay.allowed_origins)
        if self._frontend and self._frontend not in origins:
            origins.insert(0, self._frontend)
        return origins

    def client_config(self) -> RelayClientConfig:
        """Parameters the opener listener uses; it has no defaults of its own."""
        return RelayClientConfig(
            storage_key=self._relay.storage_key,
            timeout_ms=int(RELAY_TIMEOUT_SECONDS * 1000),
            close_grace_ms=int(POPUP_CLOSE_GRACE_SECONDS * 1000),
        )

    def render_success(self, payload: AuthSuccessPayload) -> str:
        return self._render_result(
            payload,
            title="Slack Authentication Success",
            heading="認証成功",
            message="Slackログインが完了しました。このウィンドウは自動的に閉じられます。",
            close_delay=SUCCESS_CLOSE_DELAY_MS,
        )

    def render_error(self, payload: AuthErrorPayload) -> str:
        return self._render_result(
            payload,
            title="Slack Authentication Error",
            heading="認証エラー",
            message=f"Slack認証に失敗しました: {payload.error}",
            close_delay=ERROR_CLOSE_DELAY_MS,
        )

    def _render_result(
        self,
        payload: RelayPayload,
        *,
        title: str,
        heading: str,
        message: str,
        close_delay: int,
    ) -> str:
        return _RESULT_TEMPLATE.format(
            title=html.escape(title),
            heading=html.escape(heading),
            message=html.escape(message),
            payload=embed_json(payload_to_dict(payload)),
            origins=embed_json(self.allowed_origins()),
            storage_key=embed_json(self._relay.storage_key),
            relay_url=embed_json(self.relay_url),
            close_delay=close_delay,
        )

    def render_bridge(self) -> str:
        return _BRIDGE_TEMPLATE.format(storage_key=embed_json(self._relay.storage_key))


class RelayStatus(str, Enum):
    WAITING = "waiting"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True, slots=True)
class RelayOutcome:
    status: RelayStatus
    payload: Optional[RelayPayload] = None
    channel: Optional[str] = None
    detail: Optional[str] = None

    @property
    def error(self) -> Optional[str]:
        if isinstance(self.payload, AuthErrorPayload):
            return self.payload.error
        if self.detail:
            return self.detail
        if self.status is RelayStatus.CANCELLED:
            return "認証がキャンセルされました。"
        if self.status is RelayStatus.TIMED_OUT:
            return "認証がタイムアウトしました。"
        return None


class RelaySession:
    """Opener-side wait for one OAuth result.

    Inputs arrive through ``on_message``, ``on_storage``, ``attach`` (the
    synchronous check when listeners are installed) and ``tick`` (timeout and
    popup-closed handling). The first payload whose ``state`` matches the
    expected one ends the session; everything after that is ignored.
    """

    def __init__(
        self,
        expected_state: str,
        *,
        storage_key: str,
        trusted_origins: Iterable[str],
        read_storage: Callable[[str], Optional[str]],
        clock: Callable[[], float] = time.monotonic,
        timeout_seconds: float = RELAY_TIMEOUT_SECONDS,
        close_grace_seconds: float = POPUP_CLOSE_GRACE_SECONDS,
    ) -> None:
        self._expected_state = expected_state
        self._storage_key = storage_key
        self._trusted_origins = {origin.rstrip("/") for origin in trusted_origins}
        self._read_storage = read_storage
        self._clock = clock
        self._timeout = timeout_seconds
        self._grace = close_grace_seconds
        self._started_at: Optional[float] = None
        self._popup_closed_at: Optional[float] = None
        self._outcome = RelayOutcome(RelayStatus.WAITING)
        self._stray_error: Optional[str] = None

    @classmethod
    def from_client_config(
        cls,
        expected_state: str,
        config: RelayClientConfig,
        *,
        trusted_origins: Iterable[str],
        read_storage: Callable[[str], Optional[str]],
        clock: Callable[[], float] = time.monotonic,
    ) -> "RelaySession":
        """Build a session with the parameters served to the browser listener."""
        return cls(
            expected_state,
            storage_key=config.storage_key,
            trusted_origins=trusted_origins,
            read_storage=read_storage,
            clock=clock,
            timeout_seconds=config.timeout_ms / 1000,
            close_grace_seconds=config.close_grace_ms / 1000,
        )

    @property
    def outcome(self) -> RelayOutcome:
        return self._outcome

    @property
    def listening(self) -> bool:
        return self._started_at is not None and self._outcome.status is RelayStatus.WAITING

    def attach(self) -> RelayOutcome:
        self._started_at = self._clock()
        self._check_storage("attach")
        return self._outcome

    def on_message(self, origin: str, data: Any) -> RelayOutcome:
        if not self.listening:
            return self._outcome
        if origin.rstrip("/") not in self._trusted_origins:
            logger.debug("Ignoring relay message from %s", origin)
            return self._outcome
        self._offer(data, "message")
        return self._outcome

    def on_storage(self, key: str, new_value: Optional[str]) -> RelayOutcome:
        if not self.listening or key != self._storage_key or not new_value:
            return self._outcome
        self._offer_raw(new_value, "storage")
        return self._outcome

    def on_popup_closed(self) -> RelayOutcome:
        if self.listening and self._popup_closed_at is None:
            self._popup_closed_at = self._clock()
        return self.tick()

    def tick(self) -> RelayOutcome:
        if not self.listening:
            return self._outcome
        now = self._clock()
        if self._popup_closed_at is not None and now - self._popup_closed_at >= self._grace:
            self._finish_with_final_check(RelayStatus.CANCELLED)
        elif self._started_at is not None and now - self._started_at >= self._timeout:
            self._finish_with_final_check(RelayStatus.TIMED_OUT)
        return self._outcome

    def _finish_with_final_check(self, status: RelayStatus) -> None:
        self._check_storage("final-check")
        if self.listening:
            self._outcome = RelayOutcome(status, detail=self._stray_error)

    def _check_storage(self, channel: str) -> None:
        raw = self._read_storage(self._storage_key)
        if raw:
            self._offer_raw(raw, channel)

    def _offer_raw(self, raw: str, channel: str) -> None:
        try:
            data = json.loads(raw)
        except ValueError:
            logger.debug("Ignoring unparseable relay payload from %s", channel)
            return
        self._offer(data, channel)

    def _offer(self, data: Any, channel: str) -> None:
        try:
            payload = _payload_adapter.validate_python(data)
        except ValidationError:
            logger.debug("Ignoring malformed relay payload from %s", channel)
            return
        if isinstance(payload, AuthErrorPayload) and not payload.state:
            # Rendered before a state was known; kept only as the message for
            # a cancelled or timed-out wait.
            self._stray_error = payload.error
            return
        if not payload.state or not hmac.compare_digest(
            payload.state.encode("utf-8"), self._expected_state.encode("utf-8")
        ):
            logger.warning("Discarding relay payload with mismatched state via %s", channel)
            return
        status = (
            RelayStatus.DELIVERED
            if isinstance(payload, AuthSuccessPayload)
            else RelayStatus.FAILED
        )
        self._outcome = RelayOutcome(status, payload=payload, channel=channel)


__all__ = [
    "POPUP_CLOSE_GRACE_SECONDS",
    "RELAY_TIMEOUT_SECONDS",
    "RelayOutcome",
    "RelayPageRenderer",
    "RelaySession",
    "RelayStatus",
    "embed_json",
    "payload_to_dict",
]
