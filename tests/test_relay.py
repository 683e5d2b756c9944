try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import json

import pytest

from lab_access.core.config import RelaySettings
from lab_access.models.users import SlackIdentity
from lab_access.schemas.auth import AuthErrorPayload, AuthSuccessPayload
from lab_access.services.relay import (
    RelayPageRenderer,
    RelaySession,
    RelayStatus,
    embed_json,
    payload_to_dict,
)

STATE = "expected-state"
STORAGE_KEY = "slackAuthResult"
ORIGIN = "https://lab.example.com"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeStorage:
    def __init__(self) -> None:
        self.items: dict[str, str] = {}

    def get(self, key: str):
        return self.items.get(key)


def _success(state: str = STATE) -> dict:
    identity = SlackIdentity(uid="slack_U1", name="Taro", slack_user_id="U1", slack_team_id="T1")
    return payload_to_dict(AuthSuccessPayload(user=identity, is_new_user=True, state=state))


def _error(state: str = STATE) -> dict:
    return payload_to_dict(AuthErrorPayload(error="denied", state=state))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def session(clock: FakeClock, storage: FakeStorage) -> RelaySession:
    return RelaySession(
        STATE,
        storage_key=STORAGE_KEY,
        trusted_origins=[ORIGIN + "/"],
        read_storage=storage.get,
        clock=clock,
    )


def test_embed_json_escapes_script_breakers() -> None:
    encoded = embed_json({"error": "</script><b>&\u2028"})

    assert "</script>" not in encoded
    assert "<" not in encoded and ">" not in encoded and "&" not in encoded
    assert "\u2028" not in encoded
    assert json.loads(encoded) == {"error": "</script><b>&\u2028"}


def test_renderer_prepends_frontend_origin() -> None:
    renderer = RelayPageRenderer(
        RelaySettings(RELAY_ALLOWED_ORIGINS="http://localhost:5173/"),
        frontend_base_url="https://lab.example.com/",
    )

    assert renderer.allowed_origins() == ["https://lab.example.com", "http://localhost:5173"]
    assert renderer.relay_url == "https://lab.example.com/slack-auth"


def test_error_page_escapes_message() -> None:
    renderer = RelayPageRenderer(RelaySettings())

    page = renderer.render_error(AuthErrorPayload(error="<img src=x>", state=None))

    assert "<img src=x>" not in page
    assert "&lt;img src=x&gt;" in page
    assert "Slack認証に失敗しました" in page


def test_message_from_trusted_origin_delivers(session: RelaySession) -> None:
    session.attach()
    assert session.listening

    outcome = session.on_message(ORIGIN, _success())

    assert outcome.status is RelayStatus.DELIVERED
    assert outcome.channel == "message"
    assert outcome.payload.user.uid == "slack_U1"
    assert session.listening is False


def test_message_from_untrusted_origin_is_ignored(session: RelaySession) -> None:
    session.attach()

    outcome = session.on_message("https://evil.example", _success())

    assert outcome.status is RelayStatus.WAITING


def test_mismatched_state_is_discarded(session: RelaySession) -> None:
    session.attach()

    assert session.on_message(ORIGIN, _success(state="other")).status is RelayStatus.WAITING
    assert session.on_message(ORIGIN, {"type": "unrelated"}).status is RelayStatus.WAITING
    assert session.on_message(ORIGIN, _success()).status is RelayStatus.DELIVERED


def test_storage_event_delivers_error(session: RelaySession) -> None:
    session.attach()

    assert session.on_storage("otherKey", json.dumps(_error())).status is RelayStatus.WAITING
    outcome = session.on_storage(STORAGE_KEY, json.dumps(_error()))

    assert outcome.status is RelayStatus.FAILED
    assert outcome.error == "denied"
    assert outcome.channel == "storage"


def test_attach_reads_payload_already_stored(session: RelaySession, storage: FakeStorage) -> None:
    storage.items[STORAGE_KEY] = json.dumps(_success())

    outcome = session.attach()

    assert outcome.status is RelayStatus.DELIVERED
    assert outcome.channel == "attach"


def test_first_payload_wins(session: RelaySession) -> None:
    session.attach()
    session.on_message(ORIGIN, _success())

    outcome = session.on_storage(STORAGE_KEY, json.dumps(_error()))

    assert outcome.status is RelayStatus.DELIVERED


def test_closed_popup_cancels_after_grace(session: RelaySession, clock: FakeClock) -> None:
    session.attach()
    clock.now = 10.0

    assert session.on_popup_closed().status is RelayStatus.WAITING
    clock.now = 10.5
    assert session.tick().status is RelayStatus.WAITING
    clock.now = 11.0
    outcome = session.tick()

    assert outcome.status is RelayStatus.CANCELLED
    assert outcome.error == "認証がキャンセルされました。"


def test_closed_popup_with_late_storage_delivers(
    session: RelaySession, clock: FakeClock, storage: FakeStorage
) -> None:
    session.attach()
    session.on_popup_closed()
    storage.items[STORAGE_KEY] = json.dumps(_success())
    clock.now = 1.0

    outcome = session.tick()

    assert outcome.status is RelayStatus.DELIVERED
    assert outcome.channel == "final-check"


def test_timeout_runs_final_check(session: RelaySession, clock: FakeClock) -> None:
    session.attach()
    clock.now = 299.0
    assert session.tick().status is RelayStatus.WAITING

    clock.now = 300.0
    outcome = session.tick()

    assert outcome.status is RelayStatus.TIMED_OUT
    assert outcome.error == "認証がタイムアウトしました。"


def test_events_before_attach_are_ignored(session: RelaySession) -> None:
    assert session.on_message(ORIGIN, _success()).status is RelayStatus.WAITING


def test_client_config_follows_relay_settings() -> None:
    renderer = RelayPageRenderer(RelaySettings(RELAY_STORAGE_KEY="labAuth"))

    config = renderer.client_config()

    assert config.model_dump(by_alias=True) == {
        "storageKey": "labAuth",
        "timeoutMs": 300_000,
        "closeGraceMs": 1000,
    }
    assert '"labAuth"' in renderer.render_bridge()


def test_session_from_client_config_uses_served_values(
    clock: FakeClock, storage: FakeStorage
) -> None:
    config = RelayPageRenderer(RelaySettings(RELAY_STORAGE_KEY="labAuth")).client_config()
    session = RelaySession.from_client_config(
        STATE,
        config,
        trusted_origins=[ORIGIN],
        read_storage=storage.get,
        clock=clock,
    )
    session.attach()

    assert session.on_storage(STORAGE_KEY, json.dumps(_success())).status is RelayStatus.WAITING
    assert session.on_storage("labAuth", json.dumps(_success())).status is RelayStatus.DELIVERED


def test_stateless_error_is_reported_when_wait_ends(
    session: RelaySession, clock: FakeClock
) -> None:
    session.attach()
    stateless = payload_to_dict(AuthErrorPayload(error="stateパラメータがありません", state=None))

    assert session.on_message(ORIGIN, stateless).status is RelayStatus.WAITING
    session.on_popup_closed()
    clock.now = 1.0
    outcome = session.tick()

    assert outcome.status is RelayStatus.CANCELLED
    assert outcome.payload is None
    assert outcome.error == "stateパラメータがありません"
