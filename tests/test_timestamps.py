try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone

from lab_access.models.timestamps import ProviderTimestamp, to_datetime


def test_slack_ts_is_parsed() -> None:
    ts = ProviderTimestamp.from_slack_ts("1503435956.000247")

    assert ts == ProviderTimestamp(seconds=1503435956, micros=247)
    assert to_datetime(ts) == datetime(2017, 8, 22, 21, 5, 56, 247, tzinfo=timezone.utc)


def test_slack_ts_without_fraction() -> None:
    assert ProviderTimestamp.from_slack_ts("1503435956") == ProviderTimestamp(1503435956, 0)


def test_naive_datetime_is_treated_as_utc() -> None:
    value = to_datetime(datetime(2024, 1, 1, 9, 0))

    assert value == datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


def test_aware_datetime_is_normalized() -> None:
    jst = timezone(timedelta(hours=9))

    value = to_datetime(datetime(2024, 1, 1, 9, 0, tzinfo=jst))

    assert value.tzinfo == timezone.utc
    assert value.hour == 0


def test_none_resolves_to_now() -> None:
    before = datetime.now(timezone.utc)
    value = to_datetime(None)

    assert before <= value <= datetime.now(timezone.utc)
