"""
Attendance state changes: room occupancy and the single physical key.

Every mutation runs in one store transaction that also appends the matching
attendance log entry. The ``keys/main`` lease document makes the key check a
single-document critical section, so two concurrent acquisitions cannot both
observe "no holder" and both commit.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional, Protocol

from lab_access.clients.sqlite_store import (
    RecordNotFoundError,
    SQLiteStore,
    StoreTransaction,
)
from lab_access.models.timestamps import TimestampValue, to_datetime, utcnow
from lab_access.models.users import (
    KEYS_PARTITION,
    LOGS_PARTITION,
    MAIN_KEY_SORT_KEY,
    USERS_PARTITION,
    AttendanceAction,
    KeyLease,
    LogCreatedEvent,
    Room,
)

logger = logging.getLogger(__name__)

KEY_ROOM = Room.ROOM_2218


class UserNotFoundError(LookupError):
    """Raised when an attendance change targets an unknown user."""


class AttendanceEventSink(Protocol):
    def publish(self, event: LogCreatedEvent) -> None: ...


class LoggingEventSink:
    """Default sink: records the event in the application log."""

    def publish(self, event: LogCreatedEvent) -> None:
        logger.info(
            "Attendance log: %s %s %s at %s",
            event.user_name,
            event.action.value,
            event.room,
            event.timestamp.isoformat(),
        )


def _load_user(txn: StoreTransaction, uid: str) -> dict:
    record = txn.get_item(partition_key=USERS_PARTITION, sort_key=uid)
    if record is None:
        raise UserNotFoundError(f"No user record for {uid}.")
    return record


def _append_log(
    txn: StoreTransaction,
    *,
    user: dict,
    action: AttendanceAction,
    room: Room,
    timestamp: TimestampValue,
) -> LogCreatedEvent:
    event = LogCreatedEvent(
        user_name=user.get("name") or "Unknown User",
        action=action,
        room=room.display_name,
        timestamp=to_datetime(timestamp),
        user_id=user["sk"],
    )
    txn.put_item(
        {
            "pk": LOGS_PARTITION,
            "sk": f"{event.timestamp.isoformat()}#{uuid.uuid4().hex}",
            **event.model_dump(by_alias=True, mode="json"),
        }
    )
    return event


class KeyLeaseService:
    """Transactional single-holder lock for the lab key plus room presence."""

    def __init__(
        self,
        store: SQLiteStore,
        *,
        event_sink: Optional[AttendanceEventSink] = None,
    ) -> None:
        self._store = store
        self._events = event_sink or LoggingEventSink()

    def holder(self) -> Optional[str]:
        record = self._store.get_item(
            partition_key=KEYS_PARTITION, sort_key=MAIN_KEY_SORT_KEY
        )
        if record is None:
            return None
        return KeyLease.model_validate(record).holder_id

    def acquire(self, uid: str) -> LogCreatedEvent:
        """Make ``uid`` the key holder, taking the key from any previous holder."""

        def work(txn: StoreTransaction) -> LogCreatedEvent:
            now = utcnow()
            user = _load_user(txn, uid)
            lease = KeyLease.model_validate(
                txn.get_item(partition_key=KEYS_PARTITION, sort_key=MAIN_KEY_SORT_KEY)
                or {}
            )
            previous = lease.holder_id
            if previous and previous != uid:
                try:
                    txn.update_item(
                        partition_key=USERS_PARTITION,
                        sort_key=previous,
                        fields={"hasKey": False, "lastActivity": now.isoformat()},
                    )
                except RecordNotFoundError:
                    logger.warning("Key lease pointed at missing user %s", previous)

            user.update({"hasKey": True, "lastActivity": now.isoformat()})
            txn.put_item(user)
            txn.put_item(
                {"pk": KEYS_PARTITION, "sk": MAIN_KEY_SORT_KEY, "holderId": uid}
            )
            return _append_log(
                txn, user=user, action=AttendanceAction.TAKE_KEY, room=KEY_ROOM, timestamp=now
            )

        event = self._store.run_transaction(work, operation="acquire_key")
        self._events.publish(event)
        return event

    def release(self, uid: str) -> LogCreatedEvent:
        """Clear ``uid``'s key flag; the lease is cleared only if ``uid`` held it."""

        def work(txn: StoreTransaction) -> LogCreatedEvent:
            now = utcnow()
            user = _load_user(txn, uid)
            user.update({"hasKey": False, "lastActivity": now.isoformat()})
            txn.put_item(user)

            lease = KeyLease.model_validate(
                txn.get_item(partition_key=KEYS_PARTITION, sort_key=MAIN_KEY_SORT_KEY)
                or {}
            )
            if lease.holder_id == uid:
                txn.put_item(
                    {"pk": KEYS_PARTITION, "sk": MAIN_KEY_SORT_KEY, "holderId": None}
                )
            return _append_log(
                txn, user=user, action=AttendanceAction.RETURN_KEY, room=KEY_ROOM, timestamp=now
            )

        event = self._store.run_transaction(work, operation="release_key")
        self._events.publish(event)
        return event

    def set_room(self, uid: str, room: Room, present: bool) -> LogCreatedEvent:
        """Record ``uid`` entering or leaving ``room``."""

        def work(txn: StoreTransaction) -> LogCreatedEvent:
            now = utcnow()
            user = _load_user(txn, uid)
            user.update({room.value: present, "lastActivity": now.isoformat()})
            txn.put_item(user)
            action = AttendanceAction.ENTER if present else AttendanceAction.EXIT
            return _append_log(txn, user=user, action=action, room=room, timestamp=now)

        event = self._store.run_transaction(work, operation="set_room")
        self._events.publish(event)
        return event

    def recent_logs(self, limit: int = 50) -> list[LogCreatedEvent]:
        records = self._store.list_items_with_prefix(partition_key=LOGS_PARTITION)
        newest_first = sorted(records, key=lambda item: item["sk"], reverse=True)
        return [LogCreatedEvent.model_validate(item) for item in newest_first[:limit]]


__all__ = [
    "AttendanceEventSink",
    "KeyLeaseService",
    "LoggingEventSink",
    "UserNotFoundError",
]
