"""Create-or-update of user documents after a Slack login."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from lab_access.clients.sqlite_store import SQLiteStore, StoreTransaction
from lab_access.models.timestamps import utcnow
from lab_access.models.users import (
    PRESENCE_FIELDS,
    USERS_PARTITION,
    SlackIdentity,
    UserProfile,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class UpsertResult:
    is_new_user: bool


class UserRecordService:
    """Persist identities while leaving attendance state to its owners.

    Presence flags (``room2218``, ``gradRoom``, ``hasKey``) are written only
    when a record is first created. Later logins refresh identity fields,
    ``lastActivity`` and the encrypted token.
    """

    def __init__(self, store: SQLiteStore) -> None:
        self._store = store

    def upsert(self, identity: SlackIdentity, encrypted_token: str) -> UpsertResult:
        def work(txn: StoreTransaction) -> UpsertResult:
            existing = txn.get_item(partition_key=USERS_PARTITION, sort_key=identity.uid)
            now = utcnow().isoformat()
            if existing is None:
                record = {
                    "pk": USERS_PARTITION,
                    "sk": identity.uid,
                    **identity.to_record(),
                    **{field: False for field in PRESENCE_FIELDS},
                    "createdAt": now,
                    "lastActivity": now,
                    "encryptedToken": encrypted_token,
                }
                txn.put_item(record)
                return UpsertResult(is_new_user=True)

            txn.update_item(
                partition_key=USERS_PARTITION,
                sort_key=identity.uid,
                fields={
                    **identity.to_record(),
                    "lastActivity": now,
                    "encryptedToken": encrypted_token,
                },
            )
            return UpsertResult(is_new_user=False)

        result = self._store.run_transaction(work, operation="upsert_user")
        logger.debug("Upserted user %s (new=%s)", identity.uid, result.is_new_user)
        return result

    def get(self, uid: str) -> Optional[UserProfile]:
        record = self._store.get_item(partition_key=USERS_PARTITION, sort_key=uid)
        if record is None:
            return None
        return UserProfile.model_validate(record)

    def clear_token(self, uid: str) -> None:
        """Drop a stored token that can no longer be used."""

        def work(txn: StoreTransaction) -> None:
            record = txn.get_item(partition_key=USERS_PARTITION, sort_key=uid)
            if record is None or "encryptedToken" not in record:
                return
            record.pop("encryptedToken")
            txn.put_item(record)

        self._store.run_transaction(work, operation="clear_user_token")


__all__ = ["UpsertResult", "UserRecordService"]
