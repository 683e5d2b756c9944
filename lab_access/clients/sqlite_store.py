"""SQLite-backed document store keyed by (pk, sk) with transactional access."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

from lab_access.utils.retry import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PersistenceError(Exception):
    """Raised when the underlying database rejects an operation."""

    def __init__(self, message: str, *, operation: str) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation


class RecordNotFoundError(PersistenceError):
    """Raised when an update targets a record that does not exist."""


def _default_json_serializer(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Type {type(value)!r} not serializable")


def _is_lock_contention(exc: BaseException) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


class StoreTransaction:
    """Reads and writes bound to one open ``BEGIN IMMEDIATE`` transaction."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get_item(
        self, *, partition_key: str, sort_key: str
    ) -> Optional[Dict[str, Any]]:
        row = self._conn.execute(
            "SELECT data FROM kv_records WHERE pk = ? AND sk = ?",
            (partition_key, sort_key),
        ).fetchone()
        if not row:
            return None
        return json.loads(row["data"])

    def put_item(self, item: Dict[str, Any]) -> None:
        pk = item.get("pk")
        sk = item.get("sk")
        if not pk or not sk:
            raise ValueError("Item must include 'pk' and 'sk' keys")

        data_json = json.dumps(item, default=_default_json_serializer)
        self._conn.execute(
            """
            INSERT INTO kv_records (pk, sk, data)
            VALUES (?, ?, ?)
            ON CONFLICT(pk, sk) DO UPDATE SET data = excluded.data
            """,
            (pk, sk, data_json),
        )

    def update_item(
        self, *, partition_key: str, sort_key: str, fields: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Merge ``fields`` into an existing record; fail if it is absent."""
        current = self.get_item(partition_key=partition_key, sort_key=sort_key)
        if current is None:
            raise RecordNotFoundError(
                f"No record at {partition_key}/{sort_key}", operation="update_item"
            )
        current.update(fields)
        self.put_item(current)
        return current

    def delete_item(self, *, partition_key: str, sort_key: str) -> None:
        self._conn.execute(
            "DELETE FROM kv_records WHERE pk = ? AND sk = ?",
            (partition_key, sort_key),
        )


class SQLiteStore:
    """Simple document store using a normalized table keyed by (pk, sk)."""

    def __init__(
        self,
        db_path: str,
        *,
        busy_timeout_seconds: float = 5.0,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._db_path = Path(db_path)
        self._busy_timeout = busy_timeout_seconds
        self._retry_config = retry_config or RetryConfig()
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._db_path,
            timeout=self._busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_records (
                    pk TEXT NOT NULL,
                    sk TEXT NOT NULL,
                    data TEXT NOT NULL,
                    PRIMARY KEY (pk, sk)
                )
                """
            )
        finally:
            conn.close()

    def run_transaction(
        self, work: Callable[[StoreTransaction], T], *, operation: str = "transaction"
    ) -> T:
        """Run ``work`` inside a write transaction, retrying on lock contention.

        ``work`` may be invoked more than once and must not have side effects
        outside the transaction it is given.
        """

        def attempt() -> T:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    result = work(StoreTransaction(conn))
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
                return result
            finally:
                conn.close()

        try:
            return call_with_retry(
                attempt,
                retry_on=(sqlite3.OperationalError,),
                should_retry=_is_lock_contention,
                retry_config=self._retry_config,
            )
        except sqlite3.Error as exc:
            logger.error("SQLite %s failed: %s", operation, exc)
            raise PersistenceError(str(exc), operation=operation) from exc

    def put_item(self, item: Dict[str, Any]) -> None:
        self.run_transaction(lambda txn: txn.put_item(item), operation="put_item")

    def get_item(
        self, *, partition_key: str, sort_key: str
    ) -> Optional[Dict[str, Any]]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT data FROM kv_records WHERE pk = ? AND sk = ?",
                (partition_key, sort_key),
            ).fetchone()
        except sqlite3.Error as exc:
            logger.error("SQLite get_item failed for %s/%s: %s", partition_key, sort_key, exc)
            raise PersistenceError(str(exc), operation="get_item") from exc
        finally:
            conn.close()
        if not row:
            return None
        return json.loads(row["data"])

    def delete_item(self, *, partition_key: str, sort_key: str) -> None:
        self.run_transaction(
            lambda txn: txn.delete_item(partition_key=partition_key, sort_key=sort_key),
            operation="delete_item",
        )

    def list_items_with_prefix(
        self, *, partition_key: str, sort_key_prefix: str = ""
    ) -> list[Dict[str, Any]]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT data FROM kv_records WHERE pk = ? AND sk LIKE ? ORDER BY sk",
                (partition_key, f"{sort_key_prefix}%"),
            ).fetchall()
        except sqlite3.Error as exc:
            logger.error("SQLite list failed for %s: %s", partition_key, exc)
            raise PersistenceError(str(exc), operation="list_items_with_prefix") from exc
        finally:
            conn.close()
        return [json.loads(row["data"]) for row in rows]


__all__ = [
    "PersistenceError",
    "RecordNotFoundError",
    "SQLiteStore",
    "StoreTransaction",
]
