"""
Key-value persistence behind custody.

Custody only needs a handful of atomic operations on JSON documents:

- ``put_if_absent``: create a key; exactly one of several concurrent callers wins
- ``compare_and_set``: replace a value only if its revision is unchanged
- ``get`` / ``delete`` / ``scan`` by prefix

Anything that offers these can back custody. Two engines ship here: SQLite
(durable, one row per key, no table lock) and an in-memory dict for tests and
throwaway sessions.
"""

from __future__ import annotations

import json
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, NamedTuple, Optional, Tuple

from ..core.exceptions import StorageError
from ..database.connection import DatabaseConnection


class Versioned(NamedTuple):
    value: dict
    revision: int


class KeyValueStore(ABC):
    """Abstract atomic key-value store of JSON objects."""

    @abstractmethod
    def get(self, key: str) -> Optional[Versioned]:
        ...

    @abstractmethod
    def put_if_absent(self, key: str, value: dict) -> bool:
        """Store ``value`` under ``key`` unless the key exists. True if stored."""

    @abstractmethod
    def compare_and_set(self, key: str, value: dict, revision: int) -> bool:
        """Replace the value if the stored revision equals ``revision``. True if replaced."""

    @abstractmethod
    def delete(self, key: str, revision: Optional[int] = None) -> bool:
        """Delete ``key`` (only at ``revision`` if given). True if a row went away."""

    @abstractmethod
    def scan(self, prefix: str) -> List[Tuple[str, Versioned]]:
        """Return every (key, value) whose key starts with ``prefix``, ordered by key."""

    def close(self) -> None:
        pass


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store. Values are copied through JSON so callers never share state."""

    def __init__(self):
        self._data: Dict[str, Tuple[str, int]] = {}
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            entry = self._data.get(key)
        if entry is None:
            return None
        return Versioned(json.loads(entry[0]), entry[1])

    def put_if_absent(self, key, value):
        raw = json.dumps(value, sort_keys=True)
        with self._lock:
            if key in self._data:
                return False
            self._data[key] = (raw, 1)
            return True

    def compare_and_set(self, key, value, revision):
        raw = json.dumps(value, sort_keys=True)
        with self._lock:
            entry = self._data.get(key)
            if entry is None or entry[1] != revision:
                return False
            self._data[key] = (raw, revision + 1)
            return True

    def delete(self, key, revision=None):
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return False
            if revision is not None and entry[1] != revision:
                return False
            del self._data[key]
            return True

    def scan(self, prefix):
        with self._lock:
            items = sorted((k, v) for k, v in self._data.items() if k.startswith(prefix))
        return [(k, Versioned(json.loads(raw), rev)) for k, (raw, rev) in items]


# upper bound for prefix range scans; sorts after every valid key suffix
_MAX_CHAR = "\U0010ffff"


class SQLiteKeyValueStore(KeyValueStore):
    """Durable store on the ``kv_records`` table."""

    def __init__(self, db: DatabaseConnection | str | os.PathLike):
        if not isinstance(db, DatabaseConnection):
            db = DatabaseConnection(db)
        db.initialize()
        self.db = db

    def get(self, key):
        row = self.db.fetch_one(
            "SELECT record_value, revision FROM kv_records WHERE record_key = ?",
            (key,),
        )
        if row is None:
            return None
        return Versioned(json.loads(row["record_value"]), row["revision"])

    def put_if_absent(self, key, value):
        raw = json.dumps(value, sort_keys=True)
        try:
            with self.db.get_transaction_context() as cur:
                cur.execute(
                    "INSERT INTO kv_records (record_key, record_value, revision) VALUES (?, ?, 1)",
                    (key, raw),
                )
        except sqlite3.IntegrityError:
            return False
        except sqlite3.Error as e:
            raise StorageError(f"put_if_absent failed for {key!r}: {e}") from e
        return True

    def compare_and_set(self, key, value, revision):
        raw = json.dumps(value, sort_keys=True)
        try:
            with self.db.get_transaction_context() as cur:
                cur.execute(
                    """
                    UPDATE kv_records
                    SET record_value = ?, revision = revision + 1, updated_at = CURRENT_TIMESTAMP
                    WHERE record_key = ? AND revision = ?
                    """,
                    (raw, key, revision),
                )
                changed = cur.rowcount
        except sqlite3.Error as e:
            raise StorageError(f"compare_and_set failed for {key!r}: {e}") from e
        return changed == 1

    def delete(self, key, revision=None):
        try:
            with self.db.get_transaction_context() as cur:
                if revision is None:
                    cur.execute("DELETE FROM kv_records WHERE record_key = ?", (key,))
                else:
                    cur.execute(
                        "DELETE FROM kv_records WHERE record_key = ? AND revision = ?",
                        (key, revision),
                    )
                changed = cur.rowcount
        except sqlite3.Error as e:
            raise StorageError(f"delete failed for {key!r}: {e}") from e
        return changed == 1

    def scan(self, prefix):
        rows = self.db.fetch_all(
            """
            SELECT record_key, record_value, revision FROM kv_records
            WHERE record_key >= ? AND record_key < ?
            ORDER BY record_key
            """,
            (prefix, prefix + _MAX_CHAR),
        )
        return [
            (row["record_key"], Versioned(json.loads(row["record_value"]), row["revision"]))
            for row in rows
        ]

    def close(self):
        self.db.close()
