"""SQLite connection and initialization utilities."""

import sqlite3
from pathlib import Path
import threading

from .schema import get_init_schema
from ..core.exceptions import StorageError


class DatabaseConnection:
    """Manage thread-local SQLite connections and schema init."""

    __slots__ = (
        "db_path", "_local", "_lock", "_initialized", "busy_timeout",
        "_connections", "_generation", "_conn_lock",
    )

    def __init__(self, db_path="./sealkeep.db", busy_timeout: float = 5.0):
        """Initialize connection state."""
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self._local = threading.local()
        self._lock = threading.Lock()
        self._initialized = False
        # every thread's connection, so close() reaches worker threads too
        self._connections = []
        self._generation = 0
        self._conn_lock = threading.Lock()

    def initialize(self):
        """Create tables if they do not exist yet."""
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = self._get_connection()
                # WAL lets readers proceed while one writer commits
                conn.execute("PRAGMA journal_mode = WAL")
                for statement in get_init_schema():
                    conn.execute(statement)
                self._initialized = True
            except sqlite3.Error as e:
                raise StorageError(f"Failed to initialize database: {e}") from e

    def _get_connection(self):
        """Get or create the connection owned by the calling thread."""
        conn = getattr(self._local, "connection", None)
        if conn is None or getattr(self._local, "generation", None) != self._generation:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout,
                check_same_thread=False,
                isolation_level=None,
            )
            conn.row_factory = sqlite3.Row
            with self._conn_lock:
                self._connections.append(conn)
                self._local.generation = self._generation
            self._local.connection = conn
        return conn

    def get_transaction_context(self, immediate: bool = True):
        """Return a transaction context manager (BEGIN/COMMIT/ROLLBACK)."""
        return TransactionContext(self._get_connection(), immediate=immediate)

    def fetch_one(self, query, params=()):
        """Fetch a single row as a dict or None."""
        try:
            cursor = self._get_connection().execute(query, params)
            try:
                row = cursor.fetchone()
            finally:
                cursor.close()
        except sqlite3.Error as e:
            raise StorageError(f"query failed: {e}") from e
        return dict(row) if row else None

    def fetch_all(self, query, params=()):
        """Fetch all rows as a list of dicts."""
        try:
            cursor = self._get_connection().execute(query, params)
            try:
                rows = cursor.fetchall()
            finally:
                cursor.close()
        except sqlite3.Error as e:
            raise StorageError(f"query failed: {e}") from e
        return [dict(row) for row in rows]

    def get_version(self):
        """Return current schema version number."""
        try:
            result = self.fetch_one("SELECT MAX(version) as version FROM schema_version")
            return result["version"] if result and result["version"] else 0
        except StorageError:
            return 0

    def close(self):
        """Close the connections opened by every thread."""
        with self._conn_lock:
            connections, self._connections = self._connections, []
            self._generation += 1
        for conn in connections:
            conn.close()
        self._local.connection = None

    def open_connection_count(self):
        with self._conn_lock:
            return len(self._connections)


class TransactionContext:
    """Context manager for a transaction; commits on success, rolls back on error."""

    __slots__ = ("connection", "cursor", "immediate")

    def __init__(self, connection, immediate=True):
        self.connection = connection
        self.cursor = None
        self.immediate = immediate

    def __enter__(self):
        """Begin a transaction and return a cursor."""
        self.cursor = self.connection.cursor()
        # IMMEDIATE takes the write lock up front so read-modify-write
        # sequences cannot interleave
        self.cursor.execute("BEGIN IMMEDIATE" if self.immediate else "BEGIN")
        return self.cursor

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                self.connection.commit()
            else:
                self.connection.rollback()
        finally:
            if self.cursor:
                self.cursor.close()
