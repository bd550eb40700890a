"""
SQLite key-value store for session snapshots and extraction queues.
"""

import asyncio
import json
import os
import sqlite3
import threading
from typing import Any, List, Optional


class Database:
    """
    JSON values stored by key in a single SQLite table.
    Thread-safe for concurrent access; writes are last-write-wins.
    """

    def __init__(self, db_path: str = "data/sessions.db"):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file (``:memory:`` is accepted)
        """
        self.db_path = db_path
        self._local = threading.local()
        self._lock = threading.RLock()
        # Each :memory: connection is its own database, so threads must share one
        self._shared: Optional[sqlite3.Connection] = None

        if db_path == ':memory:':
            self._shared = self._connect()
        else:
            directory = os.path.dirname(db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        self._initialize_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection (one shared connection for ``:memory:``)."""
        if self._shared is not None:
            return self._shared
        if getattr(self._local, 'connection', None) is None:
            self._local.connection = self._connect()
        return self._local.connection

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            timeout=30.0
        )
        connection.row_factory = sqlite3.Row
        return connection

    def _initialize_schema(self):
        with self._lock:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value JSON NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()

    def get(self, key: str, default: Any = None) -> Any:
        """Return the decoded value stored under ``key``, or ``default``."""
        with self._lock:
            cursor = self._get_connection().execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            )
            row = cursor.fetchone()
        if row is None:
            return default
        return json.loads(row['value'])

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            conn = self._get_connection()
            conn.execute("""
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP
            """, (key, json.dumps(value, ensure_ascii=False)))
            conn.commit()

    def delete(self, key: str) -> bool:
        """
        Delete a key.

        Returns:
            True if a row was removed
        """
        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
            return cursor.rowcount > 0

    def keys(self, prefix: Optional[str] = None) -> List[str]:
        with self._lock:
            conn = self._get_connection()
            if prefix:
                escaped = prefix.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
                cursor = conn.execute(
                    "SELECT key FROM kv_store WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                    (escaped + '%',)
                )
            else:
                cursor = conn.execute("SELECT key FROM kv_store ORDER BY key")
            return [row['key'] for row in cursor.fetchall()]

    # Async wrappers keep sqlite off the event loop

    async def aget(self, key: str, default: Any = None) -> Any:
        return await asyncio.to_thread(self.get, key, default)

    async def aset(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self.set, key, value)

    async def adelete(self, key: str) -> bool:
        return await asyncio.to_thread(self.delete, key)

    def close(self):
        """Close database connection."""
        if self._shared is not None:
            self._shared.close()
            self._shared = None
        if getattr(self._local, 'connection', None) is not None:
            self._local.connection.close()
            self._local.connection = None
