"""SQLite storage for saved readings.

Rows are append-only and user-scoped. Every public method is async and runs
its query on a worker thread so the event loop never blocks on disk I/O.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Protocol

from arcana.errors import PersistenceFailed

logger = logging.getLogger(__name__)


class ReadingStore(Protocol):
    async def insert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def select_by_user(self, user_id: str, reading_type: str, limit: int) -> List[Dict[str, Any]]:
        ...

    async def delete_by_id(self, reading_id: str, user_id: str) -> None:
        ...


class SQLiteReadingStore:
    def __init__(self, db_path: str):
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        self._init_db(conn)
        return conn

    @staticmethod
    def _init_db(conn: sqlite3.Connection) -> None:
        """Initialize the readings table if it does not exist yet."""
        conn.execute("""
            CREATE TABLE IF NOT EXISTS readings (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                reading_type TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                intention TEXT,
                interpretation TEXT NOT NULL,
                metadata TEXT
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_readings_user ON readings(user_id, reading_type)")
        conn.commit()

    def _insert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        row = {
            "id": str(uuid.uuid4()),
            "user_id": record["user_id"],
            "reading_type": record.get("reading_type", "tarot"),
            "timestamp": record.get("timestamp") or datetime.now(timezone.utc).isoformat(),
            "intention": record.get("intention", ""),
            "interpretation": record["interpretation"],
            "metadata": record.get("metadata") or {},
        }
        conn = self._connect()
        try:
            conn.execute("""
                INSERT INTO readings (id, user_id, reading_type, timestamp, intention, interpretation, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (row["id"], row["user_id"], row["reading_type"], row["timestamp"], row["intention"],
                  row["interpretation"], json.dumps(row["metadata"])))
            conn.commit()
        finally:
            conn.close()
        return row

    def _select_by_user(self, user_id: str, reading_type: str, limit: int) -> List[Dict[str, Any]]:
        conn = self._connect()
        try:
            cursor = conn.execute("""
                SELECT id, user_id, reading_type, timestamp, intention, interpretation, metadata
                FROM readings WHERE user_id = ? AND reading_type = ?
                ORDER BY timestamp DESC LIMIT ?
            """, (user_id, reading_type, limit))
            rows = [dict(r) for r in cursor.fetchall()]
        finally:
            conn.close()

        for row in rows:
            try:
                row["metadata"] = json.loads(row["metadata"] or "{}")
            except ValueError as e:
                # Left empty so the repository skips just this row
                logger.warning("Reading %s has unreadable metadata: %s", row["id"], e)
                row["metadata"] = {}
        return rows

    def _delete_by_id(self, reading_id: str, user_id: str) -> None:
        conn = self._connect()
        try:
            # user_id in the filter: a user can only delete their own readings
            conn.execute("DELETE FROM readings WHERE id = ? AND user_id = ?", (reading_id, user_id))
            conn.commit()
        finally:
            conn.close()

    async def insert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(self._insert, record)
        except (sqlite3.Error, OSError, KeyError, TypeError, ValueError) as e:
            raise PersistenceFailed(f"Failed to save reading: {e}") from e

    async def select_by_user(self, user_id: str, reading_type: str = "tarot", limit: int = 50) -> List[Dict[str, Any]]:
        try:
            return await asyncio.to_thread(self._select_by_user, user_id, reading_type, limit)
        except (sqlite3.Error, OSError, ValueError) as e:
            raise PersistenceFailed(f"Failed to load readings: {e}") from e

    async def delete_by_id(self, reading_id: str, user_id: str) -> None:
        try:
            await asyncio.to_thread(self._delete_by_id, reading_id, user_id)
        except (sqlite3.Error, OSError) as e:
            raise PersistenceFailed(f"Failed to delete reading: {e}") from e
