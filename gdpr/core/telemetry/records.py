from __future__ import annotations

import json
import os
import sqlite3
import threading
import time
import uuid
from typing import Any, Dict, List, Optional, Protocol


class RecordStore(Protocol):
    """
    Generic content-record store owned by the host. The purger only needs
    to list ids of one record type and delete them permanently.
    """

    def list_ids(self, record_type: str) -> List[str]: ...
    def delete(self, record_id: str, *, force: bool = True) -> bool: ...


class SqliteRecordStore:
    """
    Local content-record store (SQLite).

    Deletion is always permanent here; there is no trash to soft-delete into,
    so `force` is accepted for interface compatibility only.
    """

    def __init__(self, *, db_path: str, logger=None):
        self.db_path = str(db_path)
        self.logger = logger
        self._lock = threading.Lock()
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
        self._init_db()

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL;")
        except sqlite3.DatabaseError:
            pass
        return conn

    def _init_db(self) -> None:
        with self._lock:
            conn = self._conn()
            try:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS records (
                      record_id TEXT PRIMARY KEY,
                      record_type TEXT NOT NULL,
                      created_at REAL,
                      payload_json TEXT
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_records_type ON records(record_type)")
                conn.commit()
            finally:
                conn.close()

    def add(self, record_type: str, payload: Optional[Dict[str, Any]] = None, *, record_id: Optional[str] = None) -> str:
        rid = str(record_id or uuid.uuid4().hex)
        with self._lock:
            conn = self._conn()
            try:
                conn.execute(
                    "INSERT OR REPLACE INTO records(record_id, record_type, created_at, payload_json) VALUES (?,?,?,?)",
                    (rid, str(record_type), time.time(), json.dumps(payload or {}, ensure_ascii=False)),
                )
                conn.commit()
            finally:
                conn.close()
        return rid

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            conn = self._conn()
            try:
                row = conn.execute("SELECT * FROM records WHERE record_id=?", (str(record_id),)).fetchone()
            finally:
                conn.close()
        if row is None:
            return None
        return {"record_id": row["record_id"], "record_type": row["record_type"], "created_at": row["created_at"], "payload": json.loads(row["payload_json"] or "{}")}

    def list_ids(self, record_type: str) -> List[str]:
        with self._lock:
            conn = self._conn()
            try:
                rows = conn.execute("SELECT record_id FROM records WHERE record_type=? ORDER BY created_at, record_id", (str(record_type),)).fetchall()
            finally:
                conn.close()
        return [str(r["record_id"]) for r in rows]

    def delete(self, record_id: str, *, force: bool = True) -> bool:
        with self._lock:
            conn = self._conn()
            try:
                cur = conn.execute("DELETE FROM records WHERE record_id=?", (str(record_id),))
                conn.commit()
                return cur.rowcount > 0
            finally:
                conn.close()

    def count(self, record_type: Optional[str] = None) -> int:
        with self._lock:
            conn = self._conn()
            try:
                if record_type is None:
                    row = conn.execute("SELECT COUNT(*) AS n FROM records").fetchone()
                else:
                    row = conn.execute("SELECT COUNT(*) AS n FROM records WHERE record_type=?", (str(record_type),)).fetchone()
            finally:
                conn.close()
        return int(row["n"])
