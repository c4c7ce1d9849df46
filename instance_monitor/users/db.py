from __future__ import annotations

import asyncio
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from instance_monitor.errors import UserStoreError

logger = structlog.get_logger(__name__)

SCHEMA_VERSION = 1

STATUS_ONLINE = "ONLINE"
STATUS_OFFLINE = "OFFLINE"


def _utc_ts() -> float:
    return float(time.time())


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise UserStoreError("Missing users db path")
    Path(p).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000;")
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.Error:
        pass
    return conn


def _ensure_schema_conn(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);")
    row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    cur = int(row["v"]) if row and row["v"] else 0
    if cur >= SCHEMA_VERSION:
        return
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          mobile_number TEXT NOT NULL,
          instance_id TEXT,
          status TEXT NOT NULL DEFAULT 'OFFLINE',
          updated_at_ts REAL NOT NULL
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_users_instance_id ON users(instance_id);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_users_mobile_number ON users(mobile_number);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_users_status ON users(status);")
    conn.execute("INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)", (str(SCHEMA_VERSION),))


@dataclass(frozen=True)
class UserRecord:
    id: int
    mobile_number: str
    instance_id: str | None
    status: str
    updated_at_ts: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "UserRecord":
        return cls(
            id=int(row["id"]),
            mobile_number=str(row["mobile_number"]),
            instance_id=row["instance_id"],
            status=str(row["status"] or STATUS_OFFLINE),
            updated_at_ts=float(row["updated_at_ts"] or 0.0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "mobile_number": self.mobile_number,
            "instance_id": self.instance_id,
            "status": self.status,
        }


@dataclass(frozen=True)
class UpdateResult:
    matched: int
    status: str | None


class UserDirectory:
    """User records keyed by instance id and mobile number.

    Each call opens its own connection in a worker thread, so one
    directory can be shared by the API handlers and the scheduler.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    def _run(self, fn, *args):
        try:
            conn = _connect(self.db_path)
        except (sqlite3.Error, OSError) as exc:
            raise UserStoreError(f"Cannot open users db: {exc}") from exc
        try:
            return fn(conn, *args)
        except sqlite3.Error as exc:
            raise UserStoreError(str(exc)) from exc
        finally:
            conn.close()

    async def _call(self, fn, *args):
        return await asyncio.to_thread(self._run, fn, *args)

    async def ensure_schema(self) -> None:
        await self._call(_ensure_schema_conn)

    async def find_by_instance_id(self, instance_id: str) -> UserRecord | None:
        return await self._call(_find_one, "instance_id", instance_id)

    async def find_by_mobile_number(self, mobile_number: str) -> UserRecord | None:
        return await self._call(_find_one, "mobile_number", mobile_number)

    async def find(self, *, instance_id: str | None = None, mobile_number: str | None = None) -> UserRecord | None:
        if instance_id:
            return await self.find_by_instance_id(instance_id)
        if mobile_number:
            return await self.find_by_mobile_number(mobile_number)
        return None

    async def list_users(self) -> list[UserRecord]:
        return await self._call(_list_users)

    async def set_status(self, instance_id: str, status: str) -> UpdateResult:
        result = await self._call(_set_status, instance_id, status)
        if result.matched == 0:
            logger.warning("No user found for instance", instance=instance_id, status=status)
        else:
            logger.info("User status updated", instance=instance_id, status=status)
        return result

    async def mark_offline(self, instance_id: str) -> UpdateResult:
        if not instance_id:
            return UpdateResult(matched=0, status=None)
        return await self.set_status(instance_id, STATUS_OFFLINE)

    async def upsert_user(self, *, mobile_number: str, instance_id: str | None, status: str = STATUS_OFFLINE) -> UserRecord:
        return await self._call(_upsert_user, mobile_number, instance_id, status)


def _find_one(conn: sqlite3.Connection, column: str, value: str) -> UserRecord | None:
    if column not in ("instance_id", "mobile_number"):
        raise ValueError(f"Unsupported lookup column: {column}")
    row = conn.execute(f"SELECT * FROM users WHERE {column}=? ORDER BY id LIMIT 1", (value,)).fetchone()
    return UserRecord.from_row(row) if row else None


def _list_users(conn: sqlite3.Connection) -> list[UserRecord]:
    rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
    return [UserRecord.from_row(r) for r in rows]


def _set_status(conn: sqlite3.Connection, instance_id: str, status: str) -> UpdateResult:
    # One record per instance id is updated, matching a find-one-and-update.
    row = conn.execute("SELECT id FROM users WHERE instance_id=? ORDER BY id LIMIT 1", (instance_id,)).fetchone()
    if row is None:
        return UpdateResult(matched=0, status=None)
    conn.execute("UPDATE users SET status=?, updated_at_ts=? WHERE id=?", (status, _utc_ts(), int(row["id"])))
    return UpdateResult(matched=1, status=status)


def _upsert_user(conn: sqlite3.Connection, mobile_number: str, instance_id: str | None, status: str) -> UserRecord:
    row = conn.execute("SELECT id FROM users WHERE mobile_number=? ORDER BY id LIMIT 1", (mobile_number,)).fetchone()
    now = _utc_ts()
    if row is None:
        cur = conn.execute(
            "INSERT INTO users (mobile_number, instance_id, status, updated_at_ts) VALUES (?, ?, ?, ?)",
            (mobile_number, instance_id, status, now),
        )
        user_id = int(cur.lastrowid)
    else:
        user_id = int(row["id"])
        conn.execute(
            "UPDATE users SET instance_id=?, status=?, updated_at_ts=? WHERE id=?",
            (instance_id, status, now, user_id),
        )
    fetched = conn.execute("SELECT * FROM users WHERE id=?", (user_id,)).fetchone()
    return UserRecord.from_row(fetched)
