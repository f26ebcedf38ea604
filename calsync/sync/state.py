"""
Tool: Sync State Store
Purpose: Per-user sync bookkeeping passed explicitly into the orchestrator

Each user has one SyncState record: when a run last started and last
succeeded, how many runs failed in a row, whether the credential needs
re-authentication, and an advisory in-flight marker. The marker is not a
lock; two processes can still race.

Usage:
    from calsync.sync.state import SyncStateStore, SqliteSyncStateStore

    states = SyncStateStore()                 # in memory, one per process
    states = SqliteSyncStateStore(db_path)    # survives between CLI runs
    state = states.get("alice")
"""

import logging
import sqlite3
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any

from calsync import DB_PATH


logger = logging.getLogger(__name__)

_TIME_FIELDS = ("last_attempt_at", "last_success_at", "in_flight_since", "next_allowed_at")


@dataclass
class SyncState:
    user_id: str
    last_attempt_at: datetime | None = None
    last_success_at: datetime | None = None
    in_flight_since: datetime | None = None
    next_allowed_at: datetime | None = None  # periodic runs back off until then
    consecutive_failures: int = 0
    needs_reauth: bool = False
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        for name in _TIME_FIELDS:
            d[name] = d[name].isoformat() if d[name] else None
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncState":
        data = {k: v for k, v in data.items() if k in {f.name for f in fields(cls)}}
        for name in _TIME_FIELDS:
            if isinstance(data.get(name), str):
                data[name] = datetime.fromisoformat(data[name])
        data["needs_reauth"] = bool(data.get("needs_reauth"))
        data["consecutive_failures"] = int(data.get("consecutive_failures") or 0)
        return cls(**data)


class SyncStateStore:
    """In-memory keyed store. get() returns a copy; call save() to persist changes."""

    def __init__(self):
        self._states: dict[str, SyncState] = {}

    def get(self, user_id: str) -> SyncState:
        state = self._states.get(user_id)
        return replace(state) if state else SyncState(user_id=user_id)

    def save(self, state: SyncState) -> None:
        self._states[state.user_id] = replace(state)

    def all(self) -> list[SyncState]:
        return [replace(s) for s in self._states.values()]


class SqliteSyncStateStore(SyncStateStore):
    """Keyed store backed by the sync_state table."""

    def __init__(self, db_path: str | Path | None = None):
        super().__init__()
        self.db_path = Path(db_path) if db_path else DB_PATH

    def get_connection(self) -> sqlite3.Connection:
        """Get database connection, creating tables if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("""
            CREATE TABLE IF NOT EXISTS sync_state (
                user_id TEXT PRIMARY KEY,
                last_attempt_at TEXT,
                last_success_at TEXT,
                in_flight_since TEXT,
                next_allowed_at TEXT,
                consecutive_failures INTEGER DEFAULT 0,
                needs_reauth INTEGER DEFAULT 0,
                last_error TEXT
            )
        """)
        conn.commit()
        return conn

    def get(self, user_id: str) -> SyncState:
        conn = self.get_connection()
        try:
            row = conn.execute("SELECT * FROM sync_state WHERE user_id = ?", (user_id,)).fetchone()
        finally:
            conn.close()
        return SyncState.from_dict(dict(row)) if row else SyncState(user_id=user_id)

    def save(self, state: SyncState) -> None:
        d = state.to_dict()
        d["needs_reauth"] = int(state.needs_reauth)
        columns = list(d)
        conn = self.get_connection()
        try:
            with conn:
                conn.execute(
                    f"INSERT OR REPLACE INTO sync_state ({', '.join(columns)}) "
                    f"VALUES ({', '.join('?' for _ in columns)})",
                    [d[c] for c in columns],
                )
        finally:
            conn.close()

    def all(self) -> list[SyncState]:
        conn = self.get_connection()
        try:
            rows = conn.execute("SELECT * FROM sync_state ORDER BY user_id").fetchall()
        finally:
            conn.close()
        return [SyncState.from_dict(dict(row)) for row in rows]


__all__ = ["SqliteSyncStateStore", "SyncState", "SyncStateStore"]
