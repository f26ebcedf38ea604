"""
Tool: Schedule Store
Purpose: SQLite persistence for schedules and the user directory

Times are stored as ISO text for round-tripping plus epoch seconds for range
queries. Naive datetimes are treated as UTC when computing epochs. List
fields (participants, resources, reminders) and the recurrence rule are JSON
text columns.

Usage:
    from calsync.calendar.store import ScheduleStore

    store = ScheduleStore(db_path)
    store.insert_many([master, *children])
    store.list_between(start, end, involving="alice")
    store.delete_series(master.id)

Dependencies:
    - sqlite3 (stdlib)
"""

import json
import logging
import sqlite3
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from calsync import DB_PATH
from calsync.models import Origin, Recurrence, ResourceBinding, Schedule, as_utc


logger = logging.getLogger(__name__)

COLUMNS = [
    "id",
    "type",
    "title",
    "details",
    "start_time",
    "end_time",
    "start_epoch",
    "end_epoch",
    "all_day",
    "multi_day",
    "recurrence",
    "original_id",
    "participants",
    "resources",
    "origin",
    "external_id",
    "meeting_mode",
    "meet_link",
    "reminders",
    "created_by",
    "created_at",
    "updated_by",
    "updated_at",
    "visibility",
]


def to_epoch(value: datetime) -> float:
    """Epoch seconds; naive datetimes are read as UTC."""
    return as_utc(value).timestamp()


def _to_row(schedule: Schedule) -> tuple:
    return (
        schedule.id,
        schedule.type,
        schedule.title,
        schedule.details,
        schedule.start_time.isoformat(),
        schedule.end_time.isoformat(),
        to_epoch(schedule.start_time),
        to_epoch(schedule.end_time),
        int(schedule.all_day),
        int(schedule.multi_day),
        json.dumps(schedule.recurrence.to_dict()) if schedule.recurrence else None,
        schedule.original_id,
        json.dumps(list(schedule.participants)),
        json.dumps([r.to_dict() for r in schedule.resources]),
        schedule.origin.value,
        schedule.external_id,
        schedule.meeting_mode.value,
        schedule.meet_link,
        json.dumps(list(schedule.reminders)),
        schedule.created_by,
        schedule.created_at.isoformat(),
        schedule.updated_by,
        schedule.updated_at.isoformat() if schedule.updated_at else None,
        schedule.visibility.value,
    )


def row_to_schedule(row: sqlite3.Row | None) -> Schedule | None:
    """Convert sqlite3.Row to Schedule."""
    if row is None:
        return None
    return Schedule(
        id=row["id"],
        type=row["type"],
        title=row["title"],
        details=row["details"] or "",
        start_time=datetime.fromisoformat(row["start_time"]),
        end_time=datetime.fromisoformat(row["end_time"]),
        all_day=bool(row["all_day"]),
        multi_day=bool(row["multi_day"]),
        recurrence=Recurrence.from_dict(json.loads(row["recurrence"])) if row["recurrence"] else None,
        original_id=row["original_id"],
        participants=json.loads(row["participants"] or "[]"),
        resources=[ResourceBinding.from_dict(r) for r in json.loads(row["resources"] or "[]")],
        origin=row["origin"],
        external_id=row["external_id"],
        meeting_mode=row["meeting_mode"],
        meet_link=row["meet_link"],
        reminders=json.loads(row["reminders"] or "[]"),
        created_by=row["created_by"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_by=row["updated_by"],
        updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
        visibility=row["visibility"],
    )


class ScheduleStore:
    """CRUD and range queries over the schedules table."""

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path) if db_path else DB_PATH

    def get_connection(self) -> sqlite3.Connection:
        """Get database connection, creating tables if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row

        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS schedules (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                title TEXT NOT NULL,
                details TEXT,
                start_time TEXT NOT NULL,
                end_time TEXT NOT NULL,
                start_epoch REAL NOT NULL,
                end_epoch REAL NOT NULL,
                all_day INTEGER DEFAULT 0,
                multi_day INTEGER DEFAULT 0,
                recurrence TEXT,
                original_id TEXT,
                participants TEXT DEFAULT '[]',
                resources TEXT DEFAULT '[]',
                origin TEXT DEFAULT 'local' CHECK(origin IN ('local', 'external')),
                external_id TEXT,
                meeting_mode TEXT DEFAULT 'in_person',
                meet_link TEXT,
                reminders TEXT DEFAULT '[]',
                created_by TEXT,
                created_at TEXT NOT NULL,
                updated_by TEXT,
                updated_at TEXT,
                visibility TEXT DEFAULT 'public' CHECK(visibility IN ('public', 'private'))
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT,
                name TEXT
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_schedules_start ON schedules(start_epoch)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_schedules_original ON schedules(original_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_schedules_external ON schedules(external_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_schedules_origin ON schedules(origin)")

        conn.commit()
        return conn

    # ─────────────────────────────────────────────────────────────────────
    # Writes
    # ─────────────────────────────────────────────────────────────────────

    def insert(self, schedule: Schedule) -> Schedule:
        return self.insert_many([schedule])[0]

    def insert_many(self, schedules: Iterable[Schedule]) -> list[Schedule]:
        """Insert all schedules in one transaction; nothing is written on failure."""
        schedules = list(schedules)
        placeholders = ", ".join("?" for _ in COLUMNS)
        conn = self.get_connection()
        try:
            with conn:
                conn.executemany(
                    f"INSERT INTO schedules ({', '.join(COLUMNS)}) VALUES ({placeholders})",
                    [_to_row(s) for s in schedules],
                )
        finally:
            conn.close()
        logger.debug("Inserted %d schedule(s)", len(schedules))
        return schedules

    def update(self, schedule: Schedule) -> bool:
        """Overwrite every column of an existing record. Returns False if absent."""
        assignments = ", ".join(f"{col} = ?" for col in COLUMNS[1:])
        row = _to_row(schedule)
        conn = self.get_connection()
        try:
            with conn:
                cursor = conn.execute(
                    f"UPDATE schedules SET {assignments} WHERE id = ?",
                    (*row[1:], schedule.id),
                )
                count = cursor.rowcount
        finally:
            conn.close()
        return count > 0

    def delete(self, schedule_id: str) -> int:
        """Delete a single record."""
        conn = self.get_connection()
        try:
            with conn:
                cursor = conn.execute("DELETE FROM schedules WHERE id = ?", (schedule_id,))
                count = cursor.rowcount
        finally:
            conn.close()
        return count

    def delete_series(self, schedule_id: str) -> int:
        """
        Delete a master and all of its occurrences in one statement.

        Accepts the id of the master or of any occurrence.
        """
        conn = self.get_connection()
        try:
            row = conn.execute("SELECT original_id FROM schedules WHERE id = ?", (schedule_id,)).fetchone()
            master_id = (row["original_id"] if row else None) or schedule_id
            with conn:
                cursor = conn.execute(
                    "DELETE FROM schedules WHERE id = ? OR original_id = ?",
                    (master_id, master_id),
                )
                count = cursor.rowcount
        finally:
            conn.close()
        logger.info("Deleted series %s (%d record(s))", master_id, count)
        return count

    def delete_many(self, schedule_ids: Iterable[str]) -> int:
        """Delete the given ids in one statement."""
        ids = list(schedule_ids)
        if not ids:
            return 0
        conn = self.get_connection()
        try:
            with conn:
                cursor = conn.execute(
                    f"DELETE FROM schedules WHERE id IN ({', '.join('?' for _ in ids)})",
                    ids,
                )
                count = cursor.rowcount
        finally:
            conn.close()
        return count

    # ─────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────

    def get(self, schedule_id: str) -> Schedule | None:
        conn = self.get_connection()
        try:
            row = conn.execute("SELECT * FROM schedules WHERE id = ?", (schedule_id,)).fetchone()
        finally:
            conn.close()
        return row_to_schedule(row)

    def list_series(self, master_id: str) -> list[Schedule]:
        """Master plus occurrences, ordered by start."""
        return self._select("(id = ? OR original_id = ?)", [master_id, master_id])

    def find_by_external_id(self, external_id: str, involving: str | None = None) -> Schedule | None:
        clauses = ["external_id = ?"]
        params: list[Any] = [external_id]
        if involving:
            clauses.append(self._involving_clause())
            params.extend([involving, involving])
        found = self._select(" AND ".join(clauses), params, limit=1)
        return found[0] if found else None

    def list_between(
        self,
        start: datetime,
        end: datetime,
        *,
        participant: str | None = None,
        involving: str | None = None,
        resource: ResourceBinding | None = None,
        origin: Origin | str | None = None,
        created_by: str | None = None,
    ) -> list[Schedule]:
        """
        Records intersecting [start, end).

        Args:
            start: Range start
            end: Range end
            participant: Only records listing this participant
            involving: Only records the user participates in or created
            resource: Only records booking this resource (id and type)
            origin: Only records of this origin
            created_by: Only records created by this user

        Returns:
            Schedules ordered by start time
        """
        lo, hi = to_epoch(start), to_epoch(end)
        clauses = ["start_epoch < ?", "(end_epoch > ? OR start_epoch >= ?)"]
        params: list[Any] = [hi, lo, lo]

        if participant:
            clauses.append("EXISTS (SELECT 1 FROM json_each(schedules.participants) WHERE value = ?)")
            params.append(participant)
        if involving:
            clauses.append(self._involving_clause())
            params.extend([involving, involving])
        if resource:
            clauses.append(
                "EXISTS (SELECT 1 FROM json_each(schedules.resources) "
                "WHERE json_extract(value, '$.id') = ? AND json_extract(value, '$.type') = ?)"
            )
            params.extend([resource.resource_id, resource.resource_type.value])
        if origin:
            clauses.append("origin = ?")
            params.append(Origin(origin).value)
        if created_by:
            clauses.append("created_by = ?")
            params.append(created_by)

        return self._select(" AND ".join(clauses), params)

    def list_for_user(self, user_id: str, origin: Origin | str | None = None) -> list[Schedule]:
        """Every record the user participates in or created, optionally by origin."""
        clauses = [self._involving_clause()]
        params: list[Any] = [user_id, user_id]
        if origin:
            clauses.append("origin = ?")
            params.append(Origin(origin).value)
        return self._select(" AND ".join(clauses), params)

    @staticmethod
    def _involving_clause() -> str:
        return (
            "(EXISTS (SELECT 1 FROM json_each(schedules.participants) WHERE value = ?)"
            " OR created_by = ?)"
        )

    def _select(self, where: str, params: list[Any], limit: int | None = None) -> list[Schedule]:
        sql = f"SELECT * FROM schedules WHERE {where} ORDER BY start_epoch, created_at"
        if limit:
            sql += f" LIMIT {int(limit)}"
        conn = self.get_connection()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [row_to_schedule(row) for row in rows]

    # ─────────────────────────────────────────────────────────────────────
    # User directory
    # ─────────────────────────────────────────────────────────────────────

    def upsert_user(self, user_id: str, email: str | None, name: str | None = None) -> None:
        conn = self.get_connection()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO users (id, email, name) VALUES (?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET email = excluded.email, name = excluded.name
                    """,
                    (user_id, email, name),
                )
        finally:
            conn.close()

    def emails_for(self, user_ids: Iterable[str]) -> list[str]:
        """Email addresses for the given users, in input order; unknown ids are skipped."""
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return []
        conn = self.get_connection()
        try:
            rows = conn.execute(
                f"SELECT id, email FROM users WHERE id IN ({', '.join('?' for _ in ids)})",
                ids,
            ).fetchall()
        finally:
            conn.close()
        by_id = {row["id"]: row["email"] for row in rows if row["email"]}
        return [by_id[i] for i in ids if i in by_id]


__all__ = ["ScheduleStore", "row_to_schedule", "to_epoch"]
