"""
Tool: Schedule Manager
Purpose: Validated, conflict-checked creation, update and deletion of schedules

Creating a recurring schedule expands the rule, checks every occurrence for
conflicts and stores the master with its occurrences in one transaction.
Results are plain dicts so the CLI and any HTTP layer can pass them through.

Usage:
    python -m calsync.calendar.scheduler --action create --user alice \\
        --title "Weekly Sync" --start 2026-03-02T10:00:00 --end 2026-03-02T11:00:00 \\
        --frequency weekly --count 3
    python -m calsync.calendar.scheduler --action conflicts --user alice \\
        --start 2026-03-02T10:30:00 --end 2026-03-02T11:30:00
    python -m calsync.calendar.scheduler --action list --user alice --days 14
    python -m calsync.calendar.scheduler --action delete --schedule-id abc --cascade

Output:
    JSON result with success status and data
"""

import argparse
import json
import logging
import sqlite3
import sys
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from calsync.calendar.conflicts import ConflictResult, detect_conflicts, detect_series_conflicts
from calsync.calendar.recurrence import materialize_series
from calsync.calendar.store import ScheduleStore
from calsync.config import CalsyncConfig, load_config
from calsync.errors import IntegrityWarning, ValidationError
from calsync.logging_config import setup_logging
from calsync.models import (
    ChangeType,
    EndType,
    Frequency,
    Occurrence,
    Recurrence,
    ResourceBinding,
    Schedule,
    utcnow,
)
from calsync.notifications import LoggingDispatcher, NotificationDispatcher, due_reminders, recipients_for


logger = logging.getLogger(__name__)

# Fields a single-record update may change
UPDATABLE_FIELDS = {
    "type",
    "title",
    "details",
    "start_time",
    "end_time",
    "all_day",
    "multi_day",
    "participants",
    "resources",
    "meeting_mode",
    "meet_link",
    "reminders",
    "visibility",
}

# Changes that can introduce a new conflict
CONFLICT_FIELDS = {"start_time", "end_time", "participants", "resources"}


def _failure(error: str, error_type: str, **extra: Any) -> dict[str, Any]:
    return {"success": False, "error": error, "error_type": error_type, **extra}


class ScheduleManager:
    """Mutation service over a ScheduleStore."""

    def __init__(
        self,
        store: ScheduleStore,
        dispatcher: NotificationDispatcher | None = None,
        config: CalsyncConfig | None = None,
    ):
        self.store = store
        self.dispatcher = dispatcher or LoggingDispatcher()
        self.config = config or CalsyncConfig()

    # ─────────────────────────────────────────────────────────────────────
    # Conflicts
    # ─────────────────────────────────────────────────────────────────────

    def check_conflicts(
        self,
        start: datetime,
        end: datetime,
        participants: list[str],
        resources: list[ResourceBinding] | None = None,
        exclude_id: str | None = None,
    ) -> ConflictResult:
        """Check one window against stored schedules."""
        snapshot = self.store.list_between(start, end)
        return detect_conflicts(start, end, participants, resources or [], snapshot, exclude_id)

    def _check_windows(self, schedule: Schedule, windows: list[Occurrence]) -> ConflictResult:
        lo = min(w.start for w in windows)
        hi = max(w.end for w in windows)
        # An all-day zero-length window still needs its own day in the snapshot
        snapshot = self.store.list_between(lo, max(hi, lo + timedelta(seconds=1)))
        return detect_series_conflicts(windows, schedule.participants, schedule.resources, snapshot)

    # ─────────────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────────────

    def create_schedule(
        self,
        schedule: Schedule,
        check_conflicts: bool = True,
        actor: str | None = None,
    ) -> dict[str, Any]:
        """
        Validate, conflict-check, expand and store a schedule.

        Args:
            schedule: New schedule; a recurring one becomes the series master
            check_conflicts: Reject when any occurrence collides
            actor: User making the change (excluded from notifications)

        Returns:
            {
                "success": bool,
                "schedule_id": str,
                "occurrence_ids": list[str],
                "truncated": bool,
            }
            or a failure with error_type validation, integrity, conflict or storage
        """
        if actor and not schedule.created_by:
            schedule.created_by = actor

        try:
            schedule.validate()
        except ValidationError as e:
            return _failure(str(e), "validation", fields=e.fields)
        except IntegrityWarning as e:
            return _failure(str(e), "integrity")

        children: list[Schedule] = []
        truncated = False
        windows = [Occurrence(schedule.start_time, schedule.end_time)]

        if schedule.is_master:
            horizon = schedule.start_time + timedelta(days=self.config.recurrence.materialize_horizon_days)
            children, expansion = materialize_series(
                schedule,
                horizon_end=horizon,
                max_occurrences=self.config.recurrence.max_occurrences,
            )
            if expansion.warning is not None:
                return _failure(str(expansion.warning), "integrity")
            if not expansion.occurrences:
                return _failure("Recurrence produces no occurrences", "validation", fields=["recurrence"])

            # A custom rule may move the first occurrence off the requested day
            first = expansion.occurrences[0]
            schedule.start_time, schedule.end_time = first.start, first.end
            windows = list(expansion.occurrences)
            truncated = expansion.truncated

        if check_conflicts:
            result = self._check_windows(schedule, windows)
            if result.has_conflicts:
                logger.info("Schedule %r rejected: %d conflict(s)", schedule.title, len(result.conflicts))
                return _failure(
                    f"Conflicts with {len(result.conflicts)} existing schedule(s)",
                    "conflict",
                    conflicts=result.to_dict()["conflicts"],
                )

        try:
            self.store.insert_many([schedule, *children])
        except sqlite3.Error as e:
            logger.error("Failed to store schedule %s: %s", schedule.id, e)
            return _failure(f"Storage error: {e}", "storage")

        self.dispatcher.dispatch(schedule, recipients_for(schedule, actor), ChangeType.CREATED)

        return {
            "success": True,
            "schedule_id": schedule.id,
            "occurrence_ids": [c.id for c in children],
            "occurrences": len(windows),
            "truncated": truncated,
        }

    # ─────────────────────────────────────────────────────────────────────
    # Update
    # ─────────────────────────────────────────────────────────────────────

    def update_schedule(
        self,
        schedule_id: str,
        changes: dict[str, Any],
        actor: str | None = None,
        check_conflicts: bool = True,
    ) -> dict[str, Any]:
        """Update one record. Series members are updated independently."""
        existing = self.store.get(schedule_id)
        if existing is None:
            return _failure(f"Schedule not found: {schedule_id}", "not_found")

        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            return _failure(f"Fields cannot be updated: {', '.join(sorted(unknown))}", "validation", fields=sorted(unknown))

        changes = dict(changes)
        if "resources" in changes:
            changes["resources"] = [
                r if isinstance(r, ResourceBinding) else ResourceBinding.from_dict(r)
                for r in changes["resources"]
            ]

        updated = replace(existing, **changes, updated_by=actor, updated_at=utcnow())

        try:
            updated.validate()
        except ValidationError as e:
            return _failure(str(e), "validation", fields=e.fields)
        except IntegrityWarning as e:
            return _failure(str(e), "integrity")

        if check_conflicts and CONFLICT_FIELDS & set(changes):
            result = self.check_conflicts(
                updated.start_time,
                updated.end_time,
                updated.participants,
                updated.resources,
                exclude_id=schedule_id,
            )
            if result.has_conflicts:
                return _failure(
                    f"Conflicts with {len(result.conflicts)} existing schedule(s)",
                    "conflict",
                    conflicts=result.to_dict()["conflicts"],
                )

        try:
            self.store.update(updated)
        except sqlite3.Error as e:
            logger.error("Failed to update schedule %s: %s", schedule_id, e)
            return _failure(f"Storage error: {e}", "storage")

        self.dispatcher.dispatch(updated, recipients_for(updated, actor), ChangeType.UPDATED)
        return {"success": True, "schedule": updated.to_dict()}

    # ─────────────────────────────────────────────────────────────────────
    # Delete
    # ─────────────────────────────────────────────────────────────────────

    def delete_schedule(
        self,
        schedule_id: str,
        cascade: bool = False,
        actor: str | None = None,
    ) -> dict[str, Any]:
        """
        Delete one record, or with cascade the whole series it belongs to.

        Returns:
            {"success": True, "deleted": int}
        """
        existing = self.store.get(schedule_id)
        if existing is None:
            return _failure(f"Schedule not found: {schedule_id}", "not_found")

        try:
            if cascade:
                deleted = self.store.delete_series(schedule_id)
            else:
                deleted = self.store.delete(schedule_id)
        except sqlite3.Error as e:
            logger.error("Failed to delete schedule %s: %s", schedule_id, e)
            return _failure(f"Storage error: {e}", "storage")

        self.dispatcher.dispatch(existing, recipients_for(existing, actor), ChangeType.DELETED)
        return {"success": True, "deleted": deleted}

    # ─────────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────────

    def occurrences_between(self, start: datetime, end: datetime, user_id: str | None = None) -> list[Schedule]:
        """Stored records (masters, occurrences, standalone) intersecting the range."""
        return self.store.list_between(start, end, involving=user_id)

    def send_due_reminders(
        self,
        now: datetime | None = None,
        window: timedelta = timedelta(minutes=1),
        lookahead: timedelta = timedelta(days=7),
    ) -> int:
        """Dispatch reminders firing in [now, now + window). Returns the count sent."""
        now = now or utcnow()
        upcoming = self.store.list_between(now, now + lookahead + window)
        sent = 0
        for schedule, minutes in due_reminders(upcoming, now, window):
            logger.debug("Reminder %d min before %s", minutes, schedule.id)
            self.dispatcher.dispatch(schedule, recipients_for(schedule), ChangeType.REMINDER)
            sent += 1
        return sent


def _build_schedule(args: argparse.Namespace) -> Schedule:
    recurrence = None
    if args.frequency and args.frequency != "none":
        end_type = EndType.NEVER
        if args.count:
            end_type = EndType.COUNT
        elif args.until:
            end_type = EndType.DATE
        recurrence = Recurrence(
            frequency=Frequency.parse(args.frequency),
            interval=args.interval,
            end_type=end_type,
            count=args.count,
            end_date=datetime.fromisoformat(args.until).date() if args.until else None,
            weekdays=tuple(int(d) for d in args.weekdays.split(",")) if args.weekdays else (),
        )

    participants = [p.strip() for p in args.participants.split(",")] if args.participants else [args.user]
    return Schedule(
        title=args.title,
        type=args.type,
        start_time=datetime.fromisoformat(args.start),
        end_time=datetime.fromisoformat(args.end),
        recurrence=recurrence,
        participants=participants,
        created_by=args.user,
    )


def main():
    parser = argparse.ArgumentParser(
        description="Schedule Manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--action",
        required=True,
        choices=["create", "delete", "conflicts", "list"],
        help="Action to perform",
    )
    parser.add_argument("--user", help="Acting user ID")
    parser.add_argument("--db", help="Database path (default from config)")
    parser.add_argument("--config", help="Config file path")

    parser.add_argument("--schedule-id", help="Schedule ID")
    parser.add_argument("--cascade", action="store_true", help="Delete the whole series")

    parser.add_argument("--title", help="Schedule title")
    parser.add_argument("--type", default="meeting", help="Schedule type tag")
    parser.add_argument("--start", help="Start time (ISO format)")
    parser.add_argument("--end", help="End time (ISO format)")
    parser.add_argument("--participants", help="Participant IDs (comma-separated)")
    parser.add_argument("--no-check", action="store_true", help="Skip conflict checking")

    parser.add_argument("--frequency", default="none", help="none, daily, weekly, monthly, yearly, weekdays, custom")
    parser.add_argument("--interval", type=int, default=1, help="Recurrence interval")
    parser.add_argument("--count", type=int, help="End after this many occurrences")
    parser.add_argument("--until", help="End date (YYYY-MM-DD, inclusive)")
    parser.add_argument("--weekdays", help="Custom weekdays, 0=Sunday (comma-separated)")

    parser.add_argument("--days", type=int, default=7, help="Days to list")

    args = parser.parse_args()

    setup_logging()

    config = load_config(args.config)
    store = ScheduleStore(args.db or config.storage.resolved_db_path)
    manager = ScheduleManager(store, config=config)

    result = None

    if args.action == "create":
        if not all([args.title, args.start, args.end, args.user]):
            print("Error: --title, --start, --end and --user are required for create")
            sys.exit(1)
        result = manager.create_schedule(
            _build_schedule(args),
            check_conflicts=not args.no_check,
            actor=args.user,
        )

    elif args.action == "delete":
        if not args.schedule_id:
            print("Error: --schedule-id required for delete")
            sys.exit(1)
        result = manager.delete_schedule(args.schedule_id, cascade=args.cascade, actor=args.user)

    elif args.action == "conflicts":
        if not all([args.start, args.end]):
            print("Error: --start and --end are required for conflicts")
            sys.exit(1)
        participants = [p.strip() for p in args.participants.split(",")] if args.participants else [args.user]
        check = manager.check_conflicts(
            datetime.fromisoformat(args.start),
            datetime.fromisoformat(args.end),
            [p for p in participants if p],
            exclude_id=args.schedule_id,
        )
        result = {"success": True, **check.to_dict()}

    elif args.action == "list":
        start = utcnow()
        schedules = manager.occurrences_between(start, start + timedelta(days=args.days), args.user)
        result = {"success": True, "schedules": [s.to_dict() for s in schedules], "count": len(schedules)}

    if result:
        if result.get("success"):
            print("OK")
        else:
            print(f"ERROR: {result.get('error')}")
            print(json.dumps(result, indent=2, default=str))
            sys.exit(1)

        print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
