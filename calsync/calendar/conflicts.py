"""
Tool: Conflict Detector
Purpose: Decide whether a proposed window collides with known schedules

A conflict needs both a time overlap and a shared participant or a shared
resource (same id and same type). Bookings of sample resources never
conflict.

Usage:
    from calsync.calendar.conflicts import detect_conflicts

    result = detect_conflicts(start, end, ["alice"], [], schedules)
    if result.has_conflicts:
        for s in result.conflicts:
            print(s.title, s.start_time)
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from calsync.errors import ConflictError
from calsync.models import Occurrence, ResourceBinding, ResourceType, Schedule, as_utc


# Schedule type tags that mark sample work, exempt like sample resources
SAMPLE_TYPES = {"sample"}


@dataclass
class ConflictResult:
    has_conflicts: bool = False
    conflicts: list[Schedule] = field(default_factory=list)

    def raise_for_conflicts(self) -> None:
        """Raise ConflictError listing the colliding records."""
        if self.has_conflicts:
            titles = ", ".join(s.title for s in self.conflicts)
            raise ConflictError(f"Schedule conflicts with: {titles}", self.conflicts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_conflicts": self.has_conflicts,
            "conflicts": [
                {
                    "id": s.id,
                    "title": s.title,
                    "start_time": s.start_time.isoformat(),
                    "end_time": s.end_time.isoformat(),
                    "participants": list(s.participants),
                    "resources": [r.to_dict() for r in s.resources],
                }
                for s in self.conflicts
            ],
        }


def is_sample_booking(schedule: Schedule) -> bool:
    return schedule.type in SAMPLE_TYPES or schedule.has_resource_type(ResourceType.SAMPLE)


def overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    """
    Half-open overlap of [start, end) against [other_start, other_end).

    Naive values are taken to be UTC so local and imported records compare.
    """
    start, end = as_utc(start), as_utc(end)
    other_start, other_end = as_utc(other_start), as_utc(other_end)
    starts_inside = other_start <= start < other_end
    ends_inside = other_start < end <= other_end
    contains = start <= other_start and end >= other_end
    return starts_inside or ends_inside or contains


def _shares_resource(proposed: Iterable[ResourceBinding], existing: Iterable[ResourceBinding]) -> bool:
    wanted = {(r.resource_id, r.resource_type) for r in proposed}
    return any((r.resource_id, r.resource_type) in wanted for r in existing)


def detect_conflicts(
    start: datetime,
    end: datetime,
    participants: Iterable[str],
    resources: Iterable[ResourceBinding],
    schedules: Iterable[Schedule],
    exclude_id: str | None = None,
) -> ConflictResult:
    """
    Check one proposed window against known schedules.

    Args:
        start: Proposed start
        end: Proposed end
        participants: Participant ids of the proposal
        resources: Resource bindings of the proposal
        schedules: Snapshot of known schedules
        exclude_id: Record being edited, ignored

    Returns:
        ConflictResult listing every colliding schedule
    """
    participants = set(participants)
    resources = list(resources)

    if any(r.resource_type == ResourceType.SAMPLE for r in resources):
        return ConflictResult()

    conflicts = []
    for schedule in schedules:
        if exclude_id and schedule.id == exclude_id:
            continue
        if is_sample_booking(schedule):
            continue
        if not overlaps(start, end, schedule.start_time, schedule.end_time):
            continue
        if participants.intersection(schedule.participants) or _shares_resource(resources, schedule.resources):
            conflicts.append(schedule)

    return ConflictResult(has_conflicts=bool(conflicts), conflicts=conflicts)


def detect_series_conflicts(
    windows: Iterable[Occurrence],
    participants: Iterable[str],
    resources: Iterable[ResourceBinding],
    schedules: Iterable[Schedule],
    exclude_id: str | None = None,
) -> ConflictResult:
    """Check every window of a recurring proposal; each colliding record is listed once."""
    participants = list(participants)
    resources = list(resources)
    schedules = list(schedules)

    seen: dict[str, Schedule] = {}
    for window in windows:
        result = detect_conflicts(window.start, window.end, participants, resources, schedules, exclude_id)
        for schedule in result.conflicts:
            seen.setdefault(schedule.id, schedule)

    merged = sorted(seen.values(), key=lambda s: as_utc(s.start_time))
    return ConflictResult(has_conflicts=bool(merged), conflicts=merged)


__all__ = ["ConflictResult", "detect_conflicts", "detect_series_conflicts", "is_sample_booking", "overlaps"]
