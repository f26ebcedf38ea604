"""
Tool: Recurrence Expander
Purpose: Turn a compact recurrence rule into concrete occurrence windows

Expansion is a pure function of its arguments. One step function advances the
cursor for every frequency; a single loop checks the end condition, emits
occurrences inside the query window and stops at the safety bound.

Usage:
    from calsync.calendar.recurrence import expand

    result = expand(start, end, rule, window_start, window_end)
    for occ in result.occurrences:
        print(occ.start, occ.end)

    # Materialize child records for a master
    children = materialize_series(master, horizon_end)

Weekday numbering: 0 = Sunday ... 6 = Saturday.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta

from dateutil.relativedelta import relativedelta

from calsync.errors import IntegrityWarning
from calsync.models import (
    EndType,
    Frequency,
    Occurrence,
    Recurrence,
    Schedule,
    as_utc,
    day_index,
    generate_id,
    utcnow,
)


logger = logging.getLogger(__name__)

MAX_OCCURRENCES = 100

SATURDAY = 6
SUNDAY = 0


@dataclass
class ExpansionResult:
    """Ordered occurrences plus the reason expansion stopped early, if any."""

    occurrences: list[Occurrence] = field(default_factory=list)
    warning: IntegrityWarning | None = None
    truncated: bool = False

    def __iter__(self):
        return iter(self.occurrences)

    def __len__(self) -> int:
        return len(self.occurrences)

    @property
    def starts(self) -> list[datetime]:
        return [occ.start for occ in self.occurrences]


@dataclass(frozen=True)
class _Cursor:
    start: datetime
    step: int = 0  # steps taken from the anchor
    emitted: int = 0  # series occurrences passed, inside the window or not


def _align_tz(value: datetime, like: datetime) -> datetime:
    """Give value the tz-awareness of like so the two compare."""
    if value.tzinfo is None and like.tzinfo is not None:
        return value.replace(tzinfo=like.tzinfo)
    if value.tzinfo is not None and like.tzinfo is None:
        return value.replace(tzinfo=None)
    return value


def _past_end(cursor: _Cursor, rule: Recurrence) -> bool:
    if rule.end_type == EndType.COUNT:
        return cursor.emitted >= (rule.count or 0)
    if rule.end_type == EndType.DATE and rule.end_date is not None:
        if isinstance(rule.end_date, datetime):
            return cursor.start > _align_tz(rule.end_date, cursor.start)
        # A bare date covers the whole day
        return cursor.start.date() > rule.end_date
    return False


def _step_custom(current: datetime, weekdays: tuple[int, ...], interval: int) -> datetime:
    day = day_index(current)
    jump = 7 - day + weekdays[0] + (interval - 1) * 7

    if day in weekdays:
        pos = weekdays.index(day)
        if pos < len(weekdays) - 1:
            return current + timedelta(days=weekdays[pos + 1] - day)
        return current + timedelta(days=jump)

    for offset in range(1, 7):
        if (day + offset) % 7 in weekdays:
            return current + timedelta(days=offset)
    return current + timedelta(days=jump)


def _next_start(cursor: _Cursor, rule: Recurrence, anchor: datetime) -> datetime | None:
    """
    Advance one step. Pure: the next start depends only on the arguments.

    Returns None when the frequency does not repeat.
    """
    current = cursor.start
    interval = max(rule.interval, 1)
    freq = rule.frequency

    if freq == Frequency.DAILY:
        return current + timedelta(days=interval)
    if freq == Frequency.WEEKLY:
        return current + timedelta(weeks=interval)
    # Month and year steps are taken from the anchor so a clamped
    # Jan 31 -> Feb 28 does not drift to the 28th for the rest of the series
    if freq == Frequency.MONTHLY:
        return anchor + relativedelta(months=(cursor.step + 1) * interval)
    if freq == Frequency.YEARLY:
        return anchor + relativedelta(years=(cursor.step + 1) * interval)
    if freq == Frequency.WEEKDAYS:
        nxt = current + timedelta(days=1)
        while day_index(nxt) in (SATURDAY, SUNDAY):
            nxt += timedelta(days=1)
        return nxt
    if freq == Frequency.CUSTOM and rule.weekdays:
        return _step_custom(current, rule.weekdays, interval)
    return None


def _occurrence_end(start: datetime, anchor_start: datetime, anchor_end: datetime, multi_day: bool) -> datetime:
    if not multi_day:
        return start + (anchor_end - anchor_start)
    day_delta = anchor_end.date() - anchor_start.date()
    end_clock: time = anchor_end.time()
    return datetime.combine(start.date() + day_delta, end_clock, tzinfo=start.tzinfo)


def expand(
    anchor_start: datetime,
    anchor_end: datetime,
    rule: Recurrence | None,
    query_start: datetime,
    query_end: datetime,
    *,
    multi_day: bool = False,
    max_occurrences: int = MAX_OCCURRENCES,
) -> ExpansionResult:
    """
    Expand a rule into occurrences starting inside [query_start, query_end).
    Naive datetimes are taken to be UTC when compared with aware ones.

    Args:
        anchor_start: Start of the master (the series' first occurrence)
        anchor_end: End of the master
        rule: Recurrence rule; None or frequency none yields the anchor alone
        query_start: Inclusive window start
        query_end: Exclusive window end
        multi_day: Preserve the anchor's day delta and end clock time
        max_occurrences: Safety bound on emitted occurrences

    Returns:
        ExpansionResult with ordered occurrences. An empty custom weekday set
        produces no occurrences and carries an IntegrityWarning.
    """
    result = ExpansionResult()
    rule = rule or Recurrence()

    if rule.frequency == Frequency.CUSTOM and not rule.weekdays:
        logger.warning("Custom recurrence anchored at %s has no weekdays, skipping series", anchor_start)
        result.warning = IntegrityWarning("Custom recurrence requires at least one weekday")
        return result

    start = anchor_start
    if rule.frequency == Frequency.CUSTOM:
        for _ in range(7):
            if day_index(start) in rule.weekdays:
                break
            start += timedelta(days=1)

    cursor = _Cursor(start=start)
    window_start, window_end = as_utc(query_start), as_utc(query_end)

    while as_utc(cursor.start) < window_end and not _past_end(cursor, rule):
        if as_utc(cursor.start) >= window_start:
            if len(result.occurrences) >= max_occurrences:
                result.truncated = True
                logger.info("Expansion from %s hit the %d occurrence bound", anchor_start, max_occurrences)
                break
            result.occurrences.append(
                Occurrence(
                    start=cursor.start,
                    end=_occurrence_end(cursor.start, anchor_start, anchor_end, multi_day),
                )
            )

        nxt = _next_start(cursor, rule, start)
        if nxt is None:
            break
        cursor = _Cursor(start=nxt, step=cursor.step + 1, emitted=cursor.emitted + 1)

    return result


def expand_schedule(
    schedule: Schedule,
    query_start: datetime,
    query_end: datetime,
    max_occurrences: int = MAX_OCCURRENCES,
) -> ExpansionResult:
    """Expand a stored schedule record; non-masters yield their own window."""
    result = expand(
        schedule.start_time,
        schedule.end_time,
        schedule.recurrence if schedule.is_master else None,
        query_start,
        query_end,
        multi_day=schedule.multi_day,
        max_occurrences=max_occurrences,
    )
    if result.warning is not None:
        result.warning.schedule_id = schedule.id
    return result


def _series_bound(rule: Recurrence, anchor: datetime, horizon_end: datetime) -> datetime:
    if rule.end_type == EndType.DATE and isinstance(rule.end_date, datetime):
        return _align_tz(rule.end_date, anchor) + timedelta(microseconds=1)
    if rule.end_type == EndType.DATE and isinstance(rule.end_date, date):
        return datetime.combine(rule.end_date + timedelta(days=1), time.min, tzinfo=anchor.tzinfo)
    if rule.end_type == EndType.COUNT:
        # No single step is longer than interval years
        steps = min(rule.count or 1, MAX_OCCURRENCES)
        return anchor + relativedelta(years=steps * rule.interval + 1)
    return horizon_end


def materialize_series(
    master: Schedule,
    horizon_end: datetime | None = None,
    max_occurrences: int = MAX_OCCURRENCES,
) -> tuple[list[Schedule], ExpansionResult]:
    """
    Build the occurrence records that accompany a master.

    The first occurrence is the master itself; every later occurrence becomes a
    non-recurring record pointing back through original_id.

    Args:
        master: Recurring master schedule
        horizon_end: Upper bound for never-ending series (default one year)
        max_occurrences: Safety bound, counting the master

    Returns:
        (children, expansion) - children excludes the master
    """
    if horizon_end is None:
        horizon_end = master.start_time + timedelta(days=365)

    expansion = expand(
        master.start_time,
        master.end_time,
        master.recurrence,
        master.start_time,
        _series_bound(master.recurrence or Recurrence(), master.start_time, horizon_end),
        multi_day=master.multi_day,
        max_occurrences=max_occurrences,
    )
    if expansion.warning is not None:
        expansion.warning.schedule_id = master.id
        return [], expansion

    now = utcnow()
    children = [
        replace(
            master,
            id=generate_id(),
            start_time=occ.start,
            end_time=occ.end,
            recurrence=None,
            original_id=master.id,
            external_id=None,
            participants=list(master.participants),
            resources=list(master.resources),
            reminders=list(master.reminders),
            created_at=now,
            updated_at=None,
            updated_by=None,
        )
        for occ in expansion.occurrences[1:]
    ]
    return children, expansion


__all__ = ["ExpansionResult", "MAX_OCCURRENCES", "expand", "expand_schedule", "materialize_series"]
