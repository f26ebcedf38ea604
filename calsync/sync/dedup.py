"""
Tool: Dedup Keys
Purpose: Heuristic identity keys shared by the outbound and inbound syncers

Usage:
    from calsync.sync.dedup import outbound_key, times_match

    seen = {outbound_key(e.title, e.start) for e in remote_events}
    same = times_match(local.start_time, remote.start)

No reliable local-to-remote id mapping exists for every record, so records
are matched on title and time. The keys can merge two distinct events that
share a title and start, and can miss a match when timestamps drift; both
syncers report this in SyncResult.limitations.
"""

from datetime import date, datetime, timedelta

from calsync.models import as_utc


HEURISTIC_KEY_LIMITATION = (
    "Deduplication matches on title and start time: distinct events with the same "
    "title and start are treated as one, and events whose times drifted are created again."
)


def normalize_title(title: str | None) -> str:
    return " ".join((title or "").split()).casefold()


def outbound_key(title: str | None, start: datetime, all_day: bool = False) -> tuple[str, str]:
    """(normalized title, ISO start); all-day entries key on the date."""
    if all_day:
        return normalize_title(title), start.date().isoformat()
    return normalize_title(title), as_utc(start).replace(microsecond=0).isoformat()


def tombstone_key(title: str | None, start: datetime) -> tuple[str, date]:
    """(normalized title, UTC date) used to detect remote deletions."""
    return normalize_title(title), as_utc(start).date()


def times_match(a: datetime, b: datetime, tolerance: timedelta = timedelta(seconds=60)) -> bool:
    return abs(as_utc(a) - as_utc(b)) <= tolerance


def matches_within(
    title_a: str | None,
    start_a: datetime,
    end_a: datetime,
    title_b: str | None,
    start_b: datetime,
    end_b: datetime,
    tolerance: timedelta = timedelta(seconds=60),
) -> bool:
    """Same normalized title, with start and end each within tolerance."""
    return (
        normalize_title(title_a) == normalize_title(title_b)
        and times_match(start_a, start_b, tolerance)
        and times_match(end_a, end_b, tolerance)
    )


__all__ = [
    "HEURISTIC_KEY_LIMITATION",
    "matches_within",
    "normalize_title",
    "outbound_key",
    "times_match",
    "tombstone_key",
]
