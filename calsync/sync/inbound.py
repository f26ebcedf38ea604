"""
Tool: Inbound Syncer
Purpose: Import external calendar events as local schedules

For one user and horizon: fetch remote events (cancelled ones dropped), skip
every event that already has a local counterpart, and insert the rest as
origin=external records. Optionally delete imported records whose event is
gone upstream (tombstone pass), and collapse duplicate imports inside the
horizon when inbound.collapse_duplicates is set (off by default); those
removals are counted in SyncResult.collapsed.

Matching order:
    1. exact external_id on any record of the user
    2. same title with start and end each within the tolerance (60 s default),
       against the user's records of any origin

Usage:
    from calsync.sync.inbound import InboundSyncer

    syncer = InboundSyncer(store, provider)
    result = await syncer.run("alice", time_min, time_max, detect_deletions=True)
"""

import logging
import sqlite3
from datetime import datetime, timedelta

from calsync.calendar.store import ScheduleStore
from calsync.config import CalsyncConfig
from calsync.models import MeetingMode, Origin, Schedule, SyncResult, as_utc
from calsync.providers.base import CalendarProvider, RemoteEvent
from calsync.sync.dedup import HEURISTIC_KEY_LIMITATION, matches_within, normalize_title, tombstone_key


logger = logging.getLogger(__name__)


class InboundSyncer:
    """Pulls provider events into the local store without duplicating them."""

    def __init__(
        self,
        store: ScheduleStore,
        provider: CalendarProvider,
        config: CalsyncConfig | None = None,
    ):
        self.store = store
        self.provider = provider
        self.config = config or CalsyncConfig()

    @property
    def tolerance(self) -> timedelta:
        return timedelta(seconds=self.config.inbound.match_tolerance_seconds)

    def title_for(self, event: RemoteEvent) -> str:
        return event.title.strip() or self.config.inbound.placeholder_title

    def find_match(self, event: RemoteEvent, user_id: str, local: list[Schedule]) -> Schedule | None:
        """Local record already representing the event, if any."""
        if event.event_id:
            for schedule in local:
                if schedule.external_id == event.event_id:
                    return schedule
            found = self.store.find_by_external_id(event.event_id, involving=user_id)
            if found is not None:
                return found

        title = self.title_for(event)
        for schedule in local:
            if matches_within(
                schedule.title, schedule.start_time, schedule.end_time,
                title, event.start_time, event.end_time,
                self.tolerance,
            ):
                return schedule
        return None

    def to_schedule(self, event: RemoteEvent, user_id: str) -> Schedule:
        return Schedule(
            title=self.title_for(event),
            type=self.config.inbound.imported_type,
            details=event.description,
            start_time=event.start_time,
            end_time=event.end_time,
            all_day=event.all_day,
            multi_day=(event.end_time - event.start_time) > timedelta(days=1),
            participants=[user_id],
            resources=[],
            origin=Origin.EXTERNAL,
            external_id=event.event_id or None,
            meeting_mode=MeetingMode.ONLINE if event.meet_link else MeetingMode.IN_PERSON,
            meet_link=event.meet_link,
            created_by=user_id,
        )

    async def run(
        self,
        user_id: str,
        time_min: datetime,
        time_max: datetime,
        detect_deletions: bool = False,
    ) -> SyncResult:
        """
        Import the user's remote events in [time_min, time_max).

        Raises:
            AuthExpiredError: the provider rejected the credential
            ProviderError: the remote listing failed after retries
        """
        result = SyncResult(direction="inbound", limitations=[HEURISTIC_KEY_LIMITATION])

        remote = [e for e in await self.provider.list_events(time_min, time_max) if not e.cancelled]
        local = self.store.list_between(time_min, time_max, involving=user_id)
        logger.info("Inbound for %s: %d remote event(s), %d local record(s)", user_id, len(remote), len(local))

        for event in remote:
            if self.find_match(event, user_id, local) is not None:
                result.skipped += 1
                continue

            record = self.to_schedule(event, user_id)
            try:
                self.store.insert(record)
            except sqlite3.Error as e:
                logger.warning("Could not import event %s: %s", event.event_id, e)
                result.record_failure(f"{event.event_id}: {e}")
                continue

            local.append(record)
            result.added += 1

        if detect_deletions:
            result.deleted += self.remove_tombstones(user_id, time_min, time_max, remote)

        if self.config.inbound.collapse_duplicates:
            result.collapsed += self.collapse_duplicates(user_id, time_min, time_max)

        logger.info("Inbound for %s: %s", user_id, result.summary())
        return result

    def remove_tombstones(
        self,
        user_id: str,
        time_min: datetime,
        time_max: datetime,
        remote: list[RemoteEvent],
    ) -> int:
        """Delete the user's imported records whose (title, date) is absent from the fetch."""
        present = {tombstone_key(self.title_for(e), e.start_time) for e in remote}
        imported = self.store.list_between(time_min, time_max, involving=user_id, origin=Origin.EXTERNAL)
        stale = [s for s in imported if tombstone_key(s.title, s.start_time) not in present]
        if not stale:
            return 0

        for schedule in stale:
            logger.info("Event gone upstream, removing %s (%s on %s)", schedule.id, schedule.title, schedule.start_time.date())
        return self.store.delete_many(s.id for s in stale)

    def collapse_duplicates(self, user_id: str, time_min: datetime, time_max: datetime) -> int:
        """
        Remove later copies among the user's imported records in [time_min, time_max).

        Two records are copies when they share an external_id, or the same
        normalized title, start and end. The oldest record survives.
        """
        imported = sorted(
            self.store.list_between(time_min, time_max, involving=user_id, origin=Origin.EXTERNAL),
            key=lambda s: s.created_at,
        )
        seen_ids: set[str] = set()
        seen_keys: set[tuple] = set()
        duplicates = []

        for schedule in imported:
            key = (normalize_title(schedule.title), as_utc(schedule.start_time), as_utc(schedule.end_time))
            if (schedule.external_id and schedule.external_id in seen_ids) or key in seen_keys:
                duplicates.append(schedule.id)
                continue
            if schedule.external_id:
                seen_ids.add(schedule.external_id)
            seen_keys.add(key)

        if duplicates:
            logger.info("Collapsing %d duplicate import(s) for %s", len(duplicates), user_id)
        return self.store.delete_many(duplicates)


__all__ = ["InboundSyncer"]
