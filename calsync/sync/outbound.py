"""
Tool: Outbound Syncer
Purpose: Push locally authored schedules to the external calendar

For one user and horizon: list the remote events, key them on
(normalized title, start), then create every local-origin schedule the user
takes part in or created whose key is not already present. Records imported
from the provider (origin=external) are never pushed back.

Usage:
    from calsync.sync.outbound import OutboundSyncer

    syncer = OutboundSyncer(store, provider)
    result = await syncer.run("alice", time_min, time_max)
    print(result.summary())
"""

import logging
import sqlite3
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from calsync.calendar.store import ScheduleStore
from calsync.config import CalsyncConfig
from calsync.errors import AuthExpiredError, ProviderError
from calsync.models import MeetingMode, Origin, ResourceType, Schedule, SyncResult, Visibility
from calsync.providers.base import CalendarProvider
from calsync.sync.dedup import HEURISTIC_KEY_LIMITATION, outbound_key


logger = logging.getLogger(__name__)


def all_day_end_date(schedule: Schedule) -> date:
    """Exclusive end date for an all-day event."""
    end = schedule.end_time
    if end.time() == time.min and end.date() > schedule.start_time.date():
        return end.date()
    return end.date() + timedelta(days=1)


def _with_zone(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class OutboundSyncer:
    """Creates remote events for local schedules missing from the provider."""

    def __init__(
        self,
        store: ScheduleStore,
        provider: CalendarProvider,
        config: CalsyncConfig | None = None,
    ):
        self.store = store
        self.provider = provider
        self.config = config or CalsyncConfig()

    def build_event(self, schedule: Schedule) -> tuple[dict[str, Any], bool]:
        """
        Translate a schedule into a Google Calendar event resource.

        Returns:
            (body, conference) - conference is True when the body carries
            conferenceData and needs conferenceDataVersion=1
        """
        body: dict[str, Any] = {
            "summary": schedule.title,
            "description": schedule.details or "",
        }

        if schedule.all_day:
            body["start"] = {"date": schedule.start_time.date().isoformat()}
            body["end"] = {"date": all_day_end_date(schedule).isoformat()}
        else:
            zone = self.config.sync.timezone
            body["start"] = {"dateTime": _with_zone(schedule.start_time), "timeZone": zone}
            body["end"] = {"dateTime": _with_zone(schedule.end_time), "timeZone": zone}

        emails = self.store.emails_for(schedule.participants)
        if emails:
            body["attendees"] = [{"email": email} for email in emails]

        rooms = [r.name or r.resource_id for r in schedule.resources if r.resource_type == ResourceType.ROOM]
        if rooms:
            body["location"] = ", ".join(rooms)

        conference = False
        if schedule.meet_link:
            body["conferenceData"] = {
                "conferenceSolution": {"key": {"type": "hangoutsMeet"}},
                "entryPoints": [
                    {"entryPointType": "video", "uri": schedule.meet_link, "label": schedule.meet_link}
                ],
            }
            conference = True
        elif schedule.meeting_mode == MeetingMode.ONLINE:
            body["conferenceData"] = {
                "createRequest": {
                    "requestId": f"calsync-{schedule.id}",
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            }
            conference = True

        if schedule.reminders:
            body["reminders"] = {
                "useDefault": False,
                "overrides": [{"method": "popup", "minutes": m} for m in schedule.reminders],
            }

        if schedule.visibility == Visibility.PRIVATE:
            body["visibility"] = "private"

        return body, conference

    def _record_created(self, schedule: Schedule, created: dict[str, Any], result: SyncResult) -> None:
        """Store the remote id and any generated meeting link on the local record."""
        changed = False
        if created.get("id") and not schedule.external_id:
            schedule.external_id = created["id"]
            changed = True
        link = created.get("hangoutLink")
        if link and not schedule.meet_link:
            schedule.meet_link = link
            changed = True
        if not changed:
            return
        try:
            self.store.update(schedule)
        except sqlite3.Error as e:
            logger.warning("Created %s remotely but could not store the remote id or link: %s", schedule.id, e)
            result.errors.append(f"{schedule.id}: remote id or link not stored: {e}")

    async def run(self, user_id: str, time_min: datetime, time_max: datetime) -> SyncResult:
        """
        Push the user's local schedules in [time_min, time_max).

        Raises:
            AuthExpiredError: the provider rejected the credential
            ProviderError: the remote listing failed after retries
        """
        result = SyncResult(direction="outbound", limitations=[HEURISTIC_KEY_LIMITATION])

        remote = await self.provider.list_events(time_min, time_max)
        present = {outbound_key(e.title, e.start_time, e.all_day) for e in remote if not e.cancelled}

        candidates = self.store.list_between(time_min, time_max, involving=user_id)
        logger.info("Outbound for %s: %d remote event(s), %d local candidate(s)", user_id, len(present), len(candidates))

        for schedule in candidates:
            if schedule.origin == Origin.EXTERNAL:
                result.skipped += 1
                continue

            key = outbound_key(schedule.title, schedule.start_time, schedule.all_day)
            if key in present:
                result.skipped += 1
                continue

            body, conference = self.build_event(schedule)
            try:
                created = await self.provider.create_event(body, conference=conference)
            except AuthExpiredError:
                raise
            except ProviderError as e:
                logger.warning("Could not push %s (%s): %s", schedule.id, schedule.title, e)
                result.record_failure(f"{schedule.id}: {e}")
                continue

            present.add(key)
            result.added += 1
            self._record_created(schedule, created, result)

        logger.info("Outbound for %s: %s", user_id, result.summary())
        return result


__all__ = ["OutboundSyncer", "all_day_end_date"]
