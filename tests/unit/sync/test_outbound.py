"""Tests for calsync/sync/outbound.py

Key invariants:
- Records imported from the provider are never pushed back
- A local record already present remotely (same title and start) is skipped
- A failed create is counted and the run continues
- AuthExpiredError stops the pass
"""

from datetime import datetime, timedelta, timezone

import pytest

from calsync.errors import AuthExpiredError, RateLimitError
from calsync.models import MeetingMode, Origin, ResourceBinding, ResourceType, Visibility
from calsync.sync.outbound import OutboundSyncer, all_day_end_date


@pytest.fixture
def window(now):
    return now - timedelta(days=1), now + timedelta(days=7)


@pytest.fixture
def syncer(store, fake_provider):
    return OutboundSyncer(store, fake_provider)


# ─────────────────────────────────────────────────────────────────────────────
# Push Loop
# ─────────────────────────────────────────────────────────────────────────────


class TestOutboundRun:
    """Selecting and pushing local records."""

    @pytest.mark.asyncio
    async def test_pushes_local_schedule(self, store, syncer, fake_provider, make_schedule, mock_user_id, window):
        schedule = store.insert(make_schedule())

        result = await syncer.run(mock_user_id, *window)

        assert result.added == 1
        assert result.failed == 0
        assert len(fake_provider.created) == 1
        assert fake_provider.created[0][0]["summary"] == "Team Sync"
        assert store.get(schedule.id).external_id == "evt-1"

    @pytest.mark.asyncio
    async def test_never_pushes_imported_records(self, store, syncer, fake_provider, make_schedule, mock_user_id, window):
        store.insert(make_schedule(origin=Origin.EXTERNAL, external_id="g-1"))

        result = await syncer.run(mock_user_id, *window)

        assert fake_provider.created == []
        assert result.added == 0
        assert result.skipped == 1

    @pytest.mark.asyncio
    async def test_skips_when_remote_has_same_title_and_start(
        self, store, syncer, fake_provider, make_schedule, make_event, mock_user_id, window, now
    ):
        store.insert(make_schedule(title="Team   Sync"))
        fake_provider.events.append(make_event("g-1", "team sync", now.replace(hour=10)))

        result = await syncer.run(mock_user_id, *window)

        assert fake_provider.created == []
        assert result.skipped == 1

    @pytest.mark.asyncio
    async def test_second_run_pushes_nothing(self, store, syncer, fake_provider, make_schedule, mock_user_id, window):
        store.insert(make_schedule())

        await syncer.run(mock_user_id, *window)
        second = await syncer.run(mock_user_id, *window)

        assert second.added == 0
        assert second.skipped == 1
        assert len(fake_provider.created) == 1

    @pytest.mark.asyncio
    async def test_ignores_other_users_schedules(
        self, store, syncer, fake_provider, make_schedule, mock_user_id, other_user_id, window
    ):
        store.insert(make_schedule(participants=[other_user_id], created_by=other_user_id))

        result = await syncer.run(mock_user_id, *window)

        assert result.added == 0
        assert fake_provider.created == []

    @pytest.mark.asyncio
    async def test_failed_create_continues(self, store, syncer, fake_provider, make_schedule, mock_user_id, window, now):
        store.insert(make_schedule(title="Blocked"))
        store.insert(make_schedule(title="Fine", start_time=now.replace(hour=14)))
        fake_provider.create_errors["Blocked"] = RateLimitError("Rate Limit Exceeded", 429)

        result = await syncer.run(mock_user_id, *window)

        assert result.added == 1
        assert result.failed == 1
        assert "Rate Limit Exceeded" in result.errors[0]

    @pytest.mark.asyncio
    async def test_auth_expired_propagates(self, store, syncer, fake_provider, make_schedule, mock_user_id, window):
        store.insert(make_schedule())
        fake_provider.create_errors["Team Sync"] = AuthExpiredError("Invalid Credentials", 401)

        with pytest.raises(AuthExpiredError):
            await syncer.run(mock_user_id, *window)

    @pytest.mark.asyncio
    async def test_online_meeting_stores_generated_link(
        self, store, syncer, fake_provider, make_schedule, mock_user_id, window
    ):
        schedule = store.insert(make_schedule(meeting_mode=MeetingMode.ONLINE))

        await syncer.run(mock_user_id, *window)

        body, conference = fake_provider.created[0]
        assert conference is True
        assert body["conferenceData"]["createRequest"]["requestId"] == f"calsync-{schedule.id}"
        assert store.get(schedule.id).meet_link == "https://meet.google.com/fake-evt-1"

    @pytest.mark.asyncio
    async def test_reports_heuristic_limitation(self, syncer, mock_user_id, window):
        result = await syncer.run(mock_user_id, *window)

        assert result.limitations
        assert "title and start" in result.limitations[0]


# ─────────────────────────────────────────────────────────────────────────────
# Event Body
# ─────────────────────────────────────────────────────────────────────────────


class TestBuildEvent:
    """Schedule to event resource translation."""

    def test_timed_event(self, syncer, make_schedule):
        body, conference = syncer.build_event(make_schedule(details="Agenda"))

        assert body["summary"] == "Team Sync"
        assert body["description"] == "Agenda"
        assert body["start"] == {"dateTime": "2026-03-02T10:00:00+00:00", "timeZone": "UTC"}
        assert body["end"]["dateTime"] == "2026-03-02T11:00:00+00:00"
        assert conference is False
        assert "conferenceData" not in body

    def test_all_day_end_is_exclusive(self, syncer, make_schedule, now):
        schedule = make_schedule(
            all_day=True,
            start_time=now.replace(hour=0),
            end_time=now.replace(hour=0),
        )

        body, _ = syncer.build_event(schedule)

        assert body["start"] == {"date": "2026-03-02"}
        assert body["end"] == {"date": "2026-03-03"}

    def test_all_day_ending_at_midnight_keeps_date(self, make_schedule):
        schedule = make_schedule(
            all_day=True,
            start_time=datetime(2026, 3, 2, tzinfo=timezone.utc),
            end_time=datetime(2026, 3, 4, tzinfo=timezone.utc),
        )

        assert all_day_end_date(schedule).isoformat() == "2026-03-04"

    def test_attendees_rooms_and_reminders(self, store, syncer, make_schedule, mock_user_id, other_user_id):
        store.upsert_user(mock_user_id, "alice@example.com")
        store.upsert_user(other_user_id, "bob@example.com")
        schedule = make_schedule(
            participants=[mock_user_id, other_user_id, "user_nobody"],
            resources=[
                ResourceBinding("room-1", ResourceType.ROOM, "Board Room"),
                ResourceBinding("van-2", ResourceType.VEHICLE, "Van"),
            ],
            reminders=[30, 5],
            visibility=Visibility.PRIVATE,
        )

        body, _ = syncer.build_event(schedule)

        assert body["attendees"] == [{"email": "alice@example.com"}, {"email": "bob@example.com"}]
        assert body["location"] == "Board Room"
        assert body["reminders"]["overrides"] == [
            {"method": "popup", "minutes": 30},
            {"method": "popup", "minutes": 5},
        ]
        assert body["visibility"] == "private"

    def test_existing_meet_link_is_reused(self, syncer, make_schedule):
        body, conference = syncer.build_event(make_schedule(meet_link="https://meet.google.com/abc"))

        assert conference is True
        assert body["conferenceData"]["entryPoints"][0]["uri"] == "https://meet.google.com/abc"
        assert "createRequest" not in body["conferenceData"]
