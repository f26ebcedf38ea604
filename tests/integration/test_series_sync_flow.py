"""
End-to-end flow: book a recurring series, push it, read it back, delete it.

Exercises the scheduler, store, recurrence expander, both syncers and the
orchestrator against one temporary database and an in-memory provider.
"""

from datetime import timedelta

import pytest

from calsync.models import EndType, Frequency, Origin, Recurrence
from calsync.sync.orchestrator import STATUS_OK, STATUS_SKIPPED


pytestmark = pytest.mark.integration


# ─────────────────────────────────────────────────────────────────────────────
# Series Round Trip
# ─────────────────────────────────────────────────────────────────────────────


class TestSeriesSyncFlow:

    @pytest.mark.asyncio
    async def test_weekly_series_pushed_once(
        self, store, manager, orchestrator, fake_provider, make_schedule, mock_user_id, clock
    ):
        created = manager.create_schedule(make_schedule(
            title="Weekly Sync",
            recurrence=Recurrence(Frequency.WEEKLY, end_type=EndType.COUNT, count=3),
        ))
        assert created["success"] is True
        assert created["occurrences"] == 3

        report = await orchestrator.run(mock_user_id)

        assert report.status == STATUS_OK
        assert report.outbound.added == 3
        assert report.inbound.added == 0
        assert report.inbound.skipped == 3
        assert sorted(body["start"]["dateTime"] for body, _ in fake_provider.created) == [
            "2026-03-02T10:00:00+00:00",
            "2026-03-09T10:00:00+00:00",
            "2026-03-16T10:00:00+00:00",
        ]
        series = store.list_series(created["schedule_id"])
        assert all(s.external_id for s in series)

        # Inside the cooldown nothing happens
        clock.advance(seconds=10)
        assert (await orchestrator.run(mock_user_id)).status == STATUS_SKIPPED

        clock.advance(minutes=5)
        again = await orchestrator.run(mock_user_id)
        assert again.outbound.added == 0
        assert again.inbound.added == 0
        assert len(store.list_for_user(mock_user_id)) == 3

    @pytest.mark.asyncio
    async def test_remote_event_imported_and_not_echoed(
        self, store, orchestrator, fake_provider, make_event, mock_user_id, now, clock
    ):
        fake_provider.events.append(make_event("g-remote", "Dentist", now.replace(hour=15)))

        first = await orchestrator.run(mock_user_id)
        clock.advance(minutes=5)
        second = await orchestrator.run(mock_user_id)

        imported = store.find_by_external_id("g-remote")
        assert imported.origin == Origin.EXTERNAL
        assert first.inbound.added == 1
        assert second.outbound.added == 0
        assert second.outbound.skipped == 1
        assert fake_provider.created == []

    def test_cascade_delete_removes_series(self, store, manager, make_schedule, mock_user_id):
        created = manager.create_schedule(make_schedule(
            title="Weekly Sync",
            recurrence=Recurrence(Frequency.WEEKLY, end_type=EndType.COUNT, count=3),
        ))
        child_id = created["occurrence_ids"][-1]

        result = manager.delete_schedule(child_id, cascade=True, actor=mock_user_id)

        assert result == {"success": True, "deleted": 3}
        assert store.list_for_user(mock_user_id) == []

    @pytest.mark.asyncio
    async def test_deleted_upstream_removed_on_request(
        self, store, orchestrator, fake_provider, make_event, mock_user_id, now, clock
    ):
        fake_provider.events.append(make_event("g-remote", "Dentist", now.replace(hour=15)))
        await orchestrator.run(mock_user_id)
        fake_provider.events.clear()

        clock.advance(minutes=5)
        report = await orchestrator.run(mock_user_id, detect_deletions=True)

        assert report.inbound.deleted == 1
        assert store.find_by_external_id("g-remote") is None

    @pytest.mark.asyncio
    async def test_missing_token_marks_reauth(self, orchestrator, tokens, mock_user_id):
        tokens.revoke(mock_user_id)

        report = await orchestrator.run(mock_user_id)

        assert report.needs_reauth is True
        assert orchestrator.state_store.get(mock_user_id).needs_reauth is True

    @pytest.mark.asyncio
    async def test_pushed_series_occurrences_keep_duration(
        self, store, manager, orchestrator, fake_provider, make_schedule, mock_user_id, now
    ):
        manager.create_schedule(make_schedule(
            title="Daily Standup",
            end_time=now.replace(hour=10, minute=15),
            recurrence=Recurrence(Frequency.WEEKDAYS, end_type=EndType.COUNT, count=5),
        ))

        await orchestrator.run(mock_user_id)

        assert len(fake_provider.created) == 5
        for schedule in store.list_for_user(mock_user_id):
            assert schedule.duration == timedelta(minutes=15)
