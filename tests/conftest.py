"""Shared test fixtures for calsync tests.

This module provides common fixtures used across all test modules:
- Database isolation with temporary files
- Standard user ids and a fixed clock
- Schedule and remote event builders
- An in-memory calendar provider

Usage:
    def test_something(store, make_schedule):
        store.insert(make_schedule(title="Standup"))
"""

import os
import tempfile
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from calsync.calendar.store import ScheduleStore
from calsync.errors import ProviderError
from calsync.models import Schedule
from calsync.providers.base import CalendarProvider, RemoteEvent


# ─────────────────────────────────────────────────────────────────────────────
# Path Constants
# ─────────────────────────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).parent.parent
PACKAGE_DIR = PROJECT_ROOT / "calsync"


# ─────────────────────────────────────────────────────────────────────────────
# Database Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def temp_db() -> Generator[Path, None, None]:
    """Create a temporary database file for testing.

    The database file is automatically deleted after the test completes.

    Yields:
        Path to the temporary database file
    """
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield db_path

    # Cleanup
    if db_path.exists():
        os.unlink(db_path)


@pytest.fixture
def store(temp_db: Path) -> ScheduleStore:
    """Schedule store on the temporary database."""
    return ScheduleStore(temp_db)


# ─────────────────────────────────────────────────────────────────────────────
# User / Clock Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def mock_user_id() -> str:
    """Standard test user ID."""
    return "user_alice"


@pytest.fixture
def other_user_id() -> str:
    return "user_bob"


@pytest.fixture
def now() -> datetime:
    """Fixed 'current' time: Monday 2026-03-02 09:00 UTC."""
    return datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# ─────────────────────────────────────────────────────────────────────────────
# Schedule Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def make_schedule(mock_user_id: str, now: datetime):
    """Factory for schedules; defaults to a one hour meeting at 10:00 today."""

    def _make(**overrides: Any) -> Schedule:
        start = overrides.pop("start_time", now.replace(hour=10))
        end = overrides.pop("end_time", start + timedelta(hours=1))
        fields = {
            "title": "Team Sync",
            "participants": [mock_user_id],
            "created_by": mock_user_id,
        }
        fields.update(overrides)
        return Schedule(start_time=start, end_time=end, **fields)

    return _make


@pytest.fixture
def make_event():
    """Factory for Google Calendar event resources."""

    def _make(
        event_id: str,
        title: str,
        start: datetime,
        end: datetime | None = None,
        all_day: bool = False,
        status: str = "confirmed",
        **extra: Any,
    ) -> dict[str, Any]:
        end = end or start + timedelta(hours=1)
        if all_day:
            times = {"start": {"date": start.date().isoformat()}, "end": {"date": end.date().isoformat()}}
        else:
            times = {"start": {"dateTime": start.isoformat()}, "end": {"dateTime": end.isoformat()}}
        return {"id": event_id, "summary": title, "status": status, **times, **extra}

    return _make


# ─────────────────────────────────────────────────────────────────────────────
# Provider Fixtures
# ─────────────────────────────────────────────────────────────────────────────


class FakeProvider(CalendarProvider):
    """In-memory provider holding Google-shaped event resources."""

    def __init__(self, events: list[dict[str, Any]] | None = None):
        self.events: list[dict[str, Any]] = list(events or [])
        self.created: list[tuple[dict[str, Any], bool]] = []
        self.create_errors: dict[str, Exception] = {}
        self.list_error: Exception | None = None
        self.list_calls = 0
        self.closed = False
        self._next_id = 1

    @property
    def provider_name(self) -> str:
        return "fake"

    async def list_events(self, time_min, time_max, include_cancelled=False) -> list[RemoteEvent]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        found = []
        for data in self.events:
            event = RemoteEvent.from_google(data)
            if event.cancelled and not include_cancelled:
                continue
            if event.end_time > time_min and event.start_time < time_max:
                found.append(event)
        return found

    async def create_event(self, body, conference=False) -> dict[str, Any]:
        error = self.create_errors.get(body.get("summary"))
        if error is not None:
            raise error
        self.created.append((body, conference))
        created = {**body, "id": f"evt-{self._next_id}", "status": "confirmed"}
        self._next_id += 1
        if conference and "createRequest" in body.get("conferenceData", {}):
            created["hangoutLink"] = f"https://meet.google.com/fake-{created['id']}"
        self.events.append(created)
        return created

    async def update_event(self, event_id, body) -> dict[str, Any]:
        for data in self.events:
            if data["id"] == event_id:
                data.update(body)
                return data
        raise ProviderError(f"Not found: {event_id}", 404)

    async def delete_event(self, event_id) -> None:
        self.events = [e for e in self.events if e["id"] != event_id]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()
