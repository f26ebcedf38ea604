"""
Integration test fixtures for calsync.

Provides fixtures specific to integration testing:
- A schedule manager and an orchestrator sharing one database
- A token store with a valid token for the standard user
- A fixed clock the test can move forward
"""

from datetime import timedelta

import pytest

from calsync.calendar.scheduler import ScheduleManager
from calsync.config import CalsyncConfig
from calsync.sync.orchestrator import SyncOrchestrator
from calsync.sync.state import SqliteSyncStateStore
from calsync.sync.tokens import StoredTokenSource


class MovableClock:
    def __init__(self, start):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock(now):
    return MovableClock(now)


@pytest.fixture
def manager(store):
    return ScheduleManager(store)


@pytest.fixture
def tokens(temp_db, mock_user_id):
    source = StoredTokenSource(temp_db)
    source.save_token(mock_user_id, "ya29.integration", None)
    return source


@pytest.fixture
def orchestrator(store, tokens, fake_provider, temp_db, clock):
    return SyncOrchestrator(
        store=store,
        tokens=tokens,
        provider_factory=lambda token: fake_provider,
        state_store=SqliteSyncStateStore(temp_db),
        config=CalsyncConfig(),
        clock=clock,
    )
