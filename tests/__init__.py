"""calsync Test Suite

Test organization:
- unit/: Unit tests for individual modules
  - calendar/: Recurrence, conflicts, store, scheduler
  - sync/: Outbound, inbound, orchestrator, tokens, state, dedup keys
  - providers/: Google Calendar client (httpx MockTransport)
  - core/: Config, models, notifications, logging
- integration/: Series booking through sync and back

Running tests:
    # All tests
    pytest

    # Specific module
    pytest tests/unit/sync/

    # Excluding end-to-end flows
    pytest -m "not integration"
"""
