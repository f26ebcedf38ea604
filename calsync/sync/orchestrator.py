"""
Tool: Sync Orchestrator
Purpose: Run outbound and inbound sync per user with cooldown and isolation

Per run:
    - skip when the user's last attempt is inside the cooldown (unless forced)
    - fetch a valid token; none means the user must re-authenticate
    - run outbound, then inbound, each under its own timeout
    - a failure in one direction is recorded and the other still runs
    - AuthExpiredError stops the run and marks the user needs_reauth

State lives in the SyncStateStore handed to the orchestrator.

Usage:
    python -m calsync.sync.orchestrator --user alice
    python -m calsync.sync.orchestrator --user alice --no-outbound --detect-deletions
    python -m calsync.sync.orchestrator --user alice --force --log-format json

Output:
    JSON run report
"""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from calsync.calendar.store import ScheduleStore
from calsync.config import CalsyncConfig, load_config
from calsync.errors import AuthExpiredError
from calsync.logging_config import bind_sync_context, clear_sync_context, setup_logging
from calsync.models import SyncResult, utcnow
from calsync.providers.base import CalendarProvider
from calsync.providers.google_calendar import GoogleCalendarProvider
from calsync.sync.inbound import InboundSyncer
from calsync.sync.outbound import OutboundSyncer
from calsync.sync.state import SqliteSyncStateStore, SyncState, SyncStateStore
from calsync.sync.tokens import StoredTokenSource, TokenSource


logger = logging.getLogger(__name__)

# Run statuses
STATUS_OK = "ok"
STATUS_PARTIAL = "partial"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"
STATUS_NEEDS_REAUTH = "needs_reauth"

ProviderFactory = Callable[[str], CalendarProvider]


@dataclass
class SyncRunReport:
    user_id: str
    started_at: datetime
    finished_at: datetime | None = None
    status: str = STATUS_OK
    skipped_reason: str | None = None
    needs_reauth: bool = False
    outbound: SyncResult | None = None
    inbound: SyncResult | None = None
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "status": self.status,
            "skipped_reason": self.skipped_reason,
            "needs_reauth": self.needs_reauth,
            "outbound": self.outbound.to_dict() if self.outbound else None,
            "inbound": self.inbound.to_dict() if self.inbound else None,
            "errors": dict(self.errors),
        }


def backoff_minutes(consecutive_failures: int, cap_minutes: int = 30) -> int:
    """1, 2, 4 ... minutes after 1, 2, 3 ... failures in a row, capped."""
    if consecutive_failures <= 0:
        return 0
    return min(2 ** (consecutive_failures - 1), cap_minutes)


class SyncOrchestrator:
    """Sequences outbound and inbound passes for each user."""

    def __init__(
        self,
        store: ScheduleStore,
        tokens: TokenSource,
        provider_factory: ProviderFactory,
        state_store: SyncStateStore | None = None,
        config: CalsyncConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            store: Schedule store shared by both syncers
            tokens: Source of valid access tokens
            provider_factory: Builds a provider from an access token
            state_store: Per-user sync state (in memory when omitted)
            config: Settings; defaults when omitted
            clock: Returns the current aware datetime
        """
        self.store = store
        self.tokens = tokens
        self.provider_factory = provider_factory
        self.state_store = state_store if state_store is not None else SyncStateStore()
        self.config = config or CalsyncConfig()
        self.clock = clock

    @property
    def cooldown(self) -> timedelta:
        return timedelta(seconds=self.config.sync.cooldown_seconds)

    @property
    def direction_timeout(self) -> float:
        return self.config.sync.direction_timeout_seconds

    def horizon(self, now: datetime) -> tuple[datetime, datetime]:
        settings = self.config.sync
        return now - timedelta(days=settings.horizon_past_days), now + timedelta(days=settings.horizon_future_days)

    def _skip_reason(self, state: SyncState, now: datetime) -> str | None:
        if state.last_attempt_at and now - state.last_attempt_at < self.cooldown:
            return "cooldown"
        # A marker older than both timeouts is left over from a crashed run
        stale_after = timedelta(seconds=self.direction_timeout * 2) + self.cooldown
        if state.in_flight_since and now - state.in_flight_since < stale_after:
            return "in_flight"
        return None

    async def run(
        self,
        user_id: str,
        *,
        outbound: bool | None = None,
        inbound: bool | None = None,
        detect_deletions: bool | None = None,
        force: bool = False,
    ) -> SyncRunReport:
        """
        Run one sync for a user.

        Args:
            user_id: User to sync
            outbound: Push local schedules (config default when None)
            inbound: Import remote events (config default when None)
            detect_deletions: Run the tombstone pass (config default when None)
            force: Ignore cooldown and in-flight marker

        Returns:
            SyncRunReport; never raises for provider failures
        """
        settings = self.config.sync
        outbound = settings.outbound_enabled if outbound is None else outbound
        inbound = settings.inbound_enabled if inbound is None else inbound
        detect_deletions = settings.detect_deletions if detect_deletions is None else detect_deletions

        now = self.clock()
        report = SyncRunReport(user_id=user_id, started_at=now)
        state = self.state_store.get(user_id)

        if not force:
            reason = self._skip_reason(state, now)
            if reason:
                logger.debug("Sync for %s skipped: %s", user_id, reason)
                report.status = STATUS_SKIPPED
                report.skipped_reason = reason
                report.finished_at = now
                return report

        state.last_attempt_at = now
        state.in_flight_since = now
        self.state_store.save(state)

        bind_sync_context(user_id=user_id)
        try:
            await self._run_directions(report, user_id, now, outbound, inbound, detect_deletions)
        except Exception as e:
            logger.exception("Sync for %s failed before completing", user_id)
            report.errors["run"] = str(e) or type(e).__name__
        finally:
            clear_sync_context()
            report.finished_at = self.clock()
            self._finish(state, report)

        logger.info("Sync for %s finished: %s", user_id, report.status)
        return report

    async def _run_directions(
        self,
        report: SyncRunReport,
        user_id: str,
        now: datetime,
        outbound: bool,
        inbound: bool,
        detect_deletions: bool,
    ) -> None:
        token = await self.tokens.get_valid_access_token(user_id)
        if token is None:
            logger.warning("No valid token for %s, re-authentication required", user_id)
            report.needs_reauth = True
            report.errors["auth"] = "No valid access token"
            return

        time_min, time_max = self.horizon(now)
        provider = self.provider_factory(token)

        async with provider:
            passes = []
            if outbound:
                passes.append(("outbound", lambda: OutboundSyncer(self.store, provider, self.config).run(
                    user_id, time_min, time_max)))
            if inbound:
                passes.append(("inbound", lambda: InboundSyncer(self.store, provider, self.config).run(
                    user_id, time_min, time_max, detect_deletions=detect_deletions)))

            for direction, make_pass in passes:
                bind_sync_context(user_id=user_id, direction=direction)
                try:
                    result = await asyncio.wait_for(make_pass(), timeout=self.direction_timeout)
                except AuthExpiredError as e:
                    logger.warning("Credential rejected during %s sync for %s: %s", direction, user_id, e)
                    report.needs_reauth = True
                    report.errors[direction] = str(e)
                    return
                except asyncio.TimeoutError:
                    logger.error("%s sync for %s timed out after %.0fs", direction, user_id, self.direction_timeout)
                    report.errors[direction] = f"timed out after {self.direction_timeout:.0f}s"
                    continue
                except Exception as e:
                    logger.exception("%s sync for %s failed", direction, user_id)
                    report.errors[direction] = str(e) or type(e).__name__
                    continue
                setattr(report, direction, result)

    def _finish(self, state: SyncState, report: SyncRunReport) -> None:
        finished = report.finished_at or self.clock()
        completed = [r for r in (report.outbound, report.inbound) if r is not None]

        if report.needs_reauth:
            report.status = STATUS_NEEDS_REAUTH
        elif report.errors and completed:
            report.status = STATUS_PARTIAL
        elif report.errors:
            report.status = STATUS_FAILED
        else:
            report.status = STATUS_OK

        state.in_flight_since = None
        state.needs_reauth = report.needs_reauth
        if report.status == STATUS_OK:
            state.last_success_at = finished
            state.consecutive_failures = 0
            state.last_error = None
            state.next_allowed_at = None
        else:
            state.consecutive_failures += 1
            state.last_error = "; ".join(f"{k}: {v}" for k, v in report.errors.items())
            wait = backoff_minutes(state.consecutive_failures, self.config.sync.max_backoff_minutes)
            if report.needs_reauth:
                wait = self.config.sync.max_backoff_minutes
            state.next_allowed_at = finished + timedelta(minutes=wait)
        self.state_store.save(state)

    async def run_many(self, user_ids: Iterable[str], **kwargs) -> list[SyncRunReport]:
        """Run independent users concurrently."""
        return list(await asyncio.gather(*(self.run(user_id, **kwargs) for user_id in user_ids)))

    async def run_periodic(
        self,
        user_ids: Iterable[str],
        interval_seconds: float | None = None,
        stop_event: asyncio.Event | None = None,
        **kwargs,
    ) -> None:
        """
        Sync users until stop_event is set.

        Users that failed recently wait out their backoff (1, 2, 4 ... minutes,
        capped) before being retried.
        """
        user_ids = list(user_ids)
        interval = interval_seconds if interval_seconds is not None else self.config.sync.periodic_interval_seconds
        stop_event = stop_event or asyncio.Event()

        while not stop_event.is_set():
            now = self.clock()
            due = [
                user_id for user_id in user_ids
                if (state := self.state_store.get(user_id)).next_allowed_at is None
                or state.next_allowed_at <= now
            ]
            if due:
                reports = await self.run_many(due, **kwargs)
                for report in reports:
                    if report.status not in (STATUS_OK, STATUS_SKIPPED):
                        logger.warning("Periodic sync for %s: %s", report.user_id, report.status)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass


def main():
    parser = argparse.ArgumentParser(description="Sync schedules with Google Calendar")
    parser.add_argument("--user", required=True, help="User ID to sync")
    parser.add_argument("--db", help="Database path (default from config)")
    parser.add_argument("--config", help="Config file path")
    parser.add_argument("--no-outbound", action="store_true", help="Skip pushing local schedules")
    parser.add_argument("--no-inbound", action="store_true", help="Skip importing remote events")
    parser.add_argument("--detect-deletions", action="store_true", help="Remove imports deleted upstream")
    parser.add_argument("--force", action="store_true", help="Ignore the cooldown")
    parser.add_argument("--log-format", choices=["console", "json"], help="Log output format")

    args = parser.parse_args()

    setup_logging(json_output=(args.log_format == "json") if args.log_format else None)

    config = load_config(args.config)
    db_path = args.db or config.storage.resolved_db_path

    def provider_factory(token: str) -> CalendarProvider:
        return GoogleCalendarProvider(
            token,
            calendar_id=config.sync.calendar_id,
            max_retries=config.sync.max_retries,
            retry_base_delay=config.sync.retry_base_delay,
            server_error_delay=config.sync.server_error_delay,
            timezone_name=config.sync.timezone,
            api_base=config.sync.api_base_url,
        )

    orchestrator = SyncOrchestrator(
        store=ScheduleStore(db_path),
        tokens=StoredTokenSource(db_path, expiry_skew=timedelta(seconds=config.storage.token_expiry_skew_seconds)),
        provider_factory=provider_factory,
        state_store=SqliteSyncStateStore(db_path),
        config=config,
    )

    report = asyncio.run(orchestrator.run(
        args.user,
        outbound=False if args.no_outbound else None,
        inbound=False if args.no_inbound else None,
        detect_deletions=True if args.detect_deletions else None,
        force=args.force,
    ))

    print(json.dumps(report.to_dict(), indent=2, default=str))
    if report.status in (STATUS_FAILED, STATUS_NEEDS_REAUTH):
        sys.exit(1)


if __name__ == "__main__":
    main()
