"""
Periodic triggering of sync passes.

Each integration runs on its own schedule: a cron expression in ``syncSchedule``
or, failing that, every ``syncFrequencyMinutes`` minutes.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Sequence

from croniter import croniter

from marketplace_sync.core.logging import audit_logger, get_logger
from marketplace_sync.core.time import as_utc, utcnow
from marketplace_sync.db.models import MarketplaceIntegration
from marketplace_sync.sync.models import IntegrationSettings, SyncResult

logger = get_logger(__name__)


def next_fire_time(
    schedule: Optional[str],
    after: datetime,
    default_interval_minutes: int = 60,
) -> datetime:
    """
    Next moment a sync should run, strictly after ``after``.

    Args:
        schedule: Cron expression ("*/15 * * * *") or a whole number of minutes ("30").
            Empty means every ``default_interval_minutes``.
        after: Reference time (naive values are treated as UTC)

    Raises:
        ValueError: If the schedule is neither a valid cron expression nor a positive interval
    """
    after = as_utc(after)
    schedule = (schedule or "").strip()

    if not schedule:
        return after + timedelta(minutes=default_interval_minutes)

    if schedule.isdigit():
        minutes = int(schedule)
        if minutes <= 0:
            raise ValueError(f"Invalid sync interval: {schedule!r}")
        return after + timedelta(minutes=minutes)

    if not croniter.is_valid(schedule):
        raise ValueError(f"Invalid sync schedule: {schedule!r}")
    return croniter(schedule, after).get_next(datetime)


class SyncScheduler:
    """
    Starts passes for due integrations, concurrently across integrations.

    At most one pass per integration id is in flight; an integration that is still
    running when it becomes due again is skipped for that tick.
    """

    def __init__(
        self,
        load_integrations: Callable[[], Sequence[MarketplaceIntegration]],
        run_sync: Callable[[MarketplaceIntegration], Awaitable[SyncResult]],
        clock: Callable[[], datetime] = utcnow,
        poll_seconds: float = 60,
    ) -> None:
        self.load_integrations = load_integrations
        self.run_sync = run_sync
        self.clock = clock
        self.poll_seconds = poll_seconds
        self._in_flight: dict[str, asyncio.Task[None]] = {}
        self._last_attempt: dict[str, datetime] = {}

    def next_run(self, integration: MarketplaceIntegration) -> Optional[datetime]:
        """Next due time, or None when the integration has never run (due now)."""
        anchors = [
            as_utc(moment)
            for moment in (integration.last_sync_at, self._last_attempt.get(integration.id))
            if moment is not None
        ]
        if not anchors:
            return None

        settings = IntegrationSettings.from_raw(integration.settings)
        return next_fire_time(
            settings.sync_schedule,
            max(anchors),
            default_interval_minutes=settings.sync_frequency_minutes,
        )

    def is_due(self, integration: MarketplaceIntegration, at: datetime) -> bool:
        if not integration.is_active:
            return False
        try:
            next_run = self.next_run(integration)
        except ValueError as e:
            logger.warning(f"Skipping integration {integration.id}: {e}")
            return False
        return next_run is None or next_run <= at

    def in_flight(self) -> list[str]:
        return list(self._in_flight)

    def run_pending(self) -> list[asyncio.Task[None]]:
        """Start a pass for every due integration that is not already running."""
        current = self.clock()
        started: list[asyncio.Task[None]] = []

        try:
            integrations = self.load_integrations()
        except Exception as e:
            # Try again on the next tick
            audit_logger.log_error("load_integrations", e)
            return started

        for integration in integrations:
            if integration.id in self._in_flight or not self.is_due(integration, current):
                continue

            self._last_attempt[integration.id] = current
            task = asyncio.create_task(self._run(integration))
            self._in_flight[integration.id] = task
            started.append(task)

        if started:
            logger.info(f"Started {len(started)} scheduled sync passes")
        return started

    async def wait_idle(self) -> None:
        if self._in_flight:
            await asyncio.gather(*self._in_flight.values(), return_exceptions=True)

    async def run_forever(self, stop: Optional[asyncio.Event] = None) -> None:
        stop = stop or asyncio.Event()
        logger.info(f"Scheduler started (poll every {self.poll_seconds}s)")
        while not stop.is_set():
            self.run_pending()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_seconds)
            except asyncio.TimeoutError:
                pass
        await self.wait_idle()
        logger.info("Scheduler stopped")

    async def _run(self, integration: MarketplaceIntegration) -> None:
        try:
            result = await self.run_sync(integration)
            log = logger.info if result.success else logger.warning
            log(
                f"Scheduled sync finished: {result.invoices_created} invoices, "
                f"{len(result.errors)} errors",
                extra={"integration_id": integration.id},
            )
        except Exception as e:
            audit_logger.log_error("scheduled_sync", e, integration_id=integration.id)
        finally:
            self._in_flight.pop(integration.id, None)
