"""Cron-driven re-execution of sync jobs.

One periodic scan (default every 60 seconds) fires every enabled schedule
whose ``next_run_at`` has passed.  There are no per-schedule timers.

Firing a schedule:
1. ``last_run_status = running``
2. a new ``SyncJob`` is created from the schedule's template and run
3. ``last_run_status = success | failed``
4. ``next_run_at`` is recomputed from the current time, so windows missed
   while the job ran (or the process was down) are skipped, not backfilled

When the runner's concurrency cap is reached, a fired job waits for a
free slot.  A schedule that is already waiting or running is not fired
again, so at most one run per schedule is ever queued.

Usage:
    from db_sync.scheduler.scheduler import Scheduler

    scheduler = Scheduler(InMemoryScheduleStore(), runner)
    await scheduler.create(
        name="nightly users",
        source="prod",
        target="staging",
        tables=[TableConfig(table_name="users")],
        cron_expression="0 2 * * *",
    )
    scheduler.start()
    ...
    await scheduler.stop()
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from db_sync.config.models import SchedulerSettings
from db_sync.errors import JobNotFoundError
from db_sync.scheduler.cron import CronExpression, get_zone, next_run
from db_sync.sync.jobs import SyncJobRunner
from db_sync.sync.models import Direction, JobStatus, SyncJob, TableConfig
from db_sync.sync.store import ScheduleStore

logger = logging.getLogger(__name__)

DEFAULT_SCAN_INTERVAL = 60.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class ScheduledJob(BaseModel):
    """A sync job template plus its cron schedule."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    source: str
    target: str
    tables: list[TableConfig] = Field(default_factory=list)
    direction: Direction = Direction.ONE_WAY
    cron_expression: str
    timezone: str = "UTC"
    enabled: bool = True
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    last_run_status: RunStatus | None = None
    last_run_job_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("cron_expression")
    @classmethod
    def _check_cron(cls, value: str) -> str:
        return CronExpression.parse(value).expression

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        get_zone(value)
        return value


# Fields ``Scheduler.update`` may change
_UPDATABLE = {"name", "source", "target", "tables", "direction", "cron_expression", "timezone"}


class Scheduler:
    """Fires sync jobs on cron schedules.

    Args:
        store: Schedule persistence.
        runner: Runs the jobs; its concurrency cap applies.
        scan_interval: Seconds between scans when started with ``start()``.
        default_timezone: Timezone of schedules created without one.
        clock: Returns the current time (aware UTC).  Injectable for tests.
    """

    def __init__(
        self,
        store: ScheduleStore,
        runner: SyncJobRunner,
        scan_interval: float = DEFAULT_SCAN_INTERVAL,
        default_timezone: str = "UTC",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.runner = runner
        self.scan_interval = scan_interval
        self.default_timezone = get_zone(default_timezone).key
        self._clock = clock
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._loop_task: asyncio.Task | None = None

    @classmethod
    def from_config(
        cls,
        store: ScheduleStore,
        runner: SyncJobRunner,
        settings: SchedulerSettings,
        **kwargs,
    ) -> "Scheduler":
        """Build a scheduler from the ``[scheduler]`` section."""
        return cls(
            store,
            runner,
            scan_interval=settings.scan_interval_seconds,
            default_timezone=settings.default_timezone,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Schedule management
    # ------------------------------------------------------------------

    def _next_run(self, schedule: ScheduledJob) -> datetime | None:
        if not schedule.enabled:
            return None
        return next_run(schedule.cron_expression, self._clock(), schedule.timezone)

    async def create(
        self,
        name: str,
        source: str,
        target: str,
        tables: list[TableConfig],
        cron_expression: str,
        timezone: str | None = None,
        direction: Direction = Direction.ONE_WAY,
        enabled: bool = True,
    ) -> ScheduledJob:
        """Create a schedule and arm it if enabled.

        Raises:
            pydantic.ValidationError: On an invalid cron expression or timezone.
        """
        schedule = ScheduledJob(
            name=name,
            source=source,
            target=target,
            tables=tables,
            direction=direction,
            cron_expression=cron_expression,
            timezone=timezone or self.default_timezone,
            enabled=enabled,
        )
        schedule.next_run_at = self._next_run(schedule)
        await self.store.save(schedule)
        logger.info(
            "Created schedule %s '%s' (%s), next run %s",
            schedule.id,
            name,
            schedule.cron_expression,
            schedule.next_run_at,
        )
        return schedule

    async def update(self, schedule_id: str, **changes) -> ScheduledJob:
        """Change template or timing fields and re-arm.

        Raises:
            ValueError: If a field cannot be updated.
        """
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        schedule = await self.store.get(schedule_id)
        data = schedule.model_dump()
        data.update(changes)
        data["updated_at"] = self._clock()
        schedule = ScheduledJob.model_validate(data)
        schedule.next_run_at = self._next_run(schedule)
        await self.store.save(schedule)
        return schedule

    async def enable(self, schedule_id: str) -> ScheduledJob:
        schedule = await self.store.get(schedule_id)
        schedule.enabled = True
        schedule.next_run_at = self._next_run(schedule)
        schedule.updated_at = self._clock()
        await self.store.save(schedule)
        logger.info("Enabled schedule %s, next run %s", schedule_id, schedule.next_run_at)
        return schedule

    async def disable(self, schedule_id: str) -> ScheduledJob:
        """Disarm a schedule.  ``last_run_status`` is left as it is."""
        schedule = await self.store.get(schedule_id)
        schedule.enabled = False
        schedule.next_run_at = None
        schedule.updated_at = self._clock()
        await self.store.save(schedule)
        logger.info("Disabled schedule %s", schedule_id)
        return schedule

    async def delete(self, schedule_id: str) -> None:
        await self.store.delete(schedule_id)
        logger.info("Deleted schedule %s", schedule_id)

    async def get(self, schedule_id: str) -> ScheduledJob:
        return await self.store.get(schedule_id)

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    async def scan(self, now: datetime | None = None) -> list[str]:
        """Fire every enabled schedule that is due.

        Fired runs execute as background tasks; use ``wait_idle()`` to
        wait for them.

        Returns:
            Ids of the schedules fired by this scan.
        """
        now = now or self._clock()
        fired: list[str] = []
        for schedule in await self.store.list():
            if not schedule.enabled or schedule.next_run_at is None:
                continue
            if schedule.next_run_at > now:
                continue
            if schedule.id in self._in_flight:
                logger.debug("Schedule %s still running, not fired again", schedule.id)
                continue
            self._launch(schedule.id)
            fired.append(schedule.id)
        return fired

    async def trigger_now(self, schedule_id: str) -> bool:
        """Fire a schedule immediately, regardless of its next run time.

        Returns:
            False if the schedule is already waiting or running.
        """
        await self.store.get(schedule_id)
        if schedule_id in self._in_flight:
            return False
        self._launch(schedule_id)
        return True

    def _launch(self, schedule_id: str) -> None:
        self._in_flight.add(schedule_id)
        task = asyncio.create_task(self._fire(schedule_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fire(self, schedule_id: str) -> SyncJob | None:
        job: SyncJob | None = None
        try:
            schedule = await self.store.get(schedule_id)
            schedule.last_run_status = RunStatus.RUNNING
            schedule.last_run_at = self._clock()
            await self.store.save(schedule)
            logger.info("Firing schedule %s '%s'", schedule.id, schedule.name)

            status = RunStatus.FAILED
            try:
                job = await self.runner.create_job(
                    schedule.source, schedule.target, schedule.tables, schedule.direction
                )
                job = await self.runner.run(job.id)
                if job.status == JobStatus.COMPLETED:
                    status = RunStatus.SUCCESS
                else:
                    logger.warning(
                        "Scheduled job %s ended %s: %s", job.id, job.status.value, job.error
                    )
            except Exception:
                logger.exception("Schedule %s run failed", schedule_id)

            # Reload: the schedule may have been disabled or deleted while running
            try:
                schedule = await self.store.get(schedule_id)
            except JobNotFoundError:
                logger.info("Schedule %s was deleted during its run", schedule_id)
                return job
            schedule.last_run_status = status
            schedule.last_run_job_id = job.id if job else None
            schedule.next_run_at = self._next_run(schedule)
            schedule.updated_at = self._clock()
            await self.store.save(schedule)
            return job
        finally:
            self._in_flight.discard(schedule_id)

    async def wait_idle(self) -> None:
        """Wait for every fired run to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    # ------------------------------------------------------------------
    # Scan loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic scan loop on the running event loop."""
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._scan_loop())
            logger.info("Scheduler started (scan every %ss)", self.scan_interval)

    async def _scan_loop(self) -> None:
        while True:
            try:
                await self.scan()
            except Exception:
                logger.exception("Schedule scan failed")
            await asyncio.sleep(self.scan_interval)

    async def stop(self, wait: bool = True) -> None:
        """Stop scanning; optionally wait for runs already fired."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        if wait:
            await self.wait_idle()
        logger.info("Scheduler stopped")

    # Kept last: the method name would shadow the builtin in later annotations
    async def list(self) -> list[ScheduledJob]:
        return await self.store.list()
