"""SyncJob state machine and runner.

A job moves ``pending -> running -> completed | failed | paused``.
Paused and failed jobs can be run again and resume from their persisted
checkpoint.  Completed jobs are final.

``SyncJobRunner`` persists status, progress and checkpoint through an
injected ``JobStore`` after every batch, and caps how many jobs run at
once.  Jobs started while the cap is reached wait (in ``pending``) for a
free slot.

Usage:
    from db_sync.sync.jobs import SyncJobRunner
    from db_sync.sync.store import InMemoryJobStore

    runner = SyncJobRunner(InMemoryJobStore(), connector=open_adapter)
    job = await runner.create_job("prod", "staging", [TableConfig(table_name="users")])
    job = await runner.run(job.id)
    print(job.status, job.progress.processed_rows)
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from db_sync.adapters.base import DatabaseClient
from db_sync.config.models import SyncSettings
from db_sync.errors import InvalidJobTransitionError, SyncFatalError
from db_sync.sync.engine import DEFAULT_BATCH_SIZE, CancellationToken, run_sync
from db_sync.sync.models import (
    Checkpoint,
    Direction,
    JobStatus,
    SyncJob,
    SyncLogEvent,
    SyncProgress,
    TableConfig,
)
from db_sync.sync.store import JobStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_JOBS = 3
DEFAULT_MAX_TABLES_PER_JOB = 50

# Resolves a connection reference (URL or profile name) to an open adapter
Connector = Callable[[str], Awaitable[DatabaseClient]]

ALLOWED_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.RUNNING},
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.PAUSED},
    JobStatus.PAUSED: {JobStatus.RUNNING},
    JobStatus.FAILED: {JobStatus.RUNNING},
    JobStatus.COMPLETED: set(),
}


def transition(job: SyncJob, status: JobStatus) -> None:
    """Move ``job`` to ``status``.

    Raises:
        InvalidJobTransitionError: If the move is not allowed.
    """
    if status not in ALLOWED_TRANSITIONS[job.status]:
        raise InvalidJobTransitionError(job.id, job.status.value, status.value)
    logger.info("Job %s: %s -> %s", job.id, job.status.value, status.value)
    job.status = status


class _JobObserver:
    """Persists progress and checkpoints of a running job."""

    def __init__(self, job: SyncJob, store: JobStore):
        self._job = job
        self._store = store

    async def on_progress(self, progress: SyncProgress) -> None:
        self._job.progress = progress.model_copy()
        await self._store.save(self._job)

    async def on_log(self, event: SyncLogEvent) -> None:
        level = {"warn": logging.WARNING, "error": logging.ERROR}.get(event.level, logging.INFO)
        logger.log(level, "Job %s: %s", self._job.id, event.message)

    async def on_checkpoint(self, checkpoint: Checkpoint) -> None:
        self._job.checkpoint = checkpoint
        await self._store.save(self._job)


class SyncJobRunner:
    """Runs sync jobs with a concurrency cap.

    Args:
        store: Where jobs are persisted.
        connector: Async callable opening an adapter for a connection
            reference.  Adapters are closed by the runner.
        max_concurrent_jobs: Jobs allowed to run at once.
        max_tables_per_job: Upper bound on enabled tables per job.
        batch_size: Rows per batch.
    """

    def __init__(
        self,
        store: JobStore,
        connector: Connector,
        max_concurrent_jobs: int = DEFAULT_MAX_CONCURRENT_JOBS,
        max_tables_per_job: int = DEFAULT_MAX_TABLES_PER_JOB,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.store = store
        self._connector = connector
        self._max_tables_per_job = max_tables_per_job
        self._batch_size = batch_size
        self._slots = asyncio.Semaphore(max_concurrent_jobs)
        self._tokens: dict[str, CancellationToken] = {}
        self._waiting = 0

    @classmethod
    def from_config(
        cls,
        store: JobStore,
        connector: Connector,
        settings: SyncSettings,
        batch_size: int | None = None,
    ) -> "SyncJobRunner":
        """Build a runner from the ``[sync]`` section; ``batch_size`` overrides it."""
        return cls(
            store,
            connector,
            max_concurrent_jobs=settings.max_concurrent_jobs,
            max_tables_per_job=settings.max_tables_per_job,
            batch_size=batch_size or settings.batch_size,
        )

    @property
    def running_jobs(self) -> list[str]:
        return list(self._tokens)

    @property
    def waiting_jobs(self) -> int:
        """Jobs queued for a free slot."""
        return self._waiting

    async def create_job(
        self,
        source: str,
        target: str,
        tables: list[TableConfig],
        direction: Direction = Direction.ONE_WAY,
    ) -> SyncJob:
        """Create and persist a pending job.

        Raises:
            ValueError: If no table is enabled or there are too many.
        """
        job = SyncJob(source=source, target=target, direction=direction, tables=tables)
        self._check_tables(job)
        job.progress.total_tables = len(job.enabled_tables)
        await self.store.save(job)
        logger.info("Created job %s (%d tables)", job.id, len(job.enabled_tables))
        return job

    def _check_tables(self, job: SyncJob) -> None:
        count = len(job.enabled_tables)
        if count == 0:
            raise ValueError("A sync job needs at least one enabled table")
        if count > self._max_tables_per_job:
            raise ValueError(
                f"A sync job can include at most {self._max_tables_per_job} tables "
                f"(got {count})"
            )

    async def run(self, job_id: str) -> SyncJob:
        """Run (or resume) a job to completion, failure or pause.

        Waits for a free slot when ``max_concurrent_jobs`` jobs are running.

        Returns:
            The job in its final state for this run.

        Raises:
            InvalidJobTransitionError: If the job cannot be started from its
                current status (e.g. already completed).
            JobNotFoundError: If the job does not exist.
        """
        job = await self.store.get(job_id)
        if JobStatus.RUNNING not in ALLOWED_TRANSITIONS[job.status]:
            raise InvalidJobTransitionError(job.id, job.status.value, JobStatus.RUNNING.value)

        self._waiting += 1
        try:
            await self._slots.acquire()
        finally:
            self._waiting -= 1

        try:
            return await self._run_acquired(job_id)
        finally:
            self._slots.release()

    async def _run_acquired(self, job_id: str) -> SyncJob:
        job = await self.store.get(job_id)
        transition(job, JobStatus.RUNNING)
        job.started_at = datetime.now(timezone.utc)
        job.completed_at = None
        job.error = None
        await self.store.save(job)

        token = CancellationToken()
        self._tokens[job.id] = token
        adapters: list[DatabaseClient] = []
        try:
            self._check_tables(job)
            source = await self._connector(job.source)
            adapters.append(source)
            target = await self._connector(job.target)
            adapters.append(target)

            result = await run_sync(
                source,
                target,
                job.tables,
                direction=job.direction,
                checkpoint=job.checkpoint,
                batch_size=self._batch_size,
                observer=_JobObserver(job, self.store),
                cancel_token=token,
                estimated_rows=job.progress.total_rows or None,
            )
        except SyncFatalError as e:
            # Keep whatever checkpoint was last persisted
            job.checkpoint = e.checkpoint or job.checkpoint
            transition(job, JobStatus.FAILED)
            job.error = str(e)
        except Exception as e:
            logger.exception("Job %s failed to start", job.id)
            transition(job, JobStatus.FAILED)
            job.error = str(e)
        else:
            job.checkpoint = result.checkpoint
            job.progress = result.progress
            if result.paused:
                transition(job, JobStatus.PAUSED)
            elif result.errors:
                transition(job, JobStatus.FAILED)
                job.error = "; ".join(f"{e.table}: {e.message}" for e in result.errors)
            else:
                transition(job, JobStatus.COMPLETED)
                job.completed_at = datetime.now(timezone.utc)
        finally:
            self._tokens.pop(job.id, None)
            for adapter in adapters:
                await adapter.close()

        await self.store.save(job)
        return job

    def cancel(self, job_id: str) -> bool:
        """Ask a running job to pause after its current batch.

        Returns:
            False if the job is not running in this runner.
        """
        token = self._tokens.get(job_id)
        if token is None:
            return False
        token.cancel()
        logger.info("Cancellation requested for job %s", job_id)
        return True
