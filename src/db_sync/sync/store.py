"""Job and schedule stores.

Components never keep job state in process-global maps; a store is
injected instead.  ``InMemoryJobStore`` is for tests and one-shot CLI
runs, ``JsonFileJobStore`` keeps one JSON file per job so an interrupted
job can be resumed by a later process.

Usage:
    from db_sync.sync.store import JsonFileJobStore

    store = JsonFileJobStore(Path.cwd() / ".db-sync" / "jobs")
    await store.save(job)
    job = await store.get(job.id)
"""

import os
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from db_sync.errors import JobNotFoundError
from db_sync.sync.models import SyncJob

if TYPE_CHECKING:
    from db_sync.scheduler.scheduler import ScheduledJob


class JobStore(Protocol):
    """Persistence for ``SyncJob`` records."""

    async def get(self, job_id: str) -> SyncJob:
        """Return the job or raise ``JobNotFoundError``."""
        ...

    async def save(self, job: SyncJob) -> None: ...

    async def list(self) -> list[SyncJob]: ...


class ScheduleStore(Protocol):
    """Persistence for ``ScheduledJob`` records."""

    async def get(self, schedule_id: str) -> "ScheduledJob": ...

    async def save(self, schedule: "ScheduledJob") -> None: ...

    async def delete(self, schedule_id: str) -> None: ...

    async def list(self) -> "list[ScheduledJob]": ...


class InMemoryJobStore:
    """Job store backed by a dict.  Returns copies so callers cannot mutate it."""

    def __init__(self) -> None:
        self._jobs: dict[str, SyncJob] = {}

    async def get(self, job_id: str) -> SyncJob:
        try:
            return self._jobs[job_id].model_copy(deep=True)
        except KeyError:
            raise JobNotFoundError(f"Job not found: {job_id}") from None

    async def save(self, job: SyncJob) -> None:
        self._jobs[job.id] = job.model_copy(deep=True)

    async def list(self) -> list[SyncJob]:
        return [job.model_copy(deep=True) for job in self._jobs.values()]


class JsonFileJobStore:
    """Job store writing ``<directory>/<job_id>.json``.

    Writes go to a temporary file first and are renamed into place, so a
    crash never leaves a half-written job file.
    """

    def __init__(self, directory: str | Path):
        self._directory = Path(directory)

    def _path(self, job_id: str) -> Path:
        return self._directory / f"{job_id}.json"

    async def get(self, job_id: str) -> SyncJob:
        path = self._path(job_id)
        if not path.exists():
            raise JobNotFoundError(f"Job not found: {job_id} ({path})")
        return SyncJob.model_validate_json(path.read_text())

    async def save(self, job: SyncJob) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._path(job.id)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(job.model_dump_json(indent=2))
        os.replace(tmp_path, path)

    async def list(self) -> list[SyncJob]:
        if not self._directory.exists():
            return []
        return [
            SyncJob.model_validate_json(path.read_text())
            for path in sorted(self._directory.glob("*.json"))
        ]


class InMemoryScheduleStore:
    """Schedule store backed by a dict."""

    def __init__(self) -> None:
        self._schedules: dict[str, "ScheduledJob"] = {}

    async def get(self, schedule_id: str) -> "ScheduledJob":
        try:
            return self._schedules[schedule_id].model_copy(deep=True)
        except KeyError:
            raise JobNotFoundError(f"Schedule not found: {schedule_id}") from None

    async def save(self, schedule: "ScheduledJob") -> None:
        self._schedules[schedule.id] = schedule.model_copy(deep=True)

    async def delete(self, schedule_id: str) -> None:
        if self._schedules.pop(schedule_id, None) is None:
            raise JobNotFoundError(f"Schedule not found: {schedule_id}")

    async def list(self) -> "list[ScheduledJob]":
        return [s.model_copy(deep=True) for s in self._schedules.values()]
