"""Checkpointed data sync, conflict resolution and job running.

Usage:
    from db_sync.sync import run_sync, SyncJobRunner, InMemoryJobStore
"""

from db_sync.sync.conflict import ConflictResolution, RowConflict, resolve_conflict
from db_sync.sync.engine import CancellationToken, LoggingObserver, run_sync, sync_databases
from db_sync.sync.jobs import SyncJobRunner
from db_sync.sync.models import (
    Checkpoint,
    ConflictStrategy,
    Direction,
    JobStatus,
    SyncJob,
    SyncResult,
    TableConfig,
)
from db_sync.sync.store import InMemoryJobStore, InMemoryScheduleStore, JsonFileJobStore

__all__ = [
    "run_sync",
    "sync_databases",
    "CancellationToken",
    "LoggingObserver",
    "SyncJobRunner",
    "resolve_conflict",
    "RowConflict",
    "ConflictResolution",
    "Checkpoint",
    "ConflictStrategy",
    "Direction",
    "JobStatus",
    "SyncJob",
    "SyncResult",
    "TableConfig",
    "InMemoryJobStore",
    "JsonFileJobStore",
    "InMemoryScheduleStore",
]
