"""Pydantic models for data sync, jobs and checkpoints.

``Checkpoint`` is the only durable resumption state.  Together with
``SyncJob.status`` and ``SyncJob.progress`` it is everything a store has
to persist for a job to survive a process restart.
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Enums
# ============================================================================


class Direction(str, Enum):
    ONE_WAY = "one_way"
    TWO_WAY = "two_way"


class ConflictStrategy(str, Enum):
    LAST_WRITE_WINS = "last_write_wins"
    SOURCE_WINS = "source_wins"
    TARGET_WINS = "target_wins"
    MANUAL = "manual"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


# ============================================================================
# Sync inputs and state
# ============================================================================


class TableConfig(BaseModel):
    """Per-table sync settings.

    Example:
        >>> TableConfig(table_name="users").conflict_strategy
        <ConflictStrategy.LAST_WRITE_WINS: 'last_write_wins'>
    """

    table_name: str
    enabled: bool = True
    conflict_strategy: ConflictStrategy = ConflictStrategy.LAST_WRITE_WINS


class Checkpoint(BaseModel):
    """Resumption point: the last row written and the tables already finished.

    Rows are read in ``(updated_at, id)`` order, so the pair
    ``(last_updated_at, last_row_id)`` is a keyset cursor into
    ``last_table``.
    """

    last_table: str | None = None
    last_row_id: str | None = None
    last_updated_at: datetime | None = None
    processed_tables: list[str] = Field(default_factory=list)

    def cursor_for(self, table: str) -> tuple[datetime, str] | None:
        """Cursor to resume ``table`` from, if the checkpoint is inside it."""
        if (
            self.last_table == table
            and self.last_updated_at is not None
            and self.last_row_id is not None
        ):
            return self.last_updated_at, self.last_row_id
        return None


class SyncProgress(BaseModel):
    total_rows: int = 0
    processed_rows: int = 0
    inserted_rows: int = 0
    updated_rows: int = 0
    skipped_rows: int = 0
    conflict_rows: int = 0
    total_tables: int = 0
    completed_tables: int = 0
    current_table: str | None = None
    errors: int = 0

    @property
    def percent(self) -> float:
        """Completion estimate; ``total_rows`` is a catalog estimate."""
        if self.total_rows <= 0:
            return 0.0
        return min(100.0, 100.0 * self.processed_rows / self.total_rows)


class SyncRowError(BaseModel):
    """A failure isolated to one table; the run continued with the others."""

    table: str
    message: str
    row_id: str | None = None


class DeferredConflict(BaseModel):
    """A row held back by the ``manual`` conflict strategy."""

    table: str
    row_id: str
    source_updated_at: datetime | None = None
    target_updated_at: datetime | None = None


class SyncLogEvent(BaseModel):
    level: str  # info, warn, error
    message: str
    table: str | None = None
    at: datetime = Field(default_factory=_utcnow)


class SyncResult(BaseModel):
    """Outcome of one ``run_sync`` call.

    ``paused`` results are never ``success``: the run was cancelled and
    ``checkpoint`` is where a new run should resume.
    """

    success: bool = False
    paused: bool = False
    checkpoint: Checkpoint | None = None
    tables_processed: int = 0
    rows_inserted: int = 0
    rows_updated: int = 0
    rows_skipped: int = 0
    errors: list[SyncRowError] = Field(default_factory=list)
    failed_tables: list[str] = Field(default_factory=list)
    deferred: list[DeferredConflict] = Field(default_factory=list)
    progress: SyncProgress = Field(default_factory=SyncProgress)


# ============================================================================
# Jobs
# ============================================================================


class SyncJob(BaseModel):
    """A sync job and its persisted state.

    ``source`` and ``target`` are connection references: either a URL or a
    profile name from the config file.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    source: str
    target: str
    direction: Direction = Direction.ONE_WAY
    tables: list[TableConfig] = Field(default_factory=list)
    status: JobStatus = JobStatus.PENDING
    progress: SyncProgress = Field(default_factory=SyncProgress)
    checkpoint: Checkpoint | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def enabled_tables(self) -> list[TableConfig]:
        return [t for t in self.tables if t.enabled]
