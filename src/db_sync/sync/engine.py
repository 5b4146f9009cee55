"""Checkpointed batch sync between two databases.

Moves rows of syncable tables (uuid ``id`` + timestamp ``updated_at``)
from source to target in fixed-size batches using UPSERT keyed on ``id``.
Rows are read in ``(updated_at, id)`` order, so a checkpoint written
after every batch is a keyset cursor: a resumed run continues with the
next unprocessed row and never re-scans finished ones.

Guarantees:
- The checkpoint for a batch is persisted (``observer.on_checkpoint``)
  before the next batch is requested.  Delivery is at-least-once; the
  last batch may be re-UPSERTed on resume, which is idempotent.
- Cancellation is checked once per batch boundary, never inside a batch.
  A cancelled run returns ``paused=True``, never a completed result.
- An error in one table is recorded and the run moves on to the next
  table.  Losing the connection raises ``SyncFatalError`` with the last
  persisted checkpoint.

Usage:
    from db_sync.sync.engine import CancellationToken, run_sync

    token = CancellationToken()
    result = await run_sync(
        source_adapter,
        target_adapter,
        [TableConfig(table_name="users")],
        checkpoint=job.checkpoint,
        observer=my_observer,
        cancel_token=token,
    )
"""

import logging
import threading
from typing import Any, Protocol

from db_sync.adapters.base import DatabaseClient
from db_sync.errors import ConnectionLostError, SyncFatalError
from db_sync.sync.conflict import RowConflict, as_utc, resolve_conflict
from db_sync.sync.models import (
    Checkpoint,
    DeferredConflict,
    Direction,
    SyncLogEvent,
    SyncProgress,
    SyncResult,
    SyncRowError,
    TableConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000

ID_COLUMN = "id"
UPDATED_AT_COLUMN = "updated_at"


# ============================================================================
# Observer and cancellation
# ============================================================================


class SyncObserver(Protocol):
    """Receives progress, log events and checkpoints from a running sync.

    ``on_checkpoint`` is awaited before the next batch is requested; an
    implementation that persists the checkpoint gives resumable jobs.
    """

    async def on_progress(self, progress: SyncProgress) -> None: ...

    async def on_log(self, event: SyncLogEvent) -> None: ...

    async def on_checkpoint(self, checkpoint: Checkpoint) -> None: ...


class LoggingObserver:
    """Default observer: writes events to the ``db_sync.sync`` logger."""

    _LEVELS = {"info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}

    def __init__(self, log: logging.Logger | None = None):
        self._log = log or logging.getLogger("db_sync.sync")

    async def on_progress(self, progress: SyncProgress) -> None:
        self._log.debug(
            "Progress: %d rows processed, table %s (%d/%d)",
            progress.processed_rows,
            progress.current_table,
            progress.completed_tables,
            progress.total_tables,
        )

    async def on_log(self, event: SyncLogEvent) -> None:
        self._log.log(self._LEVELS.get(event.level, logging.INFO), event.message)

    async def on_checkpoint(self, checkpoint: Checkpoint) -> None:
        self._log.debug(
            "Checkpoint: table=%s row=%s", checkpoint.last_table, checkpoint.last_row_id
        )


class CancellationToken:
    """Shared cancellation flag passed down to ``run_sync``.

    Thread-safe, so a request handler in another thread can cancel a job.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


# ============================================================================
# Row classification
# ============================================================================


def _row_id(row: dict[str, Any]) -> str:
    return str(row[ID_COLUMN])


def _classify(
    table: TableConfig,
    direction: Direction,
    source_row: dict[str, Any],
    target_row: dict[str, Any] | None,
) -> str:
    """Decide what to do with one source row.

    Returns one of ``insert``, ``update``, ``skip`` or ``defer``.
    """
    if target_row is None:
        return "insert"

    source_ts = as_utc(source_row.get(UPDATED_AT_COLUMN))
    target_ts = as_utc(target_row.get(UPDATED_AT_COLUMN))
    if source_ts == target_ts:
        return "skip"

    if target_ts is None or (source_ts is not None and source_ts > target_ts):
        return "update"
    if direction == Direction.ONE_WAY:
        return "skip"

    # Two-way: the target holds the newer version of the row
    resolution = resolve_conflict(
        RowConflict(
            table=table.table_name,
            row_id=_row_id(source_row),
            source_row=source_row,
            target_row=target_row,
        ),
        table.conflict_strategy,
    )
    if not resolution.resolved:
        return "defer"
    return "update" if resolution.winner == "source" else "skip"


# ============================================================================
# Sync loop
# ============================================================================


class _Run:
    """Mutable state of one ``run_sync`` call."""

    def __init__(
        self,
        source: DatabaseClient,
        target: DatabaseClient,
        direction: Direction,
        checkpoint: Checkpoint,
        batch_size: int,
        observer: SyncObserver,
        cancel_token: CancellationToken | None,
        progress: SyncProgress,
    ):
        self.source = source
        self.target = target
        self.direction = direction
        self.checkpoint = checkpoint
        self.batch_size = batch_size
        self.observer = observer
        self.cancel_token = cancel_token
        self.progress = progress
        self.result = SyncResult(checkpoint=checkpoint, progress=progress)

    @property
    def cancelled(self) -> bool:
        return self.cancel_token is not None and self.cancel_token.cancelled

    async def log(self, level: str, message: str, table: str | None = None) -> None:
        await self.observer.on_log(SyncLogEvent(level=level, message=message, table=table))

    async def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        await self.observer.on_checkpoint(checkpoint)
        self.checkpoint = checkpoint
        self.result.checkpoint = checkpoint

    async def sync_table(self, table: TableConfig) -> bool:
        """Sync one table batch by batch.

        Returns:
            False if the run was cancelled before the table finished.
        """
        name = table.table_name
        cursor = self.checkpoint.cursor_for(name)
        self.progress.current_table = name
        await self.log("info", f"Syncing table {name}", name)

        while True:
            rows = await self.source.fetch_page(name, after=cursor, limit=self.batch_size)
            if rows:
                await self._write_batch(table, rows)
                last = rows[-1]
                cursor = (last[UPDATED_AT_COLUMN], _row_id(last))
                await self.save_checkpoint(
                    Checkpoint(
                        last_table=name,
                        last_row_id=cursor[1],
                        last_updated_at=cursor[0],
                        processed_tables=list(self.checkpoint.processed_tables),
                    )
                )
                await self.observer.on_progress(self.progress)

            if len(rows) < self.batch_size:
                break
            if self.cancelled:
                return False

        await self.save_checkpoint(
            Checkpoint(
                last_table=name,
                last_row_id=cursor[1] if cursor else None,
                last_updated_at=cursor[0] if cursor else None,
                processed_tables=list(self.checkpoint.processed_tables) + [name],
            )
        )
        self.result.tables_processed += 1
        self.progress.completed_tables += 1
        await self.observer.on_progress(self.progress)
        await self.log("info", f"Finished table {name}", name)
        return True

    async def _write_batch(self, table: TableConfig, rows: list[dict[str, Any]]) -> None:
        name = table.table_name
        existing = await self.target.select(
            name,
            f"{ID_COLUMN}, {UPDATED_AT_COLUMN}",
            filters={ID_COLUMN: [row[ID_COLUMN] for row in rows]},
        )
        target_versions = {_row_id(row): row for row in existing}

        to_write: list[dict[str, Any]] = []
        inserted = updated = skipped = 0
        for row in rows:
            target_row = target_versions.get(_row_id(row))
            action = _classify(table, self.direction, row, target_row)
            if action == "insert":
                to_write.append(row)
                inserted += 1
            elif action == "update":
                to_write.append(row)
                updated += 1
            elif action == "defer":
                self.result.deferred.append(
                    DeferredConflict(
                        table=name,
                        row_id=_row_id(row),
                        source_updated_at=as_utc(row.get(UPDATED_AT_COLUMN)),
                        target_updated_at=as_utc(target_row.get(UPDATED_AT_COLUMN))
                        if target_row
                        else None,
                    )
                )
                self.progress.conflict_rows += 1
            else:
                skipped += 1

        if to_write:
            await self.target.upsert(name, to_write, key=ID_COLUMN)

        self.result.rows_inserted += inserted
        self.result.rows_updated += updated
        self.result.rows_skipped += skipped
        self.progress.inserted_rows += inserted
        self.progress.updated_rows += updated
        self.progress.skipped_rows += skipped
        self.progress.processed_rows += len(rows)


async def run_sync(
    source: DatabaseClient,
    target: DatabaseClient,
    tables: list[TableConfig],
    direction: Direction = Direction.ONE_WAY,
    checkpoint: Checkpoint | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    observer: SyncObserver | None = None,
    cancel_token: CancellationToken | None = None,
    estimated_rows: int | None = None,
) -> SyncResult:
    """Sync rows of ``tables`` from source to target.

    Args:
        source: Adapter for the source database.
        target: Adapter for the target database.
        tables: Tables to sync, in order.  Disabled tables are skipped.
        direction: ``one_way`` writes source rows that are newer than the
            target's; ``two_way`` also writes newer source rows and runs
            rows whose target copy is newer through the table's conflict
            strategy.
        checkpoint: Resume point from a previous run.  Tables in
            ``processed_tables`` are skipped; ``last_table`` resumes after
            its cursor.
        batch_size: Rows per batch.
        observer: Receives progress, log events and checkpoints.
            Defaults to ``LoggingObserver``.
        cancel_token: Checked once per batch boundary.
        estimated_rows: Total row estimate for progress percentages.

    Returns:
        ``SyncResult``.  ``success`` is True only if every table finished
        without error and the run was not cancelled.

    Raises:
        SyncFatalError: If a database connection is lost.  Carries the last
            persisted checkpoint.
        ValueError: If ``batch_size`` is not positive.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    enabled = [t for t in tables if t.enabled]
    start = checkpoint.model_copy(deep=True) if checkpoint else Checkpoint()
    progress = SyncProgress(
        total_rows=estimated_rows or 0,
        total_tables=len(enabled),
        completed_tables=len([t for t in enabled if t.table_name in start.processed_tables]),
    )
    run = _Run(
        source,
        target,
        Direction(direction),
        start,
        batch_size,
        observer or LoggingObserver(),
        cancel_token,
        progress,
    )

    for table in enabled:
        name = table.table_name
        if name in run.checkpoint.processed_tables:
            continue
        if run.cancelled:
            run.result.paused = True
            break

        try:
            finished = await run.sync_table(table)
        except (ConnectionLostError, OSError) as e:
            await run.log("error", f"Connection lost while syncing {name}: {e}", name)
            raise SyncFatalError(
                f"Connection lost while syncing {name}: {e}", checkpoint=run.checkpoint
            ) from e
        except Exception as e:
            logger.exception("Table %s failed", name)
            run.result.errors.append(SyncRowError(table=name, message=str(e)))
            run.result.failed_tables.append(name)
            progress.errors += 1
            await run.log("error", f"Table {name} failed: {e}", name)
            continue

        if not finished:
            run.result.paused = True
            await run.log("warn", f"Sync paused during {name}", name)
            break

    result = run.result
    result.progress = progress
    result.success = not result.paused and not result.errors
    logger.info(
        "Sync %s: %d tables, %d inserted, %d updated, %d skipped, %d errors",
        "paused" if result.paused else ("completed" if result.success else "finished with errors"),
        result.tables_processed,
        result.rows_inserted,
        result.rows_updated,
        result.rows_skipped,
        len(result.errors),
    )
    return result


async def sync_databases(
    source_url: str,
    target_url: str,
    tables: list[TableConfig],
    **kwargs: Any,
) -> SyncResult:
    """Open adapters for two URLs, run a sync and close both adapters.

    Keyword arguments are forwarded to ``run_sync``.
    """
    from db_sync.adapters.postgres import AsyncPostgresAdapter

    source = AsyncPostgresAdapter(source_url)
    target = AsyncPostgresAdapter(target_url)
    try:
        return await run_sync(source, target, tables, **kwargs)
    finally:
        await source.close()
        await target.close()
