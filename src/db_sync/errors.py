"""Exception types raised by db-sync.

Structural problems (unreachable database, broken catalog, bad cron
expression, illegal job transition) raise.  Problems that only affect part
of an operation (one table's rows, one migration step, one schema
difference) are reported as records on the operation's result object.

Usage:
    from db_sync.errors import InspectionError, SyncFatalError

    try:
        schema = await inspect_database(url)
    except InspectionError as e:
        print(f"Cannot inspect: {e}")
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from db_sync.sync.models import Checkpoint


class DbSyncError(Exception):
    """Base class for all db-sync errors."""


class InspectionError(DbSyncError):
    """Catalog inspection failed; no partial schema is returned."""


class SyncFatalError(DbSyncError):
    """A sync run aborted (e.g. connection lost).

    Carries the last persisted checkpoint so the caller can resume.
    """

    def __init__(self, message: str, checkpoint: "Checkpoint | None" = None):
        super().__init__(message)
        self.checkpoint = checkpoint


class InvalidJobTransitionError(DbSyncError):
    """A SyncJob was asked to move between two incompatible states."""

    def __init__(self, job_id: str, current: str, requested: str):
        super().__init__(
            f"Job {job_id}: cannot transition from '{current}' to '{requested}'"
        )
        self.job_id = job_id
        self.current = current
        self.requested = requested


class JobNotFoundError(DbSyncError, KeyError):
    """No job or schedule with the given id exists in the store."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class CronParseError(DbSyncError, ValueError):
    """A cron expression could not be parsed."""


class ConnectionLostError(DbSyncError, ConnectionError):
    """The database connection dropped or could not be established."""
