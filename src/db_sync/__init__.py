"""db-sync: PostgreSQL schema validation, migration and checkpointed data sync.

Inspects two databases, reports schema differences that would break a
sync, generates idempotent migrations, and moves rows of syncable tables
in resumable batches, on demand or on a cron schedule.

Usage:
    from db_sync import inspect_database, validate_schemas, generate_migration_plan
    from db_sync import run_sync, SyncJobRunner, Scheduler
    from db_sync import load_db_config, get_adapter
"""

__version__ = "0.1.0"

# Adapters
from db_sync.adapters.base import DatabaseClient
from db_sync.adapters.postgres import AsyncPostgresAdapter

# Config
from db_sync.config.loader import load_db_config
from db_sync.config.models import DatabaseConfig, DatabaseProfile

# Errors
from db_sync.errors import DbSyncError, InspectionError, SyncFatalError

# Factory
from db_sync.factory import (
    ProfileNotFoundError,
    get_adapter,
    resolve_connection,
    resolve_url,
)

# Scheduler
from db_sync.scheduler.scheduler import ScheduledJob, Scheduler

# Schema
from db_sync.schema.comparator import validate_schemas
from db_sync.schema.introspector import inspect_database
from db_sync.schema.migration import apply_migration, generate_migration_plan

# Sync
from db_sync.sync.engine import run_sync
from db_sync.sync.jobs import SyncJobRunner
from db_sync.sync.models import TableConfig

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncPostgresAdapter",
    # Config
    "load_db_config",
    "DatabaseProfile",
    "DatabaseConfig",
    # Errors
    "DbSyncError",
    "InspectionError",
    "SyncFatalError",
    # Factory
    "get_adapter",
    "resolve_connection",
    "resolve_url",
    "ProfileNotFoundError",
    # Scheduler
    "Scheduler",
    "ScheduledJob",
    # Schema
    "inspect_database",
    "validate_schemas",
    "generate_migration_plan",
    "apply_migration",
    # Sync
    "run_sync",
    "SyncJobRunner",
    "TableConfig",
]
