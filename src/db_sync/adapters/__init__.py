"""Database adapters package.

Provides the ``DatabaseClient`` Protocol the sync engine reads and
writes through, and its PostgreSQL implementation.

Usage:
    from db_sync.adapters import DatabaseClient, AsyncPostgresAdapter
"""

from db_sync.adapters.base import DatabaseClient
from db_sync.adapters.postgres import AsyncPostgresAdapter

__all__ = [
    "DatabaseClient",
    "AsyncPostgresAdapter",
]
