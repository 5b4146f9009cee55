"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol that the sync engine and the
migration applier talk to.  All methods are ``async def``.

Usage:
    from db_sync.adapters.base import DatabaseClient

    async def copy_page(source: DatabaseClient, target: DatabaseClient) -> None:
        rows = await source.fetch_page("users", after=None, limit=1000)
        await target.upsert("users", rows)
"""

from datetime import datetime
from typing import Any, Protocol


class DatabaseClient(Protocol):
    """Database client interface that all adapters must implement.

    Adapters raise ``db_sync.errors.ConnectionLostError`` when the
    connection drops, so callers can tell a lost database apart from a
    failing statement.
    """

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows from table.

        Args:
            table: Table name.
            columns: Comma-separated column names (e.g., ``"id, updated_at"``).
            filters: Optional dict of field=value filters (all must match via
                AND).  A list or tuple value matches any of its elements.
            order_by: Optional column name to sort by.

        Returns:
            List of dicts, one per row, with native driver values.

        Example:
            rows = await client.select(
                "users",
                "id, updated_at",
                filters={"id": ["3f1c...", "9a2e..."]},
            )
        """
        ...

    async def fetch_page(
        self,
        table: str,
        after: tuple[datetime, str] | None,
        limit: int,
        order_column: str = "updated_at",
        key: str = "id",
    ) -> list[dict]:
        """Fetch the next page of rows in ``(order_column, key)`` order.

        Keyset pagination: returns up to ``limit`` rows strictly after the
        ``(order_value, key_value)`` cursor.  Rows whose ``order_column`` is
        NULL are never returned.

        Args:
            table: Table name.
            after: Cursor from the last row of the previous page, or ``None``
                for the first page.
            limit: Page size.
            order_column: Change-timestamp column.
            key: Row identity column.

        Returns:
            List of dicts with every column of the table.
        """
        ...

    async def upsert(self, table: str, rows: list[dict], key: str = "id") -> int:
        """Insert rows, updating existing ones with the same ``key``.

        All rows are written in one transaction.

        Returns:
            Number of rows written.
        """
        ...

    async def execute(self, sql: str, params: dict | None = None) -> None:
        """Execute a raw SQL statement (DDL or other non-query operations).

        Args:
            sql: Raw SQL statement to execute.
            params: Optional dict of named parameters.

        Example:
            await client.execute("CREATE INDEX IF NOT EXISTS idx_name ON users (name)")
        """
        ...

    async def close(self) -> None:
        """Close connections and release resources."""
        ...
