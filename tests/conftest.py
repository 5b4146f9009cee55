"""Shared fixtures: an in-memory database and schema builders."""

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

import pytest

from db_sync.errors import ConnectionLostError
from db_sync.schema.models import ColumnSchema, DatabaseSchema, TableSchema
from db_sync.schema.types import is_syncable
from db_sync.sync.conflict import as_utc

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeDatabase:
    """In-memory ``DatabaseClient`` keyed by table name and row id.

    ``fail_upsert_on`` makes writes to the named tables raise
    ``RuntimeError``; ``lose_connection_after`` makes the n-th call to
    ``upsert`` (1-based) and every later one raise ``ConnectionLostError``.
    """

    def __init__(
        self,
        tables: dict[str, list[dict]] | None = None,
        fail_upsert_on: set[str] | None = None,
        lose_connection_after: int | None = None,
    ):
        self.tables: dict[str, dict[str, dict]] = {}
        for name, rows in (tables or {}).items():
            self.tables[name] = {str(row["id"]): dict(row) for row in rows}
        self.fail_upsert_on = fail_upsert_on or set()
        self.lose_connection_after = lose_connection_after
        self.upsert_calls: list[tuple[str, int]] = []
        self.page_requests: list[tuple[str, Any]] = []
        self.executed: list[str] = []
        self.closed = False

    def rows(self, table: str) -> dict[str, dict]:
        return self.tables.setdefault(table, {})

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        wanted = [c.strip() for c in columns.split(",")]
        result = []
        for row in self.rows(table).values():
            if filters and not all(
                (str(row.get(k)) in {str(x) for x in v})
                if isinstance(v, (list, tuple))
                else row.get(k) == v
                for k, v in filters.items()
            ):
                continue
            result.append({c: row.get(c) for c in wanted} if wanted != ["*"] else dict(row))
        return result

    async def fetch_page(
        self,
        table: str,
        after: tuple[datetime, str] | None,
        limit: int,
        order_column: str = "updated_at",
        key: str = "id",
    ) -> list[dict]:
        self.page_requests.append((table, after))
        ordered = sorted(
            (r for r in self.rows(table).values() if r.get(order_column) is not None),
            key=lambda r: (as_utc(r[order_column]), str(r[key])),
        )
        if after is not None:
            cursor = (as_utc(after[0]), str(after[1]))
            ordered = [r for r in ordered if (as_utc(r[order_column]), str(r[key])) > cursor]
        return [dict(r) for r in ordered[:limit]]

    async def upsert(self, table: str, rows: list[dict], key: str = "id") -> int:
        self.upsert_calls.append((table, len(rows)))
        if (
            self.lose_connection_after is not None
            and len(self.upsert_calls) >= self.lose_connection_after
        ):
            raise ConnectionLostError("server closed the connection unexpectedly")
        if table in self.fail_upsert_on:
            raise RuntimeError(f'relation "{table}" violates a constraint')
        target = self.rows(table)
        for row in rows:
            target[str(row[key])] = dict(row)
        return len(rows)

    async def execute(self, sql: str, params: dict | None = None) -> None:
        self.executed.append(sql)

    async def close(self) -> None:
        self.closed = True


def make_row(n: int, minutes: int = 0, **extra: Any) -> dict:
    """Row with a deterministic uuid and ``updated_at`` offset by ``minutes``."""
    return {
        "id": UUID(int=n),
        "updated_at": BASE_TIME + timedelta(minutes=minutes),
        **extra,
    }


def col(name: str, udt: str, data_type: str | None = None, **kwargs: Any) -> ColumnSchema:
    return ColumnSchema(name=name, data_type=data_type or udt, udt_name=udt, **kwargs)


def sync_columns() -> list[ColumnSchema]:
    """NOT NULL uuid ``id`` and timestamptz ``updated_at``."""
    return [
        col("id", "uuid", is_nullable=False, is_primary_key=True, ordinal_position=1),
        col(
            "updated_at",
            "timestamptz",
            "timestamp with time zone",
            is_nullable=False,
            ordinal_position=2,
        ),
    ]


def make_schema(*tables: TableSchema, **kwargs: Any) -> DatabaseSchema:
    by_name = {t.name: t for t in tables}
    return DatabaseSchema(
        tables=by_name,
        syncable_tables=[name for name, t in by_name.items() if is_syncable(t)],
        **kwargs,
    )


@pytest.fixture
def fake_db() -> type[FakeDatabase]:
    return FakeDatabase
