"""PostgreSQL catalog inspection via information_schema and pg_catalog.

This module queries a live database and builds an immutable
``DatabaseSchema``:
- Server version
- Enum types and their labels (in sort order)
- Tables, columns, data types, nullability, defaults, lengths
- Primary keys, foreign keys, UNIQUE/CHECK constraints
- Indexes (columns, uniqueness, access method, definition)
- Row count and size estimates from catalog statistics

Each kind of object is fetched with one bulk query for the whole schema,
never one query per table.  Row counts come from ``pg_class.reltuples``
and are estimates; ``COUNT(*)`` is never issued.

Uses psycopg (v3) async connections.

Usage:
    from db_sync.schema.introspector import SchemaIntrospector, inspect_database

    async with SchemaIntrospector(database_url) as introspector:
        schema = await introspector.introspect()

    # or, in one call
    schema = await inspect_database(database_url)
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any

import psycopg
from psycopg import AsyncConnection
from psycopg.rows import dict_row

from db_sync.errors import InspectionError
from db_sync.schema.models import (
    ColumnSchema,
    ConstraintSchema,
    DatabaseSchema,
    EnumType,
    ForeignKeySchema,
    IndexSchema,
    PrimaryKeySchema,
    TableSchema,
)
from db_sync.schema.types import UPDATED_AT_COLUMN, is_syncable, sync_requirement_problems

logger = logging.getLogger(__name__)


# ============================================================================
# Catalog queries
# ============================================================================

VERSION_QUERY = "SELECT version() AS version"

ENUMS_QUERY = """
    SELECT t.typname::text AS name,
           n.nspname::text AS schema_name,
           array_agg(e.enumlabel::text ORDER BY e.enumsortorder) AS labels
    FROM pg_type t
    JOIN pg_enum e ON e.enumtypid = t.oid
    JOIN pg_namespace n ON n.oid = t.typnamespace
    WHERE n.nspname = %s
    GROUP BY t.typname, n.nspname
    ORDER BY t.typname
"""

TABLES_QUERY = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = %s
      AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""

COLUMNS_QUERY = """
    SELECT table_name,
           column_name,
           data_type,
           udt_name,
           is_nullable,
           column_default,
           character_maximum_length,
           numeric_precision,
           numeric_scale,
           ordinal_position
    FROM information_schema.columns
    WHERE table_schema = %s
    ORDER BY table_name, ordinal_position
"""

PRIMARY_KEYS_QUERY = """
    SELECT tc.table_name,
           tc.constraint_name,
           kcu.column_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name
     AND tc.table_schema = kcu.table_schema
     AND tc.table_name = kcu.table_name
    WHERE tc.constraint_type = 'PRIMARY KEY'
      AND tc.table_schema = %s
    ORDER BY tc.table_name, kcu.ordinal_position
"""

FOREIGN_KEYS_QUERY = """
    SELECT tc.table_name,
           tc.constraint_name,
           kcu.column_name,
           ccu.table_name AS referenced_table,
           ccu.column_name AS referenced_column,
           rc.delete_rule,
           rc.update_rule
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name
     AND tc.table_schema = kcu.table_schema
    JOIN information_schema.constraint_column_usage ccu
      ON ccu.constraint_name = tc.constraint_name
     AND ccu.constraint_schema = tc.constraint_schema
    JOIN information_schema.referential_constraints rc
      ON rc.constraint_name = tc.constraint_name
     AND rc.constraint_schema = tc.constraint_schema
    WHERE tc.constraint_type = 'FOREIGN KEY'
      AND tc.table_schema = %s
    ORDER BY tc.table_name, tc.constraint_name
"""

CONSTRAINTS_QUERY = """
    SELECT cl.relname AS table_name,
           con.conname AS name,
           CASE con.contype WHEN 'u' THEN 'UNIQUE' ELSE 'CHECK' END AS constraint_type,
           array_remove(array_agg(att.attname::text ORDER BY att.attnum), NULL) AS columns,
           pg_get_constraintdef(con.oid) AS definition
    FROM pg_constraint con
    JOIN pg_class cl ON cl.oid = con.conrelid
    JOIN pg_namespace n ON n.oid = cl.relnamespace
    LEFT JOIN pg_attribute att
      ON att.attrelid = con.conrelid
     AND att.attnum = ANY(con.conkey)
    WHERE n.nspname = %s
      AND con.contype IN ('u', 'c')
    GROUP BY cl.relname, con.conname, con.contype, con.oid
    ORDER BY cl.relname, con.conname
"""

INDEXES_QUERY = """
    SELECT t.relname AS table_name,
           i.relname AS name,
           ix.indisunique AS is_unique,
           ix.indisprimary AS is_primary,
           am.amname AS index_type,
           array_remove(
               array_agg(a.attname::text ORDER BY array_position(ix.indkey::int2[], a.attnum)),
               NULL
           ) AS columns,
           pg_get_indexdef(ix.indexrelid) AS definition
    FROM pg_index ix
    JOIN pg_class t ON t.oid = ix.indrelid
    JOIN pg_class i ON i.oid = ix.indexrelid
    JOIN pg_namespace n ON n.oid = t.relnamespace
    JOIN pg_am am ON am.oid = i.relam
    LEFT JOIN pg_attribute a
      ON a.attrelid = t.oid
     AND a.attnum = ANY(ix.indkey)
    WHERE n.nspname = %s
    GROUP BY t.relname, i.relname, ix.indisunique, ix.indisprimary, am.amname, ix.indexrelid
    ORDER BY t.relname, i.relname
"""

STATS_QUERY = """
    SELECT c.relname AS table_name,
           c.reltuples::bigint AS row_estimate,
           pg_size_pretty(pg_total_relation_size(c.oid)) AS estimated_size
    FROM pg_class c
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = %s
      AND c.relkind IN ('r', 'p')
"""


def _psycopg_url(database_url: str) -> str:
    """Convert SQLAlchemy-style URLs to a libpq URL and add a connect timeout."""
    url = database_url
    for driver in ("postgresql+asyncpg://", "postgresql+psycopg://"):
        if url.startswith(driver):
            url = "postgresql://" + url[len(driver):]
    if "connect_timeout" not in url:
        separator = "&" if "?" in url else "?"
        url = f"{url}{separator}connect_timeout=10"
    return url


class SchemaIntrospector:
    """Introspects a PostgreSQL database schema.

    Uses information_schema and pg_catalog.  Works with any PostgreSQL
    database (RDS, Supabase, local).  The connection is opened on
    ``__aenter__`` and closed on every exit path.

    Any catalog query failure raises ``InspectionError``; a partially
    built schema is never returned.

    Usage:
        async with SchemaIntrospector(database_url) as introspector:
            schema = await introspector.introspect()
            print(schema.syncable_tables)
    """

    # Tables owned by migration tools and extensions
    EXCLUDED_TABLES = {
        "schema_migrations",
        "alembic_version",
        "pg_stat_statements",
        "spatial_ref_sys",
    }

    EXCLUDED_PREFIXES = ("pg_", "_prisma_", "drizzle_", "db_sync_")

    def __init__(
        self,
        database_url: str,
        excluded_tables: set[str] | None = None,
        schema_name: str = "public",
    ):
        """Initialize with database connection URL.

        Args:
            database_url: PostgreSQL connection URL.  ``postgresql+asyncpg://``
                URLs are accepted and converted.
            excluded_tables: Table names to skip.  Defaults to
                ``EXCLUDED_TABLES``.
            schema_name: PostgreSQL schema to introspect.
        """
        self._database_url = database_url
        self._excluded_tables = (
            excluded_tables if excluded_tables is not None else set(self.EXCLUDED_TABLES)
        )
        self._schema_name = schema_name
        self._conn: AsyncConnection | None = None

    async def __aenter__(self) -> "SchemaIntrospector":
        """Open the connection."""
        try:
            self._conn = await psycopg.AsyncConnection.connect(
                _psycopg_url(self._database_url),
                row_factory=dict_row,
            )
        except (psycopg.Error, OSError) as e:
            raise InspectionError(f"Cannot connect for inspection: {e}") from e
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Close the connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    def _is_excluded(self, table_name: str) -> bool:
        return table_name in self._excluded_tables or table_name.startswith(
            self.EXCLUDED_PREFIXES
        )

    async def _fetch(self, query: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Run one catalog query, wrapping driver errors as ``InspectionError``."""
        if self._conn is None:
            raise RuntimeError("Introspector not connected. Use 'async with'.")
        try:
            async with self._conn.cursor() as cur:
                await cur.execute(query, params)
                return list(await cur.fetchall())
        except psycopg.Error as e:
            raise InspectionError(f"Catalog query failed: {e}") from e

    async def introspect(self) -> DatabaseSchema:
        """Introspect the full schema.

        Returns:
            Immutable ``DatabaseSchema`` with tables, enums, syncable table
            names, server version and inspection timestamp.

        Raises:
            InspectionError: If any catalog query fails.
        """
        schema = self._schema_name
        logger.info("Inspecting schema '%s'", schema)

        version_rows = await self._fetch(VERSION_QUERY)
        enum_rows = await self._fetch(ENUMS_QUERY, (schema,))
        table_rows = await self._fetch(TABLES_QUERY, (schema,))
        column_rows = await self._fetch(COLUMNS_QUERY, (schema,))
        pk_rows = await self._fetch(PRIMARY_KEYS_QUERY, (schema,))
        fk_rows = await self._fetch(FOREIGN_KEYS_QUERY, (schema,))
        constraint_rows = await self._fetch(CONSTRAINTS_QUERY, (schema,))
        index_rows = await self._fetch(INDEXES_QUERY, (schema,))
        stats_rows = await self._fetch(STATS_QUERY, (schema,))

        result = self._assemble(
            version_rows=version_rows,
            enum_rows=enum_rows,
            table_rows=table_rows,
            column_rows=column_rows,
            pk_rows=pk_rows,
            fk_rows=fk_rows,
            constraint_rows=constraint_rows,
            index_rows=index_rows,
            stats_rows=stats_rows,
        )
        logger.info(
            "Inspected %d tables (%d syncable), %d enums",
            len(result.tables),
            len(result.syncable_tables),
            len(result.enums),
        )
        return result

    def _assemble(
        self,
        *,
        version_rows: list[dict],
        enum_rows: list[dict],
        table_rows: list[dict],
        column_rows: list[dict],
        pk_rows: list[dict],
        fk_rows: list[dict],
        constraint_rows: list[dict],
        index_rows: list[dict],
        stats_rows: list[dict],
    ) -> DatabaseSchema:
        """Group bulk query rows by table and build the schema."""
        table_names = [
            row["table_name"]
            for row in table_rows
            if not self._is_excluded(row["table_name"])
        ]
        wanted = set(table_names)

        pk_columns: dict[str, list[str]] = defaultdict(list)
        pk_names: dict[str, str] = {}
        for row in pk_rows:
            pk_columns[row["table_name"]].append(row["column_name"])
            pk_names[row["table_name"]] = row["constraint_name"]

        columns: dict[str, list[ColumnSchema]] = defaultdict(list)
        for row in column_rows:
            table = row["table_name"]
            if table not in wanted:
                continue
            columns[table].append(
                ColumnSchema(
                    name=row["column_name"],
                    data_type=row["data_type"],
                    udt_name=row["udt_name"],
                    is_nullable=row["is_nullable"] == "YES",
                    default=row["column_default"],
                    max_length=row["character_maximum_length"],
                    numeric_precision=row["numeric_precision"],
                    numeric_scale=row["numeric_scale"],
                    ordinal_position=row["ordinal_position"],
                    is_primary_key=row["column_name"] in pk_columns.get(table, []),
                )
            )

        foreign_keys: dict[str, list[ForeignKeySchema]] = defaultdict(list)
        for row in fk_rows:
            foreign_keys[row["table_name"]].append(
                ForeignKeySchema(
                    table=row["table_name"],
                    name=row["constraint_name"],
                    column=row["column_name"],
                    referenced_table=row["referenced_table"],
                    referenced_column=row["referenced_column"],
                    on_delete=row["delete_rule"],
                    on_update=row["update_rule"],
                )
            )

        constraints: dict[str, list[ConstraintSchema]] = defaultdict(list)
        for row in constraint_rows:
            constraints[row["table_name"]].append(
                ConstraintSchema(
                    table=row["table_name"],
                    name=row["name"],
                    constraint_type=row["constraint_type"],
                    columns=list(row["columns"] or []),
                    definition=row["definition"] or "",
                )
            )

        indexes: dict[str, list[IndexSchema]] = defaultdict(list)
        for row in index_rows:
            indexes[row["table_name"]].append(
                IndexSchema(
                    table=row["table_name"],
                    name=row["name"],
                    columns=list(row["columns"] or []),
                    is_unique=row["is_unique"],
                    is_primary=row["is_primary"],
                    index_type=row["index_type"],
                    definition=row["definition"] or "",
                )
            )

        stats = {row["table_name"]: row for row in stats_rows}

        tables: dict[str, TableSchema] = {}
        for name in table_names:
            stat = stats.get(name, {})
            tables[name] = TableSchema(
                name=name,
                columns=columns.get(name, []),
                primary_key=(
                    PrimaryKeySchema(
                        table=name,
                        constraint_name=pk_names[name],
                        columns=pk_columns[name],
                    )
                    if name in pk_names
                    else None
                ),
                foreign_keys=foreign_keys.get(name, []),
                constraints=constraints.get(name, []),
                indexes=indexes.get(name, []),
                # reltuples is -1 for tables that were never analyzed
                row_estimate=max(int(stat.get("row_estimate") or 0), 0),
                estimated_size=stat.get("estimated_size") or "",
            )

        enums = {
            row["name"]: EnumType(
                name=row["name"],
                schema_name=row["schema_name"],
                values=list(row["labels"] or []),
            )
            for row in enum_rows
        }

        return DatabaseSchema(
            tables=tables,
            enums=enums,
            syncable_tables=[name for name, t in tables.items() if is_syncable(t)],
            version=version_rows[0]["version"] if version_rows else "",
            inspected_at=datetime.now(timezone.utc),
        )


async def inspect_database(
    database_url: str,
    schema_name: str = "public",
    excluded_tables: set[str] | None = None,
) -> DatabaseSchema:
    """Inspect a database in one call.

    The connection is scoped to this call and released on every path.

    Raises:
        InspectionError: If the connection or any catalog query fails.
    """
    async with SchemaIntrospector(
        database_url, excluded_tables=excluded_tables, schema_name=schema_name
    ) as introspector:
        return await introspector.introspect()


def check_sync_requirements(table: TableSchema) -> list[str]:
    """Explain why ``table`` is not ready for syncing.

    Covers the syncability rule (uuid ``id``, timestamp ``updated_at``)
    and additionally flags a nullable ``updated_at``, which still syncs
    but leaves rows without a change timestamp out of incremental runs.

    Returns:
        Human-readable problems; empty when the table is sync-ready.
    """
    problems = sync_requirement_problems(table)
    updated_col = table.column(UPDATED_AT_COLUMN)
    if updated_col is not None and updated_col.is_nullable:
        problems.append(f"'{UPDATED_AT_COLUMN}' is nullable")
    return problems
