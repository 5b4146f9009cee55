"""Tests for catalog introspection, using canned query rows."""

from unittest.mock import AsyncMock, patch

import psycopg
import pytest

from db_sync.errors import InspectionError
from db_sync.schema.introspector import (
    COLUMNS_QUERY,
    ENUMS_QUERY,
    FOREIGN_KEYS_QUERY,
    INDEXES_QUERY,
    STATS_QUERY,
    TABLES_QUERY,
    VERSION_QUERY,
    SchemaIntrospector,
    _psycopg_url,
    check_sync_requirements,
    inspect_database,
)
from db_sync.schema.models import TableSchema

from conftest import col, sync_columns


def column_row(table: str, name: str, udt: str, position: int, **overrides) -> dict:
    row = {
        "table_name": table,
        "column_name": name,
        "data_type": udt,
        "udt_name": udt,
        "is_nullable": "NO",
        "column_default": None,
        "character_maximum_length": None,
        "numeric_precision": None,
        "numeric_scale": None,
        "ordinal_position": position,
    }
    row.update(overrides)
    return row


def catalog_rows() -> dict[str, list[dict]]:
    """Rows for a schema with users, orders, one enum and one excluded table."""
    return {
        "version_rows": [{"version": "PostgreSQL 16.2"}],
        "enum_rows": [{"name": "mood", "schema_name": "public", "labels": ["sad", "happy"]}],
        "table_rows": [
            {"table_name": "alembic_version"},
            {"table_name": "orders"},
            {"table_name": "pg_stat_statements"},
            {"table_name": "users"},
        ],
        "column_rows": [
            column_row("alembic_version", "version_num", "varchar", 1),
            column_row("orders", "id", "int4", 1),
            column_row("orders", "user_id", "uuid", 2, is_nullable="YES"),
            column_row("users", "id", "uuid", 1),
            column_row("users", "updated_at", "timestamptz", 2),
            column_row(
                "users",
                "name",
                "varchar",
                3,
                data_type="character varying",
                character_maximum_length=50,
                is_nullable="YES",
            ),
        ],
        "pk_rows": [
            {"table_name": "orders", "constraint_name": "orders_pkey", "column_name": "id"},
            {"table_name": "users", "constraint_name": "users_pkey", "column_name": "id"},
        ],
        "fk_rows": [
            {
                "table_name": "orders",
                "constraint_name": "orders_user_id_fkey",
                "column_name": "user_id",
                "referenced_table": "users",
                "referenced_column": "id",
                "delete_rule": "CASCADE",
                "update_rule": "NO ACTION",
            }
        ],
        "constraint_rows": [
            {
                "table_name": "users",
                "name": "users_name_key",
                "constraint_type": "UNIQUE",
                "columns": ["name"],
                "definition": "UNIQUE (name)",
            }
        ],
        "index_rows": [
            {
                "table_name": "users",
                "name": "users_pkey",
                "is_unique": True,
                "is_primary": True,
                "index_type": "btree",
                "columns": ["id"],
                "definition": "CREATE UNIQUE INDEX users_pkey ON public.users USING btree (id)",
            }
        ],
        "stats_rows": [
            {"table_name": "users", "row_estimate": 1200, "estimated_size": "64 kB"},
            {"table_name": "orders", "row_estimate": -1, "estimated_size": "8192 bytes"},
        ],
    }


# ============================================================================
# Assembly
# ============================================================================


class TestAssemble:
    """_assemble() groups bulk rows into an immutable schema."""

    def test_excluded_tables_are_skipped(self) -> None:
        schema = SchemaIntrospector("postgresql://x")._assemble(**catalog_rows())

        assert schema.table_names == ["orders", "users"]

    def test_custom_exclusions_replace_defaults(self) -> None:
        introspector = SchemaIntrospector("postgresql://x", excluded_tables={"orders"})

        schema = introspector._assemble(**catalog_rows())

        assert "orders" not in schema.tables
        assert "alembic_version" in schema.tables
        assert "pg_stat_statements" not in schema.tables

    def test_columns_and_primary_keys(self) -> None:
        schema = SchemaIntrospector("postgresql://x")._assemble(**catalog_rows())
        users = schema.tables["users"]

        assert users.column_names == ["id", "updated_at", "name"]
        assert users.column("id").is_primary_key is True
        assert users.column("id").is_nullable is False
        assert users.column("name").max_length == 50
        assert users.primary_key.constraint_name == "users_pkey"

    def test_relations_and_objects(self) -> None:
        schema = SchemaIntrospector("postgresql://x")._assemble(**catalog_rows())

        fk = schema.tables["orders"].foreign_keys[0]
        assert (fk.referenced_table, fk.on_delete) == ("users", "CASCADE")
        assert schema.tables["users"].constraints[0].columns == ["name"]
        assert schema.tables["users"].indexes[0].is_primary is True

    def test_statistics(self) -> None:
        schema = SchemaIntrospector("postgresql://x")._assemble(**catalog_rows())

        assert schema.tables["users"].row_estimate == 1200
        assert schema.tables["users"].estimated_size == "64 kB"
        assert schema.tables["orders"].row_estimate == 0

    def test_enums_keep_sort_order(self) -> None:
        schema = SchemaIntrospector("postgresql://x")._assemble(**catalog_rows())

        assert schema.enums["mood"].values == ["sad", "happy"]

    def test_syncable_tables_and_version(self) -> None:
        schema = SchemaIntrospector("postgresql://x")._assemble(**catalog_rows())

        assert schema.syncable_tables == ["users"]
        assert schema.version == "PostgreSQL 16.2"
        assert schema.inspected_at.tzinfo is not None


# ============================================================================
# Live-connection paths (mocked)
# ============================================================================


class _FailingCursor:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    async def execute(self, query, params) -> None:
        raise psycopg.errors.InsufficientPrivilege("permission denied for table pg_class")


class _FailingConnection:
    def cursor(self) -> _FailingCursor:
        return _FailingCursor()

    async def close(self) -> None:
        return None


class TestIntrospect:
    """introspect() issues one bulk query per object kind."""

    @pytest.mark.asyncio
    async def test_one_query_per_kind(self) -> None:
        rows = catalog_rows()
        by_query = {
            VERSION_QUERY: rows["version_rows"],
            ENUMS_QUERY: rows["enum_rows"],
            TABLES_QUERY: rows["table_rows"],
            COLUMNS_QUERY: rows["column_rows"],
            FOREIGN_KEYS_QUERY: rows["fk_rows"],
            INDEXES_QUERY: rows["index_rows"],
            STATS_QUERY: rows["stats_rows"],
        }

        async def fake_fetch(query: str, params: tuple = ()) -> list[dict]:
            if query in by_query:
                return by_query[query]
            if "PRIMARY KEY" in query:
                return rows["pk_rows"]
            return rows["constraint_rows"]

        introspector = SchemaIntrospector("postgresql://x")
        with patch.object(introspector, "_fetch", side_effect=fake_fetch) as fetch:
            schema = await introspector.introspect()

        assert fetch.await_count == 9
        assert schema.syncable_tables == ["users"]

    @pytest.mark.asyncio
    async def test_requires_context_manager(self) -> None:
        with pytest.raises(RuntimeError, match="async with"):
            await SchemaIntrospector("postgresql://x").introspect()

    @pytest.mark.asyncio
    async def test_query_failure_raises_inspection_error(self) -> None:
        introspector = SchemaIntrospector("postgresql://x")
        introspector._conn = _FailingConnection()

        with pytest.raises(InspectionError, match="permission denied"):
            await introspector.introspect()

    @pytest.mark.asyncio
    async def test_connection_failure(self) -> None:
        with patch(
            "psycopg.AsyncConnection.connect",
            new=AsyncMock(side_effect=psycopg.OperationalError("connection refused")),
        ):
            with pytest.raises(InspectionError, match="Cannot connect"):
                await inspect_database("postgresql://user:pw@localhost/db")

    @pytest.mark.asyncio
    async def test_connection_closed_on_failure(self) -> None:
        conn = AsyncMock()
        with patch("psycopg.AsyncConnection.connect", new=AsyncMock(return_value=conn)):
            introspector = SchemaIntrospector("postgresql://x")
            with patch.object(introspector, "_fetch", side_effect=InspectionError("boom")):
                with pytest.raises(InspectionError):
                    async with introspector:
                        await introspector.introspect()

        conn.close.assert_awaited_once()


# ============================================================================
# Helpers
# ============================================================================


class TestPsycopgUrl:
    """_psycopg_url() converts driver prefixes and adds a connect timeout."""

    def test_asyncpg_prefix(self) -> None:
        assert _psycopg_url("postgresql+asyncpg://u@h/db") == (
            "postgresql://u@h/db?connect_timeout=10"
        )

    def test_existing_query_string(self) -> None:
        assert _psycopg_url("postgresql://u@h/db?sslmode=require") == (
            "postgresql://u@h/db?sslmode=require&connect_timeout=10"
        )

    def test_explicit_timeout_kept(self) -> None:
        url = "postgresql://u@h/db?connect_timeout=3"
        assert _psycopg_url(url) == url


class TestCheckSyncRequirements:
    """check_sync_requirements() explains why a table is not sync-ready."""

    def test_ready(self) -> None:
        assert check_sync_requirements(TableSchema(name="t", columns=sync_columns())) == []

    def test_nullable_updated_at(self) -> None:
        table = TableSchema(
            name="t",
            columns=[col("id", "uuid"), col("updated_at", "timestamptz", is_nullable=True)],
        )
        assert check_sync_requirements(table) == ["'updated_at' is nullable"]

    def test_missing_columns(self) -> None:
        problems = check_sync_requirements(TableSchema(name="t", columns=[col("x", "text")]))
        assert problems == ["Missing 'id' column", "Missing 'updated_at' column"]
