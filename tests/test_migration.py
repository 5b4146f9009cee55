"""Tests for migration plan generation and application."""

from unittest.mock import AsyncMock

import pytest

from db_sync.schema.comparator import validate_schemas
from db_sync.schema.migration import (
    MigrationPlan,
    OperationKind,
    Risk,
    apply_manual_script,
    apply_migration,
    generate_migration_plan,
    plan_from_validation,
)
from db_sync.schema.models import (
    ConstraintSchema,
    EnumType,
    ForeignKeySchema,
    IndexSchema,
    PrimaryKeySchema,
    TableSchema,
    ValidationResult,
)

from conftest import col, make_schema, sync_columns


def users(name_length: int = 50, extra: list | None = None, **kwargs) -> TableSchema:
    return TableSchema(
        name="users",
        columns=sync_columns()
        + [col("name", "varchar", "character varying", max_length=name_length)]
        + (extra or []),
        primary_key=PrimaryKeySchema(table="users", constraint_name="users_pkey", columns=["id"]),
        **kwargs,
    )


def orders() -> TableSchema:
    return TableSchema(
        name="orders",
        columns=sync_columns() + [col("user_id", "uuid")],
        primary_key=PrimaryKeySchema(table="orders", constraint_name="orders_pkey", columns=["id"]),
        foreign_keys=[
            ForeignKeySchema(
                table="orders",
                name="orders_user_id_fkey",
                column="user_id",
                referenced_table="users",
                referenced_column="id",
                on_delete="CASCADE",
            )
        ],
    )


class TestNoChanges:
    """Identical schemas produce an empty plan."""

    def test_empty_plan(self) -> None:
        schema = make_schema(users())

        plan = generate_migration_plan(schema, schema)

        assert plan.has_changes is False
        assert plan.scripts == []
        assert plan.warnings == []
        assert "Nothing to apply" in plan.forward_script

    def test_unknown_direction(self) -> None:
        schema = make_schema(users())
        with pytest.raises(ValueError, match="direction"):
            generate_migration_plan(schema, schema, direction="sideways")


class TestTypeChanges:
    """Type changes always go to manual review."""

    def test_varchar_widening_is_manual(self) -> None:
        source = make_schema(users(name_length=50))
        target = make_schema(users(name_length=20))

        plan = generate_migration_plan(source, target)

        assert plan.auto_scripts == []
        assert len(plan.manual_review_scripts) == 1
        script = plan.manual_review_scripts[0]
        assert script.sql == "ALTER TABLE users ALTER COLUMN name TYPE varchar(50);"
        assert script.operation == OperationKind.ALTER_COLUMN_TYPE
        assert script.risk == Risk.CAUTION
        assert len(plan.warnings) == 1

    def test_incompatible_type_uses_cast_and_is_dangerous(self) -> None:
        source = make_schema(TableSchema(name="t", columns=sync_columns() + [col("n", "int4", "integer")]))
        target = make_schema(TableSchema(name="t", columns=sync_columns() + [col("n", "text")]))

        plan = generate_migration_plan(source, target)

        script = plan.manual_review_scripts[0]
        assert script.sql == "ALTER TABLE t ALTER COLUMN n TYPE integer USING n::integer;"
        assert script.risk == Risk.DANGEROUS
        assert script.rollback_exact is False

    def test_manual_script_not_in_forward_script(self) -> None:
        plan = generate_migration_plan(make_schema(users(50)), make_schema(users(20)))

        assert "ALTER COLUMN name TYPE" not in plan.forward_script
        assert "ALTER COLUMN name TYPE varchar(50)" in plan.manual_review_script
        assert "[CAUTION]" in plan.manual_review_script


class TestAdditions:
    """Missing tables, columns and objects become idempotent auto scripts."""

    def test_create_missing_tables_parents_first(self) -> None:
        source = make_schema(orders(), users())
        target = make_schema()

        plan = generate_migration_plan(source, target)

        creates = [s.table for s in plan.scripts if s.operation == OperationKind.CREATE_TABLE]
        assert creates == ["users", "orders"]
        assert all(not s.is_breaking for s in plan.scripts)
        users_sql = plan.scripts[0].sql
        assert users_sql.startswith("CREATE TABLE IF NOT EXISTS users (")
        assert "CONSTRAINT users_pkey PRIMARY KEY (id)" in users_sql
        assert "name varchar(50)" in users_sql

    def test_foreign_keys_after_tables(self) -> None:
        plan = generate_migration_plan(make_schema(orders(), users()), make_schema())

        kinds = [s.operation for s in plan.scripts]
        assert kinds.index(OperationKind.ADD_FOREIGN_KEY) > max(
            i for i, k in enumerate(kinds) if k == OperationKind.CREATE_TABLE
        )
        fk_sql = next(s.sql for s in plan.scripts if s.operation == OperationKind.ADD_FOREIGN_KEY)
        assert fk_sql.startswith("DO $$")
        assert "IF NOT EXISTS (SELECT 1 FROM pg_constraint WHERE conname = 'orders_user_id_fkey'" in fk_sql
        assert "REFERENCES users (id) ON DELETE CASCADE" in fk_sql

    def test_add_nullable_column(self) -> None:
        source = make_schema(users(extra=[col("bio", "text")]))
        target = make_schema(users())

        plan = generate_migration_plan(source, target)

        assert [s.sql for s in plan.auto_scripts] == [
            "ALTER TABLE users ADD COLUMN IF NOT EXISTS bio text;"
        ]
        assert plan.scripts[0].rollback_sql == "ALTER TABLE users DROP COLUMN IF EXISTS bio;"

    def test_add_not_null_column_without_default_is_manual(self) -> None:
        source = make_schema(users(extra=[col("score", "int4", "integer", is_nullable=False)]))
        target = make_schema(users())

        plan = generate_migration_plan(source, target)

        script = plan.manual_review_scripts[0]
        assert script.operation == OperationKind.ADD_COLUMN
        assert "ADD COLUMN IF NOT EXISTS score integer;" in script.sql
        assert "UPDATE users SET score = 0 WHERE score IS NULL;" in script.sql
        assert "ALTER COLUMN score SET NOT NULL;" in script.sql
        assert script.risk == Risk.CAUTION

    def test_add_not_null_column_with_default_is_auto(self) -> None:
        source = make_schema(
            users(extra=[col("active", "bool", "boolean", is_nullable=False, default="true")])
        )
        plan = generate_migration_plan(source, make_schema(users()))

        assert [s.sql for s in plan.auto_scripts] == [
            "ALTER TABLE users ADD COLUMN IF NOT EXISTS active boolean DEFAULT true NOT NULL;"
        ]

    def test_sequence_default_becomes_serial(self) -> None:
        table = TableSchema(
            name="counters",
            columns=[
                col("n", "int4", "integer", is_nullable=False, default="nextval('counters_n_seq'::regclass)")
            ],
        )
        plan = generate_migration_plan(make_schema(table), make_schema())

        assert "n serial NOT NULL" in plan.scripts[0].sql

    def test_enum_created_and_extended(self) -> None:
        source = make_schema(
            enums={
                "mood": EnumType(name="mood", values=["happy", "sad"]),
                "size": EnumType(name="size", values=["s", "m", "l"]),
            }
        )
        target = make_schema(enums={"size": EnumType(name="size", values=["s", "m"])})

        plan = generate_migration_plan(source, target)

        sql = [s.sql for s in plan.scripts]
        assert any("CREATE TYPE mood AS ENUM ('happy', 'sad');" in s for s in sql)
        assert "ALTER TYPE size ADD VALUE IF NOT EXISTS 'l';" in sql

    def test_missing_index_and_constraint(self) -> None:
        index = IndexSchema(
            table="users",
            name="users_name_idx",
            columns=["name"],
            definition="CREATE INDEX users_name_idx ON public.users USING btree (name)",
        )
        unique = ConstraintSchema(
            table="users",
            name="users_name_key",
            constraint_type="UNIQUE",
            columns=["name"],
            definition="UNIQUE (name)",
        )
        source = make_schema(users(indexes=[index], constraints=[unique]))
        target = make_schema(users())

        plan = generate_migration_plan(source, target)

        sql = [s.sql for s in plan.auto_scripts]
        assert sql[0] == "CREATE INDEX IF NOT EXISTS users_name_idx ON public.users USING btree (name);"
        assert "ADD CONSTRAINT users_name_key UNIQUE (name);" in sql[1]

    def test_nullability_relaxed(self) -> None:
        source = make_schema(users(extra=[col("email", "text")]))
        target = make_schema(users(extra=[col("email", "text", is_nullable=False)]))

        plan = generate_migration_plan(source, target)

        assert [s.sql for s in plan.auto_scripts] == [
            "ALTER TABLE users ALTER COLUMN email DROP NOT NULL;"
        ]


class TestDropsAndDirection:
    """Drops are opt-in and always manual; direction swaps the reference."""

    def test_drops_excluded_by_default(self) -> None:
        plan = generate_migration_plan(make_schema(users()), make_schema(users(extra=[col("old", "text")])))
        assert plan.scripts == []

    def test_include_drops(self) -> None:
        source = make_schema(users())
        target = make_schema(users(extra=[col("old", "text")]), TableSchema(name="legacy"))

        plan = generate_migration_plan(source, target, include_drops=True)

        assert {s.operation for s in plan.manual_review_scripts} == {
            OperationKind.DROP_COLUMN,
            OperationKind.DROP_TABLE,
        }
        assert all(s.risk == Risk.DANGEROUS for s in plan.manual_review_scripts)

    def test_target_to_source(self) -> None:
        source = make_schema(users())
        target = make_schema(users(extra=[col("bio", "text")]))

        plan = generate_migration_plan(source, target, direction="target_to_source")

        assert plan.direction == "target_to_source"
        assert [s.sql for s in plan.auto_scripts] == [
            "ALTER TABLE users ADD COLUMN IF NOT EXISTS bio text;"
        ]

    def test_table_filter(self) -> None:
        plan = generate_migration_plan(
            make_schema(users(), orders()), make_schema(), table_names=["users"]
        )
        assert {s.table for s in plan.scripts} == {"users"}


class TestScripts:
    """Combined forward and rollback scripts."""

    def _full_plan(self) -> MigrationPlan:
        index = IndexSchema(
            table="users",
            name="users_name_idx",
            columns=["name"],
            definition="CREATE INDEX users_name_idx ON public.users USING btree (name)",
        )
        unique = ConstraintSchema(
            table="users",
            name="users_name_key",
            constraint_type="UNIQUE",
            columns=["name"],
            definition="UNIQUE (name)",
        )
        source = make_schema(
            users(extra=[col("bio", "text"), col("email", "text")], indexes=[index], constraints=[unique]),
            orders(),
            enums={
                "mood": EnumType(name="mood", values=["happy", "sad"]),
                "size": EnumType(name="size", values=["s", "m", "l"]),
            },
        )
        target = make_schema(
            users(extra=[col("email", "text", is_nullable=False)]),
            enums={"size": EnumType(name="size", values=["s", "m"])},
        )
        return generate_migration_plan(source, target)

    def test_every_auto_script_is_rerunnable(self) -> None:
        rerunnable = {
            OperationKind.CREATE_ENUM: "IF NOT EXISTS (SELECT 1 FROM pg_type",
            OperationKind.ADD_ENUM_VALUE: "ADD VALUE IF NOT EXISTS",
            OperationKind.CREATE_TABLE: "CREATE TABLE IF NOT EXISTS",
            OperationKind.ADD_COLUMN: "ADD COLUMN IF NOT EXISTS",
            OperationKind.DROP_NOT_NULL: "DROP NOT NULL",
            OperationKind.CREATE_INDEX: "INDEX IF NOT EXISTS",
            OperationKind.ADD_CONSTRAINT: "IF NOT EXISTS (SELECT 1 FROM pg_constraint",
            OperationKind.ADD_FOREIGN_KEY: "IF NOT EXISTS (SELECT 1 FROM pg_constraint",
        }

        plan = self._full_plan()

        assert {s.operation for s in plan.auto_scripts} == set(rerunnable)
        for script in plan.auto_scripts:
            assert rerunnable[script.operation] in script.sql, script.description

    def test_enum_values_committed_before_transaction(self) -> None:
        forward = self._full_plan().forward_script

        add_value = forward.index("ALTER TYPE size ADD VALUE IF NOT EXISTS 'l';")
        assert add_value < forward.index("BEGIN;")
        assert forward.index("CREATE TYPE mood") > forward.index("BEGIN;")
        assert forward.count("ADD VALUE") == 1

    def test_only_enum_values_has_no_transaction(self) -> None:
        plan = generate_migration_plan(
            make_schema(enums={"size": EnumType(name="size", values=["s", "m"])}),
            make_schema(enums={"size": EnumType(name="size", values=["s"])}),
        )

        assert "ALTER TYPE size ADD VALUE IF NOT EXISTS 'm';" in plan.forward_script
        assert "BEGIN;" not in plan.forward_script

    def test_forward_script_is_transactional(self) -> None:
        plan = generate_migration_plan(make_schema(users(extra=[col("bio", "text")])), make_schema(users()))

        forward = plan.forward_script
        assert "BEGIN;" in forward
        assert forward.rstrip().endswith("COMMIT;")

    def test_rollback_in_reverse_order(self) -> None:
        plan = generate_migration_plan(make_schema(users(), orders()), make_schema())

        rollback = plan.rollback_script
        assert rollback.index("DROP CONSTRAINT IF EXISTS orders_user_id_fkey") < rollback.index(
            "DROP TABLE IF EXISTS orders;"
        )
        assert rollback.index("DROP TABLE IF EXISTS orders;") < rollback.index(
            "DROP TABLE IF EXISTS users;"
        )

    def test_best_effort_label(self) -> None:
        plan = generate_migration_plan(make_schema(users(50)), make_schema(users(20)))
        assert "BEST-EFFORT" in plan.rollback_script
        assert "[manual review]" in plan.rollback_script

    def test_summary_counts(self) -> None:
        source = make_schema(users(50, extra=[col("bio", "text")]))
        plan = generate_migration_plan(source, make_schema(users(20)))

        assert plan.summary["total"] == 2
        assert plan.summary["auto"] == 1
        assert plan.summary["manual_review"] == 1


class TestPlanFromValidation:
    """Plans can be generated straight from a validation result."""

    def test_uses_validated_tables(self) -> None:
        source = make_schema(users(50), orders())
        target = make_schema(users(20))
        result = validate_schemas(source, target, ["users"])

        plan = plan_from_validation(result)

        assert {s.table for s in plan.scripts} == {"users"}
        assert plan.manual_review_scripts[0].sql == (
            "ALTER TABLE users ALTER COLUMN name TYPE varchar(50);"
        )

    def test_requires_schemas(self) -> None:
        with pytest.raises(ValueError):
            plan_from_validation(ValidationResult())


class TestApplyMigration:
    """apply_migration() runs auto scripts only, with confirmation."""

    def _plan(self) -> MigrationPlan:
        source = make_schema(users(50, extra=[col("bio", "text"), col("age", "int4")]))
        return generate_migration_plan(source, make_schema(users(20)))

    @pytest.mark.asyncio
    async def test_dry_run_executes_nothing(self) -> None:
        adapter = AsyncMock()

        result = await apply_migration(adapter, self._plan())

        assert result.success is True
        assert result.statements_executed == 0
        assert len(result.executed) == 2
        adapter.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_requires_confirm(self) -> None:
        adapter = AsyncMock()

        result = await apply_migration(adapter, self._plan(), dry_run=False)

        assert result.success is False
        assert "confirm" in result.error
        adapter.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_applies_auto_scripts_only(self) -> None:
        adapter = AsyncMock()

        result = await apply_migration(adapter, self._plan(), dry_run=False, confirm=True)

        assert result.success is True
        assert result.statements_executed == 2
        assert result.manual_review_skipped == 1
        executed = [call.args[0] for call in adapter.execute.call_args_list]
        assert not any("TYPE varchar(50)" in sql for sql in executed)

    @pytest.mark.asyncio
    async def test_failure_stops_and_reports(self) -> None:
        adapter = AsyncMock()
        adapter.execute.side_effect = [None, Exception("permission denied")]

        result = await apply_migration(adapter, self._plan(), dry_run=False, confirm=True)

        assert result.success is False
        assert result.statements_executed == 1
        assert result.error == "permission denied"

    @pytest.mark.asyncio
    async def test_adapter_without_ddl(self) -> None:
        adapter = AsyncMock()
        adapter.execute.side_effect = NotImplementedError

        with pytest.raises(RuntimeError, match="DDL"):
            await apply_migration(adapter, self._plan(), dry_run=False, confirm=True)

    @pytest.mark.asyncio
    async def test_manual_script_requires_confirm(self) -> None:
        adapter = AsyncMock()
        script = self._plan().manual_review_scripts[0]

        refused = await apply_manual_script(adapter, script)
        applied = await apply_manual_script(adapter, script, confirm=True)

        assert refused.success is False
        assert applied.success is True
        adapter.execute.assert_awaited_once_with(script.sql)
