"""Migration generation -- idempotent DDL that brings a target schema in line.

Compares two inspected schemas and emits one idempotent statement per
difference it can resolve: guarded ``CREATE TYPE``, ``CREATE TABLE IF NOT
EXISTS``, ``ADD COLUMN IF NOT EXISTS``, ``CREATE INDEX IF NOT EXISTS`` and
guarded ``ADD CONSTRAINT``.  Running the combined script twice is a no-op
the second time.

Breaking scripts (column drops, type changes, NOT NULL columns without a
default) are kept out of the auto-runnable script and placed in a
manual-review bucket.  Each one also produces a
``MigrationGenerationWarning`` so it is never silently dropped.

Usage:
    from db_sync.schema.migration import generate_migration_plan, apply_migration

    plan = generate_migration_plan(source_schema, target_schema)
    print(plan.forward_script)
    print(plan.manual_review_script)

    result = await apply_migration(adapter, plan, dry_run=False, confirm=True)
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from db_sync.schema.models import (
    ColumnSchema,
    ConstraintSchema,
    DatabaseSchema,
    EnumType,
    ForeignKeySchema,
    IndexSchema,
    TableSchema,
    ValidationResult,
)
from db_sync.schema.types import (
    capacity_warning,
    default_for_type,
    full_data_type,
    nullability_conflict,
    types_compatible,
)
from db_sync.sql import quote_ident, quote_literal

if TYPE_CHECKING:
    from db_sync.adapters.base import DatabaseClient

logger = logging.getLogger(__name__)

SOURCE_TO_TARGET = "source_to_target"
TARGET_TO_SOURCE = "target_to_source"

_SERIAL_TYPES = {"int2": "smallserial", "int4": "serial", "int8": "bigserial"}


# ------------------------------------------------------------------
# Script data classes
# ------------------------------------------------------------------


class Risk(str, Enum):
    SAFE = "safe"
    CAUTION = "caution"
    DANGEROUS = "dangerous"


class OperationKind(str, Enum):
    CREATE_ENUM = "create_enum"
    ADD_ENUM_VALUE = "add_enum_value"
    CREATE_TABLE = "create_table"
    ADD_COLUMN = "add_column"
    ALTER_COLUMN_TYPE = "alter_column_type"
    DROP_NOT_NULL = "drop_not_null"
    CREATE_INDEX = "create_index"
    ADD_CONSTRAINT = "add_constraint"
    ADD_FOREIGN_KEY = "add_foreign_key"
    DROP_COLUMN = "drop_column"
    DROP_TABLE = "drop_table"


@dataclass
class MigrationScript:
    """One idempotent DDL statement plus its inverse.

    Example:
        script = MigrationScript(
            table="users",
            operation=OperationKind.CREATE_INDEX,
            sql="CREATE INDEX IF NOT EXISTS users_email_idx ON users (email);",
            description="Create index users_email_idx",
            rollback_sql="DROP INDEX IF EXISTS users_email_idx;",
        )
    """

    table: str
    operation: OperationKind
    sql: str
    description: str
    risk: Risk = Risk.SAFE
    is_breaking: bool = False
    rollback_sql: str | None = None
    rollback_exact: bool = True  # False: inverse cannot restore prior state exactly


@dataclass
class MigrationGenerationWarning:
    """A script that needs a human before it runs."""

    table: str
    operation: OperationKind
    message: str


@dataclass
class MigrationPlan:
    """Ordered migration scripts split into auto-runnable and manual-review.

    Attributes:
        direction: ``source_to_target`` or ``target_to_source``.
        scripts: All scripts in execution order.
        warnings: One entry per breaking script.
    """

    direction: str = SOURCE_TO_TARGET
    scripts: list[MigrationScript] = field(default_factory=list)
    warnings: list[MigrationGenerationWarning] = field(default_factory=list)

    @property
    def auto_scripts(self) -> list[MigrationScript]:
        return [s for s in self.scripts if not s.is_breaking]

    @property
    def manual_review_scripts(self) -> list[MigrationScript]:
        return [s for s in self.scripts if s.is_breaking]

    @property
    def has_changes(self) -> bool:
        return bool(self.scripts)

    @property
    def forward_script(self) -> str:
        """Combined auto-runnable script in one transaction.

        New enum values are committed before ``BEGIN``: PostgreSQL rejects
        using an enum value in the transaction that added it.
        """
        lines = [
            f"-- db-sync migration ({self.direction})",
            f"-- {len(self.auto_scripts)} auto-runnable statement(s); "
            f"{len(self.manual_review_scripts)} held for manual review",
        ]
        if not self.auto_scripts:
            lines.append("-- Nothing to apply automatically")
            return "\n".join(lines) + "\n"

        enum_values = [s for s in self.auto_scripts if s.operation == OperationKind.ADD_ENUM_VALUE]
        transactional = [s for s in self.auto_scripts if s.operation != OperationKind.ADD_ENUM_VALUE]

        lines.append("")
        for script in enum_values:
            lines += [f"-- {script.description}", script.sql, ""]
        if transactional:
            lines += ["BEGIN;", ""]
            for script in transactional:
                lines += [f"-- {script.description}", script.sql, ""]
            lines.append("COMMIT;")
        return "\n".join(lines) + "\n"

    @property
    def manual_review_script(self) -> str:
        """Breaking scripts, each annotated with its risk.  Never auto-applied."""
        if not self.manual_review_scripts:
            return ""
        lines = [
            "-- MANUAL REVIEW REQUIRED",
            "-- These statements can lose or reject data. Review and run each one separately.",
            "",
        ]
        for script in self.manual_review_scripts:
            lines += [
                f"-- [{script.risk.value.upper()}] {script.description}",
                script.sql,
                "",
            ]
        return "\n".join(lines)

    @property
    def rollback_script(self) -> str:
        """Inverse operations in reverse order.

        Inverses that cannot restore the prior state exactly are labelled
        BEST-EFFORT.
        """
        lines = [f"-- db-sync rollback ({self.direction})", ""]
        for script in reversed(self.scripts):
            if script.rollback_sql is None:
                continue
            label = "" if script.rollback_exact else "BEST-EFFORT: "
            bucket = " [manual review]" if script.is_breaking else ""
            lines += [
                f"-- {label}undo {script.description}{bucket}",
                script.rollback_sql,
                "",
            ]
        return "\n".join(lines)

    @property
    def summary(self) -> dict[str, int]:
        counts = {
            "total": len(self.scripts),
            "auto": len(self.auto_scripts),
            "manual_review": len(self.manual_review_scripts),
        }
        for risk in Risk:
            counts[risk.value] = sum(1 for s in self.scripts if s.risk == risk)
        return counts


class MigrationResult(BaseModel):
    """Result of applying a migration plan.

    Attributes:
        success: True if every attempted statement succeeded.
        statements_executed: Number of statements run.
        manual_review_skipped: Breaking scripts left for manual execution.
        executed: Descriptions of the statements that ran, in order.
        error: Error message if application failed.
    """

    success: bool = False
    statements_executed: int = 0
    manual_review_skipped: int = 0
    executed: list[str] = Field(default_factory=list)
    error: str | None = None


# ------------------------------------------------------------------
# SQL rendering
# ------------------------------------------------------------------


def _guarded(condition_sql: str, statement: str) -> str:
    """Wrap ``statement`` in a DO block that runs only if nothing matches."""
    return (
        "DO $$\n"
        "BEGIN\n"
        f"    IF NOT EXISTS ({condition_sql}) THEN\n"
        f"        {statement}\n"
        "    END IF;\n"
        "END $$;"
    )


def _column_definition(column: ColumnSchema, include_not_null: bool = True) -> str:
    """Render ``name type [DEFAULT ...] [NOT NULL]``.

    Sequence-backed integer columns are rendered as serial types so the
    sequence is created with the table.
    """
    default = column.default
    rendered_type = full_data_type(column)
    if default and default.startswith("nextval(") and column.storage_type in _SERIAL_TYPES:
        rendered_type = _SERIAL_TYPES[column.storage_type]
        default = None

    parts = [quote_ident(column.name), rendered_type]
    if default is not None:
        parts.append(f"DEFAULT {default}")
    if include_not_null and not column.is_nullable:
        parts.append("NOT NULL")
    return " ".join(parts)


def _create_table_sql(table: TableSchema) -> str:
    lines = [f"    {_column_definition(col)}" for col in table.columns]
    if table.primary_key is not None:
        pk_cols = ", ".join(quote_ident(c) for c in table.primary_key.columns)
        lines.append(
            f"    CONSTRAINT {quote_ident(table.primary_key.constraint_name)} "
            f"PRIMARY KEY ({pk_cols})"
        )
    body = ",\n".join(lines)
    return f"CREATE TABLE IF NOT EXISTS {quote_ident(table.name)} (\n{body}\n);"


def _constraint_exists(name: str, table: str) -> str:
    return (
        f"SELECT 1 FROM pg_constraint WHERE conname = {quote_literal(name)} "
        f"AND conrelid = {quote_literal(quote_ident(table))}::regclass"
    )


def _foreign_key_clause(fk: ForeignKeySchema) -> str:
    clause = (
        f"FOREIGN KEY ({quote_ident(fk.column)}) REFERENCES "
        f"{quote_ident(fk.referenced_table)} ({quote_ident(fk.referenced_column)})"
    )
    if fk.on_delete and fk.on_delete != "NO ACTION":
        clause += f" ON DELETE {fk.on_delete}"
    if fk.on_update and fk.on_update != "NO ACTION":
        clause += f" ON UPDATE {fk.on_update}"
    return clause


def _constraint_clause(constraint: ConstraintSchema) -> str:
    if constraint.definition:
        return constraint.definition
    cols = ", ".join(quote_ident(c) for c in constraint.columns)
    return f"{constraint.constraint_type} ({cols})"


_CREATE_INDEX = re.compile(r"^CREATE\s+(UNIQUE\s+)?INDEX\s+(?!IF NOT EXISTS)", re.IGNORECASE)


def _create_index_sql(index: IndexSchema) -> str:
    if index.definition:
        sql = _CREATE_INDEX.sub(
            lambda m: f"CREATE {m.group(1) or ''}INDEX IF NOT EXISTS ", index.definition
        )
    else:
        unique = "UNIQUE " if index.is_unique else ""
        cols = ", ".join(quote_ident(c) for c in index.columns)
        sql = (
            f"CREATE {unique}INDEX IF NOT EXISTS {quote_ident(index.name)} "
            f"ON {quote_ident(index.table)} USING {index.index_type} ({cols})"
        )
    return sql.rstrip(";") + ";"


# ------------------------------------------------------------------
# Dependency ordering
# ------------------------------------------------------------------


def _topological_sort(dependencies: dict[str, set[str]], tables: list[str]) -> list[str]:
    """Topological sort of tables based on FK dependencies.

    Returns tables in forward order: parent tables first, child tables last.
    Cycles are broken at the first table revisited.

    Args:
        dependencies: FK dependency graph (table -> set of referenced tables).
        tables: List of table names to sort.

    Returns:
        Tables sorted so that parent tables come before child tables.
    """
    relevant = {t: dependencies.get(t, set()) & set(tables) for t in tables}

    sorted_tables: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()  # For cycle detection

    def visit(table: str) -> None:
        if table in visited or table in visiting:
            return
        visiting.add(table)
        for dep in sorted(relevant.get(table, set())):
            visit(dep)
        visiting.discard(table)
        visited.add(table)
        sorted_tables.append(table)

    for table in tables:
        visit(table)

    return sorted_tables


def _fk_dependencies(schema: DatabaseSchema) -> dict[str, set[str]]:
    return {
        name: {fk.referenced_table for fk in table.foreign_keys if fk.referenced_table != name}
        for name, table in schema.tables.items()
    }


# ------------------------------------------------------------------
# Plan generation
# ------------------------------------------------------------------


class _PlanBuilder:
    """Collects scripts by phase so the final plan is correctly ordered."""

    PHASES = (
        "enums",
        "tables",
        "columns",
        "types",
        "nullability",
        "indexes",
        "constraints",
        "foreign_keys",
        "drops",
    )

    def __init__(self, direction: str):
        self.direction = direction
        self._phases: dict[str, list[MigrationScript]] = {p: [] for p in self.PHASES}
        self.warnings: list[MigrationGenerationWarning] = []

    def add(self, phase: str, script: MigrationScript) -> None:
        self._phases[phase].append(script)
        if script.is_breaking:
            self.warnings.append(
                MigrationGenerationWarning(
                    table=script.table,
                    operation=script.operation,
                    message=f"{script.description} requires manual review ({script.risk.value})",
                )
            )

    def build(self) -> MigrationPlan:
        scripts = [s for phase in self.PHASES for s in self._phases[phase]]
        return MigrationPlan(direction=self.direction, scripts=scripts, warnings=self.warnings)


def generate_migration_plan(
    source: DatabaseSchema,
    target: DatabaseSchema,
    direction: str = SOURCE_TO_TARGET,
    table_names: list[str] | None = None,
    include_drops: bool = False,
) -> MigrationPlan:
    """Generate the DDL needed to make one schema match the other.

    Pure logic, no database access.

    Args:
        source: Inspected source schema.
        target: Inspected target schema.
        direction: ``source_to_target`` changes the target to match the
            source; ``target_to_source`` changes the source to match the
            target.
        table_names: Restrict generation to these tables.  ``None`` or
            empty covers every table in the reference schema.
        include_drops: Also emit (manual-review) drops for tables and
            columns that exist only in the schema being changed.

    Returns:
        ``MigrationPlan`` ordered as enums, tables, columns, type changes,
        nullability, indexes, constraints, foreign keys, drops.

    Raises:
        ValueError: If ``direction`` is unknown.

    Example:
        plan = generate_migration_plan(source_schema, target_schema)
        for script in plan.manual_review_scripts:
            print(script.description)
    """
    if direction == SOURCE_TO_TARGET:
        reference, current = source, target
    elif direction == TARGET_TO_SOURCE:
        reference, current = target, source
    else:
        raise ValueError(f"Unknown migration direction: {direction!r}")

    builder = _PlanBuilder(direction)
    wanted = set(table_names) if table_names else None

    def in_scope(name: str) -> bool:
        return wanted is None or name in wanted

    for enum in reference.enums.values():
        _plan_enum(builder, enum, current.enums.get(enum.name))

    new_tables = [
        name for name in reference.tables if in_scope(name) and name not in current.tables
    ]
    deps = _fk_dependencies(reference)
    for name in _topological_sort(deps, sorted(new_tables)):
        table = reference.tables[name]
        builder.add(
            "tables",
            MigrationScript(
                table=name,
                operation=OperationKind.CREATE_TABLE,
                sql=_create_table_sql(table),
                description=f"Create table {name}",
                rollback_sql=f"DROP TABLE IF EXISTS {quote_ident(name)};",
            ),
        )
        _plan_table_objects(builder, table, None)

    for name in sorted(reference.tables):
        if not in_scope(name) or name not in current.tables:
            continue
        ref_table = reference.tables[name]
        cur_table = current.tables[name]
        _plan_columns(builder, ref_table, cur_table, include_drops)
        _plan_table_objects(builder, ref_table, cur_table)

    if include_drops:
        for name in sorted(current.tables):
            if in_scope(name) and name not in reference.tables:
                builder.add(
                    "drops",
                    MigrationScript(
                        table=name,
                        operation=OperationKind.DROP_TABLE,
                        sql=f"DROP TABLE IF EXISTS {quote_ident(name)};",
                        description=f"Drop table {name}",
                        risk=Risk.DANGEROUS,
                        is_breaking=True,
                        rollback_sql=_create_table_sql(current.tables[name]),
                        rollback_exact=False,
                    ),
                )

    plan = builder.build()
    logger.info(
        "Generated migration plan (%s): %d auto, %d manual review",
        direction,
        len(plan.auto_scripts),
        len(plan.manual_review_scripts),
    )
    return plan


def plan_from_validation(
    result: ValidationResult, direction: str = SOURCE_TO_TARGET
) -> MigrationPlan:
    """Generate a migration plan for the tables covered by a validation.

    Raises:
        ValueError: If the validation result does not carry both schemas.
    """
    if result.source_schema is None or result.target_schema is None:
        raise ValueError("ValidationResult has no schemas attached")
    return generate_migration_plan(
        result.source_schema,
        result.target_schema,
        direction=direction,
        table_names=result.tables or None,
    )


def _plan_enum(builder: _PlanBuilder, enum: EnumType, existing: EnumType | None) -> None:
    type_name = quote_ident(enum.name)
    if existing is None:
        values = ", ".join(quote_literal(v) for v in enum.values)
        builder.add(
            "enums",
            MigrationScript(
                table=enum.name,
                operation=OperationKind.CREATE_ENUM,
                sql=_guarded(
                    f"SELECT 1 FROM pg_type WHERE typname = {quote_literal(enum.name)}",
                    f"CREATE TYPE {type_name} AS ENUM ({values});",
                ),
                description=f"Create enum type {enum.name}",
                rollback_sql=f"DROP TYPE IF EXISTS {type_name};",
            ),
        )
        return

    for value in enum.values:
        if value in existing.values:
            continue
        builder.add(
            "enums",
            MigrationScript(
                table=enum.name,
                operation=OperationKind.ADD_ENUM_VALUE,
                sql=f"ALTER TYPE {type_name} ADD VALUE IF NOT EXISTS {quote_literal(value)};",
                description=f"Add value {value!r} to enum {enum.name}",
                rollback_sql=f"-- PostgreSQL cannot drop enum value {quote_literal(value)} from {type_name}",
                rollback_exact=False,
            ),
        )


def _plan_columns(
    builder: _PlanBuilder,
    reference: TableSchema,
    current: TableSchema,
    include_drops: bool,
) -> None:
    table = quote_ident(reference.name)

    for ref_col in reference.columns:
        column = quote_ident(ref_col.name)
        cur_col = current.column(ref_col.name)

        if cur_col is None:
            if not ref_col.is_nullable and ref_col.default is None:
                # Existing rows need a value before NOT NULL can hold
                backfill = default_for_type(ref_col)
                builder.add(
                    "columns",
                    MigrationScript(
                        table=reference.name,
                        operation=OperationKind.ADD_COLUMN,
                        sql=(
                            "DO $$\n"
                            "BEGIN\n"
                            f"    ALTER TABLE {table} ADD COLUMN IF NOT EXISTS "
                            f"{_column_definition(ref_col, include_not_null=False)};\n"
                            f"    UPDATE {table} SET {column} = {backfill} WHERE {column} IS NULL;\n"
                            f"    ALTER TABLE {table} ALTER COLUMN {column} SET NOT NULL;\n"
                            "END $$;"
                        ),
                        description=(
                            f"Add NOT NULL column {reference.name}.{ref_col.name} "
                            f"(existing rows backfilled with {backfill})"
                        ),
                        risk=Risk.CAUTION,
                        is_breaking=True,
                        rollback_sql=f"ALTER TABLE {table} DROP COLUMN IF EXISTS {column};",
                    ),
                )
            else:
                builder.add(
                    "columns",
                    MigrationScript(
                        table=reference.name,
                        operation=OperationKind.ADD_COLUMN,
                        sql=(
                            f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS "
                            f"{_column_definition(ref_col)};"
                        ),
                        description=f"Add column {reference.name}.{ref_col.name}",
                        rollback_sql=f"ALTER TABLE {table} DROP COLUMN IF EXISTS {column};",
                    ),
                )
            continue

        compatible = types_compatible(ref_col.storage_type, cur_col.storage_type)
        if not compatible or capacity_warning(ref_col, cur_col) is not None:
            new_type = full_data_type(ref_col)
            using = "" if compatible else f" USING {column}::{new_type}"
            builder.add(
                "types",
                MigrationScript(
                    table=reference.name,
                    operation=OperationKind.ALTER_COLUMN_TYPE,
                    sql=f"ALTER TABLE {table} ALTER COLUMN {column} TYPE {new_type}{using};",
                    description=(
                        f"Change type of {reference.name}.{ref_col.name} from "
                        f"{full_data_type(cur_col)} to {new_type}"
                    ),
                    risk=Risk.CAUTION if compatible else Risk.DANGEROUS,
                    is_breaking=True,
                    rollback_sql=(
                        f"ALTER TABLE {table} ALTER COLUMN {column} TYPE "
                        f"{full_data_type(cur_col)};"
                    ),
                    rollback_exact=False,
                ),
            )

        if nullability_conflict(ref_col, cur_col):
            builder.add(
                "nullability",
                MigrationScript(
                    table=reference.name,
                    operation=OperationKind.DROP_NOT_NULL,
                    sql=f"ALTER TABLE {table} ALTER COLUMN {column} DROP NOT NULL;",
                    description=f"Allow NULL in {reference.name}.{ref_col.name}",
                    risk=Risk.CAUTION,
                    rollback_sql=f"ALTER TABLE {table} ALTER COLUMN {column} SET NOT NULL;",
                    rollback_exact=False,
                ),
            )

    if include_drops:
        for cur_col in current.columns:
            if reference.column(cur_col.name) is not None:
                continue
            builder.add(
                "drops",
                MigrationScript(
                    table=reference.name,
                    operation=OperationKind.DROP_COLUMN,
                    sql=f"ALTER TABLE {table} DROP COLUMN IF EXISTS {quote_ident(cur_col.name)};",
                    description=f"Drop column {reference.name}.{cur_col.name}",
                    risk=Risk.DANGEROUS,
                    is_breaking=True,
                    rollback_sql=(
                        f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS "
                        f"{_column_definition(cur_col, include_not_null=False)};"
                    ),
                    rollback_exact=False,
                ),
            )


def _plan_table_objects(
    builder: _PlanBuilder, reference: TableSchema, current: TableSchema | None
) -> None:
    """Indexes, UNIQUE/CHECK constraints and foreign keys missing from ``current``."""
    table = quote_ident(reference.name)
    constraint_names = {c.name for c in reference.constraints}

    current_index_sigs = {i.signature for i in current.indexes} if current else set()
    for index in reference.indexes:
        # Primary key and UNIQUE constraint indexes come with their constraint
        if index.is_primary or index.name in constraint_names:
            continue
        if index.signature in current_index_sigs:
            continue
        builder.add(
            "indexes",
            MigrationScript(
                table=reference.name,
                operation=OperationKind.CREATE_INDEX,
                sql=_create_index_sql(index),
                description=f"Create index {index.name} on {reference.name}",
                rollback_sql=f"DROP INDEX IF EXISTS {quote_ident(index.name)};",
            ),
        )

    current_constraint_sigs = {c.signature for c in current.constraints} if current else set()
    for constraint in reference.constraints:
        if constraint.signature in current_constraint_sigs:
            continue
        name = quote_ident(constraint.name)
        builder.add(
            "constraints",
            MigrationScript(
                table=reference.name,
                operation=OperationKind.ADD_CONSTRAINT,
                sql=_guarded(
                    _constraint_exists(constraint.name, reference.name),
                    f"ALTER TABLE {table} ADD CONSTRAINT {name} {_constraint_clause(constraint)};",
                ),
                description=(
                    f"Add {constraint.constraint_type} constraint {constraint.name} "
                    f"on {reference.name}"
                ),
                risk=Risk.CAUTION if current is not None else Risk.SAFE,
                rollback_sql=f"ALTER TABLE {table} DROP CONSTRAINT IF EXISTS {name};",
            ),
        )

    current_fk_sigs = {fk.signature for fk in current.foreign_keys} if current else set()
    for fk in reference.foreign_keys:
        if fk.signature in current_fk_sigs:
            continue
        name = quote_ident(fk.name)
        builder.add(
            "foreign_keys",
            MigrationScript(
                table=reference.name,
                operation=OperationKind.ADD_FOREIGN_KEY,
                sql=_guarded(
                    _constraint_exists(fk.name, reference.name),
                    f"ALTER TABLE {table} ADD CONSTRAINT {name} {_foreign_key_clause(fk)};",
                ),
                description=(
                    f"Add foreign key {reference.name}.{fk.column} -> "
                    f"{fk.referenced_table}.{fk.referenced_column}"
                ),
                risk=Risk.CAUTION if current is not None else Risk.SAFE,
                rollback_sql=f"ALTER TABLE {table} DROP CONSTRAINT IF EXISTS {name};",
            ),
        )


# ------------------------------------------------------------------
# Plan application
# ------------------------------------------------------------------


async def apply_migration(
    adapter: "DatabaseClient",
    plan: MigrationPlan,
    dry_run: bool = True,
    confirm: bool = False,
) -> MigrationResult:
    """Apply the auto-runnable scripts of a plan.

    Manual-review scripts are never executed here; use
    ``apply_manual_script`` for each of them.  Every auto script is
    idempotent, so a failed run can be repeated after the cause is fixed.

    Args:
        adapter: Database adapter implementing ``DatabaseClient`` Protocol.
        plan: Plan from ``generate_migration_plan()``.
        dry_run: If True, only report what would be done.
        confirm: Must be True to actually apply (safety guard).

    Returns:
        ``MigrationResult`` with outcome.

    Raises:
        RuntimeError: If the adapter does not support DDL operations.

    Example:
        result = await apply_migration(adapter, plan, dry_run=False, confirm=True)
        if result.success:
            print(f"Applied {result.statements_executed} statements")
    """
    result = MigrationResult(manual_review_skipped=len(plan.manual_review_scripts))

    if not plan.auto_scripts:
        result.success = True
        return result

    if dry_run:
        result.success = True
        result.executed = [s.description for s in plan.auto_scripts]
        return result

    if not confirm:
        result.error = "Migration requires confirm=True"
        return result

    try:
        for script in plan.auto_scripts:
            try:
                await adapter.execute(script.sql)
            except NotImplementedError:
                raise RuntimeError("DDL operations not supported for this adapter type")
            result.statements_executed += 1
            result.executed.append(script.description)
            logger.info("Applied: %s", script.description)
        result.success = True
    except RuntimeError:
        raise
    except Exception as e:
        logger.error("Migration failed after %d statements: %s", result.statements_executed, e)
        result.error = str(e)

    return result


async def apply_manual_script(
    adapter: "DatabaseClient",
    script: MigrationScript,
    confirm: bool = False,
) -> MigrationResult:
    """Execute one manual-review script, explicitly and on its own.

    Args:
        adapter: Database adapter implementing ``DatabaseClient`` Protocol.
        script: A script from ``plan.manual_review_scripts``.
        confirm: Must be True (safety guard).
    """
    result = MigrationResult()
    if not confirm:
        result.error = f"'{script.description}' requires confirm=True"
        return result

    logger.warning("Applying manual-review script: %s", script.description)
    try:
        await adapter.execute(script.sql)
    except NotImplementedError:
        raise RuntimeError("DDL operations not supported for this adapter type")
    except Exception as e:
        result.error = str(e)
        return result

    result.success = True
    result.statements_executed = 1
    result.executed.append(script.description)
    return result
