"""Schema comparison and sync-readiness validation.

Compares two inspected ``DatabaseSchema`` instances and produces a
``ValidationResult``: severity-tagged issues, per-table comparisons and a
proceed/confirm decision.  Pure functions, no database access.

Severity policy:
- CRITICAL: table missing in target, table explicitly requested but
  missing in source, missing or wrong-typed ``id``/``updated_at``, source
  NOT NULL column (no default) missing in target
- HIGH: incompatible column type, value exceeds target length/precision,
  target-only NOT NULL column without default, target-only foreign key,
  enum missing in target, table missing in source (auto-discovery)
- MEDIUM: nullability and default mismatches, target-only UNIQUE, missing
  enum values, nullable ``updated_at``
- LOW: nullable source column missing in target, source-only foreign key,
  constraint/index naming differences
- INFO: index present on one side only, target-only CHECK, extra enum
  values

Usage:
    from db_sync.schema.comparator import validate_schemas

    result = validate_schemas(source_schema, target_schema, ["users"])
    if not result.can_proceed:
        print(result.format_report())
"""

import logging
from collections import defaultdict

from db_sync.schema.models import (
    ColumnComparison,
    ColumnSchema,
    DatabaseSchema,
    IssueCategory,
    Severity,
    TableComparison,
    TableSchema,
    TableStatus,
    ValidationIssue,
    ValidationResult,
    ValidationSummary,
)
from db_sync.schema.types import (
    UPDATED_AT_COLUMN,
    capacity_warning,
    can_safely_insert,
    full_data_type,
    is_syncable,
    sync_requirement_problems,
    types_compatible,
)

logger = logging.getLogger(__name__)

BOTH_EMPTY_WARNING = "Both source and target schemas are empty; nothing to sync"

PRODUCTION_ENVIRONMENTS = {"production", "prod"}

# Throughput used for sync duration estimates
ROWS_PER_SECOND = 500


# ============================================================================
# Public API
# ============================================================================


def validate_schemas(
    source: DatabaseSchema,
    target: DatabaseSchema,
    table_names: list[str] | None = None,
    target_environment: str = "development",
) -> ValidationResult:
    """Compare source and target schemas for sync readiness.

    Args:
        source: Inspected source schema.
        target: Inspected target schema.
        table_names: Tables to compare.  Empty or ``None`` compares the
            union of both schemas' tables (auto-discovery).
        target_environment: Environment of the target database.
            ``production`` always requires confirmation.

    Returns:
        ValidationResult with issues, summary, comparisons and the
        ``requires_confirmation`` decision.

    Examples:
        >>> validate_schemas(DatabaseSchema(), DatabaseSchema()).warnings
        ['Both source and target schemas are empty; nothing to sync']
    """
    is_production = target_environment.lower() in PRODUCTION_ENVIRONMENTS

    if not source.tables and not target.tables:
        logger.info("Both schemas are empty, skipping comparison")
        return ValidationResult(
            warnings=[BOTH_EMPTY_WARNING],
            requires_confirmation=is_production,
            target_environment=target_environment,
            source_schema=source,
            target_schema=target,
        )

    explicit = bool(table_names)
    tables = list(dict.fromkeys(table_names)) if explicit else sorted(
        set(source.tables) | set(target.tables)
    )

    issues: list[ValidationIssue] = []
    warnings: list[str] = []
    comparisons: list[TableComparison] = []

    issues.extend(_compare_enums(source, target))

    for name in tables:
        comparison, table_issues = _compare_table(
            name, source.table(name), target.table(name), explicit
        )
        comparisons.append(comparison)
        issues.extend(table_issues)

    # Syncability is re-derived from columns on every call
    syncable = [
        name
        for name in tables
        if (s := source.table(name)) is not None
        and (t := target.table(name)) is not None
        and is_syncable(s)
        and is_syncable(t)
    ]
    if not syncable:
        warnings.append("No requested table is syncable in both source and target")

    volume = estimate_sync_volume(source, syncable)
    warnings.extend(volume["warnings"])

    cycles = detect_circular_dependencies(
        [t for name in tables if (t := source.table(name)) is not None]
    )
    for cycle in cycles:
        warnings.append(f"Circular foreign key dependency: {' -> '.join(cycle)}")

    summary = ValidationSummary.from_issues(issues)
    requires_confirmation = is_production or summary.high > 0 or not syncable

    logger.info(
        "Validated %d tables: %d critical, %d high, %d medium, %d low, %d info",
        len(tables),
        summary.critical,
        summary.high,
        summary.medium,
        summary.low,
        summary.info,
    )

    return ValidationResult(
        issues=issues,
        summary=summary,
        warnings=warnings,
        comparisons=comparisons,
        tables=tables,
        syncable_tables=syncable,
        requires_confirmation=requires_confirmation,
        target_environment=target_environment,
        source_schema=source,
        target_schema=target,
    )


# ============================================================================
# Enum comparison
# ============================================================================


def _compare_enums(source: DatabaseSchema, target: DatabaseSchema) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []

    for name, source_enum in sorted(source.enums.items()):
        target_enum = target.enums.get(name)
        if target_enum is None:
            issues.append(
                ValidationIssue(
                    id=f"enum-missing-{name}",
                    severity=Severity.HIGH,
                    category=IssueCategory.ENUM,
                    table=name,
                    message=f"Enum type '{name}' does not exist in target",
                    details=f"Values: {', '.join(source_enum.values)}",
                    recommendation="Create the enum type in target (migration)",
                    auto_fixable=True,
                )
            )
            continue

        missing = [v for v in source_enum.values if v not in target_enum.values]
        extra = [v for v in target_enum.values if v not in source_enum.values]
        if missing:
            issues.append(
                ValidationIssue(
                    id=f"enum-values-missing-{name}",
                    severity=Severity.MEDIUM,
                    category=IssueCategory.ENUM,
                    table=name,
                    message=f"Enum '{name}' is missing values in target: {', '.join(missing)}",
                    recommendation="Add the missing values with ALTER TYPE ... ADD VALUE",
                    auto_fixable=True,
                )
            )
        if extra:
            issues.append(
                ValidationIssue(
                    id=f"enum-values-extra-{name}",
                    severity=Severity.INFO,
                    category=IssueCategory.ENUM,
                    table=name,
                    message=f"Enum '{name}' has extra values in target: {', '.join(extra)}",
                )
            )

    for name in sorted(set(target.enums) - set(source.enums)):
        issues.append(
            ValidationIssue(
                id=f"enum-target-only-{name}",
                severity=Severity.INFO,
                category=IssueCategory.ENUM,
                table=name,
                message=f"Enum type '{name}' exists only in target",
            )
        )

    return issues


# ============================================================================
# Table comparison
# ============================================================================


def _compare_table(
    name: str,
    source: TableSchema | None,
    target: TableSchema | None,
    explicit: bool,
) -> tuple[TableComparison, list[ValidationIssue]]:
    """Classify one table and collect its issues."""
    if source is None and target is None:
        return TableComparison(table=name, status=TableStatus.MISSING_IN_TARGET), [
            ValidationIssue(
                id=f"table-missing-{name}",
                severity=Severity.CRITICAL,
                category=IssueCategory.TABLE,
                table=name,
                message=f"Table '{name}' does not exist in source or target",
                recommendation="Check the table name",
            )
        ]

    if source is None:
        return TableComparison(table=name, status=TableStatus.MISSING_IN_SOURCE), [
            ValidationIssue(
                id=f"table-missing-in-source-{name}",
                severity=Severity.CRITICAL if explicit else Severity.HIGH,
                category=IssueCategory.TABLE,
                table=name,
                message=f"Table '{name}' does not exist in source",
                recommendation="Remove the table from the sync or create it in source",
            )
        ]

    if target is None:
        return TableComparison(table=name, status=TableStatus.MISSING_IN_TARGET), [
            ValidationIssue(
                id=f"table-missing-in-target-{name}",
                severity=Severity.CRITICAL,
                category=IssueCategory.TABLE,
                table=name,
                message=f"Table '{name}' does not exist in target",
                recommendation="Generate a migration to create the table in target",
                auto_fixable=True,
            )
        ]

    issues: list[ValidationIssue] = []
    issues.extend(_check_sync_requirements(source, "source"))
    issues.extend(_check_sync_requirements(target, "target"))

    column_comparisons, column_issues = _compare_columns(source, target)
    issues.extend(column_issues)

    comparison = TableComparison(
        table=name,
        status=TableStatus.MATCH,
        columns=column_comparisons,
    )
    issues.extend(_compare_foreign_keys(source, target, comparison))
    issues.extend(_compare_constraints(source, target, comparison))
    issues.extend(_compare_indexes(source, target, comparison))

    if issues:
        comparison = comparison.model_copy(update={"status": TableStatus.SCHEMA_MISMATCH})
    return comparison, issues


def _check_sync_requirements(table: TableSchema, side: str) -> list[ValidationIssue]:
    issues = [
        ValidationIssue(
            id=f"sync-requirement-{side}-{table.name}-{i}",
            severity=Severity.CRITICAL,
            category=IssueCategory.SYNC_REQUIREMENT,
            table=table.name,
            message=f"{problem} in {side}",
            recommendation="Syncable tables need a uuid 'id' and a timestamp 'updated_at'",
        )
        for i, problem in enumerate(sync_requirement_problems(table))
    ]
    updated_at = table.column(UPDATED_AT_COLUMN)
    if not issues and updated_at is not None and updated_at.is_nullable:
        issues.append(
            ValidationIssue(
                id=f"sync-requirement-{side}-{table.name}-nullable-updated-at",
                severity=Severity.MEDIUM,
                category=IssueCategory.SYNC_REQUIREMENT,
                table=table.name,
                column=UPDATED_AT_COLUMN,
                message=f"'{UPDATED_AT_COLUMN}' is nullable in {side}",
                details="Rows with NULL updated_at are never picked up by sync",
                recommendation=f"ALTER TABLE {table.name} ALTER COLUMN updated_at SET NOT NULL",
            )
        )
    return issues


def _compare_columns(
    source: TableSchema, target: TableSchema
) -> tuple[list[ColumnComparison], list[ValidationIssue]]:
    table = source.name
    comparisons: list[ColumnComparison] = []
    issues: list[ValidationIssue] = []

    for src in source.columns:
        tgt = target.column(src.name)
        if tgt is None:
            required = not src.is_nullable and src.default is None
            comparisons.append(
                ColumnComparison(name=src.name, source=src, compatible=not required)
            )
            issues.append(
                ValidationIssue(
                    id=f"column-missing-in-target-{table}-{src.name}",
                    severity=Severity.CRITICAL if required else Severity.LOW,
                    category=IssueCategory.COLUMN,
                    table=table,
                    column=src.name,
                    message=f"Column '{src.name}' does not exist in target",
                    details=f"Source type: {full_data_type(src)}",
                    recommendation="Generate a migration to add the column",
                    auto_fixable=True,
                )
            )
            continue

        safe, warning = can_safely_insert(src, tgt)
        comparisons.append(
            ColumnComparison(
                name=src.name, source=src, target=tgt, compatible=safe, warning=warning
            )
        )
        if not safe:
            issues.append(_unsafe_column_issue(table, src, tgt, warning or ""))
        elif src.default != tgt.default and not src.is_primary_key:
            issues.append(
                ValidationIssue(
                    id=f"column-default-{table}-{src.name}",
                    severity=Severity.MEDIUM,
                    category=IssueCategory.DEFAULT,
                    table=table,
                    column=src.name,
                    message=f"Default differs: {src.default!r} in source, {tgt.default!r} in target",
                )
            )

    for tgt in target.columns:
        if source.column(tgt.name) is not None:
            continue
        comparisons.append(ColumnComparison(name=tgt.name, target=tgt))
        if not tgt.is_nullable and tgt.default is None:
            issues.append(
                ValidationIssue(
                    id=f"column-target-only-required-{table}-{tgt.name}",
                    severity=Severity.HIGH,
                    category=IssueCategory.COLUMN,
                    table=table,
                    column=tgt.name,
                    message=(
                        f"Column '{tgt.name}' exists only in target and is NOT NULL "
                        "without a default; inserts from source will fail"
                    ),
                    recommendation="Add a default or make the column nullable in target",
                )
            )

    return comparisons, issues


def _unsafe_column_issue(
    table: str, src: ColumnSchema, tgt: ColumnSchema, warning: str
) -> ValidationIssue:
    """Map a failed ``can_safely_insert`` check to an issue."""
    if not types_compatible(src.storage_type, tgt.storage_type):
        return ValidationIssue(
            id=f"column-type-{table}-{src.name}",
            severity=Severity.HIGH,
            category=IssueCategory.TYPE,
            table=table,
            column=src.name,
            message=warning,
            recommendation="Review the type change; it requires a manual migration",
        )
    if capacity_warning(src, tgt) is not None:
        return ValidationIssue(
            id=f"column-size-{table}-{src.name}",
            severity=Severity.HIGH,
            category=IssueCategory.TYPE,
            table=table,
            column=src.name,
            message=warning,
            details=f"{full_data_type(src)} in source, {full_data_type(tgt)} in target",
            recommendation=f"Widen the target column to {full_data_type(src)}",
            auto_fixable=True,
        )
    return ValidationIssue(
        id=f"column-nullability-{table}-{src.name}",
        severity=Severity.MEDIUM,
        category=IssueCategory.NULLABILITY,
        table=table,
        column=src.name,
        message=warning,
        recommendation="Drop NOT NULL in target or add a default",
        auto_fixable=True,
    )


def _compare_foreign_keys(
    source: TableSchema, target: TableSchema, comparison: TableComparison
) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    table = source.name
    source_by_sig = {fk.signature: fk for fk in source.foreign_keys}
    target_by_sig = {fk.signature: fk for fk in target.foreign_keys}

    for sig, fk in source_by_sig.items():
        match = target_by_sig.get(sig)
        if match is None:
            comparison.missing_foreign_keys.append(fk)
            issues.append(
                ValidationIssue(
                    id=f"fk-missing-in-target-{table}-{fk.name}",
                    severity=Severity.LOW,
                    category=IssueCategory.FOREIGN_KEY,
                    table=table,
                    column=fk.column,
                    message=(
                        f"Foreign key {fk.column} -> {fk.referenced_table}"
                        f"({fk.referenced_column}) missing in target"
                    ),
                    auto_fixable=True,
                )
            )
        elif match.name != fk.name:
            issues.append(_naming_issue(table, "foreign key", fk.name, match.name))

    for sig, fk in target_by_sig.items():
        if sig in source_by_sig:
            continue
        comparison.extra_foreign_keys.append(fk)
        issues.append(
            ValidationIssue(
                id=f"fk-target-only-{table}-{fk.name}",
                severity=Severity.HIGH,
                category=IssueCategory.FOREIGN_KEY,
                table=table,
                column=fk.column,
                message=(
                    f"Target has foreign key {fk.column} -> {fk.referenced_table}"
                    f"({fk.referenced_column}) not present in source"
                ),
                details="Rows referencing missing parents will be rejected",
                recommendation="Sync the referenced table first or drop the constraint",
            )
        )
    return issues


def _compare_constraints(
    source: TableSchema, target: TableSchema, comparison: TableComparison
) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    table = source.name
    source_by_sig = {c.signature: c for c in source.constraints}
    target_by_sig = {c.signature: c for c in target.constraints}

    for sig, constraint in source_by_sig.items():
        match = target_by_sig.get(sig)
        if match is None:
            comparison.missing_constraints.append(constraint)
            issues.append(
                ValidationIssue(
                    id=f"constraint-missing-in-target-{table}-{constraint.name}",
                    severity=Severity.LOW,
                    category=IssueCategory.CONSTRAINT,
                    table=table,
                    message=(
                        f"{constraint.constraint_type} constraint '{constraint.name}' "
                        "missing in target"
                    ),
                    details=constraint.definition,
                    auto_fixable=True,
                )
            )
        elif match.name != constraint.name:
            issues.append(_naming_issue(table, "constraint", constraint.name, match.name))

    for sig, constraint in target_by_sig.items():
        if sig in source_by_sig:
            continue
        comparison.extra_constraints.append(constraint)
        unique = constraint.constraint_type == "UNIQUE"
        issues.append(
            ValidationIssue(
                id=f"constraint-target-only-{table}-{constraint.name}",
                severity=Severity.MEDIUM if unique else Severity.INFO,
                category=IssueCategory.CONSTRAINT,
                table=table,
                message=(
                    f"Target has {constraint.constraint_type} constraint "
                    f"'{constraint.name}' not present in source"
                ),
                details=constraint.definition,
                recommendation=(
                    "Source rows may violate this constraint" if unique else ""
                ),
            )
        )
    return issues


def _compare_indexes(
    source: TableSchema, target: TableSchema, comparison: TableComparison
) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    table = source.name
    # Primary key indexes are covered by the column comparison
    source_by_sig = {i.signature: i for i in source.indexes if not i.is_primary}
    target_by_sig = {i.signature: i for i in target.indexes if not i.is_primary}

    for sig, index in source_by_sig.items():
        match = target_by_sig.get(sig)
        if match is None:
            comparison.missing_indexes.append(index)
        elif match.name != index.name:
            issues.append(_naming_issue(table, "index", index.name, match.name))

    comparison.extra_indexes.extend(
        index for sig, index in target_by_sig.items() if sig not in source_by_sig
    )

    if comparison.missing_indexes or comparison.extra_indexes:
        parts = []
        if comparison.missing_indexes:
            parts.append(
                "missing in target: "
                + ", ".join(i.name for i in comparison.missing_indexes)
            )
        if comparison.extra_indexes:
            parts.append(
                "only in target: " + ", ".join(i.name for i in comparison.extra_indexes)
            )
        issues.append(
            ValidationIssue(
                id=f"index-diff-{table}",
                severity=Severity.INFO,
                category=IssueCategory.INDEX,
                table=table,
                message=f"Index differences ({'; '.join(parts)})",
                recommendation="Indexes affect performance only",
                auto_fixable=bool(comparison.missing_indexes),
            )
        )
    return issues


def _naming_issue(table: str, kind: str, source_name: str, target_name: str) -> ValidationIssue:
    return ValidationIssue(
        id=f"naming-{table}-{source_name}",
        severity=Severity.LOW,
        category=IssueCategory.INDEX if kind == "index" else IssueCategory.CONSTRAINT,
        table=table,
        message=f"Same {kind} named '{source_name}' in source and '{target_name}' in target",
    )


# ============================================================================
# Ordering and planning helpers
# ============================================================================


def detect_circular_dependencies(tables: list[TableSchema]) -> list[list[str]]:
    """Find foreign key cycles among ``tables``.

    Self references are ignored.  Each cycle is returned once, as the path
    from its first visited table back to itself.

    Example:
        >>> detect_circular_dependencies([])
        []
    """
    names = {t.name for t in tables}
    graph: dict[str, list[str]] = {
        t.name: sorted(
            {
                fk.referenced_table
                for fk in t.foreign_keys
                if fk.referenced_table in names and fk.referenced_table != t.name
            }
        )
        for t in tables
    }

    cycles: list[list[str]] = []
    seen: set[frozenset[str]] = set()
    done: set[str] = set()

    def visit(node: str, path: list[str]) -> None:
        if node in path:
            cycle = path[path.index(node):] + [node]
            key = frozenset(cycle)
            if key not in seen:
                seen.add(key)
                cycles.append(cycle)
            return
        if node in done:
            return
        path.append(node)
        for dep in graph.get(node, []):
            visit(dep, path)
        path.pop()
        done.add(node)

    for name in sorted(graph):
        visit(name, [])
    return cycles


def get_sync_order(tables: list[TableSchema]) -> list[str]:
    """Order tables so referenced (parent) tables come first.

    Kahn's algorithm over foreign keys between the given tables.  Tables
    caught in a cycle are appended at the end in name order.
    """
    names = {t.name for t in tables}
    deps: dict[str, set[str]] = {
        t.name: {
            fk.referenced_table
            for fk in t.foreign_keys
            if fk.referenced_table in names and fk.referenced_table != t.name
        }
        for t in tables
    }
    dependents: dict[str, set[str]] = defaultdict(set)
    for name, parents in deps.items():
        for parent in parents:
            dependents[parent].add(name)

    in_degree = {name: len(parents) for name, parents in deps.items()}
    ready = sorted(name for name, degree in in_degree.items() if degree == 0)
    order: list[str] = []
    while ready:
        name = ready.pop(0)
        order.append(name)
        for child in sorted(dependents[name]):
            in_degree[child] -= 1
            if in_degree[child] == 0:
                ready.append(child)
        ready.sort()

    order.extend(sorted(name for name in deps if name not in order))
    return order


def estimate_sync_volume(schema: DatabaseSchema, table_names: list[str]) -> dict:
    """Estimate rows, size and duration of syncing ``table_names``.

    Row counts are catalog estimates.

    Returns:
        Dict with ``total_rows``, ``tables`` (name -> estimated rows),
        ``estimated_seconds`` and ``warnings``.
    """
    per_table = {
        name: table.row_estimate
        for name in table_names
        if (table := schema.table(name)) is not None
    }
    total = sum(per_table.values())
    warnings: list[str] = []
    if total > 1_000_000:
        warnings.append(
            f"Very large sync (~{total:,} rows); consider syncing in stages"
        )
    elif total > 100_000:
        warnings.append(f"Large sync (~{total:,} rows); this may take a while")
    for name, rows in per_table.items():
        if rows > 500_000:
            warnings.append(f"Table '{name}' has ~{rows:,} rows")

    return {
        "total_rows": total,
        "tables": per_table,
        "estimated_seconds": total // ROWS_PER_SECOND,
        "warnings": warnings,
    }


def filter_issues_by_severity(
    issues: list[ValidationIssue], minimum: Severity
) -> list[ValidationIssue]:
    """Keep issues at ``minimum`` severity or worse."""
    rank = list(Severity)
    cutoff = rank.index(minimum)
    return [issue for issue in issues if rank.index(issue.severity) <= cutoff]


def group_issues_by_table(issues: list[ValidationIssue]) -> dict[str, list[ValidationIssue]]:
    grouped: dict[str, list[ValidationIssue]] = defaultdict(list)
    for issue in issues:
        grouped[issue.table].append(issue)
    return dict(grouped)
