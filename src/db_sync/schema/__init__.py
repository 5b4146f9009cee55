"""Schema inspection, comparison, and migration generation.

Usage:
    from db_sync.schema import inspect_database, validate_schemas
    from db_sync.schema import generate_migration_plan, apply_migration
"""

from db_sync.schema.comparator import (
    detect_circular_dependencies,
    estimate_sync_volume,
    filter_issues_by_severity,
    get_sync_order,
    group_issues_by_table,
    validate_schemas,
)
from db_sync.schema.introspector import (
    SchemaIntrospector,
    check_sync_requirements,
    inspect_database,
)
from db_sync.schema.migration import (
    MigrationPlan,
    MigrationResult,
    MigrationScript,
    Risk,
    apply_manual_script,
    apply_migration,
    generate_migration_plan,
    plan_from_validation,
)
from db_sync.schema.models import (
    ColumnSchema,
    DatabaseSchema,
    Severity,
    TableSchema,
    ValidationIssue,
    ValidationResult,
)
from db_sync.schema.types import can_safely_insert, types_compatible

__all__ = [
    # Inspection
    "SchemaIntrospector",
    "inspect_database",
    "check_sync_requirements",
    # Comparison
    "validate_schemas",
    "get_sync_order",
    "detect_circular_dependencies",
    "estimate_sync_volume",
    "filter_issues_by_severity",
    "group_issues_by_table",
    # Types
    "types_compatible",
    "can_safely_insert",
    # Migration
    "generate_migration_plan",
    "plan_from_validation",
    "apply_migration",
    "apply_manual_script",
    "MigrationPlan",
    "MigrationScript",
    "MigrationResult",
    "Risk",
    # Models
    "ColumnSchema",
    "TableSchema",
    "DatabaseSchema",
    "Severity",
    "ValidationIssue",
    "ValidationResult",
]
