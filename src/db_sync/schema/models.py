"""Pydantic models for schema inspection and validation.

This module contains schema-domain models:
- Catalog models: ColumnSchema, PrimaryKeySchema, ForeignKeySchema,
  ConstraintSchema, IndexSchema, TableSchema, EnumType, DatabaseSchema
- Validation models: Severity, IssueCategory, ValidationIssue,
  ValidationSummary, ColumnComparison, TableComparison, ValidationResult

Catalog models are frozen: one inspection produces one immutable
``DatabaseSchema``.  Two schemas are compared, never merged.

Configuration models (DatabaseProfile, DatabaseConfig) live in
db_sync.config.models.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Catalog Models
# ============================================================================


class ColumnSchema(BaseModel):
    """Schema for a database column.

    ``data_type`` is the declared type as reported by information_schema
    (e.g. ``character varying``); ``udt_name`` is the underlying storage
    type (e.g. ``varchar``, ``_int4`` for ``integer[]``).

    Example:
        >>> col = ColumnSchema(name="id", data_type="uuid", udt_name="uuid")
        >>> col.is_nullable
        True
    """

    model_config = ConfigDict(frozen=True)

    name: str
    data_type: str
    udt_name: str = ""
    is_nullable: bool = True
    default: str | None = None
    max_length: int | None = None
    numeric_precision: int | None = None
    numeric_scale: int | None = None
    ordinal_position: int = 0
    is_primary_key: bool = False

    @property
    def storage_type(self) -> str:
        """Underlying type name, falling back to the declared type."""
        return self.udt_name or self.data_type


class PrimaryKeySchema(BaseModel):
    """Primary key of a table."""

    model_config = ConfigDict(frozen=True)

    table: str
    constraint_name: str
    columns: list[str] = Field(default_factory=list)


class ForeignKeySchema(BaseModel):
    """A single-column foreign key reference."""

    model_config = ConfigDict(frozen=True)

    table: str
    name: str
    column: str
    referenced_table: str
    referenced_column: str
    on_delete: str = "NO ACTION"
    on_update: str = "NO ACTION"

    @property
    def signature(self) -> tuple[str, str, str, str, str]:
        """Structural identity (everything except the constraint name)."""
        return (
            self.column,
            self.referenced_table,
            self.referenced_column,
            self.on_delete,
            self.on_update,
        )


class ConstraintSchema(BaseModel):
    """A UNIQUE or CHECK constraint."""

    model_config = ConfigDict(frozen=True)

    table: str
    name: str
    constraint_type: str  # UNIQUE, CHECK
    columns: list[str] = Field(default_factory=list)
    definition: str = ""

    @property
    def signature(self) -> tuple[str, tuple[str, ...], str]:
        """Structural identity (everything except the constraint name)."""
        return (self.constraint_type, tuple(sorted(self.columns)), self.definition)


class IndexSchema(BaseModel):
    """Schema for a database index."""

    model_config = ConfigDict(frozen=True)

    table: str
    name: str
    columns: list[str] = Field(default_factory=list)
    is_unique: bool = False
    is_primary: bool = False
    index_type: str = "btree"
    definition: str = ""

    @property
    def signature(self) -> tuple[tuple[str, ...], bool, str]:
        """Structural identity (everything except the index name)."""
        return (tuple(self.columns), self.is_unique, self.index_type)


class TableSchema(BaseModel):
    """Schema for a database table.

    ``row_estimate`` comes from catalog statistics, not ``COUNT(*)``;
    treat it as an estimate.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    columns: list[ColumnSchema] = Field(default_factory=list)
    primary_key: PrimaryKeySchema | None = None
    foreign_keys: list[ForeignKeySchema] = Field(default_factory=list)
    constraints: list[ConstraintSchema] = Field(default_factory=list)
    indexes: list[IndexSchema] = Field(default_factory=list)
    row_estimate: int = 0
    estimated_size: str = ""

    def column(self, name: str) -> ColumnSchema | None:
        """Return the column with ``name`` or ``None``."""
        for col in self.columns:
            if col.name == name:
                return col
        return None

    @property
    def column_names(self) -> list[str]:
        return [col.name for col in self.columns]


class EnumType(BaseModel):
    """A PostgreSQL enum type with its labels in sort order."""

    model_config = ConfigDict(frozen=True)

    name: str
    schema_name: str = "public"
    values: list[str] = Field(default_factory=list)


class DatabaseSchema(BaseModel):
    """Complete inspected database schema.

    Example:
        >>> schema = DatabaseSchema()
        >>> schema.table_names
        []
    """

    model_config = ConfigDict(frozen=True)

    tables: dict[str, TableSchema] = Field(default_factory=dict)
    enums: dict[str, EnumType] = Field(default_factory=dict)
    syncable_tables: list[str] = Field(default_factory=list)
    version: str = ""
    inspected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def table(self, name: str) -> TableSchema | None:
        """Return the table with ``name`` or ``None``."""
        return self.tables.get(name)

    @property
    def table_names(self) -> list[str]:
        return sorted(self.tables)


# ============================================================================
# Validation Models
# ============================================================================


class Severity(str, Enum):
    """Issue severity, most severe first."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class IssueCategory(str, Enum):
    TABLE = "table"
    COLUMN = "column"
    TYPE = "type"
    NULLABILITY = "nullability"
    DEFAULT = "default"
    FOREIGN_KEY = "foreign_key"
    CONSTRAINT = "constraint"
    INDEX = "index"
    ENUM = "enum"
    SYNC_REQUIREMENT = "sync_requirement"


class ValidationIssue(BaseModel):
    """A single severity-tagged finding from schema validation.

    Example:
        >>> issue = ValidationIssue(
        ...     id="missing-table-users",
        ...     severity=Severity.CRITICAL,
        ...     category=IssueCategory.TABLE,
        ...     table="users",
        ...     message="Table 'users' does not exist in target",
        ... )
        >>> issue.auto_fixable
        False
    """

    id: str
    severity: Severity
    category: IssueCategory
    table: str
    column: str | None = None
    message: str
    details: str = ""
    recommendation: str = ""
    auto_fixable: bool = False


class ValidationSummary(BaseModel):
    """Per-severity issue counts."""

    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    info: int = 0

    @property
    def total(self) -> int:
        return self.critical + self.high + self.medium + self.low + self.info

    @classmethod
    def from_issues(cls, issues: list[ValidationIssue]) -> "ValidationSummary":
        counts = {severity.value: 0 for severity in Severity}
        for issue in issues:
            counts[issue.severity.value] += 1
        return cls(**counts)


class ColumnComparison(BaseModel):
    """Source/target pairing of one column name."""

    name: str
    source: ColumnSchema | None = None
    target: ColumnSchema | None = None
    compatible: bool = True
    warning: str | None = None


class TableStatus(str, Enum):
    MATCH = "match"
    MISSING_IN_SOURCE = "missing_in_source"
    MISSING_IN_TARGET = "missing_in_target"
    SCHEMA_MISMATCH = "schema_mismatch"


class TableComparison(BaseModel):
    """Result of comparing one table across source and target."""

    table: str
    status: TableStatus
    columns: list[ColumnComparison] = Field(default_factory=list)
    missing_foreign_keys: list[ForeignKeySchema] = Field(default_factory=list)
    extra_foreign_keys: list[ForeignKeySchema] = Field(default_factory=list)
    missing_constraints: list[ConstraintSchema] = Field(default_factory=list)
    extra_constraints: list[ConstraintSchema] = Field(default_factory=list)
    missing_indexes: list[IndexSchema] = Field(default_factory=list)
    extra_indexes: list[IndexSchema] = Field(default_factory=list)


class ValidationResult(BaseModel):
    """Result of comparing a source schema against a target schema.

    ``is_valid`` and ``can_proceed`` are derived from the issue counts.
    ``requires_confirmation`` is decided by the validator because it also
    depends on the target environment and on syncable-table overlap.

    Example:
        >>> result = ValidationResult()
        >>> result.can_proceed
        True
        >>> result.format_report()
        'Schemas compatible'
    """

    issues: list[ValidationIssue] = Field(default_factory=list)
    summary: ValidationSummary = Field(default_factory=ValidationSummary)
    warnings: list[str] = Field(default_factory=list)
    comparisons: list[TableComparison] = Field(default_factory=list)
    tables: list[str] = Field(default_factory=list)
    syncable_tables: list[str] = Field(default_factory=list)
    requires_confirmation: bool = False
    target_environment: str = "development"
    source_schema: DatabaseSchema | None = None
    target_schema: DatabaseSchema | None = None

    @property
    def is_valid(self) -> bool:
        """No CRITICAL and no HIGH issues."""
        return self.summary.critical == 0 and self.summary.high == 0

    @property
    def can_proceed(self) -> bool:
        """No CRITICAL issues."""
        return self.summary.critical == 0

    def issues_at(self, severity: Severity) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == severity]

    def format_report(self) -> str:
        """Format validation result as human-readable report."""
        if not self.issues and not self.warnings:
            return "Schemas compatible"

        if self.is_valid:
            lines = ["Schemas compatible with notes:"]
        elif self.can_proceed:
            lines = ["Schema differences found (sync can proceed):"]
        else:
            lines = ["Schema validation failed:"]

        for severity in Severity:
            found = self.issues_at(severity)
            if not found:
                continue
            lines.append(f"\n  {severity.value.upper()} ({len(found)}):")
            for issue in found:
                where = f"{issue.table}.{issue.column}" if issue.column else issue.table
                lines.append(f"    - [{where}] {issue.message}")

        if self.warnings:
            lines.append("\n  Warnings:")
            for warning in self.warnings:
                lines.append(f"    - {warning}")

        if self.requires_confirmation:
            lines.append("\n  Confirmation required before sync.")

        return "\n".join(lines)
