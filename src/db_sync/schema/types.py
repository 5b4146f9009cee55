"""Type compatibility rules shared by the comparator and the migration generator.

Pure, connection-free functions.  Both the validator (to grade column
differences) and the migration generator (to decide which columns need an
``ALTER COLUMN ... TYPE``) call these, so the two can never disagree about
whether a pair of columns is compatible.

Usage:
    from db_sync.schema.types import types_compatible, can_safely_insert

    types_compatible("int4", "integer")        # True
    safe, warning = can_safely_insert(source_col, target_col)
"""

import re

from db_sync.schema.models import ColumnSchema, TableSchema
from db_sync.sql import quote_ident

# Equivalence groups over normalized names (lower case, no whitespace,
# no length/precision suffix).
TYPE_GROUPS: dict[str, frozenset[str]] = {
    "integer": frozenset({
        "int2", "int4", "int8", "smallint", "integer", "bigint", "int",
        "serial", "bigserial", "smallserial",
    }),
    "numeric": frozenset({
        "float4", "float8", "real", "doubleprecision", "numeric", "decimal",
        "float",
    }),
    "string": frozenset({
        "varchar", "charactervarying", "text", "char", "character", "bpchar",
    }),
    "timestamp": frozenset({
        "timestamp", "timestamptz", "timestampwithtimezone",
        "timestampwithouttimezone",
    }),
    "boolean": frozenset({"bool", "boolean"}),
    "json": frozenset({"json", "jsonb"}),
}

TIMESTAMP_TYPES = TYPE_GROUPS["timestamp"]

_MODIFIER = re.compile(r"\(.*?\)")

# udt_name -> SQL spelling used in generated DDL
_SQL_NAMES = {
    "int2": "smallint",
    "int4": "integer",
    "int8": "bigint",
    "float4": "real",
    "float8": "double precision",
    "bool": "boolean",
    "bpchar": "char",
}


def normalize_type(type_name: str) -> tuple[str, bool]:
    """Normalize a type name for group lookup.

    Returns the base name (lower case, whitespace and modifiers removed)
    and whether the type is an array.

    Example:
        >>> normalize_type("Character Varying(50)")
        ('charactervarying', False)
        >>> normalize_type("_int4")
        ('int4', True)
    """
    name = type_name.strip().lower()
    is_array = False
    if name.endswith("[]"):
        name, is_array = name[:-2], True
    elif name.startswith("_"):
        name, is_array = name[1:], True
    elif name == "array":
        is_array = True
    name = _MODIFIER.sub("", name)
    name = re.sub(r"\s+", "", name)
    return name, is_array


def type_group(type_name: str) -> str | None:
    """Return the equivalence group a type belongs to, if any."""
    base, _ = normalize_type(type_name)
    for group, members in TYPE_GROUPS.items():
        if base in members:
            return group
    return None


def types_compatible(source_type: str, target_type: str) -> bool:
    """Check whether values of ``source_type`` can be stored as ``target_type``.

    Exact matches win.  Otherwise both names are normalized and compared
    by base name, then by equivalence group.  Arrays are only compatible
    with arrays.

    Example:
        >>> types_compatible("int4", "integer")
        True
        >>> types_compatible("timestamp", "timestamptz")
        True
        >>> types_compatible("text", "int4")
        False
    """
    if source_type == target_type:
        return True

    source_base, source_array = normalize_type(source_type)
    target_base, target_array = normalize_type(target_type)
    if source_array != target_array:
        return False
    if source_base == target_base:
        return True

    for members in TYPE_GROUPS.values():
        if source_base in members and target_base in members:
            return True
    return False


def is_timestamp_type(type_name: str) -> bool:
    base, is_array = normalize_type(type_name)
    return not is_array and base in TIMESTAMP_TYPES


def capacity_warning(source: ColumnSchema, target: ColumnSchema) -> str | None:
    """Describe how ``source`` values overflow ``target``, if they do."""
    if (
        source.max_length is not None
        and target.max_length is not None
        and source.max_length > target.max_length
    ):
        return f"{source.name} exceeds target max length {target.max_length}"

    if (
        source.numeric_precision is not None
        and target.numeric_precision is not None
        and source.numeric_precision > target.numeric_precision
    ):
        return f"{source.name} exceeds target numeric precision {target.numeric_precision}"
    return None


def nullability_conflict(source: ColumnSchema, target: ColumnSchema) -> bool:
    """True when a nullable source feeds a NOT NULL target without default."""
    return source.is_nullable and not target.is_nullable and target.default is None


def can_safely_insert(
    source: ColumnSchema, target: ColumnSchema
) -> tuple[bool, str | None]:
    """Decide whether every value of ``source`` fits into ``target``.

    Checks, in order: type compatibility, max length, numeric precision,
    then nullability (nullable source into a NOT NULL target that has no
    default).

    Returns:
        ``(True, None)`` when safe, otherwise ``(False, warning)``.

    Example:
        >>> src = ColumnSchema(name="name", data_type="character varying",
        ...                    udt_name="varchar", max_length=50)
        >>> tgt = ColumnSchema(name="name", data_type="character varying",
        ...                    udt_name="varchar", max_length=20)
        >>> can_safely_insert(src, tgt)
        (False, 'name exceeds target max length 20')
    """
    if not types_compatible(source.storage_type, target.storage_type):
        return False, (
            f"Type mismatch: {source.name} is {full_data_type(source)} in source "
            f"but {full_data_type(target)} in target"
        )

    warning = capacity_warning(source, target)
    if warning is not None:
        return False, warning

    if nullability_conflict(source, target):
        return False, (
            f"{source.name} is nullable in source but NOT NULL without default in target"
        )

    return True, None


def full_data_type(column: ColumnSchema) -> str:
    """Render a column's type as it would appear in DDL.

    Example:
        >>> full_data_type(ColumnSchema(name="n", data_type="character varying",
        ...                             udt_name="varchar", max_length=50))
        'varchar(50)'
        >>> full_data_type(ColumnSchema(name="n", data_type="ARRAY", udt_name="_int4"))
        'integer[]'
    """
    udt = column.storage_type
    base, is_array = normalize_type(udt)
    if column.data_type == "USER-DEFINED":
        rendered = quote_ident(column.udt_name)
    elif base in ("varchar", "charactervarying") and column.max_length:
        rendered = f"varchar({column.max_length})"
    elif base in ("bpchar", "char", "character") and column.max_length:
        rendered = f"char({column.max_length})"
    elif base in ("numeric", "decimal") and column.numeric_precision:
        if column.numeric_scale:
            rendered = f"numeric({column.numeric_precision},{column.numeric_scale})"
        else:
            rendered = f"numeric({column.numeric_precision})"
    elif is_array:
        element = udt[1:] if udt.startswith("_") else udt.removesuffix("[]")
        rendered = _SQL_NAMES.get(element, element)
    else:
        rendered = _SQL_NAMES.get(udt, udt)
    return f"{rendered}[]" if is_array else rendered


def default_for_type(column: ColumnSchema) -> str:
    """SQL literal used to backfill existing rows for a new NOT NULL column."""
    group = type_group(column.storage_type)
    base, is_array = normalize_type(column.storage_type)
    if is_array:
        return "'{}'"
    if group in ("integer", "numeric"):
        return "0"
    if group == "boolean":
        return "false"
    if group == "timestamp" or base == "date":
        return "now()"
    if group == "json":
        return "'{}'"
    if base == "uuid":
        return "gen_random_uuid()"
    return "''"


# ------------------------------------------------------------------
# Syncability
# ------------------------------------------------------------------

ID_COLUMN = "id"
UPDATED_AT_COLUMN = "updated_at"


def is_syncable(table: TableSchema) -> bool:
    """A table is syncable iff it has a uuid ``id`` and a timestamp ``updated_at``.

    Example:
        >>> is_syncable(TableSchema(name="t", columns=[
        ...     ColumnSchema(name="id", data_type="uuid", udt_name="uuid"),
        ...     ColumnSchema(name="updated_at", data_type="timestamp with time zone",
        ...                  udt_name="timestamptz"),
        ... ]))
        True
    """
    id_col = table.column(ID_COLUMN)
    updated_col = table.column(UPDATED_AT_COLUMN)
    return (
        id_col is not None
        and id_col.storage_type == "uuid"
        and updated_col is not None
        and is_timestamp_type(updated_col.storage_type)
    )


def sync_requirement_problems(table: TableSchema) -> list[str]:
    """List the reasons ``table`` cannot be synced (empty when syncable)."""
    problems: list[str] = []
    id_col = table.column(ID_COLUMN)
    if id_col is None:
        problems.append(f"Missing '{ID_COLUMN}' column")
    elif id_col.storage_type != "uuid":
        problems.append(f"'{ID_COLUMN}' is {id_col.storage_type}, expected uuid")

    updated_col = table.column(UPDATED_AT_COLUMN)
    if updated_col is None:
        problems.append(f"Missing '{UPDATED_AT_COLUMN}' column")
    elif not is_timestamp_type(updated_col.storage_type):
        problems.append(
            f"'{UPDATED_AT_COLUMN}' is {updated_col.storage_type}, expected a timestamp"
        )
    return problems
