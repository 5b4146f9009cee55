"""Tests for the type compatibility rules and DDL type rendering."""

import pytest

from db_sync.schema.models import ColumnSchema, TableSchema
from db_sync.schema.types import (
    can_safely_insert,
    default_for_type,
    full_data_type,
    is_syncable,
    normalize_type,
    sync_requirement_problems,
    type_group,
    types_compatible,
)
from db_sync.sql import quote_ident, quote_literal

from conftest import col, sync_columns


class TestNormalizeType:
    """normalize_type() strips modifiers and detects arrays."""

    def test_strips_length_modifier(self) -> None:
        assert normalize_type("varchar(255)") == ("varchar", False)

    def test_removes_whitespace_and_lowercases(self) -> None:
        assert normalize_type("Timestamp With Time Zone") == ("timestampwithtimezone", False)

    def test_udt_array_prefix(self) -> None:
        assert normalize_type("_int4") == ("int4", True)

    def test_bracket_array_suffix(self) -> None:
        assert normalize_type("text[]") == ("text", True)

    def test_type_group(self) -> None:
        assert type_group("bigint") == "integer"
        assert type_group("uuid") is None


class TestTypesCompatible:
    """types_compatible() uses exact match first, then equivalence groups."""

    @pytest.mark.parametrize(
        "source,target",
        [
            ("int4", "integer"),
            ("int4", "int8"),
            ("serial", "integer"),
            ("float8", "double precision"),
            ("numeric(10,2)", "decimal"),
            ("varchar", "text"),
            ("character varying(50)", "varchar"),
            ("bpchar", "character"),
            ("timestamp", "timestamptz"),
            ("timestamp without time zone", "timestamp with time zone"),
            ("bool", "boolean"),
            ("json", "jsonb"),
            ("_int4", "_int8"),
            ("my_enum", "my_enum"),
        ],
    )
    def test_compatible_pairs(self, source: str, target: str) -> None:
        assert types_compatible(source, target) is True

    @pytest.mark.parametrize(
        "source,target",
        [
            ("text", "int4"),
            ("uuid", "text"),
            ("bool", "int4"),
            ("jsonb", "text"),
            ("timestamptz", "date"),
            ("_int4", "int4"),
            ("mood", "status"),
        ],
    )
    def test_incompatible_pairs(self, source: str, target: str) -> None:
        assert types_compatible(source, target) is False

    def test_symmetric_for_groups(self) -> None:
        assert types_compatible("integer", "int4") == types_compatible("int4", "integer")


class TestCanSafelyInsert:
    """can_safely_insert() checks type, capacity, then nullability."""

    def test_identical_columns_are_safe(self) -> None:
        c = col("name", "text")
        assert can_safely_insert(c, c) == (True, None)

    def test_length_overflow(self) -> None:
        src = col("name", "varchar", "character varying", max_length=50)
        tgt = col("name", "varchar", "character varying", max_length=20)

        safe, warning = can_safely_insert(src, tgt)

        assert safe is False
        assert warning == "name exceeds target max length 20"

    def test_shorter_source_is_safe(self) -> None:
        src = col("name", "varchar", max_length=20)
        tgt = col("name", "varchar", max_length=50)
        assert can_safely_insert(src, tgt) == (True, None)

    def test_precision_overflow(self) -> None:
        src = col("price", "numeric", numeric_precision=12, numeric_scale=2)
        tgt = col("price", "numeric", numeric_precision=8, numeric_scale=2)

        safe, warning = can_safely_insert(src, tgt)

        assert safe is False
        assert "precision 8" in warning

    def test_type_mismatch(self) -> None:
        safe, warning = can_safely_insert(col("age", "text"), col("age", "int4"))
        assert safe is False
        assert warning.startswith("Type mismatch")

    def test_nullable_into_not_null_without_default(self) -> None:
        src = col("email", "text", is_nullable=True)
        tgt = col("email", "text", is_nullable=False)

        safe, warning = can_safely_insert(src, tgt)

        assert safe is False
        assert "NOT NULL" in warning

    def test_nullable_into_not_null_with_default_is_safe(self) -> None:
        src = col("email", "text", is_nullable=True)
        tgt = col("email", "text", is_nullable=False, default="''::text")
        assert can_safely_insert(src, tgt) == (True, None)

    def test_type_checked_before_capacity(self) -> None:
        src = col("code", "varchar", max_length=50)
        tgt = col("code", "int4", max_length=10)
        _, warning = can_safely_insert(src, tgt)
        assert warning.startswith("Type mismatch")


class TestFullDataType:
    """full_data_type() renders types the way generated DDL spells them."""

    def test_varchar_with_length(self) -> None:
        assert full_data_type(col("n", "varchar", "character varying", max_length=50)) == "varchar(50)"

    def test_numeric_with_scale(self) -> None:
        c = col("p", "numeric", numeric_precision=10, numeric_scale=2)
        assert full_data_type(c) == "numeric(10,2)"

    def test_integer_alias(self) -> None:
        assert full_data_type(col("n", "int4", "integer")) == "integer"

    def test_array(self) -> None:
        assert full_data_type(col("tags", "_text", "ARRAY")) == "text[]"

    def test_user_defined_is_quoted_when_needed(self) -> None:
        c = ColumnSchema(name="s", data_type="USER-DEFINED", udt_name="Status")
        assert full_data_type(c) == '"Status"'

    def test_backfill_defaults(self) -> None:
        assert default_for_type(col("n", "int4")) == "0"
        assert default_for_type(col("b", "bool")) == "false"
        assert default_for_type(col("t", "timestamptz")) == "now()"
        assert default_for_type(col("s", "text")) == "''"


class TestSyncability:
    """A table is syncable iff it has a uuid id and a timestamp updated_at."""

    def test_syncable_table(self) -> None:
        table = TableSchema(name="users", columns=sync_columns())
        assert is_syncable(table) is True
        assert sync_requirement_problems(table) == []

    def test_plain_timestamp_is_accepted(self) -> None:
        table = TableSchema(
            name="t",
            columns=[col("id", "uuid"), col("updated_at", "timestamp")],
        )
        assert is_syncable(table) is True

    def test_integer_id_is_not_syncable(self) -> None:
        table = TableSchema(
            name="t",
            columns=[col("id", "int4"), col("updated_at", "timestamptz")],
        )
        assert is_syncable(table) is False
        assert sync_requirement_problems(table) == ["'id' is int4, expected uuid"]

    def test_missing_updated_at(self) -> None:
        table = TableSchema(name="t", columns=[col("id", "uuid")])
        assert is_syncable(table) is False
        assert sync_requirement_problems(table) == ["Missing 'updated_at' column"]

    def test_text_updated_at(self) -> None:
        table = TableSchema(name="t", columns=[col("id", "uuid"), col("updated_at", "text")])
        assert is_syncable(table) is False


class TestQuoting:
    """Identifiers are quoted only when required."""

    def test_plain_identifier(self) -> None:
        assert quote_ident("users") == "users"

    def test_mixed_case(self) -> None:
        assert quote_ident("UserProfile") == '"UserProfile"'

    def test_reserved_word(self) -> None:
        assert quote_ident("order") == '"order"'

    def test_embedded_quote(self) -> None:
        assert quote_ident('a"b') == '"a""b"'

    def test_literal(self) -> None:
        assert quote_literal("it's") == "'it''s'"
