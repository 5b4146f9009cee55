"""SQL text helpers shared by the adapter, introspector and migration generator."""

import re

_SIMPLE_IDENT = re.compile(r"^[a-z_][a-z0-9_$]*$")

# Reserved words that must be quoted even when lower case.
RESERVED_WORDS = frozenset({
    "all", "analyse", "analyze", "and", "any", "array", "as", "asc",
    "asymmetric", "both", "case", "cast", "check", "collate", "column",
    "constraint", "create", "current_date", "current_role", "current_time",
    "current_timestamp", "current_user", "default", "deferrable", "desc",
    "distinct", "do", "else", "end", "except", "false", "fetch", "for",
    "foreign", "from", "grant", "group", "having", "in", "initially",
    "intersect", "into", "lateral", "leading", "limit", "localtime",
    "localtimestamp", "not", "null", "offset", "on", "only", "or", "order",
    "placing", "primary", "references", "returning", "select", "session_user",
    "some", "symmetric", "table", "then", "to", "trailing", "true", "union",
    "unique", "user", "using", "variadic", "when", "where", "window", "with",
})


def quote_ident(name: str) -> str:
    """Quote a PostgreSQL identifier only when it needs quoting.

    Lower-case names made of letters, digits and underscores that are not
    reserved words are returned unchanged, so generated DDL stays readable.

    Example:
        >>> quote_ident("users")
        'users'
        >>> quote_ident("Order")
        '"Order"'
        >>> quote_ident("user")
        '"user"'
    """
    if _SIMPLE_IDENT.match(name) and name not in RESERVED_WORDS:
        return name
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Quote a string as a SQL literal."""
    return "'" + value.replace("'", "''") + "'"
