"""Conflict resolution for two-way sync.

A conflict is the same row (same ``id``) changed on both sides.  The
strategy decides which version is written:

- ``last_write_wins``: the greater ``updated_at`` wins (source on a tie)
- ``source_wins`` / ``target_wins``: unconditional
- ``manual``: neither side is written; the row id is recorded for later

Usage:
    from db_sync.sync.conflict import RowConflict, resolve_conflict

    resolution = resolve_conflict(
        RowConflict(table="users", row_id=row_id, source_row=src, target_row=tgt),
        ConflictStrategy.LAST_WRITE_WINS,
    )
    if resolution.winner == "source":
        ...
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

from db_sync.sync.models import ConflictStrategy

UPDATED_AT = "updated_at"

Winner = Literal["source", "target"]


@dataclass(frozen=True)
class RowConflict:
    table: str
    row_id: str
    source_row: dict[str, Any]
    target_row: dict[str, Any]

    @property
    def source_updated_at(self) -> datetime | None:
        return as_utc(self.source_row.get(UPDATED_AT))

    @property
    def target_updated_at(self) -> datetime | None:
        return as_utc(self.target_row.get(UPDATED_AT))


@dataclass(frozen=True)
class ConflictResolution:
    """``winner`` is ``None`` when the row is deferred for manual resolution."""

    winner: Winner | None
    resolved: bool
    reason: str = ""


def as_utc(value: Any) -> datetime | None:
    """Coerce a timestamp (datetime or ISO string) to an aware UTC datetime.

    Naive datetimes (``timestamp without time zone``) are taken as UTC.

    Example:
        >>> as_utc("2024-01-01T00:00:00")
        datetime.datetime(2024, 1, 1, 0, 0, tzinfo=datetime.timezone.utc)
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if not isinstance(value, datetime):
        raise TypeError(f"Not a timestamp: {value!r}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_conflict(conflict: RowConflict, strategy: ConflictStrategy) -> ConflictResolution:
    """Pick the winning side of a conflict.

    Args:
        conflict: The two row versions.
        strategy: Conflict strategy configured for the table.

    Returns:
        ``ConflictResolution``; ``resolved`` is False only for ``manual``.
    """
    if strategy == ConflictStrategy.SOURCE_WINS:
        return ConflictResolution("source", True, "source_wins")
    if strategy == ConflictStrategy.TARGET_WINS:
        return ConflictResolution("target", True, "target_wins")
    if strategy == ConflictStrategy.MANUAL:
        return ConflictResolution(None, False, "deferred for manual resolution")

    source_ts = conflict.source_updated_at
    target_ts = conflict.target_updated_at
    if target_ts is None:
        return ConflictResolution("source", True, "target has no updated_at")
    if source_ts is None:
        return ConflictResolution("target", True, "source has no updated_at")
    if source_ts >= target_ts:
        return ConflictResolution("source", True, "source is newer or equal")
    return ConflictResolution("target", True, "target is newer")


def detect_conflict(
    source_row: dict[str, Any],
    target_row: dict[str, Any],
    last_sync_at: datetime | None,
) -> bool:
    """True if both versions changed since the last successful sync.

    Without a previous sync time, any difference in ``updated_at`` counts.
    """
    source_ts = as_utc(source_row.get(UPDATED_AT))
    target_ts = as_utc(target_row.get(UPDATED_AT))
    if source_ts is None or target_ts is None:
        return False
    if last_sync_at is None:
        return source_ts != target_ts
    since = as_utc(last_sync_at)
    return source_ts > since and target_ts > since


def generate_diff(
    source_row: dict[str, Any], target_row: dict[str, Any]
) -> dict[str, tuple[Any, Any]]:
    """Fields whose values differ, as ``{field: (source_value, target_value)}``."""
    diff: dict[str, tuple[Any, Any]] = {}
    for key in sorted(set(source_row) | set(target_row)):
        source_value = source_row.get(key)
        target_value = target_row.get(key)
        if source_value != target_value:
            diff[key] = (source_value, target_value)
    return diff


def merge_records(
    source_row: dict[str, Any],
    target_row: dict[str, Any],
    prefer: Winner = "source",
    field_overrides: dict[str, Winner] | None = None,
) -> dict[str, Any]:
    """Field-level merge of two row versions.

    Fields present on one side only are kept.  For fields on both sides,
    ``field_overrides`` picks the side per field and ``prefer`` decides the
    rest.
    """
    overrides = field_overrides or {}
    merged: dict[str, Any] = {}
    for key in list(source_row) + [k for k in target_row if k not in source_row]:
        if key not in target_row:
            merged[key] = source_row[key]
        elif key not in source_row:
            merged[key] = target_row[key]
        else:
            side = overrides.get(key, prefer)
            merged[key] = source_row[key] if side == "source" else target_row[key]
    return merged
