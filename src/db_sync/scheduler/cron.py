"""Five-field cron expressions.

Fields: minute, hour, day-of-month, month, day-of-week (0 = Sunday).
Each field accepts ``*``, ``*/step``, ``a-b``, ``a-b/step``, ``a/step``,
single values and comma lists of those.  Day-of-month and day-of-week
must both match.

Usage:
    from db_sync.scheduler.cron import CronExpression, next_run

    expr = CronExpression.parse("*/15 9-17 * * 1-5")
    when = next_run(expr, datetime.now(timezone.utc), "Europe/Berlin")
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from db_sync.errors import CronParseError

# (name, minimum, maximum)
FIELDS: tuple[tuple[str, int, int], ...] = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day of month", 1, 31),
    ("month", 1, 12),
    ("day of week", 0, 6),
)

CRON_PRESETS: dict[str, str] = {
    "every_minute": "* * * * *",
    "every_5_minutes": "*/5 * * * *",
    "every_15_minutes": "*/15 * * * *",
    "every_30_minutes": "*/30 * * * *",
    "hourly": "0 * * * *",
    "every_6_hours": "0 */6 * * *",
    "daily": "0 0 * * *",
    "daily_at_2am": "0 2 * * *",
    "weekly": "0 0 * * 0",
    "weekdays_9am": "0 9 * * 1-5",
    "monthly": "0 0 1 * *",
}

# Search horizon for next_run
MAX_LOOKAHEAD = timedelta(days=366)

_DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def parse_field(field: str, minimum: int, maximum: int, name: str = "field") -> frozenset[int]:
    """Expand one cron field into the set of values it matches.

    Example:
        >>> sorted(parse_field("*/20", 0, 59))
        [0, 20, 40]
        >>> sorted(parse_field("1-5,10", 0, 59))
        [1, 2, 3, 4, 5, 10]

    Raises:
        CronParseError: On syntax errors or out-of-range values.
    """
    values: set[int] = set()
    for part in field.split(","):
        if not part:
            raise CronParseError(f"Empty element in {name} field '{field}'")

        range_part, _, step_part = part.partition("/")
        step = 1
        if step_part:
            step = _to_int(step_part, name)
            if step <= 0:
                raise CronParseError(f"Step must be positive in {name} field '{field}'")

        if range_part == "*":
            start, end = minimum, maximum
        elif "-" in range_part:
            low, _, high = range_part.partition("-")
            start, end = _to_int(low, name), _to_int(high, name)
            if start > end:
                raise CronParseError(f"Invalid range '{range_part}' in {name} field")
        else:
            start = _to_int(range_part, name)
            # "5/15" means every 15 starting at 5
            end = maximum if step_part else start

        if start < minimum or end > maximum:
            raise CronParseError(
                f"Value out of range in {name} field '{field}' "
                f"(allowed {minimum}-{maximum})"
            )
        values.update(range(start, end + 1, step))

    return frozenset(values)


def _to_int(text: str, name: str) -> int:
    if not text.isdigit():
        raise CronParseError(f"Invalid number '{text}' in {name} field")
    return int(text)


@dataclass(frozen=True)
class CronExpression:
    """A parsed cron expression."""

    expression: str
    minutes: frozenset[int]
    hours: frozenset[int]
    days_of_month: frozenset[int]
    months: frozenset[int]
    days_of_week: frozenset[int]

    @classmethod
    def parse(cls, expression: str) -> "CronExpression":
        """Parse a five-field expression.

        Raises:
            CronParseError: If the expression is malformed.
        """
        parts = expression.split()
        if len(parts) != 5:
            raise CronParseError(
                f"Cron expression must have 5 fields, got {len(parts)}: '{expression}'"
            )
        parsed = [
            parse_field(part, low, high, name)
            for part, (name, low, high) in zip(parts, FIELDS)
        ]
        return cls(" ".join(parts), *parsed)

    def matches(self, moment: datetime) -> bool:
        """True if ``moment`` (wall-clock, in the schedule's timezone) matches."""
        return (
            moment.minute in self.minutes
            and moment.hour in self.hours
            and self.day_matches(moment)
        )

    def day_matches(self, moment: datetime) -> bool:
        # datetime.weekday(): Monday=0; cron: Sunday=0
        weekday = (moment.weekday() + 1) % 7
        return (
            moment.month in self.months
            and moment.day in self.days_of_month
            and weekday in self.days_of_week
        )


def validate_cron_expression(expression: str) -> tuple[bool, str | None]:
    """Check an expression without raising.

    Returns:
        ``(True, None)`` or ``(False, error message)``.
    """
    try:
        CronExpression.parse(expression)
    except CronParseError as e:
        return False, str(e)
    return True, None


def get_zone(name: str) -> ZoneInfo:
    """Look up an IANA timezone.

    Raises:
        CronParseError: If the timezone is unknown.
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise CronParseError(f"Unknown timezone: {name}") from e


def next_run(
    expression: CronExpression | str,
    from_time: datetime,
    tz: str = "UTC",
) -> datetime | None:
    """Find the first matching minute strictly after ``from_time``.

    Fields are evaluated against wall-clock time in ``tz``.  The search
    moves minute by minute (skipping whole days and hours that cannot
    match) for up to one year.

    Args:
        expression: Parsed expression or cron string.
        from_time: Start of the search.  Naive datetimes are taken as UTC.
        tz: IANA timezone name the schedule is defined in.

    Returns:
        The next run as an aware UTC datetime, or ``None`` if nothing
        matches within a year.

    Example:
        >>> next_run("0 * * * *", datetime(2024, 1, 1, 10, 30, tzinfo=timezone.utc))
        datetime.datetime(2024, 1, 1, 11, 0, tzinfo=datetime.timezone.utc)
    """
    expr = CronExpression.parse(expression) if isinstance(expression, str) else expression
    zone = get_zone(tz)

    if from_time.tzinfo is None:
        from_time = from_time.replace(tzinfo=timezone.utc)

    # Iterate in UTC so DST transitions neither repeat nor skip minutes
    current = from_time.astimezone(timezone.utc).replace(second=0, microsecond=0)
    current += timedelta(minutes=1)
    limit = current + MAX_LOOKAHEAD

    while current <= limit:
        local = current.astimezone(zone)
        if not expr.day_matches(local):
            next_midnight = (local + timedelta(days=1)).replace(hour=0, minute=0)
            current = max(
                current + timedelta(minutes=1),
                next_midnight.astimezone(timezone.utc),
            )
            continue
        if local.hour not in expr.hours:
            current += timedelta(minutes=60 - local.minute)
            continue
        if local.minute in expr.minutes:
            return current
        current += timedelta(minutes=1)

    return None


def describe_cron(expression: str) -> str:
    """Human-readable description of common expressions.

    Example:
        >>> describe_cron("*/15 * * * *")
        'Every 15 minutes'
    """
    parts = expression.split()
    if len(parts) != 5:
        return expression
    if parts == ["*"] * 5:
        return "Every minute"
    minute, hour, dom, month, dow = parts

    if minute.startswith("*/") and hour == "*" and dom == "*" and month == "*" and dow == "*":
        return f"Every {minute[2:]} minutes"
    if minute.isdigit() and hour == "*" and dom == "*" and month == "*" and dow == "*":
        return f"Every hour at minute {int(minute)}"
    if minute.isdigit() and hour.startswith("*/") and dom == "*" and month == "*" and dow == "*":
        return f"Every {hour[2:]} hours at minute {int(minute)}"

    if minute.isdigit() and hour.isdigit():
        at = f"at {int(hour):02d}:{int(minute):02d}"
        if dom == "*" and month == "*" and dow == "*":
            return f"Daily {at}"
        if dom == "*" and month == "*" and dow == "1-5":
            return f"Weekdays {at}"
        if dom == "*" and month == "*" and dow.isdigit() and int(dow) < 7:
            return f"Every {_DAY_NAMES[int(dow)]} {at}"
        if dom.isdigit() and month == "*" and dow == "*":
            return f"Monthly on day {int(dom)} {at}"

    return expression
