"""
Pure cron evaluation functions.

Contract:
    ``parse_cron()``, ``matches_cron()``, ``is_due()`` and
    ``next_fire_time()`` are PURE -- no I/O, no clock reads.  The scheduler
    passes in the (local) time it wants evaluated.

Semantics:
    Five fields: minute hour day_of_month month day_of_week.  All five must
    match for a time to be due (no cron-style OR between day fields).
    Day of week: 0=Sunday ... 6=Saturday; 7 is accepted as Sunday.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from kiisha_kernel.exceptions import InvalidCronExpressionError


# =============================================================================
# CronSpec (lightweight cron parser)
# =============================================================================


@dataclass(frozen=True)
class CronSpec:
    """Parsed cron expression.  Each field is a frozenset of valid values.

    Supports: *, values, comma lists, ranges (1-5), steps (*/5, 1-10/2).
    """

    minutes: frozenset[int] = field(default_factory=lambda: frozenset(range(60)))
    hours: frozenset[int] = field(default_factory=lambda: frozenset(range(24)))
    days_of_month: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 32)))
    months: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 13)))
    days_of_week: frozenset[int] = field(default_factory=lambda: frozenset(range(7)))


def _to_int(text: str) -> int:
    if not text.isdigit():
        raise ValueError(f"Not a number: '{text}'")
    return int(text)


def _parse_cron_field(field_str: str, min_val: int, max_val: int) -> frozenset[int]:
    """Parse a single cron field into a frozenset of valid values.

    Supports:
        * -- all values
        N -- single value
        N-M -- range
        */N -- step from min
        N-M/S -- range with step
        a,b,c -- any combination of the above

    Raises:
        ValueError: If the field is syntactically invalid or values out of range.
    """
    values: set[int] = set()

    for part in field_str.split(","):
        part = part.strip()
        if not part:
            raise ValueError(f"Empty list element in '{field_str}'")

        step = 1
        if "/" in part:
            part, step_str = part.split("/", 1)
            step = _to_int(step_str)
            if step <= 0:
                raise ValueError(f"Step must be positive: {step}")

        if part == "*":
            start, end = min_val, max_val
        elif "-" in part:
            s, e = part.split("-", 1)
            start, end = _to_int(s), _to_int(e)
            if start > end:
                raise ValueError(f"Range start > end: {start}-{end}")
        else:
            start = _to_int(part)
            # "5/15" means 5, 20, 35, ... through the field maximum
            end = max_val if step > 1 else start

        if start < min_val or end > max_val:
            raise ValueError(
                f"Value outside range [{min_val}, {max_val}]: '{part}'"
            )

        values.update(range(start, end + 1, step))

    return frozenset(values)


def parse_cron(expression: str) -> CronSpec:
    """Parse a 5-field cron expression into a CronSpec.

    Raises:
        InvalidCronExpressionError: If the expression is malformed.
    """
    parts = expression.strip().split()
    if len(parts) != 5:
        raise InvalidCronExpressionError(
            expression, f"expected 5 fields, got {len(parts)}",
        )

    try:
        days_of_week = _parse_cron_field(parts[4], 0, 7)
        return CronSpec(
            minutes=_parse_cron_field(parts[0], 0, 59),
            hours=_parse_cron_field(parts[1], 0, 23),
            days_of_month=_parse_cron_field(parts[2], 1, 31),
            months=_parse_cron_field(parts[3], 1, 12),
            days_of_week=frozenset(d % 7 for d in days_of_week),
        )
    except ValueError as exc:
        raise InvalidCronExpressionError(expression, str(exc)) from exc


def matches_cron(spec: CronSpec, dt: datetime) -> bool:
    """Check if a datetime matches a cron spec.

    Cron convention: 0=Sunday.  Python ``weekday()``: 0=Monday.
    """
    cron_dow = (dt.weekday() + 1) % 7
    return (
        dt.minute in spec.minutes
        and dt.hour in spec.hours
        and dt.day in spec.days_of_month
        and dt.month in spec.months
        and cron_dow in spec.days_of_week
    )


def is_due(expression: str, dt: datetime) -> bool:
    """True when ``expression`` matches ``dt``; malformed expressions never fire."""
    try:
        spec = parse_cron(expression)
    except InvalidCronExpressionError:
        return False
    return matches_cron(spec, dt)


def next_fire_time(expression: str, after: datetime) -> datetime:
    """Find the first minute strictly after ``after`` that matches.

    Scans minute-by-minute up to 366 days.

    Raises:
        InvalidCronExpressionError: If the expression is malformed or can
            never match (e.g. ``0 0 31 2 *``).
    """
    spec = parse_cron(expression)
    candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    max_iterations = 366 * 24 * 60

    for _ in range(max_iterations):
        if matches_cron(spec, candidate):
            return candidate
        candidate += timedelta(minutes=1)

    raise InvalidCronExpressionError(
        expression, f"no matching time within 366 days after {after}",
    )
