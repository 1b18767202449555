"""
Cron expression parsing and evaluation.

Contract:
    Every function here is PURE: no I/O, no clock reads.  The caller
    passes the reference time.

Architecture: inventory_batch/domain.  ZERO I/O.

Supported syntax (five fields: minute hour day-of-month month day-of-week):
    ``*``, ``N``, ``N-M``, ``*/S``, ``N/S``, ``N-M/S`` and comma lists of
    those.  Day-of-week uses cron numbering, 0 = Sunday.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

# (name, lowest, highest) for each of the five cron fields, in order.
_FIELDS: tuple[tuple[str, int, int], ...] = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day_of_month", 1, 31),
    ("month", 1, 12),
    ("day_of_week", 0, 6),
)

# Upper bound on the forward search, roughly one year of minutes.
_MAX_SCAN_MINUTES = 366 * 24 * 60


@dataclass(frozen=True)
class CronSpec:
    """A parsed cron expression; each field is the set of allowed values."""

    minutes: frozenset[int]
    hours: frozenset[int]
    days_of_month: frozenset[int]
    months: frozenset[int]
    days_of_week: frozenset[int]
    expression: str = ""


def _bounded(value: str, name: str, low: int, high: int) -> int:
    try:
        number = int(value)
    except ValueError:
        raise ValueError(f"Invalid {name} value {value!r}") from None
    if not low <= number <= high:
        raise ValueError(f"{name} value {number} outside [{low}, {high}]")
    return number


def _expand(term: str, name: str, low: int, high: int) -> range:
    """Expand one comma-separated term of a field into the values it selects."""
    span, _, step_text = term.partition("/")
    step = 1
    if step_text:
        step = _bounded(step_text, f"{name} step", 1, high - low + 1)

    if span == "*":
        start, stop = low, high
    elif "-" in span:
        first, _, last = span.partition("-")
        start = _bounded(first, name, low, high)
        stop = _bounded(last, name, low, high)
        if start > stop:
            raise ValueError(f"Invalid {name} range {span!r}")
    else:
        start = _bounded(span, name, low, high)
        # "N/S" means every S starting at N.
        stop = high if step_text else start

    return range(start, stop + 1, step)


def _parse_field(text: str, name: str, low: int, high: int) -> frozenset[int]:
    values: set[int] = set()
    for term in text.split(","):
        term = term.strip()
        if not term:
            raise ValueError(f"Empty term in {name} field {text!r}")
        values.update(_expand(term, name, low, high))
    return frozenset(values)


def parse_cron(expression: str) -> CronSpec:
    """
    Parse ``minute hour day_of_month month day_of_week``.

    Raises:
        ValueError: malformed expression or out-of-range value.
    """
    parts = expression.split()
    if len(parts) != len(_FIELDS):
        raise ValueError(
            f"Cron expression needs {len(_FIELDS)} fields, got {len(parts)}: {expression!r}"
        )
    minutes, hours, days, months, weekdays = (
        _parse_field(text, name, low, high)
        for text, (name, low, high) in zip(parts, _FIELDS)
    )
    return CronSpec(
        minutes=minutes,
        hours=hours,
        days_of_month=days,
        months=months,
        days_of_week=weekdays,
        expression=" ".join(parts),
    )


def matches_cron(cron: CronSpec, moment: datetime) -> bool:
    """True when ``moment`` (to the minute) is selected by ``cron``."""
    # datetime.weekday() is Monday=0; cron is Sunday=0.
    weekday = (moment.weekday() + 1) % 7
    return (
        moment.minute in cron.minutes
        and moment.hour in cron.hours
        and moment.day in cron.days_of_month
        and moment.month in cron.months
        and weekday in cron.days_of_week
    )


def next_cron_match(cron: CronSpec, after: datetime) -> datetime:
    """
    Earliest minute strictly after ``after`` that matches ``cron``.

    Keeps the tzinfo of ``after``.

    Raises:
        ValueError: nothing matches within about a year (e.g. ``0 0 31 2 *``).
    """
    candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    scanned = 0
    while scanned < _MAX_SCAN_MINUTES:
        if matches_cron(cron, candidate):
            return candidate
        if candidate.hour not in cron.hours or candidate.day not in cron.days_of_month:
            # Skip to the top of the next hour.
            step = 60 - candidate.minute
        else:
            step = 1
        candidate += timedelta(minutes=step)
        scanned += step
    raise ValueError(f"No match for cron {cron.expression!r} within a year of {after}")
