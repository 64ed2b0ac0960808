"""Five-field cron expressions evaluated in UTC.

Fields: ``minute hour day-of-month month day-of-week``. Each field accepts
``*``, numbers, ranges (``1-5``), lists (``1,15``) and steps (``*/15``,
``0-30/10``); months and weekdays also accept three-letter names. Day of week
runs 0-7 with both 0 and 7 meaning Sunday. As in classic cron, when both
day fields are restricted a day matches if either one does.

Aliases: ``@yearly``/``@annually``, ``@monthly``, ``@weekly``, ``@daily``/
``@midnight`` and ``@hourly``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import cache

from castor.errors import ValidationError

_ALIASES = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

_MONTHS = {
    name: i
    for i, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"),
        start=1,
    )
}
_WEEKDAYS = {
    name: i for i, name in enumerate(("sun", "mon", "tue", "wed", "thu", "fri", "sat"))
}

# (name, low, high, names)
_FIELDS: tuple[tuple[str, int, int, dict[str, int]], ...] = (
    ("minute", 0, 59, {}),
    ("hour", 0, 23, {}),
    ("day of month", 1, 31, {}),
    ("month", 1, 12, _MONTHS),
    ("day of week", 0, 7, _WEEKDAYS),
)

# Long enough for any valid expression (Feb 29 recurs within 8 years)
_SEARCH_YEARS = 9


def _value(token: str, low: int, high: int, names: dict[str, int], field: str) -> int:
    key = token.lower()
    if key in names:
        return names[key]
    try:
        value = int(token)
    except ValueError:
        raise ValidationError(f"Invalid {field} value {token!r}") from None
    if not low <= value <= high:
        raise ValidationError(f"{field} value {value} outside {low}-{high}")
    return value


def _parse_field(
    text: str, field: str, low: int, high: int, names: dict[str, int]
) -> frozenset[int]:
    values: set[int] = set()
    for part in text.split(","):
        if not part:
            raise ValidationError(f"Empty entry in {field} field {text!r}")
        base, _, step_text = part.partition("/")
        step = 1
        if step_text:
            try:
                step = int(step_text)
            except ValueError:
                raise ValidationError(f"Invalid step {step_text!r} in {field}") from None
            if step <= 0:
                raise ValidationError(f"Step must be positive in {field}")
        if base == "*":
            start, end = low, high
        elif "-" in base:
            a, _, b = base.partition("-")
            start = _value(a, low, high, names, field)
            end = _value(b, low, high, names, field)
            if start > end:
                raise ValidationError(f"Descending range {base!r} in {field}")
        else:
            start = _value(base, low, high, names, field)
            end = high if step_text else start
        values.update(range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronExpression:
    """A parsed cron schedule."""

    expression: str
    minutes: frozenset[int]
    hours: frozenset[int]
    days_of_month: frozenset[int]
    months: frozenset[int]
    # 0 = Sunday
    days_of_week: frozenset[int]
    dom_restricted: bool
    dow_restricted: bool

    @classmethod
    def parse(cls, expression: str) -> CronExpression:
        return _parse(expression.strip())

    def matches_day(self, when: datetime) -> bool:
        dom = when.day in self.days_of_month
        dow = (when.weekday() + 1) % 7 in self.days_of_week
        if self.dom_restricted and self.dow_restricted:
            return dom or dow
        return dom and dow

    def next_after(self, after: datetime) -> datetime:
        """First matching minute strictly after *after* (naive values are UTC)."""
        if after.tzinfo is None:
            after = after.replace(tzinfo=UTC)
        else:
            after = after.astimezone(UTC)
        t = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit = t.year + _SEARCH_YEARS
        while t.year <= limit:
            if t.month not in self.months:
                t = _first_of_next_month(t)
                continue
            if not self.matches_day(t):
                t = t.replace(hour=0, minute=0) + timedelta(days=1)
                continue
            if t.hour not in self.hours:
                t = t.replace(minute=0) + timedelta(hours=1)
                continue
            if t.minute not in self.minutes:
                t += timedelta(minutes=1)
                continue
            return t
        raise ValidationError(f"Cron expression {self.expression!r} never fires")

    def __str__(self) -> str:
        return self.expression


def _first_of_next_month(t: datetime) -> datetime:
    if t.month == 12:
        return t.replace(year=t.year + 1, month=1, day=1, hour=0, minute=0)
    return t.replace(month=t.month + 1, day=1, hour=0, minute=0)


@cache
def _parse(expression: str) -> CronExpression:
    expanded = _ALIASES.get(expression.lower(), expression)
    parts = expanded.split()
    if len(parts) != 5:
        raise ValidationError(
            f"Cron expression {expression!r} must have 5 fields, got {len(parts)}",
            hint="Use 'minute hour day-of-month month day-of-week', e.g. '*/5 * * * *'.",
        )
    parsed = [
        _parse_field(text, name, low, high, names)
        for text, (name, low, high, names) in zip(parts, _FIELDS, strict=True)
    ]
    dow = frozenset(0 if d == 7 else d for d in parsed[4])
    return CronExpression(
        expression=expression,
        minutes=parsed[0],
        hours=parsed[1],
        days_of_month=parsed[2],
        months=parsed[3],
        days_of_week=dow,
        dom_restricted=parts[2] != "*",
        dow_restricted=parts[4] != "*",
    )


def next_occurrence(expression: str, after: datetime) -> datetime:
    return CronExpression.parse(expression).next_after(after)
