"""Reminder expression matcher — pure business logic.

Reminder expressions use a restricted 5-field cron dialect
("minute hour day-of-month month day-of-week"). Each field is one of:

    *       any value
    */N     value % N == 0
    S/N     value >= S and (value - S) % N == 0
    N       value == N

Only the minute and hour fields are evaluated. The remaining three are
checked for shape but ignored; the UI always writes "* * *" there.

The field count must be exactly five. Longer expressions (a leading
seconds column or a trailing year column) are rejected rather than
read by their first five fields, so they never fire.

The matcher never raises: anything it cannot parse simply never fires.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

FIELD_COUNT = 5


@dataclass(frozen=True)
class Wildcard:
    def matches(self, value: int) -> bool:
        return True


@dataclass(frozen=True)
class Stepped:
    step: int

    def matches(self, value: int) -> bool:
        return value % self.step == 0


@dataclass(frozen=True)
class SteppedFrom:
    start: int
    step: int

    def matches(self, value: int) -> bool:
        if value < self.start:
            return False
        return (value - self.start) % self.step == 0


@dataclass(frozen=True)
class Literal:
    value: int

    def matches(self, value: int) -> bool:
        return value == self.value


@dataclass(frozen=True)
class Invalid:
    text: str

    def matches(self, value: int) -> bool:
        return False


CronField = Wildcard | Stepped | SteppedFrom | Literal | Invalid


def _parse_number(text: str) -> int | None:
    if not (text.isascii() and text.isdigit()):
        return None
    return int(text)


def parse_field(text: str) -> CronField:
    """Parse a single field into its tagged form."""
    if text == "*":
        return Wildcard()

    if "/" in text:
        head, _, tail = text.partition("/")
        step = _parse_number(tail)
        if step is None or step == 0:
            return Invalid(text)
        if head == "*":
            return Stepped(step)
        start = _parse_number(head)
        if start is None:
            return Invalid(text)
        return SteppedFrom(start, step)

    value = _parse_number(text)
    if value is None:
        return Invalid(text)
    return Literal(value)


def parse_expression(expression: str | None) -> list[CronField] | None:
    """Split and parse an expression. Returns None when it is not 5 fields."""
    if not expression:
        return None
    parts = expression.split()
    if len(parts) != FIELD_COUNT:
        return None
    return [parse_field(p) for p in parts]


def is_well_formed(expression: str | None) -> bool:
    """True if every field of the expression parses."""
    fields = parse_expression(expression)
    if fields is None:
        return False
    return not any(isinstance(f, Invalid) for f in fields)


def matches(expression: str | None, instant: datetime) -> bool:
    """True iff the minute and hour fields both match ``instant``.

    ``instant`` is taken as-is (server wall clock); no timezone conversion.
    """
    fields = parse_expression(expression)
    if fields is None:
        return False
    if any(isinstance(f, Invalid) for f in fields):
        return False

    minute_field, hour_field = fields[0], fields[1]
    return minute_field.matches(instant.minute) and hour_field.matches(instant.hour)
