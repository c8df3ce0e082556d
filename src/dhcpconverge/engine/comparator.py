"""
Type-aware comparison of desired and observed values.

Observed values usually arrive as text captured from a query, so every
comparison normalises both sides before deciding equality.
"""

from __future__ import annotations

import re
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable


class ValueKind(Enum):
    """How a desired value is compared with what the host reports."""

    SCALAR = "scalar"
    NUMBER = "number"
    ORDERED_LIST = "ordered_list"
    UNORDERED_SET = "unordered_set"
    BOOLEAN = "boolean"
    DURATION = "duration"


_TRUE_WORDS = frozenset({"true", "$true", "1", "yes"})
_FALSE_WORDS = frozenset({"false", "$false", "0", "no"})

# [-][d.]hh:mm:ss[.fffffff], the TimeSpan rendering used by PowerShell
_TIMESPAN_RE = re.compile(
    r"^(?P<sign>-)?(?:(?P<days>\d+)\.)?(?P<hours>\d{1,2}):(?P<minutes>\d{1,2})"
    r"(?::(?P<seconds>\d{1,2})(?:\.(?P<fraction>\d{1,7}))?)?$"
)


def parse_boolean(value: Any) -> bool:
    """Parse a boolean or its textual rendering. Raises ValueError."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(f"Not a boolean: {value!r}")


def parse_duration(value: Any) -> timedelta:
    """
    Parse a time span.

    Accepts a timedelta, a number of seconds, or TimeSpan text such as
    "1:00:00", "8.00:00:00" or "00:30:00.5000000". Raises ValueError.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)

    text = str(value).strip()
    if text.isdigit():
        return timedelta(seconds=int(text))

    match = _TIMESPAN_RE.match(text)
    if not match:
        raise ValueError(f"Not a duration: {value!r}")

    hours = int(match.group("hours"))
    minutes = int(match.group("minutes"))
    seconds = int(match.group("seconds") or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        raise ValueError(f"Not a duration: {value!r}")

    fraction = match.group("fraction") or ""
    span = timedelta(
        days=int(match.group("days") or 0),
        hours=hours,
        minutes=minutes,
        seconds=seconds,
        microseconds=int(fraction.ljust(7, "0")[:6]) if fraction else 0,
    )
    return -span if match.group("sign") else span


def format_duration(value: timedelta) -> str:
    """Render a timedelta the way PowerShell parameters accept it."""
    micros = value // timedelta(microseconds=1)
    sign = "-" if micros < 0 else ""
    total, micros = divmod(abs(micros), 1_000_000)
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    fraction = f".{micros:06d}".rstrip("0") if micros else ""
    if days:
        return f"{sign}{days}.{hours:02d}:{minutes:02d}:{seconds:02d}{fraction}"
    return f"{sign}{hours}:{minutes:02d}:{seconds:02d}{fraction}"


def _as_number(text: str) -> Decimal | None:
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def _scalar_equal(desired: Any, observed: Any) -> bool:
    if desired is None or observed is None:
        return desired is None and observed is None
    # Only a desired value that is itself a number compares numerically;
    # text such as a scope name "001" stays text.
    if isinstance(desired, (int, float, Decimal)) and not isinstance(desired, bool):
        return _number_equal(desired, observed)
    return str(desired).strip() == str(observed).strip()


def _number_equal(desired: Any, observed: Any) -> bool:
    if desired is None or observed is None:
        return desired is None and observed is None
    left, right = _as_number(str(desired).strip()), _as_number(str(observed).strip())
    if left is None or right is None:
        return False
    return left == right


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        return [value]
    return list(value)


class ValueComparator:
    """Pure equality checks for each ValueKind."""

    def equal(self, desired: Any, observed: Any, kind: ValueKind = ValueKind.SCALAR) -> bool:
        if kind is ValueKind.SCALAR:
            return _scalar_equal(desired, observed)
        if kind is ValueKind.NUMBER:
            return _number_equal(desired, observed)
        if kind is ValueKind.ORDERED_LIST:
            left, right = _as_list(desired), _as_list(observed)
            return len(left) == len(right) and all(
                _scalar_equal(a, b) for a, b in zip(left, right)
            )
        if kind is ValueKind.UNORDERED_SET:
            left = {str(v).strip() for v in _as_list(desired)}
            right = {str(v).strip() for v in _as_list(observed)}
            return not left.symmetric_difference(right)
        if kind is ValueKind.BOOLEAN:
            return self._safe(parse_boolean, desired, observed)
        if kind is ValueKind.DURATION:
            return self._safe(parse_duration, desired, observed)
        raise ValueError(f"Unknown value kind: {kind!r}")

    @staticmethod
    def _safe(parse: Any, desired: Any, observed: Any) -> bool:
        if desired is None or observed is None:
            return desired is None and observed is None
        try:
            return parse(desired) == parse(observed)
        except ValueError:
            return False


default_comparator = ValueComparator()


def equal(desired: Any, observed: Any, kind: ValueKind = ValueKind.SCALAR) -> bool:
    """Module-level shortcut for ValueComparator().equal."""
    return default_comparator.equal(desired, observed, kind)
