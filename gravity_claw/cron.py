"""Natural-language schedule parsing into five-field cron expressions."""

from __future__ import annotations

import re
from collections.abc import Callable


MONTH_NAMES = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

DAY_NAMES = {
    "sun": 0,
    "mon": 1,
    "tue": 2,
    "wed": 3,
    "thu": 4,
    "fri": 5,
    "sat": 6,
}

WEEKDAY_CRON = {
    "sunday": 0,
    "monday": 1,
    "tuesday": 2,
    "wednesday": 3,
    "thursday": 4,
    "friday": 5,
    "saturday": 6,
}

# (minimum, maximum, names) per field: minute, hour, day of month, month, day of week.
_FIELD_SPECS: list[tuple[int, int, dict[str, int]]] = [
    (0, 59, {}),
    (0, 23, {}),
    (1, 31, {}),
    (1, 12, MONTH_NAMES),
    (0, 7, DAY_NAMES),
]

_ITEM_RE = re.compile(r"^(?P<base>\*|[a-z0-9]+(?:-[a-z0-9]+)?)(?:/(?P<step>\d+))?$")


def _field_value(token: str, minimum: int, maximum: int, names: dict[str, int]) -> int | None:
    if token.isdigit():
        value = int(token)
    elif token in names:
        value = names[token]
    else:
        return None
    if value < minimum or value > maximum:
        return None
    return value


def _is_valid_field(text: str, minimum: int, maximum: int, names: dict[str, int]) -> bool:
    for item in text.lower().split(","):
        match = _ITEM_RE.match(item)
        if not match:
            return False
        step = match.group("step")
        if step is not None and int(step) <= 0:
            return False
        base = match.group("base")
        if base == "*":
            continue
        bounds = base.split("-")
        values = [_field_value(part, minimum, maximum, names) for part in bounds]
        if any(value is None for value in values):
            return False
        if len(values) == 2 and values[0] > values[1]:
            return False
    return True


def is_cron_expression(text: str) -> bool:
    """Whether ``text`` is a well-formed five-field cron expression."""
    fields = (text or "").split()
    if len(fields) != len(_FIELD_SPECS):
        return False
    return all(
        _is_valid_field(field, minimum, maximum, names)
        for field, (minimum, maximum, names) in zip(fields, _FIELD_SPECS, strict=True)
    )


def _daily_at(match: re.Match[str]) -> str | None:
    hour = int(match.group(1))
    minute = int(match.group(2)) if match.group(2) else 0
    meridiem = (match.group(3) or "").lower()
    if minute > 59:
        return None
    if meridiem:
        if hour < 1 or hour > 12:
            return None
        if meridiem == "pm" and hour < 12:
            hour += 12
        if meridiem == "am" and hour == 12:
            hour = 0
    elif hour > 23:
        return None
    return f"{minute} {hour} * * *"


def _every_n_minutes(match: re.Match[str]) -> str | None:
    interval = int(match.group(1))
    if interval < 1 or interval > 59:
        return None
    return "* * * * *" if interval == 1 else f"*/{interval} * * * *"


def _every_n_hours(match: re.Match[str]) -> str | None:
    interval = int(match.group(1))
    if interval < 1 or interval > 23:
        return None
    return "0 * * * *" if interval == 1 else f"0 */{interval} * * *"


def _weekday_at_nine(match: re.Match[str]) -> str:
    return f"0 9 * * {WEEKDAY_CRON[match.group(1).lower()]}"


def _fixed(expression: str) -> Callable[[re.Match[str]], str]:
    return lambda _match: expression


# Order matters: the first matching phrase wins.
_PATTERNS: list[tuple[re.Pattern[str], Callable[[re.Match[str]], str | None]]] = [
    (re.compile(r"\bevery\s+minute\b", re.IGNORECASE), _fixed("* * * * *")),
    (re.compile(r"\bevery\s+(\d{1,3})\s*(?:min|mins|minute|minutes)\b", re.IGNORECASE), _every_n_minutes),
    (re.compile(r"\bevery\s+hour\b", re.IGNORECASE), _fixed("0 * * * *")),
    (re.compile(r"\bevery\s+(\d{1,3})\s*(?:h|hr|hrs|hour|hours)\b", re.IGNORECASE), _every_n_hours),
    (re.compile(r"\bevery\s+day\s+at\s+(\d{1,2})(?::(\d{2}))?\s*(am|pm)?\b", re.IGNORECASE), _daily_at),
    (re.compile(r"\bevery\s+morning\b", re.IGNORECASE), _fixed("0 8 * * *")),
    (re.compile(r"\bevery\s+evening\b", re.IGNORECASE), _fixed("0 18 * * *")),
    (re.compile(r"\bevery\s+night\b", re.IGNORECASE), _fixed("0 21 * * *")),
    (
        re.compile(r"\bevery\s+(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b", re.IGNORECASE),
        _weekday_at_nine,
    ),
    (re.compile(r"\bevery\s+weekdays?\b", re.IGNORECASE), _fixed("0 9 * * 1-5")),
    (re.compile(r"\bevery\s+weekends?\b", re.IGNORECASE), _fixed("0 10 * * 0,6")),
]


def parse_schedule(text: str) -> str | None:
    """Translate a schedule phrase into a cron expression.

    A well-formed cron expression is returned unchanged. ``None`` means the
    phrase was not understood and the user should be asked to rephrase.
    """
    raw = (text or "").strip()
    if not raw:
        return None
    if is_cron_expression(raw):
        return raw
    for pattern, build in _PATTERNS:
        match = pattern.search(raw)
        if match:
            return build(match)
    return None
