"""Convert natural-language recurrence strings to rule strings.

Used by import tooling, whose source data describes repetition in prose:

    "every day"                  -> FREQ=DAILY
    "every 14 days"              -> FREQ=DAILY;INTERVAL=14
    "every Monday and Thursday"  -> FREQ=WEEKLY;BYDAY=MO,TH
    "every 2 weeks"              -> FREQ=WEEKLY;INTERVAL=2
    "every March 1"              -> FREQ=YEARLY;BYMONTH=3;BYMONTHDAY=1
    "every 15th"                 -> FREQ=MONTHLY;BYMONTHDAY=15
"""

import re
from dataclasses import dataclass, field
from typing import Iterable

WEEKDAYS = {
    "monday": "MO", "mon": "MO",
    "tuesday": "TU", "tue": "TU",
    "wednesday": "WE", "wed": "WE",
    "thursday": "TH", "thu": "TH",
    "friday": "FR", "fri": "FR",
    "saturday": "SA", "sat": "SA",
    "sunday": "SU", "sun": "SU",
}

MONTHS = {
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}

_UNITS = {"day": "DAILY", "week": "WEEKLY", "month": "MONTHLY", "year": "YEARLY"}

_TIME_SUFFIX = re.compile(r"\s+at\s+\d{1,2}(:\d{2})?\s*(am|pm)?", re.IGNORECASE)
_EVERY_N_UNITS = re.compile(r"^(\d+)\s*(day|week|month|year)s?$")
_MONTH_AND_DAY = re.compile(r"^([a-z]+)\s+(\d{1,2})(?:st|nd|rd|th)?$")
_DAY_OF_MONTH = re.compile(r"^(\d{1,2})(?:st|nd|rd|th)?$")


@dataclass
class ConversionResult:
    rule: str | None
    warning: str | None = None


@dataclass
class BatchConversion:
    converted: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


def _with_interval(freq: str, interval: int) -> str:
    return f"FREQ={freq}" if interval == 1 else f"FREQ={freq};INTERVAL={interval}"


def todoist_to_rrule(text: str | None) -> ConversionResult:
    """Convert one natural-language pattern.

    Time-of-day suffixes ("at 6:30 am") are dropped; the time is stored
    separately. Unrecognized input yields ``rule=None`` plus a warning.
    """
    if not text:
        return ConversionResult(rule=None)

    normalized = _TIME_SUFFIX.sub("", text.lower().strip()).strip()
    if not normalized.startswith("every"):
        return ConversionResult(rule=None, warning=f'Unrecognized pattern (no "every"): "{text}"')

    pattern = normalized[len("every"):].strip()

    if pattern in _UNITS:
        return ConversionResult(rule=f"FREQ={_UNITS[pattern]}")

    match = _EVERY_N_UNITS.match(pattern)
    if match:
        return ConversionResult(rule=_with_interval(_UNITS[match.group(2)], int(match.group(1))))

    # "monday", "monday and thursday", "mon, wed, fri"
    words = [w for w in re.split(r"[,\s]+", re.sub(r"\s+and\s+", ", ", pattern)) if w]
    days = [WEEKDAYS[w] for w in words if w in WEEKDAYS]
    if days and len(days) == len(words):
        return ConversionResult(rule=f"FREQ=WEEKLY;BYDAY={','.join(days)}")

    match = _MONTH_AND_DAY.match(pattern)
    if match and match.group(1) in MONTHS:
        day = int(match.group(2))
        if 1 <= day <= 31:
            return ConversionResult(rule=f"FREQ=YEARLY;BYMONTH={MONTHS[match.group(1)]};BYMONTHDAY={day}")

    match = _DAY_OF_MONTH.match(pattern)
    if match:
        day = int(match.group(1))
        if 1 <= day <= 31:
            return ConversionResult(rule=f"FREQ=MONTHLY;BYMONTHDAY={day}")

    if pattern.startswith("other "):
        unit = pattern[len("other "):]
        if unit in ("day", "week", "month"):
            return ConversionResult(rule=_with_interval(_UNITS[unit], 2))

    if pattern in ("weekday", "workday"):
        return ConversionResult(rule="FREQ=WEEKLY;BYDAY=MO,TU,WE,TH,FR")

    return ConversionResult(rule=None, warning=f'Unrecognized recurrence pattern: "{text}"')


def convert_recurrence_patterns(patterns: Iterable[str | None]) -> BatchConversion:
    """Convert many patterns, collecting the ones that couldn't be mapped."""
    batch = BatchConversion()
    for pattern in patterns:
        if not pattern:
            continue
        result = todoist_to_rrule(pattern)
        if result.rule:
            batch.converted[pattern] = result.rule
        if result.warning:
            batch.warnings.append(result.warning)
    return batch
