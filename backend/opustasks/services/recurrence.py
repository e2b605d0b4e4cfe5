"""Recurrence rules and successor generation for repeating tasks."""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta

import structlog

from opustasks.exceptions import ValidationError
from opustasks.models import Task, TaskStatus
from opustasks.services.repository import EntityRepository

logger = structlog.get_logger()

WEEKDAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")
FREQUENCIES = ("DAILY", "WEEKLY", "MONTHLY", "YEARLY")


@dataclass(frozen=True)
class RecurrenceRule:
    """Parsed form of the supported RRULE subset.

    ``by_day`` holds weekday indexes (Monday = 0) in ascending order.
    """

    freq: str
    interval: int = 1
    by_day: tuple[int, ...] = ()
    by_month_day: int | None = None
    by_month: int | None = None

    def to_string(self) -> str:
        parts = [f"FREQ={self.freq}"]
        if self.interval != 1:
            parts.append(f"INTERVAL={self.interval}")
        if self.by_day:
            parts.append("BYDAY=" + ",".join(WEEKDAY_CODES[d] for d in self.by_day))
        if self.by_month is not None:
            parts.append(f"BYMONTH={self.by_month}")
        if self.by_month_day is not None:
            parts.append(f"BYMONTHDAY={self.by_month_day}")
        return ";".join(parts)


def _invalid(message: str) -> ValidationError:
    return ValidationError(message, field="recurrence_rule")


def _parse_int(key: str, value: str, low: int, high: int | None = None) -> int:
    try:
        number = int(value)
    except ValueError:
        raise _invalid(f"{key} must be an integer") from None
    if number < low or (high is not None and number > high):
        bound = f"between {low} and {high}" if high is not None else f"at least {low}"
        raise _invalid(f"{key} must be {bound}")
    return number


def parse_rule(text: str) -> RecurrenceRule:
    """Parse a rule like ``FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,TH``.

    Keys are case insensitive and an ``RRULE:`` prefix is accepted. Unknown
    keys, duplicate keys and parts that don't apply to the frequency are
    rejected rather than ignored.

    Raises:
        ValidationError: if the rule is outside the supported grammar
    """
    if not text or not text.strip():
        raise _invalid("Recurrence rule is empty")

    body = text.strip().upper()
    if body.startswith("RRULE:"):
        body = body[len("RRULE:"):]

    values: dict[str, str] = {}
    for part in body.split(";"):
        if not part.strip():
            continue
        key, sep, value = part.partition("=")
        key, value = key.strip(), value.strip()
        if not sep or not key or not value:
            raise _invalid(f"Malformed rule part: {part!r}")
        if key in values:
            raise _invalid(f"Duplicate rule part: {key}")
        values[key] = value

    unknown = set(values) - {"FREQ", "INTERVAL", "BYDAY", "BYMONTHDAY", "BYMONTH"}
    if unknown:
        raise _invalid(f"Unsupported rule part: {', '.join(sorted(unknown))}")

    freq = values.get("FREQ")
    if freq is None:
        raise _invalid("FREQ is required")
    if freq not in FREQUENCIES:
        raise _invalid(f"Unsupported frequency: {freq}")

    interval = _parse_int("INTERVAL", values["INTERVAL"], 1) if "INTERVAL" in values else 1

    by_day: tuple[int, ...] = ()
    if "BYDAY" in values:
        if freq != "WEEKLY":
            raise _invalid("BYDAY is only supported with FREQ=WEEKLY")
        days = set()
        for code in values["BYDAY"].split(","):
            code = code.strip()
            if code not in WEEKDAY_CODES:
                raise _invalid(f"Unknown weekday: {code}")
            days.add(WEEKDAY_CODES.index(code))
        by_day = tuple(sorted(days))

    by_month_day = None
    if "BYMONTHDAY" in values:
        if freq not in ("MONTHLY", "YEARLY"):
            raise _invalid("BYMONTHDAY is only supported with FREQ=MONTHLY or FREQ=YEARLY")
        by_month_day = _parse_int("BYMONTHDAY", values["BYMONTHDAY"], 1, 31)

    by_month = None
    if "BYMONTH" in values:
        if freq != "YEARLY":
            raise _invalid("BYMONTH is only supported with FREQ=YEARLY")
        by_month = _parse_int("BYMONTH", values["BYMONTH"], 1, 12)

    return RecurrenceRule(
        freq=freq,
        interval=interval,
        by_day=by_day,
        by_month_day=by_month_day,
        by_month=by_month,
    )


def _clamped(year: int, month: int, day: int) -> date:
    """Build a date, pulling ``day`` back to the month's last day if needed."""
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def _add_months(anchor: date, months: int, day: int) -> date:
    index = anchor.year * 12 + (anchor.month - 1) + months
    return _clamped(index // 12, index % 12 + 1, day)


def next_occurrence(rule: RecurrenceRule, anchor: date) -> date:
    """First occurrence strictly after ``anchor``.

    The interval is counted from the anchor, so a late completion never
    compresses the schedule.
    """
    if rule.freq == "DAILY":
        return anchor + timedelta(days=rule.interval)

    if rule.freq == "WEEKLY":
        if not rule.by_day:
            return anchor + timedelta(weeks=rule.interval)
        weekday = anchor.weekday()
        for day in rule.by_day:
            if day > weekday:
                return anchor + timedelta(days=day - weekday)
        week_start = anchor - timedelta(days=weekday)
        return week_start + timedelta(weeks=rule.interval, days=rule.by_day[0])

    if rule.freq == "MONTHLY":
        if rule.by_month_day:
            this_month = _clamped(anchor.year, anchor.month, rule.by_month_day)
            if this_month > anchor:
                return this_month
        return _add_months(anchor, rule.interval, rule.by_month_day or anchor.day)

    month = rule.by_month or anchor.month
    day = rule.by_month_day or anchor.day
    this_year = _clamped(anchor.year, month, day)
    if this_year > anchor:
        return this_year
    return _clamped(anchor.year + rule.interval, month, day)


def validate_rule(text: str | None) -> str | None:
    """Normalize a rule for storage; ``None`` and blank clear the rule."""
    if text is None or not text.strip():
        return None
    return parse_rule(text).to_string()


class RecurrenceExpander:
    """Materializes the next instance of a repeating task."""

    def __init__(self, repository: EntityRepository):
        self.repository = repository

    @staticmethod
    def anchor_for(task: Task, completed_at: datetime) -> date:
        return task.recurrence_base_date or task.due_date or completed_at.date()

    async def expand(self, task: Task, completed_at: datetime) -> Task | None:
        """Create the successor of ``task``; returns ``None`` for non-recurring tasks.

        Runs inside the caller's transaction, so the successor is committed
        together with the completion that triggered it.
        """
        if not task.recurrence_rule:
            return None

        rule = parse_rule(task.recurrence_rule)
        anchor = self.anchor_for(task, completed_at)
        next_date = next_occurrence(rule, anchor)

        deadline = None
        if task.deadline is not None:
            deadline = task.deadline + (next_date - (task.due_date or anchor))

        successor = Task(
            owner_id=task.owner_id,
            project_id=task.project_id,
            section_id=task.section_id,
            parent_task_id=task.parent_task_id,
            title=task.title,
            description=task.description,
            status=TaskStatus.OPEN.value,
            priority=task.priority,
            due_date=next_date,
            due_time=task.due_time,
            deadline=deadline,
            recurrence_rule=task.recurrence_rule,
            recurrence_base_date=next_date,
            sort_order=task.sort_order,
        )
        await self.repository.add(successor)

        logger.info(
            "recurring_task_created",
            task_id=str(task.id),
            successor_id=str(successor.id),
            rule=task.recurrence_rule,
            anchor=str(anchor),
            due_date=str(next_date),
        )
        return successor
