"""Tests for recurrence rule parsing, next-occurrence math and expansion."""

from datetime import date, datetime, timezone

import pytest

from opustasks.exceptions import ValidationError
from opustasks.models import Task
from opustasks.services.recurrence import (
    RecurrenceExpander,
    next_occurrence,
    parse_rule,
    validate_rule,
)
from tests.conftest import FIXED_NOW, reload

MONDAY = date(2024, 5, 6)


class TestParseRule:
    def test_weekly_with_days(self):
        rule = parse_rule("FREQ=WEEKLY;BYDAY=TH,MO")
        assert rule.freq == "WEEKLY"
        assert rule.by_day == (0, 3)
        assert rule.interval == 1

    def test_lowercase_and_prefix_accepted(self):
        rule = parse_rule("rrule:freq=monthly;interval=2;bymonthday=31")
        assert rule.freq == "MONTHLY"
        assert rule.interval == 2
        assert rule.by_month_day == 31

    def test_normalized_round_trip(self):
        assert validate_rule("freq=weekly;byday=th,mo;interval=2") == "FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,TH"

    def test_blank_rule_clears(self):
        assert validate_rule(None) is None
        assert validate_rule("   ") is None

    @pytest.mark.parametrize(
        "text",
        [
            "INTERVAL=2",
            "FREQ=HOURLY",
            "FREQ=DAILY;INTERVAL=0",
            "FREQ=DAILY;COUNT=3",
            "FREQ=DAILY;FREQ=WEEKLY",
            "FREQ=DAILY;BYDAY=MO",
            "FREQ=WEEKLY;BYDAY=XX",
            "FREQ=WEEKLY;BYMONTHDAY=3",
            "FREQ=MONTHLY;BYMONTHDAY=32",
            "FREQ=MONTHLY;BYMONTH=2",
            "FREQ",
        ],
    )
    def test_rejects_rules_outside_grammar(self, text):
        with pytest.raises(ValidationError) as exc:
            parse_rule(text)
        assert exc.value.field == "recurrence_rule"


class TestNextOccurrence:
    def test_daily_interval(self):
        assert next_occurrence(parse_rule("FREQ=DAILY;INTERVAL=3"), MONDAY) == date(2024, 5, 9)

    def test_weekly_without_days_keeps_weekday(self):
        assert next_occurrence(parse_rule("FREQ=WEEKLY;INTERVAL=2"), MONDAY) == date(2024, 5, 20)

    def test_weekly_days_walk_forward_within_week(self):
        rule = parse_rule("FREQ=WEEKLY;BYDAY=MO,TH")
        thursday = next_occurrence(rule, MONDAY)
        assert thursday == date(2024, 5, 9)
        assert next_occurrence(rule, thursday) == date(2024, 5, 13)

    def test_weekly_days_with_interval_skip_weeks(self):
        rule = parse_rule("FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,TH")
        assert next_occurrence(rule, date(2024, 5, 9)) == date(2024, 5, 20)

    def test_monthly_clamps_to_month_end(self):
        rule = parse_rule("FREQ=MONTHLY")
        assert next_occurrence(rule, date(2024, 1, 31)) == date(2024, 2, 29)
        assert next_occurrence(rule, date(2023, 1, 31)) == date(2023, 2, 28)

    def test_monthly_by_month_day_recovers_after_clamp(self):
        rule = parse_rule("FREQ=MONTHLY;BYMONTHDAY=31")
        assert next_occurrence(rule, date(2024, 2, 29)) == date(2024, 3, 31)

    def test_monthly_by_month_day_later_this_month(self):
        rule = parse_rule("FREQ=MONTHLY;INTERVAL=2;BYMONTHDAY=20")
        assert next_occurrence(rule, date(2025, 1, 5)) == date(2025, 1, 20)
        assert next_occurrence(rule, date(2025, 1, 20)) == date(2025, 3, 20)
        assert next_occurrence(parse_rule("FREQ=MONTHLY;BYMONTHDAY=31"), date(2025, 2, 10)) == date(2025, 2, 28)

    def test_yearly_leap_day(self):
        assert next_occurrence(parse_rule("FREQ=YEARLY"), date(2024, 2, 29)) == date(2025, 2, 28)

    def test_yearly_by_month_later_this_year(self):
        rule = parse_rule("FREQ=YEARLY;BYMONTH=3;BYMONTHDAY=1")
        assert next_occurrence(rule, date(2024, 1, 15)) == date(2024, 3, 1)
        assert next_occurrence(rule, date(2024, 3, 1)) == date(2025, 3, 1)


class TestRecurrenceExpander:
    async def test_no_rule_no_successor(self, repository, alice, make_task):
        task = await make_task(alice, "One-off", due_date=MONDAY)
        assert await RecurrenceExpander(repository).expand(task, FIXED_NOW) is None

    async def test_successor_copies_fields(self, db_session, repository, alice, make_project, make_task):
        project = await make_project(alice)
        task = await make_task(
            alice,
            "Standup notes",
            project=project,
            description="Post in channel",
            priority=2,
            due_date=MONDAY,
            deadline=date(2024, 5, 7),
            recurrence_rule="FREQ=WEEKLY;BYDAY=MO,TH",
            recurrence_base_date=MONDAY,
        )

        successor = await RecurrenceExpander(repository).expand(task, FIXED_NOW)
        successor = await reload(db_session, Task, successor.id)

        assert successor.id != task.id
        assert successor.title == "Standup notes"
        assert successor.project_id == project.id
        assert successor.priority == 2
        assert successor.status == "open"
        assert successor.due_date == date(2024, 5, 9)
        assert successor.recurrence_base_date == date(2024, 5, 9)
        assert successor.deadline == date(2024, 5, 10)
        assert successor.recurrence_rule == task.recurrence_rule

    async def test_anchor_is_base_date_not_completion(self, repository, alice, make_task):
        task = await make_task(
            alice,
            "Water plants",
            due_date=date(2024, 5, 1),
            recurrence_rule="FREQ=DAILY;INTERVAL=7",
            recurrence_base_date=date(2024, 5, 1),
        )
        late = datetime(2024, 5, 20, 9, 0, tzinfo=timezone.utc)

        successor = await RecurrenceExpander(repository).expand(task, late)
        assert successor.due_date == date(2024, 5, 8)

    async def test_anchor_falls_back_to_completion_date(self, repository, alice, make_task):
        task = await make_task(alice, "Whenever", recurrence_rule="FREQ=DAILY")
        successor = await RecurrenceExpander(repository).expand(task, FIXED_NOW)
        assert successor.due_date == date(2024, 5, 7)
