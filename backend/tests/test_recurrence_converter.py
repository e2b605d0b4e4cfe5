"""Tests for natural-language recurrence conversion used by import tooling."""

import pytest

from opustasks.services.recurrence import parse_rule
from opustasks.services.recurrence_converter import convert_recurrence_patterns, todoist_to_rrule


@pytest.mark.parametrize(
    "text,expected",
    [
        ("every day", "FREQ=DAILY"),
        ("every 14 days", "FREQ=DAILY;INTERVAL=14"),
        ("every 2 weeks", "FREQ=WEEKLY;INTERVAL=2"),
        ("every Monday", "FREQ=WEEKLY;BYDAY=MO"),
        ("every Monday and Thursday", "FREQ=WEEKLY;BYDAY=MO,TH"),
        ("every mon, wed, fri", "FREQ=WEEKLY;BYDAY=MO,WE,FR"),
        ("every March 1", "FREQ=YEARLY;BYMONTH=3;BYMONTHDAY=1"),
        ("every 15th", "FREQ=MONTHLY;BYMONTHDAY=15"),
        ("every other week", "FREQ=WEEKLY;INTERVAL=2"),
        ("every weekday", "FREQ=WEEKLY;BYDAY=MO,TU,WE,TH,FR"),
        ("every day at 6:30 am", "FREQ=DAILY"),
    ],
)
def test_known_patterns(text, expected):
    result = todoist_to_rrule(text)
    assert result.rule == expected
    assert result.warning is None
    # Every produced rule must be accepted by the rule parser
    parse_rule(result.rule)


def test_empty_input_has_no_rule_and_no_warning():
    result = todoist_to_rrule("")
    assert result.rule is None
    assert result.warning is None


def test_unrecognized_pattern_warns():
    result = todoist_to_rrule("every blue moon")
    assert result.rule is None
    assert "every blue moon" in result.warning


def test_missing_every_warns():
    result = todoist_to_rrule("daily")
    assert result.rule is None
    assert 'no "every"' in result.warning


def test_batch_collects_conversions_and_warnings():
    batch = convert_recurrence_patterns(["every day", None, "sometimes", "every 2 months"])
    assert batch.converted == {"every day": "FREQ=DAILY", "every 2 months": "FREQ=MONTHLY;INTERVAL=2"}
    assert len(batch.warnings) == 1
