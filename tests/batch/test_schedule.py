"""
Tests for inventory_batch.domain.schedule.

Validates pure cron parsing, matching and next-match search.
"""

from dataclasses import FrozenInstanceError
from datetime import UTC, datetime

import pytest

from inventory_batch.domain.schedule import (
    matches_cron,
    next_cron_match,
    parse_cron,
)


class TestParseCron:
    def test_default_sweep_expression(self):
        cron = parse_cron("0 */6 * * *")
        assert cron.minutes == frozenset({0})
        assert cron.hours == frozenset({0, 6, 12, 18})
        assert cron.days_of_month == frozenset(range(1, 32))
        assert cron.months == frozenset(range(1, 13))
        assert cron.days_of_week == frozenset(range(7))

    def test_lists_ranges_and_steps(self):
        cron = parse_cron("5,10 1-3 1-10/3 */4 1-5")
        assert cron.minutes == frozenset({5, 10})
        assert cron.hours == frozenset({1, 2, 3})
        assert cron.days_of_month == frozenset({1, 4, 7, 10})
        assert cron.months == frozenset({1, 5, 9})
        assert cron.days_of_week == frozenset({1, 2, 3, 4, 5})

    def test_value_with_step_runs_to_field_end(self):
        assert parse_cron("50/5 * * * *").minutes == frozenset({50, 55})

    def test_expression_is_normalized(self):
        assert parse_cron("  0   */6 * * * ").expression == "0 */6 * * *"

    def test_frozen(self):
        cron = parse_cron("* * * * *")
        with pytest.raises(FrozenInstanceError):
            cron.minutes = frozenset()  # type: ignore[misc]

    @pytest.mark.parametrize(
        "expression",
        [
            "* * * *",
            "* * * * * *",
            "60 * * * *",
            "* 24 * * *",
            "* * 0 * *",
            "* * * 13 *",
            "* * * * 7",
            "5-1 * * * *",
            "*/0 * * * *",
            "a * * * *",
            "1,,2 * * * *",
        ],
    )
    def test_invalid_expressions(self, expression):
        with pytest.raises(ValueError):
            parse_cron(expression)


class TestMatchesCron:
    def test_minute_and_hour(self):
        cron = parse_cron("30 12 * * *")
        assert matches_cron(cron, datetime(2024, 1, 1, 12, 30, tzinfo=UTC))
        assert not matches_cron(cron, datetime(2024, 1, 1, 12, 31, tzinfo=UTC))

    def test_day_of_week_sunday_is_zero(self):
        cron = parse_cron("0 0 * * 0")
        # 2024-01-07 is a Sunday
        assert matches_cron(cron, datetime(2024, 1, 7, 0, 0, tzinfo=UTC))
        assert not matches_cron(cron, datetime(2024, 1, 8, 0, 0, tzinfo=UTC))


class TestNextCronMatch:
    def test_next_six_hour_boundary(self):
        cron = parse_cron("0 */6 * * *")
        after = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        assert next_cron_match(cron, after) == datetime(2024, 1, 1, 18, 0, tzinfo=UTC)

    def test_strictly_after(self):
        cron = parse_cron("* * * * *")
        after = datetime(2024, 1, 1, 12, 0, 30, tzinfo=UTC)
        assert next_cron_match(cron, after) == datetime(2024, 1, 1, 12, 1, tzinfo=UTC)

    def test_rolls_over_month_end(self):
        cron = parse_cron("15 3 1 * *")
        after = datetime(2024, 1, 31, 23, 59, tzinfo=UTC)
        assert next_cron_match(cron, after) == datetime(2024, 2, 1, 3, 15, tzinfo=UTC)

    def test_keeps_timezone(self):
        cron = parse_cron("0 0 * * *")
        assert next_cron_match(cron, datetime(2024, 1, 1, 5, 0, tzinfo=UTC)).tzinfo is UTC

    def test_impossible_schedule_raises(self):
        cron = parse_cron("0 0 31 2 *")
        with pytest.raises(ValueError):
            next_cron_match(cron, datetime(2024, 1, 1, tzinfo=UTC))
