"""Tests for cron evaluation."""

from datetime import datetime, timezone

import pytest

from agregator_cli.scheduler.cron import (
    current_slot,
    next_fire_time,
    parse_cron_trigger,
    slot_key,
    validate_schedule,
)
from agregator_cli.scheduler.exceptions import ScheduleInvalid


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestValidateSchedule:
    """Tests for validate_schedule and the clock trigger."""

    @pytest.mark.parametrize("schedule", ["0 * * * *", "0 */2 * * *", "*/30 * * * * *", "0 9 * * 1-5"])
    def test_valid(self, schedule: str) -> None:
        validate_schedule(schedule)

    @pytest.mark.parametrize("schedule", ["", "every hour", "* * * *", "61 * * * *", "0 25 * * *"])
    def test_invalid(self, schedule: str) -> None:
        with pytest.raises(ScheduleInvalid) as exc_info:
            validate_schedule(schedule)

        assert exc_info.value.schedule == schedule

    def test_five_part_fires_on_second_zero(self) -> None:
        trigger = parse_cron_trigger("0 * * * *")

        fire = trigger.get_next_fire_time(None, utc(2025, 6, 15, 12, 30, 10))

        assert fire == utc(2025, 6, 15, 13, 0, 0)

    def test_weekday_numbers_follow_cron(self) -> None:
        # 2025-06-14 is a Saturday; cron 1-5 means Monday to Friday
        trigger = parse_cron_trigger("0 9 * * 1-5")

        fire = trigger.get_next_fire_time(None, utc(2025, 6, 14, 12))

        assert fire == utc(2025, 6, 16, 9)
        assert fire == next_fire_time("0 9 * * 1-5", utc(2025, 6, 14, 12))

    def test_sunday_as_zero(self) -> None:
        trigger = parse_cron_trigger("0 9 * * 0")

        fire = trigger.get_next_fire_time(None, utc(2025, 6, 14, 12))

        assert fire == utc(2025, 6, 15, 9)

    def test_day_fields_match_either(self) -> None:
        # 2025-01-01 is a Wednesday; the next Monday comes before the next 1st
        trigger = parse_cron_trigger("0 0 1 * 1")
        after = utc(2025, 1, 1, 0, 0, 1)

        fire = trigger.get_next_fire_time(None, after)

        assert fire == utc(2025, 1, 6)
        assert fire == next_fire_time("0 0 1 * 1", after)

    @pytest.mark.parametrize(
        "schedule", ["0 0 1 * 1", "0 9 * * 1-5", "*/30 * * * * *", "0 0 1,15 * 0", "0 */2 * * *"]
    )
    def test_clock_follows_next_fire_time(self, schedule: str) -> None:
        trigger = parse_cron_trigger(schedule)
        fire = trigger.get_next_fire_time(None, utc(2025, 1, 1, 0, 0, 1))

        for _ in range(5):
            following = trigger.get_next_fire_time(fire, fire)
            assert following == next_fire_time(schedule, fire)
            fire = following

    def test_fire_time_at_now_is_kept(self) -> None:
        trigger = parse_cron_trigger("0 * * * *")

        assert trigger.get_next_fire_time(None, utc(2025, 6, 15, 12)) == utc(2025, 6, 15, 12)

    def test_fraction_of_second_rounds_up(self) -> None:
        trigger = parse_cron_trigger("* * * * * *")
        now = datetime(2025, 6, 15, 12, 0, 0, 500000, tzinfo=timezone.utc)

        assert trigger.get_next_fire_time(None, now) == utc(2025, 6, 15, 12, 0, 1)


class TestFireTimes:
    """Tests for next_fire_time, current_slot and slot_key."""

    def test_next_fire_time_strictly_after(self) -> None:
        assert next_fire_time("0 * * * *", utc(2025, 6, 15, 12)) == utc(2025, 6, 15, 13)

    def test_naive_input_treated_as_utc(self) -> None:
        assert next_fire_time("0 * * * *", datetime(2025, 6, 15, 12, 30)) == utc(2025, 6, 15, 13)

    def test_every_two_hours(self) -> None:
        assert next_fire_time("0 */2 * * *", utc(2025, 6, 15, 13, 5)) == utc(2025, 6, 15, 14)

    def test_current_slot_on_boundary(self) -> None:
        assert current_slot("0 * * * *", utc(2025, 6, 15, 12)) == utc(2025, 6, 15, 12)

    def test_current_slot_late_callback(self) -> None:
        assert current_slot("0 * * * *", utc(2025, 6, 15, 12, 0, 7)) == utc(2025, 6, 15, 12)
        assert current_slot("0 * * * *", utc(2025, 6, 15, 12, 59, 59)) == utc(2025, 6, 15, 12)

    def test_current_slot_with_seconds(self) -> None:
        assert current_slot("*/30 * * * * *", utc(2025, 6, 15, 12, 0, 45)) == utc(2025, 6, 15, 12, 0, 30)

    def test_slot_key_format(self) -> None:
        assert slot_key("status-update", utc(2025, 6, 15, 12)) == "status-update@2025-06-15T12:00:00Z"

    def test_slot_key_same_for_equivalent_times(self) -> None:
        naive = datetime(2025, 6, 15, 12)

        assert slot_key("a", naive) == slot_key("a", utc(2025, 6, 15, 12))
