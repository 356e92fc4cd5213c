from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from chime.utils import to_epoch_ms
from chime.world.ledger import TriggerLedger
from chime.world.recurrence import (
    MIN_REARM_MS,
    describe_recurrence,
    is_due,
    min_rearm_ms,
    next_due_at,
)

from fakes import T0, make_reminder


def at(hour, minute, second=0, day=3, month=3):
    return datetime(2025, month, day, hour, minute, second, tzinfo=timezone.utc)


@pytest.mark.parametrize("n", [1, 10, 45])
def test_seconds_interval_boundary(n):
    reminder = make_reminder(recurrence_data={"intervalSeconds": n})
    fired = to_epoch_ms(T0)
    for offset_ms in (0, 1, n * 500, n * 1000 - 1):
        assert not is_due(reminder, T0 + timedelta(milliseconds=offset_ms), fired)
    assert is_due(reminder, T0 + timedelta(seconds=n), fired)


def test_never_fired_interval_reminder_is_immediately_due():
    reminder = make_reminder(recurrence_type="minutes", recurrence_data={"intervalMinutes": 1})
    assert is_due(reminder, T0, 0)


def test_minutes_scenario_thirty_and_sixty_seconds_after_firing():
    reminder = make_reminder(recurrence_type="minutes", recurrence_data={"intervalMinutes": 1})
    assert is_due(reminder, T0, 0)
    fired = to_epoch_ms(T0)
    assert not is_due(reminder, T0 + timedelta(seconds=30), fired)
    assert is_due(reminder, T0 + timedelta(seconds=60), fired)


def test_interval_defaults_and_legacy_keys():
    assert min_rearm_ms(make_reminder(recurrence_data={})) == 30_000
    assert min_rearm_ms(make_reminder(recurrence_type="minutes")) == 15 * 60_000
    assert min_rearm_ms(make_reminder(recurrence_data={"seconds": 5})) == 5_000
    assert min_rearm_ms(make_reminder(recurrence_type="minutes", recurrence_data={"minutes": 2})) == 120_000
    # 非法值回退到默认值
    assert min_rearm_ms(make_reminder(recurrence_data={"intervalSeconds": 0})) == 30_000
    assert min_rearm_ms(make_reminder(recurrence_data={"intervalSeconds": "abc"})) == 30_000


def test_daily_fires_once_while_ticking_through_the_minute():
    reminder = make_reminder(recurrence_type="daily", time="09:00")
    ledger = TriggerLedger()
    fired_at = []

    for day in (3, 4):
        now = at(8, 59, 50, day=day)
        end = at(9, 1, 10, day=day)
        while now <= end:
            if is_due(reminder, now, ledger.last_fired(reminder.id)):
                ledger.record_fired(reminder.id, to_epoch_ms(now))
                fired_at.append(now)
            now += timedelta(seconds=1)

    assert fired_at == [at(9, 0, 0, day=3), at(9, 0, 0, day=4)]


def test_daily_fires_once_on_dst_fall_back_day():
    tz = ZoneInfo("America/New_York")
    reminder = make_reminder(recurrence_type="daily", time="01:30")
    first = datetime(2025, 11, 2, 1, 30, tzinfo=tz)
    repeated = datetime(2025, 11, 2, 1, 30, tzinfo=tz, fold=1)

    assert is_due(reminder, first, 0)
    fired = to_epoch_ms(first)
    assert to_epoch_ms(repeated) - fired == 3_600_000
    assert not is_due(reminder, repeated, fired)
    assert next_due_at(reminder, repeated, fired) == datetime(2025, 11, 3, 1, 30, tzinfo=tz)
    assert is_due(reminder, datetime(2025, 11, 3, 1, 30, tzinfo=tz), fired)


def test_weekly_and_monthly_fire_once_on_dst_fall_back_day():
    tz = ZoneInfo("America/New_York")
    first = datetime(2025, 11, 2, 1, 30, tzinfo=tz)
    repeated = datetime(2025, 11, 2, 1, 30, tzinfo=tz, fold=1)
    for reminder in (
        make_reminder(recurrence_type="weekly", recurrence_data={"daysOfWeek": ["Sun"]}, time="01:30"),
        make_reminder(recurrence_type="monthly", recurrence_data={"dayOfMonth": 2}, time="01:30"),
    ):
        assert is_due(reminder, first, 0)
        assert not is_due(reminder, repeated, to_epoch_ms(first))


def test_hourly_fires_in_both_repeated_hours():
    tz = ZoneInfo("America/New_York")
    reminder = make_reminder(recurrence_type="hourly", recurrence_data={"minuteOfHour": 30})
    first = datetime(2025, 11, 2, 1, 30, tzinfo=tz)
    repeated = datetime(2025, 11, 2, 1, 30, tzinfo=tz, fold=1)
    assert is_due(reminder, repeated, to_epoch_ms(first))


def test_daily_late_first_tick_inside_matching_minute_still_fires():
    reminder = make_reminder(recurrence_type="daily", time="09:00")
    assert is_due(reminder, at(9, 0, 2), 0)
    assert not is_due(reminder, at(9, 1, 0), 0)
    assert not is_due(reminder, at(8, 59, 59), 0)


def test_hourly_matches_minute_of_hour_with_rearm_guard():
    reminder = make_reminder(recurrence_type="hourly", recurrence_data={"minuteOfHour": 5})
    assert is_due(reminder, at(10, 5, 0), 0)
    assert not is_due(reminder, at(10, 6, 0), 0)

    fired = to_epoch_ms(at(10, 5, 0))
    assert not is_due(reminder, at(10, 5, 59), fired)
    assert is_due(reminder, at(11, 5, 0), fired)


def test_hourly_defaults_to_top_of_hour():
    reminder = make_reminder(recurrence_type="hourly", recurrence_data={})
    assert is_due(reminder, at(14, 0, 0), 0)
    assert not is_due(reminder, at(14, 30, 0), 0)


def test_weekly_checks_weekday_short_name():
    reminder = make_reminder(
        recurrence_type="weekly",
        recurrence_data={"daysOfWeek": ["Mon", "Wed"]},
        time="09:00",
    )
    assert is_due(reminder, at(9, 0, day=3), 0)  # Monday
    assert not is_due(reminder, at(9, 0, day=4), 0)  # Tuesday
    assert is_due(reminder, at(9, 0, day=5), 0)  # Wednesday


def test_weekly_without_days_never_fires():
    reminder = make_reminder(recurrence_type="weekly", recurrence_data={}, time="09:00")
    assert not is_due(reminder, at(9, 0), 0)
    assert next_due_at(reminder, at(8, 0), 0) is None


def test_monthly_checks_day_of_month():
    due_today = make_reminder(recurrence_type="monthly", recurrence_data={"dayOfMonth": 3}, time="09:00")
    due_tomorrow = make_reminder(recurrence_type="monthly", recurrence_data={"dayOfMonth": 4}, time="09:00")
    assert is_due(due_today, at(9, 0), 0)
    assert not is_due(due_tomorrow, at(9, 0), 0)


def test_unknown_type_and_bad_time_are_never_due():
    assert not is_due(make_reminder(recurrence_type="fortnightly"), T0, 0)
    assert not is_due(make_reminder(recurrence_type="daily", time="nine"), at(9, 0), 0)
    assert next_due_at(make_reminder(recurrence_type="fortnightly"), T0, 0) is None
    assert min_rearm_ms(make_reminder(recurrence_type="fortnightly")) is None


def test_wall_clock_types_use_one_minute_rearm_window():
    assert min_rearm_ms(make_reminder(recurrence_type="daily")) == MIN_REARM_MS


def test_next_due_at_for_interval():
    reminder = make_reminder(recurrence_data={"intervalSeconds": 30})
    assert next_due_at(reminder, T0, 0) == T0
    fired = to_epoch_ms(T0)
    assert next_due_at(reminder, T0 + timedelta(seconds=10), fired) == T0 + timedelta(seconds=30)


def test_next_due_at_for_daily_rolls_to_next_day_after_firing():
    reminder = make_reminder(recurrence_type="daily", time="09:00")
    assert next_due_at(reminder, at(8, 30), 0) == at(9, 0)

    fired = to_epoch_ms(at(9, 0, 0))
    assert next_due_at(reminder, at(9, 0, 0), fired) == at(9, 0, day=4)


def test_next_due_at_for_monthly_skips_short_months():
    reminder = make_reminder(recurrence_type="monthly", recurrence_data={"dayOfMonth": 31}, time="09:00")
    assert next_due_at(reminder, datetime(2025, 4, 1, tzinfo=timezone.utc), 0) == datetime(
        2025, 5, 31, 9, 0, tzinfo=timezone.utc
    )


def test_next_due_at_for_hourly_wraps_hour():
    reminder = make_reminder(recurrence_type="hourly", recurrence_data={"minuteOfHour": 15})
    assert next_due_at(reminder, at(10, 20), 0) == at(11, 15)


@pytest.mark.parametrize(
    "recurrence_type, data, time, expected",
    [
        ("seconds", {"intervalSeconds": 30}, "09:00", "Every 30 secs"),
        ("minutes", {"minutes": 15}, "09:00", "Every 15 mins"),
        ("hourly", {"minuteOfHour": 5}, "09:00", "At :05"),
        ("daily", {}, "09:00", "Daily at 9:00 am"),
        ("daily", {}, "13:30", "Daily at 1:30 pm"),
        ("daily", {}, "00:15", "Daily at 12:15 am"),
        ("weekly", {"daysOfWeek": ["Wed", "Mon"]}, "09:00", "Mon, Wed at 9:00 am"),
        ("monthly", {}, "09:00", "Day 1 at 9:00 am"),
    ],
)
def test_describe_recurrence(recurrence_type, data, time, expected):
    reminder = make_reminder(recurrence_type=recurrence_type, recurrence_data=data, time=time)
    assert describe_recurrence(reminder) == expected
