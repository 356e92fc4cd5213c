"""周期规则求值

is_due 是纯函数：给定提醒、当前时间(带时区)与上次触发的毫秒时间戳，判断此刻是否到期。

- seconds/minutes: 距上次触发已满一个间隔即到期，与钟点无关；
- hourly/daily/weekly/monthly: 当前时间落在规则匹配的那一分钟内，且距上次触发超过 60 秒。
  daily/weekly/monthly 另外要求上次触发不在同一个本地日期，夏令时回拨时同一钟点出现两次也只触发一次。
  60 秒保护才是真正的去重手段，不要求 tick 恰好落在第 0 秒，
  因此 tick 抖动或进程挂起后醒来的第一个 tick 仍能触发一次。

从未触发过的提醒 last_fired 为 0，间隔类提醒会立即到期。
未知的周期类型永不到期，不抛错。
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping

from chime.datamodel import WEEKDAY_SHORT_NAMES, RecurrenceType, Reminder
from chime.utils import format_12h, parse_hh_mm, to_epoch_ms

__all__ = [
    "MIN_REARM_MS",
    "is_due",
    "next_due_at",
    "min_rearm_ms",
    "interval_ms",
    "describe_recurrence",
]

MIN_REARM_MS = 60_000

DEFAULT_INTERVAL_SECONDS = 30
DEFAULT_INTERVAL_MINUTES = 15
DEFAULT_MINUTE_OF_HOUR = 0
DEFAULT_DAY_OF_MONTH = 1

_WALL_CLOCK_TYPES = {
    RecurrenceType.HOURLY.value,
    RecurrenceType.DAILY.value,
    RecurrenceType.WEEKLY.value,
    RecurrenceType.MONTHLY.value,
}

_DAY_BASED_TYPES = _WALL_CLOCK_TYPES - {RecurrenceType.HOURLY.value}


def _int_field(
    data: Mapping[str, Any],
    keys: Iterable[str],
    default: int,
    lo: int,
    hi: int | None = None,
) -> int:
    """按顺序取第一个存在的键，缺失或越界时回退到默认值"""
    for key in keys:
        if key not in data or data[key] is None:
            continue
        value = data[key]
        if isinstance(value, bool):
            return default
        try:
            number = int(value)
        except (TypeError, ValueError):
            return default
        if number < lo or (hi is not None and number > hi):
            return default
        return number
    return default


def interval_seconds(reminder: Reminder) -> int:
    return _int_field(reminder.recurrence_data, ("intervalSeconds", "seconds"), DEFAULT_INTERVAL_SECONDS, 1)


def interval_minutes(reminder: Reminder) -> int:
    return _int_field(reminder.recurrence_data, ("intervalMinutes", "minutes"), DEFAULT_INTERVAL_MINUTES, 1)


def minute_of_hour(reminder: Reminder) -> int:
    return _int_field(reminder.recurrence_data, ("minuteOfHour",), DEFAULT_MINUTE_OF_HOUR, 0, 59)


def day_of_month(reminder: Reminder) -> int:
    return _int_field(reminder.recurrence_data, ("dayOfMonth",), DEFAULT_DAY_OF_MONTH, 1, 31)


def days_of_week(reminder: Reminder) -> list[str]:
    days = reminder.recurrence_data.get("daysOfWeek") or []
    if isinstance(days, str):
        days = [d.strip() for d in days.split(",")]
    return [d for d in WEEKDAY_SHORT_NAMES if d in days]


def interval_ms(reminder: Reminder) -> int | None:
    """间隔类提醒的间隔毫秒数，钟点类与未知类型返回 None"""
    if reminder.recurrence_type == RecurrenceType.SECONDS.value:
        return interval_seconds(reminder) * 1000
    if reminder.recurrence_type == RecurrenceType.MINUTES.value:
        return interval_minutes(reminder) * 60_000
    return None


def min_rearm_ms(reminder: Reminder) -> int | None:
    """两次触发之间的最小间隔，未知类型返回 None"""
    interval = interval_ms(reminder)
    if interval is not None:
        return interval
    if reminder.recurrence_type in _WALL_CLOCK_TYPES:
        return MIN_REARM_MS
    return None


def _matches_minute(reminder: Reminder, now: datetime) -> bool:
    rtype = reminder.recurrence_type

    if rtype == RecurrenceType.HOURLY.value:
        return now.minute == minute_of_hour(reminder)

    hm = parse_hh_mm(reminder.time)
    if hm is None:
        return False
    if (now.hour, now.minute) != hm:
        return False

    if rtype == RecurrenceType.DAILY.value:
        return True
    if rtype == RecurrenceType.WEEKLY.value:
        return WEEKDAY_SHORT_NAMES[now.weekday()] in days_of_week(reminder)
    if rtype == RecurrenceType.MONTHLY.value:
        return now.day == day_of_month(reminder)
    return False


def _fired_same_local_day(reminder: Reminder, at: datetime, last_fired_ms: int) -> bool:
    """按天的规则每个本地日期最多触发一次(夏令时回拨当天同一钟点会出现两次)"""
    if last_fired_ms <= 0 or reminder.recurrence_type not in _DAY_BASED_TYPES:
        return False
    last = datetime.fromtimestamp(last_fired_ms / 1000, at.tzinfo or timezone.utc)
    return last.date() == at.date()


def is_due(reminder: Reminder, now: datetime, last_fired_ms: int) -> bool:
    now_ms = to_epoch_ms(now)

    interval = interval_ms(reminder)
    if interval is not None:
        return now_ms - last_fired_ms >= interval

    if reminder.recurrence_type not in _WALL_CLOCK_TYPES:
        return False
    if not _matches_minute(reminder, now):
        return False
    if _fired_same_local_day(reminder, now, last_fired_ms):
        return False
    return now_ms - last_fired_ms > MIN_REARM_MS


def _minute_start(now: datetime) -> datetime:
    return now.replace(second=0, microsecond=0)


def _earliest_in_window(start: datetime, now: datetime, last_fired_ms: int) -> datetime | None:
    """在 [start, start+60s) 这一分钟内，满足 60 秒保护的最早时刻"""
    end = start + timedelta(seconds=60)
    candidate = max(start, now)
    guard = last_fired_ms + MIN_REARM_MS + 1
    if to_epoch_ms(candidate) < guard:
        candidate = candidate + timedelta(milliseconds=guard - to_epoch_ms(candidate))
    return candidate if candidate < end else None


def _candidate_minutes(reminder: Reminder, now: datetime):
    """按时间顺序枚举规则匹配的分钟起点(从 now 所在的分钟开始)"""
    rtype = reminder.recurrence_type
    base = _minute_start(now)

    if rtype == RecurrenceType.HOURLY.value:
        first = base.replace(minute=minute_of_hour(reminder))
        if first < base:
            first += timedelta(hours=1)
        for offset in range(0, 48):
            yield first + timedelta(hours=offset)
        return

    hm = parse_hh_mm(reminder.time)
    if hm is None:
        return
    day_start = base.replace(hour=hm[0], minute=hm[1])
    if day_start < base:
        day_start += timedelta(days=1)
    # 400 天足够覆盖 "每月 31 日" 这类跨月的规则
    for offset in range(0, 400):
        candidate = day_start + timedelta(days=offset)
        if _matches_minute(reminder, candidate):
            yield candidate


def next_due_at(reminder: Reminder, now: datetime, last_fired_ms: int) -> datetime | None:
    """显式计算下一次到期时刻；规则永远不会触发时返回 None"""
    interval = interval_ms(reminder)
    if interval is not None:
        due_ms = last_fired_ms + interval
        now_ms = to_epoch_ms(now)
        if due_ms <= now_ms:
            return now
        return now + timedelta(milliseconds=due_ms - now_ms)

    if reminder.recurrence_type not in _WALL_CLOCK_TYPES:
        return None
    for start in _candidate_minutes(reminder, now):
        if _fired_same_local_day(reminder, start, last_fired_ms):
            continue
        hit = _earliest_in_window(start, now, last_fired_ms)
        if hit is not None:
            return hit
    return None


def describe_recurrence(reminder: Reminder) -> str:
    """面向用户的周期描述，如 "Every 30 secs"、"Mon, Wed at 9:00 am" """
    rtype = reminder.recurrence_type
    if rtype == RecurrenceType.SECONDS.value:
        return f"Every {interval_seconds(reminder)} secs"
    if rtype == RecurrenceType.MINUTES.value:
        return f"Every {interval_minutes(reminder)} mins"
    if rtype == RecurrenceType.HOURLY.value:
        return f"At :{minute_of_hour(reminder):02d}"

    hm = parse_hh_mm(reminder.time)
    at = format_12h(*hm) if hm else reminder.time
    if rtype == RecurrenceType.DAILY.value:
        return f"Daily at {at}"
    if rtype == RecurrenceType.WEEKLY.value:
        return f"{', '.join(days_of_week(reminder))} at {at}"
    if rtype == RecurrenceType.MONTHLY.value:
        return f"Day {day_of_month(reminder)} at {at}"
    return f"Unknown ({rtype})"
