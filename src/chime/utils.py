from datetime import datetime, timezone
from zoneinfo import ZoneInfo

__all__ = ["now_in_tz", "to_epoch_ms", "from_epoch_ms", "parse_hh_mm", "format_12h"]


def now_in_tz(tz: str) -> datetime:
    """获取指定时区的当前时间(带时区信息)"""
    return datetime.now(ZoneInfo(tz))


def to_epoch_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def from_epoch_ms(epoch_ms: int, tz: str = "UTC") -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000, ZoneInfo(tz))


def parse_hh_mm(value: str | None) -> tuple[int, int] | None:
    """解析 "HH:MM"，格式或取值非法时返回 None"""
    if not isinstance(value, str):
        return None
    parts = value.strip().split(":")
    if len(parts) < 2:
        return None
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return hour, minute


def format_12h(hour: int, minute: int) -> str:
    """9:05 am / 12:00 pm"""
    suffix = "am" if hour < 12 else "pm"
    display_hour = hour % 12 or 12
    return f"{display_hour}:{minute:02d} {suffix}"
