"""
时长与时间工具

解析 "15m"、"7d" 这类时长字符串，用于 Token 和 OTP 的过期计算。

支持的单位：
    d: 天   h: 小时   m: 分钟   s: 秒   无单位: 毫秒

使用示例：
    to_ms("15m")          # 900000
    add_to_now("10m")     # 当前 UTC 时间 + 10 分钟
    is_expired(user.otp_expires)
"""

import re
from datetime import datetime, timedelta, timezone

_UNIT_MS = {
    "d": 24 * 60 * 60 * 1000,
    "h": 60 * 60 * 1000,
    "m": 60 * 1000,
    "s": 1000,
}

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite 读回的时间不带时区，统一按 UTC 处理
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_ms(duration: str | int | None) -> int:
    """
    时长字符串转毫秒

    只取开头的整数部分（"1.5h" 按 1 小时计算），无法解析时返回 0。
    """
    if duration is None or duration == "":
        return 0
    if isinstance(duration, int):
        return duration

    match = _LEADING_INT.match(duration)
    if not match:
        return 0
    num = int(match.group(1))

    unit = duration.strip()[-1:]
    return num * _UNIT_MS.get(unit, 1)


def to_seconds(duration: str | int | None) -> int:
    return to_ms(duration) // 1000


def to_timedelta(duration: str | int | None) -> timedelta:
    return timedelta(milliseconds=to_ms(duration))


def add_to_now(duration: str | int | None) -> datetime:
    """当前 UTC 时间加上时长"""
    return utcnow() + to_timedelta(duration)


def is_expired(value: datetime | None) -> bool:
    """时间为空或早于当前时间即视为过期"""
    if value is None:
        return True
    return _aware(value) < utcnow()


def remaining_ms(value: datetime | None) -> int:
    if is_expired(value):
        return 0
    return int((_aware(value) - utcnow()).total_seconds() * 1000)


def to_clean_iso(value: datetime | None) -> str | None:
    """格式化为不带毫秒的 ISO 字符串，如 2024-01-01T00:00:00Z"""
    if value is None:
        return None
    return _aware(value).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def from_unix(timestamp: int | float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def to_unix(value: datetime | None) -> int | None:
    if value is None:
        return None
    return int(_aware(value).timestamp())


def start_of_day(value: datetime | None = None) -> datetime:
    value = value or utcnow()
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(value: datetime | None = None) -> datetime:
    value = value or utcnow()
    return value.replace(hour=23, minute=59, second=59, microsecond=999999)


def is_same_day(first: datetime | None, second: datetime | None) -> bool:
    if first is None or second is None:
        return False
    return first.date() == second.date()


def add_days(value: datetime, days: int) -> datetime:
    return value + timedelta(days=days)
