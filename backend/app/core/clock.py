"""时间工具：数据库中的 DateTime 一律按 naive UTC 存储"""

from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """当前 UTC 时间（naive，用于写入 SQLite）"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    """把数据库读出的 naive 时间当作 UTC，统一转成 aware datetime"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def to_naive_utc(value: datetime) -> datetime:
    """aware datetime 转成 naive UTC，用于写入 SQLite"""
    return as_utc(value).replace(tzinfo=None)
