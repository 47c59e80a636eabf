from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


_MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def clamp_day(year: int, month: int, day: int) -> date:
    """Date for ``day`` in the given month, snapped to the month's last day."""
    return date(year, month, min(max(day, 1), days_in_month(year, month)))


@dataclass(frozen=True, order=True)
class MonthKey:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Invalid month: {self.month}")

    @classmethod
    def parse(cls, value: str) -> "MonthKey":
        match = _MONTH_KEY_RE.match((value or "").strip())
        if not match:
            raise ValueError(f"Invalid month key: {value!r} (expected YYYY-MM)")
        return cls(int(match.group(1)), int(match.group(2)))

    @classmethod
    def of(cls, value: date) -> "MonthKey":
        return cls(value.year, value.month)

    def shift(self, months: int) -> "MonthKey":
        total = self.year * 12 + (self.month - 1) + months
        return MonthKey(total // 12, total % 12 + 1)

    def months_until(self, other: "MonthKey") -> int:
        return (other.year - self.year) * 12 + (other.month - self.month)

    @property
    def first_day(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def last_day(self) -> date:
        return date(self.year, self.month, days_in_month(self.year, self.month))

    def day(self, day: int) -> date:
        return clamp_day(self.year, self.month, day)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    target = MonthKey.of(base).shift(months)
    return target.day(desired_day if desired_day is not None else base.day)


def iter_months(start: MonthKey, end: MonthKey):
    current = start
    while current <= end:
        yield current
        current = current.shift(1)


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    month: Optional[str] = None,
    today: Optional[date] = None,
) -> Period:
    today = today or local_today()
    if month:
        key = MonthKey.parse(month)
        return Period("month", key.first_day, key.last_day)
    if period == "all":
        return Period("all", date(1970, 1, 1), today)
    if period == "last_month":
        key = MonthKey.of(today).shift(-1)
        return Period("last_month", key.first_day, key.last_day)
    if period == "custom" or (not period and start and end):
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)

    # this month
    key = MonthKey.of(today)
    return Period("this_month", key.first_day, key.last_day)
