"""Credit card billing cycles.

A card's invoice month is derived from its closing day, not from the
purchase date's own month. Cards closing late in the month (day 25 or
later) post with one extra month of lag.
"""

from datetime import date, timedelta
from typing import Optional

from errors import InvalidCardConfiguration
from periods import MonthKey


LATE_CLOSING_DAY = 25


def _check_day(value: int, label: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 31:
        raise InvalidCardConfiguration(f"{label} must be between 1 and 31, got {value!r}")


def validate_card_days(closing_day: int, due_day: Optional[int] = None) -> None:
    _check_day(closing_day, "Closing day")
    if due_day is not None:
        _check_day(due_day, "Due day")


def cycle_lag(closing_day: int) -> int:
    """Months between the closing month and the invoice month."""
    _check_day(closing_day, "Closing day")
    return 1 if closing_day >= LATE_CLOSING_DAY else 0


def closing_date(closing_day: int, month: MonthKey) -> date:
    _check_day(closing_day, "Closing day")
    return month.day(closing_day)


def resolve_invoice_month(closing_day: int, on_date: date) -> MonthKey:
    lag = cycle_lag(closing_day)
    month = MonthKey.of(on_date)
    if on_date <= closing_date(closing_day, month):
        return month.shift(lag)
    return month.shift(lag + 1)


def invoice_period(closing_day: int, invoice_month: MonthKey) -> tuple[date, date]:
    """Inclusive purchase window of ``invoice_month``."""
    closing_month = invoice_month.shift(-cycle_lag(closing_day))
    end = closing_date(closing_day, closing_month)
    start = closing_date(closing_day, closing_month.shift(-1)) + timedelta(days=1)
    return start, end


def invoice_due_date(closing_day: int, due_day: int, invoice_month: MonthKey) -> date:
    """The due day of the month after the cycle closes, clamped to that month."""
    validate_card_days(closing_day, due_day)
    closing_month = invoice_month.shift(-cycle_lag(closing_day))
    return closing_month.shift(1).day(due_day)


def date_in_invoice_month(
    closing_day: int, target: MonthKey, preferred: date
) -> date:
    """A purchase date resolving to ``target``, as close to ``preferred`` as allowed."""
    if resolve_invoice_month(closing_day, preferred) == target:
        return preferred
    day = preferred.day
    closing_month = target.shift(-cycle_lag(closing_day))
    candidate = closing_month.day(day)
    if candidate <= closing_date(closing_day, closing_month):
        return candidate
    previous = closing_month.shift(-1)
    candidate = previous.day(day)
    if candidate > closing_date(closing_day, previous):
        return candidate
    return closing_date(closing_day, closing_month)
