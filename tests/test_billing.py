from datetime import date, timedelta

import pytest

from billing import (
    closing_date,
    invoice_due_date,
    invoice_period,
    resolve_invoice_month,
    validate_card_days,
)
from errors import InvalidCardConfiguration
from periods import MonthKey


def test_purchase_on_or_before_closing_stays_in_month():
    assert resolve_invoice_month(20, date(2024, 5, 15)) == MonthKey(2024, 5)
    assert resolve_invoice_month(20, date(2024, 5, 20)) == MonthKey(2024, 5)
    assert resolve_invoice_month(20, date(2024, 5, 25)) == MonthKey(2024, 6)


def test_late_closing_card_posts_with_extra_month():
    assert resolve_invoice_month(28, date(2024, 5, 27)) == MonthKey(2024, 6)
    assert resolve_invoice_month(28, date(2024, 5, 29)) == MonthKey(2024, 7)
    assert resolve_invoice_month(25, date(2024, 5, 25)) == MonthKey(2024, 6)


def test_resolution_wraps_year():
    assert resolve_invoice_month(20, date(2024, 12, 25)) == MonthKey(2025, 1)
    assert resolve_invoice_month(28, date(2024, 12, 29)) == MonthKey(2025, 2)
    assert resolve_invoice_month(28, date(2024, 11, 30)) == MonthKey(2025, 1)


def test_closing_day_clamped_to_short_month():
    # Feb 2024 closes on the 29th for a card closing on the 31st
    assert closing_date(31, MonthKey(2024, 2)) == date(2024, 2, 29)
    assert resolve_invoice_month(31, date(2024, 2, 29)) == MonthKey(2024, 3)
    assert resolve_invoice_month(31, date(2024, 3, 1)) == MonthKey(2024, 4)


@pytest.mark.parametrize("closing_day", [0, 32, -1])
def test_invalid_closing_day(closing_day):
    with pytest.raises(InvalidCardConfiguration):
        resolve_invoice_month(closing_day, date(2024, 1, 1))


def test_invalid_due_day():
    with pytest.raises(InvalidCardConfiguration):
        validate_card_days(10, 0)
    with pytest.raises(InvalidCardConfiguration):
        invoice_due_date(10, 40, MonthKey(2024, 1))


@pytest.mark.parametrize("closing_day", [1, 10, 24, 25, 30, 31])
def test_resolution_is_monotonic(closing_day):
    day = date(2023, 12, 1)
    previous = resolve_invoice_month(closing_day, day)
    while day < date(2025, 2, 1):
        day += timedelta(days=1)
        current = resolve_invoice_month(closing_day, day)
        assert current >= previous
        assert previous.months_until(current) <= 1
        previous = current


@pytest.mark.parametrize("closing_day", [1, 15, 24, 25, 29, 30, 31])
def test_invoice_period_matches_resolver(closing_day):
    for month_number in range(1, 13):
        month = MonthKey(2024, month_number)
        start, end = invoice_period(closing_day, month)
        day = start
        while day <= end:
            assert resolve_invoice_month(closing_day, day) == month
            day += timedelta(days=1)
        assert resolve_invoice_month(closing_day, start - timedelta(days=1)) == month.shift(-1)
        assert resolve_invoice_month(closing_day, end + timedelta(days=1)) == month.shift(1)


def test_due_date_follows_closing():
    assert invoice_due_date(20, 5, MonthKey(2024, 5)) == date(2024, 6, 5)
    # a due day past the closing day still lands in the following month
    assert invoice_due_date(20, 27, MonthKey(2024, 5)) == date(2024, 6, 27)
    assert invoice_due_date(5, 15, MonthKey(2024, 5)) == date(2024, 6, 15)
    # late closer: invoice 2024-06 closes in May
    assert invoice_due_date(28, 5, MonthKey(2024, 6)) == date(2024, 6, 5)
    assert invoice_due_date(10, 31, MonthKey(2024, 1)) == date(2024, 2, 29)
