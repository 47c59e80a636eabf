from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import date
from typing import Optional

from billing import date_in_invoice_month, resolve_invoice_month
from errors import InvalidInstallmentCount
from models import LaunchType, TransactionType
from money import split_cents
from periods import add_months


@dataclass(frozen=True)
class InstallmentDraft:
    account_id: int
    type: TransactionType
    amount_cents: int
    date: date
    description: str
    category_id: Optional[int] = None
    credit_card_id: Optional[int] = None
    launch_type: LaunchType = LaunchType.normal
    paid: bool = False
    installments_group_id: Optional[str] = None
    current_installment: Optional[int] = None
    installments: Optional[int] = None


def new_group_id() -> str:
    return uuid.uuid4().hex


def split_amount(total_cents: int, count: int) -> list[int]:
    if count < 1:
        raise InvalidInstallmentCount(f"Installment count must be at least 1, got {count}")
    return split_cents(total_cents, count)


def installment_dates(
    first_date: date, count: int, closing_day: Optional[int] = None
) -> list[date]:
    """Dates of installments 1..count.

    Each date keeps the first date's day of month. For card purchases the
    date is nudged when needed so installment k resolves to the k-th
    consecutive invoice month.
    """
    if count < 1:
        raise InvalidInstallmentCount(f"Installment count must be at least 1, got {count}")
    dates = [first_date]
    if closing_day is None:
        for k in range(1, count):
            dates.append(add_months(first_date, k, desired_day=first_date.day))
        return dates
    first_invoice = resolve_invoice_month(closing_day, first_date)
    for k in range(1, count):
        preferred = add_months(first_date, k, desired_day=first_date.day)
        dates.append(
            date_in_invoice_month(closing_day, first_invoice.shift(k), preferred)
        )
    return dates


def expand_installments(
    draft: InstallmentDraft, count: int, closing_day: Optional[int] = None
) -> list[InstallmentDraft]:
    """Split ``draft`` (carrying the purchase total) into ``count`` drafts."""
    if count < 1:
        raise InvalidInstallmentCount(f"Installment count must be at least 1, got {count}")
    if count == 1:
        return [
            replace(
                draft,
                installments_group_id=None,
                current_installment=1,
                installments=1,
            )
        ]
    group_id = new_group_id()
    amounts = split_amount(draft.amount_cents, count)
    dates = installment_dates(draft.date, count, closing_day)
    return [
        replace(
            draft,
            amount_cents=amounts[k],
            date=dates[k],
            installments_group_id=group_id,
            current_installment=k + 1,
            installments=count,
        )
        for k in range(count)
    ]
