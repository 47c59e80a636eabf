from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional, Sequence

from billing import (
    closing_date,
    cycle_lag,
    invoice_due_date,
    invoice_period,
    resolve_invoice_month,
)
from models import CreditCard, InvoicePayment, InvoiceStatus, LaunchType, Transaction
from periods import MonthKey, iter_months


@dataclass
class Invoice:
    credit_card_id: int
    month: MonthKey
    period_start: date
    period_end: date
    closing_date: date
    due_date: date
    total_cents: int = 0
    credits_cents: int = 0
    status: InvoiceStatus = InvoiceStatus.pending
    payment: Optional[InvoicePayment] = None
    transactions: list[Transaction] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.transactions

    @property
    def installment_count(self) -> int:
        return sum(1 for t in self.transactions if (t.installments or 1) > 1)


def invoice_status(
    total_cents: int,
    due_date: date,
    payment: Optional[InvoicePayment],
    today: date,
) -> InvoiceStatus:
    if payment is not None and payment.status == InvoiceStatus.paid:
        return InvoiceStatus.paid
    if total_cents > 0 and due_date < today:
        return InvoiceStatus.overdue
    return InvoiceStatus.pending


def build_invoice(
    card: CreditCard,
    month: MonthKey,
    transactions: Sequence[Transaction],
    payment: Optional[InvoicePayment],
    today: date,
) -> Invoice:
    start, end = invoice_period(card.closing_day, month)
    due = invoice_due_date(card.closing_day, card.due_day, month)
    members = sorted(transactions, key=lambda t: (t.date, t.id or 0))
    total = sum(t.signed_amount_cents for t in members)
    credits = sum(t.amount_cents for t in members if t.launch_type == LaunchType.credit)
    return Invoice(
        credit_card_id=card.id,
        month=month,
        period_start=start,
        period_end=end,
        closing_date=closing_date(card.closing_day, month.shift(-cycle_lag(card.closing_day))),
        due_date=due,
        total_cents=total,
        credits_cents=credits,
        status=invoice_status(total, due, payment, today),
        payment=payment,
        transactions=members,
    )


def aggregate_invoices(
    card: CreditCard,
    transactions: Iterable[Transaction],
    payments: Iterable[InvoicePayment] = (),
    *,
    today: date,
    months: Optional[Sequence[MonthKey]] = None,
) -> list[Invoice]:
    """Invoices of one card, ascending by month.

    With ``months`` only those months are built; otherwise every month from
    the first to the last one seen, always including the card's current
    invoice month. Months without rows come back as empty shells.
    """
    by_month: dict[MonthKey, list[Transaction]] = defaultdict(list)
    for txn in transactions:
        if txn.credit_card_id != card.id or txn.skipped:
            continue
        by_month[resolve_invoice_month(card.closing_day, txn.date)].append(txn)
    payments_by_month = {MonthKey.parse(p.month): p for p in payments}

    if months is not None:
        wanted = sorted(set(months))
    else:
        current = resolve_invoice_month(card.closing_day, today)
        seen = set(by_month) | {current}
        wanted = list(iter_months(min(seen), max(seen)))

    return [
        build_invoice(
            card, month, by_month.get(month, []), payments_by_month.get(month), today
        )
        for month in wanted
    ]


def open_balance_cents(invoices: Iterable[Invoice]) -> int:
    return sum(inv.total_cents for inv in invoices if inv.status != InvoiceStatus.paid)
