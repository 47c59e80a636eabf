from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from invoices import aggregate_invoices, invoice_status, open_balance_cents
from models import (
    Account,
    CreditCard,
    InvoicePayment,
    InvoiceStatus,
    LaunchType,
    Transaction,
    TransactionType,
)
from periods import MonthKey
from schemas import CreditCardIn, CreditCardUpdate, TransactionIn
from services import CreditCardService, InvoiceService, TransactionService


def _card() -> CreditCard:
    return CreditCard(id=1, account_id=1, name="Visa", closing_day=10, due_day=20)


def _txn(row_id: int, when: date, amount: int, **fields) -> Transaction:
    values = dict(
        id=row_id,
        account_id=1,
        type=TransactionType.expense,
        launch_type=LaunchType.normal,
        amount_cents=amount,
        date=when,
        description=f"purchase {row_id}",
        paid=False,
        credit_card_id=1,
        skipped=False,
    )
    values.update(fields)
    return Transaction(**values)


def test_aggregate_groups_by_invoice_month_with_shells():
    transactions = [
        _txn(4, date(2024, 3, 15), 2000),
        _txn(2, date(2024, 1, 15), 5000),
        _txn(1, date(2024, 1, 5), 3000),
        _txn(3, date(2024, 1, 12), 1000, launch_type=LaunchType.credit),
    ]
    payments = [InvoicePayment(month="2024-02", status=InvoiceStatus.paid)]
    invoices = aggregate_invoices(
        _card(), transactions, payments, today=date(2024, 3, 1)
    )

    assert [str(i.month) for i in invoices] == ["2024-01", "2024-02", "2024-03", "2024-04"]
    january, february, march, april = invoices

    assert january.total_cents == 3000
    assert january.due_date == date(2024, 2, 20)
    assert january.status == InvoiceStatus.overdue

    assert february.total_cents == 4000
    assert february.credits_cents == 1000
    assert [t.id for t in february.transactions] == [3, 2]
    assert february.status == InvoiceStatus.paid
    assert (february.period_start, february.period_end) == (
        date(2024, 1, 11),
        date(2024, 2, 10),
    )

    assert march.is_empty
    assert march.total_cents == 0
    assert march.status == InvoiceStatus.pending

    assert april.status == InvoiceStatus.pending
    assert open_balance_cents(invoices) == 5000


def test_month_filter_returns_shell():
    [invoice] = aggregate_invoices(
        _card(),
        [_txn(1, date(2024, 1, 5), 3000)],
        today=date(2024, 1, 1),
        months=[MonthKey(2024, 6)],
    )
    assert invoice.is_empty
    assert invoice.period_start == date(2024, 5, 11)
    assert invoice.period_end == date(2024, 6, 10)
    assert invoice.closing_date == date(2024, 6, 10)
    assert invoice.due_date == date(2024, 7, 20)


def test_skipped_and_foreign_rows_ignored():
    transactions = [
        _txn(1, date(2024, 1, 5), 3000),
        _txn(2, date(2024, 1, 6), 7000, skipped=True),
        _txn(3, date(2024, 1, 7), 9000, credit_card_id=2),
    ]
    [invoice] = aggregate_invoices(_card(), transactions, today=date(2024, 1, 1))
    assert invoice.total_cents == 3000
    assert invoice.installment_count == 0


def test_status_precedence():
    paid = InvoicePayment(month="2024-01", status=InvoiceStatus.paid)
    due = date(2024, 1, 20)
    assert invoice_status(100, due, paid, date(2024, 3, 1)) == InvoiceStatus.paid
    assert invoice_status(100, due, None, date(2024, 1, 21)) == InvoiceStatus.overdue
    assert invoice_status(0, due, None, date(2024, 1, 21)) == InvoiceStatus.pending
    assert invoice_status(-500, due, None, date(2024, 1, 21)) == InvoiceStatus.pending
    assert invoice_status(100, due, None, date(2024, 1, 20)) == InvoiceStatus.pending


def test_pay_and_reopen_invoice():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    today = date(2024, 2, 1)

    with Session(engine) as session:
        account = Account(name="Home")
        session.add(account)
        session.commit()
        card = CreditCardService(session, account.id, today=today).create(
            CreditCardIn(name="Visa", closing_day=10, due_day=20)
        )
        TransactionService(session, account.id, today=today).create(
            TransactionIn(
                date=date(2024, 1, 15),
                type=TransactionType.expense,
                amount="300.00",
                description="Phone",
                credit_card_id=card.id,
                installments=3,
            )
        )
        service = InvoiceService(session, account.id, today=today)
        assert len(service.list("2024-02")) == 1

        invoice = service.pay(card.id, "2024-02")
        assert invoice.status == InvoiceStatus.paid
        assert invoice.payment.amount_cents == 10000
        assert all(t.paid for t in invoice.transactions)
        session.refresh(card)
        assert card.current_balance_cents == 20000

        invoice = service.reopen(card.id, "2024-02")
        assert invoice.status == InvoiceStatus.pending
        assert not any(t.paid for t in invoice.transactions)
        session.refresh(card)
        assert card.current_balance_cents == 30000


def test_closing_day_change_moves_purchases_between_invoices():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    today = date(2024, 1, 1)

    with Session(engine) as session:
        account = Account(name="Home")
        session.add(account)
        session.commit()
        cards = CreditCardService(session, account.id, today=today)
        card = cards.create(CreditCardIn(name="Visa", closing_day=10, due_day=20))
        TransactionService(session, account.id, today=today).create(
            TransactionIn(
                date=date(2024, 1, 15),
                type=TransactionType.expense,
                amount_cents=4200,
                description="Books",
                credit_card_id=card.id,
            )
        )
        invoices = InvoiceService(session, account.id, today=today)
        assert invoices.get(card.id, "2024-02").total_cents == 4200

        cards.update(card.id, CreditCardUpdate(closing_day=20))
        assert invoices.get(card.id, "2024-02").total_cents == 0
        assert invoices.get(card.id, "2024-01").total_cents == 4200
