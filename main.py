import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from csrf import CSRF_HEADER, generate_csrf_token, validate_csrf_token
from database import SessionLocal
from invoices import Invoice
from models import (
    Account,
    Category,
    CreditCard,
    Debt,
    FixedCashflow,
    Transaction,
    TransactionType,
)
from money import format_amount
from periods import MonthKey, Period, local_today, resolve_period
from recurrence import Occurrence
from schemas import (
    AccountIn,
    CategoryIn,
    CreditCardIn,
    CreditCardUpdate,
    DebtIn,
    FixedCashflowIn,
    FixedCashflowUpdate,
    IngestTransactionIn,
    InvoicePaymentIn,
    TransactionIn,
    TransactionPatch,
)
from scopes import EditScope
from services import (
    AccountService,
    CategoryService,
    CreditCardService,
    DebtService,
    FixedCashflowService,
    IngestService,
    InvoiceService,
    TransactionService,
)


logging.basicConfig(level=get_settings().log_level)

app = FastAPI(title="Finance Tracker")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def require_csrf(request: Request) -> None:
    if not get_settings().csrf_enabled:
        return
    if not validate_csrf_token(request.headers.get(CSRF_HEADER, "")):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    status_code = getattr(exc, "status_code", 400)
    logging.info(
        f"request_rejected: path={request.url.path} status={status_code} "
        f"error={type(exc).__name__}"
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


def period_from_request(request: Request) -> Period:
    return resolve_period(
        request.query_params.get("period"),
        request.query_params.get("start"),
        request.query_params.get("end"),
        month=request.query_params.get("month"),
    )


# serializers


def account_out(account: Account) -> dict:
    return {"id": account.id, "name": account.name, "kind": account.kind.value}


def category_out(category: Category) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "color": category.color,
        "archived": category.archived_at is not None,
    }


def card_out(card: CreditCard) -> dict:
    return {
        "id": card.id,
        "account_id": card.account_id,
        "name": card.name,
        "brand": card.brand,
        "limit_cents": card.limit_cents,
        "closing_day": card.closing_day,
        "due_day": card.due_day,
        "current_balance_cents": card.current_balance_cents,
        "current_balance": format_amount(card.current_balance_cents),
    }


def transaction_out(txn: Transaction) -> dict:
    return {
        "id": txn.id,
        "account_id": txn.account_id,
        "date": txn.date.isoformat(),
        "type": txn.type.value,
        "launch_type": txn.launch_type.value,
        "amount_cents": txn.amount_cents,
        "amount": format_amount(txn.signed_amount_cents),
        "description": txn.description,
        "category_id": txn.category_id,
        "paid": txn.paid,
        "credit_card_id": txn.credit_card_id,
        "installments_group_id": txn.installments_group_id,
        "current_installment": txn.current_installment,
        "installments": txn.installments,
        "recurrence_group_id": txn.recurrence_group_id,
        "exception_for_date": (
            txn.exception_for_date.isoformat() if txn.exception_for_date else None
        ),
    }


def occurrence_out(occ: Occurrence) -> dict:
    return {
        "id": occ.transaction_id,
        "fixed_cashflow_id": occ.fixed_cashflow_id,
        "recurrence_group_id": occ.recurrence_group_id,
        "occurrence_date": occ.occurrence_date.isoformat(),
        "date": occ.date.isoformat(),
        "type": occ.type.value,
        "amount_cents": occ.amount_cents,
        "amount": format_amount(occ.amount_cents),
        "description": occ.description,
        "category_id": occ.category_id,
        "paid": occ.paid,
        "is_exception": occ.is_exception,
    }


def entry_out(entry) -> dict:
    if isinstance(entry, Occurrence):
        return {"kind": "fixed", **occurrence_out(entry)}
    return {"kind": "transaction", **transaction_out(entry)}


def fixed_out(definition: FixedCashflow) -> dict:
    return {
        "id": definition.id,
        "account_id": definition.account_id,
        "description": definition.description,
        "amount_cents": definition.amount_cents,
        "type": definition.type.value,
        "category_id": definition.category_id,
        "due_day": definition.due_day,
        "start_month": str(MonthKey.of(definition.start_month)),
        "end_month": (
            str(MonthKey.of(definition.end_month)) if definition.end_month else None
        ),
        "recurrence_group_id": definition.recurrence_group_id,
    }


def invoice_out(invoice: Invoice, *, with_transactions: bool = True) -> dict:
    data = {
        "credit_card_id": invoice.credit_card_id,
        "month": str(invoice.month),
        "period_start": invoice.period_start.isoformat(),
        "period_end": invoice.period_end.isoformat(),
        "closing_date": invoice.closing_date.isoformat(),
        "due_date": invoice.due_date.isoformat(),
        "total_cents": invoice.total_cents,
        "total": format_amount(invoice.total_cents),
        "credits_cents": invoice.credits_cents,
        "status": invoice.status.value,
        "installment_count": invoice.installment_count,
        "transaction_count": len(invoice.transactions),
    }
    if with_transactions:
        data["transactions"] = [transaction_out(t) for t in invoice.transactions]
    return data


def debt_out(debt: Debt) -> dict:
    return {
        "id": debt.id,
        "account_id": debt.account_id,
        "name": debt.name,
        "balance_cents": debt.balance_cents,
        "interest_rate": str(debt.interest_rate) if debt.interest_rate is not None else None,
        "rate_period": debt.rate_period.value,
        "target_date": debt.target_date.isoformat() if debt.target_date else None,
        "notes": debt.notes,
    }


# csrf


@app.get("/api/csrf-token")
def api_csrf_token():
    return {"header": CSRF_HEADER, "token": generate_csrf_token()}


# accounts & categories


@app.get("/api/accounts")
def api_accounts(db: Session = Depends(get_db)):
    return [account_out(a) for a in AccountService(db).list_all()]


@app.post("/api/accounts", status_code=201, dependencies=[Depends(require_csrf)])
def api_create_account(payload: AccountIn, db: Session = Depends(get_db)):
    return account_out(AccountService(db).create(payload))


@app.get("/api/accounts/{account_id}")
def api_account(account_id: int, db: Session = Depends(get_db)):
    return account_out(AccountService(db).get(account_id))


@app.get("/api/accounts/{account_id}/categories")
def api_categories(
    account_id: int, include_archived: bool = False, db: Session = Depends(get_db)
):
    service = CategoryService(db, account_id)
    return [category_out(c) for c in service.list_all(include_archived)]


@app.post(
    "/api/accounts/{account_id}/categories",
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def api_create_category(
    account_id: int, payload: CategoryIn, db: Session = Depends(get_db)
):
    return category_out(CategoryService(db, account_id).create(payload))


@app.get("/api/accounts/{account_id}/categories/stats")
def api_category_stats(
    account_id: int,
    request: Request,
    transaction_type: TransactionType = Query(TransactionType.expense, alias="type"),
    db: Session = Depends(get_db),
):
    AccountService(db).get(account_id)
    period = period_from_request(request)
    stats = TransactionService(db, account_id).category_stats(
        period.start, period.end, transaction_type
    )
    return {
        "period": {"start": period.start.isoformat(), "end": period.end.isoformat()},
        "items": [
            {**stat, "total": format_amount(stat["amount_cents"])} for stat in stats
        ],
    }


# transactions


@app.get("/api/accounts/{account_id}/transactions")
def api_transactions(account_id: int, request: Request, db: Session = Depends(get_db)):
    AccountService(db).get(account_id)
    period = period_from_request(request)
    entries = TransactionService(db, account_id).list(period.start, period.end)
    return {
        "period": {"start": period.start.isoformat(), "end": period.end.isoformat()},
        "items": [entry_out(e) for e in entries],
    }


@app.post(
    "/api/accounts/{account_id}/transactions",
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def api_create_transaction(
    account_id: int, payload: TransactionIn, db: Session = Depends(get_db)
):
    rows = TransactionService(db, account_id).create(payload)
    return {"items": [transaction_out(t) for t in rows]}


@app.post(
    "/api/accounts/{account_id}/ingest",
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def api_ingest(
    account_id: int, payload: IngestTransactionIn, db: Session = Depends(get_db)
):
    rows = IngestService(db, account_id).ingest(payload)
    return {"items": [transaction_out(t) for t in rows]}


@app.get("/api/accounts/{account_id}/summary")
def api_summary(account_id: int, request: Request, db: Session = Depends(get_db)):
    AccountService(db).get(account_id)
    period = period_from_request(request)
    totals = TransactionService(db, account_id).summary(period.start, period.end)
    return {
        "period": {"start": period.start.isoformat(), "end": period.end.isoformat()},
        **totals,
    }


@app.get("/api/transactions/{transaction_id}")
def api_transaction(transaction_id: int, db: Session = Depends(get_db)):
    return transaction_out(TransactionService(db).get(transaction_id))


@app.patch("/api/transactions/{transaction_id}", dependencies=[Depends(require_csrf)])
def api_update_transaction(
    transaction_id: int, payload: TransactionPatch, db: Session = Depends(get_db)
):
    rows = TransactionService(db).update(transaction_id, payload)
    return {"items": [transaction_out(t) for t in rows]}


@app.delete("/api/transactions/{transaction_id}", dependencies=[Depends(require_csrf)])
def api_delete_transaction(
    transaction_id: int,
    edit_scope: EditScope = EditScope.single,
    db: Session = Depends(get_db),
):
    removed = TransactionService(db).delete(transaction_id, edit_scope)
    return {"removed": removed}


# credit cards & invoices


@app.get("/api/accounts/{account_id}/credit-cards")
def api_credit_cards(account_id: int, db: Session = Depends(get_db)):
    return [card_out(c) for c in CreditCardService(db, account_id).list_all()]


@app.post(
    "/api/accounts/{account_id}/credit-cards",
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def api_create_credit_card(
    account_id: int, payload: CreditCardIn, db: Session = Depends(get_db)
):
    return card_out(CreditCardService(db, account_id).create(payload))


@app.get("/api/credit-cards/{credit_card_id}")
def api_credit_card(credit_card_id: int, db: Session = Depends(get_db)):
    return card_out(CreditCardService(db).get(credit_card_id))


@app.patch("/api/credit-cards/{credit_card_id}", dependencies=[Depends(require_csrf)])
def api_update_credit_card(
    credit_card_id: int, payload: CreditCardUpdate, db: Session = Depends(get_db)
):
    return card_out(CreditCardService(db).update(credit_card_id, payload))


@app.delete("/api/credit-cards/{credit_card_id}", dependencies=[Depends(require_csrf)])
def api_delete_credit_card(credit_card_id: int, db: Session = Depends(get_db)):
    CreditCardService(db).delete(credit_card_id)
    return {"status": "deleted"}


@app.get("/api/accounts/{account_id}/credit-card-invoices")
def api_invoices(
    account_id: int, month: Optional[str] = None, db: Session = Depends(get_db)
):
    AccountService(db).get(account_id)
    invoices = InvoiceService(db, account_id).list(month)
    return [invoice_out(i, with_transactions=False) for i in invoices]


@app.get("/api/credit-cards/{credit_card_id}/invoices/{month}")
def api_invoice(credit_card_id: int, month: str, db: Session = Depends(get_db)):
    return invoice_out(InvoiceService(db).get(credit_card_id, month))


@app.post(
    "/api/credit-cards/{credit_card_id}/invoices/{month}/pay",
    dependencies=[Depends(require_csrf)],
)
def api_pay_invoice(
    credit_card_id: int,
    month: str,
    payload: Optional[InvoicePaymentIn] = None,
    db: Session = Depends(get_db),
):
    amount = payload.amount_cents if payload else None
    return invoice_out(InvoiceService(db).pay(credit_card_id, month, amount))


@app.post(
    "/api/credit-cards/{credit_card_id}/invoices/{month}/reopen",
    dependencies=[Depends(require_csrf)],
)
def api_reopen_invoice(credit_card_id: int, month: str, db: Session = Depends(get_db)):
    return invoice_out(InvoiceService(db).reopen(credit_card_id, month))


# fixed cash flows


@app.get("/api/accounts/{account_id}/monthly-fixed")
def api_monthly_fixed(
    account_id: int, month: Optional[str] = None, db: Session = Depends(get_db)
):
    AccountService(db).get(account_id)
    key = MonthKey.parse(month) if month else MonthKey.of(local_today())
    service = FixedCashflowService(db, account_id)
    summary = service.monthly_summary(key)
    return {
        "month": str(key),
        "definitions": [fixed_out(d) for d in service.list_all()],
        "income": [occurrence_out(o) for o in summary["income"]],
        "expenses": [occurrence_out(o) for o in summary["expenses"]],
        "totals": summary["totals"],
    }


@app.post(
    "/api/accounts/{account_id}/monthly-fixed",
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def api_create_fixed(
    account_id: int, payload: FixedCashflowIn, db: Session = Depends(get_db)
):
    return fixed_out(FixedCashflowService(db, account_id).create(payload))


@app.post(
    "/api/accounts/{account_id}/monthly-fixed/{month}/process",
    dependencies=[Depends(require_csrf)],
)
def api_process_fixed(account_id: int, month: str, db: Session = Depends(get_db)):
    count = FixedCashflowService(db, account_id).process_month(MonthKey.parse(month))
    return {"month": month, "promoted": count}


@app.patch("/api/monthly-fixed/{fixed_cashflow_id}", dependencies=[Depends(require_csrf)])
def api_update_fixed(
    fixed_cashflow_id: int, payload: FixedCashflowUpdate, db: Session = Depends(get_db)
):
    return fixed_out(FixedCashflowService(db).update(fixed_cashflow_id, payload))


@app.delete(
    "/api/monthly-fixed/{fixed_cashflow_id}", dependencies=[Depends(require_csrf)]
)
def api_delete_fixed(fixed_cashflow_id: int, db: Session = Depends(get_db)):
    FixedCashflowService(db).delete(fixed_cashflow_id)
    return {"status": "deleted"}


@app.get("/api/monthly-fixed/{fixed_cashflow_id}/occurrences")
def api_fixed_occurrences(
    fixed_cashflow_id: int, request: Request, db: Session = Depends(get_db)
):
    period = period_from_request(request)
    occurrences = FixedCashflowService(db).occurrences(
        fixed_cashflow_id, period.start, period.end
    )
    return [occurrence_out(o) for o in occurrences]


@app.patch(
    "/api/monthly-fixed/{fixed_cashflow_id}/occurrences/{occurrence_date}",
    dependencies=[Depends(require_csrf)],
)
def api_update_occurrence(
    fixed_cashflow_id: int,
    occurrence_date: date,
    payload: TransactionPatch,
    db: Session = Depends(get_db),
):
    occ = FixedCashflowService(db).update_occurrence(
        fixed_cashflow_id, occurrence_date, payload
    )
    return occurrence_out(occ) if occ else {"status": "removed"}


@app.delete(
    "/api/monthly-fixed/{fixed_cashflow_id}/occurrences/{occurrence_date}",
    dependencies=[Depends(require_csrf)],
)
def api_delete_occurrence(
    fixed_cashflow_id: int,
    occurrence_date: date,
    edit_scope: EditScope = EditScope.single,
    db: Session = Depends(get_db),
):
    FixedCashflowService(db).delete_occurrence(
        fixed_cashflow_id, occurrence_date, edit_scope
    )
    return {"status": "deleted"}


@app.post(
    "/api/monthly-fixed/{fixed_cashflow_id}/occurrences/{occurrence_date}/revert",
    dependencies=[Depends(require_csrf)],
)
def api_revert_occurrence(
    fixed_cashflow_id: int, occurrence_date: date, db: Session = Depends(get_db)
):
    occ = FixedCashflowService(db).revert_occurrence(fixed_cashflow_id, occurrence_date)
    return occurrence_out(occ)


# debts


@app.get("/api/accounts/{account_id}/debts")
def api_debts(account_id: int, db: Session = Depends(get_db)):
    return [debt_out(d) for d in DebtService(db, account_id).list_all()]


@app.post(
    "/api/accounts/{account_id}/debts",
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def api_create_debt(account_id: int, payload: DebtIn, db: Session = Depends(get_db)):
    return debt_out(DebtService(db, account_id).create(payload))


@app.patch("/api/debts/{debt_id}", dependencies=[Depends(require_csrf)])
def api_update_debt(debt_id: int, payload: DebtIn, db: Session = Depends(get_db)):
    return debt_out(DebtService(db).update(debt_id, payload))


@app.delete("/api/debts/{debt_id}", dependencies=[Depends(require_csrf)])
def api_delete_debt(debt_id: int, db: Session = Depends(get_db)):
    DebtService(db).delete(debt_id)
    return {"status": "deleted"}


def run() -> None:
    import uvicorn

    uvicorn.run("main:app", host="127.0.0.1", port=8000)


if __name__ == "__main__":
    run()
