from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional, Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from rapidfuzz.distance import Levenshtein

from billing import validate_card_days
from database import atomic
from errors import InconsistentGroupState, NotFound
from installments import InstallmentDraft, expand_installments, new_group_id
from invoices import Invoice, aggregate_invoices, open_balance_cents
from models import (
    Account,
    Category,
    CreditCard,
    Debt,
    FixedCashflow,
    InvoicePayment,
    InvoiceStatus,
    LaunchType,
    Transaction,
    TransactionType,
)
from periods import MonthKey, local_today
from recurrence import Occurrence, RecurrenceEngine, occurrence_date
from schemas import (
    AccountIn,
    CategoryIn,
    CreditCardIn,
    CreditCardUpdate,
    DebtIn,
    FixedCashflowIn,
    FixedCashflowUpdate,
    IngestTransactionIn,
    TransactionIn,
    TransactionPatch,
)
from scopes import (
    EditPlan,
    EditScope,
    InstallmentMember,
    RecurrenceException,
    RowUpdate,
    classify,
    effective_scope,
    plan_installment_delete,
    plan_installment_update,
    plan_recurrence_delete,
    plan_recurrence_update,
    recurrence_target_for,
)
from store import Store


logger = logging.getLogger(__name__)

Entry = Union[Transaction, Occurrence]


def _signed_amount(entry: Entry) -> int:
    if isinstance(entry, Transaction):
        return entry.signed_amount_cents
    return entry.amount_cents


def _check_category(
    session: Session,
    account_id: int,
    category_id: Optional[int],
    txn_type: TransactionType,
) -> None:
    if category_id is None:
        return
    category = session.get(Category, category_id)
    if not category or category.account_id != account_id:
        raise NotFound("Category not found")
    if category.type != txn_type:
        raise ValueError("Category type mismatch")


def apply_plan(session: Session, store: Store, plan: EditPlan) -> None:
    """Write an edit plan. Runs inside the caller's transaction."""
    definition = (
        store.get_fixed_cashflow(plan.template_id) if plan.template_id else None
    )
    for row_update in plan.updates:
        store.update_transaction(row_update.transaction_id, row_update.fields)
    if plan.group_update is not None:
        group = plan.group_update
        predicate = None
        if group.from_installment is not None:
            predicate = Transaction.current_installment >= group.from_installment
        store.update_transactions_by_group(group.group_id, predicate, group.fields)
    if definition is not None:
        for name, value in plan.template_fields.items():
            setattr(definition, name, value)
    if plan.split is not None:
        store.split_fixed_cashflow(
            plan.split.fixed_cashflow_id,
            plan.split.at_month,
            plan.split.fields,
            group_id=plan.split.new_group_id,
        )
    if plan.truncate_to is not None:
        store.truncate_fixed_cashflow(plan.template_id, plan.truncate_to)
    session.flush()
    # new exception rows copy the definition as edited above
    for write in plan.exceptions:
        store.upsert_exception(
            write.group_id, write.occurrence_date, write.fields, skipped=write.skipped
        )
    store.delete_transactions(plan.deletes)
    if plan.delete_template:
        store.delete_fixed_cashflow(plan.template_id)
    session.flush()

    if plan.expected_group_total is not None:
        actual = store.group_total(plan.installments_group_id)
        if actual != plan.expected_group_total:
            raise InconsistentGroupState(
                f"Installment group {plan.installments_group_id} totals {actual}, "
                f"expected {plan.expected_group_total}"
            )



class AccountService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Account]:
        return self.session.scalars(select(Account).order_by(Account.id)).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account:
            raise NotFound("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        account = Account(name=data.name.strip(), kind=data.kind)
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account


class CategoryService:
    def __init__(self, session: Session, account_id: int) -> None:
        self.session = session
        self.account_id = account_id

    def list_all(self, include_archived: bool = False) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.account_id == self.account_id)
            .order_by(Category.type, Category.name)
        )
        if not include_archived:
            stmt = stmt.where(Category.archived_at.is_(None))
        return self.session.scalars(stmt).all()

    def create(self, data: CategoryIn) -> Category:
        AccountService(self.session).get(self.account_id)
        existing = self.session.scalar(
            select(Category).where(
                Category.account_id == self.account_id,
                Category.type == data.type,
                func.lower(Category.name) == data.name.strip().lower(),
            )
        )
        if existing:
            raise ValueError("Category with this name already exists")
        category = Category(
            account_id=self.account_id,
            name=data.name.strip(),
            type=data.type,
            color=data.color,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def archive(self, category_id: int) -> None:
        category = self.session.get(Category, category_id)
        if not category or category.account_id != self.account_id:
            raise NotFound("Category not found")
        category.archived_at = datetime.utcnow()
        self.session.commit()

    def restore(self, category_id: int) -> None:
        category = self.session.get(Category, category_id)
        if not category or category.account_id != self.account_id:
            raise NotFound("Category not found")
        category.archived_at = None
        self.session.commit()


class CreditCardService:
    def __init__(
        self,
        session: Session,
        account_id: Optional[int] = None,
        *,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.account_id = account_id
        self.today = today
        self.store = Store(session)

    def list_all(self) -> list[CreditCard]:
        stmt = select(CreditCard).order_by(CreditCard.name, CreditCard.id)
        if self.account_id is not None:
            stmt = stmt.where(CreditCard.account_id == self.account_id)
        return self.session.scalars(stmt).all()

    def get(self, credit_card_id: int) -> CreditCard:
        card = self.store.get_credit_card(credit_card_id)
        if self.account_id is not None and card.account_id != self.account_id:
            raise NotFound("Credit card not found")
        return card

    def create(self, data: CreditCardIn) -> CreditCard:
        AccountService(self.session).get(self.account_id)
        validate_card_days(data.closing_day, data.due_day)
        card = CreditCard(
            account_id=self.account_id,
            name=data.name.strip(),
            brand=data.brand,
            limit_cents=data.limit_cents,
            closing_day=data.closing_day,
            due_day=data.due_day,
            current_balance_cents=0,
        )
        self.session.add(card)
        self.session.commit()
        self.session.refresh(card)
        return card

    def update(self, credit_card_id: int, data: CreditCardUpdate) -> CreditCard:
        card = self.get(credit_card_id)
        values = {
            k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None
        }
        validate_card_days(
            values.get("closing_day", card.closing_day),
            values.get("due_day", card.due_day),
        )
        with atomic(self.session):
            for name, value in values.items():
                setattr(card, name, value)
            self.session.flush()
            self.refresh_balance(card)
        return card

    def delete(self, credit_card_id: int) -> None:
        card = self.get(credit_card_id)
        linked = self.session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.credit_card_id == card.id
            )
        )
        if linked:
            raise ValueError("Credit card still has transactions")
        self.session.delete(card)
        self.session.commit()

    def refresh_balance(self, card: CreditCard) -> int:
        """Recompute the open balance from every invoice not marked paid."""
        invoices = aggregate_invoices(
            card,
            self.store.list_card_transactions(card.id),
            card.payments,
            today=self.today or local_today(),
        )
        card.current_balance_cents = open_balance_cents(invoices)
        self.session.flush()
        return card.current_balance_cents

    def refresh_balances(self, credit_card_ids: set[Optional[int]]) -> None:
        for credit_card_id in sorted(i for i in credit_card_ids if i is not None):
            self.refresh_balance(self.store.get_credit_card(credit_card_id))


class TransactionService:
    def __init__(
        self,
        session: Session,
        account_id: Optional[int] = None,
        *,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.account_id = account_id
        self.today = today
        self.store = Store(session)

    def _cards(self) -> CreditCardService:
        return CreditCardService(self.session, today=self.today)

    def create(self, data: TransactionIn) -> list[Transaction]:
        """Create a transaction, expanded into installments when requested."""
        AccountService(self.session).get(self.account_id)
        _check_category(self.session, self.account_id, data.category_id, data.type)

        card: Optional[CreditCard] = None
        if data.credit_card_id is not None:
            card = CreditCardService(self.session, self.account_id).get(
                data.credit_card_id
            )

        amount = data.amount_cents
        launch_type = data.launch_type
        if amount < 0:
            if card is None:
                raise ValueError("Amount must be positive")
            amount = -amount
            launch_type = LaunchType.credit
        if launch_type == LaunchType.credit and card is None:
            raise ValueError("Credits are only allowed on card transactions")

        draft = InstallmentDraft(
            account_id=self.account_id,
            type=data.type,
            amount_cents=amount,
            date=data.date,
            description=data.description.strip(),
            category_id=data.category_id,
            credit_card_id=data.credit_card_id,
            launch_type=launch_type,
            paid=data.paid,
        )
        drafts = expand_installments(
            draft, data.installments, card.closing_day if card else None
        )
        with atomic(self.session):
            rows = self.store.create_transactions(drafts)
            if card is not None:
                self._cards().refresh_balance(card)
        logger.info(
            f"transaction_create: account={self.account_id} rows={len(rows)} "
            f"group={rows[0].installments_group_id} card={data.credit_card_id}"
        )
        return rows

    def get(self, transaction_id: int) -> Transaction:
        txn = self.store.get_transaction(transaction_id)
        if self.account_id is not None and txn.account_id != self.account_id:
            raise NotFound("Transaction not found")
        return txn

    def list(self, start: date, end: date) -> list[Entry]:
        """Persisted rows merged with materialized fixed cash flows, by date."""
        definitions = self.store.list_fixed_cashflows(self.account_id)
        groups = {d.recurrence_group_id for d in definitions}
        engine = RecurrenceEngine(self.session)

        # rows of a known definition come back through its occurrences
        entries: list[Entry] = [
            txn
            for txn in self.store.list_transactions(self.account_id, start, end)
            if txn.recurrence_group_id not in groups or txn.exception_for_date is None
        ]
        for definition in definitions:
            entries.extend(engine.occurrences(definition, start, end))
        entries.sort(key=lambda e: (e.date, e.description))
        return entries

    def summary(self, start: date, end: date) -> dict[str, int]:
        income = 0
        expenses = 0
        for entry in self.list(start, end):
            if entry.type == TransactionType.income:
                income += _signed_amount(entry)
            else:
                expenses += _signed_amount(entry)
        return {"income": income, "expenses": expenses, "net": income - expenses}

    def category_stats(
        self,
        start: date,
        end: date,
        transaction_type: TransactionType = TransactionType.expense,
    ) -> list[dict[str, object]]:
        """Totals per category over rows and fixed occurrences, largest first."""
        totals: dict[Optional[int], int] = {}
        for entry in self.list(start, end):
            if entry.type != transaction_type:
                continue
            key = entry.category_id
            totals[key] = totals.get(key, 0) + _signed_amount(entry)

        categories = {
            c.id: c
            for c in CategoryService(self.session, self.account_id).list_all(
                include_archived=True
            )
        }
        grand_total = sum(totals.values())
        stats = []
        for category_id, amount in totals.items():
            category = categories.get(category_id)
            percent = (amount / grand_total * 100) if grand_total else 0
            stats.append(
                {
                    "category_id": category_id,
                    "name": category.name if category else "Uncategorized",
                    "color": category.color if category else None,
                    "amount_cents": amount,
                    "percent": percent,
                }
            )
        stats.sort(key=lambda s: (-s["amount_cents"], s["name"]))
        return stats

    def _target(self, txn: Transaction):
        definition = None
        if txn.recurrence_group_id:
            definition = self.store.fixed_cashflow_for_group(txn.recurrence_group_id)
        return classify(txn, definition)

    def update(self, transaction_id: int, data: TransactionPatch) -> list[Transaction]:
        """Edit a row and, per ``edit_scope``, the rest of its group.

        Returns the rows still present after the edit that the plan touched.
        """
        txn = self.get(transaction_id)
        target = self._target(txn)
        scope = effective_scope(target, data.edit_scope)
        changes = data.changes()
        if "category_id" in changes or "type" in changes:
            _check_category(
                self.session,
                txn.account_id,
                changes.get("category_id", txn.category_id),
                changes.get("type", txn.type),
            )
        if changes.get("launch_type") == LaunchType.credit and not txn.credit_card_id:
            raise ValueError("Credits are only allowed on card transactions")

        if isinstance(target, InstallmentMember):
            card = (
                self.store.get_credit_card(txn.credit_card_id)
                if txn.credit_card_id
                else None
            )
            plan = plan_installment_update(
                target,
                scope,
                changes,
                self.store.installment_members(target.group_id),
                amount_policy=data.amount_policy,
                total_amount_cents=data.total_amount_cents,
                closing_day=card.closing_day if card else None,
            )
        elif isinstance(target, RecurrenceException):
            plan = plan_recurrence_update(
                target, scope, changes, self.store.recurrence_rows(target.group_id)
            )
        else:
            if data.total_amount_cents is not None:
                changes["amount_cents"] = data.total_amount_cents
            plan = EditPlan(scope=scope, updates=[RowUpdate(txn.id, changes)])

        with atomic(self.session):
            apply_plan(self.session, self.store, plan)
            self._cards().refresh_balances(
                {txn.credit_card_id} | self._cards_of(plan.touched_ids)
            )
        logger.info(
            f"transaction_update: id={transaction_id} scope={scope.value} "
            f"rows={len(plan.updated_ids)} deleted={len(plan.deletes)}"
        )
        rows = [self.session.get(Transaction, i) for i in plan.updated_ids]
        return [r for r in rows if r is not None]

    def delete(self, transaction_id: int, scope: EditScope = EditScope.single) -> int:
        txn = self.get(transaction_id)
        target = self._target(txn)
        scope = effective_scope(target, scope)
        if isinstance(target, InstallmentMember):
            plan = plan_installment_delete(
                target, scope, self.store.installment_members(target.group_id)
            )
        elif isinstance(target, RecurrenceException):
            plan = plan_recurrence_delete(
                target, scope, self.store.recurrence_rows(target.group_id)
            )
        else:
            plan = EditPlan(scope=scope, deletes=[txn.id])

        card_id = txn.credit_card_id
        with atomic(self.session):
            apply_plan(self.session, self.store, plan)
            self._cards().refresh_balances({card_id})
        removed = len(plan.deletes) + sum(1 for e in plan.exceptions if e.skipped)
        logger.info(
            f"transaction_delete: id={transaction_id} scope={scope.value} removed={removed}"
        )
        return removed

    def _cards_of(self, transaction_ids: set[int]) -> set[Optional[int]]:
        if not transaction_ids:
            return set()
        return set(
            self.session.scalars(
                select(Transaction.credit_card_id).where(
                    Transaction.id.in_(transaction_ids)
                )
            ).all()
        )


class FixedCashflowService:
    def __init__(self, session: Session, account_id: Optional[int] = None) -> None:
        self.session = session
        self.account_id = account_id
        self.store = Store(session)
        self.engine = RecurrenceEngine(session)

    def list_all(self) -> list[FixedCashflow]:
        return self.store.list_fixed_cashflows(self.account_id)

    def get(self, fixed_cashflow_id: int) -> FixedCashflow:
        definition = self.store.get_fixed_cashflow(fixed_cashflow_id)
        if self.account_id is not None and definition.account_id != self.account_id:
            raise NotFound("Fixed cash flow not found")
        return definition

    def create(self, data: FixedCashflowIn) -> FixedCashflow:
        AccountService(self.session).get(self.account_id)
        _check_category(self.session, self.account_id, data.category_id, data.type)
        start = (
            MonthKey.parse(data.start_month)
            if data.start_month
            else MonthKey.of(local_today())
        )
        end = MonthKey.parse(data.end_month) if data.end_month else None
        if end is not None and end < start:
            raise ValueError("End month must not be before start month")
        definition = FixedCashflow(
            account_id=self.account_id,
            description=data.description.strip(),
            amount_cents=data.amount_cents,
            type=data.type,
            category_id=data.category_id,
            due_day=data.due_day,
            start_month=start.first_day,
            end_month=end.first_day if end else None,
            recurrence_group_id=new_group_id(),
        )
        self.session.add(definition)
        self.session.commit()
        self.session.refresh(definition)
        return definition

    def update(self, fixed_cashflow_id: int, data: FixedCashflowUpdate) -> FixedCashflow:
        """Edit the definition itself; a new due day moves the persisted rows along."""
        definition = self.get(fixed_cashflow_id)
        values = data.model_dump(exclude_unset=True)
        for key in ("start_month", "end_month"):
            if key in values and values[key] is not None:
                values[key] = MonthKey.parse(values[key]).first_day
        if values.get("start_month") is None:
            values.pop("start_month", None)
        start = values.get("start_month", definition.start_month)
        end = values.get("end_month", definition.end_month)
        if end is not None and end < start:
            raise ValueError("End month must not be before start month")
        if "category_id" in values or "type" in values:
            _check_category(
                self.session,
                definition.account_id,
                values.get("category_id", definition.category_id),
                values.get("type") or definition.type,
            )

        with atomic(self.session):
            due_day_changed = (
                "due_day" in values and values["due_day"] != definition.due_day
            )
            for name, value in values.items():
                if value is None and name not in {"category_id", "due_day", "end_month"}:
                    continue
                setattr(definition, name, value)
            if due_day_changed:
                for row in self.store.recurrence_rows(definition.recurrence_group_id):
                    moved = occurrence_date(definition, MonthKey.of(row.exception_for_date))
                    row.exception_for_date = moved
                    row.date = moved
            self.session.flush()
        return definition

    def delete(self, fixed_cashflow_id: int) -> None:
        definition = self.get(fixed_cashflow_id)
        rows = self.store.recurrence_rows(definition.recurrence_group_id)
        with atomic(self.session):
            self.store.delete_transactions(r.id for r in rows)
            self.store.delete_fixed_cashflow(definition.id)
        logger.info(
            f"fixed_cashflow_delete: id={fixed_cashflow_id} rows_removed={len(rows)}"
        )

    def occurrences(
        self, fixed_cashflow_id: int, start: date, end: date
    ) -> list[Occurrence]:
        return list(self.engine.occurrences(self.get(fixed_cashflow_id), start, end))

    def monthly_summary(self, month: MonthKey) -> dict[str, object]:
        income: list[Occurrence] = []
        expenses: list[Occurrence] = []
        for definition in self.list_all():
            for occ in self.engine.occurrences(definition, month.first_day, month.last_day):
                if occ.type == TransactionType.income:
                    income.append(occ)
                else:
                    expenses.append(occ)
        income.sort(key=lambda o: (o.date, o.description))
        expenses.sort(key=lambda o: (o.date, o.description))
        income_total = sum(o.amount_cents for o in income)
        expense_total = sum(o.amount_cents for o in expenses)
        return {
            "month": month,
            "income": income,
            "expenses": expenses,
            "totals": {
                "income": income_total,
                "expenses": expense_total,
                "net": income_total - expense_total,
            },
        }

    def _target(self, definition: FixedCashflow, when: date):
        existing = self.store.find_exception(definition.recurrence_group_id, when)
        if existing is not None:
            if existing.skipped:
                raise NotFound(f"Occurrence on {when} was deleted")
            return RecurrenceException(existing, definition)
        return recurrence_target_for(definition, when)

    def update_occurrence(
        self, fixed_cashflow_id: int, when: date, data: TransactionPatch
    ) -> Optional[Occurrence]:
        definition = self.get(fixed_cashflow_id)
        target = self._target(definition, when)
        changes = data.changes()
        if changes.get("launch_type") == LaunchType.credit:
            raise ValueError("Credits are only allowed on card transactions")
        if "category_id" in changes or "type" in changes:
            _check_category(
                self.session,
                definition.account_id,
                changes.get("category_id", definition.category_id),
                changes.get("type", definition.type),
            )
        plan = plan_recurrence_update(
            target,
            data.edit_scope,
            changes,
            self.store.recurrence_rows(definition.recurrence_group_id),
        )
        with atomic(self.session):
            apply_plan(self.session, self.store, plan)
        logger.info(
            f"occurrence_update: fixed_cashflow={fixed_cashflow_id} date={when} "
            f"scope={data.edit_scope.value} split={plan.split is not None}"
        )
        owner = definition
        if plan.split is not None:
            owner = self.store.fixed_cashflow_for_group(plan.split.new_group_id)
        return self.engine.occurrence_for_month(owner, MonthKey.of(when))

    def delete_occurrence(
        self, fixed_cashflow_id: int, when: date, scope: EditScope = EditScope.single
    ) -> None:
        definition = self.get(fixed_cashflow_id)
        target = self._target(definition, when)
        plan = plan_recurrence_delete(
            target, scope, self.store.recurrence_rows(definition.recurrence_group_id)
        )
        with atomic(self.session):
            apply_plan(self.session, self.store, plan)
        logger.info(
            f"occurrence_delete: fixed_cashflow={fixed_cashflow_id} date={when} "
            f"scope={scope.value}"
        )

    def revert_occurrence(self, fixed_cashflow_id: int, when: date) -> Occurrence:
        """Drop the exception on ``when`` so the template shows through again."""
        definition = self.get(fixed_cashflow_id)
        recurrence_target_for(definition, when)
        row = self.store.find_exception(definition.recurrence_group_id, when)
        if row is None:
            raise NotFound(f"No exception on {when}")
        with atomic(self.session):
            self.store.delete_transactions([row.id])
        return self.engine.occurrence_for_month(definition, MonthKey.of(when))

    def process_month(self, month: MonthKey) -> int:
        AccountService(self.session).get(self.account_id)
        with atomic(self.session):
            return self.engine.process_month(self.account_id, month)


class InvoiceService:
    def __init__(
        self,
        session: Session,
        account_id: Optional[int] = None,
        *,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.account_id = account_id
        self.today = today
        self.store = Store(session)

    def _today(self) -> date:
        return self.today or local_today()

    def list(self, month: Optional[str] = None) -> list[Invoice]:
        months = [MonthKey.parse(month)] if month else None
        invoices: list[Invoice] = []
        for card in CreditCardService(self.session, self.account_id).list_all():
            invoices.extend(
                aggregate_invoices(
                    card,
                    self.store.list_card_transactions(card.id),
                    card.payments,
                    today=self._today(),
                    months=months,
                )
            )
        return invoices

    def get(self, credit_card_id: int, month: str) -> Invoice:
        card = CreditCardService(self.session, self.account_id).get(credit_card_id)
        key = MonthKey.parse(month)
        return aggregate_invoices(
            card,
            self.store.list_card_transactions(card.id),
            card.payments,
            today=self._today(),
            months=[key],
        )[0]

    def _payment(self, card: CreditCard, key: MonthKey) -> Optional[InvoicePayment]:
        return self.session.scalar(
            select(InvoicePayment).where(
                InvoicePayment.credit_card_id == card.id,
                InvoicePayment.month == str(key),
            )
        )

    def pay(
        self, credit_card_id: int, month: str, amount_cents: Optional[int] = None
    ) -> Invoice:
        invoice = self.get(credit_card_id, month)
        card = self.store.get_credit_card(credit_card_id)
        amount = amount_cents if amount_cents is not None else max(invoice.total_cents, 0)
        with atomic(self.session):
            payment = self._payment(card, invoice.month)
            if payment is None:
                payment = InvoicePayment(month=str(invoice.month))
                card.payments.append(payment)
            payment.status = InvoiceStatus.paid
            payment.amount_cents = amount
            payment.paid_at = datetime.utcnow()
            for txn in invoice.transactions:
                txn.paid = True
            CreditCardService(self.session, today=self.today).refresh_balance(card)
        logger.info(
            f"invoice_pay: card={credit_card_id} month={invoice.month} amount={amount}"
        )
        return self.get(credit_card_id, month)

    def reopen(self, credit_card_id: int, month: str) -> Invoice:
        invoice = self.get(credit_card_id, month)
        card = self.store.get_credit_card(credit_card_id)
        with atomic(self.session):
            payment = self._payment(card, invoice.month)
            if payment is not None:
                card.payments.remove(payment)
            for txn in invoice.transactions:
                txn.paid = False
            CreditCardService(self.session, today=self.today).refresh_balance(card)
        logger.info(f"invoice_reopen: card={credit_card_id} month={invoice.month}")
        return self.get(credit_card_id, month)


class DebtService:
    def __init__(self, session: Session, account_id: Optional[int] = None) -> None:
        self.session = session
        self.account_id = account_id

    def list_all(self) -> list[Debt]:
        stmt = (
            select(Debt)
            .where(Debt.account_id == self.account_id)
            .order_by(Debt.target_date.is_(None), Debt.target_date, Debt.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, debt_id: int) -> Debt:
        debt = self.session.get(Debt, debt_id)
        if not debt or (self.account_id is not None and debt.account_id != self.account_id):
            raise NotFound("Debt not found")
        return debt

    def create(self, data: DebtIn) -> Debt:
        AccountService(self.session).get(self.account_id)
        debt = Debt(account_id=self.account_id, **data.model_dump())
        self.session.add(debt)
        self.session.commit()
        self.session.refresh(debt)
        return debt

    def update(self, debt_id: int, data: DebtIn) -> Debt:
        debt = self.get(debt_id)
        for field, value in data.model_dump().items():
            setattr(debt, field, value)
        self.session.commit()
        self.session.refresh(debt)
        return debt

    def delete(self, debt_id: int) -> None:
        debt = self.get(debt_id)
        self.session.delete(debt)
        self.session.commit()


class IngestCategoryNotFound(NotFound):
    pass


class IngestCategoryAmbiguous(ValueError):
    pass


class IngestService:
    """Accepts raw transaction candidates emitted by an external source."""

    DEFAULT_CATEGORY = "Uncategorized"

    def __init__(
        self, session: Session, account_id: int, *, today: Optional[date] = None
    ) -> None:
        self.session = session
        self.account_id = account_id
        self.today = today

    def _categories(
        self, txn_type: TransactionType, *, archived: Optional[bool] = False
    ) -> list[Category]:
        stmt = select(Category).where(
            Category.account_id == self.account_id, Category.type == txn_type
        )
        if archived is False:
            stmt = stmt.where(Category.archived_at.is_(None))
        elif archived is True:
            stmt = stmt.where(Category.archived_at.is_not(None))
        return self.session.scalars(stmt).all()

    def _resolve_category(self, name_raw: str, txn_type: TransactionType) -> int:
        service = CategoryService(self.session, self.account_id)
        input_lower = name_raw.lower()
        categories = self._categories(txn_type)
        for category in categories:
            if category.name.strip().lower() == input_lower:
                return category.id

        best_distance: Optional[int] = None
        best: list[Category] = []
        for category in categories:
            name_lower = (category.name or "").strip().lower()
            dist = int(Levenshtein.distance(input_lower, name_lower))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)

        if best_distance is not None and best_distance <= 1:
            if len(best) > 1:
                options = ", ".join(sorted({c.name for c in best}))
                raise IngestCategoryAmbiguous(
                    f"Category '{name_raw}' is ambiguous; matches: {options}"
                )
            return best[0].id

        for archived in self._categories(txn_type, archived=True):
            if archived.name.strip().lower() == input_lower:
                service.restore(archived.id)
                return archived.id
        try:
            created = service.create(CategoryIn(name=name_raw, type=txn_type))
        except ValueError as exc:
            raise IngestCategoryNotFound(str(exc)) from exc
        return created.id

    def ingest(self, data: IngestTransactionIn) -> list[Transaction]:
        txn_date = data.date or self.today or local_today()
        category_name = (data.category or "").strip() or self.DEFAULT_CATEGORY
        category_id = self._resolve_category(category_name, data.type)
        txn_in = TransactionIn(
            date=txn_date,
            type=data.type,
            amount_cents=data.amount_cents,
            description=data.description,
            category_id=category_id,
            credit_card_id=data.credit_card_id,
            installments=data.installments,
        )
        rows = TransactionService(self.session, self.account_id, today=self.today).create(
            txn_in
        )
        logger.info(
            f"ingest: account={self.account_id} category_id={category_id} rows={len(rows)}"
        )
        return rows
