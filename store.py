from __future__ import annotations

from dataclasses import asdict
from datetime import date
from typing import Any, Iterable, Optional

from sqlalchemy import ColumnElement, delete, func, select, update
from sqlalchemy.orm import Session, joinedload

from errors import AmbiguousOccurrence, GroupNotFound, NotFound
from installments import InstallmentDraft, new_group_id
from models import CreditCard, FixedCashflow, LaunchType, Transaction
from periods import MonthKey


class Store:
    """Read/write boundary between the billing core and the database.

    Nothing here commits; callers decide the transaction boundary.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    # reads

    def list_transactions(
        self,
        account_id: int,
        start: date,
        end: date,
        *,
        include_skipped: bool = False,
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.account_id == account_id,
                Transaction.date.between(start, end),
            )
            .order_by(Transaction.date.asc(), Transaction.id.asc())
        )
        if not include_skipped:
            stmt = stmt.where(Transaction.skipped.is_(False))
        return list(self.session.scalars(stmt).all())

    def list_card_transactions(self, credit_card_id: int) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.credit_card_id == credit_card_id,
                Transaction.skipped.is_(False),
            )
            .order_by(Transaction.date.asc(), Transaction.id.asc())
        )
        return list(self.session.scalars(stmt).all())

    def list_fixed_cashflows(self, account_id: int) -> list[FixedCashflow]:
        stmt = (
            select(FixedCashflow)
            .options(joinedload(FixedCashflow.category))
            .where(FixedCashflow.account_id == account_id)
            .order_by(FixedCashflow.start_month.asc(), FixedCashflow.id.asc())
        )
        return list(self.session.scalars(stmt).all())

    def get_credit_card(self, credit_card_id: int) -> CreditCard:
        card = self.session.get(CreditCard, credit_card_id)
        if not card:
            raise NotFound("Credit card not found")
        return card

    def get_transaction(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.skipped:
            raise NotFound("Transaction not found")
        return txn

    def get_fixed_cashflow(self, fixed_cashflow_id: int) -> FixedCashflow:
        definition = self.session.get(FixedCashflow, fixed_cashflow_id)
        if not definition:
            raise NotFound("Fixed cash flow not found")
        return definition

    def fixed_cashflow_for_group(self, group_id: str) -> Optional[FixedCashflow]:
        return self.session.scalar(
            select(FixedCashflow).where(FixedCashflow.recurrence_group_id == group_id)
        )

    def installment_members(self, group_id: str) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.installments_group_id == group_id)
            .order_by(Transaction.current_installment.asc(), Transaction.id.asc())
        )
        return list(self.session.scalars(stmt).all())

    def recurrence_rows(self, group_id: str) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.recurrence_group_id == group_id,
                Transaction.exception_for_date.isnot(None),
            )
            .order_by(Transaction.exception_for_date.asc(), Transaction.id.asc())
        )
        return list(self.session.scalars(stmt).all())

    def find_exception(self, group_id: str, when: date) -> Optional[Transaction]:
        rows = self.session.scalars(
            select(Transaction).where(
                Transaction.recurrence_group_id == group_id,
                Transaction.exception_for_date == when,
            )
        ).all()
        if len(rows) > 1:
            raise AmbiguousOccurrence(
                f"{len(rows)} exceptions found for {group_id} on {when}"
            )
        return rows[0] if rows else None

    def group_total(self, group_id: str) -> int:
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
                    Transaction.installments_group_id == group_id
                )
            ).scalar_one()
            or 0
        )

    # writes

    def create_transactions(
        self, drafts: Iterable[InstallmentDraft]
    ) -> list[Transaction]:
        rows = [Transaction(**asdict(draft)) for draft in drafts]
        self.session.add_all(rows)
        self.session.flush()
        return rows

    def upsert_exception(
        self,
        group_id: str,
        when: date,
        fields: dict[str, Any],
        *,
        skipped: bool = False,
    ) -> Transaction:
        row = self.find_exception(group_id, when)
        if row is None:
            definition = self.fixed_cashflow_for_group(group_id)
            if definition is None:
                raise GroupNotFound(f"Recurrence group {group_id} not found")
            row = Transaction(
                account_id=definition.account_id,
                type=definition.type,
                launch_type=LaunchType.normal,
                amount_cents=definition.amount_cents,
                date=when,
                description=definition.description,
                category_id=definition.category_id,
                paid=False,
                recurrence_group_id=group_id,
                exception_for_date=when,
            )
            self.session.add(row)
        for name, value in fields.items():
            setattr(row, name, value)
        row.skipped = skipped
        self.session.flush()
        return row

    def update_transactions_by_group(
        self,
        group_id: str,
        predicate: Optional[ColumnElement[bool]],
        fields: dict[str, Any],
    ) -> int:
        """Set ``fields`` on the installment group's rows matching ``predicate``."""
        if not fields:
            return 0
        stmt = update(Transaction).where(Transaction.installments_group_id == group_id)
        if predicate is not None:
            stmt = stmt.where(predicate)
        result = self.session.execute(
            stmt.values(**fields).execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def update_transaction(self, transaction_id: int, fields: dict[str, Any]) -> Transaction:
        row = self.session.get(Transaction, transaction_id)
        if not row:
            raise NotFound("Transaction not found")
        for name, value in fields.items():
            setattr(row, name, value)
        return row

    def delete_transactions(self, ids: Iterable[int]) -> int:
        ids = list(ids)
        if not ids:
            return 0
        result = self.session.execute(
            delete(Transaction)
            .where(Transaction.id.in_(ids))
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def split_fixed_cashflow(
        self,
        fixed_cashflow_id: int,
        at_month: MonthKey,
        new_fields: dict[str, Any],
        *,
        group_id: Optional[str] = None,
    ) -> FixedCashflow:
        """Close the definition before ``at_month`` and continue it as a new one."""
        original = self.get_fixed_cashflow(fixed_cashflow_id)
        if at_month <= MonthKey.of(original.start_month):
            raise ValueError("Split month must be after the definition's start month")
        successor = FixedCashflow(
            account_id=original.account_id,
            description=original.description,
            amount_cents=original.amount_cents,
            type=original.type,
            category_id=original.category_id,
            due_day=original.due_day,
            start_month=at_month.first_day,
            end_month=original.end_month,
            recurrence_group_id=group_id or new_group_id(),
        )
        for name, value in new_fields.items():
            setattr(successor, name, value)
        original.end_month = at_month.shift(-1).first_day
        self.session.add(successor)
        self.session.flush()
        return successor

    def truncate_fixed_cashflow(self, fixed_cashflow_id: int, last_month: MonthKey) -> FixedCashflow:
        definition = self.get_fixed_cashflow(fixed_cashflow_id)
        definition.end_month = last_month.first_day
        self.session.flush()
        return definition

    def delete_fixed_cashflow(self, fixed_cashflow_id: int) -> None:
        definition = self.get_fixed_cashflow(fixed_cashflow_id)
        self.session.delete(definition)
        self.session.flush()
