from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Iterator, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from errors import AmbiguousOccurrence
from models import FixedCashflow, LaunchType, Transaction, TransactionType
from periods import MonthKey, iter_months


logger = logging.getLogger(__name__)

DEFAULT_ANCHOR_DAY = 1


@dataclass(frozen=True)
class Occurrence:
    """One month of a fixed cash flow, either the template projection or its exception row."""

    fixed_cashflow_id: int
    recurrence_group_id: str
    occurrence_date: date
    date: date
    account_id: int
    type: TransactionType
    amount_cents: int
    description: str
    category_id: Optional[int]
    paid: bool = False
    transaction_id: Optional[int] = None

    @property
    def is_exception(self) -> bool:
        return self.transaction_id is not None

    @property
    def month(self) -> MonthKey:
        return MonthKey.of(self.occurrence_date)


def occurrence_date(definition: FixedCashflow, month: MonthKey) -> date:
    day = definition.due_day if definition.due_day else DEFAULT_ANCHOR_DAY
    return month.day(day)


def is_active(definition: FixedCashflow, month: MonthKey) -> bool:
    if month < MonthKey.of(definition.start_month):
        return False
    if definition.end_month is not None and month > MonthKey.of(definition.end_month):
        return False
    return True


def active_months(
    definition: FixedCashflow, start: date, end: date
) -> Iterator[MonthKey]:
    first = max(MonthKey.of(start), MonthKey.of(definition.start_month))
    last = MonthKey.of(end)
    if definition.end_month is not None:
        last = min(last, MonthKey.of(definition.end_month))
    return iter_months(first, last)


def project(definition: FixedCashflow, month: MonthKey) -> Occurrence:
    when = occurrence_date(definition, month)
    return Occurrence(
        fixed_cashflow_id=definition.id,
        recurrence_group_id=definition.recurrence_group_id,
        occurrence_date=when,
        date=when,
        account_id=definition.account_id,
        type=definition.type,
        amount_cents=definition.amount_cents,
        description=definition.description,
        category_id=definition.category_id,
    )


def from_exception(definition: FixedCashflow, row: Transaction) -> Occurrence:
    return Occurrence(
        fixed_cashflow_id=definition.id,
        recurrence_group_id=definition.recurrence_group_id,
        occurrence_date=row.exception_for_date,
        date=row.date,
        account_id=row.account_id,
        type=row.type,
        amount_cents=row.amount_cents,
        description=row.description,
        category_id=row.category_id,
        paid=row.paid,
        transaction_id=row.id,
    )


def index_exceptions(
    group_id: str, exceptions: Iterable[Transaction]
) -> dict[date, Transaction]:
    indexed: dict[date, Transaction] = {}
    for row in exceptions:
        if row.recurrence_group_id != group_id or row.exception_for_date is None:
            continue
        if row.exception_for_date in indexed:
            raise AmbiguousOccurrence(
                f"More than one exception for {group_id} on {row.exception_for_date}"
            )
        indexed[row.exception_for_date] = row
    return indexed


class OccurrenceSequence:
    """Occurrences of ``definition`` dated within [start, end].

    Iterating starts over every time, so the sequence can be consumed more
    than once. Exceptions replace the template projection for their date and
    skipped exceptions drop it. An exception that moved its occurrence to
    another date is listed under that date, not under its template month.
    """

    def __init__(
        self,
        definition: FixedCashflow,
        start: date,
        end: date,
        exceptions: Iterable[Transaction] = (),
    ) -> None:
        if start > end:
            raise ValueError("Start date must be before end date")
        self.definition = definition
        self.start = start
        self.end = end
        self.exceptions = index_exceptions(definition.recurrence_group_id, exceptions)

    def _in_window(self, when: date) -> bool:
        return self.start <= when <= self.end

    def __iter__(self) -> Iterator[Occurrence]:
        found: list[Occurrence] = []
        seen: set[date] = set()
        for month in active_months(self.definition, self.start, self.end):
            when = occurrence_date(self.definition, month)
            seen.add(when)
            row = self.exceptions.get(when)
            if row is None:
                if self._in_window(when):
                    found.append(project(self.definition, month))
            elif not row.skipped and self._in_window(row.date):
                found.append(from_exception(self.definition, row))
        # rows moved in from template months outside the window
        for when, row in self.exceptions.items():
            if when in seen or row.skipped or not self._in_window(row.date):
                continue
            if is_active(self.definition, MonthKey.of(when)):
                found.append(from_exception(self.definition, row))
        found.sort(key=lambda occ: (occ.date, occ.occurrence_date))
        return iter(found)


def materialize(
    definition: FixedCashflow,
    start: date,
    end: date,
    exceptions: Iterable[Transaction] = (),
) -> OccurrenceSequence:
    return OccurrenceSequence(definition, start, end, exceptions)


class RecurrenceEngine:
    def __init__(self, session: Session) -> None:
        self.session = session

    def exceptions_for(
        self, definition: FixedCashflow, start: date, end: date
    ) -> list[Transaction]:
        """Rows whose template date or actual date falls in [start, end]."""
        stmt = select(Transaction).where(
            Transaction.recurrence_group_id == definition.recurrence_group_id,
            Transaction.exception_for_date.isnot(None),
            or_(
                Transaction.exception_for_date.between(start, end),
                Transaction.date.between(start, end),
            ),
        )
        return list(self.session.scalars(stmt).all())

    def occurrences(
        self, definition: FixedCashflow, start: date, end: date
    ) -> OccurrenceSequence:
        return materialize(
            definition, start, end, self.exceptions_for(definition, start, end)
        )

    def occurrence_for_month(
        self, definition: FixedCashflow, month: MonthKey
    ) -> Optional[Occurrence]:
        """The occurrence belonging to ``month``, wherever its date was moved."""
        if not is_active(definition, month):
            return None
        when = occurrence_date(definition, month)
        row = index_exceptions(
            definition.recurrence_group_id, self.exceptions_for(definition, when, when)
        ).get(when)
        if row is None:
            return project(definition, month)
        return None if row.skipped else from_exception(definition, row)

    def promote(
        self, definition: FixedCashflow, when: date, *, paid: bool = False
    ) -> Transaction:
        """Persist the occurrence on ``when`` as a row; returns the existing row if any."""
        existing = index_exceptions(
            definition.recurrence_group_id, self.exceptions_for(definition, when, when)
        ).get(when)
        if existing is not None:
            return existing
        txn = Transaction(
            account_id=definition.account_id,
            type=definition.type,
            launch_type=LaunchType.normal,
            amount_cents=definition.amount_cents,
            date=when,
            description=definition.description,
            category_id=definition.category_id,
            paid=paid,
            recurrence_group_id=definition.recurrence_group_id,
            exception_for_date=when,
            skipped=False,
        )
        self.session.add(txn)
        self.session.flush()
        return txn

    def process_month(self, account_id: int, month: MonthKey) -> int:
        stmt = (
            select(FixedCashflow)
            .where(FixedCashflow.account_id == account_id)
            .order_by(FixedCashflow.id)
        )
        definitions = self.session.scalars(stmt).all()
        count = 0
        for definition in definitions:
            if not is_active(definition, month):
                continue
            when = occurrence_date(definition, month)
            existing = index_exceptions(
                definition.recurrence_group_id,
                self.exceptions_for(definition, when, when),
            ).get(when)
            if existing is not None:
                continue
            self.promote(definition, when)
            count += 1
        logger.info(
            f"recurrence_process: account={account_id} month={month} promoted={count}"
        )
        return count
