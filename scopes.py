"""Blast radius of edits and deletions against grouped transactions.

A target occurrence is one of four variants. Planning is pure: it reads the
target and the group members it is handed and returns an ``EditPlan``
describing the rows to write; the service layer applies the plan inside a
single database transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Optional, Sequence, Union

from errors import GroupNotFound, InconsistentGroupState
from installments import installment_dates, new_group_id, split_amount
from models import FixedCashflow, Transaction
from periods import MonthKey, add_months
from recurrence import DEFAULT_ANCHOR_DAY, is_active, occurrence_date


class EditScope(str, Enum):
    single = "single"
    all = "all"
    future = "future"


class AmountPolicy(str, Enum):
    strict = "strict"
    retotal = "retotal"


ROW_FIELDS = frozenset(
    {"amount_cents", "date", "description", "category_id", "paid", "type", "launch_type"}
)
TEMPLATE_FIELDS = frozenset({"amount_cents", "description", "category_id", "type"})
COMPARED_FIELDS = ("amount_cents", "description", "category_id", "type")


@dataclass(frozen=True)
class StandaloneTransaction:
    row: Transaction


@dataclass(frozen=True)
class InstallmentMember:
    row: Transaction

    @property
    def group_id(self) -> str:
        return self.row.installments_group_id

    @property
    def current(self) -> int:
        return self.row.current_installment or 1


@dataclass(frozen=True)
class RecurrenceOccurrence:
    definition: FixedCashflow
    occurrence_date: date

    @property
    def group_id(self) -> str:
        return self.definition.recurrence_group_id


@dataclass(frozen=True)
class RecurrenceException:
    row: Transaction
    definition: Optional[FixedCashflow]

    @property
    def group_id(self) -> str:
        return self.row.recurrence_group_id

    @property
    def occurrence_date(self) -> date:
        return self.row.exception_for_date


Target = Union[
    StandaloneTransaction, InstallmentMember, RecurrenceOccurrence, RecurrenceException
]


def classify(row: Transaction, definition: Optional[FixedCashflow] = None) -> Target:
    if row.installments_group_id:
        return InstallmentMember(row)
    if row.recurrence_group_id and row.exception_for_date is not None:
        return RecurrenceException(row, definition)
    return StandaloneTransaction(row)


def effective_scope(target: Target, scope: EditScope) -> EditScope:
    if isinstance(target, StandaloneTransaction):
        return EditScope.single
    return scope


@dataclass
class RowUpdate:
    transaction_id: int
    fields: dict[str, Any]


@dataclass
class GroupUpdate:
    """The same fields written to an installment group from one installment on."""

    group_id: str
    fields: dict[str, Any]
    transaction_ids: list[int]
    from_installment: Optional[int] = None


@dataclass
class ExceptionWrite:
    group_id: str
    occurrence_date: date
    fields: dict[str, Any]
    skipped: bool = False


@dataclass
class TemplateSplit:
    fixed_cashflow_id: int
    at_month: MonthKey
    fields: dict[str, Any]
    new_group_id: str


@dataclass
class EditPlan:
    scope: EditScope
    updates: list[RowUpdate] = field(default_factory=list)
    deletes: list[int] = field(default_factory=list)
    exceptions: list[ExceptionWrite] = field(default_factory=list)
    template_id: Optional[int] = None
    template_fields: dict[str, Any] = field(default_factory=dict)
    split: Optional[TemplateSplit] = None
    truncate_to: Optional[MonthKey] = None
    delete_template: bool = False
    group_update: Optional[GroupUpdate] = None
    installments_group_id: Optional[str] = None
    expected_group_total: Optional[int] = None

    @property
    def updated_ids(self) -> list[int]:
        ids = [u.transaction_id for u in self.updates]
        if self.group_update is not None:
            ids.extend(self.group_update.transaction_ids)
        return ids

    @property
    def touched_ids(self) -> set[int]:
        return set(self.updated_ids) | set(self.deletes)


def _clean_changes(changes: dict[str, Any]) -> dict[str, Any]:
    unknown = set(changes) - ROW_FIELDS
    if unknown:
        raise ValueError(f"Unsupported fields: {', '.join(sorted(unknown))}")
    return dict(changes)


def _template_changes(changes: dict[str, Any]) -> dict[str, Any]:
    fields = {k: v for k, v in changes.items() if k in TEMPLATE_FIELDS}
    if "date" in changes:
        fields["due_day"] = changes["date"].day
    return fields


# installments


def select_installments(
    members: Sequence[Transaction], target: InstallmentMember, scope: EditScope
) -> list[Transaction]:
    ordered = sorted(members, key=lambda m: (m.current_installment or 0, m.id or 0))
    if scope == EditScope.single:
        return [m for m in ordered if m.id == target.row.id] or [target.row]
    if scope == EditScope.future:
        return [m for m in ordered if (m.current_installment or 0) >= target.current]
    return ordered


def _installment_redates(
    selected: Sequence[Transaction],
    target: InstallmentMember,
    scope: EditScope,
    new_date: date,
    closing_day: Optional[int],
) -> dict[int, date]:
    total = target.row.installments or 1
    if scope == EditScope.all:
        anchor = add_months(new_date, -(target.current - 1), desired_day=new_date.day)
        dates = installment_dates(anchor, total, closing_day)
        return {m.id: dates[(m.current_installment or 1) - 1] for m in selected}
    remaining = total - target.current + 1
    dates = installment_dates(new_date, remaining, closing_day)
    return {
        m.id: dates[(m.current_installment or 1) - target.current] for m in selected
    }


def plan_installment_update(
    target: InstallmentMember,
    scope: EditScope,
    changes: dict[str, Any],
    members: Sequence[Transaction],
    *,
    amount_policy: AmountPolicy = AmountPolicy.strict,
    total_amount_cents: Optional[int] = None,
    closing_day: Optional[int] = None,
) -> EditPlan:
    changes = _clean_changes(changes)
    if not members:
        raise GroupNotFound(f"Installment group {target.group_id} not found")
    plan = EditPlan(scope=scope, installments_group_id=target.group_id)
    if scope == EditScope.single:
        if total_amount_cents is not None:
            changes["amount_cents"] = total_amount_cents
        plan.updates.append(RowUpdate(target.row.id, changes))
        return plan

    selected = select_installments(members, target, scope)
    selected_ids = {m.id for m in selected}
    untouched_total = sum(m.amount_cents for m in members if m.id not in selected_ids)
    selected_total = sum(m.amount_cents for m in selected)

    amounts: Optional[list[int]] = None
    if total_amount_cents is not None:
        amounts = split_amount(total_amount_cents, len(selected))
    elif "amount_cents" in changes:
        per_installment = changes["amount_cents"]
        new_total = per_installment * len(selected)
        if (
            scope == EditScope.future
            and new_total != selected_total
            and amount_policy == AmountPolicy.strict
        ):
            raise InconsistentGroupState(
                f"Installments {target.current}..{target.row.installments} would total "
                f"{new_total} instead of the remaining balance {selected_total}; "
                "send total_amount_cents or amount_policy=retotal to change it"
            )
        amounts = split_amount(new_total, len(selected))
    changes.pop("amount_cents", None)

    redates: dict[int, date] = {}
    if "date" in changes:
        redates = _installment_redates(
            selected, target, scope, changes.pop("date"), closing_day
        )

    if amounts is None and not redates:
        plan.group_update = GroupUpdate(
            target.group_id,
            changes,
            [m.id for m in selected],
            from_installment=target.current if scope == EditScope.future else None,
        )
    else:
        for idx, member in enumerate(selected):
            fields = dict(changes)
            if amounts is not None:
                fields["amount_cents"] = amounts[idx]
            if member.id in redates:
                fields["date"] = redates[member.id]
            plan.updates.append(RowUpdate(member.id, fields))

    new_selected_total = sum(amounts) if amounts is not None else selected_total
    plan.expected_group_total = untouched_total + new_selected_total
    return plan


def plan_installment_delete(
    target: InstallmentMember, scope: EditScope, members: Sequence[Transaction]
) -> EditPlan:
    if not members:
        raise GroupNotFound(f"Installment group {target.group_id} not found")
    plan = EditPlan(scope=scope, installments_group_id=target.group_id)
    plan.deletes = [m.id for m in select_installments(members, target, scope)]
    return plan


# recurrences


def _occurrence_day(month: MonthKey, due_day: Optional[int]) -> date:
    return month.day(due_day if due_day else DEFAULT_ANCHOR_DAY)


def _diverged(row: Transaction, definition: FixedCashflow) -> bool:
    """Whether ``row`` differed from the template before this edit.

    Rows that still match it (promoted by ``process_month``, say) are real
    postings and keep their ids.
    """
    if any(getattr(row, name) != getattr(definition, name) for name in COMPARED_FIELDS):
        return True
    expected = _occurrence_day(MonthKey.of(row.exception_for_date), definition.due_day)
    return row.date != expected


def _is_redundant(
    row: Transaction,
    fields: dict[str, Any],
    definition: FixedCashflow,
    template_fields: dict[str, Any],
) -> bool:
    if row.skipped or fields.get("paid", row.paid):
        return False
    for name in COMPARED_FIELDS:
        expected = template_fields.get(name, getattr(definition, name))
        if fields.get(name, getattr(row, name)) != expected:
            return False
    due_day = template_fields.get("due_day", definition.due_day)
    expected_date = _occurrence_day(MonthKey.of(row.exception_for_date), due_day)
    return fields.get("date", row.date) == expected_date


def _exception_updates(
    plan: EditPlan,
    definition: FixedCashflow,
    rows: Sequence[Transaction],
    changes: dict[str, Any],
    template_fields: dict[str, Any],
    *,
    extra: Optional[dict[str, Any]] = None,
    prune: bool = True,
) -> None:
    """Carry template-level changes onto the group's persisted rows.

    ``paid`` and ``date`` stay per occurrence. A new due day re-keys every
    row, tombstones included, so each keeps matching its month.
    """
    row_changes = {k: v for k, v in changes.items() if k not in {"date", "paid"}}
    for row in rows:
        fields: dict[str, Any] = {} if row.skipped else dict(row_changes)
        if "due_day" in template_fields:
            moved = _occurrence_day(
                MonthKey.of(row.exception_for_date), template_fields["due_day"]
            )
            fields["date"] = moved
            fields["exception_for_date"] = moved
        if extra:
            fields.update(extra)
        if (
            prune
            and _diverged(row, definition)
            and _is_redundant(row, fields, definition, template_fields)
        ):
            plan.deletes.append(row.id)
            continue
        if fields:
            plan.updates.append(RowUpdate(row.id, fields))


def _set_field(plan: EditPlan, transaction_id: int, name: str, value: Any) -> None:
    for update in plan.updates:
        if update.transaction_id == transaction_id:
            update.fields[name] = value
            return
    if transaction_id in plan.deletes:
        plan.deletes.remove(transaction_id)
    plan.updates.append(RowUpdate(transaction_id, {name: value}))


def plan_recurrence_update(
    target: Union[RecurrenceOccurrence, RecurrenceException],
    scope: EditScope,
    changes: dict[str, Any],
    exceptions: Sequence[Transaction] = (),
) -> EditPlan:
    """``exceptions`` are the group's persisted rows (any date)."""
    changes = _clean_changes(changes)
    definition = target.definition
    if scope == EditScope.single:
        plan = EditPlan(scope=scope)
        if isinstance(target, RecurrenceException):
            plan.updates.append(RowUpdate(target.row.id, changes))
        else:
            plan.exceptions.append(
                ExceptionWrite(target.group_id, target.occurrence_date, changes)
            )
        return plan
    if definition is None:
        raise GroupNotFound(f"Recurrence group {target.group_id} not found")

    template_fields = _template_changes(changes)
    plan = EditPlan(scope=scope, template_id=definition.id)
    target_month = MonthKey.of(target.occurrence_date)
    rows = list(exceptions)
    if scope == EditScope.future:
        rows = [r for r in rows if r.exception_for_date >= target.occurrence_date]

    if scope == EditScope.all or target_month <= MonthKey.of(definition.start_month):
        plan.template_fields = template_fields
        _exception_updates(plan, definition, rows, changes, template_fields)
    else:
        group_id = new_group_id()
        plan.split = TemplateSplit(definition.id, target_month, template_fields, group_id)
        _exception_updates(
            plan,
            definition,
            rows,
            changes,
            template_fields,
            extra={"recurrence_group_id": group_id},
            prune=False,
        )
    if "paid" in changes:
        if isinstance(target, RecurrenceException):
            _set_field(plan, target.row.id, "paid", changes["paid"])
        else:
            # a virtual occurrence becomes a row carrying the new template values
            group_id = plan.split.new_group_id if plan.split else target.group_id
            due_day = template_fields.get("due_day", definition.due_day)
            plan.exceptions.append(
                ExceptionWrite(
                    group_id,
                    _occurrence_day(target_month, due_day),
                    {"paid": changes["paid"]},
                )
            )
    return plan


def plan_recurrence_delete(
    target: Union[RecurrenceOccurrence, RecurrenceException],
    scope: EditScope,
    exceptions: Sequence[Transaction] = (),
) -> EditPlan:
    definition = target.definition
    if scope == EditScope.single:
        plan = EditPlan(scope=scope)
        if definition is None and isinstance(target, RecurrenceException):
            plan.deletes.append(target.row.id)
            return plan
        plan.exceptions.append(
            ExceptionWrite(target.group_id, target.occurrence_date, {}, skipped=True)
        )
        return plan
    if definition is None:
        raise GroupNotFound(f"Recurrence group {target.group_id} not found")

    plan = EditPlan(scope=scope, template_id=definition.id)
    target_month = MonthKey.of(target.occurrence_date)
    rows = list(exceptions)
    if scope == EditScope.future:
        rows = [r for r in rows if r.exception_for_date >= target.occurrence_date]
    if scope == EditScope.all or target_month <= MonthKey.of(definition.start_month):
        plan.delete_template = True
    else:
        plan.truncate_to = target_month.shift(-1)
    plan.deletes = [r.id for r in rows]
    return plan


def recurrence_target_for(
    definition: FixedCashflow, when: date
) -> RecurrenceOccurrence:
    month = MonthKey.of(when)
    if not is_active(definition, month) or occurrence_date(definition, month) != when:
        raise GroupNotFound(
            f"{when} is not an occurrence of fixed cash flow {definition.id}"
        )
    return RecurrenceOccurrence(definition, when)
