from datetime import date

import pytest

from errors import GroupNotFound, InconsistentGroupState
from models import FixedCashflow, Transaction, TransactionType
from periods import MonthKey
from scopes import (
    AmountPolicy,
    EditScope,
    InstallmentMember,
    RecurrenceException,
    RecurrenceOccurrence,
    StandaloneTransaction,
    classify,
    effective_scope,
    plan_installment_delete,
    plan_installment_update,
    plan_recurrence_delete,
    plan_recurrence_update,
    recurrence_target_for,
    select_installments,
)


def _members(count: int = 4, amount: int = 2500) -> list[Transaction]:
    return [
        Transaction(
            id=k,
            account_id=1,
            type=TransactionType.expense,
            amount_cents=amount,
            date=date(2024, k, 10),
            description="Laptop",
            paid=False,
            installments_group_id="grp",
            current_installment=k,
            installments=count,
            skipped=False,
        )
        for k in range(1, count + 1)
    ]


def _definition() -> FixedCashflow:
    return FixedCashflow(
        id=1,
        account_id=1,
        description="Gym",
        amount_cents=5000,
        type=TransactionType.expense,
        category_id=None,
        due_day=31,
        start_month=date(2024, 1, 1),
        end_month=None,
        recurrence_group_id="g1",
    )


def _exception(row_id: int, when: date, **fields) -> Transaction:
    values = dict(
        id=row_id,
        account_id=1,
        type=TransactionType.expense,
        amount_cents=5000,
        date=when,
        description="Gym",
        category_id=None,
        paid=False,
        recurrence_group_id="g1",
        exception_for_date=when,
        skipped=False,
    )
    values.update(fields)
    return Transaction(**values)


def _amounts(plan) -> dict[int, int]:
    return {
        u.transaction_id: u.fields["amount_cents"]
        for u in plan.updates
        if "amount_cents" in u.fields
    }


def test_classify_variants():
    members = _members()
    assert isinstance(classify(members[0]), InstallmentMember)
    assert isinstance(classify(_exception(9, date(2024, 2, 29))), RecurrenceException)
    plain = Transaction(id=5, account_id=1, amount_cents=100, description="x")
    target = classify(plain)
    assert isinstance(target, StandaloneTransaction)
    assert effective_scope(target, EditScope.all) == EditScope.single
    assert effective_scope(target, EditScope.future) == EditScope.single


def test_scope_selection_partitions_group():
    members = _members(6)
    everyone = {m.id for m in members}
    for member in members:
        target = InstallmentMember(member)
        single = {m.id for m in select_installments(members, target, EditScope.single)}
        future = {m.id for m in select_installments(members, target, EditScope.future)}
        every = {m.id for m in select_installments(members, target, EditScope.all)}
        assert single == {member.id}
        assert single <= future
        assert every == everyone
        assert future | (every - future) == everyone
        assert not future & (every - future)
        assert future == {m.id for m in members if m.current_installment >= member.current_installment}


def test_future_amount_change_rejected_when_strict():
    members = _members()
    with pytest.raises(InconsistentGroupState):
        plan_installment_update(
            InstallmentMember(members[1]),
            EditScope.future,
            {"amount_cents": 4000},
            members,
        )


def test_future_amount_change_with_retotal():
    members = _members()
    plan = plan_installment_update(
        InstallmentMember(members[1]),
        EditScope.future,
        {"amount_cents": 4000},
        members,
        amount_policy=AmountPolicy.retotal,
    )
    assert _amounts(plan) == {2: 4000, 3: 4000, 4: 4000}
    assert plan.expected_group_total == 2500 + 12000


def test_future_explicit_total_resplits():
    members = _members()
    plan = plan_installment_update(
        InstallmentMember(members[1]),
        EditScope.future,
        {"description": "Laptop (refurb)"},
        members,
        total_amount_cents=10000,
    )
    assert _amounts(plan) == {2: 3334, 3: 3333, 4: 3333}
    assert all(u.fields["description"] == "Laptop (refurb)" for u in plan.updates)
    assert plan.expected_group_total == 12500


def test_future_same_amount_is_consistent():
    members = _members()
    plan = plan_installment_update(
        InstallmentMember(members[2]),
        EditScope.future,
        {"amount_cents": 2500, "paid": True},
        members,
    )
    assert sorted(u.transaction_id for u in plan.updates) == [3, 4]
    assert plan.expected_group_total == 10000


def test_all_scope_treats_amount_as_per_installment():
    members = _members()
    plan = plan_installment_update(
        InstallmentMember(members[0]), EditScope.all, {"amount_cents": 3000}, members
    )
    assert _amounts(plan) == {1: 3000, 2: 3000, 3: 3000, 4: 3000}
    assert plan.expected_group_total == 12000


def test_all_scope_redates_whole_group():
    members = _members()
    plan = plan_installment_update(
        InstallmentMember(members[1]),
        EditScope.all,
        {"date": date(2024, 2, 20)},
        members,
    )
    dates = {u.transaction_id: u.fields["date"] for u in plan.updates}
    assert dates == {
        1: date(2024, 1, 20),
        2: date(2024, 2, 20),
        3: date(2024, 3, 20),
        4: date(2024, 4, 20),
    }


def test_single_update_touches_only_target():
    members = _members()
    plan = plan_installment_update(
        InstallmentMember(members[2]), EditScope.single, {"paid": True}, members
    )
    assert [(u.transaction_id, u.fields) for u in plan.updates] == [(3, {"paid": True})]
    assert plan.expected_group_total is None


def test_installment_delete_future():
    members = _members()
    plan = plan_installment_delete(InstallmentMember(members[2]), EditScope.future, members)
    assert sorted(plan.deletes) == [3, 4]


def test_empty_group_is_not_found():
    member = _members()[0]
    with pytest.raises(GroupNotFound):
        plan_installment_delete(InstallmentMember(member), EditScope.all, [])


def test_single_recurrence_edit_writes_exception():
    target = RecurrenceOccurrence(_definition(), date(2024, 3, 31))
    plan = plan_recurrence_update(target, EditScope.single, {"amount_cents": 7000})
    [write] = plan.exceptions
    assert write.group_id == "g1"
    assert write.occurrence_date == date(2024, 3, 31)
    assert write.fields == {"amount_cents": 7000}
    assert not write.skipped
    assert plan.template_id is None


def test_all_recurrence_edit_prunes_redundant_exceptions():
    definition = _definition()
    matching = _exception(20, date(2024, 2, 29), amount_cents=6000)
    paid = _exception(21, date(2024, 3, 31), amount_cents=5500, paid=True)
    tombstone = _exception(22, date(2024, 4, 30), skipped=True)
    plan = plan_recurrence_update(
        RecurrenceOccurrence(definition, date(2024, 5, 31)),
        EditScope.all,
        {"amount_cents": 6000},
        [matching, paid, tombstone],
    )
    assert plan.template_fields == {"amount_cents": 6000}
    assert plan.deletes == [20]
    assert [(u.transaction_id, u.fields) for u in plan.updates] == [
        (21, {"amount_cents": 6000})
    ]


def test_due_day_change_rekeys_tombstones():
    definition = _definition()
    tombstone = _exception(22, date(2024, 4, 30), skipped=True)
    plan = plan_recurrence_update(
        RecurrenceOccurrence(definition, date(2024, 5, 31)),
        EditScope.all,
        {"date": date(2024, 5, 10)},
        [tombstone],
    )
    assert plan.template_fields == {"due_day": 10}
    assert [(u.transaction_id, u.fields) for u in plan.updates] == [
        (22, {"date": date(2024, 4, 10), "exception_for_date": date(2024, 4, 10)})
    ]


def test_future_recurrence_edit_splits_definition():
    definition = _definition()
    before = _exception(30, date(2024, 2, 29), amount_cents=4000)
    after = _exception(31, date(2024, 6, 30), amount_cents=4000)
    plan = plan_recurrence_update(
        RecurrenceOccurrence(definition, date(2024, 5, 31)),
        EditScope.future,
        {"amount_cents": 8000},
        [before, after],
    )
    assert plan.split is not None
    assert plan.split.at_month == MonthKey(2024, 5)
    assert plan.split.fields == {"amount_cents": 8000}
    [update] = plan.updates
    assert update.transaction_id == 31
    assert update.fields["recurrence_group_id"] == plan.split.new_group_id
    assert update.fields["amount_cents"] == 8000
    assert plan.template_fields == {}


def test_future_edit_at_first_month_updates_template_in_place():
    plan = plan_recurrence_update(
        RecurrenceOccurrence(_definition(), date(2024, 1, 31)),
        EditScope.future,
        {"description": "Gym+"},
    )
    assert plan.split is None
    assert plan.template_fields == {"description": "Gym+"}


def test_single_recurrence_delete_writes_tombstone():
    plan = plan_recurrence_delete(
        RecurrenceOccurrence(_definition(), date(2024, 3, 31)), EditScope.single
    )
    [write] = plan.exceptions
    assert write.skipped
    assert write.occurrence_date == date(2024, 3, 31)
    assert plan.deletes == []


def test_future_recurrence_delete_truncates():
    rows = [_exception(40, date(2024, 2, 29)), _exception(41, date(2024, 7, 31))]
    plan = plan_recurrence_delete(
        RecurrenceOccurrence(_definition(), date(2024, 6, 30)), EditScope.future, rows
    )
    assert plan.truncate_to == MonthKey(2024, 5)
    assert plan.deletes == [41]
    assert not plan.delete_template


def test_all_recurrence_delete_removes_template():
    rows = [_exception(40, date(2024, 2, 29)), _exception(41, date(2024, 7, 31))]
    plan = plan_recurrence_delete(
        RecurrenceOccurrence(_definition(), date(2024, 6, 30)), EditScope.all, rows
    )
    assert plan.delete_template
    assert sorted(plan.deletes) == [40, 41]


def test_target_must_be_an_occurrence():
    definition = _definition()
    assert recurrence_target_for(definition, date(2024, 2, 29)).occurrence_date == date(2024, 2, 29)
    with pytest.raises(GroupNotFound):
        recurrence_target_for(definition, date(2024, 2, 28))
    with pytest.raises(GroupNotFound):
        recurrence_target_for(definition, date(2023, 12, 31))


def test_uniform_field_edit_becomes_group_update():
    members = _members()
    plan = plan_installment_update(
        InstallmentMember(members[1]), EditScope.all, {"description": "Notebook"}, members
    )
    assert plan.updates == []
    assert plan.group_update.group_id == "grp"
    assert plan.group_update.fields == {"description": "Notebook"}
    assert plan.group_update.from_installment is None
    assert plan.updated_ids == [1, 2, 3, 4]
    assert plan.expected_group_total == 10000

    plan = plan_installment_update(
        InstallmentMember(members[2]), EditScope.future, {"paid": True}, members
    )
    assert plan.group_update.from_installment == 3
    assert plan.updated_ids == [3, 4]
    assert plan.touched_ids == {3, 4}


def test_all_recurrence_edit_keeps_rows_matching_old_template():
    definition = _definition()
    promoted = _exception(20, date(2024, 1, 31))
    plan = plan_recurrence_update(
        RecurrenceOccurrence(definition, date(2024, 3, 31)),
        EditScope.all,
        {"description": "Gym+"},
        [promoted],
    )
    assert plan.deletes == []
    assert [(u.transaction_id, u.fields) for u in plan.updates] == [
        (20, {"description": "Gym+"})
    ]


def test_all_recurrence_paid_on_virtual_occurrence_writes_exception():
    plan = plan_recurrence_update(
        RecurrenceOccurrence(_definition(), date(2024, 3, 31)),
        EditScope.all,
        {"description": "Gym+", "paid": True},
    )
    assert plan.template_fields == {"description": "Gym+"}
    [write] = plan.exceptions
    assert write.group_id == "g1"
    assert write.occurrence_date == date(2024, 3, 31)
    assert write.fields == {"paid": True}


def test_future_recurrence_paid_follows_the_split():
    plan = plan_recurrence_update(
        RecurrenceOccurrence(_definition(), date(2024, 3, 31)),
        EditScope.future,
        {"paid": True},
    )
    [write] = plan.exceptions
    assert write.group_id == plan.split.new_group_id
    assert write.fields == {"paid": True}
