"""Tests for the ledger, group and transfer repositories."""
import pytest
from pymongo.errors import DuplicateKeyError

from groupsettle.core.exceptions import GroupNotActive, InvalidAmount
from groupsettle.models.expense import ExpenseKind
from groupsettle.models.group import Group, GroupState, Member
from groupsettle.models.settlement import (
    SettlementTransaction,
    TransactionState,
    snapshot_plan_id,
    transaction_key,
)
from groupsettle.repositories.expense_repo import ExpenseRepository
from groupsettle.repositories.group_repo import GroupRepository
from groupsettle.repositories.transfer_repo import TransferRepository


@pytest.fixture
def stored_group():
    return Group(name="Flat", admin="A", members=[Member(member_id=m) for m in ["A", "B", "C"]])


@pytest.mark.asyncio
class TestExpenseRepository:
    """Test the append-only expense log."""

    async def test_add_expense_persists_shares(self, test_db, stored_group):
        repo = ExpenseRepository(test_db)

        expense = await repo.add_expense(stored_group, "A", 10, "milk", ["A", "B", "C"])

        stored = await repo.get_expense(stored_group.id, str(expense.id))
        assert stored is not None
        assert [s.amount for s in stored.shares] == [4, 3, 3]
        assert stored.kind == ExpenseKind.EXPENSE
        assert stored.settled is False

    async def test_closed_group_rejected(self, test_db, stored_group):
        stored_group.state = GroupState.CLOSED

        with pytest.raises(GroupNotActive):
            await ExpenseRepository(test_db).add_expense(stored_group, "A", 10, "", ["A"])

    async def test_unsettled_in_insertion_order(self, test_db, stored_group):
        repo = ExpenseRepository(test_db)
        first = await repo.add_expense(stored_group, "A", 10, "one", ["A", "B"])
        second = await repo.add_expense(stored_group, "B", 20, "two", ["A", "B"])
        third = await repo.add_expense(stored_group, "C", 30, "three", ["B", "C"])

        await repo.mark_settled([str(second.id)])

        unsettled = await repo.unsettled_expenses(stored_group.id)
        assert [e.id for e in unsettled] == [first.id, third.id]
        assert len(await repo.list_expenses(stored_group.id)) == 3
        assert len(await repo.list_expenses(stored_group.id, include_settled=False)) == 2

    async def test_mark_settled_is_idempotent(self, test_db, stored_group):
        repo = ExpenseRepository(test_db)
        expense = await repo.add_expense(stored_group, "A", 10, "", ["A", "B"])

        assert await repo.mark_settled([str(expense.id)], "plan-1") == 1
        assert await repo.mark_settled([str(expense.id)], "plan-2") == 0
        assert await repo.mark_settled([]) == 0

        stored = await repo.get_expense(stored_group.id, str(expense.id))
        assert stored.settled is True
        assert stored.settled_at is not None
        assert stored.settlement_plan_id == "plan-1"

    async def test_expenses_are_scoped_to_group(self, test_db, stored_group):
        repo = ExpenseRepository(test_db)
        other = Group(name="Other", admin="A", members=[Member(member_id="A")])
        expense = await repo.add_expense(stored_group, "A", 10, "", ["A"])

        assert await repo.get_expense(other.id, str(expense.id)) is None
        assert await repo.get_expense(stored_group.id, "bogus") is None
        assert await repo.has_expenses(stored_group.id) is True
        assert await repo.has_expenses(other.id) is False

    async def test_append_adjustment(self, test_db, stored_group):
        repo = ExpenseRepository(test_db)

        adjustment = await repo.append_adjustment(stored_group.id, "B", "A", 10, "plan-1")

        assert adjustment.kind == ExpenseKind.SETTLEMENT_ADJUSTMENT
        assert adjustment.split_among == ["A"]
        assert [(s.member_id, s.amount) for s in adjustment.shares] == [("A", 10)]
        with pytest.raises(InvalidAmount):
            await repo.append_adjustment(stored_group.id, "B", "A", 0, "plan-1")


@pytest.mark.asyncio
class TestGroupRepository:
    async def test_transition_state_is_compare_and_set(self, test_db, stored_group):
        repo = GroupRepository(test_db)
        await repo.create_group(stored_group)

        settling = await repo.transition_state(
            stored_group.id, [GroupState.ACTIVE, GroupState.SETTLED], GroupState.SETTLING
        )
        again = await repo.transition_state(
            stored_group.id, [GroupState.ACTIVE, GroupState.SETTLED], GroupState.SETTLING
        )

        assert settling.state == GroupState.SETTLING
        assert again is None

    async def test_closing_sets_archived_at(self, test_db, stored_group):
        repo = GroupRepository(test_db)
        await repo.create_group(stored_group)

        closed = await repo.transition_state(stored_group.id, [GroupState.ACTIVE], GroupState.CLOSED)

        assert closed.archived_at is not None

    async def test_list_groups_for_member(self, test_db, stored_group):
        repo = GroupRepository(test_db)
        await repo.create_group(stored_group)

        assert [g.id for g in await repo.list_groups_for_member("B")] == [stored_group.id]
        assert await repo.list_groups_for_member("Z") == []


@pytest.mark.asyncio
class TestTransferRepository:
    def txn(self, state):
        return SettlementTransaction(
            key=transaction_key("p1", "B", "A", 10),
            from_member="B",
            to_member="A",
            amount=10,
            state=state,
            attempts=1,
        )

    async def test_confirmed_record_is_never_downgraded(self, test_db):
        repo = TransferRepository(test_db)
        confirmed = self.txn(TransactionState.CONFIRMED)

        await repo.record_outcome("g1", "p1", confirmed)
        await repo.record_outcome("g1", "p1", self.txn(TransactionState.FAILED))

        assert list(await repo.confirmed_transfers([confirmed.key])) == [confirmed.key]
        assert await test_db["settlement_transfers"].count_documents({}) == 1

    async def test_failed_record_can_be_confirmed_later(self, test_db):
        repo = TransferRepository(test_db)
        failed = self.txn(TransactionState.FAILED)

        await repo.record_outcome("g1", "p1", failed)
        assert await repo.confirmed_transfers([failed.key]) == {}

        await repo.record_outcome("g1", "p1", self.txn(TransactionState.CONFIRMED))
        assert failed.key in await repo.confirmed_transfers([failed.key])

    async def test_key_is_unique(self, test_db):
        await test_db["settlement_transfers"].insert_one({"key": "k1"})

        with pytest.raises(DuplicateKeyError):
            await test_db["settlement_transfers"].insert_one({"key": "k1"})


class TestSettlementKeys:
    def test_plan_id_ignores_expense_order(self):
        assert snapshot_plan_id("g1", ["e2", "e1"]) == snapshot_plan_id("g1", ["e1", "e2"])
        assert snapshot_plan_id("g1", ["e1"]) != snapshot_plan_id("g2", ["e1"])

    def test_transaction_key_depends_on_every_field(self):
        base = transaction_key("p1", "B", "A", 10)

        assert base == transaction_key("p1", "B", "A", 10)
        assert base != transaction_key("p2", "B", "A", 10)
        assert base != transaction_key("p1", "A", "B", 10)
        assert base != transaction_key("p1", "B", "A", 11)
