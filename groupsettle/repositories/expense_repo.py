"""
ExpenseRepository - the Ledger Store.

Append-only log of group expenses; the single source of truth for
"who owes whom". Balances are never stored, they are recomputed from
the unsettled expenses by the balance calculator.

Write path:
1. Validate the request against the group (state, members, treasury)
2. Compute equal shares in integer minor units
3. Insert one immutable expense document
The only update ever applied is the settled flag and its timestamp.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from groupsettle.core.exceptions import (
    DuplicateSplitMember,
    EmptySplit,
    GroupNotActive,
    InvalidAmount,
    SpenderNotAllowed,
    SpendingLimitExceeded,
    UnknownMember,
)
from groupsettle.models.expense import Expense, ExpenseKind, Share
from groupsettle.models.group import Group, GroupState
from groupsettle.utils.splits import equal_shares

logger = logging.getLogger(__name__)


class ExpenseRepository:
    """Repository for group expenses."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["expenses"]

    async def add_expense(
        self,
        group: Group,
        payer: str,
        amount: int,
        description: str,
        split_among: List[str],
    ) -> Expense:
        """
        Append a new expense to the group's ledger.

        Raises GroupNotActive, InvalidAmount, EmptySplit, UnknownMember,
        DuplicateSplitMember, SpenderNotAllowed or SpendingLimitExceeded
        before anything is written.
        """
        self._validate_expense(group, payer, amount, split_among)

        expense = Expense(
            group_id=group.id,
            payer=payer,
            amount=amount,
            description=description,
            split_among=list(split_among),
            shares=equal_shares(amount, split_among),
        )
        await self.collection.insert_one(expense.to_document())

        logger.info(
            "Expense %s added to group %s: %s paid %d split %d ways",
            expense.id, group.id, payer, amount, len(split_among)
        )
        return expense

    async def append_adjustment(
        self,
        group_id: ObjectId,
        payer: str,
        counterparty: str,
        amount: int,
        plan_id: str,
        session=None,
    ) -> Expense:
        """
        Record a settlement carry-forward: payer is credited, counterparty debited.

        Only called by the settlement run while it holds the group's
        exclusive section, so no state check is made here.
        """
        if amount <= 0:
            raise InvalidAmount(f"Adjustment amount must be positive, got {amount}")

        expense = Expense(
            group_id=group_id,
            payer=payer,
            amount=amount,
            description=f"Settlement carry-forward ({plan_id})",
            split_among=[counterparty],
            shares=[Share(member_id=counterparty, amount=amount)],
            kind=ExpenseKind.SETTLEMENT_ADJUSTMENT,
        )
        await self.collection.insert_one(expense.to_document(), session=session)
        return expense

    async def unsettled_expenses(self, group_id: ObjectId) -> List[Expense]:
        """All expenses of a group that are not settled yet."""
        cursor = self.collection.find({
            "group_id": group_id,
            "settled": False
        }).sort([("created_at", 1), ("_id", 1)])
        docs = await cursor.to_list(None)
        return [Expense(**doc) for doc in docs]

    async def list_expenses(self, group_id: ObjectId, include_settled: bool = True) -> List[Expense]:
        query = {"group_id": group_id}
        if not include_settled:
            query["settled"] = False
        docs = await self.collection.find(query).sort([("created_at", 1), ("_id", 1)]).to_list(None)
        return [Expense(**doc) for doc in docs]

    async def get_expense(self, group_id: ObjectId, expense_id: str) -> Optional[Expense]:
        if not ObjectId.is_valid(expense_id):
            return None
        doc = await self.collection.find_one({"group_id": group_id, "_id": ObjectId(expense_id)})
        if doc:
            return Expense(**doc)
        return None

    async def has_expenses(self, group_id: ObjectId) -> bool:
        doc = await self.collection.find_one({"group_id": group_id})
        return doc is not None

    async def mark_settled(
        self,
        expense_ids: Iterable[ObjectId],
        plan_id: Optional[str] = None,
        session=None,
    ) -> int:
        """
        Mark expenses as settled.

        Idempotent: already-settled expenses are left untouched.
        Returns the number of expenses that changed.
        """
        ids = [ObjectId(eid) for eid in expense_ids]
        if not ids:
            return 0

        now = datetime.now(timezone.utc)
        result = await self.collection.update_many(
            {"_id": {"$in": ids}, "settled": False},
            {"$set": {
                "settled": True,
                "settled_at": now,
                "settlement_plan_id": plan_id,
                "updated_at": now
            }},
            session=session
        )
        return result.modified_count

    # ===== PRIVATE HELPERS =====

    def _validate_expense(self, group: Group, payer: str, amount: int, split_among: List[str]) -> None:
        if group.state not in (GroupState.ACTIVE, GroupState.SETTLED):
            raise GroupNotActive(f"Group {group.id} is {group.state}, expenses cannot be added")

        # bool is an int subclass; floats are never accepted as money
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount(f"Amount must be a positive integer in minor units, got {amount!r}")

        if not split_among:
            raise EmptySplit("Expense must be split among at least one member")

        for member_id in [payer, *split_among]:
            if not group.has_member(member_id):
                raise UnknownMember(member_id, str(group.id))

        if len(set(split_among)) != len(split_among):
            raise DuplicateSplitMember("A member may appear only once in a split")

        treasury = group.treasury
        if treasury.allowed_spenders and payer not in treasury.allowed_spenders:
            raise SpenderNotAllowed(f"{payer} is not allowed to record expenses for this group")

        if treasury.spending_limit is not None and amount > treasury.spending_limit:
            raise SpendingLimitExceeded(
                f"Amount {amount} exceeds the group spending limit of {treasury.spending_limit}"
            )
