"""
TransferRepository - settlement transfer outcomes and run history.

settlement_transfers holds one document per transaction key. A key that
reached CONFIRMED is never submitted to the payment rail again.
settlement_runs is an audit trail; balances never read from it.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from groupsettle.models.settlement import (
    SettlementRun,
    SettlementTransaction,
    TransactionState,
)


class TransferRepository:
    """Repository for settlement transfers and runs."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["settlement_transfers"]
        self.runs = db["settlement_runs"]

    async def confirmed_transfers(self, keys: Iterable[str]) -> Dict[str, dict]:
        """Transfers among keys that are already CONFIRMED, by key."""
        keys = list(keys)
        if not keys:
            return {}
        docs = await self.collection.find({
            "key": {"$in": keys},
            "state": TransactionState.CONFIRMED.value
        }).to_list(None)
        return {doc["key"]: doc for doc in docs}

    async def get_transfer(self, key: str) -> dict | None:
        return await self.collection.find_one({"key": key})

    async def record_outcome(
        self,
        group_id: Optional[str],
        plan_id: str,
        txn: SettlementTransaction,
    ) -> None:
        """
        Upsert the final outcome of a transaction.

        A CONFIRMED record is never downgraded.
        """
        existing = await self.get_transfer(txn.key)
        if existing and existing.get("state") == TransactionState.CONFIRMED.value:
            return

        now = datetime.now(timezone.utc)
        await self.collection.update_one(
            {"key": txn.key},
            {
                "$set": {
                    "group_id": group_id,
                    "plan_id": plan_id,
                    "from_member": txn.from_member,
                    "to_member": txn.to_member,
                    "amount": txn.amount,
                    "state": txn.state,
                    "attempts": txn.attempts,
                    "reference": txn.reference,
                    "reason": txn.reason,
                    "updated_at": now
                },
                "$setOnInsert": {"created_at": now}
            },
            upsert=True
        )

    async def save_run(self, run: SettlementRun, session=None) -> SettlementRun:
        await self.runs.insert_one(run.to_document(), session=session)
        return run

    async def list_runs(self, group_id: ObjectId, limit: int = 50) -> List[SettlementRun]:
        cursor = self.runs.find({"group_id": group_id}).sort("started_at", -1).limit(limit)
        return [SettlementRun(**doc) for doc in await cursor.to_list(None)]
