from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from groupsettle.models.group import Group, GroupState, Member, TreasuryConfig


class GroupRepository:
    """Group database operations."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db["groups"]

    async def create_group(self, group: Group) -> Group:
        """Insert a new group document."""
        await self.collection.insert_one(group.to_document())
        return group

    async def get_group(self, group_id: str | ObjectId) -> Optional[Group]:
        """Get a group by id."""
        if not ObjectId.is_valid(group_id):
            return None
        doc = await self.collection.find_one({"_id": ObjectId(group_id)})
        if doc:
            return Group(**doc)
        return None

    async def list_groups_for_member(self, member_id: str) -> List[Group]:
        cursor = self.collection.find({"members.member_id": member_id}).sort("created_at", -1)
        return [Group(**doc) for doc in await cursor.to_list(None)]

    async def transition_state(
        self,
        group_id: ObjectId,
        expected: List[GroupState],
        new_state: GroupState,
        session=None,
    ) -> Optional[Group]:
        """
        Compare-and-set the lifecycle state.

        Returns the updated group, or None when the group was not in one
        of the expected states.
        """
        now = datetime.now(timezone.utc)
        updates = {"state": new_state.value, "updated_at": now}
        if new_state == GroupState.CLOSED:
            updates["archived_at"] = now

        result = await self.collection.find_one_and_update(
            {"_id": group_id, "state": {"$in": [s.value for s in expected]}},
            {"$set": updates},
            return_document=True,
            session=session
        )
        if result:
            return Group(**result)
        return None

    async def save_members(self, group_id: ObjectId, members: List[Member]) -> Optional[Group]:
        """Replace the member list (used for appends and cached addresses)."""
        result = await self.collection.find_one_and_update(
            {"_id": group_id},
            {"$set": {
                "members": [m.model_dump() for m in members],
                "updated_at": datetime.now(timezone.utc)
            }},
            return_document=True
        )
        if result:
            return Group(**result)
        return None

    async def update_treasury(self, group_id: ObjectId, treasury: TreasuryConfig) -> Optional[Group]:
        result = await self.collection.find_one_and_update(
            {"_id": group_id},
            {"$set": {
                "treasury": treasury.model_dump(),
                "updated_at": datetime.now(timezone.utc)
            }},
            return_document=True
        )
        if result:
            return Group(**result)
        return None

    async def reset_stale_settling(self) -> int:
        """Return groups left in SETTLING by a previous process to ACTIVE."""
        result = await self.collection.update_many(
            {"state": GroupState.SETTLING.value},
            {"$set": {
                "state": GroupState.ACTIVE.value,
                "updated_at": datetime.now(timezone.utc)
            }}
        )
        return result.modified_count
