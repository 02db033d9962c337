"""
Group model - membership and settlement lifecycle.

Lifecycle:
    ACTIVE -> SETTLING -> SETTLED (all transfers confirmed)
                       -> ACTIVE  (partial or cancelled run)
    SETTLED -> ACTIVE on the next expense
    any state except SETTLING -> CLOSED (explicit archival, terminal)
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from groupsettle.models.base import MongoModel, utcnow


class GroupState(str, Enum):
    ACTIVE = "ACTIVE"
    SETTLING = "SETTLING"
    SETTLED = "SETTLED"
    CLOSED = "CLOSED"


class MemberRole(str, Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


# Embedded documents don't need MongoModel (no separate _id)
class Member(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True, validate_assignment=True)

    member_id: str  # stable participant id, e.g. phone number
    role: MemberRole = MemberRole.MEMBER
    address: Optional[str] = None  # payable account, resolved lazily
    joined_at: datetime = Field(default_factory=utcnow)


class TreasuryConfig(BaseModel):
    spending_limit: Optional[int] = None  # max amount of a single expense
    allowed_spenders: List[str] = []  # empty = every member may pay


class Group(MongoModel):
    name: str
    admin: str
    members: List[Member] = []
    state: GroupState = GroupState.ACTIVE
    treasury: TreasuryConfig = Field(default_factory=TreasuryConfig)
    archived_at: Optional[datetime] = None

    def member_ids(self) -> List[str]:
        return [m.member_id for m in self.members]

    def has_member(self, member_id: str) -> bool:
        return any(m.member_id == member_id for m in self.members)

    def get_member(self, member_id: str) -> Optional[Member]:
        for member in self.members:
            if member.member_id == member_id:
                return member
        return None
