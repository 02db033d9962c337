from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, StrictInt

from groupsettle.models.group import Group


class TreasurySchema(BaseModel):
    spending_limit: Optional[StrictInt] = Field(None, gt=0)
    allowed_spenders: List[str] = []


class GroupCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    admin: str = Field(..., min_length=1)
    members: List[str] = []
    treasury: Optional[TreasurySchema] = None


class MemberAdd(BaseModel):
    member_id: str = Field(..., min_length=1)


class TreasuryUpdate(TreasurySchema):
    requested_by: str


class ArchiveRequest(BaseModel):
    requested_by: str


class MemberResponse(BaseModel):
    member_id: str
    role: str
    address: Optional[str] = None
    joined_at: datetime


class GroupResponse(BaseModel):
    id: str
    name: str
    admin: str
    state: str
    members: List[MemberResponse]
    treasury: TreasurySchema
    created_at: datetime
    updated_at: datetime
    archived_at: Optional[datetime] = None


def to_group_response(group: Group) -> GroupResponse:
    """Convert Group model to GroupResponse schema."""
    return GroupResponse(
        id=str(group.id),
        name=group.name,
        admin=group.admin,
        state=group.state,
        members=[
            {
                "member_id": m.member_id,
                "role": m.role,
                "address": m.address,
                "joined_at": m.joined_at
            }
            for m in group.members
        ],
        treasury=group.treasury.model_dump(),
        created_at=group.created_at,
        updated_at=group.updated_at,
        archived_at=group.archived_at,
    )
