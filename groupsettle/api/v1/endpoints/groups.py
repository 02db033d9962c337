from typing import List

from fastapi import APIRouter, Depends, Query, status

from groupsettle.api.deps import get_group_service, to_http_exception
from groupsettle.core.exceptions import SettlementEngineError
from groupsettle.models.group import TreasuryConfig
from groupsettle.schemas.group import (
    ArchiveRequest,
    GroupCreate,
    GroupResponse,
    MemberAdd,
    TreasuryUpdate,
    to_group_response,
)
from groupsettle.services.group_service import GroupService

router = APIRouter()

@router.post("", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
async def create_group(
    group_in: GroupCreate,
    service: GroupService = Depends(get_group_service)
):
    """Create a group; the admin becomes its first member"""
    treasury = TreasuryConfig(**group_in.treasury.model_dump()) if group_in.treasury else None
    try:
        group = await service.create_group(group_in.name, group_in.admin, group_in.members, treasury)
    except SettlementEngineError as e:
        raise to_http_exception(e)
    return to_group_response(group)

@router.get("", response_model=List[GroupResponse])
async def list_groups(
    member_id: str = Query(..., min_length=1),
    service: GroupService = Depends(get_group_service)
):
    """Groups the member belongs to"""
    groups = await service.list_groups(member_id)
    return [to_group_response(g) for g in groups]

@router.get("/{group_id}", response_model=GroupResponse)
async def get_group(
    group_id: str,
    service: GroupService = Depends(get_group_service)
):
    try:
        group = await service.get_group(group_id)
    except SettlementEngineError as e:
        raise to_http_exception(e)
    return to_group_response(group)

@router.post("/{group_id}/members", response_model=GroupResponse)
async def add_member(
    group_id: str,
    member_in: MemberAdd,
    service: GroupService = Depends(get_group_service)
):
    """Add a member (membership is append-only)"""
    try:
        group = await service.add_member(group_id, member_in.member_id)
    except SettlementEngineError as e:
        raise to_http_exception(e)
    return to_group_response(group)

@router.delete("/{group_id}/members/{member_id}", response_model=GroupResponse)
async def remove_member(
    group_id: str,
    member_id: str,
    service: GroupService = Depends(get_group_service)
):
    """Remove a member; only allowed before the first expense"""
    try:
        group = await service.remove_member(group_id, member_id)
    except SettlementEngineError as e:
        raise to_http_exception(e)
    return to_group_response(group)

@router.put("/{group_id}/treasury", response_model=GroupResponse)
async def update_treasury(
    group_id: str,
    treasury_in: TreasuryUpdate,
    service: GroupService = Depends(get_group_service)
):
    treasury = TreasuryConfig(**treasury_in.model_dump(exclude={"requested_by"}))
    try:
        group = await service.update_treasury(group_id, treasury, treasury_in.requested_by)
    except SettlementEngineError as e:
        raise to_http_exception(e)
    return to_group_response(group)

@router.post("/{group_id}/archive", response_model=GroupResponse)
async def archive_group(
    group_id: str,
    archive_in: ArchiveRequest,
    service: GroupService = Depends(get_group_service)
):
    """Close the group for good (admin only)"""
    try:
        group = await service.archive_group(group_id, archive_in.requested_by)
    except SettlementEngineError as e:
        raise to_http_exception(e)
    return to_group_response(group)
