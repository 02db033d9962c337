from typing import List

from fastapi import APIRouter, Depends

from groupsettle.api.deps import get_group_service, to_http_exception
from groupsettle.core.exceptions import SettlementEngineError
from groupsettle.schemas.settlement import (
    CancelResponse,
    SettlementResponse,
    SettlementRunResponse,
    to_run_response,
)
from groupsettle.services.group_service import GroupService

router = APIRouter()

@router.post("/{group_id}/settlements", response_model=SettlementResponse)
async def trigger_settlement(
    group_id: str,
    service: GroupService = Depends(get_group_service)
):
    """Plan and execute the settlement of all unsettled expenses"""
    try:
        plan, report = await service.trigger_settlement(group_id)
    except SettlementEngineError as e:
        raise to_http_exception(e)
    return SettlementResponse(plan=plan, report=report)

@router.post("/{group_id}/settlements/cancel", response_model=CancelResponse)
async def cancel_settlement(
    group_id: str,
    service: GroupService = Depends(get_group_service)
):
    return CancelResponse(cancelled=await service.cancel_settlement(group_id))

@router.get("/{group_id}/settlements", response_model=List[SettlementRunResponse])
async def settlement_history(
    group_id: str,
    service: GroupService = Depends(get_group_service)
):
    try:
        runs = await service.settlement_history(group_id)
    except SettlementEngineError as e:
        raise to_http_exception(e)
    return [to_run_response(run) for run in runs]
