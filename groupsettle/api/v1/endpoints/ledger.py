from typing import List

from fastapi import APIRouter, Depends, Query, status

from groupsettle.api.deps import get_group_service, to_http_exception
from groupsettle.core.exceptions import SettlementEngineError
from groupsettle.schemas.expense import (
    BalancesResponse,
    DebtEdgeResponse,
    ExpenseCreate,
    ExpenseResponse,
    to_expense_response,
)
from groupsettle.services.group_service import GroupService

router = APIRouter()

@router.post("/{group_id}/expenses", response_model=ExpenseResponse, status_code=status.HTTP_201_CREATED)
async def add_expense(
    group_id: str,
    expense_in: ExpenseCreate,
    wait: bool = Query(False, description="Wait for an in-flight settlement instead of failing"),
    service: GroupService = Depends(get_group_service)
):
    """Record a shared expense split equally among split_among"""
    try:
        expense = await service.add_expense(
            group_id,
            expense_in.payer,
            expense_in.amount,
            expense_in.description,
            expense_in.split_among,
            wait=wait
        )
    except SettlementEngineError as e:
        raise to_http_exception(e)
    return to_expense_response(expense)

@router.get("/{group_id}/expenses", response_model=List[ExpenseResponse])
async def list_expenses(
    group_id: str,
    include_settled: bool = True,
    service: GroupService = Depends(get_group_service)
):
    try:
        expenses = await service.list_expenses(group_id, include_settled)
    except SettlementEngineError as e:
        raise to_http_exception(e)
    return [to_expense_response(e) for e in expenses]

@router.get("/{group_id}/expenses/{expense_id}", response_model=ExpenseResponse)
async def get_expense(
    group_id: str,
    expense_id: str,
    service: GroupService = Depends(get_group_service)
):
    try:
        expense = await service.get_expense(group_id, expense_id)
    except SettlementEngineError as e:
        raise to_http_exception(e)
    return to_expense_response(expense)

@router.get("/{group_id}/balances", response_model=BalancesResponse)
async def group_balances(
    group_id: str,
    service: GroupService = Depends(get_group_service)
):
    """Net position per member (positive = owed money)"""
    try:
        balances = await service.group_balances(group_id)
    except SettlementEngineError as e:
        raise to_http_exception(e)
    return BalancesResponse(group_id=group_id, balances=balances)

@router.get("/{group_id}/debts", response_model=List[DebtEdgeResponse])
async def group_debts(
    group_id: str,
    service: GroupService = Depends(get_group_service)
):
    """Who owes whom, one net edge per pair"""
    try:
        edges = await service.group_debts(group_id)
    except SettlementEngineError as e:
        raise to_http_exception(e)
    return [edge.model_dump() for edge in edges]
