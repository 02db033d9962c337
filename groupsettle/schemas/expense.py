from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, StrictInt

from groupsettle.models.expense import Expense


class ExpenseCreate(BaseModel):
    """Amounts are integers in minor units; floats are rejected."""
    payer: str
    amount: StrictInt
    description: str = Field("", max_length=500)
    split_among: List[str]


class ShareResponse(BaseModel):
    member_id: str
    amount: int


class ExpenseResponse(BaseModel):
    id: str
    group_id: str
    payer: str
    amount: int
    description: str
    split_among: List[str]
    shares: List[ShareResponse]
    kind: str
    settled: bool
    settled_at: Optional[datetime] = None
    created_at: datetime


class BalancesResponse(BaseModel):
    group_id: str
    balances: Dict[str, int]


class DebtEdgeResponse(BaseModel):
    debtor: str
    creditor: str
    amount: int


def to_expense_response(expense: Expense) -> ExpenseResponse:
    """Convert Expense model to ExpenseResponse schema."""
    return ExpenseResponse(
        id=str(expense.id),
        group_id=str(expense.group_id),
        payer=expense.payer,
        amount=expense.amount,
        description=expense.description,
        split_among=expense.split_among,
        shares=[s.model_dump() for s in expense.shares],
        kind=expense.kind,
        settled=expense.settled,
        settled_at=expense.settled_at,
        created_at=expense.created_at,
    )
