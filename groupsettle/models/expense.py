"""
Expense model - append-only record of shared spending.

Design principles:
- All amounts in integer minor units, never floats
- sum(shares) == amount, always
- Immutable once created: only settled / settled_at / settlement_plan_id change
- Settlement adjustments are engine-written carry-forward records left
  after a partial settlement run
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from groupsettle.models.base import MongoModel, PyObjectId


class ExpenseKind(str, Enum):
    EXPENSE = "expense"
    SETTLEMENT_ADJUSTMENT = "settlement_adjustment"


class Share(BaseModel):
    member_id: str
    amount: int


class Expense(MongoModel):
    group_id: PyObjectId
    payer: str
    amount: int
    description: str = ""
    split_among: List[str]
    shares: List[Share]
    kind: ExpenseKind = ExpenseKind.EXPENSE

    settled: bool = False
    settled_at: Optional[datetime] = None
    settlement_plan_id: Optional[str] = None

    def participants(self) -> set[str]:
        """Payer plus every split member."""
        return {self.payer, *self.split_among}
