"""
Settlement models.

A SettlementPlan is recomputed for every settlement request and never
treated as authoritative state. Only the outcome (which expenses were
settled, which transfers were confirmed) is persisted.
"""

import hashlib
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from groupsettle.models.base import MongoModel, PyObjectId, utcnow


class TransactionState(str, Enum):
    PLANNED = "PLANNED"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class ReportStatus(str, Enum):
    DONE = "DONE"
    PARTIAL = "PARTIAL"
    CANCELLED = "CANCELLED"


def transaction_key(plan_id: str, from_member: str, to_member: str, amount: int) -> str:
    """Stable idempotency key for one planned transfer."""
    raw = f"{plan_id}:{from_member}:{to_member}:{amount}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def snapshot_plan_id(group_id: str, expense_ids: Iterable[str]) -> str:
    """Plan id derived from the unsettled-expense snapshot it was built from."""
    raw = group_id + ":" + ",".join(sorted(expense_ids))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:24]


class DebtEdge(BaseModel):
    """debtor owes creditor amount (derived, never stored)."""
    debtor: str
    creditor: str
    amount: int


class SettlementTransaction(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True, validate_assignment=True)

    key: str
    from_member: str
    to_member: str
    amount: int
    state: TransactionState = TransactionState.PLANNED
    attempts: int = 0
    reference: Optional[str] = None  # rail reference once submitted
    reason: Optional[str] = None  # failure reason


class SettlementPlan(BaseModel):
    plan_id: str
    group_id: Optional[str] = None
    transactions: List[SettlementTransaction] = []
    created_at: datetime = Field(default_factory=utcnow)

    def is_empty(self) -> bool:
        return not self.transactions

    def total_amount(self) -> int:
        return sum(t.amount for t in self.transactions)


class ExecutionReport(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True, validate_assignment=True)

    plan_id: str
    status: ReportStatus
    transactions: List[SettlementTransaction] = []
    settled_expense_ids: List[str] = []
    adjustment_expense_ids: List[str] = []
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    def confirmed(self) -> List[SettlementTransaction]:
        return [t for t in self.transactions if t.state == TransactionState.CONFIRMED]

    def failed(self) -> List[SettlementTransaction]:
        return [t for t in self.transactions if t.state == TransactionState.FAILED]


class SettlementRun(MongoModel):
    """History record of one settlement run (audit only)."""
    group_id: PyObjectId
    plan_id: str
    status: ReportStatus
    transactions: List[SettlementTransaction] = []
    settled_expense_ids: List[str] = []
    adjustment_expense_ids: List[str] = []
    started_at: datetime
    finished_at: Optional[datetime] = None
