"""Outbound events delivered to the notification sink."""
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from groupsettle.models.base import utcnow


class _EventBase(BaseModel):
    group_id: str
    occurred_at: datetime = Field(default_factory=utcnow)


class ExpenseAdded(_EventBase):
    type: Literal["ExpenseAdded"] = "ExpenseAdded"
    expense_id: str
    payer: str
    amount: int
    description: str
    split_among: List[str]


class SettlementPlanned(_EventBase):
    type: Literal["SettlementPlanned"] = "SettlementPlanned"
    plan_id: str
    transaction_count: int
    total_amount: int


class SettlementTransactionConfirmed(_EventBase):
    type: Literal["SettlementTransactionConfirmed"] = "SettlementTransactionConfirmed"
    plan_id: str
    from_member: str
    to_member: str
    amount: int
    reference: Optional[str] = None


class SettlementTransactionFailed(_EventBase):
    type: Literal["SettlementTransactionFailed"] = "SettlementTransactionFailed"
    plan_id: str
    from_member: str
    to_member: str
    amount: int
    reason: str


class SettlementCompleted(_EventBase):
    type: Literal["SettlementCompleted"] = "SettlementCompleted"
    plan_id: str
    settled_expense_count: int


class SettlementPartial(_EventBase):
    type: Literal["SettlementPartial"] = "SettlementPartial"
    plan_id: str
    confirmed_count: int
    failed_count: int
    settled_expense_count: int


Event = Annotated[
    Union[
        ExpenseAdded,
        SettlementPlanned,
        SettlementTransactionConfirmed,
        SettlementTransactionFailed,
        SettlementCompleted,
        SettlementPartial,
    ],
    Field(discriminator="type"),
]
