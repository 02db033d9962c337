from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from groupsettle.models.settlement import (
    ExecutionReport,
    SettlementPlan,
    SettlementRun,
    SettlementTransaction,
)


class SettlementResponse(BaseModel):
    plan: SettlementPlan
    report: ExecutionReport


class CancelResponse(BaseModel):
    cancelled: bool


class SettlementRunResponse(BaseModel):
    id: str
    plan_id: str
    status: str
    transactions: List[SettlementTransaction]
    settled_expense_ids: List[str]
    adjustment_expense_ids: List[str]
    started_at: datetime
    finished_at: Optional[datetime] = None


def to_run_response(run: SettlementRun) -> SettlementRunResponse:
    return SettlementRunResponse(
        id=str(run.id),
        plan_id=run.plan_id,
        status=run.status,
        transactions=run.transactions,
        settled_expense_ids=run.settled_expense_ids,
        adjustment_expense_ids=run.adjustment_expense_ids,
        started_at=run.started_at,
        finished_at=run.finished_at,
    )
