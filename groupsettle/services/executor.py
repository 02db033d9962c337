"""
Settlement executor.

Runs a SettlementPlan against the payment rail:
- transfers are independent and run concurrently (bounded by a semaphore)
- every attempt (submit + confirmation) has an explicit timeout
- retryable rail errors are retried with exponential backoff, a bounded
  number of times; timeouts and rejections fail the transaction
- a key already CONFIRMED in the transfer store is never resubmitted
- a failed transfer never aborts the others; the report becomes PARTIAL

After execution, resolve() decides which expenses are settled.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from groupsettle.core.config import settings
from groupsettle.core.exceptions import ExternalFailure, SettlementCancelled, TransferTimeout
from groupsettle.integrations.payment_rail import PaymentRail
from groupsettle.models.base import utcnow
from groupsettle.models.expense import Expense
from groupsettle.models.settlement import (
    ExecutionReport,
    ReportStatus,
    SettlementPlan,
    SettlementTransaction,
    TransactionState,
)
from groupsettle.repositories.transfer_repo import TransferRepository
from groupsettle.services.balance_service import BalanceService
from groupsettle.services.planner import SettlementPlanner

logger = logging.getLogger(__name__)


@dataclass
class ExecutionPolicy:
    timeout: float = 30.0
    max_attempts: int = 3
    backoff: float = 0.5
    concurrency: int = 4

    @classmethod
    def from_settings(cls) -> "ExecutionPolicy":
        return cls(
            timeout=settings.TRANSFER_TIMEOUT_SECONDS,
            max_attempts=settings.TRANSFER_MAX_ATTEMPTS,
            backoff=settings.TRANSFER_BACKOFF_SECONDS,
            concurrency=settings.TRANSFER_CONCURRENCY,
        )


class RunControl:
    """Cancellation handle shared between a settlement run and its caller."""

    def __init__(self):
        self.cancel_requested = False
        self.submitted = 0

    def cancel(self) -> bool:
        """Request cancellation; True if no transfer has been submitted yet."""
        self.cancel_requested = True
        return self.submitted == 0


@dataclass
class Resolution:
    settled_expense_ids: List[str] = field(default_factory=list)
    # (payer, counterparty, amount) carry-forward records to append
    adjustments: List[Tuple[str, str, int]] = field(default_factory=list)


class SettlementExecutor:
    def __init__(
        self,
        rail: PaymentRail,
        transfers: TransferRepository,
        policy: Optional[ExecutionPolicy] = None,
    ):
        self.rail = rail
        self.transfers = transfers
        self.policy = policy or ExecutionPolicy.from_settings()

    async def execute(
        self,
        plan: SettlementPlan,
        addresses: Dict[str, str],
        control: Optional[RunControl] = None,
    ) -> ExecutionReport:
        """
        Execute every transaction of the plan and report per-transaction outcomes.

        Raises SettlementCancelled only when cancellation was requested
        before any transfer reached the rail.
        """
        control = control or RunControl()
        started_at = utcnow()
        transactions = [txn.model_copy() for txn in plan.transactions]

        if control.cancel_requested:
            raise SettlementCancelled(f"Settlement {plan.plan_id} cancelled before submission")

        confirmed = await self.transfers.confirmed_transfers(t.key for t in transactions)
        semaphore = asyncio.Semaphore(self.policy.concurrency)

        await asyncio.gather(*[
            self._run_transaction(plan, txn, addresses, confirmed.get(txn.key), semaphore, control)
            for txn in transactions
        ])

        if control.cancel_requested and control.submitted == 0:
            raise SettlementCancelled(f"Settlement {plan.plan_id} cancelled before submission")

        all_confirmed = all(t.state == TransactionState.CONFIRMED for t in transactions)
        return ExecutionReport(
            plan_id=plan.plan_id,
            status=ReportStatus.DONE if all_confirmed else ReportStatus.PARTIAL,
            transactions=transactions,
            started_at=started_at,
            finished_at=utcnow(),
        )

    async def _run_transaction(
        self,
        plan: SettlementPlan,
        txn: SettlementTransaction,
        addresses: Dict[str, str],
        already_confirmed: Optional[dict],
        semaphore: asyncio.Semaphore,
        control: RunControl,
    ) -> None:
        if already_confirmed is not None:
            txn.state = TransactionState.CONFIRMED
            txn.reference = already_confirmed.get("reference")
            txn.attempts = already_confirmed.get("attempts", 0)
            logger.info("Transfer %s already confirmed, not resubmitting", txn.key[:12])
            return

        async with semaphore:
            if control.cancel_requested:
                if control.submitted == 0:
                    return
                self._fail(txn, "cancelled")
                await self.transfers.record_outcome(plan.group_id, plan.plan_id, txn)
                return

            from_account = addresses.get(txn.from_member)
            to_account = addresses.get(txn.to_member)
            if not from_account or not to_account:
                missing = txn.from_member if not from_account else txn.to_member
                self._fail(txn, f"unresolved account for {missing}")
                await self.transfers.record_outcome(plan.group_id, plan.plan_id, txn)
                return

            await self._attempt_with_retries(txn, from_account, to_account, control)
            await self.transfers.record_outcome(plan.group_id, plan.plan_id, txn)

    async def _attempt_with_retries(
        self,
        txn: SettlementTransaction,
        from_account: str,
        to_account: str,
        control: RunControl,
    ) -> None:
        policy = self.policy
        for attempt in range(1, policy.max_attempts + 1):
            txn.attempts = attempt
            if txn.state == TransactionState.PLANNED:
                txn.state = TransactionState.SUBMITTED
                control.submitted += 1

            try:
                await asyncio.wait_for(
                    self._transfer(txn, from_account, to_account),
                    timeout=policy.timeout
                )
            except asyncio.TimeoutError:
                self._fail(txn, TransferTimeout(policy.timeout).reason)
                return
            except ExternalFailure as e:
                if e.retryable and attempt < policy.max_attempts:
                    delay = policy.backoff * (2 ** (attempt - 1))
                    logger.warning(
                        "Transfer %s -> %s (%d) attempt %d failed: %s; retrying in %.2fs",
                        txn.from_member, txn.to_member, txn.amount, attempt, e.reason, delay
                    )
                    await asyncio.sleep(delay)
                    continue
                self._fail(txn, e.reason)
                return
            except Exception as e:
                # Unknown rail errors are still per-transaction failures
                logger.exception("Unexpected payment rail error for %s", txn.key[:12])
                self._fail(txn, f"rail error: {e}")
                return

            txn.state = TransactionState.CONFIRMED
            txn.reason = None
            logger.info(
                "Transfer %s -> %s (%d) confirmed, ref %s",
                txn.from_member, txn.to_member, txn.amount, txn.reference
            )
            return

    async def _transfer(self, txn: SettlementTransaction, from_account: str, to_account: str) -> None:
        txn.reference = await self.rail.submit(txn.amount, from_account, to_account, txn.key)
        await self.rail.confirm(txn.reference)

    def _fail(self, txn: SettlementTransaction, reason: str) -> None:
        txn.state = TransactionState.FAILED
        txn.reason = reason
        logger.warning(
            "Transfer %s -> %s (%d) failed: %s",
            txn.from_member, txn.to_member, txn.amount, reason
        )

    @staticmethod
    def resolve(
        expenses: Iterable[Expense],
        net_positions: Dict[str, int],
        report: ExecutionReport,
    ) -> Resolution:
        """
        Decide which expenses the confirmed transfers fully resolved.

        residual(m) = net(m) + sent(m) - received(m) over CONFIRMED transfers.
        An expense is settled iff every participant has zero residual.
        When the still-unsettled expenses would not reproduce the residuals
        exactly, the difference is returned as carry-forward adjustments so
        the next run, recomputed from scratch, sees exactly what is still owed.
        """
        expenses = list(expenses)
        residual = dict(net_positions)
        for txn in report.confirmed():
            residual[txn.from_member] = residual.get(txn.from_member, 0) + txn.amount
            residual[txn.to_member] = residual.get(txn.to_member, 0) - txn.amount

        resolved = {member for member, amount in residual.items() if amount == 0}
        settled = [e for e in expenses if e.participants() <= resolved]
        settled_ids = {str(e.id) for e in settled}
        remaining = [e for e in expenses if str(e.id) not in settled_ids]

        remaining_positions = BalanceService.compute_net_positions(remaining, residual.keys())
        gap = {
            member: residual.get(member, 0) - remaining_positions.get(member, 0)
            for member in set(residual) | set(remaining_positions)
        }

        adjustments = []
        if any(gap.values()):
            correction = SettlementPlanner.plan(gap, plan_id=report.plan_id)
            # from_member must lose `amount`, to_member gain it
            adjustments = [(t.to_member, t.from_member, t.amount) for t in correction.transactions]

        return Resolution(
            settled_expense_ids=[str(e.id) for e in settled],
            adjustments=adjustments,
        )
