"""
Group / session manager.

Owns group membership, the expense submission path and the settlement
lifecycle. Every mutation of a group runs inside that group's exclusive
section (one asyncio.Lock per group); different groups never contend.

A settlement run is a separate task: callers await it through
asyncio.shield, so a caller going away never interrupts a run that has
already handed transfers to the payment rail.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from groupsettle.core.config import settings
from groupsettle.core.exceptions import (
    DuplicateMember,
    ExpenseNotFound,
    GroupNotActive,
    GroupNotFound,
    MembershipLocked,
    NotGroupAdmin,
    SettlementCancelled,
    SettlementInProgress,
    UnknownMember,
    ValidationFailed,
)
from groupsettle.integrations.identity import IdentityResolver
from groupsettle.integrations.notifications import EventDispatcher
from groupsettle.integrations.payment_rail import PaymentRail
from groupsettle.models.base import utcnow
from groupsettle.models.events import (
    ExpenseAdded,
    SettlementCompleted,
    SettlementPartial,
    SettlementPlanned,
    SettlementTransactionConfirmed,
    SettlementTransactionFailed,
)
from groupsettle.models.expense import Expense
from groupsettle.models.group import Group, GroupState, Member, MemberRole, TreasuryConfig
from groupsettle.models.settlement import (
    DebtEdge,
    ExecutionReport,
    ReportStatus,
    SettlementPlan,
    SettlementRun,
    TransactionState,
    snapshot_plan_id,
)
from groupsettle.repositories.expense_repo import ExpenseRepository
from groupsettle.repositories.group_repo import GroupRepository
from groupsettle.repositories.transfer_repo import TransferRepository
from groupsettle.services.balance_service import BalanceService
from groupsettle.services.executor import ExecutionPolicy, RunControl, SettlementExecutor
from groupsettle.services.planner import SettlementPlanner

logger = logging.getLogger(__name__)

OPEN_STATES = [GroupState.ACTIVE, GroupState.SETTLED]


@dataclass
class _InflightRun:
    task: asyncio.Task
    control: RunControl


class GroupService:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        rail: PaymentRail,
        identity: IdentityResolver,
        events: EventDispatcher,
        policy: Optional[ExecutionPolicy] = None,
        use_transactions: Optional[bool] = None,
    ):
        self.db = db
        self.use_transactions = settings.MONGODB_TRANSACTIONS if use_transactions is None else use_transactions
        self.groups = GroupRepository(db)
        self.expenses = ExpenseRepository(db)
        self.transfers = TransferRepository(db)
        self.identity = identity
        self.events = events
        self.executor = SettlementExecutor(rail, self.transfers, policy)

        self._locks: Dict[str, asyncio.Lock] = {}
        self._inflight: Dict[str, _InflightRun] = {}

    # ===== GROUPS & MEMBERSHIP =====

    async def create_group(
        self,
        name: str,
        admin: str,
        members: Optional[List[str]] = None,
        treasury: Optional[TreasuryConfig] = None,
    ) -> Group:
        """Create an ACTIVE group with the admin as its first member."""
        if not name.strip():
            raise ValidationFailed("Group name must not be empty")

        member_ids = [admin] + [m for m in (members or []) if m != admin]
        if len(set(member_ids)) != len(member_ids):
            raise DuplicateMember("A member may be listed only once")

        group = Group(
            name=name,
            admin=admin,
            members=[
                Member(member_id=m, role=MemberRole.ADMIN if m == admin else MemberRole.MEMBER)
                for m in member_ids
            ],
            treasury=treasury or TreasuryConfig(),
        )
        await self.groups.create_group(group)
        logger.info("Group %s created by %s with %d members", group.id, admin, len(member_ids))
        return group

    async def get_group(self, group_id: str) -> Group:
        group = await self.groups.get_group(group_id)
        if group is None:
            raise GroupNotFound(str(group_id))
        return group

    async def list_groups(self, member_id: str) -> List[Group]:
        """Groups the member belongs to, newest first."""
        return await self.groups.list_groups_for_member(member_id)

    async def add_member(self, group_id: str, member_id: str) -> Group:
        async with self._lock(group_id):
            group = await self.get_group(group_id)
            self._ensure_open(group)
            if group.has_member(member_id):
                raise DuplicateMember(f"{member_id} is already a member of group {group_id}")

            members = group.members + [Member(member_id=member_id)]
            return await self.groups.save_members(group.id, members)

    async def remove_member(self, group_id: str, member_id: str) -> Group:
        """Only possible while the group has no expenses at all."""
        async with self._lock(group_id):
            group = await self.get_group(group_id)
            self._ensure_open(group)
            if not group.has_member(member_id):
                raise UnknownMember(member_id, str(group.id))
            if member_id == group.admin:
                raise MembershipLocked("The group admin cannot be removed")
            if await self.expenses.has_expenses(group.id):
                raise MembershipLocked("Members cannot be removed once expenses exist")

            members = [m for m in group.members if m.member_id != member_id]
            return await self.groups.save_members(group.id, members)

    async def update_treasury(self, group_id: str, treasury: TreasuryConfig, requested_by: str) -> Group:
        async with self._lock(group_id):
            group = await self.get_group(group_id)
            self._ensure_admin(group, requested_by)
            self._ensure_open(group)
            for spender in treasury.allowed_spenders:
                if not group.has_member(spender):
                    raise UnknownMember(spender, str(group.id))
            return await self.groups.update_treasury(group.id, treasury)

    async def archive_group(self, group_id: str, requested_by: str) -> Group:
        """Explicit administrative archival; CLOSED is terminal."""
        async with self._lock(group_id):
            group = await self.get_group(group_id)
            self._ensure_admin(group, requested_by)
            self._ensure_open(group)

            archived = await self.groups.transition_state(group.id, OPEN_STATES, GroupState.CLOSED)
            if archived is None:
                raise SettlementInProgress(f"Group {group_id} is settling")
            logger.info("Group %s archived by %s", group_id, requested_by)
            return archived

    # ===== EXPENSES & BALANCES =====

    async def add_expense(
        self,
        group_id: str,
        payer: str,
        amount: int,
        description: str,
        split_among: List[str],
        wait: bool = False,
    ) -> Expense:
        """
        Record an expense.

        While a settlement run is in flight the call is rejected with
        SettlementInProgress, or with wait=True it blocks until the run
        has finished. A SETTLED group becomes ACTIVE again.
        """
        if not wait and self._key(group_id) in self._inflight:
            raise SettlementInProgress(f"Group {group_id} is settling, try again later")

        async with self._lock(group_id):
            group = await self.get_group(group_id)
            if group.state == GroupState.SETTLING:
                raise SettlementInProgress(f"Group {group_id} is settling, try again later")

            expense = await self.expenses.add_expense(group, payer, amount, description, split_among)
            if group.state == GroupState.SETTLED:
                await self.groups.transition_state(group.id, [GroupState.SETTLED], GroupState.ACTIVE)

        await self.events.emit(ExpenseAdded(
            group_id=str(group.id),
            expense_id=str(expense.id),
            payer=expense.payer,
            amount=expense.amount,
            description=expense.description,
            split_among=expense.split_among,
        ))
        return expense

    async def list_expenses(self, group_id: str, include_settled: bool = True) -> List[Expense]:
        group = await self.get_group(group_id)
        return await self.expenses.list_expenses(group.id, include_settled)

    async def get_expense(self, group_id: str, expense_id: str) -> Expense:
        group = await self.get_group(group_id)
        expense = await self.expenses.get_expense(group.id, expense_id)
        if expense is None:
            raise ExpenseNotFound(expense_id, str(group.id))
        return expense

    async def group_balances(self, group_id: str) -> Dict[str, int]:
        """Net position of every member over the unsettled expenses."""
        group = await self.get_group(group_id)
        expenses = await self.expenses.unsettled_expenses(group.id)
        return BalanceService.compute_net_positions(expenses, group.member_ids())

    async def group_debts(self, group_id: str) -> List[DebtEdge]:
        group = await self.get_group(group_id)
        expenses = await self.expenses.unsettled_expenses(group.id)
        return BalanceService.debt_edges(expenses)

    # ===== SETTLEMENT =====

    async def trigger_settlement(self, group_id: str) -> Tuple[SettlementPlan, ExecutionReport]:
        """
        Plan and execute a settlement for the group's unsettled expenses.

        A second call while a run is in flight returns that run's result
        instead of starting another.
        """
        key = self._key(group_id)
        inflight = self._inflight.get(key)
        if inflight is None:
            group = await self.get_group(group_id)
            if group.state == GroupState.CLOSED:
                raise GroupNotActive(f"Group {group_id} is closed")

            # re-check: another caller may have started a run while we awaited
            inflight = self._inflight.get(key)
            if inflight is None:
                control = RunControl()
                task = asyncio.create_task(self._run_settlement(group.id, control))
                inflight = _InflightRun(task=task, control=control)
                self._inflight[key] = inflight
                task.add_done_callback(lambda t, run=inflight: self._clear_inflight(key, run, t))
        else:
            logger.info("Settlement for group %s already in flight, joining it", key)

        return await asyncio.shield(inflight.task)

    async def cancel_settlement(self, group_id: str) -> bool:
        """
        Cancel the in-flight run of a group.

        True when the run stops without moving any money. Once a transfer
        has been submitted it is still awaited; only unsubmitted transfers
        are skipped.
        """
        inflight = self._inflight.get(self._key(group_id))
        if inflight is None:
            return False
        return inflight.control.cancel()

    def is_settling(self, group_id: str) -> bool:
        return self._key(group_id) in self._inflight

    async def settlement_history(self, group_id: str) -> List[SettlementRun]:
        group = await self.get_group(group_id)
        return await self.transfers.list_runs(group.id)

    async def recover(self) -> int:
        """Reset groups a previous process left in SETTLING."""
        count = await self.groups.reset_stale_settling()
        if count:
            logger.warning("Reset %d group(s) stuck in SETTLING", count)
        return count

    async def _run_settlement(
        self,
        group_id: ObjectId,
        control: RunControl,
    ) -> Tuple[SettlementPlan, ExecutionReport]:
        async with self._lock(group_id):
            previous = await self.get_group(group_id)
            group = await self.groups.transition_state(group_id, OPEN_STATES, GroupState.SETTLING)
            if group is None:
                if previous.state == GroupState.CLOSED:
                    raise GroupNotActive(f"Group {group_id} is closed")
                raise SettlementInProgress(f"Group {group_id} is already settling")

            try:
                expenses = await self.expenses.unsettled_expenses(group_id)
                net = BalanceService.compute_net_positions(expenses, group.member_ids())
                plan = SettlementPlanner.plan(
                    net,
                    group_id=str(group_id),
                    plan_id=snapshot_plan_id(str(group_id), [str(e.id) for e in expenses]),
                )
                logger.info(
                    "Settlement %s for group %s: %d transfer(s) totalling %d",
                    plan.plan_id, group_id, len(plan.transactions), plan.total_amount()
                )
                await self.events.emit(SettlementPlanned(
                    group_id=str(group_id),
                    plan_id=plan.plan_id,
                    transaction_count=len(plan.transactions),
                    total_amount=plan.total_amount(),
                ))

                addresses = await self._resolve_addresses(group, plan)
                report = await self.executor.execute(plan, addresses, control)
            except SettlementCancelled:
                await self.groups.transition_state(group_id, [GroupState.SETTLING], GroupState(previous.state))
                logger.info("Settlement for group %s cancelled before any transfer", group_id)
                return plan, ExecutionReport(
                    plan_id=plan.plan_id,
                    status=ReportStatus.CANCELLED,
                    transactions=plan.transactions,
                    finished_at=utcnow(),
                )
            except Exception:
                await self.groups.transition_state(group_id, [GroupState.SETTLING], GroupState(previous.state))
                logger.error("Settlement for group %s aborted", group_id, exc_info=True)
                raise

            try:
                await self._finalize(group, expenses, net, plan, report)
            except Exception:
                # same snapshot next time, so confirmed transfers are skipped
                await self.groups.transition_state(group_id, [GroupState.SETTLING], GroupState.ACTIVE)
                logger.error(
                    "Finalizing settlement %s for group %s failed", plan.plan_id, group_id, exc_info=True
                )
                raise

        await self._emit_outcome(str(group_id), report)
        return plan, report

    async def _finalize(
        self,
        group: Group,
        expenses: List[Expense],
        net: Dict[str, int],
        plan: SettlementPlan,
        report: ExecutionReport,
    ) -> None:
        """
        Apply the run's outcome to the ledger and the group state.

        The settled flags, carry-forward records, final state and history
        record are written in one session transaction.
        """
        resolution = SettlementExecutor.resolve(expenses, net, report)
        final_state = GroupState.SETTLED if report.status == ReportStatus.DONE else GroupState.ACTIVE

        async with self._transaction() as session:
            await self.expenses.mark_settled(resolution.settled_expense_ids, plan.plan_id, session=session)
            adjustment_ids = []
            for payer, counterparty, amount in resolution.adjustments:
                adjustment = await self.expenses.append_adjustment(
                    group.id, payer, counterparty, amount, plan.plan_id, session=session
                )
                adjustment_ids.append(str(adjustment.id))

            await self.groups.transition_state(group.id, [GroupState.SETTLING], final_state, session=session)

            await self.transfers.save_run(SettlementRun(
                group_id=group.id,
                plan_id=plan.plan_id,
                status=report.status,
                transactions=report.transactions,
                settled_expense_ids=resolution.settled_expense_ids,
                adjustment_expense_ids=adjustment_ids,
                started_at=report.started_at,
                finished_at=report.finished_at,
            ), session=session)

        report.settled_expense_ids = resolution.settled_expense_ids
        report.adjustment_expense_ids = adjustment_ids
        logger.info(
            "Settlement %s for group %s finished %s: %d confirmed, %d failed, %d expense(s) settled",
            plan.plan_id, group.id, report.status,
            len(report.confirmed()), len(report.failed()), len(resolution.settled_expense_ids)
        )

    async def _emit_outcome(self, group_id: str, report: ExecutionReport) -> None:
        for txn in report.transactions:
            if txn.state == TransactionState.CONFIRMED:
                await self.events.emit(SettlementTransactionConfirmed(
                    group_id=group_id,
                    plan_id=report.plan_id,
                    from_member=txn.from_member,
                    to_member=txn.to_member,
                    amount=txn.amount,
                    reference=txn.reference,
                ))
            elif txn.state == TransactionState.FAILED:
                await self.events.emit(SettlementTransactionFailed(
                    group_id=group_id,
                    plan_id=report.plan_id,
                    from_member=txn.from_member,
                    to_member=txn.to_member,
                    amount=txn.amount,
                    reason=txn.reason or "unknown",
                ))

        if report.status == ReportStatus.DONE:
            await self.events.emit(SettlementCompleted(
                group_id=group_id,
                plan_id=report.plan_id,
                settled_expense_count=len(report.settled_expense_ids),
            ))
        else:
            await self.events.emit(SettlementPartial(
                group_id=group_id,
                plan_id=report.plan_id,
                confirmed_count=len(report.confirmed()),
                failed_count=len(report.failed()),
                settled_expense_count=len(report.settled_expense_ids),
            ))

    async def _resolve_addresses(self, group: Group, plan: SettlementPlan) -> Dict[str, str]:
        """Payable address for every member in the plan, cached on the group."""
        needed = {t.from_member for t in plan.transactions} | {t.to_member for t in plan.transactions}
        addresses = {}
        changed = False

        for member in group.members:
            if member.member_id not in needed:
                continue
            if member.address is None:
                member.address = await self.identity.resolve(member.member_id)
                changed = changed or member.address is not None
            if member.address:
                addresses[member.member_id] = member.address

        if changed:
            await self.groups.save_members(group.id, group.members)
        return addresses

    # ===== PRIVATE HELPERS =====

    @staticmethod
    def _key(group_id) -> str:
        """Canonical (lowercase hex) form of a group id."""
        if ObjectId.is_valid(group_id):
            return str(ObjectId(group_id))
        return str(group_id)

    def _lock(self, group_id) -> asyncio.Lock:
        key = self._key(group_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def _transaction(self):
        """Yield a session inside a transaction, or None when transactions are off."""
        if not self.use_transactions:
            yield None
            return
        async with await self.db.client.start_session() as session:
            async with session.start_transaction():
                yield session

    def _clear_inflight(self, key: str, run: _InflightRun, task: asyncio.Task) -> None:
        if self._inflight.get(key) is run:
            del self._inflight[key]
        # retrieve the error here too: every caller may have gone away
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Settlement run for group %s ended with %r", key, task.exception())

    @staticmethod
    def _ensure_open(group: Group) -> None:
        if group.state == GroupState.CLOSED:
            raise GroupNotActive(f"Group {group.id} is closed")
        if group.state == GroupState.SETTLING:
            raise SettlementInProgress(f"Group {group.id} is settling")

    @staticmethod
    def _ensure_admin(group: Group, member_id: str) -> None:
        if member_id != group.admin:
            raise NotGroupAdmin(f"{member_id} is not the admin of group {group.id}")
