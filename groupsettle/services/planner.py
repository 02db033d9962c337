"""
Settlement planner.

Greedy two-pointer matching of debtors against creditors:
1. Drop members at zero; split the rest into debtors and creditors
2. Debtors most negative first, creditors most owed first (ties by id)
3. Settle min(|debtor|, creditor), emit a transaction, advance whichever
   side reached zero
Deterministic for a given set of positions. Uses at most
len(debtors) + len(creditors) - 1 transactions; not a global optimum.
"""

import uuid
from typing import Dict, Optional

from groupsettle.core.exceptions import InvariantViolation
from groupsettle.models.settlement import (
    SettlementPlan,
    SettlementTransaction,
    transaction_key,
)


class SettlementPlanner:
    @staticmethod
    def plan(
        net_positions: Dict[str, int],
        group_id: Optional[str] = None,
        plan_id: Optional[str] = None,
    ) -> SettlementPlan:
        """Build the transfer list that drives every position to zero."""
        total = sum(net_positions.values())
        if total != 0:
            raise InvariantViolation(f"Cannot plan settlement: positions sum to {total}")

        plan_id = plan_id or uuid.uuid4().hex

        debtors = sorted(
            ([member, -amount] for member, amount in net_positions.items() if amount < 0),
            key=lambda d: (-d[1], d[0])
        )
        creditors = sorted(
            ([member, amount] for member, amount in net_positions.items() if amount > 0),
            key=lambda c: (-c[1], c[0])
        )

        transactions = []
        i = 0
        j = 0

        while i < len(debtors) and j < len(creditors):
            debtor = debtors[i]
            creditor = creditors[j]

            amount = min(debtor[1], creditor[1])
            transactions.append(SettlementTransaction(
                key=transaction_key(plan_id, debtor[0], creditor[0], amount),
                from_member=debtor[0],
                to_member=creditor[0],
                amount=amount,
            ))

            debtor[1] -= amount
            creditor[1] -= amount

            if debtor[1] == 0:
                i += 1
            if creditor[1] == 0:
                j += 1

        return SettlementPlan(plan_id=plan_id, group_id=group_id, transactions=transactions)
