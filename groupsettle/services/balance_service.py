from typing import Dict, Iterable, List, Tuple

from groupsettle.core.exceptions import InvariantViolation
from groupsettle.models.expense import Expense
from groupsettle.models.settlement import DebtEdge


class BalanceService:
    @staticmethod
    def compute_net_positions(
        expenses: Iterable[Expense],
        members: Iterable[str] = (),
    ) -> Dict[str, int]:
        """
        Net position per member over the given expenses.

        Positive = owed money, negative = owes money.
        The payer is credited with every share owed by other split
        members; a payer inside the split creates no self-debt.
        Members listed in `members` are included at 0 when untouched.

        Raises InvariantViolation if an expense's shares do not add up to
        its amount or if the positions do not sum to zero.
        """
        net: Dict[str, int] = {member_id: 0 for member_id in members}

        for expense in expenses:
            share_total = sum(share.amount for share in expense.shares)
            if share_total != expense.amount:
                raise InvariantViolation(
                    f"Expense {expense.id}: shares sum to {share_total}, amount is {expense.amount}"
                )

            net.setdefault(expense.payer, 0)
            for share in expense.shares:
                if share.member_id == expense.payer:
                    continue
                net[expense.payer] += share.amount
                net[share.member_id] = net.get(share.member_id, 0) - share.amount

        total = sum(net.values())
        if total != 0:
            raise InvariantViolation(f"Net positions sum to {total}, expected 0")

        return net

    @staticmethod
    def debt_edges(expenses: Iterable[Expense]) -> List[DebtEdge]:
        """
        Pairwise "who owes whom" view.

        Opposite directions between the same two members are collapsed
        into a single net edge. Sorted by (debtor, creditor).
        """
        # (a, b) with a < b: positive means a owes b
        pair_totals: Dict[Tuple[str, str], int] = {}

        for expense in expenses:
            creditor = expense.payer
            for share in expense.shares:
                debtor = share.member_id
                if debtor == creditor or share.amount == 0:
                    continue
                if debtor < creditor:
                    pair = (debtor, creditor)
                    delta = share.amount
                else:
                    pair = (creditor, debtor)
                    delta = -share.amount
                pair_totals[pair] = pair_totals.get(pair, 0) + delta

        edges = []
        for (a, b), amount in pair_totals.items():
            if amount > 0:
                edges.append(DebtEdge(debtor=a, creditor=b, amount=amount))
            elif amount < 0:
                edges.append(DebtEdge(debtor=b, creditor=a, amount=-amount))

        edges.sort(key=lambda e: (e.debtor, e.creditor))
        return edges
