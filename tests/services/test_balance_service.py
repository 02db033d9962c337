import pytest
from bson import ObjectId

from groupsettle.core.exceptions import InvariantViolation
from groupsettle.models.expense import Expense, Share
from groupsettle.services.balance_service import BalanceService
from groupsettle.utils.splits import equal_shares

GROUP_ID = ObjectId()


def make_expense(payer, amount, split_among):
    return Expense(
        group_id=GROUP_ID,
        payer=payer,
        amount=amount,
        split_among=split_among,
        shares=equal_shares(amount, split_among),
    )


class TestNetPositions:
    def test_four_way_trip(self):
        """A pays 60 and B pays 40, both split among A, B, C, D."""
        expenses = [
            make_expense("A", 60, ["A", "B", "C", "D"]),
            make_expense("B", 40, ["A", "B", "C", "D"]),
        ]

        net = BalanceService.compute_net_positions(expenses)

        assert net == {"A": 35, "B": 15, "C": -25, "D": -25}
        assert sum(net.values()) == 0

    def test_payer_alone_in_split_owes_nothing(self):
        net = BalanceService.compute_net_positions([make_expense("A", 50, ["A"])])

        assert net == {"A": 0}

    def test_payer_outside_split(self):
        net = BalanceService.compute_net_positions([make_expense("A", 30, ["B", "C"])])

        assert net == {"A": 30, "B": -15, "C": -15}

    def test_members_included_at_zero(self):
        net = BalanceService.compute_net_positions(
            [make_expense("A", 10, ["A", "B"])],
            members=["A", "B", "C"]
        )

        assert net == {"A": 5, "B": -5, "C": 0}

    def test_no_expenses(self):
        assert BalanceService.compute_net_positions([], members=["A", "B"]) == {"A": 0, "B": 0}

    def test_remainder_shares_stay_exact(self):
        net = BalanceService.compute_net_positions([make_expense("C", 100, ["A", "B", "C"])])

        assert net == {"A": -34, "B": -33, "C": 67}

    def test_corrupted_shares_raise(self):
        broken = Expense(
            group_id=GROUP_ID,
            payer="A",
            amount=10,
            split_among=["A", "B"],
            shares=[Share(member_id="A", amount=5), Share(member_id="B", amount=4)],
        )

        with pytest.raises(InvariantViolation):
            BalanceService.compute_net_positions([broken])

    def test_conservation_over_many_expenses(self):
        members = ["A", "B", "C", "D", "E"]
        expenses = [
            make_expense(members[i % 5], 17 * i + 3, members[: (i % 5) + 1])
            for i in range(1, 40)
        ]

        net = BalanceService.compute_net_positions(expenses, members)

        assert sum(net.values()) == 0


class TestDebtEdges:
    def test_opposite_debts_collapse(self):
        expenses = [
            make_expense("A", 20, ["A", "B"]),  # B owes A 10
            make_expense("B", 6, ["A", "B"]),  # A owes B 3
        ]

        edges = BalanceService.debt_edges(expenses)

        assert [(e.debtor, e.creditor, e.amount) for e in edges] == [("B", "A", 7)]

    def test_balanced_pair_dropped(self):
        expenses = [
            make_expense("A", 20, ["A", "B"]),
            make_expense("B", 20, ["A", "B"]),
        ]

        assert BalanceService.debt_edges(expenses) == []

    def test_sorted_by_debtor_then_creditor(self):
        expenses = [make_expense("A", 60, ["A", "B", "C", "D"]), make_expense("B", 40, ["A", "B", "C", "D"])]

        edges = BalanceService.debt_edges(expenses)

        assert [(e.debtor, e.creditor, e.amount) for e in edges] == [
            ("B", "A", 5),
            ("C", "A", 15),
            ("C", "B", 10),
            ("D", "A", 15),
            ("D", "B", 10),
        ]
