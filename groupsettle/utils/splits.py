"""Split computation for expenses."""
from typing import List, Sequence

from groupsettle.core.exceptions import EmptySplit, InvalidAmount
from groupsettle.models.expense import Share


def equal_shares(amount: int, members: Sequence[str]) -> List[Share]:
    """
    Divide amount equally among members.

    Rules:
    - share = amount // n
    - the remainder (amount % n) goes one minor unit each to the
      first members in split order
    - sum of shares == amount exactly
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"Amount must be a positive integer, got {amount!r}")
    if not members:
        raise EmptySplit("Expense must be split among at least one member")

    n = len(members)
    base, remainder = divmod(amount, n)
    return [
        Share(member_id=member_id, amount=base + (1 if i < remainder else 0))
        for i, member_id in enumerate(members)
    ]
