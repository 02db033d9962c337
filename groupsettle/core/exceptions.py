"""
Settlement engine exceptions.

Categories:
- ValidationFailed: bad input, rejected before any state change
- StateError: operation not allowed in the group's current state
- ExternalFailure: payment rail / collaborator failures, recorded per transaction
- InvariantViolation: engine defect, never corrected silently
"""


class SettlementEngineError(Exception):
    """Base exception for the settlement engine."""
    pass


# ===== VALIDATION =====

class ValidationFailed(SettlementEngineError):
    """Raised when a request is rejected by input validation."""
    pass


class InvalidAmount(ValidationFailed):
    """Amount must be a positive integer in minor units."""
    pass


class EmptySplit(ValidationFailed):
    """An expense must be split among at least one member."""
    pass


class UnknownMember(ValidationFailed):
    """Payer or split member is not part of the group."""

    def __init__(self, member_id: str, group_id: str):
        self.member_id = member_id
        self.group_id = group_id
        super().__init__(f"Member {member_id} is not in group {group_id}")


class DuplicateSplitMember(ValidationFailed):
    pass


class DuplicateMember(ValidationFailed):
    pass


class SpendingLimitExceeded(ValidationFailed):
    pass


class SpenderNotAllowed(ValidationFailed):
    pass


# ===== STATE =====

class StateError(SettlementEngineError):
    """Raised when the group's lifecycle state forbids the operation."""
    pass


class GroupNotActive(StateError):
    pass


class SettlementInProgress(StateError):
    pass


class SettlementCancelled(StateError):
    """Run was cancelled before any transfer was submitted."""
    pass


class MembershipLocked(StateError):
    pass


# ===== LOOKUP / PERMISSION =====

class NotFound(SettlementEngineError):
    """A referenced group or expense does not exist."""
    pass


class GroupNotFound(NotFound):
    def __init__(self, group_id: str):
        self.group_id = group_id
        super().__init__(f"Group {group_id} not found")


class ExpenseNotFound(NotFound):
    def __init__(self, expense_id: str, group_id: str):
        self.expense_id = expense_id
        self.group_id = group_id
        super().__init__(f"Expense {expense_id} not found in group {group_id}")


class NotGroupAdmin(SettlementEngineError):
    pass


# ===== EXTERNAL =====

class ExternalFailure(SettlementEngineError):
    """A collaborator (payment rail, resolver) failed."""

    def __init__(self, reason: str, retryable: bool = False):
        self.reason = reason
        self.retryable = retryable
        super().__init__(reason)


class PaymentRailError(ExternalFailure):
    pass


class TransferTimeout(ExternalFailure):
    def __init__(self, timeout: float):
        super().__init__(f"timeout after {timeout:g}s", retryable=False)


# ===== DEFECTS =====

class InvariantViolation(SettlementEngineError):
    """Internal invariant broken (e.g. net positions do not sum to zero)."""
    pass
