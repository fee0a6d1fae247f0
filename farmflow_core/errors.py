"""
Exception types for the FarmFlow staking ledger.

Every failure aborts the triggering operation as a whole; the ledger
restores its pre-operation state before the exception reaches the caller.
Each class carries a ``kind`` string used by the API layer and by log
lines, and also derives from the closest builtin so generic handlers
(``except ValueError``) keep working.
"""

from __future__ import annotations


class StakingError(Exception):
    """Base class for all ledger failures."""

    kind: str = "StakingError"


class InvalidAddressError(StakingError, ValueError):
    """A zero / placeholder / malformed account was supplied."""

    kind = "InvalidAddress"


class InvalidAmountError(StakingError, ValueError):
    """An amount, block or timestamp is not a non-negative integer."""

    kind = "InvalidAmount"


class InsufficientBalanceError(StakingError, ValueError):
    """Withdrawal exceeds the recorded stake, or a pull exceeds allowance."""

    kind = "InsufficientBalance"


class DuplicateRegistrationError(StakingError, ValueError):
    """The stake asset already has a pool."""

    kind = "DuplicateRegistration"


class UnknownPoolError(StakingError, IndexError):
    """Pool index out of range."""

    kind = "UnknownPool"


class DivisionByZeroError(StakingError, ZeroDivisionError):
    """Division by zero, e.g. settling while the total weight is zero."""

    kind = "DivisionByZero"


class UnauthorizedError(StakingError, PermissionError):
    """A non-owner attempted an owner-gated operation."""

    kind = "Unauthorized"


class ArithmeticOverflowError(StakingError, OverflowError):
    """Result exceeds the u256 range."""

    kind = "ArithmeticOverflow"


class ArithmeticUnderflowError(StakingError, ArithmeticError):
    """Result would be negative."""

    kind = "ArithmeticUnderflow"


class TransferFailedError(StakingError, RuntimeError):
    """An asset collaborator reported failure for a transfer or mint."""

    kind = "TransferFailed"


class ReentrancyError(StakingError, RuntimeError):
    """A state-changing call arrived while another was still running."""

    kind = "Reentrancy"


class InvariantViolationError(StakingError, AssertionError):
    """Raised when a post-state violates one or more ledger invariants."""

    kind = "InvariantViolation"

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(f"invariant violations: {'; '.join(violations)}")
