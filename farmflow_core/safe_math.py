"""
Checked unsigned 256-bit arithmetic for FarmFlow.

Ledger state (amounts, blocks, timestamps, accumulators) is held in plain
Python ints.  Python ints never wrap, so every helper here enforces the
u256 range explicitly and raises instead of silently producing an
out-of-range value:

    checked_add  → ArithmeticOverflowError   above UINT256_MAX
    checked_sub  → ArithmeticUnderflowError  below zero
    checked_mul  → ArithmeticOverflowError
    checked_div  → DivisionByZeroError       (floor division otherwise)

All divisions round down.
"""

from __future__ import annotations

from farmflow_core.errors import (
    ArithmeticOverflowError,
    ArithmeticUnderflowError,
    DivisionByZeroError,
    InvalidAmountError,
)

UINT256_MAX: int = 2 ** 256 - 1


def require_uint(value: object, name: str = "value") -> int:
    """Validate that *value* is an int in ``[0, UINT256_MAX]`` and return it.

    ``bool`` is rejected even though it subclasses ``int``; floats are
    rejected because they cannot represent u256 values exactly.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmountError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise InvalidAmountError(f"{name} must be non-negative, got {value}")
    if value > UINT256_MAX:
        raise ArithmeticOverflowError(f"{name} exceeds uint256 range")
    return value


def checked_add(a: int, b: int) -> int:
    result = a + b
    if result > UINT256_MAX:
        raise ArithmeticOverflowError(f"addition overflow: {a} + {b}")
    return result


def checked_sub(a: int, b: int) -> int:
    if b > a:
        raise ArithmeticUnderflowError(f"subtraction underflow: {a} - {b}")
    return a - b


def checked_mul(a: int, b: int) -> int:
    result = a * b
    if result > UINT256_MAX:
        raise ArithmeticOverflowError(f"multiplication overflow: {a} * {b}")
    return result


def checked_div(a: int, b: int) -> int:
    if b == 0:
        raise DivisionByZeroError(f"division by zero: {a} / 0")
    return a // b


def mul_div(a: int, b: int, denominator: int) -> int:
    """``a * b // denominator`` with the intermediate product range-checked."""
    return checked_div(checked_mul(a, b), denominator)
