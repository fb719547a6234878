"""Checked unsigned 128-bit arithmetic for token amounts.

Python ints never wrap, so the width is enforced explicitly: every result is
range-checked and leaving 0..2**128-1 raises instead of wrapping.
"""

from __future__ import annotations

from .errors import AmountOverflowError, InvalidAmountError


AMOUNT_BITS = 128
MAX_AMOUNT = 2**AMOUNT_BITS - 1


def require_amount(value: object, *, name: str = "value") -> int:
    """Return `value` if it is a representable amount, raise otherwise."""

    # bool is an int subclass; True is not an amount.
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidAmountError(f"{name} must be int, got {type(value).__name__}")
    if value < 0:
        raise InvalidAmountError(f"{name} must be >= 0")
    if value > MAX_AMOUNT:
        raise AmountOverflowError(f"{name} exceeds 2**{AMOUNT_BITS}-1")
    return value


def checked_add(a: int, b: int) -> int:
    out = a + b
    if out > MAX_AMOUNT:
        raise AmountOverflowError(f"{a} + {b} overflows u{AMOUNT_BITS}")
    return out


def checked_sub(a: int, b: int) -> int:
    out = a - b
    if out < 0:
        raise AmountOverflowError(f"{a} - {b} underflows u{AMOUNT_BITS}")
    return out
