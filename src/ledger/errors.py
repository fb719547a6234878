"""Ledger exceptions.

Ledger rules (insufficient funds, insufficient allowance) are reported as a
False return value, not an exception. Exceptions are reserved for misuse of
the ledger lifecycle, ill-typed input and fatal arithmetic overflow.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for ledger errors."""


class LedgerNotInitializedError(LedgerError):
    """The state store holds no constructed ledger."""


class LedgerAlreadyInitializedError(LedgerError):
    """A ledger was already constructed over this state store."""


class AmountOverflowError(LedgerError, ArithmeticError):
    """An amount left the unsigned 128-bit range.

    Fatal for the operation in progress: it aborts before anything is committed.
    """


class InvalidAmountError(LedgerError, ValueError):
    """Value is not an unsigned integer amount."""
