"""Fungible-token ledger: balances, allowances and their notifications."""

from .environment import CallerContext, ExecutionEnvironment
from .erc20 import Ledger
from .errors import (
    AmountOverflowError,
    InvalidAmountError,
    LedgerAlreadyInitializedError,
    LedgerError,
    LedgerNotInitializedError,
)
from .events import Approval, Transfer
from .state_store import InMemoryStateStore, RedisStateStore, StateChanges, StateStore

__all__ = [
    "Ledger",
    "CallerContext",
    "ExecutionEnvironment",
    "Transfer",
    "Approval",
    "StateStore",
    "StateChanges",
    "InMemoryStateStore",
    "RedisStateStore",
    "LedgerError",
    "LedgerNotInitializedError",
    "LedgerAlreadyInitializedError",
    "AmountOverflowError",
    "InvalidAmountError",
]
