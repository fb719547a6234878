"""Calling identity supplied by the host environment."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional, Protocol

from src.core.ids import AccountId


class ExecutionEnvironment(Protocol):
    """Resolves who is invoking the operation in progress."""

    def caller(self) -> AccountId:
        ...


class CallerContext:
    """Caller resolution for a single-threaded host (CLI, tests, embedded use).

    The host sets the caller before invoking a ledger operation; the ledger
    reads it once per operation.
    """

    def __init__(self, caller: Optional[AccountId] = None) -> None:
        self._caller = caller

    def caller(self) -> AccountId:
        if self._caller is None:
            raise RuntimeError("no caller set for the current invocation")
        return self._caller

    def set_caller(self, account: AccountId) -> None:
        if not isinstance(account, AccountId):
            raise TypeError("caller must be an AccountId")
        self._caller = account

    @contextmanager
    def acting_as(self, account: AccountId) -> Iterator[AccountId]:
        previous = self._caller
        self.set_caller(account)
        try:
            yield account
        finally:
            self._caller = previous
