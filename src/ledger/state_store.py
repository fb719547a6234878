"""Durable ledger state: total supply, balances and allowances.

Maps are sparse. A missing entry reads as zero and writing zero deletes the
entry, so accounts never need registering and zero writes never grow the store.

Each store also owns the lock that serializes ledger operations over its state
and the sequence counter that orders the ledger's notifications.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Iterator, Optional, Protocol

from src.core.ids import AccountId


AllowanceKey = tuple[AccountId, AccountId]


@dataclass
class StateChanges:
    """Writes staged by one ledger operation, applied all-or-nothing."""

    total_supply: Optional[int] = None
    balances: dict[AccountId, int] = field(default_factory=dict)
    allowances: dict[AllowanceKey, int] = field(default_factory=dict)
    # Last notification sequence number handed out.
    sequence: Optional[int] = None
    # Only set when undoing a construction.
    drop_total_supply: bool = False

    def is_empty(self) -> bool:
        return (
            self.total_supply is None
            and self.sequence is None
            and not self.drop_total_supply
            and not self.balances
            and not self.allowances
        )


class StateStore(Protocol):
    """Interface for ledger state persistence.

    Contract: after `apply(changes)` returns, every later read observes all of
    `changes`; if it raises, none of them. `lock` is shared by every ledger
    operating on this state in the process.
    """

    lock: threading.RLock

    def get_total_supply(self) -> Optional[int]:
        """Total supply, or None when no ledger was constructed here."""
        ...

    def get_sequence(self) -> int:
        """Sequence number of the last notification emitted, 0 before any."""
        ...

    def get_balance(self, account: AccountId) -> int:
        ...

    def get_allowance(self, owner: AccountId, spender: AccountId) -> int:
        ...

    def apply(self, changes: StateChanges) -> None:
        ...

    def iter_balances(self) -> Iterator[tuple[AccountId, int]]:
        ...

    def iter_allowances(self) -> Iterator[tuple[AllowanceKey, int]]:
        ...


class InMemoryStateStore:
    """In-memory implementation for dev mode and tests."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self._total_supply: Optional[int] = None
        self._sequence = 0
        self._balances: dict[AccountId, int] = {}
        self._allowances: dict[AllowanceKey, int] = {}

    def get_total_supply(self) -> Optional[int]:
        return self._total_supply

    def get_sequence(self) -> int:
        return self._sequence

    def get_balance(self, account: AccountId) -> int:
        return self._balances.get(account, 0)

    def get_allowance(self, owner: AccountId, spender: AccountId) -> int:
        return self._allowances.get((owner, spender), 0)

    def apply(self, changes: StateChanges) -> None:
        if changes.drop_total_supply:
            self._total_supply = None
        elif changes.total_supply is not None:
            self._total_supply = changes.total_supply
        if changes.sequence is not None:
            self._sequence = changes.sequence
        _write_sparse(self._balances, changes.balances)
        _write_sparse(self._allowances, changes.allowances)

    def iter_balances(self) -> Iterator[tuple[AccountId, int]]:
        yield from list(self._balances.items())

    def iter_allowances(self) -> Iterator[tuple[AllowanceKey, int]]:
        yield from list(self._allowances.items())


def _write_sparse(target: dict, writes: dict) -> None:
    for k, v in writes.items():
        if v == 0:
            target.pop(k, None)
        else:
            target[k] = v


_LOCKS: dict[tuple[str, str], threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


def _shared_lock(redis_url: str, prefix: str) -> threading.RLock:
    # Store objects over the same keys share one lock within the process.
    with _LOCKS_GUARD:
        return _LOCKS.setdefault((redis_url, prefix), threading.RLock())


class RedisStateStore:
    """Redis implementation for production.

    Layout (values are decimal strings, amounts exceed 64 bits):

        {prefix}:meta        hash  total_supply -> int, sequence -> int
        {prefix}:balances    hash  <account hex> -> int
        {prefix}:allowances  hash  <owner hex>:<spender hex> -> int
    """

    def __init__(self, redis_url: str, *, key_prefix: str = "erc20", client=None) -> None:
        self._redis_url = redis_url
        self._prefix = key_prefix.rstrip(":")
        self._client = client
        self.lock = _shared_lock(redis_url, self._prefix)

    def _get_client(self):
        if self._client is None:
            import redis  # type: ignore

            self._client = redis.Redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    @property
    def meta_key(self) -> str:
        return f"{self._prefix}:meta"

    @property
    def balances_key(self) -> str:
        return f"{self._prefix}:balances"

    @property
    def allowances_key(self) -> str:
        return f"{self._prefix}:allowances"

    @staticmethod
    def _allowance_field(owner: AccountId, spender: AccountId) -> str:
        return f"{owner.hex()}:{spender.hex()}"

    def get_total_supply(self) -> Optional[int]:
        v = self._get_client().hget(self.meta_key, "total_supply")
        return int(v) if v is not None else None

    def get_sequence(self) -> int:
        v = self._get_client().hget(self.meta_key, "sequence")
        return int(v) if v is not None else 0

    def get_balance(self, account: AccountId) -> int:
        v = self._get_client().hget(self.balances_key, account.hex())
        return int(v) if v is not None else 0

    def get_allowance(self, owner: AccountId, spender: AccountId) -> int:
        v = self._get_client().hget(self.allowances_key, self._allowance_field(owner, spender))
        return int(v) if v is not None else 0

    def apply(self, changes: StateChanges) -> None:
        if changes.is_empty():
            return
        # MULTI/EXEC: all writes of one operation land together.
        pipe = self._get_client().pipeline(transaction=True)
        if changes.drop_total_supply:
            pipe.hdel(self.meta_key, "total_supply")
        elif changes.total_supply is not None:
            pipe.hset(self.meta_key, "total_supply", str(changes.total_supply))
        if changes.sequence is not None:
            pipe.hset(self.meta_key, "sequence", str(changes.sequence))
        for account, v in changes.balances.items():
            if v == 0:
                pipe.hdel(self.balances_key, account.hex())
            else:
                pipe.hset(self.balances_key, account.hex(), str(v))
        for (owner, spender), v in changes.allowances.items():
            fld = self._allowance_field(owner, spender)
            if v == 0:
                pipe.hdel(self.allowances_key, fld)
            else:
                pipe.hset(self.allowances_key, fld, str(v))
        pipe.execute()

    def iter_balances(self) -> Iterator[tuple[AccountId, int]]:
        for k, v in self._get_client().hgetall(self.balances_key).items():
            yield AccountId.from_hex(k), int(v)

    def iter_allowances(self) -> Iterator[tuple[AllowanceKey, int]]:
        for k, v in self._get_client().hgetall(self.allowances_key).items():
            owner_hex, spender_hex = k.split(":", 1)
            yield (AccountId.from_hex(owner_hex), AccountId.from_hex(spender_hex)), int(v)
