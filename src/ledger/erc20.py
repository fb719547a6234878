"""Fungible-token ledger.

Keeps per-account balances and per-(owner, spender) allowances over a fixed
total supply. Every public operation:
- resolves the caller once, before touching state
- stages its writes and notifications in a per-call change set
- commits the writes atomically, then publishes the notifications

Ledger rules never raise: a transfer that cannot happen returns False and
leaves state and the notification log untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from src.core.ids import AccountId, new_trace_id
from src.core.message_bus import MessageBus

from .amounts import checked_add, checked_sub, require_amount
from .environment import ExecutionEnvironment
from .errors import LedgerAlreadyInitializedError, LedgerNotInitializedError
from .events import Approval, Notification, Transfer, build_envelope
from .state_store import StateChanges, StateStore


logger = logging.getLogger(__name__)

DEFAULT_SOURCE_SERVICE = "erc20-ledger"


def _require_account(account: object, name: str) -> AccountId:
    if not isinstance(account, AccountId):
        raise TypeError(f"{name} must be an AccountId, got {type(account).__name__}")
    return account


@dataclass
class _Call:
    """Effects of one operation, not yet visible to anyone."""

    trace_id: str
    changes: StateChanges = field(default_factory=StateChanges)
    notifications: list[Notification] = field(default_factory=list)

    def emit(self, notification: Notification) -> None:
        self.notifications.append(notification)


class Ledger:
    """Single-token ledger over an injected state store, bus and environment.

    Use `Ledger.construct(...)` once per store, `Ledger.open(...)` afterwards.
    Operations are serialized by the store's lock, so every ledger over the
    same state waits for the running operation to commit and emit.
    """

    def __init__(
        self,
        *,
        store: StateStore,
        bus: MessageBus,
        env: ExecutionEnvironment,
        source_service: str = DEFAULT_SOURCE_SERVICE,
    ) -> None:
        self._store = store
        self._bus = bus
        self._env = env
        self._source_service = source_service
        self._lock = store.lock

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def construct(
        cls,
        initial_supply: int,
        *,
        store: StateStore,
        bus: MessageBus,
        env: ExecutionEnvironment,
        source_service: str = DEFAULT_SOURCE_SERVICE,
    ) -> "Ledger":
        """Create the ledger, crediting the whole supply to the caller.

        Emits a Transfer with no source (the mint signal).
        """

        ledger = cls(store=store, bus=bus, env=env, source_service=source_service)
        with ledger._lock:
            creator = env.caller()
            require_amount(initial_supply, name="initial_supply")
            if store.get_total_supply() is not None:
                raise LedgerAlreadyInitializedError("ledger already constructed over this store")

            call = ledger._new_call()
            call.changes.total_supply = initial_supply
            call.changes.balances[creator] = initial_supply
            call.emit(Transfer(from_=None, to=creator, value=initial_supply))
            ledger._commit(call)

        logger.info("ledger_constructed", extra={"creator": creator.hex(), "total_supply": initial_supply})
        return ledger

    @classmethod
    def open(
        cls,
        *,
        store: StateStore,
        bus: MessageBus,
        env: ExecutionEnvironment,
        source_service: str = DEFAULT_SOURCE_SERVICE,
    ) -> "Ledger":
        """Re-open a ledger constructed earlier over `store`."""

        total = store.get_total_supply()
        if total is None:
            raise LedgerNotInitializedError("no ledger constructed over this store")
        ledger = cls(store=store, bus=bus, env=env, source_service=source_service)
        logger.info("ledger_opened", extra={"total_supply": total})
        return ledger

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def total_supply(self) -> int:
        with self._lock:
            return self._require_initialized()

    def balance_of(self, account: AccountId) -> int:
        _require_account(account, "account")
        with self._lock:
            return self._store.get_balance(account)

    def allowance(self, owner: AccountId, spender: AccountId) -> int:
        _require_account(owner, "owner")
        _require_account(spender, "spender")
        with self._lock:
            return self._store.get_allowance(owner, spender)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def approve(self, spender: AccountId, value: int) -> bool:
        """Set the caller's allowance for `spender` to exactly `value`.

        Overwrites any previous approval. No balance check happens here; the
        owner's balance is checked when the spender transfers.
        """

        with self._lock:
            owner = self._env.caller()
            _require_account(spender, "spender")
            require_amount(value)
            self._require_initialized()

            call = self._new_call()
            call.changes.allowances[(owner, spender)] = value
            call.emit(Approval(owner=owner, spender=spender, value=value))
            self._commit(call)

        logger.debug("approved", extra={"owner": owner.hex(), "spender": spender.hex(), "value": value})
        return True

    def transfer(self, to: AccountId, value: int) -> bool:
        """Move `value` from the caller to `to`."""

        with self._lock:
            caller = self._env.caller()
            _require_account(to, "to")
            require_amount(value)
            self._require_initialized()

            call = self._new_call()
            if not self._transfer_from_to(call, caller, to, value):
                return False
            self._commit(call)
            return True

    def transfer_from(self, from_: AccountId, to: AccountId, value: int) -> bool:
        """Move `value` from `from_` to `to` on the caller's allowance.

        The allowance is decremented from the value read before the transfer.
        On any failure neither balances nor the allowance change.
        """

        with self._lock:
            spender = self._env.caller()
            _require_account(from_, "from_")
            _require_account(to, "to")
            require_amount(value)
            self._require_initialized()

            current = self._store.get_allowance(from_, spender)
            if current < value:
                logger.info(
                    "transfer_from_rejected",
                    extra={"reason": "insufficient_allowance", "owner": from_.hex(), "spender": spender.hex(), "value": value},
                )
                return False

            call = self._new_call()
            if not self._transfer_from_to(call, from_, to, value):
                return False
            call.changes.allowances[(from_, spender)] = checked_sub(current, value)
            self._commit(call)
            return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_initialized(self) -> int:
        total = self._store.get_total_supply()
        if total is None:
            raise LedgerNotInitializedError("no ledger constructed over this store")
        return total

    def _new_call(self) -> _Call:
        return _Call(trace_id=new_trace_id())

    def _transfer_from_to(self, call: _Call, from_: AccountId, to: AccountId, value: int) -> bool:
        # Both balances are read before either write is staged.
        from_balance = self._store.get_balance(from_)
        to_balance = self._store.get_balance(to)
        if from_balance < value:
            logger.info(
                "transfer_rejected",
                extra={"reason": "insufficient_funds", "src": from_.hex(), "dst": to.hex(), "value": value},
            )
            return False

        # Self-transfer is a no-op on the balance.
        if from_ != to:
            call.changes.balances[from_] = checked_sub(from_balance, value)
            call.changes.balances[to] = checked_add(to_balance, value)

        call.emit(Transfer(from_=from_, to=to, value=value))
        logger.debug("transferred", extra={"src": from_.hex(), "dst": to.hex(), "value": value})
        return True

    def _prior_state(self, changes: StateChanges) -> StateChanges:
        prior = StateChanges(
            balances={a: self._store.get_balance(a) for a in changes.balances},
            allowances={k: self._store.get_allowance(*k) for k in changes.allowances},
            sequence=self._store.get_sequence() if changes.sequence is not None else None,
        )
        if changes.total_supply is not None:
            previous_total = self._store.get_total_supply()
            if previous_total is None:
                prior.drop_total_supply = True
            else:
                prior.total_supply = previous_total
        return prior

    def _commit(self, call: _Call) -> None:
        # Sequence numbers run across both streams in emission order.
        last = self._store.get_sequence()
        envelopes = [
            (
                n.schema,
                build_envelope(n, trace_id=call.trace_id, source_service=self._source_service, sequence=last + i),
            )
            for i, n in enumerate(call.notifications, start=1)
        ]
        if envelopes:
            call.changes.sequence = last + len(envelopes)
        prior = self._prior_state(call.changes)
        self._store.apply(call.changes)
        try:
            self._bus.publish_many(envelopes)
        except Exception:
            # Committed state must not outlive its missing notifications.
            logger.error("notification_publish_failed", extra={"trace_id": call.trace_id}, exc_info=True)
            self._store.apply(prior)
            raise
