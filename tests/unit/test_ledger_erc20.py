from __future__ import annotations

import random
import threading
import time

import pytest

from src.contracts import streams
from src.core.ids import AccountId
from src.core.message_bus import InMemoryMessageBus
from src.ledger.amounts import MAX_AMOUNT
from src.ledger.environment import CallerContext
from src.ledger.erc20 import Ledger
from src.ledger.errors import (
    AmountOverflowError,
    InvalidAmountError,
    LedgerAlreadyInitializedError,
    LedgerNotInitializedError,
)
from src.ledger.events import notification_from_envelope
from src.ledger.state_store import InMemoryStateStore


A = AccountId.repeat(0x01)
B = AccountId.repeat(0x00)
C = AccountId.repeat(0x02)
D = AccountId.repeat(0x03)


class _Host:
    """Store + bus + caller, as the host environment would supply them."""

    def __init__(self) -> None:
        self.store = InMemoryStateStore()
        self.bus = InMemoryMessageBus()
        self.env = CallerContext(A)

    def construct(self, supply: int) -> Ledger:
        return Ledger.construct(supply, store=self.store, bus=self.bus, env=self.env)

    def transfers(self):
        return [notification_from_envelope(ev) for ev in self.bus.read(streams.LEDGER_TRANSFER_V1)]

    def approvals(self):
        return [notification_from_envelope(ev) for ev in self.bus.read(streams.LEDGER_APPROVAL_V1)]


class _FailingBus(InMemoryMessageBus):
    def publish_many(self, events) -> None:
        raise ConnectionError("bus down")


@pytest.fixture
def host() -> _Host:
    return _Host()


def test_new_works(host: _Host) -> None:
    ledger = host.construct(777)
    assert ledger.total_supply() == 777
    assert ledger.balance_of(A) == 777
    assert ledger.balance_of(B) == 0


def test_construct_emits_mint_transfer(host: _Host) -> None:
    host.construct(100)
    transfers = host.transfers()
    assert len(transfers) == 1
    assert transfers[0].is_mint
    assert transfers[0].from_ is None
    assert transfers[0].to == A
    assert transfers[0].value == 100


def test_construct_zero_supply_stores_no_entry(host: _Host) -> None:
    ledger = host.construct(0)
    assert ledger.total_supply() == 0
    assert ledger.balance_of(A) == 0
    assert list(host.store.iter_balances()) == []


def test_construct_twice_on_same_store_raises(host: _Host) -> None:
    host.construct(100)
    with pytest.raises(LedgerAlreadyInitializedError):
        host.construct(50)
    assert host.store.get_total_supply() == 100
    assert len(host.transfers()) == 1


def test_construct_unrepresentable_supply_aborts(host: _Host) -> None:
    with pytest.raises(AmountOverflowError):
        host.construct(MAX_AMOUNT + 1)
    assert host.store.get_total_supply() is None
    assert host.transfers() == []


def test_construct_at_max_supply(host: _Host) -> None:
    ledger = host.construct(MAX_AMOUNT)
    assert ledger.balance_of(A) == MAX_AMOUNT


@pytest.mark.parametrize("bad", [-1, 1.5, "10", True])
def test_construct_rejects_non_amounts(host: _Host, bad) -> None:
    with pytest.raises(InvalidAmountError):
        host.construct(bad)


def test_construct_without_caller_raises() -> None:
    with pytest.raises(RuntimeError):
        Ledger.construct(1, store=InMemoryStateStore(), bus=InMemoryMessageBus(), env=CallerContext())


def test_open_reads_persisted_state(host: _Host) -> None:
    ledger = host.construct(100)
    assert ledger.transfer(C, 30) is True

    reopened = Ledger.open(store=host.store, bus=host.bus, env=CallerContext(C))
    assert reopened.total_supply() == 100
    assert reopened.balance_of(A) == 70
    assert reopened.balance_of(C) == 30
    assert reopened.transfer(B, 5) is True
    assert ledger.balance_of(B) == 5


def test_open_uninitialized_store_raises() -> None:
    with pytest.raises(LedgerNotInitializedError):
        Ledger.open(store=InMemoryStateStore(), bus=InMemoryMessageBus(), env=CallerContext(A))


def test_transfer_works(host: _Host) -> None:
    ledger = host.construct(100)
    assert ledger.transfer(B, 10) is True
    assert ledger.balance_of(B) == 10
    assert ledger.balance_of(A) == 90
    assert ledger.transfer(B, 100) is False


def test_transfer_insufficient_funds_changes_nothing(host: _Host) -> None:
    ledger = host.construct(100)
    assert ledger.transfer(B, 101) is False
    assert ledger.balance_of(A) == 100
    assert ledger.balance_of(B) == 0
    # only the mint
    assert len(host.transfers()) == 1


def test_transfer_emits_transfer_notification(host: _Host) -> None:
    ledger = host.construct(100)
    ledger.transfer(C, 25)
    last = host.transfers()[-1]
    assert (last.from_, last.to, last.value) == (A, C, 25)


def test_transfer_whole_balance_deletes_entry(host: _Host) -> None:
    ledger = host.construct(100)
    assert ledger.transfer(B, 100) is True
    assert ledger.balance_of(A) == 0
    assert dict(host.store.iter_balances()) == {B: 100}


def test_self_transfer_keeps_balance(host: _Host) -> None:
    ledger = host.construct(100)
    assert ledger.transfer(A, 60) is True
    assert ledger.balance_of(A) == 100
    assert host.transfers()[-1].to == A


def test_self_transfer_at_max_supply_does_not_overflow(host: _Host) -> None:
    ledger = host.construct(MAX_AMOUNT)
    assert ledger.transfer(A, MAX_AMOUNT) is True
    assert ledger.balance_of(A) == MAX_AMOUNT


def test_self_transfer_over_balance_fails(host: _Host) -> None:
    ledger = host.construct(100)
    assert ledger.transfer(A, 101) is False
    assert ledger.balance_of(A) == 100


def test_zero_value_transfer_succeeds(host: _Host) -> None:
    ledger = host.construct(100)
    assert ledger.transfer(B, 0) is True
    assert ledger.balance_of(B) == 0
    assert list(dict(host.store.iter_balances())) == [A]


def test_transfer_rejects_non_account_recipient(host: _Host) -> None:
    ledger = host.construct(100)
    with pytest.raises(TypeError):
        ledger.transfer(B.hex(), 1)  # type: ignore[arg-type]


def test_approve_overwrites_allowance(host: _Host) -> None:
    ledger = host.construct(100)
    assert ledger.approve(B, 20) is True
    assert ledger.allowance(A, B) == 20
    assert ledger.approve(B, 5) is True
    assert ledger.allowance(A, B) == 5
    assert [n.value for n in host.approvals()] == [20, 5]
    assert host.approvals()[-1].owner == A


def test_approve_more_than_balance_is_allowed(host: _Host) -> None:
    ledger = host.construct(100)
    assert ledger.approve(B, 10_000) is True
    assert ledger.allowance(A, B) == 10_000


def test_approve_zero_revokes(host: _Host) -> None:
    ledger = host.construct(100)
    ledger.approve(B, 20)
    ledger.approve(B, 0)
    assert ledger.allowance(A, B) == 0
    assert list(host.store.iter_allowances()) == []


def test_transfer_from_works(host: _Host) -> None:
    ledger = host.construct(100)
    ledger.approve(A, 20)
    assert ledger.transfer_from(A, B, 10) is True
    assert ledger.balance_of(B) == 10
    assert ledger.allowance(A, A) == 10


def test_allowances_works(host: _Host) -> None:
    ledger = host.construct(100)
    ledger.approve(A, 200)
    assert ledger.allowance(A, A) == 200

    assert ledger.transfer_from(A, B, 50) is True
    assert ledger.balance_of(B) == 50
    assert ledger.allowance(A, A) == 150

    assert ledger.transfer_from(A, B, 100) is False
    assert ledger.balance_of(B) == 50
    assert ledger.allowance(A, A) == 150


def test_delegated_transfer_by_third_party(host: _Host) -> None:
    ledger = host.construct(1000)
    ledger.approve(B, 200)

    with host.env.acting_as(B):
        assert ledger.transfer_from(A, C, 50) is True
    assert ledger.balance_of(C) == 50
    assert ledger.allowance(A, B) == 150

    with host.env.acting_as(B):
        assert ledger.transfer_from(A, C, 200) is False
    assert ledger.allowance(A, B) == 150
    assert ledger.balance_of(C) == 50
    assert ledger.balance_of(A) == 950


def test_transfer_from_insufficient_funds_leaves_allowance(host: _Host) -> None:
    ledger = host.construct(100)
    ledger.transfer(C, 90)
    ledger.approve(B, 50)
    emitted = len(host.transfers())

    with host.env.acting_as(B):
        assert ledger.transfer_from(A, D, 20) is False
    assert ledger.allowance(A, B) == 50
    assert ledger.balance_of(A) == 10
    assert ledger.balance_of(D) == 0
    assert len(host.transfers()) == emitted


def test_transfer_from_without_approval_fails(host: _Host) -> None:
    ledger = host.construct(100)
    with host.env.acting_as(B):
        assert ledger.transfer_from(A, B, 1) is False
    assert ledger.balance_of(A) == 100


def test_transfer_from_emits_only_transfer(host: _Host) -> None:
    ledger = host.construct(100)
    ledger.approve(B, 30)
    with host.env.acting_as(B):
        ledger.transfer_from(A, C, 30)
    assert len(host.approvals()) == 1
    last = host.transfers()[-1]
    assert (last.from_, last.to, last.value) == (A, C, 30)
    # Allowance consumed exactly: entry is gone.
    assert list(host.store.iter_allowances()) == []


def test_direct_transfer_does_not_consume_allowance(host: _Host) -> None:
    ledger = host.construct(100)
    ledger.approve(B, 40)
    ledger.transfer(B, 10)
    assert ledger.allowance(A, B) == 40


def test_each_call_gets_its_own_trace_id(host: _Host) -> None:
    ledger = host.construct(100)
    ledger.transfer(B, 1)
    ledger.transfer(C, 1)
    evs = host.bus.read(streams.LEDGER_TRANSFER_V1)
    assert len({ev.trace_id for ev in evs}) == 3
    assert all(ev.source_service == "erc20-ledger" for ev in evs)


def test_reads_do_not_mutate(host: _Host) -> None:
    ledger = host.construct(100)
    ledger.approve(B, 7)
    before = (dict(host.store.iter_balances()), dict(host.store.iter_allowances()))
    for _ in range(5):
        assert ledger.balance_of(A) == 100
        assert ledger.balance_of(D) == 0
        assert ledger.allowance(A, B) == 7
        assert ledger.allowance(B, A) == 0
        assert ledger.total_supply() == 100
    after = (dict(host.store.iter_balances()), dict(host.store.iter_allowances()))
    assert before == after
    assert len(host.transfers()) == 1


def test_conservation_over_random_operations(host: _Host) -> None:
    rng = random.Random(7)
    accounts = [A, B, C, D]
    ledger = host.construct(10_000)

    for _ in range(300):
        caller = rng.choice(accounts)
        with host.env.acting_as(caller):
            op = rng.choice(["transfer", "approve", "transfer_from"])
            if op == "transfer":
                ledger.transfer(rng.choice(accounts), rng.randint(0, 3000))
            elif op == "approve":
                ledger.approve(rng.choice(accounts), rng.randint(0, 3000))
            else:
                ledger.transfer_from(rng.choice(accounts), rng.choice(accounts), rng.randint(0, 3000))
        assert sum(ledger.balance_of(a) for a in accounts) == ledger.total_supply()
        assert all(v > 0 for _, v in host.store.iter_balances())


def test_publish_failure_reverts_transfer(host: _Host) -> None:
    host.construct(100)
    ledger = Ledger.open(store=host.store, bus=_FailingBus(), env=host.env)
    with pytest.raises(ConnectionError):
        ledger.transfer(B, 10)
    assert ledger.balance_of(A) == 100
    assert ledger.balance_of(B) == 0


def test_publish_failure_reverts_transfer_from_allowance(host: _Host) -> None:
    host.construct(100)
    Ledger.open(store=host.store, bus=host.bus, env=host.env).approve(B, 30)
    ledger = Ledger.open(store=host.store, bus=_FailingBus(), env=host.env)
    with host.env.acting_as(B):
        with pytest.raises(ConnectionError):
            ledger.transfer_from(A, C, 30)
    assert ledger.allowance(A, B) == 30
    assert ledger.balance_of(C) == 0


def test_publish_failure_reverts_construction() -> None:
    store = InMemoryStateStore()
    with pytest.raises(ConnectionError):
        Ledger.construct(100, store=store, bus=_FailingBus(), env=CallerContext(A))
    assert store.get_total_supply() is None
    assert store.get_balance(A) == 0


def test_directly_built_ledger_reads_supply_from_store(host: _Host) -> None:
    host.construct(100)
    ledger = Ledger(store=host.store, bus=host.bus, env=host.env)
    assert ledger.total_supply() == 100
    assert ledger.transfer(B, 10) is True


def test_directly_built_ledger_over_empty_store_refuses_everything() -> None:
    store = InMemoryStateStore()
    bus = InMemoryMessageBus()
    ledger = Ledger(store=store, bus=bus, env=CallerContext(A))

    with pytest.raises(LedgerNotInitializedError):
        ledger.total_supply()
    with pytest.raises(LedgerNotInitializedError):
        ledger.approve(B, 5)
    with pytest.raises(LedgerNotInitializedError):
        ledger.transfer(B, 0)
    with pytest.raises(LedgerNotInitializedError):
        ledger.transfer_from(A, B, 0)

    assert list(store.iter_allowances()) == []
    assert list(store.iter_balances()) == []
    assert store.get_sequence() == 0
    assert bus.read(streams.LEDGER_APPROVAL_V1) == []
    assert bus.read(streams.LEDGER_TRANSFER_V1) == []


class _SlowStore(InMemoryStateStore):
    """Widens the read-then-write window of every balance read."""

    def get_balance(self, account: AccountId) -> int:
        value = super().get_balance(account)
        time.sleep(0.05)
        return value


def test_two_ledgers_over_one_store_cannot_double_spend() -> None:
    store = _SlowStore()
    bus = InMemoryMessageBus()
    Ledger.construct(100, store=store, bus=bus, env=CallerContext(A))

    results: list[bool] = []
    barrier = threading.Barrier(2)

    def spend(to: AccountId) -> None:
        ledger = Ledger.open(store=store, bus=bus, env=CallerContext(A))
        barrier.wait()
        results.append(ledger.transfer(to, 100))

    threads = [threading.Thread(target=spend, args=(dst,)) for dst in (C, D)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == [False, True]
    assert store.get_balance(A) == 0
    assert store.get_balance(C) + store.get_balance(D) == 100
    assert len(bus.read(streams.LEDGER_TRANSFER_V1)) == 2


def test_sequence_orders_notifications_across_streams(host: _Host) -> None:
    ledger = host.construct(100)
    ledger.approve(B, 10)
    ledger.transfer(C, 5)
    with host.env.acting_as(B):
        ledger.transfer_from(A, D, 10)
    ledger.approve(C, 0)

    merged = host.bus.read(streams.LEDGER_TRANSFER_V1) + host.bus.read(streams.LEDGER_APPROVAL_V1)
    merged.sort(key=lambda ev: ev.sequence)
    assert [ev.sequence for ev in merged] == [1, 2, 3, 4, 5]
    assert [ev.schema for ev in merged] == [
        streams.LEDGER_TRANSFER_V1,
        streams.LEDGER_APPROVAL_V1,
        streams.LEDGER_TRANSFER_V1,
        streams.LEDGER_TRANSFER_V1,
        streams.LEDGER_APPROVAL_V1,
    ]
    assert host.store.get_sequence() == 5


def test_rejected_operations_do_not_advance_sequence(host: _Host) -> None:
    ledger = host.construct(100)
    assert ledger.transfer(B, 101) is False
    with host.env.acting_as(B):
        assert ledger.transfer_from(A, C, 1) is False
    assert host.store.get_sequence() == 1

    ledger.transfer(B, 1)
    assert [ev.sequence for ev in host.bus.read(streams.LEDGER_TRANSFER_V1)] == [1, 2]


def test_reopened_ledger_continues_sequence(host: _Host) -> None:
    host.construct(100).approve(B, 1)
    reopened = Ledger.open(store=host.store, bus=host.bus, env=host.env)
    reopened.transfer(B, 1)
    assert host.bus.read(streams.LEDGER_TRANSFER_V1)[-1].sequence == 3


def test_publish_failure_reverts_sequence(host: _Host) -> None:
    host.construct(100)
    failing = Ledger.open(store=host.store, bus=_FailingBus(), env=host.env)
    with pytest.raises(ConnectionError):
        failing.approve(B, 5)
    assert host.store.get_sequence() == 1

    Ledger.open(store=host.store, bus=host.bus, env=host.env).approve(B, 5)
    assert host.bus.read(streams.LEDGER_APPROVAL_V1)[0].sequence == 2
