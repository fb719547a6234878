"""Ledger host wiring.

Builds the collaborators the ledger consumes (state store, notification bus,
caller environment) for the configured backend:
- memory: process-local store and bus (dev mode, tests)
- redis:  hashes for state, Redis Streams for notifications

`main()` bootstraps a ledger: it constructs one over an empty store (when an
initial supply and creator are given) or re-opens the existing one, then logs
an integrity summary.
"""

from __future__ import annotations

import argparse
import logging
from typing import Optional

from src.core.ids import AccountId
from src.core.message_bus import InMemoryMessageBus, MessageBus, RedisStreamBus
from src.core.settings import Settings, load_settings

from .environment import CallerContext, ExecutionEnvironment
from .erc20 import Ledger
from .integrity import audit_ledger
from .state_store import InMemoryStateStore, RedisStateStore, StateStore


logger = logging.getLogger(__name__)


def create_state_store(settings: Settings) -> StateStore:
    """Create the appropriate state store based on settings."""
    if settings.backend == "redis":
        logger.info("Using Redis state store")
        return RedisStateStore(settings.redis_url, key_prefix=settings.key_prefix)
    logger.info("Using in-memory state store (dev mode)")
    return InMemoryStateStore()


def create_message_bus(settings: Settings) -> MessageBus:
    if settings.backend == "redis":
        return RedisStreamBus(settings.redis_url)
    return InMemoryMessageBus()


def open_or_construct(
    *,
    store: StateStore,
    bus: MessageBus,
    env: ExecutionEnvironment,
    initial_supply: Optional[int] = None,
    source_service: str = "erc20-ledger",
) -> Ledger:
    """Open the ledger over `store`, constructing it first if the store is empty.

    Construction needs `initial_supply`; the caller resolved from `env` becomes
    the holder of the whole supply.
    """

    # An already constructed store is re-opened; its supply is never changed.
    if initial_supply is None or store.get_total_supply() is not None:
        return Ledger.open(store=store, bus=bus, env=env, source_service=source_service)
    return Ledger.construct(initial_supply, store=store, bus=bus, env=env, source_service=source_service)


def main(argv: Optional[list[str]] = None) -> None:
    ap = argparse.ArgumentParser(description="Bootstrap or re-open the token ledger.")
    ap.add_argument("--settings", default="config/settings.yaml")
    ap.add_argument("--initial-supply", type=int, default=None)
    ap.add_argument("--creator", default=None, help="hex account credited with the initial supply")
    args = ap.parse_args(argv)

    s = load_settings(args.settings)
    logging.basicConfig(level=s.log_level)

    if args.initial_supply is not None and not args.creator:
        raise SystemExit("--creator is required with --initial-supply")

    env = CallerContext(AccountId.from_hex(args.creator) if args.creator else None)
    store = create_state_store(s)
    bus = create_message_bus(s)

    logger.info("Starting ledger host (env=%s, backend=%s)", s.env, s.backend)
    if s.backend == "memory":
        logger.warning("memory backend: ledger state is process-local and is discarded when this process exits")
    ledger = open_or_construct(
        store=store,
        bus=bus,
        env=env,
        initial_supply=args.initial_supply,
        source_service=s.source_service,
    )

    report = audit_ledger(store)
    logger.info(
        "Ledger ready: total_supply=%s holders=%s conserved=%s",
        ledger.total_supply(),
        report.holders,
        report.conserved,
    )
    for issue in report.issues:
        logger.warning("integrity_issue: %s", issue)


if __name__ == "__main__":
    main()
