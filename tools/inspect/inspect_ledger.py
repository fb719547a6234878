from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Allow running from repo root without installing as a package.
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from src.contracts.streams import ALL_STREAMS_V1
from src.core.ids import AccountId
from src.core.settings import load_settings
from src.ledger.events import notification_from_envelope, involves
from src.ledger.integrity import audit_ledger
from src.ledger.service import create_message_bus, create_state_store


def main() -> None:
    ap = argparse.ArgumentParser(description="Read-only inspection of ledger state and notifications.")
    ap.add_argument("--settings", default="config/settings.yaml")
    sub = ap.add_subparsers(dest="cmd", required=True)

    sub.add_parser("summary", help="total supply and integrity audit")

    p_bal = sub.add_parser("balance")
    p_bal.add_argument("account")

    p_allow = sub.add_parser("allowance")
    p_allow.add_argument("owner")
    p_allow.add_argument("spender")

    p_ev = sub.add_parser("events")
    p_ev.add_argument("--stream", choices=ALL_STREAMS_V1, default=None)
    p_ev.add_argument("--account", default=None, help="only notifications indexed by this account")
    p_ev.add_argument("--count", type=int, default=None)

    args = ap.parse_args()
    s = load_settings(args.settings)
    store = create_state_store(s)

    if args.cmd == "summary":
        print(audit_ledger(store).to_markdown())
        return

    if args.cmd == "balance":
        print(store.get_balance(AccountId.from_hex(args.account)))
        return

    if args.cmd == "allowance":
        print(store.get_allowance(AccountId.from_hex(args.owner), AccountId.from_hex(args.spender)))
        return

    bus = create_message_bus(s)
    account = AccountId.from_hex(args.account) if args.account else None
    events = [ev for stream in ([args.stream] if args.stream else ALL_STREAMS_V1) for ev in bus.read(stream, count=args.count)]
    # Merge the streams back into emission order.
    events.sort(key=lambda ev: (ev.sequence is None, ev.sequence or 0, ev.produced_at))
    for ev in events:
        n = notification_from_envelope(ev)
        if account is not None and not involves(n, account):
            continue
        print(f"#{ev.sequence} {ev.produced_at.isoformat()} {ev.schema} trace={ev.trace_id} {ev.payload}")


if __name__ == "__main__":
    main()
