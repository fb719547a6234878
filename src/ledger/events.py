"""Ledger notifications and their v1 envelopes.

Output streams (v1):
- ledger.transfer.v1
- ledger.approval.v1

Contract rules:
- Strict v1 envelope + payload validation (no extra fields)
- Payload schema enforced by src/contracts/validation.py
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from src.contracts import streams
from src.core.ids import AccountId, new_event_id
from src.core.models import EventEnvelope


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _hex_or_none(account: Optional[AccountId]) -> Optional[str]:
    return account.hex() if account is not None else None


@dataclass(frozen=True)
class Transfer:
    """Balance movement. `from_` is None for the construction mint."""

    from_: Optional[AccountId]
    to: Optional[AccountId]
    value: int

    schema = streams.LEDGER_TRANSFER_V1

    @property
    def is_mint(self) -> bool:
        return self.from_ is None

    def topics(self) -> tuple[Optional[AccountId], ...]:
        return (self.from_, self.to)

    def payload(self) -> Dict[str, Any]:
        return {"from": _hex_or_none(self.from_), "to": _hex_or_none(self.to), "value": self.value}


@dataclass(frozen=True)
class Approval:
    owner: AccountId
    spender: AccountId
    value: int

    schema = streams.LEDGER_APPROVAL_V1

    def topics(self) -> tuple[Optional[AccountId], ...]:
        return (self.owner, self.spender)

    def payload(self) -> Dict[str, Any]:
        return {"owner": self.owner.hex(), "spender": self.spender.hex(), "value": self.value}


Notification = Union[Transfer, Approval]


def build_envelope(
    notification: Notification,
    *,
    trace_id: str,
    source_service: str,
    sequence: Optional[int] = None,
) -> EventEnvelope:
    return EventEnvelope(
        event_id=new_event_id(),
        trace_id=trace_id,
        produced_at=_now_utc(),
        schema=notification.schema,
        schema_version=1,
        payload=notification.payload(),
        source_service=source_service,
        sequence=sequence,
    )


def notification_from_envelope(ev: EventEnvelope) -> Notification:
    """Decode a ledger envelope back into its notification (for observers)."""

    p = ev.payload
    if ev.schema == streams.LEDGER_TRANSFER_V1:
        return Transfer(
            from_=AccountId.from_hex(p["from"]) if p["from"] is not None else None,
            to=AccountId.from_hex(p["to"]) if p["to"] is not None else None,
            value=int(p["value"]),
        )
    if ev.schema == streams.LEDGER_APPROVAL_V1:
        return Approval(
            owner=AccountId.from_hex(p["owner"]),
            spender=AccountId.from_hex(p["spender"]),
            value=int(p["value"]),
        )
    raise ValueError(f"not a ledger notification: {ev.schema}")


def involves(notification: Notification, account: AccountId) -> bool:
    """True when `account` is one of the notification's indexed topics."""
    return account in notification.topics()
