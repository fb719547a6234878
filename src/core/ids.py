from __future__ import annotations

import uuid
from dataclasses import dataclass


ACCOUNT_ID_LEN = 32


def new_event_id() -> str:
    return str(uuid.uuid4())


def new_trace_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class AccountId:
    """Opaque 32-byte account identity (e.g. derived from a public key)."""

    raw: bytes

    def __post_init__(self) -> None:
        if not isinstance(self.raw, (bytes, bytearray)):
            raise TypeError("AccountId.raw must be bytes")
        if len(self.raw) != ACCOUNT_ID_LEN:
            raise ValueError(f"account id must be {ACCOUNT_ID_LEN} bytes, got {len(self.raw)}")
        # Normalize bytearray so the value stays hashable.
        object.__setattr__(self, "raw", bytes(self.raw))

    @classmethod
    def from_hex(cls, s: str) -> "AccountId":
        if not isinstance(s, str):
            raise ValueError("account id must be a hex string")
        body = s[2:] if s.lower().startswith("0x") else s
        if len(body) != ACCOUNT_ID_LEN * 2:
            raise ValueError(f"account id must be {ACCOUNT_ID_LEN * 2} hex digits")
        try:
            return cls(bytes.fromhex(body))
        except ValueError as e:
            raise ValueError(f"invalid account id: {s}") from e

    @classmethod
    def repeat(cls, byte: int) -> "AccountId":
        """Account made of one repeated byte, handy for fixtures (0x01 -> 0x0101..01)."""
        return cls(bytes([byte]) * ACCOUNT_ID_LEN)

    def hex(self) -> str:
        return "0x" + self.raw.hex()

    def __str__(self) -> str:
        return self.hex()

    def __repr__(self) -> str:
        return f"AccountId({self.hex()})"
