from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from . import streams


ENVELOPE_REQUIRED_KEYS = {
    "event_id",
    "trace_id",
    "produced_at",
    "schema",
    "schema_version",
    "payload",
}
ENVELOPE_OPTIONAL_KEYS = {"source_service", "sequence"}

# Amounts are unsigned 128-bit on the wire.
MAX_WIRE_AMOUNT = 2**128 - 1
ACCOUNT_HEX_LEN = 2 + 64


def _require_exact_keys(obj: dict[str, Any], *, required: set[str], optional: set[str] | None = None) -> None:
    optional = optional or set()
    keys = set(obj.keys())
    missing = required - keys
    extra = keys - required - optional
    if missing:
        raise ValueError(f"missing keys: {sorted(missing)}")
    if extra:
        raise ValueError(f"extra keys not allowed in v1: {sorted(extra)}")


def _require_str(d: dict[str, Any], k: str) -> str:
    v = d.get(k)
    if not isinstance(v, str) or not v.strip():
        raise ValueError(f"{k} must be non-empty string")
    return v


def _require_int(d: dict[str, Any], k: str) -> int:
    v = d.get(k)
    if not isinstance(v, int) or isinstance(v, bool):
        raise ValueError(f"{k} must be int")
    return v


def _require_amount(d: dict[str, Any], k: str) -> int:
    v = _require_int(d, k)
    if not (0 <= v <= MAX_WIRE_AMOUNT):
        raise ValueError(f"{k} must be within 0..2**128-1")
    return v


def _require_account(d: dict[str, Any], k: str, *, nullable: bool = False) -> str | None:
    v = d.get(k)
    if v is None and nullable:
        return None
    if not isinstance(v, str) or len(v) != ACCOUNT_HEX_LEN or not v.startswith("0x"):
        raise ValueError(f"{k} must be 0x-prefixed 32-byte hex account")
    try:
        bytes.fromhex(v[2:])
    except ValueError as e:
        raise ValueError(f"{k} must be 0x-prefixed 32-byte hex account") from e
    return v


def _parse_iso8601(s: str) -> datetime:
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except Exception as e:  # pragma: no cover
        raise ValueError(f"invalid ISO8601 timestamp: {s}") from e
    if dt.tzinfo is None:
        raise ValueError("timestamp must include timezone")
    return dt


def validate_envelope_dict(event: dict[str, Any]) -> None:
    """Strict v1 validation.

    - v1 does not allow extra fields (schema evolution uses v2 streams)
    - payload must match schema-specific rules
    """

    _require_exact_keys(event, required=ENVELOPE_REQUIRED_KEYS, optional=ENVELOPE_OPTIONAL_KEYS)
    _require_str(event, "event_id")
    _require_str(event, "trace_id")
    produced_at = _require_str(event, "produced_at")
    _parse_iso8601(produced_at)

    schema = _require_str(event, "schema")
    schema_version = _require_int(event, "schema_version")
    if schema_version != 1 or not schema.endswith(".v1"):
        raise ValueError("schema_version must be 1 and schema must end with .v1")

    source_service = event.get("source_service")
    if source_service is not None and not isinstance(source_service, str):
        raise ValueError("source_service must be string or null")

    sequence = event.get("sequence")
    if sequence is not None and (not isinstance(sequence, int) or isinstance(sequence, bool) or sequence < 1):
        raise ValueError("sequence must be int >= 1 or null")

    payload = event.get("payload")
    if not isinstance(payload, dict):
        raise ValueError("payload must be object")
    validate_payload(schema, payload)


def validate_payload(schema: str, payload: dict[str, Any]) -> None:
    if schema == streams.LEDGER_TRANSFER_V1:
        _require_exact_keys(payload, required={"from", "to", "value"})
        src = _require_account(payload, "from", nullable=True)
        dst = _require_account(payload, "to", nullable=True)
        if src is None and dst is None:
            raise ValueError("transfer needs at least one of from/to")
        _require_amount(payload, "value")
        return

    if schema == streams.LEDGER_APPROVAL_V1:
        _require_exact_keys(payload, required={"owner", "spender", "value"})
        _require_account(payload, "owner")
        _require_account(payload, "spender")
        _require_amount(payload, "value")
        return

    # For new schemas: add v2 stream, then update this mapping.
    raise ValueError(f"unknown schema: {schema}")


def validate_many(events: Iterable[dict[str, Any]]) -> None:
    for ev in events:
        validate_envelope_dict(ev)
