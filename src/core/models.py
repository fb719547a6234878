from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class EventEnvelope:
    event_id: str
    trace_id: str
    produced_at: datetime
    schema: str
    schema_version: int
    payload: Dict[str, Any]
    source_service: Optional[str] = None
    # Position in the ledger-wide notification order, shared across streams.
    sequence: Optional[int] = None


def envelope_to_wire(event: EventEnvelope) -> dict:
    d = asdict(event)
    produced_at = event.produced_at
    if produced_at.tzinfo is None:
        produced_at = produced_at.replace(tzinfo=timezone.utc)
    d["produced_at"] = produced_at.isoformat()
    return d


def envelope_from_wire(d: dict) -> EventEnvelope:
    produced_at = datetime.fromisoformat(str(d["produced_at"]).replace("Z", "+00:00"))
    return EventEnvelope(
        event_id=d["event_id"],
        trace_id=d["trace_id"],
        produced_at=produced_at,
        schema=d["schema"],
        schema_version=int(d["schema_version"]),
        payload=d["payload"],
        source_service=d.get("source_service"),
        sequence=d.get("sequence"),
    )
