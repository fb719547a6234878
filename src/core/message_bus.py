from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from .models import EventEnvelope, envelope_from_wire, envelope_to_wire

from src.contracts.validation import validate_envelope_dict


class MessageBus:
    """Ordered, append-only notification log.

    `publish_many` appends all events of one ledger operation or none of them.
    """

    def publish(self, stream: str, event: EventEnvelope) -> None:
        self.publish_many([(stream, event)])

    def publish_many(self, events: Sequence[tuple[str, EventEnvelope]]) -> None:  # pragma: no cover
        raise NotImplementedError

    def read(self, stream: str, *, count: Optional[int] = None) -> list[EventEnvelope]:  # pragma: no cover
        raise NotImplementedError


def _validated_wire(event: EventEnvelope) -> dict:
    d = envelope_to_wire(event)
    validate_envelope_dict(d)
    return d


class InMemoryMessageBus(MessageBus):
    """Process-local log, used in dev mode and tests."""

    def __init__(self) -> None:
        self._streams: dict[str, list[EventEnvelope]] = {}

    def publish_many(self, events: Sequence[tuple[str, EventEnvelope]]) -> None:
        # Validate the whole batch before appending anything.
        for _, ev in events:
            _validated_wire(ev)
        for stream, ev in events:
            self._streams.setdefault(stream, []).append(ev)

    def read(self, stream: str, *, count: Optional[int] = None) -> list[EventEnvelope]:
        items = list(self._streams.get(stream, []))
        return items if count is None else items[:count]


@dataclass(frozen=True)
class ReceivedMessage:
    stream: str
    message_id: str
    envelope: EventEnvelope
    fields: dict[str, str]


class RedisStreamBus(MessageBus):
    """Redis Streams implementation.

    Each notification is one stream entry with a single field `event` holding the
    JSON-encoded v1 envelope.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        client=None,
        block_ms: int = 5000,
        read_count: int = 10,
    ):
        self.redis_url = redis_url
        self._client = client
        self.block_ms = block_ms
        self.read_count = read_count

    def _get_client(self):
        if self._client is None:
            import redis  # type: ignore

            self._client = redis.Redis.from_url(self.redis_url, decode_responses=True)
        return self._client

    def _ensure_group(self, stream: str, group: str) -> None:
        client = self._get_client()
        try:
            client.xgroup_create(name=stream, groupname=group, id="0", mkstream=True)
        except Exception as e:
            # BUSYGROUP means it already exists.
            if "BUSYGROUP" not in str(e):
                raise

    def publish_many(self, events: Sequence[tuple[str, EventEnvelope]]) -> None:
        bodies = [(stream, json.dumps(_validated_wire(ev), ensure_ascii=False)) for stream, ev in events]
        if not bodies:
            return
        pipe = self._get_client().pipeline(transaction=True)
        for stream, body in bodies:
            pipe.xadd(stream, {"event": body})
        pipe.execute()

    def read(self, stream: str, *, count: Optional[int] = None) -> list[EventEnvelope]:
        client = self._get_client()
        items = client.xrange(stream, min="-", max="+", count=count)
        return [envelope_from_wire(json.loads(fields["event"])) for _, fields in items]

    def consume(self, stream: str, group: str, consumer: str) -> Iterable[EventEnvelope]:
        # Convenience helper for observers: yields envelopes (no ack semantics).
        for msg in self.poll(stream=stream, group=group, consumer=consumer):
            yield msg.envelope

    def poll(self, *, stream: str, group: str, consumer: str) -> list[ReceivedMessage]:
        self._ensure_group(stream, group)
        client = self._get_client()
        resp = client.xreadgroup(
            groupname=group,
            consumername=consumer,
            streams={stream: ">"},
            count=self.read_count,
            block=self.block_ms,
        )
        out: list[ReceivedMessage] = []
        for (sname, items) in resp or []:
            for (msg_id, fields) in items:
                raw = dict(fields)
                body = raw.get("event")
                if not body:
                    # Not written by this bus; nothing to decode.
                    continue
                d = json.loads(body)
                validate_envelope_dict(d)
                out.append(ReceivedMessage(stream=sname, message_id=msg_id, envelope=envelope_from_wire(d), fields=raw))
        return out

    def ack(self, *, stream: str, group: str, message_id: str) -> None:
        client = self._get_client()
        client.xack(stream, group, message_id)
