from __future__ import annotations

import json
from dataclasses import dataclass
from typing import cast

import redis

from playengine.core.events import SessionEvent


@dataclass(frozen=True, slots=True)
class EventStream:
    game_id: str
    session_id: str

    @property
    def key(self) -> str:
        return f"events:{self.game_id}:{self.session_id}"


def event_fields(event: SessionEvent) -> dict[str, str]:
    # Stream entries are flat string maps; the payload travels as JSON.
    return {
        "kind": event.kind.value,
        "game_id": event.game_id,
        "session_id": event.session_id,
        "scene_id": event.scene_id,
        "seq": str(event.seq),
        "ts": event.ts.isoformat(),
        "payload": json.dumps(dict(event.payload), default=str),
    }


def publish_event(*, r: redis.Redis, stream: EventStream, event: SessionEvent, maxlen: int | None = None) -> str:
    """Append one session event to its Redis stream."""

    stream_id = r.xadd(stream.key, event_fields(event), maxlen=maxlen, approximate=True)
    return cast(str, stream_id)


def read_events(*, r: redis.Redis, stream: EventStream) -> list[dict[str, str]]:
    return [cast(dict[str, str], fields) for _, fields in r.xrange(stream.key)]


class RedisStreamSink:
    """Event sink that forwards engine events to the analytics stream."""

    def __init__(self, *, r: redis.Redis, maxlen: int | None = 10_000) -> None:
        self._r = r
        self._maxlen = maxlen

    def __call__(self, event: SessionEvent) -> None:
        publish_event(
            r=self._r,
            stream=EventStream(game_id=event.game_id, session_id=event.session_id),
            event=event,
            maxlen=self._maxlen,
        )
