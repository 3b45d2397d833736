from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from types import MappingProxyType
from typing import Any

logger = logging.getLogger(__name__)


class EventKind(StrEnum):
    session_started = "session_started"
    session_resumed = "session_resumed"
    scene_entered = "scene_entered"
    choice_made = "choice_made"
    quiz_submitted = "quiz_submitted"
    assessment_submitted = "assessment_submitted"
    navigated_back = "navigated_back"
    session_completed = "session_completed"


@dataclass(frozen=True, slots=True)
class SessionEvent:
    kind: EventKind
    game_id: str
    session_id: str
    scene_id: str
    seq: int
    payload: Mapping[str, Any]
    ts: datetime

    @staticmethod
    def now(
        *,
        kind: EventKind,
        game_id: str,
        session_id: str,
        scene_id: str,
        seq: int,
        payload: Mapping[str, Any],
    ) -> "SessionEvent":
        return SessionEvent(
            kind=kind,
            game_id=game_id,
            session_id=session_id,
            scene_id=scene_id,
            seq=seq,
            payload=MappingProxyType(dict(payload)),
            ts=datetime.now(timezone.utc),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "gameId": self.game_id,
            "sessionId": self.session_id,
            "sceneId": self.scene_id,
            "seq": self.seq,
            "payload": dict(self.payload),
            "timestamp": self.ts.isoformat(),
        }


EventSink = Callable[[SessionEvent], None]


class SessionEventEmitter:
    """Hands every event to the host sink, synchronously and in order.

    The sink is outside the engine's control: whatever it raises is logged and
    dropped so the state machine never sees it.
    """

    def __init__(self, *, game_id: str, session_id: str, sink: EventSink | None = None, seq: int = 0) -> None:
        self.game_id = game_id
        self.session_id = session_id
        self.sink = sink
        self._seq = seq

    @property
    def seq(self) -> int:
        return self._seq

    def emit(self, kind: EventKind, *, scene_id: str, payload: Mapping[str, Any] | None = None) -> SessionEvent:
        self._seq += 1
        event = SessionEvent.now(
            kind=kind,
            game_id=self.game_id,
            session_id=self.session_id,
            scene_id=scene_id,
            seq=self._seq,
            payload=payload or {},
        )
        if self.sink is None:
            return event
        try:
            self.sink(event)
        except Exception:
            logger.exception("event sink failed for %s #%d (session %s)", kind.value, event.seq, self.session_id)
        return event
