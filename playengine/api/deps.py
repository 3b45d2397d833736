from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Generator

import redis

from playengine.config import EngineSettings
from playengine.engine import GameEngine
from playengine.infra.redis_client import create_redis

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Live engines served by this process, keyed by session id.

    Engine calls never await, so each engine still has a single owner.
    Snapshot writes do await; `save_lock` keeps them in capture order per
    session. Completed sessions stay readable for their results until
    `max_completed` newer ones have finished.
    """

    def __init__(self, *, max_completed: int = 1024) -> None:
        self.max_completed = max_completed
        self._engines: dict[str, GameEngine] = {}
        self._completed: OrderedDict[str, None] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, session_id: str) -> GameEngine | None:
        return self._engines.get(session_id)

    def add(self, engine: GameEngine) -> None:
        self._engines[engine.state.session_id] = engine
        self.note(engine)

    def note(self, engine: GameEngine) -> None:
        """Track a finished engine, dropping the oldest finished ones past the cap."""

        session_id = engine.state.session_id
        if not engine.is_completed or session_id in self._completed:
            return
        self._completed[session_id] = None
        while len(self._completed) > self.max_completed:
            oldest, _ = self._completed.popitem(last=False)
            self._engines.pop(oldest, None)
            self._locks.pop(oldest, None)
            logger.info("session %s evicted from registry", oldest)

    def save_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def remove(self, session_id: str) -> GameEngine | None:
        self._completed.pop(session_id, None)
        self._locks.pop(session_id, None)
        return self._engines.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._engines)


_registry = SessionRegistry()


def get_registry() -> SessionRegistry:
    return _registry


def get_settings() -> EngineSettings:
    return EngineSettings.from_env()


def get_redis() -> Generator[redis.Redis, None, None]:
    client = create_redis()
    try:
        yield client
    finally:
        try:
            client.close()
        except Exception:
            # Some redis client versions don't require explicit close.
            pass
