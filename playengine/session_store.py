from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

from playengine.api.models import AutosaveSnapshot, GameState

logger = logging.getLogger(__name__)

SNAPSHOT_KEY_PREFIX = "playengine:snapshot:"  # + {game_id}:{session_id}


class KeyValueStore(Protocol):
    """The storage collaborator. A `redis.Redis` client satisfies it."""

    def get(self, name: str) -> Any: ...

    def set(self, name: str, value: str) -> Any: ...


def _now() -> datetime:
    return datetime.now(tz=UTC)


def snapshot_key(*, game_id: str, session_id: str) -> str:
    return f"{SNAPSHOT_KEY_PREFIX}{game_id}:{session_id}"


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_backoff: float = 0.1
    backoff_multiplier: float = 2.0
    max_backoff: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_backoff < 0:
            raise ValueError("initial_backoff must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    def compute_backoff(self, attempt: int) -> float:
        """Return the delay after failed `attempt` (1-indexed)."""

        return min(self.initial_backoff * (self.backoff_multiplier ** (attempt - 1)), self.max_backoff)


def capture_snapshot(*, state: GameState, schema_version: str) -> AutosaveSnapshot:
    now = _now()
    copy = state.model_copy(deep=True)
    copy.last_updated_at = now
    return AutosaveSnapshot(
        schema_version=schema_version,
        game_id=state.game_id,
        session_id=state.session_id,
        state=copy,
        saved_at=now,
    )


def save_snapshot(*, r: KeyValueStore, snapshot: AutosaveSnapshot) -> None:
    r.set(
        snapshot_key(game_id=snapshot.game_id, session_id=snapshot.session_id),
        snapshot.model_dump_json(by_alias=True),
    )


def get_snapshot(*, r: KeyValueStore, game_id: str, session_id: str) -> AutosaveSnapshot | None:
    raw = r.get(snapshot_key(game_id=game_id, session_id=session_id))
    if not raw:
        return None
    return AutosaveSnapshot.model_validate_json(raw)


def require_snapshot(*, r: KeyValueStore, game_id: str, session_id: str) -> AutosaveSnapshot:
    snapshot = get_snapshot(r=r, game_id=game_id, session_id=session_id)
    if snapshot is None:
        raise ValueError("Snapshot not found")
    return snapshot


def save_with_retry(
    *,
    r: KeyValueStore,
    snapshot: AutosaveSnapshot,
    policy: RetryPolicy = RetryPolicy(),
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Write a snapshot, backing off between failures.

    Returns False once the policy gives up; the session carries on without
    persistence.
    """

    for attempt in range(1, policy.max_attempts + 1):
        try:
            save_snapshot(r=r, snapshot=snapshot)
            return True
        except Exception as e:
            if attempt >= policy.max_attempts:
                logger.error(
                    "autosave for session %s dropped after %d attempt(s): %s",
                    snapshot.session_id,
                    attempt,
                    e,
                )
                return False
            delay = policy.compute_backoff(attempt)
            logger.warning("autosave attempt %d for session %s failed (%s); retrying in %.2fs", attempt, snapshot.session_id, e, delay)
            sleep(delay)
    return False


async def save_with_retry_async(
    *,
    r: KeyValueStore,
    snapshot: AutosaveSnapshot,
    policy: RetryPolicy = RetryPolicy(),
) -> bool:
    """Like save_with_retry, but the write runs on a worker thread and backoff awaits."""

    for attempt in range(1, policy.max_attempts + 1):
        try:
            await asyncio.to_thread(save_snapshot, r=r, snapshot=snapshot)
            return True
        except Exception as e:
            if attempt >= policy.max_attempts:
                logger.error(
                    "autosave for session %s dropped after %d attempt(s): %s",
                    snapshot.session_id,
                    attempt,
                    e,
                )
                return False
            delay = policy.compute_backoff(attempt)
            logger.warning("autosave attempt %d for session %s failed (%s); retrying in %.2fs", attempt, snapshot.session_id, e, delay)
            await asyncio.sleep(delay)
    return False
