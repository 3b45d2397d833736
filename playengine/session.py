from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from playengine.actions import ActionResult
from playengine.api.models import AutosaveSnapshot, GameManifest, GameState
from playengine.engine import GameEngine
from playengine.manifest import load_manifest_async

logger = logging.getLogger(__name__)


class GameSession:
    """Async host wrapper around one GameEngine.

    `_lock` is the state owner's queue: user actions, the periodic tick and
    the debounced autosave all take it before touching GameState. Snapshots
    are captured under the lock and written after it is released, so a
    storage retry never holds up the player.
    """

    def __init__(self, engine: GameEngine, *, tick_interval_s: float = 1.0, debounce_s: float = 0.5) -> None:
        self.engine = engine
        self.tick_interval_s = tick_interval_s
        self.debounce_s = debounce_s
        self._lock = asyncio.Lock()
        self._tick_task: asyncio.Task[None] | None = None
        self._debounce_task: asyncio.Task[None] | None = None
        self._write_task: asyncio.Task[bool] | None = None
        self._closed = False

    @classmethod
    async def open(
        cls,
        fetch: Callable[[], Awaitable[Any]],
        *,
        session_id: str | None = None,
        tick_interval_s: float = 1.0,
        debounce_s: float = 0.5,
        **engine_kwargs: Any,
    ) -> "GameSession":
        """Fetch and validate the manifest, then start a running session.

        Raises ManifestValidationError if the fetched manifest is rejected.
        """

        manifest = await load_manifest_async(fetch)
        engine = GameEngine.start(manifest, session_id=session_id, **engine_kwargs)
        session = cls(engine, tick_interval_s=tick_interval_s, debounce_s=debounce_s)
        session.start()
        session._schedule_autosave()
        return session

    @classmethod
    def from_snapshot(
        cls,
        snapshot: AutosaveSnapshot,
        manifest: GameManifest,
        *,
        tick_interval_s: float = 1.0,
        debounce_s: float = 0.5,
        **engine_kwargs: Any,
    ) -> "GameSession":
        engine = GameEngine.resume(snapshot, manifest, **engine_kwargs)
        return cls(engine, tick_interval_s=tick_interval_s, debounce_s=debounce_s)

    @property
    def state(self) -> GameState:
        return self.engine.state

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        if self._tick_task is None and not self.engine.is_completed:
            self._tick_task = asyncio.create_task(self._tick_loop())

    async def __aenter__(self) -> "GameSession":
        self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # --- actions -------------------------------------------------------------

    async def advance(self) -> ActionResult:
        return await self._act(self.engine.advance)

    async def choose(self, choice_id: str) -> ActionResult:
        return await self._act(lambda: self.engine.choose(choice_id))

    async def back(self) -> ActionResult:
        return await self._act(self.engine.back)

    async def submit(self, scene_id: str, selected_option_ids: Sequence[str]) -> ActionResult:
        return await self._act(lambda: self.engine.submit(scene_id, selected_option_ids))

    async def submit_assessment(self, scene_id: str, answers: Mapping[str, str]) -> ActionResult:
        return await self._act(lambda: self.engine.submit_assessment(scene_id, answers))

    async def _act(self, fn: Callable[[], ActionResult]) -> ActionResult:
        if self._closed:
            raise RuntimeError("Session is closed")
        async with self._lock:
            result = fn()
        if result.accepted:
            self._schedule_autosave()
            if self.engine.is_completed:
                self._stop_ticking()
        return result

    # --- background work ----------------------------------------------------------

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.tick_interval_s)
            async with self._lock:
                self.engine.tick()
            self._schedule_autosave()

    def _stop_ticking(self) -> None:
        if self._tick_task is not None and self._tick_task is not asyncio.current_task():
            self._tick_task.cancel()
        self._tick_task = None

    def _schedule_autosave(self) -> None:
        if self._closed or not self.engine.tracker.autosave_enabled:
            return
        if self._debounce_task is not None and not self._debounce_task.done():
            # A write is already pending; it will pick up this change.
            return
        self._debounce_task = asyncio.create_task(self._autosave_after_debounce())

    async def _autosave_after_debounce(self) -> None:
        await asyncio.sleep(self.debounce_s)
        async with self._lock:
            snapshot = self.engine.tracker.capture()
        if snapshot is not None:
            self._write_task = asyncio.create_task(self._write(snapshot, previous=self._write_task))

    async def _write(self, snapshot: AutosaveSnapshot, *, previous: asyncio.Task[bool] | None) -> bool:
        if previous is not None and not previous.done():
            # Keep writes in capture order.
            await asyncio.wait({previous})
        return await self.engine.tracker.save_async(snapshot)

    async def close(self) -> None:
        """Stop background work and flush the latest state synchronously."""

        if self._closed:
            return
        self._closed = True

        for task in (self._tick_task, self._debounce_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._tick_task = None
        self._debounce_task = None

        if self._write_task is not None:
            await self._write_task
            self._write_task = None

        async with self._lock:
            self.engine.autosave_now()
        logger.debug("session %s closed", self.engine.state.session_id)
