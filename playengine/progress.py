from __future__ import annotations

import time
from collections.abc import Callable

from playengine.api.models import AutosaveSnapshot, GameManifest, GameState
from playengine.errors import SnapshotMismatchError
from playengine.session_store import (
    KeyValueStore,
    RetryPolicy,
    capture_snapshot,
    save_with_retry,
    save_with_retry_async,
)


class ProgressTracker:
    """Elapsed-time accounting plus autosave bookkeeping for one session.

    Time comes from a monotonic clock, so idle time between transitions still
    counts. Ticks and transitions only mark the state dirty; whoever owns the
    session decides when a dirty state is captured and written.
    """

    def __init__(
        self,
        *,
        manifest: GameManifest,
        state: GameState,
        store: KeyValueStore | None = None,
        retry: RetryPolicy = RetryPolicy(),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.manifest = manifest
        self.state = state
        self.store = store
        self.retry = retry
        self._clock = clock
        self._last = clock()
        self._dirty = False

    @property
    def autosave_enabled(self) -> bool:
        return self.manifest.settings.auto_save and self.store is not None

    @property
    def dirty(self) -> bool:
        return self._dirty

    def mark_dirty(self) -> None:
        self._dirty = True

    def tick(self) -> int:
        now = self._clock()
        delta_ms = int((now - self._last) * 1000)
        if delta_ms > 0:
            # Keep the sub-millisecond remainder for the next tick.
            self._last += delta_ms / 1000
            self.state.elapsed_ms += delta_ms
            self._dirty = True
        return self.state.elapsed_ms

    def capture(self) -> AutosaveSnapshot | None:
        """Fold in elapsed time and snapshot the state if it needs writing."""

        self.tick()
        if not self.autosave_enabled or not self._dirty:
            return None
        self._dirty = False
        return capture_snapshot(state=self.state, schema_version=self.manifest.schema_version)

    def save(self, snapshot: AutosaveSnapshot, *, sleep: Callable[[float], None] = time.sleep) -> bool:
        if self.store is None:
            raise RuntimeError("No storage collaborator configured")
        ok = save_with_retry(r=self.store, snapshot=snapshot, policy=self.retry, sleep=sleep)
        if not ok:
            self._dirty = True
        return ok

    async def save_async(self, snapshot: AutosaveSnapshot) -> bool:
        if self.store is None:
            raise RuntimeError("No storage collaborator configured")
        ok = await save_with_retry_async(r=self.store, snapshot=snapshot, policy=self.retry)
        if not ok:
            self._dirty = True
        return ok

    def flush(self) -> bool:
        snapshot = self.capture()
        if snapshot is None:
            return False
        return self.save(snapshot)


def restore_state(snapshot: AutosaveSnapshot, manifest: GameManifest) -> GameState:
    """Rebuild GameState verbatim from a snapshot taken against `manifest`."""

    if snapshot.game_id != manifest.game_id:
        raise SnapshotMismatchError(f"Snapshot belongs to game '{snapshot.game_id}', not '{manifest.game_id}'")
    if snapshot.schema_version != manifest.schema_version:
        raise SnapshotMismatchError(
            f"Snapshot schemaVersion '{snapshot.schema_version}' does not match manifest '{manifest.schema_version}'"
        )

    known = set(manifest.scene_ids())
    state = snapshot.state
    unknown = [sid for sid in [state.current_scene_id, *state.history] if sid not in known]
    if unknown:
        raise SnapshotMismatchError(f"Snapshot references unknown scene(s): {', '.join(sorted(set(unknown)))}")
    return state.model_copy(deep=True)
