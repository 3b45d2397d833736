from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from playengine.actions import ActionResult
from playengine.api.models import AutosaveSnapshot, GameManifest, GameResults, GameState, Scene
from playengine.core.events import EventKind, EventSink, SessionEventEmitter
from playengine.errors import RecoverableActionError, SessionCompletedError
from playengine.fsm import SessionFSM
from playengine.manifest import load_manifest
from playengine.navigator import Move, SceneNavigator
from playengine.progress import ProgressTracker, restore_state
from playengine.quiz import AssessmentOutcome, AutoAdvancePolicy, QuizEvaluator, QuizOutcome
from playengine.results import finalize
from playengine.session_store import KeyValueStore, RetryPolicy

logger = logging.getLogger(__name__)

ResultsCallback = Callable[[GameResults], None]


class GameEngine:
    """Single owner of one session's GameState.

    Every action runs to completion synchronously. Refused actions are logged
    and reported through `ActionResult.accepted`; they never raise.
    """

    def __init__(
        self,
        *,
        manifest: GameManifest,
        state: GameState,
        sink: EventSink | None = None,
        store: KeyValueStore | None = None,
        policy: AutoAdvancePolicy = AutoAdvancePolicy.full_marks_or_exhaustion,
        retry: RetryPolicy = RetryPolicy(),
        clock: Callable[[], float] = time.monotonic,
        on_results: ResultsCallback | None = None,
    ) -> None:
        self.manifest = manifest
        self.state = state
        self.fsm = SessionFSM(state)
        self.navigator = SceneNavigator(manifest, state)
        self.evaluator = QuizEvaluator(manifest, state, policy=policy)
        self.tracker = ProgressTracker(manifest=manifest, state=state, store=store, retry=retry, clock=clock)
        self.emitter = SessionEventEmitter(game_id=state.game_id, session_id=state.session_id, sink=sink)
        self._on_results = on_results
        self._results: GameResults | None = None
        self._events: list = []

    @classmethod
    def start(
        cls,
        manifest: GameManifest | Mapping[str, Any],
        *,
        session_id: str | None = None,
        **kwargs: Any,
    ) -> "GameEngine":
        """Validate (if needed), create fresh state and enter the start scene.

        Raises ManifestValidationError for a rejected manifest.
        """

        if not isinstance(manifest, GameManifest):
            manifest = load_manifest(manifest)

        state = GameState(
            game_id=manifest.game_id,
            session_id=session_id or str(uuid4()),
            current_scene_id=manifest.start_scene,
            start_timestamp=datetime.now(tz=UTC),
        )
        engine = cls(manifest=manifest, state=state, **kwargs)
        engine.navigator.enter(manifest.start_scene)
        engine._emit(EventKind.session_started, scene_id=manifest.start_scene, payload={"schemaVersion": manifest.schema_version})
        engine._emit(EventKind.scene_entered, scene_id=manifest.start_scene, payload={"from": None, "via": "start"})
        logger.info("session %s started for game %s", state.session_id, manifest.game_id)
        if engine.navigator.at_terminal():
            engine._complete()
        engine.tracker.mark_dirty()
        return engine

    @classmethod
    def resume(cls, snapshot: AutosaveSnapshot, manifest: GameManifest, **kwargs: Any) -> "GameEngine":
        """Continue a session exactly where its snapshot left it, without re-entering."""

        state = restore_state(snapshot, manifest)
        engine = cls(manifest=manifest, state=state, **kwargs)
        engine._emit(
            EventKind.session_resumed,
            scene_id=state.current_scene_id,
            payload={"savedAt": snapshot.saved_at.isoformat(), "elapsedMs": state.elapsed_ms},
        )
        if engine.fsm.is_completed:
            # Results were delivered before the snapshot was taken.
            engine._results = finalize(state, manifest).model_copy(update={"completed_at": state.last_updated_at})
        logger.info("session %s resumed at scene %s", state.session_id, state.current_scene_id)
        return engine

    # --- queries ---------------------------------------------------------------

    @property
    def current_scene(self) -> Scene:
        return self.navigator.current_scene

    @property
    def is_completed(self) -> bool:
        return self.fsm.is_completed

    @property
    def results(self) -> GameResults | None:
        return self._results

    # --- actions ---------------------------------------------------------------

    def advance(self) -> ActionResult:
        return self._run("advance", lambda: self._apply_move(self.navigator.advance()))

    def choose(self, choice_id: str) -> ActionResult:
        return self._run("choose", lambda: self._choose(choice_id))

    def back(self) -> ActionResult:
        return self._run("back", self._back)

    def submit(self, scene_id: str, selected_option_ids: Sequence[str]) -> ActionResult:
        return self._run("submit", lambda: self._submit(scene_id, selected_option_ids))

    def submit_assessment(self, scene_id: str, answers: Mapping[str, str]) -> ActionResult:
        return self._run("submit_assessment", lambda: self._submit_assessment(scene_id, answers))

    # --- progress ----------------------------------------------------------------

    def attach(self, *, store: KeyValueStore | None, sink: EventSink | None) -> None:
        """Swap the storage and event collaborators, e.g. per host request."""

        self.tracker.store = store
        self.emitter.sink = sink

    def tick(self) -> int:
        return self.tracker.tick()

    def autosave_now(self) -> bool:
        """Capture and write a snapshot immediately if anything changed."""

        return self.tracker.flush()

    async def autosave_now_async(self) -> bool:
        """Capture now; write off the event loop, awaiting any backoff."""

        snapshot = self.tracker.capture()
        if snapshot is None:
            return False
        return await self.tracker.save_async(snapshot)

    # --- internals -----------------------------------------------------------------

    def _emit(self, kind: EventKind, *, scene_id: str, payload: Mapping[str, Any] | None = None) -> None:
        self._events.append(self.emitter.emit(kind, scene_id=scene_id, payload=payload))

    def _run(self, action: str, fn: Callable[[], Any]) -> ActionResult:
        self._events = []
        try:
            if self.fsm.is_completed:
                raise SessionCompletedError("Session is completed")
            outcome = fn()
        except RecoverableActionError as e:
            logger.warning("session %s: %s refused: %s", self.state.session_id, action, e)
            return ActionResult(
                state=self.state,
                accepted=False,
                results=self._results,
                error=str(e),
                error_kind=type(e).__name__,
            )

        self.state.last_updated_at = datetime.now(tz=UTC)
        self.tracker.mark_dirty()
        return ActionResult(
            state=self.state,
            accepted=True,
            outcome=outcome,
            events=tuple(self._events),
            results=self._results,
        )

    def _apply_move(self, move: Move) -> Move:
        if move.to_scene is not None:
            self._emit(EventKind.scene_entered, scene_id=move.to_scene, payload={"from": move.from_scene, "via": move.via})
        if move.finishes or self.navigator.at_terminal():
            self._complete()
        return move

    def _choose(self, choice_id: str) -> Move:
        move = self.navigator.choose(choice_id)
        self._emit(
            EventKind.choice_made,
            scene_id=move.from_scene,
            payload={"choiceId": choice_id, "points": move.points, "nextScene": move.to_scene},
        )
        return self._apply_move(move)

    def _back(self) -> Move:
        move = self.navigator.back()
        self._emit(EventKind.navigated_back, scene_id=self.state.current_scene_id, payload={"from": move.from_scene})
        return move

    def _submit(self, scene_id: str, selected_option_ids: Sequence[str]) -> QuizOutcome:
        outcome = self.evaluator.submit(scene_id, selected_option_ids)
        self._emit(
            EventKind.quiz_submitted,
            scene_id=scene_id,
            payload={
                "selected": list(selected_option_ids),
                "attempt": outcome.attempt,
                "score": outcome.score,
                "fullyCorrect": outcome.fully_correct,
                "exhausted": outcome.exhausted,
                "autoAdvance": outcome.auto_advance,
            },
        )
        if outcome.auto_advance:
            self._apply_move(self.navigator.advance(via="auto"))
        return outcome

    def _submit_assessment(self, scene_id: str, answers: Mapping[str, str]) -> AssessmentOutcome:
        outcome = self.evaluator.submit_assessment(scene_id, answers)
        self._emit(
            EventKind.assessment_submitted,
            scene_id=scene_id,
            payload={
                "score": outcome.score,
                "percentage": outcome.percentage,
                "passed": outcome.passed,
                "band": outcome.band,
            },
        )
        if outcome.auto_advance:
            self._apply_move(self.navigator.advance(via="auto"))
        return outcome

    def _complete(self) -> None:
        self.fsm.finish()
        self.fsm.sync_phase_to_model()
        self.tracker.tick()

        results = finalize(self.state, self.manifest).model_copy(update={"completed_at": datetime.now(tz=UTC)})
        self._results = results
        self._emit(
            EventKind.session_completed,
            scene_id=self.state.current_scene_id,
            payload=results.model_dump(mode="json", by_alias=True),
        )
        logger.info(
            "session %s completed: score %d/%d in %dms",
            self.state.session_id,
            results.score,
            results.total_score,
            results.time_spent_ms,
        )

        if self._on_results is not None:
            try:
                self._on_results(results)
            except Exception:
                logger.exception("results callback failed for session %s", self.state.session_id)
