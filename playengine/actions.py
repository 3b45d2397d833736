from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, is_dataclass
from typing import TYPE_CHECKING, Any

from playengine.api.models import ActionName, GameResults, GameState
from playengine.core.events import SessionEvent
from playengine.navigator import Move
from playengine.quiz import AssessmentOutcome, QuizOutcome

if TYPE_CHECKING:
    from playengine.engine import GameEngine


@dataclass(frozen=True, slots=True)
class ActionResult:
    """What one user action did.

    - `accepted`: False when the action was refused; state is then unchanged.
    - `events`: everything emitted while handling the action, in order.
    - `results`: set once the session has completed.
    """

    state: GameState
    accepted: bool
    outcome: Move | QuizOutcome | AssessmentOutcome | None = None
    events: tuple[SessionEvent, ...] = ()
    results: GameResults | None = None
    error: str | None = None
    error_kind: str | None = None

    def outcome_dict(self) -> dict[str, Any] | None:
        if self.outcome is None or not is_dataclass(self.outcome):
            return None
        return asdict(self.outcome)


def dispatch_action(*, engine: "GameEngine", action: ActionName, payload: Mapping[str, Any]) -> ActionResult:
    """Entry point for hosts that receive actions as name + payload.

    Routes to the engine method of the same name. The scene id for
    submissions defaults to the current scene.
    """

    if action == "advance":
        return engine.advance()
    if action == "back":
        return engine.back()
    if action == "choose":
        return engine.choose(str(payload.get("choice_id") or ""))
    if action == "submit":
        scene_id = str(payload.get("scene_id") or engine.state.current_scene_id)
        return engine.submit(scene_id, [str(o) for o in payload.get("option_ids") or []])
    if action == "submit_assessment":
        scene_id = str(payload.get("scene_id") or engine.state.current_scene_id)
        answers = payload.get("answers") or {}
        return engine.submit_assessment(scene_id, {str(k): str(v) for k, v in dict(answers).items()})
    raise ValueError(f"Unknown action: {action}")
