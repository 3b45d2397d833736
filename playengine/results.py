from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from playengine.api.models import (
    Achievement,
    AchievementUnlock,
    GameManifest,
    GameResults,
    GameState,
    SessionPhase,
    SummaryScene,
)
from playengine.errors import ManifestInconsistencyError, SessionNotTerminalError
from playengine.scenes import is_terminal, total_score_for


@dataclass(frozen=True, slots=True)
class ResultFacts:
    """Everything an unlock rule may look at."""

    score: int
    total_score: int
    percentage: float
    time_spent_ms: int
    completed: frozenset[str]
    mistakes: int


UnlockPredicate = Callable[[AchievementUnlock, ResultFacts], bool]

UNLOCK_RULES: dict[str, UnlockPredicate] = {
    "completion": lambda rule, facts: True,
    "score_threshold": lambda rule, facts: rule.min_score is not None and facts.score >= rule.min_score,
    "score_percentage": lambda rule, facts: rule.min_percentage is not None and facts.percentage >= rule.min_percentage,
    "time_limit": lambda rule, facts: rule.max_time_ms is not None and facts.time_spent_ms <= rule.max_time_ms,
    "scenes_completed": lambda rule, facts: set(rule.scene_ids) <= facts.completed,
    "no_mistakes": lambda rule, facts: facts.mistakes == 0,
}


def is_unlocked(achievement: Achievement, facts: ResultFacts) -> bool:
    return UNLOCK_RULES[achievement.unlock.type](achievement.unlock, facts)


def finalize(state: GameState, manifest: GameManifest) -> GameResults:
    """Fold the final state into results. Pure: same inputs, same output."""

    scene = manifest.scene(state.current_scene_id)
    if scene is None:
        raise ManifestInconsistencyError(f"Session ended on unknown scene '{state.current_scene_id}'")
    if state.phase != SessionPhase.completed and not is_terminal(scene):
        raise SessionNotTerminalError(f"Scene '{scene.id}' does not end the session")

    total = total_score_for(manifest, scene)
    score = min(state.score_accumulated, total)
    percentage = round(100.0 * score / total, 2) if total else 0.0

    facts = ResultFacts(
        score=score,
        total_score=total,
        percentage=percentage,
        time_spent_ms=state.elapsed_ms,
        completed=frozenset(state.completed_scene_ids),
        mistakes=state.mistakes,
    )
    achievements = scene.achievements if isinstance(scene, SummaryScene) else ()

    return GameResults(
        game_id=state.game_id,
        session_id=state.session_id,
        score=score,
        total_score=total,
        percentage=percentage,
        time_spent_ms=state.elapsed_ms,
        scenes_completed=tuple(sid for sid in manifest.scene_ids() if sid in state.completed_scene_ids),
        unlocked_achievements=tuple(a for a in achievements if is_unlocked(a, facts)),
    )
