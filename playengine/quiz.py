from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Literal, TypeVar

from playengine.api.models import AssessmentScene, GameManifest, GameState, QuizScene
from playengine.errors import AttemptsExceededError, IllegalTransitionError, InvalidSubmissionError
from playengine.navigator import award
from playengine.scenes import assessment_max_weighted, quiz_max_points, score_ceiling

_S = TypeVar("_S", QuizScene, AssessmentScene)


class AutoAdvancePolicy(StrEnum):
    """When a quiz attempt moves the player on by itself."""

    full_marks_or_exhaustion = "full_marks_or_exhaustion"
    exhaustion_only = "exhaustion_only"
    # Partial credit counts: any correct option in the selection resolves the quiz.
    any_correct_or_exhaustion = "any_correct_or_exhaustion"


@dataclass(frozen=True, slots=True)
class OptionFeedback:
    option_id: str
    is_correct: bool
    feedback: str | None


@dataclass(frozen=True, slots=True)
class QuizOutcome:
    scene_id: str
    attempt: int
    score: int
    max_score: int
    fully_correct: bool
    attempts_remaining: int
    exhausted: bool
    auto_advance: bool
    feedback: tuple[OptionFeedback, ...] = ()


AssessmentBand = Literal["excellent", "good", "needs_improvement"]


@dataclass(frozen=True, slots=True)
class AssessmentOutcome:
    scene_id: str
    score: int
    weighted_score: float
    max_weighted_score: float
    percentage: float
    passed: bool
    band: AssessmentBand
    message: str | None
    auto_advance: bool = True


class QuizEvaluator:
    def __init__(
        self,
        manifest: GameManifest,
        state: GameState,
        *,
        policy: AutoAdvancePolicy = AutoAdvancePolicy.full_marks_or_exhaustion,
    ) -> None:
        self.manifest = manifest
        self.state = state
        self.policy = policy
        self.ceiling = score_ceiling(manifest)

    def _require_current(self, scene_id: str, kind: type[_S]) -> _S:
        scene = self.manifest.scene(scene_id)
        if scene is None:
            raise IllegalTransitionError(f"Scene '{scene_id}' does not exist")
        if scene_id != self.state.current_scene_id:
            raise IllegalTransitionError(f"Scene '{scene_id}' is not the current scene")
        if not isinstance(scene, kind):
            raise IllegalTransitionError(f"Scene '{scene_id}' is a {scene.type} scene, not {kind.__name__}")
        return scene

    def _should_advance(self, *, fully_correct: bool, any_correct: bool, exhausted: bool) -> bool:
        if exhausted:
            return True
        if self.policy == AutoAdvancePolicy.full_marks_or_exhaustion:
            return fully_correct
        if self.policy == AutoAdvancePolicy.any_correct_or_exhaustion:
            return any_correct
        return False

    def submit(self, scene_id: str, selected_option_ids: Sequence[str]) -> QuizOutcome:
        scene = self._require_current(scene_id, QuizScene)

        used = self.state.attempts_used.get(scene_id, 0)
        if used >= scene.max_attempts:
            raise AttemptsExceededError(f"All {scene.max_attempts} attempt(s) on '{scene_id}' are used up")

        selected = list(selected_option_ids)
        by_id = {o.id: o for o in scene.options}
        unknown = [s for s in selected if s not in by_id]
        if unknown:
            raise InvalidSubmissionError(f"Unknown option id(s) for '{scene_id}': {', '.join(unknown)}")
        if len(set(selected)) != len(selected):
            raise InvalidSubmissionError("An option may be selected only once")
        if scene.allow_multiple and not selected:
            raise InvalidSubmissionError("Select at least one option")
        if not scene.allow_multiple and len(selected) != 1:
            raise InvalidSubmissionError("Select exactly one option")

        chosen = [by_id[s] for s in selected]
        score = sum(o.points for o in chosen if o.is_correct)
        correct_ids = {o.id for o in scene.options if o.is_correct}
        if scene.allow_multiple:
            fully_correct = bool(correct_ids) and set(selected) == correct_ids
        else:
            fully_correct = chosen[0].is_correct
        any_correct = any(o.is_correct for o in chosen)

        attempt = used + 1
        exhausted = attempt >= scene.max_attempts
        auto_advance = self._should_advance(fully_correct=fully_correct, any_correct=any_correct, exhausted=exhausted)

        self.state.attempts_used[scene_id] = attempt
        if not fully_correct:
            self.state.mistakes += 1
        best = max(score, self.state.scene_scores.get(scene_id, 0))
        award(self.state, scene_id=scene_id, points=best, ceiling=self.ceiling)
        if auto_advance:
            self.state.resolved_scene_ids.add(scene_id)

        feedback: tuple[OptionFeedback, ...] = ()
        if scene.show_feedback:
            feedback = tuple(OptionFeedback(option_id=o.id, is_correct=o.is_correct, feedback=o.feedback) for o in chosen)

        return QuizOutcome(
            scene_id=scene_id,
            attempt=attempt,
            score=score,
            max_score=quiz_max_points(scene),
            fully_correct=fully_correct,
            attempts_remaining=scene.max_attempts - attempt,
            exhausted=exhausted,
            auto_advance=auto_advance,
            feedback=feedback,
        )

    def submit_assessment(self, scene_id: str, answers: Mapping[str, str]) -> AssessmentOutcome:
        """Score a weighted assessment. Each assessment takes one attempt."""

        scene = self._require_current(scene_id, AssessmentScene)
        if self.state.attempts_used.get(scene_id, 0) >= 1:
            raise AttemptsExceededError(f"Assessment '{scene_id}' was already submitted")

        questions = {q.id: q for q in scene.questions}
        missing = [q.id for q in scene.questions if q.id not in answers]
        if missing:
            raise InvalidSubmissionError(f"Unanswered question(s): {', '.join(missing)}")
        extra = [qid for qid in answers if qid not in questions]
        if extra:
            raise InvalidSubmissionError(f"Unknown question(s): {', '.join(extra)}")

        weighted = 0.0
        for qid, option_id in answers.items():
            question = questions[qid]
            option = next((o for o in question.options if o.id == option_id), None)
            if option is None:
                raise InvalidSubmissionError(f"Option '{option_id}' is not an answer to question '{qid}'")
            weighted += option.score * question.weight

        max_weighted = assessment_max_weighted(scene)
        percentage = round(100.0 * weighted / max_weighted, 2) if max_weighted else 100.0
        passed = percentage >= scene.scoring.passing_score
        band: AssessmentBand
        if percentage >= 90.0:
            band = "excellent"
        elif passed:
            band = "good"
        else:
            band = "needs_improvement"

        points = round(weighted)
        self.state.attempts_used[scene_id] = 1
        award(self.state, scene_id=scene_id, points=points, ceiling=self.ceiling)
        self.state.resolved_scene_ids.add(scene_id)

        return AssessmentOutcome(
            scene_id=scene_id,
            score=points,
            weighted_score=weighted,
            max_weighted_score=max_weighted,
            percentage=percentage,
            passed=passed,
            band=band,
            message=getattr(scene.scoring.feedback, band),
        )
