"""Scene variant table.

Each scene `type` maps to one `SceneVariant` entry describing how the engine
treats it. Adding a scene type means adding a payload model in `api.models`
and one entry here.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from playengine.api.models import (
    AssessmentScene,
    DialogueScene,
    GameManifest,
    ManifestViolation,
    QuizScene,
    ResourceScene,
    Scene,
    SummaryScene,
    ViolationKind,
)

RawCheck = Callable[[Mapping[str, Any], str], Iterator[ManifestViolation]]


@dataclass(frozen=True, slots=True)
class SceneVariant:
    model: type[BaseModel]
    # Entering a terminal scene ends the session.
    is_terminal: Callable[[Any], bool]
    # Upper bound of points one visit can award.
    max_points: Callable[[Any], int]
    # Evaluated scenes must be resolved before they can be left (unless canSkip).
    evaluated: bool = False
    raw_checks: tuple[RawCheck, ...] = ()


def _no_way_out(scene: Any) -> bool:
    nav = scene.navigation
    return nav.next is None and not nav.can_skip


def _dialogue_is_terminal(scene: DialogueScene) -> bool:
    return _no_way_out(scene) and not scene.choices


def _dialogue_max_points(scene: DialogueScene) -> int:
    return max((c.points for c in scene.choices), default=0)


def quiz_max_points(scene: QuizScene) -> int:
    correct = [o.points for o in scene.options if o.is_correct]
    if not correct:
        return 0
    return sum(correct) if scene.allow_multiple else max(correct)


def assessment_max_weighted(scene: AssessmentScene) -> float:
    return sum(max((o.score for o in q.options), default=0) * q.weight for q in scene.questions)


def _is_list(value: Any) -> bool:
    return isinstance(value, list | tuple)


def _negative(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool) and value < 0


def _check_dialogue_choices(raw: Mapping[str, Any], path: str) -> Iterator[ManifestViolation]:
    choices = raw.get("choices")
    if not _is_list(choices):
        return
    for idx, choice in enumerate(choices):
        if not isinstance(choice, Mapping):
            continue
        cpath = f"{path}.choices[{idx}]"
        target = choice.get("nextScene", choice.get("next_scene"))
        if not isinstance(target, str) or not target:
            yield ManifestViolation(
                kind=ViolationKind.choice_missing_next_scene,
                path=f"{cpath}.nextScene",
                message=f"Choice '{choice.get('id', idx)}' has no nextScene",
            )
        if _negative(choice.get("points")):
            yield ManifestViolation(
                kind=ViolationKind.negative_points,
                path=f"{cpath}.points",
                message="Choice points must be non-negative",
            )


def _check_quiz(raw: Mapping[str, Any], path: str) -> Iterator[ManifestViolation]:
    options = raw.get("options")
    if options is None or (_is_list(options) and len(options) == 0):
        yield ManifestViolation(
            kind=ViolationKind.empty_quiz_options,
            path=f"{path}.options",
            message="Quiz must define at least one option",
        )
    elif _is_list(options):
        for idx, option in enumerate(options):
            if isinstance(option, Mapping) and _negative(option.get("points")):
                yield ManifestViolation(
                    kind=ViolationKind.negative_points,
                    path=f"{path}.options[{idx}].points",
                    message="Option points must be non-negative",
                )

    max_attempts = raw.get("maxAttempts", raw.get("max_attempts", 1))
    if isinstance(max_attempts, int) and not isinstance(max_attempts, bool) and max_attempts < 1:
        yield ManifestViolation(
            kind=ViolationKind.invalid_max_attempts,
            path=f"{path}.maxAttempts",
            message=f"maxAttempts must be at least 1 (got {max_attempts})",
        )


def _check_assessment(raw: Mapping[str, Any], path: str) -> Iterator[ManifestViolation]:
    questions = raw.get("questions")
    if not _is_list(questions):
        return
    for qidx, question in enumerate(questions):
        if not isinstance(question, Mapping) or not _is_list(question.get("options")):
            continue
        for oidx, option in enumerate(question["options"]):
            if isinstance(option, Mapping) and _negative(option.get("score")):
                yield ManifestViolation(
                    kind=ViolationKind.negative_points,
                    path=f"{path}.questions[{qidx}].options[{oidx}].score",
                    message="Assessment option scores must be non-negative",
                )


SCENE_VARIANTS: dict[str, SceneVariant] = {
    "dialogue": SceneVariant(
        model=DialogueScene,
        is_terminal=_dialogue_is_terminal,
        max_points=_dialogue_max_points,
        raw_checks=(_check_dialogue_choices,),
    ),
    "quiz": SceneVariant(
        model=QuizScene,
        is_terminal=lambda scene: False,
        max_points=quiz_max_points,
        evaluated=True,
        raw_checks=(_check_quiz,),
    ),
    "assessment": SceneVariant(
        model=AssessmentScene,
        is_terminal=lambda scene: False,
        max_points=lambda scene: round(assessment_max_weighted(scene)),
        evaluated=True,
        raw_checks=(_check_assessment,),
    ),
    "resource": SceneVariant(
        model=ResourceScene,
        is_terminal=_no_way_out,
        max_points=lambda scene: 0,
    ),
    "summary": SceneVariant(
        model=SummaryScene,
        is_terminal=lambda scene: True,
        max_points=lambda scene: 0,
    ),
}


def variant_for(scene: Scene) -> SceneVariant:
    return SCENE_VARIANTS[scene.type]


def is_terminal(scene: Scene) -> bool:
    return variant_for(scene).is_terminal(scene)


def max_attainable_score(manifest: GameManifest) -> int:
    return sum(variant_for(s).max_points(s) for s in manifest.scenes)


def score_ceiling(manifest: GameManifest) -> int:
    """Largest score a session may hold at any time.

    Summary scenes that declare a total cap the score; otherwise the sum of
    every scene's best award is used.
    """

    declared = [s.score.total for s in manifest.scenes if isinstance(s, SummaryScene) and s.score is not None]
    if declared:
        return max(declared)
    return max_attainable_score(manifest)


def total_score_for(manifest: GameManifest, scene: Scene) -> int:
    if isinstance(scene, SummaryScene) and scene.score is not None:
        return scene.score.total
    return max_attainable_score(manifest)
