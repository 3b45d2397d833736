from __future__ import annotations

import pytest

from conftest import dialogue, manifest, quiz, quiz_manifest, summary
from playengine.api.models import GameState
from playengine.engine import GameEngine
from playengine.errors import AttemptsExceededError, InvalidSubmissionError
from playengine.manifest import load_manifest
from playengine.quiz import AutoAdvancePolicy, QuizEvaluator


def _evaluator_at(raw: dict, scene_id: str, *, policy: AutoAdvancePolicy = AutoAdvancePolicy.full_marks_or_exhaustion) -> QuizEvaluator:
    m = load_manifest(raw)
    state = GameState.model_validate(
        {
            "gameId": m.game_id,
            "sessionId": "s-1",
            "currentSceneId": scene_id,
            "history": [scene_id],
            "startTimestamp": "2026-01-01T00:00:00Z",
        }
    )
    return QuizEvaluator(m, state, policy=policy)


def _multi_select_manifest() -> dict:
    return manifest(
        [
            quiz(
                "q1",
                next="s1",
                allow_multiple=True,
                max_attempts=3,
                options=[
                    {"id": "a", "text": "Check the sender", "isCorrect": True, "points": 2},
                    {"id": "b", "text": "Hover the link", "isCorrect": True, "points": 3},
                    {"id": "c", "text": "Open the attachment", "isCorrect": False},
                ],
            ),
            summary("s1"),
        ]
    )


def test_correct_first_attempt_scores_and_completes() -> None:
    engine = GameEngine.start(quiz_manifest())
    engine.advance()

    result = engine.submit("q1", ["a"])

    assert result.accepted
    assert result.outcome is not None
    assert result.outcome.fully_correct
    assert result.outcome.auto_advance
    assert result.outcome.attempts_remaining == 1
    assert engine.state.current_scene_id == "s1"
    assert engine.is_completed
    assert engine.results is not None
    assert engine.results.score == 1
    assert engine.results.total_score == 1


def test_two_wrong_attempts_exhaust_and_advance_with_zero() -> None:
    engine = GameEngine.start(quiz_manifest())
    engine.advance()

    first = engine.submit("q1", ["b"])
    assert first.accepted
    assert not first.outcome.auto_advance
    assert engine.state.current_scene_id == "q1"

    second = engine.submit("q1", ["b"])
    assert second.outcome.exhausted
    assert second.outcome.auto_advance

    assert engine.state.attempts_used["q1"] == 2
    assert engine.state.mistakes == 2
    assert engine.is_completed
    assert engine.results.score == 0


def test_submission_after_exhaustion_is_refused_without_counting() -> None:
    evaluator = _evaluator_at(quiz_manifest(max_attempts=1), "q1")

    outcome = evaluator.submit("q1", ["b"])
    assert outcome.exhausted

    with pytest.raises(AttemptsExceededError):
        evaluator.submit("q1", ["a"])

    assert evaluator.state.attempts_used["q1"] == 1
    assert evaluator.state.score_accumulated == 0


def test_best_attempt_is_kept() -> None:
    evaluator = _evaluator_at(_multi_select_manifest(), "q1", policy=AutoAdvancePolicy.exhaustion_only)

    evaluator.submit("q1", ["a", "b"])
    evaluator.submit("q1", ["a"])

    assert evaluator.state.scene_scores["q1"] == 5
    assert evaluator.state.score_accumulated == 5


def test_multi_select_needs_every_correct_option_for_full_marks() -> None:
    evaluator = _evaluator_at(_multi_select_manifest(), "q1")

    partial = evaluator.submit("q1", ["a", "c"])
    assert partial.score == 2
    assert not partial.fully_correct
    assert not partial.auto_advance

    full = evaluator.submit("q1", ["b", "a"])
    assert full.score == 5
    assert full.max_score == 5
    assert full.fully_correct
    assert full.auto_advance


def test_any_correct_policy_resolves_on_partial_credit() -> None:
    evaluator = _evaluator_at(_multi_select_manifest(), "q1", policy=AutoAdvancePolicy.any_correct_or_exhaustion)

    outcome = evaluator.submit("q1", ["a"])

    assert outcome.auto_advance
    assert "q1" in evaluator.state.resolved_scene_ids


@pytest.mark.parametrize(
    "selected",
    [
        [],
        ["a", "b"],
        ["zzz"],
    ],
)
def test_invalid_single_choice_submissions_do_not_use_an_attempt(selected: list[str]) -> None:
    evaluator = _evaluator_at(quiz_manifest(), "q1")

    with pytest.raises(InvalidSubmissionError):
        evaluator.submit("q1", selected)

    assert evaluator.state.attempts_used.get("q1", 0) == 0


def test_duplicate_option_ids_are_invalid() -> None:
    evaluator = _evaluator_at(_multi_select_manifest(), "q1")

    with pytest.raises(InvalidSubmissionError):
        evaluator.submit("q1", ["a", "a"])


def test_feedback_only_for_selected_options() -> None:
    evaluator = _evaluator_at(quiz_manifest(), "q1")

    outcome = evaluator.submit("q1", ["b"])

    assert [(f.option_id, f.is_correct, f.feedback) for f in outcome.feedback] == [("b", False, "Never click")]


def _assessment_manifest() -> dict:
    return manifest(
        [
            dialogue("intro", next="a1"),
            {
                "id": "a1",
                "type": "assessment",
                "navigation": {"next": "s1"},
                "questions": [
                    {
                        "id": "q1",
                        "text": "How confident are you spotting phishing?",
                        "weight": 2,
                        "options": [
                            {"id": "low", "text": "Not at all", "score": 0},
                            {"id": "high", "text": "Very", "score": 5},
                        ],
                    },
                    {
                        "id": "q2",
                        "text": "Do you report suspicious mail?",
                        "options": [
                            {"id": "never", "text": "Never", "score": 0},
                            {"id": "always", "text": "Always", "score": 5},
                        ],
                    },
                ],
                "scoring": {
                    "passingScore": 60,
                    "feedback": {"excellent": "Great", "good": "Solid", "needsImprovement": "Review the module"},
                },
            },
            summary("s1"),
        ]
    )


def test_assessment_weighted_score_and_band() -> None:
    engine = GameEngine.start(_assessment_manifest())
    engine.advance()

    result = engine.submit_assessment("a1", {"q1": "high", "q2": "never"})

    outcome = result.outcome
    assert result.accepted
    assert outcome.weighted_score == 10.0
    assert outcome.max_weighted_score == 15.0
    assert outcome.percentage == 66.67
    assert outcome.passed
    assert outcome.band == "good"
    assert outcome.message == "Solid"
    assert engine.is_completed
    assert engine.results.score == 10
    assert engine.results.total_score == 15


def test_assessment_requires_every_question() -> None:
    engine = GameEngine.start(_assessment_manifest())
    engine.advance()

    result = engine.submit_assessment("a1", {"q1": "high"})

    assert not result.accepted
    assert result.error_kind == "InvalidSubmissionError"
    assert engine.state.attempts_used == {"a1": 0}


def test_assessment_with_zero_answers_keeps_score_non_negative() -> None:
    engine = GameEngine.start(_assessment_manifest())
    engine.advance()

    result = engine.submit_assessment("a1", {"q1": "low", "q2": "never"})

    assert result.accepted
    assert not result.outcome.passed
    assert engine.state.score_accumulated == 0
    assert all(points >= 0 for points in engine.state.scene_scores.values())
    assert engine.results.score == 0
    assert engine.results.percentage == 0.0
