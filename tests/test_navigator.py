from __future__ import annotations

import pytest

from conftest import branching_manifest, dialogue, manifest, quiz, quiz_manifest, summary
from playengine.api.models import GameState
from playengine.errors import IllegalTransitionError, NavigationDisabledError, UnknownChoiceError
from playengine.manifest import load_manifest
from playengine.navigator import SceneNavigator


def _navigator(raw: dict) -> SceneNavigator:
    m = load_manifest(raw)
    state = GameState.model_validate(
        {
            "gameId": m.game_id,
            "sessionId": "s-1",
            "currentSceneId": m.start_scene,
            "startTimestamp": "2026-01-01T00:00:00Z",
        }
    )
    nav = SceneNavigator(m, state)
    nav.enter(m.start_scene)
    return nav


def test_back_is_refused_when_navigation_is_disabled() -> None:
    nav = _navigator(branching_manifest(allow_navigation=False))
    nav.choose("good")
    history = list(nav.state.history)

    with pytest.raises(NavigationDisabledError):
        nav.back()

    assert nav.state.history == history
    assert nav.state.current_scene_id == "d2"


def test_back_then_same_choice_scores_once() -> None:
    nav = _navigator(branching_manifest())

    nav.choose("good")
    nav.back()
    assert nav.state.current_scene_id == "d1"
    assert nav.state.history == ["d1"]
    nav.choose("good")

    assert nav.state.score_accumulated == 5
    assert nav.state.history == ["d1", "d2"]


def test_rechoosing_replaces_the_earlier_award() -> None:
    nav = _navigator(branching_manifest())

    nav.choose("good")
    nav.back()
    nav.choose("poor")

    assert nav.state.score_accumulated == 1
    assert nav.state.choices_made == {"d1": "poor"}


def test_back_at_start_is_refused() -> None:
    nav = _navigator(branching_manifest())

    with pytest.raises(NavigationDisabledError):
        nav.back()

    assert nav.state.history == ["d1"]


def test_unknown_choice_leaves_state_untouched() -> None:
    nav = _navigator(branching_manifest())
    before = nav.state.model_dump()

    with pytest.raises(UnknownChoiceError):
        nav.choose("nope")

    assert nav.state.model_dump() == before


def test_advance_is_refused_where_choices_are_offered() -> None:
    nav = _navigator(branching_manifest())

    with pytest.raises(IllegalTransitionError) as e:
        nav.advance()

    assert "choices" in str(e.value)


def test_unanswered_quiz_cannot_be_left() -> None:
    nav = _navigator(quiz_manifest())
    nav.advance()
    assert nav.state.current_scene_id == "q1"

    with pytest.raises(IllegalTransitionError):
        nav.advance()

    assert nav.state.current_scene_id == "q1"
    assert nav.state.attempts_used == {"q1": 0}


def test_can_skip_without_next_moves_to_following_scene() -> None:
    raw = manifest(
        [
            dialogue("d1", next="q1"),
            quiz("q1", can_skip=True, options=[{"id": "a", "text": "A", "isCorrect": True}]),
            summary("s1"),
        ]
    )
    nav = _navigator(raw)
    nav.advance()

    move = nav.advance()

    assert move.from_scene == "q1"
    assert move.to_scene == "s1"
    assert nav.at_terminal()


def test_end_sentinel_finishes_in_place() -> None:
    nav = _navigator(manifest([dialogue("d1", next="end"), summary("s1")]))

    move = nav.advance()

    assert move.finishes
    assert nav.state.current_scene_id == "d1"


def test_completed_scenes_are_tracked_in_visit_order() -> None:
    nav = _navigator(branching_manifest())

    nav.choose("poor")
    nav.advance()

    assert nav.state.history == ["d1", "d2", "s1"]
    assert nav.state.completed_scene_ids == {"d1", "d2", "s1"}
    assert nav.at_terminal()
