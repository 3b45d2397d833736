from __future__ import annotations

import pytest

from conftest import FakeClock, branching_manifest, dialogue, manifest, quiz, summary
from playengine.api.models import GameState, SessionPhase
from playengine.engine import GameEngine
from playengine.errors import ManifestInconsistencyError, SessionNotTerminalError
from playengine.manifest import load_manifest
from playengine.results import finalize


def _achievements_manifest() -> dict:
    return manifest(
        [
            quiz(
                "q1",
                next="s1",
                max_attempts=2,
                options=[
                    {"id": "a", "text": "Report", "isCorrect": True, "points": 8},
                    {"id": "b", "text": "Ignore", "isCorrect": False},
                ],
            ),
            summary(
                "s1",
                total=10,
                achievements=[
                    {"id": "finisher", "title": "Finisher", "unlock": {"type": "completion"}},
                    {"id": "sharp", "title": "Sharp eye", "unlock": {"type": "score_threshold", "minScore": 8}},
                    {"id": "ace", "title": "Ace", "unlock": {"type": "score_percentage", "minPercentage": 90}},
                    {"id": "flawless", "title": "Flawless", "unlock": {"type": "no_mistakes"}},
                    {"id": "quick", "title": "Quick", "unlock": {"type": "time_limit", "maxTimeMs": 60_000}},
                    {"id": "thorough", "title": "Thorough", "unlock": {"type": "scenes_completed", "sceneIds": ["q1", "s1"]}},
                ],
            ),
        ]
    )


def _unlocked(engine: GameEngine) -> set[str]:
    assert engine.results is not None
    return {a.id for a in engine.results.unlocked_achievements}


def test_achievements_unlock_from_final_facts(clock: FakeClock) -> None:
    engine = GameEngine.start(_achievements_manifest(), clock=clock)
    clock.advance(30)

    engine.submit("q1", ["a"])

    assert engine.results.score == 8
    assert engine.results.percentage == 80.0
    assert _unlocked(engine) == {"finisher", "sharp", "flawless", "quick", "thorough"}


def test_mistakes_and_slowness_lock_achievements(clock: FakeClock) -> None:
    engine = GameEngine.start(_achievements_manifest(), clock=clock)
    engine.submit("q1", ["b"])
    clock.advance(120)

    engine.submit("q1", ["a"])

    assert engine.results.score == 8
    assert engine.results.time_spent_ms == 120_000
    assert _unlocked(engine) == {"finisher", "sharp", "thorough"}


def test_score_is_capped_by_declared_total() -> None:
    raw = branching_manifest()
    raw["scenes"][2]["score"] = {"total": 3}

    engine = GameEngine.start(raw)
    engine.choose("good")
    engine.advance()

    assert engine.results.score == 3
    assert engine.results.total_score == 3
    assert engine.results.percentage == 100.0


def test_total_falls_back_to_maximum_attainable() -> None:
    raw = branching_manifest()
    del raw["scenes"][2]["score"]

    engine = GameEngine.start(raw)
    engine.choose("poor")
    engine.advance()

    assert engine.results.total_score == 5
    assert engine.results.percentage == 20.0


def test_zero_total_gives_zero_percentage() -> None:
    engine = GameEngine.start(manifest([dialogue("d1", next="s1"), summary("s1")]))
    engine.advance()

    assert engine.results.total_score == 0
    assert engine.results.percentage == 0.0


def test_finalize_requires_a_terminal_position() -> None:
    m = load_manifest(branching_manifest())
    state = GameState(game_id="g1", session_id="s", current_scene_id="d1", start_timestamp="2026-01-01T00:00:00Z")

    with pytest.raises(SessionNotTerminalError):
        finalize(state, m)


def test_finalize_on_unknown_scene_is_fatal() -> None:
    m = load_manifest(branching_manifest())
    state = GameState(
        game_id="g1",
        session_id="s",
        phase=SessionPhase.completed,
        current_scene_id="gone",
        start_timestamp="2026-01-01T00:00:00Z",
    )

    with pytest.raises(ManifestInconsistencyError):
        finalize(state, m)


def test_finalize_is_deterministic() -> None:
    engine = GameEngine.start(branching_manifest())
    engine.choose("good")
    engine.advance()

    assert finalize(engine.state, engine.manifest) == finalize(engine.state, engine.manifest)
