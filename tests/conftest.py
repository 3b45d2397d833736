from __future__ import annotations

from collections.abc import Generator
from typing import Any

import fakeredis
import pytest
from fastapi.testclient import TestClient

from playengine.api.deps import SessionRegistry, get_redis, get_registry
from playengine.main import app


class FakeClock:
    """Manually advanced stand-in for time.monotonic."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def dialogue(scene_id: str, *, next: str | None = None, choices: list[dict[str, Any]] | None = None, can_skip: bool = False) -> dict[str, Any]:
    navigation: dict[str, Any] = {"canSkip": can_skip}
    if next is not None:
        navigation["next"] = next
    scene: dict[str, Any] = {
        "id": scene_id,
        "type": "dialogue",
        "navigation": navigation,
        "messages": [{"text": f"Welcome to {scene_id}", "emotion": "neutral"}],
    }
    if choices:
        scene["choices"] = choices
    return scene


def quiz(
    scene_id: str,
    *,
    options: list[dict[str, Any]],
    next: str | None = None,
    max_attempts: int = 1,
    allow_multiple: bool = False,
    can_skip: bool = False,
) -> dict[str, Any]:
    navigation: dict[str, Any] = {"canSkip": can_skip}
    if next is not None:
        navigation["next"] = next
    return {
        "id": scene_id,
        "type": "quiz",
        "navigation": navigation,
        "question": f"Question for {scene_id}?",
        "options": options,
        "maxAttempts": max_attempts,
        "allowMultiple": allow_multiple,
    }


def summary(scene_id: str, *, total: int | None = None, achievements: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    scene: dict[str, Any] = {"id": scene_id, "type": "summary", "message": "Well done"}
    if total is not None:
        scene["score"] = {"total": total}
    if achievements:
        scene["achievements"] = achievements
    return scene


def manifest(
    scenes: list[dict[str, Any]],
    *,
    start: str | None = None,
    game_id: str = "g1",
    allow_navigation: bool = False,
    auto_save: bool = True,
) -> dict[str, Any]:
    return {
        "schemaVersion": "0.1.0",
        "gameId": game_id,
        "metadata": {"title": "Phishing basics", "difficulty": "beginner"},
        "scenes": scenes,
        "startScene": start or scenes[0]["id"],
        "settings": {"allowNavigation": allow_navigation, "autoSave": auto_save},
    }


def quiz_manifest(*, max_attempts: int = 2, auto_save: bool = True) -> dict[str, Any]:
    """intro -> q1 (one correct option worth 1) -> s1 (total 1)."""

    return manifest(
        [
            dialogue("intro", next="q1"),
            quiz(
                "q1",
                next="s1",
                max_attempts=max_attempts,
                options=[
                    {"id": "a", "text": "Report it", "isCorrect": True, "points": 1, "feedback": "Right"},
                    {"id": "b", "text": "Click the link", "isCorrect": False, "feedback": "Never click"},
                ],
            ),
            summary("s1", total=1),
        ],
        auto_save=auto_save,
    )


def branching_manifest(*, allow_navigation: bool = True) -> dict[str, Any]:
    """d1 offers two scored choices, both leading on to the summary."""

    return manifest(
        [
            dialogue(
                "d1",
                choices=[
                    {"id": "good", "text": "Verify the sender", "nextScene": "d2", "points": 5},
                    {"id": "poor", "text": "Reply at once", "nextScene": "d2", "points": 1},
                ],
            ),
            dialogue("d2", next="s1"),
            summary("s1", total=5),
        ],
        allow_navigation=allow_navigation,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def r() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def client_and_redis(r: fakeredis.FakeRedis) -> Generator[tuple[TestClient, fakeredis.FakeRedis], None, None]:
    registry = SessionRegistry()

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    app.dependency_overrides[get_redis] = _override
    app.dependency_overrides[get_registry] = lambda: registry
    with TestClient(app) as c:
        yield c, r
    app.dependency_overrides.clear()
