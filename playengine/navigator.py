from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from playengine.api.models import END_OF_GAME, DialogueScene, GameManifest, GameState, Scene
from playengine.errors import (
    IllegalTransitionError,
    ManifestInconsistencyError,
    NavigationDisabledError,
    UnknownChoiceError,
)
from playengine.scenes import score_ceiling, variant_for

MoveVia = Literal["advance", "auto", "choose", "back"]


@dataclass(frozen=True, slots=True)
class Move:
    """Outcome of one transition.

    `to_scene` is None when the move ends the session at `from_scene`.
    """

    from_scene: str
    to_scene: str | None
    via: MoveVia
    points: int = 0

    @property
    def finishes(self) -> bool:
        return self.to_scene is None


def award(state: GameState, *, scene_id: str, points: int, ceiling: int) -> None:
    """Set the award for one scene and re-derive the capped total."""

    state.scene_scores[scene_id] = points
    state.score_accumulated = min(ceiling, sum(state.scene_scores.values()))


class SceneNavigator:
    """State machine over scene ids.

    Every operation checks legality before touching GameState, so a refused
    move leaves the state exactly as it was.
    """

    def __init__(self, manifest: GameManifest, state: GameState) -> None:
        self.manifest = manifest
        self.state = state
        self.ceiling = score_ceiling(manifest)

    @property
    def current_scene(self) -> Scene:
        scene = self.manifest.scene(self.state.current_scene_id)
        if scene is None:
            raise ManifestInconsistencyError(f"Current scene '{self.state.current_scene_id}' is not in the manifest")
        return scene

    def at_terminal(self) -> bool:
        scene = self.current_scene
        return variant_for(scene).is_terminal(scene)

    def enter(self, scene_id: str) -> None:
        scene = self.manifest.scene(scene_id)
        if scene is None:
            raise IllegalTransitionError(f"Scene '{scene_id}' does not exist")

        self.state.current_scene_id = scene_id
        self.state.history.append(scene_id)
        self.state.completed_scene_ids.add(scene_id)
        if variant_for(scene).evaluated:
            # Only a scene that was never attempted starts from zero.
            self.state.attempts_used.setdefault(scene_id, 0)

    def _successor(self, scene_id: str) -> str | None:
        order = self.manifest.scene_ids()
        pos = order.index(scene_id)
        return order[pos + 1] if pos + 1 < len(order) else None

    def advance(self, *, via: MoveVia = "advance") -> Move:
        scene = self.current_scene
        nav = scene.navigation
        variant = variant_for(scene)

        if isinstance(scene, DialogueScene) and scene.choices:
            raise IllegalTransitionError(f"Scene '{scene.id}' offers choices; pick one instead of advancing")

        resolved = scene.id in self.state.resolved_scene_ids
        if variant.evaluated and not resolved and not nav.can_skip:
            raise IllegalTransitionError(f"Scene '{scene.id}' must be answered before moving on")

        if nav.next is not None:
            if nav.next == END_OF_GAME:
                return Move(from_scene=scene.id, to_scene=None, via=via)
            self.enter(nav.next)
            return Move(from_scene=scene.id, to_scene=nav.next, via=via)

        if nav.can_skip:
            successor = self._successor(scene.id)
            if successor is None:
                return Move(from_scene=scene.id, to_scene=None, via=via)
            self.enter(successor)
            return Move(from_scene=scene.id, to_scene=successor, via=via)

        if variant.is_terminal(scene) or (variant.evaluated and resolved):
            return Move(from_scene=scene.id, to_scene=None, via=via)

        raise IllegalTransitionError(f"Scene '{scene.id}' has no next scene")

    def choose(self, choice_id: str) -> Move:
        scene = self.current_scene
        if not isinstance(scene, DialogueScene):
            raise IllegalTransitionError(f"Scene '{scene.id}' is a {scene.type} scene and has no choices")

        choice = next((c for c in scene.choices if c.id == choice_id), None)
        if choice is None:
            raise UnknownChoiceError(f"Choice '{choice_id}' is not offered on scene '{scene.id}'")
        if choice.next_scene is None or self.manifest.scene(choice.next_scene) is None:
            raise IllegalTransitionError(f"Choice '{choice_id}' leads nowhere")

        award(self.state, scene_id=scene.id, points=choice.points, ceiling=self.ceiling)
        self.state.choices_made[scene.id] = choice.id
        self.enter(choice.next_scene)
        return Move(from_scene=scene.id, to_scene=choice.next_scene, via="choose", points=choice.points)

    def back(self) -> Move:
        if not self.manifest.settings.allow_navigation:
            raise NavigationDisabledError("Back navigation is disabled for this game")
        if len(self.state.history) <= 1:
            raise NavigationDisabledError("There is no earlier scene to go back to")

        left = self.state.history.pop()
        self.state.current_scene_id = self.state.history[-1]
        return Move(from_scene=left, to_scene=self.state.current_scene_id, via="back")
