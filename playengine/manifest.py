from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError
from pydantic.alias_generators import to_snake

from playengine.api.models import (
    END_OF_GAME,
    SUPPORTED_SCHEMA_VERSIONS,
    GameManifest,
    ManifestViolation,
    ManifestWarning,
    QuizScene,
    ViolationKind,
    WarningKind,
)
from playengine.errors import ManifestValidationError
from playengine.scenes import SCENE_VARIANTS, is_terminal, variant_for

logger = logging.getLogger(__name__)


def _field(raw: Mapping[str, Any], name: str) -> Any:
    """Read a camelCase field, accepting its snake_case spelling too."""

    if name in raw:
        return raw[name]
    return raw.get(to_snake(name))


def _has_field(raw: Mapping[str, Any], name: str) -> bool:
    return name in raw or to_snake(name) in raw


@dataclass(frozen=True, slots=True)
class CheckContext:
    """Raw document plus the scene entries that are at least objects."""

    raw: Mapping[str, Any]
    scenes: tuple[tuple[str, Mapping[str, Any]], ...]

    @staticmethod
    def from_raw(raw: Mapping[str, Any]) -> "CheckContext":
        scenes = _field(raw, "scenes")
        entries: list[tuple[str, Mapping[str, Any]]] = []
        if isinstance(scenes, list | tuple):
            for idx, scene in enumerate(scenes):
                if isinstance(scene, Mapping):
                    entries.append((f"scenes[{idx}]", scene))
        return CheckContext(raw=raw, scenes=tuple(entries))

    def scene_ids(self) -> set[str]:
        return {sid for _, s in self.scenes if isinstance(sid := s.get("id"), str)}


class ManifestCheck(ABC):
    """A small, composable check over the raw manifest document."""

    @abstractmethod
    def check(self, *, ctx: CheckContext) -> Iterator[ManifestViolation]:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class RequiredFieldsCheck(ManifestCheck):
    fields: tuple[str, ...]

    def check(self, *, ctx: CheckContext) -> Iterator[ManifestViolation]:
        for name in self.fields:
            if not _has_field(ctx.raw, name) or _field(ctx.raw, name) is None:
                yield ManifestViolation(
                    kind=ViolationKind.missing_field,
                    path=name,
                    message=f"Required field '{name}' is missing",
                )


@dataclass(frozen=True, slots=True)
class SchemaVersionCheck(ManifestCheck):
    supported: frozenset[str]

    def check(self, *, ctx: CheckContext) -> Iterator[ManifestViolation]:
        version = _field(ctx.raw, "schemaVersion")
        if version is None:
            return
        if not isinstance(version, str) or version not in self.supported:
            allowed = ",".join(sorted(self.supported))
            yield ManifestViolation(
                kind=ViolationKind.unsupported_schema_version,
                path="schemaVersion",
                message=f"Unsupported schemaVersion '{version}' (supported: {allowed})",
            )


@dataclass(frozen=True, slots=True)
class SceneShapeCheck(ManifestCheck):
    """Every scene is an object with a string id and a known type."""

    def check(self, *, ctx: CheckContext) -> Iterator[ManifestViolation]:
        scenes = _field(ctx.raw, "scenes")
        if scenes is None:
            return
        if not isinstance(scenes, list | tuple):
            yield ManifestViolation(kind=ViolationKind.invalid_field, path="scenes", message="scenes must be a list")
            return
        if not scenes:
            yield ManifestViolation(
                kind=ViolationKind.invalid_field,
                path="scenes",
                message="Game must have at least one scene",
            )

        for idx, scene in enumerate(scenes):
            path = f"scenes[{idx}]"
            if not isinstance(scene, Mapping):
                yield ManifestViolation(kind=ViolationKind.invalid_field, path=path, message="Scene must be an object")
                continue
            if not isinstance(scene.get("id"), str) or not scene.get("id"):
                yield ManifestViolation(
                    kind=ViolationKind.missing_field,
                    path=f"{path}.id",
                    message="Scene is missing a string id",
                )
            scene_type = scene.get("type")
            if scene_type is None:
                yield ManifestViolation(
                    kind=ViolationKind.missing_field,
                    path=f"{path}.type",
                    message="Scene is missing its type",
                )
            elif not isinstance(scene_type, str) or scene_type not in SCENE_VARIANTS:
                valid = ", ".join(SCENE_VARIANTS)
                yield ManifestViolation(
                    kind=ViolationKind.unknown_scene_type,
                    path=f"{path}.type",
                    message=f"Invalid scene type '{scene_type}'. Must be one of: {valid}",
                )


@dataclass(frozen=True, slots=True)
class DuplicateSceneIdCheck(ManifestCheck):
    def check(self, *, ctx: CheckContext) -> Iterator[ManifestViolation]:
        seen: dict[str, str] = {}
        for path, scene in ctx.scenes:
            sid = scene.get("id")
            if not isinstance(sid, str):
                continue
            if sid in seen:
                yield ManifestViolation(
                    kind=ViolationKind.duplicate_scene_id,
                    path=f"{path}.id",
                    message=f"Scene id '{sid}' is already used by {seen[sid]}",
                )
            else:
                seen[sid] = path


@dataclass(frozen=True, slots=True)
class ReferenceCheck(ManifestCheck):
    """startScene and every navigation/choice/achievement target must exist."""

    def check(self, *, ctx: CheckContext) -> Iterator[ManifestViolation]:
        known = ctx.scene_ids()

        start = _field(ctx.raw, "startScene")
        if isinstance(start, str) and start not in known:
            yield self._dangling("startScene", start)

        for path, scene in ctx.scenes:
            navigation = scene.get("navigation")
            if isinstance(navigation, Mapping):
                target = navigation.get("next")
                if isinstance(target, str) and target != END_OF_GAME and target not in known:
                    yield self._dangling(f"{path}.navigation.next", target)

            choices = scene.get("choices")
            if isinstance(choices, list | tuple):
                for idx, choice in enumerate(choices):
                    if not isinstance(choice, Mapping):
                        continue
                    target = _field(choice, "nextScene")
                    if isinstance(target, str) and target and target not in known:
                        yield self._dangling(f"{path}.choices[{idx}].nextScene", target)

            achievements = scene.get("achievements")
            if isinstance(achievements, list | tuple):
                for idx, achievement in enumerate(achievements):
                    unlock = achievement.get("unlock") if isinstance(achievement, Mapping) else None
                    scene_ids = _field(unlock, "sceneIds") if isinstance(unlock, Mapping) else None
                    if isinstance(scene_ids, list | tuple):
                        for target in scene_ids:
                            if isinstance(target, str) and target not in known:
                                yield self._dangling(f"{path}.achievements[{idx}].unlock.sceneIds", target)

    @staticmethod
    def _dangling(path: str, target: str) -> ManifestViolation:
        return ManifestViolation(
            kind=ViolationKind.dangling_reference,
            path=path,
            message=f"'{target}' does not refer to any scene",
        )


@dataclass(frozen=True, slots=True)
class VariantRulesCheck(ManifestCheck):
    """Dispatch each scene to the raw checks registered for its variant."""

    def check(self, *, ctx: CheckContext) -> Iterator[ManifestViolation]:
        for path, scene in ctx.scenes:
            scene_type = scene.get("type")
            variant = SCENE_VARIANTS.get(scene_type) if isinstance(scene_type, str) else None
            if variant is None:
                continue
            for raw_check in variant.raw_checks:
                yield from raw_check(scene, path)


@dataclass(frozen=True, slots=True)
class ValidatorPipeline:
    checks: tuple[ManifestCheck, ...]

    def run(self, *, ctx: CheckContext) -> list[ManifestViolation]:
        out: list[ManifestViolation] = []
        for c in self.checks:
            out.extend(c.check(ctx=ctx))
        return out


DEFAULT_PIPELINE = ValidatorPipeline(
    checks=(
        RequiredFieldsCheck(fields=("schemaVersion", "gameId", "scenes", "startScene")),
        SchemaVersionCheck(supported=SUPPORTED_SCHEMA_VERSIONS),
        SceneShapeCheck(),
        DuplicateSceneIdCheck(),
        ReferenceCheck(),
        VariantRulesCheck(),
    )
)


@dataclass(frozen=True, slots=True)
class ManifestReport:
    manifest: GameManifest | None
    violations: tuple[ManifestViolation, ...]
    warnings: tuple[ManifestWarning, ...] = ()

    @property
    def valid(self) -> bool:
        return self.manifest is not None


def _loc_to_path(loc: tuple[int | str, ...]) -> str:
    parts = list(loc)
    # Discriminated unions put the variant tag right after the scene index.
    if len(parts) >= 3 and parts[0] == "scenes" and isinstance(parts[1], int) and parts[2] in SCENE_VARIANTS:
        del parts[2]
    path = ""
    for p in parts:
        if isinstance(p, int):
            path += f"[{p}]"
        else:
            path = f"{path}.{p}" if path else str(p)
    return path or "root"


def _overlaps(path: str, reported: set[str]) -> bool:
    for p in reported:
        if path == p:
            return True
        if path.startswith((p + ".", p + "[")) or p.startswith((path + ".", path + "[")):
            return True
    return False


# Lower-bound failures keep their own kind however the number was spelled.
_BOUND_KINDS: dict[str, ViolationKind] = {
    "points": ViolationKind.negative_points,
    "score": ViolationKind.negative_points,
    "weight": ViolationKind.negative_points,
    "achieved": ViolationKind.negative_points,
    "total": ViolationKind.negative_points,
    "maxAttempts": ViolationKind.invalid_max_attempts,
}


def _error_kind(error_type: str, path: str) -> ViolationKind:
    if error_type == "missing":
        return ViolationKind.missing_field
    if error_type == "greater_than_equal":
        return _BOUND_KINDS.get(path.rsplit(".", 1)[-1], ViolationKind.invalid_field)
    return ViolationKind.invalid_field


def _shape_violations(raw: Mapping[str, Any], already: list[ManifestViolation]) -> list[ManifestViolation]:
    try:
        GameManifest.model_validate(raw)
    except ValidationError as e:
        reported = {v.path for v in already}
        out: list[ManifestViolation] = []
        for err in e.errors():
            path = _loc_to_path(tuple(err["loc"]))
            if _overlaps(path, reported):
                continue
            out.append(ManifestViolation(kind=_error_kind(err["type"], path), path=path, message=str(err["msg"])))
            reported.add(path)
        return out
    return []


def _reachable(manifest: GameManifest) -> set[str]:
    order = manifest.scene_ids()
    seen: set[str] = set()
    stack = [manifest.start_scene]
    while stack:
        sid = stack.pop()
        if sid in seen:
            continue
        seen.add(sid)
        scene = manifest.scene(sid)
        if scene is None:
            continue
        nav = scene.navigation
        if nav.next and nav.next != END_OF_GAME:
            stack.append(nav.next)
        elif nav.can_skip:
            pos = order.index(sid)
            if pos + 1 < len(order):
                stack.append(order[pos + 1])
        for choice in getattr(scene, "choices", ()):
            if choice.next_scene:
                stack.append(choice.next_scene)
    return seen


def _warnings(manifest: GameManifest) -> list[ManifestWarning]:
    out: list[ManifestWarning] = []
    reachable = _reachable(manifest)
    has_exit = False

    for idx, scene in enumerate(manifest.scenes):
        path = f"scenes[{idx}]"
        if scene.id not in reachable:
            out.append(
                ManifestWarning(
                    kind=WarningKind.unreachable_scene,
                    path=path,
                    message=f"Scene '{scene.id}' cannot be reached from '{manifest.start_scene}'",
                )
            )
        if isinstance(scene, QuizScene) and not any(o.is_correct for o in scene.options):
            out.append(
                ManifestWarning(
                    kind=WarningKind.quiz_without_correct_option,
                    path=f"{path}.options",
                    message="Quiz has no correct option; full marks are impossible",
                )
            )

        nav = scene.navigation
        if (
            is_terminal(scene)
            or nav.next == END_OF_GAME
            or (variant_for(scene).evaluated and nav.next is None)
            or (nav.can_skip and nav.next is None and idx == len(manifest.scenes) - 1)
        ):
            has_exit = True

    if not has_exit:
        out.append(
            ManifestWarning(
                kind=WarningKind.no_terminal_scene,
                path="scenes",
                message="No scene ends the session; players can never finish",
            )
        )
    return out


def inspect_manifest(raw: Any, *, pipeline: ValidatorPipeline = DEFAULT_PIPELINE) -> ManifestReport:
    """Run every check and return the full report. Never raises."""

    if not isinstance(raw, Mapping):
        violation = ManifestViolation(
            kind=ViolationKind.missing_field,
            path="root",
            message="Content must be a valid JSON object",
        )
        return ManifestReport(manifest=None, violations=(violation,))

    ctx = CheckContext.from_raw(raw)
    violations = pipeline.run(ctx=ctx)
    violations.extend(_shape_violations(raw, violations))

    if violations:
        logger.debug("manifest rejected with %d violation(s)", len(violations))
        return ManifestReport(manifest=None, violations=tuple(violations))

    manifest = GameManifest.model_validate(raw)
    return ManifestReport(manifest=manifest, violations=(), warnings=tuple(_warnings(manifest)))


def validate(raw: Any) -> GameManifest | list[ManifestViolation]:
    """Return the immutable manifest, or the complete list of violations."""

    report = inspect_manifest(raw)
    if report.manifest is None:
        return list(report.violations)
    return report.manifest


def load_manifest(raw: Any) -> GameManifest:
    result = validate(raw)
    if isinstance(result, GameManifest):
        return result
    raise ManifestValidationError(result)


async def load_manifest_async(fetch: Callable[[], Awaitable[Any]]) -> GameManifest:
    """Await the host's fetch, then validate. Nothing is built from a partial document."""

    raw = await fetch()
    return load_manifest(raw)
