from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator
from pydantic.alias_generators import to_camel

SUPPORTED_SCHEMA_VERSIONS = frozenset({"0.1.0"})

# Reserved `navigation.next` target meaning "the session ends after this scene".
END_OF_GAME = "end"

_WIRE = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")
_FROZEN_WIRE = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True)


# --- manifest -----------------------------------------------------------------


class GameSettings(BaseModel):
    model_config = _FROZEN_WIRE

    allow_navigation: bool = False
    show_progress: bool = True
    auto_save: bool = True
    sound_enabled: bool = True


class GameMetadata(BaseModel):
    model_config = _FROZEN_WIRE

    title: str = ""
    subtitle: str | None = None
    description: str | None = None
    duration: str | None = None
    difficulty: Literal["beginner", "intermediate", "advanced"] | None = None
    tags: tuple[str, ...] = ()
    learning_objectives: tuple[str, ...] = ()
    target_audience: str | None = None
    language: str | None = None
    version: str | None = None


class Navigation(BaseModel):
    model_config = _FROZEN_WIRE

    next: str | None = None
    previous: str | None = None
    can_skip: bool = False


class Character(BaseModel):
    model_config = _FROZEN_WIRE

    id: str
    name: str
    role: str | None = None
    avatar: str | None = None


class DialogueMessage(BaseModel):
    model_config = _FROZEN_WIRE

    text: str
    character_id: str | None = None
    emotion: Literal["neutral", "happy", "concerned", "thinking"] | None = None
    delay: int | None = None


class Choice(BaseModel):
    model_config = _FROZEN_WIRE

    id: str
    text: str
    # Optional here so a missing target is reported as its own violation kind.
    next_scene: str | None = None
    points: int = Field(default=0, ge=0)


class DialogueScene(BaseModel):
    model_config = _FROZEN_WIRE

    id: str
    type: Literal["dialogue"] = "dialogue"
    title: str | None = None
    navigation: Navigation = Field(default_factory=Navigation)
    character: Character | None = None
    messages: tuple[DialogueMessage, ...] = ()
    choices: tuple[Choice, ...] = ()


class QuizMedia(BaseModel):
    model_config = _FROZEN_WIRE

    url: str
    alt: str | None = None
    caption: str | None = None


class QuizOption(BaseModel):
    model_config = _FROZEN_WIRE

    id: str
    text: str
    is_correct: bool
    points: int = Field(default=0, ge=0)
    feedback: str | None = None


class QuizScene(BaseModel):
    model_config = _FROZEN_WIRE

    id: str
    type: Literal["quiz"] = "quiz"
    title: str | None = None
    navigation: Navigation = Field(default_factory=Navigation)
    question: str
    question_type: Literal["text", "image", "video"] = "text"
    media: QuizMedia | None = None
    options: tuple[QuizOption, ...] = ()
    allow_multiple: bool = False
    show_feedback: bool = True
    max_attempts: int = Field(default=1, ge=1)


class AssessmentOption(BaseModel):
    model_config = _FROZEN_WIRE

    id: str
    text: str
    score: int = Field(default=0, ge=0)


class AssessmentQuestion(BaseModel):
    model_config = _FROZEN_WIRE

    id: str
    text: str
    weight: float = Field(default=1.0, ge=0)
    options: tuple[AssessmentOption, ...] = ()


class AssessmentFeedback(BaseModel):
    model_config = _FROZEN_WIRE

    excellent: str | None = None
    good: str | None = None
    needs_improvement: str | None = None


class AssessmentScoring(BaseModel):
    model_config = _FROZEN_WIRE

    passing_score: float = 0.0
    show_score: bool = True
    feedback: AssessmentFeedback = Field(default_factory=AssessmentFeedback)


class AssessmentScene(BaseModel):
    model_config = _FROZEN_WIRE

    id: str
    type: Literal["assessment"] = "assessment"
    title: str | None = None
    navigation: Navigation = Field(default_factory=Navigation)
    instructions: str | None = None
    questions: tuple[AssessmentQuestion, ...] = ()
    scoring: AssessmentScoring = Field(default_factory=AssessmentScoring)


class Resource(BaseModel):
    model_config = _FROZEN_WIRE

    id: str
    title: str
    type: Literal["pdf", "video", "link", "download"]
    url: str
    description: str | None = None
    thumbnail: str | None = None
    size: str | None = None


class ResourceScene(BaseModel):
    model_config = _FROZEN_WIRE

    id: str
    type: Literal["resource"] = "resource"
    title: str | None = None
    navigation: Navigation = Field(default_factory=Navigation)
    description: str | None = None
    resources: tuple[Resource, ...] = ()
    layout: Literal["grid", "list"] = "list"


UnlockRule = Literal[
    "completion",
    "score_threshold",
    "score_percentage",
    "time_limit",
    "scenes_completed",
    "no_mistakes",
]


class AchievementUnlock(BaseModel):
    model_config = _FROZEN_WIRE

    type: UnlockRule = "completion"
    min_score: int | None = None
    min_percentage: float | None = None
    max_time_ms: int | None = None
    scene_ids: tuple[str, ...] = ()

    @model_validator(mode="after")
    def _rule_has_its_parameter(self) -> "AchievementUnlock":
        required = {
            "score_threshold": ("minScore", self.min_score),
            "score_percentage": ("minPercentage", self.min_percentage),
            "time_limit": ("maxTimeMs", self.max_time_ms),
            "scenes_completed": ("sceneIds", self.scene_ids or None),
        }.get(self.type)
        if required is not None and required[1] is None:
            raise ValueError(f"unlock rule '{self.type}' requires '{required[0]}'")
        return self


class Achievement(BaseModel):
    model_config = _FROZEN_WIRE

    id: str
    title: str
    description: str = ""
    icon: str | None = None
    unlock: AchievementUnlock = Field(default_factory=AchievementUnlock)


class SummaryScore(BaseModel):
    model_config = _FROZEN_WIRE

    achieved: int = Field(default=0, ge=0)
    total: int = Field(ge=0)
    show_percentage: bool = True


class NextAction(BaseModel):
    model_config = _FROZEN_WIRE

    label: str
    action: Literal["restart", "exit", "certificate", "share"]
    url: str | None = None


class SummaryScene(BaseModel):
    model_config = _FROZEN_WIRE

    id: str
    type: Literal["summary"] = "summary"
    title: str | None = None
    navigation: Navigation = Field(default_factory=Navigation)
    message: str = ""
    score: SummaryScore | None = None
    achievements: tuple[Achievement, ...] = ()
    next_actions: tuple[NextAction, ...] = ()


Scene = Annotated[
    DialogueScene | QuizScene | AssessmentScene | ResourceScene | SummaryScene,
    Field(discriminator="type"),
]


class GameManifest(BaseModel):
    model_config = _FROZEN_WIRE

    schema_version: str
    game_id: str
    metadata: GameMetadata = Field(default_factory=GameMetadata)
    # Theme and analytics belong to the host; kept verbatim for it.
    theme: dict[str, Any] | None = None
    analytics: dict[str, Any] | None = None
    scenes: tuple[Scene, ...]
    start_scene: str
    settings: GameSettings = Field(default_factory=GameSettings)

    def scene(self, scene_id: str) -> Scene | None:
        return next((s for s in self.scenes if s.id == scene_id), None)

    def scene_ids(self) -> list[str]:
        return [s.id for s in self.scenes]


# --- validation report ----------------------------------------------------------


class ViolationKind(StrEnum):
    unsupported_schema_version = "unsupported_schema_version"
    missing_field = "missing_field"
    invalid_field = "invalid_field"
    unknown_scene_type = "unknown_scene_type"
    duplicate_scene_id = "duplicate_scene_id"
    dangling_reference = "dangling_reference"
    empty_quiz_options = "empty_quiz_options"
    invalid_max_attempts = "invalid_max_attempts"
    choice_missing_next_scene = "choice_missing_next_scene"
    negative_points = "negative_points"


class WarningKind(StrEnum):
    unreachable_scene = "unreachable_scene"
    quiz_without_correct_option = "quiz_without_correct_option"
    no_terminal_scene = "no_terminal_scene"


class ManifestViolation(BaseModel):
    model_config = _FROZEN_WIRE

    kind: ViolationKind
    path: str
    message: str


class ManifestWarning(BaseModel):
    model_config = _FROZEN_WIRE

    kind: WarningKind
    path: str
    message: str


# --- session state ----------------------------------------------------------------


class SessionPhase(StrEnum):
    in_progress = "in_progress"
    completed = "completed"


class GameState(BaseModel):
    model_config = _WIRE

    game_id: str
    session_id: str
    phase: SessionPhase = SessionPhase.in_progress

    current_scene_id: str
    history: list[str] = Field(default_factory=list)
    score_accumulated: int = 0
    attempts_used: dict[str, int] = Field(default_factory=dict)

    start_timestamp: datetime
    elapsed_ms: int = 0
    completed_scene_ids: set[str] = Field(default_factory=set)

    # Points currently awarded per scene; score_accumulated is derived from this
    # so replaying an edge replaces its award instead of adding to it.
    scene_scores: dict[str, int] = Field(default_factory=dict)
    choices_made: dict[str, str] = Field(default_factory=dict)
    # Quiz/assessment scenes whose auto-advance condition has been met.
    resolved_scene_ids: set[str] = Field(default_factory=set)
    mistakes: int = 0

    last_updated_at: datetime | None = None

    @field_serializer("completed_scene_ids", "resolved_scene_ids")
    def _sorted_ids(self, value: set[str]) -> list[str]:
        return sorted(value)


class AutosaveSnapshot(BaseModel):
    model_config = _WIRE

    schema_version: str
    game_id: str
    session_id: str
    state: GameState
    saved_at: datetime


class GameResults(BaseModel):
    model_config = _FROZEN_WIRE

    game_id: str
    session_id: str
    score: int
    total_score: int
    percentage: float
    time_spent_ms: int
    scenes_completed: tuple[str, ...]
    unlocked_achievements: tuple[Achievement, ...] = ()
    # Stamped by the engine; finalize() itself leaves it unset.
    completed_at: datetime | None = None


# --- HTTP surface -------------------------------------------------------------------


class ManifestValidateRequest(BaseModel):
    model_config = _WIRE

    manifest: Any


class ManifestValidateResponse(BaseModel):
    model_config = _WIRE

    valid: bool
    errors: list[ManifestViolation] = Field(default_factory=list)
    warnings: list[ManifestWarning] = Field(default_factory=list)


class SessionCreateRequest(BaseModel):
    model_config = _WIRE

    manifest: dict[str, Any]
    session_id: str | None = Field(default=None, min_length=1, max_length=128)


class SessionResumeRequest(BaseModel):
    model_config = _WIRE

    manifest: dict[str, Any]


ActionName = Literal["advance", "choose", "back", "submit", "submit_assessment"]


class ActionRequest(BaseModel):
    model_config = _WIRE

    action: ActionName
    choice_id: str | None = None
    scene_id: str | None = None
    option_ids: list[str] = Field(default_factory=list)
    answers: dict[str, str] = Field(default_factory=dict)


class SessionView(BaseModel):
    model_config = _WIRE

    state: GameState
    current_scene: Scene
    is_terminal: bool
    results: GameResults | None = None


class ActionResponse(BaseModel):
    model_config = _WIRE

    accepted: bool
    error: str | None = None
    error_kind: str | None = None
    outcome: dict[str, Any] | None = None
    session: SessionView
