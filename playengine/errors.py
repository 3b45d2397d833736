from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from playengine.api.models import ManifestViolation


class EngineError(Exception):
    """Base class for everything the engine raises on purpose."""


class ManifestValidationError(EngineError):
    """The manifest was rejected; no session may be built from it."""

    def __init__(self, violations: Sequence["ManifestViolation"]):
        self.violations = tuple(violations)
        summary = "; ".join(f"{v.path}: {v.message}" for v in self.violations[:3])
        more = len(self.violations) - 3
        if more > 0:
            summary += f" (+{more} more)"
        super().__init__(f"Manifest rejected: {summary}")


class RecoverableActionError(EngineError):
    """A user action that was refused. GameState is left untouched."""


class IllegalTransitionError(RecoverableActionError):
    pass


class UnknownChoiceError(RecoverableActionError):
    pass


class NavigationDisabledError(RecoverableActionError):
    pass


class InvalidSubmissionError(RecoverableActionError):
    pass


class AttemptsExceededError(RecoverableActionError):
    """Submission after the attempt budget was already reported exhausted."""


class SessionCompletedError(RecoverableActionError):
    pass


class SnapshotMismatchError(EngineError):
    """Snapshot does not belong to the manifest it is being resumed against."""


class SessionNotTerminalError(EngineError):
    pass


class ManifestInconsistencyError(EngineError):
    """State references something the validated manifest does not contain."""
