from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from playengine.quiz import AutoAdvancePolicy
from playengine.session_store import RetryPolicy

DEFAULT_REDIS_URL = "redis://localhost:6379/0"


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e
    if value < 1:
        raise ValueError(f"{name} must be at least 1, got {raw!r}")
    return value


@dataclass(frozen=True, slots=True)
class EngineSettings:
    redis_url: str = DEFAULT_REDIS_URL
    tick_interval_s: float = 1.0
    autosave_debounce_s: float = 0.5
    auto_advance_policy: AutoAdvancePolicy = AutoAdvancePolicy.full_marks_or_exhaustion
    storage_max_attempts: int = 3
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineSettings":
        """Read settings from PLAYENGINE_* variables.

        The Redis URL falls back to the plain REDIS_URL variable.
        """

        env = os.environ if environ is None else environ

        policy_raw = env.get("PLAYENGINE_AUTO_ADVANCE_POLICY") or AutoAdvancePolicy.full_marks_or_exhaustion.value
        try:
            policy = AutoAdvancePolicy(policy_raw)
        except ValueError as e:
            allowed = ", ".join(p.value for p in AutoAdvancePolicy)
            raise ValueError(f"PLAYENGINE_AUTO_ADVANCE_POLICY must be one of: {allowed}") from e

        return cls(
            redis_url=env.get("PLAYENGINE_REDIS_URL") or env.get("REDIS_URL") or DEFAULT_REDIS_URL,
            tick_interval_s=_float(env, "PLAYENGINE_TICK_INTERVAL_S", 1.0),
            autosave_debounce_s=_float(env, "PLAYENGINE_AUTOSAVE_DEBOUNCE_S", 0.5),
            auto_advance_policy=policy,
            storage_max_attempts=_int(env, "PLAYENGINE_STORAGE_MAX_ATTEMPTS", 3),
            log_level=(env.get("PLAYENGINE_LOG_LEVEL") or "INFO").upper(),
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.storage_max_attempts)
