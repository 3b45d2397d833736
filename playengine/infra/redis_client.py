from __future__ import annotations

import redis

from playengine.config import EngineSettings


def get_redis_url() -> str:
    return EngineSettings.from_env().redis_url


def create_redis(url: str | None = None) -> redis.Redis:
    # decode_responses=True => snapshots and stream fields come back as str
    return redis.Redis.from_url(url or get_redis_url(), decode_responses=True)
