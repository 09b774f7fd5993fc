from __future__ import annotations

import os

from redis import Redis


def _redis_url() -> str:
    return os.getenv("REDIS_URL", "redis://localhost:6379/0")


def get_redis() -> Redis:
    return Redis.from_url(_redis_url())
