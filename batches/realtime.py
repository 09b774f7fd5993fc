from __future__ import annotations

import json
import logging
from typing import Iterator
from uuid import UUID

from redis.exceptions import RedisError

from pipeline.connections import get_redis

logger = logging.getLogger(__name__)


def user_channel(user_id: UUID | str) -> str:
    return f"batches:user:{user_id}"


def batch_channel(batch_id: UUID | str) -> str:
    return f"batches:batch:{batch_id}"


def publish_batch_change(user_id: UUID | str, batch_id: UUID | str, redis=None) -> None:
    """Notify subscribers that a batch or one of its clips changed.

    Delivery is best-effort: the next poll or reload picks up the change
    when Redis is unavailable.
    """
    message = json.dumps({"batch_id": str(batch_id), "user_id": str(user_id)})
    try:
        conn = redis or get_redis()
        conn.publish(user_channel(user_id), message)
        conn.publish(batch_channel(batch_id), message)
    except RedisError:
        logger.warning("realtime publish failed for batch %s", batch_id, exc_info=True)


def listen(channels: list[str], redis=None, timeout_s: float = 15.0) -> Iterator[dict | None]:
    """Yield decoded change notices; yields None on each idle timeout."""
    conn = redis or get_redis()
    pubsub = conn.pubsub(ignore_subscribe_messages=True)
    pubsub.subscribe(*channels)
    try:
        while True:
            message = pubsub.get_message(timeout=timeout_s)
            if message is None:
                yield None
                continue
            data = message.get("data")
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            try:
                yield json.loads(data)
            except (TypeError, ValueError):
                yield {"raw": data}
    finally:
        pubsub.close()
