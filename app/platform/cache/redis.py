from typing import Optional

import redis

from app.platform.config import settings

_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Shared client for the status cache. Connections are made lazily by redis-py."""
    global _client
    if _client is None:
        _client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=2,
            socket_connect_timeout=2,
        )
    return _client
