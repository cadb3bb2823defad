"""
Redis status cache for scans and batches.

Every scan and batch transition is mirrored into a short-lived key. A failed
write is reported to the caller and never fails the state transition that
caused it.
"""
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import redis

from app.platform.cache.redis import get_redis
from app.platform.config import settings
from app.platform.schemas import SideEffectResult

logger = logging.getLogger(__name__)


def scan_status_key(scan_id: str) -> str:
    return f"scan:{scan_id}:status"


def batch_status_key(batch_id: str) -> str:
    return f"batch:{batch_id}:status"


class ScanStatusCache:

    def __init__(self, client_factory: Callable[[], redis.Redis] = get_redis, ttl_seconds: Optional[int] = None):
        self._client_factory = client_factory
        self.ttl_seconds = ttl_seconds or settings.STATUS_CACHE_TTL_SECONDS

    def _write(self, key: str, payload: Dict[str, Any]) -> SideEffectResult:
        payload = {**payload, "updated_at": datetime.utcnow().isoformat()}
        try:
            self._client_factory().set(key, json.dumps(payload, default=str), ex=self.ttl_seconds)
            return SideEffectResult.success()
        except redis.RedisError as e:
            logger.warning(f"Status cache write for {key} failed: {e}")
            return SideEffectResult.failure(str(e))

    def set_scan_status(self, scan_id: str, status: str, **extra: Any) -> SideEffectResult:
        return self._write(scan_status_key(scan_id), {"scan_id": scan_id, "status": status, **extra})

    def set_batch_status(self, batch_id: str, status: str, **extra: Any) -> SideEffectResult:
        return self._write(batch_status_key(batch_id), {"batch_id": batch_id, "status": status, **extra})


status_cache = ScanStatusCache()
