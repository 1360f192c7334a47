# tenant_guard/stores/redis_store.py
import logging
from datetime import datetime
from typing import Optional

import redis

from tenant_guard.core.exceptions import StorageUnavailable
from tenant_guard.core.timeutils import ensure_utc, parse_timestamp, utcnow
from tenant_guard.schemas.security import RateLimitEntry
from tenant_guard.stores.base import CounterStore

logger = logging.getLogger(__name__)

KEY_PREFIX = "rate_limit"


class RedisCounterStore(CounterStore):
    """
    Compteurs de limitation stockés en hash Redis (un hash par clé).
    Les lignes expirent d'elles-mêmes après la rétention configurée.
    """

    def __init__(self, client: "redis.Redis", retention_seconds: Optional[int] = None):
        self.client = client
        self.retention_seconds = retention_seconds

    @classmethod
    def from_url(cls, url: str, retention_seconds: Optional[int] = None) -> "RedisCounterStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), retention_seconds)

    @staticmethod
    def _redis_key(key: str) -> str:
        return f"{KEY_PREFIX}:{key}"

    def get_entry(self, key: str) -> Optional[RateLimitEntry]:
        try:
            data = self.client.hgetall(self._redis_key(key))
        except redis.RedisError as e:
            raise StorageUnavailable(f"Lecture Redis impossible: {e}", store="redis") from e

        if not data:
            return None

        return RateLimitEntry(
            key=key,
            attempts=int(data.get("attempts") or 0),
            window_start=parse_timestamp(data.get("window_start") or None),
            blocked_until=parse_timestamp(data.get("blocked_until") or None),
            updated_at=parse_timestamp(data.get("updated_at") or None),
        )

    def upsert_entry(self, entry: RateLimitEntry) -> None:
        mapping = {
            "attempts": entry.attempts,
            "window_start": entry.window_start.isoformat() if entry.window_start else "",
            "blocked_until": entry.blocked_until.isoformat() if entry.blocked_until else "",
            "updated_at": (ensure_utc(entry.updated_at) or utcnow()).isoformat(),
        }
        name = self._redis_key(entry.key)
        try:
            self.client.hset(name, mapping=mapping)
            if self.retention_seconds:
                self.client.expire(name, self.retention_seconds)
        except redis.RedisError as e:
            raise StorageUnavailable(f"Écriture Redis impossible: {e}", store="redis") from e

    def delete_entry(self, key: str) -> None:
        try:
            self.client.delete(self._redis_key(key))
        except redis.RedisError as e:
            raise StorageUnavailable(f"Suppression Redis impossible: {e}", store="redis") from e

    def delete_entries_older_than(self, timestamp: datetime) -> int:
        cutoff = ensure_utc(timestamp)
        deleted = 0
        try:
            for name in self.client.scan_iter(match=f"{KEY_PREFIX}:*"):
                updated_at = parse_timestamp(self.client.hget(name, "updated_at") or None)
                if updated_at is not None and updated_at < cutoff:
                    self.client.delete(name)
                    deleted += 1
        except redis.RedisError as e:
            raise StorageUnavailable(f"Nettoyage Redis impossible: {e}", store="redis") from e
        return deleted
