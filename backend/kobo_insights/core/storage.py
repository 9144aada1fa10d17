"""
Storage abstraction layer for datasets, chart configs and analysis logs.

Provides pluggable storage backends:
- In-memory (development)
- Redis (production)

Configure via STORAGE_BACKEND environment variable.
"""
import os
import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, List, Optional
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Abstract base class for storage backends. Values are JSON-serializable."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Get value by key. Returns None if not found or expired."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        """Set value, optionally with a TTL. Returns True on success."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete key. Returns True if deleted."""
        pass

    @abstractmethod
    def keys(self, prefix: str) -> List[str]:
        """List live keys starting with prefix."""
        pass

    @abstractmethod
    def cleanup_expired(self) -> int:
        """Remove expired entries. Returns count of removed entries."""
        pass


class InMemoryStorage(StorageBackend):
    """
    In-memory storage for development.

    NOT suitable for production with multiple workers.
    """

    def __init__(self):
        self._store: dict = {}
        self._lock = threading.Lock()
        logger.info("Using in-memory storage backend (development only)")

    def _expired(self, entry: dict) -> bool:
        expires_at = entry.get('expires_at')
        return expires_at is not None and datetime.now(timezone.utc) > expires_at

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if self._expired(entry):
                del self._store[key]
                return None
            # Hand out a copy so callers can't mutate stored state
            return json.loads(entry['value'])

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds) if ttl_seconds else None
        with self._lock:
            self._store[key] = {
                'value': json.dumps(value, default=str),
                'expires_at': expires_at,
            }
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            if key in self._store:
                del self._store[key]
                return True
            return False

    def keys(self, prefix: str) -> List[str]:
        with self._lock:
            return [k for k, entry in self._store.items() if k.startswith(prefix) and not self._expired(entry)]

    def cleanup_expired(self) -> int:
        with self._lock:
            expired = [key for key, entry in self._store.items() if self._expired(entry)]
            for key in expired:
                del self._store[key]
            return len(expired)

    def size(self) -> int:
        """Get current store size."""
        return len(self._store)


class RedisStorage(StorageBackend):
    """
    Redis storage for production.

    Requires redis package and REDIS_URL environment variable.
    """

    def __init__(self, redis_url: str, namespace: str = "kobo"):
        try:
            import redis
            self._client = redis.from_url(redis_url, decode_responses=True)
            self._client.ping()  # Test connection
            logger.info("Connected to Redis storage backend")
        except ImportError:
            raise RuntimeError(
                "Redis storage requires 'redis' package. "
                "Install with: pip install redis"
            )
        except Exception as e:
            raise RuntimeError(f"Failed to connect to Redis: {e}")
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def get(self, key: str) -> Optional[Any]:
        try:
            data = self._client.get(self._key(key))
            if data:
                return json.loads(data)
            return None
        except Exception as e:
            logger.error(f"Redis get error: {e}")
            return None

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        try:
            payload = json.dumps(value, default=str)
            if ttl_seconds:
                self._client.setex(self._key(key), ttl_seconds, payload)
            else:
                self._client.set(self._key(key), payload)
            return True
        except Exception as e:
            logger.error(f"Redis set error: {e}")
            return False

    def delete(self, key: str) -> bool:
        try:
            return self._client.delete(self._key(key)) > 0
        except Exception as e:
            logger.error(f"Redis delete error: {e}")
            return False

    def keys(self, prefix: str) -> List[str]:
        offset = len(self._namespace) + 1
        try:
            return [k[offset:] for k in self._client.scan_iter(match=f"{self._key(prefix)}*")]
        except Exception as e:
            logger.error(f"Redis scan error: {e}")
            return []

    def cleanup_expired(self) -> int:
        # Redis handles TTL automatically
        return 0


# Storage factory
_storage_instance: Optional[StorageBackend] = None


def get_storage() -> StorageBackend:
    """
    Get the configured storage backend (singleton).

    Configure via environment variables:
    - STORAGE_BACKEND: "memory" (default) or "redis"
    - REDIS_URL: Required if using redis backend
    """
    global _storage_instance

    if _storage_instance is None:
        from kobo_insights.core.config import get_settings
        backend = get_settings().storage_backend

        if backend == 'redis':
            redis_url = os.getenv('REDIS_URL')
            if not redis_url:
                raise RuntimeError(
                    "REDIS_URL environment variable required for redis storage"
                )
            _storage_instance = RedisStorage(redis_url)
        else:
            _storage_instance = InMemoryStorage()

    return _storage_instance


def reset_storage():
    """Reset storage instance (for testing)."""
    global _storage_instance
    _storage_instance = None
