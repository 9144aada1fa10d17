"""
Simple in-memory caching layer for analysis results.

Analysis is a pure function of (records, columns), so a cached result is
identical to a fresh one; entries only ever go stale by TTL.
"""
import hashlib
import json
import logging
import time
from typing import Optional, Dict, Any, List, Sequence
from dataclasses import dataclass
from threading import Lock

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cache entry with expiration."""
    data: Any
    timestamp: float
    ttl: float  # Time to live in seconds


class SimpleCache:
    """Thread-safe in-memory cache with TTL."""

    def __init__(self, default_ttl: float = 3600):  # 1 hour default
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = Lock()
        self.default_ttl = default_ttl

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None

            if time.time() - entry.timestamp > entry.ttl:
                del self._cache[key]
                logger.debug(f"Cache entry expired: {key[:24]}...")
                return None

            logger.debug(f"Cache hit: {key[:24]}...")
            return entry.data

    def set(self, key: str, value: Any, ttl: Optional[float] = None):
        """Set value in cache with optional TTL."""
        with self._lock:
            self._cache[key] = CacheEntry(
                data=value,
                timestamp=time.time(),
                ttl=ttl or self.default_ttl
            )

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with prefix. Returns the count removed."""
        with self._lock:
            stale = [key for key in self._cache if key.startswith(prefix)]
            for key in stale:
                del self._cache[key]
            return len(stale)

    def clear(self):
        """Clear all cache entries."""
        with self._lock:
            self._cache.clear()
            logger.info("Cache cleared")

    def cleanup_expired(self):
        """Remove expired entries."""
        with self._lock:
            now = time.time()
            expired_keys = [
                key for key, entry in self._cache.items()
                if now - entry.timestamp > entry.ttl
            ]
            for key in expired_keys:
                del self._cache[key]

            if expired_keys:
                logger.debug(f"Cleaned up {len(expired_keys)} expired cache entries")

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        self.cleanup_expired()
        with self._lock:
            return {
                'size': len(self._cache),
                'default_ttl': self.default_ttl
            }


_analysis_cache = SimpleCache(default_ttl=3600)


def get_analysis_cache() -> SimpleCache:
    """Get analysis result cache instance."""
    return _analysis_cache


def content_hash(records: Sequence[Dict[str, Any]], columns: Optional[List[str]] = None) -> str:
    """Stable hash of a submission set and its column list."""
    payload = json.dumps({'records': list(records), 'columns': columns}, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode()).hexdigest()


def analysis_cache_prefix(dataset_id: str) -> str:
    return f"analysis:{dataset_id}:"


def generate_analysis_cache_key(dataset_id: str, records: Sequence[Dict[str, Any]], columns: Optional[List[str]] = None) -> str:
    """Cache key for an analysis run: dataset id plus content hash."""
    return f"{analysis_cache_prefix(dataset_id)}{content_hash(records, columns)}"


def invalidate_dataset(dataset_id: str) -> int:
    """Drop every cached analysis of one dataset."""
    return _analysis_cache.invalidate_prefix(analysis_cache_prefix(dataset_id))
