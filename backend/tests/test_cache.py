"""
Tests for caching layer.
"""
import pytest
import time
from kobo_insights.core.cache import (
    SimpleCache,
    content_hash,
    generate_analysis_cache_key,
    get_analysis_cache,
)


def test_simple_cache_set_get():
    """Test basic cache set and get operations."""
    cache = SimpleCache(default_ttl=1.0)

    cache.set("key1", "value1")
    assert cache.get("key1") == "value1"

    cache.set("key2", "value2", ttl=0.1)
    assert cache.get("key2") == "value2"

    # Wait for expiration
    time.sleep(0.2)
    assert cache.get("key2") is None


def test_simple_cache_cleanup():
    """Test cache cleanup of expired entries."""
    cache = SimpleCache(default_ttl=0.1)

    cache.set("key1", "value1")
    cache.set("key2", "value2", ttl=1.0)

    time.sleep(0.15)
    cache.cleanup_expired()

    assert cache.get("key1") is None
    assert cache.get("key2") == "value2"


def test_simple_cache_stats():
    """Test cache statistics."""
    cache = SimpleCache(default_ttl=1.0)

    cache.set("key1", "value1")
    cache.set("key2", "value2")

    stats = cache.get_stats()
    assert stats["size"] == 2
    assert stats["default_ttl"] == 1.0


def test_invalidate_prefix():
    """Only entries under the prefix are dropped."""
    cache = SimpleCache()
    cache.set("analysis:farm:1", "a")
    cache.set("analysis:farm:2", "b")
    cache.set("analysis:other:1", "c")

    assert cache.invalidate_prefix("analysis:farm:") == 2
    assert cache.get("analysis:farm:1") is None
    assert cache.get("analysis:other:1") == "c"


def test_content_hash_is_order_insensitive_for_keys():
    """Key order inside a record does not change the hash; record order does."""
    first = [{"a": 1, "b": 2}, {"a": 3}]
    same = [{"b": 2, "a": 1}, {"a": 3}]
    swapped = [{"a": 3}, {"a": 1, "b": 2}]

    assert content_hash(first) == content_hash(same)
    assert content_hash(first) != content_hash(swapped)


def test_generate_analysis_cache_key():
    """Test analysis cache key generation."""
    records = [{"region": "Amhara", "yield": 10}]

    key1 = generate_analysis_cache_key("farm", records, ["region"])
    key2 = generate_analysis_cache_key("farm", list(records), ["region"])
    key3 = generate_analysis_cache_key("farm", records, ["region", "yield"])
    key4 = generate_analysis_cache_key("other", records, ["region"])

    assert key1 == key2
    assert key1 != key3
    assert key1 != key4
    assert key1.startswith("analysis:farm:")


def test_cache_instance_is_singleton():
    """Test that the analysis cache is a singleton."""
    assert get_analysis_cache() is get_analysis_cache()
