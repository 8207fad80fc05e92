"""
Tests for the provider response cache.

Test Coverage:
- Fingerprint stability and sensitivity
- Hit/miss, LRU eviction, TTL expiration
- Metrics and invalidation
- Thread safety for concurrent access
"""

import threading
import unittest
from unittest.mock import patch

import pytest

from evidence_pack.caching import EvidenceCache, fingerprint
from evidence_pack.config import CacheConfig
from evidence_pack.types import Evidence, ProviderType, Signal, SignalSource, SignalType


def make_evidence(path="src/a.ts", tokens=10):
    return Evidence(
        id=path,
        provider=ProviderType.SEARCH,
        path=path,
        range=(1, 5),
        content="x" * tokens * 4,
        tokens=tokens,
    )


def make_signal(value, confidence=0.6, signal_type=SignalType.SYMBOL):
    return Signal(signal_type, value, SignalSource.USER_MESSAGE, confidence)


@pytest.mark.unit
class TestFingerprint(unittest.TestCase):
    """Cache keys over signal sets."""

    def test_order_independent(self):
        """The same signals in a different order give the same key."""
        a, b = make_signal("foo"), make_signal("bar")
        self.assertEqual(
            fingerprint([a, b], ProviderType.SEARCH),
            fingerprint([b, a], ProviderType.SEARCH),
        )

    def test_provider_and_options_change_key(self):
        """Provider type and options are part of the key."""
        signals = [make_signal("foo")]
        base = fingerprint(signals, ProviderType.SEARCH)
        self.assertNotEqual(base, fingerprint(signals, ProviderType.LSP))
        self.assertNotEqual(base, fingerprint(signals, ProviderType.SEARCH, {"max_results": 5}))

    def test_confidence_changes_key(self):
        """A different confidence is a different signal set."""
        self.assertNotEqual(
            fingerprint([make_signal("foo", 0.6)], ProviderType.SEARCH),
            fingerprint([make_signal("foo", 0.9)], ProviderType.SEARCH),
        )


@pytest.mark.unit
class TestEvidenceCache(unittest.TestCase):
    """LRU + TTL behavior."""

    def test_hit_and_miss(self):
        """A stored key is returned; an unknown key is a miss."""
        cache = EvidenceCache(max_size=10, ttl_seconds=0)
        evidence = [make_evidence()]
        cache.set("k1", evidence)

        self.assertEqual(cache.get("k1"), evidence)
        self.assertIsNone(cache.get("missing"))

        metrics = cache.get_metrics()
        self.assertEqual(metrics["hits"], 1)
        self.assertEqual(metrics["misses"], 1)
        self.assertAlmostEqual(metrics["hit_rate"], 0.5)

    def test_cached_empty_list_is_a_hit(self):
        """An empty provider result is cached, not treated as a miss."""
        cache = EvidenceCache(max_size=10, ttl_seconds=0)
        cache.set("empty", [])
        self.assertEqual(cache.get("empty"), [])

    def test_lru_eviction(self):
        """The least recently used entry is evicted at capacity."""
        cache = EvidenceCache(max_size=2, ttl_seconds=0)
        cache.set("a", [make_evidence("a")])
        cache.set("b", [make_evidence("b")])
        cache.get("a")  # a is now most recent
        cache.set("c", [make_evidence("c")])

        self.assertIsNotNone(cache.get("a"))
        self.assertIsNone(cache.get("b"))
        self.assertIsNotNone(cache.get("c"))
        self.assertEqual(cache.get_metrics()["evictions"], 1)
        self.assertEqual(len(cache), 2)

    def test_overwrite_does_not_evict(self):
        """Writing an existing key replaces it in place."""
        cache = EvidenceCache(max_size=2, ttl_seconds=0)
        cache.set("a", [make_evidence("a")])
        cache.set("b", [make_evidence("b")])
        cache.set("a", [make_evidence("a2")])

        self.assertEqual(len(cache), 2)
        self.assertEqual(cache.get("a")[0].path, "a2")
        self.assertEqual(cache.get_metrics()["evictions"], 0)

    def test_ttl_expiration(self):
        """Entries older than the TTL are misses and are removed."""
        cache = EvidenceCache(max_size=10, ttl_seconds=60)
        with patch("evidence_pack.caching.time.time", return_value=1000.0):
            cache.set("k", [make_evidence()])
        with patch("evidence_pack.caching.time.time", return_value=1030.0):
            self.assertIsNotNone(cache.get("k"))
        with patch("evidence_pack.caching.time.time", return_value=1061.0):
            self.assertIsNone(cache.get("k"))

        self.assertEqual(cache.get_metrics()["expirations"], 1)
        self.assertEqual(len(cache), 0)

    def test_invalidate_and_clear(self):
        """invalidate removes one key, clear removes all and resets metrics."""
        cache = EvidenceCache(max_size=10, ttl_seconds=0)
        cache.set("a", [])
        cache.set("b", [])

        self.assertTrue(cache.invalidate("a"))
        self.assertFalse(cache.invalidate("a"))
        cache.get("b")
        cache.clear()

        self.assertEqual(len(cache), 0)
        self.assertEqual(cache.get_metrics()["hits"], 0)

    def test_zero_capacity_stores_nothing(self):
        """max_size=0 disables storage."""
        cache = EvidenceCache(max_size=0, ttl_seconds=0)
        cache.set("a", [make_evidence()])
        self.assertIsNone(cache.get("a"))

    def test_invalid_configuration(self):
        """Negative size or TTL fails at construction."""
        with self.assertRaises(ValueError):
            EvidenceCache(max_size=-1)
        with self.assertRaises(ValueError):
            EvidenceCache(max_size=10, ttl_seconds=-5)

    def test_defaults_from_config(self):
        """Unspecified arguments come from CacheConfig."""
        cache = EvidenceCache(config=CacheConfig(enabled=True, max_size=7, ttl_seconds=12))
        metrics = cache.get_metrics()
        self.assertEqual(metrics["max_size"], 7)
        self.assertEqual(metrics["ttl_seconds"], 12)

    def test_returned_list_is_a_copy(self):
        """Mutating a returned list does not change the cached entry."""
        cache = EvidenceCache(max_size=10, ttl_seconds=0)
        cache.set("k", [make_evidence()])
        cache.get("k").clear()
        self.assertEqual(len(cache.get("k")), 1)

    def test_concurrent_access(self):
        """Concurrent writers and readers never exceed capacity or raise."""
        cache = EvidenceCache(max_size=50, ttl_seconds=0)
        errors = []

        def worker(offset):
            try:
                for i in range(200):
                    key = f"k{(i + offset) % 80}"
                    cache.set(key, [make_evidence(key)])
                    cache.get(key)
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n * 7,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertLessEqual(len(cache), 50)
