"""
Tests for the byte-budgeted audio cache.

Tests cover:
- get/put round trip and replacement
- Byte budget eviction (oldest created first)
- Oversized entries bypass the cache
- TTL by creation time, cleanup_expired()
- Stats
- Cache keys: normalization, voice and profile sensitivity
- Thread safety
"""
import threading

from tts_gateway.tts.cache import AudioCache
from tts_gateway.tts.keys import make_cache_key, normalize_text
from tts_gateway.tts.profiles import PRESETS

from conftest import FakeClock


class TestAudioCacheBasics:

    def test_put_then_get(self):
        cache = AudioCache(max_size_bytes=1000)
        assert cache.put("k", b"audio") is True
        assert cache.get("k") == b"audio"

    def test_miss_returns_none(self):
        assert AudioCache().get("missing") is None

    def test_replace_existing_key(self):
        cache = AudioCache(max_size_bytes=1000)
        cache.put("k", b"a" * 10)
        cache.put("k", b"b" * 20)

        assert cache.get("k") == b"b" * 20
        assert cache.size_bytes == 20
        assert len(cache) == 1

    def test_delete_and_clear(self):
        cache = AudioCache(max_size_bytes=1000)
        cache.put("a", b"1")
        cache.put("b", b"2")

        assert cache.delete("a") is True
        assert cache.delete("a") is False
        assert cache.clear() == 1
        assert cache.size_bytes == 0


class TestAudioCacheBudget:

    def test_second_entry_evicts_first(self):
        """100-byte budget: 60 + 60 keeps only the second entry."""
        cache = AudioCache(max_size_bytes=100)
        cache.put("first", b"x" * 60)
        cache.put("second", b"y" * 60)

        assert cache.get("first") is None
        assert cache.get("second") == b"y" * 60
        assert cache.size_bytes == 60
        assert cache.stats()["evictions"] == 1

    def test_evicts_oldest_created_until_fits(self):
        clock = FakeClock()
        cache = AudioCache(max_size_bytes=100, clock=clock)
        for name in ("a", "b", "c"):
            cache.put(name, b"x" * 30)
            clock.advance(1)
        cache.put("d", b"x" * 50)

        assert "a" not in cache
        assert "b" not in cache
        assert "c" in cache
        assert "d" in cache
        assert cache.size_bytes <= 100

    def test_reads_do_not_change_eviction_order(self):
        cache = AudioCache(max_size_bytes=100)
        cache.put("old", b"x" * 50)
        cache.put("new", b"x" * 50)
        cache.get("old")
        cache.put("newest", b"x" * 50)

        assert "old" not in cache
        assert "new" in cache

    def test_oversized_entry_bypassed(self):
        cache = AudioCache(max_size_bytes=100)
        cache.put("small", b"x" * 10)

        assert cache.put("huge", b"x" * 101) is False
        assert "huge" not in cache
        assert cache.get("small") == b"x" * 10
        assert cache.stats()["bypasses"] == 1

    def test_total_never_exceeds_budget(self):
        cache = AudioCache(max_size_bytes=256)
        for i in range(50):
            cache.put(f"k{i}", b"x" * (i % 40 + 1))
            assert cache.size_bytes <= 256


class TestAudioCacheTTL:

    def test_expired_entry_not_returned(self):
        clock = FakeClock()
        cache = AudioCache(max_size_bytes=1000, ttl_seconds=60, clock=clock)
        cache.put("k", b"audio")

        clock.advance(59)
        assert cache.get("k") == b"audio"
        clock.advance(2)
        assert cache.get("k") is None
        assert "k" not in cache
        assert cache.stats()["expirations"] == 1

    def test_access_does_not_extend_ttl(self):
        clock = FakeClock()
        cache = AudioCache(max_size_bytes=1000, ttl_seconds=10, clock=clock)
        cache.put("k", b"audio")
        for _ in range(3):
            clock.advance(4)
            cache.get("k")
        assert cache.get("k") is None

    def test_put_restarts_age(self):
        clock = FakeClock()
        cache = AudioCache(max_size_bytes=1000, ttl_seconds=10, clock=clock)
        cache.put("k", b"v1")
        clock.advance(8)
        cache.put("k", b"v2")
        clock.advance(8)
        assert cache.get("k") == b"v2"

    def test_cleanup_expired(self):
        clock = FakeClock()
        cache = AudioCache(max_size_bytes=1000, ttl_seconds=10, clock=clock)
        cache.put("old", b"1")
        clock.advance(11)
        cache.put("fresh", b"2")

        assert cache.cleanup_expired() == 1
        assert len(cache) == 1
        assert cache.size_bytes == 1


class TestAudioCacheStats:

    def test_hit_miss_counters(self):
        cache = AudioCache(max_size_bytes=200)
        cache.put("k", b"x" * 50)
        cache.get("k")
        cache.get("missing")

        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["entries"] == 1
        assert stats["size_bytes"] == 50
        assert stats["usage_percent"] == 25.0

    def test_concurrent_puts_respect_budget(self):
        cache = AudioCache(max_size_bytes=1000)

        def writer(prefix):
            for i in range(200):
                cache.put(f"{prefix}-{i}", b"x" * 37)

        threads = [threading.Thread(target=writer, args=(p,)) for p in "abcd"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stats = cache.stats()
        assert stats["size_bytes"] <= 1000
        assert stats["size_bytes"] == stats["entries"] * 37


class TestCacheKeys:

    def test_normalize_text(self):
        assert normalize_text("  Hello \n\t world  ") == "Hello world"

    def test_whitespace_variants_share_key(self):
        profile = PRESETS["default"]
        assert make_cache_key("Hello  world", "v", profile) == make_cache_key(" Hello world ", "v", profile)

    def test_nfc_and_nfd_share_key(self):
        profile = PRESETS["default"]
        composed = "Café"
        decomposed = "Cafe\u0301"
        assert make_cache_key(composed, "v", profile) == make_cache_key(decomposed, "v", profile)

    def test_voice_and_profile_change_key(self):
        base = make_cache_key("Hello", "v1", PRESETS["default"])
        assert make_cache_key("Hello", "v2", PRESETS["default"]) != base
        assert make_cache_key("Hello", "v1", PRESETS["calm"]) != base

    def test_key_is_sha256_hex(self):
        key = make_cache_key("Hello", "v1", PRESETS["default"])
        assert len(key) == 64
        int(key, 16)
