import asyncio
import json
import random

import pytest

from connsync.domain.models.errors import CacheError
from connsync.domain.models.common import CacheKey
from connsync.infrastructure.cache.ttl_cache import TTLCache
from connsync.infrastructure.storage.memory_store import InMemoryStore


@pytest.fixture
def cache(store, clock):
    return TTLCache(store, max_size_bytes=10_000, default_ttl=300, compression_threshold=1024, clock=clock)


def footprint(store: InMemoryStore, prefix: str = "connsync_cache:") -> int:
    total = 0
    for key in store.list_keys(prefix):
        total += len(store.get(key))
    return total


@pytest.mark.asyncio
async def test_set_then_get_returns_value(cache):
    value = {"name": "Ada", "tags": ["a", "b"], "count": 3}
    assert await cache.set(CacheKey("k"), value) is True
    assert await cache.get(CacheKey("k")) == value


@pytest.mark.asyncio
async def test_get_misses_after_ttl_and_deletes_entry(cache, store, clock):
    await cache.set(CacheKey("k"), "v", ttl=10)
    clock.advance(9)
    assert await cache.get(CacheKey("k")) == "v"
    clock.advance(1)
    assert await cache.get(CacheKey("k")) is None
    assert store.get(cache.storage_key(CacheKey("k"))) is None


@pytest.mark.asyncio
async def test_missing_key_is_a_miss(cache):
    assert await cache.get(CacheKey("nope")) is None


@pytest.mark.asyncio
async def test_large_values_are_compressed_and_restored(cache, store):
    value = [{"id": str(i), "display_name": "Someone Repetitive"} for i in range(100)]
    assert await cache.set(CacheKey("big"), value) is True

    envelope = json.loads(store.get(cache.storage_key(CacheKey("big"))))
    assert envelope["compressed"] is True
    assert isinstance(envelope["data"], str)
    assert envelope["size"] < len(json.dumps(value))
    assert await cache.get(CacheKey("big")) == value


@pytest.mark.asyncio
async def test_corrupted_compressed_entry_is_removed_on_read(cache, store, clock):
    bad = {"data": "not-base64!!", "created_at": clock(), "ttl": 300, "compressed": True, "size": 12}
    store.set(cache.storage_key(CacheKey("k")), json.dumps(bad).encode())

    assert await cache.get(CacheKey("k")) is None
    assert store.get(cache.storage_key(CacheKey("k"))) is None


@pytest.mark.asyncio
async def test_rejects_non_positive_ttl(cache):
    with pytest.raises(ValueError):
        await cache.set(CacheKey("k"), "v", ttl=0)


@pytest.mark.asyncio
async def test_unserializable_value_raises_cache_error(cache):
    with pytest.raises(CacheError):
        await cache.set(CacheKey("k"), object())


@pytest.mark.asyncio
async def test_entry_larger_than_ceiling_is_not_stored(store, clock):
    cache = TTLCache(store, max_size_bytes=50, compression_threshold=10_000, clock=clock)
    assert await cache.set(CacheKey("huge"), "x" * 200) is False
    assert await cache.get(CacheKey("huge")) is None


@pytest.mark.asyncio
async def test_eviction_removes_oldest_entries_first(store, clock):
    cache = TTLCache(store, max_size_bytes=400, compression_threshold=10_000, clock=clock)
    for i in range(4):
        await cache.set(CacheKey(f"k{i}"), "x" * 20)  # about 93 bytes with the envelope
        clock.advance(1)

    await cache.set(CacheKey("new"), "y" * 20)

    assert await cache.get(CacheKey("k0")) is None
    assert await cache.get(CacheKey("new")) == "y" * 20
    assert await cache.get(CacheKey("k3")) == "x" * 20
    assert footprint(store) <= 400


@pytest.mark.asyncio
async def test_eviction_drops_expired_entries_before_live_ones(store, clock):
    cache = TTLCache(store, max_size_bytes=400, compression_threshold=10_000, clock=clock)
    await cache.set(CacheKey("live"), "x" * 20, ttl=1000)
    clock.advance(1)
    await cache.set(CacheKey("short"), "x" * 20, ttl=5)
    await cache.set(CacheKey("other"), "x" * 20, ttl=1000)
    await cache.set(CacheKey("third"), "x" * 20, ttl=1000)
    clock.advance(10)

    await cache.set(CacheKey("new"), "x" * 20)

    assert store.get(cache.storage_key(CacheKey("short"))) is None
    assert await cache.get(CacheKey("live")) == "x" * 20


@pytest.mark.asyncio
async def test_replacing_a_key_does_not_count_the_old_entry(store, clock):
    cache = TTLCache(store, max_size_bytes=150, compression_threshold=10_000, clock=clock)
    await cache.set(CacheKey("a"), "x" * 40)
    await cache.set(CacheKey("a"), "y" * 40)
    assert await cache.get(CacheKey("a")) == "y" * 40


@pytest.mark.asyncio
async def test_footprint_never_exceeds_ceiling_in_random_sequences(store, clock):
    ceiling = 2_000
    cache = TTLCache(store, max_size_bytes=ceiling, compression_threshold=512, clock=clock)
    rnd = random.Random(42)

    for step in range(300):
        key = CacheKey(f"k{rnd.randrange(40)}")
        size = rnd.choice([1, 10, 100, 400, 900, 1500])
        payload = "".join(rnd.choice("abcdef0123456789") for _ in range(size))
        await cache.set(key, payload, ttl=rnd.choice([5, 60, 600]))
        clock.advance(rnd.random() * 3)
        assert footprint(store) <= ceiling, f"ceiling exceeded at step {step}"


@pytest.mark.asyncio
async def test_concurrent_writers_respect_ceiling(store, clock):
    ceiling = 500
    cache = TTLCache(store, max_size_bytes=ceiling, compression_threshold=10_000, clock=clock)

    await asyncio.gather(*(cache.set(CacheKey(f"k{i}"), "z" * 60) for i in range(30)))

    assert footprint(store) <= ceiling


@pytest.mark.asyncio
async def test_stats_reports_counts_and_expired(cache, clock):
    await cache.set(CacheKey("a"), "1", ttl=5)
    clock.advance(1)
    await cache.set(CacheKey("b"), "2", ttl=500)
    first = clock() - 1
    clock.advance(10)

    stats = await cache.stats()

    assert stats.total_items == 2
    assert stats.expired_count == 1
    assert stats.oldest_timestamp == first
    assert stats.total_size_bytes == footprint(cache.store)


@pytest.mark.asyncio
async def test_cleanup_expired_removes_only_expired(cache, clock):
    await cache.set(CacheKey("a"), "1", ttl=5)
    await cache.set(CacheKey("b"), "2", ttl=500)
    clock.advance(10)

    assert await cache.cleanup_expired() == 1
    assert (await cache.stats()).total_items == 1


@pytest.mark.asyncio
async def test_validate_removes_entry_missing_ttl(cache, store, clock):
    await cache.set(CacheKey("good"), "ok")
    broken = {"data": "x", "created_at": clock(), "compressed": False, "size": 3}
    store.set(cache.storage_key(CacheKey("broken")), json.dumps(broken).encode())
    before = (await cache.stats()).total_items

    report = await cache.validate()

    assert report.valid == 1
    assert report.invalid == 1
    assert report.repaired == 1
    assert (await cache.stats()).total_items == before - 1


@pytest.mark.asyncio
async def test_clear_only_touches_prefixed_keys(cache, store):
    store.set("critical_errors", b"[]")
    await cache.set(CacheKey("a"), 1)

    await cache.clear()

    assert store.list_keys(cache.key_prefix) == []
    assert store.get("critical_errors") == b"[]"


@pytest.mark.asyncio
async def test_detailed_stats_lists_entries(cache, clock):
    await cache.set(CacheKey("a"), "1", ttl=60)
    clock.advance(5)

    overview, entries = await cache.detailed_stats()

    assert overview.total_items == 1
    assert len(entries) == 1
    assert entries[0].key == "a"
    assert entries[0].age_seconds == pytest.approx(5)
    assert entries[0].expired is False


class FailingStore(InMemoryStore):
    def set(self, key, value):
        raise OSError("disk full")


@pytest.mark.asyncio
async def test_store_failure_raises_cache_error(clock):
    cache = TTLCache(FailingStore(), clock=clock)
    with pytest.raises(CacheError):
        await cache.set(CacheKey("a"), 1)


@pytest.mark.asyncio
async def test_ceiling_bounds_stored_bytes_for_many_small_entries(store, clock):
    cache = TTLCache(store, max_size_bytes=1000, clock=clock)

    for i in range(200):
        await cache.set(CacheKey(f"affiliation_logo:{i}"), "x")
        assert footprint(store) <= 1000

    assert 0 < len(store.list_keys(cache.key_prefix)) < 200


@pytest.mark.asyncio
async def test_envelope_size_field_matches_stored_bytes(cache, store):
    await cache.set(CacheKey("small"), "v")
    await cache.set(CacheKey("big"), [{"id": str(i), "display_name": "Someone Repetitive"} for i in range(100)])

    for key in ("small", "big"):
        raw = store.get(cache.storage_key(CacheKey(key)))
        assert json.loads(raw)["size"] == len(raw)
