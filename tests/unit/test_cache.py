"""
Unit Tests - Metrics Cache
"""
import fnmatch

from redis.exceptions import ConnectionError as RedisConnectionError

from src.analytics.aggregator import MetricsAggregator
from src.gateway.fallback import RecordStoreGateway, SourceKind
from src.serving.cache import MetricsCache

from tests.factories import FailingRecordSource, fixed_clock


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the cache"""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    async def scan_iter(self, match=None):
        for key in list(self.store):
            if match is None or fnmatch.fnmatch(key, match):
                yield key

    async def delete(self, *keys):
        removed = sum(1 for key in keys if self.store.pop(key, None) is not None)
        return removed


class BrokenRedis(FakeRedis):
    async def get(self, key):
        raise RedisConnectionError("connection reset")

    async def setex(self, key, ttl, value):
        raise RedisConnectionError("connection reset")


class TestMetricsCache:
    def test_key_is_stable(self):
        cache = MetricsCache(FakeRedis())
        assert cache.key_for("breakdown", level="state", days=30) == "metrics:breakdown:days=30:level=state"

    async def test_round_trip_with_timestamp(self):
        client = FakeRedis()
        cache = MetricsCache(client, ttl=60)

        assert await cache.set("metrics:kpis:days=7", {"revenue": 10.0})
        payload, cached_at = await cache.get("metrics:kpis:days=7")

        assert payload == {"revenue": 10.0}
        assert cached_at is not None
        assert client.ttls["metrics:kpis:days=7"] == 60

    async def test_disabled_without_client(self):
        cache = MetricsCache(None)

        assert not cache.enabled
        assert await cache.get("k") is None
        assert not await cache.set("k", 1)
        assert await cache.invalidate_all() == 0

    async def test_redis_errors_are_misses(self):
        cache = MetricsCache(BrokenRedis())

        assert await cache.get("k") is None
        assert not await cache.set("k", 1)

    async def test_unreadable_entry_is_a_miss(self):
        client = FakeRedis()
        client.store["k"] = "not json"
        assert await MetricsCache(client).get("k") is None

    async def test_invalidate_only_own_namespace(self):
        client = FakeRedis()
        client.store.update({"metrics:a": "1", "metrics:b": "2", "session:x": "3"})

        removed = await MetricsCache(client).invalidate_all()

        assert removed == 2
        assert list(client.store) == ["session:x"]


class TestAggregatorCaching:
    """Only primary results are cached"""

    async def test_second_call_served_from_cache(self, gateway, seeded_source):
        aggregator = MetricsAggregator(gateway, cache=MetricsCache(FakeRedis()), clock=fixed_clock)

        first = await aggregator.get_kpis(30)
        reads = seeded_source.reads
        second = await aggregator.get_kpis(30)

        assert first.cached_at is None
        assert second.cached_at is not None
        assert second.kind == SourceKind.PRIMARY
        assert second.data == first.data
        assert seeded_source.reads == reads

    async def test_degraded_results_not_cached(self):
        client = FakeRedis()
        gateway = RecordStoreGateway(FailingRecordSource())
        aggregator = MetricsAggregator(gateway, cache=MetricsCache(client), clock=fixed_clock)

        result = await aggregator.get_sales_series(7)

        assert result.degraded
        assert client.store == {}

    async def test_series_dates_survive_cache(self, gateway):
        aggregator = MetricsAggregator(gateway, cache=MetricsCache(FakeRedis()), clock=fixed_clock)

        first = await aggregator.get_sales_series(7)
        cached = await aggregator.get_sales_series(7)

        assert cached.cached_at is not None
        assert [p.date for p in cached.data] == [p.date for p in first.data]
