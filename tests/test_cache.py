import fakeredis
import pytest
import redis

import cache
from cache import MemoryCache, NullCache, RedisCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_memory_cache_expires_entries():
    clock = FakeClock()
    store = MemoryCache(clock=clock)
    store.set("product:1", {"name": "Tee"}, ttl=10)
    assert store.get("product:1") == {"name": "Tee"}
    clock.now = 10
    assert store.get("product:1") is None


def test_memory_cache_returns_copies():
    store = MemoryCache()
    store.set("k", {"items": [1]})
    store.get("k")["items"].append(2)
    assert store.get("k") == {"items": [1]}


def test_memory_cache_delete_prefix():
    store = MemoryCache()
    store.set("products:a", 1)
    store.set("products:b", 2)
    store.set("product:1", 3)
    store.delete_prefix("products:")
    assert store.get("products:a") is None
    assert store.get("product:1") == 3


def test_null_cache_always_misses():
    store = NullCache()
    assert store.set("k", 1)
    assert store.get("k") is None


@pytest.fixture
def redis_cache():
    return RedisCache(fakeredis.FakeRedis())


def test_redis_cache_round_trips_json(redis_cache):
    redis_cache.set(cache.product_key("1"), {"price": 9.5}, ttl=cache.PRODUCT_TTL)
    assert redis_cache.get("product:1") == {"price": 9.5}
    assert redis_cache.client.ttl("product:1") > 0


def test_redis_cache_delete_prefix(redis_cache):
    redis_cache.set("products:x", [1])
    redis_cache.set("category:1", {})
    redis_cache.delete_prefix("products:")
    assert redis_cache.get("products:x") is None
    assert redis_cache.get("category:1") == {}


def test_redis_errors_degrade_to_misses(monkeypatch):
    client = fakeredis.FakeRedis()

    def refuse(*args, **kwargs):
        raise redis.ConnectionError("Connection refused")

    for command in ("ping", "get", "set", "setex", "delete", "scan_iter", "flushdb"):
        monkeypatch.setattr(client, command, refuse)
    broken = RedisCache(client)
    assert broken.ping() is False
    assert broken.get("k") is None
    assert broken.set("k", 1) is False
    assert broken.set("k", 1, ttl=60) is False
    assert broken.delete("k") is False
    assert broken.delete_prefix("products:") is False
    assert broken.clear() is False


def test_products_key_is_stable():
    assert cache.products_key({"a": 1, "b": 2}) == cache.products_key({"b": 2, "a": 1})


def test_build_cache_falls_back_when_redis_is_down(monkeypatch):
    monkeypatch.setattr(RedisCache, "ping", lambda self: False)
    assert isinstance(cache.build_cache("redis"), NullCache)
    assert isinstance(cache.build_cache("memory"), MemoryCache)
    assert isinstance(cache.build_cache("none"), NullCache)


def test_product_reads_are_cached(make_product):
    import products
    from database import db

    cache.configure_cache(MemoryCache())
    product = make_product(name="Cached")
    products.find_product(product["id"])
    db["product"].update_one({}, {"$set": {"name": "Changed behind our back"}})
    assert products.find_product(product["id"])["name"] == "Cached"

    from schemas import ProductUpdate

    products.update_product(product["id"], ProductUpdate(name="Renamed"))
    assert products.find_product(product["id"])["name"] == "Renamed"
