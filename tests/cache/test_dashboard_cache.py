from datetime import date
from fnmatch import fnmatch

import pytest
import redis

from common import cache


class FakeRedis:
    def __init__(self, keys=(), fail=False):
        self.store = {key: "{}" for key in keys}
        self.fail = fail

    def get(self, key):
        if self.fail:
            raise redis.ConnectionError("connection reset")
        return self.store.get(key)

    def setex(self, key, ttl, value):
        if self.fail:
            raise redis.ConnectionError("connection reset")
        self.store[key] = value

    def scan_iter(self, match):
        return [key for key in self.store if fnmatch(key, match)]

    def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)


@pytest.fixture
def fake_redis(monkeypatch):
    client = FakeRedis(
        keys=["dashboard:1:2024-01-10", "dashboard:1:2024-01-11", "dashboard:12:2024-01-10", "other:1"]
    )
    monkeypatch.setattr(cache, "_redis_client", client)
    return client


def test_dashboard_key_is_scoped_by_hotel_and_day():
    assert cache.dashboard_key(3, date(2024, 1, 10)) == "dashboard:3:2024-01-10"


def test_invalidating_one_hotel_keeps_other_hotels_cached(fake_redis):
    cache.invalidate_dashboard(1)

    assert sorted(fake_redis.store) == ["dashboard:12:2024-01-10", "other:1"]


def test_invalidating_without_hotel_drops_every_dashboard(fake_redis):
    cache.invalidate_dashboard()

    assert list(fake_redis.store) == ["other:1"]


def test_round_trip_through_the_cache(fake_redis):
    cache.set_cached_json("dashboard:5:2024-01-10", {"occupied_rooms": 2})

    assert cache.get_cached_json("dashboard:5:2024-01-10") == {"occupied_rooms": 2}


def test_cache_errors_fall_back_to_no_cache(monkeypatch):
    monkeypatch.setattr(cache, "_redis_client", FakeRedis(fail=True))

    cache.set_cached_json("dashboard:1:2024-01-10", {"occupied_rooms": 2})
    assert cache.get_cached_json("dashboard:1:2024-01-10") is None


def test_without_redis_url_caching_is_disabled(monkeypatch):
    monkeypatch.setattr(cache, "_redis_client", None)
    monkeypatch.delenv("REDIS_URL", raising=False)

    assert cache.get_redis_client() is None
    assert cache.get_cached_json("anything") is None
