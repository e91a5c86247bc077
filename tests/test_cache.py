from __future__ import annotations

import pytest

from stockai.services.cache import TieredCache, make_key, ttl_for


class FakeTimer:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def cache(timer):
    return TieredCache(maxsize=64, timer=timer)


def test_make_key():
    assert make_key("analysis", "aapl", "stock", "1h", 2) == "analysis:stock:AAPL:1h:L2"
    assert make_key("market", "BTC", "crypto", None) == "market:crypto:BTC:1d"


@pytest.mark.parametrize(
    "namespace, timeframe, level, expected",
    [
        ("market", "1m", None, 30),
        ("market", "1d", None, 900),
        ("market", "1y", None, 1800),
        ("analysis", "1d", 1, 300),
        ("analysis", "1d", 3, 900),
        ("indicators", "1h", None, 300),
    ],
)
def test_ttl_for(namespace, timeframe, level, expected):
    assert ttl_for(namespace, timeframe, level) == expected


def test_ttl_for_unknown_namespace():
    with pytest.raises(ValueError):
        ttl_for("quotes")


def test_entry_expires_after_ttl(cache, timer):
    cache.set("market", "AAPL", "stock", "1m", data={"price": 1})
    timer.advance(29)
    hit = cache.get("market", "AAPL", "stock", "1m")
    assert hit.hit and hit.data == {"price": 1}
    assert hit.age_s == pytest.approx(29)

    timer.advance(2)
    assert cache.get("market", "AAPL", "stock", "1m").hit is False


def test_ttl_per_level(cache, timer):
    cache.set("analysis", "AAPL", "stock", "1d", 1, data="l1")
    cache.set("analysis", "AAPL", "stock", "1d", 3, data="l3")
    timer.advance(301)
    assert cache.get("analysis", "AAPL", "stock", "1d", 1).hit is False
    assert cache.get("analysis", "AAPL", "stock", "1d", 3).hit is True


def test_degraded_result_uses_served_level_ttl(cache, timer):
    ttl = cache.set("analysis", "AAPL", "stock", "1d", 3, data="fallback", ttl_level=1)
    assert ttl == 300
    timer.advance(301)
    assert cache.get("analysis", "AAPL", "stock", "1d", 3).hit is False


def test_invalidate_symbol(cache):
    cache.set("market", "AAPL", "stock", "1d", data=1)
    cache.set("analysis", "AAPL", "stock", "1d", 2, data=2)
    cache.set("analysis", "MSFT", "stock", "1d", 2, data=3)
    assert cache.invalidate_symbol("aapl") == 2
    assert cache.keys() == ["analysis:stock:MSFT:1d:L2"]


def test_keys_by_namespace_and_clear(cache):
    cache.set("market", "AAPL", "stock", "1d", data=1)
    cache.set("indicators", "AAPL", "stock", "1d", data=2)
    assert cache.keys("indicators") == ["indicators:stock:AAPL:1d"]
    assert cache.clear_all() == 2
    assert cache.keys() == []


def test_stats(cache):
    cache.set("analysis", "AAPL", "stock", "1d", 3, data="x")
    cache.get("analysis", "AAPL", "stock", "1d", 3)
    cache.get("analysis", "AAPL", "stock", "1d", 3)
    cache.get("analysis", "MSFT", "stock", "1d", 3)
    stats = cache.stats()
    assert stats["size"] == 1
    assert stats["hits"]["analysis"] == 2
    assert stats["misses"]["analysis"] == 1
    assert stats["hitRate"] == pytest.approx(0.6667)
    assert stats["savedProviderCalls"]["level3"] == 2
    assert stats["estimatedSavingsUsd"] == pytest.approx(0.018)
