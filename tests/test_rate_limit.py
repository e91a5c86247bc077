from __future__ import annotations

import pytest
from redis.exceptions import RedisError
from stockai import dependencies

PATH = "/v1/user/usage"


@pytest.fixture(autouse=True)
def small_limits(monkeypatch):
    monkeypatch.setattr(dependencies.settings, "rate_limit_ip_per_min", 10)
    monkeypatch.setattr(dependencies.settings, "rate_limit_user_per_min", 25)


def test_rate_limit_ip(client, headers):
    headers = headers.copy()
    headers["X-Forwarded-For"] = "1.1.1.1"
    for _ in range(10):
        resp = client.get(PATH, headers=headers)
        assert resp.status_code == 200
    resp = client.get(PATH, headers=headers)
    assert resp.status_code == 429
    assert resp.json()["detail"]["code"] == "TOO_MANY_REQUESTS"


def test_rate_limit_user(client, headers):
    headers = headers.copy()
    for i in range(25):
        headers["X-Forwarded-For"] = f"10.0.0.{i//10}"
        resp = client.get(PATH, headers=headers)
        assert resp.status_code == 200
    headers["X-Forwarded-For"] = "10.0.0.9"
    resp = client.get(PATH, headers=headers)
    assert resp.status_code == 429


def test_rate_limit_redis_unavailable(client, headers, monkeypatch):
    class _RedisFail:
        def pipeline(self):
            raise RedisError

    monkeypatch.setattr(dependencies, "redis_client", _RedisFail())
    resp = client.get(PATH, headers=headers)
    assert resp.status_code == 503
    assert resp.json()["detail"]["code"] == "SERVICE_UNAVAILABLE"


def test_rate_limit_untrusted_proxy(client, headers, monkeypatch):
    headers = headers.copy()
    monkeypatch.setattr(dependencies.settings, "trusted_proxies", ["127.0.0.1"])
    for i in range(10):
        headers["X-Forwarded-For"] = f"1.1.1.{i}"
        resp = client.get(PATH, headers=headers)
        assert resp.status_code == 200
    headers["X-Forwarded-For"] = "1.1.1.30"
    resp = client.get(PATH, headers=headers)
    assert resp.status_code == 429


@pytest.mark.parametrize("xff", ["", "   "])
def test_rate_limit_empty_x_forwarded_for(client, headers, xff):
    headers = headers.copy()
    headers["X-Forwarded-For"] = xff
    for _ in range(10):
        resp = client.get(PATH, headers=headers)
        assert resp.status_code == 200
    resp = client.get(PATH, headers=headers)
    assert resp.status_code == 429


def test_rate_limit_counters_expire_after_a_minute(client, headers, user_id, mock_redis):
    headers = headers.copy()
    headers["X-Forwarded-For"] = "2.2.2.2"
    resp = client.get(PATH, headers=headers)
    assert resp.status_code == 200
    assert mock_redis.counters[f"rate:user:{user_id}"] == 1
    assert mock_redis.counters["rate:ip:2.2.2.2"] == 1
    assert mock_redis.ttls[f"rate:user:{user_id}"] == 60
