from types import SimpleNamespace

import pytest

from app import config
from app.middleware import rate_limiter
from app.middleware.rate_limiter import MemoryCounter, RateLimiterMiddleware


def test_memory_counter_blocks_after_limit(run):
    counter = MemoryCounter()
    results = [run(counter.hit, "rate:10.0.0.1", 3, 60) for _ in range(5)]
    assert results == [True, True, True, False, False]
    # Other clients keep their own window
    assert run(counter.hit, "rate:10.0.0.2", 3, 60) is True


def test_memory_counter_window_expires(run, monkeypatch):
    counter = MemoryCounter()
    clock = {"now": 1000.0}
    monkeypatch.setattr(rate_limiter, "time", SimpleNamespace(time=lambda: clock["now"]))

    assert run(counter.hit, "rate:login:10.0.0.1", 1, 60) is True
    assert run(counter.hit, "rate:login:10.0.0.1", 1, 60) is False
    clock["now"] += 61
    assert run(counter.hit, "rate:login:10.0.0.1", 1, 60) is True


class BrokenRedis:
    async def hit(self, key, limit, window):
        raise ConnectionError("redis is down")


@pytest.fixture
def limiter(client, monkeypatch):
    """The app's live rate limiter, switched on with fresh counters."""
    layer = client.app.middleware_stack
    while layer is not None and not isinstance(layer, RateLimiterMiddleware):
        layer = getattr(layer, "app", None)
    assert layer is not None

    monkeypatch.setattr(config, "DISABLE_RATE_LIMIT", False)
    monkeypatch.setattr(config, "RATE_LIMIT", 100)
    monkeypatch.setattr(config, "AUTH_RATE_LIMIT", 100)
    monkeypatch.setattr(layer, "memory", MemoryCounter())
    monkeypatch.setattr(layer, "redis", None)
    return layer


def test_requests_over_limit_get_429_envelope(client, limiter, monkeypatch):
    monkeypatch.setattr(config, "RATE_LIMIT", 2)
    headers = {"Origin": "http://localhost:3000"}

    assert client.get("/api/health", headers=headers).status_code == 200
    assert client.get("/api/health", headers=headers).status_code == 200
    response = client.get("/api/health", headers=headers)

    assert response.status_code == 429
    payload = response.json()
    assert payload["success"] is False
    assert payload["message"] == "Too many requests, please try again later."
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


def test_login_has_its_own_limit(client, limiter, monkeypatch):
    monkeypatch.setattr(config, "AUTH_RATE_LIMIT", 1)
    credentials = {"identifier": "nobody@qcc.com.sa", "password": "wrong-password"}

    assert client.post("/api/auth/login", json=credentials).status_code == 401
    response = client.post("/api/auth/login", json=credentials)
    assert response.status_code == 429
    assert response.json()["message"] == "Too many login attempts, please try again later."

    # Other endpoints still have room under the general limit
    assert client.get("/api/health").status_code == 200


def test_options_requests_are_not_counted(client, limiter, monkeypatch):
    monkeypatch.setattr(config, "RATE_LIMIT", 1)
    for _ in range(3):
        assert client.options("/api/health").status_code != 429

    assert client.get("/api/health").status_code == 200
    assert client.get("/api/health").status_code == 429


def test_redis_failure_falls_back_to_memory(client, limiter, monkeypatch):
    monkeypatch.setattr(config, "RATE_LIMIT", 1)
    monkeypatch.setattr(limiter, "redis", BrokenRedis())

    assert client.get("/api/health").status_code == 200
    assert limiter.redis is None
    assert client.get("/api/health").status_code == 429
