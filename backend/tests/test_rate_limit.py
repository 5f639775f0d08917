"""
Tests for per-IP rate limiting.
"""
import pytest

from rate_limit import RateLimiter


class TestRateLimiter:

    def test_allows_up_to_limit(self):
        limiter = RateLimiter(max_requests=3, window_seconds=60)

        assert [limiter.hit("1.2.3.4", now=100.0)[0] for _ in range(3)] == [True, True, True]
        allowed, retry_after = limiter.hit("1.2.3.4", now=100.0)
        assert allowed is False
        assert retry_after == 61

    def test_window_slides(self):
        limiter = RateLimiter(max_requests=2, window_seconds=60)
        limiter.hit("1.2.3.4", now=0.0)
        limiter.hit("1.2.3.4", now=30.0)

        assert limiter.hit("1.2.3.4", now=45.0)[0] is False
        # the first hit has aged out
        assert limiter.hit("1.2.3.4", now=60.0)[0] is True

    def test_retry_after_counts_down(self):
        limiter = RateLimiter(max_requests=1, window_seconds=900)
        limiter.hit("1.2.3.4", now=1000.0)

        allowed, retry_after = limiter.hit("1.2.3.4", now=1600.0)
        assert allowed is False
        assert retry_after == 301

    def test_clients_counted_separately(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)

        assert limiter.hit("1.1.1.1", now=0.0)[0] is True
        assert limiter.hit("2.2.2.2", now=0.0)[0] is True
        assert limiter.hit("1.1.1.1", now=1.0)[0] is False

    def test_reset(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60)
        limiter.hit("1.1.1.1", now=0.0)
        limiter.reset()

        assert limiter.hit("1.1.1.1", now=1.0)[0] is True


@pytest.fixture
def strict_limit(monkeypatch):
    from main import rate_limiter

    monkeypatch.setattr(rate_limiter, "max_requests", 2)
    return rate_limiter


@pytest.mark.asyncio
async def test_api_returns_429_when_limited(client, strict_limit):
    for _ in range(2):
        response = await client.get("/api/v1/newsletter/stats")
        assert response.status_code == 200

    response = await client.get("/api/v1/newsletter/stats")

    assert response.status_code == 429
    assert response.json() == {
        "error": "Too many requests from this IP, please try again later.",
        "code": "RATE_LIMIT_EXCEEDED",
    }
    assert int(response.headers["Retry-After"]) > 0


@pytest.mark.asyncio
async def test_limit_is_per_forwarded_ip(client, strict_limit):
    for _ in range(2):
        await client.get("/api/v1/newsletter/stats", headers={"X-Forwarded-For": "198.51.100.1"})

    blocked = await client.get("/api/v1/newsletter/stats", headers={"X-Forwarded-For": "198.51.100.1"})
    other = await client.get("/api/v1/newsletter/stats", headers={"X-Forwarded-For": "198.51.100.2"})

    assert blocked.status_code == 429
    assert other.status_code == 200


@pytest.mark.asyncio
async def test_root_is_not_limited(client, strict_limit):
    for _ in range(5):
        response = await client.get("/")
        assert response.status_code == 200


class TestRateLimiterPruning:

    def test_idle_clients_are_forgotten(self):
        limiter = RateLimiter(max_requests=5, window_seconds=60)
        limiter.hit("1.1.1.1", now=0.0)
        limiter.hit("2.2.2.2", now=10.0)
        assert limiter.tracked_clients() == 2

        limiter.hit("3.3.3.3", now=100.0)

        assert limiter.tracked_clients() == 1

    def test_active_clients_are_kept(self):
        limiter = RateLimiter(max_requests=5, window_seconds=60)
        limiter.hit("1.1.1.1", now=0.0)
        limiter.hit("1.1.1.1", now=50.0)

        limiter.hit("2.2.2.2", now=70.0)

        assert limiter.tracked_clients() == 2

    def test_many_one_off_clients_do_not_accumulate(self):
        limiter = RateLimiter(max_requests=5, window_seconds=60)
        for i in range(1000):
            limiter.hit(f"10.0.{i // 256}.{i % 256}", now=float(i))

        assert limiter.tracked_clients() <= 121
