"""
Tests for per-client rate limiting, CORS and the cross-cutting response headers.
"""

import logging

import pytest
from fastapi.testclient import TestClient

import config
from main import app
from rate_limit import FixedWindowRateLimiter

logger = logging.getLogger(__name__)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def small_limit():
    """Swap in a 3-requests-per-minute limiter for the duration of a test."""
    original = app.state.rate_limiter
    app.state.rate_limiter = FixedWindowRateLimiter(max_requests=3, window_seconds=60)
    yield app.state.rate_limiter
    app.state.rate_limiter = original


def test_requests_over_the_limit_get_429(client: TestClient, small_limit: FixedWindowRateLimiter):
    logger.debug("Testing rate limit")

    for remaining in (2, 1, 0):
        response = client.get("/health")
        assert response.status_code == 200, f"Expected 200, got {response.status_code}"
        assert response.headers["X-RateLimit-Limit"] == "3"
        assert response.headers["X-RateLimit-Remaining"] == str(remaining)

    response = client.get("/health")

    assert response.status_code == 429, f"Expected 429, got {response.status_code}"
    assert response.json()["detail"] == "Too many requests, please try again later."
    assert int(response.headers["Retry-After"]) > 0
    logger.info("✓ Requests over the limit are rejected")


def test_limit_applies_before_authentication(client: TestClient, small_limit: FixedWindowRateLimiter):
    for _ in range(3):
        assert client.get("/api/tasks").status_code == 401

    assert client.get("/api/tasks").status_code == 429


def test_window_resets_after_expiry():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(max_requests=2, window_seconds=60, clock=clock)

    assert limiter.hit("1.2.3.4").allowed
    assert limiter.hit("1.2.3.4").allowed
    assert not limiter.hit("1.2.3.4").allowed

    # Other clients have their own budget
    assert limiter.hit("5.6.7.8").allowed

    clock.now += 60
    result = limiter.hit("1.2.3.4")
    assert result.allowed
    assert result.remaining == 1


def test_reset_after_counts_down():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=60, clock=clock)

    limiter.hit("client")
    clock.now += 45
    result = limiter.hit("client")

    assert not result.allowed
    assert result.reset_after == pytest.approx(15)


def test_security_headers(client: TestClient):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"


def test_cors_allows_configured_origin_only(client: TestClient):
    allowed = client.options(
        "/api/tasks",
        headers={"Origin": config.FRONTEND_URL, "Access-Control-Request-Method": "GET"},
    )
    assert allowed.status_code == 200
    assert allowed.headers["access-control-allow-origin"] == config.FRONTEND_URL
    assert allowed.headers["access-control-allow-credentials"] == "true"

    denied = client.get("/health", headers={"Origin": "http://evil.example"})
    assert "access-control-allow-origin" not in denied.headers


def test_unknown_route_is_404(client: TestClient):
    response = client.get("/api/nothing-here")

    assert response.status_code == 404
