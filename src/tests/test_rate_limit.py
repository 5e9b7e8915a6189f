import time

import pytest
from fastapi.testclient import TestClient

from mockrig.core.errors import RateLimitExceeded
from mockrig.utils.rate_limiter import RouteRateLimiter


def test_limiter_counts_down_then_rejects():
    limiter = RouteRateLimiter("GET /a", 3)
    assert [limiter.hit("10.0.0.1") for _ in range(3)] == [2, 1, 0]
    with pytest.raises(RateLimitExceeded) as exc:
        limiter.hit("10.0.0.1")
    assert exc.value.limit == 3
    assert 0 <= exc.value.retry_after <= 1


def test_limiter_is_per_client():
    limiter = RouteRateLimiter("GET /a", 1)
    limiter.hit("10.0.0.1")
    assert limiter.hit("10.0.0.2") == 0


def test_limiters_sharing_storage_stay_separate():
    first = RouteRateLimiter("GET /a", 1)
    second = RouteRateLimiter("GET /b", 1, first._limiter.storage)
    first.hit("10.0.0.1")
    assert second.hit("10.0.0.1") == 0


def test_sixth_request_in_a_second_is_rejected(build_app):
    client = TestClient(build_app([{"path": "/limited", "rate": 5}]))

    statuses = [client.get("/limited").status_code for _ in range(5)]
    assert statuses == [200] * 5

    rejected = client.get("/limited")
    assert rejected.status_code == 429
    assert rejected.text == "Too many requests, please try again later."
    assert rejected.headers["x-ratelimit-limit"] == "5"
    assert rejected.headers["x-ratelimit-remaining"] == "0"
    assert int(rejected.headers["retry-after"]) >= 1


def test_window_reopens_after_a_second(build_app):
    client = TestClient(build_app([{"path": "/limited", "rate": 5}]))
    for _ in range(5):
        client.get("/limited")
    assert client.get("/limited").status_code == 429

    time.sleep(1.1)
    assert client.get("/limited").status_code == 200


def test_remaining_header_on_accepted_requests(build_app):
    client = TestClient(build_app([{"path": "/limited", "rate": 2}]))
    assert client.get("/limited").headers["x-ratelimit-remaining"] == "1"
    assert client.get("/limited").headers["x-ratelimit-remaining"] == "0"


def test_rejection_skips_metadata_but_keeps_cors(build_app):
    client = TestClient(build_app([
        {"path": "/limited", "rate": 1, "cors": True, "status": 201, "headers": {"X-Env": "mock"}},
    ]))
    assert client.get("/limited").status_code == 201

    rejected = client.get("/limited")
    assert rejected.status_code == 429
    assert rejected.headers["access-control-allow-origin"] == "*"
    assert "x-env" not in rejected.headers


def test_routes_are_limited_independently(build_app):
    client = TestClient(build_app([{"path": "/a", "rate": 1}, {"path": "/b", "rate": 1}]))
    assert client.get("/a").status_code == 200
    assert client.get("/b").status_code == 200
    assert client.get("/a").status_code == 429


def test_rejected_requests_are_counted_in_metrics(build_app):
    app = build_app([{"path": "/limited", "rate": 1}])
    client = TestClient(app)
    client.get("/limited")
    client.get("/limited")
    assert app.state.tracker.count("/limited", "GET") == 2
