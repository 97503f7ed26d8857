from sqlalchemy.exc import OperationalError

from conftest import login
from models.rate_limit_event import RateLimitEvent
from models.security_event import SecurityEvent
from security import rate_limit
from security.threat import block_ip

IP = "203.0.113.7"


def test_login_policy_blocks_fourth_request(app, clock):
    for _ in range(3):
        assert rate_limit.check(IP, "login").allowed
        rate_limit.record(IP, "login")

    decision = rate_limit.check(IP, "login")
    assert not decision.allowed
    assert decision.retry_after == 60 * 60
    assert decision.reason == "limit"
    assert RateLimitEvent.query.filter_by(ip=IP, blocked=True).count() == 1
    assert SecurityEvent.query.filter_by(action="RATE_LIMIT_EXCEEDED", ip=IP).count() == 1


def test_block_outlasts_the_window(app, clock):
    for _ in range(3):
        rate_limit.record(IP, "login")
    assert not rate_limit.check(IP, "login").allowed

    clock.advance(minutes=20)
    decision = rate_limit.check(IP, "login")
    assert not decision.allowed
    assert decision.reason == "blocked"
    assert decision.retry_after == 40 * 60
    # re-checking during a block does not extend it
    assert RateLimitEvent.query.filter_by(ip=IP, blocked=True).count() == 1

    clock.advance(minutes=41)
    assert rate_limit.check(IP, "login").allowed


def test_window_rolls(app, clock):
    app.config["RATE_LIMITS"] = {
        "default": {"window_seconds": 60, "max_requests": 2, "block_seconds": 0},
    }
    rate_limit.record(IP, "default")
    clock.advance(seconds=30)
    rate_limit.record(IP, "default")

    decision = rate_limit.check(IP, "default")
    assert not decision.allowed
    assert decision.retry_after == 30

    # the first event ages out; capacity comes back without a fixed reset
    clock.advance(seconds=31)
    decision = rate_limit.check(IP, "default")
    assert decision.allowed
    assert decision.remaining == 1


def test_limits_are_per_ip_and_endpoint(app):
    for _ in range(3):
        rate_limit.record(IP, "login")

    assert not rate_limit.check(IP, "login").allowed
    assert rate_limit.check("198.51.100.1", "login").allowed
    assert rate_limit.check(IP, "password_reset").allowed


def test_unknown_endpoint_uses_default_policy(app):
    assert rate_limit.get_policy("nope") == rate_limit.get_policy("default")


def test_store_failure_fails_open(app, monkeypatch):
    def broken(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is gone"))

    monkeypatch.setattr(rate_limit, "_check", broken)
    assert rate_limit.check(IP, "login").allowed


def test_blocked_ip_is_rejected(app, clock):
    block_ip(IP, "manual", duration_seconds=600)

    decision = rate_limit.check(IP, "default")
    assert not decision.allowed
    assert decision.reason == "ip_blocked"
    assert decision.retry_after == 600


def test_login_endpoint_returns_429_with_retry_after(client, make_account):
    make_account()
    for _ in range(3):
        login(client, "admin@example.com", "Wrong!Pass1")

    resp = login(client, "admin@example.com")
    assert resp.status_code == 429
    body = resp.get_json()
    assert body["code"] == "RATE_LIMITED"
    assert body["retry_after_seconds"] == 3600
    assert resp.headers["Retry-After"] == "3600"
