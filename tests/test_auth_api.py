from datetime import timedelta

from sqlalchemy.exc import OperationalError

from conftest import PASSWORD, csrf_header, login
from models import db
from models.account import Account
from models.password_reset_token import PasswordResetToken
from models.session import Session
from routes import auth as auth_routes
from security import session as session_manager

NEW_PASSWORD = "N3w!Secret99"


def _account(email="admin@example.com"):
    db.session.expire_all()
    return Account.query.filter_by(email=email).one()


def _raise_login_limit(app):
    app.config["RATE_LIMITS"] = {
        **app.config["RATE_LIMITS"],
        "login": {"window_seconds": 15 * 60, "max_requests": 100, "block_seconds": 60 * 60},
    }


def test_login_success_sets_cookies_and_payload(client, make_account):
    make_account()
    resp = login(client, "Admin@Example.com ")

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert body["user"]["email"] == "admin@example.com"
    assert body["user"]["role"] == "admin"
    assert body["session"]["id"]
    assert body["access_token"] and body["refresh_token"]

    cookies = resp.headers.getlist("Set-Cookie")
    token_cookie = next(c for c in cookies if c.startswith("admin_token="))
    refresh_cookie = next(c for c in cookies if c.startswith("admin_refresh="))
    csrf_cookie = next(c for c in cookies if c.startswith("csrf-token="))
    assert "HttpOnly" in token_cookie and "Max-Age=86400" in token_cookie
    assert "HttpOnly" in refresh_cookie and "Max-Age=604800" in refresh_cookie
    assert "HttpOnly" not in csrf_cookie

    account = _account()
    assert account.last_login_at is not None
    assert account.last_login_ip == "127.0.0.1"


def test_unknown_email_and_wrong_password_look_the_same(client, make_account):
    make_account()
    unknown = login(client, "nobody@example.com")
    wrong = login(client, "admin@example.com", "Wrong!Pass1")

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.get_json() == wrong.get_json()
    assert wrong.get_json()["code"] == "INVALID_CREDENTIALS"


def test_login_validation_error(client):
    resp = client.post("/auth/login", json={"email": "admin@example.com"})
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "VALIDATION_ERROR"


def test_inactive_account_cannot_login(client, make_account):
    make_account(is_active=False)
    resp = login(client, "admin@example.com")
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "ACCOUNT_INACTIVE"


def test_lockout_end_to_end(app, client, clock, make_account):
    _raise_login_limit(app)
    make_account()

    for _ in range(5):
        resp = login(client, "admin@example.com", "Wrong!Pass1", ip="198.51.100.20")
        assert resp.status_code == 401
        assert resp.get_json()["code"] == "INVALID_CREDENTIALS"

    account = _account()
    assert account.is_locked
    assert account.failed_login_attempts == 5

    resp = login(client, "admin@example.com", ip="198.51.100.20")
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "ACCOUNT_LOCKED"

    clock.advance(minutes=31)
    resp = login(client, "admin@example.com", ip="198.51.100.20")
    assert resp.status_code == 200
    assert _account().failed_login_attempts == 0


def test_deleted_session_is_rejected_end_to_end(app, make_account):
    make_account()
    first, second = app.test_client(), app.test_client()
    first_login = login(first, "admin@example.com")
    second_login = login(second, "admin@example.com")
    first_session = first_login.get_json()["session"]["id"]

    assert first.get("/auth/verify-session").status_code == 200

    resp = second.delete(f"/auth/sessions/{first_session}", headers=csrf_header(second_login))
    assert resp.status_code == 200

    resp = first.get("/auth/verify-session")
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "INVALID_SESSION"


def test_verify_session_requires_a_token(client):
    resp = client.get("/auth/verify-session")
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "MISSING_TOKEN"


def test_bearer_header_is_accepted(app, client, make_account):
    make_account()
    token = login(client, "admin@example.com").get_json()["access_token"]

    other = app.test_client()
    resp = other.get("/auth/verify-session", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.get_json()["session"]["is_current"] is True

    resp = other.get("/auth/verify-session", headers={"Authorization": "Bearer garbage"})
    assert resp.get_json()["code"] == "INVALID_TOKEN"


def test_change_password_revokes_other_sessions(app, make_account):
    make_account()
    current, other = app.test_client(), app.test_client()
    current_login = login(current, "admin@example.com")
    login(other, "admin@example.com")

    resp = current.post(
        "/auth/change-password",
        json={"current_password": PASSWORD, "new_password": NEW_PASSWORD},
        headers=csrf_header(current_login),
    )
    assert resp.status_code == 200
    assert resp.get_json()["revoked_sessions"] == 1

    assert current.get("/auth/verify-session").status_code == 200
    assert other.get("/auth/verify-session").get_json()["code"] == "INVALID_SESSION"
    assert login(app.test_client(), "admin@example.com", NEW_PASSWORD).status_code == 200


def test_change_password_rules(client, make_account):
    make_account()
    headers = csrf_header(login(client, "admin@example.com"))

    resp = client.post(
        "/auth/change-password",
        json={"current_password": "Wrong!Pass1", "new_password": NEW_PASSWORD},
        headers=headers,
    )
    assert resp.get_json()["code"] == "INVALID_CREDENTIALS"

    resp = client.post(
        "/auth/change-password",
        json={"current_password": PASSWORD, "new_password": "password"},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.get_json()["details"]

    resp = client.post(
        "/auth/change-password",
        json={"current_password": PASSWORD, "new_password": PASSWORD},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "VALIDATION_ERROR"


def test_logout_deactivates_session_and_clears_cookies(client, make_account):
    make_account()
    token = login(client, "admin@example.com").get_json()["access_token"]

    resp = client.post("/auth/logout")
    assert resp.status_code == 200
    assert resp.get_json()["success"] is True
    assert any(c.startswith("admin_token=;") for c in resp.headers.getlist("Set-Cookie"))

    resp = client.get("/auth/verify-session", headers={"Authorization": f"Bearer {token}"})
    assert resp.get_json()["code"] == "INVALID_SESSION"


def test_logout_without_session_still_succeeds(client):
    resp = client.post("/auth/logout")
    assert resp.status_code == 200
    assert resp.get_json()["success"] is True


def test_logout_succeeds_when_session_store_fails(client, make_account, monkeypatch):
    make_account()
    login(client, "admin@example.com")

    def broken_validate(*args, **kwargs):
        raise OperationalError("SELECT sessions", {}, Exception("database is locked"))

    monkeypatch.setattr(session_manager, "validate", broken_validate)
    resp = client.post("/auth/logout")

    assert resp.status_code == 200
    assert resp.get_json()["success"] is True
    cookies = resp.headers.getlist("Set-Cookie")
    assert any(c.startswith("admin_token=;") for c in cookies)
    assert any(c.startswith("admin_refresh=;") for c in cookies)


def test_store_failure_on_other_endpoints_is_still_an_error(client, make_account, monkeypatch):
    make_account()
    login(client, "admin@example.com")

    def broken_validate(*args, **kwargs):
        raise OperationalError("SELECT sessions", {}, Exception("database is locked"))

    monkeypatch.setattr(session_manager, "validate", broken_validate)
    resp = client.get("/auth/verify-session")
    assert resp.status_code == 500
    assert resp.get_json()["code"] == "INTERNAL_ERROR"


def test_password_reset_flow(app, client, make_account, monkeypatch):
    make_account()
    sent = {}

    def fake_send(to_email, token, ttl_minutes):
        sent["to"], sent["token"], sent["ttl"] = to_email, token, ttl_minutes
        return True, None

    monkeypatch.setattr(auth_routes, "send_password_reset_email", fake_send)
    login_resp = login(client, "admin@example.com")

    unknown = client.post("/auth/request-password-reset", json={"email": "ghost@example.com"})
    known = client.post("/auth/request-password-reset", json={"email": "admin@example.com"})
    assert unknown.status_code == known.status_code == 200
    assert unknown.get_json() == known.get_json()
    assert sent["to"] == "admin@example.com"
    assert sent["ttl"] == 60
    assert PasswordResetToken.query.count() == 1

    resp = client.post("/auth/reset-password", json={"token": sent["token"], "new_password": NEW_PASSWORD})
    assert resp.status_code == 200

    # every session was revoked by the reset
    token = login_resp.get_json()["access_token"]
    resp = client.get("/auth/verify-session", headers={"Authorization": f"Bearer {token}"})
    assert resp.get_json()["code"] == "INVALID_SESSION"

    resp = client.post("/auth/reset-password", json={"token": sent["token"], "new_password": "An0ther!Pass"})
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "INVALID_TOKEN"

    assert login(app.test_client(), "admin@example.com", NEW_PASSWORD).status_code == 200


def test_reset_request_answers_the_same_when_store_fails(client, make_account, monkeypatch):
    make_account()
    monkeypatch.setattr(auth_routes, "send_password_reset_email", lambda *a: (True, None))
    expected = client.post("/auth/request-password-reset", json={"email": "ghost@example.com"})

    def broken_hash(token):
        raise OperationalError("INSERT password_reset_tokens", {}, Exception("disk I/O error"))

    monkeypatch.setattr(auth_routes, "hash_token", broken_hash)
    resp = client.post("/auth/request-password-reset", json={"email": "admin@example.com"})

    assert resp.status_code == 200
    assert resp.get_json() == expected.get_json()
    assert PasswordResetToken.query.count() == 0


def test_reset_token_expires(client, clock, make_account, monkeypatch):
    make_account()
    sent = {}
    monkeypatch.setattr(
        auth_routes,
        "send_password_reset_email",
        lambda to_email, token, ttl: sent.update(token=token) or (True, None),
    )
    client.post("/auth/request-password-reset", json={"email": "admin@example.com"})

    clock.advance(hours=1, seconds=1)
    resp = client.post("/auth/reset-password", json={"token": sent["token"], "new_password": NEW_PASSWORD})
    assert resp.get_json()["code"] == "INVALID_TOKEN"


def test_password_reset_requests_are_rate_limited(client):
    for _ in range(3):
        assert client.post("/auth/request-password-reset", json={"email": "a@example.com"}).status_code == 200

    resp = client.post("/auth/request-password-reset", json={"email": "a@example.com"})
    assert resp.status_code == 429
    assert resp.get_json()["retry_after_seconds"] == 2 * 60 * 60


def test_forced_password_change(client, make_account):
    make_account(must_change_password=True)
    resp = login(client, "admin@example.com")
    assert resp.get_json()["user"]["must_change_password"] is True
    headers = csrf_header(resp)

    resp = client.get("/auth/sessions")
    assert resp.status_code == 403
    assert resp.get_json()["code"] == "PASSWORD_CHANGE_REQUIRED"
    assert client.get("/auth/verify-session").status_code == 200

    resp = client.post("/auth/force-password-change", json={"new_password": NEW_PASSWORD}, headers=headers)
    assert resp.status_code == 200
    assert not _account().must_change_password
    assert client.get("/auth/sessions").status_code == 200

    resp = client.post("/auth/force-password-change", json={"new_password": "Yet!An0ther1"}, headers=headers)
    assert resp.status_code == 400


def test_refresh_token_from_cookie(client, clock, make_account):
    make_account()
    original = login(client, "admin@example.com").get_json()

    clock.advance(minutes=5)
    resp = client.post("/auth/refresh-token")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["access_token"] != original["access_token"]
    assert body["session"]["id"] == original["session"]["id"]

    # the new cookie now carries the fresh access token
    assert client.get("/auth/verify-session").status_code == 200


def test_refresh_token_rejects_unknown(client):
    resp = client.post("/auth/refresh-token", json={"refresh_token": "deadbeef"})
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "INVALID_TOKEN"


def test_list_sessions_marks_current(app, client, make_account):
    make_account()
    session_id = login(client, "admin@example.com").get_json()["session"]["id"]
    login(app.test_client(), "admin@example.com")

    sessions = client.get("/auth/sessions").get_json()["sessions"]
    assert len(sessions) == 2
    assert [s["id"] for s in sessions if s["is_current"]] == [session_id]


def test_terminate_all_other_sessions(app, client, make_account):
    make_account()
    headers = csrf_header(login(client, "admin@example.com"))
    login(app.test_client(), "admin@example.com")

    resp = client.delete("/auth/sessions", headers=headers)
    assert resp.get_json()["revoked_sessions"] == 1
    assert Session.query.filter_by(is_active=True).count() == 1


def test_cannot_terminate_someone_elses_session(app, client, make_account):
    make_account()
    make_account(email="other@example.com")
    headers = csrf_header(login(client, "admin@example.com"))
    foreign_id = login(app.test_client(), "other@example.com").get_json()["session"]["id"]

    resp = client.delete(f"/auth/sessions/{foreign_id}", headers=headers)
    assert resp.status_code == 404
    assert resp.get_json()["code"] == "NOT_FOUND"


def test_unlock_account_requires_super_admin(app, clock, make_account):
    _raise_login_limit(app)
    locked = make_account(
        email="locked@example.com",
        is_locked=True,
        locked_until=clock.now + timedelta(minutes=10),
        failed_login_attempts=5,
    )
    make_account(email="admin@example.com")
    make_account(email="root@example.com", role="super_admin")
    admin, root = app.test_client(), app.test_client()
    admin_headers = csrf_header(login(admin, "admin@example.com"))
    root_headers = csrf_header(login(root, "root@example.com"))

    resp = admin.post("/auth/unlock-account", json={"account_id": locked.id}, headers=admin_headers)
    assert resp.status_code == 403
    assert resp.get_json()["code"] == "INSUFFICIENT_PERMISSIONS"

    resp = root.post("/auth/unlock-account", json={"account_id": locked.id}, headers=root_headers)
    assert resp.status_code == 200
    assert not _account("locked@example.com").is_locked

    resp = root.post("/auth/unlock-account", json={"account_id": 4242}, headers=root_headers)
    assert resp.status_code == 404


def test_health_and_security_headers(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert "default-src 'none'" in resp.headers["Content-Security-Policy"]


def test_unknown_route_is_json(client):
    resp = client.get("/nope")
    assert resp.status_code == 404
    assert resp.get_json()["code"] == "NOT_FOUND"
