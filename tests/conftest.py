from datetime import datetime, timedelta

import pytest

from app import create_app
from config import TestingConfig
from models import db
from models.account import Account
from security.password import hash_password

PASSWORD = "Adm1n!Pass"


class FrozenClock:
    """Stands in for utils.clock.utcnow; only moves when told to."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock(monkeypatch):
    frozen = FrozenClock(datetime(2026, 3, 2, 9, 0, 0))
    monkeypatch.setattr("utils.clock.utcnow", frozen)
    return frozen


@pytest.fixture
def app(clock):
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_account(app):
    def _make(email="admin@example.com", password=PASSWORD, role="admin", **fields):
        pw_hash, salt = hash_password(password)
        account = Account(
            email=email,
            password_hash=pw_hash,
            password_salt=salt,
            role=role,
            **fields,
        )
        db.session.add(account)
        db.session.commit()
        return account
    return _make


def login(client, email, password=PASSWORD, ip=None):
    headers = {"X-Forwarded-For": ip} if ip else {}
    return client.post("/auth/login", json={"email": email, "password": password}, headers=headers)


def csrf_header(resp) -> dict:
    return {"X-CSRF-Token": resp.headers["X-CSRF-Token"]}
