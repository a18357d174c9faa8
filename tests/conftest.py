"""Pytest fixtures for sapjuice tests."""

import time
from types import SimpleNamespace

import pytest
import requests
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from sapjuice.db import Base, make_session_factory
from sapjuice.feed import ChangeFeed
from sapjuice.models import User
from sapjuice.stores import OrderStore, LineItem

TEST_MENU = {
    "meta": {"slug": "test", "currency": "INR"},
    "items": [
        {"id": "a", "name": "Apple Pop", "price": 100},
        {"id": "b", "name": "Beet Glow", "price": 200},
        {"id": "c", "name": "Citrus Spark", "price": 55},
    ],
}


@pytest.fixture
def engine():
    """In-memory SQLite shared across threads."""
    import sapjuice.models  # noqa: F401

    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def menu():
    return TEST_MENU


@pytest.fixture
def make_user(db):
    """Create users directly in the store."""
    counter = {"n": 0}

    def _make(name="Asha Rao", email=None, balance=0, address=None, is_admin=False):
        counter["n"] += 1
        u = User(
            name=name,
            email=email or f"user{counter['n']}@sapjuice.test",
            phone="9876543210",
            password_hash="x",
            points_balance=balance,
            saved_address=address,
            is_admin=is_admin,
        )
        db.add(u)
        db.commit()
        db.refresh(u)
        return u

    return _make


@pytest.fixture
def make_order(db, make_user):
    """Create an order row (status placed) and return its code."""
    counter = {"n": 0}

    def _make(user=None, code=None, address="12 MG Road, Pune", items=None, total=None):
        counter["n"] += 1
        user = user or make_user()
        code = code or f"SJ-{counter['n']:08d}"
        items = items or [LineItem("a", "Apple Pop", 100)]
        store = OrderStore(db)
        row_id = store.create_order(
            user_id=user.id,
            order_code=code,
            total=sum(i.price for i in items) if total is None else total,
            address=address,
        )
        store.create_line_items(row_id, items)
        return code

    return _make


class FakeHttpSession:
    """Stands in for requests.Session; records POSTs."""

    def __init__(self, status_code=200, exc=None, latency=0.0):
        self.status_code = status_code
        self.exc = exc
        self.latency = latency
        self.calls = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append({"url": url, "data": data, "headers": headers, "timeout": timeout})
        if self.latency:
            time.sleep(self.latency)
        if self.exc is not None:
            raise self.exc
        return SimpleNamespace(status_code=self.status_code)


@pytest.fixture
def http_ok():
    return FakeHttpSession(200)


@pytest.fixture
def http_down():
    return FakeHttpSession(exc=requests.ConnectionError("connection refused"))


@pytest.fixture
def fake_http():
    return FakeHttpSession
