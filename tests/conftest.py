"""
Shared fixtures: an in-memory SQLite store per test, a recording SMS gateway,
and a FastAPI test client wired to both.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from shoppos import models
from shoppos.db import make_engine
from shoppos.notify import Notifier
from shoppos.session import UserContext
from shoppos.store import SqlStore

BRANCH = "DPHeadbranch"
ADMIN_HEADERS = {"X-User": "owner", "X-Role": "admin", "X-Branch": BRANCH}
USER_HEADERS = {"X-User": "cashier", "X-Role": "user", "X-Branch": BRANCH}


class FakeGateway:
    """Records every message; replies with `reply` or raises `exc`."""

    def __init__(self, reply=None, exc=None):
        self.sent = []
        self.reply = reply if reply is not None else {"success": True}
        self.exc = exc

    def send_message(self, phone, text):
        self.sent.append((phone, text))
        if self.exc is not None:
            raise self.exc
        return self.reply


@pytest.fixture
def db():
    engine = make_engine("sqlite://")
    models.Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def store(db):
    return SqlStore(db)


@pytest.fixture
def ctx():
    return UserContext(username="owner", role="admin", branch=BRANCH)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier(gateway):
    return Notifier(gateway, shop="DP Communication", currency="LKR")


@pytest.fixture
def customer(store):
    return store.create_customer({"name": "Nimal Perera", "phone": "0771234567", "branch": BRANCH})


@pytest.fixture
def case_item(store):
    return store.create_item({"item_name": "Phone Case", "qty": 20, "unit_price": Decimal("100.00")})


@pytest.fixture
def client(db, notifier):
    from shoppos.db import get_db
    from shoppos.main import app, get_notifier

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
