import os
import itertools
from datetime import datetime, timezone

os.environ["DATABASE_URL"] = ""
os.environ["MONGO_TRANSACTIONS"] = "false"
os.environ.setdefault("PASSWORD_HASH_ITERATIONS", "1000")

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import catalog
import main
from database import get_db
from events import EventSink, get_event_sink
from schemas import Product, Store

_seq = itertools.count(1)

PICKUP = datetime(2026, 10, 20, 10, 0, tzinfo=timezone.utc)


class MemoryEventSink(EventSink):
    def __init__(self):
        self.events = []

    def publish(self, event, payload):
        self.events.append((event, payload))

    def names(self):
        return [name for name, _ in self.events]


@pytest.fixture
def database():
    return mongomock.MongoClient()["ocha_test"]


@pytest.fixture
def sink():
    return MemoryEventSink()


@pytest.fixture
def client(database, sink):
    main.app.dependency_overrides[get_db] = lambda: database
    main.app.dependency_overrides[get_event_sink] = lambda: sink
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_user(database):
    def _make(role="user", password="Password-123!"):
        n = next(_seq)
        email = f"{role}{n}@test.com"
        auth.register_user(database, email, password, f"{role}_{n}")
        if role != "user":
            database["user"].update_one({"email": email}, {"$set": {"role": role}})
        user = database["user"].find_one({"email": email})
        return user, auth.issue_session(database, user)
    return _make


@pytest.fixture
def make_store(database):
    def _make(name=None, coordinates=(6.629, 46.522), is_active=True, **extra):
        n = next(_seq)
        payload = Store(
            name=name or f"Ocha Store {n}",
            email=f"store{n}@ocha.ch",
            address={"line1": "Rue de Genève 21", "city": "Lausanne", "zipcode": "1003", "country": "Suisse"},
            location={"type": "Point", "coordinates": list(coordinates)},
            is_active=is_active,
            **extra,
        )
        created = catalog.create_store(database, payload)
        return database["store"].find_one({"slug": created["slug"]})
    return _make


@pytest.fixture
def make_product(database):
    def _make(base_price=5.9, name=None, **extra):
        n = next(_seq)
        payload = Product(
            slug=f"matcha-latte-{n}",
            name=name or f"Matcha Latte {n}",
            category="tea",
            description="Ceremonial matcha with oat milk",
            base_price=base_price,
            image="https://cdn.ocha.ch/matcha.jpg",
            **extra,
        )
        created = catalog.create_product(database, payload)
        return database["product"].find_one({"slug": created["slug"]})
    return _make


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
