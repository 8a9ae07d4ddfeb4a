from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient
from pymongo.errors import ServerSelectionTimeoutError

import auth
import main
from database import ensure_indexes, get_db

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def db():
    database = mongomock.MongoClient()["market_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    main.app.dependency_overrides[get_db] = lambda: db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def add_product(db):
    counter = {"n": 0}

    def _add(**fields):
        counter["n"] += 1
        doc = {
            "title": f"Product {counter['n']}",
            "price": 10.0,
            "platform": "WordPress",
            "category": "Plugins",
            "tags": [],
            "author": "Tester",
            "download_count": 0,
            "rating": 0.0,
            "review_count": 0,
            "created_at": BASE_TIME + timedelta(days=counter["n"]),
        }
        doc.update(fields)
        return str(db["products"].insert_one(doc).inserted_id)

    return _add


@pytest.fixture
def make_user(db):
    def _make(email="buyer@example.com", role="customer", first_name=None, last_name=None):
        doc = {
            "email": email,
            "password_hash": auth.hash_password("secret123"),
            "role": role,
            "first_name": first_name,
            "last_name": last_name,
            "created_at": BASE_TIME,
        }
        user_id = str(db["profiles"].insert_one(doc).inserted_id)
        token = auth.create_token({"id": user_id, "email": email, "role": role})
        return {"id": user_id, "email": email, "role": role, "token": token,
                "headers": {"Authorization": f"Bearer {token}"}}

    return _make


class DownCollection:
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise ServerSelectionTimeoutError("no servers available")
        return fail


class DownDatabase:
    def __getitem__(self, name):
        return DownCollection()


@pytest.fixture
def down_db():
    return DownDatabase()
