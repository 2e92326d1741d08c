import itertools

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import REPORT, USER, parse_object_id
from main import create_app
from security import create_token
from settings import Settings

_emails = itertools.count(1)


@pytest.fixture
def settings():
    return Settings(database_name="civic_sense_test", jwt_secret="test-secret")


@pytest.fixture
def app(settings):
    return create_app(settings, client=mongomock.MongoClient())


@pytest.fixture
def store(app):
    return app.state.store


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_user(store, settings):
    """Insert a user row and return its id, role and ready-made bearer headers."""

    def _make(role="user", name="Tester"):
        email = f"user{next(_emails)}@example.com"
        doc = store.create_document(USER, {
            "name": name,
            "email": email,
            "role": role,
            "password_hash": "",
            "is_active": True,
        })
        user_id = str(doc["_id"])
        token = create_token(settings, user_id, email, role)
        return {"id": user_id, "email": email, "role": role, "headers": {"Authorization": f"Bearer {token}"}}

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def municipal(make_user):
    return make_user(role="municipal", name="Ward Officer")


@pytest.fixture
def make_report(client, user, store):
    def _make(title="Pothole", status=None, **extra):
        body = {"title": title, "description": f"{title} near the market", **extra}
        response = client.post("/api/reports", json=body, headers=user["headers"])
        assert response.status_code == 200
        report = response.json()
        if status is not None:
            store[REPORT].update_one({"_id": parse_object_id(report["id"])}, {"$set": {"status": status}})
            report["status"] = status
        return report

    return _make
