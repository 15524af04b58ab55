"""
Global Tracker API - test configuration and fixtures

The app runs against an in-memory mongomock store; the lifespan (real MongoDB
connection) is never started.
"""
import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from auth import create_session, password_fields
from config import Settings, get_settings
from database import COMPANY, COUNTRY, PERSON, USER, Database, create_document, get_db, utcnow
from ratelimit import reset_rate_limits

API = "/api/v1"


@pytest.fixture
def db() -> Database:
    return Database(mongomock.MongoClient(), "global_tracking_test", transactions=False)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(FILE_UPLOAD_PATH=str(tmp_path / "uploads"))


@pytest.fixture
def client(db, settings):
    reset_rate_limits()
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(main.app, raise_server_exceptions=False)
    main.app.dependency_overrides.clear()


def insert_user(db: Database, email: str, role: str = "user", password: str = "secret123"):
    now = utcnow()
    doc = {
        "firstName": role.title(),
        "lastName": "Tester",
        "email": email,
        "role": role,
        "photo": "no-photo.jpg",
        **password_fields(password),
        "createdAt": now,
        "updatedAt": now,
    }
    doc["_id"] = db[USER].insert_one(doc).inserted_id
    return doc


def bearer(db: Database, user) -> dict:
    return {"Authorization": f"Bearer {create_session(db, user['_id'])}"}


@pytest.fixture
def admin(db):
    return insert_user(db, "admin@acme.io", role="admin")


@pytest.fixture
def admin_headers(db, admin):
    return bearer(db, admin)


@pytest.fixture
def user_headers(db):
    return bearer(db, insert_user(db, "user@acme.io"))


def make_country(db: Database, name: str = "United States", code: str = "US", **extra):
    return create_document(db, COUNTRY, {"name": name, "code": code, "isActive": True, **extra})


def make_company(db: Database, country, name: str = "Acme", **extra):
    doc = {"name": name, "country": country, "isActive": True, "ipAddresses": [], "subdomains": []}
    doc.update(extra)
    return create_document(db, COMPANY, doc)


def make_person(db: Database, company, country, first: str, last: str, email=None, **extra):
    doc = {
        "firstName": first,
        "lastName": last,
        "email": email or f"{first}.{last}@acme.io".lower().replace("'", ""),
        "company": company,
        "country": country,
        "isActive": True,
    }
    doc.update(extra)
    return create_document(db, PERSON, doc)
