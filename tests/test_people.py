import io
from pathlib import Path
from unittest.mock import MagicMock

import mongomock
from bson import ObjectId
from PIL import Image
from pymongo.errors import DuplicateKeyError, PyMongoError

import database
import main
from database import PERSON, get_db

from tests.conftest import API, make_company, make_country, make_person


def _png() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), "red").save(buf, "PNG")
    return buf.getvalue()


class TestPeopleSearch:
    def test_apostrophe_search(self, client, db):
        us = make_country(db)
        acme = make_company(db, us)
        target = make_person(db, acme, us, "Conan", "O'Brien")
        make_person(db, acme, us, "Brian", "Obrian")

        body = client.get(f"{API}/people?search=O%27Brien&page=1&limit=10").json()
        assert body["pagination"]["total"] == 1
        assert [p["id"] for p in body["data"]] == [str(target)]

    def test_metacharacters_are_literal(self, client, db):
        us = make_country(db)
        acme = make_company(db, us)
        make_person(db, acme, us, "Ann", "Lee", position="a.*+?b")
        make_person(db, acme, us, "Bob", "Ray", position="axxxb")

        body = client.get(f"{API}/people", params={"search": ".*+?"}).json()
        assert [p["firstName"] for p in body["data"]] == ["Ann"]

        resp = client.get(f"{API}/people", params={"search": "(["})
        assert resp.status_code == 200
        assert resp.json()["pagination"]["total"] == 0

    def test_only_first_100_characters_count(self, client, db):
        us = make_country(db)
        acme = make_company(db, us)
        make_person(db, acme, us, "Ann", "Lee", department="d" * 100)

        body = client.get(f"{API}/people", params={"search": "d" * 100 + "zzz"}).json()
        assert body["pagination"]["total"] == 1


class TestPeoplePaging:
    def test_pages_cover_every_record_once(self, client, db):
        us = make_country(db)
        acme = make_company(db, us)
        ids = {str(make_person(db, acme, us, f"P{i:02d}", "Same")) for i in range(25)}

        seen = []
        for page in (1, 2, 3):
            body = client.get(f"{API}/people", params={"page": page, "limit": 10}).json()
            assert len(body["data"]) <= 10
            assert body["pagination"]["totalPages"] == 3
            seen += [p["id"] for p in body["data"]]
        assert len(seen) == 25
        assert set(seen) == ids

    def test_bad_paging_values_fall_back(self, client, db):
        body = client.get(f"{API}/people", params={"page": "-1", "limit": "abc", "sortBy": "passwordHash"}).json()
        assert body["pagination"]["currentPage"] == 1
        assert body["pagination"]["pageSize"] == 10

    def test_page_beyond_any_skip_is_empty(self, client, db):
        us = make_country(db)
        make_person(db, make_company(db, us), us, "Ann", "Lee")
        resp = client.get(f"{API}/people", params={"page": "99999999999999999999", "limit": "100000"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["data"] == []
        assert body["pagination"]["total"] == 1
        assert body["pagination"]["pageSize"] == 200


class TestPeopleFilters:
    def test_is_active_filter(self, client, db):
        us = make_country(db)
        acme = make_company(db, us)
        make_person(db, acme, us, "On", "One")
        make_person(db, acme, us, "Off", "Two", isActive=False)

        assert client.get(f"{API}/people", params={"isActive": "FALSE"}).json()["pagination"]["total"] == 1
        assert client.get(f"{API}/people", params={"isActive": "maybe"}).json()["pagination"]["total"] == 2

    def test_company_filter_and_projection(self, client, db):
        us = make_country(db, capital="Washington")
        acme = make_company(db, us, "Acme")
        globex = make_company(db, us, "Globex")
        make_person(db, acme, us, "Ann", "Lee")
        make_person(db, globex, us, "Bob", "Ray")

        body = client.get(f"{API}/people", params={"company": str(acme)}).json()
        assert body["pagination"]["total"] == 1
        row = body["data"][0]
        assert row["company"] == {"id": str(acme), "name": "Acme"}
        assert row["country"]["capital"] == "Washington"
        assert row["fullName"] == "Ann Lee"

    def test_invalid_reference_filter(self, client):
        resp = client.get(f"{API}/people", params={"country": "123"})
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": "Invalid country id", "message": "Invalid country id"}


class TestPeopleCreate:
    def _payload(self, db, **extra):
        us = make_country(db)
        acme = make_company(db, us)
        payload = {
            "firstName": "Grace",
            "lastName": "Hopper",
            "email": "Grace@Navy.MIL",
            "company": str(acme),
            "country": str(us),
        }
        payload.update(extra)
        return payload

    def test_is_active_defaults_to_true(self, client, db, admin_headers):
        resp = client.post(f"{API}/people", json=self._payload(db), headers=admin_headers)
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["isActive"] is True
        assert data["email"] == "grace@navy.mil"

    def test_string_false_is_coerced(self, client, db, admin_headers):
        resp = client.post(f"{API}/people", json=self._payload(db, isActive="false"), headers=admin_headers)
        assert resp.status_code == 201
        assert resp.json()["data"]["isActive"] is False

    def test_duplicate_email(self, client, db, admin_headers):
        payload = self._payload(db)
        assert client.post(f"{API}/people", json=payload, headers=admin_headers).status_code == 201
        resp = client.post(f"{API}/people", json=payload, headers=admin_headers)
        assert resp.status_code == 400
        assert db[PERSON].count_documents({}) == 1

    def test_missing_company(self, client, db, admin_headers):
        resp = client.post(f"{API}/people", json=self._payload(db, company=str(ObjectId())), headers=admin_headers)
        assert resp.status_code == 404
        assert resp.json()["error"] == "Company not found"

    def test_invalid_email(self, client, db, admin_headers):
        resp = client.post(f"{API}/people", json=self._payload(db, email="nope"), headers=admin_headers)
        assert resp.status_code == 400


class TestPeopleStatus:
    def test_status_is_idempotent(self, client, db, admin_headers):
        us = make_country(db)
        pid = make_person(db, make_company(db, us), us, "Ann", "Lee")
        url = f"{API}/people/{pid}/status"

        client.patch(url, json={"isActive": False}, headers=admin_headers)
        first = db[PERSON].find_one({"_id": pid})
        client.patch(url, json={"isActive": False}, headers=admin_headers)
        second = db[PERSON].find_one({"_id": pid})
        assert first["isActive"] is second["isActive"] is False
        assert first["lastActive"] is None and second["lastActive"] is None

        resp = client.patch(url, json={"isActive": True}, headers=admin_headers)
        assert resp.json()["data"]["isActive"] is True
        assert db[PERSON].find_one({"_id": pid})["lastActive"] is not None

    def test_status_required(self, client, db, admin_headers):
        us = make_country(db)
        pid = make_person(db, make_company(db, us), us, "Ann", "Lee")
        resp = client.patch(f"{API}/people/{pid}/status", json={}, headers=admin_headers)
        assert resp.status_code == 400


class TestPeoplePhoto:
    def test_upload_and_delete(self, client, db, settings, admin_headers):
        us = make_country(db)
        pid = make_person(db, make_company(db, us), us, "Ann", "Lee")

        resp = client.put(
            f"{API}/people/{pid}/photo",
            files={"file": ("me.png", _png(), "image/png")},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        filename = f"person_{pid}.png"
        assert resp.json()["data"]["photo"] == filename
        stored = Path(settings.FILE_UPLOAD_PATH) / filename
        assert stored.is_file()

        assert client.delete(f"{API}/people/{pid}", headers=admin_headers).status_code == 200
        assert not stored.exists()

    def test_rejects_non_images(self, client, db, admin_headers):
        us = make_country(db)
        pid = make_person(db, make_company(db, us), us, "Ann", "Lee")
        resp = client.put(
            f"{API}/people/{pid}/photo",
            files={"file": ("me.png", b"not an image", "image/png")},
            headers=admin_headers,
        )
        assert resp.status_code == 400

    def test_photo_kept_when_record_delete_fails(self, client, db, settings, admin_headers, monkeypatch):
        us = make_country(db)
        pid = make_person(db, make_company(db, us), us, "Ann", "Lee", photo=f"person_{ObjectId()}.png")
        photo = db[PERSON].find_one({"_id": pid})["photo"]
        stored = Path(settings.FILE_UPLOAD_PATH) / photo
        stored.parent.mkdir(parents=True, exist_ok=True)
        stored.write_bytes(_png())

        def fail(self, *args, **kwargs):
            raise PyMongoError("write failed")

        monkeypatch.setattr(mongomock.Collection, "delete_one", fail)
        resp = client.delete(f"{API}/people/{pid}", headers=admin_headers)
        assert resp.status_code == 500
        assert stored.is_file()
        assert db[PERSON].count_documents({"_id": pid}) == 1


class TestPersonUpdate:
    def _person(self, db, **extra):
        us = make_country(db)
        return make_person(db, make_company(db, us), us, "Ann", "Lee", position="Engineer", **extra)

    def test_partial_update_ignores_unknown_fields(self, client, db, admin_headers):
        pid = self._person(db)
        resp = client.put(
            f"{API}/people/{pid}",
            json={"position": "Manager", "passwordHash": "x", "role": "admin"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        stored = db[PERSON].find_one({"_id": pid})
        assert stored["position"] == "Manager"
        assert stored["firstName"] == "Ann"
        assert stored["email"] == "ann.lee@acme.io"
        assert "passwordHash" not in stored
        assert "role" not in stored

    def test_keeping_own_email_is_allowed(self, client, db, admin_headers):
        pid = self._person(db)
        resp = client.put(f"{API}/people/{pid}", json={"email": "Ann.Lee@acme.io"}, headers=admin_headers)
        assert resp.status_code == 200

    def test_email_taken_by_another_person(self, client, db, admin_headers):
        pid = self._person(db)
        other = db[PERSON].find_one({"_id": pid})
        make_person(db, other["company"], other["country"], "Bob", "Ray")
        resp = client.put(f"{API}/people/{pid}", json={"email": "bob.ray@acme.io"}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Another person with this email already exists"
        assert db[PERSON].find_one({"_id": pid})["email"] == "ann.lee@acme.io"

    def test_is_active_drives_last_active(self, client, db, admin_headers):
        pid = self._person(db)
        url = f"{API}/people/{pid}"

        assert client.put(url, json={"isActive": False}, headers=admin_headers).status_code == 200
        stored = db[PERSON].find_one({"_id": pid})
        assert stored["isActive"] is False
        assert stored["lastActive"] is None

        assert client.put(url, json={"isActive": True}, headers=admin_headers).status_code == 200
        stored = db[PERSON].find_one({"_id": pid})
        assert stored["isActive"] is True
        assert stored["lastActive"] is not None

    def test_missing_country_on_change(self, client, db, admin_headers):
        pid = self._person(db)
        resp = client.put(f"{API}/people/{pid}", json={"country": str(ObjectId())}, headers=admin_headers)
        assert resp.status_code == 404
        assert resp.json()["error"] == "Country not found"


class TestPeopleStoreFailures:
    def test_list_failure_hides_store_detail(self, client):
        broken = MagicMock()
        broken.__getitem__.return_value.count_documents.side_effect = PyMongoError(
            "connection refused at 10.0.0.5:27017"
        )
        main.app.dependency_overrides[get_db] = lambda: broken

        resp = client.get(f"{API}/people")
        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "Server error", "message": "Server error"}
        assert "10.0.0.5" not in resp.text

    def test_insert_race_on_email_is_400(self, client, db, admin_headers, monkeypatch):
        us = make_country(db)
        acme = make_company(db, us)

        def collide(*args, **kwargs):
            raise DuplicateKeyError("E11000 duplicate key error collection: person index: email_1")

        monkeypatch.setattr(database, "create_document", collide)
        resp = client.post(
            f"{API}/people",
            json={"firstName": "Grace", "lastName": "Hopper", "email": "grace@navy.mil",
                  "company": str(acme), "country": str(us)},
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Person with this email already exists"
        assert "E11000" not in resp.text
