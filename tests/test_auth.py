from datetime import timedelta

from database import SESSION, USER, utcnow

from tests.conftest import API, bearer, insert_user


class TestLogin:
    def test_login_me_logout(self, client, db):
        insert_user(db, "ann@acme.io", password="secret123")

        resp = client.post(f"{API}/auth/login", json={"email": "ann@acme.io", "password": "secret123"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["user"]["email"] == "ann@acme.io"
        headers = {"Authorization": f"Bearer {body['token']}"}

        me = client.get(f"{API}/auth/me", headers=headers).json()["data"]
        assert me["email"] == "ann@acme.io"
        assert "passwordHash" not in me and "passwordSalt" not in me

        assert client.get(f"{API}/auth/logout", headers=headers).status_code == 200
        assert client.get(f"{API}/auth/me", headers=headers).status_code == 401

    def test_wrong_password(self, client, db):
        insert_user(db, "ann@acme.io", password="secret123")
        resp = client.post(f"{API}/auth/login", json={"email": "ann@acme.io", "password": "nope"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "Invalid credentials"

    def test_login_is_rate_limited(self, client, db):
        for _ in range(10):
            client.post(f"{API}/auth/login", json={"email": "x@acme.io", "password": "nope"})
        resp = client.post(f"{API}/auth/login", json={"email": "x@acme.io", "password": "nope"})
        assert resp.status_code == 429
        assert resp.json()["success"] is False

    def test_expired_session(self, client, db):
        user = insert_user(db, "ann@acme.io")
        db[SESSION].insert_one({"userId": user["_id"], "token": "old", "expiresAt": utcnow() - timedelta(days=1)})
        resp = client.get(f"{API}/auth/me", headers={"Authorization": "Bearer old"})
        assert resp.status_code == 401

    def test_missing_and_malformed_header(self, client):
        assert client.get(f"{API}/auth/me").status_code == 401
        assert client.get(f"{API}/auth/me", headers={"Authorization": "Token abc"}).status_code == 401


class TestRegister:
    def test_register_always_creates_plain_user(self, client, db):
        resp = client.post(
            f"{API}/auth/register",
            json={"firstName": "Eve", "lastName": "Hacker", "email": "eve@acme.io", "password": "secret123", "role": "admin"},
        )
        assert resp.status_code == 200
        assert resp.json()["user"]["role"] == "user"
        assert db[USER].find_one({"email": "eve@acme.io"})["role"] == "user"

    def test_duplicate_email(self, client, db):
        insert_user(db, "eve@acme.io")
        resp = client.post(
            f"{API}/auth/register",
            json={"firstName": "Eve", "lastName": "Again", "email": "eve@acme.io", "password": "secret123"},
        )
        assert resp.status_code == 400


class TestChangePassword:
    def _login(self, client, password):
        return client.post(f"{API}/auth/login", json={"email": "ann@acme.io", "password": password})

    def test_change_password(self, client, db):
        insert_user(db, "ann@acme.io", password="secret123")
        token = self._login(client, "secret123").json()["token"]
        headers = {"Authorization": f"Bearer {token}"}

        payload = {"currentPassword": "secret123", "newPassword": "better-pass", "confirmPassword": "better-pass"}
        resp = client.post(f"{API}/auth/change-password", json=payload, headers=headers)
        assert resp.status_code == 200
        assert self._login(client, "secret123").status_code == 401
        assert self._login(client, "better-pass").status_code == 200

    def test_mismatch_and_short(self, client, db):
        user = insert_user(db, "ann@acme.io", password="secret123")
        headers = bearer(db, user)
        url = f"{API}/auth/change-password"
        mismatch = {"currentPassword": "secret123", "newPassword": "better-pass", "confirmPassword": "other-pass"}
        assert client.post(url, json=mismatch, headers=headers).status_code == 400
        short = {"currentPassword": "secret123", "newPassword": "short", "confirmPassword": "short"}
        assert client.post(url, json=short, headers=headers).status_code == 400
        wrong = {"currentPassword": "wrong-one", "newPassword": "better-pass", "confirmPassword": "better-pass"}
        assert client.post(url, json=wrong, headers=headers).status_code == 401


def test_update_details(client, db, user_headers):
    resp = client.put(f"{API}/auth/updatedetails", json={"firstName": "Renamed"}, headers=user_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["firstName"] == "Renamed"
