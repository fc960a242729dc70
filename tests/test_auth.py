"""Registration, login and bearer-token authentication."""

import jwt


class TestRegisterLogin:
    def test_register_returns_token(self, client):
        resp = client.post(
            "/api/users/register",
            json={"name": "Neha", "email": "Neha@Example.com", "password": "pw123456"},
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["email"] == "neha@example.com"
        assert body["role"] == "user"
        assert body["permissions"] == []

        profile = client.get("/api/users/profile", headers={"Authorization": f"Bearer {body['token']}"})
        assert profile.status_code == 200
        assert profile.get_json()["email"] == "neha@example.com"

    def test_register_duplicate(self, client, staff):
        resp = client.post(
            "/api/users/register",
            json={"name": "Again", "email": "STAFF@example.com", "password": "pw"},
        )
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "User already exists"

    def test_login(self, client, staff):
        resp = client.post("/api/users/login", json={"email": staff["email"], "password": staff["password"]})
        assert resp.status_code == 200
        assert resp.get_json()["id"] == staff["id"]
        assert resp.get_json()["token"]

    def test_login_wrong_password(self, client, staff):
        resp = client.post("/api/users/login", json={"email": staff["email"], "password": "nope"})
        assert resp.status_code == 401
        assert resp.get_json()["message"] == "Invalid email or password"

    def test_login_unknown_email(self, client):
        resp = client.post("/api/users/login", json={"email": "ghost@example.com", "password": "x"})
        assert resp.status_code == 401

    def test_login_deactivated(self, client, make_user):
        user = make_user("Old", "old@example.com", is_active=False)
        resp = client.post("/api/users/login", json={"email": user["email"], "password": user["password"]})
        assert resp.status_code == 401


class TestBearerToken:
    def test_missing_token(self, client):
        resp = client.get("/api/users/profile")
        assert resp.status_code == 401
        assert resp.get_json()["message"] == "Not authorized, no token"

    def test_garbage_token(self, client):
        resp = client.get("/api/users/profile", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401
        assert resp.get_json()["message"] == "Not authorized, token failed"

    def test_token_signed_with_other_key(self, client, staff):
        forged = jwt.encode({"sub": str(staff["id"])}, "some-other-key", algorithm="HS256")
        resp = client.get("/api/users/profile", headers={"Authorization": f"Bearer {forged}"})
        assert resp.status_code == 401

    def test_deactivated_user_token_rejected(self, client, admin, staff):
        resp = client.put(f"/api/users/{staff['id']}", json={"isActive": False}, headers=admin["headers"])
        assert resp.status_code == 200

        resp = client.get("/api/users/profile", headers=staff["headers"])
        assert resp.status_code == 401
        assert resp.get_json()["message"] == "User account is deactivated"

    def test_each_request_resolves_its_own_user(self, client, admin, staff):
        assert client.get("/api/users", headers=admin["headers"]).status_code == 200
        assert client.get("/api/users", headers=staff["headers"]).status_code == 403


class TestUserAdministration:
    def test_staff_cannot_list_users(self, client, staff):
        resp = client.get("/api/users", headers=staff["headers"])
        assert resp.status_code == 403
        assert resp.get_json()["message"] == "Not authorized as an admin"

    def test_admin_cannot_delete_self(self, client, admin):
        resp = client.delete(f"/api/users/{admin['id']}", headers=admin["headers"])
        assert resp.status_code == 400

    def test_admin_changes_role(self, client, admin, staff):
        resp = client.put(f"/api/users/{staff['id']}", json={"role": "manager"}, headers=admin["headers"])
        assert resp.status_code == 200
        assert resp.get_json()["role"] == "manager"

    def test_profile_update(self, client, staff):
        resp = client.put("/api/users/profile", json={"name": "Renamed"}, headers=staff["headers"])
        assert resp.status_code == 200
        assert resp.get_json()["name"] == "Renamed"
        assert resp.get_json()["token"]
