import logging
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from pymongo.errors import ServerSelectionTimeoutError

import main
from auth import MongoIdentityProvider
from database import now_utc
from gateway import EntityStoreGateway

PASSWORD = "kisan123"


@pytest.fixture
def client(monkeypatch, gateway, mongo_db):
    monkeypatch.setattr(main, "gateway", gateway)
    monkeypatch.setattr(main, "identity_provider", MongoIdentityProvider(mongo_db))
    monkeypatch.setattr(main, "ADMIN_SIGNUP_CODE", "harvest")
    monkeypatch.setattr(main, "clients", {})
    return TestClient(main.app)


def register(client, email, **extra):
    body = {"email": email, "password": PASSWORD, "name": email.split("@")[0].title(), **extra}
    return client.post("/auth/register", json=body)


def login(client, email):
    response = client.post("/auth/login", json={"email": email, "password": PASSWORD})
    assert response.status_code == 200, response.text
    return response.json()["token"]


@pytest.fixture
def farmer_token(client):
    register(client, "ravi@example.com", region="Punjab", crop_interests=["Rice"])
    return login(client, "ravi@example.com")


@pytest.fixture
def admin_token(client):
    register(client, "admin@example.com", role="admin", admin_code="harvest")
    return login(client, "admin@example.com")


def test_root(client):
    assert client.get("/").json()["status"] == "ok"


def test_health_check_logs_store_failure(client, monkeypatch, caplog):
    db = MagicMock()
    db.list_collection_names.side_effect = ServerSelectionTimeoutError("no servers available")
    monkeypatch.setattr(main, "gateway", EntityStoreGateway(db))

    with caplog.at_level(logging.ERROR, logger="main"):
        body = client.get("/test").json()

    assert "no servers available" in body["database"]
    assert "Database health check failed" in caplog.text


class TestAuthRoutes:
    def test_register_and_login(self, client):
        response = register(client, "ravi@example.com")
        assert response.status_code == 201
        uid = response.json()["uid"]

        response = client.post("/auth/login", json={"email": "ravi@example.com", "password": PASSWORD})
        assert response.status_code == 200
        assert response.json()["uid"] == uid
        assert response.json()["role"] == "farmer"

    def test_duplicate_registration(self, client):
        register(client, "ravi@example.com")
        response = register(client, "ravi@example.com")
        assert response.status_code == 401
        assert "already in use" in response.json()["detail"]

    def test_admin_registration_needs_code(self, client):
        response = register(client, "admin@example.com", role="admin", admin_code="wrong")
        assert response.status_code == 403

    def test_bad_password(self, client):
        register(client, "ravi@example.com")
        response = client.post("/auth/login", json={"email": "ravi@example.com", "password": "nope-nope"})
        assert response.status_code == 401

    def test_unknown_token(self, client):
        assert client.get("/view", params={"token": "missing"}).status_code == 401

    def test_logout(self, client, farmer_token):
        response = client.post("/auth/logout", params={"token": farmer_token})
        assert response.status_code == 200
        assert client.get("/view", params={"token": farmer_token}).status_code == 401

    def test_login_reports_expiry(self, client):
        register(client, "ravi@example.com")
        response = client.post("/auth/login", json={"email": "ravi@example.com", "password": PASSWORD})
        assert response.json()["expires_in"] == 7 * 24 * 3600

    def test_expired_token(self, client, farmer_token):
        portal, _ = main.clients[farmer_token]
        main.clients[farmer_token] = (portal, now_utc() - timedelta(seconds=1))

        response = client.get("/view", params={"token": farmer_token})

        assert response.status_code == 401
        assert response.json()["detail"] == "Session expired"
        assert farmer_token not in main.clients

    def test_login_evicts_expired_sessions(self, client, farmer_token):
        portal, _ = main.clients[farmer_token]
        main.clients[farmer_token] = (portal, now_utc() - timedelta(days=1))

        register(client, "meena@example.com")
        fresh = login(client, "meena@example.com")

        assert list(main.clients) == [fresh]


class TestFarmerRoutes:
    def test_dashboard(self, client, farmer_token):
        view = client.get("/view", params={"token": farmer_token}).json()
        assert view["role"] == "farmer"
        assert view["tab"] == "dashboard"
        assert view["header"]["name"] == "Ravi"

    def test_unknown_tab(self, client, farmer_token):
        response = client.post("/navigate/user-management", params={"token": farmer_token})
        assert response.status_code == 422

    def test_admin_routes_are_closed(self, client, farmer_token):
        response = client.get("/admin/users", params={"token": farmer_token})
        assert response.status_code == 403

    def test_apply_and_submit(self, client, farmer_token, add_scheme):
        scheme_id = add_scheme("Rice Support", deadline=datetime(2026, 1, 31))
        token = {"token": farmer_token}

        view = client.post(f"/farmer/apply-now/{scheme_id}", params=token).json()
        assert view["tab"] == "apply"
        assert view["body"]["draft"]["scheme_id"] == scheme_id

        draft = client.patch("/farmer/draft", params=token, json={"land_size": 3}).json()
        assert draft["land_size"] == 3

        result = client.post("/farmer/applications", params=token, json={"crop_type": "Rice"}).json()
        assert result["ok"], result
        assert result["view"]["tab"] == "applications"
        assert result["view"]["body"]["applications"][0]["status"] == "pending"

    def test_submit_incomplete(self, client, farmer_token):
        result = client.post("/farmer/applications", params={"token": farmer_token}, json={"land_size": 2}).json()
        assert not result["ok"]
        assert result["view"] is None

    def test_non_finite_land_size_is_refused(self, client, farmer_token, mongo_db):
        response = client.post(
            "/farmer/applications", params={"token": farmer_token},
            content='{"land_size": NaN, "crop_type": "Rice"}',
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 422
        assert "land_size" in response.json()["detail"]
        assert mongo_db.applications.count_documents({}) == 0


class TestAdminRoutes:
    def test_review_flow(self, client, admin_token, add_application):
        application_id = add_application("farmer-ravi", datetime(2025, 1, 1))
        token = {"token": admin_token}
        url = f"/admin/applications/{application_id}/review"

        prompt = client.post(url, params=token, json={"status": "approved"}).json()
        assert prompt["needs_confirmation"]

        done = client.post(url, params=token, json={"status": "approved", "confirmed": True}).json()
        assert done["ok"]
        assert done["message"] == "Application has been approved."

        again = client.post(url, params=token, json={"status": "rejected", "confirmed": True}).json()
        assert not again["ok"]

    def test_add_crop_and_scheme(self, client, admin_token, gateway):
        token = {"token": admin_token}
        crop = client.post("/admin/crops", params=token, json={
            "name": "Wheat", "season": "Rabi", "region": "Punjab",
            "pesticides": "Mancozeb", "fertilizers": "Urea, DAP", "description": "Winter crop",
        }).json()
        scheme = client.post("/admin/schemes", params=token, json={
            "title": "PM-KISAN", "description": "Income support", "eligibility": "Small farmers",
            "benefits": "Rs 6000 per year", "deadline": "2025-12-31",
        }).json()

        assert crop["message"] == "Crop added successfully!"
        assert scheme["message"] == "New scheme added successfully!"
        assert scheme["view"]["tab"] == "applications"

    def test_users_and_notifications(self, client, admin_token, farmer_token):
        token = {"token": admin_token}

        users = client.get("/admin/users", params={**token, "search": "ravi"}).json()
        assert [row["profile"]["email"] for row in users["body"]["farmers"]] == ["ravi@example.com"]
        farmer_id = users["body"]["farmers"][0]["profile"]["id"]

        sent = client.post("/admin/notifications", params=token, json={"message": "Rain on Friday"}).json()
        assert sent["ok"]

        farmer_view = client.get("/view", params={"token": farmer_token}).json()
        assert [n["message"] for n in farmer_view["body"]["unread_notifications"]] == ["Rain on Friday"]

        removed = client.delete(f"/admin/users/{farmer_id}", params={**token, "confirmed": "true"}).json()
        assert removed["message"] == "User deactivated."
