"""Tests for the HTTP endpoints."""

from db_setup import ContactStore
from main import app, get_store
from reconciler import IdentityReconciler
from settings import settings


def test_health_check(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_identify_new_contact(client):
    response = client.post(
        "/identify",
        json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"},
    )

    assert response.status_code == 200
    contact = response.json()["contact"]
    assert set(contact) == {"primaryContatctId", "emails", "phoneNumbers", "secondaryContactIds"}
    assert contact["emails"] == ["lorraine@hillvalley.edu"]
    assert contact["phoneNumbers"] == ["123456"]
    assert contact["secondaryContactIds"] == []


def test_identify_links_secondary(client):
    first = client.post(
        "/identify", json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"}
    ).json()["contact"]

    response = client.post(
        "/identify", json={"email": "mcfly@hillvalley.edu", "phoneNumber": "123456"}
    )

    contact = response.json()["contact"]
    assert contact["primaryContatctId"] == first["primaryContatctId"]
    assert contact["emails"] == ["lorraine@hillvalley.edu", "mcfly@hillvalley.edu"]
    assert len(contact["secondaryContactIds"]) == 1


def test_identify_phone_only_lookup(client):
    client.post("/identify", json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"})

    response = client.post("/identify", json={"email": None, "phoneNumber": "123456"})

    assert response.status_code == 200
    assert response.json()["contact"]["emails"] == ["lorraine@hillvalley.edu"]


def test_numeric_phone_number_is_converted(client):
    response = client.post(
        "/identify", json={"email": "numeric@test.com", "phoneNumber": 555555}
    )

    assert response.status_code == 200
    assert response.json()["contact"]["phoneNumbers"] == ["555555"]


def test_integral_float_phone_number_drops_fraction(client):
    response = client.post("/identify", json={"phoneNumber": 555555.0})

    assert response.status_code == 200
    assert response.json()["contact"]["phoneNumbers"] == ["555555"]


def test_email_is_returned_exactly_as_sent(client):
    response = client.post(
        "/identify", json={"email": "Doc@HillValley.EDU", "phoneNumber": "1"}
    )

    assert response.status_code == 200
    assert response.json()["contact"]["emails"] == ["Doc@HillValley.EDU"]


def test_emails_differing_in_domain_case_are_separate_identities(client):
    first = client.post("/identify", json={"email": "doc@HillValley.edu"}).json()
    second = client.post("/identify", json={"email": "doc@hillvalley.edu"}).json()

    assert first["contact"]["primaryContatctId"] != second["contact"]["primaryContatctId"]
    assert second["contact"]["emails"] == ["doc@hillvalley.edu"]


def test_display_name_email_returns_400(client):
    response = client.post("/identify", json={"email": "Doc Brown <doc@hillvalley.edu>"})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert "Invalid email format" in body["error"]


def test_missing_fields_return_400(client):
    response = client.post("/identify", json={})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "At least one of email or phoneNumber must be provided"


def test_null_fields_return_400(client):
    response = client.post("/identify", json={"email": None, "phoneNumber": None})

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_invalid_email_returns_400(client):
    response = client.post("/identify", json={"email": "not-an-email"})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert "email" in body["error"]


def test_boolean_phone_number_returns_400(client):
    response = client.post("/identify", json={"phoneNumber": True})

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_storage_failure_returns_500(client, tmp_path):
    # a directory is not a usable database file
    app.dependency_overrides[get_store] = lambda: ContactStore(str(tmp_path))

    response = client.post("/identify", json={"phoneNumber": "123456"})

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["error"] != "Internal server error"


def test_server_error_detail_hidden_in_production(client, monkeypatch):
    def explode(self, email=None, phone=None):
        raise RuntimeError("connection pool exhausted")

    monkeypatch.setattr(IdentityReconciler, "resolve", explode)
    monkeypatch.setattr(settings, "environment", "production")

    response = client.post("/identify", json={"phoneNumber": "123456"})

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Internal server error"}


def test_server_error_detail_shown_outside_production(client, monkeypatch):
    def explode(self, email=None, phone=None):
        raise RuntimeError("connection pool exhausted")

    monkeypatch.setattr(IdentityReconciler, "resolve", explode)
    monkeypatch.setattr(settings, "environment", "development")

    response = client.post("/identify", json={"phoneNumber": "123456"})

    assert response.status_code == 500
    assert response.json()["error"] == "connection pool exhausted"
