"""Tests for the SKFill REST API."""

import pytest
from fastapi.testclient import TestClient

from skfill import api
from skfill.config import FeatureFlagService
from skfill.store import SessionStore


@pytest.fixture
def client(tmp_path):
    store = SessionStore(base_dir=tmp_path)
    api.configure(store=store, flags=FeatureFlagService())
    with TestClient(api.app) as c:
        yield c
    api.configure()


@pytest.fixture
def session_id(client, page_one_annotations, page_two_annotations):
    resp = client.post(
        "/api/sessions",
        json={
            "title": "Intake",
            "pages": [
                {"page_number": 1, "annotations": page_one_annotations},
                {"page_number": 2, "annotations": page_two_annotations},
            ],
        },
    )
    assert resp.status_code == 201
    return resp.json()["session_id"]


def _fill_required(client, session_id, signature):
    values = {
        "full_name": "Ada Lovelace",
        "email_address": "ada@example.com",
        "date_of_birth": "1815-12-10",
        "gender__female": "female",
        "agree_terms": True,
        "signature": signature,
    }
    for field_id, value in values.items():
        resp = client.put(f"/api/sessions/{session_id}/values/{field_id}", json={"value": value})
        assert resp.status_code == 200


class TestHealth:
    """Health endpoint."""

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["service"] == "skfill"


class TestSessions:
    """Session lifecycle over HTTP."""

    def test_create(self, client, page_one_annotations):
        resp = client.post(
            "/api/sessions",
            json={"title": "One page", "pages": [{"page_number": 1, "annotations": page_one_annotations}]},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["title"] == "One page"
        assert data["phase"] == "start"
        assert data["button"]["type"] == "start"
        assert data["progress"]["total"] == 5
        assert data["guidance"] == "Ready to begin! This form has 5 required fields to complete."
        field_ids = [f["id"] for f in data["state"]["all_page_fields"][0]["fields"]]
        assert "x_internal" not in field_ids
        assert "email_address" in field_ids

    def test_get_and_list(self, client, session_id):
        resp = client.get(f"/api/sessions/{session_id}")
        assert resp.status_code == 200
        assert resp.json()["title"] == "Intake"
        listed = client.get("/api/sessions").json()
        assert [s["session_id"] for s in listed] == [session_id]

    def test_missing_session(self, client):
        assert client.get("/api/sessions/nope").status_code == 404

    def test_delete(self, client, session_id):
        assert client.delete(f"/api/sessions/{session_id}").status_code == 204
        assert client.get(f"/api/sessions/{session_id}").status_code == 404
        assert client.delete(f"/api/sessions/{session_id}").status_code == 404

    def test_reload_from_store(self, client, session_id):
        client.put(f"/api/sessions/{session_id}/values/full_name", json={"value": "Ada"})
        api._sessions.clear()
        data = client.get(f"/api/sessions/{session_id}").json()
        assert data["state"]["values"]["full_name"] == "Ada"


class TestFieldsAndWizard:
    """Values, blur validation and wizard actions."""

    def test_set_value_updates_progress(self, client, session_id):
        resp = client.put(f"/api/sessions/{session_id}/values/full_name", json={"value": "Ada"})
        assert resp.status_code == 200
        assert resp.json()["progress"]["completed"] == 1

    def test_unknown_field(self, client, session_id):
        resp = client.put(f"/api/sessions/{session_id}/values/ghost", json={"value": "x"})
        assert resp.status_code == 404
        assert "ghost" in resp.json()["detail"]

    def test_blur_reports_error(self, client, session_id):
        client.put(f"/api/sessions/{session_id}/values/email_address", json={"value": "invalid-email"})
        resp = client.post(f"/api/sessions/{session_id}/fields/email_address/blur")
        assert resp.status_code == 200
        assert resp.json()["is_valid"] is False
        state = client.get(f"/api/sessions/{session_id}").json()["state"]
        assert "valid email" in state["validation_errors"]["email_address"]

    def test_wizard_button_navigates(self, client, session_id):
        data = client.post(f"/api/sessions/{session_id}/wizard/button").json()
        assert data["phase"] == "filling"
        assert data["button"]["type"] == "next"
        assert data["state"]["current_field_id"] == "full_name"
        assert data["state"]["wizard"]["tooltip"]["message"] == "Required: full_name"

    def test_navigate_and_back(self, client, session_id):
        client.post(f"/api/sessions/{session_id}/navigate/full_name")
        client.post(f"/api/sessions/{session_id}/navigate/phone")
        data = client.post(f"/api/sessions/{session_id}/wizard/back").json()
        assert data["state"]["current_field_id"] == "full_name"
        assert data["state"]["wizard"]["field_history"] == []

    def test_unknown_wizard_action(self, client, session_id):
        assert client.post(f"/api/sessions/{session_id}/wizard/dance").status_code == 400


class TestSubmit:
    """Validation and submission over HTTP."""

    def test_validate_lists_missing(self, client, session_id):
        data = client.post(f"/api/sessions/{session_id}/validate").json()
        assert data["is_valid"] is False
        assert "signature" in data["missing_required"]
        assert "office_use" not in data["missing_required"]

    def test_submit_invalid(self, client, session_id):
        data = client.post(f"/api/sessions/{session_id}/submit").json()
        assert data["submitted"] is False
        assert data["submission_error"].startswith("Form validation failed")
        assert data["session"]["state"]["is_submitting"] is False

    def test_submit_valid_records_values(self, client, session_id, valid_signature):
        _fill_required(client, session_id, valid_signature)
        data = client.post(f"/api/sessions/{session_id}/submit").json()
        assert data["submitted"] is True
        assert data["session"]["state"]["is_submitted"] is True
        submissions = api._store.get_submissions(session_id)
        assert len(submissions) == 1
        assert submissions[0].values["full_name"] == "Ada Lovelace"

    def test_reset(self, client, session_id):
        client.put(f"/api/sessions/{session_id}/values/full_name", json={"value": "Ada"})
        data = client.post(f"/api/sessions/{session_id}/reset").json()
        assert data["state"]["values"] == {}
        assert data["progress"]["completed"] == 0
        assert len(data["state"]["all_page_fields"]) == 2
