"""
Tests for the HTTP surface: status codes and refusal bodies.
"""
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from campforms.api.routes import router
from campforms.database import get_db

ADMIN = {"X-User-Id": "admin_1"}
PARENT = {"X-User-Id": "parent_1"}


@pytest.fixture
def client(engine):
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app = FastAPI()
    app.include_router(router, prefix="/api")
    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.fixture
def form_id(client):
    response = client.post("/api/forms", headers=ADMIN, json={
        "scope": {"camp_id": "camp_1", "session_id": "session_1"},
        "metadata": {"name": "Camper Waiver", "form_type": "waiver"},
    })
    assert response.status_code == 201
    return response.json()["id"]


def waiver_update(expected_version=None):
    return {
        "metadata": {"name": "Camper Waiver", "form_type": "waiver"},
        "expected_version": expected_version,
        "fields": [
            {
                "field_key": "camper_name",
                "label": "Camper name",
                "field_type": "text",
                "validation_rules": {"required": True},
                "display_order": 1,
            },
            {
                "field_key": "shirt_size",
                "label": "T-shirt size",
                "field_type": "select",
                "display_order": 2,
                "options": [
                    {"label": "Small", "value": "S", "display_order": 1},
                    {"label": "Large", "value": "L", "display_order": 2},
                ],
            },
        ],
    }


class TestForms:
    def test_create_requires_acting_user(self, client):
        response = client.post("/api/forms", json={
            "scope": {"camp_id": "camp_1"},
            "metadata": {"name": "Waiver", "form_type": "waiver"},
        })

        assert response.status_code == 422

    def test_update_returns_fields_and_options(self, client, form_id):
        response = client.put(f"/api/forms/{form_id}", headers=ADMIN, json=waiver_update(expected_version=1))

        assert response.status_code == 200
        body = response.json()
        assert body["version"] == 2
        assert [f["field_key"] for f in body["fields"]] == ["camper_name", "shirt_size"]
        assert [o["value"] for o in body["fields"][1]["options"]] == ["S", "L"]

    def test_stale_version_is_409(self, client, form_id):
        client.put(f"/api/forms/{form_id}", headers=ADMIN, json=waiver_update(expected_version=1))

        response = client.put(f"/api/forms/{form_id}", headers=ADMIN, json=waiver_update(expected_version=1))

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "conflict"

    def test_unknown_form_is_404(self, client):
        assert client.get("/api/forms/999").status_code == 404

    def test_list_by_camp(self, client, form_id):
        response = client.get("/api/forms", params={"camp_id": "camp_1", "status": "draft"})

        assert [f["id"] for f in response.json()] == [form_id]

    def test_field_types(self, client):
        types = {t["type"]: t for t in client.get("/api/field-types").json()}

        assert types["select"]["label"] == "Dropdown"
        assert types["select"]["supports_options"] is True


class TestSubmissions:
    def test_submitting_to_unpublished_form_is_snapshot_missing(self, client, form_id):
        response = client.post(f"/api/forms/{form_id}/submissions", headers=PARENT, json={"submission_data": {}})

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "snapshot_missing"

    def test_invalid_submission_is_422_with_violations(self, client, form_id):
        client.put(f"/api/forms/{form_id}", headers=ADMIN, json=waiver_update())
        client.post(f"/api/forms/{form_id}/publish", headers=ADMIN)

        response = client.post(
            f"/api/forms/{form_id}/submissions",
            headers=PARENT,
            json={"submission_data": {"shirt_size": "XL"}}
        )

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "validation_failed"
        assert [v[0] for v in detail["violations"]] == ["camper_name", "shirt_size"]

    def test_valid_submission_is_201(self, client, form_id):
        client.put(f"/api/forms/{form_id}", headers=ADMIN, json=waiver_update())
        client.post(f"/api/forms/{form_id}/publish", headers=ADMIN)

        response = client.post(
            f"/api/forms/{form_id}/submissions",
            headers=PARENT,
            json={"submission_data": {"camper_name": "Ada", "shirt_size": "S"}, "child_id": "child_1"}
        )

        assert response.status_code == 201
        assert response.json()["form_version"] == 2
        assert len(client.get("/api/users/parent_1/submissions").json()) == 1


class TestAIActions:
    def test_full_workflow_and_double_execute(self, client):
        proposal = client.post("/api/ai-actions", headers=ADMIN, json={
            "prompt": "Simple waiver",
            "camp_id": "camp_1",
            "generated_form": {
                "form_definition": {"name": "Waiver", "form_type": "waiver"},
                "fields": [{"field_key": "agree", "label": "I agree", "field_type": "boolean", "display_order": 1}],
            },
        })
        assert proposal.status_code == 201
        action_id = proposal.json()["id"]
        assert [a["id"] for a in client.get("/api/ai-actions/pending").json()] == [action_id]

        assert client.post(f"/api/ai-actions/{action_id}/approve", headers=ADMIN).json()["status"] == "approved"

        executed = client.post(f"/api/ai-actions/{action_id}/execute", headers=ADMIN)
        assert executed.status_code == 201
        assert executed.json()["ai_action_id"] == action_id

        again = client.post(f"/api/ai-actions/{action_id}/execute", headers=ADMIN)
        assert again.status_code == 409
        assert again.json()["detail"]["code"] == "invalid_state"

    def test_proposal_with_repeated_keys_is_409_and_not_pending(self, client):
        agree = {"field_key": "agree", "label": "I agree", "field_type": "boolean", "display_order": 1}
        response = client.post("/api/ai-actions", headers=ADMIN, json={
            "prompt": "Waiver twice",
            "camp_id": "camp_1",
            "generated_form": {
                "form_definition": {"name": "Waiver", "form_type": "waiver"},
                "fields": [agree, dict(agree, display_order=2)],
            },
        })

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "conflict"
        assert client.get("/api/ai-actions/pending").json() == []
