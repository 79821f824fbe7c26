"""HTTP-level tests for the refinement API (FastAPI TestClient, overridden dependencies)."""

import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from jd_refiner.llm_client import LlmCallError
from server import app, get_chat_llm, get_store


@pytest.fixture
def client(store, fake_llm):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_chat_llm] = lambda: fake_llm
    yield TestClient(app)
    app.dependency_overrides.clear()


# ===== REFINE =====


class TestRefineEndpoint:

    def test_success_envelope(self, client, fake_llm, seed_analysis, edit_analysis):
        analysis_id = seed_analysis("user-1")
        updated = edit_analysis(risks=["Turnover"])
        fake_llm.queue(updated)

        resp = client.post("/api/jd/refine", json={
            "userId": "user-1",
            "analysisId": analysis_id,
            "message": "Replace the risks with turnover",
        })

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        data = body["data"]
        assert data["updatedAnalysis"] == updated
        assert data["changedSections"] == ["risks"]
        assert data["changedSectionNames"] == ["Risks"]
        assert data["summary"] == "These sections had been updated: 1 section based on your feedback:\n\n• **Risks**: Updated"
        assert data["tokensUsed"] == 321
        assert data["timestamp"]

        assert [(m["sequenceNumber"], m["role"]) for m in data["messages"]] == [(1, "user"), (2, "assistant")]
        assert data["messages"][0]["changedSections"] == []
        assert data["messages"][1]["changedSections"] == ["risks"]
        assert data["messages"][1]["analysisSnapshot"] == updated
        assert json.loads(data["messages"][1]["content"]) == updated

    def test_blank_message_is_400(self, client, fake_llm, seed_analysis):
        analysis_id = seed_analysis("user-1")

        resp = client.post("/api/jd/refine", json={
            "userId": "user-1", "analysisId": analysis_id, "message": "   ",
        })

        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": "Message is required"}
        assert fake_llm.calls == []

    def test_malformed_body_is_400(self, client):
        resp = client.post(
            "/api/jd/refine",
            content="not json",
            headers={"Content-Type": "application/json"},
        )

        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_unknown_analysis_is_404(self, client, seed_analysis):
        analysis_id = seed_analysis("owner")

        resp = client.post("/api/jd/refine", json={
            "userId": "someone-else", "analysisId": analysis_id, "message": "Remove QuickBooks",
        })

        assert resp.status_code == 404
        assert resp.json() == {"success": False, "error": "Analysis not found"}

    def test_provider_failure_is_500_with_details(self, client, fake_llm, seed_analysis):
        analysis_id = seed_analysis("user-1")
        fake_llm.queue(LlmCallError("upstream timed out"))

        resp = client.post("/api/jd/refine", json={
            "userId": "user-1", "analysisId": analysis_id, "message": "Remove QuickBooks",
        })

        assert resp.status_code == 500
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "Failed to refine analysis"
        assert "upstream timed out" in body["details"]
        assert "Traceback" not in json.dumps(body)

    def test_unexpected_error_is_generic_500(self, fake_llm):
        broken_store = MagicMock()
        broken_store.find_for_refinement.side_effect = RuntimeError("boom")
        app.dependency_overrides[get_store] = lambda: broken_store
        app.dependency_overrides[get_chat_llm] = lambda: fake_llm
        try:
            resp = TestClient(app, raise_server_exceptions=False).post("/api/jd/refine", json={
                "userId": "user-1", "message": "Remove QuickBooks",
            })
        finally:
            app.dependency_overrides.clear()

        assert resp.status_code == 500
        assert resp.json()["success"] is False


# ===== SAVE / LIST =====


class TestSaveAndList:

    def test_save_then_list(self, client, sample_analysis, sample_intake):
        resp = client.post("/api/jd/save", json={
            "userId": "user-7",
            "title": "Dental EA",
            "intakeData": sample_intake,
            "analysis": sample_analysis,
        })

        assert resp.status_code == 200
        saved = resp.json()["savedAnalysis"]
        assert saved["isFinalized"] is False
        assert saved["analysis"] == sample_analysis

        listing = client.get("/api/jd/analysis", params={"userId": "user-7"}).json()["data"]
        assert [a["id"] for a in listing["analyses"]] == [saved["id"]]
        assert listing["analyses"][0]["refinementCount"] == 0
        assert listing["pagination"] == {
            "page": 1, "limit": 10, "total": 1, "totalPages": 1, "hasMore": False,
        }

    def test_save_requires_fields(self, client):
        resp = client.post("/api/jd/save", json={"userId": "user-7", "title": "No body"})

        assert resp.status_code == 400
        assert resp.json()["error"] == "Missing required fields"

    def test_list_requires_user_id(self, client):
        resp = client.get("/api/jd/analysis")
        assert resp.status_code == 400

    def test_list_filters_and_paginates(self, client, seed_analysis):
        for i in range(3):
            seed_analysis("user-1", title=f"open {i}")
        seed_analysis("user-1", title="done", is_finalized=True)

        first_page = client.get("/api/jd/analysis", params={
            "userId": "user-1", "finalized": "false", "limit": 2,
        }).json()["data"]

        assert [a["title"] for a in first_page["analyses"]] == ["open 2", "open 1"]
        assert first_page["pagination"]["total"] == 3
        assert first_page["pagination"]["totalPages"] == 2
        assert first_page["pagination"]["hasMore"] is True

        finalized = client.get("/api/jd/analysis", params={
            "userId": "user-1", "finalized": "true",
        }).json()["data"]
        assert [a["title"] for a in finalized["analyses"]] == ["done"]

    def test_list_search(self, client, seed_analysis):
        seed_analysis("user-1", title="Sales rep", intake={"companyName": "Acme Dental"})
        seed_analysis("user-1", title="Designer", intake={"companyName": "Initech"})

        data = client.get("/api/jd/analysis", params={"userId": "user-1", "search": "acme"}).json()["data"]

        assert [a["title"] for a in data["analyses"]] == ["Sales rep"]

    def test_list_preview_carries_every_field(self, client, seed_analysis, sample_analysis):
        seed_analysis("user-1", analysis=dict(sample_analysis, preview={
            "recommended_role": "Executive Assistant",
            "role_purpose": "Keep the practice running",
            "client_facing": True,
            "kpis": ["Inbox zero"],
        }))
        seed_analysis("user-1", analysis=dict(sample_analysis))

        analyses = client.get("/api/jd/analysis", params={"userId": "user-1"}).json()["data"]["analyses"]

        bare, filled = analyses[0]["preview"], analyses[1]["preview"]
        assert filled["recommended_role"] == "Executive Assistant"
        assert filled["role_purpose"] == "Keep the practice running"
        assert filled["client_facing"] is True
        assert filled["kpis"] == ["Inbox zero"]
        assert filled["core_outcomes"] == []
        assert bare == {
            "recommended_role": "Unknown",
            "service_mapping": "Unknown",
            "weekly_hours": 0,
            "primary_outcome": "",
            "role_purpose": "",
            "client_facing": False,
            "summary": "",
            "key_tools": [],
            "core_outcomes": [],
            "kpis": [],
            "risks": [],
        }
