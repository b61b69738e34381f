import os

import pytest
from fastapi.testclient import TestClient

_offline = pytest.mark.skipif(
    bool(os.getenv("OPENAI_API_KEY")), reason="exercises the deterministic completer"
)

EXPERTS_PAYLOAD = {
    "experts": [
        {
            "expert_id": "api-E1",
            "name": "Alice Novak",
            "seniority": "Senior",
            "skills": ["Java", "Architecture"],
            "projects": [
                {
                    "project_id": "api-P1",
                    "name": "Core banking rewrite",
                    "role": "Lead",
                    "technologies": ["Java", "Spring Boot"],
                    "customer": "Acme Bank",
                    "industry": "Banking",
                }
            ],
        },
        {
            "expert_id": "api-E2",
            "name": "Bohdan Kral",
            "seniority": "Middle",
            "skills": ["Java"],
            "projects": [
                {
                    "project_id": "api-P2",
                    "name": "Claims portal",
                    "technologies": ["Java", "Angular"],
                    "customer": "MedCare",
                    "industry": "Healthcare",
                }
            ],
        },
    ]
}


def _client() -> TestClient:
    # Import lazily so the deterministic completer is used when no API key is set.
    from expert_match.api.main import app

    return TestClient(app)


@_offline
def test_api_ingest_query_and_retrieve() -> None:
    client = _client()

    ingest_resp = client.post("/experts", json=EXPERTS_PAYLOAD)
    assert ingest_resp.status_code == 200
    assert ingest_resp.json()["experts_indexed"] == 2

    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert health["expert_count"] >= 2

    query_resp = client.post(
        "/query",
        json={"query": "Java and Spring Boot experts", "chat_id": "api-chat"},
    )
    assert query_resp.status_code == 200
    payload = query_resp.json()
    assert payload["ranked_experts"][0]["expert"]["expert_id"] == "api-E1"
    assert "Alice Novak" in payload["answer"]
    assert payload["pattern"] == "PLAIN"
    assert payload["execution_trace"]["steps"]

    follow_up = client.post(
        "/query",
        json={"query": "Anyone with Angular?", "chat_id": "api-chat"},
    )
    assert follow_up.status_code == 200
    history_steps = [
        step for step in follow_up.json()["execution_trace"]["steps"] if step["name"] == "Conversation History"
    ]
    assert history_steps[0]["output_summary"] == "messages=2"

    retrieve_resp = client.post("/retrieve", json={"query": "Java and Spring Boot experts"})
    assert retrieve_resp.status_code == 200
    items = retrieve_resp.json()["items"]
    assert items[0]["expert_id"] == "api-E1"


def test_api_rejects_conflicting_patterns() -> None:
    client = _client()

    resp = client.post(
        "/query",
        json={
            "query": "Java experts",
            "options": {"use_cascade_pattern": True, "use_cycle_pattern": True},
        },
    )

    assert resp.status_code == 422
    assert "mutually exclusive" in resp.json()["detail"]


@_offline
def test_api_maps_unavailable_model_to_503() -> None:
    client = _client()
    client.post("/experts", json=EXPERTS_PAYLOAD)

    resp = client.post(
        "/query",
        json={"query": "Java experts", "options": {"use_cycle_pattern": True}},
    )

    assert resp.status_code == 503
    assert resp.json()["detail"]["error_code"] == "LLM_TRANSIENT"
