from fastapi.testclient import TestClient

from anamnesis.sse import parse_sse
from triage_backend import app

client = TestClient(app)


def test_health():
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert set(body["feature_flags"]) == {
        "classifier",
        "med_query_classifier",
        "role_mode",
        "concise_mode",
        "expansion_prompt",
    }


def test_query_returns_camel_case_contract():
    response = client.post("/v1/query", json={"userInput": "I have severe chest pain"})

    assert response.status_code == 200
    body = response.json()
    assert body["userInput"] == "I have severe chest pain"
    assert body["isHighRisk"] is True
    assert body["metadata"]["triageLevel"] == "emergency"
    assert body["disclaimers"]
    assert "user_input" not in body


def test_query_accepts_input_alias():
    response = client.post("/v1/query", json={"input": "I have a mild headache", "role": "doctor"})

    assert response.status_code == 200
    assert response.json()["metadata"]["triageLevel"] == "non_urgent"


def test_query_rejects_invalid_payload():
    assert client.post("/v1/query", json={"userInput": "hi", "demographics": {"age": 500}}).status_code == 422
    assert client.post("/v1/query", json={"userInput": 5}).status_code == 422


def test_stream_emits_final_response():
    response = client.post("/v1/query/stream", json={"userInput": "I have a mild headache"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    frames = parse_sse(response.text)
    names = [name for name, _ in frames]
    assert names[0] == "route.accepted"
    assert names[-1] == "route.final"
    final = frames[-1][1]
    assert final["response"]["metadata"]["triageLevel"] == "non_urgent"
    assert final["event"] == "route.final"


def test_safety_endpoint_blocks_crisis():
    response = client.post("/v1/safety", json={"userInput": "I want to kill myself", "region": "US"})

    assert response.status_code == 200
    body = response.json()
    assert body["should_block_ai"] is True
    assert body["requires_human_review"] is True
    assert body["fallback_response"]["type"] == "mental_health"
