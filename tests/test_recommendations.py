import json

import httpx

from cds_backend import config, recommendations


def _payload():
    return {
        "patientId": "p1",
        "patientData": {
            "vitals": [],
            "labs": [{"resource": {"code": {"text": "Potassium"}, "valueQuantity": {"value": 6.1, "unit": "mmol/L"}}}],
            "conditions": [],
            "medications": [],
            "diagnosticReports": [],
        },
    }


def test_build_prompt_embeds_patient_data():
    prompt = recommendations.build_prompt("## Laboratory Results:\n- Potassium: 6.1 mmol/L\n")

    assert prompt.startswith("You are a clinical decision support assistant.")
    assert "Out of range values:" in prompt
    assert "Recommended actions:" in prompt
    assert "None clearly out of range based on provided data." in prompt
    assert prompt.endswith("Patient data:\n## Laboratory Results:\n- Potassium: 6.1 mmol/L\n")


def test_requires_authentication(client, fhir_server):
    response = client.post("/api/ai/recommendations", json=_payload())

    assert response.status_code == 401
    assert fhir_server.requests == []


def test_no_data_skips_llm(client, session, fhir_server):
    response = client.post("/api/ai/recommendations", json={"patientId": "p1", "patientData": {}})

    assert response.status_code == 200
    assert response.json() == {"recommendations": recommendations.NO_DATA_MESSAGE}
    assert fhir_server.requests == []


def test_recommendations_from_llm(client, session, fhir_server, monkeypatch):
    monkeypatch.setattr(config, "PPLX_API_KEY", "pplx-key")
    answer = "Out of range values:\n- Potassium high\n\nRecommended actions:\n- Repeat BMP"
    fhir_server.handler = lambda request: httpx.Response(
        200, json={"choices": [{"message": {"role": "assistant", "content": answer}}]}
    )

    response = client.post("/api/ai/recommendations", json=_payload())

    assert response.status_code == 200
    assert response.json() == {"recommendations": answer}

    request = fhir_server.requests[0]
    body = json.loads(request.content)
    assert str(request.url) == config.PPLX_API_URL
    assert request.headers["Authorization"] == "Bearer pplx-key"
    assert body["model"] == config.PPLX_MODEL
    assert body["temperature"] == config.PPLX_TEMPERATURE
    assert body["max_tokens"] == config.PPLX_MAX_TOKENS
    assert body["messages"][0]["role"] == "user"
    assert "- Potassium: 6.1 mmol/L" in body["messages"][0]["content"]


def test_missing_api_key(client, session, fhir_server, monkeypatch):
    monkeypatch.setattr(config, "PPLX_API_KEY", None)

    response = client.post("/api/ai/recommendations", json=_payload())

    assert response.status_code == 500
    assert response.json()["error"] == "LLM API key not configured"
    assert fhir_server.requests == []


def test_invalid_api_key(client, session, fhir_server, monkeypatch):
    monkeypatch.setattr(config, "PPLX_API_KEY", "bad")
    fhir_server.handler = lambda request: httpx.Response(401, json={"error": "unauthorized"})

    response = client.post("/api/ai/recommendations", json=_payload())

    assert response.status_code == 500
    assert response.json()["error"] == "Invalid LLM API key"


def test_quota_exceeded(client, session, fhir_server, monkeypatch):
    monkeypatch.setattr(config, "PPLX_API_KEY", "key")
    fhir_server.handler = lambda request: httpx.Response(429, json={"error": "rate limited"})

    response = client.post("/api/ai/recommendations", json=_payload())

    assert response.status_code == 500
    assert response.json() == {"error": "LLM API quota exceeded", "details": {"error": "rate limited"}}


def test_upstream_failure_details(client, session, fhir_server, monkeypatch):
    monkeypatch.setattr(config, "PPLX_API_KEY", "key")
    fhir_server.handler = lambda request: httpx.Response(503, text="unavailable")

    response = client.post("/api/ai/recommendations", json=_payload())

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to generate recommendations", "details": "unavailable"}
