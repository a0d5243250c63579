"""Tests for the HTTP interface."""

import pytest
from fastapi.testclient import TestClient

from deliberation.api import create_app
from deliberation.costs import CostController
from deliberation.council import DeliberationCouncil
from tests.conftest import MODELS

QUESTION = "Which sorting algorithm should I use for nearly sorted data?"


@pytest.fixture
def client(council):
    with TestClient(create_app(council)) as client:
        yield client


def test_blocking_deliberation(client):
    response = client.post(
        "/deliberations?wait=true",
        json={"question": QUESTION, "participants": MODELS[:3]},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "COMPLETE"
    assert body["result"]["chairmanModelId"] == MODELS[0]
    assert set(body["result"]["weights"]) == set(MODELS[:3])

    polled = client.get(f"/deliberations/{body['sessionId']}")
    assert polled.status_code == 200
    assert polled.json() == body


def test_submit_returns_accepted(client):
    response = client.post(
        "/deliberations",
        json={"question": QUESTION, "participants": MODELS[:3], "chairmanModelId": MODELS[2]},
    )

    assert response.status_code == 202
    body = response.json()
    assert body["state"] in {"COLLECTING", "ANONYMIZED", "REVIEWING", "AGGREGATED", "SYNTHESIZING", "COMPLETE"}
    assert "sessionId" in body


def test_failed_session_reports_reason(client, fake_backend):
    for model in MODELS[:3]:
        fake_backend.fail(model, "collection")

    response = client.post(
        "/deliberations?wait=true",
        json={"question": QUESTION, "participants": MODELS[:4]},
    )

    body = response.json()
    assert body["state"] == "FAILED"
    assert body["failureReason"] == "INSUFFICIENT_QUORUM"
    assert "result" not in body


@pytest.mark.parametrize("payload", [
    {"question": QUESTION, "participants": MODELS[:2]},
    {"question": QUESTION, "participants": [MODELS[0], MODELS[0], MODELS[1]]},
    {"question": "  ", "participants": MODELS[:3]},
    {"participants": MODELS[:3]},
])
def test_invalid_requests_are_422(client, payload):
    assert client.post("/deliberations", json=payload).status_code == 422


def test_unknown_session_is_404(client):
    assert client.get("/deliberations/does-not-exist").status_code == 404


def test_over_budget_is_402(config, model_manager):
    council = DeliberationCouncil(config, model_manager, cost_controller=CostController(per_session=0.0000001))
    with TestClient(create_app(council)) as client:
        response = client.post(
            "/deliberations",
            json={"question": QUESTION, "participants": ["openai/gpt-4o", "openai/gpt-4-turbo", "mistralai/mistral-large"]},
        )
    assert response.status_code == 402
    assert response.json()["estimatedCost"] > 0


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "backends": {"fake": True}, "activeSessions": 0}


def test_models(client):
    response = client.get("/models")
    assert response.status_code == 200
    assert response.json()["fake"] == sorted(MODELS)


def test_stats_after_a_session(client):
    client.post("/deliberations?wait=true", json={"question": QUESTION, "participants": MODELS[:3]})

    stats = client.get("/stats").json()
    assert stats["total_members"] == 3
    calls = {m["name"]: m["total_calls"] for m in stats["members"]}
    # Collection and review for everyone, plus one synthesis.
    assert calls[MODELS[0]] == 3
    assert calls[MODELS[1]] == 2
