from __future__ import annotations

from fastapi.testclient import TestClient

from services.orchestrator.app import main
from services.orchestrator.app.engine import PricingOrchestrator
from services.orchestrator.app.policy import StageSettings
from services.orchestrator.app.providers.clients import CompletionClient
from services.orchestrator.app.providers.mock import MockCompletionClient


def _mock_orchestrator() -> PricingOrchestrator:
    return PricingOrchestrator(CompletionClient(MockCompletionClient(), default_timeout_s=5.0), StageSettings(provider="mock"))


def test_health_reports_active_provider(monkeypatch) -> None:
    monkeypatch.setenv("SCOPEQUOTE_PROVIDER", "mock")
    body = TestClient(main.app).get("/health").json()

    assert body["status"] == "ok"
    assert body["provider"] == "mock"
    assert body["provider_configured"] is True
    assert body["model"] == "mock-pricing-v1"


def test_clarify_route_returns_camel_case_questions(monkeypatch) -> None:
    monkeypatch.setattr(main, "get_orchestrator", _mock_orchestrator)
    response = TestClient(main.app).post(
        "/v1/clarify",
        json={"requestText": "Add password reset functionality", "rules": {"hourlyRate": 125}},
    )

    assert response.status_code == 200
    questions = response.json()
    assert 3 <= len(questions) <= 4
    assert {"id", "question", "type", "priority", "category"} <= set(questions[0])


def test_analyze_route_runs_the_full_pipeline(monkeypatch) -> None:
    monkeypatch.setattr(main, "get_orchestrator", _mock_orchestrator)
    response = TestClient(main.app).post(
        "/v1/analyze",
        json={
            "requestText": "Add password reset functionality",
            "clarificationAnswers": {"When do you need this delivered?": "This month"},
            "user": {"hourlyRate": 100},
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["suggestedPrice"] == 640
    assert body["priceRange"]["min"] <= body["suggestedPrice"] <= body["priceRange"]["max"]
    assert body["scopeAnalysis"]["isOutOfScope"] is True
    assert body["promptVersion"] == "pricing_prompts_v1.0"
