from __future__ import annotations

import pytest
from conftest import CLARIFY, MARKET, PRICING, SCOPE, VERIFY

from services.orchestrator.app.engine import (
    FALLBACK_RESULT_REASONING,
    FALLBACK_TIPS,
    AnalysisState,
    PricingOrchestrator,
)
from services.orchestrator.app.policy import StageSettings
from services.orchestrator.app.providers.clients import CompletionClient
from services.orchestrator.app.providers.mock import MockCompletionClient
from shared.schemas.domain import (
    FreelancerProfile,
    PriceBand,
    PriceCorrection,
    ProjectRules,
    ScopeVerdict,
)

_ANSWERS = {"Which screens?": "Login page only", "When?": "This week"}


def _user(rate: float = 100.0) -> FreelancerProfile:
    return FreelancerProfile(hourly_rate=rate, location="Denver, CO", specializations=["python"])


def test_total_provider_failure_returns_formula_price(scripted_client) -> None:
    orchestrator = PricingOrchestrator(scripted_client(), StageSettings(provider="scripted"))
    result = orchestrator.analyze_full("Add password reset functionality", _ANSWERS, ProjectRules(), _user())

    assert result.suggested_price == 540
    assert result.price_range == PriceBand(min=459, max=675)
    assert result.confidence == 0.5
    assert result.is_fallback
    assert result.reasoning == FALLBACK_RESULT_REASONING
    assert result.degraded_stages == ["scope", "market", "pricing", "verification"]
    assert result.scope_analysis.verdict == ScopeVerdict.BOUNDARY_CASE
    assert result.verification.approved_for_client is False


def test_add_on_request_is_priced_inside_add_on_band(scripted_client, addon_script) -> None:
    client = scripted_client(addon_script)
    run = PricingOrchestrator(client, StageSettings()).run_pipeline(
        "Add password reset functionality", _ANSWERS, ProjectRules(deliverables=["Marketing site"]), _user()
    )
    result = run.result

    assert 500 <= result.suggested_price <= 750
    assert result.suggested_price == 640
    assert result.price_range.contains(result.suggested_price)
    assert result.confidence == pytest.approx(0.85)
    assert result.scope_analysis.is_out_of_scope is True
    assert result.relevant_rules == ["Password reset flow"]
    assert result.improvement_tips[0] == "Confirm the email provider"
    assert result.degraded_stages == []
    assert not result.is_fallback
    assert [metric.name for metric in run.observability.stage_metrics] == ["scope", "market", "pricing", "verification"]
    assert [call["marker"] for call in client.calls] == [SCOPE, MARKET, PRICING, VERIFY]
    assert [call["timeout_s"] for call in client.calls] == [45.0, 90.0, 45.0, 45.0]


def test_verifier_cannot_move_a_consistent_price(scripted_client, addon_script) -> None:
    addon_script[VERIFY] = {"overallStatus": "passed", "confidenceScore": 80, "adjustmentNeeded": 120}
    result = PricingOrchestrator(scripted_client(addon_script), StageSettings()).analyze_full(
        "Add password reset functionality", _ANSWERS, None, _user()
    )
    assert result.suggested_price == 640
    assert result.verification.adjustment_needed == 0


def test_breakdown_mismatch_is_reconciled_without_moving_price(scripted_client, addon_script) -> None:
    addon_script[PRICING] = dict(addon_script[PRICING], recommendedPrice=740)
    addon_script[VERIFY] = {"overallStatus": "failed", "confidenceScore": 60, "adjustmentNeeded": 111}
    result = PricingOrchestrator(scripted_client(addon_script), StageSettings()).analyze_full(
        "Add password reset functionality", _ANSWERS, None, _user()
    )

    assert result.suggested_price == 740
    assert result.verification.adjustment_needed == 0
    assert result.price_breakdown.total == pytest.approx(740, abs=0.05)
    assert result.price_range.contains(740)
    assert result.price_range == PriceBand(min=560, max=740)


def test_verification_failure_keeps_pricing_confidence(scripted_client, addon_script) -> None:
    del addon_script[VERIFY]
    result = PricingOrchestrator(scripted_client(addon_script), StageSettings()).analyze_full(
        "Add password reset functionality", _ANSWERS, None, _user()
    )
    assert result.confidence == pytest.approx(0.7)
    assert result.degraded_stages == ["verification"]
    assert not result.is_fallback


def test_unexpected_error_returns_fallback_result(scripted_client) -> None:
    client = scripted_client({SCOPE: RuntimeError("boom")})
    result = PricingOrchestrator(client, StageSettings()).analyze_full("Add a blog", _ANSWERS, None, _user())

    assert result.suggested_price == 540
    assert result.reasoning == FALLBACK_RESULT_REASONING
    assert result.improvement_tips == FALLBACK_TIPS
    assert result.degraded_stages == ["pipeline"]
    assert result.is_fallback


def test_parallel_market_runs_without_severity(scripted_client, addon_script) -> None:
    sequential = scripted_client(addon_script)
    PricingOrchestrator(sequential, StageSettings()).analyze_full("Add SSO", _ANSWERS, None, _user())
    parallel = scripted_client(addon_script)
    result = PricingOrchestrator(parallel, StageSettings(parallel_market=True)).analyze_full(
        "Add SSO", _ANSWERS, None, _user()
    )

    assert "- Scope Change Severity: moderate" in sequential.prompts_for(MARKET)[0]
    assert "Scope Change Severity" not in parallel.prompts_for(MARKET)[0]
    assert result.suggested_price == 640
    assert sorted(call["marker"] for call in parallel.calls) == sorted([SCOPE, MARKET, PRICING, VERIFY])


def test_past_corrections_reach_the_pricing_prompt(scripted_client, addon_script) -> None:
    client = scripted_client(addon_script)
    corrections = [PriceCorrection(request_text="Add 2FA", ai_price=400, corrected_price=600)]
    PricingOrchestrator(client, StageSettings()).analyze_full("Add SSO", _ANSWERS, None, _user(), None, corrections)
    assert '"Add 2FA": suggested $400, freelancer charged $600' in client.prompts_for(PRICING)[0]


def test_handle_moves_through_states(scripted_client, addon_script) -> None:
    addon_script[CLARIFY] = {
        "questions": [
            {"question": "Email or SMS?", "type": "select", "options": ["Email", "SMS"]},
            {"question": "How long should links stay valid?"},
            {"question": "Any branding for the reset email?"},
        ]
    }
    orchestrator = PricingOrchestrator(scripted_client(addon_script), StageSettings())

    waiting = orchestrator.handle("Add password reset functionality", None, None, _user())
    assert waiting.state == AnalysisState.AWAITING_ANSWERS
    assert len(waiting.questions) == 3
    assert waiting.result.confidence == 0.0
    assert waiting.result.suggested_price is None
    assert waiting.result.clarification_questions == waiting.questions

    done = orchestrator.handle("Add password reset functionality", _ANSWERS, None, _user())
    assert done.state == AnalysisState.COMPLETED
    assert done.observability is not None

    degraded = PricingOrchestrator(scripted_client(), StageSettings()).handle("Add a blog", _ANSWERS, None, _user())
    assert degraded.state == AnalysisState.DEGRADED_FALLBACK


def test_identical_inputs_share_a_context_fingerprint(scripted_client, addon_script) -> None:
    orchestrator = PricingOrchestrator(scripted_client(addon_script), StageSettings())
    first = orchestrator.analyze_full("Add SSO", _ANSWERS, ProjectRules(hourly_rate=90), _user())
    second = orchestrator.analyze_full("Add SSO", _ANSWERS, ProjectRules(hourly_rate=90), _user())
    other = orchestrator.analyze_full("Add SSO", _ANSWERS, ProjectRules(hourly_rate=95), _user())

    assert first.context_fingerprint == second.context_fingerprint
    assert first.context_fingerprint != other.context_fingerprint
    assert first.prompt_version == "pricing_prompts_v1.0"


def test_mock_provider_end_to_end() -> None:
    provider = MockCompletionClient()
    orchestrator = PricingOrchestrator(CompletionClient(provider, default_timeout_s=5.0), StageSettings(provider="mock"))

    questions = orchestrator.clarify("Add password reset functionality", ProjectRules(hourly_rate=125))
    run = orchestrator.run_pipeline("Add password reset functionality", _ANSWERS, ProjectRules(hourly_rate=125), None)

    assert 3 <= len(questions) <= 4
    assert run.result.suggested_price == 640
    assert run.result.confidence == pytest.approx(0.88)
    assert run.result.market_research.research_mode.value == "live"
    assert run.observability.generations == 4
    assert run.observability.failed_generations == 0
    assert run.observability.tokens_input > 0
    assert run.observability.total_estimated_cost_usd == 0.0
    assert ("market research agent", True) in provider.calls


def test_default_client_uses_configured_output_tokens() -> None:
    orchestrator = PricingOrchestrator(settings=StageSettings(provider="mock", max_output_tokens=512))

    assert isinstance(orchestrator.client, CompletionClient)
    assert orchestrator.client.max_tokens == 512
    assert orchestrator.client.for_run().max_tokens == 512
