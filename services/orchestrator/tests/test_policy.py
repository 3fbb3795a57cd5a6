from __future__ import annotations

import pytest

from services.orchestrator.app import policy
from services.orchestrator.app.policy import (
    StageSettings,
    estimate_generation_cost,
    load_stage_settings,
)


def test_stage_settings_defaults(monkeypatch) -> None:
    for name in ("SCOPEQUOTE_PROVIDER", "SCOPEQUOTE_MARKET_TIMEOUT_S", "SCOPEQUOTE_PARALLEL_MARKET"):
        monkeypatch.delenv(name, raising=False)
    settings = load_stage_settings()

    assert settings == StageSettings()
    assert settings.timeout_for("market") == 90.0
    assert settings.timeout_for("scope") == 45.0
    assert settings.timeout_for("unknown") == 45.0


def test_stage_settings_from_env(monkeypatch) -> None:
    monkeypatch.setenv("SCOPEQUOTE_PROVIDER", " Mock ")
    monkeypatch.setenv("SCOPEQUOTE_MARKET_TIMEOUT_S", "120")
    monkeypatch.setenv("SCOPEQUOTE_PRICING_TIMEOUT_S", "0.1")
    monkeypatch.setenv("SCOPEQUOTE_SCOPE_TIMEOUT_S", "soon")
    monkeypatch.setenv("SCOPEQUOTE_PARALLEL_MARKET", "yes")
    monkeypatch.setenv("SCOPEQUOTE_MAX_OUTPUT_TOKENS", "64")
    settings = load_stage_settings()

    assert settings.provider == "mock"
    assert settings.market_timeout_s == 120.0
    assert settings.pricing_timeout_s == 1.0
    assert settings.scope_timeout_s == 45.0
    assert settings.parallel_market is True
    assert settings.max_output_tokens == 256


def test_exact_pricing_for_known_models() -> None:
    assert estimate_generation_cost("OpenAI", "gpt-5.2", tokens_input=0, tokens_output=1_000_000) == pytest.approx(14.0)

    cost = estimate_generation_cost("anthropic", "claude-sonnet-4-5-20250929", tokens_input=1_000_000, tokens_output=0)
    assert cost == pytest.approx(3.0)
    cached = estimate_generation_cost(
        "anthropic", "claude-sonnet-4-5-20250929", tokens_input=1_000_000, tokens_output=0, tokens_input_cached=1_000_000
    )
    assert cached == pytest.approx(0.30)


def test_unknown_model_uses_flat_estimate() -> None:
    assert estimate_generation_cost("acme", "x", tokens_input=10, tokens_output=100) == pytest.approx(0.02)
    assert estimate_generation_cost("acme", "x", tokens_input=10, tokens_output=2400) == pytest.approx(0.06)


def test_env_pricing_overrides_defaults(monkeypatch) -> None:
    monkeypatch.setenv(
        "SCOPEQUOTE_MODEL_PRICING_JSON",
        '{"acme:x": {"input_cache_hit": 0.1, "input_cache_miss": 1.0, "output": 2.0}, "broken": {}}',
    )
    policy._load_env_model_pricing.cache_clear()
    try:
        assert estimate_generation_cost("acme", "x", tokens_input=0, tokens_output=1_000_000) == pytest.approx(2.0)
    finally:
        monkeypatch.delenv("SCOPEQUOTE_MODEL_PRICING_JSON")
        policy._load_env_model_pricing.cache_clear()
