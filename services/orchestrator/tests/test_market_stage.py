from __future__ import annotations

from conftest import MARKET

from services.orchestrator.app.context import build_pricing_context, format_context_block
from services.orchestrator.app.market import (
    NO_LIVE_DATA_INSIGHT,
    anchor_band,
    build_market_prompt,
    parse_price_range,
    run_market,
    summarize_market,
)
from services.orchestrator.app.providers.clients import TransportError
from shared.schemas.domain import (
    ConfidenceLevel,
    FreelancerProfile,
    MarketPriceRange,
    MarketResearchResult,
    PriceBand,
    ResearchMode,
    Severity,
)

_RANGE = {"standalone": {"min": 800, "max": 1200}, "asAddOn": {"min": 500, "max": 750}}


def _run(client, severity=Severity.MODERATE):
    context = build_pricing_context(FreelancerProfile(specializations=["django"]), None, None, "Add SSO")
    return run_market(client, context, format_context_block(context, None), "Add SSO", severity)


def test_market_stage_requests_research_and_keeps_bands(scripted_client) -> None:
    client = scripted_client({MARKET: {"marketPriceRange": _RANGE, "isLikelyAddOn": True, "confidence": "HIGH"}})
    stage = _run(client)

    assert client.calls[0]["research_enabled"] is True
    assert not stage.degraded
    assert stage.value.research_mode == ResearchMode.LIVE
    assert stage.value.confidence == ConfidenceLevel.HIGH
    assert anchor_band(stage.value) == PriceBand(min=500, max=750)


def test_offline_research_is_recorded(scripted_client) -> None:
    client = scripted_client({MARKET: {"marketPriceRange": _RANGE}})
    client.last_research_fallback = True
    assert _run(client).value.research_mode == ResearchMode.OFFLINE


def test_invalid_range_is_dropped_without_degrading(scripted_client) -> None:
    client = scripted_client(
        {MARKET: {"marketPriceRange": {"standalone": {"min": "n/a", "max": "unknown"}}, "marketInsights": "Rates vary"}}
    )
    stage = _run(client)

    assert not stage.degraded
    assert stage.value.market_price_range is None
    assert stage.value.market_insights == ["Rates vary"]
    assert anchor_band(stage.value) is None


def test_cited_research_reply_keeps_the_anchor_band(scripted_client) -> None:
    reply = (
        "Based on rates from Upwork [1] and Clutch [2], here is the estimate:\n"
        '{"marketPriceRange": {"standalone": {"min": 800, "max": 1200}, "asAddOn": {"min": 500, "max": 750}}, '
        '"isLikelyAddOn": true, "confidence": "medium"}\n'
        "Sources: [1] upwork.com [2] clutch.co"
    )
    stage = _run(scripted_client({MARKET: reply}))

    assert not stage.degraded
    assert anchor_band(stage.value) == PriceBand(min=500, max=750)


def test_failure_returns_low_confidence_result(scripted_client) -> None:
    stage = _run(scripted_client({MARKET: TransportError("timed out", provider="p", model="m")}))

    assert stage.degraded
    assert stage.error_kind == "transport"
    assert stage.value.market_price_range is None
    assert stage.value.confidence == ConfidenceLevel.LOW
    assert stage.value.market_insights == [NO_LIVE_DATA_INSIGHT]
    assert stage.value.research_mode == ResearchMode.UNAVAILABLE


def test_anchor_band_selection() -> None:
    price_range = parse_price_range(_RANGE)
    assert anchor_band(MarketResearchResult(market_price_range=price_range, is_likely_add_on=True)).max == 750
    assert anchor_band(MarketResearchResult(market_price_range=price_range, is_likely_add_on=False)).max == 1200
    standalone_only = MarketPriceRange(standalone=PriceBand(min=100, max=200))
    assert anchor_band(MarketResearchResult(market_price_range=standalone_only, is_likely_add_on=True)).max == 200
    assert anchor_band(MarketResearchResult()) is None
    assert anchor_band(None) is None


def test_parse_price_range_edge_cases() -> None:
    assert parse_price_range(None) is None
    assert parse_price_range({"asAddOn": {"min": 1, "max": 2}}) is None
    reversed_band = parse_price_range({"standalone": {"min": "$1,200", "max": "$800"}, "asAddOn": "cheap"})
    assert reversed_band.standalone == PriceBand(min=800, max=1200)
    assert reversed_band.as_add_on is None


def test_prompt_omits_severity_when_unknown() -> None:
    context = build_pricing_context(None, None, None, "Add SSO")
    block = format_context_block(context, None)
    assert "Scope Change Severity" not in build_market_prompt(context, block, "Add SSO", None)
    assert "- Scope Change Severity: major" in build_market_prompt(context, block, "Add SSO", Severity.MAJOR)
    assert "- Skills: general" in build_market_prompt(context, block, "Add SSO", None)


def test_summary_joins_insights() -> None:
    assert summarize_market(MarketResearchResult(market_insights=["A.", "B"])) == "A. B."
    assert summarize_market(MarketResearchResult()) == "Standard market rates applied."
