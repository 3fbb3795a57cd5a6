from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from shared.schemas.domain import (
    ConfidenceLevel,
    MarketPriceRange,
    MarketResearchResult,
    PriceBand,
    PricingContext,
    ResearchMode,
    Severity,
)

from .extraction import ParseError, extract_object
from .observability import StageResult
from .providers.clients import CompletionError, TextCompletion

logger = logging.getLogger(__name__)

NO_LIVE_DATA_INSIGHT = "Live market data was unavailable; pricing relies on the freelancer's rate and standard markups."

MARKET_SYSTEM_PROMPT = """You are a market research agent for scope creep pricing. Find what this kind of work currently costs.

Research:
1. Labor rates for the relevant skills in the relevant location
2. Industry standard markups for scope changes (typically 10-25%)
3. Regional cost multipliers
4. Benchmarks for similar work, both as a standalone project and as an add-on to an existing engagement

Add-on work usually prices below a standalone engagement because discovery and setup are already paid for. Set isLikelyAddOn when the request extends work already in progress.

Respond with JSON only:
{
  "marketPriceRange": {
    "standalone": {"min": number, "max": number},
    "asAddOn": {"min": number, "max": number}
  },
  "isLikelyAddOn": true,
  "marketInsights": ["insight1", "insight2"],
  "confidence": "high|medium|low",
  "locationMultiplier": 1.0,
  "scopeChangeMarkup": {"industryStandard": "15-25%", "recommended": 15}
}"""


def fallback_market_research() -> MarketResearchResult:
    return MarketResearchResult(
        market_price_range=None,
        is_likely_add_on=False,
        market_insights=[NO_LIVE_DATA_INSIGHT],
        confidence=ConfidenceLevel.LOW,
        research_mode=ResearchMode.UNAVAILABLE,
    )


def anchor_band(result: MarketResearchResult | None) -> PriceBand | None:
    """The band the price is held to: the add-on band for likely add-ons, else standalone."""
    if result is None or result.market_price_range is None:
        return None
    price_range = result.market_price_range
    if result.is_likely_add_on and price_range.as_add_on is not None:
        return price_range.as_add_on
    return price_range.standalone


def _band(raw: Any) -> PriceBand | None:
    if not isinstance(raw, dict):
        return None
    try:
        return PriceBand.model_validate(raw)
    except ValidationError:
        return None


def parse_price_range(raw: Any) -> MarketPriceRange | None:
    if not isinstance(raw, dict):
        return None
    standalone = _band(raw.get("standalone"))
    if standalone is None:
        return None
    return MarketPriceRange(standalone=standalone, as_add_on=_band(raw.get("asAddOn") or raw.get("as_add_on")))


def build_market_prompt(
    context: PricingContext,
    context_block: str,
    request_text: str,
    scope_severity: Severity | None,
) -> str:
    skills = ", ".join(context.freelancer.specializations) or "general"
    location = context.freelancer.location or context.project.client_location or "USA"
    lines = [
        context_block,
        "",
        "## Research Target",
        f"- Skills: {skills}",
        f"- Location: {location}",
        f"- Project Type: {context.project.project_type or 'general'}",
        f"- Currency: {context.project.currency}",
    ]
    if scope_severity is not None:
        lines.append(f"- Scope Change Severity: {scope_severity.value}")
    lines.extend(
        [
            "",
            f'Request description: "{request_text}"',
            "",
            "Search for current rates for this work as a standalone project and as an add-on, "
            "plus scope change markup standards.",
        ]
    )
    return "\n".join(lines)


def run_market(
    client: TextCompletion,
    context: PricingContext,
    context_block: str,
    request_text: str,
    scope_severity: Severity | None,
    timeout_s: float | None = None,
) -> StageResult[MarketResearchResult]:
    prompt = build_market_prompt(context, context_block, request_text, scope_severity)
    try:
        text = client.complete(MARKET_SYSTEM_PROMPT, prompt, research_enabled=True, timeout_s=timeout_s)
    except CompletionError as exc:
        logger.warning("market stage degraded (%s): %s", exc.kind, exc)
        return StageResult.fallback(fallback_market_research(), exc.kind, str(exc))

    extracted = extract_object(text)
    if isinstance(extracted, ParseError):
        logger.warning("market stage degraded (parse): %s", extracted.reason)
        return StageResult.fallback(fallback_market_research(), "parse", extracted.reason)

    payload = dict(extracted.value)
    raw_range = payload.pop("marketPriceRange", None)
    payload.pop("market_price_range", None)
    try:
        result = MarketResearchResult.model_validate(payload)
    except ValidationError as exc:
        logger.warning("market stage degraded (validation): %s", exc.error_count())
        return StageResult.fallback(fallback_market_research(), "validation", str(exc)[:500])

    result.market_price_range = parse_price_range(raw_range)
    if raw_range is not None and result.market_price_range is None:
        logger.warning("market stage returned an unusable price range; continuing without an anchor band")
    offline = bool(getattr(client, "last_research_fallback", False))
    result.research_mode = ResearchMode.OFFLINE if offline else ResearchMode.LIVE
    return StageResult(result)


def research_market(
    client: TextCompletion,
    context: PricingContext,
    context_block: str,
    request_text: str,
    scope_severity: Severity | None,
    timeout_s: float | None = None,
) -> MarketResearchResult:
    return run_market(client, context, context_block, request_text, scope_severity, timeout_s=timeout_s).value


def summarize_market(result: MarketResearchResult) -> str:
    if result.market_insights:
        return ". ".join(insight.rstrip(".") for insight in result.market_insights) + "."
    return "Standard market rates applied."
