from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from shared.schemas.domain import (
    CostBreakdown,
    MarketResearchResult,
    PriceBand,
    PriceCorrection,
    PricingContext,
    PricingResult,
    ProfitLeaks,
    ScopeAnalysis,
)

from .context import effective_hourly_rate, format_answers, format_number, format_percent
from .extraction import ParseError, extract_object
from .market import anchor_band
from .observability import StageResult
from .policy import StageSettings
from .providers.clients import CompletionError, TextCompletion
from .scope import complexity_for_severity

logger = logging.getLogger(__name__)

FALLBACK_HOURS = 4.0
FALLBACK_MULTIPLIER = 1.35
FALLBACK_CONFIDENCE = 0.5
RANGE_LOW_FACTOR = 0.85
RANGE_HIGH_FACTOR = 1.25
FALLBACK_REASONING = "Fallback pricing - manual review recommended."

LEAK_KEYWORDS: dict[str, tuple[str, ...]] = {
    "travel": ("travel", "on-site", "onsite", "site visit", "commute", "mileage", "drive to"),
    "disposal": ("disposal", "dispose", "haul away", "debris", "dumpster", "waste removal", "junk removal"),
    "permits": ("permit", "inspection", "code compliance"),
    "rework": ("rework", "redo", "re-do", "start over", "rebuild", "fix the previous", "undo"),
    "coordination": ("coordinate", "coordination", "meeting", "stakeholder", "third-party", "third party", "vendor", "contractor"),
    "admin": ("administrative", "admin time", "paperwork", "filing", "approval process", "sign-off"),
}

PRICING_SYSTEM_PROMPT = """You are a pricing calculator agent. Compute an accurate, defensible price for a scope change.

## Core formula
TOTAL = (Direct Costs + Indirect Costs) x (1 + Risk Premium) x (1 + Scope Change Premium) x Location Multiplier

## Components
- Direct labor: hours x hourly rate
- Overhead: the freelancer's overhead percentage of direct costs
- Profit: the freelancer's profit margin
- Risk premium: 5-20% based on complexity
- Scope change premium: 10-25% for disruption

## Profit leaks
Check for costs that are easy to forget: travel, disposal, permits, rework, coordination and admin time. List any you find and add a buffer for them.

## Output requirements
- Give a recommended price AND a min/max range containing it
- When a market anchor band is given, price near its midpoint. Never price at or near the band minimum
- The breakdown plus any buffer must add up to the recommended price

Respond with JSON only:
{
  "recommendedPrice": number,
  "priceRange": {"min": number, "max": number},
  "estimatedHours": number,
  "hourlyRate": number,
  "complexity": "simple|moderate|complex",
  "breakdown": {"laborCost": number, "overhead": number, "profit": number, "riskPremium": number, "scopePremium": number},
  "profitLeaks": {"identified": ["..."], "bufferAdded": number, "bufferReason": "..."},
  "confidence": 0.0,
  "reasoning": "Brief explanation"
}"""


def _cents(value: float) -> float:
    return round(float(value), 2)


def relevant_corrections(corrections: list[PriceCorrection] | None, limit: int = 10) -> list[PriceCorrection]:
    usable = [item for item in corrections or [] if abs(item.ai_price - item.corrected_price) > 1]
    return usable[:limit]


def average_adjustment_ratio(corrections: list[PriceCorrection]) -> float | None:
    ratios = [item.corrected_price / item.ai_price for item in corrections if item.ai_price > 0]
    if not ratios:
        return None
    return sum(ratios) / len(ratios)


def detect_leak_categories(request_text: str, answers: dict[str, str] | None) -> list[str]:
    haystack = " ".join([request_text, *((answers or {}).values())]).lower()
    return [category for category, keywords in LEAK_KEYWORDS.items() if any(word in haystack for word in keywords)]


def fallback_pricing(
    context: PricingContext,
    scope: ScopeAnalysis | None,
    leaks: list[str] | None = None,
) -> PricingResult:
    rate = effective_hourly_rate(context)
    price = _cents(rate * FALLBACK_HOURS * FALLBACK_MULTIPLIER)
    labor = _cents(rate * FALLBACK_HOURS)
    overhead = _cents(min(labor * context.freelancer.overhead, price - labor))
    return PricingResult(
        recommended_price=price,
        price_range=PriceBand(min=_cents(price * RANGE_LOW_FACTOR), max=_cents(price * RANGE_HIGH_FACTOR)),
        estimated_hours=FALLBACK_HOURS,
        hourly_rate=rate,
        complexity=complexity_for_severity(scope.overall_severity if scope else None),
        breakdown=CostBreakdown(labor_cost=labor, overhead=overhead, profit=_cents(price - labor - overhead)),
        profit_leaks=ProfitLeaks(identified=list(leaks or [])),
        confidence=FALLBACK_CONFIDENCE,
        reasoning=FALLBACK_REASONING,
        is_fallback=True,
    )


def build_pricing_prompt(
    context: PricingContext,
    context_block: str,
    request_text: str,
    answers: dict[str, str] | None,
    scope: ScopeAnalysis,
    market: MarketResearchResult,
    corrections: list[PriceCorrection],
) -> str:
    rate = effective_hourly_rate(context)
    band = anchor_band(market)
    lines = [
        context_block,
        "",
        f'## Request\n"{request_text}"',
        "",
        f"## Clarification Answers\n{format_answers(answers)}",
        "",
        "## Scope Analysis",
        f"- Verdict: {scope.verdict.value}",
        f"- Severity: {scope.overall_severity.value}",
        f"- Complexity: {complexity_for_severity(scope.overall_severity).value}",
        f"- Effort Multiplier: {scope.effort_multiplier}",
    ]
    for change in scope.changes:
        lines.append(f"- {change.id} {change.classification.value}: {change.description}")

    lines.extend(
        [
            "",
            "## Market Research",
            f"- Location Multiplier: {market.location_multiplier}",
            f"- Scope Change Markup: {format_number(market.scope_change_markup)}%",
            f"- Market Insights: {'; '.join(market.market_insights) or 'Standard market rates'}",
            f"- Research Confidence: {market.confidence.value}",
        ]
    )
    if band is not None:
        kind = "add-on" if market.is_likely_add_on and band is market.market_price_range.as_add_on else "standalone"
        lines.append(
            f"- Anchor Band ({kind}): ${format_number(band.min)} - ${format_number(band.max)}. "
            f"Price near the band midpoint (${format_number(band.midpoint)}), never at its minimum."
        )

    lines.extend(
        [
            "",
            "## Freelancer's Rate",
            f"- Hourly Rate: ${format_number(rate)}/hr",
            f"- Overhead: {format_percent(context.freelancer.overhead)}",
            f"- Profit Margin: {format_percent(context.freelancer.profit_margin)}",
        ]
    )

    if corrections:
        lines.extend(["", "## Past Price Corrections By The Freelancer"])
        for item in corrections:
            reason = f" ({item.reason})" if item.reason else ""
            lines.append(
                f'- "{item.request_text}": suggested ${format_number(item.ai_price)}, '
                f"freelancer charged ${format_number(item.corrected_price)}{reason}"
            )
        ratio = average_adjustment_ratio(corrections)
        if ratio is not None:
            lines.append(f"- Average adjustment: the freelancer charges {ratio:.2f}x the suggested price")

    lines.extend(["", "Calculate the recommended price for this scope change."])
    return "\n".join(lines)


def _range_payload(raw: Any) -> Any:
    if isinstance(raw, dict) and "min" not in raw and "low" in raw:
        return {"min": raw.get("low"), "max": raw.get("high")}
    return raw


def _parse_band(raw: Any) -> PriceBand | None:
    raw = _range_payload(raw)
    if not isinstance(raw, dict):
        return None
    try:
        return PriceBand.model_validate(raw)
    except ValidationError:
        return None


def audit_profit_leaks(
    result: PricingResult,
    request_text: str,
    answers: dict[str, str] | None,
    settings: StageSettings,
) -> None:
    detected = detect_leak_categories(request_text, answers)
    if not detected:
        return
    leaks = result.profit_leaks
    mentioned = " ".join(leaks.identified).lower()
    missed = [
        category
        for category in detected
        if category.rstrip("s") not in mentioned and not any(word in mentioned for word in LEAK_KEYWORDS[category])
    ]
    for category in missed:
        leaks.identified.append(f"{category}: mentioned in the request but not priced")

    if leaks.buffer_added > 0:
        return
    fraction = min(settings.leak_buffer_per_category * len(detected), settings.leak_buffer_cap)
    buffer = _cents(result.recommended_price * fraction)
    if buffer <= 0:
        return
    leaks.buffer_added = buffer
    leaks.buffer_reason = f"{format_percent(fraction)} buffer for {', '.join(detected)} costs"
    result.recommended_price = _cents(result.recommended_price + buffer)
    result.adjustments.append(f"added ${format_number(buffer)} profit-leak buffer ({', '.join(detected)})")


def _scaled_breakdown(breakdown: CostBreakdown, target: float) -> CostBreakdown:
    current = breakdown.total
    if current <= 0 or target <= 0:
        return breakdown
    factor = target / current
    return CostBreakdown(
        labor_cost=_cents(breakdown.labor_cost * factor),
        overhead=_cents(breakdown.overhead * factor),
        profit=_cents(breakdown.profit * factor),
        risk_premium=_cents(breakdown.risk_premium * factor),
        scope_premium=_cents(breakdown.scope_premium * factor),
    )


def _rebalance_breakdown(result: PricingResult) -> None:
    """Scale the breakdown so breakdown plus buffer still equals the price after a clamp."""
    result.breakdown = _scaled_breakdown(result.breakdown, result.recommended_price - result.profit_leaks.buffer_added)


def reconcile_breakdown(result: PricingResult, price: float, tolerance: float) -> CostBreakdown:
    """The breakdown to report for ``price``; rescaled only when it misses by more than ``tolerance``."""
    buffer = result.profit_leaks.buffer_added
    expected = result.breakdown.total + buffer
    if result.breakdown.total <= 0 or abs(expected - price) <= tolerance * price:
        return result.breakdown
    return _scaled_breakdown(result.breakdown, price - buffer)


def apply_anchor_band(result: PricingResult, band: PriceBand | None, lowball_fraction: float = 0.25) -> None:
    """Move the pre-buffer price into the band: lowballs go to the midpoint, overshoots to the maximum."""
    if band is None:
        return
    buffer = result.profit_leaks.buffer_added
    base = _cents(result.recommended_price - buffer)
    lowball_ceiling = band.min + lowball_fraction * (band.max - band.min)
    if base <= lowball_ceiling and base < band.midpoint:
        target = _cents(band.midpoint)
        note = f"raised ${format_number(base)} to band midpoint ${format_number(target)}"
    elif base > band.max:
        target = _cents(band.max)
        note = f"capped ${format_number(base)} at band maximum ${format_number(target)}"
    else:
        return
    result.recommended_price = _cents(target + buffer)
    result.adjustments.append(note)
    _rebalance_breakdown(result)


def enforce_price_range(result: PricingResult) -> None:
    price = result.recommended_price
    if result.price_range is None:
        result.price_range = PriceBand(min=_cents(price * RANGE_LOW_FACTOR), max=_cents(price * RANGE_HIGH_FACTOR))
        result.adjustments.append("derived price range from recommended price")
        return
    if not result.price_range.contains(price):
        result.price_range = PriceBand(
            min=_cents(min(result.price_range.min, price)),
            max=_cents(max(result.price_range.max, price)),
        )
        result.adjustments.append("widened price range to contain recommended price")


def run_pricing(
    client: TextCompletion,
    context: PricingContext,
    context_block: str,
    request_text: str,
    answers: dict[str, str] | None,
    scope: ScopeAnalysis,
    market: MarketResearchResult,
    past_corrections: list[PriceCorrection] | None = None,
    settings: StageSettings | None = None,
    timeout_s: float | None = None,
) -> StageResult[PricingResult]:
    settings = settings or StageSettings()
    corrections = relevant_corrections(past_corrections, settings.max_past_corrections)
    prompt = build_pricing_prompt(context, context_block, request_text, answers, scope, market, corrections)

    def _fallback(kind: str, detail: str) -> StageResult[PricingResult]:
        return StageResult.fallback(
            fallback_pricing(context, scope, detect_leak_categories(request_text, answers)), kind, detail
        )

    try:
        text = client.complete(PRICING_SYSTEM_PROMPT, prompt, timeout_s=timeout_s)
    except CompletionError as exc:
        logger.warning("pricing stage degraded (%s): %s", exc.kind, exc)
        return _fallback(exc.kind, str(exc))

    extracted = extract_object(text)
    if isinstance(extracted, ParseError):
        logger.warning("pricing stage degraded (parse): %s", extracted.reason)
        return _fallback("parse", extracted.reason)

    payload = dict(extracted.value)
    raw_range = payload.pop("priceRange", payload.pop("price_range", None))
    if "complexity" not in payload:
        payload["complexity"] = complexity_for_severity(scope.overall_severity).value
    payload.pop("isFallback", None)
    payload.pop("adjustments", None)
    try:
        result = PricingResult.model_validate(payload)
    except ValidationError as exc:
        logger.warning("pricing stage degraded (validation): %s", exc.error_count())
        return _fallback("validation", str(exc)[:500])

    result.price_range = _parse_band(raw_range)
    if result.hourly_rate is None or result.hourly_rate <= 0:
        result.hourly_rate = effective_hourly_rate(context)
    if result.estimated_hours is None or result.estimated_hours <= 0:
        result.estimated_hours = round(result.recommended_price / result.hourly_rate, 1)
    result.recommended_price = _cents(result.recommended_price)

    apply_anchor_band(result, anchor_band(market), settings.lowball_band_fraction)
    audit_profit_leaks(result, request_text, answers, settings)
    enforce_price_range(result)
    for note in result.adjustments:
        logger.info("pricing adjustment: %s", note)
    return StageResult(result)


def price_request(
    client: TextCompletion,
    context: PricingContext,
    context_block: str,
    request_text: str,
    answers: dict[str, str] | None,
    scope: ScopeAnalysis,
    market: MarketResearchResult,
    past_corrections: list[PriceCorrection] | None = None,
    settings: StageSettings | None = None,
    timeout_s: float | None = None,
) -> PricingResult:
    return run_pricing(
        client,
        context,
        context_block,
        request_text,
        answers,
        scope,
        market,
        past_corrections,
        settings=settings,
        timeout_s=timeout_s,
    ).value
