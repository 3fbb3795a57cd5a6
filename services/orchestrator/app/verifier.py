from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pydantic import ValidationError

from shared.schemas.domain import (
    MarketResearchResult,
    PriceBand,
    PricingResult,
    VerificationResult,
    VerificationStatus,
)

from .context import format_number
from .extraction import ParseError, extract_object
from .market import anchor_band
from .observability import StageResult
from .policy import StageSettings
from .providers.clients import CompletionError, TextCompletion

logger = logging.getLogger(__name__)

VERIFICATION_SYSTEM_PROMPT = """You are a verification agent. Validate a scope change price for accuracy and defensibility.

Checks:
1. Mathematical accuracy: the breakdown and buffer add up to the price
2. Market alignment: the price is within 20% of the market band
3. Price leaks: costs that were missed
4. Reasonableness: the price is proportional to the change
5. Defensibility: the price can be justified to the client

Only propose a non-zero adjustmentNeeded (a dollar amount added to the price, negative to reduce it) when the price is clearly outside the market band. A breakdown that does not add up is corrected without changing the price. Otherwise use 0.

Respond with JSON only:
{
  "overallStatus": "passed|passed_with_warnings|failed",
  "confidenceScore": 0-100,
  "issues": ["..."],
  "recommendations": ["..."],
  "approvedForClient": true,
  "adjustmentNeeded": 0
}"""


@dataclass(frozen=True)
class DeterministicFindings:
    breakdown_issues: list[str] = field(default_factory=list)
    band_issues: list[str] = field(default_factory=list)

    @property
    def issues(self) -> list[str]:
        return [*self.breakdown_issues, *self.band_issues]

    @property
    def has_errors(self) -> bool:
        return bool(self.breakdown_issues or self.band_issues)

    @property
    def price_out_of_band(self) -> bool:
        return bool(self.band_issues)


def run_deterministic_checks(
    pricing: PricingResult,
    market: MarketResearchResult | None,
    settings: StageSettings,
) -> DeterministicFindings:
    findings = DeterministicFindings()
    price = pricing.recommended_price
    breakdown_total = pricing.breakdown.total
    if breakdown_total > 0:
        expected = breakdown_total + pricing.profit_leaks.buffer_added
        if abs(expected - price) > settings.breakdown_tolerance * price:
            findings.breakdown_issues.append(
                f"Breakdown plus buffer (${format_number(round(expected, 2))}) differs from the recommended "
                f"price (${format_number(price)}) by more than {settings.breakdown_tolerance * 100:.0f}%"
            )

    band = anchor_band(market)
    if band is not None and not band.contains(price, settings.band_tolerance):
        findings.band_issues.append(
            f"Recommended price ${format_number(price)} is more than {settings.band_tolerance * 100:.0f}% outside "
            f"the market band ${format_number(band.min)} - ${format_number(band.max)}"
        )
    return findings


def fallback_verification(pricing: PricingResult, findings: DeterministicFindings) -> VerificationResult:
    return VerificationResult(
        overall_status=VerificationStatus.PASSED_WITH_WARNINGS,
        confidence_score=pricing.confidence * 100.0,
        issues=list(findings.issues),
        recommendations=[],
        approved_for_client=False,
        adjustment_needed=0.0,
    )


def bounded_price(pricing: PricingResult, adjustment: float, band: PriceBand | None) -> float:
    """Apply an adjustment without carrying the price further outside the band than pricing left it."""
    price = pricing.recommended_price
    final = round(price + adjustment, 2)
    if band is not None:
        final = max(min(band.min, price), min(max(band.max, price), final))
    return final if final > 0 else price


def gate_adjustment(
    proposed: float,
    pricing: PricingResult,
    findings: DeterministicFindings,
    settings: StageSettings,
    band: PriceBand | None = None,
) -> float:
    """Keep the model's adjustment only for an out-of-band price, capped to a fraction of the price.

    A breakdown that does not add up is reconciled by rescaling the breakdown, never by moving the price.
    """
    if not findings.price_out_of_band or not proposed:
        return 0.0
    cap = settings.max_adjustment_fraction * pricing.recommended_price
    capped = max(-cap, min(cap, proposed))
    return round(bounded_price(pricing, capped, band) - pricing.recommended_price, 2)


def build_verification_prompt(
    request_text: str,
    pricing: PricingResult,
    market: MarketResearchResult | None,
    findings: DeterministicFindings,
) -> str:
    breakdown = pricing.breakdown
    lines = [
        f'## Request\n"{request_text}"',
        "",
        "## Calculated Pricing",
        f"- Recommended Price: ${format_number(pricing.recommended_price)}",
    ]
    if pricing.price_range is not None:
        lines.append(
            f"- Price Range: ${format_number(pricing.price_range.min)} - ${format_number(pricing.price_range.max)}"
        )
    lines.extend(
        [
            f"- Estimated Hours: {pricing.estimated_hours}",
            f"- Hourly Rate: ${format_number(pricing.hourly_rate or 0)}",
            f"- Complexity: {pricing.complexity.value}",
            f"- Breakdown: labor ${format_number(breakdown.labor_cost)}, overhead ${format_number(breakdown.overhead)}, "
            f"profit ${format_number(breakdown.profit)}, risk ${format_number(breakdown.risk_premium)}, "
            f"scope ${format_number(breakdown.scope_premium)}",
            f"- Profit-leak Buffer: ${format_number(pricing.profit_leaks.buffer_added)}",
        ]
    )
    if market is not None:
        lines.extend(
            [
                "",
                "## Market Data",
                f"- Location Multiplier: {market.location_multiplier}",
                f"- Scope Change Markup: {format_number(market.scope_change_markup)}%",
            ]
        )
        band = anchor_band(market)
        if band is not None:
            lines.append(f"- Anchor Band: ${format_number(band.min)} - ${format_number(band.max)}")

    lines.extend(["", "## Automated Checks"])
    if findings.issues:
        lines.extend(f"- {issue}" for issue in findings.issues)
    else:
        lines.append("- Arithmetic and market band checks passed")
    lines.extend(["", "Verify reasonableness, market alignment and defensibility."])
    return "\n".join(lines)


def run_verification(
    client: TextCompletion,
    request_text: str,
    pricing: PricingResult,
    market: MarketResearchResult | None,
    settings: StageSettings | None = None,
    timeout_s: float | None = None,
) -> StageResult[VerificationResult]:
    settings = settings or StageSettings()
    findings = run_deterministic_checks(pricing, market, settings)
    for issue in findings.issues:
        logger.info("deterministic verification issue: %s", issue)

    prompt = build_verification_prompt(request_text, pricing, market, findings)
    try:
        text = client.complete(VERIFICATION_SYSTEM_PROMPT, prompt, timeout_s=timeout_s)
    except CompletionError as exc:
        logger.warning("verification stage degraded (%s): %s", exc.kind, exc)
        return StageResult.fallback(fallback_verification(pricing, findings), exc.kind, str(exc))

    extracted = extract_object(text)
    if isinstance(extracted, ParseError):
        logger.warning("verification stage degraded (parse): %s", extracted.reason)
        return StageResult.fallback(fallback_verification(pricing, findings), "parse", extracted.reason)

    try:
        opinion = VerificationResult.model_validate(extracted.value)
    except ValidationError as exc:
        logger.warning("verification stage degraded (validation): %s", exc.error_count())
        return StageResult.fallback(fallback_verification(pricing, findings), "validation", str(exc)[:500])

    proposed = opinion.adjustment_needed
    opinion.adjustment_needed = gate_adjustment(proposed, pricing, findings, settings, anchor_band(market))
    if proposed and opinion.adjustment_needed != proposed:
        logger.info("verification adjustment %.2f reduced to %.2f", proposed, opinion.adjustment_needed)
    opinion.issues = list(dict.fromkeys([*findings.issues, *opinion.issues]))
    if findings.has_errors and opinion.overall_status == VerificationStatus.PASSED:
        opinion.overall_status = VerificationStatus.PASSED_WITH_WARNINGS
    return StageResult(opinion)


def verify_pricing(
    client: TextCompletion,
    request_text: str,
    pricing: PricingResult,
    market: MarketResearchResult | None,
    settings: StageSettings | None = None,
    timeout_s: float | None = None,
) -> VerificationResult:
    return run_verification(client, request_text, pricing, market, settings=settings, timeout_s=timeout_s).value
