from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from shared.schemas.domain import (
    Complexity,
    PricingContext,
    RecommendedAction,
    ScopeAnalysis,
    ScopeVerdict,
    Severity,
)

from .context import format_answers
from .extraction import ParseError, extract_object
from .observability import StageResult
from .providers.clients import CompletionError, TextCompletion

logger = logging.getLogger(__name__)

SCOPE_SYSTEM_PROMPT = """You are a specialized scope change detection agent. Compare the client's request against the original project scope and decide whether it is covered.

## Verdicts
- IN_SCOPE: already covered by the agreed deliverables
- OUT_OF_SCOPE: new or expanded work that needs a change order
- BOUNDARY_CASE: reasonable people could disagree
- CLARIFICATION_ONLY: the client is asking about existing work, not requesting new work

## Change classifications
- ADDITION: completely new work
- MODIFICATION: change to an existing requirement
- EXPANSION: more of the same type of work
- CLARIFICATION: an ambiguous requirement now specified
- REDUCTION: removal of original scope

Rate each change with directImpact (1-5), rippleEffect (1-5) and riskLevel (low|medium|high).

Respond with JSON only:
{
  "verdict": "IN_SCOPE|OUT_OF_SCOPE|BOUNDARY_CASE|CLARIFICATION_ONLY",
  "verdictReasoning": "Why",
  "contractAlignment": {"matchingDeliverables": [], "conflictingClauses": [], "grayAreas": []},
  "changes": [
    {
      "id": "SC-001",
      "description": "Description",
      "classification": "ADDITION|MODIFICATION|EXPANSION|CLARIFICATION|REDUCTION",
      "originalRequirement": "optional",
      "newRequirement": "What is now asked",
      "directImpact": 1,
      "rippleEffect": 1,
      "riskLevel": "low|medium|high",
      "affectedDeliverables": [],
      "dependencies": [],
      "scopeJustification": "optional"
    }
  ],
  "overallSeverity": "minor|moderate|significant|major",
  "effortMultiplier": 1.0,
  "isOutOfScope": true,
  "recommendedAction": "approve_free|price_as_change_order|negotiate|decline"
}"""

_SEVERITY_COMPLEXITY = {
    Severity.MINOR: Complexity.SIMPLE,
    Severity.MODERATE: Complexity.MODERATE,
    Severity.SIGNIFICANT: Complexity.COMPLEX,
    Severity.MAJOR: Complexity.COMPLEX,
}


def complexity_for_severity(severity: Severity | str | None) -> Complexity:
    try:
        return _SEVERITY_COMPLEXITY[Severity(severity)]
    except ValueError:
        return Complexity.SIMPLE


def fallback_scope_analysis() -> ScopeAnalysis:
    return ScopeAnalysis(
        verdict=ScopeVerdict.BOUNDARY_CASE,
        verdict_reasoning="Scope analysis unavailable; treated as a boundary case for manual review.",
        overall_severity=Severity.MODERATE,
        effort_multiplier=1.0,
        recommended_action=RecommendedAction.NEGOTIATE,
    )


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1", "y"}
    if isinstance(value, (int, float)):
        return value != 0
    return False


def normalize_scope_payload(data: dict) -> tuple[dict, list[str]]:
    """Infer a missing verdict from the model's boolean, or a missing boolean from the verdict."""
    payload = dict(data)
    warnings: list[str] = []
    raw_flag = payload.pop("isOutOfScope", payload.pop("is_out_of_scope", None))
    flag = None if raw_flag is None else _truthy(raw_flag)
    raw_verdict = str(payload.get("verdict") or "").strip().upper().replace(" ", "_").replace("-", "_")
    if raw_verdict not in ScopeVerdict.__members__:
        inferred = ScopeVerdict.OUT_OF_SCOPE if flag else ScopeVerdict.BOUNDARY_CASE
        warnings.append(f"verdict missing or unrecognized ({raw_verdict or 'none'}); inferred {inferred.value}")
        payload["verdict"] = raw_verdict = inferred.value
    payload["isOutOfScope"] = flag if flag is not None else raw_verdict == ScopeVerdict.OUT_OF_SCOPE.value
    return payload, warnings


def build_scope_prompt(context_block: str, request_text: str, answers: dict[str, str] | None) -> str:
    return (
        f"{context_block}\n\n"
        f'## Client Request\n"{request_text}"\n\n'
        f"## Clarification Answers\n{format_answers(answers)}\n\n"
        "Decide the verdict, classify each change and assess its impact."
    )


def run_scope(
    client: TextCompletion,
    context: PricingContext,
    context_block: str,
    request_text: str,
    answers: dict[str, str] | None,
    timeout_s: float | None = None,
) -> StageResult[ScopeAnalysis]:
    prompt = build_scope_prompt(context_block, request_text, answers)
    try:
        text = client.complete(SCOPE_SYSTEM_PROMPT, prompt, timeout_s=timeout_s)
    except CompletionError as exc:
        logger.warning("scope stage degraded (%s): %s", exc.kind, exc)
        return StageResult.fallback(fallback_scope_analysis(), exc.kind, str(exc))

    extracted = extract_object(text)
    if isinstance(extracted, ParseError):
        logger.warning("scope stage degraded (parse): %s", extracted.reason)
        return StageResult.fallback(fallback_scope_analysis(), "parse", extracted.reason)

    payload, inferred_warnings = normalize_scope_payload(extracted.value)
    try:
        analysis = ScopeAnalysis.model_validate(payload)
    except ValidationError as exc:
        logger.warning("scope stage degraded (validation): %s", exc.error_count())
        return StageResult.fallback(fallback_scope_analysis(), "validation", str(exc)[:500])

    analysis.integrity_warnings[:0] = inferred_warnings
    for warning in analysis.integrity_warnings:
        logger.warning("scope integrity warning: %s", warning)
    return StageResult(analysis)


def classify_scope(
    client: TextCompletion,
    context: PricingContext,
    context_block: str,
    request_text: str,
    answers: dict[str, str] | None,
    timeout_s: float | None = None,
) -> ScopeAnalysis:
    return run_scope(client, context, context_block, request_text, answers, timeout_s=timeout_s).value
