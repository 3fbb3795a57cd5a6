from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from time import perf_counter
from typing import Any, Callable, TypeVar
from uuid import uuid4

from shared.schemas.domain import (
    ClarificationQuestion,
    Complexity,
    FreelancerProfile,
    OrchestratorResult,
    PriceBand,
    PriceCorrection,
    PricingContext,
    ProjectInfo,
    ProjectRules,
)

from .clarification import fallback_questions, generate_questions
from .context import (
    build_pricing_context,
    build_scope_summary,
    context_improvement_tips,
    format_context_block,
)
from .market import anchor_band, run_market, summarize_market
from .observability import RunObservability, StageMetric, StageResult
from .policy import StageSettings, load_stage_settings
from .pricing import FALLBACK_REASONING, fallback_pricing, reconcile_breakdown, run_pricing
from .providers.clients import CompletionClient, TextCompletion, make_completion_client
from .scope import fallback_scope_analysis, run_scope
from .verifier import bounded_price, run_verification
from .versioning import PROMPT_VERSION, context_fingerprint

logger = logging.getLogger(__name__)

T = TypeVar("T")

FALLBACK_RESULT_REASONING = "Request submitted for review. AI analysis unavailable - please review manually."
FALLBACK_TIPS = [
    "Add your location for market-specific pricing",
    "Set your specializations for accurate rate lookup",
    "Define the original contract price for proportionality checks",
]
AWAITING_ANSWERS_REASONING = "Waiting for the client to answer clarification questions before pricing."


class AnalysisState(str, Enum):
    AWAITING_ANSWERS = "awaiting_answers"
    RUNNING_PIPELINE = "running_pipeline"
    COMPLETED = "completed"
    DEGRADED_FALLBACK = "degraded_fallback"


@dataclass(frozen=True)
class AnalysisOutcome:
    state: AnalysisState
    result: OrchestratorResult
    questions: list[ClarificationQuestion] = field(default_factory=list)
    observability: RunObservability | None = None


@dataclass(frozen=True)
class PipelineRun:
    result: OrchestratorResult
    observability: RunObservability


def _widen(band: PriceBand | None, price: float) -> PriceBand:
    if band is None:
        return PriceBand(min=round(price * 0.85, 2), max=round(price * 1.25, 2))
    if band.contains(price):
        return band
    return PriceBand(min=round(min(band.min, price), 2), max=round(max(band.max, price), 2))


class PricingOrchestrator:
    """Runs clarification, or scope -> market -> pricing -> verification, against one completion client."""

    def __init__(self, client: TextCompletion | None = None, settings: StageSettings | None = None) -> None:
        self.settings = settings or load_stage_settings()
        self.client = client or make_completion_client(self.settings.provider, max_tokens=self.settings.max_output_tokens)

    def _client_for_run(self) -> TextCompletion:
        if isinstance(self.client, CompletionClient):
            return self.client.for_run()
        return self.client

    def clarify(
        self,
        request_text: str,
        rules: ProjectRules | None = None,
        context_notes: list[str] | None = None,
        project_info: ProjectInfo | None = None,
    ) -> list[ClarificationQuestion]:
        try:
            return generate_questions(
                self._client_for_run(),
                request_text,
                rules,
                context_notes,
                project_info,
                timeout_s=self.settings.timeout_for("clarification"),
            )
        except Exception:  # noqa: BLE001
            logger.exception("clarification failed unexpectedly; using fallback questions")
            return fallback_questions()

    def handle(
        self,
        request_text: str,
        answers: dict[str, str] | None = None,
        rules: ProjectRules | None = None,
        user: FreelancerProfile | None = None,
        context_notes: list[str] | None = None,
        past_corrections: list[PriceCorrection] | None = None,
        project_info: ProjectInfo | None = None,
    ) -> AnalysisOutcome:
        if not answers:
            questions = self.clarify(request_text, rules, context_notes, project_info)
            context = build_pricing_context(user, rules, context_notes, request_text)
            preliminary = OrchestratorResult(
                reasoning=AWAITING_ANSWERS_REASONING,
                scope_summary=request_text,
                confidence=0.0,
                pricing_context_used=context,
                clarification_questions=questions,
                improvement_tips=context_improvement_tips(context),
                prompt_version=PROMPT_VERSION,
            )
            return AnalysisOutcome(state=AnalysisState.AWAITING_ANSWERS, result=preliminary, questions=questions)

        logger.info("running pricing pipeline (%s)", AnalysisState.RUNNING_PIPELINE.value)
        run = self.run_pipeline(request_text, answers, rules, user, context_notes, past_corrections)
        state = AnalysisState.DEGRADED_FALLBACK if run.result.is_fallback else AnalysisState.COMPLETED
        return AnalysisOutcome(state=state, result=run.result, observability=run.observability)

    def analyze_full(
        self,
        request_text: str,
        answers: dict[str, str] | None = None,
        rules: ProjectRules | None = None,
        user: FreelancerProfile | None = None,
        context_notes: list[str] | None = None,
        past_corrections: list[PriceCorrection] | None = None,
    ) -> OrchestratorResult:
        return self.run_pipeline(request_text, answers, rules, user, context_notes, past_corrections).result

    def run_pipeline(
        self,
        request_text: str,
        answers: dict[str, str] | None = None,
        rules: ProjectRules | None = None,
        user: FreelancerProfile | None = None,
        context_notes: list[str] | None = None,
        past_corrections: list[PriceCorrection] | None = None,
    ) -> PipelineRun:
        observability = RunObservability(run_id=f"run_{uuid4().hex[:12]}")
        client = self._client_for_run()
        context: PricingContext | None = None
        try:
            context = build_pricing_context(user, rules, context_notes, request_text, answers)
            result = self._run_stages(client, context, rules, request_text, answers, past_corrections, observability)
        except Exception:  # noqa: BLE001
            logger.exception("pricing pipeline %s failed; returning fallback result", observability.run_id)
            observability.add_stage(StageMetric(name="pipeline", duration_ms=0, status="degraded", error_kind="internal"))
            result = self._fallback_result(request_text, answers, context)

        if isinstance(client, CompletionClient):
            observability.add_usage(client.usage_ledger)
        observability.finish()
        logger.info(
            "pricing run %s finished: price=%s fallback=%s degraded=%s est_cost_usd=%.4f",
            observability.run_id,
            result.suggested_price,
            result.is_fallback,
            ",".join(result.degraded_stages) or "none",
            observability.total_estimated_cost_usd,
        )
        return PipelineRun(result=result, observability=observability)

    def _timed(
        self,
        name: str,
        observability: RunObservability,
        stage: Callable[..., StageResult[T]],
        *args: Any,
        **kwargs: Any,
    ) -> StageResult[T]:
        started = perf_counter()
        outcome = stage(*args, timeout_s=self.settings.timeout_for(name), **kwargs)
        observability.add_stage(
            StageMetric(
                name=name,
                duration_ms=int((perf_counter() - started) * 1000),
                status="degraded" if outcome.degraded else "completed",
                error_kind=outcome.error_kind,
                detail=outcome.detail,
            )
        )
        return outcome

    def _run_stages(
        self,
        client: TextCompletion,
        context: PricingContext,
        rules: ProjectRules | None,
        request_text: str,
        answers: dict[str, str] | None,
        past_corrections: list[PriceCorrection] | None,
        observability: RunObservability,
    ) -> OrchestratorResult:
        block = format_context_block(context, rules)

        if self.settings.parallel_market:
            with ThreadPoolExecutor(max_workers=2) as executor:
                market_future = executor.submit(
                    self._timed, "market", observability, run_market, client, context, block, request_text, None
                )
                scope_stage = self._timed("scope", observability, run_scope, client, context, block, request_text, answers)
                market_stage = market_future.result()
        else:
            scope_stage = self._timed("scope", observability, run_scope, client, context, block, request_text, answers)
            market_stage = self._timed(
                "market",
                observability,
                run_market,
                client,
                context,
                block,
                request_text,
                scope_stage.value.overall_severity,
            )

        scope = scope_stage.value
        market = market_stage.value
        pricing_stage = self._timed(
            "pricing",
            observability,
            run_pricing,
            client,
            context,
            block,
            request_text,
            answers,
            scope,
            market,
            past_corrections,
            settings=self.settings,
        )
        pricing = pricing_stage.value
        verification_stage = self._timed(
            "verification",
            observability,
            run_verification,
            client,
            request_text,
            pricing,
            market,
            settings=self.settings,
        )
        verification = verification_stage.value

        adjustment = 0.0 if pricing.is_fallback else verification.adjustment_needed
        final_price = bounded_price(pricing, adjustment, anchor_band(market))
        breakdown = reconcile_breakdown(pricing, final_price, self.settings.breakdown_tolerance)
        if pricing.is_fallback or verification_stage.degraded:
            confidence = pricing.confidence
        else:
            confidence = verification.confidence_score / 100.0

        if pricing.is_fallback:
            reasoning = FALLBACK_RESULT_REASONING
        else:
            reasoning = pricing.reasoning or "Request analyzed for pricing."
        tips = list(dict.fromkeys([*verification.recommendations, *context_improvement_tips(context)]))

        return OrchestratorResult(
            reasoning=reasoning,
            scope_summary=build_scope_summary(request_text, answers),
            relevant_rules=[change.description for change in scope.changes if change.description],
            estimated_hours=pricing.estimated_hours,
            suggested_price=final_price,
            price_range=_widen(pricing.price_range, final_price),
            complexity=pricing.complexity,
            confidence=max(0.0, min(1.0, confidence)),
            price_breakdown=breakdown,
            scope_analysis=scope,
            pricing_context_used=context,
            market_research_summary=summarize_market(market),
            pricing_reasoning=pricing.reasoning or "Pricing based on scope analysis and market research.",
            improvement_tips=tips,
            profit_leaks=pricing.profit_leaks,
            clarification_answers=answers,
            market_research=market,
            verification=verification,
            degraded_stages=observability.degraded_stages,
            is_fallback=pricing.is_fallback,
            context_fingerprint=context_fingerprint(context),
            prompt_version=PROMPT_VERSION,
        )

    def _fallback_result(
        self,
        request_text: str,
        answers: dict[str, str] | None,
        context: PricingContext | None,
    ) -> OrchestratorResult:
        if context is None:
            context = build_pricing_context(None, None, None, request_text, answers)
        pricing = fallback_pricing(context, fallback_scope_analysis())
        return OrchestratorResult(
            reasoning=FALLBACK_RESULT_REASONING,
            scope_summary=request_text,
            relevant_rules=[],
            estimated_hours=pricing.estimated_hours,
            suggested_price=pricing.recommended_price,
            price_range=pricing.price_range,
            complexity=Complexity.MODERATE,
            confidence=pricing.confidence,
            price_breakdown=pricing.breakdown,
            pricing_context_used=context,
            pricing_reasoning=FALLBACK_REASONING,
            improvement_tips=list(FALLBACK_TIPS),
            clarification_answers=answers,
            degraded_stages=["pipeline"],
            is_fallback=True,
            context_fingerprint=context_fingerprint(context),
            prompt_version=PROMPT_VERSION,
        )
