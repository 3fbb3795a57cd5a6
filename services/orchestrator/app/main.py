from __future__ import annotations

import logging
import os
from functools import lru_cache

from fastapi import FastAPI

from shared.schemas.api import AnalyzeFullRequest, ClarifyRequest
from shared.schemas.domain import ClarificationQuestion, OrchestratorResult

from .engine import PricingOrchestrator
from .policy import load_stage_settings
from .providers.registry import build_default_registry

logging.basicConfig(
    level=os.getenv("SCOPEQUOTE_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="ScopeQuote Orchestrator Service", version="0.1.0")


@lru_cache(maxsize=1)
def get_orchestrator() -> PricingOrchestrator:
    return PricingOrchestrator(settings=load_stage_settings())


@app.get("/health")
def health() -> dict[str, object]:
    settings = load_stage_settings()
    registry = build_default_registry()
    active = registry.status_for(settings.provider)
    return {
        "status": "ok",
        "service": "orchestrator",
        "provider": settings.provider,
        "provider_configured": active.configured,
        "model": active.model,
        "research_supported": active.supports_research,
        "configured_providers": registry.configured_providers(),
    }


@app.post("/v1/clarify", response_model=list[ClarificationQuestion], response_model_by_alias=True)
def clarify(request: ClarifyRequest) -> list[ClarificationQuestion]:
    return get_orchestrator().clarify(
        request.request_text,
        rules=request.rules,
        context_notes=request.context_notes,
        project_info=request.project_info,
    )


@app.post("/v1/analyze", response_model=OrchestratorResult, response_model_by_alias=True)
def analyze(request: AnalyzeFullRequest) -> OrchestratorResult:
    return get_orchestrator().analyze_full(
        request.request_text,
        answers=request.clarification_answers,
        rules=request.rules,
        user=request.user,
        context_notes=request.context_notes,
        past_corrections=request.past_corrections,
    )
