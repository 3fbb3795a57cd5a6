from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from functools import lru_cache

from fastapi import FastAPI, HTTPException, Response

from shared.schemas.api import (
    ClarificationResponse,
    IntakeAcceptedResponse,
    IntakeRequest,
)
from shared.schemas.domain import (
    ChangeRequest,
    OrchestratorResult,
    ProjectInfo,
    ProjectRecord,
    RequestStatus,
)

from services.orchestrator.app.engine import PricingOrchestrator
from services.orchestrator.app.policy import load_stage_settings

from .state import AnalysisDispatcher, make_request_id, request_store

logging.basicConfig(
    level=os.getenv("SCOPEQUOTE_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

SUBMITTED_REASONING = "Your request has been submitted! The freelancer will review it shortly."
CLARIFY_REASONING = (
    "This request has been submitted for review. Please answer the clarification questions below "
    "to help the freelancer understand your needs and provide an accurate quote."
)

app = FastAPI(title="ScopeQuote API Gateway", version="0.1.0")


@lru_cache(maxsize=1)
def get_orchestrator() -> PricingOrchestrator:
    return PricingOrchestrator(settings=load_stage_settings())


dispatcher = AnalysisDispatcher(request_store, get_orchestrator)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok", "service": "api_gateway"}


@app.put("/v1/projects/{slug}", response_model=ProjectRecord, response_model_by_alias=True)
def upsert_project(slug: str, project: ProjectRecord) -> ProjectRecord:
    if project.slug != slug:
        raise HTTPException(status_code=400, detail="slug in path and body must match")
    request_store.upsert_project(project)
    return project


@app.post(
    "/v1/projects/{slug}/requests",
    response_model=ClarificationResponse | IntakeAcceptedResponse,
    response_model_by_alias=True,
)
def submit_request(slug: str, request: IntakeRequest, response: Response) -> ClarificationResponse | IntakeAcceptedResponse:
    project = request_store.get_project_by_slug(slug)
    if project is None:
        raise HTTPException(status_code=404, detail="project not found")
    if not project.is_active:
        raise HTTPException(status_code=400, detail="this project is not accepting requests")

    if not request.has_answers:
        outcome = get_orchestrator().handle(
            request.request_text,
            rules=project.rules,
            user=project.freelancer,
            context_notes=project.context_notes,
            project_info=ProjectInfo(name=project.name, description=project.description),
        )
        analysis = outcome.result.model_copy(update={"reasoning": CLARIFY_REASONING})
        return ClarificationResponse(analysis=analysis, questions=outcome.questions)

    now = datetime.now(timezone.utc)
    change_request = ChangeRequest(
        request_id=make_request_id(),
        project_id=project.project_id,
        client_name=request.client_name,
        client_email=request.client_email,
        request_text=request.request_text,
        status=RequestStatus.ANALYZING,
        created_at=now,
        updated_at=now,
    )
    dispatcher.dispatch(change_request, project, request.clarification_answers)
    logger.info("accepted request %s for project %s", change_request.request_id, project.slug)
    response.status_code = 202
    return IntakeAcceptedResponse(
        request_id=change_request.request_id,
        status=RequestStatus.ANALYZING,
        created_at=now,
        poll_url=f"/v1/requests/{change_request.request_id}",
        analysis=OrchestratorResult(
            reasoning=SUBMITTED_REASONING,
            scope_summary=request.request_text,
            confidence=1.0,
            clarification_answers=request.clarification_answers,
        ),
    )


@app.get("/v1/requests/{request_id}", response_model=ChangeRequest, response_model_by_alias=True)
def get_request(request_id: str) -> ChangeRequest:
    change_request = request_store.get_request(request_id)
    if change_request is None:
        raise HTTPException(status_code=404, detail="request not found")
    return change_request
