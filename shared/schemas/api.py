from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import Field, model_validator

from .domain import (
    ClarificationQuestion,
    FreelancerProfile,
    OrchestratorResult,
    PriceCorrection,
    ProjectInfo,
    ProjectRules,
    RequestStatus,
    WireModel,
)


def resolve_answer_keys(
    answers: dict[str, str] | None,
    questions: list[ClarificationQuestion] | None,
) -> dict[str, str] | None:
    """Answers stay keyed by question text; id keys are rewritten when the questions are known."""
    if not answers:
        return answers
    text_by_id = {question.id: question.question for question in questions or []}
    resolved: dict[str, str] = {}
    for key, value in answers.items():
        resolved[text_by_id.get(key, key)] = value
    return resolved


class IntakeRequest(WireModel):
    request_text: str = Field(min_length=1)
    client_name: str | None = None
    client_email: str | None = None
    clarification_answers: dict[str, str] | None = None
    questions: list[ClarificationQuestion] | None = None

    @model_validator(mode="after")
    def normalize_answer_keys(self) -> "IntakeRequest":
        answers = {
            key: str(value).strip()
            for key, value in (self.clarification_answers or {}).items()
            if str(value).strip()
        }
        self.clarification_answers = resolve_answer_keys(answers, self.questions) or None
        return self

    @property
    def has_answers(self) -> bool:
        return bool(self.clarification_answers)


class ClarificationResponse(WireModel):
    status: Literal["awaiting_answers"] = "awaiting_answers"
    analysis: OrchestratorResult
    questions: list[ClarificationQuestion]


class IntakeAcceptedResponse(WireModel):
    request_id: str
    status: RequestStatus = RequestStatus.ANALYZING
    created_at: datetime
    poll_url: str
    analysis: OrchestratorResult


class ClarifyRequest(WireModel):
    request_text: str = Field(min_length=1)
    rules: ProjectRules = Field(default_factory=ProjectRules)
    context_notes: list[str] = Field(default_factory=list)
    project_info: ProjectInfo | None = None


class AnalyzeFullRequest(WireModel):
    request_text: str = Field(min_length=1)
    clarification_answers: dict[str, str] | None = None
    rules: ProjectRules = Field(default_factory=ProjectRules)
    user: FreelancerProfile = Field(default_factory=FreelancerProfile)
    context_notes: list[str] = Field(default_factory=list)
    past_corrections: list[PriceCorrection] = Field(default_factory=list, max_length=10)

