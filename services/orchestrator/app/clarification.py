from __future__ import annotations

import logging
import re

from pydantic import ValidationError

from shared.schemas.domain import (
    ClarificationQuestion,
    ProjectInfo,
    ProjectRules,
    QuestionCategory,
    QuestionType,
)

from .context import format_number
from .extraction import ParseError, extract_json
from .providers.clients import CompletionError, TextCompletion

logger = logging.getLogger(__name__)

MIN_QUESTIONS = 3
MAX_QUESTIONS = 4
CONTRACT_EXCERPT_CHARS = 500

TIMELINE_OPTIONS = ["ASAP / Urgent", "This week", "This month", "Flexible / No rush"]

_KNOWN_FACT_PATTERN = re.compile(
    r"\b(revisions?|deliverables?|hourly\s+rate|your\s+rate|contract(?:ed|s)?)\b",
    flags=re.IGNORECASE,
)

CLARIFICATION_SYSTEM_PROMPT = """You are a specialized clarification agent for scope creep pricing. You identify gaps in the CLIENT'S NEW REQUEST and write targeted questions that help price it.

The freelancer has already supplied the project's deliverables, rates, revision allowance and contract terms. Never ask the client about any of those.

Ask only about the client's new request:
1. Scope and extent: what exactly is needed
2. Technical requirements or constraints
3. Timeline and urgency
4. Dependencies on specific parts of the existing work

Rules:
- Ask 3 or 4 questions, never more
- Be specific and offer options where they help
- Every question must change the price of THIS request

Respond with JSON only:
{
  "questions": [
    {
      "id": "q1",
      "question": "The question text",
      "helpText": "Optional help text",
      "type": "text" | "select" | "multiselect",
      "options": ["opt1", "opt2"],
      "priority": 1 | 2 | 3,
      "category": "location" | "scope" | "timeline" | "skills" | "budget" | "urgency" | "other"
    }
  ]
}"""


def fallback_questions() -> list[ClarificationQuestion]:
    return [
        ClarificationQuestion(
            id="q1",
            question="Can you describe in more detail what you need?",
            type=QuestionType.TEXT,
            priority=1,
            category=QuestionCategory.SCOPE,
        ),
        ClarificationQuestion(
            id="q2",
            question="What is your timeline for this request?",
            type=QuestionType.SELECT,
            options=list(TIMELINE_OPTIONS),
            priority=2,
            category=QuestionCategory.TIMELINE,
        ),
        ClarificationQuestion(
            id="q3",
            question="Is there anything else important about this request?",
            type=QuestionType.TEXT,
            priority=3,
            category=QuestionCategory.OTHER,
        ),
    ]


def build_clarification_prompt(
    request_text: str,
    rules: ProjectRules,
    context_notes: list[str],
    project_info: ProjectInfo | None = None,
) -> str:
    known: list[str] = ["## EXISTING PROJECT CONTEXT (already known, do not ask about these)", "", "### Project Overview"]
    if project_info and project_info.name:
        known.append(f"- Project Name: {project_info.name}")
    if project_info and project_info.description:
        known.append(f"- Project Description: {project_info.description}")
    if rules.project_type:
        known.append(f"- Project Type/Industry: {rules.project_type}")

    known.extend(["", "### Original Scope & Deliverables"])
    if rules.deliverables:
        known.append(f"- Contracted Deliverables: {', '.join(rules.deliverables)}")
    if rules.rules_summary:
        known.append(f"- Contract Summary: {rules.rules_summary}")
    if rules.contract_text:
        excerpt = rules.contract_text[:CONTRACT_EXCERPT_CHARS]
        suffix = "..." if len(rules.contract_text) > CONTRACT_EXCERPT_CHARS else ""
        known.append(f"- Original Contract: {excerpt}{suffix}")

    known.extend(["", "### Pricing Rules"])
    if rules.hourly_rate:
        known.append(f"- Hourly Rate: ${format_number(rules.hourly_rate)}/hr")
    if rules.original_contract_price:
        known.append(f"- Original Contract Value: ${format_number(rules.original_contract_price)}")
    if rules.revisions_included:
        known.append(f"- Revisions Included: {rules.revisions_included} ({rules.revisions_used or 0} used)")
    if rules.currency:
        known.append(f"- Currency: {rules.currency}")

    notes = [note for note in context_notes if note and note.strip()]
    if notes:
        known.extend(["", "### Additional Context Notes"])
        known.extend(f"- {note}" for note in notes)

    known.extend(
        [
            "",
            "## CLIENT'S NEW REQUEST (clarify THIS)",
            f'"{request_text}"',
            "",
            "Generate 3-4 clarifying questions to understand and price this specific request. "
            "Focus on what exactly they want, technical specifics, timeline and urgency.",
        ]
    )
    return "\n".join(known)


def asks_about_known_facts(question: ClarificationQuestion) -> bool:
    return bool(_KNOWN_FACT_PATTERN.search(question.question))


def parse_questions(raw: object) -> list[ClarificationQuestion]:
    if isinstance(raw, dict):
        raw = raw.get("questions")
    if not isinstance(raw, list):
        return []

    questions: list[ClarificationQuestion] = []
    seen_ids: set[str] = set()
    for index, item in enumerate(raw, start=1):
        if not isinstance(item, dict):
            continue
        payload = dict(item)
        if not str(payload.get("id") or "").strip():
            payload["id"] = f"q{index}"
        try:
            question = ClarificationQuestion.model_validate(payload)
        except ValidationError:
            continue
        if asks_about_known_facts(question):
            logger.info("dropping clarification question about known project facts: %s", question.question)
            continue
        if question.id in seen_ids:
            question.id = f"q{index}"
        seen_ids.add(question.id)
        questions.append(question)
    return questions[:MAX_QUESTIONS]


def generate_questions(
    client: TextCompletion,
    request_text: str,
    rules: ProjectRules | None,
    context_notes: list[str] | None,
    project_info: ProjectInfo | None = None,
    timeout_s: float | None = None,
) -> list[ClarificationQuestion]:
    """Return 3-4 questions for the client; the fixed fallback set on any failure."""
    prompt = build_clarification_prompt(request_text, rules or ProjectRules(), list(context_notes or []), project_info)
    try:
        text = client.complete(CLARIFICATION_SYSTEM_PROMPT, prompt, timeout_s=timeout_s)
    except CompletionError as exc:
        logger.warning("clarification stage degraded (%s): %s", exc.kind, exc)
        return fallback_questions()

    extracted = extract_json(text)
    if isinstance(extracted, ParseError):
        logger.warning("clarification stage degraded (parse): %s", extracted.reason)
        return fallback_questions()

    questions = parse_questions(extracted.value)
    if len(questions) < MIN_QUESTIONS:
        logger.warning("clarification stage degraded: only %d usable questions", len(questions))
        return fallback_questions()
    return questions
