from __future__ import annotations

import pytest
from pydantic import ValidationError

from shared.schemas.api import IntakeRequest, resolve_answer_keys
from shared.schemas.domain import ClarificationQuestion


def test_intake_request_accepts_camel_case_payload() -> None:
    request = IntakeRequest.model_validate(
        {
            "requestText": "Add a newsletter signup",
            "clientName": "Dana",
            "clientEmail": "dana@example.com",
            "clarificationAnswers": {"Which provider?": " Mailchimp "},
        }
    )
    assert request.request_text == "Add a newsletter signup"
    assert request.clarification_answers == {"Which provider?": "Mailchimp"}
    assert request.has_answers


def test_intake_request_requires_text() -> None:
    with pytest.raises(ValidationError):
        IntakeRequest(request_text="")


def test_blank_answers_mean_no_answers() -> None:
    request = IntakeRequest(request_text="Add a blog", clarification_answers={"When?": "   ", "Where?": ""})
    assert request.clarification_answers is None
    assert not request.has_answers
    assert not IntakeRequest(request_text="Add a blog").has_answers


def test_id_keyed_answers_are_rewritten_to_question_text() -> None:
    questions = [
        ClarificationQuestion(id="q1", question="Which pages?"),
        ClarificationQuestion(id="q2", question="When do you need it?"),
    ]
    request = IntakeRequest(
        request_text="Add a blog",
        clarification_answers={"q1": "Home", "When do you need it?": "Friday", "q9": "Extra"},
        questions=questions,
    )
    assert request.clarification_answers == {"Which pages?": "Home", "When do you need it?": "Friday", "q9": "Extra"}


def test_resolve_answer_keys_without_questions_keeps_keys() -> None:
    assert resolve_answer_keys({"q1": "Home"}, None) == {"q1": "Home"}
    assert resolve_answer_keys(None, None) is None
