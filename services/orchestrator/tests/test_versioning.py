from __future__ import annotations

from services.orchestrator.app.context import build_pricing_context
from services.orchestrator.app.versioning import PROMPT_VERSION, context_fingerprint
from shared.schemas.domain import FreelancerProfile, ProjectRules


def _context(rate: float = 100.0, answers=None):
    return build_pricing_context(
        FreelancerProfile(hourly_rate=rate, specializations=["react"]),
        ProjectRules(deliverables=["Landing page"]),
        ["Client prefers email"],
        "Add a pricing table",
        answers,
    )


def test_fingerprint_is_stable_for_equal_contexts() -> None:
    first = context_fingerprint(_context())
    second = context_fingerprint(_context())
    assert first == second
    assert len(first) == 64


def test_fingerprint_changes_with_inputs_and_prompt_version() -> None:
    base = context_fingerprint(_context())
    assert context_fingerprint(_context(rate=110.0)) != base
    assert context_fingerprint(_context(answers={"Which page?": "Pricing"})) != base
    assert context_fingerprint(_context(), prompt_version="pricing_prompts_v0.9") != base
    assert PROMPT_VERSION == "pricing_prompts_v1.0"
