from __future__ import annotations

import pytest
from pydantic import ValidationError

from services.orchestrator.app.context import (
    NO_ANSWERS_TEXT,
    build_pricing_context,
    build_scope_summary,
    context_improvement_tips,
    effective_hourly_rate,
    format_answers,
    format_context_block,
)
from shared.schemas.domain import CustomRule, FreelancerProfile, ProjectRules


def _rules() -> ProjectRules:
    return ProjectRules(
        hourly_rate=125,
        currency="USD",
        deliverables=["Landing page", "Blog"],
        revisions_included=3,
        revisions_used=2,
        custom_rules=[CustomRule(rule="Rush fee", description="25% for under 48h")],
        rules_summary="Two deliverables, fixed price",
        project_type="web design",
        original_contract_price="$4,000",
    )


def test_defaults_are_applied_for_missing_profile() -> None:
    context = build_pricing_context(None, None, None, "Add a contact form")
    assert context.freelancer.overhead == 0.20
    assert context.freelancer.profit_margin == 0.15
    assert context.freelancer.positioning == "mid-market"
    assert context.project.currency == "USD"
    assert context.request.urgency == "normal"
    assert context.request.clarification_answers is None


@pytest.mark.parametrize(("raw", "expected"), [("20%", 0.20), (20, 0.20), ("0.3", 0.30), (0.25, 0.25)])
def test_percentages_become_fractions(raw, expected) -> None:
    profile = FreelancerProfile(overhead=raw, profitMargin=raw)
    assert profile.overhead == pytest.approx(expected)

    context = build_pricing_context(profile, None, None, "Add a contact form")
    assert context.freelancer.profit_margin == pytest.approx(expected)
    assert "Overhead: " in format_context_block(context, None)


def test_context_is_idempotent_and_frozen() -> None:
    user = FreelancerProfile(location="Austin, TX", specializations=["react"], hourly_rate=110)
    answers = {"When do you need this?": "This week"}
    first = build_pricing_context(user, _rules(), ["Client prefers email"], "Add a blog", answers)
    second = build_pricing_context(user, _rules(), ["Client prefers email"], "Add a blog", answers)

    assert first.model_dump_json(by_alias=True) == second.model_dump_json(by_alias=True)
    assert format_context_block(first, _rules()) == format_context_block(second, _rules())
    with pytest.raises(ValidationError):
        first.freelancer.hourly_rate = 1


def test_context_block_sections() -> None:
    context = build_pricing_context(
        FreelancerProfile(location="Austin, TX", specializations=["react", "node"]),
        _rules(),
        ["Client is a nonprofit"],
        "Add a blog",
    )
    block = format_context_block(context, _rules())
    assert block.startswith("## Freelancer Profile")
    assert "- Specializations: react, node" in block
    assert "- Overhead: 20%" in block
    assert "- Original Contract Price: $4000" in block
    assert "- Deliverables: Landing page, Blog" in block
    assert "- Hourly Rate: USD 125/hr" in block
    assert "- Revisions: 1 of 3 remaining" in block
    assert "  - Rush fee: 25% for under 48h" in block
    assert "## Additional Context\n- Client is a nonprofit" in block


def test_answers_and_scope_summary_formatting() -> None:
    answers = {"Which pages?": "Home and About", "When?": "This month"}
    assert format_answers(answers) == "Q: Which pages?\nA: Home and About\n\nQ: When?\nA: This month"
    assert format_answers(None) == NO_ANSWERS_TEXT
    summary = build_scope_summary("Add a banner", answers)
    assert summary.startswith('Based on the request: "Add a banner"')
    assert "• Home and About" in summary
    assert build_scope_summary("Add a banner", None) == "Add a banner"


def test_effective_rate_prefers_freelancer_then_project_then_default() -> None:
    with_both = build_pricing_context(FreelancerProfile(hourly_rate=90), ProjectRules(hourly_rate=120), [], "x")
    project_only = build_pricing_context(None, ProjectRules(hourly_rate=120), [], "x")
    neither = build_pricing_context(None, None, [], "x")
    assert effective_hourly_rate(with_both) == 90
    assert effective_hourly_rate(project_only) == 120
    assert effective_hourly_rate(neither) == 100


def test_improvement_tips_name_profile_gaps() -> None:
    tips = context_improvement_tips(build_pricing_context(None, None, [], "x"))
    assert "Add your location for market-specific pricing" in tips
    assert "Set your specializations for accurate rate lookup" in tips
    assert "Define the original contract price for proportionality checks" in tips
