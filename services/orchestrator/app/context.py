from __future__ import annotations

from shared.schemas.domain import (
    FreelancerContext,
    FreelancerProfile,
    PricingContext,
    ProjectContext,
    ProjectRules,
    RequestContext,
)

DEFAULT_OVERHEAD = 0.20
DEFAULT_PROFIT_MARGIN = 0.15
DEFAULT_POSITIONING = "mid-market"
DEFAULT_CURRENCY = "USD"
DEFAULT_HOURLY_RATE = 100.0
NO_ANSWERS_TEXT = "No clarification answers provided"


def format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}"


def format_percent(fraction: float) -> str:
    return f"{fraction * 100:.0f}%"


def _positive(value: float | None) -> float | None:
    if value is None or value <= 0:
        return None
    return float(value)


def build_pricing_context(
    user: FreelancerProfile | None,
    rules: ProjectRules | None,
    context_notes: list[str] | None,
    request_text: str,
    clarification_answers: dict[str, str] | None = None,
) -> PricingContext:
    """Assemble the read-only snapshot every stage prices against. Pure."""
    user = user or FreelancerProfile()
    rules = rules or ProjectRules()
    answers = dict(clarification_answers) if clarification_answers else None
    return PricingContext(
        freelancer=FreelancerContext(
            location=user.location or None,
            specializations=tuple(user.specializations),
            hourly_rate=_positive(user.hourly_rate),
            positioning=user.positioning or DEFAULT_POSITIONING,
            industry=user.industry or None,
            overhead=user.overhead if user.overhead else DEFAULT_OVERHEAD,
            profit_margin=user.profit_margin if user.profit_margin else DEFAULT_PROFIT_MARGIN,
        ),
        project=ProjectContext(
            original_contract_price=_positive(rules.original_contract_price),
            project_type=rules.project_type or None,
            client_location=rules.client_location or None,
            project_timeline=rules.project_timeline or None,
            deliverables=tuple(rules.deliverables),
            currency=rules.currency or DEFAULT_CURRENCY,
            hourly_rate=_positive(rules.hourly_rate),
        ),
        request=RequestContext(
            description=request_text,
            clarification_answers=answers,
            urgency="normal",
        ),
        context_notes=tuple(note for note in (context_notes or []) if note and note.strip()),
    )


def format_context_block(context: PricingContext, rules: ProjectRules | None) -> str:
    """Render the shared Markdown context section used by the scope, market and pricing prompts."""
    rules = rules or ProjectRules()
    freelancer = context.freelancer
    project = context.project
    sections: list[str] = ["## Freelancer Profile"]
    if freelancer.location:
        sections.append(f"- Location: {freelancer.location}")
    if freelancer.specializations:
        sections.append(f"- Specializations: {', '.join(freelancer.specializations)}")
    if freelancer.industry:
        sections.append(f"- Industry: {freelancer.industry}")
    if freelancer.hourly_rate:
        sections.append(f"- Hourly Rate: ${format_number(freelancer.hourly_rate)}/hr")
    sections.append(f"- Market Positioning: {freelancer.positioning}")
    sections.append(f"- Overhead: {format_percent(freelancer.overhead)}")
    sections.append(f"- Profit Margin: {format_percent(freelancer.profit_margin)}")

    sections.append("\n## Project Context")
    if project.original_contract_price:
        sections.append(f"- Original Contract Price: ${format_number(project.original_contract_price)}")
    if project.project_type:
        sections.append(f"- Project Type: {project.project_type}")
    if project.client_location:
        sections.append(f"- Client Location: {project.client_location}")
    if project.project_timeline:
        sections.append(f"- Project Timeline: {project.project_timeline}")
    if project.deliverables:
        sections.append(f"- Deliverables: {', '.join(project.deliverables)}")

    sections.append("\n## Project Rules")
    if rules.hourly_rate:
        sections.append(f"- Hourly Rate: {rules.currency or DEFAULT_CURRENCY} {format_number(rules.hourly_rate)}/hr")
    if rules.revisions_included is not None:
        remaining = rules.revisions_included - (rules.revisions_used or 0)
        sections.append(f"- Revisions: {remaining} of {rules.revisions_included} remaining")
    if rules.custom_rules:
        sections.append("- Custom Rules:")
        for custom in rules.custom_rules:
            sections.append(f"  - {custom.rule}: {custom.description}")
    if rules.rules_summary:
        sections.append(f"- Rules Summary: {rules.rules_summary}")

    if context.context_notes:
        sections.append("\n## Additional Context")
        sections.extend(f"- {note}" for note in context.context_notes)

    return "\n".join(sections)


def format_answers(answers: dict[str, str] | None) -> str:
    if not answers:
        return NO_ANSWERS_TEXT
    return "\n\n".join(f"Q: {question}\nA: {answer}" for question, answer in answers.items())


def build_scope_summary(request_text: str, answers: dict[str, str] | None) -> str:
    if not answers:
        return request_text
    lines = [f'Based on the request: "{request_text}"\n', "With the following specifications:"]
    lines.extend(f"• {answer}" for answer in answers.values())
    return "\n".join(lines)


def effective_hourly_rate(context: PricingContext) -> float:
    return context.freelancer.hourly_rate or context.project.hourly_rate or DEFAULT_HOURLY_RATE


def context_improvement_tips(context: PricingContext) -> list[str]:
    tips: list[str] = []
    if not context.freelancer.location:
        tips.append("Add your location for market-specific pricing")
    if not context.freelancer.specializations:
        tips.append("Set your specializations for accurate rate lookup")
    if not context.project.original_contract_price:
        tips.append("Define the original contract price for proportionality checks")
    if not context.freelancer.hourly_rate and not context.project.hourly_rate:
        tips.append("Set an hourly rate so estimates are not based on the default rate")
    return tips
