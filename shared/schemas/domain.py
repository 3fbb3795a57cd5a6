from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Snake_case in Python, camelCase on the wire and in model output."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenWireModel(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


def coerce_number(value: Any) -> Any:
    """Accept "$1,200", "1200 USD" or "15%" where a number is expected."""
    if isinstance(value, str):
        cleaned = re.sub(r"[^0-9.\-]", "", value.replace(",", ""))
        if not cleaned or cleaned in {"-", ".", "-."}:
            return None
        try:
            return float(cleaned)
        except ValueError:
            return None
    return value


def coerce_fraction(value: Any) -> Any:
    """Accept "20%", 20 or 0.2 where a fraction is expected."""
    number = coerce_number(value)
    if number is None or isinstance(number, bool) or not isinstance(number, (int, float)):
        return number
    if (isinstance(value, str) and "%" in value) or number > 1.0:
        return float(number) / 100.0
    return float(number)


def _object_or_empty(value: Any) -> Any:
    # Models send null or a bare string for a nested record they had nothing to put in.
    if value is None or isinstance(value, (str, int, float, list)):
        return {}
    return value


def _token(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    return re.sub(r"[\s\-]+", "_", str(value).strip())


def _str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return [str(value)]


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


class QuestionType(str, Enum):
    TEXT = "text"
    SELECT = "select"
    MULTISELECT = "multiselect"


class QuestionCategory(str, Enum):
    LOCATION = "location"
    SCOPE = "scope"
    TIMELINE = "timeline"
    SKILLS = "skills"
    BUDGET = "budget"
    URGENCY = "urgency"
    OTHER = "other"


class ScopeVerdict(str, Enum):
    IN_SCOPE = "IN_SCOPE"
    OUT_OF_SCOPE = "OUT_OF_SCOPE"
    BOUNDARY_CASE = "BOUNDARY_CASE"
    CLARIFICATION_ONLY = "CLARIFICATION_ONLY"


class ChangeClassification(str, Enum):
    ADDITION = "ADDITION"
    MODIFICATION = "MODIFICATION"
    EXPANSION = "EXPANSION"
    CLARIFICATION = "CLARIFICATION"
    REDUCTION = "REDUCTION"


class Severity(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    SIGNIFICANT = "significant"
    MAJOR = "major"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RecommendedAction(str, Enum):
    APPROVE_FREE = "approve_free"
    PRICE_AS_CHANGE_ORDER = "price_as_change_order"
    NEGOTIATE = "negotiate"
    DECLINE = "decline"


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ResearchMode(str, Enum):
    LIVE = "live"
    OFFLINE = "offline"
    UNAVAILABLE = "unavailable"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class VerificationStatus(str, Enum):
    PASSED = "passed"
    PASSED_WITH_WARNINGS = "passed_with_warnings"
    FAILED = "failed"


class RequestStatus(str, Enum):
    ANALYZING = "analyzing"
    PENDING_FREELANCER_APPROVAL = "pending_freelancer_approval"
    PENDING_CLIENT_APPROVAL = "pending_client_approval"
    APPROVED = "approved"
    DECLINED = "declined"
    PAID = "paid"


# ---------------------------------------------------------------------------
# Inbound records owned by external collaborators
# ---------------------------------------------------------------------------


class CustomRule(WireModel):
    rule: str
    description: str = ""


class ProjectRules(WireModel):
    hourly_rate: float | None = None
    currency: str | None = "USD"
    deliverables: list[str] = Field(default_factory=list)
    revisions_included: int | None = 2
    revisions_used: int | None = 0
    custom_rules: list[CustomRule] = Field(default_factory=list)
    rules_summary: str | None = None
    contract_text: str | None = None
    project_type: str | None = None
    client_location: str | None = None
    project_timeline: str | None = None
    original_contract_price: float | None = None

    @field_validator("hourly_rate", "original_contract_price", mode="before")
    @classmethod
    def _coerce_numbers(cls, value: Any) -> Any:
        return coerce_number(value)


class FreelancerProfile(WireModel):
    location: str | None = None
    specializations: list[str] = Field(default_factory=list)
    hourly_rate: float | None = None
    overhead: float | None = None
    profit_margin: float | None = None
    positioning: str | None = None
    industry: str | None = None

    @field_validator("hourly_rate", mode="before")
    @classmethod
    def _coerce_numbers(cls, value: Any) -> Any:
        return coerce_number(value)

    @field_validator("overhead", "profit_margin", mode="before")
    @classmethod
    def _coerce_fractions(cls, value: Any) -> Any:
        return coerce_fraction(value)


class ProjectInfo(WireModel):
    name: str | None = None
    description: str | None = None


class PriceCorrection(WireModel):
    request_text: str
    ai_price: float
    corrected_price: float
    reason: str | None = None


# ---------------------------------------------------------------------------
# Pricing context (immutable per run)
# ---------------------------------------------------------------------------


class FreelancerContext(FrozenWireModel):
    location: str | None = None
    specializations: tuple[str, ...] = ()
    hourly_rate: float | None = None
    positioning: str = "mid-market"
    industry: str | None = None
    overhead: float = 0.20
    profit_margin: float = 0.15


class ProjectContext(FrozenWireModel):
    original_contract_price: float | None = None
    project_type: str | None = None
    client_location: str | None = None
    project_timeline: str | None = None
    deliverables: tuple[str, ...] = ()
    currency: str = "USD"
    hourly_rate: float | None = None


class RequestContext(FrozenWireModel):
    description: str
    clarification_answers: dict[str, str] | None = None
    urgency: str = "normal"


class PricingContext(FrozenWireModel):
    freelancer: FreelancerContext
    project: ProjectContext
    request: RequestContext
    context_notes: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Stage outputs
# ---------------------------------------------------------------------------


class ClarificationQuestion(WireModel):
    id: str
    question: str = Field(min_length=1)
    help_text: str | None = None
    type: QuestionType = QuestionType.TEXT
    options: list[str] | None = None
    priority: int = 1
    category: QuestionCategory = QuestionCategory.OTHER

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        if value is None:
            return QuestionType.TEXT
        token = _token(value).lower().replace("_", "")
        if token in {"select", "multiselect", "text"}:
            return token
        return QuestionType.TEXT

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, value: Any) -> Any:
        token = _token(value or "other").lower()
        return token if token in {item.value for item in QuestionCategory} else QuestionCategory.OTHER

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value: Any) -> Any:
        number = coerce_number(value)
        if number is None:
            return 1
        return int(_clamp(float(number), 1, 3))

    @model_validator(mode="after")
    def _options_match_type(self) -> "ClarificationQuestion":
        if self.type == QuestionType.TEXT:
            self.options = None
        elif not self.options:
            self.type = QuestionType.TEXT
            self.options = None
        return self


class ScopeChange(WireModel):
    id: str = ""
    description: str = ""
    classification: ChangeClassification = ChangeClassification.ADDITION
    original_requirement: str | None = None
    new_requirement: str = ""
    direct_impact: int = 3
    ripple_effect: int = 1
    risk_level: RiskLevel = RiskLevel.MEDIUM
    affected_deliverables: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    notes: str | None = None
    scope_justification: str | None = None

    @field_validator("classification", mode="before")
    @classmethod
    def _normalize_classification(cls, value: Any) -> Any:
        token = _token(value or "ADDITION").upper()
        return token if token in ChangeClassification.__members__ else ChangeClassification.ADDITION

    @field_validator("risk_level", mode="before")
    @classmethod
    def _normalize_risk(cls, value: Any) -> Any:
        token = _token(value or "medium").lower()
        return token if token in {item.value for item in RiskLevel} else RiskLevel.MEDIUM

    @field_validator("direct_impact", "ripple_effect", mode="before")
    @classmethod
    def _clamp_impact(cls, value: Any) -> Any:
        number = coerce_number(value)
        if number is None:
            return 1
        return int(round(_clamp(float(number), 1, 5)))

    @field_validator("affected_deliverables", "dependencies", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return _str_list(value)


class ContractAlignment(WireModel):
    matching_deliverables: list[str] = Field(default_factory=list)
    conflicting_clauses: list[str] = Field(default_factory=list)
    gray_areas: list[str] = Field(default_factory=list)

    @field_validator("matching_deliverables", "conflicting_clauses", "gray_areas", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return _str_list(value)


class ScopeChangeCounts(WireModel):
    total_changes: int = 0
    additions: int = 0
    modifications: int = 0
    expansions: int = 0
    clarifications: int = 0
    reductions: int = 0


class ScopeAnalysis(WireModel):
    verdict: ScopeVerdict = ScopeVerdict.BOUNDARY_CASE
    verdict_reasoning: str = ""
    contract_alignment: ContractAlignment = Field(default_factory=ContractAlignment)
    changes: list[ScopeChange] = Field(default_factory=list)
    overall_severity: Severity = Severity.MODERATE
    effort_multiplier: float = 1.0
    is_out_of_scope: bool = False
    recommended_action: RecommendedAction = RecommendedAction.NEGOTIATE
    summary: ScopeChangeCounts = Field(default_factory=ScopeChangeCounts)
    integrity_warnings: list[str] = Field(default_factory=list)

    @field_validator("contract_alignment", mode="before")
    @classmethod
    def _alignment_object(cls, value: Any) -> Any:
        return _object_or_empty(value)

    @field_validator("verdict", mode="before")
    @classmethod
    def _normalize_verdict(cls, value: Any) -> Any:
        token = _token(value or "BOUNDARY_CASE").upper()
        return token if token in ScopeVerdict.__members__ else ScopeVerdict.BOUNDARY_CASE

    @field_validator("overall_severity", mode="before")
    @classmethod
    def _normalize_severity(cls, value: Any) -> Any:
        token = _token(value or "moderate").lower()
        return token if token in {item.value for item in Severity} else Severity.MODERATE

    @field_validator("recommended_action", mode="before")
    @classmethod
    def _normalize_action(cls, value: Any) -> Any:
        token = _token(value or "negotiate").lower()
        return token if token in {item.value for item in RecommendedAction} else RecommendedAction.NEGOTIATE

    @field_validator("effort_multiplier", mode="before")
    @classmethod
    def _clamp_multiplier(cls, value: Any) -> Any:
        number = coerce_number(value)
        if number is None:
            return 1.0
        return _clamp(float(number), 1.0, 3.0)

    @field_validator("changes", mode="before")
    @classmethod
    def _drop_non_objects(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict) or isinstance(item, ScopeChange)]

    @model_validator(mode="after")
    def _derive_from_verdict(self) -> "ScopeAnalysis":
        expected = self.verdict == ScopeVerdict.OUT_OF_SCOPE
        if self.is_out_of_scope != expected:
            self.integrity_warnings.append(
                f"isOutOfScope={str(self.is_out_of_scope).lower()} contradicted verdict={self.verdict.value}; "
                "recomputed from verdict"
            )
            self.is_out_of_scope = expected
        for index, change in enumerate(self.changes, start=1):
            if not change.id:
                change.id = f"SC-{index:03d}"
        by_kind = {kind: 0 for kind in ChangeClassification}
        for change in self.changes:
            by_kind[change.classification] += 1
        self.summary = ScopeChangeCounts(
            total_changes=len(self.changes),
            additions=by_kind[ChangeClassification.ADDITION],
            modifications=by_kind[ChangeClassification.MODIFICATION],
            expansions=by_kind[ChangeClassification.EXPANSION],
            clarifications=by_kind[ChangeClassification.CLARIFICATION],
            reductions=by_kind[ChangeClassification.REDUCTION],
        )
        return self


class PriceBand(WireModel):
    min: float
    max: float

    @field_validator("min", "max", mode="before")
    @classmethod
    def _coerce_numbers(cls, value: Any) -> Any:
        return coerce_number(value)

    @model_validator(mode="after")
    def _ordered(self) -> "PriceBand":
        if self.min < 0 or self.max <= 0:
            raise ValueError("price band bounds must be positive")
        if self.min > self.max:
            self.min, self.max = self.max, self.min
        return self

    @property
    def midpoint(self) -> float:
        return (self.min + self.max) / 2.0

    def contains(self, value: float, tolerance: float = 0.0) -> bool:
        return self.min * (1.0 - tolerance) <= value <= self.max * (1.0 + tolerance)


class MarketPriceRange(WireModel):
    standalone: PriceBand
    as_add_on: PriceBand | None = None


class MarketResearchResult(WireModel):
    market_price_range: MarketPriceRange | None = None
    is_likely_add_on: bool = False
    market_insights: list[str] = Field(default_factory=list)
    confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM
    location_multiplier: float = 1.0
    scope_change_markup: float = 15.0
    research_mode: ResearchMode = ResearchMode.LIVE

    @field_validator("confidence", mode="before")
    @classmethod
    def _normalize_confidence(cls, value: Any) -> Any:
        token = _token(value or "medium").lower()
        return token if token in {item.value for item in ConfidenceLevel} else ConfidenceLevel.MEDIUM

    @field_validator("market_insights", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return _str_list(value)

    @field_validator("location_multiplier", mode="before")
    @classmethod
    def _multiplier(cls, value: Any) -> Any:
        number = coerce_number(value)
        if number is None or number <= 0:
            return 1.0
        return _clamp(float(number), 0.5, 2.0)

    @field_validator("scope_change_markup", mode="before")
    @classmethod
    def _markup(cls, value: Any) -> Any:
        if isinstance(value, dict):
            value = value.get("recommended")
        number = coerce_number(value)
        if number is None or number < 0:
            return 15.0
        return float(number)


class CostBreakdown(WireModel):
    labor_cost: float = 0.0
    overhead: float = 0.0
    profit: float = 0.0
    risk_premium: float = 0.0
    scope_premium: float = 0.0

    @field_validator("labor_cost", "overhead", "profit", "risk_premium", "scope_premium", mode="before")
    @classmethod
    def _money(cls, value: Any) -> Any:
        number = coerce_number(value)
        return 0.0 if number is None else number

    @property
    def total(self) -> float:
        return self.labor_cost + self.overhead + self.profit + self.risk_premium + self.scope_premium


class ProfitLeaks(WireModel):
    identified: list[str] = Field(default_factory=list)
    buffer_added: float = 0.0
    buffer_reason: str = ""

    @field_validator("identified", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return _str_list(value)

    @field_validator("buffer_added", mode="before")
    @classmethod
    def _money(cls, value: Any) -> Any:
        number = coerce_number(value)
        return 0.0 if number is None or number < 0 else number


class PricingResult(WireModel):
    recommended_price: float = Field(gt=0)
    price_range: PriceBand | None = None
    estimated_hours: float | None = None
    hourly_rate: float | None = None
    complexity: Complexity = Complexity.MODERATE
    breakdown: CostBreakdown = Field(default_factory=CostBreakdown)
    profit_leaks: ProfitLeaks = Field(default_factory=ProfitLeaks)
    confidence: float = 0.75
    reasoning: str = ""
    is_fallback: bool = False
    adjustments: list[str] = Field(default_factory=list)

    @field_validator("recommended_price", "estimated_hours", "hourly_rate", mode="before")
    @classmethod
    def _coerce_numbers(cls, value: Any) -> Any:
        return coerce_number(value)

    @field_validator("breakdown", "profit_leaks", mode="before")
    @classmethod
    def _nested_objects(cls, value: Any) -> Any:
        return _object_or_empty(value)

    @field_validator("price_range", mode="before")
    @classmethod
    def _range(cls, value: Any) -> Any:
        if isinstance(value, dict) and "min" not in value and "low" in value:
            return {"min": value.get("low"), "max": value.get("high")}
        return value

    @field_validator("complexity", mode="before")
    @classmethod
    def _normalize_complexity(cls, value: Any) -> Any:
        token = _token(value or "moderate").lower()
        return token if token in {item.value for item in Complexity} else Complexity.MODERATE

    @field_validator("confidence", mode="before")
    @classmethod
    def _unit_confidence(cls, value: Any) -> Any:
        number = coerce_number(value)
        if number is None:
            return 0.75
        number = float(number)
        if number > 1.0:
            number = number / 100.0
        return _clamp(number, 0.0, 1.0)

    @field_validator("reasoning", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return "" if value is None else str(value)


class VerificationResult(WireModel):
    overall_status: VerificationStatus = VerificationStatus.PASSED_WITH_WARNINGS
    confidence_score: float = 75.0
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    approved_for_client: bool = False
    adjustment_needed: float = 0.0

    @field_validator("overall_status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        token = _token(value or "passed_with_warnings").lower()
        return token if token in {item.value for item in VerificationStatus} else VerificationStatus.PASSED_WITH_WARNINGS

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _percent(cls, value: Any) -> Any:
        number = coerce_number(value)
        if number is None:
            return 75.0
        number = float(number)
        if 0.0 < number <= 1.0:
            number *= 100.0
        return _clamp(number, 0.0, 100.0)

    @field_validator("adjustment_needed", mode="before")
    @classmethod
    def _money(cls, value: Any) -> Any:
        number = coerce_number(value)
        return 0.0 if number is None else number

    @field_validator("issues", "recommendations", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return _str_list(value)


class OrchestratorResult(WireModel):
    verdict: Literal["pending_review"] = "pending_review"
    reasoning: str
    scope_summary: str
    relevant_rules: list[str] = Field(default_factory=list)
    estimated_hours: float | None = None
    suggested_price: float | None = None
    price_range: PriceBand | None = None
    complexity: Complexity | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    price_breakdown: CostBreakdown | None = None
    scope_analysis: ScopeAnalysis | None = None
    pricing_context_used: PricingContext | None = None
    market_research_summary: str | None = None
    pricing_reasoning: str | None = None
    improvement_tips: list[str] = Field(default_factory=list)
    profit_leaks: ProfitLeaks | None = None
    clarification_questions: list[ClarificationQuestion] | None = None
    clarification_answers: dict[str, str] | None = None
    market_research: MarketResearchResult | None = None
    verification: VerificationResult | None = None
    degraded_stages: list[str] = Field(default_factory=list)
    is_fallback: bool = False
    context_fingerprint: str | None = None
    prompt_version: str | None = None


# ---------------------------------------------------------------------------
# Records persisted by the request-intake gateway
# ---------------------------------------------------------------------------


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class ProjectRecord(WireModel):
    project_id: str
    slug: str
    name: str
    description: str | None = None
    client_name: str | None = None
    is_active: bool = True
    rules: ProjectRules | None = None
    freelancer: FreelancerProfile | None = None
    context_notes: list[str] = Field(default_factory=list)


class ChangeRequest(WireModel):
    request_id: str
    project_id: str
    client_name: str | None = None
    client_email: str | None = None
    request_text: str
    status: RequestStatus = RequestStatus.ANALYZING
    ai_analysis: dict[str, Any] | None = None
    suggested_price: float | None = None
    estimated_hours: float | None = None
    labor_cost: float | None = None
    overhead_cost: float | None = None
    profit_amount: float | None = None
    buffer_amount: float | None = None
    buffer_reasoning: str | None = None
    pricing_reasoning: str | None = None
    quoted_price: float | None = None
    freelancer_modified_price: bool = False
    price_modification_reason: str | None = None
    run_metrics: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=_now_utc)
    updated_at: datetime = Field(default_factory=_now_utc)
