from .api import (
    AnalyzeFullRequest,
    ClarificationResponse,
    ClarifyRequest,
    IntakeAcceptedResponse,
    IntakeRequest,
)
from .domain import (
    ClarificationQuestion,
    MarketResearchResult,
    OrchestratorResult,
    PricingContext,
    PricingResult,
    ScopeAnalysis,
    VerificationResult,
)

__all__ = [
    "AnalyzeFullRequest",
    "ClarificationResponse",
    "ClarifyRequest",
    "IntakeAcceptedResponse",
    "IntakeRequest",
    "ClarificationQuestion",
    "MarketResearchResult",
    "OrchestratorResult",
    "PricingContext",
    "PricingResult",
    "ScopeAnalysis",
    "VerificationResult",
]
