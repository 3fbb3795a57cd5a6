from __future__ import annotations

import json
from time import perf_counter

from .clients import BaseProviderClient, GenerationResult

_CANNED_PAYLOADS: dict[str, dict] = {
    "clarification agent": {
        "questions": [
            {
                "id": "q1",
                "question": "Which screens or flows should this change touch?",
                "helpText": "List the pages or user journeys affected.",
                "type": "text",
                "priority": 1,
                "category": "scope",
            },
            {
                "id": "q2",
                "question": "When do you need this delivered?",
                "type": "select",
                "options": ["ASAP / Urgent", "This week", "This month", "Flexible / No rush"],
                "priority": 2,
                "category": "timeline",
            },
            {
                "id": "q3",
                "question": "Are there existing systems this must integrate with?",
                "type": "text",
                "priority": 2,
                "category": "skills",
            },
        ]
    },
    "scope change detection agent": {
        "verdict": "OUT_OF_SCOPE",
        "verdictReasoning": "The request adds functionality that is not listed in the agreed deliverables.",
        "contractAlignment": {"matchingDeliverables": [], "conflictingClauses": [], "grayAreas": []},
        "changes": [
            {
                "description": "New feature requested by the client",
                "classification": "ADDITION",
                "newRequirement": "Implement the requested feature",
                "directImpact": 3,
                "rippleEffect": 2,
                "riskLevel": "medium",
            }
        ],
        "overallSeverity": "moderate",
        "effortMultiplier": 1.2,
        "isOutOfScope": True,
        "recommendedAction": "price_as_change_order",
    },
    "market research agent": {
        "marketPriceRange": {
            "standalone": {"min": 800, "max": 1200},
            "asAddOn": {"min": 500, "max": 750},
        },
        "isLikelyAddOn": True,
        "marketInsights": ["Add-on work to an existing engagement typically prices below standalone quotes."],
        "confidence": "medium",
        "locationMultiplier": 1.0,
        "scopeChangeMarkup": {"recommended": 15},
    },
    "pricing calculator": {
        "recommendedPrice": 640,
        "priceRange": {"min": 560, "max": 720},
        "estimatedHours": 5,
        "hourlyRate": 100,
        "complexity": "moderate",
        "breakdown": {"laborCost": 500, "overhead": 100, "profit": 40, "riskPremium": 0, "scopePremium": 0},
        "profitLeaks": {"identified": [], "bufferAdded": 0, "bufferReason": ""},
        "confidence": 0.72,
        "reasoning": "Five hours of implementation and testing at the freelancer's rate, anchored to add-on market rates.",
    },
    "verification agent": {
        "overallStatus": "passed",
        "confidenceScore": 88,
        "issues": [],
        "recommendations": ["Confirm the delivery timeline with the client before sending the quote."],
        "approvedForClient": True,
        "adjustmentNeeded": 0,
    },
}


class MockCompletionClient(BaseProviderClient):
    """Offline provider returning canned stage payloads wrapped in prose and a fenced block."""

    provider = "mock"
    model = "mock-pricing-v1"
    supports_research = True

    def __init__(self, payloads: dict[str, dict] | None = None) -> None:
        self.payloads = payloads or _CANNED_PAYLOADS
        self.calls: list[tuple[str, bool]] = []

    def generate(
        self,
        system_prompt: str,
        prompt: str,
        max_tokens: int | None = None,
        timeout_s: float = 25.0,
        research_enabled: bool = False,
    ) -> GenerationResult:
        started = perf_counter()
        lowered = system_prompt.lower()
        for marker, payload in self.payloads.items():
            if marker in lowered:
                self.calls.append((marker, research_enabled))
                text = f"Here is the analysis.\n\n```json\n{json.dumps(payload, indent=2)}\n```\n"
                return GenerationResult(
                    provider=self.provider,
                    model=self.model,
                    text=text,
                    success=True,
                    tokens_input=len(system_prompt.split()) + len(prompt.split()),
                    tokens_output=len(text.split()),
                    latency_s=max(0.0, perf_counter() - started),
                    research_used=research_enabled,
                )
        return self._failure(started, "no canned payload for prompt", "empty_content")
