from __future__ import annotations

import json

import pytest

from services.orchestrator.app.providers.clients import TransportError

CLARIFY = "clarification agent"
SCOPE = "scope change detection agent"
MARKET = "market research agent"
PRICING = "pricing calculator"
VERIFY = "verification agent"


class ScriptedClient:
    """Answers each stage from a script keyed by a phrase in that stage's system prompt."""

    def __init__(self, script: dict[str, object] | None = None) -> None:
        self.script = script or {}
        self.calls: list[dict[str, object]] = []

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        research_enabled: bool = False,
        timeout_s: float | None = None,
    ) -> str:
        lowered = system_prompt.lower()
        for marker, reply in self.script.items():
            if marker not in lowered:
                continue
            self.calls.append(
                {"marker": marker, "user_prompt": user_prompt, "research_enabled": research_enabled, "timeout_s": timeout_s}
            )
            if isinstance(reply, BaseException):
                raise reply
            if isinstance(reply, str):
                return reply
            return f"Analysis follows.\n```json\n{json.dumps(reply)}\n```"
        self.calls.append({"marker": None, "user_prompt": user_prompt, "research_enabled": research_enabled})
        raise TransportError("unscripted call", provider="scripted", model="scripted")

    def prompts_for(self, marker: str) -> list[str]:
        return [str(call["user_prompt"]) for call in self.calls if call["marker"] == marker]


@pytest.fixture
def scripted_client():
    return ScriptedClient


@pytest.fixture
def addon_script() -> dict[str, object]:
    return {
        SCOPE: {
            "verdict": "OUT_OF_SCOPE",
            "verdictReasoning": "Password reset is not among the deliverables.",
            "changes": [
                {"description": "Password reset flow", "classification": "ADDITION", "newRequirement": "Reset by email"}
            ],
            "overallSeverity": "moderate",
            "effortMultiplier": 1.2,
            "isOutOfScope": True,
            "recommendedAction": "price_as_change_order",
        },
        MARKET: {
            "marketPriceRange": {"standalone": {"min": 800, "max": 1200}, "asAddOn": {"min": 500, "max": 750}},
            "isLikelyAddOn": True,
            "marketInsights": ["Add-on auth work is cheaper than a standalone build"],
            "confidence": "medium",
        },
        PRICING: {
            "recommendedPrice": 640,
            "priceRange": {"min": 560, "max": 720},
            "estimatedHours": 5,
            "hourlyRate": 100,
            "complexity": "moderate",
            "breakdown": {"laborCost": 500, "overhead": 100, "profit": 40, "riskPremium": 0, "scopePremium": 0},
            "confidence": 0.7,
            "reasoning": "Five hours at the add-on rate.",
        },
        VERIFY: {
            "overallStatus": "passed",
            "confidenceScore": 85,
            "issues": [],
            "recommendations": ["Confirm the email provider"],
            "approvedForClient": True,
            "adjustmentNeeded": 0,
        },
    }
