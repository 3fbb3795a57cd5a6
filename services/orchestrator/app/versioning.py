from __future__ import annotations

import hashlib
import json

from shared.schemas.domain import PricingContext

PROMPT_VERSION = "pricing_prompts_v1.0"


def _fingerprint(payload: dict) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def context_fingerprint(context: PricingContext, prompt_version: str = PROMPT_VERSION) -> str:
    """Stable hash of everything a run priced against; two runs with equal fingerprints saw identical inputs."""
    return _fingerprint(
        {
            "context": context.model_dump(mode="json", by_alias=True),
            "prompt_version": prompt_version,
        }
    )
