from __future__ import annotations

import json
import os
from dataclasses import dataclass
from functools import lru_cache


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if not raw:
        return max(default, minimum)
    try:
        return max(int(raw), minimum)
    except ValueError:
        return max(default, minimum)


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if not raw:
        return max(default, minimum)
    try:
        return max(float(raw), minimum)
    except ValueError:
        return max(default, minimum)


@dataclass(frozen=True)
class StageSettings:
    provider: str = "anthropic"
    clarification_timeout_s: float = 45.0
    scope_timeout_s: float = 45.0
    market_timeout_s: float = 90.0
    pricing_timeout_s: float = 45.0
    verification_timeout_s: float = 45.0
    max_output_tokens: int = 4096
    parallel_market: bool = False
    breakdown_tolerance: float = 0.05
    band_tolerance: float = 0.20
    max_adjustment_fraction: float = 0.15
    leak_buffer_per_category: float = 0.05
    leak_buffer_cap: float = 0.15
    lowball_band_fraction: float = 0.25
    max_past_corrections: int = 10

    def timeout_for(self, stage: str) -> float:
        return float(getattr(self, f"{stage}_timeout_s", 45.0))


def load_stage_settings() -> StageSettings:
    defaults = StageSettings()
    return StageSettings(
        provider=os.getenv("SCOPEQUOTE_PROVIDER", defaults.provider).strip().lower() or defaults.provider,
        clarification_timeout_s=_env_float("SCOPEQUOTE_CLARIFICATION_TIMEOUT_S", defaults.clarification_timeout_s, 1.0),
        scope_timeout_s=_env_float("SCOPEQUOTE_SCOPE_TIMEOUT_S", defaults.scope_timeout_s, 1.0),
        market_timeout_s=_env_float("SCOPEQUOTE_MARKET_TIMEOUT_S", defaults.market_timeout_s, 1.0),
        pricing_timeout_s=_env_float("SCOPEQUOTE_PRICING_TIMEOUT_S", defaults.pricing_timeout_s, 1.0),
        verification_timeout_s=_env_float("SCOPEQUOTE_VERIFICATION_TIMEOUT_S", defaults.verification_timeout_s, 1.0),
        max_output_tokens=_env_int("SCOPEQUOTE_MAX_OUTPUT_TOKENS", defaults.max_output_tokens, 256),
        parallel_market=_env_bool("SCOPEQUOTE_PARALLEL_MARKET", defaults.parallel_market),
        breakdown_tolerance=_env_float("SCOPEQUOTE_BREAKDOWN_TOLERANCE", defaults.breakdown_tolerance),
        band_tolerance=_env_float("SCOPEQUOTE_BAND_TOLERANCE", defaults.band_tolerance),
        max_adjustment_fraction=_env_float("SCOPEQUOTE_MAX_ADJUSTMENT_FRACTION", defaults.max_adjustment_fraction),
    )


@dataclass(frozen=True)
class PricingRates:
    input_cache_hit: float
    input_cache_miss: float
    output: float


# Per-1M token prices. The web-search tool surcharge is not included.
DEFAULT_MODEL_PRICING: dict[tuple[str, str], PricingRates] = {
    ("anthropic", "claude-sonnet-4-5-20250929"): PricingRates(input_cache_hit=0.30, input_cache_miss=3.00, output=15.00),
    ("anthropic", "claude-sonnet-4-6"): PricingRates(input_cache_hit=0.30, input_cache_miss=3.00, output=15.00),
    ("openai", "gpt-5.2"): PricingRates(input_cache_hit=0.175, input_cache_miss=1.75, output=14.00),
    ("gemini", "gemini-2.5-pro"): PricingRates(input_cache_hit=0.125, input_cache_miss=1.25, output=10.00),
    ("google", "gemini-2.5-pro"): PricingRates(input_cache_hit=0.125, input_cache_miss=1.25, output=10.00),
    ("deepseek", "deepseek-chat"): PricingRates(input_cache_hit=0.028, input_cache_miss=0.28, output=0.42),
    ("mock", "mock-pricing-v1"): PricingRates(input_cache_hit=0.0, input_cache_miss=0.0, output=0.0),
}


def _parse_rate_blob(blob: dict) -> PricingRates | None:
    try:
        return PricingRates(
            input_cache_hit=float(blob["input_cache_hit"]),
            input_cache_miss=float(blob["input_cache_miss"]),
            output=float(blob["output"]),
        )
    except Exception:  # noqa: BLE001
        return None


@lru_cache(maxsize=1)
def _load_env_model_pricing() -> dict[tuple[str, str], PricingRates]:
    raw = os.getenv("SCOPEQUOTE_MODEL_PRICING_JSON", "").strip()
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except Exception:  # noqa: BLE001
        return {}
    if not isinstance(parsed, dict):
        return {}

    # {"provider:model":{"input_cache_hit":...,"input_cache_miss":...,"output":...}}
    pricing: dict[tuple[str, str], PricingRates] = {}
    for key, value in parsed.items():
        if not isinstance(key, str) or ":" not in key or not isinstance(value, dict):
            continue
        provider, model = key.split(":", 1)
        rates = _parse_rate_blob(value)
        if rates is not None:
            pricing[(provider.strip().lower(), model.strip())] = rates
    return pricing


def _resolve_pricing(provider: str, model: str) -> PricingRates | None:
    key = (provider.lower(), model)
    env_pricing = _load_env_model_pricing()
    if key in env_pricing:
        return env_pricing[key]
    return DEFAULT_MODEL_PRICING.get(key)


def estimate_generation_cost(
    provider: str,
    model: str,
    *,
    tokens_input: int,
    tokens_output: int,
    tokens_input_cached: int = 0,
) -> float:
    rates = _resolve_pricing(provider, model)
    if rates is None:
        # Unknown models are costed at a flat per-800-output-token estimate.
        return 0.02 * max(1, int(tokens_output) // 800)

    cached = max(0, int(tokens_input_cached))
    total_input = max(0, int(tokens_input))
    miss = max(0, total_input - cached)
    output = max(0, int(tokens_output))
    return (
        (cached / 1_000_000.0) * rates.input_cache_hit
        + (miss / 1_000_000.0) * rates.input_cache_miss
        + (output / 1_000_000.0) * rates.output
    )
