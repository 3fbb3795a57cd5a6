from __future__ import annotations

import os
from dataclasses import dataclass

PROVIDER_PREFERENCE = ["anthropic", "openai", "gemini", "deepseek"]


@dataclass(frozen=True)
class ProviderSpec:
    key_env_vars: tuple[str, ...]
    model_env_var: str
    default_model: str
    supports_research: bool


@dataclass(frozen=True)
class ProviderStatus:
    provider: str
    configured: bool
    env_var: str
    model: str = ""
    supports_research: bool = False


class ProviderRegistry:
    """Which completion providers have credentials, which model each would use, and whether it can search."""

    def __init__(self, specs: dict[str, ProviderSpec]) -> None:
        self.specs = specs

    def status_for(self, provider: str) -> ProviderStatus:
        normalized = provider.strip().lower()
        if normalized == "mock":
            return ProviderStatus(provider=provider, configured=True, env_var="", model="mock-pricing-v1", supports_research=True)
        spec = self.specs.get(normalized)
        if spec is None:
            return ProviderStatus(provider=provider, configured=False, env_var="unsupported")

        present = next((name for name in spec.key_env_vars if os.getenv(name)), None)
        return ProviderStatus(
            provider=provider,
            configured=present is not None,
            env_var=present or spec.key_env_vars[0],
            model=os.getenv(spec.model_env_var, spec.default_model),
            supports_research=spec.supports_research,
        )

    def resolve(self, providers: list[str]) -> list[ProviderStatus]:
        return [self.status_for(provider) for provider in providers]

    def configured_providers(self) -> list[str]:
        return [status.provider for status in self.resolve(PROVIDER_PREFERENCE) if status.configured]


def build_default_registry() -> ProviderRegistry:
    gemini = ProviderSpec(("GEMINI_API_KEY", "GOOGLE_API_KEY"), "GEMINI_MODEL", "gemini-2.5-pro", True)
    return ProviderRegistry(
        {
            "anthropic": ProviderSpec(("ANTHROPIC_API_KEY",), "ANTHROPIC_MODEL", "claude-sonnet-4-5-20250929", True),
            "openai": ProviderSpec(("OPENAI_API_KEY",), "OPENAI_MODEL", "gpt-5.2", True),
            "gemini": gemini,
            "google": ProviderSpec(("GOOGLE_API_KEY", "GEMINI_API_KEY"), gemini.model_env_var, gemini.default_model, True),
            "deepseek": ProviderSpec(("DEEPSEEK_API_KEY",), "DEEPSEEK_MODEL", "deepseek-chat", False),
        }
    )
