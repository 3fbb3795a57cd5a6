from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from time import perf_counter
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

OFFLINE_RESEARCH_NOTE = (
    "\n\nNote: live web research is unavailable for this call. Use your training data knowledge of "
    "typical market rates and industry standards and provide your best estimates."
)
RESEARCH_BUDGET_SHARE = 2.0 / 3.0
MIN_RETRY_TIMEOUT_S = 1.0


class ProviderClientError(RuntimeError):
    pass


class CompletionError(RuntimeError):
    kind = "transport"

    def __init__(self, message: str, provider: str = "unknown", model: str = "unknown") -> None:
        super().__init__(message)
        self.provider = provider
        self.model = model


class TransportError(CompletionError):
    """The completion capability is unreachable, timed out or rate-limited."""

    kind = "transport"


class QuotaError(CompletionError):
    """A provider-specific quota or billing limit was exceeded."""

    kind = "quota"


@dataclass(frozen=True)
class GenerationResult:
    provider: str
    model: str
    text: str
    success: bool
    tokens_input: int = 0
    tokens_input_cached: int = 0
    tokens_output: int = 0
    latency_s: float = 0.0
    error: str | None = None
    error_kind: str | None = None
    research_used: bool = False


class TextCompletion(Protocol):
    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        research_enabled: bool = False,
        timeout_s: float | None = None,
    ) -> str: ...


def classify_exception(exc: Exception) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return "timeout"
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        body = (exc.response.text or "").lower()
        quota_markers = ("insufficient_quota", "quota", "billing", "credit balance", "exceeded your current")
        if status == 402 or (status in {400, 403, 429} and any(marker in body for marker in quota_markers)):
            return "quota"
        if status == 429:
            return "rate_limited"
        return "transport"
    return "transport"


class BaseProviderClient:
    provider: str
    model: str = "unknown"
    supports_research: bool = False

    def generate(
        self,
        system_prompt: str,
        prompt: str,
        max_tokens: int | None = None,
        timeout_s: float = 25.0,
        research_enabled: bool = False,
    ) -> GenerationResult:
        raise NotImplementedError

    def _failure(self, started: float, error: str, error_kind: str) -> GenerationResult:
        return GenerationResult(
            provider=self.provider,
            model=self.model,
            text="",
            success=False,
            latency_s=max(0.0, perf_counter() - started),
            error=error,
            error_kind=error_kind,
        )


def _default_timeout_for_provider(provider: str) -> float:
    per_provider = os.getenv(f"{provider.upper()}_TIMEOUT_S")
    if per_provider:
        try:
            return max(1.0, float(per_provider))
        except ValueError:
            pass
    global_default = os.getenv("SCOPEQUOTE_PROVIDER_TIMEOUT_S", "45")
    try:
        return max(1.0, float(global_default))
    except ValueError:
        return 45.0


class OpenAICompatibleClient(BaseProviderClient):
    api_key: str
    base_url: str
    temperature: float
    api_key_env_name: str
    default_base_url: str
    default_model: str

    def __init__(self) -> None:
        self.api_key = os.getenv(self.api_key_env_name)
        self.model = os.getenv(f"{self.provider.upper()}_MODEL", self.default_model)
        self.base_url = os.getenv(f"{self.provider.upper()}_BASE_URL", self.default_base_url).rstrip("/")
        self.temperature = float(os.getenv(f"{self.provider.upper()}_TEMPERATURE", "0.2"))
        if not self.api_key:
            raise ProviderClientError(f"{self.api_key_env_name} is not set")

    def generate(
        self,
        system_prompt: str,
        prompt: str,
        max_tokens: int | None = None,
        timeout_s: float = 25.0,
        research_enabled: bool = False,
    ) -> GenerationResult:
        started = perf_counter()
        if research_enabled:
            return self._failure(started, f"{self.provider} has no research tool", "research_unsupported")
        url = f"{self.base_url}/v1/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        payload: dict[str, object] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        try:
            with httpx.Client(timeout=timeout_s) as client:
                response = client.post(url, headers=headers, json=payload)
                response.raise_for_status()
            data = response.json()
            message = (data.get("choices") or [{}])[0].get("message") or {}
            text = str(message.get("content", "") or "")
            if not text.strip():
                return self._failure(started, "empty_content", "empty_content")
            usage = data.get("usage", {}) or {}
            return GenerationResult(
                provider=self.provider,
                model=self.model,
                text=text,
                success=True,
                tokens_input=int(usage.get("prompt_tokens", 0) or 0),
                tokens_input_cached=int(((usage.get("prompt_tokens_details") or {}).get("cached_tokens", 0)) or 0),
                tokens_output=int(usage.get("completion_tokens", 0) or 0),
                latency_s=max(0.0, perf_counter() - started),
            )
        except Exception as exc:  # noqa: BLE001
            return self._failure(started, str(exc), classify_exception(exc))


class OpenAIClient(BaseProviderClient):
    provider = "openai"
    supports_research = True

    def __init__(self) -> None:
        self.api_key = os.getenv("OPENAI_API_KEY")
        self.model = os.getenv("OPENAI_MODEL", "gpt-5.2")
        if not self.api_key:
            raise ProviderClientError("OPENAI_API_KEY is not set")

    def generate(
        self,
        system_prompt: str,
        prompt: str,
        max_tokens: int | None = None,
        timeout_s: float = 25.0,
        research_enabled: bool = False,
    ) -> GenerationResult:
        url = "https://api.openai.com/v1/responses"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        payload: dict[str, object] = {
            "model": self.model,
            "instructions": system_prompt,
            "input": prompt,
        }
        if max_tokens is not None:
            payload["max_output_tokens"] = max_tokens
        if research_enabled:
            payload["tools"] = [{"type": "web_search"}]
        started = perf_counter()
        try:
            with httpx.Client(timeout=timeout_s) as client:
                response = client.post(url, headers=headers, json=payload)
                response.raise_for_status()
            data = response.json()
            text = str(data.get("output_text", "") or "")
            if not text.strip():
                for item in data.get("output", []) or []:
                    if item.get("type") != "message":
                        continue
                    for content in item.get("content", []) or []:
                        if content.get("type") == "output_text":
                            text += str(content.get("text", "") or "")
            if not text.strip():
                return self._failure(started, "empty_content", "empty_content")
            usage = data.get("usage", {}) or {}
            return GenerationResult(
                provider=self.provider,
                model=self.model,
                text=text,
                success=True,
                tokens_input=int(usage.get("input_tokens", 0) or 0),
                tokens_input_cached=int(((usage.get("input_tokens_details") or {}).get("cached_tokens", 0)) or 0),
                tokens_output=int(usage.get("output_tokens", 0) or 0),
                latency_s=max(0.0, perf_counter() - started),
                research_used=research_enabled,
            )
        except Exception as exc:  # noqa: BLE001
            return self._failure(started, str(exc), classify_exception(exc))


class AnthropicClient(BaseProviderClient):
    provider = "anthropic"
    supports_research = True

    def __init__(self) -> None:
        self.api_key = os.getenv("ANTHROPIC_API_KEY")
        self.model = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5-20250929")
        self.web_search_max_uses = int(os.getenv("ANTHROPIC_WEB_SEARCH_MAX_USES", "5") or "5")
        if not self.api_key:
            raise ProviderClientError("ANTHROPIC_API_KEY is not set")

    def generate(
        self,
        system_prompt: str,
        prompt: str,
        max_tokens: int | None = None,
        timeout_s: float = 25.0,
        research_enabled: bool = False,
    ) -> GenerationResult:
        url = "https://api.anthropic.com/v1/messages"
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json",
        }
        payload: dict[str, object] = {
            "model": self.model,
            "system": system_prompt,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0.2,
            # Anthropic Messages API requires max_tokens.
            "max_tokens": max_tokens if max_tokens is not None else 4096,
        }
        if research_enabled:
            payload["tools"] = [
                {"type": "web_search_20250305", "name": "web_search", "max_uses": self.web_search_max_uses}
            ]
        started = perf_counter()
        try:
            with httpx.Client(timeout=timeout_s) as client:
                response = client.post(url, headers=headers, json=payload)
                response.raise_for_status()
            data = response.json()
            if str(data.get("stop_reason", "")).lower() == "refusal":
                return self._failure(started, "refusal", "transport")
            text = ""
            for block in data.get("content", []):
                if block.get("type") == "text":
                    text += block.get("text", "")
            if not text.strip():
                return self._failure(started, "empty_content", "empty_content")
            usage = data.get("usage", {}) or {}
            return GenerationResult(
                provider=self.provider,
                model=self.model,
                text=text,
                success=True,
                tokens_input=int(usage.get("input_tokens", 0) or 0),
                tokens_input_cached=int(usage.get("cache_read_input_tokens", 0) or 0),
                tokens_output=int(usage.get("output_tokens", 0) or 0),
                latency_s=max(0.0, perf_counter() - started),
                research_used=research_enabled,
            )
        except Exception as exc:  # noqa: BLE001
            return self._failure(started, str(exc), classify_exception(exc))


class GeminiClient(BaseProviderClient):
    provider = "gemini"
    supports_research = True

    def __init__(self) -> None:
        self.api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
        self.model = os.getenv("GEMINI_MODEL", "gemini-2.5-pro")
        if not self.api_key:
            raise ProviderClientError("GEMINI_API_KEY or GOOGLE_API_KEY is not set")

    def generate(
        self,
        system_prompt: str,
        prompt: str,
        max_tokens: int | None = None,
        timeout_s: float = 25.0,
        research_enabled: bool = False,
    ) -> GenerationResult:
        url = (
            "https://generativelanguage.googleapis.com/v1beta/models/"
            f"{self.model}:generateContent?key={self.api_key}"
        )
        generation_config: dict[str, object] = {"temperature": 0.2}
        if max_tokens is not None:
            generation_config["maxOutputTokens"] = max_tokens
        payload: dict[str, object] = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }
        if research_enabled:
            payload["tools"] = [{"google_search": {}}]
        started = perf_counter()
        try:
            with httpx.Client(timeout=timeout_s) as client:
                response = client.post(url, json=payload)
                response.raise_for_status()
            data = response.json()
            candidates = data.get("candidates", [])
            text = ""
            if candidates:
                parts = candidates[0].get("content", {}).get("parts", [])
                text = "".join(part.get("text", "") for part in parts)
            if not text.strip():
                return self._failure(started, "empty_content", "empty_content")
            usage = data.get("usageMetadata", {}) or {}
            return GenerationResult(
                provider=self.provider,
                model=self.model,
                text=text,
                success=True,
                tokens_input=int(usage.get("promptTokenCount", 0) or 0),
                tokens_output=int(usage.get("candidatesTokenCount", 0) or 0),
                latency_s=max(0.0, perf_counter() - started),
                research_used=research_enabled,
            )
        except Exception as exc:  # noqa: BLE001
            return self._failure(started, str(exc), classify_exception(exc))


class DeepSeekClient(OpenAICompatibleClient):
    provider = "deepseek"
    api_key_env_name = "DEEPSEEK_API_KEY"
    default_base_url = "https://api.deepseek.com"
    default_model = "deepseek-chat"


class UnavailableProviderClient(BaseProviderClient):
    """Stands in for a provider whose configuration is missing; every call fails as transport."""

    def __init__(self, provider: str, reason: str) -> None:
        self.provider = provider
        self.reason = reason

    def generate(
        self,
        system_prompt: str,
        prompt: str,
        max_tokens: int | None = None,
        timeout_s: float = 25.0,
        research_enabled: bool = False,
    ) -> GenerationResult:
        return self._failure(perf_counter(), self.reason, "config")


def make_provider_client(provider: str) -> BaseProviderClient:
    normalized = provider.lower()
    if normalized == "openai":
        return OpenAIClient()
    if normalized == "anthropic":
        return AnthropicClient()
    if normalized == "deepseek":
        return DeepSeekClient()
    if normalized in {"gemini", "google"}:
        return GeminiClient()
    if normalized == "mock":
        from .mock import MockCompletionClient

        return MockCompletionClient()
    raise ProviderClientError(f"Unsupported provider: {provider}")


def error_for_result(result: GenerationResult) -> CompletionError:
    message = f"{result.provider}/{result.model} failed: {result.error or 'unknown error'}"
    if result.error_kind == "quota":
        return QuotaError(message, provider=result.provider, model=result.model)
    return TransportError(message, provider=result.provider, model=result.model)


class CompletionClient:
    """The text-completion contract every stage talks to.

    ``complete`` returns model text or raises ``TransportError``/``QuotaError``. A failed
    research call is retried exactly once without research before giving up. Successful and
    failed generations are kept in ``usage_ledger`` for per-run cost accounting.
    """

    def __init__(
        self,
        provider_client: BaseProviderClient,
        default_timeout_s: float | None = None,
        max_tokens: int | None = 4096,
    ) -> None:
        self.provider_client = provider_client
        self.default_timeout_s = (
            default_timeout_s
            if default_timeout_s is not None
            else _default_timeout_for_provider(provider_client.provider)
        )
        self.max_tokens = max_tokens
        self.usage_ledger: list[GenerationResult] = []
        self.last_research_fallback = False
        self._lock = threading.Lock()

    @property
    def provider(self) -> str:
        return self.provider_client.provider

    @property
    def model(self) -> str:
        return self.provider_client.model

    def for_run(self) -> "CompletionClient":
        return CompletionClient(
            self.provider_client,
            default_timeout_s=self.default_timeout_s,
            max_tokens=self.max_tokens,
        )

    def _generate(self, system_prompt: str, user_prompt: str, research_enabled: bool, timeout_s: float) -> GenerationResult:
        result = self.provider_client.generate(
            system_prompt,
            user_prompt,
            max_tokens=self.max_tokens,
            timeout_s=timeout_s,
            research_enabled=research_enabled,
        )
        with self._lock:
            self.usage_ledger.append(result)
        return result

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        research_enabled: bool = False,
        timeout_s: float | None = None,
    ) -> str:
        budget = timeout_s if timeout_s is not None else self.default_timeout_s
        if not research_enabled:
            result = self._generate(system_prompt, user_prompt, False, budget)
            if result.success:
                return result.text
            raise error_for_result(result)

        # The research attempt and its offline retry share one budget.
        started = perf_counter()
        result = self._generate(system_prompt, user_prompt, True, budget * RESEARCH_BUDGET_SHARE)
        if result.success:
            return result.text
        remaining = budget - (perf_counter() - started)
        if remaining < MIN_RETRY_TIMEOUT_S:
            logger.warning(
                "research call failed on %s/%s (%s: %s); %.1fs left, not retrying",
                result.provider,
                result.model,
                result.error_kind,
                result.error,
                max(0.0, remaining),
            )
            raise error_for_result(result)
        logger.warning(
            "research call failed on %s/%s (%s: %s); retrying once without research",
            result.provider,
            result.model,
            result.error_kind,
            result.error,
        )
        result = self._generate(system_prompt, user_prompt + OFFLINE_RESEARCH_NOTE, False, remaining)
        self.last_research_fallback = True
        if result.success:
            return result.text
        raise error_for_result(result)


def make_completion_client(
    provider: str | None = None,
    timeout_s: float | None = None,
    max_tokens: int | None = None,
) -> CompletionClient:
    resolved = (provider or os.getenv("SCOPEQUOTE_PROVIDER", "anthropic")).strip().lower()
    try:
        provider_client = make_provider_client(resolved)
    except ProviderClientError as exc:
        logger.warning("completion provider %s unavailable: %s", resolved, exc)
        provider_client = UnavailableProviderClient(resolved, str(exc))
    return CompletionClient(provider_client, default_timeout_s=timeout_s, max_tokens=max_tokens or 4096)
