from .clients import (
    CompletionClient,
    CompletionError,
    GenerationResult,
    QuotaError,
    TextCompletion,
    TransportError,
    make_completion_client,
    make_provider_client,
)
from .mock import MockCompletionClient
from .registry import ProviderRegistry, ProviderSpec, ProviderStatus, build_default_registry

__all__ = [
    "CompletionClient",
    "CompletionError",
    "GenerationResult",
    "MockCompletionClient",
    "ProviderRegistry",
    "ProviderSpec",
    "ProviderStatus",
    "QuotaError",
    "TextCompletion",
    "TransportError",
    "build_default_registry",
    "make_completion_client",
    "make_provider_client",
]
