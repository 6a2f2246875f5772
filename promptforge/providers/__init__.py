"""
Backend Adapter Layer.

Hides heterogeneous generative-text APIs behind one capability contract so
the orchestrator never deals with a backend's wire format.

Architecture:
    Orchestrator
         ↓
    ProviderRegistry (primary + ordered fallbacks)
         ↓
    ModelProvider interface (this package)
         ↓
    OpenAI / Anthropic / Google / Groq adapters
         ↓
    HTTP APIs

Usage:
    from promptforge.providers import CompletionOptions, ProviderRegistry
    from promptforge.credentials import EnvCredentialStore

    registry = ProviderRegistry.from_credentials(EnvCredentialStore())
    response = await registry.primary.complete(CompletionOptions(prompt="Hello"))
"""

from promptforge.providers.base import (
    CompletionOptions,
    ModelProvider,
    ModelResponse,
    ProviderName,
    ProviderSettings,
    QualityScore,
    TokenUsage,
)
from promptforge.providers.registry import PROVIDER_TYPES, ProviderRegistry

__all__ = [
    "CompletionOptions",
    "ModelProvider",
    "ModelResponse",
    "ProviderName",
    "ProviderSettings",
    "QualityScore",
    "TokenUsage",
    "PROVIDER_TYPES",
    "ProviderRegistry",
]
