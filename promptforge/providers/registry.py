"""
Backend Adapter Registry.

Holds the configured adapters: exactly one primary (when any are
configured) and an ordered list of fallbacks. The registry is an ordinary
object built by the composition root and passed to whoever needs it.

Usage:
    from promptforge.credentials import EnvCredentialStore
    from promptforge.providers.registry import ProviderRegistry

    registry = ProviderRegistry.from_credentials(EnvCredentialStore())
    provider = registry.select_for(task)

    # Credentials changed: swap in a freshly built set of adapters
    registry.rebuild(store)
"""

import logging
import threading
from collections.abc import Iterable, Mapping
from typing import Any

from promptforge.credentials import CredentialStore
from promptforge.exceptions import NoProviderConfiguredError
from promptforge.providers.anthropic import AnthropicProvider
from promptforge.providers.base import ModelProvider, ProviderName, ProviderSettings
from promptforge.providers.google import GoogleProvider
from promptforge.providers.groq import GroqProvider
from promptforge.providers.openai import OpenAIProvider
from promptforge.tasks import Task

logger = logging.getLogger(__name__)

# Adapter class for each supported backend; iteration order is discovery order
PROVIDER_TYPES: dict[ProviderName, type[ModelProvider]] = {
    ProviderName.OPENAI: OpenAIProvider,
    ProviderName.ANTHROPIC: AnthropicProvider,
    ProviderName.GOOGLE: GoogleProvider,
    ProviderName.GROQ: GroqProvider,
}

DEFAULT_PROVIDER_SETTINGS: dict[ProviderName, ProviderSettings] = {
    ProviderName.OPENAI: ProviderSettings(model="gpt-4-turbo-preview"),
    ProviderName.ANTHROPIC: ProviderSettings(model="claude-3-opus-20240229"),
    ProviderName.GOOGLE: ProviderSettings(model="gemini-pro"),
    ProviderName.GROQ: ProviderSettings(model="mixtral-8x7b-32768", max_tokens=1000),
}

HIGH_QUALITY_THRESHOLD = 85
DEFAULT_HIGH_QUALITY_PREFERENCE = (ProviderName.ANTHROPIC.value, ProviderName.OPENAI.value)


def build_adapters(
    credential_store: CredentialStore,
    provider_settings: Mapping[ProviderName, ProviderSettings] | None = None,
    client: Any = None,
) -> list[ModelProvider]:
    """Construct an adapter for every backend with a credential, in discovery order.

    Args:
        credential_store: Source of API keys
        provider_settings: Per-backend settings (defaults used when missing)
        client: Optional shared httpx.AsyncClient handed to every adapter

    Returns:
        Adapters for the backends that have keys
    """
    settings = dict(DEFAULT_PROVIDER_SETTINGS)
    if provider_settings:
        settings.update(provider_settings)

    adapters = []
    for provider_name, provider_type in PROVIDER_TYPES.items():
        api_key = credential_store.get_key(provider_name.value)
        if not api_key:
            logger.debug(f"No credential for {provider_name.value}, skipping")
            continue
        adapters.append(provider_type(api_key, settings[provider_name], client=client))
    return adapters


class ProviderRegistry:
    """Registry of configured backend adapters.

    The first registered adapter becomes the primary; the rest are
    fallbacks in registration order. Reads take a snapshot under a lock so
    a concurrent rebuild never exposes a half-built registry.
    """

    def __init__(
        self,
        providers: Iterable[ModelProvider] = (),
        high_quality_preference: Iterable[str] = DEFAULT_HIGH_QUALITY_PREFERENCE,
    ):
        self._lock = threading.RLock()
        self._providers: dict[str, ModelProvider] = {}
        self._primary: str | None = None
        self._high_quality_preference = tuple(high_quality_preference)
        for provider in providers:
            self.register(provider)

    @classmethod
    def from_credentials(
        cls,
        credential_store: CredentialStore,
        provider_settings: Mapping[ProviderName, ProviderSettings] | None = None,
        high_quality_preference: Iterable[str] = DEFAULT_HIGH_QUALITY_PREFERENCE,
        client: Any = None,
    ) -> "ProviderRegistry":
        """Build a registry from whichever backends have credentials."""
        registry = cls(
            build_adapters(credential_store, provider_settings, client),
            high_quality_preference=high_quality_preference,
        )
        if not registry:
            logger.warning("No AI providers configured. Set at least one provider API key.")
        return registry

    def register(self, provider: ModelProvider) -> None:
        """Add an adapter. The first one registered becomes primary.

        Raises:
            ValueError: If the adapter reports itself as not configured
        """
        if not provider.is_configured():
            raise ValueError(f"Provider {provider.name} is not configured")

        with self._lock:
            if provider.name in self._providers:
                logger.warning(f"Replacing existing provider: {provider.name}")
            self._providers[provider.name] = provider
            logger.info(f"Registered provider: {provider.name} ({provider.model_id})")

            if self._primary is None:
                self._primary = provider.name
                logger.info(f"Primary provider: {provider.name}")

    def rebuild(
        self,
        credential_store: CredentialStore,
        provider_settings: Mapping[ProviderName, ProviderSettings] | None = None,
        client: Any = None,
    ) -> None:
        """Replace every adapter with a set built from current credentials."""
        adapters = build_adapters(credential_store, provider_settings, client)
        with self._lock:
            self._providers = {adapter.name: adapter for adapter in adapters}
            self._primary = adapters[0].name if adapters else None
        logger.info(
            f"Registry rebuilt: primary={self._primary}, "
            f"fallbacks={[a.name for a in adapters[1:]]}"
        )

    def clear(self) -> None:
        """Remove all adapters."""
        with self._lock:
            self._providers.clear()
            self._primary = None

    @property
    def primary(self) -> ModelProvider | None:
        with self._lock:
            return self._providers.get(self._primary) if self._primary else None

    @property
    def fallbacks(self) -> list[ModelProvider]:
        with self._lock:
            return [p for name, p in self._providers.items() if name != self._primary]

    def chain(self) -> list[ModelProvider]:
        """Primary followed by fallbacks, in order."""
        with self._lock:
            primary = self._providers.get(self._primary) if self._primary else None
            rest = [p for name, p in self._providers.items() if name != self._primary]
        return ([primary] if primary else []) + rest

    def available_providers(self) -> list[str]:
        """Names of configured adapters, primary first."""
        return [provider.name for provider in self.chain()]

    def has_provider(self, name: str) -> bool:
        with self._lock:
            return str(getattr(name, "value", name)) in self._providers

    def get(self, name: str) -> ModelProvider:
        """Get an adapter by name.

        Raises:
            KeyError: If no adapter is registered under ``name``
        """
        key = str(getattr(name, "value", name))
        with self._lock:
            if key not in self._providers:
                available = ", ".join(self._providers) or "none"
                raise KeyError(f"Provider not found: {key}. Available: {available}")
            return self._providers[key]

    def select_for(self, task: Task) -> ModelProvider:
        """Pick the adapter that should serve ``task``.

        Tasks requiring quality above 85 go to the first configured backend
        in the high-quality preference list; everything else goes to the
        primary.

        Raises:
            NoProviderConfiguredError: If the registry is empty
        """
        with self._lock:
            if self._primary is None:
                raise NoProviderConfiguredError()

            if task.quality_required > HIGH_QUALITY_THRESHOLD:
                for name in self._high_quality_preference:
                    if name in self._providers:
                        return self._providers[name]

            return self._providers[self._primary]

    def summary(self) -> dict[str, Any]:
        """Primary, fallbacks and model ids, for status reporting."""
        chain = self.chain()
        return {
            "total": len(chain),
            "primary": chain[0].name if chain else None,
            "fallbacks": [p.name for p in chain[1:]],
            "models": {p.name: p.model_id for p in chain},
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._providers)

    def __bool__(self) -> bool:
        return len(self) > 0
