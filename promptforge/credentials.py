"""
Credential lookup for backend API keys.

The engine only needs two questions answered per provider: is there a key,
and what is it. Storage (encrypted at rest, per user, ...) lives behind the
CredentialStore protocol.

Usage:
    from promptforge.credentials import ChainedCredentialStore, EnvCredentialStore, StaticCredentialStore

    store = ChainedCredentialStore([
        StaticCredentialStore({"openai": user_supplied_key}),
        EnvCredentialStore(),
    ])
    if store.has_key("openai"):
        key = store.get_key("openai")
"""

import os
from collections.abc import Iterable, Mapping
from typing import Protocol, runtime_checkable


# Environment variable holding each backend's API key
ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_AI_API_KEY",
    "groq": "GROQ_API_KEY",
}


def _provider_key(provider: str) -> str:
    # Accepts ProviderName members as well as plain strings
    return str(getattr(provider, "value", provider)).lower()


@runtime_checkable
class CredentialStore(Protocol):
    """Read-only access to API keys by provider name."""

    def get_key(self, provider: str) -> str | None:
        """Return the API key for ``provider``, or None if absent."""
        ...

    def has_key(self, provider: str) -> bool:
        """Whether a non-empty key exists for ``provider``."""
        ...


class EnvCredentialStore:
    """Reads keys from environment variables (see ENV_VARS)."""

    def __init__(self, environ: Mapping[str, str] | None = None):
        self._environ = environ if environ is not None else os.environ

    def get_key(self, provider: str) -> str | None:
        var = ENV_VARS.get(_provider_key(provider))
        if var is None:
            return None
        value = self._environ.get(var, "").strip()
        return value or None

    def has_key(self, provider: str) -> bool:
        return self.get_key(provider) is not None


class StaticCredentialStore:
    """In-memory keys, e.g. supplied per request or in tests."""

    def __init__(self, keys: Mapping[str, str] | None = None):
        self._keys = {
            _provider_key(name): value for name, value in (keys or {}).items() if value
        }

    def get_key(self, provider: str) -> str | None:
        return self._keys.get(_provider_key(provider))

    def has_key(self, provider: str) -> bool:
        return _provider_key(provider) in self._keys

    def set_key(self, provider: str, key: str) -> None:
        self._keys[_provider_key(provider)] = key

    def remove_key(self, provider: str) -> None:
        self._keys.pop(_provider_key(provider), None)


class ChainedCredentialStore:
    """Consults stores in order; the first store holding a key wins."""

    def __init__(self, stores: Iterable[CredentialStore]):
        self._stores = list(stores)

    def get_key(self, provider: str) -> str | None:
        for store in self._stores:
            key = store.get_key(provider)
            if key:
                return key
        return None

    def has_key(self, provider: str) -> bool:
        return any(store.has_key(provider) for store in self._stores)
