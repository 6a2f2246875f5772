"""
Pytest configuration and shared fixtures.

Fixtures build the engine from scripted MockProvider adapters so no test
makes a network call.
"""

import pytest

from promptforge.cache import ResponseCache
from promptforge.costs import InMemoryUsageSink
from promptforge.orchestrator import OrchestrationService
from promptforge.providers.mock import MockProvider
from promptforge.providers.registry import ProviderRegistry


class FakeClock:
    """Manually advanced monotonic clock for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResponseCache(clock=clock)


@pytest.fixture
def usage_sink():
    return InMemoryUsageSink()


@pytest.fixture
def make_orchestrator(cache, usage_sink):
    """Factory: orchestrator over the given adapters (primary first)."""

    def _make(*providers, **kwargs):
        registry = ProviderRegistry(providers)
        kwargs.setdefault("cache", cache)
        kwargs.setdefault("usage_sink", usage_sink)
        return OrchestrationService(registry, **kwargs)

    return _make


@pytest.fixture
def primary():
    return MockProvider(name="primary", enhanced_text="Primary enhanced prompt", scores=[90])


@pytest.fixture
def empty_registry():
    return ProviderRegistry()
