"""Tests for promptforge/service.py - Facade and composition root."""

import asyncio

import pytest

from promptforge.config import AppSettings
from promptforge.costs import InMemoryUsageSink
from promptforge.credentials import StaticCredentialStore
from promptforge.exceptions import AllProvidersFailedError, NoProviderConfiguredError
from promptforge.providers.mock import MockProvider
from promptforge.providers.registry import ProviderRegistry
from promptforge.service import END_OF_STREAM, build_service


@pytest.fixture
def make_service():
    """Factory: PromptService over mock adapters with default settings."""

    def _make(*providers, **kwargs):
        kwargs.setdefault("settings", AppSettings())
        kwargs.setdefault("credential_store", StaticCredentialStore())
        kwargs.setdefault("usage_sink", InMemoryUsageSink())
        return build_service(registry=ProviderRegistry(providers), **kwargs)

    return _make


class TestBuildService:
    def test_registry_from_credentials(self):
        service = build_service(
            settings=AppSettings(),
            credential_store=StaticCredentialStore({"anthropic": "ak", "groq": "gk"}),
        )
        assert service.available_providers() == ["anthropic", "groq"]

    @pytest.mark.asyncio
    async def test_settings_flow_into_orchestrator(self, make_service):
        settings = AppSettings(max_failover_attempts=1)
        a = MockProvider(name="a", fail_operations={"complete"})
        b = MockProvider(name="b")
        service = make_service(a, b, settings=settings)

        with pytest.raises(AllProvidersFailedError):
            await service.execute("hello")
        assert b.calls["complete"] == 0


    def test_default_usage_sink_keeps_history(self):
        service = build_service(
            settings=AppSettings(),
            credential_store=StaticCredentialStore(),
            registry=ProviderRegistry([MockProvider(name="a")]),
        )
        assert isinstance(service.orchestrator.usage_sink, InMemoryUsageSink)
        assert service.cost_summary()["summary"] is not None


class TestPromptService:
    """Tests for the facade operations."""

    @pytest.mark.asyncio
    async def test_enhance_and_score(self, make_service):
        provider = MockProvider(name="primary", enhanced_text="Better prompt", scores=[90])
        service = make_service(provider)

        result = await service.enhance("Build a blog")
        score = await service.score("Build a blog")

        assert result.enhanced == "Better prompt"
        assert result.provider == "primary"
        assert score.overall == 90

    @pytest.mark.asyncio
    async def test_enhance_without_providers(self, make_service):
        result = await make_service().enhance("Build a blog")
        assert result.provider == "none"
        assert result.enhanced == "Build a blog"

    @pytest.mark.asyncio
    async def test_execute_without_providers(self, make_service):
        with pytest.raises(NoProviderConfiguredError):
            await make_service().execute("hello")

    @pytest.mark.asyncio
    async def test_stream_ends_with_sentinel(self, make_service):
        service = make_service(MockProvider(completion_text="one two"))
        fragments = [f async for f in service.stream("hello")]
        assert fragments == ["one ", "two", END_OF_STREAM]

    @pytest.mark.asyncio
    async def test_cancelled_stream_has_no_sentinel(self, make_service):
        service = make_service(MockProvider(completion_text="one two three"))
        cancel = asyncio.Event()
        received = []
        async for fragment in service.stream("hello", cancel=cancel):
            received.append(fragment)
            cancel.set()
        assert received == ["one "]

    def test_recommend_provider_limited_to_configured(self, make_service):
        service = make_service(MockProvider(name="openai"), MockProvider(name="anthropic"))
        assert service.recommend_provider(prioritize_speed=True) == "anthropic"
        assert service.recommend_provider(prioritize_quality=True) == "openai"

    def test_recommend_provider_none_configured(self, make_service):
        assert make_service().recommend_provider() is None

    def test_estimate_operation_cost(self, make_service):
        estimate = make_service().estimate_operation_cost("x" * 400, "groq", "scoring")
        assert estimate.tokens == 100
        assert estimate.cost_per_1k == 0.0002

    def test_system_status_includes_cost_recommendations(self, make_service):
        status = make_service(MockProvider()).system_status()
        assert status["status"] == "operational"
        assert len(status["cost_recommendations"]) == 6

    def test_reload_credentials(self, make_service):
        service = make_service(MockProvider(name="mock"))
        providers = service.reload_credentials(StaticCredentialStore({"google": "gk"}))

        assert providers == ["google"]
        assert service.registry.primary.name == "google"
        assert service.orchestrator.available_providers() == ["google"]


class TestAdministration:
    """Tests for cost reporting and cache administration."""

    @pytest.mark.asyncio
    async def test_cost_summary_per_user(self, make_service):
        service = make_service(MockProvider(name="openai"))

        await service.execute("hello", user_id="alice")
        await service.execute("hello", user_id="bob")
        [_ async for _ in service.stream("hello", user_id="alice")]

        report = service.cost_summary("day", user_id="alice")

        assert report["summary"]["total_requests"] == 2
        assert set(report["summary"]["by_operation"]) == {"completion", "streaming"}
        assert report["limits"]["within_limits"] is True
        assert report["limits"]["user_spent"] > 0
        assert report["recommendations"]

    def test_cost_summary_rejects_unknown_period(self, make_service):
        with pytest.raises(ValueError):
            make_service().cost_summary("week")

    def test_cost_summary_without_history(self, make_service):
        class CountingSink:
            def __init__(self):
                self.count = 0

            def record(self, event):
                self.count += 1

        report = make_service(usage_sink=CountingSink()).cost_summary()

        assert report["summary"] is None
        assert report["limits"] is None

    @pytest.mark.asyncio
    async def test_cache_stats_and_clear(self, make_service):
        service = make_service(MockProvider(name="primary", scores=[90]))
        await service.score("Build a blog")
        await service.score("Build a blog")

        report = service.cache_stats()

        assert report["stats"]["total_entries"] == 1
        assert report["stats"]["hits"] == 1
        assert report["popular_entries"][0]["hit_count"] == 1
        assert len(report["recommendations"]) == 2

        assert service.clear_cache() == 1
        assert service.cache_stats()["stats"]["total_entries"] == 0
