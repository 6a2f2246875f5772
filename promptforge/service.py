"""
Caller-facing façade and composition root.

build_service() wires settings, credentials, registry, cache, cost model,
orchestrator and pipeline together; PromptService exposes the operations
an outer layer (the HTTP routes, a CLI, a worker) needs.

Usage:
    from promptforge.service import build_service

    service = build_service()
    result = await service.enhance("Build a login page", {"framework": "React"})
    async for fragment in service.stream("Write a haiku"):
        if fragment == END_OF_STREAM:
            break
        print(fragment, end="")
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from promptforge.cache import ResponseCache
from promptforge.config.settings import AppSettings, load_settings
from promptforge.costs import (
    PERIODS,
    CostEstimate,
    CostModel,
    InMemoryUsageSink,
    UsageLedger,
    UsageSink,
)
from promptforge.credentials import CredentialStore, EnvCredentialStore
from promptforge.enhancement.engine import EnhancementResult, PromptEnhancementEngine, QualityValidation
from promptforge.orchestrator import OrchestrationService
from promptforge.providers.base import CompletionOptions, ModelResponse, QualityScore
from promptforge.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

END_OF_STREAM = "[DONE]"

# Entry counts above which the cache report suggests a cleanup
CACHE_CLEANUP_THRESHOLD = 1000
# Hit rate (percent) below which the cache report suggests warming
CACHE_WARMING_THRESHOLD = 40


class PromptService:
    """Single entry point for enhancement, scoring and execution."""

    def __init__(
        self,
        registry: ProviderRegistry,
        orchestrator: OrchestrationService,
        engine: PromptEnhancementEngine,
        cost_model: CostModel,
        settings: AppSettings | None = None,
        credential_store: CredentialStore | None = None,
    ):
        self.registry = registry
        self.orchestrator = orchestrator
        self.engine = engine
        self.cost_model = cost_model
        self.settings = settings or AppSettings()
        self._credential_store = credential_store

    async def enhance(
        self,
        prompt: str,
        answers: dict[str, Any] | None = None,
        target_quality: int | None = None,
    ) -> EnhancementResult:
        return await self.engine.enhance(prompt, answers, target_quality)

    async def score(self, prompt: str, context: Any = None) -> QualityScore:
        return await self.orchestrator.score_prompt_quality(prompt, context)

    async def validate(self, prompt: str, context: Any = None) -> QualityValidation:
        return await self.engine.validate_quality(prompt, context)

    async def follow_up_questions(
        self,
        answers: dict[str, Any],
        current_questions: list[dict[str, Any]] | None = None,
    ) -> list[dict[str, Any]]:
        return await self.engine.generate_follow_up_questions(answers, current_questions)

    async def execute(
        self,
        prompt: str,
        provider: str | None = None,
        options: CompletionOptions | None = None,
        user_id: str | None = None,
    ) -> ModelResponse:
        return await self.orchestrator.execute_prompt(prompt, provider, options, user_id=user_id)

    async def stream(
        self,
        prompt: str,
        provider: str | None = None,
        options: CompletionOptions | None = None,
        cancel: asyncio.Event | None = None,
        user_id: str | None = None,
    ) -> AsyncIterator[str]:
        """Yield completion fragments followed by END_OF_STREAM.

        The sentinel is only sent when the stream finished without being
        cancelled.
        """
        stream = self.orchestrator.stream_prompt(prompt, provider, options, cancel, user_id=user_id)
        try:
            async for fragment in stream:
                yield fragment
        finally:
            await stream.aclose()
        if cancel is None or not cancel.is_set():
            yield END_OF_STREAM

    def available_providers(self) -> list[str]:
        return self.orchestrator.available_providers()

    def estimate_cost(self, prompt: str, provider: str | None = None) -> float:
        return self.orchestrator.estimate_cost(prompt, provider)

    def pricing_provider(self, provider: str | None = None) -> str | None:
        """Name of the adapter estimate_cost() prices with, or None without providers."""
        adapter = self.orchestrator.pricing_adapter(provider)
        return adapter.name if adapter is not None else None

    def estimate_operation_cost(
        self, prompt: str, provider: str, operation: str = "completion"
    ) -> CostEstimate:
        return self.cost_model.estimate_prompt_cost(prompt, provider, operation)

    def recommend_provider(
        self,
        prioritize_speed: bool = False,
        prioritize_cost: bool = False,
        prioritize_quality: bool = False,
    ) -> str | None:
        """Best configured provider for the stated priorities."""
        return self.cost_model.select_optimal_provider(
            self.available_providers(),
            prioritize_speed=prioritize_speed,
            prioritize_cost=prioritize_cost,
            prioritize_quality=prioritize_quality,
        )

    def cost_summary(self, period: str = "month", user_id: str | None = None) -> dict[str, Any]:
        """Recorded spend for ``period`` plus the current limit status.

        ``summary`` and ``limits`` are None when the usage sink keeps no
        history.

        Raises:
            ValueError: If ``period`` is neither "day" nor "month"
        """
        if period not in PERIODS:
            raise ValueError(f"Unknown period {period!r}; expected one of {', '.join(PERIODS)}")
        sink = self.orchestrator.usage_sink
        summary = limits = None
        if isinstance(sink, UsageLedger):
            summary = sink.summary(period, user_id=user_id)
            limits = sink.check_limits(user_id=user_id).to_dict()
        else:
            logger.info(f"Usage sink {type(sink).__name__} keeps no history")
        return {
            "summary": summary,
            "limits": limits,
            "recommendations": self.cost_model.recommendations(),
        }

    def cache_stats(self, limit: int = 10) -> dict[str, Any]:
        """Cache counters, the most-read entries and tuning hints."""
        stats = self.orchestrator.cache.stats()
        recommendations = [
            "Cache performance is good"
            if stats.hit_rate > CACHE_WARMING_THRESHOLD
            else "Consider warming the cache with common prompts",
            "Consider clearing stale cache entries"
            if stats.total_entries > CACHE_CLEANUP_THRESHOLD
            else "Cache size is within bounds",
        ]
        return {
            "stats": stats.to_dict(),
            "popular_entries": self.orchestrator.cache.popular_entries(limit),
            "recommendations": recommendations,
        }

    def clear_cache(self) -> int:
        """Drop every cached response; returns how many were removed."""
        return self.orchestrator.cache.clear()

    def system_status(self) -> dict[str, Any]:
        status = self.orchestrator.system_status()
        status["cost_recommendations"] = self.cost_model.recommendations()
        return status

    def reload_credentials(self, credential_store: CredentialStore | None = None) -> list[str]:
        """Rebuild the registry from current credentials.

        Returns:
            Names of the providers now configured
        """
        if credential_store is not None:
            self._credential_store = credential_store
        store = self._credential_store or EnvCredentialStore()
        self.registry.rebuild(store, self.settings.providers)
        return self.registry.available_providers()


def build_service(
    settings: AppSettings | None = None,
    credential_store: CredentialStore | None = None,
    usage_sink: UsageSink | None = None,
    registry: ProviderRegistry | None = None,
) -> PromptService:
    """
    Compose a PromptService.

    Args:
        settings: Engine settings (loaded from YAML/env when omitted)
        credential_store: API key source (environment when omitted)
        usage_sink: Usage event receiver (in-memory ledger when omitted)
        registry: Pre-built registry, e.g. of mock adapters

    Returns:
        A ready PromptService
    """
    settings = settings or load_settings()
    credential_store = credential_store or EnvCredentialStore()

    if registry is None:
        registry = ProviderRegistry.from_credentials(
            credential_store,
            settings.providers,
            high_quality_preference=settings.high_quality_preference,
        )

    cache = ResponseCache(ttls=settings.cache_ttls)
    cost_model = CostModel()
    orchestrator = OrchestrationService(
        registry,
        cache=cache,
        cost_model=cost_model,
        usage_sink=usage_sink if usage_sink is not None else InMemoryUsageSink(),
        call_timeout=settings.call_timeout,
        max_failover_attempts=settings.max_failover_attempts,
    )
    engine = PromptEnhancementEngine(
        orchestrator, cache=cache, default_target_quality=settings.default_target_quality
    )

    logger.info(
        f"Prompt service ready with providers: {registry.available_providers() or 'none'}"
    )
    return PromptService(
        registry,
        orchestrator,
        engine,
        cost_model,
        settings=settings,
        credential_store=credential_store,
    )
