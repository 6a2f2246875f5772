"""
Provider Orchestration.

Routes work to the best available adapter, fails over through the ordered
fallback chain, and runs the multi-stage enhancement loop:

    cache lookup
        ↓ miss
    primary.enhance → primary.score ── target met ──→ cache, return
        ↓ below target
    fallback.enhance(current text) → fallback.score ── target met ──→ cache, return
        ↓ chain exhausted
    best result achieved (target not met is not an error)

Every adapter call is bounded by ``call_timeout``; a timeout is handled like
any other adapter failure.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any, TypeVar

from promptforge.cache import ResponseCache
from promptforge.costs import CostModel, UsageEvent, UsageSink, estimate_tokens, record_usage
from promptforge.exceptions import (
    AllProvidersFailedError,
    InvalidCacheKeyError,
    NoProviderConfiguredError,
    TimeoutError,
    UpstreamError,
)
from promptforge.providers.base import CompletionOptions, ModelProvider, ModelResponse, QualityScore
from promptforge.providers.registry import ProviderRegistry
from promptforge.tasks import Task, TaskType

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TARGET_QUALITY = 85
NEUTRAL_SCORE = 70.0
NO_PROVIDERS_FEEDBACK = "AI providers not configured. Unable to provide detailed scoring."
NO_RESPONDERS_FEEDBACK = "No AI provider returned a score. Unable to provide detailed scoring."

_END_OF_STREAM = object()


@dataclass
class EnhancedPrompt:
    """Outcome of the enhancement loop."""

    original: str
    enhanced: str
    quality: QualityScore
    provider: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "original": self.original,
            "enhanced": self.enhanced,
            "quality": self.quality.to_dict(),
            "provider": self.provider,
            "metadata": self.metadata,
        }


async def _next_fragment(iterator: AsyncIterator[str]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END_OF_STREAM


class OrchestrationService:
    """Routing, failover and iterative enhancement over a ProviderRegistry.

    Args:
        registry: Configured adapters
        cache: Response cache (a private one is created if omitted)
        cost_model: Pricing table used for usage events
        usage_sink: Receives fire-and-forget usage events
        call_timeout: Seconds allowed for each adapter call
        max_failover_attempts: Default attempt budget for failover helpers
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        cache: ResponseCache | None = None,
        cost_model: CostModel | None = None,
        usage_sink: UsageSink | None = None,
        call_timeout: float = 60.0,
        max_failover_attempts: int = 3,
    ):
        self._registry = registry
        self._cache = cache if cache is not None else ResponseCache()
        self._cost_model = cost_model or CostModel()
        self._usage_sink = usage_sink
        self._call_timeout = call_timeout
        self._max_failover_attempts = max_failover_attempts

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    @property
    def usage_sink(self) -> UsageSink | None:
        return self._usage_sink

    # ========================================================================
    # Plumbing
    # ========================================================================

    async def _call(self, provider: ModelProvider, awaitable: Awaitable[T], operation: str) -> T:
        """Await one adapter call under the per-call timeout."""
        try:
            async with asyncio.timeout(self._call_timeout):
                return await awaitable
        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"{provider.name} {operation} exceeded {self._call_timeout}s",
                timeout_seconds=self._call_timeout,
                operation=operation,
                service=provider.name,
            ) from e

    def _record(
        self,
        provider: str,
        operation: str,
        text: str,
        tokens: int | None = None,
        user_id: str | None = None,
    ) -> None:
        tokens = tokens if tokens is not None else estimate_tokens(text)
        rate = self._cost_model.rate(provider, operation)
        record_usage(
            self._usage_sink,
            UsageEvent(
                provider=provider,
                operation=operation,
                tokens=tokens,
                cost_usd=(tokens / 1000) * rate,
                user_id=user_id,
            ),
        )

    def _cache_get(self, operation: str, params: dict[str, Any]) -> tuple[bool, Any]:
        """Look ``params`` up; the flag is False when the key is unusable."""
        try:
            return True, self._cache.get(operation, params)
        except InvalidCacheKeyError as e:
            logger.warning(f"Skipping {operation} cache: {e}")
            return False, None

    def _ordered_chain(self, preferred: str | None = None) -> list[ModelProvider]:
        chain = self._registry.chain()
        if preferred is None:
            return chain
        if not self._registry.has_provider(preferred):
            logger.warning(f"Requested provider {preferred} is not configured, using default order")
            return chain
        chosen = self._registry.get(preferred)
        return [chosen] + [p for p in chain if p is not chosen]

    @staticmethod
    def _options(payload: dict[str, Any]) -> CompletionOptions:
        options = payload.get("options")
        if isinstance(options, CompletionOptions):
            if payload.get("prompt") is not None:
                return replace(options, prompt=payload["prompt"])
            return options
        return CompletionOptions(prompt=payload.get("prompt"), messages=payload.get("messages", []))

    # ========================================================================
    # Routing
    # ========================================================================

    def _dispatch(self, provider: ModelProvider, task: Task) -> Awaitable[Any]:
        payload = task.payload
        if task.type is TaskType.COMPLETION:
            return provider.complete(self._options(payload))
        if task.type is TaskType.ENHANCEMENT:
            return provider.enhance_prompt(payload["prompt"], payload.get("context"))
        if task.type is TaskType.SCORING:
            return provider.score_prompt_quality(payload["prompt"], payload.get("context"))
        raise ValueError(f"Unsupported task type: {task.type}")

    async def route(self, task: Task) -> Any:
        """Run ``task`` on the selected adapter, failing over in chain order.

        Streaming tasks return an async iterator whose first fragment has
        already been received, so connection failures fail over before the
        caller sees any output.

        Raises:
            NoProviderConfiguredError: If the registry is empty
            UpstreamError: The original error, if every adapter fails
        """
        selected = self._registry.select_for(task)
        candidates = [selected] + [p for p in self._registry.chain() if p is not selected]

        first_error: UpstreamError | None = None
        for provider in candidates:
            try:
                if task.type is TaskType.STREAMING:
                    return await self._open_stream(
                        provider, self._options(task.payload), task.payload.get("cancel")
                    )
                return await self._call(provider, self._dispatch(provider, task), task.type.value)
            except UpstreamError as e:
                logger.warning(
                    f"Provider {provider.name} failed {task.type.value}: {e}",
                    extra={"provider": provider.name, "operation": task.type.value},
                )
                if first_error is None:
                    first_error = e

        raise first_error

    # ========================================================================
    # Enhancement loop
    # ========================================================================

    async def optimize_prompt(
        self,
        base_prompt: str,
        context: Any = None,
        target_quality: int = DEFAULT_TARGET_QUALITY,
    ) -> EnhancedPrompt:
        """Enhance ``base_prompt`` until a score reaches ``target_quality``.

        The primary seeds the chain; each fallback enhances the current
        working text. The best result only changes on a strictly higher
        overall score, and the loop stops at the first score meeting the
        target. Falling short of the target still returns the best result.

        Raises:
            NoProviderConfiguredError: If the registry is empty
            AllProvidersFailedError: If every adapter step raised
        """
        chain = self._registry.chain()
        if not chain:
            raise NoProviderConfiguredError()

        cache_params = {
            "base_prompt": base_prompt,
            "context": context,
            "target_quality": target_quality,
        }
        cacheable, cached = self._cache_get("enhancement", cache_params)
        if cached is not None:
            logger.info("Enhancement served from cache")
            return replace(cached, metadata={**cached.metadata, "cached": True})

        start = time.perf_counter()
        best_text = base_prompt
        best_score = QualityScore.zero()
        best_provider = ""
        working = base_prompt
        providers_used: list[str] = []
        errors: list[tuple[str, BaseException]] = []
        target_met = False

        for index, provider in enumerate(chain):
            try:
                enhanced = await self._call(
                    provider, provider.enhance_prompt(working, context), "enhancement"
                )
                enhanced = enhanced.strip() or working
                score = await self._call(
                    provider, provider.score_prompt_quality(enhanced, context), "scoring"
                )
            except Exception as e:
                logger.warning(
                    f"Provider {provider.name} failed during enhancement: {e}",
                    extra={"provider": provider.name, "operation": "enhancement"},
                )
                errors.append((provider.name, e))
                continue

            providers_used.append(provider.name)
            self._record(provider.name, "enhancement", working + enhanced)
            logger.info(
                f"{provider.name} scored {score.overall:.1f} (target {target_quality})",
                extra={"provider": provider.name, "operation": "enhancement"},
            )

            if index == 0:
                working = enhanced
            if score.overall > best_score.overall:
                best_text, best_score, best_provider = enhanced, score, provider.name
                working = enhanced
            if score.overall >= target_quality:
                target_met = True
                break

        if not providers_used:
            raise AllProvidersFailedError(errors, operation="enhancement") from errors[0][1]

        result = EnhancedPrompt(
            original=base_prompt,
            enhanced=best_text or base_prompt,
            quality=best_score,
            provider=best_provider or providers_used[0],
            metadata={
                "enhancement_time_ms": round((time.perf_counter() - start) * 1000, 2),
                "providers_used": providers_used,
                "iterations": len(providers_used) + len(errors),
                "target_quality": target_quality,
                "target_met": target_met,
                "failed_providers": [name for name, _ in errors],
            },
        )

        if target_met and cacheable:
            self._cache.set("enhancement", cache_params, result)
        elif not target_met:
            logger.info(
                f"Target quality {target_quality} not reached; best {best_score.overall:.1f} "
                f"from {result.provider}"
            )
        return result

    async def score_prompt_quality(self, prompt: str, context: Any = None) -> QualityScore:
        """Average the scores of every configured adapter.

        Adapters are queried concurrently; failures are skipped and only
        responders are averaged. Never raises: with no responders the result
        is a neutral, degraded score.
        """
        chain = self._registry.chain()
        if not chain:
            return QualityScore.neutral(NEUTRAL_SCORE, [NO_PROVIDERS_FEEDBACK])

        cache_params = {"prompt": prompt, "context": context}
        cacheable, cached = self._cache_get("scoring", cache_params)
        if cached is not None:
            return cached

        results = await asyncio.gather(
            *(self._call(p, p.score_prompt_quality(prompt, context), "scoring") for p in chain),
            return_exceptions=True,
        )

        scores = []
        for provider, result in zip(chain, results):
            if isinstance(result, Exception):
                logger.warning(
                    f"Provider {provider.name} failed to score prompt: {result}",
                    extra={"provider": provider.name, "operation": "scoring"},
                )
                continue
            if isinstance(result, BaseException):
                raise result
            scores.append(result)
            self._record(provider.name, "scoring", prompt)

        if not scores:
            return QualityScore.neutral(NEUTRAL_SCORE, [NO_RESPONDERS_FEEDBACK])

        combined = QualityScore.average(scores)
        if cacheable and not any(score.degraded for score in scores):
            self._cache.set("scoring", cache_params, combined)
        return combined

    # ========================================================================
    # Execution
    # ========================================================================

    async def execute_with_failover(
        self,
        operation: Callable[[ModelProvider], Awaitable[T]],
        max_retries: int | None = None,
        preferred: str | None = None,
        operation_name: str = "completion",
    ) -> T:
        """Run ``operation`` against the primary, then fallbacks, until one succeeds.

        Args:
            operation: Called with each adapter in turn
            max_retries: Attempt budget (defaults to the configured one),
                capped at the number of adapters
            preferred: Adapter to try first
            operation_name: Label used in logs and timeouts

        Raises:
            NoProviderConfiguredError: If the registry is empty
            AllProvidersFailedError: After the attempt budget is spent;
                chained from the last error
        """
        budget = self._max_failover_attempts if max_retries is None else max_retries
        if budget < 1:
            raise ValueError("max_retries must be at least 1")

        chain = self._ordered_chain(preferred)
        if not chain:
            raise NoProviderConfiguredError()

        errors: list[tuple[str, BaseException]] = []
        for provider in chain[:budget]:
            try:
                result = await self._call(provider, operation(provider), operation_name)
            except Exception as e:
                logger.warning(
                    f"Attempt {len(errors) + 1} on {provider.name} failed: {e}",
                    extra={"provider": provider.name, "operation": operation_name},
                )
                errors.append((provider.name, e))
                continue

            if errors:
                logger.info(f"Failover to {provider.name} succeeded after {len(errors)} failure(s)")
            return result

        raise AllProvidersFailedError(errors, operation=operation_name) from errors[-1][1]

    async def execute_prompt(
        self,
        prompt: str,
        provider: str | None = None,
        options: CompletionOptions | None = None,
        user_id: str | None = None,
    ) -> ModelResponse:
        """Complete ``prompt``, preferring ``provider`` when it is configured.

        Usage is attributed to ``user_id`` when given.
        """
        options = replace(options, prompt=prompt) if options else CompletionOptions(prompt=prompt)
        response = await self.execute_with_failover(
            lambda adapter: adapter.complete(options),
            preferred=provider,
            operation_name="completion",
        )
        tokens = response.usage.total_tokens if response.usage else None
        self._record(
            response.provider, "completion", prompt + response.content, tokens, user_id=user_id
        )
        return response

    async def _open_stream(
        self,
        provider: ModelProvider,
        options: CompletionOptions,
        cancel: asyncio.Event | None,
    ) -> AsyncIterator[str]:
        iterator = provider.stream(options, cancel).__aiter__()
        try:
            first = await self._call(provider, _next_fragment(iterator), "streaming")
        except BaseException:
            await iterator.aclose()
            raise
        return self._resume_stream(provider, iterator, first, cancel)

    async def _resume_stream(
        self,
        provider: ModelProvider,
        iterator: AsyncIterator[str],
        first: Any,
        cancel: asyncio.Event | None,
    ) -> AsyncIterator[str]:
        try:
            fragment = first
            while fragment is not _END_OF_STREAM:
                yield fragment
                if cancel is not None and cancel.is_set():
                    logger.info(f"Stream from {provider.name} cancelled")
                    break
                fragment = await self._call(provider, _next_fragment(iterator), "streaming")
        finally:
            await iterator.aclose()

    async def stream_prompt(
        self,
        prompt: str,
        provider: str | None = None,
        options: CompletionOptions | None = None,
        cancel: asyncio.Event | None = None,
        user_id: str | None = None,
    ) -> AsyncIterator[str]:
        """Stream a completion of ``prompt``.

        Fails over only while opening the stream; once a fragment has been
        delivered, later errors propagate to the consumer.

        Raises:
            NoProviderConfiguredError: If the registry is empty
            AllProvidersFailedError: If no adapter could open a stream
        """
        chain = self._ordered_chain(provider)
        if not chain:
            raise NoProviderConfiguredError()
        options = replace(options, prompt=prompt) if options else CompletionOptions(prompt=prompt)

        errors: list[tuple[str, BaseException]] = []
        stream = None
        source = None
        for candidate in chain[: self._max_failover_attempts]:
            try:
                stream = await self._open_stream(candidate, options, cancel)
            except UpstreamError as e:
                logger.warning(
                    f"Provider {candidate.name} failed to open stream: {e}",
                    extra={"provider": candidate.name, "operation": "streaming"},
                )
                errors.append((candidate.name, e))
                continue
            source = candidate
            break

        if stream is None:
            raise AllProvidersFailedError(errors, operation="streaming") from errors[-1][1]

        delivered = []
        try:
            async for fragment in stream:
                delivered.append(fragment)
                yield fragment
        finally:
            await stream.aclose()
            self._record(
                source.name, "streaming", prompt + "".join(delivered), user_id=user_id
            )

    # ========================================================================
    # Introspection
    # ========================================================================

    def available_providers(self) -> list[str]:
        return self._registry.available_providers()

    def pricing_adapter(self, provider: str | None = None) -> ModelProvider | None:
        """Adapter that prices a request: ``provider`` when configured, else the primary."""
        if provider is not None and self._registry.has_provider(provider):
            return self._registry.get(provider)
        return self._registry.primary

    def estimate_cost(self, prompt: str, provider: str | None = None) -> float:
        """Estimated cost of completing ``prompt`` (0.0 when nothing is configured)."""
        adapter = self.pricing_adapter(provider)
        if adapter is None:
            return 0.0
        return adapter.estimate_cost(estimate_tokens(prompt))

    def system_status(self) -> dict[str, Any]:
        """Provider, cache and health summary with operator recommendations."""
        providers = self._registry.summary()
        cache_stats = self._cache.stats()

        recommendations = []
        if providers["total"] == 0:
            recommendations.append("Configure at least one AI provider API key to enable AI features")
        elif providers["total"] == 1:
            recommendations.append("Configure additional providers for automatic failover")
        if cache_stats.hits + cache_stats.misses >= 10 and cache_stats.hit_rate < 20:
            recommendations.append("Cache hit rate is low; repeated prompts may differ in context")

        return {
            "status": "operational" if providers["total"] else "no_providers",
            "providers": providers,
            "cache": cache_stats.to_dict(),
            "recommendations": recommendations,
        }
