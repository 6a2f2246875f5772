"""
Mock Backend Adapter for Testing.

Provides a deterministic scripted adapter for running the orchestrator and
enhancement pipeline without making API calls.

Usage:
    from promptforge.providers.mock import MockProvider
    from promptforge.providers.registry import ProviderRegistry

    primary = MockProvider(name="primary", scores=[60])
    fallback = MockProvider(name="fallback", enhanced_text="Better prompt", scores=[88])
    registry = ProviderRegistry([primary, fallback])
"""

import asyncio
from collections import Counter
from collections.abc import AsyncIterator, Iterable
from typing import Any

from promptforge.exceptions import UpstreamError
from promptforge.providers.base import (
    CompletionOptions,
    ModelProvider,
    ModelResponse,
    QualityScore,
    TokenUsage,
)

DEFAULT_COMPLETION = "Mock response generated successfully."


class MockProvider(ModelProvider):
    """Scripted adapter with configurable answers and failures.

    Every call is counted per operation in ``calls`` so tests can assert
    exactly which adapters were reached.
    """

    def __init__(
        self,
        name: str = "mock",
        model_id: str = "mock-model-v1",
        completion_text: str = DEFAULT_COMPLETION,
        enhanced_text: str | None = None,
        scores: float | QualityScore | Iterable[float | QualityScore] = 80.0,
        fail_operations: Iterable[str] = (),
        latency_ms: float = 0.0,
        cost_per_1k: float = 0.001,
        configured: bool = True,
    ):
        """Initialize mock provider.

        Args:
            name: Registry name
            model_id: Model identifier
            completion_text: Text returned by complete() and streamed by stream()
            enhanced_text: Text returned by enhance_prompt() (None appends a
                requirements section to the input)
            scores: Score(s) returned by successive score_prompt_quality() calls;
                the last one repeats
            fail_operations: Operations that raise UpstreamError
                ("complete", "stream", "score", "enhance")
            latency_ms: Simulated latency per call
            cost_per_1k: Cost per 1000 tokens
            configured: Value reported by is_configured()
        """
        self._name = name
        self._model_id = model_id
        self._completion_text = completion_text
        self._enhanced_text = enhanced_text
        if isinstance(scores, (int, float, QualityScore)):
            scores = [scores]
        self._scores = [self._as_score(score) for score in scores]
        self._fail_operations = set(fail_operations)
        self._latency_ms = latency_ms
        self._cost_per_1k = cost_per_1k
        self._configured = configured
        self.calls: Counter[str] = Counter()

    @staticmethod
    def _as_score(score: float | QualityScore) -> QualityScore:
        if isinstance(score, QualityScore):
            return score
        return QualityScore(
            overall=score,
            clarity=score,
            completeness=score,
            technical_accuracy=score,
            best_practices=score,
            feedback=(f"Scored {score:g} by mock",),
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def model_id(self) -> str:
        return self._model_id

    def is_configured(self) -> bool:
        return self._configured

    def estimate_cost(self, tokens: int) -> float:
        return (tokens / 1000) * self._cost_per_1k

    async def _simulate(self, operation: str) -> None:
        self.calls[operation] += 1
        if self._latency_ms:
            await asyncio.sleep(self._latency_ms / 1000)
        if operation in self._fail_operations:
            raise UpstreamError(f"Simulated {operation} failure", service=self._name)

    async def complete(self, options: CompletionOptions) -> ModelResponse:
        await self._simulate("complete")
        prompt_tokens = len(options.text().split())
        return ModelResponse(
            content=self._completion_text,
            model=self._model_id,
            provider=self._name,
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=len(self._completion_text.split()),
            ),
            latency_ms=self._latency_ms,
            stop_reason="end_turn",
            metadata={"mock": True, "call_count": self.calls["complete"]},
        )

    async def stream(
        self,
        options: CompletionOptions,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        await self._simulate("stream")
        words = self._completion_text.split()
        for index, word in enumerate(words):
            if cancel is not None and cancel.is_set():
                return
            yield word if index == len(words) - 1 else word + " "
            await asyncio.sleep(0)

    async def score_prompt_quality(self, prompt: str, context: Any = None) -> QualityScore:
        await self._simulate("score")
        index = min(self.calls["score"] - 1, len(self._scores) - 1)
        return self._scores[index]

    async def enhance_prompt(self, base_prompt: str, context: Any = None) -> str:
        try:
            await self._simulate("enhance")
        except UpstreamError:
            return base_prompt
        if self._enhanced_text is not None:
            return self._enhanced_text
        return f"{base_prompt}\n\n## Requirements\n- Provide a complete, tested implementation"

    async def health_check(self) -> bool:
        return self._configured and "complete" not in self._fail_operations
