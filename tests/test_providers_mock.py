"""Tests for promptforge/providers/mock.py - Scripted mock adapter."""

import asyncio

import pytest

from promptforge.exceptions import UpstreamError
from promptforge.providers.base import CompletionOptions, ModelResponse, QualityScore


class TestMockProviderBasics:
    """Tests for MockProvider basic functionality."""

    def test_mock_provider_defaults(self):
        """MockProvider should have sensible defaults."""
        from promptforge.providers.mock import MockProvider

        provider = MockProvider()
        assert provider.name == "mock"
        assert provider.model_id == "mock-model-v1"
        assert provider.is_configured() is True
        assert sum(provider.calls.values()) == 0

    def test_estimate_cost(self):
        from promptforge.providers.mock import MockProvider

        assert MockProvider(cost_per_1k=0.02).estimate_cost(500) == pytest.approx(0.01)


class TestMockProviderOperations:
    """Tests for scripted answers."""

    @pytest.mark.asyncio
    async def test_complete_returns_response(self):
        from promptforge.providers.mock import MockProvider

        provider = MockProvider(completion_text="Scripted answer")
        response = await provider.complete(CompletionOptions(prompt="Hello there"))

        assert isinstance(response, ModelResponse)
        assert response.content == "Scripted answer"
        assert response.usage.prompt_tokens == 2
        assert provider.calls["complete"] == 1

    @pytest.mark.asyncio
    async def test_scores_consumed_in_order_last_repeats(self):
        from promptforge.providers.mock import MockProvider

        provider = MockProvider(scores=[60, 75])
        results = [(await provider.score_prompt_quality("p")).overall for _ in range(3)]
        assert results == [60, 75, 75]

    @pytest.mark.asyncio
    async def test_score_accepts_quality_score(self):
        from promptforge.providers.mock import MockProvider

        custom = QualityScore(50, 60, 70, 80, 90, ("x",))
        provider = MockProvider(scores=custom)
        assert await provider.score_prompt_quality("p") is custom

    @pytest.mark.asyncio
    async def test_enhance_default_appends_requirements(self):
        from promptforge.providers.mock import MockProvider

        enhanced = await MockProvider().enhance_prompt("Build a blog")
        assert enhanced.startswith("Build a blog")
        assert "## Requirements" in enhanced

    @pytest.mark.asyncio
    async def test_failing_operations_raise(self):
        from promptforge.providers.mock import MockProvider

        provider = MockProvider(fail_operations={"complete", "score"})
        with pytest.raises(UpstreamError):
            await provider.complete(CompletionOptions(prompt="x"))
        with pytest.raises(UpstreamError):
            await provider.score_prompt_quality("x")
        assert provider.calls["complete"] == 1
        assert provider.calls["score"] == 1

    @pytest.mark.asyncio
    async def test_failing_enhance_returns_original(self):
        """Enhancement keeps the contract and never propagates."""
        from promptforge.providers.mock import MockProvider

        provider = MockProvider(fail_operations={"enhance"}, enhanced_text="never")
        assert await provider.enhance_prompt("original") == "original"

    @pytest.mark.asyncio
    async def test_stream_words(self):
        from promptforge.providers.mock import MockProvider

        provider = MockProvider(completion_text="one two three")
        fragments = [f async for f in provider.stream(CompletionOptions(prompt="x"))]
        assert fragments == ["one ", "two ", "three"]

    @pytest.mark.asyncio
    async def test_stream_respects_cancel(self):
        from promptforge.providers.mock import MockProvider

        provider = MockProvider(completion_text="a b c d")
        cancel = asyncio.Event()
        received = []
        async for fragment in provider.stream(CompletionOptions(prompt="x"), cancel):
            received.append(fragment)
            cancel.set()
        assert received == ["a "]

    @pytest.mark.asyncio
    async def test_health_check(self):
        from promptforge.providers.mock import MockProvider

        assert await MockProvider().health_check() is True
        assert await MockProvider(fail_operations={"complete"}).health_check() is False
