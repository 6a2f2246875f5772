"""Tests for the HTTP backend adapters (OpenAI, Anthropic, Google, Groq).

All traffic goes through httpx.MockTransport; nothing leaves the process.
"""

import asyncio
import json

import httpx
import pytest

from promptforge.exceptions import AuthenticationError, RateLimitError, TimeoutError, UpstreamError
from promptforge.providers.anthropic import AnthropicProvider
from promptforge.providers.base import CompletionOptions, ProviderSettings
from promptforge.providers.google import GoogleProvider
from promptforge.providers.groq import GroqProvider
from promptforge.providers.http import raise_for_status
from promptforge.providers.openai import OpenAIProvider


def make_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def sse(*events):
    lines = [f"data: {json.dumps(e) if not isinstance(e, str) else e}\n\n" for e in events]
    return "".join(lines).encode()


class TestOpenAIProvider:
    """Tests for OpenAIProvider wire format."""

    @pytest.mark.asyncio
    async def test_complete_request_and_response(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "model": "gpt-4-turbo-preview",
                    "choices": [{"message": {"content": "Hello!"}, "finish_reason": "stop"}],
                    "usage": {"prompt_tokens": 5, "completion_tokens": 2},
                },
            )

        provider = OpenAIProvider(
            "sk-test", ProviderSettings(model="gpt-4-turbo-preview"), client=make_client(handler)
        )
        response = await provider.complete(
            CompletionOptions(prompt="Hi", system="Be brief", stop_sequences=["END"])
        )

        assert seen["url"] == "https://api.openai.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["messages"][0] == {"role": "system", "content": "Be brief"}
        assert seen["body"]["messages"][1] == {"role": "user", "content": "Hi"}
        assert seen["body"]["stop"] == ["END"]
        assert seen["body"]["max_tokens"] == 4000
        assert response.content == "Hello!"
        assert response.provider == "openai"
        assert response.usage.total_tokens == 7
        assert response.stop_reason == "stop"

    @pytest.mark.asyncio
    async def test_stream_yields_deltas_until_done(self):
        def handler(request):
            assert json.loads(request.content)["stream"] is True
            body = sse(
                {"choices": [{"delta": {"role": "assistant"}}]},
                {"choices": [{"delta": {"content": "Hel"}}]},
                {"choices": [{"delta": {"content": "lo"}}]},
                "[DONE]",
                {"choices": [{"delta": {"content": "ignored"}}]},
            )
            return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

        provider = OpenAIProvider("k", ProviderSettings(model="gpt-4"), client=make_client(handler))
        fragments = [f async for f in provider.stream(CompletionOptions(prompt="Hi"))]

        assert fragments == ["Hel", "lo"]

    @pytest.mark.asyncio
    async def test_stream_stops_when_cancelled(self):
        def handler(request):
            body = sse(*[{"choices": [{"delta": {"content": str(i)}}]} for i in range(10)])
            return httpx.Response(200, content=body)

        provider = OpenAIProvider("k", ProviderSettings(model="gpt-4"), client=make_client(handler))
        cancel = asyncio.Event()
        received = []
        async for fragment in provider.stream(CompletionOptions(prompt="Hi"), cancel):
            received.append(fragment)
            if len(received) == 2:
                cancel.set()

        assert received == ["0", "1"]

    @pytest.mark.asyncio
    async def test_stream_error_status(self):
        provider = OpenAIProvider(
            "k",
            ProviderSettings(model="gpt-4"),
            client=make_client(lambda r: httpx.Response(500, text="boom")),
        )
        with pytest.raises(UpstreamError):
            async for _ in provider.stream(CompletionOptions(prompt="Hi")):
                pass

    @pytest.mark.asyncio
    async def test_unauthorized_maps_to_authentication_error(self):
        provider = OpenAIProvider(
            "bad",
            ProviderSettings(model="gpt-4"),
            client=make_client(lambda r: httpx.Response(401, json={"error": "invalid key"})),
        )
        with pytest.raises(AuthenticationError) as exc_info:
            await provider.complete(CompletionOptions(prompt="Hi"))
        assert exc_info.value.service == "openai"

    @pytest.mark.asyncio
    async def test_server_error_maps_to_upstream_error(self):
        provider = OpenAIProvider(
            "k",
            ProviderSettings(model="gpt-4"),
            client=make_client(lambda r: httpx.Response(503, text="overloaded")),
        )
        with pytest.raises(UpstreamError) as exc_info:
            await provider.complete(CompletionOptions(prompt="Hi"))
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_transport_timeout_maps_to_timeout_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        provider = OpenAIProvider("k", ProviderSettings(model="gpt-4"), client=make_client(handler))
        with pytest.raises(TimeoutError):
            await provider.complete(CompletionOptions(prompt="Hi"))

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_upstream_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        provider = OpenAIProvider("k", ProviderSettings(model="gpt-4"), client=make_client(handler))
        with pytest.raises(UpstreamError):
            await provider.complete(CompletionOptions(prompt="Hi"))

    @pytest.mark.asyncio
    async def test_missing_key_fails_without_request(self):
        calls = []
        provider = OpenAIProvider(
            None,
            ProviderSettings(model="gpt-4"),
            client=make_client(lambda r: calls.append(r) or httpx.Response(200)),
        )
        assert provider.is_configured() is False
        with pytest.raises(AuthenticationError):
            await provider.complete(CompletionOptions(prompt="Hi"))
        assert calls == []

    @pytest.mark.asyncio
    async def test_unexpected_shape_is_upstream_error(self):
        provider = OpenAIProvider(
            "k",
            ProviderSettings(model="gpt-4"),
            client=make_client(lambda r: httpx.Response(200, json={"unexpected": True})),
        )
        with pytest.raises(UpstreamError):
            await provider.complete(CompletionOptions(prompt="Hi"))

    @pytest.mark.asyncio
    async def test_null_choice_is_upstream_error(self):
        provider = OpenAIProvider(
            "k",
            ProviderSettings(model="gpt-4"),
            client=make_client(lambda r: httpx.Response(200, json={"choices": [None]})),
        )
        with pytest.raises(UpstreamError) as exc_info:
            await provider.complete(CompletionOptions(prompt="Hi"))
        assert exc_info.value.service == "openai"

    @pytest.mark.asyncio
    async def test_non_text_content_is_upstream_error(self):
        body = {"choices": [{"message": {"content": {"text": "nested"}}}]}
        provider = OpenAIProvider(
            "k",
            ProviderSettings(model="gpt-4"),
            client=make_client(lambda r: httpx.Response(200, json=body)),
        )
        with pytest.raises(UpstreamError):
            await provider.complete(CompletionOptions(prompt="Hi"))

    @pytest.mark.asyncio
    async def test_enhance_over_malformed_body_keeps_original(self):
        provider = OpenAIProvider(
            "k",
            ProviderSettings(model="gpt-4"),
            client=make_client(lambda r: httpx.Response(200, json={"choices": [None]})),
        )
        assert await provider.enhance_prompt("base") == "base"

    @pytest.mark.asyncio
    async def test_score_with_non_list_feedback(self):
        answer = json.dumps({"overall": 90, "feedback": 5})
        body = {"choices": [{"message": {"content": answer}}]}
        provider = OpenAIProvider(
            "k",
            ProviderSettings(model="gpt-4"),
            client=make_client(lambda r: httpx.Response(200, json=body)),
        )
        score = await provider.score_prompt_quality("Build an API")
        assert score.overall == 90
        assert score.feedback == ()

    @pytest.mark.asyncio
    async def test_stream_skips_malformed_events(self):
        def handler(request):
            body = sse(
                '"hello"',
                "[1, 2]",
                {"choices": [None]},
                {"choices": [{"delta": {"content": "ok"}}]},
                {"choices": [{"delta": {"content": 7}}]},
                "[DONE]",
            )
            return httpx.Response(200, content=body)

        provider = OpenAIProvider("k", ProviderSettings(model="gpt-4"), client=make_client(handler))
        fragments = [f async for f in provider.stream(CompletionOptions(prompt="Hi"))]

        assert fragments == ["ok"]

    @pytest.mark.asyncio
    async def test_rate_limit_attempts_follow_max_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429, text="slow down")

        provider = OpenAIProvider(
            "k", ProviderSettings(model="gpt-4", max_retries=1), client=make_client(handler)
        )
        with pytest.raises(RateLimitError):
            await provider.complete(CompletionOptions(prompt="Hi"))
        assert len(calls) == 1

    def test_estimate_cost_by_model_tier(self):
        gpt4 = OpenAIProvider("k", ProviderSettings(model="gpt-4-turbo-preview"))
        gpt35 = OpenAIProvider("k", ProviderSettings(model="gpt-3.5-turbo"))
        assert gpt4.estimate_cost(1000) == pytest.approx(0.03)
        assert gpt35.estimate_cost(1000) == pytest.approx(0.002)


class TestRaiseForStatus:
    """Tests for HTTP status mapping."""

    def test_rate_limit_reads_retry_after(self):
        response = httpx.Response(429, headers={"retry-after": "12"})
        with pytest.raises(RateLimitError) as exc_info:
            raise_for_status(response, "openai")
        assert exc_info.value.retry_after == 12.0
        assert exc_info.value.status_code == 429

    def test_forbidden_is_authentication_error(self):
        with pytest.raises(AuthenticationError):
            raise_for_status(httpx.Response(403, text="nope"), "google")

    def test_success_passes(self):
        raise_for_status(httpx.Response(200), "openai")


class TestAnthropicProvider:
    """Tests for AnthropicProvider wire format."""

    @pytest.mark.asyncio
    async def test_complete(self):
        seen = {}

        def handler(request):
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "model": "claude-3-opus-20240229",
                    "content": [{"type": "text", "text": "Bonjour"}],
                    "stop_reason": "end_turn",
                    "usage": {"input_tokens": 10, "output_tokens": 3},
                },
            )

        provider = AnthropicProvider(
            "ant-key", ProviderSettings(model="claude-3-opus-20240229"), client=make_client(handler)
        )
        response = await provider.complete(CompletionOptions(prompt="Hello", system="Translate"))

        assert seen["headers"]["x-api-key"] == "ant-key"
        assert seen["headers"]["anthropic-version"] == "2023-06-01"
        assert seen["body"]["system"] == "Translate"
        assert seen["body"]["messages"] == [{"role": "user", "content": "Hello"}]
        assert response.content == "Bonjour"
        assert response.usage.prompt_tokens == 10
        assert response.provider == "anthropic"

    @pytest.mark.asyncio
    async def test_stream_text_deltas(self):
        def handler(request):
            body = sse(
                {"type": "message_start"},
                {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hi"}},
                {"type": "content_block_delta", "delta": {"type": "text_delta", "text": " there"}},
                {"type": "message_stop"},
            )
            return httpx.Response(200, content=body)

        provider = AnthropicProvider("k", ProviderSettings(model="claude"), client=make_client(handler))
        fragments = [f async for f in provider.stream(CompletionOptions(prompt="Hi"))]
        assert fragments == ["Hi", " there"]

    def test_estimate_cost(self):
        provider = AnthropicProvider("k", ProviderSettings(model="claude"))
        assert provider.estimate_cost(2000) == pytest.approx(0.03)


class TestGoogleProvider:
    """Tests for GoogleProvider wire format."""

    @pytest.mark.asyncio
    async def test_complete(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "candidates": [
                        {"content": {"parts": [{"text": "Hola"}]}, "finishReason": "STOP"}
                    ],
                    "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 1},
                },
            )

        provider = GoogleProvider(
            "g-key", ProviderSettings(model="gemini-pro"), client=make_client(handler)
        )
        response = await provider.complete(CompletionOptions(prompt="Hi", temperature=0.2))

        assert seen["url"].endswith("/models/gemini-pro:generateContent")
        assert seen["headers"]["x-goog-api-key"] == "g-key"
        assert seen["body"]["contents"] == [{"role": "user", "parts": [{"text": "Hi"}]}]
        assert seen["body"]["generationConfig"]["temperature"] == 0.2
        assert response.content == "Hola"
        assert response.model == "gemini-pro"
        assert response.usage.total_tokens == 5

    @pytest.mark.asyncio
    async def test_stream_uses_sse_endpoint(self):
        def handler(request):
            assert "streamGenerateContent" in str(request.url)
            assert request.url.params["alt"] == "sse"
            body = sse(
                {"candidates": [{"content": {"parts": [{"text": "A"}]}}]},
                {"candidates": [{"content": {"parts": [{"text": "B"}]}}]},
            )
            return httpx.Response(200, content=body)

        provider = GoogleProvider("k", ProviderSettings(model="gemini-pro"), client=make_client(handler))
        fragments = [f async for f in provider.stream(CompletionOptions(prompt="Hi"))]
        assert fragments == ["A", "B"]

    def test_estimate_cost_per_character(self):
        provider = GoogleProvider("k", ProviderSettings(model="gemini-pro"))
        # 1000 tokens = 4000 characters
        assert provider.estimate_cost(1000) == pytest.approx(4 * 0.00025 + 4 * 0.0005)


class TestGroqProvider:
    """Tests for GroqProvider."""

    @pytest.mark.asyncio
    async def test_uses_groq_endpoint(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(
                200, json={"choices": [{"message": {"content": "fast"}}]}
            )

        provider = GroqProvider(
            "gsk", ProviderSettings(model="mixtral-8x7b-32768"), client=make_client(handler)
        )
        response = await provider.complete(CompletionOptions(prompt="Hi"))

        assert seen["url"] == "https://api.groq.com/openai/v1/chat/completions"
        assert response.provider == "groq"
        assert response.usage is None

    def test_estimate_cost(self):
        provider = GroqProvider("k", ProviderSettings(model="mixtral"))
        assert provider.estimate_cost(1000) == pytest.approx(0.01)

    def test_base_url_override(self):
        provider = GroqProvider(
            "k", ProviderSettings(model="m", base_url="http://localhost:8080/v1/")
        )
        assert provider._endpoint(stream=False) == "http://localhost:8080/v1/chat/completions"
