"""
Anthropic Messages API adapter.

The system prompt travels as a top-level field rather than a message, and
streamed text arrives in ``content_block_delta`` events.
"""

from typing import Any

from promptforge.providers.base import CompletionOptions, ProviderName, TokenUsage
from promptforge.providers.http import HTTPProvider

ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_RATE_PER_1K = 0.015


class AnthropicProvider(HTTPProvider):
    """Adapter for the Anthropic Messages API."""

    provider_name = ProviderName.ANTHROPIC.value
    default_base_url = "https://api.anthropic.com/v1"

    def _endpoint(self, stream: bool) -> str:
        return f"{self._base_url}/messages"

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def _payload(self, options: CompletionOptions, stream: bool) -> dict[str, Any]:
        # The Messages API only accepts user/assistant turns
        messages = [m for m in options.to_messages() if m.get("role") != "system"]
        system_parts = [m["content"] for m in options.to_messages() if m.get("role") == "system"]
        if options.system:
            system_parts.insert(0, options.system)

        payload: dict[str, Any] = {
            "model": self.model_id,
            "messages": messages,
            "max_tokens": self._max_tokens(options),
            "temperature": self._temperature(options),
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        if options.stop_sequences:
            payload["stop_sequences"] = list(options.stop_sequences)
        if stream:
            payload["stream"] = True
        return payload

    def _parse_response(self, data: dict[str, Any]) -> tuple[str, TokenUsage | None, str | None]:
        content = "".join(
            block.get("text", "")
            for block in data["content"]
            if block.get("type") == "text"
        )
        usage = None
        if data.get("usage"):
            usage = TokenUsage(
                prompt_tokens=data["usage"].get("input_tokens", 0),
                completion_tokens=data["usage"].get("output_tokens", 0),
            )
        return content, usage, data.get("stop_reason")

    def _parse_stream_event(self, event: dict[str, Any]) -> str | None:
        if event.get("type") != "content_block_delta":
            return None
        delta = event.get("delta", {})
        if delta.get("type") == "text_delta":
            return delta.get("text")
        return None

    def estimate_cost(self, tokens: int) -> float:
        return (tokens / 1000) * ANTHROPIC_RATE_PER_1K
