"""
OpenAI Chat Completions adapter.

Also the base for any backend exposing an OpenAI-compatible
``/chat/completions`` endpoint (see GroqProvider).
"""

from typing import Any

from promptforge.providers.base import CompletionOptions, ProviderName, TokenUsage
from promptforge.providers.http import HTTPProvider


class OpenAIProvider(HTTPProvider):
    """Adapter for the OpenAI Chat Completions API.

    Example:
        provider = OpenAIProvider(api_key, ProviderSettings(model="gpt-4-turbo-preview"))
        response = await provider.complete(CompletionOptions(prompt="Hello"))
    """

    provider_name = ProviderName.OPENAI.value
    default_base_url = "https://api.openai.com/v1"

    def _endpoint(self, stream: bool) -> str:
        return f"{self._base_url}/chat/completions"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, options: CompletionOptions, stream: bool) -> dict[str, Any]:
        messages = options.to_messages()
        if options.system:
            messages.insert(0, {"role": "system", "content": options.system})

        payload: dict[str, Any] = {
            "model": self.model_id,
            "messages": messages,
            "max_tokens": self._max_tokens(options),
            "temperature": self._temperature(options),
        }
        if options.stop_sequences:
            payload["stop"] = list(options.stop_sequences)
        if stream:
            payload["stream"] = True
        return payload

    def _parse_response(self, data: dict[str, Any]) -> tuple[str, TokenUsage | None, str | None]:
        choice = data["choices"][0]
        content = choice.get("message", {}).get("content") or ""

        usage = None
        if data.get("usage"):
            usage = TokenUsage(
                prompt_tokens=data["usage"].get("prompt_tokens", 0),
                completion_tokens=data["usage"].get("completion_tokens", 0),
            )
        return content, usage, choice.get("finish_reason")

    def _parse_stream_event(self, event: dict[str, Any]) -> str | None:
        choices = event.get("choices") or []
        if not choices:
            return None
        return choices[0].get("delta", {}).get("content")

    def estimate_cost(self, tokens: int) -> float:
        # GPT-4 class models are priced well above the 3.5 tier
        rate_per_1k = 0.03 if "gpt-4" in self.model_id else 0.002
        return (tokens / 1000) * rate_per_1k
