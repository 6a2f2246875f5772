"""
Google Generative Language (Gemini) adapter.

Uses ``models/{model}:generateContent`` for completions and
``models/{model}:streamGenerateContent?alt=sse`` for streaming.
"""

from typing import Any

from promptforge.providers.base import CompletionOptions, ProviderName, TokenUsage
from promptforge.providers.http import HTTPProvider

# Gemini bills per character; tokens are approximated as 4 characters
CHARS_PER_TOKEN = 4
INPUT_RATE_PER_1K_CHARS = 0.00025
OUTPUT_RATE_PER_1K_CHARS = 0.0005


class GoogleProvider(HTTPProvider):
    """Adapter for the Gemini generateContent API."""

    provider_name = ProviderName.GOOGLE.value
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    def _endpoint(self, stream: bool) -> str:
        if stream:
            return f"{self._base_url}/models/{self.model_id}:streamGenerateContent?alt=sse"
        return f"{self._base_url}/models/{self.model_id}:generateContent"

    def _headers(self) -> dict[str, str]:
        return {
            "x-goog-api-key": self._api_key or "",
            "Content-Type": "application/json",
        }

    def _payload(self, options: CompletionOptions, stream: bool) -> dict[str, Any]:
        contents = []
        for message in options.to_messages():
            if message.get("role") == "system":
                continue
            role = "model" if message.get("role") == "assistant" else "user"
            contents.append({"role": role, "parts": [{"text": message.get("content", "")}]})

        generation_config: dict[str, Any] = {
            "temperature": self._temperature(options),
            "maxOutputTokens": self._max_tokens(options),
        }
        if options.stop_sequences:
            generation_config["stopSequences"] = list(options.stop_sequences)

        payload: dict[str, Any] = {
            "contents": contents,
            "generationConfig": generation_config,
        }
        if options.system:
            payload["systemInstruction"] = {"parts": [{"text": options.system}]}
        return payload

    @staticmethod
    def _candidate_text(data: dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = candidates[0].get("content", {}).get("parts", [])
        return "".join(part.get("text", "") for part in parts)

    def _parse_response(self, data: dict[str, Any]) -> tuple[str, TokenUsage | None, str | None]:
        if "candidates" not in data:
            raise KeyError("candidates")

        usage = None
        metadata = data.get("usageMetadata")
        if metadata:
            usage = TokenUsage(
                prompt_tokens=metadata.get("promptTokenCount", 0),
                completion_tokens=metadata.get("candidatesTokenCount", 0),
            )
        candidates = data["candidates"]
        stop_reason = candidates[0].get("finishReason") if candidates else None
        return self._candidate_text(data), usage, stop_reason

    def _parse_stream_event(self, event: dict[str, Any]) -> str | None:
        return self._candidate_text(event) or None

    def estimate_cost(self, tokens: int) -> float:
        characters = tokens * CHARS_PER_TOKEN
        input_cost = (characters / 1000) * INPUT_RATE_PER_1K_CHARS
        output_cost = (characters / 1000) * OUTPUT_RATE_PER_1K_CHARS
        return input_cost + output_cost
