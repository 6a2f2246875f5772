"""Groq adapter (OpenAI-compatible API)."""

from promptforge.providers.base import ProviderName
from promptforge.providers.openai import OpenAIProvider

GROQ_RATE_PER_TOKEN = 0.00001


class GroqProvider(OpenAIProvider):
    """Adapter for Groq's OpenAI-compatible chat completions endpoint.

    Scoring and enhancement use smaller token budgets than the defaults.
    """

    provider_name = ProviderName.GROQ.value
    default_base_url = "https://api.groq.com/openai/v1"

    scoring_max_tokens = 500
    enhancement_max_tokens = 1000

    def estimate_cost(self, tokens: int) -> float:
        return tokens * GROQ_RATE_PER_TOKEN
