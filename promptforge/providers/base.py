"""
Base classes for backend adapters.

Every generative-text backend is wrapped in a ModelProvider subclass that
exposes the same capability set:

- complete / stream: raw text generation
- score_prompt_quality: structured quality assessment of a prompt
- enhance_prompt: rewrite a prompt to be clearer and more complete
- estimate_cost: static per-token pricing

Scoring and enhancement are implemented once here on top of complete(), so a
concrete adapter only has to speak its backend's wire format.
"""

import asyncio
import dataclasses
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Iterable

from promptforge.exceptions import UpstreamError

logger = logging.getLogger(__name__)

# Neutral value used when a backend answers but the answer can't be parsed
UNPARSEABLE_SCORE = 75.0
# Default for individual dimensions missing from an otherwise valid answer
MISSING_DIMENSION_SCORE = 70.0

SCORE_DIMENSIONS = ("overall", "clarity", "completeness", "technical_accuracy", "best_practices")

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


class ProviderName(str, Enum):
    """The closed set of supported backends, in discovery order."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    GROQ = "groq"

    def __str__(self) -> str:
        return self.value


@dataclass
class ProviderSettings:
    """Per-backend tuning loaded from configuration."""

    model: str
    max_tokens: int = 4000
    temperature: float = 0.7
    timeout_seconds: float = 60.0
    max_retries: int = 3
    base_url: str | None = None


@dataclass
class TokenUsage:
    """Token accounting reported by a backend."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """Total tokens used."""
        return self.prompt_tokens + self.completion_tokens


@dataclass
class CompletionOptions:
    """Request parameters shared by every backend.

    Either ``prompt`` or ``messages`` must be given; a bare prompt is sent as
    a single user message.
    """

    prompt: str | None = None
    messages: list[dict[str, str]] = field(default_factory=list)
    system: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    stop_sequences: list[str] = field(default_factory=list)

    def to_messages(self) -> list[dict[str, str]]:
        """Return the conversation as role/content dicts (system excluded)."""
        if self.messages:
            return [dict(message) for message in self.messages]
        if self.prompt is not None:
            return [{"role": "user", "content": self.prompt}]
        raise ValueError("CompletionOptions requires either prompt or messages")

    def text(self) -> str:
        """Concatenated message text, used for token estimation."""
        return "\n".join(m.get("content", "") for m in self.to_messages())


@dataclass
class ModelResponse:
    """Standardized response from any backend."""

    content: str
    model: str
    provider: str
    usage: TokenUsage | None = None
    latency_ms: float = 0.0
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    stop_reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "content": self.content,
            "model": self.model,
            "provider": self.provider,
            "usage": dataclasses.asdict(self.usage) if self.usage else None,
            "latency_ms": self.latency_ms,
            "timestamp": self.timestamp,
            "stop_reason": self.stop_reason,
            "metadata": self.metadata,
        }


def _clamp(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if number != number:  # NaN
        return default
    return max(0.0, min(100.0, number))


@dataclass(frozen=True)
class QualityScore:
    """Quality assessment of a prompt on a 0-100 scale.

    ``degraded`` marks a neutral default produced when no real assessment
    was available, so callers can tell it apart from a genuine score.
    """

    overall: float
    clarity: float
    completeness: float
    technical_accuracy: float
    best_practices: float
    feedback: tuple[str, ...] = ()
    degraded: bool = False

    def __post_init__(self):
        for name in SCORE_DIMENSIONS:
            object.__setattr__(self, name, _clamp(getattr(self, name), 0.0))
        object.__setattr__(self, "feedback", tuple(str(item) for item in self.feedback))

    @classmethod
    def neutral(cls, value: float, feedback: Iterable[str] = ()) -> "QualityScore":
        """Build a degraded score with every dimension set to ``value``."""
        return cls(value, value, value, value, value, tuple(feedback), degraded=True)

    @classmethod
    def zero(cls) -> "QualityScore":
        """Baseline that any real score beats."""
        return cls(0, 0, 0, 0, 0)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "QualityScore":
        """Build a score from a decoded backend answer.

        Accepts both snake_case and camelCase keys. Missing dimensions
        default to a neutral 70; out-of-range values are clamped.
        """
        def pick(snake: str, camel: str) -> float:
            value = payload.get(snake, payload.get(camel))
            return _clamp(value, MISSING_DIMENSION_SCORE)

        feedback = payload.get("feedback") or []
        if isinstance(feedback, str):
            feedback = [feedback]
        elif not isinstance(feedback, (list, tuple)):
            feedback = []
        return cls(
            overall=pick("overall", "overall"),
            clarity=pick("clarity", "clarity"),
            completeness=pick("completeness", "completeness"),
            technical_accuracy=pick("technical_accuracy", "technicalAccuracy"),
            best_practices=pick("best_practices", "bestPractices"),
            feedback=tuple(str(item) for item in feedback),
        )

    @classmethod
    def average(cls, scores: list["QualityScore"]) -> "QualityScore":
        """Average each dimension across ``scores``; feedback is concatenated in order."""
        if not scores:
            raise ValueError("Cannot average an empty list of scores")
        count = len(scores)
        values = {
            name: sum(getattr(score, name) for score in scores) / count
            for name in SCORE_DIMENSIONS
        }
        feedback = tuple(item for score in scores for item in score.feedback)
        return cls(**values, feedback=feedback)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "overall": self.overall,
            "clarity": self.clarity,
            "completeness": self.completeness,
            "technical_accuracy": self.technical_accuracy,
            "best_practices": self.best_practices,
            "feedback": list(self.feedback),
            "degraded": self.degraded,
        }


def describe_context(context: Any) -> str:
    """Render an enhancement context (dataclass or mapping) for a prompt."""
    if context is None:
        return "{}"
    if dataclasses.is_dataclass(context) and not isinstance(context, type):
        context = dataclasses.asdict(context)
    return json.dumps(context, indent=2, default=str, sort_keys=True)


SCORING_SYSTEM_PROMPT = (
    "You are an expert prompt engineer. Evaluate prompts for AI coding "
    "assistants and answer with JSON only."
)

SCORING_TEMPLATE = """Analyze the following prompt and score it on these criteria (0-100):
- Overall quality
- Clarity (how clear and unambiguous)
- Completeness (includes all necessary information)
- Technical accuracy (technically sound and feasible)
- Best practices (follows software development best practices)

Prompt to analyze:
{prompt}

Context:
{context}

Respond with JSON in exactly this format:
{{
  "overall": <number>,
  "clarity": <number>,
  "completeness": <number>,
  "technical_accuracy": <number>,
  "best_practices": <number>,
  "feedback": ["<specific improvement suggestion>", "..."]
}}"""

ENHANCEMENT_SYSTEM_PROMPT = (
    "You are an expert prompt engineer specializing in prompts for AI "
    "coding assistants. Return only the enhanced prompt text."
)

ENHANCEMENT_TEMPLATE = """Enhance the following prompt so an AI coding assistant can act on it precisely:
1. Make it more specific and detailed
2. Add relevant technical requirements
3. Include best practices and security considerations
4. Structure it clearly with sections
5. Remove ambiguity

Original prompt:
{prompt}

Context:
{context}

Return only the enhanced prompt, without explanations."""


class ModelProvider(ABC):
    """Abstract base class for backend adapters.

    Subclasses implement complete() and stream() for their API; the shared
    scoring and enhancement behaviour is built on top of complete().

    Example:
        class MyProvider(ModelProvider):
            @property
            def name(self) -> str:
                return "my-provider"

            async def complete(self, options):
                ...
    """

    # Low temperatures keep structured answers stable
    scoring_temperature: float = 0.3
    enhancement_temperature: float = 0.5
    scoring_max_tokens: int = 1000
    enhancement_max_tokens: int = 2000

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry name for this adapter (e.g. 'openai')."""

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Backend model identifier."""

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether the adapter holds what it needs to make calls."""

    @abstractmethod
    def estimate_cost(self, tokens: int) -> float:
        """Estimated USD cost for ``tokens`` tokens (static rate table)."""

    @abstractmethod
    async def complete(self, options: CompletionOptions) -> ModelResponse:
        """Generate a completion.

        Args:
            options: Prompt or messages plus sampling parameters

        Returns:
            ModelResponse with generated content

        Raises:
            UpstreamError: On transport, authentication or rate-limit failure
        """

    @abstractmethod
    def stream(
        self,
        options: CompletionOptions,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        """Stream a completion fragment by fragment.

        The iterator is lazy and finite. It stops when the backend finishes,
        when ``cancel`` is set, or when the consumer stops iterating; the
        underlying connection is released in every case.

        Raises:
            UpstreamError: If the API call fails
        """

    async def score_prompt_quality(self, prompt: str, context: Any = None) -> QualityScore:
        """Ask the backend to score ``prompt``.

        Unparseable answers yield a neutral degraded score; transport
        failures propagate as UpstreamError.
        """
        options = CompletionOptions(
            prompt=SCORING_TEMPLATE.format(prompt=prompt, context=describe_context(context)),
            system=SCORING_SYSTEM_PROMPT,
            max_tokens=self.scoring_max_tokens,
            temperature=self.scoring_temperature,
        )
        response = await self.complete(options)
        return parse_quality_score(response.content, self.name)

    async def enhance_prompt(self, base_prompt: str, context: Any = None) -> str:
        """Ask the backend to rewrite ``base_prompt``.

        Never raises: on any backend failure, or an empty answer, the
        original prompt is returned unchanged.
        """
        options = CompletionOptions(
            prompt=ENHANCEMENT_TEMPLATE.format(
                prompt=base_prompt, context=describe_context(context)
            ),
            system=ENHANCEMENT_SYSTEM_PROMPT,
            max_tokens=self.enhancement_max_tokens,
            temperature=self.enhancement_temperature,
        )
        try:
            response = await self.complete(options)
        except Exception as e:
            logger.warning(f"{self.name} enhancement failed, keeping original prompt: {e}")
            return base_prompt

        enhanced = (response.content or "").strip()
        return enhanced or base_prompt

    async def health_check(self) -> bool:
        """Check if the backend is reachable.

        Returns:
            True if a minimal completion succeeds, False otherwise
        """
        try:
            response = await self.complete(
                CompletionOptions(prompt="Say 'ok'", max_tokens=10, temperature=0)
            )
            return len(response.content) > 0
        except UpstreamError:
            return False

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name}, model={self.model_id})>"


def parse_quality_score(text: str, provider_name: str = "provider") -> QualityScore:
    """Extract the first JSON object from ``text`` and build a QualityScore.

    Falls back to a neutral degraded score of 75 when no JSON object can be
    decoded.
    """
    match = _JSON_BLOCK.search(text or "")
    if match:
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict):
            try:
                return QualityScore.from_payload(payload)
            except (TypeError, ValueError) as e:
                logger.warning(f"Malformed quality payload from {provider_name}: {e}")

    logger.warning(f"Could not parse quality score from {provider_name}")
    return QualityScore.neutral(
        UNPARSEABLE_SCORE,
        [f"Unable to parse detailed scoring from {provider_name}"],
    )
