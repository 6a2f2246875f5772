"""
Prompt Enhancement Pipeline.

Stages:
    1. analyze_context        answers → EnhancementContext
    2. inject_best_practices  deterministic sections appended
    3. optimize_prompt        AI enhancement loop (degrades when unavailable)
    4. format_for_target      wrapper for the requested target backend
    5. final validation       re-score; falls back to the stage 3 score
    6. identify_improvements  human-readable change list

The pipeline always produces a result: with zero backends configured the
caller still gets the deterministically enhanced prompt and a neutral score.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from promptforge.cache import ResponseCache
from promptforge.enhancement.context import (
    EnhancementContext,
    analyze_context,
    format_for_target,
    identify_improvements,
    inject_best_practices,
)
from promptforge.exceptions import InvalidCacheKeyError, PromptForgeError
from promptforge.orchestrator import DEFAULT_TARGET_QUALITY, EnhancedPrompt, OrchestrationService
from promptforge.providers.base import QualityScore

logger = logging.getLogger(__name__)

DEGRADED_SCORE = 70.0
DEGRADED_PROVIDER = "none"
DEGRADED_FEEDBACK = "AI enhancement not available"

VALIDATION_THRESHOLD = 75
VALIDATION_SUGGESTIONS = (
    ("clarity", "Improve clarity by being more specific about requirements"),
    ("completeness", "Add missing information about architecture, testing, or deployment"),
    ("technical_accuracy", "Review technical specifications for accuracy"),
    ("best_practices", "Include more industry best practices and standards"),
)

DEFAULT_FOLLOW_UP_QUESTIONS = [
    {
        "questionText": "What are the performance requirements for this project?",
        "questionType": "TEXT",
        "helpText": "Specify any performance targets or constraints",
    },
    {
        "questionText": "Are there any specific security requirements?",
        "questionType": "TEXT",
        "helpText": "List any security considerations or compliance needs",
    },
    {
        "questionText": "What is the expected timeline for this project?",
        "questionType": "TEXT",
        "helpText": "Provide the project timeline or deadline",
    },
]

FOLLOW_UP_TEMPLATE = """Based on these project requirements:
{answers}

And these questions already asked:
{asked}

Generate 3-5 follow-up questions that would help create a better prompt for this project.
Focus on missing information, clarifications needed, and important details not yet covered.

Return as JSON array: [{{"questionText": "...", "questionType": "TEXT|SELECT|BOOLEAN", "helpText": "..."}}]"""


@dataclass
class EnhancementMetadata:
    enhancement_time_ms: float
    providers_used: list[str]
    cost_estimate: float


@dataclass
class EnhancementResult:
    """Final output of the enhancement pipeline."""

    original: str
    enhanced: str
    quality: QualityScore
    provider: str
    improvements: list[str]
    metadata: EnhancementMetadata
    context: EnhancementContext = field(default_factory=EnhancementContext)

    def to_dict(self) -> dict[str, Any]:
        return {
            "original": self.original,
            "enhanced": self.enhanced,
            "quality": self.quality.to_dict(),
            "provider": self.provider,
            "improvements": list(self.improvements),
            "metadata": {
                "enhancement_time_ms": self.metadata.enhancement_time_ms,
                "providers_used": list(self.metadata.providers_used),
                "cost_estimate": self.metadata.cost_estimate,
            },
        }


@dataclass
class QualityValidation:
    is_valid: bool
    score: QualityScore
    suggestions: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "score": self.score.to_dict(),
            "suggestions": list(self.suggestions),
        }


def _parse_questions(text: str) -> list[dict[str, Any]]:
    """Decode a JSON array of question objects from a backend answer."""
    start, end = text.find("["), text.rfind("]")
    if start == -1 or end <= start:
        raise ValueError("No JSON array in response")
    questions = json.loads(text[start : end + 1])
    if not isinstance(questions, list) or not all(
        isinstance(q, dict) and q.get("questionText") for q in questions
    ):
        raise ValueError("Response is not a list of questions")
    return questions


class PromptEnhancementEngine:
    """Runs the enhancement pipeline on top of an OrchestrationService."""

    def __init__(
        self,
        orchestrator: OrchestrationService,
        cache: ResponseCache | None = None,
        default_target_quality: int = DEFAULT_TARGET_QUALITY,
    ):
        self._orchestrator = orchestrator
        self._cache = cache if cache is not None else orchestrator.cache
        self._default_target_quality = default_target_quality

    async def enhance(
        self,
        prompt: str,
        answers: dict[str, Any] | None = None,
        target_quality: int | None = None,
    ) -> EnhancementResult:
        """Enhance ``prompt`` using the user's ``answers``.

        Args:
            prompt: Base prompt text
            answers: Project answers (projectType, framework, targetAI, ...)
            target_quality: Score the AI loop aims for (default 85)

        Returns:
            EnhancementResult; never raises for backend failures
        """
        start = time.perf_counter()
        answers = answers or {}
        target = self._default_target_quality if target_quality is None else target_quality

        context = analyze_context(answers)
        injected = inject_best_practices(prompt, context)

        try:
            ai_result = await self._orchestrator.optimize_prompt(injected, context, target)
        except PromptForgeError as e:
            logger.warning(f"AI enhancement skipped: {e}")
            ai_result = EnhancedPrompt(
                original=prompt,
                enhanced=injected,
                quality=QualityScore.neutral(DEGRADED_SCORE, [DEGRADED_FEEDBACK]),
                provider=DEGRADED_PROVIDER,
            )

        enhanced = ai_result.enhanced or injected or prompt
        enhanced = format_for_target(enhanced, answers.get("targetAI"))

        final_score = await self._orchestrator.score_prompt_quality(enhanced, context)
        if final_score.degraded:
            final_score = ai_result.quality

        providers_used = ai_result.metadata.get(
            "providers_used", self._orchestrator.available_providers()
        )
        return EnhancementResult(
            original=prompt,
            enhanced=enhanced,
            quality=final_score,
            provider=ai_result.provider,
            improvements=identify_improvements(prompt, enhanced, final_score),
            metadata=EnhancementMetadata(
                enhancement_time_ms=round((time.perf_counter() - start) * 1000, 2),
                providers_used=list(providers_used),
                cost_estimate=self._orchestrator.estimate_cost(enhanced),
            ),
            context=context,
        )

    async def validate_quality(self, prompt: str, context: Any = None) -> QualityValidation:
        """Score ``prompt`` and suggest fixes for weak dimensions."""
        score = await self._orchestrator.score_prompt_quality(prompt, context)
        suggestions = [
            message
            for dimension, message in VALIDATION_SUGGESTIONS
            if getattr(score, dimension) < VALIDATION_THRESHOLD
        ]
        suggestions.extend(score.feedback)
        return QualityValidation(
            is_valid=score.overall >= VALIDATION_THRESHOLD,
            score=score,
            suggestions=suggestions,
        )

    async def generate_follow_up_questions(
        self,
        answers: dict[str, Any],
        current_questions: list[dict[str, Any]] | None = None,
    ) -> list[dict[str, Any]]:
        """Suggest follow-up questions; falls back to a default set on any failure."""
        if not self._orchestrator.available_providers():
            logger.warning("No AI providers configured. Returning default follow-up questions.")
            return [dict(q) for q in DEFAULT_FOLLOW_UP_QUESTIONS]

        asked = [q.get("questionText", "") for q in current_questions or []]
        cache_params = {"answers": answers, "asked": asked}
        try:
            cached = self._cache.get("suggestions", cache_params)
        except InvalidCacheKeyError as e:
            logger.warning(f"Skipping suggestions cache: {e}")
            cache_params = None
            cached = None
        if cached is not None:
            return [dict(q) for q in cached]

        prompt = FOLLOW_UP_TEMPLATE.format(
            answers=json.dumps(answers, indent=2, default=str),
            asked="\n".join(asked),
        )
        try:
            response = await self._orchestrator.execute_prompt(prompt)
            questions = _parse_questions(response.content)
        except (PromptForgeError, ValueError) as e:
            logger.error(f"Failed to generate follow-up questions: {e}")
            return [dict(q) for q in DEFAULT_FOLLOW_UP_QUESTIONS]

        if cache_params is not None:
            self._cache.set("suggestions", cache_params, questions)
        return questions
