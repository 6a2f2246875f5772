"""Prompt enhancement pipeline."""

from promptforge.enhancement.context import (
    EnhancementContext,
    analyze_context,
    format_for_target,
    identify_improvements,
    inject_best_practices,
)
from promptforge.enhancement.engine import (
    EnhancementResult,
    PromptEnhancementEngine,
    QualityValidation,
)

__all__ = [
    "EnhancementContext",
    "EnhancementResult",
    "PromptEnhancementEngine",
    "QualityValidation",
    "analyze_context",
    "format_for_target",
    "identify_improvements",
    "inject_best_practices",
]
