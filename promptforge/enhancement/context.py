"""
Deterministic prompt pre/post-processing.

Nothing in this module calls a backend or raises on odd input: context
analysis, best-practice injection, target formatting and improvement
detection are all pure functions over strings and answer dicts.
"""

from dataclasses import dataclass, field
from typing import Any

from promptforge.providers.base import QualityScore

DEFAULT_PROJECT_TYPE = "general"

# (answer key, template) pairs feeding each context list, in output order
TECHNOLOGY_KEYS = ("framework", "database")
CONSTRAINT_RULES = (
    ("timeline", "Timeline: {}"),
    ("budget", "Budget: {}"),
    ("performanceTarget", "Performance: {}"),
)
SECURITY_RULES = (
    ("authentication", "Auth: {}"),
    ("compliance", "Compliance: {}"),
)

PROJECT_BEST_PRACTICES: dict[str, list[str]] = {
    "REST API": [
        "Follow RESTful conventions",
        "Implement proper error handling",
        "Use pagination for list endpoints",
        "Include request/response validation",
    ],
    "E-commerce Website": [
        "Implement secure payment processing",
        "Follow PCI DSS compliance",
        "Optimize for mobile devices",
        "Implement proper SEO structure",
    ],
}

BEST_PRACTICES_HEADING = "Best Practices"
SECURITY_HEADING = "Security Requirements"

# Wrappers applied for a known target backend; {prompt} is the prompt text
TARGET_FORMATS = {
    "claude": (
        "<task>\n{prompt}\n</task>\n\n"
        "Please provide a comprehensive solution following all requirements above."
    ),
    "gpt-4": (
        "You are an expert software architect and developer.\n\n{prompt}\n\n"
        "Provide a detailed, production-ready implementation."
    ),
    "gemini": (
        "{prompt}\n\nWork through the requirements step by step, then provide the "
        "complete implementation."
    ),
    "llama": (
        "### Instruction:\n{prompt}\n\n### Response:"
    ),
}

TRACKED_SECTIONS = ("Requirements", "Best Practices", "Constraints", "Security", "Performance")
LENGTH_GROWTH_FACTOR = 1.2
MAX_FEEDBACK_ITEMS = 3
MAX_IMPROVEMENTS = 8
STRONG_DIMENSION = 80

DIMENSION_NOTES = (
    ("clarity", "Improved clarity and specificity"),
    ("completeness", "Ensured comprehensive coverage"),
    ("technical_accuracy", "Enhanced technical accuracy"),
    ("best_practices", "Incorporated industry best practices"),
)


@dataclass
class EnhancementContext:
    """Structured view of a user's project answers."""

    project_type: str = DEFAULT_PROJECT_TYPE
    technologies: list[str] = field(default_factory=list)
    constraints: list[str] = field(default_factory=list)
    best_practices: list[str] = field(default_factory=list)
    security_requirements: list[str] = field(default_factory=list)
    target_audience: str | None = None


def _as_text_list(value: Any) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(item) for item in value if item not in (None, "")]
    return [str(value)]


def analyze_context(answers: dict[str, Any] | None) -> EnhancementContext:
    """Derive an EnhancementContext from raw answers."""
    answers = answers or {}
    project_type = str(answers.get("projectType") or DEFAULT_PROJECT_TYPE)

    technologies = []
    for key in TECHNOLOGY_KEYS:
        technologies.extend(_as_text_list(answers.get(key)))
    technologies.extend(_as_text_list(answers.get("additionalTech")))

    constraints = [
        template.format(answers[key]) for key, template in CONSTRAINT_RULES if answers.get(key)
    ]
    security = [
        template.format(answers[key]) for key, template in SECURITY_RULES if answers.get(key)
    ]

    return EnhancementContext(
        project_type=project_type,
        technologies=technologies,
        constraints=constraints,
        best_practices=list(PROJECT_BEST_PRACTICES.get(project_type, [])),
        security_requirements=security,
        target_audience=answers.get("targetAudience") or None,
    )


def inject_best_practices(prompt: str, context: EnhancementContext) -> str:
    """Append best-practice and security sections the prompt doesn't already have.

    A section is skipped when its heading text already appears in the
    prompt or when it would be empty.
    """
    sections = []
    if BEST_PRACTICES_HEADING not in prompt and context.best_practices:
        lines = "\n".join(f"- {item}" for item in context.best_practices)
        sections.append(f"## {BEST_PRACTICES_HEADING} to Follow\n{lines}")
    if SECURITY_HEADING not in prompt and context.security_requirements:
        lines = "\n".join(f"- {item}" for item in context.security_requirements)
        sections.append(f"## {SECURITY_HEADING}\n{lines}")

    if not sections:
        return prompt
    return prompt.rstrip() + "\n\n" + "\n\n".join(sections) + "\n"


def format_for_target(prompt: str, target: str | None) -> str:
    """Wrap ``prompt`` for the target backend; unknown targets pass through."""
    if not target:
        return prompt
    template = TARGET_FORMATS.get(str(target).lower())
    if template is None:
        return prompt
    return template.format(prompt=prompt)


def identify_improvements(original: str, final: str, score: QualityScore) -> list[str]:
    """Describe what changed between ``original`` and ``final``."""
    improvements = []

    if len(final) > len(original) * LENGTH_GROWTH_FACTOR:
        improvements.append("Added more detail and context")

    for section in TRACKED_SECTIONS:
        if section not in original and section in final:
            improvements.append(f"Added {section} section")

    improvements.extend(score.feedback[:MAX_FEEDBACK_ITEMS])

    for dimension, note in DIMENSION_NOTES:
        if getattr(score, dimension) > STRONG_DIMENSION:
            improvements.append(note)

    return improvements[:MAX_IMPROVEMENTS]
