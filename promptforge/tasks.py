"""Unit-of-work descriptors passed to the orchestrator's router."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TaskType(str, Enum):
    """Operation a task asks an adapter to perform."""

    COMPLETION = "completion"
    ENHANCEMENT = "enhancement"
    SCORING = "scoring"
    STREAMING = "streaming"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class Task:
    """A single routed request. Built per call and never mutated.

    Attributes:
        type: Operation to perform
        payload: Operation input (``prompt``, ``context``, ``options`` ...)
        priority: Caller priority hint
        cost_sensitive: Whether the caller prefers cheap backends
        quality_required: Minimum acceptable quality (0-100); above 85 the
            router prefers the high-quality backends
    """

    type: TaskType
    payload: dict[str, Any] = field(default_factory=dict)
    priority: Priority = Priority.MEDIUM
    cost_sensitive: bool = False
    quality_required: int = 0

    def __post_init__(self):
        if not 0 <= self.quality_required <= 100:
            raise ValueError(f"quality_required must be within 0-100, got {self.quality_required}")
