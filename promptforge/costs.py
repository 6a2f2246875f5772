"""
Cost Model and Usage Accounting.

Provides:
- Static per-provider, per-operation pricing (USD per 1K tokens)
- Prompt cost estimation using a 4-characters-per-token approximation
- A priority-weighted provider selection heuristic
- Usage sinks that receive fire-and-forget usage events

The rates are illustrative defaults, not a billing source of truth.
"""

import logging
import math
import threading
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4

# USD per 1K tokens, by provider and operation
OPERATION_COSTS: dict[str, dict[str, float]] = {
    "openai": {"enhancement": 0.03, "scoring": 0.03, "streaming": 0.06, "completion": 0.06},
    "anthropic": {"enhancement": 0.045, "scoring": 0.045, "streaming": 0.09, "completion": 0.09},
    "google": {"enhancement": 0.001, "scoring": 0.001, "streaming": 0.002, "completion": 0.002},
    "groq": {"enhancement": 0.0002, "scoring": 0.0002, "streaming": 0.0002, "completion": 0.0002},
}

# Relative characteristics on a 1-10 scale (higher is better, so cheap = high cost score)
PROVIDER_TRAITS: dict[str, dict[str, int]] = {
    "groq": {"speed": 10, "cost": 10, "quality": 7},
    "google": {"speed": 8, "cost": 9, "quality": 8},
    "openai": {"speed": 6, "cost": 5, "quality": 10},
    "anthropic": {"speed": 7, "cost": 4, "quality": 9},
}

# Weight applied to a trait when the caller prioritizes it
PRIORITY_WEIGHTS = {"speed": 0.5, "cost": 0.4, "quality": 0.3}
# Blend used when the caller states no priority at all
BALANCED_WEIGHTS = {"speed": 0.3, "cost": 0.3, "quality": 0.4}

DEFAULT_LIMITS = {"daily": 50.0, "monthly": 1000.0, "per_user": 100.0}

# Look-back window of each summary period
PERIODS = {"day": timedelta(days=1), "month": timedelta(days=30)}

COST_RECOMMENDATIONS = [
    "Use Groq for quick iterations and testing (10x cheaper than GPT-4)",
    "Enable caching to avoid duplicate API calls",
    "Use Google Gemini for balanced performance and cost",
    "Reserve GPT-4 and Claude for final, high-quality enhancements",
    "Batch similar requests together to reduce overhead",
    "Set max_tokens limits appropriate to each use case",
]


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass
class CostEstimate:
    """Estimated cost of running one operation on one provider."""

    provider: str
    operation: str
    tokens: int
    cost_per_1k: float
    cost_usd: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "operation": self.operation,
            "tokens": self.tokens,
            "cost_per_1k": self.cost_per_1k,
            "cost_usd": round(self.cost_usd, 6),
        }


@dataclass
class UsageEvent:
    """A single billable call, as reported to a UsageSink."""

    provider: str
    operation: str
    tokens: int
    cost_usd: float
    user_id: str | None = None
    timestamp: datetime = field(default_factory=datetime.utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class LimitStatus:
    """Spend against the configured limits."""

    within_limits: bool
    daily_spent: float
    monthly_spent: float
    daily_remaining: float
    monthly_remaining: float
    user_spent: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@runtime_checkable
class UsageSink(Protocol):
    """Receives usage events. Implementations must be quick and non-blocking."""

    def record(self, event: UsageEvent) -> None:
        ...


@runtime_checkable
class UsageLedger(Protocol):
    """A sink that can also report what it has recorded."""

    def summary(
        self, period: str | None = None, user_id: str | None = None
    ) -> dict[str, Any]:
        ...

    def check_limits(self, user_id: str | None = None) -> LimitStatus:
        ...


class LoggingUsageSink:
    """Writes usage events to the log."""

    def record(self, event: UsageEvent) -> None:
        logger.info(
            f"AI usage: {event.provider} {event.operation} "
            f"tokens={event.tokens} cost=${event.cost_usd:.6f}",
            extra={"provider": event.provider, "operation": event.operation},
        )


class InMemoryUsageSink(LoggingUsageSink):
    """Logs usage events and keeps the last month of them in process memory.

    Not durable; totals reset with the process.
    """

    def __init__(self, limits: dict[str, float] | None = None):
        self._limits = {**DEFAULT_LIMITS, **(limits or {})}
        self._events: list[UsageEvent] = []
        self._lock = threading.Lock()

    def record(self, event: UsageEvent) -> None:
        super().record(event)
        cutoff = event.timestamp - PERIODS["month"]
        with self._lock:
            self._events = [e for e in self._events if e.timestamp >= cutoff]
            self._events.append(event)

    @property
    def limits(self) -> dict[str, float]:
        return dict(self._limits)

    @property
    def events(self) -> list[UsageEvent]:
        with self._lock:
            return list(self._events)

    def _spent_since(self, since: datetime, user_id: str | None = None) -> float:
        return sum(
            event.cost_usd
            for event in self.events
            if event.timestamp >= since and (user_id is None or event.user_id == user_id)
        )

    def check_limits(self, user_id: str | None = None, now: datetime | None = None) -> LimitStatus:
        """Compare recorded spend with the daily, monthly and per-user limits."""
        now = now or datetime.utcnow()
        daily = self._spent_since(now - PERIODS["day"])
        monthly = self._spent_since(now - PERIODS["month"])
        user_spent = self._spent_since(now - PERIODS["month"], user_id) if user_id else None

        within = daily < self._limits["daily"] and monthly < self._limits["monthly"]
        if user_spent is not None:
            within = within and user_spent < self._limits["per_user"]

        return LimitStatus(
            within_limits=within,
            daily_spent=round(daily, 6),
            monthly_spent=round(monthly, 6),
            daily_remaining=round(max(0.0, self._limits["daily"] - daily), 6),
            monthly_remaining=round(max(0.0, self._limits["monthly"] - monthly), 6),
            user_spent=round(user_spent, 6) if user_spent is not None else None,
        )

    def summary(
        self,
        period: str | None = None,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Totals by provider and by operation.

        Args:
            period: "day" or "month" to restrict to that look-back window;
                everything retained when omitted
            user_id: Only count events attributed to this user
            now: Reference time for the window (utcnow by default)

        Raises:
            ValueError: If ``period`` is not a known period
        """
        if period is not None and period not in PERIODS:
            raise ValueError(f"Unknown period {period!r}; expected one of {', '.join(PERIODS)}")
        since = (now or datetime.utcnow()) - PERIODS[period] if period else None
        events = [
            event
            for event in self.events
            if (since is None or event.timestamp >= since)
            and (user_id is None or event.user_id == user_id)
        ]

        by_provider: dict[str, float] = defaultdict(float)
        by_operation: dict[str, float] = defaultdict(float)
        total_tokens = 0
        for event in events:
            by_provider[event.provider] += event.cost_usd
            by_operation[event.operation] += event.cost_usd
            total_tokens += event.tokens

        return {
            "period": period,
            "user_id": user_id,
            "total_requests": len(events),
            "total_tokens": total_tokens,
            "total_cost_usd": round(sum(by_provider.values()), 6),
            "by_provider": {k: round(v, 6) for k, v in by_provider.items()},
            "by_operation": {k: round(v, 6) for k, v in by_operation.items()},
        }


def record_usage(sink: UsageSink | None, event: UsageEvent) -> None:
    """Hand ``event`` to ``sink``; a failing sink never fails the caller."""
    if sink is None:
        return
    try:
        sink.record(event)
    except Exception as e:
        logger.warning(f"Usage sink failed to record {event.operation} event: {e}")


class CostModel:
    """Static cost table plus the provider-selection heuristic."""

    def __init__(
        self,
        operation_costs: dict[str, dict[str, float]] | None = None,
        traits: dict[str, dict[str, int]] | None = None,
    ):
        self._costs = operation_costs or OPERATION_COSTS
        self._traits = traits or PROVIDER_TRAITS

    def rate(self, provider: str, operation: str) -> float:
        """USD per 1K tokens; unknown providers or operations cost 0."""
        return self._costs.get(provider, {}).get(operation, 0.0)

    def estimate_prompt_cost(
        self,
        prompt: str,
        provider: str,
        operation: str = "completion",
    ) -> CostEstimate:
        """Estimate the cost of sending ``prompt`` through ``operation``.

        Args:
            prompt: Prompt text (tokens approximated as characters / 4)
            provider: Provider name
            operation: One of enhancement, scoring, streaming, completion

        Returns:
            CostEstimate
        """
        tokens = estimate_tokens(prompt)
        rate = self.rate(provider, operation)
        return CostEstimate(
            provider=provider,
            operation=operation,
            tokens=tokens,
            cost_per_1k=rate,
            cost_usd=(tokens / 1000) * rate,
        )

    def score_provider(
        self,
        provider: str,
        prioritize_speed: bool = False,
        prioritize_cost: bool = False,
        prioritize_quality: bool = False,
    ) -> float:
        traits = self._traits.get(provider)
        if traits is None:
            return 0.0

        if not (prioritize_speed or prioritize_cost or prioritize_quality):
            return sum(traits[name] * weight for name, weight in BALANCED_WEIGHTS.items())

        flags = {"speed": prioritize_speed, "cost": prioritize_cost, "quality": prioritize_quality}
        return sum(
            traits[name] * PRIORITY_WEIGHTS[name] for name, enabled in flags.items() if enabled
        )

    def select_optimal_provider(
        self,
        candidates: Iterable[str] | None = None,
        prioritize_speed: bool = False,
        prioritize_cost: bool = False,
        prioritize_quality: bool = False,
    ) -> str | None:
        """Pick the highest-scoring provider among ``candidates``.

        Args:
            candidates: Provider names to consider (all known providers if None)
            prioritize_speed: Weight speed
            prioritize_cost: Weight cheapness
            prioritize_quality: Weight output quality

        Returns:
            Best provider name, or None if no candidate has known traits
        """
        names = list(candidates) if candidates is not None else list(self._traits)
        scored = [
            (self.score_provider(name, prioritize_speed, prioritize_cost, prioritize_quality), name)
            for name in names
            if name in self._traits
        ]
        if not scored:
            return None
        # Candidate order breaks ties
        best_score = max(score for score, _ in scored)
        return next(name for score, name in scored if score == best_score)

    def recommendations(self) -> list[str]:
        return list(COST_RECOMMENDATIONS)
