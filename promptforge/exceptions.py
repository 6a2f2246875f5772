"""
Exception hierarchy for promptforge.

Every error raised by the engine derives from PromptForgeError so that callers
(and the HTTP layer) can catch the whole family with a single except clause
and map it to a status code.

Usage:
    from promptforge.exceptions import (
        AllProvidersFailedError,
        NoProviderConfiguredError,
        UpstreamError,
    )

    try:
        response = await service.execute("Summarize this document")
    except NoProviderConfiguredError:
        # Nothing to call - configure a credential first
        ...
    except AllProvidersFailedError as e:
        logger.error(f"Every provider failed, first error: {e.first_error}")

Taxonomy:
    NoProviderConfiguredError  fatal, never retried
    UpstreamError              one adapter failed; triggers failover
    AllProvidersFailedError    every adapter in the chain failed
    InvalidCacheKeyError       cache parameters cannot be fingerprinted
"""

from typing import Any


class PromptForgeError(Exception):
    """Base exception for all promptforge errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dict with additional error context.
        status_code: HTTP status code the error maps to, if any.
        service: Name of the provider or component that raised the error.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
        service: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.status_code = status_code
        self.service = service

    def __str__(self) -> str:
        parts = [self.message]
        if self.service:
            parts.insert(0, f"[{self.service}]")
        if self.status_code:
            parts.append(f"(HTTP {self.status_code})")
        return " ".join(parts)


class ConfigurationError(PromptForgeError):
    """Configuration is invalid or incomplete.

    Raised when a settings file cannot be parsed or an environment
    override holds a value of the wrong type.
    """

    def __init__(self, message: str, *, config_key: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.config_key = config_key


class NoProviderConfiguredError(PromptForgeError):
    """No backend adapter is configured.

    Fatal for the current call and never retried. Mapped to HTTP 503 so
    that callers can tell "nothing to call" apart from a generic failure.
    """

    def __init__(self, message: str = "No AI providers configured", **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 503)
        super().__init__(message, **kwargs)


class UpstreamError(PromptForgeError):
    """A single backend call failed (transport, auth, rate limit, timeout).

    Recoverable: the orchestrator moves on to the next adapter in the
    fallback chain.
    """

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 502)
        super().__init__(message, **kwargs)


class AuthenticationError(UpstreamError):
    """The backend rejected the configured API key."""

    def __init__(self, message: str = "Authentication failed", **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 401)
        super().__init__(message, **kwargs)


class RateLimitError(UpstreamError):
    """Rate limit exceeded.

    Attributes:
        retry_after: Seconds to wait before retrying (if provided by the API).
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: float | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("status_code", 429)
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class TimeoutError(UpstreamError):  # noqa: A001 - intentionally shadows builtin
    """A backend call exceeded its timeout.

    Attributes:
        timeout_seconds: The timeout that was exceeded.
        operation: The operation that timed out (completion, scoring, ...).

    Note:
        This intentionally shadows the builtin TimeoutError.
        Use builtins.TimeoutError if you need the standard exception.
    """

    def __init__(
        self,
        message: str = "Operation timed out",
        *,
        timeout_seconds: float | None = None,
        operation: str | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("status_code", 504)
        super().__init__(message, **kwargs)
        self.timeout_seconds = timeout_seconds
        self.operation = operation


class AllProvidersFailedError(PromptForgeError):
    """Every adapter in the chain failed.

    Failover raises it ``from`` the last error, so the traceback leads to the
    final attempt; the enhancement loop raises it from the first. ``errors``
    keeps every (provider, error) pair in the order they were attempted.

    Attributes:
        errors: List of (provider_name, exception) tuples.
        operation: The operation that was being attempted.
    """

    def __init__(
        self,
        errors: list[tuple[str, BaseException]],
        *,
        operation: str | None = None,
        message: str | None = None,
        **kwargs: Any,
    ) -> None:
        self.errors = list(errors)
        self.operation = operation
        if message is None:
            tried = ", ".join(name for name, _ in self.errors) or "none"
            message = f"All providers failed for {operation or 'operation'} (tried: {tried})"
        kwargs.setdefault("status_code", 502)
        kwargs.setdefault(
            "details",
            {"attempts": [{"provider": name, "error": str(exc)} for name, exc in self.errors]},
        )
        super().__init__(message, **kwargs)

    @property
    def first_error(self) -> BaseException | None:
        """The error raised by the first adapter attempted."""
        return self.errors[0][1] if self.errors else None

    @property
    def last_error(self) -> BaseException | None:
        """The error raised by the final adapter attempted."""
        return self.errors[-1][1] if self.errors else None


class InvalidCacheKeyError(PromptForgeError):
    """Cache parameters contain a value that cannot be fingerprinted.

    Raised instead of silently caching against an unstable key.

    Attributes:
        operation: The cache operation class being keyed.
    """

    def __init__(self, message: str, *, operation: str | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 400)
        super().__init__(message, **kwargs)
        self.operation = operation


__all__ = [
    "PromptForgeError",
    "ConfigurationError",
    "NoProviderConfiguredError",
    "UpstreamError",
    "AuthenticationError",
    "RateLimitError",
    "TimeoutError",
    "AllProvidersFailedError",
    "InvalidCacheKeyError",
]
