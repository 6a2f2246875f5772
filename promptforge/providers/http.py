"""
Shared HTTP plumbing for the REST-based backend adapters.

Concrete adapters only describe their wire format:

- _endpoint(stream): URL to POST to
- _headers(): authentication headers
- _payload(options, stream): request body
- _parse_response(data): (content, usage, stop_reason) from a JSON body
- _parse_stream_event(event): text fragment from one SSE ``data:`` event

Status codes and transport errors are mapped onto the UpstreamError family
here, and rate-limited requests are retried with exponential backoff.
"""

import asyncio
import json
import logging
import time
from abc import abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
from tenacity import RetryCallState, retry, retry_if_exception_type, wait_exponential

from promptforge.exceptions import (
    AuthenticationError,
    RateLimitError,
    TimeoutError,
    UpstreamError,
)
from promptforge.providers.base import (
    CompletionOptions,
    ModelProvider,
    ModelResponse,
    ProviderSettings,
    TokenUsage,
)

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"


def stop_after_configured_attempts(retry_state: RetryCallState) -> bool:
    """Stop once the adapter's ``max_retries`` attempts have been made."""
    provider = retry_state.args[0]
    return retry_state.attempt_number >= max(1, provider._settings.max_retries)


def raise_for_status(response: httpx.Response, service: str) -> None:
    """Map an HTTP error response onto the UpstreamError family.

    Args:
        response: Response whose body has already been read
        service: Provider name for error attribution

    Raises:
        AuthenticationError: 401/403
        RateLimitError: 429 (retry_after from the Retry-After header)
        UpstreamError: Any other 4xx/5xx status
    """
    status = response.status_code
    if status < 400:
        return

    detail = response.text[:500]
    if status in (401, 403):
        raise AuthenticationError(
            f"Invalid API key: {detail}", status_code=status, service=service
        )
    if status == 429:
        retry_after = response.headers.get("retry-after")
        try:
            retry_seconds = float(retry_after) if retry_after else None
        except ValueError:
            retry_seconds = None
        raise RateLimitError(retry_after=retry_seconds, service=service)
    raise UpstreamError(f"API error: {detail}", status_code=status, service=service)


class HTTPProvider(ModelProvider):
    """Base class for adapters that talk to a JSON-over-HTTPS API.

    Args:
        api_key: Backend API key
        settings: Model, limits and timeout for this backend
        client: Optional shared httpx.AsyncClient (not closed by the adapter)
    """

    provider_name: str = ""
    default_base_url: str = ""

    def __init__(
        self,
        api_key: str | None,
        settings: ProviderSettings,
        client: httpx.AsyncClient | None = None,
    ):
        self._api_key = api_key
        self._settings = settings
        self._client = client
        self._base_url = (settings.base_url or self.default_base_url).rstrip("/")

    @property
    def name(self) -> str:
        return self.provider_name

    @property
    def model_id(self) -> str:
        return self._settings.model

    @property
    def settings(self) -> ProviderSettings:
        return self._settings

    def is_configured(self) -> bool:
        return bool(self._api_key)

    # ------------------------------------------------------------------
    # Wire format hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _endpoint(self, stream: bool) -> str:
        """URL for a (streaming) completion request."""

    @abstractmethod
    def _headers(self) -> dict[str, str]:
        """Authentication and content headers."""

    @abstractmethod
    def _payload(self, options: CompletionOptions, stream: bool) -> dict[str, Any]:
        """JSON request body."""

    @abstractmethod
    def _parse_response(self, data: dict[str, Any]) -> tuple[str, TokenUsage | None, str | None]:
        """Extract (content, usage, stop_reason) from a response body."""

    @abstractmethod
    def _parse_stream_event(self, event: dict[str, Any]) -> str | None:
        """Extract the text fragment carried by one streaming event."""

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _max_tokens(self, options: CompletionOptions) -> int:
        return options.max_tokens if options.max_tokens is not None else self._settings.max_tokens

    def _temperature(self, options: CompletionOptions) -> float:
        if options.temperature is not None:
            return options.temperature
        return self._settings.temperature

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self._settings.timeout_seconds) as client:
                yield client

    def _require_key(self) -> None:
        if not self._api_key:
            raise AuthenticationError(
                f"{self.name} API key not configured", service=self.name
            )

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_configured_attempts,
        retry=retry_if_exception_type(RateLimitError),
        reraise=True,
    )
    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST a completion request and return the decoded JSON body.

        Raises:
            UpstreamError: On any transport or HTTP failure
        """
        try:
            async with self._http() as client:
                response = await client.post(
                    self._endpoint(stream=False),
                    json=payload,
                    headers=self._headers(),
                    timeout=self._settings.timeout_seconds,
                )
        except httpx.TimeoutException as e:
            raise TimeoutError(
                f"{self.name} request timed out",
                timeout_seconds=self._settings.timeout_seconds,
                operation="completion",
                service=self.name,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Network error: {e}", service=self.name) from e

        raise_for_status(response, self.name)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError("Response body is not valid JSON", service=self.name) from e

    async def complete(self, options: CompletionOptions) -> ModelResponse:
        self._require_key()
        start = time.perf_counter()
        data = await self._post(self._payload(options, stream=False))
        latency_ms = (time.perf_counter() - start) * 1000

        try:
            content, usage, stop_reason = self._parse_response(data)
        except (KeyError, IndexError, TypeError, AttributeError, ValueError) as e:
            raise UpstreamError(
                f"Unexpected response shape: {e}", service=self.name
            ) from e
        if not isinstance(content, str):
            raise UpstreamError(
                f"Unexpected content type: {type(content).__name__}", service=self.name
            )

        return ModelResponse(
            content=content,
            model=data.get("model", self.model_id) if isinstance(data, dict) else self.model_id,
            provider=self.name,
            usage=usage,
            latency_ms=latency_ms,
            stop_reason=stop_reason,
        )

    def _fragment(self, event: Any) -> str | None:
        """Text carried by one decoded SSE event, or None for events without any."""
        if not isinstance(event, dict):
            logger.debug(f"Skipping non-object {self.name} stream event")
            return None
        try:
            fragment = self._parse_stream_event(event)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            logger.debug(f"Skipping unexpected {self.name} stream event: {e}")
            return None
        return fragment if isinstance(fragment, str) else None

    async def stream(
        self,
        options: CompletionOptions,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        self._require_key()
        try:
            async with self._http() as client:
                async with client.stream(
                    "POST",
                    self._endpoint(stream=True),
                    json=self._payload(options, stream=True),
                    headers=self._headers(),
                    timeout=self._settings.timeout_seconds,
                ) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise_for_status(response, self.name)

                    async for line in response.aiter_lines():
                        if cancel is not None and cancel.is_set():
                            logger.info(f"{self.name} stream cancelled by caller")
                            break
                        if not line.startswith(SSE_DATA_PREFIX):
                            continue
                        data = line[len(SSE_DATA_PREFIX):].strip()
                        if data == SSE_DONE:
                            break
                        if not data:
                            continue
                        try:
                            event = json.loads(data)
                        except json.JSONDecodeError:
                            logger.debug(f"Skipping malformed {self.name} stream event")
                            continue
                        fragment = self._fragment(event)
                        if fragment:
                            yield fragment
        except httpx.TimeoutException as e:
            raise TimeoutError(
                f"{self.name} stream timed out",
                timeout_seconds=self._settings.timeout_seconds,
                operation="streaming",
                service=self.name,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Network error: {e}", service=self.name) from e
