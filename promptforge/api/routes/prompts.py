"""Prompt Enhancement API Endpoints.

Thin HTTP layer over PromptService.

Endpoints:
- POST /ai/enhance - Run the full enhancement pipeline
- POST /ai/score - Score prompt quality across providers
- POST /ai/validate - Validate a prompt and suggest improvements
- POST /ai/generate-questions - Suggest follow-up questions
- POST /ai/execute - Complete a prompt with failover
- POST /ai/stream - Stream a completion as Server-Sent Events
- POST /ai/estimate-cost - Estimate the cost of a prompt
- GET /ai/providers - List configured providers
- GET /ai/status - Provider, cache and cost status
"""

import asyncio
import json
import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from promptforge.costs import estimate_tokens
from promptforge.exceptions import (
    AllProvidersFailedError,
    NoProviderConfiguredError,
    PromptForgeError,
)
from promptforge.providers.base import CompletionOptions
from promptforge.service import END_OF_STREAM, PromptService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["AI"])


# =============================================================================
# Pydantic Models
# =============================================================================


class EnhanceRequest(BaseModel):
    prompt: str = Field(min_length=1, description="Base prompt to enhance")
    answers: dict[str, Any] = Field(default_factory=dict, description="Project answers")
    target_quality: int = Field(default=85, ge=0, le=100, description="Target overall score")


class PromptRequest(BaseModel):
    prompt: str = Field(min_length=1, description="Prompt text")
    context: dict[str, Any] | None = Field(default=None, description="Optional project context")


class ExecuteRequest(BaseModel):
    prompt: str = Field(min_length=1, description="Prompt to complete")
    provider: str | None = Field(default=None, description="Preferred provider name")
    max_tokens: int | None = Field(default=None, gt=0, description="Response token limit")
    temperature: float | None = Field(default=None, ge=0, le=2, description="Sampling temperature")
    user_id: str | None = Field(default=None, description="User the usage is attributed to")


class FollowUpRequest(BaseModel):
    answers: dict[str, Any] = Field(description="Answers collected so far")
    current_questions: list[dict[str, Any]] = Field(
        default_factory=list, description="Questions already asked"
    )


class CostEstimateRequest(BaseModel):
    prompt: str = Field(min_length=1, description="Prompt text")
    provider: str | None = Field(
        default=None, description="Provider to price (primary when omitted or not configured)"
    )
    operation: Literal["enhancement", "scoring", "streaming", "completion"] | None = Field(
        default=None, description="Price with the per-operation rate table instead of the adapter"
    )


class QualityScoreResponse(BaseModel):
    """Quality score response model."""

    overall: float = Field(description="Overall score (0-100)")
    clarity: float = Field(description="Clarity score (0-100)")
    completeness: float = Field(description="Completeness score (0-100)")
    technical_accuracy: float = Field(description="Technical accuracy score (0-100)")
    best_practices: float = Field(description="Best practices score (0-100)")
    feedback: list[str] = Field(default=[], description="Improvement suggestions")
    degraded: bool = Field(default=False, description="True when no provider produced a real score")


class EnhanceResponse(BaseModel):
    """Enhancement pipeline response model."""

    original: str
    enhanced: str
    quality: QualityScoreResponse
    provider: str = Field(description="Provider that produced the best result, or 'none'")
    improvements: list[str]
    metadata: dict[str, Any]


class ValidateResponse(BaseModel):
    is_valid: bool
    score: QualityScoreResponse
    suggestions: list[str]


class ExecuteResponse(BaseModel):
    content: str
    provider: str
    model: str
    usage: dict[str, int] | None = None


class ProvidersResponse(BaseModel):
    providers: list[str]
    primary: str | None
    fallbacks: list[str]


class CostEstimateResponse(BaseModel):
    estimated_cost: float = Field(description="Estimated cost in USD")
    tokens: int = Field(description="Approximate token count")
    provider: str | None = Field(description="Provider that was priced")
    operation: str | None = Field(default=None, description="Operation rate used, if any")
    currency: str = Field(default="USD", description="Currency code")


# =============================================================================
# Helper Functions
# =============================================================================


def get_service(request: Request) -> PromptService:
    """Return the PromptService attached to the application."""
    service = getattr(request.app.state, "prompt_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Prompt service not initialized")
    return service


def error_code(error: PromptForgeError) -> str:
    if isinstance(error, NoProviderConfiguredError):
        return "no_provider_configured"
    if isinstance(error, AllProvidersFailedError):
        return "all_providers_failed"
    return "upstream_error"


def to_http_exception(error: PromptForgeError) -> HTTPException:
    """Map an engine error onto an HTTP error response."""
    return HTTPException(
        status_code=error.status_code or 500,
        detail={"error": error_code(error), "message": str(error)},
    )


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/enhance", response_model=EnhanceResponse)
async def enhance_prompt(body: EnhanceRequest, service: PromptService = Depends(get_service)):
    """Run the enhancement pipeline. Degrades instead of failing without providers."""
    result = await service.enhance(body.prompt, body.answers, body.target_quality)
    return result.to_dict()


@router.post("/score", response_model=QualityScoreResponse)
async def score_prompt(body: PromptRequest, service: PromptService = Depends(get_service)):
    score = await service.score(body.prompt, body.context)
    return score.to_dict()


@router.post("/validate", response_model=ValidateResponse)
async def validate_prompt(body: PromptRequest, service: PromptService = Depends(get_service)):
    validation = await service.validate(body.prompt, body.context)
    return validation.to_dict()


@router.post("/generate-questions")
async def generate_questions(
    body: FollowUpRequest, service: PromptService = Depends(get_service)
) -> dict[str, Any]:
    questions = await service.follow_up_questions(body.answers, body.current_questions)
    return {"questions": questions}


@router.post("/execute", response_model=ExecuteResponse)
async def execute_prompt(body: ExecuteRequest, service: PromptService = Depends(get_service)):
    """Complete a prompt, failing over across providers."""
    options = CompletionOptions(max_tokens=body.max_tokens, temperature=body.temperature)
    try:
        response = await service.execute(
            body.prompt, body.provider, options, user_id=body.user_id
        )
    except PromptForgeError as e:
        logger.error(f"Prompt execution failed: {e}")
        raise to_http_exception(e) from e

    return ExecuteResponse(
        content=response.content,
        provider=response.provider,
        model=response.model,
        usage=(
            {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }
            if response.usage
            else None
        ),
    )


@router.post("/stream")
async def stream_prompt(body: ExecuteRequest, service: PromptService = Depends(get_service)):
    """Stream a completion as Server-Sent Events, ending with ``data: [DONE]``."""
    if not service.available_providers():
        raise to_http_exception(NoProviderConfiguredError())

    options = CompletionOptions(max_tokens=body.max_tokens, temperature=body.temperature)

    async def event_source():
        cancel = asyncio.Event()
        stream = service.stream(
            body.prompt, body.provider, options, cancel, user_id=body.user_id
        )
        try:
            async for fragment in stream:
                if fragment == END_OF_STREAM:
                    yield f"data: {END_OF_STREAM}\n\n"
                else:
                    yield f"data: {json.dumps({'content': fragment})}\n\n"
        except PromptForgeError as e:
            logger.error(f"Streaming failed: {e}")
            yield f"data: {json.dumps({'error': error_code(e), 'message': str(e)})}\n\n"
        finally:
            # Client went away or the stream ended; stop the upstream read
            cancel.set()
            await stream.aclose()

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.post("/estimate-cost", response_model=CostEstimateResponse)
async def estimate_cost(body: CostEstimateRequest, service: PromptService = Depends(get_service)):
    """Price a prompt the same way enhancement results are priced.

    With ``operation`` set, the per-operation rate table is used instead.
    """
    provider = service.pricing_provider(body.provider)
    if body.operation is None:
        cost = service.estimate_cost(body.prompt, body.provider)
    elif provider is None:
        cost = 0.0
    else:
        cost = service.estimate_operation_cost(body.prompt, provider, body.operation).cost_usd

    return CostEstimateResponse(
        estimated_cost=round(cost, 6),
        tokens=estimate_tokens(body.prompt),
        provider=provider,
        operation=body.operation,
    )


@router.get("/providers", response_model=ProvidersResponse)
async def list_providers(service: PromptService = Depends(get_service)):
    available = service.available_providers()
    return ProvidersResponse(
        providers=available,
        primary=available[0] if available else None,
        fallbacks=available[1:],
    )


@router.get("/status")
async def system_status(service: PromptService = Depends(get_service)) -> dict[str, Any]:
    return service.system_status()
