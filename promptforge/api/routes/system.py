"""System Administration API Endpoints.

Endpoints:
- GET /system/costs/summary - Recorded spend for a period, with limits
- GET /system/cache/stats - Cache counters and most-read entries
- DELETE /system/cache - Drop every cached response
"""

import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from promptforge.api.routes.prompts import get_service
from promptforge.service import PromptService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/system", tags=["System"])


# =============================================================================
# Pydantic Models
# =============================================================================


class CostSummaryResponse(BaseModel):
    """Spend report; summary and limits are null when usage is not retained."""

    summary: dict[str, Any] | None = Field(description="Totals by provider and operation")
    limits: dict[str, Any] | None = Field(description="Spend against daily/monthly limits")
    recommendations: list[str] = Field(description="Cost optimization hints")


class CacheStatsResponse(BaseModel):
    stats: dict[str, Any] = Field(description="Hit/miss counters and size")
    popular_entries: list[dict[str, Any]] = Field(description="Most-read live entries")
    recommendations: list[str]


class CacheClearResponse(BaseModel):
    cleared: int = Field(description="Number of entries removed")
    message: str


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/costs/summary", response_model=CostSummaryResponse)
async def cost_summary(
    period: Literal["day", "month"] = Query(default="month", description="Look-back window"),
    user_id: str | None = Query(default=None, description="Restrict to one user"),
    service: PromptService = Depends(get_service),
):
    return service.cost_summary(period, user_id=user_id)


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(
    limit: int = Query(default=10, ge=1, le=100, description="Popular entries to list"),
    service: PromptService = Depends(get_service),
):
    return service.cache_stats(limit)


@router.delete("/cache", response_model=CacheClearResponse)
async def clear_cache(service: PromptService = Depends(get_service)):
    """Admin operation: cached enhancements and scores are recomputed afterwards."""
    cleared = service.clear_cache()
    logger.info(f"Cache cleared via API ({cleared} entries)")
    return CacheClearResponse(cleared=cleared, message="Cache cleared successfully")
