"""
Agent Orchestrator - Recommendation Review Routes
=================================================

Human review of audit recommendations. PASS/REJECT verdicts recorded
here become the history context of later audits.
"""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, HTTPException, Query, status

from src.api.deps import Recommendations
from src.core.agents.periods import Period, month_period, previous_month
from src.core.models import ReviewStatus, StageName
from src.core.schemas import (
    BulkDeleteRequest,
    BulkDeleteResponse,
    ClearMonthResponse,
    InsightsSummaryResponse,
    MarkAllPassResponse,
    RecommendationListResponse,
    RecommendationResponse,
    RecommendationReviewRequest,
    StageInsightResponse,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/recommendations", tags=["Recommendations"])

MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


def resolve_month(month: Optional[str]) -> Period:
    return month_period(month) if month else previous_month()


@router.get(
    "/insights/summary",
    response_model=InsightsSummaryResponse,
    summary="Per stage recommendation counts",
)
async def insights_summary(
    store: Recommendations,
    month: Optional[str] = Query(None, pattern=MONTH_PATTERN, description="Audited month, YYYY-MM"),
) -> InsightsSummaryResponse:
    """Counts over every audit, or over the audit of one month."""
    period = month_period(month) if month else None
    insights = await store.stage_summary(period)
    return InsightsSummaryResponse(
        period=period.as_dict() if period else None,
        items=[StageInsightResponse.model_validate(i) for i in insights],
    )


@router.get(
    "/{stage}",
    response_model=RecommendationListResponse,
    summary="List recommendations for an audited stage",
)
async def list_recommendations(
    stage: StageName,
    store: Recommendations,
    review_status: Optional[ReviewStatus] = None,
    limit: int = Query(100, ge=1, le=500),
) -> RecommendationListResponse:
    """Newest first, optionally filtered by review status."""
    items = await store.list_for_stage(stage, review_status, limit)
    return RecommendationListResponse(
        items=[RecommendationResponse.model_validate(r) for r in items],
        total=len(items),
    )


@router.patch(
    "/{recommendation_id}",
    response_model=RecommendationResponse,
    summary="Review a recommendation",
)
async def review_recommendation(
    recommendation_id: UUID,
    data: RecommendationReviewRequest,
    store: Recommendations,
) -> RecommendationResponse:
    """Set PASS or REJECT; IGNORE clears the verdict."""
    recommendation = await store.get(recommendation_id)
    if recommendation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Recommendation not found",
        )

    review = None if data.status == "IGNORE" else ReviewStatus(data.status)
    recommendation = await store.set_review(recommendation, review)
    logger.info(
        "recommendation_reviewed",
        recommendation_id=str(recommendation_id),
        status=data.status,
    )
    return RecommendationResponse.model_validate(recommendation)


@router.patch(
    "/{stage}/mark-all-pass",
    response_model=MarkAllPassResponse,
    summary="Accept every rejected recommendation for a stage",
)
async def mark_all_pass(
    stage: StageName,
    store: Recommendations,
    source: Optional[StageName] = Query(None, description="Only recommendations from this auditor"),
) -> MarkAllPassResponse:
    updated = await store.mark_all_pass(stage, source)
    logger.info(
        "recommendations_marked_pass",
        stage=stage.value,
        source=source.value if source else None,
        updated=updated,
    )
    return MarkAllPassResponse(stage=stage, updated=updated)


@router.delete(
    "/bulk-delete",
    response_model=BulkDeleteResponse,
    summary="Delete recommendations by id",
)
async def bulk_delete(
    data: BulkDeleteRequest,
    store: Recommendations,
) -> BulkDeleteResponse:
    deleted = await store.delete_many(data.ids)
    logger.info("recommendations_deleted", requested=len(data.ids), deleted=deleted)
    return BulkDeleteResponse(deleted=deleted)


@router.delete(
    "/month-data",
    response_model=ClearMonthResponse,
    summary="Clear one month's audit so it can run again",
)
async def clear_month_data(
    store: Recommendations,
    month: Optional[str] = Query(None, pattern=MONTH_PATTERN, description="Audited month, YYYY-MM"),
) -> ClearMonthResponse:
    """
    Deletes the guardian and governance rows for the month together with
    their recommendations. Defaults to the previous calendar month.
    """
    period = resolve_month(month)
    results, recommendations = await store.clear_audit_period(period)
    logger.info(
        "audit_month_cleared",
        period=str(period),
        results=results,
        recommendations=recommendations,
    )
    return ClearMonthResponse(
        period=period.as_dict(),
        deleted_results=results,
        deleted_recommendations=recommendations,
    )
