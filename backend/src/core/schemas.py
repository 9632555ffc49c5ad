"""
Agent Orchestrator - Pydantic Schemas
=====================================

Request and response schemas for the trigger and review API.
"""

from datetime import date, datetime
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.core.models import ResultStatus, ReviewStatus, RunType, StageName


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# ==========================================================================
# Trigger Requests
# ==========================================================================

class RunRequest(BaseSchema):
    """Body shared by the batch triggers."""

    reference_date: Optional[date] = Field(
        None,
        description="Treat this date as today (defaults to the current UTC date)",
    )


class MonthlyRunRequest(RunRequest):
    """Monthly run for a single account."""

    force: bool = Field(False, description="Bypass the idempotency guard")


class AuditRequest(RunRequest):
    """System audit; explicit window or the month before reference_date."""

    start: Optional[date] = None
    end: Optional[date] = None

    @model_validator(mode="after")
    def check_window(self) -> "AuditRequest":
        if (self.start is None) != (self.end is None):
            raise ValueError("start and end must be given together")
        if self.start and self.end and self.end < self.start:
            raise ValueError("end must not precede start")
        return self


# ==========================================================================
# Trigger Responses
# ==========================================================================

class RunOutcomeResponse(BaseSchema):
    status: str
    reason: Optional[str] = None
    error: Optional[str] = None
    result_ids: dict[str, str] = {}
    tasks_created: dict[str, int] = {}


class AccountOutcomeResponse(BaseSchema):
    account_id: str
    domain: str
    status: str
    daily: Optional[RunOutcomeResponse] = None
    monthly: Optional[RunOutcomeResponse] = None


class BatchReportResponse(BaseSchema):
    total: int
    succeeded: int
    skipped: int
    failed: int
    accounts: list[AccountOutcomeResponse]


class GroupOutcomeResponse(BaseSchema):
    stage: str
    results: int
    guardian: bool
    governance: bool


class AuditReportResponse(BaseSchema):
    status: str
    period: dict[str, str]
    reason: Optional[str] = None
    guardian_result_id: Optional[str] = None
    governance_result_id: Optional[str] = None
    groups: list[GroupOutcomeResponse] = []
    recommendations_created: int = 0


# ==========================================================================
# Results
# ==========================================================================

class StageResultResponse(BaseSchema):
    id: UUID
    account_id: Optional[UUID]
    domain: Optional[str]
    stage: StageName
    run_type: RunType
    period_start: date
    period_end: date
    status: ResultStatus
    output_payload: Optional[Any] = None
    error_message: Optional[str] = None
    created_at: datetime


class LatestResultsResponse(BaseSchema):
    account_id: UUID
    domain: str
    results: dict[str, StageResultResponse]


class AgentsHealthResponse(BaseSchema):
    status: str
    endpoints: dict[str, bool]
    metrics_service: bool
    scheduler_enabled: bool


# ==========================================================================
# Recommendations
# ==========================================================================

class RecommendationResponse(BaseSchema):
    id: UUID
    agent_result_id: Optional[UUID]
    source_stage_type: StageName
    audited_stage: StageName
    title: str
    explanation: Optional[str]
    type: Optional[str]
    urgency: Optional[str]
    category: Optional[str]
    severity: int
    verdict: Optional[str]
    confidence: Optional[float]
    suggested_action: Optional[str]
    rule_reference: Optional[str]
    evidence_links: Optional[list]
    escalation_required: bool
    review_status: Optional[ReviewStatus]
    reviewed_at: Optional[datetime]
    observed_at: Optional[datetime]
    created_at: datetime


class RecommendationListResponse(BaseSchema):
    items: list[RecommendationResponse]
    total: int


class RecommendationReviewRequest(BaseSchema):
    """Reviewer verdict; IGNORE clears an earlier one."""

    status: Literal["PASS", "REJECT", "IGNORE"]


class StageInsightResponse(BaseSchema):
    stage: StageName
    total: int
    pass_count: int
    fail_count: int
    fixed_count: int
    pass_rate: float
    avg_confidence: float


class InsightsSummaryResponse(BaseSchema):
    """Per audited stage counts, optionally for one audited month."""

    period: Optional[dict[str, str]] = None
    items: list[StageInsightResponse]


class MarkAllPassResponse(BaseSchema):
    stage: StageName
    updated: int


class BulkDeleteRequest(BaseSchema):
    ids: list[UUID] = Field(..., min_length=1)


class BulkDeleteResponse(BaseSchema):
    deleted: int


class ClearMonthResponse(BaseSchema):
    """Audit rows and recommendations removed for one month."""

    period: dict[str, str]
    deleted_results: int
    deleted_recommendations: int


# ==========================================================================
# Common Response Schemas
# ==========================================================================

class ErrorResponse(BaseSchema):
    """Error response schema."""

    error: str
    detail: Optional[str] = None
    code: Optional[str] = None


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str
    version: str
    environment: str
    database: str
