"""
Agent Orchestrator - Trigger Routes
===================================

Manual triggers for the daily, monthly and audit pipelines, plus
read-only views of the latest results.
"""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, HTTPException, status

from src.api.deps import Aggregator, DbSession, Orchestrator, Results
from src.core.agents.store import get_account
from src.core.config import settings
from src.core.models import StageName
from src.core.schemas import (
    AccountOutcomeResponse,
    AgentsHealthResponse,
    AuditReportResponse,
    AuditRequest,
    BatchReportResponse,
    LatestResultsResponse,
    MonthlyRunRequest,
    RunRequest,
    StageResultResponse,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/agents", tags=["Agents"])


# ==========================================================================
# Batch Triggers
# ==========================================================================

@router.post(
    "/process-all",
    response_model=BatchReportResponse,
    summary="Run daily and monthly pipelines for all accounts",
)
async def process_all(
    orchestrator: Orchestrator,
    request: Optional[RunRequest] = None,
) -> BatchReportResponse:
    """Daily pipeline for every eligible account, monthly when its gate is open."""
    request = request or RunRequest()
    report = await orchestrator.run_all(request.reference_date)
    return BatchReportResponse.model_validate(report.as_dict())


@router.post(
    "/process-daily",
    response_model=BatchReportResponse,
    summary="Run the daily pipeline for all accounts",
)
async def process_daily(
    orchestrator: Orchestrator,
    request: Optional[RunRequest] = None,
) -> BatchReportResponse:
    request = request or RunRequest()
    report = await orchestrator.run_daily_for_all(request.reference_date)
    return BatchReportResponse.model_validate(report.as_dict())


@router.post(
    "/monthly",
    response_model=BatchReportResponse,
    summary="Run the monthly pipeline for all accounts",
)
async def process_monthly(
    orchestrator: Orchestrator,
    request: Optional[RunRequest] = None,
) -> BatchReportResponse:
    request = request or RunRequest()
    report = await orchestrator.run_monthly_for_all(request.reference_date)
    return BatchReportResponse.model_validate(report.as_dict())


@router.post(
    "/monthly/{account_id}",
    response_model=AccountOutcomeResponse,
    summary="Run the monthly pipeline for one account",
)
async def process_monthly_account(
    account_id: UUID,
    orchestrator: Orchestrator,
    request: Optional[MonthlyRunRequest] = None,
) -> AccountOutcomeResponse:
    """
    Run the monthly pipeline for a single account.

    ``force`` bypasses the idempotency guard.
    """
    request = request or MonthlyRunRequest()
    outcome = await orchestrator.run_monthly_for(
        account_id,
        request.reference_date,
        force=request.force,
    )
    if outcome is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Account not found",
        )
    return AccountOutcomeResponse.model_validate(outcome.as_dict())


@router.post(
    "/audit",
    response_model=AuditReportResponse,
    summary="Run the system audit",
)
async def process_audit(
    aggregator: Aggregator,
    request: Optional[AuditRequest] = None,
) -> AuditReportResponse:
    """Audit the given window, or the month before reference_date."""
    request = request or AuditRequest()
    report = await aggregator.run_audit(request.reference_date, request.start, request.end)
    return AuditReportResponse.model_validate(report.as_dict())


# ==========================================================================
# Read Views
# ==========================================================================

@router.get(
    "/latest/{account_id}",
    response_model=LatestResultsResponse,
    summary="Latest successful result per stage",
)
async def latest_results(
    account_id: UUID,
    db: DbSession,
    results: Results,
) -> LatestResultsResponse:
    account = await get_account(db, account_id)
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Account not found",
        )

    latest = {}
    for stage in StageName:
        row = await results.find_latest(account.id, stage)
        if row is not None:
            latest[stage.value] = StageResultResponse.model_validate(row)

    return LatestResultsResponse(account_id=account.id, domain=account.domain, results=latest)


@router.get(
    "/health",
    response_model=AgentsHealthResponse,
    summary="Agent endpoint configuration",
)
async def agents_health() -> AgentsHealthResponse:
    """Which stage endpoints are configured."""
    endpoints = {stage: bool(url) for stage, url in settings.agent_endpoints().items()}
    return AgentsHealthResponse(
        status="ok" if all(endpoints.values()) else "degraded",
        endpoints=endpoints,
        metrics_service=bool(settings.METRICS_SERVICE_URL),
        scheduler_enabled=settings.SCHEDULER_ENABLED,
    )
