"""
Result, task and recommendation stores.

Thin wrappers around an AsyncSession. Pipelines never write rows
incrementally: everything a run produces goes into a PipelineBatch and
is committed in one go once the whole chain has validated.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Sequence
from uuid import UUID

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.agents.periods import Period
from src.core.agents.tasks import ExtractedTask
from src.core.models import (
    Account,
    MetricSnapshot,
    Recommendation,
    ResultStatus,
    ReviewStatus,
    RunType,
    StageName,
    StageResult,
    Task,
    TaskCategory,
)

ACTIVE_STATUSES = (ResultStatus.SUCCESS, ResultStatus.PENDING)
AUDITOR_STAGES = (StageName.GUARDIAN, StageName.GOVERNANCE_SENTINEL)


# ==========================================================================
# Result Store
# ==========================================================================

class ResultStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_active(
        self,
        account_id: Optional[UUID],
        stage: StageName,
        period: Period,
    ) -> Optional[StageResult]:
        """Success or pending row for the key, if any."""
        query = select(StageResult).where(
            StageResult.stage == stage,
            StageResult.period_start == period.start,
            StageResult.period_end == period.end,
            StageResult.status.in_(ACTIVE_STATUSES),
        )
        if account_id is None:
            query = query.where(StageResult.account_id.is_(None))
        else:
            query = query.where(StageResult.account_id == account_id)
        result = await self.session.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def find_latest(
        self,
        account_id: UUID,
        stage: StageName,
        status: ResultStatus = ResultStatus.SUCCESS,
    ) -> Optional[StageResult]:
        result = await self.session.execute(
            select(StageResult)
            .where(
                StageResult.account_id == account_id,
                StageResult.stage == stage,
                StageResult.status == status,
            )
            .order_by(StageResult.period_end.desc(), StageResult.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def successful_for_period(
        self,
        period: Period,
        exclude: Sequence[StageName] = (),
    ) -> list[StageResult]:
        """
        Every success row whose period ends inside ``period``.

        Rows are matched on period_end alone, so a daily key spanning a
        month boundary (Feb 28..Mar 1) belongs to the month it ends in.
        """
        query = select(StageResult).where(
            StageResult.status == ResultStatus.SUCCESS,
            StageResult.period_end >= period.start,
            StageResult.period_end <= period.end,
        )
        if exclude:
            query = query.where(StageResult.stage.not_in(list(exclude)))
        query = query.order_by(StageResult.stage, StageResult.created_at)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_for_account(self, account_id: UUID, limit: int = 50) -> list[StageResult]:
        result = await self.session.execute(
            select(StageResult)
            .where(StageResult.account_id == account_id)
            .order_by(StageResult.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def record_error(
        self,
        account: Optional[Account],
        stage: StageName,
        period: Period,
        run_type: RunType,
        error_message: str,
        input_payload: Optional[Any] = None,
    ) -> StageResult:
        """Write the single error marker for a failed run."""
        row = new_result(
            account,
            stage,
            period,
            run_type,
            status=ResultStatus.ERROR,
            input_payload=input_payload,
            error_message=error_message,
        )
        self.session.add(row)
        await self.session.commit()
        return row


def new_result(
    account: Optional[Account],
    stage: StageName,
    period: Period,
    run_type: RunType,
    status: ResultStatus = ResultStatus.SUCCESS,
    input_payload: Optional[Any] = None,
    output_payload: Optional[Any] = None,
    error_message: Optional[str] = None,
) -> StageResult:
    return StageResult(
        account_id=account.id if account else None,
        domain=account.domain if account else None,
        stage=stage,
        period_start=period.start,
        period_end=period.end,
        run_type=run_type,
        input_payload=input_payload,
        output_payload=output_payload,
        status=status,
        error_message=error_message,
    )


# ==========================================================================
# Account Lookups
# ==========================================================================

async def eligible_accounts(session: AsyncSession) -> list[Account]:
    """Accounts that finished onboarding, ordered by domain."""
    result = await session.execute(
        select(Account)
        .where(Account.onboarding_completed.is_(True))
        .order_by(Account.domain)
    )
    return list(result.scalars().all())


async def get_account(session: AsyncSession, account_id: UUID) -> Optional[Account]:
    result = await session.execute(select(Account).where(Account.id == account_id))
    return result.scalar_one_or_none()


# ==========================================================================
# Task Store
# ==========================================================================

class TaskStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def build(account: Account, extracted: ExtractedTask, result: Optional[StageResult] = None) -> Task:
        return Task(
            account_id=account.id,
            domain=account.domain,
            agent_result_id=result.id if result is not None else None,
            title=extracted.title,
            description=extracted.description,
            category=extracted.category,
            origin_stage=extracted.origin_stage,
            due_date=extracted.due_date,
            task_metadata=extracted.metadata or None,
        )

    async def list_for_account(
        self,
        account_id: UUID,
        category: Optional[TaskCategory] = None,
    ) -> list[Task]:
        query = select(Task).where(Task.account_id == account_id)
        if category is not None:
            query = query.where(Task.category == category)
        result = await self.session.execute(query.order_by(Task.created_at))
        return list(result.scalars().all())

    async def count(self, account_id: Optional[UUID] = None) -> int:
        query = select(func.count()).select_from(Task)
        if account_id is not None:
            query = query.where(Task.account_id == account_id)
        result = await self.session.execute(query)
        return result.scalar_one()


# ==========================================================================
# Recommendation Store
# ==========================================================================

@dataclass
class StageInsight:
    stage: StageName
    total: int
    pass_count: int
    fail_count: int
    fixed_count: int
    avg_confidence: float

    @property
    def pass_rate(self) -> float:
        return self.pass_count / self.total if self.total else 0.0


class RecommendationStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def review_history(
        self,
        stage: StageName,
        status: ReviewStatus,
        limit: int = 50,
    ) -> list[Recommendation]:
        """Most recently reviewed recommendations with the given verdict."""
        result = await self.session.execute(
            select(Recommendation)
            .where(
                Recommendation.audited_stage == stage,
                Recommendation.review_status == status,
            )
            .order_by(Recommendation.reviewed_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_for_stage(
        self,
        stage: StageName,
        review_status: Optional[ReviewStatus] = None,
        limit: int = 100,
    ) -> list[Recommendation]:
        query = select(Recommendation).where(Recommendation.audited_stage == stage)
        if review_status is not None:
            query = query.where(Recommendation.review_status == review_status)
        result = await self.session.execute(
            query.order_by(Recommendation.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def get(self, recommendation_id: UUID) -> Optional[Recommendation]:
        result = await self.session.execute(
            select(Recommendation).where(Recommendation.id == recommendation_id)
        )
        return result.scalar_one_or_none()

    async def set_review(
        self,
        recommendation: Recommendation,
        status: Optional[ReviewStatus],
    ) -> Recommendation:
        """Record a reviewer verdict; ``None`` clears it."""
        recommendation.review_status = status
        recommendation.reviewed_at = datetime.now(timezone.utc) if status else None
        await self.session.commit()
        await self.session.refresh(recommendation)
        return recommendation

    async def add_all(self, recommendations: list[Recommendation]) -> int:
        if not recommendations:
            return 0
        self.session.add_all(recommendations)
        await self.session.commit()
        return len(recommendations)

    async def stage_summary(self, period: Optional[Period] = None) -> list[StageInsight]:
        """
        Per audited stage counts over recommendations, optionally limited
        to audits whose period ends inside ``period``.
        """
        passed = func.sum(case((Recommendation.verdict == "PASS", 1), else_=0))
        failed = func.sum(case((Recommendation.verdict == "FAIL", 1), else_=0))
        fixed = func.sum(case((Recommendation.review_status == ReviewStatus.PASS, 1), else_=0))
        query = select(
            Recommendation.audited_stage,
            func.count(Recommendation.id),
            passed,
            failed,
            fixed,
            func.avg(Recommendation.confidence),
        )
        if period is not None:
            query = query.join(StageResult, Recommendation.agent_result_id == StageResult.id).where(
                StageResult.period_end >= period.start,
                StageResult.period_end <= period.end,
            )
        query = query.group_by(Recommendation.audited_stage).order_by(Recommendation.audited_stage)
        result = await self.session.execute(query)
        return [
            StageInsight(
                stage=stage,
                total=total,
                pass_count=pass_count or 0,
                fail_count=fail_count or 0,
                fixed_count=fixed_count or 0,
                avg_confidence=float(avg_confidence or 0),
            )
            for stage, total, pass_count, fail_count, fixed_count, avg_confidence in result.all()
        ]

    async def mark_all_pass(self, stage: StageName, source: Optional[StageName] = None) -> int:
        """Flip every REJECT verdict for ``stage`` to PASS."""
        query = update(Recommendation).where(
            Recommendation.audited_stage == stage,
            Recommendation.review_status == ReviewStatus.REJECT,
        )
        if source is not None:
            query = query.where(Recommendation.source_stage_type == source)
        result = await self.session.execute(
            query.values(review_status=ReviewStatus.PASS, reviewed_at=datetime.now(timezone.utc))
        )
        await self.session.commit()
        return result.rowcount

    async def delete_many(self, ids: Sequence[UUID]) -> int:
        result = await self.session.execute(
            delete(Recommendation).where(Recommendation.id.in_(list(ids)))
        )
        await self.session.commit()
        return result.rowcount

    async def clear_audit_period(self, period: Period) -> tuple[int, int]:
        """
        Delete the audit rows for ``period`` and the recommendations they
        produced, so the audit can run again. Returns (results, recommendations).
        """
        found = await self.session.execute(
            select(StageResult.id).where(
                StageResult.stage.in_(list(AUDITOR_STAGES)),
                StageResult.period_start == period.start,
                StageResult.period_end == period.end,
            )
        )
        audit_ids = list(found.scalars().all())
        if not audit_ids:
            return 0, 0
        recommendations = await self.session.execute(
            delete(Recommendation).where(Recommendation.agent_result_id.in_(audit_ids))
        )
        results = await self.session.execute(
            delete(StageResult).where(StageResult.id.in_(audit_ids))
        )
        await self.session.commit()
        return results.rowcount, recommendations.rowcount


# ==========================================================================
# Pipeline Batch
# ==========================================================================

class PipelineBatch:
    """
    Build-then-commit unit for one pipeline run.

    Usage:
        batch = PipelineBatch(session)
        summary = batch.add_result(account, StageName.SUMMARY, ...)
        batch.add_tasks(account, extracted, owner=summary)
        await batch.commit()
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.results: dict[StageName, StageResult] = {}
        self.snapshots: list[MetricSnapshot] = []
        self._tasks: list[tuple[Account, ExtractedTask, Optional[StageName]]] = []
        self.tasks: list[Task] = []

    def add_result(
        self,
        account: Optional[Account],
        stage: StageName,
        period: Period,
        run_type: RunType,
        input_payload: Any,
        output_payload: Any,
        status: ResultStatus = ResultStatus.SUCCESS,
        error_message: Optional[str] = None,
    ) -> StageResult:
        row = new_result(
            account,
            stage,
            period,
            run_type,
            status=status,
            input_payload=input_payload,
            output_payload=output_payload,
            error_message=error_message,
        )
        self.results[stage] = row
        return row

    def add_snapshot(
        self,
        account: Account,
        stage: StageName,
        period: Period,
        run_type: RunType,
        data: Optional[dict],
    ) -> MetricSnapshot:
        snapshot = MetricSnapshot(
            account_id=account.id,
            domain=account.domain,
            stage=stage,
            run_type=run_type,
            period_start=period.start,
            period_end=period.end,
            data=data,
        )
        self.snapshots.append(snapshot)
        return snapshot

    def add_tasks(
        self,
        account: Account,
        extracted: list[ExtractedTask],
        owner: Optional[StageName] = None,
    ) -> None:
        for item in extracted:
            self._tasks.append((account, item, owner))

    def task_counts(self) -> dict[str, int]:
        counts = {category.value: 0 for category in TaskCategory}
        for _, item, _ in self._tasks:
            counts[item.category.value] += 1
        return counts

    async def commit(self) -> None:
        """Write results and snapshots, then the tasks linked to them."""
        self.session.add_all([*self.results.values(), *self.snapshots])
        await self.session.flush()

        self.tasks = [
            TaskStore.build(account, item, self.results.get(owner) if owner else None)
            for account, item, owner in self._tasks
        ]
        self.session.add_all(self.tasks)
        await self.session.commit()

    @property
    def result_ids(self) -> dict[str, str]:
        return {stage.value: str(row.id) for stage, row in self.results.items()}
