"""
Agent Orchestrator - Pipeline execution engine.

Runs the per-account daily and monthly pipelines:

    daily:    proofline
    monthly:  summary -> referral_engine -> opportunity -> cro_optimizer

Every run goes guard -> (client-level retry around the stage chain) ->
batch commit. Nothing a run produces is written until every stage it
attempted has returned valid output; a run that exhausts its retries
leaves exactly one error row behind.

Execution is strictly sequential, with explicit pauses between stages
and between accounts to stay under the agents' rate limits.
"""

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.agents.client import AgentClient
from src.core.agents.errors import AgentError
from src.core.agents.idempotency import IdempotencyGuard
from src.core.agents.metrics import MetricBundle, MetricFetcher
from src.core.agents.notifications import Notifier, PipelineEvent, PipelineEventType
from src.core.agents.outcomes import RunStatus, SkipReason, plain
from src.core.agents.periods import (
    Period,
    daily_key,
    daily_periods,
    monthly_matured,
    previous_month,
    resolve_reference,
)
from src.core.agents.retry import RetryPolicy, Sleep, with_retry
from src.core.agents.stages import (
    DAILY_PIPELINE,
    MONTHLY_PIPELINE,
    StageAgent,
    StageContext,
    build_catalog,
)
from src.core.agents.store import PipelineBatch, ResultStore, eligible_accounts, get_account
from src.core.agents.tasks import extract_tasks
from src.core.config import Settings, settings as default_settings
from src.core.models import Account, RunType, StageName

# Task rows are created in this order within a monthly batch
MONTHLY_TASK_ORDER = (
    StageName.REFERRAL_ENGINE,
    StageName.OPPORTUNITY,
    StageName.CRO_OPTIMIZER,
)


# ==========================================================================
# Outcomes
# ==========================================================================

@dataclass
class RunOutcome:
    """Result of one pipeline run for one account."""
    status: RunStatus
    reason: Optional[str] = None
    error: Optional[str] = None
    result_ids: dict[str, str] = field(default_factory=dict)
    tasks_created: dict[str, int] = field(default_factory=dict)

    @classmethod
    def success(cls, result_ids: dict[str, str], tasks_created: Optional[dict[str, int]] = None) -> "RunOutcome":
        return cls(RunStatus.SUCCESS, result_ids=result_ids, tasks_created=tasks_created or {})

    @classmethod
    def skipped(cls, reason: SkipReason, result_ids: Optional[dict[str, str]] = None) -> "RunOutcome":
        return cls(RunStatus.SKIPPED, reason=reason.value, result_ids=result_ids or {})

    @classmethod
    def failed(cls, error: str, result_ids: Optional[dict[str, str]] = None) -> "RunOutcome":
        return cls(RunStatus.FAILED, error=error, result_ids=result_ids or {})


@dataclass
class AccountOutcome:
    account_id: str
    domain: str
    daily: Optional[RunOutcome] = None
    monthly: Optional[RunOutcome] = None

    @property
    def status(self) -> RunStatus:
        runs = [r for r in (self.daily, self.monthly) if r is not None]
        if any(r.status == RunStatus.FAILED for r in runs):
            return RunStatus.FAILED
        if any(r.status == RunStatus.SUCCESS for r in runs):
            return RunStatus.SUCCESS
        return RunStatus.SKIPPED

    def as_dict(self) -> dict:
        return {**asdict(self, dict_factory=plain), "status": self.status.value}


@dataclass
class BatchReport:
    outcomes: list[AccountOutcome] = field(default_factory=list)

    @property
    def counts(self) -> dict[str, int]:
        counts = {"succeeded": 0, "skipped": 0, "failed": 0}
        key = {
            RunStatus.SUCCESS: "succeeded",
            RunStatus.SKIPPED: "skipped",
            RunStatus.FAILED: "failed",
        }
        for outcome in self.outcomes:
            counts[key[outcome.status]] += 1
        return counts

    def as_dict(self) -> dict:
        return {
            "total": len(self.outcomes),
            **self.counts,
            "accounts": [o.as_dict() for o in self.outcomes],
        }


# ==========================================================================
# Orchestrator
# ==========================================================================

class AgentOrchestrator:
    """
    Sequences the per-account pipelines.

    Collaborators are injected so the engine can run against fakes:
    the agent client, the metric fetcher, the notifier, the stage
    catalog, the ``sleep`` used for pauses and retries, and the logger.
    """

    def __init__(
        self,
        session: AsyncSession,
        agent_client: AgentClient,
        metric_fetcher: MetricFetcher,
        notifier: Optional[Notifier] = None,
        catalog: Optional[dict[StageName, StageAgent]] = None,
        config: Optional[Settings] = None,
        client_policy: Optional[RetryPolicy] = None,
        account_pause: Optional[float] = None,
        stage_pause: Optional[float] = None,
        sleep: Sleep = asyncio.sleep,
        logger: Optional[Any] = None,
    ):
        self.config = config or default_settings
        self.session = session
        self.client = agent_client
        self.metrics = metric_fetcher
        self.notifier = notifier
        self.catalog = catalog or build_catalog(self.config)
        self.client_policy = client_policy or RetryPolicy(
            self.config.CLIENT_RETRY_ATTEMPTS,
            self.config.CLIENT_RETRY_DELAY_SECONDS,
        )
        self.account_pause = (
            self.config.ACCOUNT_PAUSE_SECONDS if account_pause is None else account_pause
        )
        self.stage_pause = self.config.STAGE_PAUSE_SECONDS if stage_pause is None else stage_pause
        self.sleep = sleep
        self.log = logger or structlog.get_logger()

        self.results = ResultStore(session)
        self.guard = IdempotencyGuard(self.results)

    # ----------------------------------------------------------------------
    # Batch entry points
    # ----------------------------------------------------------------------

    async def run_all(
        self,
        reference: Optional[date] = None,
        include_daily: bool = True,
        include_monthly: bool = True,
    ) -> BatchReport:
        """
        Run the pipelines for every eligible account, one at a time.

        A failing account is reported and the loop moves on.
        """
        ref = resolve_reference(reference)
        accounts = [(a.id, a.domain) for a in await eligible_accounts(self.session)]
        report = BatchReport()

        self.log.info(
            "batch_started",
            accounts=len(accounts),
            reference=ref.isoformat(),
            daily=include_daily,
            monthly=include_monthly,
        )

        for index, (account_id, domain) in enumerate(accounts):
            if index:
                await self._pause(self.account_pause)

            outcome = AccountOutcome(account_id=str(account_id), domain=domain)
            report.outcomes.append(outcome)
            try:
                account = await get_account(self.session, account_id)
                if include_daily:
                    outcome.daily = await self.run_daily(account, ref)
                if include_monthly:
                    if include_daily:
                        await self._pause(self.stage_pause)
                    outcome.monthly = await self.run_monthly(account, ref)
            except Exception as e:
                self.log.exception("account_run_failed", account_id=str(account_id), domain=domain)
                await self.session.rollback()
                failure = RunOutcome.failed(f"{e.__class__.__name__}: {e}")
                if include_daily and outcome.daily is None:
                    outcome.daily = failure
                elif include_monthly and outcome.monthly is None:
                    outcome.monthly = failure

        self.log.info("batch_completed", total=len(report.outcomes), **report.counts)
        return report

    async def run_daily_for_all(self, reference: Optional[date] = None) -> BatchReport:
        return await self.run_all(reference, include_daily=True, include_monthly=False)

    async def run_monthly_for_all(self, reference: Optional[date] = None) -> BatchReport:
        return await self.run_all(reference, include_daily=False, include_monthly=True)

    async def run_monthly_for(
        self,
        account_id: UUID,
        reference: Optional[date] = None,
        force: bool = False,
    ) -> Optional[AccountOutcome]:
        """Monthly run for one account id, or None if it does not exist."""
        account = await get_account(self.session, account_id)
        if account is None:
            return None
        outcome = AccountOutcome(account_id=str(account.id), domain=account.domain)
        outcome.monthly = await self.run_monthly(account, reference, force=force)
        return outcome

    # ----------------------------------------------------------------------
    # Daily pipeline
    # ----------------------------------------------------------------------

    async def run_daily(self, account: Account, reference: Optional[date] = None) -> RunOutcome:
        ref = resolve_reference(reference)
        key = daily_key(ref)
        yesterday, day_before = daily_periods(ref)
        stage = DAILY_PIPELINE[0]
        agent = self.catalog[stage]

        existing = await self.guard.existing(account, stage, key)
        if existing is not None:
            self._log_skip(account, stage, key, SkipReason.ALREADY_EXISTS)
            return RunOutcome.skipped(SkipReason.ALREADY_EXISTS, {stage.value: str(existing.id)})

        self.log.info("daily_run_started", **self._context(account, key))

        async def attempt() -> tuple[StageContext, dict, Any]:
            latest, previous = await asyncio.gather(
                self.metrics.fetch(account, yesterday.start, yesterday.end),
                self.metrics.fetch(account, day_before.start, day_before.end),
            )
            ctx = StageContext(
                account=account,
                period=key,
                daily={"yesterday": latest, "dayBeforeYesterday": previous},
            )
            payload, output = await self._call_stage(agent, ctx)
            return ctx, payload, output

        try:
            ctx, payload, output = await with_retry(
                attempt,
                self.client_policy,
                label="daily",
                validate=None,
                sleep=self.sleep,
                log=self.log,
            )
        except AgentError as e:
            return await self._fail(account, stage, key, RunType.DAILY, e)

        batch = PipelineBatch(self.session)
        batch.add_snapshot(
            account,
            stage,
            key,
            RunType.DAILY,
            {name: bundle.to_payload() for name, bundle in ctx.daily.items()},
        )
        batch.add_result(account, stage, key, RunType.DAILY, payload, output)
        await batch.commit()

        self.log.info("daily_run_succeeded", **self._context(account, key))
        return RunOutcome.success(batch.result_ids)

    # ----------------------------------------------------------------------
    # Monthly pipeline
    # ----------------------------------------------------------------------

    async def run_monthly(
        self,
        account: Account,
        reference: Optional[date] = None,
        force: bool = False,
    ) -> RunOutcome:
        """
        Run summary, referral_engine, opportunity and cro_optimizer for
        the month before ``reference``.

        ``force`` bypasses the idempotency guard, never the calendar gate.
        """
        ref = resolve_reference(reference)
        period = previous_month(ref)
        key_stage = MONTHLY_PIPELINE[0]

        if not monthly_matured(ref, self.config.MONTHLY_DATA_AVAILABLE):
            self._log_skip(account, key_stage, period, SkipReason.NOT_MATURED)
            return RunOutcome.skipped(SkipReason.NOT_MATURED)

        if not force:
            existing = await self.guard.existing(account, key_stage, period)
            if existing is not None:
                self._log_skip(account, key_stage, period, SkipReason.ALREADY_EXISTS)
                return RunOutcome.skipped(
                    SkipReason.ALREADY_EXISTS, {key_stage.value: str(existing.id)}
                )

        self.log.info("monthly_run_started", forced=force, **self._context(account, period))
        bundle = await self.metrics.fetch(account, period.start, period.end)

        try:
            executed = await with_retry(
                lambda: self._run_chain(account, period, bundle),
                self.client_policy,
                label="monthly",
                validate=None,
                sleep=self.sleep,
                log=self.log,
            )
        except AgentError as e:
            return await self._fail(account, key_stage, period, RunType.MONTHLY, e)

        batch = PipelineBatch(self.session)
        batch.add_snapshot(account, key_stage, period, RunType.MONTHLY, bundle.to_payload())
        outputs = {}
        for stage, payload, output in executed:
            batch.add_result(account, stage, period, RunType.MONTHLY, payload, output)
            outputs[stage] = output

        for stage in MONTHLY_TASK_ORDER:
            if stage not in outputs:
                continue
            try:
                batch.add_tasks(account, extract_tasks(stage, outputs[stage], log=self.log), owner=stage)
            except Exception as e:
                self.log.warning(
                    "task_extraction_failed",
                    stage=stage.value,
                    error=str(e),
                    **self._context(account, period),
                )

        await batch.commit()
        counts = batch.task_counts()

        self.log.info("monthly_run_succeeded", tasks=counts, **self._context(account, period))
        if sum(counts.values()):
            await self._notify(PipelineEvent(
                type=PipelineEventType.TASKS_CREATED,
                message=f"{sum(counts.values())} task(s) created for {account.domain}",
                account_id=str(account.id),
                domain=account.domain,
                data={"period": period.as_dict(), "tasks": counts},
            ))
        return RunOutcome.success(batch.result_ids, counts)

    async def _run_chain(
        self,
        account: Account,
        period: Period,
        bundle: MetricBundle,
    ) -> list[tuple[StageName, dict, Any]]:
        """One pass through the monthly chain; raises on the first failed stage."""
        ctx = StageContext(account=account, period=period, metrics=bundle)
        executed = []
        for index, stage in enumerate(MONTHLY_PIPELINE):
            if index:
                await self._pause(self.stage_pause)
            payload, output = await self._call_stage(self.catalog[stage], ctx)
            ctx.upstream[stage] = output
            executed.append((stage, payload, output))
        return executed

    # ----------------------------------------------------------------------
    # Helpers
    # ----------------------------------------------------------------------

    async def _call_stage(self, agent: StageAgent, ctx: StageContext) -> tuple[dict, Any]:
        payload = agent.build_payload(ctx)
        output = await with_retry(
            lambda: self.client.invoke(agent.endpoint, payload, stage=agent.name.value),
            agent.retry,
            label=agent.name.value,
            sleep=self.sleep,
            log=self.log,
        )
        self.log.info("stage_completed", stage=agent.name.value, **self._context(ctx.account, ctx.period))
        return payload, output

    async def _fail(
        self,
        account: Account,
        stage: StageName,
        period: Period,
        run_type: RunType,
        error: Exception,
    ) -> RunOutcome:
        message = str(error)
        row = await self.results.record_error(account, stage, period, run_type, message)
        self.log.error(
            "pipeline_run_failed",
            run_type=run_type.value,
            error=message,
            **self._context(account, period),
        )
        await self._notify(PipelineEvent(
            type=PipelineEventType.PIPELINE_FAILED,
            message=f"{run_type.value} pipeline failed for {account.domain}: {message}",
            account_id=str(account.id),
            domain=account.domain,
            data={"period": period.as_dict(), "stage": stage.value},
        ))
        return RunOutcome.failed(message, {stage.value: str(row.id)})

    async def _notify(self, event: PipelineEvent) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.notify(event)
        except Exception as e:
            self.log.warning("notification_dropped", event_type=event.type.value, error=str(e))

    async def _pause(self, seconds: float) -> None:
        if seconds:
            await self.sleep(seconds)

    def _log_skip(self, account: Account, stage: StageName, period: Period, reason: SkipReason) -> None:
        self.log.info("pipeline_run_skipped", stage=stage.value, reason=reason.value, **self._context(account, period))

    @staticmethod
    def _context(account: Optional[Account], period: Period) -> dict:
        return {
            "account_id": str(account.id) if account else None,
            "domain": account.domain if account else None,
            "period_start": period.start.isoformat(),
            "period_end": period.end.isoformat(),
        }
