"""
Recommendation Aggregator
=========================

System-wide audit of one period's stage outputs. Successful results are
grouped by stage name; every group goes through two independent audit
agents (guardian and governance_sentinel) together with the reviewer
verdicts on earlier recommendations for that stage.

A failing group never blocks the others. Exactly two aggregated rows
are written per period, after which the nested recommendations are
parsed out; parsing problems are logged and never fail the audit.
"""

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from itertools import groupby
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.agents.client import AgentClient
from src.core.agents.errors import AgentError
from src.core.agents.idempotency import IdempotencyGuard
from src.core.agents.notifications import Notifier, PipelineEvent, PipelineEventType
from src.core.agents.outcomes import SkipReason, plain
from src.core.agents.periods import Period, previous_month, resolve_reference
from src.core.agents.retry import Sleep, with_retry
from src.core.agents.stages import AUDIT_PIPELINE, StageAgent, StageContext, build_catalog
from src.core.agents.store import PipelineBatch, RecommendationStore, ResultStore
from src.core.agents.tasks import excerpt
from src.core.config import Settings, settings as default_settings
from src.core.models import (
    Recommendation,
    ResultStatus,
    ReviewStatus,
    RunType,
    StageName,
    StageResult,
)


class AuditStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"     # At least one group call failed
    FAILED = "failed"       # Every group call failed
    SKIPPED = "skipped"


@dataclass
class GroupOutcome:
    stage: str
    results: int
    guardian: bool
    governance: bool


@dataclass
class AuditReport:
    status: AuditStatus
    period: dict[str, str]
    reason: Optional[str] = None
    guardian_result_id: Optional[str] = None
    governance_result_id: Optional[str] = None
    groups: list[GroupOutcome] = field(default_factory=list)
    recommendations_created: int = 0

    def as_dict(self) -> dict:
        return asdict(self, dict_factory=plain)


# ==========================================================================
# Recommendation Parsing
# ==========================================================================

def _recommendation_items(output: Any) -> list:
    """
    Accepts a list of wrappers holding ``recommendations``, one object
    holding it, or a bare list of items.
    """
    if isinstance(output, dict):
        items = output.get("recommendations")
        return items if isinstance(items, list) else []
    if isinstance(output, list):
        wrappers = [o for o in output if isinstance(o, dict) and "recommendations" in o]
        if not wrappers:
            return output
        items = []
        for wrapper in wrappers:
            if isinstance(wrapper["recommendations"], list):
                items.extend(wrapper["recommendations"])
        return items
    return []


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_datetime(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return "\n".join(str(v) for v in value)
    return str(value)


def build_recommendation(
    item: dict,
    source_stage: StageName,
    audited_stage: StageName,
    result: StageResult,
) -> Optional[Recommendation]:
    """Map one raw audit item to a row, or None when it has no title."""
    explanation = _text(item.get("explanation"))
    title = item.get("title") or (excerpt(explanation) if explanation else None)
    if not title:
        return None

    severity = item.get("severity")
    evidence = item.get("evidence_links")
    return Recommendation(
        agent_result_id=result.id,
        source_stage_type=source_stage,
        audited_stage=audited_stage,
        title=str(title)[:500],
        explanation=explanation,
        type=item.get("type"),
        urgency=item.get("urgency"),
        category=item.get("category"),
        severity=int(severity) if isinstance(severity, (int, float)) and not isinstance(severity, bool) else 1,
        verdict=item.get("verdict"),
        confidence=_as_float(item.get("confidence")),
        suggested_action=_text(item.get("suggested_action")),
        rule_reference=_text(item.get("rule_reference")),
        evidence_links=evidence if isinstance(evidence, list) else [],
        escalation_required=bool(item.get("escalation_required", False)),
        observed_at=_as_datetime(item.get("observed_at")),
    )


def parse_recommendations(
    source_stage: StageName,
    result: StageResult,
    log: Optional[Any] = None,
) -> list[Recommendation]:
    """Parse every per-group entry of an aggregated audit row."""
    log = log or structlog.get_logger()
    rows = []
    for entry in result.output_payload or []:
        if not isinstance(entry, dict) or not entry.get("success"):
            continue
        try:
            audited = StageName(entry["agent_under_test"])
            items = _recommendation_items(entry.get("output"))
        except (KeyError, ValueError) as e:
            log.warning("audit_entry_unparseable", source=source_stage.value, error=str(e))
            continue

        for index, item in enumerate(items):
            if not isinstance(item, dict):
                continue
            try:
                row = build_recommendation(item, source_stage, audited, result)
            except Exception as e:
                log.warning(
                    "recommendation_item_skipped",
                    source=source_stage.value,
                    audited_stage=audited.value,
                    index=index,
                    error=str(e),
                )
                continue
            if row is not None:
                rows.append(row)
    return rows


def _history_item(rec: Recommendation) -> dict:
    return {
        "title": rec.title,
        "explanation": rec.explanation,
        "verdict": rec.verdict,
        "reviewStatus": rec.review_status.value if rec.review_status else None,
        "reviewedAt": rec.reviewed_at.isoformat() if rec.reviewed_at else None,
    }


# ==========================================================================
# Aggregator
# ==========================================================================

class RecommendationAggregator:
    """
    Runs the system audit for one period.

    Usage:
        aggregator = RecommendationAggregator(session, client)
        report = await aggregator.run_audit(reference=date(2025, 2, 3))
    """

    def __init__(
        self,
        session: AsyncSession,
        agent_client: AgentClient,
        notifier: Optional[Notifier] = None,
        catalog: Optional[dict[StageName, StageAgent]] = None,
        config: Optional[Settings] = None,
        group_pause: Optional[float] = None,
        history_limit: Optional[int] = None,
        sleep: Sleep = asyncio.sleep,
        logger: Optional[Any] = None,
    ):
        self.config = config or default_settings
        self.session = session
        self.client = agent_client
        self.notifier = notifier
        self.catalog = catalog or build_catalog(self.config)
        self.group_pause = (
            self.config.AUDIT_GROUP_PAUSE_SECONDS if group_pause is None else group_pause
        )
        self.history_limit = history_limit or self.config.AUDIT_HISTORY_LIMIT
        self.sleep = sleep
        self.log = logger or structlog.get_logger()

        self.results = ResultStore(session)
        self.recommendations = RecommendationStore(session)
        self.guard = IdempotencyGuard(self.results)

    async def run_audit(
        self,
        reference: Optional[date] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> AuditReport:
        """Audit ``start..end``, or the month before ``reference``."""
        if start and end:
            period = Period(start, end)
        else:
            period = previous_month(resolve_reference(reference))
        guardian, governance = AUDIT_PIPELINE

        existing = await self.guard.existing(None, guardian, period)
        if existing is not None:
            self.log.info("audit_skipped", reason=SkipReason.ALREADY_EXISTS.value, period=str(period))
            return AuditReport(
                status=AuditStatus.SKIPPED,
                period=period.as_dict(),
                reason=SkipReason.ALREADY_EXISTS.value,
                guardian_result_id=str(existing.id),
            )

        results = await self.results.successful_for_period(period, exclude=AUDIT_PIPELINE)
        if not results:
            self.log.info("audit_skipped", reason=SkipReason.NO_RESULTS.value, period=str(period))
            return AuditReport(
                status=AuditStatus.SKIPPED,
                period=period.as_dict(),
                reason=SkipReason.NO_RESULTS.value,
            )

        groups = group_by_stage(results)
        self.log.info(
            "audit_started",
            period=str(period),
            results=len(results),
            groups=[stage.value for stage in groups],
        )

        guardian_runs: list[dict] = []
        governance_runs: list[dict] = []
        outcomes: list[GroupOutcome] = []

        for index, (stage, rows) in enumerate(groups.items()):
            if index:
                await self._pause()
            additional = await self.group_payload(stage, rows)
            guardian_entry = await self._audit_group(guardian, stage, period, additional)
            governance_entry = await self._audit_group(governance, stage, period, additional)
            guardian_runs.append(guardian_entry)
            governance_runs.append(governance_entry)
            outcomes.append(GroupOutcome(
                stage=stage.value,
                results=len(rows),
                guardian=guardian_entry["success"],
                governance=governance_entry["success"],
            ))

        status = audit_status(outcomes)
        # A fully failed audit is stored as error rows so the guard lets a rerun through
        row_status = ResultStatus.ERROR if status == AuditStatus.FAILED else ResultStatus.SUCCESS
        error = "every audit group call failed" if row_status == ResultStatus.ERROR else None

        audited = [stage.value for stage in groups]
        batch = PipelineBatch(self.session)
        guardian_row = batch.add_result(
            None, guardian, period, RunType.AUDIT, {"groups": audited}, guardian_runs,
            status=row_status, error_message=error,
        )
        governance_row = batch.add_result(
            None, governance, period, RunType.AUDIT, {"groups": audited}, governance_runs,
            status=row_status, error_message=error,
        )
        await batch.commit()
        guardian_id, governance_id = str(guardian_row.id), str(governance_row.id)

        created = 0
        if row_status == ResultStatus.SUCCESS:
            created = await self._store_recommendations([(guardian, guardian_row), (governance, governance_row)])

        report = AuditReport(
            status=status,
            period=period.as_dict(),
            guardian_result_id=guardian_id,
            governance_result_id=governance_id,
            groups=outcomes,
            recommendations_created=created,
        )
        self.log.info(
            "audit_completed",
            period=str(period),
            status=report.status.value,
            recommendations=created,
        )
        await self._notify(report)
        return report

    async def group_payload(self, stage: StageName, rows: list[StageResult]) -> dict:
        """additional_data for one stage group: outputs plus review history."""
        passed = await self.recommendations.review_history(stage, ReviewStatus.PASS, self.history_limit)
        rejected = await self.recommendations.review_history(stage, ReviewStatus.REJECT, self.history_limit)
        return {
            "agent_under_test": stage.value,
            "outputs": [
                {
                    "resultId": str(row.id),
                    "accountId": str(row.account_id) if row.account_id else None,
                    "domain": row.domain,
                    "period": {
                        "start": row.period_start.isoformat(),
                        "end": row.period_end.isoformat(),
                    },
                    "output": row.output_payload,
                }
                for row in rows
            ],
            "history": {
                "passed": [_history_item(r) for r in passed],
                "rejected": [_history_item(r) for r in rejected],
            },
        }

    async def _audit_group(
        self,
        audit_stage: StageName,
        stage: StageName,
        period: Period,
        additional: dict,
    ) -> dict:
        agent = self.catalog[audit_stage]
        payload = agent.build_payload(StageContext(account=None, period=period, extra=additional))
        try:
            output = await with_retry(
                lambda: self.client.invoke(agent.endpoint, payload, stage=audit_stage.value),
                agent.retry,
                label=f"{audit_stage.value}[{stage.value}]",
                sleep=self.sleep,
                log=self.log,
            )
        except AgentError as e:
            self.log.warning(
                "audit_group_failed",
                audit_stage=audit_stage.value,
                stage=stage.value,
                error=str(e),
            )
            return {"agent_under_test": stage.value, "success": False, "error": str(e)}
        return {"agent_under_test": stage.value, "success": True, "output": output}

    async def _store_recommendations(self, rows: list[tuple[StageName, StageResult]]) -> int:
        try:
            parsed = []
            for source_stage, row in rows:
                parsed.extend(parse_recommendations(source_stage, row, log=self.log))
            return await self.recommendations.add_all(parsed)
        except Exception as e:
            self.log.error("recommendation_insert_failed", error=str(e))
            await self.session.rollback()
            return 0

    async def _notify(self, report: AuditReport) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.notify(PipelineEvent(
                type=PipelineEventType.AUDIT_COMPLETED,
                message=f"Audit {report.status.value} for {report.period['start']}..{report.period['end']}",
                data={
                    "groups": [asdict(g) for g in report.groups],
                    "recommendations": report.recommendations_created,
                },
            ))
        except Exception as e:
            self.log.warning("notification_dropped", event_type="audit_completed", error=str(e))

    async def _pause(self) -> None:
        if self.group_pause:
            await self.sleep(self.group_pause)


def group_by_stage(results: list[StageResult]) -> dict[StageName, list[StageResult]]:
    """Group rows by stage name, in a stable (sorted) order."""
    ordered = sorted(results, key=lambda r: r.stage.value)
    return {stage: list(rows) for stage, rows in groupby(ordered, key=lambda r: r.stage)}


def audit_status(outcomes: list[GroupOutcome]) -> AuditStatus:
    flags = [flag for g in outcomes for flag in (g.guardian, g.governance)]
    if all(flags):
        return AuditStatus.SUCCESS
    if any(flags):
        return AuditStatus.PARTIAL
    return AuditStatus.FAILED
