"""
Stage catalog and payload builders.

Each stage is a StageAgent: a name, an endpoint, a retry policy, the
upstream stages whose output it consumes, and a pure payload builder.
The dependency graph of each pipeline is declared here and checked at
import time.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from src.core.agents.metrics import MetricBundle
from src.core.agents.periods import Period
from src.core.agents.production import aggregate_production
from src.core.agents.retry import SINGLE_ATTEMPT, RetryPolicy
from src.core.config import Settings, settings as default_settings
from src.core.models import Account, RunType, StageName


# ==========================================================================
# Build Context
# ==========================================================================

@dataclass
class StageContext:
    """Everything a payload builder may read for one pipeline run."""
    account: Optional[Account]
    period: Period
    metrics: Optional[MetricBundle] = None
    # Daily runs: {"yesterday": bundle, "dayBeforeYesterday": bundle}
    daily: dict[str, MetricBundle] = field(default_factory=dict)
    upstream: dict[StageName, Any] = field(default_factory=dict)
    # Audit runs: pre-built group payload
    extra: Optional[dict] = None


PayloadBuilder = Callable[[StageName, StageContext], dict]


# ==========================================================================
# Payload Builders
# ==========================================================================

def envelope(stage: StageName, ctx: StageContext, additional_data: Any) -> dict:
    """Common request body shared by every agent."""
    return {
        "agent": stage.value,
        "domain": ctx.account.domain if ctx.account else None,
        "accountId": str(ctx.account.id) if ctx.account else None,
        "dateRange": ctx.period.as_dict(),
        "additional_data": additional_data,
    }


def _bundle(bundle: Optional[MetricBundle]) -> dict:
    return (bundle or MetricBundle()).to_payload()


def build_proofline_payload(stage: StageName, ctx: StageContext) -> dict:
    return envelope(stage, ctx, {
        "yesterday": _bundle(ctx.daily.get("yesterday")),
        "dayBeforeYesterday": _bundle(ctx.daily.get("dayBeforeYesterday")),
    })


def build_summary_payload(stage: StageName, ctx: StageContext) -> dict:
    data = _bundle(ctx.metrics)
    data["production"] = aggregate_production(data.get("practice_management"))
    return envelope(stage, ctx, data)


def build_referral_payload(stage: StageName, ctx: StageContext) -> dict:
    return envelope(stage, ctx, _bundle(ctx.metrics))


def build_from_summary(stage: StageName, ctx: StageContext) -> dict:
    """Only the summary output is passed on, never raw metrics."""
    return envelope(stage, ctx, ctx.upstream[StageName.SUMMARY])


def build_gbp_payload(stage: StageName, ctx: StageContext) -> dict:
    return envelope(stage, ctx, {"business_listing": _bundle(ctx.metrics)["business_listing"]})


def build_audit_payload(stage: StageName, ctx: StageContext) -> dict:
    return envelope(stage, ctx, ctx.extra or {})


# ==========================================================================
# Stage Agent
# ==========================================================================

@dataclass(frozen=True)
class StageAgent:
    name: StageName
    endpoint: Optional[str]
    retry: RetryPolicy
    builder: PayloadBuilder
    run_type: RunType
    upstream: tuple[StageName, ...] = ()

    @property
    def max_attempts(self) -> int:
        return self.retry.max_attempts

    def build_payload(self, ctx: StageContext) -> dict:
        missing = [s.value for s in self.upstream if s not in ctx.upstream]
        if missing:
            raise ValueError(f"{self.name.value} needs upstream output from {', '.join(missing)}")
        return self.builder(self.name, ctx)


# Static part of the catalog: builder, run type, upstream stages
STAGE_DEFINITIONS: dict[StageName, tuple[PayloadBuilder, RunType, tuple[StageName, ...]]] = {
    StageName.PROOFLINE: (build_proofline_payload, RunType.DAILY, ()),
    StageName.SUMMARY: (build_summary_payload, RunType.MONTHLY, ()),
    StageName.REFERRAL_ENGINE: (build_referral_payload, RunType.MONTHLY, ()),
    StageName.OPPORTUNITY: (build_from_summary, RunType.MONTHLY, (StageName.SUMMARY,)),
    StageName.CRO_OPTIMIZER: (build_from_summary, RunType.MONTHLY, (StageName.SUMMARY,)),
    StageName.GBP_OPTIMIZER: (build_gbp_payload, RunType.MONTHLY, ()),
    StageName.GUARDIAN: (build_audit_payload, RunType.AUDIT, ()),
    StageName.GOVERNANCE_SENTINEL: (build_audit_payload, RunType.AUDIT, ()),
}

DAILY_PIPELINE: tuple[StageName, ...] = (StageName.PROOFLINE,)

MONTHLY_PIPELINE: tuple[StageName, ...] = (
    StageName.SUMMARY,
    StageName.REFERRAL_ENGINE,
    StageName.OPPORTUNITY,
    StageName.CRO_OPTIMIZER,
)

AUDIT_PIPELINE: tuple[StageName, ...] = (
    StageName.GUARDIAN,
    StageName.GOVERNANCE_SENTINEL,
)


def validate_order(pipeline: tuple[StageName, ...]) -> None:
    """Raise if a stage is listed before one of its upstream stages."""
    seen: set[StageName] = set()
    for stage in pipeline:
        _, _, upstream = STAGE_DEFINITIONS[stage]
        missing = [u for u in upstream if u not in seen]
        if missing:
            raise ValueError(
                f"{stage.value} runs before its upstream {', '.join(m.value for m in missing)}"
            )
        seen.add(stage)


for _pipeline in (DAILY_PIPELINE, MONTHLY_PIPELINE, AUDIT_PIPELINE):
    validate_order(_pipeline)


def retry_policy_for(stage: StageName, config: Settings) -> RetryPolicy:
    if stage == StageName.CRO_OPTIMIZER:
        return RetryPolicy(config.CRO_RETRY_ATTEMPTS, config.CRO_RETRY_DELAY_SECONDS)
    if stage in AUDIT_PIPELINE:
        return RetryPolicy(config.AUDIT_RETRY_ATTEMPTS, config.AUDIT_RETRY_DELAY_SECONDS)
    return SINGLE_ATTEMPT


def build_catalog(
    config: Optional[Settings] = None,
    overrides: Optional[dict[StageName, RetryPolicy]] = None,
) -> dict[StageName, StageAgent]:
    """Bind every stage definition to its endpoint and retry policy."""
    config = config or default_settings
    endpoints = config.agent_endpoints()
    overrides = overrides or {}

    catalog = {}
    for name, (builder, run_type, upstream) in STAGE_DEFINITIONS.items():
        catalog[name] = StageAgent(
            name=name,
            endpoint=endpoints.get(name.value) or None,
            retry=overrides.get(name, retry_policy_for(name, config)),
            builder=builder,
            run_type=run_type,
            upstream=upstream,
        )
    return catalog
