"""
Out-of-request entry points.

Wire the real collaborators to a fresh database session for the
scheduler and the operator CLI. HTTP handlers get theirs from
``src.api.deps`` instead.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date
from typing import Optional
from uuid import UUID

from src.core.agents.audit import AuditReport, RecommendationAggregator
from src.core.agents.client import AgentClient
from src.core.agents.metrics import MetricsServiceClient
from src.core.agents.notifications import WebhookNotifier
from src.core.agents.orchestrator import AccountOutcome, AgentOrchestrator, BatchReport
from src.core.database import get_db_session


@dataclass
class Collaborators:
    agent_client: AgentClient
    metric_fetcher: MetricsServiceClient
    notifier: WebhookNotifier


@asynccontextmanager
async def collaborators() -> AsyncIterator[Collaborators]:
    """Real HTTP collaborators, closed on exit."""
    bundle = Collaborators(
        agent_client=AgentClient(),
        metric_fetcher=MetricsServiceClient(),
        notifier=WebhookNotifier(),
    )
    try:
        yield bundle
    finally:
        await bundle.agent_client.close()
        await bundle.metric_fetcher.close()
        await bundle.notifier.close()


async def run_batch(
    reference: Optional[date] = None,
    include_daily: bool = True,
    include_monthly: bool = True,
) -> BatchReport:
    async with collaborators() as c, get_db_session() as session:
        orchestrator = AgentOrchestrator(session, c.agent_client, c.metric_fetcher, c.notifier)
        return await orchestrator.run_all(reference, include_daily, include_monthly)


async def run_monthly_for(
    account_id: UUID,
    reference: Optional[date] = None,
    force: bool = False,
) -> Optional[AccountOutcome]:
    async with collaborators() as c, get_db_session() as session:
        orchestrator = AgentOrchestrator(session, c.agent_client, c.metric_fetcher, c.notifier)
        return await orchestrator.run_monthly_for(account_id, reference, force=force)


async def run_audit(
    reference: Optional[date] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> AuditReport:
    async with collaborators() as c, get_db_session() as session:
        aggregator = RecommendationAggregator(session, c.agent_client, c.notifier)
        return await aggregator.run_audit(reference, start, end)
