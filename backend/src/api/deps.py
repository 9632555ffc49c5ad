"""
Agent Orchestrator - API Dependencies
=====================================

Shared dependencies for FastAPI endpoints.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.agents.audit import RecommendationAggregator
from src.core.agents.client import AgentClient
from src.core.agents.metrics import MetricFetcher, MetricsServiceClient
from src.core.agents.notifications import Notifier, WebhookNotifier
from src.core.agents.orchestrator import AgentOrchestrator
from src.core.agents.store import RecommendationStore, ResultStore
from src.core.database import get_db


# ==========================================================================
# Collaborators (one per process)
# ==========================================================================

@lru_cache
def get_agent_client() -> AgentClient:
    return AgentClient()


@lru_cache
def get_metric_fetcher() -> MetricsServiceClient:
    return MetricsServiceClient()


@lru_cache
def get_notifier() -> WebhookNotifier:
    return WebhookNotifier()


async def close_collaborators() -> None:
    """Close the cached HTTP clients (application shutdown)."""
    for provider in (get_agent_client, get_metric_fetcher, get_notifier):
        if provider.cache_info().currsize:
            await provider().close()
        provider.cache_clear()


# ==========================================================================
# Per-request Services
# ==========================================================================

def get_orchestrator(
    db: AsyncSession = Depends(get_db),
    agent_client: AgentClient = Depends(get_agent_client),
    metric_fetcher: MetricFetcher = Depends(get_metric_fetcher),
    notifier: Notifier = Depends(get_notifier),
) -> AgentOrchestrator:
    return AgentOrchestrator(db, agent_client, metric_fetcher, notifier)


def get_aggregator(
    db: AsyncSession = Depends(get_db),
    agent_client: AgentClient = Depends(get_agent_client),
    notifier: Notifier = Depends(get_notifier),
) -> RecommendationAggregator:
    return RecommendationAggregator(db, agent_client, notifier)


def get_result_store(db: AsyncSession = Depends(get_db)) -> ResultStore:
    return ResultStore(db)


def get_recommendation_store(db: AsyncSession = Depends(get_db)) -> RecommendationStore:
    return RecommendationStore(db)


# ==========================================================================
# Type Aliases for Dependency Injection
# ==========================================================================

DbSession = Annotated[AsyncSession, Depends(get_db)]
Orchestrator = Annotated[AgentOrchestrator, Depends(get_orchestrator)]
Aggregator = Annotated[RecommendationAggregator, Depends(get_aggregator)]
Results = Annotated[ResultStore, Depends(get_result_store)]
Recommendations = Annotated[RecommendationStore, Depends(get_recommendation_store)]
