"""
Agent orchestration package.

Exports the main components for easy import.
"""

from src.core.agents.audit import AuditReport, AuditStatus, RecommendationAggregator
from src.core.agents.client import AgentClient
from src.core.agents.errors import (
    AgentError,
    EndpointNotConfigured,
    InvalidOutput,
    RetriesExhausted,
    TransportError,
)
from src.core.agents.idempotency import IdempotencyGuard
from src.core.agents.metrics import MetricBundle, MetricFetcher, MetricsServiceClient
from src.core.agents.notifications import Notifier, PipelineEvent, WebhookNotifier
from src.core.agents.orchestrator import AccountOutcome, AgentOrchestrator, BatchReport, RunOutcome
from src.core.agents.outcomes import RunStatus, SkipReason
from src.core.agents.periods import Period
from src.core.agents.retry import RetryPolicy, with_retry
from src.core.agents.stages import StageAgent, build_catalog
from src.core.agents.tasks import ExtractedTask, extract_tasks
from src.core.agents.validation import is_valid_output

__all__ = [
    "AccountOutcome",
    "AgentClient",
    "AgentError",
    "AgentOrchestrator",
    "AuditReport",
    "AuditStatus",
    "BatchReport",
    "EndpointNotConfigured",
    "ExtractedTask",
    "IdempotencyGuard",
    "InvalidOutput",
    "MetricBundle",
    "MetricFetcher",
    "MetricsServiceClient",
    "Notifier",
    "Period",
    "PipelineEvent",
    "RecommendationAggregator",
    "RetriesExhausted",
    "RetryPolicy",
    "RunOutcome",
    "RunStatus",
    "SkipReason",
    "StageAgent",
    "TransportError",
    "WebhookNotifier",
    "build_catalog",
    "extract_tasks",
    "is_valid_output",
    "with_retry",
]
