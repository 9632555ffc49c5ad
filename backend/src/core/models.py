"""
Agent Orchestrator - Database Models
====================================

SQLAlchemy models for accounts, stage results, raw metric snapshots,
extracted tasks and audit recommendations.
"""

import enum
from datetime import date, datetime
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database import Base


# ==========================================================================
# Enums
# ==========================================================================

class StageName(str, enum.Enum):
    """Named steps backed by one remote agent each."""
    PROOFLINE = "proofline"
    SUMMARY = "summary"
    REFERRAL_ENGINE = "referral_engine"
    OPPORTUNITY = "opportunity"
    CRO_OPTIMIZER = "cro_optimizer"
    GBP_OPTIMIZER = "gbp_optimizer"
    GUARDIAN = "guardian"
    GOVERNANCE_SENTINEL = "governance_sentinel"


class ResultStatus(str, enum.Enum):
    """Outcome stored on a stage result."""
    SUCCESS = "success"
    PENDING = "pending"    # In flight, blocks duplicates like success
    ERROR = "error"


class RunType(str, enum.Enum):
    """Which pipeline produced a row."""
    DAILY = "daily"
    MONTHLY = "monthly"
    AUDIT = "audit"


class TaskCategory(str, enum.Enum):
    """Audience of an extracted task."""
    USER = "USER"          # Client-facing
    ALLORO = "ALLORO"      # Internal / agency work


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    ARCHIVED = "archived"


class ReviewStatus(str, enum.Enum):
    """Human review verdict on a recommendation."""
    PASS = "PASS"
    REJECT = "REJECT"


# ==========================================================================
# Mixins
# ==========================================================================

class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# ==========================================================================
# Models
# ==========================================================================

class Account(Base, TimestampMixin):
    """
    Tenant identity. Owned by onboarding; read-only to the pipelines.
    """

    __tablename__ = "accounts"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    domain: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
    )
    onboarding_completed: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    # Which metric sources are bound, e.g. {"analytics": {...}, "business_listing": [...]}
    property_ids: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Account {self.domain}>"


class StageResult(Base):
    """
    Durable record of one stage execution.

    Written once, never updated. At most one success/pending row may
    exist per (account, stage, period).
    """

    __tablename__ = "agent_results"
    __table_args__ = (
        Index(
            "ix_agent_results_key",
            "account_id",
            "stage",
            "period_start",
            "period_end",
        ),
    )

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    # Null for system-wide audit stages
    account_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=True,
    )
    domain: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    stage: Mapped[StageName] = mapped_column(
        Enum(StageName),
        nullable=False,
        index=True,
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    run_type: Mapped[RunType] = mapped_column(
        Enum(RunType),
        nullable=False,
    )
    input_payload: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    output_payload: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    status: Mapped[ResultStatus] = mapped_column(
        Enum(ResultStatus),
        default=ResultStatus.PENDING,
        nullable=False,
        index=True,
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<StageResult {self.stage.value} {self.period_start}..{self.period_end} {self.status.value}>"


class MetricSnapshot(Base):
    """Raw metric bundle that fed a successful pipeline run."""

    __tablename__ = "metric_snapshots"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    account_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    domain: Mapped[str] = mapped_column(String(255), nullable=False)
    stage: Mapped[StageName] = mapped_column(Enum(StageName), nullable=False)
    run_type: Mapped[RunType] = mapped_column(Enum(RunType), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class Task(Base, TimestampMixin):
    """
    Actionable item extracted from a successful stage output.

    Only created after the owning pipeline run fully succeeded.
    """

    __tablename__ = "tasks"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    account_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    domain: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    agent_result_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("agent_results.id", ondelete="SET NULL"),
        nullable=True,
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[TaskCategory] = mapped_column(
        Enum(TaskCategory),
        nullable=False,
        index=True,
    )
    origin_stage: Mapped[StageName] = mapped_column(Enum(StageName), nullable=False)
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus),
        default=TaskStatus.PENDING,
        nullable=False,
    )
    is_approved: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    task_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Task {self.category.value} {self.title[:30]}>"


class Recommendation(Base, TimestampMixin):
    """
    Audit finding from a guardian / governance_sentinel run.

    review_status is set later by a human reviewer and feeds the
    history context of future audits.
    """

    __tablename__ = "agent_recommendations"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    agent_result_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("agent_results.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    source_stage_type: Mapped[StageName] = mapped_column(
        Enum(StageName),
        nullable=False,
    )
    audited_stage: Mapped[StageName] = mapped_column(
        Enum(StageName),
        nullable=False,
        index=True,
    )

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    explanation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    urgency: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    severity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    verdict: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    suggested_action: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rule_reference: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    evidence_links: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    escalation_required: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    review_status: Mapped[Optional[ReviewStatus]] = mapped_column(
        Enum(ReviewStatus),
        nullable=True,
        index=True,
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    observed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Recommendation {self.audited_stage.value} {self.title[:30]}>"
