"""
Agent Orchestrator - Test Fixtures
==================================

Shared pytest fixtures for all tests: an in-memory database, scripted
agent / metric / notifier doubles and a recording ``sleep``.
"""

from collections.abc import AsyncGenerator, Callable
from datetime import date
from typing import Any, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.api.deps import get_aggregator, get_orchestrator
from src.api.main import app
from src.core.agents.audit import RecommendationAggregator
from src.core.agents.errors import EndpointNotConfigured
from src.core.agents.metrics import MetricBundle
from src.core.agents.orchestrator import AgentOrchestrator
from src.core.config import Settings
from src.core.database import Base, get_db
from src.core.models import Account


# ==========================================================================
# Test Database Setup
# ==========================================================================

# Use in-memory SQLite for tests (fast)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Every test treats 2025-03-05 as today: the monthly period is February,
# the daily key is 2025-03-03..2025-03-04
REFERENCE = date(2025, 3, 5)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a clean database session for each test.

    Creates all tables before test, drops after.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


async def count_rows(session: AsyncSession, model: Any, *criteria: Any) -> int:
    result = await session.execute(select(func.count()).select_from(model).where(*criteria))
    return result.scalar_one()


async def fetch_rows(session: AsyncSession, model: Any, *criteria: Any) -> list:
    result = await session.execute(select(model).where(*criteria))
    return list(result.scalars().all())


# ==========================================================================
# Settings
# ==========================================================================

ENDPOINT_FIELDS = {
    "PROOFLINE_AGENT_WEBHOOK": "proofline",
    "SUMMARY_AGENT_WEBHOOK": "summary",
    "REFERRAL_ENGINE_AGENT_WEBHOOK": "referral_engine",
    "OPPORTUNITY_AGENT_WEBHOOK": "opportunity",
    "CRO_OPTIMIZER_AGENT_WEBHOOK": "cro_optimizer",
    "GBP_OPTIMIZER_AGENT_WEBHOOK": "gbp_optimizer",
    "GUARDIAN_AGENT_WEBHOOK": "guardian",
    "GOVERNANCE_AGENT_WEBHOOK": "governance_sentinel",
}


def make_settings(**overrides: Any) -> Settings:
    """Every endpoint bound, every delay and pause zero."""
    values: dict[str, Any] = {
        field: f"http://agents.test/{stage}" for field, stage in ENDPOINT_FIELDS.items()
    }
    values.update(
        ENVIRONMENT="test",
        CLIENT_RETRY_DELAY_SECONDS=0,
        CRO_RETRY_DELAY_SECONDS=0,
        AUDIT_RETRY_DELAY_SECONDS=0,
        ACCOUNT_PAUSE_SECONDS=0,
        STAGE_PAUSE_SECONDS=0,
        AUDIT_GROUP_PAUSE_SECONDS=0,
        METRICS_SERVICE_URL=None,
        NOTIFICATION_WEBHOOK_URL=None,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


# ==========================================================================
# Collaborator Doubles
# ==========================================================================

DEFAULT_OUTPUTS: dict[str, Any] = {
    "proofline": {"title": "Website traffic steady", "explanation": "Sessions flat day over day"},
    "summary": {"summary": "Strong month for new patients", "highlights": ["referrals up 12%"]},
    "referral_engine": {
        "alloro_automation_opportunities": [{"title": "Automate referral thank-you notes"}],
        "practice_action_plan": [{"title": "Call the top three referring doctors"}],
    },
    "opportunity": [
        {
            "opportunities": [
                {"title": "Reply to recent reviews", "urgency": "Immediate"},
                {"title": "Fix listing opening hours", "type": "ALLORO"},
            ]
        }
    ],
    "cro_optimizer": [{"opportunities": [{"title": "Shorten the booking form"}]}],
    "gbp_optimizer": {"posts": ["Holiday hours"]},
    "guardian": [
        {"recommendations": [{"title": "Summary cites stale data", "verdict": "FAIL", "confidence": 0.8}]}
    ],
    "governance_sentinel": [
        {"recommendations": [{"explanation": "Output follows the tone rules", "verdict": "PASS"}]}
    ],
}


def sequence(*responses: Any) -> Callable[[dict], Any]:
    """Scripted response that returns each value in turn (last one repeats)."""
    remaining = list(responses)

    def respond(payload: dict) -> Any:
        value = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        if isinstance(value, Exception):
            raise value
        return value

    return respond


class FakeAgentClient:
    """
    Agent client double.

    ``responses`` maps a stage name to a fixed output, an exception to
    raise, or a callable taking the payload. Every call is recorded.
    """

    def __init__(self, responses: Optional[dict[str, Any]] = None):
        self.responses = dict(DEFAULT_OUTPUTS)
        self.responses.update(responses or {})
        self.calls: list[tuple[str, dict]] = []

    async def invoke(self, endpoint: Optional[str], payload: dict, stage: str, timeout: Optional[float] = None) -> Any:
        if not endpoint:
            raise EndpointNotConfigured(stage)
        self.calls.append((stage, payload))
        response = self.responses.get(stage)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(payload)
        return response

    def stages_called(self) -> list[str]:
        return [stage for stage, _ in self.calls]

    def calls_for(self, stage: str) -> list[dict]:
        return [payload for name, payload in self.calls if name == stage]

    async def close(self) -> None:
        pass


class FakeMetricFetcher:
    def __init__(self, bundle: Optional[MetricBundle] = None):
        self.bundle = bundle or MetricBundle(
            analytics={"sessions": 1200},
            business_listing=None,
            practice_management=[
                {
                    "month": "2025-02",
                    "self_referrals": 10,
                    "doctor_referrals": 5,
                    "production_total": 15000,
                    "sources": [{"name": "Dr. Lee", "referrals": 5, "production": 9000}],
                }
            ],
        )
        self.calls: list[tuple[str, date, date]] = []

    async def fetch(self, account: Account, start: date, end: date) -> MetricBundle:
        self.calls.append((account.domain, start, end))
        return self.bundle


class RecordingNotifier:
    def __init__(self):
        self.events = []

    async def notify(self, event) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.type.value for e in self.events]


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def agent_client() -> FakeAgentClient:
    return FakeAgentClient()


@pytest.fixture
def metric_fetcher() -> FakeMetricFetcher:
    return FakeMetricFetcher()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


# ==========================================================================
# Engine Fixtures
# ==========================================================================

@pytest.fixture
def make_orchestrator(db_session, agent_client, metric_fetcher, notifier, sleep, test_settings):
    """Factory so tests can tweak policies, pauses or the config."""
    def factory(**kwargs: Any) -> AgentOrchestrator:
        params: dict[str, Any] = {
            "notifier": notifier,
            "config": test_settings,
            "sleep": sleep,
        }
        params.update(kwargs)
        return AgentOrchestrator(db_session, agent_client, metric_fetcher, **params)
    return factory


@pytest.fixture
def orchestrator(make_orchestrator) -> AgentOrchestrator:
    return make_orchestrator()


@pytest.fixture
def make_aggregator(db_session, agent_client, notifier, sleep, test_settings):
    def factory(**kwargs: Any) -> RecommendationAggregator:
        params: dict[str, Any] = {
            "notifier": notifier,
            "config": test_settings,
            "sleep": sleep,
        }
        params.update(kwargs)
        return RecommendationAggregator(db_session, agent_client, **params)
    return factory


@pytest.fixture
def aggregator(make_aggregator) -> RecommendationAggregator:
    return make_aggregator()


# ==========================================================================
# Account Fixtures
# ==========================================================================

async def create_account(
    session: AsyncSession,
    domain: str,
    onboarding_completed: bool = True,
) -> Account:
    account = Account(
        id=uuid4(),
        domain=domain,
        onboarding_completed=onboarding_completed,
        property_ids={"analytics": {"property_id": "123"}},
    )
    session.add(account)
    await session.commit()
    await session.refresh(account)
    return account


@pytest_asyncio.fixture
async def account(db_session: AsyncSession) -> Account:
    """An onboarded account."""
    return await create_account(db_session, "smile-dental.com")


# ==========================================================================
# HTTP Client
# ==========================================================================

@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, make_orchestrator, make_aggregator) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide test HTTP client with database and engine overrides.
    """
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: make_orchestrator()
    app.dependency_overrides[get_aggregator] = lambda: make_aggregator()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
