"""
Agent Orchestrator - Configuration
==================================

All application settings loaded from environment variables.
Uses pydantic-settings for validation and type conversion.
"""

from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    APP_NAME: str = "Agent Orchestrator"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = "development"
    DEBUG: bool = False

    # ==========================================================================
    # API
    # ==========================================================================
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # ==========================================================================
    # Database (supports SQLite and PostgreSQL)
    # ==========================================================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./agents.db"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False

    @computed_field  # type: ignore[misc]
    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.DATABASE_URL

    # ==========================================================================
    # Agent Endpoints (empty = not configured)
    # ==========================================================================
    PROOFLINE_AGENT_WEBHOOK: str = ""
    SUMMARY_AGENT_WEBHOOK: str = ""
    REFERRAL_ENGINE_AGENT_WEBHOOK: str = ""
    OPPORTUNITY_AGENT_WEBHOOK: str = ""
    CRO_OPTIMIZER_AGENT_WEBHOOK: str = ""
    GBP_OPTIMIZER_AGENT_WEBHOOK: str = ""
    GUARDIAN_AGENT_WEBHOOK: str = ""
    GOVERNANCE_AGENT_WEBHOOK: str = ""

    # Pipeline stages wait up to 10 minutes, lookups much less
    AGENT_TIMEOUT_SECONDS: float = 600.0
    LOOKUP_TIMEOUT_SECONDS: float = 60.0

    # ==========================================================================
    # Retry & Pacing
    # ==========================================================================
    CLIENT_RETRY_ATTEMPTS: int = 3
    CLIENT_RETRY_DELAY_SECONDS: float = 30.0
    CRO_RETRY_ATTEMPTS: int = 3
    CRO_RETRY_DELAY_SECONDS: float = 30.0
    AUDIT_RETRY_ATTEMPTS: int = 3
    AUDIT_RETRY_DELAY_SECONDS: float = 30.0

    ACCOUNT_PAUSE_SECONDS: float = 15.0
    STAGE_PAUSE_SECONDS: float = 15.0
    AUDIT_GROUP_PAUSE_SECONDS: float = 15.0

    # ==========================================================================
    # Monthly Gate & Audit
    # ==========================================================================
    MONTHLY_DATA_AVAILABLE: bool = True
    AUDIT_HISTORY_LIMIT: int = 50

    # ==========================================================================
    # External Collaborators
    # ==========================================================================
    METRICS_SERVICE_URL: str | None = None
    METRICS_SERVICE_API_KEY: str | None = None
    NOTIFICATION_WEBHOOK_URL: str | None = None

    # ==========================================================================
    # Scheduler
    # ==========================================================================
    SCHEDULER_ENABLED: bool = False
    DAILY_RUN_HOUR: int = 6
    DAILY_RUN_MINUTE: int = 0
    AUDIT_RUN_DAY: int = 3

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @computed_field  # type: ignore[misc]
    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @computed_field  # type: ignore[misc]
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @computed_field  # type: ignore[misc]
    @property
    def is_test(self) -> bool:
        return self.ENVIRONMENT == "test"

    def agent_endpoints(self) -> dict[str, str]:
        """Stage name -> configured webhook URL (possibly empty)."""
        return {
            "proofline": self.PROOFLINE_AGENT_WEBHOOK,
            "summary": self.SUMMARY_AGENT_WEBHOOK,
            "referral_engine": self.REFERRAL_ENGINE_AGENT_WEBHOOK,
            "opportunity": self.OPPORTUNITY_AGENT_WEBHOOK,
            "cro_optimizer": self.CRO_OPTIMIZER_AGENT_WEBHOOK,
            "gbp_optimizer": self.GBP_OPTIMIZER_AGENT_WEBHOOK,
            "guardian": self.GUARDIAN_AGENT_WEBHOOK,
            "governance_sentinel": self.GOVERNANCE_AGENT_WEBHOOK,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
