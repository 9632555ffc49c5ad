"""
In-process cron trigger.

Two jobs: the daily run over every eligible account (daily pipeline,
plus the monthly one once its gate opens) and the monthly system audit.
A job still running when its next fire time comes is not started again.
"""

from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.core.agents import jobs
from src.core.config import Settings, settings as default_settings

logger = structlog.get_logger()

DAILY_JOB_ID = "agents_daily_run"
AUDIT_JOB_ID = "agents_monthly_audit"


async def daily_run_job() -> None:
    try:
        report = await jobs.run_batch()
        logger.info("scheduled_daily_run_finished", **report.counts)
    except Exception:
        logger.exception("scheduled_daily_run_failed")


async def audit_job() -> None:
    try:
        report = await jobs.run_audit()
        logger.info(
            "scheduled_audit_finished",
            status=report.status.value,
            reason=report.reason,
        )
    except Exception:
        logger.exception("scheduled_audit_failed")


def build_scheduler(config: Optional[Settings] = None) -> AsyncIOScheduler:
    """Scheduler with both jobs registered; the caller starts it."""
    config = config or default_settings
    scheduler = AsyncIOScheduler(timezone="UTC")

    scheduler.add_job(
        daily_run_job,
        trigger=CronTrigger(hour=config.DAILY_RUN_HOUR, minute=config.DAILY_RUN_MINUTE),
        id=DAILY_JOB_ID,
        name="Agents daily run",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=3600,
    )
    scheduler.add_job(
        audit_job,
        trigger=CronTrigger(
            day=config.AUDIT_RUN_DAY,
            hour=config.DAILY_RUN_HOUR,
            minute=config.DAILY_RUN_MINUTE,
        ),
        id=AUDIT_JOB_ID,
        name="Agents monthly audit",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=3600,
    )

    logger.info(
        "scheduler_configured",
        daily_at=f"{config.DAILY_RUN_HOUR:02d}:{config.DAILY_RUN_MINUTE:02d}",
        audit_day=config.AUDIT_RUN_DAY,
    )
    return scheduler
