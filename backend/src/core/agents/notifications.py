"""
Pipeline Notifications
======================

Outbound notification boundary. The pipelines only call
``notify(event)``; delivery problems are logged and never raised.

Events:
- pipeline_failed (daily/monthly run exhausted its retries)
- tasks_created (monthly run committed at least one task)
- audit_completed (system audit finished)
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol

import httpx
import structlog

from src.core.config import settings

logger = structlog.get_logger()


class PipelineEventType(str, Enum):
    PIPELINE_FAILED = "pipeline_failed"
    TASKS_CREATED = "tasks_created"
    AUDIT_COMPLETED = "audit_completed"


@dataclass
class PipelineEvent:
    type: PipelineEventType
    message: str
    account_id: Optional[str] = None
    domain: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> dict:
        payload = asdict(self)
        payload["type"] = self.type.value
        payload["occurred_at"] = self.occurred_at.isoformat()
        return payload


class Notifier(Protocol):
    async def notify(self, event: PipelineEvent) -> None:
        ...


class WebhookNotifier:
    """
    Posts pipeline events to a webhook.
    Falls back to logging only when no URL is configured.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or settings.NOTIFICATION_WEBHOOK_URL
        self._client = httpx.AsyncClient(
            timeout=settings.LOOKUP_TIMEOUT_SECONDS,
            transport=transport,
        )

        if self.enabled:
            logger.info("notifier_initialized", mode="live", url=self.url)
        else:
            logger.info("notifier_initialized", mode="logging_only")

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def notify(self, event: PipelineEvent) -> None:
        if not self.enabled:
            logger.info(
                "notification_logged",
                event_type=event.type.value,
                account_id=event.account_id,
                message=event.message,
                mode="disabled",
            )
            return

        try:
            response = await self._client.post(self.url, json=event.to_payload())
            if response.status_code < 400:
                logger.debug("notification_sent", event_type=event.type.value)
            else:
                logger.warning(
                    "notification_failed",
                    event_type=event.type.value,
                    status_code=response.status_code,
                )
        except httpx.HTTPError as e:
            logger.error("notification_error", event_type=event.type.value, error=str(e))

    async def close(self) -> None:
        await self._client.aclose()
