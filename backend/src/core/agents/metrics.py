"""
Metric collaborator boundary.

The pipelines only see ``fetch(account, start, end) -> MetricBundle``.
Provider-specific adapters live behind the metrics service; here each
source is read independently and a failing source becomes ``None``.
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Optional, Protocol

import httpx
import structlog

from src.core.config import settings
from src.core.models import Account

logger = structlog.get_logger()


# Sources that only make sense when the account has bound a property
BOUND_SOURCES = ("analytics", "business_listing", "search_console")
# Sources read from our own stores, always requested
ALWAYS_SOURCES = ("on_page_behavior", "practice_management")


@dataclass
class MetricBundle:
    """Independently sourced sub-bundles; any of them may be None."""
    analytics: Optional[Any] = None
    business_listing: Optional[Any] = None
    search_console: Optional[Any] = None
    on_page_behavior: Optional[Any] = None
    practice_management: Optional[Any] = None

    def to_payload(self) -> dict:
        return asdict(self)

    @property
    def is_empty(self) -> bool:
        return all(v is None for v in asdict(self).values())


class MetricFetcher(Protocol):
    async def fetch(self, account: Account, start: date, end: date) -> MetricBundle:
        ...


class MetricsServiceClient:
    """
    Reads every source of a bundle concurrently from the metrics service.

    With no METRICS_SERVICE_URL configured every sub-bundle is None,
    which the pipelines accept as (thin) input.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.METRICS_SERVICE_URL or "").rstrip("/")
        self.api_key = api_key or settings.METRICS_SERVICE_API_KEY
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        self._client = httpx.AsyncClient(
            timeout=timeout or settings.LOOKUP_TIMEOUT_SECONDS,
            transport=transport,
            headers=headers,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def fetch(self, account: Account, start: date, end: date) -> MetricBundle:
        if not self.enabled:
            logger.info("metrics_service_disabled", domain=account.domain)
            return MetricBundle()

        bound = account.property_ids or {}
        sources = [s for s in BOUND_SOURCES if bound.get(s)] + list(ALWAYS_SOURCES)

        values = await asyncio.gather(
            *(self._fetch_source(source, account, start, end) for source in sources)
        )
        return MetricBundle(**dict(zip(sources, values)))

    async def _fetch_source(
        self, source: str, account: Account, start: date, end: date
    ) -> Optional[Any]:
        params = {
            "account_id": str(account.id),
            "domain": account.domain,
            "start": start.isoformat(),
            "end": end.isoformat(),
        }
        try:
            response = await self._client.get(f"{self.base_url}/{source}", params=params)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "metric_source_failed",
                source=source,
                domain=account.domain,
                error=str(e),
            )
            return None

    async def close(self) -> None:
        await self._client.aclose()
