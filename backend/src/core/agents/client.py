"""
Remote agent client.

One stateless POST per call: no retry logic here, that lives in the
retry controller. Every call produces exactly one structured log line.
"""

from typing import Any, Optional

import httpx
import structlog

from src.core.agents.errors import EndpointNotConfigured, TransportError
from src.core.config import settings

logger = structlog.get_logger()


class AgentClient:
    """
    Client for the external analysis agents (webhook-shaped services).

    Usage:
        client = AgentClient()
        output = await client.invoke(url, payload, stage="summary")
        await client.close()
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        log: Optional[Any] = None,
    ):
        self.timeout = timeout or settings.AGENT_TIMEOUT_SECONDS
        self.log = log or logger
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def invoke(
        self,
        endpoint: Optional[str],
        payload: dict,
        stage: str,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Send ``payload`` to ``endpoint`` and return the parsed body.

        Raises:
            EndpointNotConfigured: when no endpoint is bound for ``stage``
            TransportError: on network failure, timeout or non-2xx status
        """
        if not endpoint:
            self.log.error("agent_endpoint_missing", stage=stage)
            raise EndpointNotConfigured(stage)

        try:
            response = await self._client.post(
                endpoint,
                json=payload,
                timeout=timeout or self.timeout,
            )
        except httpx.HTTPError as e:
            self.log.warning(
                "agent_call_failed",
                stage=stage,
                endpoint=endpoint,
                error=str(e) or e.__class__.__name__,
            )
            raise TransportError(f"{stage} request failed: {e.__class__.__name__}: {e}") from e

        if not response.is_success:
            self.log.warning(
                "agent_call_failed",
                stage=stage,
                endpoint=endpoint,
                status_code=response.status_code,
            )
            raise TransportError(
                f"{stage} responded with HTTP {response.status_code}",
                status_code=response.status_code,
            )

        self.log.info(
            "agent_call_succeeded",
            stage=stage,
            endpoint=endpoint,
            status_code=response.status_code,
        )

        try:
            return response.json()
        except ValueError:
            # Non-JSON body; the validator decides whether it is usable
            return response.text

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "AgentClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
