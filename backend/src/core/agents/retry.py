"""
Retry controller.

Bounded attempts with a fixed pause between them. Every call site
carries its own RetryPolicy, so nested budgets (whole-client run,
cro_optimizer stage, each audit call) are independent counters.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional, TypeVar

import structlog

from src.core.agents.errors import EndpointNotConfigured, InvalidOutput, RetriesExhausted
from src.core.agents.validation import is_valid_output

logger = structlog.get_logger()

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try, and how long to wait in between."""
    max_attempts: int = 1
    delay_seconds: float = 0.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")


SINGLE_ATTEMPT = RetryPolicy(max_attempts=1, delay_seconds=0.0)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str,
    validate: Optional[Callable[[Any], bool]] = is_valid_output,
    sleep: Sleep = asyncio.sleep,
    log: Optional[Any] = None,
) -> T:
    """
    Run ``fn`` until it returns a result that passes ``validate``.

    Raises:
        EndpointNotConfigured: immediately, without retrying
        RetriesExhausted: after ``policy.max_attempts`` failed attempts
    """
    log = log or logger
    last_error: Optional[BaseException] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = await fn()
            if validate is not None and not validate(result):
                raise InvalidOutput(f"{label} returned empty or invalid output")
            if attempt > 1:
                log.info("retry_succeeded", label=label, attempt=attempt)
            return result
        except EndpointNotConfigured:
            raise
        except Exception as e:
            last_error = e
            log.warning(
                "retry_attempt_failed",
                label=label,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                error=str(e),
            )

        if attempt < policy.max_attempts and policy.delay_seconds:
            await sleep(policy.delay_seconds)

    raise RetriesExhausted(label, policy.max_attempts, last_error)
