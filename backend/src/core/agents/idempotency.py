"""
Idempotency guard.

Consulted once per run key before any remote call. A success or pending
row for (account, stage, period) means the work is done or in flight;
error rows never block a rerun.
"""

from typing import Optional

from src.core.agents.periods import Period
from src.core.agents.store import ResultStore
from src.core.models import Account, StageName, StageResult


class IdempotencyGuard:
    def __init__(self, results: ResultStore):
        self.results = results

    async def existing(
        self,
        account: Optional[Account],
        stage: StageName,
        period: Period,
    ) -> Optional[StageResult]:
        return await self.results.find_active(account.id if account else None, stage, period)

    async def already_done(
        self,
        account: Optional[Account],
        stage: StageName,
        period: Period,
    ) -> bool:
        return await self.existing(account, stage, period) is not None
