"""Repository Protocol — dependency inversion for testability."""

from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_queue.domain.models import WorkItem


class WorkQueueRepositoryProtocol(Protocol):
    async def enqueue(
        self,
        kind: str,
        dedupe_key: str,
        payload: dict[str, Any],
        run_at: datetime,
        max_attempts: int,
        db: AsyncSession,
    ) -> bool:
        """Insert a pending item. False if dedupe_key already exists."""
        ...

    async def claim_due(self, limit: int, lease_seconds: int, db: AsyncSession) -> list[WorkItem]:
        """Lease up to `limit` due items (SKIP LOCKED) and bump their attempts.

        A leased item becomes due again after `lease_seconds` if its worker dies.
        """
        ...

    async def mark_done(self, item_id: int, db: AsyncSession) -> None: ...

    async def reschedule(
        self, item_id: int, error: str, run_at: datetime, db: AsyncSession
    ) -> None: ...

    async def mark_dead(self, item_id: int, error: str, db: AsyncSession) -> None: ...
