"""WorkQueueService — typed enqueue helpers over the work_queue table.

Items are written in the caller's transaction, so a status change and the
follow-up work it implies commit (or roll back) together.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.gf_common.datetime_utils import utc_now
from src.gf_common.enums import WorkItemKind
from src.gf_queue.domain.repository import WorkQueueRepositoryProtocol
from src.gf_queue.infrastructure.persistence import WorkQueueRepository

logger = logging.getLogger(__name__)


def notify_key(order_id: str, status: str) -> str:
    return f"notify:{order_id}:{status}"


class WorkQueueService:
    def __init__(self, repo: WorkQueueRepositoryProtocol | None = None) -> None:
        self._repo: WorkQueueRepositoryProtocol = repo or WorkQueueRepository()

    async def enqueue(
        self,
        kind: WorkItemKind,
        dedupe_key: str,
        payload: dict[str, Any],
        db: AsyncSession,
        run_at: datetime | None = None,
    ) -> bool:
        created = await self._repo.enqueue(
            kind.value,
            dedupe_key,
            payload,
            run_at or utc_now(),
            settings.WORKER_MAX_ATTEMPTS,
            db,
        )
        if created:
            logger.info("Enqueued %s work item %s", kind.value, dedupe_key)
        else:
            logger.debug("Work item %s already queued", dedupe_key)
        return created

    async def enqueue_notify(
        self, order_id: str, status: str, status_data: dict[str, Any], db: AsyncSession
    ) -> bool:
        """At most one notification per (order, status)."""
        return await self.enqueue(
            WorkItemKind.NOTIFY,
            notify_key(order_id, status),
            {"order_id": order_id, "status": status, "status_data": status_data},
            db,
        )

    async def enqueue_dispatch(
        self,
        order_id: str,
        dedupe_suffix: str,
        reason: str,
        db: AsyncSession,
        run_at: datetime | None = None,
    ) -> bool:
        return await self.enqueue(
            WorkItemKind.DISPATCH,
            f"dispatch:{order_id}:{dedupe_suffix}",
            {"order_id": order_id, "reason": reason},
            db,
            run_at=run_at,
        )
