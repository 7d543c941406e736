"""Work-queue handler for `notify` items."""

from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_notification.client import NotificationClient
from src.gf_queue.domain.models import WorkItem


class NotifyJob:
    def __init__(self, client: NotificationClient | None = None) -> None:
        self._client = client or NotificationClient()

    async def __call__(self, item: WorkItem, db: AsyncSession) -> None:
        await self._client.send_status_update(
            item.payload["order_id"],
            item.payload["status"],
            item.payload.get("status_data", {}),
        )
