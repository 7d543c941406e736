"""HTTP client for the notification service.

Sends `order_status_update` events; the notification service owns the
email templates. With NOTIFICATION_URL unset the event is only logged.
"""

import logging
from typing import Any

import httpx

from config.settings import settings
from src.gf_common.errors import NotificationError

logger = logging.getLogger(__name__)


class NotificationClient:
    def __init__(
        self,
        url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url if url is not None else settings.NOTIFICATION_URL
        self._transport = transport

    async def send_status_update(
        self, order_id: str, new_status: str, status_data: dict[str, Any]
    ) -> None:
        body = {
            "eventType": "order_status_update",
            "orderId": order_id,
            "newStatus": new_status,
            "statusData": status_data,
        }
        if not self._url:
            logger.info("Notification (not sent, no URL): order %s -> %s", order_id, new_status)
            return

        try:
            async with httpx.AsyncClient(
                timeout=settings.HTTP_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                response = await client.post(self._url, json=body)
        except httpx.TransportError as exc:
            raise NotificationError(f"transport error: {exc!r}", retryable=True) from exc

        if response.status_code >= 500 or response.status_code == 429:
            raise NotificationError(f"HTTP {response.status_code}", retryable=True)
        if response.status_code >= 400:
            raise NotificationError(
                f"HTTP {response.status_code}: {response.text[:200]}", retryable=False
            )
        logger.info("Notification sent: order %s -> %s", order_id, new_status)
