"""Zinc-style REST client for the fulfillment provider.

POST {FULFILLMENT_API_URL}/orders with HTTP basic auth (API key as the
username, empty password). The provider reports progress asynchronously
through the webhook URLs in the request body.
"""

import logging
from typing import Any

import httpx

from config.settings import settings
from src.gf_common.errors import FulfillmentProviderError
from src.gf_fulfillment.domain.models import (
    FulfillmentRequest,
    FulfillmentSubmission,
    fulfillment_products,
)

logger = logging.getLogger(__name__)

_WEBHOOK_EVENTS = (
    "request_succeeded",
    "request_failed",
    "tracking_obtained",
    "tracking_updated",
    "status_updated",
)


def build_order_body(request: FulfillmentRequest, retailer: str) -> dict[str, Any]:
    return {
        "idempotency_key": request.idempotency_key,
        "retailer": retailer,
        "products": fulfillment_products(request.line_items),
        "shipping_address": request.shipping_address,
        "max_price": request.max_price,
        "is_gift": True,
        "webhooks": {event: request.webhook_url for event in _WEBHOOK_EVENTS},
        "client_notes": {"order_id": request.order_id, **request.client_notes},
    }


class ZincFulfillmentClient:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.FULFILLMENT_API_URL).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.FULFILLMENT_API_KEY
        self._transport = transport

    async def submit(self, request: FulfillmentRequest) -> FulfillmentSubmission:
        body = build_order_body(request, settings.FULFILLMENT_RETAILER)
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                auth=(self._api_key, ""),
                timeout=settings.HTTP_TIMEOUT_SECONDS,
                transport=self._transport,
            ) as client:
                response = await client.post("/orders", json=body)
        except httpx.TransportError as exc:
            raise FulfillmentProviderError(f"transport error: {exc!r}", retryable=True) from exc

        if response.status_code >= 500:
            raise FulfillmentProviderError(
                f"HTTP {response.status_code}: {response.text[:200]}", retryable=True
            )
        if response.status_code == 429:
            raise FulfillmentProviderError("rate limited", retryable=True)
        if response.status_code >= 400:
            raise FulfillmentProviderError(
                f"HTTP {response.status_code}: {response.text[:200]}", retryable=False
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise FulfillmentProviderError("response is not JSON", retryable=False) from exc
        if not isinstance(payload, dict):
            raise FulfillmentProviderError("response is not a JSON object", retryable=False)

        request_id = payload.get("request_id")
        if not request_id:
            # Zinc reports some rejections as 200 with {code, message}
            code = payload.get("code", "unknown")
            raise FulfillmentProviderError(
                f"{code}: {payload.get('message', 'no request_id in response')}",
                retryable=code == "internal_error",
            )
        logger.info("Order %s submitted to provider as %s", request.order_id, request_id)
        return FulfillmentSubmission(request_id=request_id)
