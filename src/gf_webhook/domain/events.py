"""Provider event types and their mapping onto order statuses.

Every ProviderEventType member must have a mapping; the module refuses to
import otherwise. Types the provider sends that are not listed here parse
as UNKNOWN, which keeps the order in processing and is reported by the
reconciler.
"""

from datetime import datetime
from enum import Enum

from src.gf_common.enums import OrderStatus


class ProviderEventType(str, Enum):
    REQUEST_PLACED = "request.placed"
    REQUEST_FINISHED = "request.finished"
    SHIPMENT_SHIPPED = "shipment.shipped"
    SHIPMENT_DELIVERED = "shipment.delivered"
    REQUEST_FAILED = "request.failed"
    REQUEST_CANCELLED = "request.cancelled"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: str) -> "ProviderEventType":
        try:
            member = cls(raw)
        except ValueError:
            return cls.UNKNOWN
        return member


STATUS_BY_EVENT: dict[ProviderEventType, OrderStatus] = {
    ProviderEventType.REQUEST_PLACED: OrderStatus.PROCESSING,
    ProviderEventType.REQUEST_FINISHED: OrderStatus.PROCESSING,
    ProviderEventType.SHIPMENT_SHIPPED: OrderStatus.SHIPPED,
    ProviderEventType.SHIPMENT_DELIVERED: OrderStatus.DELIVERED,
    ProviderEventType.REQUEST_FAILED: OrderStatus.FAILED,
    ProviderEventType.REQUEST_CANCELLED: OrderStatus.CANCELLED,
    ProviderEventType.UNKNOWN: OrderStatus.PROCESSING,
}

_unmapped = set(ProviderEventType) - STATUS_BY_EVENT.keys()
if _unmapped:
    raise RuntimeError(f"ProviderEventType members without a status: {sorted(_unmapped)}")

# request.failed with this code is a provider-side fault worth resubmitting
INTERNAL_ERROR_CODE = "internal_error"


def map_event_to_status(event_type: ProviderEventType, code: str | None = None) -> OrderStatus:
    if event_type == ProviderEventType.REQUEST_FAILED and code == INTERNAL_ERROR_CODE:
        return OrderStatus.RETRY_PENDING
    return STATUS_BY_EVENT[event_type]


def provider_event_id(event_type: str, timestamp: datetime) -> str:
    return f"zinc_{event_type}_{timestamp.isoformat()}"


def tracking_event_id(merchant_order_id: str) -> str:
    return f"tracking_{merchant_order_id}"
