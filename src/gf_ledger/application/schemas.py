# src/gf_ledger/application/schemas.py
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from src.gf_common.cents import cents_to_display
from src.gf_ledger.domain.models import Order, TimelineEvent


class TimelineEventResponse(BaseModel):
    id: str
    type: str
    timestamp: datetime
    source: str
    message: str | None = None
    data: dict[str, Any] = {}

    @classmethod
    def from_domain(cls, event: TimelineEvent) -> "TimelineEventResponse":
        return cls(
            id=event.id,
            type=event.type,
            timestamp=event.timestamp,
            source=event.source,
            message=event.message,
            data=event.data,
        )


class OrderResponse(BaseModel):
    id: str
    payment_ref: str
    status: str
    payment_status: str
    total_amount_cents: int
    total_amount_display: str
    currency: str
    funding_status: str | None = None
    funding_hold_reason: str | None = None
    expected_funding_date: datetime | None = None
    fulfillment_request_id: str | None = None
    dispatch_attempts: int
    merchant_tracking: dict[str, Any]
    line_items: list[dict[str, Any]]
    shipping_address: dict[str, Any]
    group_project_id: str | None = None
    scheduled_for: datetime | None = None
    needs_manual_review: bool
    manual_review_reason: str | None = None
    notes: str | None = None
    version: int
    created_at: datetime | None = None
    updated_at: datetime | None = None
    timeline: list[TimelineEventResponse] = []

    @classmethod
    def from_domain(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            payment_ref=order.payment_ref,
            status=order.status,
            payment_status=order.payment_status,
            total_amount_cents=order.total_amount,
            total_amount_display=cents_to_display(order.total_amount),
            currency=order.currency,
            funding_status=order.funding_status,
            funding_hold_reason=order.funding_hold_reason,
            expected_funding_date=order.expected_funding_date,
            fulfillment_request_id=order.fulfillment_request_id,
            dispatch_attempts=order.dispatch_attempts,
            merchant_tracking=order.merchant_tracking,
            line_items=order.line_items,
            shipping_address=order.shipping_address,
            group_project_id=order.group_project_id,
            scheduled_for=order.scheduled_for,
            needs_manual_review=order.needs_manual_review,
            manual_review_reason=order.manual_review_reason,
            notes=order.notes,
            version=order.version,
            created_at=order.created_at,
            updated_at=order.updated_at,
            timeline=[TimelineEventResponse.from_domain(e) for e in order.timeline],
        )
