"""Domain models for gf_ledger — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.gf_common.enums import OrderStatus, PaymentStatus

TERMINAL_STATUSES: frozenset[str] = frozenset(
    {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value, OrderStatus.FAILED.value}
)

# Statuses from which a fulfillment request may be submitted
DISPATCHABLE_STATUSES: frozenset[str] = frozenset(
    {OrderStatus.PAYMENT_CONFIRMED.value, OrderStatus.AWAITING_FUNDS.value}
)


@dataclass
class TimelineEvent:
    id: str                      # idempotency key, unique per order
    type: str                    # provider event type or "status.<status>"
    timestamp: datetime
    source: str                  # TimelineSource value
    message: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class Order:
    id: str
    payment_ref: str             # unique payment-processor reference
    total_amount: int            # cents
    currency: str = "usd"
    status: str = OrderStatus.CREATED.value
    payment_status: str = PaymentStatus.UNPAID.value
    # Funding hold (admission denied)
    funding_status: str | None = None
    funding_hold_reason: str | None = None
    expected_funding_date: datetime | None = None
    reserved_amount: int = 0     # cents held on the funding account, pending dispatch outcome
    # Fulfillment
    fulfillment_request_id: str | None = None
    webhook_token: str | None = None
    dispatch_attempts: int = 0
    merchant_tracking: dict[str, Any] = field(default_factory=dict)
    # Contents
    line_items: list[dict[str, Any]] = field(default_factory=list)
    shipping_address: dict[str, Any] = field(default_factory=dict)
    group_project_id: str | None = None
    scheduled_for: datetime | None = None
    # Operator follow-up
    needs_manual_review: bool = False
    manual_review_reason: str | None = None
    notes: str | None = None
    version: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    timeline: list[TimelineEvent] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_dispatchable(self) -> bool:
        return self.status in DISPATCHABLE_STATUSES

    @property
    def is_group_gift(self) -> bool:
        return self.group_project_id is not None

    @property
    def estimated_cost(self) -> int:
        """What the fulfillment provider will draw from the funding account."""
        return self.total_amount

    def add_note(self, note: str) -> None:
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    def flag_for_review(self, reason: str) -> None:
        self.needs_manual_review = True
        self.manual_review_reason = reason
