"""Domain models for gf_fulfillment — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from typing import Any

from src.gf_common.enums import OrderStatus
from src.gf_common.errors import ValidationError


@dataclass(frozen=True)
class FulfillmentRequest:
    order_id: str
    idempotency_key: str         # stable per dispatch attempt; provider dedupes resubmits
    line_items: list[dict[str, Any]]
    shipping_address: dict[str, Any]
    max_price: int               # cents; provider refuses to spend more
    webhook_url: str
    client_notes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FulfillmentSubmission:
    request_id: str


@dataclass
class DispatchResult:
    order_id: str
    status: str                  # order status after the attempt
    dispatched: bool = False
    fulfillment_request_id: str | None = None
    required_funds: int | None = None
    reason: str | None = None

    @property
    def awaiting_funds(self) -> bool:
        return self.status == OrderStatus.AWAITING_FUNDS.value


def fulfillment_products(line_items: list[Any]) -> list[dict[str, Any]]:
    """Provider product lines for an order's cart items.

    Cart items carry `product_id`, or `id` when they came from checkout
    metadata. Raises ValidationError for anything the provider cannot take.
    """
    if not line_items:
        raise ValidationError("order has no line items")
    products: list[dict[str, Any]] = []
    for index, item in enumerate(line_items):
        if not isinstance(item, dict):
            raise ValidationError(f"line item {index} is not an object")
        product_id = item.get("product_id") or item.get("id")
        if not product_id:
            raise ValidationError(f"line item {index} has no product_id")
        try:
            quantity = int(item.get("quantity", 1))
        except (TypeError, ValueError):
            raise ValidationError(f"line item {index} quantity is not an integer") from None
        if quantity < 1:
            raise ValidationError(f"line item {index} quantity must be at least 1")
        products.append({"product_id": str(product_id), "quantity": quantity})
    return products
