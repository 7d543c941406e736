from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.gf_fulfillment.domain.models import DispatchResult
from src.gf_ledger.application.schemas import OrderResponse
from src.gf_payment.domain.models import Contribution


class LineItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    product_id: str = Field(..., min_length=1, max_length=64)
    quantity: int = Field(default=1, ge=1, le=100)
    title: str | None = None
    price_cents: int | None = Field(default=None, ge=0)


class ShippingAddress(BaseModel):
    first_name: str
    last_name: str
    address_line1: str
    address_line2: str = ""
    zip_code: str
    city: str
    state: str
    country: str = "US"
    phone_number: str | None = None


class CaptureRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_ref: str = Field(..., alias="paymentIntentId", min_length=1, max_length=128)
    amount_cents: int = Field(..., gt=0)
    currency: str = Field(default="usd", min_length=3, max_length=3)
    line_items: list[LineItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    scheduled_for: datetime | None = None
    notes: str | None = Field(default=None, max_length=2000)

    @field_validator("currency")
    @classmethod
    def lower_currency(cls, v: str) -> str:
        return v.lower()


class GroupCaptureRequest(BaseModel):
    total_amount_cents: int = Field(..., gt=0)
    currency: str = Field(default="usd", min_length=3, max_length=3)
    line_items: list[LineItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    notes: str | None = Field(default=None, max_length=2000)


class ContributionRequest(BaseModel):
    contributor_id: str = Field(..., min_length=1, max_length=64)
    payment_ref: str = Field(..., min_length=1, max_length=128)
    amount_cents: int = Field(..., gt=0)


class ContributionResponse(BaseModel):
    id: str
    project_id: str
    contributor_id: str
    payment_ref: str
    amount_cents: int
    status: str
    last_error: str | None = None

    @classmethod
    def from_domain(cls, c: Contribution) -> "ContributionResponse":
        return cls(
            id=c.id,
            project_id=c.project_id,
            contributor_id=c.contributor_id,
            payment_ref=c.payment_ref,
            amount_cents=c.amount,
            status=c.status,
            last_error=c.last_error,
        )


class DispatchSummary(BaseModel):
    dispatched: bool
    status: str
    fulfillment_request_id: str | None = None
    required_funds: int | None = None
    reason: str | None = None

    @classmethod
    def from_result(cls, result: DispatchResult) -> "DispatchSummary":
        return cls(
            dispatched=result.dispatched,
            status=result.status,
            fulfillment_request_id=result.fulfillment_request_id,
            required_funds=result.required_funds,
            reason=result.reason,
        )


class CaptureResponse(BaseModel):
    created: bool
    order: OrderResponse
    dispatch: DispatchSummary | None = None
    contributions: list[ContributionResponse] = []
