"""Provider webhook payload.

The provider's field set grows over time; unknown fields are kept
(extra="allow") but only the ones below are interpreted.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from src.gf_ledger.application.schemas import OrderResponse


class StatusUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = Field(..., min_length=1, max_length=64)
    timestamp: datetime = Field(..., validation_alias=AliasChoices("timestamp", "_created_at"))
    message: str | None = None
    data: dict[str, Any] = {}

    @field_validator("timestamp")
    @classmethod
    def to_utc(cls, v: datetime) -> datetime:
        # Naive timestamps are taken as UTC so one payload always sorts
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class MerchantOrder(BaseModel):
    model_config = ConfigDict(extra="allow")

    merchant_order_id: str = Field(..., min_length=1, max_length=128)
    merchant: str | None = None
    tracking_url: str | None = None
    tracking: list[str] = []
    delivery_date: str | None = None


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    request_id: str = Field(..., min_length=1, max_length=128)
    status_updates: list[StatusUpdate] = []
    merchant_order_ids: list[MerchantOrder] = []
    delivery_dates: list[dict[str, Any]] = []
    code: str | None = None
    message: str | None = None


class WebhookResponse(BaseModel):
    success: bool
    order: OrderResponse | None = None
    error: str | None = None
    new_events: int = 0
    status_changed: bool = False
