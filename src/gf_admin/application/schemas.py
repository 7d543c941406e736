"""Admin action request/response.

The action endpoint keeps the operator tooling's camelCase contract:
{action, orderId?, paymentIntentId?} -> {success, action, result, error?}.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.gf_common.enums import AdminAction

_ORDER_ACTIONS = frozenset(
    {AdminAction.RETRY, AdminAction.CANCEL, AdminAction.FORCE_PROCESS, AdminAction.FAIL}
)


class AdminActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: AdminAction
    order_id: str | None = Field(None, alias="orderId", min_length=1, max_length=64)
    payment_ref: str | None = Field(
        None, alias="paymentIntentId", min_length=1, max_length=255
    )
    reason: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def _check_target(self) -> "AdminActionRequest":
        if self.action in _ORDER_ACTIONS and not self.order_id:
            raise ValueError(f"orderId is required for {self.action.value}")
        if self.action == AdminAction.RECOVER and not self.payment_ref:
            raise ValueError("paymentIntentId is required for recover")
        return self

    @property
    def target(self) -> str | None:
        return self.order_id or self.payment_ref


class AdminActionResponse(BaseModel):
    success: bool
    action: str
    result: dict[str, Any] | None = None
    error: str | None = None
