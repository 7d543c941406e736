from pydantic import BaseModel, ConfigDict, Field

from src.gf_common.cents import cents_to_display


class FundsRetryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    max_orders: int | None = Field(default=None, alias="maxOrders", ge=1, le=500)


class FundsRetryItem(BaseModel):
    order_id: str
    outcome: str                      # processed | skipped | error
    required_funds: int | None = None
    reason: str | None = None
    status: str | None = None         # order status after the attempt


class FundsRetrySummary(BaseModel):
    zma_balance: int                  # cents, live balance when the run started
    total_awaiting: int
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    results: list[FundsRetryItem] = []


class FundingStatusResponse(BaseModel):
    account_name: str
    available_balance_cents: int
    available_balance_display: str
    reserved_balance_cents: int
    safety_margin_cents: int
    orders_awaiting: int
    pending_value_cents: int
    required_total_cents: int
    shortfall_cents: int
    recommended_transfer_cents: int
    recommended_transfer_display: str

    @classmethod
    def build(
        cls,
        account_name: str,
        available: int,
        reserved: int,
        safety_margin: int,
        orders_awaiting: int,
        pending_value: int,
        required_total: int,
        recommended: int,
    ) -> "FundingStatusResponse":
        return cls(
            account_name=account_name,
            available_balance_cents=available,
            available_balance_display=cents_to_display(available),
            reserved_balance_cents=reserved,
            safety_margin_cents=safety_margin,
            orders_awaiting=orders_awaiting,
            pending_value_cents=pending_value,
            required_total_cents=required_total,
            shortfall_cents=max(required_total - available, 0),
            recommended_transfer_cents=recommended,
            recommended_transfer_display=cents_to_display(recommended),
        )


class TransferRequest(BaseModel):
    amount_cents: int = Field(..., gt=0, le=100_000_000)
    reference: str = Field(..., min_length=1, max_length=128)
    description: str | None = Field(default=None, max_length=500)
    process_queue: bool = True


class TransferResponse(BaseModel):
    entry_id: int
    amount_cents: int
    available_balance_cents: int
    available_balance_display: str
    alerts_resolved: int
    retry: FundsRetrySummary | None = None
