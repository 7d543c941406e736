"""gf_funding REST API — funds-retry trigger, funding status, top-ups. Admin only."""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_common.database import get_db_session
from src.gf_common.response import ApiResponse, success_response
from src.gf_funding.application.funds_retry import FundsRetryJob
from src.gf_funding.application.schemas import (
    FundsRetryRequest,
    FundsRetrySummary,
    TransferRequest,
)
from src.gf_funding.application.service import FundingService
from src.gf_gateway.auth.dependencies import Principal, require_admin

router = APIRouter(prefix="/funding", tags=["funding"])

_service = FundingService()
_retry_job = FundsRetryJob(funding=_service)


@router.post("/retry", response_model=FundsRetrySummary)
async def retry_awaiting_funds(
    principal: Annotated[Principal, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    body: Annotated[FundsRetryRequest | None, Body()] = None,
) -> FundsRetrySummary:
    max_orders = body.max_orders if body else None
    return await _retry_job.run(db, max_orders)


@router.get("/status")
async def get_funding_status(
    principal: Annotated[Principal, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.get_status(db)
    return success_response(data.model_dump(), getattr(request.state, "request_id", None))


@router.post("/transfers")
async def record_transfer(
    body: TransferRequest,
    principal: Annotated[Principal, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.record_transfer(
        body.amount_cents, body.reference, body.description, principal.subject, db
    )
    if body.process_queue:
        data.retry = await _retry_job.run(db)
    return success_response(data.model_dump(), getattr(request.state, "request_id", None))
