# src/gf_ledger/api/router.py
"""gf_ledger REST API — read-only order views for operators."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_common.database import get_db_session
from src.gf_common.response import ApiResponse, success_response
from src.gf_gateway.auth.dependencies import Principal, require_admin
from src.gf_ledger.application.schemas import OrderResponse, TimelineEventResponse
from src.gf_ledger.application.service import LedgerService

router = APIRouter(prefix="/orders", tags=["orders"])

_service = LedgerService()


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    principal: Annotated[Principal, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    order = await _service.get_order_with_timeline(order_id, db)
    data = OrderResponse.from_domain(order).model_dump(mode="json")
    return success_response(data, getattr(request.state, "request_id", None))


@router.get("/{order_id}/timeline")
async def get_timeline(
    order_id: str,
    principal: Annotated[Principal, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    events = await _service.list_timeline(order_id, db)
    data = [TimelineEventResponse.from_domain(e).model_dump(mode="json") for e in events]
    return success_response(data, getattr(request.state, "request_id", None))
