# src/gf_payment/api/router.py
"""gf_payment REST API — capture entry points, called by the checkout backend."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_common.database import get_db_session
from src.gf_common.response import ApiResponse, success_response
from src.gf_gateway.auth.dependencies import Principal, get_current_principal
from src.gf_payment.application.schemas import (
    CaptureRequest,
    ContributionRequest,
    GroupCaptureRequest,
)
from src.gf_payment.application.service import PaymentCaptureCoordinator

router = APIRouter(prefix="/payments", tags=["payments"])

_service = PaymentCaptureCoordinator()


@router.post("/capture")
async def capture_payment(
    body: CaptureRequest,
    principal: Annotated[Principal, Depends(get_current_principal)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.capture_single(body, db)
    request_id = getattr(request.state, "request_id", None)
    return success_response(data.model_dump(mode="json"), request_id)


@router.post("/group-gifts/{project_id}/contributions", status_code=201)
async def register_contribution(
    project_id: str,
    body: ContributionRequest,
    principal: Annotated[Principal, Depends(get_current_principal)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.register_contribution(project_id, body, db)
    return success_response(data.model_dump(), getattr(request.state, "request_id", None))


@router.post("/group-gifts/{project_id}/capture")
async def capture_group_gift(
    project_id: str,
    body: GroupCaptureRequest,
    principal: Annotated[Principal, Depends(get_current_principal)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.capture_group(project_id, body, db)
    request_id = getattr(request.state, "request_id", None)
    return success_response(data.model_dump(mode="json"), request_id)
