# src/gf_admin/api/router.py
"""gf_admin REST API — operator actions on orders.

Handled business failures return HTTP 200 with success=false; only auth
and malformed bodies produce error statuses.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_admin.application.schemas import AdminActionRequest, AdminActionResponse
from src.gf_admin.application.service import AdminService
from src.gf_common.database import get_db_session
from src.gf_gateway.auth.dependencies import Principal, get_current_principal

router = APIRouter(prefix="/admin", tags=["admin"])

_service = AdminService()


@router.post("/orders/actions", response_model=AdminActionResponse)
async def order_action(
    body: AdminActionRequest,
    principal: Annotated[Principal, Depends(get_current_principal)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> AdminActionResponse:
    # Not require_admin: non-admin attempts are audited by the service
    return await _service.execute(principal, body, db)
