"""gf_webhook REST API — provider callbacks.

Authenticated by the per-order token carried in the callback URL. The
response keeps the provider-facing {success, order, error} shape; any
non-2xx status makes the provider redeliver.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_common.database import get_db_session
from src.gf_common.errors import AppError
from src.gf_webhook.application.reconciler import WebhookReconciler
from src.gf_webhook.application.schemas import WebhookPayload, WebhookResponse

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

_reconciler = WebhookReconciler()


@router.post("/fulfillment", response_model=WebhookResponse)
async def fulfillment_webhook(
    payload: WebhookPayload,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    token: Annotated[str | None, Query()] = None,
) -> WebhookResponse | JSONResponse:
    try:
        return await _reconciler.apply(payload, token, db)
    except AppError as exc:
        body = WebhookResponse(success=False, error=exc.message)
        return JSONResponse(status_code=exc.http_status, content=body.model_dump(mode="json"))
