"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config.settings import settings
from src.gf_admin.api.router import router as admin_router
from src.gf_common.database import engine
from src.gf_common.enums import WorkItemKind
from src.gf_common.errors import AppError
from src.gf_common.redis_client import close_redis, get_redis
from src.gf_common.response import error_response
from src.gf_fulfillment.application.jobs import DispatchJob
from src.gf_funding.api.router import router as funding_router
from src.gf_gateway.middleware.request_log import RequestLogMiddleware
from src.gf_ledger.api.router import router as order_router
from src.gf_notification.jobs import NotifyJob
from src.gf_payment.api.router import router as payment_router
from src.gf_queue.application.worker import Worker
from src.gf_webhook.api.router import router as webhook_router


def build_worker() -> Worker:
    return Worker(
        {
            WorkItemKind.NOTIFY.value: NotifyJob(),
            WorkItemKind.DISPATCH.value: DispatchJob(),
        }
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB + Redis connections, start the worker. Shutdown: dispose."""
    # Startup
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    await get_redis()

    worker: Worker | None = None
    worker_task: asyncio.Task[None] | None = None
    if settings.WORKER_ENABLED:
        worker = build_worker()
        worker_task = asyncio.create_task(worker.run_forever())
    yield
    # Shutdown
    if worker is not None and worker_task is not None:
        worker.stop()
        await worker_task
    await engine.dispose()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(RequestLogMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    resp = error_response(exc.code, exc.message)
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(),
    )


app.include_router(payment_router, prefix="/api/v1")
app.include_router(order_router, prefix="/api/v1")
app.include_router(funding_router, prefix="/api/v1")
app.include_router(webhook_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}
