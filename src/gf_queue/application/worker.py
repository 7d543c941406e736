"""Work-queue worker.

Each poll leases a batch of due items in one short transaction, then runs
every item in its own session. Outcomes:
  handler returns              -> done
  ConflictError/NotFoundError/
  ValidationError              -> dead (retrying cannot change the answer)
  non-retryable external error -> dead
  anything else                -> rescheduled with exponential backoff,
                                  dead once max_attempts is reached
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import settings
from src.gf_common.database import async_session_factory
from src.gf_common.datetime_utils import seconds_from_now
from src.gf_common.errors import (
    AppError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from src.gf_queue.domain.models import WorkItem
from src.gf_queue.domain.repository import WorkQueueRepositoryProtocol
from src.gf_queue.infrastructure.persistence import WorkQueueRepository

logger = logging.getLogger(__name__)

WorkHandler = Callable[[WorkItem, AsyncSession], Awaitable[None]]

_MAX_BACKOFF_SECONDS = 3600.0


def backoff_seconds(attempts: int) -> float:
    return min(settings.WORKER_POLL_SECONDS * (2 ** attempts), _MAX_BACKOFF_SECONDS)


class Worker:
    def __init__(
        self,
        handlers: Mapping[str, WorkHandler],
        repo: WorkQueueRepositoryProtocol | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._handlers = dict(handlers)
        self._repo: WorkQueueRepositoryProtocol = repo or WorkQueueRepository()
        self._session_factory = session_factory or async_session_factory
        self._stopping = asyncio.Event()

    async def run_once(self) -> int:
        """Process one batch. Returns the number of items claimed."""
        async with self._session_factory() as db:
            items = await self._repo.claim_due(
                settings.WORKER_BATCH_SIZE, settings.WORKER_LEASE_SECONDS, db
            )
            await db.commit()

        for item in items:
            await self._run_item(item)
        return len(items)

    async def run_forever(self) -> None:
        logger.info("Work-queue worker started")
        while not self._stopping.is_set():
            try:
                claimed = await self.run_once()
            except Exception:
                logger.exception("Work-queue poll failed")
                claimed = 0
            if claimed:
                continue
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=settings.WORKER_POLL_SECONDS)
            except TimeoutError:
                pass
        logger.info("Work-queue worker stopped")

    def stop(self) -> None:
        self._stopping.set()

    async def _run_item(self, item: WorkItem) -> None:
        handler = self._handlers.get(item.kind)
        if handler is None:
            await self._finish(item, dead=True, error=f"no handler for kind {item.kind}")
            return

        try:
            async with self._session_factory() as db:
                await handler(item, db)
        except (ConflictError, NotFoundError, ValidationError) as exc:
            logger.warning("Work item %s dropped: %s", item.dedupe_key, exc.message)
            await self._finish(item, dead=True, error=exc.message)
            return
        except Exception as exc:
            error = exc.message if isinstance(exc, AppError) else repr(exc)
            permanent = isinstance(exc, ExternalServiceError) and not exc.retryable
            if item.exhausted or permanent:
                logger.error(
                    "Work item %s dead after %d attempts: %s", item.dedupe_key, item.attempts, error
                )
                await self._finish(item, dead=True, error=error)
            else:
                delay = backoff_seconds(item.attempts)
                logger.warning(
                    "Work item %s attempt %d failed (%s), retrying in %.0fs",
                    item.dedupe_key,
                    item.attempts,
                    error,
                    delay,
                )
                await self._finish(item, dead=False, error=error, delay=delay)
            return

        async with self._session_factory() as db:
            await self._repo.mark_done(item.id, db)
            await db.commit()

    async def _finish(
        self, item: WorkItem, *, dead: bool, error: str, delay: float = 0.0
    ) -> None:
        async with self._session_factory() as db:
            if dead:
                await self._repo.mark_dead(item.id, error, db)
            else:
                await self._repo.reschedule(item.id, error, seconds_from_now(delay), db)
            await db.commit()
