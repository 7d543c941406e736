"""LedgerService — the only writer of order status.

Every status change goes through `transition`, which checks the edge
against the state machine for the given cause, persists the new status
with the version guard and appends a status timeline event, all in the
caller's transaction. The ledger never commits: the coordinating service
that owns the unit of work does.
"""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_common.datetime_utils import utc_now
from src.gf_common.enums import OrderStatus, TimelineSource, TransitionCause
from src.gf_common.errors import OrderNotFoundError
from src.gf_ledger.domain.models import Order, TimelineEvent
from src.gf_ledger.domain.repository import OrderRepositoryProtocol
from src.gf_ledger.domain.state_machine import check_transition
from src.gf_ledger.infrastructure.persistence import OrderRepository

logger = logging.getLogger(__name__)


def status_event_id(status: OrderStatus, version: int) -> str:
    return f"status.{status.value}_v{version}"


class LedgerService:
    def __init__(self, repo: OrderRepositoryProtocol | None = None) -> None:
        self._repo: OrderRepositoryProtocol = repo or OrderRepository()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_order(
        self, order_id: str, db: AsyncSession, for_update: bool = False
    ) -> Order:
        order = await self._repo.get_by_id(order_id, db, for_update=for_update)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def find_by_payment_ref(self, payment_ref: str, db: AsyncSession) -> Order | None:
        return await self._repo.get_by_payment_ref(payment_ref, db)

    async def find_by_fulfillment_request_id(
        self, request_id: str, db: AsyncSession, for_update: bool = False
    ) -> Order | None:
        return await self._repo.get_by_fulfillment_request_id(
            request_id, db, for_update=for_update
        )

    async def get_order_with_timeline(self, order_id: str, db: AsyncSession) -> Order:
        order = await self.get_order(order_id, db)
        order.timeline = await self._repo.list_timeline(order_id, db)
        return order

    async def list_timeline(self, order_id: str, db: AsyncSession) -> list[TimelineEvent]:
        await self.get_order(order_id, db)
        return await self._repo.list_timeline(order_id, db)

    async def list_awaiting_funds(self, limit: int, db: AsyncSession) -> list[Order]:
        return await self._repo.list_awaiting_funds(limit, db)

    async def list_stuck_paid(self, limit: int, db: AsyncSession) -> list[Order]:
        return await self._repo.list_paid_undispatched(limit, db)

    async def sum_awaiting_funds(self, db: AsyncSession) -> tuple[int, int]:
        return await self._repo.sum_awaiting_funds(db)

    # ------------------------------------------------------------------
    # Writes (caller commits)
    # ------------------------------------------------------------------

    async def create_order(self, order: Order, db: AsyncSession) -> tuple[Order, bool]:
        """Insert `order`, or return the row already holding its payment_ref.

        Returns (order, created).
        """
        if await self._repo.insert(order, db):
            logger.info(
                "Order %s created for payment %s (%d cents)",
                order.id,
                order.payment_ref,
                order.total_amount,
            )
            return order, True
        existing = await self._repo.get_by_payment_ref(order.payment_ref, db)
        if existing is None:
            # Conflict row vanished between INSERT and SELECT; orders are never deleted.
            raise OrderNotFoundError(order.payment_ref)
        return existing, False

    async def transition(
        self,
        order: Order,
        target: OrderStatus,
        cause: TransitionCause,
        db: AsyncSession,
        *,
        message: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> Order:
        """Move `order` to `target`. Raises InvalidTransitionError for an illegal edge."""
        check_transition(order.id, order.status, target, cause)
        previous = order.status
        order.status = target.value
        await self._repo.save(order, db)

        source = TimelineSource.ADMIN if cause == TransitionCause.ADMIN else TimelineSource.MERCHANT
        event = TimelineEvent(
            id=status_event_id(target, order.version),
            type=f"status.{target.value}",
            timestamp=utc_now(),
            source=source.value,
            message=message,
            data={"from": previous, "cause": cause.value, **(data or {})},
        )
        await self._repo.append_timeline_event(order.id, event, db)
        order.timeline.append(event)
        logger.info(
            "Order %s: %s -> %s (%s)", order.id, previous, target.value, cause.value
        )
        return order

    async def save(self, order: Order, db: AsyncSession) -> Order:
        """Persist non-status field changes (funding hold, tracking, review flags)."""
        await self._repo.save(order, db)
        return order

    async def append_event(self, order: Order, event: TimelineEvent, db: AsyncSession) -> bool:
        """Append an external event; False if it was already recorded."""
        inserted = await self._repo.append_timeline_event(order.id, event, db)
        if inserted:
            order.timeline.append(event)
        return inserted
