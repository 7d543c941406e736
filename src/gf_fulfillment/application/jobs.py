"""Work-queue handler for `dispatch` items.

Scheduled gifts and provider-side retries both arrive here. The order is
moved back to payment_confirmed (cause worker) with its retired provider
request id cleared, then handed to the dispatcher. Items for orders that
have moved on are dropped quietly.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_common.enums import OrderStatus, TransitionCause
from src.gf_fulfillment.application.dispatcher import FulfillmentDispatcher
from src.gf_ledger.application.service import LedgerService
from src.gf_queue.domain.models import WorkItem

logger = logging.getLogger(__name__)

_RESUMABLE = frozenset({OrderStatus.SCHEDULED.value, OrderStatus.RETRY_PENDING.value})


class DispatchJob:
    def __init__(
        self,
        dispatcher: FulfillmentDispatcher | None = None,
        ledger: LedgerService | None = None,
    ) -> None:
        self._ledger = ledger or LedgerService()
        self._dispatcher = dispatcher or FulfillmentDispatcher(ledger=self._ledger)

    async def __call__(self, item: WorkItem, db: AsyncSession) -> None:
        order_id = item.payload["order_id"]
        try:
            order = await self._ledger.get_order(order_id, db, for_update=True)
            if order.status in _RESUMABLE:
                # The failed provider request is retired; a fresh one is submitted below
                order.fulfillment_request_id = None
                await self._ledger.transition(
                    order,
                    OrderStatus.PAYMENT_CONFIRMED,
                    TransitionCause.WORKER,
                    db,
                    message=item.payload.get("reason"),
                )
            elif not order.is_dispatchable or order.fulfillment_request_id:
                logger.info(
                    "Dispatch item %s skipped: order %s is %s",
                    item.dedupe_key,
                    order_id,
                    order.status,
                )
                await db.rollback()
                return
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        result = await self._dispatcher.dispatch(order_id, db)
        logger.info(
            "Dispatch item %s: order %s now %s", item.dedupe_key, order_id, result.status
        )
