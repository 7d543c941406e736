"""Batch funds-retry job.

Walks awaiting_funds orders oldest-first against a running balance that
starts at the account's live available_balance. An order whose requirement
the running balance covers is dispatched, and its cost deducted on
success; otherwise it stays awaiting_funds. In strict mode (the default)
the first skipped order blocks every younger one for the rest of the run,
so a cheap new order can never jump ahead of an older, larger one.

Runs for the same account are serialized by a Redis lock. The dispatcher's
conditional reservation still guards the balance against everything else
that spends from it.
"""

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.gf_common.cents import cents_to_display
from src.gf_common.enums import TransitionCause
from src.gf_common.errors import AppError
from src.gf_common.redis_client import redis_lock
from src.gf_fulfillment.application.dispatcher import FulfillmentDispatcher
from src.gf_funding.application.schemas import FundsRetryItem, FundsRetrySummary
from src.gf_funding.application.service import FundingService
from src.gf_ledger.application.service import LedgerService

logger = logging.getLogger(__name__)

LockFactory = Callable[[str], AbstractAsyncContextManager[None]]

OUTCOME_PROCESSED = "processed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_ERROR = "error"


class FundsRetryJob:
    def __init__(
        self,
        ledger: LedgerService | None = None,
        funding: FundingService | None = None,
        dispatcher: FulfillmentDispatcher | None = None,
        lock_factory: LockFactory | None = None,
    ) -> None:
        self._ledger = ledger or LedgerService()
        self._funding = funding or FundingService(ledger=self._ledger)
        self._dispatcher = dispatcher or FulfillmentDispatcher(
            ledger=self._ledger, funding=self._funding
        )
        self._lock = lock_factory or redis_lock

    async def run(self, db: AsyncSession, max_orders: int | None = None) -> FundsRetrySummary:
        limit = max_orders or settings.FUNDS_RETRY_MAX_ORDERS
        account = await self._funding.get_account(db)

        async with self._lock(f"funds-retry:{account.id}"):
            # Re-read under the lock: the previous holder may have spent from it
            account = await self._funding.get_account(db)
            orders = await self._ledger.list_awaiting_funds(limit, db)
            await db.commit()

            running = account.available_balance
            summary = FundsRetrySummary(zma_balance=running, total_awaiting=len(orders))
            blocked = False

            for order in orders:
                required = self._funding.required_for(order, account)

                if blocked and settings.FUNDS_RETRY_STRICT_ORDERING:
                    summary.skipped += 1
                    summary.results.append(
                        FundsRetryItem(
                            order_id=order.id,
                            outcome=OUTCOME_SKIPPED,
                            required_funds=required,
                            reason="queued behind older order",
                            status=order.status,
                        )
                    )
                    continue

                if running < required:
                    blocked = True
                    summary.skipped += 1
                    summary.results.append(
                        FundsRetryItem(
                            order_id=order.id,
                            outcome=OUTCOME_SKIPPED,
                            required_funds=required,
                            reason=(
                                f"insufficient funds: {cents_to_display(required)} required, "
                                f"{cents_to_display(running)} available"
                            ),
                            status=order.status,
                        )
                    )
                    continue

                try:
                    result = await self._dispatcher.dispatch(
                        order.id, db, reset_cause=TransitionCause.FUNDS_RETRY
                    )
                except AppError as exc:
                    logger.warning(
                        "Funds retry: order %s not dispatched: %s", order.id, exc.message
                    )
                    summary.errors += 1
                    summary.results.append(
                        FundsRetryItem(
                            order_id=order.id,
                            outcome=OUTCOME_ERROR,
                            required_funds=required,
                            reason=exc.message,
                        )
                    )
                    continue

                if result.dispatched:
                    running -= order.estimated_cost
                    summary.processed += 1
                    outcome, reason = OUTCOME_PROCESSED, None
                elif result.awaiting_funds:
                    # The conditional reservation refused: someone else spent the money
                    blocked = True
                    summary.skipped += 1
                    outcome, reason = OUTCOME_SKIPPED, result.reason
                else:
                    summary.errors += 1
                    outcome, reason = OUTCOME_ERROR, result.reason
                summary.results.append(
                    FundsRetryItem(
                        order_id=order.id,
                        outcome=outcome,
                        required_funds=required,
                        reason=reason,
                        status=result.status,
                    )
                )

        logger.info(
            "Funds retry: %d awaiting, %d processed, %d skipped, %d errors (balance %s)",
            summary.total_awaiting,
            summary.processed,
            summary.skipped,
            summary.errors,
            cents_to_display(summary.zma_balance),
        )
        return summary
