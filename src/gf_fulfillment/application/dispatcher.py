"""FulfillmentDispatcher — admit, submit, record.

A dispatch runs in three steps so no transaction or row lock is held while
the provider is being called:

  1. Lock the order, check it is dispatchable, admit it against the funding
     account and reserve its cost (or park it in awaiting_funds). Commit.
  2. Submit to the provider with bounded retry. If the submission is
     aborted by anything other than a provider error, the outcome is still
     recorded as a failure before the exception propagates.
  3. Lock the order again and record the outcome: on success store the
     request id, settle the reservation and move to processing; on failure
     release the reservation and move to failed. Commit.

A non-zero `reserved_amount` marks a dispatch in flight; a second dispatch
of the same order is refused until the first one records its outcome.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.gf_common.enums import ContributionStatus, OrderStatus, TransitionCause
from src.gf_common.errors import ConflictError, ExternalServiceError, InsufficientFundsError
from src.gf_common.retry import call_with_retry
from src.gf_fulfillment.domain.models import (
    DispatchResult,
    FulfillmentRequest,
    fulfillment_products,
)
from src.gf_fulfillment.domain.provider import FulfillmentProviderProtocol
from src.gf_fulfillment.infrastructure.zinc_client import ZincFulfillmentClient
from src.gf_funding.application.service import FundingService
from src.gf_ledger.application.service import LedgerService
from src.gf_ledger.domain.models import Order
from src.gf_payment.domain.repository import ContributionRepositoryProtocol
from src.gf_payment.infrastructure.persistence import ContributionRepository

logger = logging.getLogger(__name__)


def webhook_url_for(order: Order) -> str:
    return f"{settings.WEBHOOK_BASE_URL}?token={order.webhook_token}"


class FulfillmentDispatcher:
    def __init__(
        self,
        ledger: LedgerService | None = None,
        funding: FundingService | None = None,
        provider: FulfillmentProviderProtocol | None = None,
        contributions: ContributionRepositoryProtocol | None = None,
    ) -> None:
        self._ledger = ledger or LedgerService()
        self._funding = funding or FundingService(ledger=self._ledger)
        self._provider: FulfillmentProviderProtocol = provider or ZincFulfillmentClient()
        self._contributions: ContributionRepositoryProtocol = (
            contributions or ContributionRepository()
        )

    async def dispatch(
        self,
        order_id: str,
        db: AsyncSession,
        *,
        bypass_funding: bool = False,
        reset_cause: TransitionCause = TransitionCause.FUNDS_RETRY,
    ) -> DispatchResult:
        """Dispatch one order. Returns the outcome; raises ConflictError if not dispatchable.

        `reset_cause` is the cause recorded when an awaiting_funds order is
        admitted and moves back to payment_confirmed.
        """
        # Step 1: admission + reservation
        try:
            order = await self._ledger.get_order(order_id, db, for_update=True)
            await self._check_dispatchable(order, db)
            # Malformed cart items are refused before any funds are reserved
            fulfillment_products(order.line_items)

            try:
                decision = await self._funding.reserve_for(order, db, bypass=bypass_funding)
            except InsufficientFundsError as refusal:
                await self._funding.hold(order, refusal, db)
                await db.commit()
                return DispatchResult(
                    order_id=order.id,
                    status=order.status,
                    required_funds=refusal.required,
                    reason=order.funding_hold_reason,
                )

            self._funding.clear_hold(order)
            order.dispatch_attempts += 1
            if order.status == OrderStatus.AWAITING_FUNDS.value:
                await self._ledger.transition(
                    order,
                    OrderStatus.PAYMENT_CONFIRMED,
                    reset_cause,
                    db,
                    message="Funding available",
                    data={"required": decision.required},
                )
            else:
                await self._ledger.save(order, db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        # Step 2: provider call, no transaction held
        request = self._build_request(order)
        try:
            submission = await call_with_retry(
                lambda: self._provider.submit(request),
                attempts=settings.FULFILLMENT_SUBMIT_ATTEMPTS,
                base_delay=settings.RETRY_BASE_DELAY_SECONDS,
                operation=f"submit order {order.id}",
            )
        except ExternalServiceError as exc:
            return await self._record_failure(order.id, exc.message, decision.required, db)
        except BaseException as exc:
            # Crash or cancellation mid-submit: the reservation must not outlive it
            logger.error("Order %s: submission aborted by %r", order.id, exc)
            await self._record_failure(
                order.id, f"submission aborted: {exc!r}", decision.required, db
            )
            raise

        # Step 3: record success
        try:
            order = await self._ledger.get_order(order_id, db, for_update=True)
            order.fulfillment_request_id = submission.request_id
            await self._funding.settle(order, db)
            if order.status == OrderStatus.PAYMENT_CONFIRMED.value:
                await self._ledger.transition(
                    order,
                    OrderStatus.PROCESSING,
                    TransitionCause.DISPATCH,
                    db,
                    message="Submitted to fulfillment provider",
                    data={"request_id": submission.request_id},
                )
            else:
                # Cancelled (or failed by an operator) while the submission was in flight
                order.flag_for_review(
                    f"provider accepted request {submission.request_id} "
                    f"after order moved to {order.status}"
                )
                await self._ledger.save(order, db)
                logger.error(
                    "Order %s: provider request %s accepted while order was %s",
                    order.id,
                    submission.request_id,
                    order.status,
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        return DispatchResult(
            order_id=order.id,
            status=order.status,
            dispatched=True,
            fulfillment_request_id=submission.request_id,
            required_funds=decision.required,
        )

    async def _check_dispatchable(self, order: Order, db: AsyncSession) -> None:
        if not order.is_dispatchable:
            raise ConflictError(f"Order {order.id} is {order.status}, not dispatchable")
        if order.fulfillment_request_id:
            raise ConflictError(
                f"Order {order.id} already has active request {order.fulfillment_request_id}"
            )
        if order.reserved_amount > 0:
            raise ConflictError(f"Order {order.id} has a dispatch in flight")
        if order.is_group_gift:
            contributions = await self._contributions.list_by_project(
                order.group_project_id or "", db
            )
            captured = sum(
                c.amount for c in contributions if c.status == ContributionStatus.CAPTURED.value
            )
            if captured != order.total_amount:
                raise ConflictError(
                    f"Order {order.id}: captured contributions {captured} "
                    f"!= order total {order.total_amount}"
                )

    def _build_request(self, order: Order) -> FulfillmentRequest:
        return FulfillmentRequest(
            order_id=order.id,
            idempotency_key=f"{order.id}-{order.dispatch_attempts}",
            line_items=order.line_items,
            shipping_address=order.shipping_address,
            max_price=order.estimated_cost,
            webhook_url=webhook_url_for(order),
            client_notes={"attempt": order.dispatch_attempts},
        )

    async def _record_failure(
        self, order_id: str, error: str, required: int, db: AsyncSession
    ) -> DispatchResult:
        try:
            order = await self._ledger.get_order(order_id, db, for_update=True)
            await self._funding.release(order, db)
            if order.status == OrderStatus.PAYMENT_CONFIRMED.value:
                await self._ledger.transition(
                    order,
                    OrderStatus.FAILED,
                    TransitionCause.DISPATCH,
                    db,
                    message=f"Fulfillment submission failed: {error}",
                    data={"error": error, "attempts": order.dispatch_attempts},
                )
            else:
                await self._ledger.save(order, db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return DispatchResult(
            order_id=order.id,
            status=order.status,
            required_funds=required,
            reason=error,
        )
