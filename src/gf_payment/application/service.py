# src/gf_payment/application/service.py
"""PaymentCaptureCoordinator — turns authorized payments into confirmed orders.

Single buyer:
  The order row is written first at `created`; the unique payment_ref makes
  a repeated call return that row instead of capturing twice. Capture runs
  with bounded retry. Success confirms the order (or schedules it for a
  future delivery date) and hands it to the dispatcher; exhaustion fails it.

Group gift:
  Every held contribution of the project is captured, even after one fails,
  and each outcome is committed as soon as it is known. If any capture
  failed, the captured sum does not equal the order total, or the run is
  aborted by an unexpected error, the coordinator compensates (refund what
  was captured, void what is still held) before failing the order and
  surfacing the error. A compensation that itself fails flags the order for
  manual review and raises a compensation_failed ops alert. A repeated call
  for a group order still at `created` resumes it: contributions already
  captured are kept and the rest are captured.
"""

import logging
from datetime import datetime, timezone
from functools import partial

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.gf_admin.infrastructure.alerts import write_alert
from src.gf_common.datetime_utils import utc_now
from src.gf_common.enums import (
    AlertSeverity,
    AlertType,
    ContributionStatus,
    OrderStatus,
    PaymentStatus,
    TransitionCause,
)
from src.gf_common.errors import (
    ConflictError,
    ExternalServiceError,
    PaymentProcessorError,
    ValidationError,
)
from src.gf_common.id_generator import generate_id, new_order_id, new_webhook_token
from src.gf_common.retry import call_with_retry
from src.gf_fulfillment.application.dispatcher import FulfillmentDispatcher
from src.gf_ledger.application.schemas import OrderResponse
from src.gf_ledger.application.service import LedgerService
from src.gf_ledger.domain.models import Order
from src.gf_payment.application.schemas import (
    CaptureRequest,
    CaptureResponse,
    ContributionRequest,
    ContributionResponse,
    DispatchSummary,
    GroupCaptureRequest,
)
from src.gf_payment.domain.models import Contribution, GroupCaptureOutcome
from src.gf_payment.domain.processor import PaymentProcessorProtocol
from src.gf_payment.domain.repository import ContributionRepositoryProtocol
from src.gf_payment.infrastructure.persistence import ContributionRepository
from src.gf_payment.infrastructure.stripe_processor import StripePaymentProcessor
from src.gf_queue.application.service import WorkQueueService

logger = logging.getLogger(__name__)

CONTRIBUTION_PREFIX = "ctb"


def group_payment_ref(project_id: str) -> str:
    return f"group_{project_id}"


class PaymentCaptureCoordinator:
    def __init__(
        self,
        ledger: LedgerService | None = None,
        processor: PaymentProcessorProtocol | None = None,
        contributions: ContributionRepositoryProtocol | None = None,
        dispatcher: FulfillmentDispatcher | None = None,
        queue: WorkQueueService | None = None,
    ) -> None:
        self._ledger = ledger or LedgerService()
        self._processor: PaymentProcessorProtocol = processor or StripePaymentProcessor()
        self._contributions: ContributionRepositoryProtocol = (
            contributions or ContributionRepository()
        )
        self._dispatcher = dispatcher or FulfillmentDispatcher(
            ledger=self._ledger, contributions=self._contributions
        )
        self._queue = queue or WorkQueueService()

    # ------------------------------------------------------------------
    # Single buyer
    # ------------------------------------------------------------------

    async def capture_single(self, req: CaptureRequest, db: AsyncSession) -> CaptureResponse:
        order = Order(
            id=new_order_id(),
            payment_ref=req.payment_ref,
            total_amount=req.amount_cents,
            currency=req.currency,
            status=OrderStatus.CREATED.value,
            payment_status=PaymentStatus.AUTHORIZED.value,
            webhook_token=new_webhook_token(),
            line_items=[item.model_dump(exclude_none=True) for item in req.line_items],
            shipping_address=req.shipping_address.model_dump(exclude_none=True),
            scheduled_for=req.scheduled_for,
            notes=req.notes,
        )
        order, created = await self._create(order, db)
        if not created:
            logger.info("Capture for %s already recorded as order %s", req.payment_ref, order.id)
            return CaptureResponse(created=False, order=OrderResponse.from_domain(order))

        try:
            result = await call_with_retry(
                lambda: self._processor.capture(order.payment_ref, order.total_amount),
                attempts=settings.PAYMENT_CAPTURE_ATTEMPTS,
                base_delay=settings.RETRY_BASE_DELAY_SECONDS,
                operation=f"capture {order.payment_ref}",
            )
        except ExternalServiceError as exc:
            await self._fail(order.id, f"Payment capture failed: {exc.message}", db)
            raise

        if result.amount_captured != order.total_amount:
            refunded = await self._refund_quietly(order.payment_ref)
            await self._fail(
                order.id,
                f"Captured {result.amount_captured} cents, expected {order.total_amount}",
                db,
                payment_status=PaymentStatus.REFUNDED if refunded else PaymentStatus.PAID,
                review_reason=None if refunded else "refund of mismatched capture failed",
            )
            raise ConflictError(
                f"Captured amount {result.amount_captured} does not match "
                f"order total {order.total_amount}"
            )

        return await self._confirm_and_dispatch(order.id, db, created=True)

    # ------------------------------------------------------------------
    # Group gift
    # ------------------------------------------------------------------

    async def register_contribution(
        self, project_id: str, req: ContributionRequest, db: AsyncSession
    ) -> ContributionResponse:
        contribution = Contribution(
            id=generate_id(CONTRIBUTION_PREFIX),
            project_id=project_id,
            contributor_id=req.contributor_id,
            payment_ref=req.payment_ref,
            amount=req.amount_cents,
        )
        try:
            inserted = await self._contributions.insert(contribution, db)
            if not inserted:
                raise ConflictError(f"Contribution {req.payment_ref} is already registered")
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return ContributionResponse.from_domain(contribution)

    async def capture_group(
        self, project_id: str, req: GroupCaptureRequest, db: AsyncSession
    ) -> CaptureResponse:
        contributions = await self._contributions.list_by_project(project_id, db)
        existing = await self._ledger.find_by_payment_ref(group_payment_ref(project_id), db)
        if existing is not None and existing.status != OrderStatus.CREATED.value:
            return CaptureResponse(
                created=False,
                order=OrderResponse.from_domain(existing),
                contributions=[ContributionResponse.from_domain(c) for c in contributions],
            )

        live = [
            c
            for c in contributions
            if c.status in (ContributionStatus.HELD.value, ContributionStatus.CAPTURED.value)
        ]
        if not live:
            raise ValidationError(f"group gift {project_id} has no held contributions")

        if existing is None:
            order = Order(
                id=new_order_id(),
                payment_ref=group_payment_ref(project_id),
                total_amount=req.total_amount_cents,
                currency=req.currency.lower(),
                status=OrderStatus.CREATED.value,
                payment_status=PaymentStatus.AUTHORIZED.value,
                webhook_token=new_webhook_token(),
                line_items=[item.model_dump(exclude_none=True) for item in req.line_items],
                shipping_address=req.shipping_address.model_dump(exclude_none=True),
                group_project_id=project_id,
                notes=req.notes,
            )
            order, created = await self._create(order, db)
            if not created:
                return CaptureResponse(
                    created=False,
                    order=OrderResponse.from_domain(order),
                    contributions=[ContributionResponse.from_domain(c) for c in contributions],
                )
        else:
            # An earlier call stopped before confirming the order
            order, created = existing, False
            await self._claim_rerun(order, db)
            logger.warning(
                "Group gift %s: resuming capture for order %s left at created",
                project_id,
                order.id,
            )

        try:
            outcome = await self._capture_all(live, db)
        except BaseException:
            logger.exception("Group gift %s: capture run aborted, compensating", project_id)
            await self._compensate(order, live, GroupCaptureOutcome.of(live), db)
            raise

        if outcome.failed or outcome.captured_total != order.total_amount:
            await self._compensate(order, live, outcome, db)
            if outcome.failed:
                raise PaymentProcessorError(
                    f"{len(outcome.failed)} of {len(live)} contribution captures failed "
                    "for group gift; contributions compensated",
                    retryable=False,
                )
            raise ConflictError(
                f"Captured contributions total {outcome.captured_total} "
                f"does not match order total {order.total_amount}"
            )

        response = await self._confirm_and_dispatch(order.id, db, created=created)
        response.contributions = [ContributionResponse.from_domain(c) for c in live]
        return response

    async def _capture_all(
        self, contributions: list[Contribution], db: AsyncSession
    ) -> GroupCaptureOutcome:
        """Capture each held contribution, committing every outcome as it lands."""
        outcome = GroupCaptureOutcome()
        for contribution in contributions:
            if contribution.status == ContributionStatus.CAPTURED.value:
                outcome.captured.append(contribution)
                continue
            try:
                result = await call_with_retry(
                    partial(self._processor.capture, contribution.payment_ref, contribution.amount),
                    attempts=settings.PAYMENT_CAPTURE_ATTEMPTS,
                    base_delay=settings.RETRY_BASE_DELAY_SECONDS,
                    operation=f"capture contribution {contribution.payment_ref}",
                )
            except ExternalServiceError as exc:
                contribution.status = ContributionStatus.FAILED.value
                contribution.last_error = exc.message
                outcome.failed.append(contribution)
            else:
                contribution.status = ContributionStatus.CAPTURED.value
                if result.amount_captured != contribution.amount:
                    contribution.last_error = (
                        f"captured {result.amount_captured}, expected {contribution.amount}"
                    )
                    contribution.amount = result.amount_captured
                outcome.captured.append(contribution)
            await self._record_contribution(contribution, db)
        return outcome

    async def _record_contribution(self, contribution: Contribution, db: AsyncSession) -> None:
        try:
            await self._contributions.update_status(
                contribution.id, contribution.status, contribution.last_error, db
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    async def _claim_rerun(self, order: Order, db: AsyncSession) -> None:
        """Version bump on the stored order; a concurrent rerun fails its CAS."""
        try:
            await self._ledger.save(order, db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    async def _compensate(
        self,
        order: Order,
        contributions: list[Contribution],
        outcome: GroupCaptureOutcome,
        db: AsyncSession,
    ) -> None:
        for contribution in contributions:
            if contribution.status == ContributionStatus.CAPTURED.value:
                action, new_status = "refund", ContributionStatus.REFUNDED
                undo = self._processor.refund
            else:
                action, new_status = "void", ContributionStatus.VOIDED
                undo = self._processor.void
            try:
                await call_with_retry(
                    partial(undo, contribution.payment_ref),
                    attempts=settings.PAYMENT_CAPTURE_ATTEMPTS,
                    base_delay=settings.RETRY_BASE_DELAY_SECONDS,
                    operation=f"{action} contribution {contribution.payment_ref}",
                )
            except ExternalServiceError as exc:
                outcome.compensation_failures.append(
                    f"{action} {contribution.payment_ref}: {exc.message}"
                )
                continue
            contribution.status = new_status.value

        try:
            for contribution in contributions:
                await self._contributions.update_status(
                    contribution.id, contribution.status, contribution.last_error, db
                )
            locked = await self._ledger.get_order(order.id, db, for_update=True)
            if outcome.compensation_failures:
                locked.flag_for_review("group gift compensation failed")
                await write_alert(
                    AlertType.COMPENSATION_FAILED,
                    AlertSeverity.CRITICAL,
                    f"Group gift {order.group_project_id}: "
                    f"{len(outcome.compensation_failures)} compensating call(s) failed",
                    db,
                    order_id=order.id,
                    data={"failures": outcome.compensation_failures},
                )
            else:
                locked.payment_status = PaymentStatus.REFUNDED.value
            await self._ledger.transition(
                locked,
                OrderStatus.FAILED,
                TransitionCause.CAPTURE,
                db,
                message="Group gift capture failed; contributions compensated",
                data={
                    "failed": [c.payment_ref for c in outcome.failed],
                    "captured_total": outcome.captured_total,
                    "compensation_failures": outcome.compensation_failures,
                },
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        order.status = locked.status

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def _create(self, order: Order, db: AsyncSession) -> tuple[Order, bool]:
        try:
            order, created = await self._ledger.create_order(order, db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return order, created

    async def _confirm_and_dispatch(
        self, order_id: str, db: AsyncSession, created: bool
    ) -> CaptureResponse:
        try:
            order = await self._ledger.get_order(order_id, db, for_update=True)
            order.payment_status = PaymentStatus.PAID.value
            if _is_future(order.scheduled_for):
                await self._ledger.transition(
                    order,
                    OrderStatus.SCHEDULED,
                    TransitionCause.CAPTURE,
                    db,
                    message="Payment captured; delivery scheduled",
                    data={"scheduled_for": order.scheduled_for},
                )
                await self._queue.enqueue_dispatch(
                    order.id,
                    "scheduled",
                    "scheduled delivery date reached",
                    db,
                    run_at=order.scheduled_for,
                )
            else:
                await self._ledger.transition(
                    order,
                    OrderStatus.PAYMENT_CONFIRMED,
                    TransitionCause.CAPTURE,
                    db,
                    message="Payment captured",
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        if order.status == OrderStatus.SCHEDULED.value:
            return CaptureResponse(created=created, order=OrderResponse.from_domain(order))

        result = await self._dispatcher.dispatch(order.id, db)
        order = await self._ledger.get_order(order.id, db)
        return CaptureResponse(
            created=created,
            order=OrderResponse.from_domain(order),
            dispatch=DispatchSummary.from_result(result),
        )

    async def _fail(
        self,
        order_id: str,
        message: str,
        db: AsyncSession,
        payment_status: PaymentStatus | None = None,
        review_reason: str | None = None,
    ) -> None:
        try:
            order = await self._ledger.get_order(order_id, db, for_update=True)
            if payment_status is not None:
                order.payment_status = payment_status.value
            if review_reason:
                order.flag_for_review(review_reason)
            await self._ledger.transition(
                order, OrderStatus.FAILED, TransitionCause.CAPTURE, db, message=message
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    async def _refund_quietly(self, payment_ref: str) -> bool:
        try:
            await call_with_retry(
                lambda: self._processor.refund(payment_ref),
                attempts=settings.PAYMENT_CAPTURE_ATTEMPTS,
                base_delay=settings.RETRY_BASE_DELAY_SECONDS,
                operation=f"refund {payment_ref}",
            )
        except ExternalServiceError:
            return False
        return True


def _is_future(value: datetime | None) -> bool:
    if value is None:
        return False
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value > utc_now()
