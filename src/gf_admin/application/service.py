# src/gf_admin/application/service.py
"""AdminService — operator actions on orders.

Every call is audited, including unauthorized ones and those that fail.
Business failures (illegal state, unknown order or payment, provider
errors) come back as success=False instead of raising, so the operator
console always gets a result it can show. Each action owns its
transactions; dispatching goes through FulfillmentDispatcher like any
other path.
"""

import json
import logging
from functools import partial
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.gf_admin.application.schemas import AdminActionRequest, AdminActionResponse
from src.gf_admin.infrastructure.alerts import write_alert
from src.gf_admin.infrastructure.audit import write_audit
from src.gf_common.datetime_utils import utc_now
from src.gf_common.enums import (
    AdminAction,
    AlertSeverity,
    AlertType,
    AuditResult,
    ContributionStatus,
    OrderStatus,
    PaymentStatus,
    TransitionCause,
)
from src.gf_common.errors import (
    AppError,
    AuthorizationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PaymentNotFoundError,
    ValidationError,
)
from src.gf_common.id_generator import new_order_id, new_webhook_token
from src.gf_common.retry import call_with_retry
from src.gf_fulfillment.application.dispatcher import FulfillmentDispatcher
from src.gf_fulfillment.domain.models import DispatchResult, fulfillment_products
from src.gf_funding.application.service import FundingService
from src.gf_gateway.auth.dependencies import Principal
from src.gf_ledger.application.service import LedgerService
from src.gf_ledger.domain.models import Order
from src.gf_payment.domain.models import PaymentDetails
from src.gf_payment.domain.processor import PaymentProcessorProtocol
from src.gf_payment.domain.repository import ContributionRepositoryProtocol
from src.gf_payment.infrastructure.persistence import ContributionRepository
from src.gf_payment.infrastructure.stripe_processor import StripePaymentProcessor

logger = logging.getLogger(__name__)

# Errors that mean "the request does not apply", as opposed to "something broke"
_REJECTIONS = (ConflictError, NotFoundError, ValidationError)

_NOT_RETRYABLE = frozenset(
    {OrderStatus.SHIPPED.value, OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value}
)


def _reservation_is_stale(order: Order) -> bool:
    """A reservation whose dispatch died before recording any outcome."""
    if order.fulfillment_request_id or order.updated_at is None:
        return False
    age = utc_now() - order.updated_at
    return age.total_seconds() > settings.DISPATCH_STALE_RESERVATION_SECONDS


def _dispatch_result(result: DispatchResult) -> dict[str, Any]:
    return {
        "orderId": result.order_id,
        "status": result.status,
        "dispatched": result.dispatched,
        "requestId": result.fulfillment_request_id,
        "requiredFunds": result.required_funds,
        "reason": result.reason,
    }


class AdminService:
    def __init__(
        self,
        ledger: LedgerService | None = None,
        funding: FundingService | None = None,
        dispatcher: FulfillmentDispatcher | None = None,
        processor: PaymentProcessorProtocol | None = None,
        contributions: ContributionRepositoryProtocol | None = None,
    ) -> None:
        self._ledger = ledger or LedgerService()
        self._funding = funding or FundingService(ledger=self._ledger)
        self._contributions: ContributionRepositoryProtocol = (
            contributions or ContributionRepository()
        )
        self._dispatcher = dispatcher or FulfillmentDispatcher(
            ledger=self._ledger, funding=self._funding, contributions=self._contributions
        )
        self._processor: PaymentProcessorProtocol = processor or StripePaymentProcessor()
        self._handlers = {
            AdminAction.RETRY: self.retry,
            AdminAction.RECONCILE: self.reconcile,
            AdminAction.RECOVER: self.recover,
            AdminAction.CANCEL: self.cancel,
            AdminAction.FORCE_PROCESS: self.force_process,
            AdminAction.FAIL: self.fail,
        }

    async def execute(
        self, principal: Principal, req: AdminActionRequest, db: AsyncSession
    ) -> AdminActionResponse:
        """Run one admin action. Raises AuthorizationError for non-admin callers."""
        if not principal.is_admin:
            await self._audit(
                principal, req, AuditResult.UNAUTHORIZED, {"role": principal.role}, db
            )
            raise AuthorizationError()

        handler = self._handlers[req.action]
        try:
            result = await handler(req, principal, db)
        except AppError as exc:
            await db.rollback()
            outcome = AuditResult.REJECTED if isinstance(exc, _REJECTIONS) else AuditResult.ERROR
            logger.warning(
                "Admin %s by %s on %s %s: %s",
                req.action.value,
                principal.subject,
                req.target,
                outcome.value,
                exc.message,
            )
            await self._audit(
                principal, req, outcome, {"error": exc.message, "code": exc.code}, db
            )
            return AdminActionResponse(success=False, action=req.action.value, error=exc.message)
        except Exception as exc:
            await db.rollback()
            await self._audit(principal, req, AuditResult.ERROR, {"error": repr(exc)}, db)
            raise

        logger.info(
            "Admin %s by %s on %s: success", req.action.value, principal.subject, req.target
        )
        await self._audit(principal, req, AuditResult.SUCCESS, result, db)
        return AdminActionResponse(success=True, action=req.action.value, result=result)

    async def _audit(
        self,
        principal: Principal,
        req: AdminActionRequest,
        outcome: AuditResult,
        detail: dict[str, Any],
        db: AsyncSession,
    ) -> None:
        try:
            await write_audit(
                principal.subject, req.action.value, req.target, outcome, detail, db
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def retry(
        self, req: AdminActionRequest, principal: Principal, db: AsyncSession
    ) -> dict[str, Any]:
        """Reset to payment_confirmed, retire the old request id, dispatch again.

        A reservation left behind by a dispatch that died mid-submit is released
        once it is older than DISPATCH_STALE_RESERVATION_SECONDS.
        """
        order_id = req.order_id or ""
        order = await self._ledger.get_order(order_id, db, for_update=True)
        if order.status in _NOT_RETRYABLE:
            raise ConflictError(f"Cannot retry order {order.id}: status is {order.status}")
        if order.payment_status != PaymentStatus.PAID.value:
            raise ConflictError(
                f"Cannot retry order {order.id}: payment is {order.payment_status}"
            )
        if order.reserved_amount > 0:
            if not _reservation_is_stale(order):
                raise ConflictError(f"Order {order.id} has a dispatch in flight")
            logger.warning(
                "Order %s: releasing %d cents left reserved by an unfinished dispatch",
                order.id,
                order.reserved_amount,
            )
            await self._funding.release(order, db)

        previous_request = order.fulfillment_request_id
        order.fulfillment_request_id = None
        self._funding.clear_hold(order)
        if order.status == OrderStatus.PAYMENT_CONFIRMED.value:
            await self._ledger.save(order, db)
        else:
            await self._ledger.transition(
                order,
                OrderStatus.PAYMENT_CONFIRMED,
                TransitionCause.ADMIN,
                db,
                message=req.reason or f"Retry requested by {principal.subject}",
                data={"previous_request_id": previous_request},
            )
        await db.commit()

        result = await self._dispatcher.dispatch(order.id, db)
        return {**_dispatch_result(result), "previousRequestId": previous_request}

    async def reconcile(
        self, req: AdminActionRequest, principal: Principal, db: AsyncSession
    ) -> dict[str, Any]:
        """Heal paid orders left in failed or created, then dispatch them.

        Orders flagged for manual review are left to the operator.
        """
        stuck = await self._ledger.list_stuck_paid(settings.RECONCILE_SCAN_LIMIT, db)
        await db.commit()

        healed: list[dict[str, Any]] = []
        for candidate in stuck:
            order = await self._ledger.get_order(candidate.id, db, for_update=True)
            if (
                order.payment_status != PaymentStatus.PAID.value
                or order.status not in (OrderStatus.FAILED.value, OrderStatus.CREATED.value)
                or order.needs_manual_review
            ):
                await db.rollback()
                continue
            previous = order.status
            order.fulfillment_request_id = None
            await self._ledger.transition(
                order,
                OrderStatus.PAYMENT_CONFIRMED,
                TransitionCause.ADMIN,
                db,
                message=f"Reconciled by {principal.subject}",
                data={"previous_status": previous},
            )
            await db.commit()

            try:
                result = await self._dispatcher.dispatch(order.id, db)
            except ConflictError as exc:
                logger.warning("Reconcile: order %s not dispatched: %s", order.id, exc.message)
                healed.append({"orderId": order.id, "status": order.status, "error": exc.message})
                continue
            healed.append({"orderId": order.id, "status": result.status})

        logger.info("Reconcile: %d of %d stuck orders healed", len(healed), len(stuck))
        return {"reconciled": len(healed), "scanned": len(stuck), "orders": healed}

    async def recover(
        self, req: AdminActionRequest, principal: Principal, db: AsyncSession
    ) -> dict[str, Any]:
        """Rebuild a missing order from a captured payment. Idempotent."""
        payment_ref = req.payment_ref or ""
        existing = await self._ledger.find_by_payment_ref(payment_ref, db)
        if existing is not None:
            return {"orderId": existing.id, "status": existing.status, "created": False}

        details = await call_with_retry(
            partial(self._processor.retrieve, payment_ref),
            attempts=settings.PAYMENT_CAPTURE_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            operation=f"retrieve {payment_ref}",
        )
        if details is None:
            raise PaymentNotFoundError(payment_ref)
        if not details.is_captured:
            raise ConflictError(f"Payment {payment_ref} is {details.status}, not captured")

        order = self._order_from_payment(details, principal)
        order, created = await self._ledger.create_order(order, db)
        if not created:
            await db.commit()
            return {"orderId": order.id, "status": order.status, "created": False}
        await self._ledger.transition(
            order,
            OrderStatus.PAYMENT_CONFIRMED,
            TransitionCause.ADMIN,
            db,
            message=f"Recovered from payment {payment_ref} by {principal.subject}",
        )
        await db.commit()

        result = await self._dispatcher.dispatch(order.id, db)
        return {**_dispatch_result(result), "created": True}

    @staticmethod
    def _order_from_payment(details: PaymentDetails, principal: Principal) -> Order:
        metadata = details.metadata
        try:
            line_items = json.loads(metadata.get("cart_items") or "[]")
            shipping_address = json.loads(metadata.get("shipping_address") or "{}")
        except json.JSONDecodeError as exc:
            raise ValidationError(f"payment {details.payment_ref} metadata is not JSON: {exc}")
        if not line_items or not shipping_address:
            raise ValidationError(
                f"payment {details.payment_ref} metadata lacks cart items or shipping address"
            )
        fulfillment_products(line_items)
        return Order(
            id=new_order_id(),
            payment_ref=details.payment_ref,
            total_amount=details.amount_received,
            currency=details.currency,
            status=OrderStatus.CREATED.value,
            payment_status=PaymentStatus.PAID.value,
            webhook_token=new_webhook_token(),
            line_items=line_items,
            shipping_address=shipping_address,
            notes=f"Recovered by {principal.subject}",
        )

    async def cancel(
        self, req: AdminActionRequest, principal: Principal, db: AsyncSession
    ) -> dict[str, Any]:
        """Cancel; an authorized (uncaptured) payment is voided as best effort."""
        order_id = req.order_id or ""
        order = await self._ledger.get_order(order_id, db, for_update=True)
        if order.status == OrderStatus.CANCELLED.value:
            await db.rollback()
            return {"orderId": order.id, "status": order.status, "alreadyCancelled": True}
        if order.status == OrderStatus.DELIVERED.value:
            raise ConflictError(f"Cannot cancel order {order.id}: already delivered")

        await self._ledger.transition(
            order,
            OrderStatus.CANCELLED,
            TransitionCause.ADMIN,
            db,
            message=req.reason or f"Cancelled by {principal.subject}",
        )
        await db.commit()

        if order.payment_status != PaymentStatus.AUTHORIZED.value:
            return {"orderId": order.id, "status": order.status, "voided": False}

        failures = await self._void_holds(order, db)
        order = await self._ledger.get_order(order.id, db, for_update=True)
        if failures:
            order.flag_for_review("void of authorized payment failed after cancel")
            await write_alert(
                AlertType.RELEASE_FAILED,
                AlertSeverity.CRITICAL,
                f"Order {order.id} cancelled but {len(failures)} payment hold(s) not voided",
                db,
                order_id=order.id,
                data={"failures": failures},
            )
        else:
            order.payment_status = PaymentStatus.VOIDED.value
        await self._ledger.save(order, db)
        await db.commit()
        return {
            "orderId": order.id,
            "status": order.status,
            "voided": not failures,
            "needsManualReview": order.needs_manual_review,
        }

    async def _void_holds(self, order: Order, db: AsyncSession) -> list[str]:
        """Void every authorization behind `order`. Returns failure messages."""
        if order.is_group_gift:
            contributions = await self._contributions.list_by_project(
                order.group_project_id or "", db
            )
            held = [c for c in contributions if c.status == ContributionStatus.HELD.value]
        else:
            held = []

        failures: list[str] = []
        refs = [c.payment_ref for c in held] if order.is_group_gift else [order.payment_ref]
        voided: set[str] = set()
        for ref in refs:
            try:
                await call_with_retry(
                    partial(self._processor.void, ref),
                    attempts=settings.PAYMENT_CAPTURE_ATTEMPTS,
                    base_delay=settings.RETRY_BASE_DELAY_SECONDS,
                    operation=f"void {ref}",
                )
            except ExternalServiceError as exc:
                failures.append(f"void {ref}: {exc.message}")
                continue
            voided.add(ref)

        for contribution in held:
            if contribution.payment_ref in voided:
                await self._contributions.update_status(
                    contribution.id, ContributionStatus.VOIDED.value, None, db
                )
        return failures

    async def force_process(
        self, req: AdminActionRequest, principal: Principal, db: AsyncSession
    ) -> dict[str, Any]:
        """Dispatch without the funding check. The cost is still reserved."""
        order = await self._ledger.get_order(req.order_id or "", db)
        if not order.is_dispatchable:
            raise ConflictError(f"Cannot force-process order {order.id}: status is {order.status}")
        await db.commit()
        logger.warning("Order %s force-processed by %s", order.id, principal.subject)
        result = await self._dispatcher.dispatch(
            order.id, db, bypass_funding=True, reset_cause=TransitionCause.ADMIN
        )
        return _dispatch_result(result)

    async def fail(
        self, req: AdminActionRequest, principal: Principal, db: AsyncSession
    ) -> dict[str, Any]:
        order = await self._ledger.get_order(req.order_id or "", db, for_update=True)
        if order.is_terminal:
            raise ConflictError(f"Order {order.id} is already {order.status}")
        note = f"Marked failed by {principal.subject}"
        if req.reason:
            note = f"{note}: {req.reason}"
        order.add_note(note)
        await self._ledger.transition(
            order, OrderStatus.FAILED, TransitionCause.ADMIN, db, message=note
        )
        await db.commit()
        return {"orderId": order.id, "status": order.status}
