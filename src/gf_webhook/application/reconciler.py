"""WebhookReconciler — applies provider webhooks to orders.

Deliveries are at-least-once and may arrive out of order. Each status
update, and each merchant order carrying a tracking URL, is recorded as a
timeline event with a deterministic id, so a redelivered payload inserts
nothing and changes nothing. Only the newest status update in a
payload drives the order status, and only if it was not seen before; an
edge the state machine refuses (an old event arriving after a newer
one) is logged and skipped.

A request.failed with the provider's internal_error code is treated as
transient: the order moves to retry_pending and a dispatch item is queued
with a growing delay, until the retry budget is spent and it fails.
"""

import hmac
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.gf_admin.infrastructure.alerts import write_alert
from src.gf_common.datetime_utils import seconds_from_now, utc_now
from src.gf_common.enums import (
    AlertSeverity,
    AlertType,
    OrderStatus,
    TimelineSource,
    TransitionCause,
)
from src.gf_common.errors import AuthenticationError, OrderNotFoundError
from src.gf_ledger.application.schemas import OrderResponse
from src.gf_ledger.application.service import LedgerService
from src.gf_ledger.domain.models import Order, TimelineEvent
from src.gf_ledger.domain.state_machine import can_transition
from src.gf_queue.application.service import WorkQueueService
from src.gf_webhook.application.schemas import StatusUpdate, WebhookPayload, WebhookResponse
from src.gf_webhook.domain.events import (
    ProviderEventType,
    map_event_to_status,
    provider_event_id,
    tracking_event_id,
)

logger = logging.getLogger(__name__)

_NOTIFY_STATUSES = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED})


def _token_matches(order: Order, token: str | None) -> bool:
    if not order.webhook_token or not token:
        return False
    return hmac.compare_digest(order.webhook_token.encode(), token.encode())


class WebhookReconciler:
    def __init__(
        self,
        ledger: LedgerService | None = None,
        queue: WorkQueueService | None = None,
    ) -> None:
        self._ledger = ledger or LedgerService()
        self._queue = queue or WorkQueueService()

    async def apply(
        self, payload: WebhookPayload, token: str | None, db: AsyncSession
    ) -> WebhookResponse:
        """Record the payload's events and advance the order. Idempotent."""
        try:
            order = await self._ledger.find_by_fulfillment_request_id(
                payload.request_id, db, for_update=True
            )
            if order is None:
                raise OrderNotFoundError(payload.request_id)
            if not _token_matches(order, token):
                raise AuthenticationError("Invalid webhook token")

            new_ids = await self._record_status_updates(order, payload, db)
            tracking_events, tracking_changed = await self._record_tracking(order, payload, db)
            new_events = len(new_ids) + tracking_events

            if new_events == 0 and not tracking_changed:
                await db.rollback()
                logger.debug("Webhook for %s: nothing new", payload.request_id)
                return WebhookResponse(success=True, order=OrderResponse.from_domain(order))

            status_changed = False
            latest = self._latest(payload)
            if latest is not None and provider_event_id(latest.type, latest.timestamp) in new_ids:
                status_changed = await self._apply_status(order, latest, payload, db)
            if tracking_changed and not status_changed:
                await self._ledger.save(order, db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        return WebhookResponse(
            success=True,
            order=OrderResponse.from_domain(order),
            new_events=new_events,
            status_changed=status_changed,
        )

    @staticmethod
    def _latest(payload: WebhookPayload) -> StatusUpdate | None:
        if not payload.status_updates:
            return None
        return max(payload.status_updates, key=lambda u: u.timestamp)

    async def _record_status_updates(
        self, order: Order, payload: WebhookPayload, db: AsyncSession
    ) -> set[str]:
        new_ids: set[str] = set()
        for update in sorted(payload.status_updates, key=lambda u: u.timestamp):
            event = TimelineEvent(
                id=provider_event_id(update.type, update.timestamp),
                type=update.type,
                timestamp=update.timestamp,
                source=TimelineSource.PROVIDER.value,
                message=update.message,
                data=update.data,
            )
            if not await self._ledger.append_event(order, event, db):
                continue
            new_ids.add(event.id)
            if ProviderEventType.parse(update.type) == ProviderEventType.UNKNOWN:
                await write_alert(
                    AlertType.UNMAPPED_PROVIDER_EVENT,
                    AlertSeverity.WARNING,
                    f"Unmapped provider event {update.type!r} for request {payload.request_id}",
                    db,
                    order_id=order.id,
                    data={"event_type": update.type, "event_id": event.id},
                )
        return new_ids

    async def _record_tracking(
        self, order: Order, payload: WebhookPayload, db: AsyncSession
    ) -> tuple[int, bool]:
        """Merge merchant order details into the order. Returns (new events, changed)."""
        inserted = 0
        changed = False
        for merchant_order in payload.merchant_order_ids:
            entry = merchant_order.model_dump(mode="json", exclude_none=True)
            key = merchant_order.merchant_order_id
            if order.merchant_tracking.get(key) != entry:
                order.merchant_tracking[key] = entry
                changed = True
            if not merchant_order.tracking_url:
                continue
            event = TimelineEvent(
                id=tracking_event_id(key),
                type="merchant_order.placed",
                timestamp=utc_now(),
                source=TimelineSource.MERCHANT.value,
                message=f"Merchant order {key}",
                data=entry,
            )
            if await self._ledger.append_event(order, event, db):
                inserted += 1
        return inserted, changed

    async def _apply_status(
        self,
        order: Order,
        update: StatusUpdate,
        payload: WebhookPayload,
        db: AsyncSession,
    ) -> bool:
        event_type = ProviderEventType.parse(update.type)
        code = update.data.get("code") or payload.code
        target = map_event_to_status(event_type, code)
        message = update.message or payload.message

        if (
            target == OrderStatus.RETRY_PENDING
            and order.dispatch_attempts > settings.DISPATCH_MAX_PROVIDER_RETRIES
        ):
            target = OrderStatus.FAILED
            message = f"Provider internal error after {order.dispatch_attempts} attempts"

        if order.status == target.value:
            return False
        if not can_transition(order.status, target, TransitionCause.PROVIDER):
            logger.info(
                "Order %s: stale provider event %s (%s -> %s not allowed), skipped",
                order.id,
                update.type,
                order.status,
                target.value,
            )
            return False

        data = {"request_id": payload.request_id, "event_type": update.type}
        await self._ledger.transition(
            order, target, TransitionCause.PROVIDER, db, message=message, data=data
        )

        if target == OrderStatus.RETRY_PENDING:
            delays = settings.DISPATCH_RETRY_DELAYS_SECONDS
            delay = delays[min(max(order.dispatch_attempts - 1, 0), len(delays) - 1)]
            await self._queue.enqueue_dispatch(
                order.id,
                f"attempt{order.dispatch_attempts}",
                "provider internal error",
                db,
                run_at=seconds_from_now(delay),
            )
            logger.warning(
                "Order %s: provider internal error, re-dispatch in %ds", order.id, delay
            )
        elif target in _NOTIFY_STATUSES:
            await self._queue.enqueue_notify(
                order.id,
                target.value,
                {**data, "tracking": order.merchant_tracking},
                db,
            )
        return True
