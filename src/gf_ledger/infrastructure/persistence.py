# src/gf_ledger/infrastructure/persistence.py
"""OrderRepository — raw SQL persistence implementation.

Status writes are compare-and-swap on `version`; a result of 0 rows means
another writer got there first. Timeline rows are deduplicated by the
UNIQUE (order_id, event_id) constraint, so concurrent redeliveries of the
same provider event insert it once.

Transaction ownership: the CALLER (application service) commits or rolls back.
"""

import json
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.gf_common.database import load_json
from src.gf_common.enums import OrderStatus, PaymentStatus
from src.gf_common.errors import ConcurrentModificationError
from src.gf_ledger.domain.models import Order, TimelineEvent

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_SELECT_COLUMNS = """
    id, payment_ref, total_amount, currency, status, payment_status,
    funding_status, funding_hold_reason, expected_funding_date, reserved_amount,
    fulfillment_request_id, webhook_token, dispatch_attempts, merchant_tracking,
    line_items, shipping_address, group_project_id, scheduled_for,
    needs_manual_review, manual_review_reason, notes, version, created_at, updated_at
"""

_INSERT_ORDER_SQL = text("""
    INSERT INTO orders (id, payment_ref, total_amount, currency, status, payment_status,
        webhook_token, line_items, shipping_address, group_project_id, scheduled_for, notes)
    VALUES (:id, :payment_ref, :total_amount, :currency, :status, :payment_status,
        :webhook_token, CAST(:line_items AS JSONB), CAST(:shipping_address AS JSONB),
        :group_project_id, :scheduled_for, :notes)
    ON CONFLICT (payment_ref) DO NOTHING
    RETURNING version, created_at, updated_at
""")

_UPDATE_ORDER_SQL = text("""
    UPDATE orders
    SET status = :status,
        payment_status = :payment_status,
        funding_status = :funding_status,
        funding_hold_reason = :funding_hold_reason,
        expected_funding_date = :expected_funding_date,
        reserved_amount = :reserved_amount,
        fulfillment_request_id = :fulfillment_request_id,
        dispatch_attempts = :dispatch_attempts,
        merchant_tracking = CAST(:merchant_tracking AS JSONB),
        needs_manual_review = :needs_manual_review,
        manual_review_reason = :manual_review_reason,
        notes = :notes,
        version = version + 1,
        updated_at = NOW()
    WHERE id = :id AND version = :version
    RETURNING version, updated_at
""")

_GET_BY_ID_SQL = text(f"SELECT {_SELECT_COLUMNS} FROM orders WHERE id = :id")
_GET_BY_ID_FOR_UPDATE_SQL = text(
    f"SELECT {_SELECT_COLUMNS} FROM orders WHERE id = :id FOR UPDATE"
)

_GET_BY_PAYMENT_REF_SQL = text(
    f"SELECT {_SELECT_COLUMNS} FROM orders WHERE payment_ref = :payment_ref"
)

_GET_BY_REQUEST_ID_SQL = text(
    f"SELECT {_SELECT_COLUMNS} FROM orders WHERE fulfillment_request_id = :request_id"
)
_GET_BY_REQUEST_ID_FOR_UPDATE_SQL = text(
    f"SELECT {_SELECT_COLUMNS} FROM orders "
    "WHERE fulfillment_request_id = :request_id FOR UPDATE"
)

_LIST_AWAITING_FUNDS_SQL = text(f"""
    SELECT {_SELECT_COLUMNS}
    FROM orders
    WHERE status = :status
    ORDER BY created_at ASC, id ASC
    LIMIT :limit
""")

_LIST_PAID_UNDISPATCHED_SQL = text(f"""
    SELECT {_SELECT_COLUMNS}
    FROM orders
    WHERE payment_status = :payment_status
      AND status IN ('failed', 'created')
      AND needs_manual_review = FALSE
    ORDER BY created_at ASC, id ASC
    LIMIT :limit
""")

_SUM_AWAITING_FUNDS_SQL = text("""
    SELECT COUNT(*) AS order_count, COALESCE(SUM(total_amount), 0) AS total_cost
    FROM orders
    WHERE status = :status
""")

_INSERT_TIMELINE_SQL = text("""
    INSERT INTO order_timeline_events
        (order_id, event_id, event_type, source, message, data, occurred_at)
    VALUES
        (:order_id, :event_id, :event_type, :source, :message,
         CAST(:data AS JSONB), :occurred_at)
    ON CONFLICT (order_id, event_id) DO NOTHING
    RETURNING id
""")

_LIST_TIMELINE_SQL = text("""
    SELECT event_id, event_type, source, message, data, occurred_at
    FROM order_timeline_events
    WHERE order_id = :order_id
    ORDER BY occurred_at ASC, id ASC
""")


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_order(row: Any) -> Order:
    """Convert a DB result row to an Order domain object."""
    return Order(
        id=row.id,
        payment_ref=row.payment_ref,
        total_amount=row.total_amount,
        currency=row.currency,
        status=row.status,
        payment_status=row.payment_status,
        funding_status=row.funding_status,
        funding_hold_reason=row.funding_hold_reason,
        expected_funding_date=row.expected_funding_date,
        reserved_amount=row.reserved_amount,
        fulfillment_request_id=row.fulfillment_request_id,
        webhook_token=row.webhook_token,
        dispatch_attempts=row.dispatch_attempts,
        merchant_tracking=load_json(row.merchant_tracking, {}),
        line_items=load_json(row.line_items, []),
        shipping_address=load_json(row.shipping_address, {}),
        group_project_id=row.group_project_id,
        scheduled_for=row.scheduled_for,
        needs_manual_review=row.needs_manual_review,
        manual_review_reason=row.manual_review_reason,
        notes=row.notes,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_event(row: Any) -> TimelineEvent:
    return TimelineEvent(
        id=row.event_id,
        type=row.event_type,
        timestamp=row.occurred_at,
        source=row.source,
        message=row.message,
        data=load_json(row.data, {}),
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class OrderRepository:
    """Concrete implementation of OrderRepositoryProtocol using raw SQL."""

    async def insert(self, order: Order, db: AsyncSession) -> bool:
        result = await db.execute(
            _INSERT_ORDER_SQL,
            {
                "id": order.id,
                "payment_ref": order.payment_ref,
                "total_amount": order.total_amount,
                "currency": order.currency,
                "status": order.status,
                "payment_status": order.payment_status,
                "webhook_token": order.webhook_token,
                "line_items": json.dumps(order.line_items),
                "shipping_address": json.dumps(order.shipping_address),
                "group_project_id": order.group_project_id,
                "scheduled_for": order.scheduled_for,
                "notes": order.notes,
            },
        )
        row = result.fetchone()
        if row is None:
            return False
        order.version = row.version
        order.created_at = row.created_at
        order.updated_at = row.updated_at
        return True

    async def get_by_id(
        self, order_id: str, db: AsyncSession, for_update: bool = False
    ) -> Order | None:
        sql = _GET_BY_ID_FOR_UPDATE_SQL if for_update else _GET_BY_ID_SQL
        row = (await db.execute(sql, {"id": order_id})).fetchone()
        return _row_to_order(row) if row else None

    async def get_by_payment_ref(
        self, payment_ref: str, db: AsyncSession
    ) -> Order | None:
        row = (
            await db.execute(_GET_BY_PAYMENT_REF_SQL, {"payment_ref": payment_ref})
        ).fetchone()
        return _row_to_order(row) if row else None

    async def get_by_fulfillment_request_id(
        self, request_id: str, db: AsyncSession, for_update: bool = False
    ) -> Order | None:
        sql = _GET_BY_REQUEST_ID_FOR_UPDATE_SQL if for_update else _GET_BY_REQUEST_ID_SQL
        row = (await db.execute(sql, {"request_id": request_id})).fetchone()
        return _row_to_order(row) if row else None

    async def save(self, order: Order, db: AsyncSession) -> None:
        result = await db.execute(
            _UPDATE_ORDER_SQL,
            {
                "id": order.id,
                "version": order.version,
                "status": order.status,
                "payment_status": order.payment_status,
                "funding_status": order.funding_status,
                "funding_hold_reason": order.funding_hold_reason,
                "expected_funding_date": order.expected_funding_date,
                "reserved_amount": order.reserved_amount,
                "fulfillment_request_id": order.fulfillment_request_id,
                "dispatch_attempts": order.dispatch_attempts,
                "merchant_tracking": json.dumps(order.merchant_tracking),
                "needs_manual_review": order.needs_manual_review,
                "manual_review_reason": order.manual_review_reason,
                "notes": order.notes,
            },
        )
        row = result.fetchone()
        if row is None:
            raise ConcurrentModificationError(order.id)
        order.version = row.version
        order.updated_at = row.updated_at

    async def append_timeline_event(
        self, order_id: str, event: TimelineEvent, db: AsyncSession
    ) -> bool:
        result = await db.execute(
            _INSERT_TIMELINE_SQL,
            {
                "order_id": order_id,
                "event_id": event.id,
                "event_type": event.type,
                "source": event.source,
                "message": event.message,
                "data": json.dumps(event.data, default=str),
                "occurred_at": event.timestamp,
            },
        )
        return result.fetchone() is not None

    async def list_timeline(self, order_id: str, db: AsyncSession) -> list[TimelineEvent]:
        rows = (await db.execute(_LIST_TIMELINE_SQL, {"order_id": order_id})).fetchall()
        return [_row_to_event(row) for row in rows]

    async def list_awaiting_funds(self, limit: int, db: AsyncSession) -> list[Order]:
        rows = (
            await db.execute(
                _LIST_AWAITING_FUNDS_SQL,
                {"status": OrderStatus.AWAITING_FUNDS.value, "limit": limit},
            )
        ).fetchall()
        return [_row_to_order(row) for row in rows]

    async def list_paid_undispatched(self, limit: int, db: AsyncSession) -> list[Order]:
        rows = (
            await db.execute(
                _LIST_PAID_UNDISPATCHED_SQL,
                {"payment_status": PaymentStatus.PAID.value, "limit": limit},
            )
        ).fetchall()
        return [_row_to_order(row) for row in rows]

    async def sum_awaiting_funds(self, db: AsyncSession) -> tuple[int, int]:
        row = (
            await db.execute(
                _SUM_AWAITING_FUNDS_SQL, {"status": OrderStatus.AWAITING_FUNDS.value}
            )
        ).fetchone()
        if row is None:
            return 0, 0
        return int(row.order_count), int(row.total_cost)
