"""Unit tests for the raw-SQL repositories using MagicMock AsyncSession."""

import json
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.gf_common.enums import FundingEntryType
from src.gf_common.errors import ConcurrentModificationError, InternalError
from src.gf_funding.infrastructure.persistence import FundingRepository
from src.gf_ledger.domain.models import TimelineEvent
from src.gf_ledger.infrastructure import persistence as order_persistence
from src.gf_ledger.infrastructure.db_models import OrderORM
from src.gf_ledger.infrastructure.persistence import OrderRepository
from src.gf_queue.infrastructure.persistence import WorkQueueRepository
from tests.unit.fakes import make_order

_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


def _make_row(**kwargs: Any) -> MagicMock:
    """Create a mock row with all order columns."""
    row = MagicMock()
    row.id = kwargs.get("id", "ord_1")
    row.payment_ref = kwargs.get("payment_ref", "pi_1")
    row.total_amount = kwargs.get("total_amount", 4000)
    row.currency = kwargs.get("currency", "usd")
    row.status = kwargs.get("status", "processing")
    row.payment_status = kwargs.get("payment_status", "paid")
    row.funding_status = kwargs.get("funding_status")
    row.funding_hold_reason = kwargs.get("funding_hold_reason")
    row.expected_funding_date = kwargs.get("expected_funding_date")
    row.reserved_amount = kwargs.get("reserved_amount", 0)
    row.fulfillment_request_id = kwargs.get("fulfillment_request_id", "zinc_req_1")
    row.webhook_token = kwargs.get("webhook_token", "tok_1")
    row.dispatch_attempts = kwargs.get("dispatch_attempts", 1)
    row.merchant_tracking = kwargs.get("merchant_tracking", {})
    row.line_items = kwargs.get("line_items", [{"product_id": "B00TEST", "quantity": 1}])
    row.shipping_address = kwargs.get("shipping_address", {"zip_code": "94105"})
    row.group_project_id = kwargs.get("group_project_id")
    row.scheduled_for = kwargs.get("scheduled_for")
    row.needs_manual_review = kwargs.get("needs_manual_review", False)
    row.manual_review_reason = kwargs.get("manual_review_reason")
    row.notes = kwargs.get("notes")
    row.version = kwargs.get("version", 3)
    row.created_at = kwargs.get("created_at", _NOW)
    row.updated_at = kwargs.get("updated_at", _NOW)
    return row


def _make_account_row(**kwargs: Any) -> MagicMock:
    row = MagicMock()
    row.id = 1
    row.name = "zma-primary"
    row.available_balance = kwargs.get("available_balance", 6000)
    row.reserved_balance = kwargs.get("reserved_balance", 4000)
    row.safety_margin = 5000
    row.version = kwargs.get("version", 8)
    row.is_default = True
    row.is_active = True
    row.updated_at = _NOW
    return row


def _make_entry_row(**kwargs: Any) -> MagicMock:
    row = MagicMock()
    row.id = kwargs.get("id", 11)
    row.account_id = 1
    row.entry_type = kwargs.get("entry_type", "RESERVE")
    row.amount = kwargs.get("amount", -4000)
    row.balance_after = kwargs.get("balance_after", 6000)
    row.reference_type = "order"
    row.reference_id = "ord_1"
    row.description = None
    row.created_at = _NOW
    return row


def _db_returning(*rows: Any) -> AsyncMock:
    """An AsyncSession whose successive execute() calls return the given rows."""
    results = []
    for row in rows:
        result = MagicMock()
        result.fetchone.return_value = row
        results.append(result)
    db = AsyncMock()
    db.execute.side_effect = results
    return db


def _params(db: AsyncMock, call: int = 0) -> dict[str, Any]:
    return db.execute.call_args_list[call].args[1]


class TestOrderColumns:
    def test_select_columns_match_orm(self) -> None:
        """The raw SELECT list must cover every column the migration creates."""
        selected = {
            name.strip()
            for name in order_persistence._SELECT_COLUMNS.split(",")
            if name.strip()
        }
        assert selected == set(OrderORM.__table__.columns.keys())


class TestOrderRepository:
    async def test_get_by_id_maps_row(self) -> None:
        db = _db_returning(_make_row(merchant_tracking=json.dumps({"carrier": "UPS"})))
        order = await OrderRepository().get_by_id("ord_1", db)

        assert order is not None
        assert order.id == "ord_1"
        assert order.status == "processing"
        assert order.fulfillment_request_id == "zinc_req_1"
        assert order.merchant_tracking == {"carrier": "UPS"}
        assert order.line_items == [{"product_id": "B00TEST", "quantity": 1}]
        assert order.version == 3

    async def test_get_by_id_not_found(self) -> None:
        db = _db_returning(None)
        assert await OrderRepository().get_by_id("missing", db) is None

    async def test_for_update_uses_locking_query(self) -> None:
        db = _db_returning(_make_row())
        await OrderRepository().get_by_id("ord_1", db, for_update=True)
        sql = str(db.execute.call_args_list[0].args[0])
        assert "FOR UPDATE" in sql

    async def test_insert_sets_version_and_timestamps(self) -> None:
        returned = MagicMock(version=0, created_at=_NOW, updated_at=_NOW)
        db = _db_returning(returned)
        order = make_order(status="created", payment_status="unpaid")

        created = await OrderRepository().insert(order, db)

        assert created is True
        assert order.created_at == _NOW
        params = _params(db)
        assert params["payment_ref"] == "pi_1"
        assert json.loads(params["line_items"]) == order.line_items

    async def test_insert_conflict_returns_false(self) -> None:
        db = _db_returning(None)
        assert await OrderRepository().insert(make_order(), db) is False

    async def test_save_bumps_version(self) -> None:
        db = _db_returning(MagicMock(version=4, updated_at=_NOW))
        order = make_order(version=3, merchant_tracking={"tracking_number": "1Z"})

        await OrderRepository().save(order, db)

        assert order.version == 4
        params = _params(db)
        assert params["version"] == 3
        assert json.loads(params["merchant_tracking"]) == {"tracking_number": "1Z"}

    async def test_save_stale_version_raises(self) -> None:
        db = _db_returning(None)
        order = make_order(version=3)
        with pytest.raises(ConcurrentModificationError):
            await OrderRepository().save(order, db)
        assert order.version == 3

    async def test_append_timeline_event_dedupes(self) -> None:
        event = TimelineEvent(
            id="zinc_shipped_2024-03-01T12:00:00+00:00",
            type="shipped",
            timestamp=_NOW,
            source="zinc",
            data={"at": _NOW},
        )
        db = _db_returning(MagicMock(id=1), None)
        repo = OrderRepository()

        assert await repo.append_timeline_event("ord_1", event, db) is True
        assert await repo.append_timeline_event("ord_1", event, db) is False
        assert _params(db)["event_id"] == event.id
        # datetimes inside event data are serialized as strings
        assert json.loads(_params(db)["data"]) == {"at": str(_NOW)}

    async def test_sum_awaiting_funds(self) -> None:
        db = _db_returning(MagicMock(order_count=2, total_cost=11500))
        assert await OrderRepository().sum_awaiting_funds(db) == (2, 11500)


class TestFundingRepository:
    async def test_try_reserve_writes_entry(self) -> None:
        db = _db_returning(_make_account_row(), _make_entry_row())

        account = await FundingRepository().try_reserve(1, 4000, 10200, "ord_1", db)

        assert account is not None
        assert account.available_balance == 6000
        assert _params(db, 0) == {"account_id": 1, "amount": 4000, "required": 10200}
        entry = _params(db, 1)
        assert entry["entry_type"] == FundingEntryType.RESERVE.value
        assert entry["amount"] == -4000
        assert entry["balance_after"] == 6000

    async def test_try_reserve_refused(self) -> None:
        db = _db_returning(None)
        assert await FundingRepository().try_reserve(1, 4000, 10200, "ord_1", db) is None
        # no ledger entry for a refused reservation
        assert db.execute.await_count == 1

    async def test_settle_without_reservation_raises(self) -> None:
        db = _db_returning(None)
        with pytest.raises(InternalError):
            await FundingRepository().settle(1, 4000, "ord_1", db)

    async def test_release_credits_entry(self) -> None:
        db = _db_returning(
            _make_account_row(available_balance=10000, reserved_balance=0),
            _make_entry_row(entry_type="RELEASE", amount=4000, balance_after=10000),
        )
        account = await FundingRepository().release(1, 4000, "ord_1", db)
        assert account.reserved_balance == 0
        assert _params(db, 1)["entry_type"] == "RELEASE"
        assert _params(db, 1)["amount"] == 4000


class TestWorkQueueRepository:
    async def test_enqueue_duplicate_key(self) -> None:
        db = _db_returning(MagicMock(id=1), None)
        repo = WorkQueueRepository()
        first = await repo.enqueue("notify", "notify:ord_1:shipped", {}, _NOW, 5, db)
        second = await repo.enqueue("notify", "notify:ord_1:shipped", {}, _NOW, 5, db)
        assert (first, second) == (True, False)

    async def test_claim_due_orders_by_id(self) -> None:
        def _item_row(item_id: int) -> MagicMock:
            return MagicMock(
                id=item_id,
                kind="dispatch",
                dedupe_key=f"dispatch:ord_{item_id}:scheduled",
                payload=json.dumps({"order_id": f"ord_{item_id}"}),
                status="pending",
                attempts=1,
                max_attempts=5,
                next_run_at=_NOW,
                last_error=None,
                created_at=_NOW,
                updated_at=_NOW,
            )

        result = MagicMock()
        result.fetchall.return_value = [_item_row(7), _item_row(3)]
        db = AsyncMock()
        db.execute.return_value = result

        items = await WorkQueueRepository().claim_due(10, 300, db)

        assert [i.id for i in items] == [3, 7]
        assert items[0].payload == {"order_id": "ord_3"}

    async def test_reschedule_truncates_error(self) -> None:
        db = AsyncMock()
        await WorkQueueRepository().reschedule(1, "x" * 5000, _NOW, db)
        assert len(_params(db)["error"]) == 2000
