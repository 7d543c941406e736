"""Tests for WebhookReconciler — idempotent, order-tolerant webhook handling."""

from datetime import timedelta
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from src.gf_common.datetime_utils import utc_now
from src.gf_common.enums import AlertType, OrderStatus, TimelineSource
from src.gf_common.errors import AuthenticationError, OrderNotFoundError
from src.gf_webhook.application.reconciler import WebhookReconciler
from src.gf_webhook.application.schemas import WebhookPayload
from src.gf_webhook.domain.events import (
    ProviderEventType,
    map_event_to_status,
    provider_event_id,
)
from tests.unit.fakes import Stack, make_order

_ALERTS = "src.gf_webhook.application.reconciler.write_alert"


def _update(event_type: str, at: str = "2026-01-02T10:00:00Z", **data: Any) -> dict[str, Any]:
    return {"type": event_type, "_created_at": at, "data": data}


def _payload(*updates: dict[str, Any], **extra: Any) -> WebhookPayload:
    return WebhookPayload.model_validate(
        {"request_id": "zinc_req_1", "status_updates": list(updates), **extra}
    )


def _setup(**order_fields: Any) -> tuple[Stack, WebhookReconciler]:
    stack = Stack()
    fields: dict[str, Any] = {
        "status": OrderStatus.PROCESSING.value,
        "fulfillment_request_id": "zinc_req_1",
        "dispatch_attempts": 1,
    }
    fields.update(order_fields)
    stack.orders.add(make_order(**fields))
    return stack, WebhookReconciler(ledger=stack.ledger, queue=stack.queue)


def _provider_events(stack: Stack) -> list[str]:
    return [e.id for e in stack.orders.events("ord_1") if e.source == TimelineSource.PROVIDER.value]


class TestEventMapping:
    def test_known_types(self) -> None:
        assert map_event_to_status(ProviderEventType.REQUEST_PLACED) == OrderStatus.PROCESSING
        assert map_event_to_status(ProviderEventType.SHIPMENT_SHIPPED) == OrderStatus.SHIPPED
        assert map_event_to_status(ProviderEventType.SHIPMENT_DELIVERED) == OrderStatus.DELIVERED

    def test_failed_with_internal_error_is_retryable(self) -> None:
        failed = ProviderEventType.REQUEST_FAILED
        assert map_event_to_status(failed, "internal_error") == OrderStatus.RETRY_PENDING
        assert map_event_to_status(failed, "invalid_address") == OrderStatus.FAILED

    def test_unknown_type_keeps_processing(self) -> None:
        event_type = ProviderEventType.parse("shipment.exploded")
        assert event_type == ProviderEventType.UNKNOWN
        assert map_event_to_status(event_type) == OrderStatus.PROCESSING


class TestPayloadSchema:
    def test_created_at_alias(self) -> None:
        payload = _payload(_update("request.placed", "2026-01-02T10:00:00Z"))
        assert payload.status_updates[0].timestamp.year == 2026

    def test_extra_fields_kept(self) -> None:
        payload = _payload(price_components={"total": 4000})
        assert payload.model_extra == {"price_components": {"total": 4000}}

    def test_missing_request_id_rejected(self) -> None:
        with pytest.raises(ValueError):
            WebhookPayload.model_validate({"status_updates": []})

    def test_timestamps_normalized_to_utc(self) -> None:
        payload = _payload(
            _update("request.placed", "2026-01-02T10:00:00"),
            _update("shipment.shipped", "2026-01-03T12:00:00+02:00"),
        )
        naive, offset = (u.timestamp for u in payload.status_updates)
        assert naive.utcoffset() == timedelta(0)
        assert offset.utcoffset() == timedelta(0)
        assert offset.hour == 10


class TestAuthentication:
    async def test_wrong_token(self) -> None:
        stack, reconciler = _setup()
        with pytest.raises(AuthenticationError):
            await reconciler.apply(_payload(_update("shipment.shipped")), "nope", stack.db)
        assert stack.orders.stored("ord_1").status == OrderStatus.PROCESSING.value
        stack.db.rollback.assert_awaited()

    async def test_missing_token(self) -> None:
        stack, reconciler = _setup()
        with pytest.raises(AuthenticationError):
            await reconciler.apply(_payload(_update("shipment.shipped")), None, stack.db)

    async def test_unknown_request_id(self) -> None:
        stack, reconciler = _setup(fulfillment_request_id="zinc_req_other")
        with pytest.raises(OrderNotFoundError):
            await reconciler.apply(_payload(_update("shipment.shipped")), "tok_1", stack.db)


class TestIdempotency:
    async def test_duplicate_event_in_one_payload_recorded_once(self) -> None:
        stack, reconciler = _setup()
        placed = _update("request.placed")

        resp = await reconciler.apply(_payload(placed, placed), "tok_1", stack.db)

        assert resp.success is True
        assert resp.new_events == 1
        assert resp.status_changed is False
        assert len(_provider_events(stack)) == 1

    async def test_redelivery_changes_nothing(self) -> None:
        stack, reconciler = _setup()
        payload = _payload(_update("shipment.shipped"))

        first = await reconciler.apply(payload, "tok_1", stack.db)
        version = stack.orders.stored("ord_1").version
        second = await reconciler.apply(payload, "tok_1", stack.db)

        assert first.status_changed is True
        assert second.success is True
        assert second.new_events == 0
        assert second.status_changed is False
        assert stack.orders.stored("ord_1").version == version
        assert len(_provider_events(stack)) == 1
        assert len(stack.queue_repo.of_kind("notify")) == 1
        stack.db.rollback.assert_awaited_once()

    async def test_event_id_is_deterministic(self) -> None:
        stack, reconciler = _setup()
        payload = _payload(_update("request.placed", "2026-01-02T10:00:00Z"))

        await reconciler.apply(payload, "tok_1", stack.db)

        expected = provider_event_id("request.placed", payload.status_updates[0].timestamp)
        assert _provider_events(stack) == [expected]


class TestStatusChanges:
    async def test_shipped_enqueues_one_notification(self) -> None:
        stack, reconciler = _setup()
        stack.orders.orders["ord_1"].merchant_tracking = {"114-1": {"tracking": ["1Z999"]}}

        resp = await reconciler.apply(_payload(_update("shipment.shipped")), "tok_1", stack.db)

        assert resp.status_changed is True
        assert resp.order is not None and resp.order.status == "shipped"
        item = stack.queue_repo.by_key("notify:ord_1:shipped")
        assert item is not None
        assert item.payload["status"] == "shipped"
        assert item.payload["status_data"]["tracking"] == {"114-1": {"tracking": ["1Z999"]}}
        stack.db.commit.assert_awaited_once()

    async def test_latest_update_wins_regardless_of_order_in_payload(self) -> None:
        stack, reconciler = _setup()
        payload = _payload(
            _update("shipment.delivered", "2026-01-05T10:00:00Z"),
            _update("shipment.shipped", "2026-01-03T10:00:00Z"),
        )

        resp = await reconciler.apply(payload, "tok_1", stack.db)

        assert resp.new_events == 2
        assert stack.orders.stored("ord_1").status == OrderStatus.DELIVERED.value
        assert stack.queue_repo.by_key("notify:ord_1:delivered") is not None
        assert stack.queue_repo.by_key("notify:ord_1:shipped") is None

    async def test_mixed_naive_and_aware_timestamps(self) -> None:
        stack, reconciler = _setup()
        payload = _payload(
            _update("shipment.delivered", "2026-01-05T10:00:00"),
            _update("shipment.shipped", "2026-01-03T10:00:00Z"),
        )

        resp = await reconciler.apply(payload, "tok_1", stack.db)

        assert resp.new_events == 2
        assert stack.orders.stored("ord_1").status == OrderStatus.DELIVERED.value

    async def test_stale_event_is_recorded_but_skipped(self) -> None:
        stack, reconciler = _setup(status=OrderStatus.SHIPPED.value)

        resp = await reconciler.apply(_payload(_update("request.placed")), "tok_1", stack.db)

        assert resp.success is True
        assert resp.new_events == 1
        assert resp.status_changed is False
        assert stack.orders.stored("ord_1").status == OrderStatus.SHIPPED.value
        assert len(_provider_events(stack)) == 1

    async def test_unknown_event_keeps_processing_and_alerts(self) -> None:
        stack, reconciler = _setup()

        with patch(_ALERTS, new_callable=AsyncMock) as alert:
            resp = await reconciler.apply(
                _payload(_update("shipment.teleported")), "tok_1", stack.db
            )

        assert resp.success is True
        assert stack.orders.stored("ord_1").status == OrderStatus.PROCESSING.value
        alert.assert_awaited_once()
        assert alert.await_args.args[0] == AlertType.UNMAPPED_PROVIDER_EVENT
        assert alert.await_args.kwargs["data"]["event_type"] == "shipment.teleported"

    async def test_permanent_failure_fails_order(self) -> None:
        stack, reconciler = _setup()

        await reconciler.apply(
            _payload(_update("request.failed", code="invalid_address")), "tok_1", stack.db
        )

        assert stack.orders.stored("ord_1").status == OrderStatus.FAILED.value
        assert stack.queue_repo.of_kind("dispatch") == []

    async def test_provider_cancellation(self) -> None:
        stack, reconciler = _setup()
        await reconciler.apply(_payload(_update("request.cancelled")), "tok_1", stack.db)
        assert stack.orders.stored("ord_1").status == OrderStatus.CANCELLED.value


class TestProviderRetry:
    async def test_internal_error_schedules_redispatch(self) -> None:
        stack, reconciler = _setup()
        before = utc_now()

        await reconciler.apply(
            _payload(_update("request.failed"), code="internal_error"), "tok_1", stack.db
        )

        stored = stack.orders.stored("ord_1")
        assert stored.status == OrderStatus.RETRY_PENDING.value
        # The request id is retired by the dispatch job, not here
        assert stored.fulfillment_request_id == "zinc_req_1"
        item = stack.queue_repo.by_key("dispatch:ord_1:attempt1")
        assert item is not None
        assert item.next_run_at >= before + timedelta(seconds=3600)
        assert item.next_run_at < before + timedelta(seconds=3700)

    async def test_code_in_update_data_counts(self) -> None:
        stack, reconciler = _setup(dispatch_attempts=2)

        await reconciler.apply(
            _payload(_update("request.failed", code="internal_error")), "tok_1", stack.db
        )

        item = stack.queue_repo.by_key("dispatch:ord_1:attempt2")
        assert item is not None
        assert item.next_run_at > utc_now() + timedelta(seconds=14000)

    async def test_exhausted_retries_fail_order(self) -> None:
        stack, reconciler = _setup(dispatch_attempts=4)

        await reconciler.apply(
            _payload(_update("request.failed"), code="internal_error"), "tok_1", stack.db
        )

        assert stack.orders.stored("ord_1").status == OrderStatus.FAILED.value
        assert stack.queue_repo.of_kind("dispatch") == []


class TestTracking:
    async def test_tracking_merged_and_recorded_once(self) -> None:
        stack, reconciler = _setup(status=OrderStatus.SHIPPED.value)
        payload = _payload(
            merchant_order_ids=[
                {
                    "merchant_order_id": "114-1",
                    "merchant": "amazon",
                    "tracking_url": "https://track.example/1Z999",
                    "tracking": ["1Z999"],
                },
                {"merchant_order_id": "114-2", "merchant": "amazon"},
            ]
        )

        first = await reconciler.apply(payload, "tok_1", stack.db)
        second = await reconciler.apply(payload, "tok_1", stack.db)

        stored = stack.orders.stored("ord_1")
        assert set(stored.merchant_tracking) == {"114-1", "114-2"}
        assert stored.merchant_tracking["114-1"]["tracking"] == ["1Z999"]
        tracking_events = [e.id for e in stack.orders.events("ord_1")]
        assert tracking_events == ["tracking_114-1"]
        assert first.new_events == 1
        assert second.new_events == 0
        assert stored.status == OrderStatus.SHIPPED.value
