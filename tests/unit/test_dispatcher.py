"""Tests for FulfillmentDispatcher — admit, submit, record."""

import asyncio

import pytest

from src.gf_common.enums import ContributionStatus, FundingEntryType, OrderStatus, TransitionCause
from src.gf_common.errors import (
    ConflictError,
    FulfillmentProviderError,
    OrderNotFoundError,
    ValidationError,
)
from src.gf_fulfillment.domain.models import FulfillmentRequest, FulfillmentSubmission
from src.gf_payment.domain.models import Contribution
from tests.unit.fakes import (
    FakeFulfillmentProvider,
    InMemoryOrderRepository,
    Stack,
    make_order,
)


class FlakyProvider:
    """Fails `failures` times with a retryable error, then accepts."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def submit(self, request: FulfillmentRequest) -> FulfillmentSubmission:
        self.calls += 1
        if self.calls <= self.failures:
            raise FulfillmentProviderError("HTTP 503", retryable=True)
        return FulfillmentSubmission(request_id="zinc_req_flaky")


class BrokenProvider:
    """Raises something other than a provider error from inside submit."""

    def __init__(self, exc: BaseException) -> None:
        self.exc = exc

    async def submit(self, request: FulfillmentRequest) -> FulfillmentSubmission:
        raise self.exc


class TestDispatchSuccess:
    async def test_moves_to_processing_with_request_id(self) -> None:
        stack = Stack(available=20000)
        stack.orders.add(make_order(total_amount=4000))

        result = await stack.dispatcher.dispatch("ord_1", stack.db)

        assert result.dispatched is True
        assert result.fulfillment_request_id == "zinc_req_1"
        assert result.required_funds == 10200
        stored = stack.orders.stored("ord_1")
        assert stored.status == OrderStatus.PROCESSING.value
        assert stored.fulfillment_request_id == "zinc_req_1"
        assert stored.dispatch_attempts == 1
        # Admission commit and outcome commit
        assert stack.db.commit.await_count == 2

    async def test_request_carries_idempotency_key_and_webhook_token(self) -> None:
        stack = Stack(available=20000)
        stack.orders.add(make_order(total_amount=4000, webhook_token="tok_abc"))

        await stack.dispatcher.dispatch("ord_1", stack.db)

        request = stack.provider.requests[0]
        assert request.idempotency_key == "ord_1-1"
        assert request.max_price == 4000
        assert request.webhook_url.endswith("?token=tok_abc")
        assert request.line_items == [{"product_id": "B00TEST", "quantity": 1}]

    async def test_status_timeline_records_dispatch(self) -> None:
        stack = Stack(available=20000)
        stack.orders.add(make_order())

        await stack.dispatcher.dispatch("ord_1", stack.db)

        events = stack.orders.events("ord_1")
        assert [e.type for e in events] == ["status.processing"]
        assert events[0].data["cause"] == TransitionCause.DISPATCH.value
        assert events[0].data["request_id"] == "zinc_req_1"

    async def test_transient_provider_errors_are_retried(self) -> None:
        stack = Stack(available=20000, provider=FlakyProvider(failures=2))
        stack.orders.add(make_order())

        result = await stack.dispatcher.dispatch("ord_1", stack.db)

        assert result.dispatched is True
        assert stack.provider.calls == 3


class TestDispatchFailure:
    async def test_failure_releases_reservation_and_fails_order(self) -> None:
        provider = FakeFulfillmentProvider(
            error=FulfillmentProviderError("HTTP 400: bad address", retryable=False)
        )
        stack = Stack(available=20000, provider=provider)
        stack.orders.add(make_order(total_amount=4000))

        result = await stack.dispatcher.dispatch("ord_1", stack.db)

        assert result.dispatched is False
        assert result.status == OrderStatus.FAILED.value
        assert "bad address" in (result.reason or "")
        # Non-retryable: one call only
        assert len(stack.provider.requests) == 1
        account = stack.funding_repo.account
        assert account.available_balance == 20000
        assert account.reserved_balance == 0
        assert [e.entry_type for e in stack.funding_repo.entries] == [
            FundingEntryType.RESERVE.value,
            FundingEntryType.RELEASE.value,
        ]
        stored = stack.orders.stored("ord_1")
        assert stored.status == OrderStatus.FAILED.value
        assert stored.reserved_amount == 0
        assert stored.fulfillment_request_id is None

    @pytest.mark.parametrize(
        "exc",
        [KeyError("product_id"), asyncio.CancelledError()],
        ids=["crash", "cancelled"],
    )
    async def test_aborted_submission_releases_reservation(self, exc: BaseException) -> None:
        stack = Stack(available=20000, provider=BrokenProvider(exc))
        stack.orders.add(make_order(total_amount=4000))

        with pytest.raises(type(exc)):
            await stack.dispatcher.dispatch("ord_1", stack.db)

        account = stack.funding_repo.account
        assert account.available_balance == 20000
        assert account.reserved_balance == 0
        stored = stack.orders.stored("ord_1")
        assert stored.status == OrderStatus.FAILED.value
        assert stored.reserved_amount == 0
        events = stack.orders.events("ord_1")
        assert "submission aborted" in events[-1].data["error"]


class TestDispatchGuards:
    async def test_processing_order_is_not_dispatchable(self) -> None:
        stack = Stack(available=20000)
        stack.orders.add(make_order(status=OrderStatus.PROCESSING.value))

        with pytest.raises(ConflictError, match="not dispatchable"):
            await stack.dispatcher.dispatch("ord_1", stack.db)
        stack.db.rollback.assert_awaited_once()

    async def test_active_request_blocks_second_dispatch(self) -> None:
        stack = Stack(available=20000)
        stack.orders.add(make_order(fulfillment_request_id="zinc_req_old"))

        with pytest.raises(ConflictError, match="active request"):
            await stack.dispatcher.dispatch("ord_1", stack.db)
        assert stack.provider.requests == []

    async def test_in_flight_reservation_blocks_second_dispatch(self) -> None:
        stack = Stack(available=20000)
        stack.orders.add(make_order(reserved_amount=4000))

        with pytest.raises(ConflictError, match="in flight"):
            await stack.dispatcher.dispatch("ord_1", stack.db)

    async def test_malformed_line_items_refused_before_reserving(self) -> None:
        stack = Stack(available=20000)
        stack.orders.add(make_order(line_items=[{"quantity": 1}]))

        with pytest.raises(ValidationError, match="no product_id"):
            await stack.dispatcher.dispatch("ord_1", stack.db)

        assert stack.funding_repo.entries == []
        assert stack.provider.requests == []
        stored = stack.orders.stored("ord_1")
        assert stored.status == OrderStatus.PAYMENT_CONFIRMED.value
        assert stored.reserved_amount == 0

    async def test_unknown_order(self) -> None:
        stack = Stack(available=20000)
        with pytest.raises(OrderNotFoundError):
            await stack.dispatcher.dispatch("ord_missing", stack.db)

    async def test_group_gift_requires_full_capture(self) -> None:
        stack = Stack(available=20000)
        stack.orders.add(make_order(total_amount=5000, group_project_id="proj_1"))
        stack.contributions.add(
            Contribution(
                id="ctb_1",
                project_id="proj_1",
                contributor_id="u1",
                payment_ref="pi_c1",
                amount=2500,
                status=ContributionStatus.CAPTURED.value,
            )
        )
        stack.contributions.add(
            Contribution(
                id="ctb_2",
                project_id="proj_1",
                contributor_id="u2",
                payment_ref="pi_c2",
                amount=2500,
                status=ContributionStatus.FAILED.value,
            )
        )

        with pytest.raises(ConflictError, match="2500 != order total 5000"):
            await stack.dispatcher.dispatch("ord_1", stack.db)
        assert stack.provider.requests == []
        assert stack.funding_repo.account.available_balance == 20000


class TestOutcomeAfterCancel:
    async def test_acceptance_after_cancel_flags_review(self) -> None:
        orders = InMemoryOrderRepository()

        class CancellingProvider:
            async def submit(self, request: FulfillmentRequest) -> FulfillmentSubmission:
                # An operator cancels while the provider call is in flight
                stored = orders.stored(request.order_id)
                stored.status = OrderStatus.CANCELLED.value
                stored.version += 1
                return FulfillmentSubmission(request_id="zinc_req_late")

        stack = Stack(available=20000, orders=orders, provider=CancellingProvider())
        stack.orders.add(make_order())

        result = await stack.dispatcher.dispatch("ord_1", stack.db)

        stored = stack.orders.stored("ord_1")
        assert result.status == OrderStatus.CANCELLED.value
        assert stored.status == OrderStatus.CANCELLED.value
        assert stored.needs_manual_review is True
        assert "zinc_req_late" in (stored.manual_review_reason or "")
        assert stored.reserved_amount == 0
