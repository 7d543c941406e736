"""Tests for the outbound adapters: fulfillment provider, notifications, Stripe."""

import json
from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import pytest
import stripe

from src.gf_common.errors import (
    FulfillmentProviderError,
    NotificationError,
    PaymentProcessorError,
    ValidationError,
)
from src.gf_fulfillment.domain.models import FulfillmentRequest, fulfillment_products
from src.gf_fulfillment.infrastructure.zinc_client import ZincFulfillmentClient, build_order_body
from src.gf_notification.client import NotificationClient
from src.gf_payment.infrastructure.stripe_processor import StripePaymentProcessor

_REQUEST = FulfillmentRequest(
    order_id="ord_1",
    idempotency_key="ord_1-1",
    line_items=[{"product_id": "B00TEST", "quantity": 2, "title": "Mug"}],
    shipping_address={"first_name": "Ada", "zip_code": "94107"},
    max_price=4000,
    webhook_url="https://gifts.example/api/v1/webhooks/fulfillment?token=tok_1",
    client_notes={"attempt": 1},
)


def _zinc(handler: object) -> ZincFulfillmentClient:
    return ZincFulfillmentClient(
        base_url="https://zinc.test/v1", api_key="key", transport=httpx.MockTransport(handler)
    )


class TestBuildOrderBody:
    def test_products_and_webhooks(self) -> None:
        body = build_order_body(_REQUEST, "amazon")
        assert body["products"] == [{"product_id": "B00TEST", "quantity": 2}]
        assert body["idempotency_key"] == "ord_1-1"
        assert body["max_price"] == 4000
        assert set(body["webhooks"].values()) == {_REQUEST.webhook_url}
        assert body["client_notes"] == {"order_id": "ord_1", "attempt": 1}

    def test_id_stands_in_for_product_id(self) -> None:
        request = replace(_REQUEST, line_items=[{"id": "B00LOST"}])
        assert build_order_body(request, "amazon")["products"] == [
            {"product_id": "B00LOST", "quantity": 1}
        ]

    @pytest.mark.parametrize(
        "line_items",
        [
            [],
            [{"quantity": 1}],
            ["B00TEST"],
            [{"product_id": "B00TEST", "quantity": "two"}],
            [{"product_id": "B00TEST", "quantity": 0}],
        ],
    )
    def test_malformed_items_are_rejected(self, line_items: list) -> None:
        with pytest.raises(ValidationError):
            fulfillment_products(line_items)


class TestZincClient:
    async def test_success_returns_request_id(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"request_id": "zinc_req_9"})

        submission = await _zinc(handler).submit(_REQUEST)

        assert submission.request_id == "zinc_req_9"
        assert seen[0].url.path == "/v1/orders"
        assert seen[0].headers["authorization"].startswith("Basic ")
        assert json.loads(seen[0].content)["retailer"] == "amazon"

    async def test_server_error_is_retryable(self) -> None:
        client = _zinc(lambda request: httpx.Response(503, text="unavailable"))
        with pytest.raises(FulfillmentProviderError) as exc_info:
            await client.submit(_REQUEST)
        assert exc_info.value.retryable is True

    async def test_rate_limit_is_retryable(self) -> None:
        client = _zinc(lambda request: httpx.Response(429))
        with pytest.raises(FulfillmentProviderError) as exc_info:
            await client.submit(_REQUEST)
        assert exc_info.value.retryable is True

    async def test_client_error_is_final(self) -> None:
        client = _zinc(lambda request: httpx.Response(400, text="bad product"))
        with pytest.raises(FulfillmentProviderError) as exc_info:
            await client.submit(_REQUEST)
        assert exc_info.value.retryable is False
        assert "bad product" in exc_info.value.message

    async def test_error_body_with_200(self) -> None:
        client = _zinc(
            lambda request: httpx.Response(
                200, json={"code": "invalid_quantity", "message": "too many"}
            )
        )
        with pytest.raises(FulfillmentProviderError, match="invalid_quantity: too many"):
            await client.submit(_REQUEST)

    async def test_internal_error_body_is_retryable(self) -> None:
        client = _zinc(lambda request: httpx.Response(200, json={"code": "internal_error"}))
        with pytest.raises(FulfillmentProviderError) as exc_info:
            await client.submit(_REQUEST)
        assert exc_info.value.retryable is True

    async def test_transport_error_is_retryable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(FulfillmentProviderError) as exc_info:
            await _zinc(handler).submit(_REQUEST)
        assert exc_info.value.retryable is True

    async def test_non_object_response_is_final(self) -> None:
        client = _zinc(lambda request: httpx.Response(200, json=[{"request_id": "zinc_req_9"}]))
        with pytest.raises(FulfillmentProviderError, match="not a JSON object") as exc_info:
            await client.submit(_REQUEST)
        assert exc_info.value.retryable is False


class TestNotificationClient:
    async def test_posts_status_update(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(202)

        client = NotificationClient(
            url="https://notify.test/events", transport=httpx.MockTransport(handler)
        )
        await client.send_status_update("ord_1", "shipped", {"tracking": {"a": 1}})

        assert bodies == [
            {
                "eventType": "order_status_update",
                "orderId": "ord_1",
                "newStatus": "shipped",
                "statusData": {"tracking": {"a": 1}},
            }
        ]

    async def test_no_url_only_logs(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("must not send")

        client = NotificationClient(url="", transport=httpx.MockTransport(handler))
        await client.send_status_update("ord_1", "shipped", {})

    async def test_server_error_is_retryable(self) -> None:
        client = NotificationClient(
            url="https://notify.test/events",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        with pytest.raises(NotificationError) as exc_info:
            await client.send_status_update("ord_1", "shipped", {})
        assert exc_info.value.retryable is True

    async def test_client_error_is_final(self) -> None:
        client = NotificationClient(
            url="https://notify.test/events",
            transport=httpx.MockTransport(lambda request: httpx.Response(404)),
        )
        with pytest.raises(NotificationError) as exc_info:
            await client.send_status_update("ord_1", "shipped", {})
        assert exc_info.value.retryable is False


def _intent(status: str = "succeeded", received: int = 4000) -> SimpleNamespace:
    return SimpleNamespace(
        id="pi_1",
        amount=4000,
        amount_received=received,
        currency="usd",
        status=status,
        metadata={"cart_items": "[]"},
    )


class TestStripeProcessor:
    async def test_capture(self) -> None:
        with patch("stripe.PaymentIntent.capture", MagicMock(return_value=_intent())) as capture:
            result = await StripePaymentProcessor(api_key="sk_test").capture("pi_1", 4000)

        assert result.amount_captured == 4000
        assert result.status == "succeeded"
        capture.assert_called_once_with("pi_1", api_key="sk_test", amount_to_capture=4000)

    async def test_connection_error_is_retryable(self) -> None:
        error = stripe.APIConnectionError("network down")
        with patch("stripe.PaymentIntent.capture", MagicMock(side_effect=error)):
            with pytest.raises(PaymentProcessorError) as exc_info:
                await StripePaymentProcessor(api_key="sk_test").capture("pi_1")
        assert exc_info.value.retryable is True

    async def test_card_error_is_final(self) -> None:
        error = stripe.CardError("Your card was declined.", None, "card_declined")
        with patch("stripe.PaymentIntent.capture", MagicMock(side_effect=error)):
            with pytest.raises(PaymentProcessorError) as exc_info:
                await StripePaymentProcessor(api_key="sk_test").capture("pi_1")
        assert exc_info.value.retryable is False

    async def test_already_captured_is_success(self) -> None:
        error = stripe.InvalidRequestError(
            "already captured", None, code="payment_intent_unexpected_state"
        )
        with (
            patch("stripe.PaymentIntent.capture", MagicMock(side_effect=error)),
            patch("stripe.PaymentIntent.retrieve", MagicMock(return_value=_intent())),
        ):
            result = await StripePaymentProcessor(api_key="sk_test").capture("pi_1")
        assert result.amount_captured == 4000

    async def test_retrieve_missing_is_none(self) -> None:
        error = stripe.InvalidRequestError("No such intent", "id", code="resource_missing")
        with patch("stripe.PaymentIntent.retrieve", MagicMock(side_effect=error)):
            assert await StripePaymentProcessor(api_key="sk_test").retrieve("pi_x") is None

    async def test_retrieve_maps_details(self) -> None:
        with patch("stripe.PaymentIntent.retrieve", MagicMock(return_value=_intent())):
            details = await StripePaymentProcessor(api_key="sk_test").retrieve("pi_1")
        assert details is not None
        assert details.is_captured
        assert details.metadata == {"cart_items": "[]"}

    async def test_void_cancels_intent(self) -> None:
        cancel = MagicMock(return_value=_intent("canceled"))
        with patch("stripe.PaymentIntent.cancel", cancel):
            await StripePaymentProcessor(api_key="sk_test").void("pi_1")
        cancel.assert_called_once_with("pi_1", api_key="sk_test")
