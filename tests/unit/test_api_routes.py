"""HTTP-level tests for the routers, with services and the DB session mocked."""

from collections.abc import AsyncIterator, Iterator
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient

from src.gf_admin.application.schemas import AdminActionResponse
from src.gf_common.database import get_db_session
from src.gf_common.errors import AuthenticationError, OrderNotFoundError
from src.gf_funding.application.schemas import FundsRetrySummary
from src.gf_gateway.auth.jwt_handler import ROLE_ADMIN, create_access_token
from src.gf_ledger.domain.models import Order
from src.gf_webhook.application.schemas import WebhookResponse
from src.main import app


async def _fake_session() -> AsyncIterator[AsyncMock]:
    yield AsyncMock()


@pytest.fixture(autouse=True)
def _no_database() -> Iterator[None]:
    app.dependency_overrides[get_db_session] = _fake_session
    yield
    app.dependency_overrides.pop(get_db_session, None)


def _bearer(role: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token('ops@example.com', role=role)}"}


class TestHealth:
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.headers["X-Request-ID"].startswith("req_")


class TestWebhookRoute:
    _URL = "/api/v1/webhooks/fulfillment"

    async def test_accepted(self, client: AsyncClient) -> None:
        with patch("src.gf_webhook.api.router._reconciler") as reconciler:
            reconciler.apply = AsyncMock(return_value=WebhookResponse(success=True, new_events=1))
            resp = await client.post(
                self._URL, params={"token": "tok_1"}, json={"request_id": "zinc_req_1"}
            )

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert reconciler.apply.await_args.args[1] == "tok_1"

    async def test_bad_token_is_401_in_provider_shape(self, client: AsyncClient) -> None:
        with patch("src.gf_webhook.api.router._reconciler") as reconciler:
            reconciler.apply = AsyncMock(side_effect=AuthenticationError("Invalid webhook token"))
            resp = await client.post(self._URL, json={"request_id": "zinc_req_1"})

        assert resp.status_code == 401
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "Invalid webhook token"

    async def test_unknown_request_is_404(self, client: AsyncClient) -> None:
        with patch("src.gf_webhook.api.router._reconciler") as reconciler:
            reconciler.apply = AsyncMock(side_effect=OrderNotFoundError("zinc_req_x"))
            resp = await client.post(
                self._URL, params={"token": "t"}, json={"request_id": "zinc_req_x"}
            )
        assert resp.status_code == 404

    async def test_malformed_payload_is_422(self, client: AsyncClient) -> None:
        resp = await client.post(self._URL, json={"status_updates": "nope"})
        assert resp.status_code == 422


class TestAdminRoute:
    _URL = "/api/v1/admin/orders/actions"

    async def test_missing_token_is_401(self, client: AsyncClient) -> None:
        resp = await client.post(self._URL, json={"action": "reconcile"})
        assert resp.status_code == 401
        assert resp.json()["code"] == 1002

    async def test_action_passes_through(self, client: AsyncClient) -> None:
        result = AdminActionResponse(success=True, action="fail", result={"orderId": "ord_1"})
        with patch("src.gf_admin.api.router._service") as service:
            service.execute = AsyncMock(return_value=result)
            resp = await client.post(
                self._URL,
                json={"action": "fail", "orderId": "ord_1"},
                headers=_bearer(ROLE_ADMIN),
            )

        assert resp.status_code == 200
        assert resp.json()["result"] == {"orderId": "ord_1"}
        principal = service.execute.await_args.args[0]
        assert principal.subject == "ops@example.com"
        assert principal.is_admin

    async def test_missing_order_id_is_422(self, client: AsyncClient) -> None:
        resp = await client.post(
            self._URL, json={"action": "retry"}, headers=_bearer(ROLE_ADMIN)
        )
        assert resp.status_code == 422


class TestFundingRoutes:
    async def test_service_role_cannot_trigger_retry(self, client: AsyncClient) -> None:
        resp = await client.post("/api/v1/funding/retry", headers=_bearer("service"))
        assert resp.status_code == 403
        assert resp.json()["code"] == 1003

    async def test_retry_returns_summary(self, client: AsyncClient) -> None:
        summary = FundsRetrySummary(zma_balance=20000, total_awaiting=0)
        with patch("src.gf_funding.api.router._retry_job") as job:
            job.run = AsyncMock(return_value=summary)
            resp = await client.post(
                "/api/v1/funding/retry", json={"maxOrders": 5}, headers=_bearer(ROLE_ADMIN)
            )

        assert resp.status_code == 200
        assert resp.json()["zma_balance"] == 20000
        assert job.run.await_args.args[1] == 5


class TestOrderRoutes:
    async def test_get_order(self, client: AsyncClient) -> None:
        order = Order(id="ord_1", payment_ref="pi_1", total_amount=4000)
        with patch("src.gf_ledger.api.router._service") as service:
            service.get_order_with_timeline = AsyncMock(return_value=order)
            resp = await client.get("/api/v1/orders/ord_1", headers=_bearer(ROLE_ADMIN))

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["id"] == "ord_1"
        assert data["total_amount_display"] == "$40.00"

    async def test_unknown_order_envelope(self, client: AsyncClient) -> None:
        with patch("src.gf_ledger.api.router._service") as service:
            service.get_order_with_timeline = AsyncMock(side_effect=OrderNotFoundError("ord_x"))
            resp = await client.get("/api/v1/orders/ord_x", headers=_bearer(ROLE_ADMIN))

        assert resp.status_code == 404
        assert resp.json()["code"] == 4004
