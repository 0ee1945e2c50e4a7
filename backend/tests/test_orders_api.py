"""
API Integration Tests — Order lookup, history and status endpoints.
"""

import pytest
from httpx import AsyncClient

from api.deps import get_current_user
from api.main import app

CUSTOMER = {"sub": "cust-1", "email": "ada@example.com", "roles": []}


@pytest.fixture
def place_order(client: AsyncClient, seeded_product, checkout_payload):
    async def _place(*items, email: str = "ada@example.com") -> dict:
        resp = await client.post("/api/v1/checkout", json=checkout_payload(*(items or [("BLU-L", 1)]), email=email))
        assert resp.status_code == 201
        return resp.json()

    return _place


def _act_as(user: dict) -> None:
    app.dependency_overrides[get_current_user] = lambda: user


@pytest.mark.asyncio
class TestOrderLookup:
    async def test_unknown_order_is_404(self, client: AsyncClient):
        resp = await client.get("/api/v1/orders/VG-NOPE-0000")
        assert resp.status_code == 404
        assert resp.json()["error"] == "OrderNotFound"

    async def test_list_orders_filters_by_status(self, client: AsyncClient, place_order):
        first = await place_order()
        await place_order()
        await client.patch(f"/api/v1/orders/{first['order_number']}/status", json={"status": "cancelled"})

        all_orders = (await client.get("/api/v1/orders/")).json()
        cancelled = (await client.get("/api/v1/orders/", params={"status": "cancelled"})).json()

        assert len(all_orders) == 2
        assert [o["order_number"] for o in cancelled] == [first["order_number"]]

    async def test_list_orders_rejects_unknown_status(self, client: AsyncClient):
        resp = await client.get("/api/v1/orders/", params={"status": "lost"})
        assert resp.status_code == 400

    async def test_summary(self, client: AsyncClient, place_order):
        await place_order(("RED-M", 2))
        resp = await client.get("/api/v1/orders/summary")
        assert resp.status_code == 200
        data = resp.json()
        assert data["total_orders"] == 1
        assert data["by_status"]["processing"] == 1
        assert data["by_status"]["cancelled"] == 0
        assert data["revenue"] == pytest.approx(49.19)

    async def test_customer_sees_own_history(self, client: AsyncClient, place_order):
        await place_order(email="ada@example.com")
        await place_order(email="grace@example.com")

        _act_as(CUSTOMER)
        own = await client.get("/api/v1/orders/history/Ada@Example.com")
        other = await client.get("/api/v1/orders/history/grace@example.com")

        assert own.status_code == 200
        assert len(own.json()) == 1
        assert other.status_code == 403

    async def test_admin_endpoints_require_admin(self, client: AsyncClient):
        _act_as(CUSTOMER)
        assert (await client.get("/api/v1/orders/")).status_code == 403
        assert (await client.get("/api/v1/orders/summary")).status_code == 403
        resp = await client.patch("/api/v1/orders/VG-ANY-0000/status", json={"status": "shipped"})
        assert resp.status_code == 403


@pytest.mark.asyncio
class TestStatusUpdates:
    async def test_ship_with_tracking_notifies_customer(self, client: AsyncClient, place_order, notifier):
        order = await place_order()
        resp = await client.patch(
            f"/api/v1/orders/{order['order_number']}/status",
            json={"status": "shipped", "tracking_number": "1Z999", "carrier": "UPS"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "shipped"
        assert data["tracking_number"] == "1Z999"
        assert data["shipped_at"] is not None
        assert notifier.shipping_updates == [(order["order_number"], "shipped")]

    async def test_invalid_transition_is_409(self, client: AsyncClient, place_order, notifier):
        order = await place_order()
        number = order["order_number"]
        await client.patch(f"/api/v1/orders/{number}/status", json={"status": "shipped"})

        resp = await client.patch(f"/api/v1/orders/{number}/status", json={"status": "cancelled"})
        assert resp.status_code == 409
        assert resp.json()["error"] == "InvalidTransition"

        current = (await client.get(f"/api/v1/orders/{number}")).json()
        assert current["status"] == "shipped"
        assert notifier.shipping_updates == [(number, "shipped")]

    async def test_unknown_status_is_rejected(self, client: AsyncClient, place_order):
        order = await place_order()
        resp = await client.patch(f"/api/v1/orders/{order['order_number']}/status", json={"status": "teleported"})
        assert resp.status_code == 409

    async def test_notification_failure_keeps_status(self, client: AsyncClient, place_order, notifier):
        order = await place_order()
        notifier.fail = True
        resp = await client.patch(f"/api/v1/orders/{order['order_number']}/status", json={"status": "shipped"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "shipped"
