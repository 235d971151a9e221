"""Tests for order administration: status machine, detail, stats, delete."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from freezegun import freeze_time

from storefront.errors import InputValidationError
from storefront.orders.models import ALLOWED_TRANSITIONS, OrderStatus, check_transition
from storefront.orders.service import change_status

URL = "/api/admin/orders"


class TestTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            (OrderStatus.PENDING, OrderStatus.PAID),
            (OrderStatus.PAID, OrderStatus.PROCESSING),
            (OrderStatus.PAID, OrderStatus.REFUNDED),
            (OrderStatus.PROCESSING, OrderStatus.DELIVERED),
            (OrderStatus.PROCESSING, OrderStatus.FAILED),
        ],
    )
    def test_allowed(self, current, target):
        check_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (OrderStatus.PAID, OrderStatus.PENDING),
            (OrderStatus.PENDING, OrderStatus.DELIVERED),
            (OrderStatus.DELIVERED, OrderStatus.PROCESSING),
            (OrderStatus.REFUNDED, OrderStatus.PAID),
        ],
    )
    def test_rejected(self, current, target):
        with pytest.raises(InputValidationError, match="Allowed transitions"):
            check_transition(current, target)

    @pytest.mark.parametrize("terminal", [OrderStatus.DELIVERED, OrderStatus.FAILED, OrderStatus.REFUNDED])
    def test_terminal_statuses(self, terminal):
        assert ALLOWED_TRANSITIONS[terminal] == frozenset()
        with pytest.raises(InputValidationError, match="terminal"):
            check_transition(terminal, OrderStatus.PAID)

    def test_table_covers_every_status(self):
        assert set(ALLOWED_TRANSITIONS) == set(OrderStatus)


class TestUpdateStatus:
    def test_paid_to_processing(self, client, store):
        order = store.seed_order(OrderStatus.PAID)

        resp = client.patch(f"{URL}/{order.id}", json={"status": "processing"})

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["status"] == "processing"
        assert data["statusHistory"][-1]["fromStatus"] == "paid"
        assert data["statusHistory"][-1]["toStatus"] == "processing"

    def test_disallowed_transition_rejected(self, client, store):
        order = store.seed_order(OrderStatus.PAID)

        resp = client.patch(f"{URL}/{order.id}", json={"status": "pending"})

        assert resp.status_code == 400
        assert resp.json()["error"].startswith('Cannot change status from "paid" to "pending"')
        assert store.orders[order.id].status == OrderStatus.PAID
        assert store.history == []

    def test_invalid_status_name(self, client, store):
        order = store.seed_order(OrderStatus.PAID)
        resp = client.patch(f"{URL}/{order.id}", json={"status": "shipped"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid status: shipped"

    @freeze_time("2026-04-02 09:30:00")
    def test_delivered_stamps_now(self, store):
        order = store.seed_order(OrderStatus.PROCESSING)
        change_status(store, order.id, "delivered")
        assert store.orders[order.id].delivered_at == datetime(2026, 4, 2, 9, 30, tzinfo=timezone.utc)

    def test_delivered_at_from_body(self, client, store):
        order = store.seed_order(OrderStatus.PROCESSING)
        resp = client.patch(
            f"{URL}/{order.id}",
            json={"status": "delivered", "deliveredAt": "2026-04-01T08:00:00+00:00"},
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["deliveredAt"] == "2026-04-01T08:00:00+00:00"

    def test_delivered_at_ignored_for_other_targets(self, client, store):
        order = store.seed_order(OrderStatus.PAID)
        resp = client.patch(
            f"{URL}/{order.id}",
            json={"status": "processing", "deliveredAt": "2026-04-01T08:00:00+00:00"},
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["deliveredAt"] is None
        assert store.orders[order.id].delivered_at is None

    def test_no_status_is_noop(self, client, store):
        order = store.seed_order(OrderStatus.PAID)
        resp = client.patch(f"{URL}/{order.id}", json={})
        assert resp.status_code == 200
        assert resp.json()["data"]["status"] == "paid"
        assert store.history == []

    def test_unknown_order(self, client):
        resp = client.patch(f"{URL}/missing", json={"status": "paid"})
        assert resp.status_code == 404


class TestReadAndDelete:
    def test_list_newest_first(self, client, store):
        first = store.seed_order(OrderStatus.PAID)
        second = store.seed_order(OrderStatus.PENDING)
        resp = client.get(URL)
        assert [o["id"] for o in resp.json()["data"]] == [second.id, first.id]

    def test_list_filtered(self, client, store):
        store.seed_order(OrderStatus.PAID)
        pending = store.seed_order(OrderStatus.PENDING)
        resp = client.get(URL, params={"status": "pending"})
        assert [o["id"] for o in resp.json()["data"]] == [pending.id]

    def test_list_bad_filter(self, client):
        assert client.get(URL, params={"status": "lost"}).status_code == 400

    def test_detail_includes_items(self, client, store, product, make_order_payload, signed_delivery):
        body, headers = signed_delivery(make_order_payload(custom_data={"productSlug": product.slug}))
        client.post("/api/webhooks/lemonsqueezy", content=body, headers=headers)
        [order] = store.orders.values()

        resp = client.get(f"{URL}/{order.id}")

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["externalOrderId"] == "5501"
        assert data["items"][0]["productName"] == "Mid-Range Spreader Bars"
        assert data["metadata"]["custom_data"]["productSlug"] == product.slug

    def test_detail_unknown(self, client):
        resp = client.get(f"{URL}/missing")
        assert resp.status_code == 404
        assert resp.json() == {"success": False, "error": "Order not found: missing"}

    def test_delete(self, client, store):
        order = store.seed_order(OrderStatus.FAILED)
        resp = client.delete(f"{URL}/{order.id}")
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert order.id not in store.orders

    def test_delete_unknown(self, client):
        assert client.delete(f"{URL}/missing").status_code == 404


class TestStats:
    def test_stats(self, client, store):
        store.seed_order(OrderStatus.PENDING, total=999.0)
        store.seed_order(OrderStatus.PAID, total=100.0)
        store.seed_order(OrderStatus.PROCESSING, total=50.0)
        store.seed_order(OrderStatus.DELIVERED, total=25.5)
        store.seed_order(OrderStatus.REFUNDED, total=70.0)
        store.seed_order(OrderStatus.FAILED, total=30.0)

        resp = client.get(f"{URL}/stats")

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["totalOrders"] == 6
        assert data["totalRevenue"] == 175.5
        assert "pending" not in data["statusCounts"]
        assert data["statusCounts"]["refunded"] == 1
        assert len(data["recentOrders"]) == 5
        assert data["recentOrders"][0]["status"] == "failed"

    def test_empty(self, client):
        data = client.get(f"{URL}/stats").json()["data"]
        assert data["totalOrders"] == 0
        assert data["totalRevenue"] == 0
        assert data["recentOrders"] == []
