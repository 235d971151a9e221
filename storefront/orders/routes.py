"""Admin order routes."""

from __future__ import annotations

from datetime import datetime

from fastapi import FastAPI
from pydantic import BaseModel, ConfigDict, Field

from storefront.orders.models import OrderStatus
from storefront.orders.service import change_status, delete_order, order_stats, require_order
from storefront.store import CommerceStore


class OrderUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str | None = None
    delivered_at: datetime | None = Field(default=None, alias="deliveredAt")


def register_order_routes(app: FastAPI, store: CommerceStore) -> None:
    """Register /api/admin/orders*."""

    @app.get("/api/admin/orders")
    def list_orders(status: str | None = None, limit: int = 100):
        parsed = OrderStatus.parse(status) if status else None
        orders = store.list_orders(status=parsed, limit=max(1, min(limit, 500)))
        return {"success": True, "data": [o.to_dict() for o in orders]}

    # Registered before /{order_id} so "stats" is not read as an id.
    @app.get("/api/admin/orders/stats")
    def stats():
        return {"success": True, "data": order_stats(store)}

    @app.get("/api/admin/orders/{order_id}")
    def get_order(order_id: str):
        return {"success": True, "data": require_order(store, order_id).to_dict(detail=True)}

    @app.patch("/api/admin/orders/{order_id}")
    def update_order(order_id: str, body: OrderUpdate):
        order = change_status(store, order_id, body.status, body.delivered_at)
        return {"success": True, "data": order.to_dict(detail=True)}

    @app.delete("/api/admin/orders/{order_id}")
    def remove_order(order_id: str):
        delete_order(store, order_id)
        return {"success": True, "message": "Order deleted successfully"}
