"""Admin order operations: status transitions and statistics."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from storefront.errors import NotFoundError
from storefront.orders.models import REVENUE_STATUSES, Order, OrderStatus, check_transition
from storefront.store import CommerceStore

logger = logging.getLogger(__name__)

RECENT_ORDERS_LIMIT = 5


def require_order(store: CommerceStore, order_id: str) -> Order:
    order = store.get_order(order_id)
    if order is None:
        raise NotFoundError("Order", order_id)
    return order


def change_status(
    store: CommerceStore,
    order_id: str,
    status: str | None,
    delivered_at: datetime | None = None,
) -> Order:
    """Move an order forward and return the refreshed order.

    Moving to delivered stamps delivered_at with the given time or now.
    A delivered_at sent with any other target is ignored.
    """
    order = require_order(store, order_id)
    if status is None:
        return order

    target = OrderStatus.parse(status)
    check_transition(order.status, target)

    now = datetime.now(timezone.utc)
    delivered_at = (delivered_at or now) if target == OrderStatus.DELIVERED else None
    paid_at = now if target == OrderStatus.PAID and order.paid_at is None else None

    store.set_order_status(
        order.id,
        order.status,
        target,
        changed_at=now,
        paid_at=paid_at,
        delivered_at=delivered_at,
    )
    logger.info("Order %s updated: %s -> %s", order.order_number, order.status.value, target.value)
    return require_order(store, order_id)


def delete_order(store: CommerceStore, order_id: str) -> None:
    if not store.delete_order(order_id):
        raise NotFoundError("Order", order_id)
    logger.info("Order deleted: %s", order_id)


def order_stats(store: CommerceStore) -> dict[str, Any]:
    counts = store.count_orders_by_status()
    status_counts = {
        s.value: counts.get(s.value, 0) for s in OrderStatus if s != OrderStatus.PENDING
    }
    return {
        "totalOrders": sum(counts.values()),
        "statusCounts": status_counts,
        "totalRevenue": store.revenue(REVENUE_STATUSES),
        "recentOrders": [o.to_dict() for o in store.recent_orders(RECENT_ORDERS_LIMIT)],
    }
