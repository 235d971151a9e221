"""Order records and the order status machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from storefront.errors import InputValidationError


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    DELIVERED = "delivered"
    REFUNDED = "refunded"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: str) -> OrderStatus:
        """Parse a status name, raising InputValidationError if unknown."""
        try:
            return cls(value)
        except ValueError:
            raise InputValidationError(f"Invalid status: {value}") from None


# Forward-only transitions allowed from the admin surface.
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.FAILED}),
    OrderStatus.PAID: frozenset(
        {OrderStatus.PROCESSING, OrderStatus.FAILED, OrderStatus.REFUNDED}
    ),
    OrderStatus.PROCESSING: frozenset(
        {OrderStatus.DELIVERED, OrderStatus.FAILED, OrderStatus.REFUNDED}
    ),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

# Statuses that count towards revenue.
REVENUE_STATUSES = (OrderStatus.PAID, OrderStatus.PROCESSING, OrderStatus.DELIVERED)


def check_transition(current: OrderStatus, target: OrderStatus) -> None:
    """Raise InputValidationError unless current -> target is allowed."""
    allowed = ALLOWED_TRANSITIONS.get(current, frozenset())
    if target in allowed:
        return
    if allowed:
        names = ", ".join(sorted(s.value for s in allowed))
    else:
        names = "none (terminal status)"
    raise InputValidationError(
        f'Cannot change status from "{current.value}" to "{target.value}". '
        f"Allowed transitions: {names}"
    )


@dataclass
class OrderItem:
    order_id: str
    product_name: str
    price: float
    quantity: int = 1
    variant_id: str | None = None
    variant_name: str | None = None
    id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "orderId": self.order_id,
            "variantId": self.variant_id,
            "productName": self.product_name,
            "variantName": self.variant_name,
            "quantity": self.quantity,
            "price": self.price,
        }


@dataclass
class StatusChange:
    order_id: str
    from_status: str
    to_status: str
    changed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "orderId": self.order_id,
            "fromStatus": self.from_status,
            "toStatus": self.to_status,
            "changedAt": self.changed_at.isoformat(),
        }


@dataclass
class Order:
    """An order reconciled from the payment provider."""

    order_number: str
    external_order_id: str
    status: OrderStatus
    total_amount: float
    currency: str = "USD"
    product_id: str | None = None
    external_customer_id: str | None = None
    customer_email: str | None = None
    customer_name: str | None = None
    paid_at: datetime | None = None
    delivered_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    id: str = ""

    # Populated on detail reads only.
    items: list[OrderItem] = field(default_factory=list)
    status_history: list[StatusChange] = field(default_factory=list)

    def to_dict(self, detail: bool = False) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "orderNumber": self.order_number,
            "externalOrderId": self.external_order_id,
            "externalCustomerId": self.external_customer_id,
            "customerEmail": self.customer_email,
            "customerName": self.customer_name,
            "productId": self.product_id,
            "status": self.status.value,
            "totalAmount": self.total_amount,
            "currency": self.currency,
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
            "deliveredAt": self.delivered_at.isoformat() if self.delivered_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
        if detail:
            d["metadata"] = self.metadata
            d["items"] = [item.to_dict() for item in self.items]
            d["statusHistory"] = [change.to_dict() for change in self.status_history]
        return d
