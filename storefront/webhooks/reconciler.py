"""Order reconciliation from Lemon Squeezy webhook events.

Idempotency key: the provider's order id (data.id). Redelivery of
order_created never re-creates an order; it can only move the status
forward along ALLOWED_TRANSITIONS, so stale or out-of-order redeliveries
(the original "paid" payload after a refund) leave the order as it is.
Creation itself is a conditional insert in the store, so a delivery that
loses a creation race falls back to the update path instead of failing.

Refunds for orders this system never recorded are logged and dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from storefront.catalog.models import Product, ProductVariant
from storefront.errors import InputValidationError, ProcessingError
from storefront.orders.models import ALLOWED_TRANSITIONS, Order, OrderItem, OrderStatus
from storefront.store import CommerceStore

logger = logging.getLogger(__name__)

ORDER_CREATED = "order_created"
ORDER_REFUNDED = "order_refunded"

_PAID = "paid"
_CENTS = 100


class ReconcileOutcome(str, Enum):
    CREATED = "created"
    STATUS_UPDATED = "status_updated"
    UNCHANGED = "unchanged"
    REFUNDED = "refunded"
    SKIPPED = "skipped"
    IGNORED = "ignored"


@dataclass
class OrderEvent:
    """The parts of a webhook payload the reconciler uses."""

    external_order_id: str
    attributes: dict[str, Any] = field(default_factory=dict)
    custom_data: dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> str:
        return str(self.attributes.get("status") or "")

    @property
    def order_number(self) -> str:
        return str(self.attributes.get("order_number") or self.external_order_id)

    @property
    def total_amount(self) -> float:
        total = self.attributes.get("total")
        if total is None:
            raise InputValidationError("Webhook payload missing data.attributes.total")
        try:
            return int(total) / _CENTS
        except (TypeError, ValueError):
            raise InputValidationError(f"Invalid order total: {total!r}") from None

    @property
    def currency(self) -> str:
        return self.attributes.get("currency") or "USD"

    @property
    def customer_email(self) -> str | None:
        return self.attributes.get("user_email") or self.attributes.get("customer_email")

    @property
    def customer_name(self) -> str | None:
        return self.attributes.get("user_name") or None

    @property
    def external_customer_id(self) -> str | None:
        customer_id = self.attributes.get("customer_id")
        return str(customer_id) if customer_id is not None else None


def parse_order_event(payload: dict[str, Any]) -> OrderEvent:
    """Extract an OrderEvent, raising InputValidationError if data.id is missing."""
    data = payload.get("data")
    if not isinstance(data, dict) or data.get("id") in (None, ""):
        raise InputValidationError("Webhook payload missing data.id")
    meta = payload.get("meta") or {}
    if not isinstance(meta, dict):
        raise InputValidationError("Malformed webhook payload")
    attributes = data.get("attributes") or {}
    custom_data = meta.get("custom_data") or {}
    if not isinstance(attributes, dict) or not isinstance(custom_data, dict):
        raise InputValidationError("Malformed webhook payload")
    return OrderEvent(
        external_order_id=str(data["id"]),
        attributes=attributes,
        custom_data=custom_data,
    )


def internal_status(external_status: str) -> OrderStatus | None:
    """Map a provider order status onto OrderStatus; None if unknown."""
    if external_status == _PAID:
        return OrderStatus.PAID
    try:
        return OrderStatus(external_status)
    except ValueError:
        return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderReconciler:
    """Applies webhook events to the order store."""

    def __init__(self, store: CommerceStore):
        self._store = store

    def handle(self, event_name: str | None, payload: dict[str, Any]) -> ReconcileOutcome:
        """Apply one webhook delivery.

        Raises:
            InputValidationError: payload lacks the order id or total
            ProcessingError: the referenced product cannot be resolved
        """
        if event_name == ORDER_CREATED:
            return self._order_created(parse_order_event(payload))
        if event_name == ORDER_REFUNDED:
            return self._order_refunded(parse_order_event(payload))
        logger.info("Unhandled webhook event: %s", event_name)
        return ReconcileOutcome.IGNORED

    # -- order_created ------------------------------------------------------

    def _order_created(self, event: OrderEvent) -> ReconcileOutcome:
        existing = self._store.get_order_by_external_id(event.external_order_id)
        if existing is not None:
            logger.info("Order already exists: %s", existing.order_number)
            return self._apply_redelivery(existing, event)

        total = event.total_amount
        product = self._resolve_product(event.custom_data)
        variant = self._resolve_variant(event.custom_data, product)

        now = _utcnow()
        is_paid = event.status == _PAID
        order = Order(
            order_number=event.order_number,
            external_order_id=event.external_order_id,
            external_customer_id=event.external_customer_id,
            customer_email=event.customer_email,
            customer_name=event.customer_name,
            product_id=product.id,
            status=OrderStatus.PAID if is_paid else OrderStatus.PENDING,
            total_amount=total,
            currency=event.currency,
            paid_at=now if is_paid else None,
            metadata={"custom_data": event.custom_data, "attributes": event.attributes},
        )
        item = OrderItem(
            order_id="",
            variant_id=variant.id if variant else None,
            product_name=event.custom_data.get("productTitle") or product.title,
            variant_name=event.custom_data.get("modelNumber") or (variant.sku if variant else None),
            quantity=1,
            price=total,
        )

        created = self._store.insert_order_if_absent(order, item)
        if created is None:
            # Lost a race with a concurrent delivery of the same event.
            logger.info(
                "Order %s created concurrently, falling back to status update",
                event.external_order_id,
            )
            existing = self._store.get_order_by_external_id(event.external_order_id)
            if existing is None:
                raise ProcessingError(
                    f"Order {event.external_order_id} conflicted but cannot be read back"
                )
            return self._apply_redelivery(existing, event)

        logger.info(
            "Order created: %s (%s, %.2f %s, item=%s)",
            created.order_number,
            created.status.value,
            created.total_amount,
            created.currency,
            item.variant_name or item.product_name,
        )
        return ReconcileOutcome.CREATED

    def _apply_redelivery(self, existing: Order, event: OrderEvent) -> ReconcileOutcome:
        if existing.status.value == event.status:
            return ReconcileOutcome.UNCHANGED
        target = internal_status(event.status)
        if target is None:
            logger.warning(
                "Order %s: unknown provider status %r, leaving status %s",
                existing.order_number,
                event.status,
                existing.status.value,
            )
            return ReconcileOutcome.UNCHANGED
        if target == existing.status:
            return ReconcileOutcome.UNCHANGED
        if target not in ALLOWED_TRANSITIONS[existing.status]:
            logger.info(
                "Order %s: ignoring redelivered status %s, order is already %s",
                existing.order_number,
                target.value,
                existing.status.value,
            )
            return ReconcileOutcome.UNCHANGED

        now = _utcnow()
        paid_at = now if target == OrderStatus.PAID and existing.paid_at is None else None
        self._store.set_order_status(
            existing.id, existing.status, target, changed_at=now, paid_at=paid_at
        )
        logger.info(
            "Order %s status updated: %s -> %s",
            existing.order_number,
            existing.status.value,
            target.value,
        )
        return ReconcileOutcome.STATUS_UPDATED

    def _resolve_product(self, custom_data: dict[str, Any]) -> Product:
        slug = custom_data.get("productSlug")
        if not slug:
            raise ProcessingError("Missing productSlug in custom data")
        product = self._store.get_product_by_slug(str(slug))
        if product is None:
            logger.error("Product not found with slug: %s", slug)
            raise ProcessingError(f"Product not found: {slug}")
        return product

    def _resolve_variant(
        self, custom_data: dict[str, Any], product: Product
    ) -> ProductVariant | None:
        variant_id = custom_data.get("variantId")
        if not variant_id:
            return None
        variant = self._store.get_variant(str(variant_id))
        if variant is None:
            logger.warning("Variant not found with id: %s", variant_id)
            return None
        if variant.product_id != product.id:
            logger.warning(
                "Variant %s belongs to product %s, not %s; recording without variant",
                variant_id,
                variant.product_id,
                product.id,
            )
            return None
        return variant

    # -- order_refunded -----------------------------------------------------

    def _order_refunded(self, event: OrderEvent) -> ReconcileOutcome:
        order = self._store.get_order_by_external_id(event.external_order_id)
        if order is None:
            logger.warning("Refund for unknown order %s, dropping", event.external_order_id)
            return ReconcileOutcome.SKIPPED

        self._store.set_order_status(
            order.id, order.status, OrderStatus.REFUNDED, changed_at=_utcnow()
        )
        logger.info("Order refunded: %s", order.order_number)
        return ReconcileOutcome.REFUNDED
