"""Shared fixtures: in-memory CommerceStore, settings, API client."""

from __future__ import annotations

import dataclasses
import hashlib
import hmac
import json
from collections.abc import Iterable
from datetime import datetime
from typing import Any

import pytest
from fastapi.testclient import TestClient

from storefront.app import create_app
from storefront.catalog.models import Product, ProductVariant
from storefront.catalog.variants import GeneratedVariant
from storefront.config import Settings
from storefront.errors import ConflictError
from storefront.orders.models import Order, OrderItem, OrderStatus, StatusChange
from storefront.store import new_id

WEBHOOK_SECRET = "whsec-test-secret"


class InMemoryStore:
    """CommerceStore fake with the same uniqueness rules as the Postgres schema."""

    def __init__(self) -> None:
        self.products: dict[str, Product] = {}
        self.variants: dict[str, ProductVariant] = {}
        self.orders: dict[str, Order] = {}
        self.items: list[OrderItem] = []
        self.history: list[StatusChange] = []
        self._clock = 0

    # -- test helpers -------------------------------------------------------

    def seed_product(
        self,
        slug: str,
        title: str,
        base_price: float | None = None,
        lemonsqueezy_product_id: str | None = None,
    ) -> Product:
        product = Product(
            id=new_id(),
            slug=slug,
            title=title,
            base_price=base_price,
            lemonsqueezy_product_id=lemonsqueezy_product_id,
        )
        self.products[product.id] = product
        return product

    def seed_variant(self, product_id: str, sku: str, **fields: Any) -> ProductVariant:
        variant = ProductVariant(id=new_id(), product_id=product_id, sku=sku, **fields)
        self.variants[variant.id] = variant
        return variant

    def seed_order(self, status: OrderStatus, total: float = 10.0, **fields: Any) -> Order:
        self._clock += 1
        order = Order(
            id=new_id(),
            order_number=fields.pop("order_number", str(1000 + self._clock)),
            external_order_id=fields.pop("external_order_id", f"ext-{self._clock}"),
            status=status,
            total_amount=total,
            created_at=datetime(2026, 1, 1, 0, self._clock),
            **fields,
        )
        self.orders[order.id] = order
        return order

    # -- catalog ------------------------------------------------------------

    def get_product(self, product_id: str) -> Product | None:
        return self.products.get(product_id)

    def get_product_by_slug(self, slug: str) -> Product | None:
        return next((p for p in self.products.values() if p.slug == slug), None)

    def mark_product_synced(self, product_id: str, synced_at: datetime) -> None:
        self.products[product_id].synced_at = synced_at

    def link_product(
        self,
        product_id: str,
        lemonsqueezy_product_id: str | None,
        synced_at: datetime | None,
    ) -> Product | None:
        product = self.products.get(product_id)
        if product is None:
            return None
        product.lemonsqueezy_product_id = lemonsqueezy_product_id
        product.synced_at = synced_at
        return product

    def list_variants(self, product_id: str) -> list[ProductVariant]:
        return [v for v in self.variants.values() if v.product_id == product_id]

    def get_variant(self, variant_id: str) -> ProductVariant | None:
        return self.variants.get(variant_id)

    def add_variant(self, product_id: str, variant: GeneratedVariant) -> ProductVariant:
        for existing in self.variants.values():
            if existing.product_id == product_id and existing.sku == variant.sku:
                raise ConflictError("Variant", variant.sku)
        return self.seed_variant(
            product_id,
            variant.sku,
            capacity=variant.capacity,
            length=variant.length,
            end_connection_style=variant.end_connection_style,
            price=variant.price,
            stock=variant.stock,
        )

    def update_variant_price(self, variant_id: str, price: float) -> ProductVariant | None:
        variant = self.variants.get(variant_id)
        if variant is None:
            return None
        variant.price = price
        return variant

    def link_variant(
        self, variant_id: str, lemonsqueezy_variant_id: str, price: float, synced_at: datetime
    ) -> None:
        variant = self.variants[variant_id]
        variant.lemonsqueezy_variant_id = lemonsqueezy_variant_id
        variant.price = price
        variant.synced_at = synced_at

    # -- orders -------------------------------------------------------------

    def get_order(self, order_id: str) -> Order | None:
        order = self.orders.get(order_id)
        if order is None:
            return None
        return dataclasses.replace(
            order,
            items=[i for i in self.items if i.order_id == order_id],
            status_history=[h for h in self.history if h.order_id == order_id],
        )

    def get_order_by_external_id(self, external_order_id: str) -> Order | None:
        for order in self.orders.values():
            if order.external_order_id == external_order_id:
                return dataclasses.replace(order)
        return None

    def list_orders(self, status: OrderStatus | None = None, limit: int = 100) -> list[Order]:
        orders = [o for o in self.orders.values() if status is None or o.status == status]
        orders.sort(key=lambda o: o.created_at or datetime.min, reverse=True)
        return orders[:limit]

    def insert_order_if_absent(self, order: Order, item: OrderItem) -> Order | None:
        if any(o.external_order_id == order.external_order_id for o in self.orders.values()):
            return None
        self._clock += 1
        created = dataclasses.replace(
            order, id=order.id or new_id(), created_at=datetime(2026, 1, 1, 0, self._clock)
        )
        self.orders[created.id] = created
        stored_item = dataclasses.replace(item, id=item.id or new_id(), order_id=created.id)
        self.items.append(stored_item)
        return dataclasses.replace(created, items=[stored_item])

    def set_order_status(
        self,
        order_id: str,
        from_status: OrderStatus,
        to_status: OrderStatus,
        changed_at: datetime,
        paid_at: datetime | None = None,
        delivered_at: datetime | None = None,
    ) -> None:
        order = self.orders[order_id]
        order.status = to_status
        if paid_at is not None:
            order.paid_at = paid_at
        if delivered_at is not None:
            order.delivered_at = delivered_at
        self.history.append(
            StatusChange(
                order_id=order_id,
                from_status=from_status.value,
                to_status=to_status.value,
                changed_at=changed_at,
            )
        )

    def delete_order(self, order_id: str) -> bool:
        if self.orders.pop(order_id, None) is None:
            return False
        self.items = [i for i in self.items if i.order_id != order_id]
        self.history = [h for h in self.history if h.order_id != order_id]
        return True

    def count_orders_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for order in self.orders.values():
            counts[order.status.value] = counts.get(order.status.value, 0) + 1
        return counts

    def revenue(self, statuses: Iterable[OrderStatus]) -> float:
        wanted = set(statuses)
        return sum(o.total_amount for o in self.orders.values() if o.status in wanted)

    def recent_orders(self, limit: int = 5) -> list[Order]:
        return self.list_orders(limit=limit)


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def _order_payload(
    event_name: str = "order_created",
    order_id: str | int = 5501,
    status: str = "paid",
    total: int = 12500,
    custom_data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """A Lemon Squeezy order webhook body."""
    return {
        "meta": {
            "event_name": event_name,
            "custom_data": custom_data if custom_data is not None else {},
        },
        "data": {
            "type": "orders",
            "id": order_id,
            "attributes": {
                "order_number": 1042,
                "status": status,
                "total": total,
                "currency": "USD",
                "customer_id": 77,
                "user_email": "buyer@example.com",
                "user_name": "Pat Buyer",
            },
        },
    }


def _sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def product(store: InMemoryStore) -> Product:
    return store.seed_product(
        "mid-range-spreader-bars",
        "Mid-Range Spreader Bars",
        base_price=100.0,
        lemonsqueezy_product_id="ls-prod-1",
    )


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        database_url="postgresql://test/test",
        webhook_secret=WEBHOOK_SECRET,
        cors_origins=["http://localhost:3000"],
        rate_limit="1000/minute",
        log_level="WARNING",
    )


@pytest.fixture()
def client(settings: Settings, store: InMemoryStore):
    app = create_app(settings=settings, store=store)
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture()
def make_order_payload():
    """Factory for Lemon Squeezy order webhook bodies."""
    return _order_payload


@pytest.fixture()
def signed_delivery():
    """Factory: payload -> (raw body, headers) signed with the test secret.

    Pass raw bytes to sign a body verbatim, and signature=... to override
    the X-Signature header value.
    """

    def _make(
        payload: dict[str, Any] | bytes, signature: str | None = None
    ) -> tuple[bytes, dict[str, str]]:
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
        headers = {
            "Content-Type": "application/json",
            "X-Signature": signature if signature is not None else _sign(body),
        }
        return body, headers

    return _make
