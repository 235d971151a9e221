"""Catalog records as returned by the store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass
class Product:
    id: str
    slug: str
    title: str
    base_price: float | None = None
    lemonsqueezy_product_id: str | None = None
    synced_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "title": self.title,
            "basePrice": self.base_price,
            "lemonSqueezyProductId": self.lemonsqueezy_product_id,
            "syncedAt": self.synced_at.isoformat() if self.synced_at else None,
        }


@dataclass
class ProductVariant:
    """A persisted, sellable configuration of a product."""

    id: str
    product_id: str
    sku: str
    capacity: str | None = None
    length: str | None = None
    end_connection_style: str | None = None
    price: float = 0.0
    stock: int = 0
    lemonsqueezy_variant_id: str | None = None
    synced_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "productId": self.product_id,
            "sku": self.sku,
            "capacity": self.capacity,
            "length": self.length,
            "endConnectionStyle": self.end_connection_style,
            "price": self.price,
            "stock": self.stock,
            "lemonSqueezyVariantId": self.lemonsqueezy_variant_id,
            "syncedAt": self.synced_at.isoformat() if self.synced_at else None,
        }
