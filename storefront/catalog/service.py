"""Catalog operations on top of the store: variant regeneration, pricing and
linking a product to its Lemon Squeezy product.

Regeneration is additive. Every generated variant is inserted on its own;
a SKU that already exists for the product is reported as existing and its
row (price, stock, provider link) is left as is.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from storefront.catalog.models import Product, ProductVariant
from storefront.catalog.variants import VariantOptions, generate_variants
from storefront.errors import ConflictError, InputValidationError, NotFoundError
from storefront.lemonsqueezy import LemonSqueezyClient
from storefront.store import CommerceStore

logger = logging.getLogger(__name__)


@dataclass
class RegenerationResult:
    created: list[ProductVariant] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": [v.to_dict() for v in self.created],
            "existing": list(self.existing),
        }


def require_product(store: CommerceStore, product_id: str) -> Product:
    product = store.get_product(product_id)
    if product is None:
        raise NotFoundError("Product", product_id)
    return product


def regenerate_variants(
    store: CommerceStore, product_id: str, options: VariantOptions
) -> RegenerationResult:
    """Generate variants for a product and persist the ones not already present."""
    require_product(store, product_id)
    result = RegenerationResult()
    for generated in generate_variants(options):
        try:
            result.created.append(store.add_variant(product_id, generated))
        except ConflictError:
            result.existing.append(generated.sku)

    logger.info(
        "Variants regenerated for product %s: %d created, %d already present",
        product_id,
        len(result.created),
        len(result.existing),
    )
    return result


def update_variant_price(
    store: CommerceStore, product_id: str, variant_id: str, price: float | None
) -> ProductVariant:
    if price is None:
        raise InputValidationError("Price is required")
    if price < 0:
        raise InputValidationError("Price must not be negative")

    variant = store.get_variant(variant_id)
    if variant is None or variant.product_id != product_id:
        raise NotFoundError("Variant", variant_id)

    updated = store.update_variant_price(variant_id, price)
    if updated is None:
        raise NotFoundError("Variant", variant_id)
    logger.info("Variant %s price set to %.2f", updated.sku, price)
    return updated


def link_product(
    store: CommerceStore,
    client: LemonSqueezyClient | None,
    product_id: str,
    lemonsqueezy_product_id: str | None,
) -> Product:
    """Set or clear a product's Lemon Squeezy product id.

    When a client is configured the id is looked up first, so a product
    cannot be linked to something the provider does not know. Unlinking
    clears synced_at as well.
    """
    require_product(store, product_id)
    ls_id = (lemonsqueezy_product_id or "").strip() or None
    if ls_id is not None and client is not None:
        client.get_product(ls_id)

    synced_at = datetime.now(timezone.utc) if ls_id else None
    updated = store.link_product(product_id, ls_id, synced_at)
    if updated is None:
        raise NotFoundError("Product", product_id)
    if ls_id:
        logger.info("Product %s linked to Lemon Squeezy product %s", updated.slug, ls_id)
    else:
        logger.info("Product %s unlinked from Lemon Squeezy", updated.slug)
    return updated
