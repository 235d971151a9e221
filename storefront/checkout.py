"""Checkout: hosted Lemon Squeezy checkout for a single catalog variant.

The custom data attached here comes back on the order_created webhook and
is what the reconciler uses to resolve the product and variant.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI
from pydantic import BaseModel, ConfigDict, Field

from storefront.catalog.models import ProductVariant
from storefront.errors import ConfigurationError, InputValidationError, NotFoundError
from storefront.lemonsqueezy import LemonSqueezyClient
from storefront.store import CommerceStore

logger = logging.getLogger(__name__)


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    variant_id: str | None = Field(default=None, alias="variantId")
    product_slug: str | None = Field(default=None, alias="productSlug")


def checkout_custom_data(variant: ProductVariant, product_slug: str) -> dict[str, str]:
    """Custom data for the checkout; only non-null option fields are included."""
    data = {
        "productSlug": product_slug,
        "variantId": variant.id,
        "modelNumber": variant.sku,
    }
    if variant.capacity:
        data["capacity"] = variant.capacity
    if variant.length:
        data["length"] = variant.length
    if variant.end_connection_style:
        data["endConnectionStyle"] = variant.end_connection_style
    return data


def create_checkout(
    store: CommerceStore,
    client: LemonSqueezyClient,
    variant_id: str | None,
    product_slug: str | None = None,
) -> str:
    """Return a checkout URL for the given catalog variant."""
    if not variant_id:
        raise InputValidationError("Variant ID is required")

    variant = store.get_variant(variant_id)
    if variant is None:
        raise NotFoundError("Variant", variant_id)
    if not variant.lemonsqueezy_variant_id:
        logger.error("Variant %s not synced to Lemon Squeezy", variant.sku)
        raise InputValidationError(
            "This product is not configured for checkout. Please contact support."
        )

    if not product_slug:
        product = store.get_product(variant.product_id)
        if product is None:
            raise NotFoundError("Product", variant.product_id)
        product_slug = product.slug

    custom: dict[str, Any] = checkout_custom_data(variant, product_slug)
    return client.create_checkout_url(variant.lemonsqueezy_variant_id, custom)


def register_checkout_routes(
    app: FastAPI, store: CommerceStore, client: LemonSqueezyClient | None
) -> None:
    """Register /api/checkout/lemon-squeezy."""

    @app.post("/api/checkout/lemon-squeezy")
    def lemonsqueezy_checkout(body: CheckoutRequest):
        if client is None:
            raise ConfigurationError("Lemon Squeezy is not configured")
        url = create_checkout(store, client, body.variant_id, body.product_slug)
        return {"success": True, "checkoutUrl": url}
