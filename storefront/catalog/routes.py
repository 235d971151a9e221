"""Admin catalog routes: products, variant listing, generation, pricing, provider sync."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from pydantic import BaseModel, ConfigDict, Field

from storefront.catalog.service import (
    link_product,
    regenerate_variants,
    require_product,
    update_variant_price,
)
from storefront.catalog.sync import sync_variants
from storefront.catalog.variants import VariantOptions
from storefront.errors import ConfigurationError
from storefront.lemonsqueezy import LemonSqueezyClient
from storefront.store import CommerceStore

logger = logging.getLogger(__name__)


class VariantPriceUpdate(BaseModel):
    price: float | None = None


class ProductLink(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    lemonsqueezy_product_id: str | None = Field(default=None, alias="lemonSqueezyProductId")


def register_catalog_routes(
    app: FastAPI, store: CommerceStore, client: LemonSqueezyClient | None
) -> None:
    """Register /api/admin/products/*, its variants, and the Lemon Squeezy product list."""

    def require_client() -> LemonSqueezyClient:
        if client is None:
            raise ConfigurationError("Lemon Squeezy is not configured")
        return client

    @app.get("/api/admin/lemonsqueezy/products")
    def provider_products():
        return {"success": True, "data": require_client().get_products()}

    @app.get("/api/admin/products/{product_id}")
    def get_product(product_id: str):
        return {"success": True, "data": require_product(store, product_id).to_dict()}

    @app.put("/api/admin/products/{product_id}")
    def update_product_link(product_id: str, body: ProductLink):
        product = link_product(store, client, product_id, body.lemonsqueezy_product_id)
        return {"success": True, "data": product.to_dict()}

    @app.get("/api/admin/products/{product_id}/variants")
    def list_variants(product_id: str):
        require_product(store, product_id)
        variants = store.list_variants(product_id)
        return {"success": True, "data": [v.to_dict() for v in variants]}

    @app.post("/api/admin/products/{product_id}/variants/generate", status_code=201)
    def generate(product_id: str, options: VariantOptions):
        result = regenerate_variants(store, product_id, options)
        return {"success": True, "data": result.to_dict()}

    @app.put("/api/admin/products/{product_id}/variants/{variant_id}")
    def update_price(product_id: str, variant_id: str, body: VariantPriceUpdate):
        variant = update_variant_price(store, product_id, variant_id, body.price)
        return {"success": True, "data": variant.to_dict()}

    @app.post("/api/admin/products/{product_id}/sync-variants")
    def sync(product_id: str):
        report = sync_variants(store, require_client(), product_id)
        return {"success": True, **report}
