"""Link catalog variants to Lemon Squeezy variants and adopt provider prices.

Lemon Squeezy is the price authority once a variant is linked: a linked
variant whose local price drifts by more than a cent takes the provider
price. Unlinked variants are matched by provider variant name against the
SKU (exact or containment, case-insensitive).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from storefront.catalog.models import ProductVariant
from storefront.catalog.service import require_product
from storefront.errors import InputValidationError
from storefront.lemonsqueezy import LemonSqueezyClient, to_dollars
from storefront.store import CommerceStore

logger = logging.getLogger(__name__)

_PRICE_TOLERANCE = 0.01


@dataclass
class SyncReport:
    matched: list[dict[str, Any]] = field(default_factory=list)
    price_updated: list[dict[str, Any]] = field(default_factory=list)
    already_linked: list[dict[str, Any]] = field(default_factory=list)
    unmatched: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self, total: int) -> dict[str, Any]:
        return {
            "summary": {
                "total": total,
                "matched": len(self.matched),
                "priceUpdated": len(self.price_updated),
                "alreadyLinked": len(self.already_linked),
                "unmatched": len(self.unmatched),
            },
            "details": {
                "matched": self.matched,
                "priceUpdated": self.price_updated,
                "alreadyLinked": self.already_linked,
                "unmatched": self.unmatched,
            },
        }


def _names_match(provider_name: str, sku: str) -> bool:
    a = provider_name.lower().strip()
    b = sku.lower().strip()
    if not a or not b:
        return False
    return a == b or a in b or b in a


def _find_by_name(provider_variants: list[dict[str, Any]], sku: str) -> dict[str, Any] | None:
    for pv in provider_variants:
        name = (pv.get("attributes") or {}).get("name") or ""
        if _names_match(name, sku):
            return pv
    return None


def _provider_price(provider_variant: dict[str, Any]) -> float:
    return to_dollars(int((provider_variant.get("attributes") or {}).get("price") or 0))


def sync_variants(
    store: CommerceStore, client: LemonSqueezyClient, product_id: str
) -> dict[str, Any]:
    """Match, link and re-price a product's variants against Lemon Squeezy."""
    product = require_product(store, product_id)
    if not product.lemonsqueezy_product_id:
        raise InputValidationError(
            "Product not linked to Lemon Squeezy. Please select a LS product first."
        )

    variants = store.list_variants(product_id)
    provider_variants = client.get_variants(product.lemonsqueezy_product_id)
    if not provider_variants:
        raise InputValidationError("No variants found in Lemon Squeezy")
    by_id = {str(pv.get("id")): pv for pv in provider_variants}

    now = datetime.now(timezone.utc)
    report = SyncReport()
    for variant in variants:
        if variant.lemonsqueezy_variant_id:
            _sync_linked(store, variant, by_id, product.base_price, now, report)
            continue

        match = _find_by_name(provider_variants, variant.sku)
        if match is None:
            report.unmatched.append({"sku": variant.sku, "variantId": variant.id})
            continue

        price = _provider_price(match)
        store.link_variant(variant.id, str(match["id"]), price, now)
        report.matched.append(
            {
                "sku": variant.sku,
                "lemonSqueezyVariant": (match.get("attributes") or {}).get("name"),
                "lemonSqueezyVariantId": str(match["id"]),
                "price": price,
            }
        )

    store.mark_product_synced(product_id, now)
    logger.info(
        "Variant sync for %s: %d matched, %d re-priced, %d linked, %d unmatched",
        product.slug,
        len(report.matched),
        len(report.price_updated),
        len(report.already_linked),
        len(report.unmatched),
    )
    return report.to_dict(total=len(variants))


def _sync_linked(
    store: CommerceStore,
    variant: ProductVariant,
    by_id: dict[str, dict[str, Any]],
    base_price: float | None,
    now: datetime,
    report: SyncReport,
) -> None:
    provider_variant = by_id.get(str(variant.lemonsqueezy_variant_id))
    if provider_variant is None:
        logger.warning(
            "Variant %s linked to missing Lemon Squeezy variant %s",
            variant.sku,
            variant.lemonsqueezy_variant_id,
        )
        report.unmatched.append({"sku": variant.sku, "variantId": variant.id})
        return

    provider_price = _provider_price(provider_variant)
    local_price = variant.price or base_price or 0.0
    if abs(provider_price - local_price) > _PRICE_TOLERANCE:
        store.link_variant(variant.id, str(provider_variant["id"]), provider_price, now)
        report.price_updated.append(
            {
                "sku": variant.sku,
                "oldPrice": local_price,
                "newPrice": provider_price,
                "lemonSqueezyVariantId": str(provider_variant["id"]),
            }
        )
    else:
        report.already_linked.append(
            {
                "sku": variant.sku,
                "lemonSqueezyVariantId": variant.lemonsqueezy_variant_id,
                "price": provider_price,
            }
        )
