"""Variant generation: option lists -> SKU-tagged product variants.

Pure, no I/O. The output order is part of the contract: capacity is the
outermost loop, then length, then connection style.

    >>> opts = VariantOptions(capacities="5,10", capacity_unit="kg",
    ...                       connection_styles="clearance lug",
    ...                       base_price=100, product_slug="mid-range-spreader-bars")
    >>> [v.sku for v in generate_variants(opts)]
    ['MRSB-5-CL', 'MRSB-10-CL']
"""

from __future__ import annotations

import itertools
from dataclasses import asdict, dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Empty axes are replaced by a single placeholder so the product still
# yields one combination.
_PLACEHOLDER = ""

_PREFIX_LENGTH = 4
_FALLBACK_ABBREVIATION_LENGTH = 3

STYLE_ABBREVIATIONS: dict[str, str] = {
    "clearance lug": "CL",
    "double lug": "DL",
    "swivel lug": "SL",
    "single lug": "SL",
    "pivoting end lug": "PEL",
}


class VariantOptions(BaseModel):
    """Input for generate_variants. Accepts snake_case or camelCase keys."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    capacities: str | None = None
    capacity_unit: str | None = Field(default=None, alias="capacityUnit")
    lengths: str | None = None
    length_unit: str | None = Field(default=None, alias="lengthUnit")
    connection_styles: str | None = Field(default=None, alias="connectionStyles")
    base_price: float = Field(alias="basePrice", ge=0)
    product_slug: str = Field(alias="productSlug", min_length=1)


@dataclass
class GeneratedVariant:
    """A variant descriptor ready to be persisted."""

    sku: str
    capacity: str | None
    length: str | None
    end_connection_style: str | None
    price: float
    stock: int = 0

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["endConnectionStyle"] = d.pop("end_connection_style")
        return d


def split_options(raw: str | None) -> list[str]:
    """Split a comma-separated option string; empty input -> [placeholder]."""
    if not raw:
        return [_PLACEHOLDER]
    values = [token.strip() for token in raw.split(",")]
    values = [v for v in values if v]
    return values or [_PLACEHOLDER]


def sku_prefix(product_slug: str) -> str:
    """'mid-range-spreader-bars' -> 'MRSB'."""
    initials = "".join(word[0] for word in product_slug.split("-") if word)
    return initials.upper()[:_PREFIX_LENGTH]


def style_abbreviation(style: str) -> str:
    """Short SKU code for a connection style.

    Known styles map through STYLE_ABBREVIATIONS; anything else becomes the
    initials of its words, at most three letters.
    """
    normalized = " ".join(style.lower().split())
    if not normalized:
        return ""
    known = STYLE_ABBREVIATIONS.get(normalized)
    if known:
        return known
    initials = "".join(word[0] for word in style.split())
    return initials.upper()[:_FALLBACK_ABBREVIATION_LENGTH]


def _with_unit(value: str, unit: str | None) -> str | None:
    if value and unit:
        return f"{value}{unit}"
    return None


def generate_variants(options: VariantOptions) -> list[GeneratedVariant]:
    """Cartesian product of capacity x length x style as variants."""
    capacities = split_options(options.capacities)
    lengths = split_options(options.lengths)
    styles = split_options(options.connection_styles)
    prefix = sku_prefix(options.product_slug)

    variants: list[GeneratedVariant] = []
    for capacity, length, style in itertools.product(capacities, lengths, styles):
        parts = [prefix]
        if capacity:
            parts.append(capacity)
        if length:
            parts.append(length)
        if style:
            parts.append(style_abbreviation(style))

        variants.append(
            GeneratedVariant(
                sku="-".join(parts).upper(),
                capacity=_with_unit(capacity, options.capacity_unit),
                length=_with_unit(length, options.length_unit),
                end_connection_style=style or None,
                price=options.base_price,
                stock=0,
            )
        )
    return variants
