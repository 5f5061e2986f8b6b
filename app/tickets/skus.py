from __future__ import annotations

from typing import Sequence

from .errors import ValidationFailure
from .models import SkuType, SkuVariant, Ticket


def ensure_single_bulk(variants: Sequence[SkuVariant]) -> None:
    """Reject a SKU list carrying more than one BULK variant."""

    bulk_count = sum(1 for variant in variants if variant.type == SkuType.BULK)
    if bulk_count > 1:
        raise ValidationFailure("Only one BULK SKU is allowed per product")


def build_bulk_sku(ticket: Ticket) -> SkuVariant:
    """Create the BULK variant for ``ticket`` from its base unit and pricing."""

    if ticket.has_bulk_sku:
        raise ValidationFailure("A BULK SKU already exists. Only one BULK SKU is allowed per product.")
    if ticket.base_unit is None:
        raise ValidationFailure("Set a base unit in the pricing section before adding a BULK SKU")

    base_number = ticket.part_number.base_number if ticket.has_part_number else None
    standard_costs = ticket.pricing_data.get("standardCosts") or {}
    return SkuVariant(
        type=SkuType.BULK,
        package_size=ticket.base_unit,
        sku=f"{base_number}-BULK" if base_number else "BULK",
        description=f"{ticket.product_name or 'Product'} - Bulk packaging",
        pricing={
            "standardCost": standard_costs.get("rawMaterialCostPerUnit", 0),
            "calculatedCost": 0,
            "margin": ticket.pricing_data.get("margin", 50),
            "limitPrice": 0,
            "listPrice": 0,
            "currency": "USD",
        },
    )
