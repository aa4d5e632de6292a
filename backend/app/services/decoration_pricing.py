"""
Decoration pricing engine.

A line item may carry a "Decorado" attribute whose free-text value holds a
per-unit decoration surcharge. apply_decorations() folds that surcharge into
each item's unit price; line_breakdown() and order_total() split it back out
for the email templates.

Decoration totals per line are computed according to a mode:
  per_unit  decoration_price * quantity (default)
  flat      decoration_price added once per line (legacy behaviour)
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from app.models.draft_order import AdjustedLineItem, LineBreakdown, LineItem
from app.services.price_extractor import NO_PRICE, extract_price

logger = logging.getLogger(__name__)

DECORATION_KEYWORD = "decorado"

PER_UNIT = "per_unit"
FLAT = "flat"

_CENTS = Decimal("0.01")


def to_money(value: Decimal) -> Decimal:
    """Quantize to 2 decimal places (half-up)."""
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def find_decoration_price(item: LineItem) -> Decimal:
    """
    Return the per-unit decoration surcharge for a line item.

    Every attribute whose key contains "decorado" (case-insensitive) is
    parsed; the last one yielding a positive price wins. Prices from several
    decoration attributes are not summed.
    """
    decoration_price = NO_PRICE
    for attr in item.attributes:
        if DECORATION_KEYWORD not in attr.key.lower():
            continue
        logger.info("Decoration attribute on %r (%s): %r", item.title, attr.key, attr.value)
        price = extract_price(attr.value)
        if price > 0:
            decoration_price = price
    return decoration_price


def apply_decorations(line_items: Iterable[LineItem]) -> list[AdjustedLineItem]:
    """
    Fold decoration surcharges into unit prices.

    Items with a decoration get price = original price + decoration price and
    decoration_price set; the rest keep their price and decoration_price = 0.
    Title and quantity are never changed.
    """
    adjusted: list[AdjustedLineItem] = []
    for item in line_items:
        decoration_price = find_decoration_price(item)
        price = item.price
        if decoration_price > 0:
            price = to_money(item.price + decoration_price)
            logger.info(
                "%s x%d: base %s + decoration %s = %s",
                item.title, item.quantity, item.price, decoration_price, price,
            )
        adjusted.append(
            AdjustedLineItem(
                title=item.title,
                quantity=item.quantity,
                price=price,
                decoration_price=decoration_price,
            )
        )
    return adjusted


def line_breakdown(item: AdjustedLineItem, mode: str = PER_UNIT) -> LineBreakdown:
    """
    Split an adjusted line back into base and decoration totals.

    With qty 3, price 110.00 and decoration 10.00:
      per_unit -> total_base 300.00, total_decoration 30.00, line_total 330.00
      flat     -> total_base 300.00, total_decoration 10.00, line_total 310.00
    """
    if mode not in (PER_UNIT, FLAT):
        raise ValueError(f"Unknown decoration total mode: {mode!r}")

    base_price = item.base_price
    total_base = base_price * item.quantity
    if mode == PER_UNIT:
        total_decoration = item.decoration_price * item.quantity
    else:
        total_decoration = item.decoration_price
    line_total = total_base + total_decoration

    return LineBreakdown(
        title=item.title,
        quantity=item.quantity,
        base_price=to_money(base_price),
        decoration_price=to_money(item.decoration_price),
        total_base=to_money(total_base),
        total_decoration=to_money(total_decoration),
        line_total=to_money(line_total),
        unit_price=to_money(line_total / item.quantity),
    )


def order_total(items: Iterable[AdjustedLineItem], mode: str = PER_UNIT) -> Decimal:
    """Sum of line totals across all adjusted items."""
    total = sum(
        (line_breakdown(item, mode).line_total for item in items),
        Decimal("0"),
    )
    return to_money(total)
