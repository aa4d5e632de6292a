"""
Price extraction from free-text line item attributes.

Sales staff type decoration surcharges into a custom attribute by hand, so the
value can be anything from "$1,234.56" to "Bordado - precio: 85 por unidad".
extract_price() tries a fixed list of patterns in priority order and returns
the first strictly positive amount; Decimal("0") means "no price found".
"""

import logging
import re
from decimal import Decimal, InvalidOperation

logger = logging.getLogger(__name__)

NO_PRICE = Decimal("0")

# Amount with optional thousands separators and an optional 2-digit fraction.
_AMOUNT = r"([\d,]+(?:\.\d{2})?)"

# Patterns in priority order: the first one that yields a positive amount wins.
_PRICE_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("currency symbol", re.compile(r"\$" + _AMOUNT)),
    ("pesos suffix", re.compile(_AMOUNT + r"\s*pesos?", re.IGNORECASE)),
    ("MXN suffix", re.compile(_AMOUNT + r"\s*mxn", re.IGNORECASE)),
    ("USD suffix", re.compile(_AMOUNT + r"\s*usd", re.IGNORECASE)),
    ("price label", re.compile(r"(?:precio|price)[:\s]*" + _AMOUNT, re.IGNORECASE)),
    ("cost label", re.compile(r"(?:costo|cost)[:\s]*" + _AMOUNT, re.IGNORECASE)),
    ("per unit prefix", re.compile(r"(?:por\s*unidad|per\s*unit)[:\s]*" + _AMOUNT, re.IGNORECASE)),
    ("per unit suffix", re.compile(_AMOUNT + r"\s*(?:por\s*unidad|per\s*unit)", re.IGNORECASE)),
    ("bare number", re.compile(_AMOUNT)),
]


def _parse_amount(raw: str) -> Decimal:
    """Parse '1,234.56' to Decimal('1234.56'); NO_PRICE when unparseable."""
    try:
        amount = Decimal(raw.replace(",", ""))
    except InvalidOperation:
        return NO_PRICE
    if not amount.is_finite():
        return NO_PRICE
    return amount


def extract_price(text: str | None) -> Decimal:
    """
    Extract a currency amount from free text.

    Examples:
        "$1,234.56"          -> Decimal("1234.56")
        "350 pesos"          -> Decimal("350")
        "precio: 99.00"      -> Decimal("99.00")
        "$10.00 por unidad"  -> Decimal("10.00")
        "no price here"      -> Decimal("0")

    Returns NO_PRICE (zero) when nothing recognisable is found.
    """
    if not text:
        return NO_PRICE

    cleaned = text.strip()
    for label, pattern in _PRICE_PATTERNS:
        match = pattern.search(cleaned)
        if not match:
            continue
        amount = _parse_amount(match.group(1))
        if amount > 0:
            logger.info("Price %s extracted from %r (%s)", amount, text, label)
            return amount

    logger.info("No price found in %r", text)
    return NO_PRICE
