"""Locale-aware price text parsing and currency mapping."""
import re
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

logger = logging.getLogger('scraper.normalizer')

CURRENCY_SYMBOLS = {
    "TRY": "₺",
    "USD": "$",
    "EUR": "€",
}

ZERO = Decimal("0")

_NON_NUMERIC = re.compile(r'[^\d.,]')


def parse_price(text: Optional[str]) -> Decimal:
    """Parse price text such as "3.871,45", "12,99" or "$1,299" into a Decimal.

    When both separators are present the period is the thousands separator and
    the comma the decimal separator. A lone comma is the decimal separator.
    Anything unparseable becomes 0.
    """
    if text is None:
        return ZERO

    text = str(text).strip()
    negative = text.startswith("-")
    cleaned = _NON_NUMERIC.sub('', text)

    if "," in cleaned and "." in cleaned:
        cleaned = cleaned.replace(".", "")
        head, _, tail = cleaned.rpartition(",")
        cleaned = f"{head.replace(',', '')}.{tail}"
    elif "," in cleaned:
        head, _, tail = cleaned.rpartition(",")
        cleaned = f"{head.replace(',', '')}.{tail}"

    if negative:
        cleaned = f"-{cleaned}"

    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        logger.debug(f"Could not parse price text '{text}'")
        return ZERO

    if not value.is_finite():
        return ZERO
    return value


def currency_symbol(code: Optional[str]) -> Optional[str]:
    """Map an ISO code to its display symbol; unknown codes pass through."""
    if code is None:
        return None
    code = str(code).strip()
    return CURRENCY_SYMBOLS.get(code.upper(), code)


def sniff_currency(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    if "$" in text:
        return "$"
    if "€" in text:
        return "€"
    if "TL" in text or "₺" in text:
        return "₺"
    return None
