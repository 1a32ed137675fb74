import re
import logging
from decimal import Decimal
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from pricewatch.scrapers.normalizer import ZERO, parse_price, sniff_currency

DOMAIN = ["amazon."]

logger = logging.getLogger('scraper.amazon')

DOMAIN_CURRENCIES = [
    (".com.tr", "₺"),
    (".co.uk", "£"),
    (".in", "₹"),
    (".de", "€"),
    (".fr", "€"),
    (".it", "€"),
    (".es", "€"),
]


def domain_currency(url: str) -> str:
    hostname = (urlparse(url).hostname or "").lower()
    for suffix, symbol in DOMAIN_CURRENCIES:
        if hostname.endswith(suffix):
            return symbol
    return "$"


def _whole_and_fraction(soup: BeautifulSoup):
    whole_elem = soup.select_one(".a-price-whole")
    if not whole_elem:
        return ZERO, ""

    whole = re.sub(r'\D', '', whole_elem.get_text())
    if not whole:
        return ZERO, ""

    fraction_elem = soup.select_one(".a-price-fraction")
    fraction = re.sub(r'\D', '', fraction_elem.get_text()) if fraction_elem else ""
    price_text = f"{whole}.{fraction or '00'}"
    return Decimal(price_text), price_text


def override(soup: BeautifulSoup, url: str, slots) -> None:
    """Amazon's price widget beats any generic match on its pages."""
    price_text = ""
    price = ZERO

    offscreen = soup.select_one(".a-price .a-offscreen")
    if offscreen:
        price_text = offscreen.get_text().strip()
        price = parse_price(price_text)

    if price <= 0:
        price, price_text = _whole_and_fraction(soup)

    if price <= 0:
        logger.debug(f"No Amazon price widget found on {url}")
        return

    logger.info(f"Amazon price widget: '{price_text}' -> {price}")
    slots.override_price(price, price_text)
    slots.force_currency(sniff_currency(price_text) or domain_currency(url))
