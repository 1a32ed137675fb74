"""Best-effort title/price/currency extraction from product page markup.

Strategies run in a fixed order and fill three independent slots. A strategy
only writes a slot that is still empty, so each field is resolved by the
highest-priority strategy that found it. Site overrides are the exception and
may replace a price found by the generic strategies.
"""
import json
import logging
from decimal import Decimal
from typing import Any, Iterator, List, Optional

from bs4 import BeautifulSoup

from pricewatch.models.schemas import ExtractionResult
from pricewatch.scrapers.normalizer import ZERO, currency_symbol, parse_price, sniff_currency
from pricewatch.scrapers.site_overrides import OverrideRegistry

logger = logging.getLogger('scraper.extractor')

UNKNOWN_TITLE = "Unknown Product"
MAX_TITLE_LENGTH = 100

TITLE_META = [("property", "og:title"), ("name", "twitter:title")]
PRICE_META = [("property", "product:price:amount"), ("property", "og:price:amount"), ("name", "twitter:data1")]
CURRENCY_META = [("property", "product:price:currency"), ("property", "og:price:currency")]

TITLE_SELECTORS = [
    "h1.product-name",
    "h1.product-title",
    "h1.product_title",
    "#productTitle",
    "[data-testid='product-title']",
]

PRICE_SELECTORS = [
    "span.price",
    ".product-price",
    ".offer-price",
    ".price-current",
    ".current-price",
    "[data-testid='product-price']",
]


class ExtractionSlots:

    def __init__(self):
        self.title: Optional[str] = None
        self.price: Optional[Decimal] = None
        self.currency: Optional[str] = None
        self.raw_price_text = ""

    def set_title(self, value: Optional[str]) -> bool:
        if self.title is not None:
            return False
        value = clean_text(value)
        if not value:
            return False
        self.title = value
        return True

    def set_price(self, value: Decimal, raw_text: str = "") -> bool:
        if self.price is not None or value <= 0:
            return False
        self.price = value
        self.raw_price_text = raw_text
        return True

    def override_price(self, value: Decimal, raw_text: str = "") -> bool:
        if value <= 0:
            return False
        self.price = value
        self.raw_price_text = raw_text
        return True

    def set_currency(self, value: Optional[str]) -> bool:
        if self.currency is not None or not value:
            return False
        self.currency = currency_symbol(value)
        return True

    def force_currency(self, value: Optional[str]):
        if value:
            self.currency = currency_symbol(value)

    def to_result(self, default_currency: str) -> ExtractionResult:
        return ExtractionResult(
            success=True,
            title=truncate_title(self.title or UNKNOWN_TITLE),
            price=self.price if self.price is not None else ZERO,
            currency=self.currency or default_currency,
            raw_price_text=self.raw_price_text
        )


def clean_text(value: Optional[str]) -> str:
    if not value:
        return ""
    return " ".join(str(value).split())


def truncate_title(title: str) -> str:
    if len(title) > MAX_TITLE_LENGTH:
        return title[:MAX_TITLE_LENGTH - 3] + "..."
    return title


def looks_like_discount(text: str) -> bool:
    return "%" in text


def _meta_content(soup: BeautifulSoup, candidates) -> Optional[str]:
    for attribute, key in candidates:
        tag = soup.find("meta", attrs={attribute: key})
        if tag and tag.get("content", "").strip():
            return tag["content"].strip()
    return None


def _is_product_type(value: Any) -> bool:
    types = value if isinstance(value, list) else [value]
    for item in types:
        if isinstance(item, str) and (item == "Product" or item.endswith("/Product")):
            return True
    return False


def _json_ld_entries(data: Any) -> Iterator[dict]:
    if isinstance(data, list):
        for item in data:
            yield from _json_ld_entries(item)
    elif isinstance(data, dict):
        yield data
        if isinstance(data.get("@graph"), list):
            yield from _json_ld_entries(data["@graph"])


def extract_json_ld(soup: BeautifulSoup, url: str, slots: ExtractionSlots):
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.debug(f"Ignoring malformed JSON-LD block on {url}: {e}")
            continue

        for entry in _json_ld_entries(data):
            if not _is_product_type(entry.get("@type")):
                continue

            if isinstance(entry.get("name"), str):
                slots.set_title(entry["name"])

            offers = entry.get("offers")
            if isinstance(offers, list):
                offers = offers[0] if offers else None
            if not isinstance(offers, dict):
                continue

            raw_price = offers.get("price", offers.get("lowPrice"))
            if raw_price is not None:
                price = parse_price(str(raw_price))
                if slots.set_price(price, str(raw_price)):
                    logger.debug(f"JSON-LD price {price} on {url}")
            if offers.get("priceCurrency"):
                slots.set_currency(str(offers["priceCurrency"]))

        if slots.price is not None:
            break


def extract_meta_tags(soup: BeautifulSoup, url: str, slots: ExtractionSlots):
    if slots.title is None:
        slots.set_title(_meta_content(soup, TITLE_META))

    if slots.price is None:
        meta_price = _meta_content(soup, PRICE_META)
        if meta_price:
            slots.set_price(parse_price(meta_price), meta_price)

    if slots.currency is None:
        slots.set_currency(_meta_content(soup, CURRENCY_META))


def extract_generic_hints(soup: BeautifulSoup, url: str, slots: ExtractionSlots):
    if slots.title is None:
        for selector in TITLE_SELECTORS:
            title_elem = soup.select_one(selector)
            if title_elem and slots.set_title(title_elem.get_text()):
                break

    if slots.price is None:
        for selector in PRICE_SELECTORS:
            price_elem = soup.select_one(selector)
            if not price_elem:
                continue
            price_text = price_elem.get_text().strip()
            if not price_text or looks_like_discount(price_text):
                continue
            if slots.set_price(parse_price(price_text), price_text):
                slots.set_currency(sniff_currency(price_text))
                break


def apply_site_overrides(soup: BeautifulSoup, url: str, slots: ExtractionSlots):
    for override in OverrideRegistry.get_overrides(url):
        override(soup, url, slots)


def apply_fallbacks(soup: BeautifulSoup, url: str, slots: ExtractionSlots):
    if slots.title is None:
        heading = soup.find("h1")
        if not (heading and slots.set_title(heading.get_text())):
            title_tag = soup.title
            if not (title_tag and slots.set_title(title_tag.get_text())):
                slots.set_title(UNKNOWN_TITLE)

    if slots.price is not None:
        return

    for elem in soup.select('[class*="price"], [id*="price"]'):
        text = elem.get_text().strip()
        if looks_like_discount(text) or not 2 <= len(text) <= 20:
            continue
        if slots.set_price(parse_price(text), text):
            slots.set_currency(sniff_currency(text))
            logger.debug(f"Fallback scan found price '{text}' on {url}")
            break


STRATEGIES = [
    extract_json_ld,
    extract_meta_tags,
    extract_generic_hints,
    apply_site_overrides,
    apply_fallbacks,
]


def extract(html: str, url: str, default_currency: str = "₺", strategies: Optional[List] = None) -> ExtractionResult:
    try:
        soup = BeautifulSoup(html or "", 'lxml')
        slots = ExtractionSlots()
        for strategy in strategies or STRATEGIES:
            strategy(soup, url, slots)
    except Exception as e:
        logger.exception(f"Failed to extract product data from {url}")
        return ExtractionResult(
            success=False,
            title=UNKNOWN_TITLE,
            price=ZERO,
            currency=default_currency,
            error=str(e) or e.__class__.__name__
        )

    result = slots.to_result(default_currency)
    if result.price <= 0:
        logger.warning(f"No price found on {url}")
    else:
        logger.info(f"Extracted '{result.title}': {result.currency}{result.price} from {url}")
    return result


def scrape(url: str, fetcher, default_currency: str = "₺", cancel_event=None) -> ExtractionResult:
    """Fetch ``url`` and extract it. Fetch errors propagate to the caller."""
    html = fetcher.fetch(url, cancel_event=cancel_event)
    return extract(html, url, default_currency=default_currency)
