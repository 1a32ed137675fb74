import logging

from bs4 import BeautifulSoup

from pricewatch.scrapers.normalizer import parse_price, sniff_currency

DOMAIN = ["trendyol.com"]

logger = logging.getLogger('scraper.trendyol')


def override(soup: BeautifulSoup, url: str, slots) -> None:
    # .prc-dsc holds the final discounted price, e.g. "1.249,90 TL"
    price_elem = soup.select_one(".prc-dsc")
    price_text = price_elem.get_text().strip() if price_elem else ""

    if price_text:
        price = parse_price(price_text)
        if price > 0:
            logger.info(f"Trendyol discounted price: '{price_text}' -> {price}")
            slots.override_price(price, price_text)

    slots.force_currency(sniff_currency(price_text) or "₺")
