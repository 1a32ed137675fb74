import logging
import threading
from typing import Optional

from pricewatch.models.schemas import ExtractionResult, PriceCheckOutcome, TrackedProduct
from pricewatch.scrapers.extractor import UNKNOWN_TITLE, scrape
from pricewatch.scrapers.fetcher import FetchError

logger = logging.getLogger('price_check')


class PriceCheckService:
    """Fetches and extracts a product page and compares it with the stored price.

    Nothing is persisted here; callers decide what to store from the outcome.
    """

    def __init__(self, fetcher, default_currency: str = "₺"):
        self.fetcher = fetcher
        self.default_currency = default_currency

    def check(self, product: TrackedProduct, cancel_event: Optional[threading.Event] = None) -> PriceCheckOutcome:
        """Raises FetchError when the page could not be retrieved."""
        result = scrape(product.url, self.fetcher, self.default_currency, cancel_event=cancel_event)
        previous = product.current_price

        if not result.found_price:
            logger.warning(f"No usable price for product {product.id} ({product.url}); keeping {previous}")
            return PriceCheckOutcome(
                product_id=product.id,
                updated=False,
                title=product.title,
                new_price=previous,
                new_currency=product.currency,
                previous_price=previous
            )

        dropped_from = previous if result.price < previous else None
        if dropped_from is not None:
            logger.info(f"Price drop for product {product.id}: {previous} -> {result.price}")

        # Keep the stored title when the page only yielded the placeholder
        title = result.title if result.title != UNKNOWN_TITLE else product.title
        return PriceCheckOutcome(
            product_id=product.id,
            updated=True,
            title=title,
            new_price=result.price,
            new_currency=result.currency,
            previous_price=previous,
            dropped_from=dropped_from
        )

    def preview(self, url: str) -> ExtractionResult:
        """Extraction for a URL that is not tracked yet; fetch errors become a failed result."""
        try:
            return scrape(url, self.fetcher, self.default_currency)
        except FetchError as e:
            logger.error(f"Error fetching {url}: {e}")
            return ExtractionResult(
                success=False,
                title=UNKNOWN_TITLE,
                currency=self.default_currency,
                error=str(e)
            )
