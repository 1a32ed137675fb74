#!/usr/bin/env python
import sys
import time
import logging
import argparse
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from typing import Optional, Set, Tuple

from pricewatch.config import Settings, configure_logging, load_settings
from pricewatch.models.database import Database, ProductNotFound, utcnow
from pricewatch.models.schemas import PriceCheckOutcome, SweepSummary, TrackedProduct
from pricewatch.scrapers.fetcher import FetchError, Fetcher
from pricewatch.services.notification_service import EmailNotifier
from pricewatch.services.price_analysis import drop_percentage
from pricewatch.services.price_check import PriceCheckService

logger = logging.getLogger('price_checker')

UPDATED = "updated"
UNCHANGED = "unchanged"
SKIPPED = "skipped"
FAILED = "failed"


class CheckInProgress(Exception):

    def __init__(self, product_id: int):
        super().__init__(f"A price check for product {product_id} is already running")
        self.product_id = product_id


class InFlightRegistry:
    """Product ids with a check currently running."""

    def __init__(self):
        self._lock = threading.Lock()
        self._active: Set[int] = set()

    def try_acquire(self, product_id: int) -> bool:
        with self._lock:
            if product_id in self._active:
                return False
            self._active.add(product_id)
            return True

    def release(self, product_id: int):
        with self._lock:
            self._active.discard(product_id)

    def is_active(self, product_id: int) -> bool:
        with self._lock:
            return product_id in self._active

    @contextmanager
    def hold(self, product_id: int):
        if not self.try_acquire(product_id):
            raise CheckInProgress(product_id)
        try:
            yield
        finally:
            self.release(product_id)


class PriceCheckRunner:
    """Runs price checks for one product on demand or for all products in a sweep."""

    def __init__(self, db, checker: PriceCheckService, notifier=None, max_workers: int = 4,
                 in_flight: Optional[InFlightRegistry] = None):
        self.db = db
        self.checker = checker
        self.notifier = notifier
        self.max_workers = max(1, max_workers)
        self.in_flight = in_flight or InFlightRegistry()
        self._cancel = threading.Event()

    def _notify(self, product: TrackedProduct, outcome: PriceCheckOutcome) -> bool:
        if self.notifier is None or not product.notification_email:
            return False

        try:
            sent = self.notifier.send_price_drop(
                product.notification_email,
                outcome.title,
                outcome.dropped_from,
                outcome.new_price,
                outcome.new_currency,
                product.url
            )
        except Exception as e:
            logger.error(f"Notification for product {product.id} failed: {e}")
            return False

        if not sent:
            logger.error(f"Notification for product {product.id} was not delivered")
        return bool(sent)

    def _process(self, product: TrackedProduct,
                 cancel_event: Optional[threading.Event] = None) -> Tuple[PriceCheckOutcome, bool]:
        outcome = self.checker.check(product, cancel_event=cancel_event)
        if not outcome.updated:
            return outcome, False

        applied = self.db.save_updated_price(
            product.id,
            outcome.new_price,
            outcome.new_currency,
            observed_at=utcnow(),
            title=outcome.title,
            expected_price=product.current_price
        )
        if not applied:
            # another process stored a price after this one was read
            logger.info(f"Skipping stale result for {outcome.title}: price changed during the check")
            return outcome.model_copy(update={"updated": False, "dropped_from": None, "superseded": True}), False

        logger.info(f"Updated price for {outcome.title}: {outcome.new_currency}{outcome.new_price}")

        notified = False
        if outcome.is_drop:
            pct = drop_percentage(outcome.dropped_from, outcome.new_price)
            logger.info(f"Price drop of {pct:.1f}% detected for {outcome.title}")
            notified = self._notify(product, outcome)
        return outcome, notified

    def check_product(self, product_id: int) -> PriceCheckOutcome:
        """Manual check of one product. Fetch and persistence errors propagate."""
        with self.in_flight.hold(product_id):
            product = self.db.load_product(product_id)
            logger.info(f"Checking price for {product.url}")
            outcome, _ = self._process(product)
            return outcome

    def _sweep_one(self, product_id: int) -> Tuple[str, bool]:
        if self._cancel.is_set():
            return SKIPPED, False

        if not self.in_flight.try_acquire(product_id):
            logger.info(f"Product {product_id} is already being checked, skipping")
            return SKIPPED, False

        try:
            # reload under the lock so the comparison uses the latest stored price
            product = self.db.load_product(product_id)
            outcome, notified = self._process(product, cancel_event=self._cancel)
            return (UPDATED if outcome.updated else UNCHANGED), notified
        except ProductNotFound:
            logger.info(f"Product {product_id} was removed during the sweep")
            return SKIPPED, False
        except FetchError as e:
            logger.error(f"Error fetching product {product_id}: {e}")
            return FAILED, False
        except Exception as e:
            logger.exception(f"Error checking product {product_id}: {e}")
            return FAILED, False
        finally:
            self.in_flight.release(product_id)

    def check_all_products(self) -> SweepSummary:
        logger.info("Starting price check for all products")
        start_time = time.monotonic()
        self._cancel.clear()

        product_ids = [product.id for product in self.db.list_all_products()]
        summary = SweepSummary(total=len(product_ids))
        if not product_ids:
            logger.info("No products to check")
            return summary

        logger.info(f"Found {len(product_ids)} products to check")
        workers = min(self.max_workers, len(product_ids))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="price-check") as pool:
            futures = [pool.submit(self._sweep_one, product_id) for product_id in product_ids]
            for future in as_completed(futures):
                status, notified = future.result()
                if status == UPDATED:
                    summary.updated += 1
                elif status == FAILED:
                    summary.failed += 1
                else:
                    summary.skipped += 1
                if notified:
                    summary.notified += 1

        summary.duration_seconds = time.monotonic() - start_time
        logger.info(
            f"Completed price checks: {summary.updated}/{summary.total} updated, "
            f"{summary.failed} failed, {summary.notified} notifications sent "
            f"in {summary.duration_seconds:.1f} seconds"
        )
        return summary

    def cancel(self):
        """Abort in-flight fetches of a running sweep."""
        self._cancel.set()

    def close(self):
        self.cancel()
        fetcher = getattr(self.checker, "fetcher", None)
        if fetcher is not None and hasattr(fetcher, "close"):
            fetcher.close()
        self.db.close()


def create_runner(settings: Settings) -> PriceCheckRunner:
    db = Database(settings.database_url)
    fetcher = Fetcher(timeout=settings.fetch_timeout_seconds)
    checker = PriceCheckService(fetcher, default_currency=settings.default_currency)
    notifier = EmailNotifier.from_settings(settings)
    return PriceCheckRunner(db, checker, notifier, max_workers=settings.max_workers)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Check product prices and send price drop alerts")
    parser.add_argument("--id", type=int, help="Check a single tracked product by id")
    parser.add_argument("--check-all", action="store_true", help="Check all tracked products")
    args = parser.parse_args(argv)

    settings = load_settings()
    configure_logging(settings)
    runner = create_runner(settings)

    try:
        if args.id is not None:
            try:
                outcome = runner.check_product(args.id)
            except Exception as e:
                logger.error(f"Error checking product {args.id}: {e}")
                return 1
            if outcome.superseded:
                logger.warning(f"Product {args.id} was updated by another check; nothing stored")
            elif not outcome.updated:
                logger.warning(f"No price found for product {args.id}; stored price kept")
            return 0

        summary = runner.check_all_products()
        return 0 if summary.failed == 0 else 1
    finally:
        runner.close()


if __name__ == "__main__":
    sys.exit(main())
