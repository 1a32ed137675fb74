#!/usr/bin/env python
import sys
import argparse
import logging

from pricewatch.config import configure_logging, load_settings
from pricewatch.models.database import PersistenceError
from pricewatch.scrapers.fetcher import FetchError
from pricewatch.services.price_analysis import price_change
from pricewatch.tasks.check_prices import CheckInProgress, PriceCheckRunner, create_runner

logger = logging.getLogger('track_product')

DEFAULT_OWNER = "owner@pricewatch.local"


def add_product(runner: PriceCheckRunner, url: str, owner: str = DEFAULT_OWNER) -> bool:
    """
    Add a new product to track

    The product is stored even when no price could be found yet, so the next
    check can pick it up.
    """
    if not url.startswith(("http://", "https://")):
        logger.error("Invalid URL. Make sure it starts with http:// or https://")
        return False

    result = runner.checker.preview(url)
    if not result.success:
        logger.error(f"Error adding product {url}: {result.error}")
        return False

    owner_id = runner.db.get_or_create_user(owner)
    product = runner.db.add_product(url, result.title, result.price, result.currency, owner_id=owner_id)

    if result.price > 0:
        logger.info(f"Added product #{product.id}: {product.title} - Current price: {product.currency}{product.current_price}")
    else:
        logger.warning(f"Added product #{product.id}: {product.title} - no price found yet")
    return True


def list_products(runner: PriceCheckRunner, owner: str = DEFAULT_OWNER):
    owner_id = runner.db.get_or_create_user(owner)
    products = runner.db.list_all_products(owner_id=owner_id)

    if not products:
        logger.info("No products are being tracked.")
        return

    logger.info(f"Tracking {len(products)} products:")
    for product in products:
        change = price_change(product)
        change_text = f" ({change.percent:+.1f}%)" if change else ""
        logger.info(f" - #{product.id} {product.title} ({product.url}): {product.currency}{product.current_price}{change_text}")


def remove_product(runner: PriceCheckRunner, product_id: int) -> bool:
    if runner.db.delete_product(product_id):
        logger.info(f"Removed product #{product_id}")
        return True
    logger.error(f"Product not found: #{product_id}")
    return False


def check_product(runner: PriceCheckRunner, product_id: int) -> bool:
    try:
        outcome = runner.check_product(product_id)
    except CheckInProgress as e:
        logger.warning(str(e))
        return False
    except (FetchError, PersistenceError) as e:
        logger.error(f"Check failed for product #{product_id}: {e}")
        return False

    if outcome.superseded:
        logger.warning(f"#{product_id}: another check stored a new price first")
    elif outcome.updated:
        logger.info(f"#{product_id} {outcome.title}: {outcome.new_currency}{outcome.new_price}")
    else:
        logger.warning(f"#{product_id}: no price found, keeping {outcome.new_currency}{outcome.new_price}")
    return True


def set_notification_email(runner: PriceCheckRunner, address: str, owner: str = DEFAULT_OWNER) -> bool:
    if address and "@" not in address:
        logger.error("Please enter a valid email address")
        return False
    owner_id = runner.db.get_or_create_user(owner)
    runner.db.set_notification_email(owner_id, address)
    logger.info(f"Price drop alerts will be sent to {address}" if address else "Price drop alerts disabled")
    return True


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Manage products for price tracking")
    parser.add_argument("--owner", default=DEFAULT_OWNER, help="Account the products belong to")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    add_parser = subparsers.add_parser("add", help="Add a product to track")
    add_parser.add_argument("url", help="URL of the product to track")

    subparsers.add_parser("list", help="List all tracked products")

    remove_parser = subparsers.add_parser("remove", help="Remove a product and its price history")
    remove_parser.add_argument("id", type=int, help="Id of the product to remove")

    check_parser = subparsers.add_parser("check", help="Check the price of one product now")
    check_parser.add_argument("id", type=int, help="Id of the product to check")

    subparsers.add_parser("check-all", help="Check all tracked products now")

    notify_parser = subparsers.add_parser("notify", help="Set the address price drop alerts are sent to")
    notify_parser.add_argument("email", nargs="?", default="", help="Email address (omit to disable)")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    settings = load_settings()
    configure_logging(settings)
    runner = create_runner(settings)

    try:
        if args.command == "add":
            ok = add_product(runner, args.url, owner=args.owner)
        elif args.command == "list":
            list_products(runner, owner=args.owner)
            ok = True
        elif args.command == "remove":
            ok = remove_product(runner, args.id)
        elif args.command == "check":
            ok = check_product(runner, args.id)
        elif args.command == "check-all":
            ok = runner.check_all_products().failed == 0
        else:
            ok = set_notification_email(runner, args.email, owner=args.owner)
    finally:
        runner.close()

    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
