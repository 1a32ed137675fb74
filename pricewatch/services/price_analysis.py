import logging
from decimal import Decimal
from typing import Optional

from pricewatch.models.schemas import PriceChange, TrackedProduct

logger = logging.getLogger('price_analysis')


def drop_percentage(old_price: Decimal, new_price: Decimal) -> float:
    if old_price <= 0 or new_price >= old_price:
        return 0.0

    drop_amount = old_price - new_price
    return float(drop_amount / old_price * 100)


def price_change(product: TrackedProduct) -> Optional[PriceChange]:
    """Change between the current price and the price stored before it.

    Checks that find no price never record a sample, so ``history[1]`` is the
    same stored price a drop notification is computed against.
    """
    if len(product.history) < 2:
        return None

    previous = product.history[1].price
    current = product.current_price
    if previous <= 0:
        return None

    diff = current - previous
    return PriceChange(diff=diff, percent=float(diff / previous * 100))
