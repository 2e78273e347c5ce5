import logging
import math
from decimal import Decimal, InvalidOperation
from typing import Sequence

from receipts import Item, Receipt, parse_purchase_date, parse_purchase_time

logger = logging.getLogger(__name__)

POINTS_RETAILER_NAME_ALPHANUM_CHARACTER = 1
POINTS_TOTAL_HAS_NO_CENTS = 50
POINTS_TOTAL_IS_MULTIPLE_OF_QUARTERS = 25
POINTS_ITEMS_PAIR = 5
POINTS_ITEM_DESCRIPTION_PRICE_FACTOR = Decimal("0.2")
POINTS_ODD_PURCHASE_DAY = 6
POINTS_AFTERNOON_PURCHASE = 10
REWARD_ITEM_DESCRIPTION_LENGTH_FACTOR = 3
REWARD_MINUTE_START = 14 * 60
REWARD_MINUTE_END = 16 * 60
CENTS_PER_DOLLAR = 100
CENTS_PER_QUARTER = 25


def _is_ascii_alnum(c: str) -> bool:
    return "0" <= c <= "9" or "A" <= c <= "Z" or "a" <= c <= "z"


def score_retailer(retailer_name: str) -> int:
    """ One point per ASCII letter or digit in the retailer name """
    return sum(POINTS_RETAILER_NAME_ALPHANUM_CHARACTER for c in retailer_name if _is_ascii_alnum(c))


def score_total(total: str) -> int:
    """ Whole-dollar and quarter-dollar bonuses, evaluated independently on the total in cents """
    cents = int(total.replace(".", ""))
    points = 0
    if cents % CENTS_PER_DOLLAR == 0:
        points += POINTS_TOTAL_HAS_NO_CENTS
    if cents % CENTS_PER_QUARTER == 0:
        points += POINTS_TOTAL_IS_MULTIPLE_OF_QUARTERS
    return points


def score_item_description(item: Item) -> int:
    """
    Price bonus for an item whose trimmed description length is a multiple of 3.

    The price is multiplied in decimal arithmetic and rounded up. A price that does not
    parse contributes nothing; validation rejects such receipts before they get here.
    """
    if len(item.short_description.strip()) % REWARD_ITEM_DESCRIPTION_LENGTH_FACTOR != 0:
        return 0
    try:
        price = Decimal(item.price)
    except InvalidOperation:
        logger.debug("Skipping description bonus, unparseable price %r", item.price)
        return 0
    if not price.is_finite():
        return 0
    return math.ceil(price * POINTS_ITEM_DESCRIPTION_PRICE_FACTOR)


def score_items(items: Sequence[Item]) -> int:
    """ Points for every two items plus the per-item description bonus """
    points = (len(items) // 2) * POINTS_ITEMS_PAIR
    for item in items:
        points += score_item_description(item)
    return points


def score_date_time(purchase_date: str, purchase_time: str) -> int:
    """ Odd purchase day and purchases strictly between 14:00 and 16:00 """
    points = 0
    if parse_purchase_date(purchase_date).day % 2 == 1:
        points += POINTS_ODD_PURCHASE_DAY
    hour, minute = parse_purchase_time(purchase_time)
    if REWARD_MINUTE_START < hour * 60 + minute < REWARD_MINUTE_END:
        points += POINTS_AFTERNOON_PURCHASE
    return points


def score(receipt: Receipt) -> int:
    """ Calculates points earned from each component of an already validated receipt """
    points = 0
    points += score_retailer(receipt.retailer)
    points += score_total(receipt.total)
    points += score_items(receipt.items)
    points += score_date_time(receipt.purchase_date, receipt.purchase_time)
    return points
