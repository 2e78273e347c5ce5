import re
from dataclasses import dataclass
from datetime import date
from typing import Tuple

# \w and \s spelled out as ASCII so matching does not depend on the engine's unicode defaults
RETAILER_PATTERN = re.compile(r"[A-Za-z0-9_ \t\n\f\r&\-]+")
SHORT_DESCRIPTION_PATTERN = re.compile(r"[A-Za-z0-9_ \t\n\f\r\-]+")
AMOUNT_PATTERN = re.compile(r"[0-9]+\.[0-9]{2}")
DATE_PATTERN = re.compile(r"([0-9]{4})-([0-9]{2})-([0-9]{2})")
TIME_PATTERN = re.compile(r"([0-9]{2}):([0-9]{2})")


class InvalidReceiptError(ValueError):
    """ Raised when a request body cannot be decoded into a Receipt """


@dataclass(frozen=True)
class Item:
    short_description: str
    price: str


@dataclass(frozen=True)
class Receipt:
    retailer: str
    purchase_date: str
    purchase_time: str
    items: Tuple[Item, ...]
    total: str


def _field(payload: dict, name: str, default):
    """ Looks up a json key case-insensitively; when several keys match, the last one wins """
    value = default
    for key, candidate in payload.items():
        if key.lower() == name.lower():
            value = candidate
    return value


def _string_field(payload: dict, name: str) -> str:
    value = _field(payload, name, "")
    if not isinstance(value, str):
        raise InvalidReceiptError(f"invalid {name} format")
    return value


def decode_item(payload) -> Item:
    """ Builds an Item from one element of the json items array """
    if not isinstance(payload, dict):
        raise InvalidReceiptError("invalid receipt item format")
    return Item(short_description=_string_field(payload, "shortDescription"),
                price=_string_field(payload, "price"))


def decode_receipt(payload) -> Receipt:
    """
    Builds a Receipt from a decoded json body.

    Missing fields decode to empty values and are left for is_valid to reject;
    fields of the wrong json type raise InvalidReceiptError. Keys match regardless of
    case and unknown fields are ignored.
    """
    if not isinstance(payload, dict):
        raise InvalidReceiptError("receipt must be a json object")
    items = _field(payload, "items", None)
    if items is None:
        items = []
    if not isinstance(items, list):
        raise InvalidReceiptError("invalid receipt items list format")
    return Receipt(retailer=_string_field(payload, "retailer"),
                   purchase_date=_string_field(payload, "purchaseDate"),
                   purchase_time=_string_field(payload, "purchaseTime"),
                   items=tuple(decode_item(item) for item in items),
                   total=_string_field(payload, "total"))


def parse_purchase_date(value: str) -> date:
    """ Parses a strict YYYY-MM-DD date, raising ValueError otherwise """
    match = DATE_PATTERN.fullmatch(value)
    if not match:
        raise ValueError(f"invalid purchase date ({value})")
    year, month, day = (int(part) for part in match.groups())
    return date(year, month, day)


def parse_purchase_time(value: str) -> Tuple[int, int]:
    """ Parses a strict 24-hour HH:MM time into (hour, minute) """
    match = TIME_PATTERN.fullmatch(value)
    if not match:
        raise ValueError(f"invalid purchase time ({value})")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"invalid purchase time ({value})")
    return hour, minute


def is_valid_item(item: Item) -> bool:
    return bool(SHORT_DESCRIPTION_PATTERN.fullmatch(item.short_description)
                and AMOUNT_PATTERN.fullmatch(item.price))


def is_valid(receipt: Receipt) -> bool:
    """ Checks every format rule of a receipt; says nothing about which rule failed """
    if not RETAILER_PATTERN.fullmatch(receipt.retailer) or not AMOUNT_PATTERN.fullmatch(receipt.total):
        return False
    try:
        parse_purchase_date(receipt.purchase_date)
        parse_purchase_time(receipt.purchase_time)
    except ValueError:
        return False
    if len(receipt.items) < 1:
        return False
    return all(is_valid_item(item) for item in receipt.items)
