"""
Line pricing for drinks sold in three cup sizes.

A line costs (base price + size surcharge) * quantity, rounded to cents.
Products are read as stored documents; snapshotting happens in orders.py.
"""

from typing import Mapping

from errors import InvalidCartLine, InvalidSize

SIZES = ("S", "M", "L")

DEFAULT_SIZE_SURCHARGE = {"S": 0.0, "M": 2.0, "L": 3.0}


def round2(value: float) -> float:
    return round(float(value), 2)


def surcharge_for(product: Mapping, size: str) -> float:
    if size not in SIZES:
        raise InvalidSize(size)
    table = product.get("size_surcharge")
    if table is None:
        table = DEFAULT_SIZE_SURCHARGE
    return float(table.get(size) or 0)


def unit_price(product: Mapping, size: str) -> float:
    return float(product.get("base_price") or 0) + surcharge_for(product, size)


def price_line(product: Mapping, size: str, quantity: int) -> float:
    # bool is an int subclass; True must not count as a quantity of 1
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidCartLine("quantity must be a positive integer")
    return round2(unit_price(product, size) * quantity)
