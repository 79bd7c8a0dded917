"""Order and cart totals.

Shipping is free above FREE_SHIPPING_THRESHOLD, otherwise a flat fee; tax is a
flat rate on the subtotal.
"""
from typing import Iterable, Tuple

FREE_SHIPPING_THRESHOLD = 50
FLAT_SHIPPING = 10
TAX_RATE = 0.10
TOTAL_TOLERANCE = 0.01


def shipping_for(subtotal: float) -> float:
    return 0 if subtotal > FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING


def price_summary(lines: Iterable[Tuple[float, int]]) -> dict:
    """Totals for (unit_price, quantity) pairs."""
    subtotal = 0.0
    total_items = 0
    for unit_price, quantity in lines:
        subtotal += unit_price * quantity
        total_items += quantity
    shipping = shipping_for(subtotal)
    tax = subtotal * TAX_RATE
    return {
        "subtotal": subtotal,
        "total_items": total_items,
        "shipping": shipping,
        "tax": tax,
        "total": subtotal + shipping + tax,
    }


def totals_match(expected: float, declared: float) -> bool:
    # compare in cents so a difference of exactly one cent is accepted
    return round(abs(expected - declared), 2) <= TOTAL_TOLERANCE
