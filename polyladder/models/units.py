"""Price unit boundary.

Ladder, exit and order prices are configured in integer cents (1-99).
Simulation and trade records use a decimal price in [0, 1]. The conversion
is applied once, when a strategy or request is compiled.
"""

MIN_CENTS = 1
MAX_CENTS = 99


def is_valid_cents(cents: int | None) -> bool:
    """Check that a configured price is an integer number of cents in 1-99."""
    return isinstance(cents, int) and not isinstance(cents, bool) and MIN_CENTS <= cents <= MAX_CENTS


def cents_to_price(cents: int) -> float:
    """Convert integer cents to a decimal price."""
    return cents / 100
