# smmpanel/money.py
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")
PER_UNITS = 1000


def to_cents(amount: Decimal) -> int:
    """Decimal currency amount -> integer minor units, rounding half-up."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def compute_charge(quantity: int, rate: Decimal) -> int:
    """Charge in cents for `quantity` units of a service priced `rate` per 1000.

    Rounded half-up to 2 decimals at computation time. May be 0 for tiny
    quantities of cheap services; callers reject those orders.
    """
    charge = (Decimal(quantity) / PER_UNITS * Decimal(rate)).quantize(CENT, rounding=ROUND_HALF_UP)
    return to_cents(charge)
