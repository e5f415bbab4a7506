from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Union

CENTS = Decimal("0.01")

Amount = Union[Decimal, int, str]


def to_amount(value: Amount) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def total_due(base_fee: Amount, charges: Iterable[Amount]) -> Decimal:
    """Consultation fee plus every attached charge."""
    total = to_amount(base_fee)
    for charge in charges:
        total += to_amount(charge)
    return total.quantize(CENTS)
