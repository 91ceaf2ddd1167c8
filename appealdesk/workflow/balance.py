"""Remaining balance of an appeal after recorded utilizations."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

ZERO = Decimal("0")
CENT = Decimal("0.01")
# money columns are Numeric(14, 2)
MAX_AMOUNT = Decimal("1000000000000")


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() keeps floats like 0.1 from turning into binary noise
    return Decimal(str(value))


def amount_error(amount: Decimal) -> Optional[str]:
    """Why ``amount`` is not a storable positive money value, or ``None``."""
    if not amount.is_finite():
        return "must be a number"
    if amount <= 0:
        return "must be greater than zero"
    if amount >= MAX_AMOUNT:
        return "must be less than 1,000,000,000,000"
    if amount != amount.quantize(CENT):
        return "must have at most 2 decimal places"
    return None


@dataclass(frozen=True)
class Balance:
    """Balance of one appeal.

    ``raw`` is the signed audit value and may be negative; ``display`` is
    clamped at zero and ``over_utilized`` flags the clamp.
    """

    approved: Decimal
    utilized: Decimal
    raw: Decimal
    display: Decimal
    over_utilized: bool

    @property
    def utilized_percent(self) -> Decimal:
        if not self.approved:
            return ZERO
        return (self.utilized * 100 / self.approved).quantize(Decimal("0.1"))


def compute_remaining_balance(appeal, utilizations: Iterable) -> Balance:
    """Return ``approved_amount - sum(amount_utilized)`` for ``appeal``.

    Only utilizations whose ``appeal_id`` matches ``appeal.id`` are counted.
    Neither argument is modified.
    """
    approved = to_decimal(getattr(appeal, "approved_amount", None))
    utilized = sum(
        (to_decimal(u.amount_utilized) for u in utilizations if u.appeal_id == appeal.id),
        ZERO,
    )
    raw = approved - utilized
    return Balance(
        approved=approved,
        utilized=utilized,
        raw=raw,
        display=max(raw, ZERO),
        over_utilized=raw < 0,
    )
