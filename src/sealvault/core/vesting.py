from __future__ import annotations

from typing import Iterable

from .models import U32_MAX, VestSlice

BASIS_POINTS_DENOMINATOR = 10_000


def vested_fraction(vesting: Iterable[VestSlice], now: int) -> int:
    """
    Basis points of the total unlocked at ``now``.

    An empty schedule is fully vested. Otherwise every slice whose ``ts`` has
    passed contributes its ``bp``; the running sum saturates at the u32 limit
    and the result is capped at 10000, so unordered or over-allocated
    schedules stay within range.
    """
    slices = tuple(vesting)
    if not slices:
        return BASIS_POINTS_DENOMINATOR

    total = 0
    for vest_slice in slices:
        if vest_slice.ts <= now:
            total = min(total + vest_slice.bp, U32_MAX)
    return min(total, BASIS_POINTS_DENOMINATOR)


def vested_amount(amount: int, fraction_bp: int) -> int:
    """Portion of ``amount`` unlocked at ``fraction_bp``, truncated toward zero."""
    product = amount * fraction_bp
    quotient = abs(product) // BASIS_POINTS_DENOMINATOR
    return quotient if product >= 0 else -quotient
