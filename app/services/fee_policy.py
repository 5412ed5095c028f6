"""
Processor fee for a bank-debit charge.

A FeeSchedule is an explicit, versioned value: percentage (in basis points,
rounded half up to the cent) clamped to [floor, ceiling]. The resolved fee
and the schedule version are stored on each RentPayment, so changing the
schedule never alters historical rows.
"""
from dataclasses import dataclass
from typing import Optional

from app.core.config import settings

_BPS_DENOMINATOR = 10_000


@dataclass(frozen=True)
class FeeSchedule:
    version: str
    rate_bps: int
    floor: int
    ceiling: int

    def __post_init__(self):
        if self.rate_bps < 0 or self.floor < 0:
            raise ValueError("fee schedule rate and floor must be non-negative")
        if self.ceiling < self.floor:
            raise ValueError("fee schedule ceiling must be >= floor")

    def compute_fee(self, amount: int) -> int:
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise TypeError("amount must be an integer number of cents")
        if amount < 0:
            raise ValueError("amount must be non-negative")
        # round half up: floor((amount * bps + denom / 2) / denom)
        raw = (amount * self.rate_bps + _BPS_DENOMINATOR // 2) // _BPS_DENOMINATOR
        return min(max(raw, self.floor), self.ceiling)


def get_fee_schedule() -> FeeSchedule:
    """The schedule currently in effect, from settings."""
    return FeeSchedule(
        version=settings.FEE_SCHEDULE_VERSION,
        rate_bps=settings.FEE_RATE_BPS,
        floor=settings.FEE_FLOOR,
        ceiling=settings.FEE_CEILING,
    )


def compute_fee(amount: int, schedule: Optional[FeeSchedule] = None) -> int:
    return (schedule or get_fee_schedule()).compute_fee(amount)
