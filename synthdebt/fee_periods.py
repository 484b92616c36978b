"""
fee_periods.py - Fixed-size ring of fee periods

Index 0 is the open (current) period, indices 1..N-1 are closed periods from
newest to oldest. Closing rotates the ring: the oldest slot is reused for a
fresh open period and every other period shifts one index older. Rotation
only moves a base offset, so no period is copied.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterator, List

from .core import ValidationError, ZERO


CURRENT_PERIOD = 0
LAST_CLOSED_PERIOD = 1


@dataclass(slots=True)
class FeePeriod:
    """One accounting window of fees and rewards."""
    period_id: int
    start_time: datetime
    debt_at_close: Decimal = ZERO
    share_supply_at_close: Decimal = ZERO
    fees_to_distribute: Decimal = ZERO
    fees_claimed: Decimal = ZERO
    rewards_to_distribute: Decimal = ZERO
    rewards_claimed: Decimal = ZERO

    @property
    def fees_outstanding(self) -> Decimal:
        return self.fees_to_distribute - self.fees_claimed

    @property
    def rewards_outstanding(self) -> Decimal:
        return self.rewards_to_distribute - self.rewards_claimed

    def copy(self) -> 'FeePeriod':
        return FeePeriod(
            self.period_id, self.start_time, self.debt_at_close, self.share_supply_at_close,
            self.fees_to_distribute, self.fees_claimed,
            self.rewards_to_distribute, self.rewards_claimed,
        )


class FeePeriodRing:
    """
    N fee periods addressed by age.

    Example:
        ring = FeePeriodRing(2, period_id=1, start_time=t0)
        ring[0].fees_to_distribute += Decimal("100")
        ring.rotate(period_id=2, start_time=t1)
        ring[1].fees_to_distribute  # Decimal("100")
    """

    def __init__(self, length: int, period_id: int, start_time: datetime):
        if length < 2:
            raise ValidationError(f"A fee period ring needs at least 2 periods, got {length}")
        self._slots: List[FeePeriod] = [FeePeriod(0, start_time) for _ in range(length)]
        self._base = 0
        self._slots[0] = FeePeriod(period_id, start_time)

    def __len__(self) -> int:
        return len(self._slots)

    def _slot(self, index: int) -> int:
        if not 0 <= index < len(self._slots):
            raise IndexError(f"Fee period index {index} out of range 0..{len(self._slots) - 1}")
        return (self._base + index) % len(self._slots)

    def __getitem__(self, index: int) -> FeePeriod:
        return self._slots[self._slot(index)]

    def __setitem__(self, index: int, period: FeePeriod) -> None:
        self._slots[self._slot(index)] = period

    def __iter__(self) -> Iterator[FeePeriod]:
        """Periods from current (0) to oldest (N-1)."""
        for index in range(len(self._slots)):
            yield self[index]

    @property
    def current(self) -> FeePeriod:
        return self[CURRENT_PERIOD]

    @property
    def oldest_index(self) -> int:
        return len(self._slots) - 1

    def claimable_indices(self) -> List[int]:
        """Closed period indices, oldest first."""
        return list(range(self.oldest_index, CURRENT_PERIOD, -1))

    def rotate(self, period_id: int, start_time: datetime) -> FeePeriod:
        """
        Evict the oldest period and open a fresh one at index 0.

        Returns:
            The evicted period
        """
        oldest = self[self.oldest_index]
        if period_id <= self.current.period_id:
            raise ValidationError(
                f"New period id {period_id} must exceed current {self.current.period_id}"
            )
        # The oldest slot becomes index 0 once the base steps back
        self._base = (self._base - 1) % len(self._slots)
        self._slots[self._base] = FeePeriod(period_id, start_time)
        return oldest

    def __repr__(self) -> str:
        ids = ", ".join(str(p.period_id) for p in self)
        return f"FeePeriodRing([{ids}])"
