"""
clock.py - Logical time shared by the ledger components

All policy timeouts (fee period duration, staleness windows, stake time)
compare against the clock reading taken at operation start. Time only moves
forward.
"""

from __future__ import annotations
from datetime import datetime
from typing import Optional

EPOCH = datetime(1970, 1, 1)


class LogicalClock:
    """Forward-only logical clock (default start: 1970-01-01)."""

    def __init__(self, initial_time: Optional[datetime] = None):
        self._current_time: datetime = initial_time or EPOCH

    @property
    def current_time(self) -> datetime:
        return self._current_time

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the clock to a new time.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    def seconds_since_epoch(self) -> int:
        return int((self._current_time - EPOCH).total_seconds())

    def __repr__(self) -> str:
        return f"LogicalClock({self._current_time.isoformat()})"
