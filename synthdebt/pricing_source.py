"""
pricing_source.py - Price oracles for debt valuation

Provides in-memory implementations of the PriceOracle protocol:
- StaticPriceOracle: Time-independent rates with explicit invalid flags
- TimeSeriesPriceOracle: Time-varying rates with a staleness window

All rates are quoted in the reference unit. The stable asset always has a
rate of exactly 1 and is never invalid.
"""

from __future__ import annotations
from bisect import bisect_right
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Set, Optional, List, Tuple, Iterable

from .clock import LogicalClock
from .core import to_decimal, ZERO, UNIT


class StaticPriceOracle:
    """
    Price oracle with static rates (time-independent).

    A rate is reported invalid when it is missing, non-positive, or has been
    flagged with flag_invalid().
    """

    def __init__(self, rates: Optional[Dict[str, Decimal]] = None, stable_asset: str = "sUSD"):
        """
        Initialize with a static rate map.

        Args:
            rates: Dictionary mapping asset keys to rates in the reference unit
            stable_asset: The asset whose rate is fixed at 1
        """
        self.stable_asset = stable_asset
        self.rates: Dict[str, Decimal] = {
            key: to_decimal(value, key) for key, value in (rates or {}).items()
        }
        self.invalid_keys: Set[str] = set()

    def rate(self, asset_key: str) -> Tuple[Optional[Decimal], bool]:
        if asset_key == self.stable_asset:
            return UNIT, False
        value = self.rates.get(asset_key)
        if value is None:
            return None, True
        return value, value <= ZERO or asset_key in self.invalid_keys

    def rates_for(self, asset_keys: Iterable[str]) -> Tuple[List[Optional[Decimal]], bool]:
        """Get rates for several assets plus whether any of them is invalid."""
        values = []
        any_invalid = False
        for key in asset_keys:
            value, invalid = self.rate(key)
            values.append(value)
            any_invalid = any_invalid or invalid
        return values, any_invalid

    def update_rate(self, asset_key: str, value: Decimal) -> None:
        """Update the rate of an asset (clears any invalid flag)."""
        self.rates[asset_key] = to_decimal(value, asset_key)
        self.invalid_keys.discard(asset_key)

    def update_rates(self, rates: Dict[str, Decimal]) -> None:
        for key, value in rates.items():
            self.update_rate(key, value)

    def flag_invalid(self, asset_key: str) -> None:
        self.invalid_keys.add(asset_key)

    def __repr__(self):
        return f"StaticPriceOracle({len(self.rates)} rates, stable={self.stable_asset})"


class TimeSeriesPriceOracle:
    """
    Price oracle with time-varying rates.

    Stores historical rate observations and answers with the most recent
    observation at or before the clock's current time. A rate older than
    rate_stale_period is returned but flagged invalid.

    Supports two initialization patterns:
    - Empty initialization for incremental addition via add_rate()
    - Batch initialization with complete rate paths for simulations
    """

    def __init__(
        self,
        clock: LogicalClock,
        rate_paths: Optional[Dict[str, List[Tuple[datetime, Decimal]]]] = None,
        rate_stale_period: timedelta = timedelta(hours=25),
        stable_asset: str = "sUSD",
    ):
        """
        Initialize the oracle.

        Args:
            clock: Clock providing the "now" used for lookups and staleness
            rate_paths: Optional dict mapping asset keys to (timestamp, rate) lists
            rate_stale_period: Maximum age of a usable observation
            stable_asset: The asset whose rate is fixed at 1

        Examples:
            oracle = TimeSeriesPriceOracle(clock)
            oracle.add_rate('sETH', datetime(2025, 1, 15), Decimal("3200"))

            oracle = TimeSeriesPriceOracle(clock, {
                'sETH': [(t0, 3000), (t1, 3100)],
                'sBTC': [(t0, 60000), (t1, 61000)],
            })
        """
        self.clock = clock
        self.rate_stale_period = rate_stale_period
        self.stable_asset = stable_asset
        self.rate_history: Dict[str, List[Tuple[datetime, Decimal]]] = {}

        if rate_paths:
            for key, path in rate_paths.items():
                if not path:
                    continue
                # Sort by timestamp to ensure chronological order
                self.rate_history[key] = sorted(
                    ((ts, to_decimal(value, key)) for ts, value in path),
                    key=lambda x: x[0],
                )

    def add_rate(self, asset_key: str, timestamp: datetime, value: Decimal) -> None:
        """Add a rate observation for an asset at a specific time."""
        history = self.rate_history.setdefault(asset_key, [])
        history.append((timestamp, to_decimal(value, asset_key)))
        history.sort(key=lambda x: x[0])

    def add_rates(self, rates: Dict[str, Decimal], timestamp: datetime) -> None:
        for key, value in rates.items():
            self.add_rate(key, timestamp, value)

    def observation_at(self, asset_key: str, timestamp: datetime) -> Optional[Tuple[datetime, Decimal]]:
        """
        Get the latest observation at or before the timestamp.

        Uses binary search for efficient O(log n) lookup.
        """
        history = self.rate_history.get(asset_key)
        if not history:
            return None
        timestamps = [ts for ts, _ in history]
        idx = bisect_right(timestamps, timestamp)
        if idx == 0:
            # No observation at or before timestamp
            return None
        return history[idx - 1]

    def rate(self, asset_key: str) -> Tuple[Optional[Decimal], bool]:
        if asset_key == self.stable_asset:
            return UNIT, False
        now = self.clock.current_time
        observation = self.observation_at(asset_key, now)
        if observation is None:
            return None, True
        observed_at, value = observation
        stale = now - observed_at > self.rate_stale_period
        return value, stale or value <= ZERO

    def __repr__(self):
        total_observations = sum(len(history) for history in self.rate_history.values())
        return (f"TimeSeriesPriceOracle({len(self.rate_history)} assets, "
                f"{total_observations} observations, stable={self.stable_asset})")
