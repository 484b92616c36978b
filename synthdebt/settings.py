"""
settings.py - System configuration

SystemSettings is an immutable bundle of every policy knob the ledgers read:
fee period ring length and duration, debt cache staleness, circuit breaker
factor, issuance ratio and claim threshold, reward escrow duration and
minimum stake time.

Components hold a reference to one SystemSettings instance; changing a
setting means building a new instance (with_overrides) and swapping it in
through DebtSystem.update_settings().
"""

from __future__ import annotations
from dataclasses import dataclass, fields, replace
from datetime import timedelta
from decimal import Decimal
from typing import Any, Mapping

from .core import ValidationError, to_decimal, ZERO, UNIT


MIN_FEE_PERIOD_DURATION = timedelta(days=1)
MAX_FEE_PERIOD_DURATION = timedelta(days=60)
MAX_ISSUANCE_RATIO = UNIT


@dataclass(frozen=True, slots=True)
class SystemSettings:
    """
    Policy configuration shared by DebtLedger, ShareLedger and DistributionLedger.

    Attributes:
        fee_period_length: Number of periods in the ring (N >= 2)
        fee_period_duration: Minimum time the open period lasts before it can close
        debt_snapshot_stale_time: Age after which the debt cache is stale
        price_deviation_threshold_factor: Circuit breaker factor on the debt ratio
        issuance_ratio: Maximum debt per unit of collateral value
        target_threshold: Slack above issuance_ratio still allowed to claim
        escrow_duration: Vesting duration for claimed rewards
        minimum_stake_time: Time after an issue before the account may self-burn
        stable_asset: Asset key of the stable asset (rate fixed at 1)
    """
    fee_period_length: int = 2
    fee_period_duration: timedelta = timedelta(days=7)
    debt_snapshot_stale_time: timedelta = timedelta(seconds=43800)
    price_deviation_threshold_factor: Decimal = Decimal("3")
    issuance_ratio: Decimal = Decimal("0.2")
    target_threshold: Decimal = Decimal("0.01")
    escrow_duration: timedelta = timedelta(weeks=52)
    minimum_stake_time: timedelta = timedelta(0)
    stable_asset: str = "sUSD"

    def __post_init__(self):
        # Coerce numeric fields passed as int/float/str
        for name in ('price_deviation_threshold_factor', 'issuance_ratio', 'target_threshold'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value, name))

        if not isinstance(self.fee_period_length, int) or self.fee_period_length < 2:
            raise ValidationError(f"fee_period_length must be an int >= 2, got {self.fee_period_length!r}")
        if not MIN_FEE_PERIOD_DURATION <= self.fee_period_duration <= MAX_FEE_PERIOD_DURATION:
            raise ValidationError(
                f"fee_period_duration must be within [{MIN_FEE_PERIOD_DURATION}, "
                f"{MAX_FEE_PERIOD_DURATION}], got {self.fee_period_duration}"
            )
        if self.debt_snapshot_stale_time <= timedelta(0):
            raise ValidationError("debt_snapshot_stale_time must be positive")
        if self.price_deviation_threshold_factor < UNIT:
            raise ValidationError("price_deviation_threshold_factor must be >= 1")
        if not ZERO < self.issuance_ratio <= MAX_ISSUANCE_RATIO:
            raise ValidationError(f"issuance_ratio must be in (0, 1], got {self.issuance_ratio}")
        if self.target_threshold < ZERO:
            raise ValidationError("target_threshold cannot be negative")
        if self.escrow_duration < timedelta(0) or self.minimum_stake_time < timedelta(0):
            raise ValidationError("durations cannot be negative")
        if not self.stable_asset or not self.stable_asset.strip():
            raise ValidationError("stable_asset cannot be empty")

    @property
    def claim_ratio_threshold(self) -> Decimal:
        """Highest debt/collateral ratio at which fees can still be claimed."""
        return self.issuance_ratio * (UNIT + self.target_threshold)

    def with_overrides(self, **changes: Any) -> 'SystemSettings':
        """Return a copy with the given fields replaced (validated again)."""
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise ValidationError(f"Unknown settings: {sorted(unknown)}")
        return replace(self, **_coerce(changes))

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> 'SystemSettings':
        """
        Build settings from a plain mapping (e.g. parsed JSON or environment).

        Durations may be given as timedelta or as a number of seconds.
        """
        return cls().with_overrides(**dict(values))


_DURATION_FIELDS = (
    'fee_period_duration', 'debt_snapshot_stale_time', 'escrow_duration', 'minimum_stake_time',
)


def _coerce(changes: Mapping[str, Any]) -> dict:
    coerced = dict(changes)
    for name in _DURATION_FIELDS:
        value = coerced.get(name)
        if value is not None and not isinstance(value, timedelta):
            coerced[name] = timedelta(seconds=float(to_decimal(value, name)))
    if 'fee_period_length' in coerced and isinstance(coerced['fee_period_length'], str):
        coerced['fee_period_length'] = int(coerced['fee_period_length'])
    return coerced
