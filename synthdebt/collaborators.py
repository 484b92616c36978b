"""
collaborators.py - In-memory implementations of the external collaborators

The ledgers only depend on the protocols in core.py. These implementations
back simulations, examples and tests:

- InMemorySynthSupply: token balances per asset (AssetSupply + TokenMintBurn)
- StaticCollateralValuer: fixed collateral value per account
- SystemStatus: section suspension flags (SuspensionFlags)
- InMemoryRewardEscrow: vesting entries for claimed rewards (RewardEscrow)
- InMemoryDelegateApprovals: claim-on-behalf approvals (DelegateApprovals)
- StaticExternalDebt: fixed external debt reading (ExternalDebtSource)
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Set, Tuple

from .clock import LogicalClock
from .core import (
    Balances, ValidationError, SystemSuspendedError, CircuitBreakerTrippedError,
    CIRCUIT_BREAKER_SUSPENSION_REASON, SECTION_SYSTEM,
    positive_amount, to_decimal, ZERO,
)


class InMemorySynthSupply:
    """
    Token balances for every synthetic asset.

    Implements AssetSupply (asset_keys, total_supply) and TokenMintBurn
    (issue_stable, burn_stable). Balances can never go negative.
    """

    def __init__(self, stable_asset: str = "sUSD", asset_keys: Optional[List[str]] = None):
        self.stable_asset = stable_asset
        self._balances: Dict[str, Dict[str, Decimal]] = {stable_asset: defaultdict(lambda: ZERO)}
        for key in asset_keys or ():
            self.register_asset(key)

    def register_asset(self, asset_key: str) -> None:
        if asset_key in self._balances:
            raise ValidationError(f"Asset {asset_key} already registered")
        self._balances[asset_key] = defaultdict(lambda: ZERO)

    def remove_asset(self, asset_key: str) -> None:
        if asset_key == self.stable_asset:
            raise ValidationError("Cannot remove the stable asset")
        if self.total_supply(asset_key) > ZERO:
            raise ValidationError(f"Asset {asset_key} still has supply")
        del self._balances[asset_key]

    def asset_keys(self) -> List[str]:
        return sorted(self._balances)

    def total_supply(self, asset_key: str) -> Decimal:
        balances = self._balances.get(asset_key)
        if balances is None:
            return ZERO
        # Sorted accumulation for deterministic sums
        return sum((balances[a] for a in sorted(balances)), ZERO)

    def balance_of(self, account: str, asset_key: Optional[str] = None) -> Decimal:
        balances = self._balances.get(asset_key or self.stable_asset)
        if balances is None:
            return ZERO
        return balances.get(account, ZERO)

    def issue(self, account: str, asset_key: str, amount: Decimal) -> None:
        amount = positive_amount(amount)
        if asset_key not in self._balances:
            raise ValidationError(f"Asset {asset_key} not registered")
        self._balances[asset_key][account] += amount

    def burn(self, account: str, asset_key: str, amount: Decimal) -> None:
        amount = positive_amount(amount)
        if asset_key not in self._balances:
            raise ValidationError(f"Asset {asset_key} not registered")
        current = self._balances[asset_key].get(account, ZERO)
        if amount > current:
            raise ValidationError(
                f"{account} holds {current} {asset_key}, cannot burn {amount}",
                reason="insufficient_balance",
            )
        self._balances[asset_key][account] = current - amount

    def issue_stable(self, account: str, amount: Decimal) -> None:
        self.issue(account, self.stable_asset, amount)

    def burn_stable(self, account: str, amount: Decimal) -> None:
        self.burn(account, self.stable_asset, amount)

    def __repr__(self):
        return f"InMemorySynthSupply({len(self._balances)} assets, stable={self.stable_asset})"


class StaticCollateralValuer:
    """Collateral value per account, in the reference unit (0 when unknown)."""

    def __init__(self, values: Optional[Balances] = None):
        self.values: Balances = {
            account: to_decimal(v, account) for account, v in (values or {}).items()
        }

    def collateral_value(self, account: str) -> Decimal:
        return self.values.get(account, ZERO)

    def set_collateral(self, account: str, value: Decimal) -> None:
        value = to_decimal(value, "collateral")
        if value < ZERO:
            raise ValidationError("collateral value cannot be negative")
        self.values[account] = value


class SystemStatus:
    """
    Suspension flags per section.

    Suspending SECTION_SYSTEM blocks every section. A section suspended by the
    circuit breaker raises CircuitBreakerTrippedError, anything else raises
    SystemSuspendedError.
    """

    def __init__(self):
        self._suspensions: Dict[str, str] = {}

    def require_active(self, section: str) -> None:
        for blocked in (SECTION_SYSTEM, section):
            reason = self._suspensions.get(blocked)
            if reason is None:
                continue
            if reason == CIRCUIT_BREAKER_SUSPENSION_REASON:
                raise CircuitBreakerTrippedError(f"{blocked} suspended by circuit breaker")
            raise SystemSuspendedError(f"{blocked} suspended: {reason}")

    def suspend(self, section: str, reason: str) -> None:
        self._suspensions[section] = reason

    def resume(self, section: str) -> None:
        self._suspensions.pop(section, None)

    def is_suspended(self, section: str) -> bool:
        return section in self._suspensions or SECTION_SYSTEM in self._suspensions

    def suspension_reason(self, section: str) -> Optional[str]:
        return self._suspensions.get(section)


@dataclass(frozen=True, slots=True)
class VestingEntry:
    account: str
    amount: Decimal
    created_at: datetime
    end_time: datetime


class InMemoryRewardEscrow:
    """Escrow that locks appended reward amounts until their end time."""

    def __init__(self, clock: LogicalClock):
        self.clock = clock
        self.entries: List[VestingEntry] = []

    def append_vesting_entry(self, account: str, amount: Decimal, duration: timedelta) -> None:
        amount = positive_amount(amount)
        now = self.clock.current_time
        self.entries.append(VestingEntry(account, amount, now, now + duration))

    def balance_of(self, account: str) -> Decimal:
        """Total escrowed amount for the account, vested or not."""
        return sum((e.amount for e in self.entries if e.account == account), ZERO)

    def vested_balance_of(self, account: str) -> Decimal:
        now = self.clock.current_time
        return sum(
            (e.amount for e in self.entries if e.account == account and e.end_time <= now),
            ZERO,
        )

    def total_escrowed(self) -> Decimal:
        return sum((e.amount for e in self.entries), ZERO)


class InMemoryDelegateApprovals:
    """Which delegates may claim fees on behalf of which accounts."""

    def __init__(self):
        self._approvals: Set[Tuple[str, str]] = set()

    def approve_claim_on_behalf(self, authoriser: str, delegate: str) -> None:
        self._approvals.add((authoriser, delegate))

    def remove_claim_on_behalf(self, authoriser: str, delegate: str) -> None:
        self._approvals.discard((authoriser, delegate))

    def can_claim_for(self, authoriser: str, delegate: str) -> bool:
        return (authoriser, delegate) in self._approvals


class StaticExternalDebt:
    """External debt reading that only changes when set."""

    def __init__(self, debt: Decimal = ZERO, invalid: bool = False):
        self.debt = to_decimal(debt, "debt")
        self.invalid = invalid

    def external_debt(self) -> Tuple[Decimal, bool]:
        return self.debt, self.invalid

    def set_debt(self, debt: Decimal, invalid: bool = False) -> None:
        self.debt = to_decimal(debt, "debt")
        self.invalid = invalid
