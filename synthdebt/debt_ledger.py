"""
debt_ledger.py - Cached system debt

DebtLedger keeps a trusted, timestamped total of system debt so that issue,
burn and claim never have to revalue every asset on the hot path.

    total_debt = max(0, Σ per_asset_debt + external_debt − Σ excluded_debt)

per_asset_debt[k] is supply(k) × rate(k). Excluded debt is debt backed by
something other than the native collateral (wrappers, other collateral
pools); it is tracked per asset and subtracted from the total.

Cache life cycle:
    - Created invalid with no timestamp (always stale until the first snapshot)
    - take_snapshot(): full revaluation, stamps the timestamp, sets validity
    - update_cached_debt_with_rates(): incremental revaluation of named assets;
      can only ever mark the cache invalid, never valid again
    - update_debt_cache_validity(): privileged validity reset

Reads degrade gracefully (a missing or zero rate contributes 0 and flags the
result invalid); mutations require a privileged caller and are rejected
otherwise.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple
import copy

from .clock import LogicalClock
from .core import (
    AccessControl, AssetSupply, AssetValues, DebtCacheInfo, ExternalDebtSource, PriceOracle,
    SuspensionFlags, StaleOrInvalidPriceError, ValidationError,
    ROLE_ISSUER, ROLE_EXCHANGER, SECTION_SYSTEM,
    quantize_amount, to_decimal, ZERO, UNIT,
)
from .settings import SystemSettings
from .writer import LedgerComponent, SingleWriter


@dataclass(slots=True)
class DebtSnapshot:
    """
    Cached debt valuation.

    Attributes:
        total_debt: Derived total (see module docstring), never negative
        per_asset_debt: Asset key -> supply × rate at last valuation
        excluded_debt: Asset key -> non-native-backed debt
        timestamp: Time of the last full snapshot (None = never taken)
        invalid: Whether any rate used since the last full snapshot was invalid
        external_debt: Debt outside the token supply at last snapshot
    """
    total_debt: Decimal = ZERO
    per_asset_debt: AssetValues = field(default_factory=dict)
    excluded_debt: AssetValues = field(default_factory=dict)
    timestamp: Optional[datetime] = None
    invalid: bool = True
    external_debt: Decimal = ZERO


def _sum(values: AssetValues) -> Decimal:
    # Sorted accumulation for deterministic sums
    return sum((values[k] for k in sorted(values)), ZERO)


class DebtLedger(LedgerComponent):
    """
    Cached total and per-asset system debt.

    Privileged callers: the owner and the issuer/exchanger roles.
    """

    _STATE_FIELDS = ('_snapshot', '_excluded_debt_imported')

    def __init__(
        self,
        oracle: PriceOracle,
        supply: AssetSupply,
        clock: LogicalClock,
        settings: SystemSettings,
        writer: SingleWriter,
        access: Optional[AccessControl] = None,
        external: Optional[ExternalDebtSource] = None,
        status: Optional[SuspensionFlags] = None,
        name: str = "debt_cache",
        verbose: bool = False,
    ):
        super().__init__(name, clock, settings, writer, access or AccessControl("owner"), verbose)
        self.oracle = oracle
        self.supply = supply
        self.external = external
        self.status = status
        self._snapshot = DebtSnapshot()
        self._excluded_debt_imported = False

    # ========================================================================
    # READS
    # ========================================================================

    @property
    def cached_debt(self) -> Decimal:
        return self._snapshot.total_debt

    @property
    def cache_timestamp(self) -> Optional[datetime]:
        return self._snapshot.timestamp

    @property
    def cache_invalid(self) -> bool:
        return self._snapshot.invalid

    def cached_asset_debt(self, asset_key: str) -> Decimal:
        return self._snapshot.per_asset_debt.get(asset_key, ZERO)

    def cached_asset_debts(self, asset_keys: Sequence[str]) -> List[Decimal]:
        return [self.cached_asset_debt(k) for k in asset_keys]

    def excluded_debt(self, asset_key: str) -> Decimal:
        return self._snapshot.excluded_debt.get(asset_key, ZERO)

    def excluded_debt_entries(self) -> AssetValues:
        return dict(self._snapshot.excluded_debt)

    def total_excluded_debt(self) -> Decimal:
        return _sum(self._snapshot.excluded_debt)

    @property
    def excluded_debt_imported(self) -> bool:
        return self._excluded_debt_imported

    def is_stale(self) -> bool:
        """True if no snapshot was ever taken or the last one is older than the stale time."""
        timestamp = self._snapshot.timestamp
        if timestamp is None:
            return True
        return self.clock.current_time - timestamp > self.settings.debt_snapshot_stale_time

    def cache_info(self) -> DebtCacheInfo:
        return DebtCacheInfo(
            debt=self._snapshot.total_debt,
            timestamp=self._snapshot.timestamp,
            is_invalid=self._snapshot.invalid,
            is_stale=self.is_stale(),
        )

    def snapshot(self) -> DebtSnapshot:
        """Point-in-time copy of the cached snapshot."""
        return copy.deepcopy(self._snapshot)

    def valid_cached_debt(self) -> Decimal:
        """
        Cached total debt, for operations that must not run on a bad cache.

        Raises:
            StaleOrInvalidPriceError: If the cache is stale or flagged invalid
        """
        if self._snapshot.invalid:
            raise StaleOrInvalidPriceError("Debt cache is invalid", reason="debt_cache_invalid")
        if self.is_stale():
            raise StaleOrInvalidPriceError("Debt cache is stale", reason="debt_cache_stale")
        return self._snapshot.total_debt

    def current_debt(self) -> Tuple[Decimal, bool]:
        """
        Revalue every asset now, without touching the cache.

        Returns:
            (total, any_invalid) where any_invalid is True if any rate or the
            external debt source is stale, missing or flagged
        """
        values, any_invalid = self._value_assets(self.supply.asset_keys())
        external, external_invalid = self._external_debt()
        total = self._total(values, external, self._snapshot.excluded_debt)
        return total, any_invalid or external_invalid

    def current_asset_debts(self, asset_keys: Sequence[str]) -> Tuple[List[Decimal], bool]:
        values, any_invalid = self._value_assets(asset_keys)
        return [values[k] for k in asset_keys], any_invalid

    # ========================================================================
    # VALUATION HELPERS
    # ========================================================================

    def _rate(self, asset_key: str) -> Tuple[Decimal, bool]:
        if asset_key == self.settings.stable_asset:
            return UNIT, False
        value, invalid = self.oracle.rate(asset_key)
        if value is None or value <= ZERO:
            return ZERO, True
        return value, invalid

    def _asset_value(self, asset_key: str, rate: Decimal) -> Decimal:
        return quantize_amount(self.supply.total_supply(asset_key) * rate)

    def _value_assets(self, asset_keys: Sequence[str]) -> Tuple[AssetValues, bool]:
        values: AssetValues = {}
        any_invalid = False
        for key in asset_keys:
            rate, invalid = self._rate(key)
            values[key] = self._asset_value(key, rate)
            any_invalid = any_invalid or invalid
        return values, any_invalid

    def _external_debt(self) -> Tuple[Decimal, bool]:
        if self.external is None:
            return ZERO, False
        debt, invalid = self.external.external_debt()
        return to_decimal(debt, "external_debt"), invalid

    @staticmethod
    def _total(per_asset: AssetValues, external: Decimal, excluded: AssetValues) -> Decimal:
        total = _sum(per_asset) + external - _sum(excluded)
        return max(ZERO, total)

    def _recompute_total(self) -> None:
        snap = self._snapshot
        snap.total_debt = self._total(snap.per_asset_debt, snap.external_debt, snap.excluded_debt)

    def _require_writer(self, caller: Optional[str]) -> None:
        self.access.require(caller, ROLE_ISSUER, ROLE_EXCHANGER)
        if self.status is not None and caller != self.access.owner:
            self.status.require_active(SECTION_SYSTEM)

    def _set_validity(self, invalid: bool) -> None:
        if self._snapshot.invalid != invalid:
            self._snapshot.invalid = invalid
            self._emit("DebtCacheValidityChanged", is_invalid=invalid)

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    def take_snapshot(self, caller: str) -> DebtSnapshot:
        """
        Revalue every listed asset and rewrite the cache.

        Stamps timestamp=now and sets validity from the rates used. Apart
        from update_debt_cache_validity(), this is the only way the invalid
        flag is ever cleared.

        Returns:
            A copy of the new snapshot
        """
        with self.writer.transaction(self):
            self._require_writer(caller)
            values, any_invalid = self._value_assets(self.supply.asset_keys())
            external, external_invalid = self._external_debt()

            snap = self._snapshot
            snap.per_asset_debt = values
            snap.external_debt = external
            snap.timestamp = self.clock.current_time
            self._recompute_total()
            self._set_validity(any_invalid or external_invalid)
            self._emit("DebtCacheSnapshotTaken", debt=snap.total_debt, is_invalid=snap.invalid)
            return self.snapshot()

    def update_cached_debt_with_rates(
        self,
        asset_keys: Sequence[str],
        rates: Sequence[Optional[Decimal]],
        any_invalid: bool,
        caller: str,
    ) -> Decimal:
        """
        Revalue only the named assets at the given rates.

        Other assets keep their cached contribution; the total moves by the
        delta. The timestamp is not refreshed. An invalid rate marks the whole
        cache invalid until the next snapshot or validity reset.

        Returns:
            The new cached total
        """
        if len(asset_keys) != len(rates):
            raise self._reject(ValidationError(
                f"{len(asset_keys)} keys but {len(rates)} rates"
            ))
        checked: List[Tuple[str, Decimal]] = []
        for key, rate in zip(asset_keys, rates):
            if not key or not key.strip():
                raise self._reject(ValidationError("asset key cannot be empty"))
            if rate is None:
                checked.append((key, ZERO))
                any_invalid = True
                continue
            rate = to_decimal(rate, f"rate[{key}]")
            if rate < ZERO:
                raise self._reject(ValidationError(f"rate for {key} cannot be negative"))
            if rate == ZERO:
                any_invalid = True
            checked.append((key, rate))

        with self.writer.transaction(self):
            self._require_writer(caller)
            before = self._snapshot.total_debt
            for key, rate in checked:
                self._snapshot.per_asset_debt[key] = self._asset_value(key, rate)
            self._recompute_total()
            if any_invalid:
                self._set_validity(True)
            self._emit(
                "DebtCacheUpdated",
                asset_keys=tuple(k for k, _ in checked),
                delta=self._snapshot.total_debt - before,
                debt=self._snapshot.total_debt,
            )
            return self._snapshot.total_debt

    def update_cached_debts(self, asset_keys: Sequence[str], caller: str) -> Decimal:
        """Fetch current rates from the oracle and revalue the named assets."""
        rates: List[Optional[Decimal]] = []
        any_invalid = False
        for key in asset_keys:
            rate, invalid = self._rate(key)
            rates.append(rate)
            any_invalid = any_invalid or invalid
        return self.update_cached_debt_with_rates(asset_keys, rates, any_invalid, caller)

    def update_cached_stable_debt(self, delta: Decimal, caller: str) -> Decimal:
        """
        Adjust the stable asset's cached contribution by a signed amount.

        Issue and burn move stable supply 1:1 with debt, so they update the
        cache directly instead of waiting for the next snapshot.
        """
        delta = to_decimal(delta, "delta")
        with self.writer.transaction(self):
            self._require_writer(caller)
            if delta == ZERO:
                return self._snapshot.total_debt
            key = self.settings.stable_asset
            updated = self._snapshot.per_asset_debt.get(key, ZERO) + delta
            if updated < ZERO:
                raise self._reject(ValidationError(
                    f"Cached {key} debt would go negative ({updated})",
                    reason="negative_cached_debt",
                ))
            self._snapshot.per_asset_debt[key] = updated
            self._recompute_total()
            self._emit("DebtCacheUpdated", asset_keys=(key,), delta=delta, debt=self._snapshot.total_debt)
            return self._snapshot.total_debt

    def update_debt_cache_validity(self, currently_invalid: bool, caller: str) -> None:
        """Privileged validity reset (or set) without a full snapshot."""
        with self.writer.transaction(self):
            self.access.require(caller, ROLE_ISSUER)
            self._set_validity(bool(currently_invalid))

    def record_excluded_debt_delta(self, asset_key: str, signed_delta: Decimal, caller: str) -> Decimal:
        """
        Adjust the excluded (non-native-backed) debt of an asset.

        Raises:
            ValidationError: If the entry would go negative

        Returns:
            The asset's new excluded debt
        """
        if not asset_key or not asset_key.strip():
            raise self._reject(ValidationError("asset key cannot be empty"))
        signed_delta = to_decimal(signed_delta, "delta")
        with self.writer.transaction(self):
            self._require_writer(caller)
            updated = self.excluded_debt(asset_key) + signed_delta
            if updated < ZERO:
                raise self._reject(ValidationError(
                    f"Excluded debt for {asset_key} would go negative ({updated})",
                    reason="negative_excluded_debt",
                ))
            self._snapshot.excluded_debt[asset_key] = updated
            self._recompute_total()
            self._emit("ExcludedDebtChanged", asset_key=asset_key, delta=signed_delta, excluded=updated)
            return updated

    def import_excluded_debt(self, prior_ledger: 'DebtLedger', caller: str) -> AssetValues:
        """
        One-time migration of excluded debt entries from a prior ledger.

        Imported amounts are added to any entries recorded here already.

        Raises:
            ValidationError: If excluded debt was already imported
        """
        with self.writer.transaction(self):
            self.access.require_owner(caller)
            if self._excluded_debt_imported:
                raise self._reject(ValidationError(
                    "Excluded debt already imported", reason="already_imported"
                ))
            imported = prior_ledger.excluded_debt_entries()
            for key in sorted(imported):
                self._snapshot.excluded_debt[key] = self.excluded_debt(key) + imported[key]
            self._excluded_debt_imported = True
            self._recompute_total()
            self._emit("ExcludedDebtImported", source=prior_ledger.name, entries=len(imported))
            return self.excluded_debt_entries()

    def purge_cached_asset_debt(self, asset_key: str, caller: str) -> None:
        """
        Drop the cached entry of an asset that is no longer listed.

        Raises:
            ValidationError: If the asset is still listed or has no entry
        """
        with self.writer.transaction(self):
            self.access.require_owner(caller)
            if asset_key in self.supply.asset_keys():
                raise self._reject(ValidationError(f"Asset {asset_key} is still listed"))
            if asset_key not in self._snapshot.per_asset_debt:
                raise self._reject(ValidationError(f"No cached debt for {asset_key}"))
            del self._snapshot.per_asset_debt[asset_key]
            self._recompute_total()
            self._emit("DebtCachePurged", asset_key=asset_key, debt=self._snapshot.total_debt)

    def __repr__(self) -> str:
        info = self.cache_info()
        return (f"DebtLedger({self.name}: debt={info.debt}, invalid={info.is_invalid}, "
                f"stale={info.is_stale})")
