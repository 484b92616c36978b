"""
share_ledger.py - Debt shares and the debt-ratio circuit breaker

Debt shares represent each minter's proportional claim on system debt,
independent of which assets exist or how their prices move:

    debt_balance_of(account) = shares(account) / total_shares × system_debt

Issuing debt mints shares at the current debt-per-share ratio (1:1 for the
very first minter); burning debt burns shares at the same ratio, clamped to
what the account holds.

Every issue/burn first checks the circuit breaker: if the global debt ratio
moved by more than the configured factor since the last accepted
observation, issuance is suspended system-wide and the call completes as a
no-op instead of raising.

Share balances are checkpointed per fee period so the distribution ledger
can read each holder's share of a closed period long after the fact.
"""

from __future__ import annotations
from bisect import bisect_right
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .aggregator import SingleNetworkAggregator
from .clock import LogicalClock
from .core import (
    AccessControl, Balances, Checkpoints, CollateralValuer, DebtAggregator,
    PriceOracle, SuspensionFlags, TokenMintBurn,
    PolicyThresholdError, StaleOrInvalidPriceError, ValidationError,
    ROLE_FEE_POOL, ROLE_LIQUIDATOR, SECTION_SYSTEM, SECTION_ISSUANCE,
    CIRCUIT_BREAKER_SUSPENSION_REASON,
    positive_amount, quantize_amount, ZERO, UNIT,
)
from .debt_ledger import DebtLedger
from .settings import SystemSettings
from .writer import LedgerComponent, SingleWriter


INFINITE_DEVIATION = Decimal("Infinity")


def calculate_deviation(last: Decimal, fresh: Decimal) -> Decimal:
    """
    Symmetric deviation factor between two ratio observations.

    1 when there is no prior observation; infinite when the fresh value
    collapses to zero; otherwise max(last/fresh, fresh/last).
    """
    if last <= ZERO:
        return UNIT
    if fresh <= ZERO:
        return INFINITE_DEVIATION
    if last > fresh:
        return last / fresh
    return fresh / last


def _value_on_period(checkpoints: Checkpoints, period_id: int) -> Decimal:
    """Last checkpointed value at or before period_id (0 if none)."""
    period_ids = [pid for pid, _ in checkpoints]
    idx = bisect_right(period_ids, period_id)
    if idx == 0:
        return ZERO
    return checkpoints[idx - 1][1]


def _mark(checkpoints: Checkpoints) -> Tuple[int, Optional[Tuple[int, Decimal]]]:
    return len(checkpoints), (checkpoints[-1] if checkpoints else None)


def _rewind(checkpoints: Checkpoints, mark: Tuple[int, Optional[Tuple[int, Decimal]]]) -> None:
    length, tail = mark
    del checkpoints[length:]
    if tail is not None:
        checkpoints[-1] = tail


class ShareLedger(LedgerComponent):
    """
    Per-account debt shares with period checkpoints.

    Per-account states: NoDebt -> HasDebt (first issue) -> NoDebt (full burn
    or liquidation) -> HasDebt again. A zero balance stays a valid record.
    """

    _STATE_FIELDS = (
        '_shares', '_total_supply',
        'current_period_id', '_last_debt_ratio', '_last_issue_event',
    )

    def __init__(
        self,
        debt_ledger: DebtLedger,
        oracle: PriceOracle,
        collateral: CollateralValuer,
        tokens: TokenMintBurn,
        status: SuspensionFlags,
        clock: LogicalClock,
        settings: SystemSettings,
        writer: SingleWriter,
        access: Optional[AccessControl] = None,
        aggregator: Optional[DebtAggregator] = None,
        initial_period_id: int = 1,
        name: str = "issuer",
        verbose: bool = False,
    ):
        """
        Create a share ledger.

        Args:
            debt_ledger: Source of the cached system debt
            oracle: Rates used to express debt in other assets
            collateral: Collateral value per account
            tokens: Stable asset mint/burn
            status: Suspension flags consulted before every mutation
            aggregator: Feed for the circuit breaker's global debt ratio;
                        None aggregates this instance's debt cache and supply
            initial_period_id: Period id under which balances are checkpointed
        """
        super().__init__(name, clock, settings, writer, access or AccessControl("owner"), verbose)
        self.debt_ledger = debt_ledger
        self.oracle = oracle
        self.collateral = collateral
        self.tokens = tokens
        self.status = status
        self.aggregator = aggregator or SingleNetworkAggregator(debt_ledger, self)

        self._shares: Balances = {}
        self._total_supply: Decimal = ZERO
        self._balance_checkpoints: Dict[str, Checkpoints] = {}
        self._supply_checkpoints: Checkpoints = []
        self.current_period_id: int = initial_period_id
        self._last_debt_ratio: Decimal = ZERO
        self._last_issue_event: Dict[str, datetime] = {}

    def _checkpoint(self) -> Dict[str, Any]:
        # Checkpoint lists only append or rewrite their last entry, so a
        # length and tail per list is enough to rewind them
        state = super()._checkpoint()
        state['balance_marks'] = {a: _mark(c) for a, c in self._balance_checkpoints.items()}
        state['supply_mark'] = _mark(self._supply_checkpoints)
        return state

    def _restore(self, state: Dict[str, Any]) -> None:
        super()._restore(state)
        marks = state['balance_marks']
        for account in list(self._balance_checkpoints):
            if account in marks:
                _rewind(self._balance_checkpoints[account], marks[account])
            else:
                del self._balance_checkpoints[account]
        _rewind(self._supply_checkpoints, state['supply_mark'])

    # ========================================================================
    # SHARE READS
    # ========================================================================

    def share_balance_of(self, account: str) -> Decimal:
        return self._shares.get(account, ZERO)

    @property
    def total_share_supply(self) -> Decimal:
        return self._total_supply

    @property
    def last_debt_ratio(self) -> Decimal:
        return self._last_debt_ratio

    def accounts(self) -> List[str]:
        """Every account that ever held shares, including zero balances."""
        return sorted(self._shares)

    def has_debt(self, account: str) -> bool:
        return self.share_balance_of(account) > ZERO

    def share_percentage(self, account: str) -> Decimal:
        if self._total_supply <= ZERO:
            return ZERO
        return self.share_balance_of(account) / self._total_supply

    def balance_of_on_period(self, account: str, period_id: int) -> Decimal:
        """Share balance as it stood at the end of the given period."""
        return _value_on_period(self._balance_checkpoints.get(account, []), period_id)

    def total_supply_on_period(self, period_id: int) -> Decimal:
        return _value_on_period(self._supply_checkpoints, period_id)

    def share_percentage_on_period(self, account: str, period_id: int) -> Decimal:
        supply = self.total_supply_on_period(period_id)
        if supply <= ZERO:
            return ZERO
        return self.balance_of_on_period(account, period_id) / supply

    # ========================================================================
    # DEBT READS
    # ========================================================================

    def _debt_for_shares(self, shares: Decimal, total_debt: Decimal) -> Decimal:
        if self._total_supply <= ZERO:
            return ZERO
        return quantize_amount(shares * total_debt / self._total_supply, 'DEBT')

    def _shares_for_debt(self, amount: Decimal, total_debt: Decimal) -> Decimal:
        if self._total_supply <= ZERO:
            # First minter bootstraps shares 1:1 with debt
            return amount
        if total_debt <= ZERO:
            raise StaleOrInvalidPriceError(
                "System debt is zero while shares are outstanding", reason="zero_system_debt"
            )
        return quantize_amount(amount * self._total_supply / total_debt, 'SHARES')

    def _rate_of(self, asset_key: str) -> Decimal:
        if asset_key == self.settings.stable_asset:
            return UNIT
        value, invalid = self.oracle.rate(asset_key)
        if invalid or value is None or value <= ZERO:
            raise StaleOrInvalidPriceError(f"Rate for {asset_key} is stale or invalid")
        return value

    def debt_balance_of(self, account: str, asset_key: Optional[str] = None) -> Decimal:
        """
        The account's share of system debt, in the stable asset or asset_key.

        Returns 0 when no shares exist.

        Raises:
            StaleOrInvalidPriceError: If the debt cache or the asset's rate is
                                      stale or invalid
        """
        total_debt = self.debt_ledger.valid_cached_debt()
        debt = self._debt_for_shares(self.share_balance_of(account), total_debt)
        if asset_key is None:
            return debt
        return debt / self._rate_of(asset_key)

    def system_debt(self) -> Decimal:
        return self.debt_ledger.valid_cached_debt()

    def collateralisation_ratio(self, account: str) -> Decimal:
        """Debt / collateral value, 0 if the account has no collateral."""
        collateral = self.collateral.collateral_value(account)
        if collateral <= ZERO:
            return ZERO
        return self.debt_balance_of(account) / collateral

    def collateralisation_ratio_and_any_rates_invalid(self, account: str) -> Tuple[Decimal, bool]:
        """Like collateralisation_ratio() but reports a bad cache instead of raising."""
        info = self.debt_ledger.cache_info()
        debt = self._debt_for_shares(self.share_balance_of(account), info.debt)
        collateral = self.collateral.collateral_value(account)
        ratio = ZERO if collateral <= ZERO else debt / collateral
        return ratio, info.is_invalid or info.is_stale

    def max_issuable(self, account: str) -> Decimal:
        return quantize_amount(
            self.collateral.collateral_value(account) * self.settings.issuance_ratio, 'PAYOUT'
        )

    def _remaining_issuable(self, account: str, total_debt: Decimal) -> Tuple[Decimal, Decimal]:
        existing = self._debt_for_shares(self.share_balance_of(account), total_debt)
        remaining = self.max_issuable(account) - existing
        return max(ZERO, remaining), existing

    def remaining_issuable(self, account: str) -> Tuple[Decimal, Decimal]:
        """
        Returns:
            (remaining issuable amount, debt already issued)
        """
        return self._remaining_issuable(account, self.debt_ledger.valid_cached_debt())

    # ========================================================================
    # CIRCUIT BREAKER
    # ========================================================================

    def verify_circuit_breaker(self) -> bool:
        """
        Compare the fresh global debt ratio against the last accepted one.

        Within the deviation factor the stored ratio advances and True is
        returned. Beyond it, issuance is suspended, the stored ratio is kept
        and False is returned; the caller's operation becomes a no-op.

        Raises:
            StaleOrInvalidPriceError: If the aggregate feed is stale
        """
        with self.writer.transaction(self):
            info = self.aggregator.aggregate_debt_and_share_supply()
            if info.is_stale:
                raise self._reject(StaleOrInvalidPriceError(
                    "Aggregate debt feed is stale", reason="aggregate_stale"
                ))
            if info.share_supply <= ZERO:
                # No shares means no debt to protect; the next minter re-bootstraps
                self._last_debt_ratio = ZERO
                return True

            fresh = info.debt_ratio()
            deviation = calculate_deviation(self._last_debt_ratio, fresh)
            if deviation > self.settings.price_deviation_threshold_factor:
                self.status.suspend(SECTION_ISSUANCE, CIRCUIT_BREAKER_SUSPENSION_REASON)
                self._emit(
                    "CircuitBreakerTripped",
                    last_ratio=self._last_debt_ratio,
                    fresh_ratio=fresh,
                    deviation=deviation,
                )
                return False
            self._last_debt_ratio = fresh
            return True

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    def _require_active(self) -> None:
        self.status.require_active(SECTION_SYSTEM)
        self.status.require_active(SECTION_ISSUANCE)

    @staticmethod
    def _require_account(account: str) -> None:
        if not account or not account.strip():
            raise ValidationError("account cannot be empty")

    def _write_checkpoint(self, checkpoints: Checkpoints, value: Decimal) -> None:
        if checkpoints and checkpoints[-1][0] == self.current_period_id:
            checkpoints[-1] = (self.current_period_id, value)
        else:
            checkpoints.append((self.current_period_id, value))

    def _set_shares(self, account: str, shares: Decimal) -> None:
        self._total_supply = self._total_supply - self._shares.get(account, ZERO) + shares
        self._shares[account] = shares
        self._write_checkpoint(self._balance_checkpoints.setdefault(account, []), shares)
        self._write_checkpoint(self._supply_checkpoints, self._total_supply)

    def _issue(self, account: str, amount: Decimal, total_debt: Decimal) -> None:
        shares = self._shares_for_debt(amount, total_debt)
        self._set_shares(account, self.share_balance_of(account) + shares)
        self._last_issue_event[account] = self.clock.current_time
        self.debt_ledger.update_cached_stable_debt(amount, caller=self.name)
        self.tokens.issue_stable(account, amount)
        self._emit("SharesIssued", account=account, amount=amount, shares=shares)

    def issue(self, account: str, amount: Decimal) -> bool:
        """
        Issue stable debt against the account's collateral and mint shares.

        shares = amount × total_shares / system_debt, or shares = amount for
        the first minter.

        Returns:
            True if issued, False if the circuit breaker tripped (no-op)

        Raises:
            ValidationError: Non-positive amount or empty account
            StaleOrInvalidPriceError: Debt cache stale or invalid
            PolicyThresholdError: Amount exceeds remaining issuable
        """
        self._require_account(account)
        amount = positive_amount(amount)
        with self.writer.transaction(self, self.debt_ledger):
            self._require_active()
            if not self.verify_circuit_breaker():
                return False
            total_debt = self.debt_ledger.valid_cached_debt()
            remaining, _ = self._remaining_issuable(account, total_debt)
            if amount > remaining:
                raise self._reject(PolicyThresholdError(
                    f"Amount {amount} exceeds remaining issuable {remaining}",
                    reason="amount_too_large",
                ))
            self._issue(account, amount, total_debt)
            return True

    def issue_max(self, account: str) -> Decimal:
        """
        Issue everything the account's collateral allows.

        Returns:
            The amount issued (0 if the circuit breaker tripped)
        """
        self._require_account(account)
        with self.writer.transaction(self, self.debt_ledger):
            self._require_active()
            if not self.verify_circuit_breaker():
                return ZERO
            total_debt = self.debt_ledger.valid_cached_debt()
            remaining, _ = self._remaining_issuable(account, total_debt)
            if remaining <= ZERO:
                raise self._reject(PolicyThresholdError(
                    f"{account} has nothing left to issue", reason="nothing_issuable"
                ))
            self._issue(account, remaining, total_debt)
            return remaining

    def burn(self, account: str, amount: Decimal, caller: Optional[str] = None) -> Decimal:
        """
        Repay debt and burn the matching shares.

        The amount is clamped to the account's debt, and the shares burnt to
        the shares held: a balance never goes negative and an oversized burn
        never raises. Stable tokens are burnt from the caller, which is the
        account itself unless a liquidator burns on its behalf.

        Args:
            account: Account whose debt is repaid
            amount: Debt to repay, in the stable asset
            caller: Liquidator burning for a delinquent account (None = self)

        Returns:
            The debt actually repaid (0 if the circuit breaker tripped or the
            account has no debt)

        Raises:
            InsufficientAuthorizationError: Caller is neither the account nor a liquidator
            PolicyThresholdError: Self-burn within the minimum stake time
            StaleOrInvalidPriceError: Debt cache stale or invalid
        """
        self._require_account(account)
        amount = positive_amount(amount)
        payer = caller or account
        with self.writer.transaction(self, self.debt_ledger):
            self._require_active()
            if payer != account:
                self.access.require(payer, ROLE_LIQUIDATOR)
            else:
                self._require_stake_time_elapsed(account)
            if not self.verify_circuit_breaker():
                return ZERO

            total_debt = self.debt_ledger.valid_cached_debt()
            held = self.share_balance_of(account)
            existing = self._debt_for_shares(held, total_debt)
            burnt = min(amount, existing)
            if burnt <= ZERO:
                return ZERO
            if burnt == existing:
                shares = held
            else:
                shares = min(self._shares_for_debt(burnt, total_debt), held)

            self._set_shares(account, held - shares)
            self.debt_ledger.update_cached_stable_debt(-burnt, caller=self.name)
            # Last: a caller short of tokens rolls back the writes above
            self.tokens.burn_stable(payer, burnt)
            self._emit("SharesBurned", account=account, payer=payer, amount=burnt, shares=shares)
            return burnt

    def _require_stake_time_elapsed(self, account: str) -> None:
        minimum = self.settings.minimum_stake_time
        last_issue = self._last_issue_event.get(account)
        if not minimum or last_issue is None:
            return
        if self.clock.current_time < last_issue + minimum:
            raise self._reject(PolicyThresholdError(
                f"{account} issued at {last_issue}; burning allowed after {last_issue + minimum}",
                reason="min_stake_time",
            ))

    def set_current_period_id(self, period_id: int, caller: str) -> None:
        """
        Start checkpointing balances under a new period id.

        Balances recorded under earlier ids are frozen from here on.

        Raises:
            ValidationError: If period_id does not increase
        """
        with self.writer.transaction(self):
            self.access.require(caller, ROLE_FEE_POOL)
            if period_id <= self.current_period_id:
                raise self._reject(ValidationError(
                    f"Period id must increase: {period_id} <= {self.current_period_id}"
                ))
            self.current_period_id = period_id
            self._emit("PeriodIdChanged", period_id=period_id)

    def __repr__(self) -> str:
        return (f"ShareLedger({self.name}: {len(self._shares)} accounts, "
                f"supply={self._total_supply}, period={self.current_period_id})")
