"""
distribution.py - Fee and reward distribution over a ring of fee periods

Fees (stable tokens held at FEE_ADDRESS) and rewards accrue into the open
period. Closing the period freezes the aggregate debt and share supply on it
and rotates the ring. Share holders then claim their pro-rata part of every
closed period they have not yet claimed:

    owed(account, i) = to_distribute[i] × shares_on_period(account, i) / supply_on_period(i)

Whatever the oldest period still holds when it is evicted is carried into
period N-2, so unclaimed value survives one more rotation instead of being
lost. Payouts are rounded down, so a period never pays out more than it holds.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .core import (
    AccessControl, DebtAggregator, DelegateApprovals, CrossInstanceRelay, RewardEscrow,
    SuspensionFlags, TokenMintBurn,
    InsufficientAuthorizationError, NothingToClaimError, PeriodNotCloseableError,
    PolicyThresholdError, StaleOrInvalidPriceError, ValidationError,
    FEE_ADDRESS, ROLE_EXCHANGER, ROLE_FEE_SOURCE, ROLE_RELAYER, ROLE_REWARDS_AUTHORITY,
    SECTION_ISSUANCE, SECTION_SYSTEM,
    positive_amount, quantize_amount, to_decimal, ZERO,
)
from .clock import LogicalClock
from .fee_periods import CURRENT_PERIOD, LAST_CLOSED_PERIOD, FeePeriod, FeePeriodRing
from .settings import SystemSettings
from .share_ledger import ShareLedger
from .writer import LedgerComponent, SingleWriter


class DistributionLedger(LedgerComponent):
    """
    Fee pool: accrual, period rollover and claims.

    Tracks per account the id of the last closed period it claimed up to;
    a claim pays every closed period with a larger id, so claiming twice in
    the same period pays nothing the second time.
    """

    _STATE_FIELDS = ('periods', '_last_fee_withdrawal')

    def __init__(
        self,
        share_ledger: ShareLedger,
        aggregator: DebtAggregator,
        tokens: TokenMintBurn,
        status: SuspensionFlags,
        clock: LogicalClock,
        settings: SystemSettings,
        writer: SingleWriter,
        access: Optional[AccessControl] = None,
        escrow: Optional[RewardEscrow] = None,
        relay: Optional[CrossInstanceRelay] = None,
        delegates: Optional[DelegateApprovals] = None,
        name: str = "fee_pool",
        verbose: bool = False,
    ):
        """
        Create a distribution ledger whose open period starts now.

        Args:
            share_ledger: Source of per-period share balances
            aggregator: Debt and share supply frozen on each closing period
            tokens: Stable asset transfers from FEE_ADDRESS to claimants
            escrow: Receives claimed rewards (required once rewards are paid)
            relay: Notified of every local close so other instances follow
            delegates: Approvals consulted by claim_on_behalf()
        """
        super().__init__(name, clock, settings, writer, access or AccessControl("owner"), verbose)
        self.share_ledger = share_ledger
        self.aggregator = aggregator
        self.tokens = tokens
        self.status = status
        self.escrow = escrow
        self.relay = relay
        self.delegates = delegates

        self.periods = FeePeriodRing(
            settings.fee_period_length, share_ledger.current_period_id, clock.current_time
        )
        self._last_fee_withdrawal: Dict[str, int] = {}

    # ========================================================================
    # READS
    # ========================================================================

    def recent_fee_period(self, index: int) -> FeePeriod:
        """Copy of the period at the given ring index."""
        return self.periods[index].copy()

    def last_fee_withdrawal(self, account: str) -> int:
        return self._last_fee_withdrawal.get(account, 0)

    def total_fees_available(self) -> Decimal:
        """Unclaimed fees across closed periods."""
        return sum(
            (self.periods[i].fees_outstanding for i in self.periods.claimable_indices()), ZERO
        )

    def total_rewards_available(self) -> Decimal:
        return sum(
            (self.periods[i].rewards_outstanding for i in self.periods.claimable_indices()), ZERO
        )

    def effective_debt_ratio_for_period(self, account: str, index: int) -> Decimal:
        """The account's share of the supply frozen in closed period ``index``."""
        if not LAST_CLOSED_PERIOD <= index <= self.periods.oldest_index:
            raise ValidationError(
                f"Closed period index must be in 1..{self.periods.oldest_index}, got {index}"
            )
        period_id = self.periods[index].period_id
        return self.share_ledger.share_percentage_on_period(account, period_id)

    def _owed(self, account: str, index: int) -> Tuple[Decimal, Decimal]:
        period = self.periods[index]
        if index == CURRENT_PERIOD:
            pct = self.share_ledger.share_percentage(account)
        else:
            if self.last_fee_withdrawal(account) >= period.period_id:
                return ZERO, ZERO
            pct = self.share_ledger.share_percentage_on_period(account, period.period_id)
        return (
            quantize_amount(period.fees_to_distribute * pct, 'PAYOUT'),
            quantize_amount(period.rewards_to_distribute * pct, 'PAYOUT'),
        )

    def fees_by_period(self, account: str) -> List[Tuple[Decimal, Decimal]]:
        """
        (fees, rewards) owed per ring index.

        Index 0 shows what the open period would pay at current balances; it
        is for display only and is never claimable.
        """
        return [self._owed(account, index) for index in range(len(self.periods))]

    def fees_available(self, account: str) -> Tuple[Decimal, Decimal]:
        """
        Claimable (fees, rewards) across closed periods not yet claimed.
        """
        fees = rewards = ZERO
        for index in self.periods.claimable_indices():
            period_fees, period_rewards = self._owed(account, index)
            fees += period_fees
            rewards += period_rewards
        return fees, rewards

    def is_fees_claimable(self, account: str) -> bool:
        ratio, invalid = self.share_ledger.collateralisation_ratio_and_any_rates_invalid(account)
        return not invalid and ratio <= self.settings.claim_ratio_threshold

    # ========================================================================
    # ACCRUAL
    # ========================================================================

    def _require_active(self) -> None:
        self.status.require_active(SECTION_SYSTEM)
        self.status.require_active(SECTION_ISSUANCE)

    def record_fee_paid(self, amount: Decimal, caller: str) -> None:
        """
        Add fees to the open period.

        The fee tokens themselves must already sit at FEE_ADDRESS.
        """
        amount = positive_amount(amount)
        with self.writer.transaction(self):
            self._require_active()
            self.access.require(caller, ROLE_FEE_SOURCE, ROLE_EXCHANGER)
            self.periods.current.fees_to_distribute += amount
            self._emit("FeesRecorded", amount=amount, period_id=self.periods.current.period_id)

    def set_rewards_to_distribute(self, amount: Decimal, caller: str) -> None:
        """Add rewards to the open period."""
        amount = positive_amount(amount)
        with self.writer.transaction(self):
            self._require_active()
            self.access.require(caller, ROLE_REWARDS_AUTHORITY)
            self.periods.current.rewards_to_distribute += amount
            self._emit("RewardsRecorded", amount=amount, period_id=self.periods.current.period_id)

    # ========================================================================
    # ROLLOVER
    # ========================================================================

    def _next_period_id(self) -> int:
        # POSIX seconds of the close, kept strictly increasing
        floor = max(self.periods.current.period_id, self.share_ledger.current_period_id)
        candidate = self.clock.seconds_since_epoch()
        return candidate if candidate > floor else floor + 1

    def _close(self, debt: Decimal, share_supply: Decimal, caller: Optional[str]) -> FeePeriod:
        closing = self.periods.current
        closing.debt_at_close = debt
        closing.share_supply_at_close = share_supply

        # With N = 2 the carry target is the closing period itself
        oldest = self.periods[self.periods.oldest_index]
        target = self.periods[self.periods.oldest_index - 1]
        carried_fees = oldest.fees_outstanding
        carried_rewards = oldest.rewards_outstanding
        target.fees_to_distribute += carried_fees
        target.rewards_to_distribute += carried_rewards

        new_id = self._next_period_id()
        self.periods.rotate(new_id, self.clock.current_time)
        self.share_ledger.set_current_period_id(new_id, caller=self.name)

        self._emit(
            "FeePeriodClosed",
            period_id=closing.period_id,
            debt=debt,
            share_supply=share_supply,
            carried_fees=carried_fees,
            carried_rewards=carried_rewards,
            new_period_id=new_id,
            caller=caller,
        )
        return closing

    def close_period(self, caller: Optional[str] = None) -> FeePeriod:
        """
        Close the open period once it has lasted fee_period_duration.

        Returns:
            The period just closed (now at index 1)

        Raises:
            PeriodNotCloseableError: The open period is too young
            StaleOrInvalidPriceError: The aggregate debt feed is stale
        """
        with self.writer.transaction(self, self.share_ledger):
            self._require_active()
            current = self.periods.current
            closes_at = current.start_time + self.settings.fee_period_duration
            if self.clock.current_time < closes_at:
                raise self._reject(PeriodNotCloseableError(
                    f"Period {current.period_id} cannot close before {closes_at}"
                ))
            info = self.aggregator.aggregate_debt_and_share_supply()
            if info.is_stale:
                raise self._reject(StaleOrInvalidPriceError(
                    "Aggregate debt feed is stale", reason="aggregate_stale"
                ))
            closed = self._close(info.debt, info.share_supply, caller)
            if self.relay is not None:
                self.relay.close_fee_period(info.debt, info.share_supply)
            return closed

    def close_secondary(self, debt: Decimal, share_supply: Decimal, caller: str) -> FeePeriod:
        """
        Close the open period on instruction from another instance.

        Uses the relayed aggregate values and skips the duration check; the
        relay is not notified again.
        """
        debt = to_decimal(debt, "debt")
        share_supply = to_decimal(share_supply, "share_supply")
        if debt < ZERO or share_supply < ZERO:
            raise ValidationError("relayed debt and share supply cannot be negative")
        with self.writer.transaction(self, self.share_ledger):
            self._require_active()
            self.access.require(caller, ROLE_RELAYER)
            return self._close(debt, share_supply, caller)

    def import_fee_period(
        self,
        index: int,
        period_id: int,
        start_time: datetime,
        fees_to_distribute: Decimal,
        fees_claimed: Decimal,
        rewards_to_distribute: Decimal,
        rewards_claimed: Decimal,
        caller: str,
    ) -> None:
        """Seed a ring slot when migrating from a previous fee pool (owner only)."""
        amounts = {
            'fees_to_distribute': fees_to_distribute,
            'fees_claimed': fees_claimed,
            'rewards_to_distribute': rewards_to_distribute,
            'rewards_claimed': rewards_claimed,
        }
        values = {k: to_decimal(v, k) for k, v in amounts.items()}
        if any(v < ZERO for v in values.values()):
            raise ValidationError("imported amounts cannot be negative")
        if values['fees_claimed'] > values['fees_to_distribute']:
            raise ValidationError("fees_claimed exceeds fees_to_distribute")
        if values['rewards_claimed'] > values['rewards_to_distribute']:
            raise ValidationError("rewards_claimed exceeds rewards_to_distribute")
        if not CURRENT_PERIOD <= index <= self.periods.oldest_index:
            raise ValidationError(f"Period index {index} out of range")

        with self.writer.transaction(self):
            self.access.require_owner(caller)
            self.periods[index] = FeePeriod(period_id, start_time, **values)
            self._emit("FeePeriodImported", index=index, period_id=period_id)

    # ========================================================================
    # CLAIMS
    # ========================================================================

    def _record_payment(self, amount: Decimal, kind: str) -> Decimal:
        """
        Mark ``amount`` claimed against closed periods, oldest first.

        Returns:
            The amount actually allocated; anything the periods no longer
            hold is dropped
        """
        remaining = amount
        paid = ZERO
        for index in self.periods.claimable_indices():
            if remaining <= ZERO:
                break
            period = self.periods[index]
            outstanding = period.fees_outstanding if kind == 'fees' else period.rewards_outstanding
            if outstanding <= ZERO:
                continue
            take = min(outstanding, remaining)
            if kind == 'fees':
                period.fees_claimed += take
            else:
                period.rewards_claimed += take
            remaining -= take
            paid += take
        return paid

    def _claim(self, account: str) -> Tuple[Decimal, Decimal]:
        ratio, invalid = self.share_ledger.collateralisation_ratio_and_any_rates_invalid(account)
        if invalid:
            raise self._reject(StaleOrInvalidPriceError(
                "Debt cache is stale or invalid", reason="debt_cache_invalid"
            ))
        if ratio > self.settings.claim_ratio_threshold:
            raise self._reject(PolicyThresholdError(
                f"Collateralisation ratio {ratio} above {self.settings.claim_ratio_threshold}",
                reason="c_ratio_above_threshold",
            ))

        fees, rewards = self.fees_available(account)
        if fees <= ZERO and rewards <= ZERO:
            raise self._reject(NothingToClaimError(f"{account} has no fees or rewards to claim"))
        if rewards > ZERO and self.escrow is None:
            raise self._reject(ValidationError("No reward escrow configured"))

        self._last_fee_withdrawal[account] = self.periods[LAST_CLOSED_PERIOD].period_id
        fees_paid = self._record_payment(fees, 'fees')
        rewards_paid = self._record_payment(rewards, 'rewards')
        self._emit("FeesClaimed", account=account, fees=fees_paid, rewards=rewards_paid)

        if fees_paid > ZERO:
            self.tokens.burn_stable(FEE_ADDRESS, fees_paid)
            try:
                self.tokens.issue_stable(account, fees_paid)
            except Exception:
                # Token effects sit outside the checkpoint; restore the fee pool by hand
                self.tokens.issue_stable(FEE_ADDRESS, fees_paid)
                raise
        if rewards_paid > ZERO:
            self.escrow.append_vesting_entry(account, rewards_paid, self.settings.escrow_duration)
        return fees_paid, rewards_paid

    def claim(self, account: str) -> Tuple[Decimal, Decimal]:
        """
        Pay the account everything owed from closed periods.

        Fees move from FEE_ADDRESS to the account; rewards are escrowed for
        escrow_duration.

        Returns:
            (fees paid, rewards paid)

        Raises:
            StaleOrInvalidPriceError: Debt cache stale or invalid
            PolicyThresholdError: Collateralisation ratio above the claim threshold
            NothingToClaimError: Nothing owed
        """
        with self.writer.transaction(self):
            self._require_active()
            return self._claim(account)

    def claim_on_behalf(self, account: str, caller: str) -> Tuple[Decimal, Decimal]:
        """Claim for ``account`` as an approved delegate; the payout still goes to the account."""
        with self.writer.transaction(self):
            self._require_active()
            if self.delegates is None or not self.delegates.can_claim_for(account, caller):
                raise self._reject(InsufficientAuthorizationError(
                    f"{caller!r} is not approved to claim for {account!r}"
                ))
            return self._claim(account)

    def __repr__(self) -> str:
        return f"DistributionLedger({self.name}: {self.periods!r})"
