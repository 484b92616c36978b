"""
system.py - Explicit wiring of one deployed instance

DebtSystem builds the three ledgers around a shared clock, settings and
single writer, hands each the typed collaborators it needs, and grants the
roles the ledgers use to call one another:

    ShareLedger   --issuer-->   DebtLedger         (update_cached_stable_debt)
    DistributionLedger --fee_pool--> ShareLedger   (set_current_period_id)
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, List, Optional

from .clock import LogicalClock
from .collaborators import InMemoryRewardEscrow, SystemStatus
from .core import (
    AccessControl, AssetSupply, CollateralValuer, CrossInstanceRelay, DebtAggregator,
    DelegateApprovals, ExternalDebtSource, PriceOracle, RewardEscrow, SuspensionFlags,
    TokenMintBurn, ValidationError, ROLE_FEE_POOL, ROLE_ISSUER,
)
from .debt_ledger import DebtLedger
from .distribution import DistributionLedger
from .settings import SystemSettings
from .share_ledger import ShareLedger
from .writer import LedgerComponent, SingleWriter


class DebtSystem:
    """
    One deployed instance: DebtLedger, ShareLedger and DistributionLedger.

    Example:
        supply = InMemorySynthSupply("sUSD", ["sETH"])
        system = DebtSystem(
            oracle=StaticPriceOracle({"sETH": Decimal("2000")}),
            supply=supply,
            collateral=StaticCollateralValuer({"alice": Decimal("10000")}),
        )
        system.debt_ledger.take_snapshot(caller="owner")
        system.share_ledger.issue("alice", Decimal("100"))
    """

    def __init__(
        self,
        oracle: PriceOracle,
        supply: AssetSupply,
        collateral: CollateralValuer,
        tokens: Optional[TokenMintBurn] = None,
        settings: Optional[SystemSettings] = None,
        clock: Optional[LogicalClock] = None,
        status: Optional[SuspensionFlags] = None,
        external: Optional[ExternalDebtSource] = None,
        escrow: Optional[RewardEscrow] = None,
        relay: Optional[CrossInstanceRelay] = None,
        delegates: Optional[DelegateApprovals] = None,
        aggregator: Optional[DebtAggregator] = None,
        owner: str = "owner",
        verbose: bool = False,
    ):
        """
        Wire a deployed instance.

        Args:
            oracle: Per-asset rates
            supply: Asset supply; also used for stable mint/burn unless tokens is given
            collateral: Collateral value per account
            aggregator: Cross-instance debt feed; None aggregates this instance only
            owner: Caller allowed to change settings and run privileged migrations
        """
        self.owner = owner
        self.settings = settings or SystemSettings()
        self.clock = clock or LogicalClock()
        self.status = status or SystemStatus()
        self.writer = SingleWriter()
        tokens = tokens if tokens is not None else supply

        self.debt_ledger = DebtLedger(
            oracle, supply, self.clock, self.settings, self.writer,
            access=AccessControl(owner),
            external=external,
            status=self.status,
            verbose=verbose,
        )
        self.share_ledger = ShareLedger(
            self.debt_ledger, oracle, collateral, tokens, self.status,
            self.clock, self.settings, self.writer,
            access=AccessControl(owner),
            aggregator=aggregator,
            verbose=verbose,
        )
        # Breaker and fee pool read one aggregate feed
        self.aggregator = self.share_ledger.aggregator
        self.distribution = DistributionLedger(
            self.share_ledger, self.aggregator, tokens, self.status,
            self.clock, self.settings, self.writer,
            access=AccessControl(owner),
            escrow=escrow if escrow is not None else InMemoryRewardEscrow(self.clock),
            relay=relay,
            delegates=delegates,
            verbose=verbose,
        )

        self.debt_ledger.access.grant(ROLE_ISSUER, self.share_ledger.name, granted_by=owner)
        self.share_ledger.access.grant(ROLE_FEE_POOL, self.distribution.name, granted_by=owner)

    @property
    def components(self) -> List[LedgerComponent]:
        return [self.debt_ledger, self.share_ledger, self.distribution]

    def grant_role(self, role: str, member: str, granted_by: str) -> None:
        """Grant a role on every ledger (e.g. an exchanger or liquidator)."""
        for component in self.components:
            component.access.grant(role, member, granted_by=granted_by)

    def update_settings(self, caller: str, **changes: Any) -> SystemSettings:
        """
        Swap in new settings on every ledger at once (owner only).

        The fee period ring length is fixed at construction.
        """
        self.debt_ledger.access.require_owner(caller)
        updated = self.settings.with_overrides(**changes)
        if updated.fee_period_length != self.settings.fee_period_length:
            raise ValidationError("fee_period_length cannot change after construction")
        with self.writer.read():
            for component in self.components:
                component.settings = updated
            self.settings = updated
        return updated

    def advance_time(self, new_time: datetime) -> None:
        self.clock.advance_time(new_time)

    def __repr__(self) -> str:
        return f"DebtSystem({self.debt_ledger!r}, {self.share_ledger!r}, {self.distribution!r})"
