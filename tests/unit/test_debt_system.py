"""
test_debt_system.py - Tests for DebtSystem wiring
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from synthdebt import (
    DebtSystem, InMemorySynthSupply, StaticPriceOracle, StaticCollateralValuer,
    SingleNetworkAggregator, InMemoryRewardEscrow,
    ROLE_ISSUER, ROLE_FEE_POOL, ROLE_EXCHANGER,
    InsufficientAuthorizationError, PolicyThresholdError, ValidationError,
)
from tests.fakes import build_system, OWNER


class TestWiring:

    def test_defaults(self):
        system = DebtSystem(
            oracle=StaticPriceOracle(),
            supply=InMemorySynthSupply(),
            collateral=StaticCollateralValuer(),
        )
        assert isinstance(system.aggregator, SingleNetworkAggregator)
        assert system.share_ledger.aggregator is system.aggregator
        assert isinstance(system.distribution.escrow, InMemoryRewardEscrow)
        assert system.share_ledger.tokens is system.debt_ledger.supply
        assert system.distribution.periods.current.period_id == 1

    def test_internal_roles(self, system):
        assert system.debt_ledger.access.has_role(system.share_ledger.name, ROLE_ISSUER)
        assert system.share_ledger.access.has_role(system.distribution.name, ROLE_FEE_POOL)
        assert not system.share_ledger.access.has_role("alice", ROLE_FEE_POOL)

    def test_grant_role_on_every_ledger(self, system):
        system.grant_role(ROLE_EXCHANGER, "dex", granted_by=OWNER)
        assert all(c.access.has_role("dex", ROLE_EXCHANGER) for c in system.components)

    def test_shared_clock_and_writer(self, system):
        assert all(c.clock is system.clock for c in system.components)
        assert all(c.writer is system.writer for c in system.components)

    def test_repr(self, system):
        assert "DebtLedger" in repr(system)
        assert "ShareLedger" in repr(system)


class TestUpdateSettings:

    def test_owner_only(self, system):
        with pytest.raises(InsufficientAuthorizationError):
            system.update_settings("alice", issuance_ratio="0.25")

    def test_applies_to_every_ledger(self, system):
        updated = system.update_settings(OWNER, issuance_ratio="0.25", minimum_stake_time=3600)
        assert updated.minimum_stake_time == timedelta(hours=1)
        assert all(c.settings is updated for c in system.components)
        assert system.share_ledger.max_issuable("alice") == Decimal("2500")

    def test_ring_length_fixed(self, system):
        with pytest.raises(ValidationError):
            system.update_settings(OWNER, fee_period_length="3")
        assert system.settings.fee_period_length == 2

    def test_invalid_value_leaves_settings(self, system):
        before = system.settings
        with pytest.raises(ValidationError):
            system.update_settings(OWNER, issuance_ratio="2")
        assert system.settings is before


class TestVerbose:

    def test_events_printed(self, capsys):
        system = build_system(verbose=True)
        system.share_ledger.issue("alice", Decimal("100"))
        out = capsys.readouterr().out
        assert "✓ [issuer] SharesIssued(" in out
        assert "✓ [debt_cache] DebtCacheUpdated(" in out

    def test_rejection_printed(self, capsys):
        system = build_system(verbose=True)
        capsys.readouterr()
        with pytest.raises(PolicyThresholdError):
            system.share_ledger.issue("alice", Decimal("5000"))
        assert "✗ [issuer] REJECTED" in capsys.readouterr().out
