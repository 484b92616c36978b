"""
test_end_to_end.py - Whole-system scenarios across the three ledgers

Tests:
- Two minters, one fee period, equal claims
- First-minter bootstrap
- Oversized burn clamps to existing debt
- Repeated claim within a period
- Every debt-dependent operation refuses a stale cache
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from synthdebt import (
    FEE_ADDRESS, NothingToClaimError, StaleOrInvalidPriceError,
)
from tests.fakes import build_system, pay_fees, close_period


class TestTwoMinterLifecycle:
    """alice and bob mint 100 each, 60 in fees, one close, two claims."""

    def test_equal_claims(self):
        system = build_system()
        shares, fee_pool, supply = system.share_ledger, system.distribution, system.debt_ledger.supply

        shares.issue("alice", Decimal("100"))
        assert shares.share_balance_of("alice") == Decimal("100")
        assert shares.share_percentage("alice") == Decimal("1")

        shares.issue("bob", Decimal("100"))
        assert shares.share_balance_of("bob") == Decimal("100")
        assert shares.total_share_supply == Decimal("200")
        assert shares.share_percentage("bob") == Decimal("0.5")

        pay_fees(system, 60)
        assert fee_pool.periods.current.fees_to_distribute == Decimal("60")
        close_period(system)

        assert fee_pool.claim("alice") == (Decimal("30"), Decimal("0"))
        assert fee_pool.claim("bob") == (Decimal("30"), Decimal("0"))
        assert supply.balance_of("alice") == Decimal("130")
        assert supply.balance_of("bob") == Decimal("130")
        assert supply.balance_of(FEE_ADDRESS) == Decimal("0")
        assert fee_pool.recent_fee_period(1).fees_claimed == Decimal("60")

    def test_shares_unchanged_by_claims(self):
        system = build_system()
        system.share_ledger.issue("alice", Decimal("100"))
        system.share_ledger.issue("bob", Decimal("100"))
        pay_fees(system, 60)
        close_period(system)
        system.distribution.claim("alice")
        assert system.share_ledger.share_balance_of("alice") == Decimal("100")
        assert system.share_ledger.total_share_supply == Decimal("200")


class TestBootstrapAndClamp:

    def test_bootstrap(self):
        system = build_system()
        system.share_ledger.issue("alice", Decimal("1000"))
        assert system.share_ledger.share_balance_of("alice") == Decimal("1000")
        assert system.share_ledger.debt_balance_of("alice") == Decimal("1000")
        assert system.debt_ledger.cached_debt == Decimal("1000")

    def test_huge_burn_clamps(self):
        system = build_system()
        shares = system.share_ledger
        shares.issue("alice", Decimal("500"))
        shares.issue("bob", Decimal("100"))

        repaid = shares.burn("alice", Decimal("1000000"))
        assert repaid == Decimal("500")
        assert shares.debt_balance_of("alice") == Decimal("0")
        assert shares.share_balance_of("alice") == Decimal("0")
        assert shares.share_balance_of("bob") == Decimal("100")
        assert shares.debt_balance_of("bob") == Decimal("100")


class TestClaimIdempotence:

    def test_second_claim_fails(self):
        system = build_system()
        system.share_ledger.issue("alice", Decimal("100"))
        system.share_ledger.issue("bob", Decimal("100"))
        pay_fees(system, 60)
        close_period(system)

        fee_pool = system.distribution
        first = fee_pool.claim("alice")
        with pytest.raises(NothingToClaimError):
            fee_pool.claim("alice")
        assert first == (Decimal("30"), Decimal("0"))
        assert system.debt_ledger.supply.balance_of("alice") == Decimal("130")
        assert len(fee_pool.events_named("FeesClaimed")) == 1

    def test_new_period_allows_new_claim(self):
        system = build_system()
        system.share_ledger.issue("alice", Decimal("100"))
        pay_fees(system, 10)
        close_period(system)
        system.distribution.claim("alice")
        pay_fees(system, 20)
        close_period(system)
        assert system.distribution.claim("alice") == (Decimal("20"), Decimal("0"))


class TestStalenessGating:
    """A stale cache aborts instead of reusing the old total."""

    @pytest.fixture
    def stale_system(self):
        system = build_system()
        system.share_ledger.issue("alice", Decimal("100"))
        pay_fees(system, 10)
        system.advance_time(system.clock.current_time + timedelta(days=7))
        assert system.debt_ledger.is_stale()
        return system

    def test_issue(self, stale_system):
        with pytest.raises(StaleOrInvalidPriceError):
            stale_system.share_ledger.issue("bob", Decimal("10"))
        assert stale_system.share_ledger.share_balance_of("bob") == Decimal("0")

    def test_burn(self, stale_system):
        with pytest.raises(StaleOrInvalidPriceError):
            stale_system.share_ledger.burn("alice", Decimal("10"))
        assert stale_system.share_ledger.share_balance_of("alice") == Decimal("100")

    def test_debt_reads(self, stale_system):
        with pytest.raises(StaleOrInvalidPriceError):
            stale_system.share_ledger.debt_balance_of("alice")
        with pytest.raises(StaleOrInvalidPriceError):
            stale_system.share_ledger.remaining_issuable("alice")

    def test_close(self, stale_system):
        with pytest.raises(StaleOrInvalidPriceError):
            stale_system.distribution.close_period()
        assert stale_system.distribution.periods.current.period_id == 1

    def test_snapshot_restores_service(self, stale_system):
        stale_system.debt_ledger.take_snapshot(caller="owner")
        stale_system.distribution.close_period()
        assert stale_system.distribution.claim("alice") == (Decimal("10"), Decimal("0"))
