"""
test_fee_rollover.py - Multi-week fee distribution with a three-period ring

Week 1: alice and bob hold 100 shares each; 100 in fees.
Week 2: carol mints against a debt pool that includes the week-1 fees; 90 in fees.
Week 3: no fees. The week-1 period is evicted and whatever it still holds
        rolls into the week-2 period.

Claims are booked against the oldest closed period first, so the share of a
period left for late claimers depends on what earlier claims drew from it.
"""

import pytest
from decimal import Decimal

from synthdebt import (
    SystemSettings, FEE_ADDRESS, QUANTITY_EPSILON, NothingToClaimError,
)
from tests.fakes import build_system, pay_fees, close_period


def approx(value, expected):
    return abs(value - Decimal(expected)) < QUANTITY_EPSILON


@pytest.fixture
def three_weeks():
    system = build_system(settings=SystemSettings(fee_period_length=3))
    shares, fee_pool = system.share_ledger, system.distribution

    shares.issue("alice", Decimal("100"))
    shares.issue("bob", Decimal("100"))
    pay_fees(system, 100)
    close_period(system)
    week1_id = fee_pool.recent_fee_period(1).period_id

    shares.issue("carol", Decimal("200"))
    pay_fees(system, 90)
    close_period(system)
    week2_id = fee_pool.recent_fee_period(1).period_id

    return system, week1_id, week2_id


class TestWeekTwo:

    def test_ring_layout(self, three_weeks):
        system, week1_id, week2_id = three_weeks
        fee_pool = system.distribution
        assert fee_pool.recent_fee_period(2).period_id == week1_id
        assert fee_pool.recent_fee_period(2).fees_to_distribute == Decimal("100")
        assert fee_pool.recent_fee_period(1).fees_to_distribute == Decimal("90")
        assert week1_id < week2_id < fee_pool.periods.current.period_id

    def test_carol_minted_against_fee_inflated_debt(self, three_weeks):
        system, week1_id, week2_id = three_weeks
        shares = system.share_ledger
        # 200 × 200 shares / 300 debt
        assert approx(shares.balance_of_on_period("carol", week2_id), "133.333333333333333333")
        assert approx(shares.share_percentage_on_period("carol", week2_id), "0.4")
        assert shares.balance_of_on_period("carol", week1_id) == Decimal("0")

    def test_claims_across_both_periods(self, three_weeks):
        system, _, _ = three_weeks
        fee_pool = system.distribution

        # alice: 50% of 100 + 30% of 90; carol: 0% of 100 + 40% of 90
        alice_fees, _ = fee_pool.claim("alice")
        carol_fees, _ = fee_pool.claim("carol")
        assert approx(alice_fees, "77")
        assert approx(carol_fees, "36")

        # Booked oldest first: week 1 absorbs the first 100 paid
        assert fee_pool.recent_fee_period(2).fees_claimed == Decimal("100")
        assert approx(fee_pool.recent_fee_period(1).fees_claimed, "13")

    def test_payouts_never_exceed_fees(self, three_weeks):
        system, _, _ = three_weeks
        fee_pool = system.distribution
        for account in ("alice", "bob", "carol"):
            fee_pool.claim(account)
        for index in fee_pool.periods.claimable_indices():
            period = fee_pool.recent_fee_period(index)
            assert period.fees_claimed <= period.fees_to_distribute
        assert system.debt_ledger.supply.balance_of(FEE_ADDRESS) >= Decimal("0")


class TestWeekThree:
    """Only carol claims in week 2; week 1 still holds 64 when it is evicted."""

    @pytest.fixture
    def after_eviction(self, three_weeks):
        system, week1_id, week2_id = three_weeks
        system.distribution.claim("carol")
        close_period(system)
        return system, week1_id, week2_id

    def test_unclaimed_fees_carried(self, after_eviction):
        system, week1_id, week2_id = after_eviction
        fee_pool = system.distribution
        assert week1_id not in [p.period_id for p in fee_pool.periods]
        week2 = fee_pool.recent_fee_period(2)
        assert week2.period_id == week2_id
        assert approx(week2.fees_to_distribute, "154")
        event = fee_pool.events_named("FeePeriodClosed")[-1]
        assert approx(event.data_dict["carried_fees"], "64")

    def test_late_claimers_share_the_carry(self, after_eviction):
        system, _, _ = after_eviction
        fee_pool = system.distribution
        # 30% of (90 + 64) each
        alice_fees, _ = fee_pool.claim("alice")
        bob_fees, _ = fee_pool.claim("bob")
        assert approx(alice_fees, "46.2")
        assert approx(bob_fees, "46.2")

    def test_early_claimer_has_nothing_left(self, after_eviction):
        system, _, _ = after_eviction
        with pytest.raises(NothingToClaimError):
            system.distribution.claim("carol")

    def test_fee_tokens_cover_outstanding(self, after_eviction):
        system, _, _ = after_eviction
        fee_pool = system.distribution
        fee_pool.claim("alice")
        fee_pool.claim("bob")
        held = system.debt_ledger.supply.balance_of(FEE_ADDRESS)
        assert held >= fee_pool.total_fees_available()
        assert approx(fee_pool.total_fees_available(), "61.6")
