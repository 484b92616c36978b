"""
aggregator.py - Aggregate debt feed for a single deployed instance

When there is no cross-instance aggregation, the "aggregate" debt and share
supply are simply this instance's cached debt and share supply.
"""

from __future__ import annotations
from typing import TYPE_CHECKING

from .core import AggregateDebtInfo

if TYPE_CHECKING:
    from .debt_ledger import DebtLedger
    from .share_ledger import ShareLedger


class SingleNetworkAggregator:
    """DebtAggregator reading the local DebtLedger cache and ShareLedger supply."""

    def __init__(self, debt_ledger: 'DebtLedger', share_ledger: 'ShareLedger'):
        self.debt_ledger = debt_ledger
        self.share_ledger = share_ledger

    def aggregate_debt_and_share_supply(self) -> AggregateDebtInfo:
        info = self.debt_ledger.cache_info()
        return AggregateDebtInfo(
            debt=info.debt,
            share_supply=self.share_ledger.total_share_supply,
            updated_at=info.timestamp,
            is_stale=info.is_stale or info.is_invalid,
        )

    def debt_ratio(self):
        return self.aggregate_debt_and_share_supply().debt_ratio()

    def __repr__(self):
        return f"SingleNetworkAggregator({self.debt_ledger.name}, {self.share_ledger.name})"
