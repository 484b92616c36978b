"""
synthdebt - Synthetic-debt accounting and fee distribution

Tracks the aggregate debt owed by all minters of a collateral-backed
synthetic-asset protocol, each minter's proportional claim on it via debt
shares, and a rolling ring of fee periods in which fees and rewards accrue
and are claimed pro-rata to debt shares.

Usage:
    from decimal import Decimal
    from synthdebt import (
        DebtSystem, InMemorySynthSupply, StaticPriceOracle, StaticCollateralValuer,
        FEE_ADDRESS, ROLE_FEE_SOURCE,
    )

    supply = InMemorySynthSupply("sUSD", ["sETH"])
    system = DebtSystem(
        oracle=StaticPriceOracle({"sETH": Decimal("2000")}),
        supply=supply,
        collateral=StaticCollateralValuer({"alice": Decimal("10000"), "bob": Decimal("10000")}),
    )
    system.debt_ledger.take_snapshot(caller="owner")
    system.share_ledger.issue("alice", Decimal("100"))
    system.share_ledger.issue("bob", Decimal("100"))

    # Fees arrive as stable tokens at FEE_ADDRESS
    supply.issue_stable(FEE_ADDRESS, Decimal("60"))
    system.grant_role(ROLE_FEE_SOURCE, "exchange", granted_by="owner")
    system.distribution.record_fee_paid(Decimal("60"), caller="exchange")
"""

# Core types
from .core import (
    LedgerError,
    ValidationError,
    StaleOrInvalidPriceError,
    InsufficientAuthorizationError,
    PolicyThresholdError,
    PeriodNotCloseableError,
    NothingToClaimError,
    SystemSuspendedError,
    CircuitBreakerTrippedError,
    PriceOracle,
    DebtAggregator,
    AssetSupply,
    ExternalDebtSource,
    CollateralValuer,
    TokenMintBurn,
    SuspensionFlags,
    RewardEscrow,
    CrossInstanceRelay,
    DelegateApprovals,
    AggregateDebtInfo,
    DebtCacheInfo,
    LedgerEvent,
    AccessControl,
    to_decimal,
    quantize_amount,
    FEE_ADDRESS,
    SECTION_SYSTEM,
    SECTION_ISSUANCE,
    CIRCUIT_BREAKER_SUSPENSION_REASON,
    ROLE_ISSUER,
    ROLE_EXCHANGER,
    ROLE_FEE_POOL,
    ROLE_FEE_SOURCE,
    ROLE_REWARDS_AUTHORITY,
    ROLE_LIQUIDATOR,
    ROLE_RELAYER,
    QUANTITY_EPSILON,
)

# Configuration and time
from .settings import SystemSettings
from .clock import LogicalClock
from .writer import SingleWriter, LedgerComponent

# Collaborators
from .pricing_source import StaticPriceOracle, TimeSeriesPriceOracle
from .collaborators import (
    InMemorySynthSupply,
    StaticCollateralValuer,
    SystemStatus,
    VestingEntry,
    InMemoryRewardEscrow,
    InMemoryDelegateApprovals,
    StaticExternalDebt,
)

# Ledgers
from .debt_ledger import DebtLedger, DebtSnapshot
from .share_ledger import ShareLedger, calculate_deviation
from .fee_periods import FeePeriod, FeePeriodRing, CURRENT_PERIOD, LAST_CLOSED_PERIOD
from .distribution import DistributionLedger
from .aggregator import SingleNetworkAggregator
from .system import DebtSystem

__all__ = [
    # Errors
    'LedgerError', 'ValidationError', 'StaleOrInvalidPriceError',
    'InsufficientAuthorizationError', 'PolicyThresholdError', 'PeriodNotCloseableError',
    'NothingToClaimError', 'SystemSuspendedError', 'CircuitBreakerTrippedError',
    # Protocols
    'PriceOracle', 'DebtAggregator', 'AssetSupply', 'ExternalDebtSource', 'CollateralValuer',
    'TokenMintBurn', 'SuspensionFlags', 'RewardEscrow', 'CrossInstanceRelay', 'DelegateApprovals',
    # Records
    'AggregateDebtInfo', 'DebtCacheInfo', 'LedgerEvent', 'AccessControl',
    'to_decimal', 'quantize_amount',
    # Constants
    'FEE_ADDRESS', 'SECTION_SYSTEM', 'SECTION_ISSUANCE', 'CIRCUIT_BREAKER_SUSPENSION_REASON',
    'ROLE_ISSUER', 'ROLE_EXCHANGER', 'ROLE_FEE_POOL', 'ROLE_FEE_SOURCE',
    'ROLE_REWARDS_AUTHORITY', 'ROLE_LIQUIDATOR', 'ROLE_RELAYER', 'QUANTITY_EPSILON',
    # Configuration
    'SystemSettings', 'LogicalClock', 'SingleWriter', 'LedgerComponent',
    # Collaborators
    'StaticPriceOracle', 'TimeSeriesPriceOracle',
    'InMemorySynthSupply', 'StaticCollateralValuer', 'SystemStatus', 'VestingEntry',
    'InMemoryRewardEscrow', 'InMemoryDelegateApprovals', 'StaticExternalDebt',
    # Ledgers
    'DebtLedger', 'DebtSnapshot',
    'ShareLedger', 'calculate_deviation',
    'FeePeriod', 'FeePeriodRing', 'CURRENT_PERIOD', 'LAST_CLOSED_PERIOD',
    'DistributionLedger', 'SingleNetworkAggregator', 'DebtSystem',
]

__version__ = '0.1.0'
