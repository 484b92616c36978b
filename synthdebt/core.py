"""
Core types and pure functions for the synthetic debt ledger system.

This module provides the foundational pieces shared by every component:
1. Decimal context configuration and amount quantization
2. Constants: sections, roles, reserved accounts, precision tables
3. Exceptions: LedgerError and the domain error taxonomy
4. Protocols: the external collaborators the ledgers consume
5. Immutable records: LedgerEvent, AggregateDebtInfo, DebtCacheInfo
6. AccessControl: owner + named-role authorization

Nothing in this module mutates ledger state.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from typing import (
    Dict, List, Set, Optional, Any, Protocol, Tuple, Iterable,
    runtime_checkable, Mapping
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Debt, share and fee arithmetic must be deterministic across instances.
# The global context is configured once at module load time.
#
# PRECONDITION: No other code should modify the global Decimal context.
# If thread-local contexts are needed, use decimal.localcontext().
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Account that collects exchange fees until they are claimed.
FEE_ADDRESS = "fee_address"

# Suspension sections (strings, not enum, matching how callers pass them).
SECTION_SYSTEM = "system"
SECTION_ISSUANCE = "issuance"

# Reason recorded on the issuance suspension when the debt-ratio breaker trips.
CIRCUIT_BREAKER_SUSPENSION_REASON = "circuit_breaker"

# Roles granted on component AccessControl instances.
ROLE_ISSUER = "issuer"
ROLE_EXCHANGER = "exchanger"
ROLE_FEE_POOL = "fee_pool"
ROLE_FEE_SOURCE = "fee_source"
ROLE_REWARDS_AUTHORITY = "rewards_authority"
ROLE_LIQUIDATOR = "liquidator"
ROLE_RELAYER = "relayer"

# Epsilon for Decimal comparisons.
# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-12")

# Fixed-point precision of every stored amount (debt, shares, fees, rewards).
AMOUNT_DECIMAL_PLACES = 18

DECIMAL_ROUNDING = {
    'SHARES': ROUND_HALF_EVEN,
    'DEBT': ROUND_HALF_EVEN,
    'RATIO': ROUND_HALF_EVEN,
    'PAYOUT': ROUND_DOWN,
}

ZERO = Decimal("0")
UNIT = Decimal("1")


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from account to share (or token) quantity.
Balances = Dict[str, Decimal]

# Mapping from asset key to a value in the reference unit.
AssetValues = Dict[str, Decimal]

# Checkpointed value history: list of (period_id, value), period ids ascending.
Checkpoints = List[Tuple[int, Decimal]]


# ============================================================================
# DECIMAL HELPERS
# ============================================================================

def to_decimal(value: Any, name: str = "value") -> Decimal:
    """
    Convert a numeric input to Decimal, rejecting NaN and infinities.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not the binary
    expansion.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be numeric, got bool")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value))
        except ArithmeticError:
            raise ValidationError(f"{name} is not a number: {value!r}")
    else:
        raise ValidationError(f"{name} must be numeric, got {type(value).__name__}")
    if result.is_nan() or result.is_infinite():
        raise ValidationError(f"{name} must be finite, got {result}")
    return result


def quantize_amount(value: Decimal, purpose: str = 'DEBT') -> Decimal:
    """Round a value to AMOUNT_DECIMAL_PLACES using the purpose's rounding mode."""
    quantizer = Decimal(10) ** -AMOUNT_DECIMAL_PLACES
    return value.quantize(quantizer, rounding=DECIMAL_ROUNDING.get(purpose, ROUND_HALF_EVEN))


def positive_amount(value: Any, name: str = "amount") -> Decimal:
    """Convert to Decimal and require a strictly positive value."""
    amount = to_decimal(value, name)
    if amount <= ZERO:
        raise ValidationError(f"{name} must be positive, got {amount}")
    return amount


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """
    Base exception for all ledger errors.

    Every error carries a stable ``reason`` code and a ``retryable`` flag.
    Retryable errors may succeed later without the caller changing anything
    (stale prices refresh, a period becomes closeable); the others will never
    succeed as submitted.
    """
    reason = "ledger_error"
    retryable = False

    def __init__(self, message: str = "", reason: Optional[str] = None):
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class ValidationError(LedgerError):
    """Raised for a bad amount, key or index, before any state is touched."""
    reason = "validation"


class StaleOrInvalidPriceError(LedgerError):
    """Raised when a required rate or the debt cache is stale or flagged invalid."""
    reason = "stale_or_invalid_price"
    retryable = True


class InsufficientAuthorizationError(LedgerError):
    """Raised when the caller lacks the role a privileged operation requires."""
    reason = "unauthorized"


class PolicyThresholdError(LedgerError):
    """Raised when a policy limit blocks the operation (ratio out of band, over max issuable)."""
    reason = "policy_threshold"
    retryable = True


class PeriodNotCloseableError(PolicyThresholdError):
    """Raised when the open fee period has not yet lasted the configured duration."""
    reason = "period_not_closeable"


class NothingToClaimError(LedgerError):
    """Raised when a claim would pay out neither fees nor rewards."""
    reason = "nothing_to_claim"
    retryable = True


class SystemSuspendedError(LedgerError):
    """Raised when a suspended section is required by a mutating call."""
    reason = "suspended"
    retryable = True


class CircuitBreakerTrippedError(SystemSuspendedError):
    """
    Raised by calls that hit an issuance suspension caused by the debt-ratio breaker.

    The call that trips the breaker never raises this; it completes as a no-op.
    """
    reason = CIRCUIT_BREAKER_SUSPENSION_REASON


# ============================================================================
# PROTOCOLS (external collaborators)
# ============================================================================

@runtime_checkable
class PriceOracle(Protocol):
    """Per-asset exchange rates in the reference unit."""

    def rate(self, asset_key: str) -> Tuple[Optional[Decimal], bool]:
        """Return (rate, invalid). A missing rate is (None, True)."""
        ...


@runtime_checkable
class DebtAggregator(Protocol):
    """Aggregate debt and debt-share supply across all deployed instances."""

    def aggregate_debt_and_share_supply(self) -> 'AggregateDebtInfo':
        ...


@runtime_checkable
class AssetSupply(Protocol):
    """Circulating supply of each synthetic asset."""

    def asset_keys(self) -> List[str]:
        ...

    def total_supply(self, asset_key: str) -> Decimal:
        ...


@runtime_checkable
class ExternalDebtSource(Protocol):
    """Debt held outside the token supply (e.g. open derivative positions)."""

    def external_debt(self) -> Tuple[Decimal, bool]:
        """Return (debt, invalid)."""
        ...


@runtime_checkable
class CollateralValuer(Protocol):
    def collateral_value(self, account: str) -> Decimal:
        ...


@runtime_checkable
class TokenMintBurn(Protocol):
    """Supply-side effects on the stable asset."""

    def issue_stable(self, account: str, amount: Decimal) -> None:
        ...

    def burn_stable(self, account: str, amount: Decimal) -> None:
        ...


@runtime_checkable
class SuspensionFlags(Protocol):
    def require_active(self, section: str) -> None:
        """Raise SystemSuspendedError if the section is suspended."""
        ...

    def suspend(self, section: str, reason: str) -> None:
        ...


@runtime_checkable
class RewardEscrow(Protocol):
    def append_vesting_entry(self, account: str, amount: Decimal, duration: timedelta) -> None:
        ...


@runtime_checkable
class CrossInstanceRelay(Protocol):
    """Carries a closed period's (debt, share supply) pair to other instances."""

    def close_fee_period(self, debt: Decimal, share_supply: Decimal) -> None:
        ...


@runtime_checkable
class DelegateApprovals(Protocol):
    def can_claim_for(self, authoriser: str, delegate: str) -> bool:
        ...


# ============================================================================
# IMMUTABLE RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class AggregateDebtInfo:
    """
    Point-in-time reading of the aggregate debt feed.

    Attributes:
        debt: Aggregate debt across instances, in the reference unit
        share_supply: Aggregate debt-share supply across instances
        updated_at: When the feed last reported (None if never)
        is_stale: Whether the reading is too old (or flagged) to be trusted
    """
    debt: Decimal
    share_supply: Decimal
    updated_at: Optional[datetime]
    is_stale: bool

    def debt_ratio(self) -> Decimal:
        """Debt per share, or 0 when there are no shares."""
        if self.share_supply <= ZERO:
            return ZERO
        return self.debt / self.share_supply


@dataclass(frozen=True, slots=True)
class DebtCacheInfo:
    debt: Decimal
    timestamp: Optional[datetime]
    is_invalid: bool
    is_stale: bool


@dataclass(frozen=True, slots=True)
class LedgerEvent:
    """
    Immutable audit record of a state change.

    Attributes:
        name: Event name (e.g. "DebtCacheSnapshotTaken", "FeesClaimed")
        timestamp: Logical time at which the change committed
        data: Event payload, frozen as sorted (key, value) pairs
    """
    name: str
    timestamp: datetime
    data: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def create(cls, name: str, timestamp: datetime, **data: Any) -> 'LedgerEvent':
        return cls(name=name, timestamp=timestamp, data=tuple(sorted(data.items())))

    @property
    def data_dict(self) -> Dict[str, Any]:
        return dict(self.data)

    def __repr__(self) -> str:
        payload = ", ".join(f"{k}={v}" for k, v in self.data)
        return f"{self.name}({payload})"


# ============================================================================
# ACCESS CONTROL
# ============================================================================

class AccessControl:
    """
    Owner plus named roles.

    The owner passes every check. Callers are plain string identifiers;
    components call each other using their own ``name``.
    """

    def __init__(self, owner: str, grants: Optional[Mapping[str, Iterable[str]]] = None):
        if not owner or not owner.strip():
            raise ValidationError("owner cannot be empty")
        self.owner = owner
        self._roles: Dict[str, Set[str]] = {}
        for role, callers in (grants or {}).items():
            self._roles[role] = set(callers)

    def grant(self, role: str, caller: str, granted_by: str) -> None:
        self.require_owner(granted_by)
        self._roles.setdefault(role, set()).add(caller)

    def revoke(self, role: str, caller: str, revoked_by: str) -> None:
        self.require_owner(revoked_by)
        self._roles.get(role, set()).discard(caller)

    def has_role(self, caller: Optional[str], *roles: str) -> bool:
        if caller is None:
            return False
        if caller == self.owner:
            return True
        return any(caller in self._roles.get(role, ()) for role in roles)

    def members(self, role: str) -> Set[str]:
        return set(self._roles.get(role, ()))

    def require(self, caller: Optional[str], *roles: str) -> None:
        if not self.has_role(caller, *roles):
            raise InsufficientAuthorizationError(
                f"{caller!r} lacks role {' or '.join(roles) or 'owner'}"
            )

    def require_owner(self, caller: Optional[str]) -> None:
        if caller != self.owner:
            raise InsufficientAuthorizationError(f"{caller!r} is not the owner")
