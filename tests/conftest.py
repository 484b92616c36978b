"""
conftest.py - Shared pytest fixtures for synthdebt tests

Provides common fixtures used across unit, functional and conformance tests:
- A fully wired DebtSystem with a fresh debt snapshot
- Shortcuts to its ledgers and collaborators
- A system where two accounts already hold debt
"""

import pytest
from decimal import Decimal

from tests.fakes import build_system


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def system():
    """DebtSystem with sUSD + sETH, three collateralised accounts and a fresh snapshot."""
    return build_system()


@pytest.fixture
def supply(system):
    return system.debt_ledger.supply


@pytest.fixture
def oracle(system):
    return system.debt_ledger.oracle


@pytest.fixture
def shares(system):
    return system.share_ledger


@pytest.fixture
def debt_cache(system):
    return system.debt_ledger


@pytest.fixture
def fee_pool(system):
    return system.distribution


@pytest.fixture
def two_minters(system):
    """alice and bob each issued 100 (100 shares each)."""
    system.share_ledger.issue("alice", Decimal("100"))
    system.share_ledger.issue("bob", Decimal("100"))
    return system
