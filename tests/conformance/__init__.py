"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the debt ledger system.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. test_debt_conservation.py - Debt balances add up to system debt
2. test_rollback.py - Failed operations leave no trace
3. test_replay_determinism.py - Same operations, same state

These tests use hypothesis for property-based testing.
"""
