"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the staking pool.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Cash is neither created nor destroyed
2. atomicity.py - All-or-nothing operations, gateway failures roll back
3. idempotency.py - One vote per identity, replayed intents rejected
4. determinism.py - Reproducible behavior
5. temporal.py - Deadlines against the ledger clock
6. invariants.py - Stake locks, vote tallies and payout bounds

These tests use hypothesis for property-based testing.
"""
