"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the perps accounting core.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. test_atomicity.py - All-or-nothing mutations, stale-state rejection
2. test_solvency.py - Liquidity reservation, leverage bound, escrow and
   double-entry invariants under random operation sequences
3. test_serializability.py - Concurrent callers observe a serial history

These tests use hypothesis for property-based testing.
"""
