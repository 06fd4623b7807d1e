"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the credit client.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. capacity_bounds.py - Borrowing capacity is never negative, zero without a tier
2. step_ordering.py - A step is submitted only after the previous one confirmed
3. plan_identity.py - Planning is a pure function of action and snapshot
4. error_taxonomy.py - Every failure maps to exactly one of six kinds

These tests use hypothesis for property-based testing.
"""
