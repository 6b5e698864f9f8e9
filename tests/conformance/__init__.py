"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the settlement ledger.
Any compliant engine/store combination MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Transfers neither create nor destroy value
2. direction_symmetry.py - Reverse is the exact negation of forward
3. idempotency.py - Set registration is idempotent
4. determinism.py - Final balances and snapshots are order independent
5. atomicity.py - Partial application (compat mode) vs. all-or-nothing (atomic mode)
6. canonicalization.py - Audit records are canonical and decode losslessly

These tests use hypothesis for property-based testing.
"""
