"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the saveDAI system.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Double-entry accounting on token units
2. atomicity.py - All-or-nothing transactions and savepoints
3. wrapped_invariants.py - Supply, vault backing and option custody

These tests use hypothesis for property-based testing.
"""
