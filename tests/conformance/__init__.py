"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the pool engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. atomicity.py - All-or-nothing operations, including issued transfers
2. path_independence.py - The invariant constant survives any trade order
3. reentrancy.py - Serialized single writer, nested calls fail fast

These tests use hypothesis for property-based testing.
"""
