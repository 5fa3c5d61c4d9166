"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the forest ledger.

The tests are organized by invariant:
1. conservation.py - Value is neither created nor destroyed by spend or merge
2. atomicity.py - Failed operations leave no trace
3. hierarchy.py - Monotonic per-lineage depth counters
4. identifiers.py - Unique, reproducible node ids

These tests use hypothesis for property-based testing, driven by the random
operation programs in tests/programs.py.
"""
