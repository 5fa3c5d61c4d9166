"""
conftest.py - Shared pytest fixtures for forest tests

Provides common fixtures used across unit, conformance and scenario tests:
- Empty forests (with and without a freeze registry)
- The canonical lineage: A minted to alice, B and C spent to bob

State snapshots and random operation programs live in tests/programs.py.
"""

import pytest

from forest import Forest, FreezeRegistry


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def forest():
    """Empty forest with the default partition guard."""
    return Forest("test", verbose=False)


@pytest.fixture
def registry():
    return FreezeRegistry()


@pytest.fixture
def guarded_forest(registry):
    """Empty forest with a freeze registry installed next to the partition guard."""
    f = Forest("test", verbose=False)
    f.add_guard(registry)
    return f


@pytest.fixture
def lineage(forest):
    """
    alice mints A (1000); spends 300 to bob (B) and 200 to bob (C).

    Returns:
        (forest, ids) where ids maps "A", "B", "C" to node ids
    """
    a = forest.mint("alice", 1000)
    b = forest.spend(a, "alice", "bob", 300)
    c = forest.spend(a, "alice", "bob", 200)
    return forest, {"A": a, "B": b, "C": c}
