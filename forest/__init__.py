"""
forest - Provenance-Tracking Ledger Engine

Tracks fungible value as a forest of append-only nodes. Every node remembers
its lineage root and its parent, so freezes and level partitions apply to a
whole lineage with constant-time enforcement.

Usage:
    from forest import Forest, FreezeRegistry, RestrictionKind

    forest = Forest("main")
    registry = FreezeRegistry()
    forest.add_guard(registry)

    # Mint a lineage root and spend part of it
    a = forest.mint("alice", 1000)
    b = forest.spend(a, "alice", "bob", 300)     # child at level 1

    # Block every level-1 node of the lineage with one write
    forest.set_partition(a, start=1, end=1, kind=RestrictionKind.EQUAL)

    # Or freeze the whole lineage by its root
    registry.freeze(forest.root(b))
"""

# Core types
from .core import (
    Node,
    NodeSpec,
    NodeId,
    Identity,
    Restriction,
    RestrictionKind,
    ForestView,
    SpendGuard,
    GuardFunction,
    ForestEvent,
    NodeCreated,
    NodeSpent,
    NodesMerged,
    PartitionSet,
    PartitionCleared,
    ForestError,
    ZeroValue,
    Unauthorized,
    Insufficient,
    NotExist,
    InvalidOwner,
    MergeSizeExceed,
    InvalidMerge,
    Frozen,
    compute_node_id,
    is_null_identity,
    DOMAIN_TAG,
    MAX_MERGE_INPUTS,
)

# Storage and engine
from .store import NodeStore
from .forest import Forest

# Policies
from .restriction import is_blocked, evaluate, PartitionGuard
from .guards import FreezeRegistry

# Provenance queries
from .lineage import (
    ancestry,
    lineage_nodes,
    outstanding_value,
    level_profile,
    lineage_summary,
)

__all__ = [
    # Core
    'Node', 'NodeSpec', 'NodeId', 'Identity', 'Restriction', 'RestrictionKind',
    'ForestView', 'SpendGuard', 'GuardFunction',
    'ForestEvent', 'NodeCreated', 'NodeSpent', 'NodesMerged', 'PartitionSet', 'PartitionCleared',
    'ForestError', 'ZeroValue', 'Unauthorized', 'Insufficient', 'NotExist',
    'InvalidOwner', 'MergeSizeExceed', 'InvalidMerge', 'Frozen',
    'compute_node_id', 'is_null_identity', 'DOMAIN_TAG', 'MAX_MERGE_INPUTS',
    # Engine
    'NodeStore', 'Forest',
    # Policies
    'is_blocked', 'evaluate', 'PartitionGuard', 'FreezeRegistry',
    # Lineage
    'ancestry', 'lineage_nodes', 'outstanding_value', 'level_profile', 'lineage_summary',
]

__version__ = '1.0.0'
