"""
restriction.py - Level-based lineage restrictions (partitions)

A restriction is stored once per lineage root and blocks spends from nodes
whose level falls in a given range. Because every node carries its lineage
root directly, checking a node is a constant number of lookups no matter how
deep or wide the lineage has grown:

    node = view.get_node(node_id)              # 1 lookup
    restriction = view.get_partition(node_id)  # 1 lookup via node.lineage_root
    is_blocked(restriction, node.level)        # pure comparison

Classes / functions:
- is_blocked: Pure decision table
- evaluate: Allow/deny answer for a node id
- PartitionGuard: SpendGuard that raises Frozen for blocked nodes
"""

from __future__ import annotations
from typing import Optional

from .core import (
    ForestView, Frozen, Node, NodeId, Restriction, RestrictionKind,
)


def is_blocked(restriction: Optional[Restriction], level: int) -> bool:
    """
    Decide whether a node at `level` is blocked by `restriction`.

    | kind    | blocks when             |
    |---------|-------------------------|
    | EQUAL   | level == start          |
    | LESS    | level < start           |
    | GREATER | level > start           |
    | BETWEEN | start < level < end     |
    | NONE    | never                   |

    A missing or disabled restriction never blocks. GREATER is one-sided;
    its `end` bound is ignored.
    """
    if restriction is None or not restriction.enabled:
        return False
    kind = restriction.kind
    if kind is RestrictionKind.EQUAL:
        return level == restriction.start
    if kind is RestrictionKind.LESS:
        return level < restriction.start
    if kind is RestrictionKind.GREATER:
        return level > restriction.start
    if kind is RestrictionKind.BETWEEN:
        return restriction.start < level < restriction.end
    return False


def evaluate(view: ForestView, node_id: NodeId) -> bool:
    """
    Return True if the node may be spent under its lineage's restriction.

    Raises:
        NotExist: If the node was never created
    """
    node = view.get_node(node_id)
    return not is_blocked(view.get_partition(node.id), node.level)


class PartitionGuard:
    """
    Spend guard enforcing per-lineage level restrictions.

    Installed by default on every Forest.
    """

    def check_spend(self, view: ForestView, node: Node, amount: int) -> None:
        restriction = view.get_partition(node.id)
        if is_blocked(restriction, node.level):
            raise Frozen(
                f"Node {node.id} at level {node.level} blocked by "
                f"{restriction.kind.name} partition on root {node.lineage_root}"
            )

    def __repr__(self) -> str:
        return "PartitionGuard()"
