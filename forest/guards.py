"""
guards.py - Freeze-by-lineage registry

FreezeRegistry marks individual node ids as frozen. Used as a spend guard it
denies a spend when the node itself, its lineage root, or its parent is
frozen. Since the root is materialized on every node, freezing a whole lineage
is one write keyed by the root id; descendants are never enumerated.
"""

from __future__ import annotations
from typing import Iterable, Optional, Set

from .core import ForestView, Frozen, Node, NodeId


class FreezeRegistry:
    """
    Per-id freeze set, pluggable into Forest as a SpendGuard.

    Example:
        registry = FreezeRegistry()
        forest.add_guard(registry)
        registry.freeze(forest.root(node_id))   # freezes the whole lineage
    """

    def __init__(self, frozen: Optional[Iterable[NodeId]] = None):
        self._frozen: Set[NodeId] = set(frozen or ())

    def freeze(self, node_id: NodeId) -> None:
        """Mark an id as frozen. Freezing twice is a no-op."""
        if not node_id:
            raise ValueError("Cannot freeze an empty id")
        self._frozen.add(node_id)

    def unfreeze(self, node_id: NodeId) -> None:
        """Remove an id from the registry. Unknown ids are ignored."""
        self._frozen.discard(node_id)

    def is_frozen(self, node_id: Optional[NodeId]) -> bool:
        return node_id is not None and node_id in self._frozen

    def frozen_ids(self) -> Set[NodeId]:
        return set(self._frozen)

    def blocking_id(self, node: Node) -> Optional[NodeId]:
        """Return the frozen id (node, root or parent) that blocks `node`, if any."""
        for candidate in (node.id, node.lineage_root, node.parent):
            if self.is_frozen(candidate):
                return candidate
        return None

    def check_spend(self, view: ForestView, node: Node, amount: int) -> None:
        blocker = self.blocking_id(node)
        if blocker is None:
            return
        if blocker == node.id:
            raise Frozen(f"Node {node.id} is frozen")
        if blocker == node.lineage_root:
            raise Frozen(f"Node {node.id} belongs to frozen root {blocker}")
        raise Frozen(f"Node {node.id} was spent from frozen parent {blocker}")

    def __len__(self) -> int:
        return len(self._frozen)

    def __repr__(self) -> str:
        return f"FreezeRegistry({len(self._frozen)} frozen)"
