"""
store.py - Node Store

Owns every piece of mutable forest state:
    - Node records, keyed by id (never removed; spent nodes stay queryable)
    - Per-creator sequence counters used to derive fresh identifiers
    - Per-root hierarchy counters (deepest level reached in a lineage)
    - Per-root restriction records
    - Per-root lineage index and issuance/burn totals for provenance queries

The store performs no validation beyond its own structural invariants.
Policy lives in the Forest engine, which is the only caller allowed to write.
"""

from __future__ import annotations
from collections import defaultdict
from typing import Dict, List, Optional

from .core import ForestError, Identity, Node, NodeId, NotExist, Restriction


class NodeStore:
    """
    Keyed storage for nodes, counters and restrictions.

    Every lookup is a single dict access; nothing here walks a lineage
    except lineage(), which reads the inverted index.
    """

    def __init__(self):
        self.nodes: Dict[NodeId, Node] = {}
        self.sequences: Dict[Identity, int] = defaultdict(int)
        self.hierarchy: Dict[NodeId, int] = defaultdict(int)
        self.restrictions: Dict[NodeId, Restriction] = {}
        # Inverted index mapping root -> member ids in creation order
        self.lineages: Dict[NodeId, List[NodeId]] = defaultdict(list)
        self.issued: Dict[NodeId, int] = defaultdict(int)
        self.burned: Dict[NodeId, int] = defaultdict(int)

    # ========================================================================
    # NODES
    # ========================================================================

    def get(self, node_id: NodeId) -> Optional[Node]:
        return self.nodes.get(node_id)

    def require(self, node_id: NodeId) -> Node:
        """Return the node or raise NotExist."""
        node = self.nodes.get(node_id)
        if node is None:
            raise NotExist(f"Node {node_id} does not exist")
        return node

    def exists(self, node_id: NodeId) -> bool:
        """True if the node was ever created, regardless of remaining value."""
        return node_id in self.nodes

    def put_new(self, node: Node) -> None:
        """
        Store a freshly created node and index it under its lineage root.

        Raises:
            ForestError: If the identifier is already taken
        """
        if node.id in self.nodes:
            raise ForestError(f"Node id collision: {node.id}")
        self.nodes[node.id] = node
        self.lineages[node.lineage_root].append(node.id)

    def replace(self, node: Node) -> None:
        """Swap in an updated copy of an existing node."""
        if node.id not in self.nodes:
            raise NotExist(f"Node {node.id} does not exist")
        self.nodes[node.id] = node

    def node_count(self) -> int:
        return len(self.nodes)

    def lineage(self, root: NodeId) -> List[NodeId]:
        return list(self.lineages.get(root, ()))

    def roots(self) -> List[NodeId]:
        return [root for root, members in self.lineages.items() if members]

    # ========================================================================
    # COUNTERS
    # ========================================================================

    def next_sequence(self, creator: Identity) -> int:
        """Current sequence for a creator (the nonce the next id will use)."""
        return self.sequences.get(creator, 0)

    def advance_sequence(self, creator: Identity) -> int:
        self.sequences[creator] += 1
        return self.sequences[creator]

    def hierarchy_of(self, root: NodeId) -> int:
        return self.hierarchy.get(root, 0)

    def raise_hierarchy(self, root: NodeId, level: int) -> bool:
        """
        Raise the lineage's deepest-level counter to `level` if it is higher.

        The counter is monotonic: lower levels are ignored.

        Returns:
            True if the counter changed
        """
        if level > self.hierarchy.get(root, 0):
            self.hierarchy[root] = level
            return True
        return False

    # ========================================================================
    # RESTRICTIONS
    # ========================================================================

    def restriction_of(self, root: NodeId) -> Optional[Restriction]:
        return self.restrictions.get(root)

    def set_restriction(self, root: NodeId, restriction: Restriction) -> None:
        self.restrictions[root] = restriction

    def clear_restriction(self, root: NodeId) -> bool:
        """Remove a lineage's restriction. Returns True if one was present."""
        return self.restrictions.pop(root, None) is not None

    # ========================================================================
    # ISSUANCE BOOKKEEPING
    # ========================================================================

    def record_issue(self, root: NodeId, value: int) -> None:
        self.issued[root] += value

    def record_burn(self, root: NodeId, value: int) -> None:
        self.burned[root] += value
