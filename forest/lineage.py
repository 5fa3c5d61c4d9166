"""
lineage.py - Provenance queries over a ForestView

These helpers answer "where did this value come from" and "how is a lineage
spread across levels". Unlike spend enforcement, which never walks the
forest, they read the lineage index and follow parent pointers, so their
cost grows with lineage size.

Functions:
- ancestry: Path from a node back to its lineage root
- lineage_nodes: Every node record in a lineage
- outstanding_value: Unspent value held by a lineage
- level_profile: Unspent value per level as a numpy array
- lineage_summary: Dict report combining the above
"""

from __future__ import annotations
from typing import Any, Dict, List

import numpy as np

from .core import ForestView, Node, NodeId


def ancestry(view: ForestView, node_id: NodeId) -> List[NodeId]:
    """
    Return [node_id, parent, grandparent, ..., root].

    Every parent is created before its children, so the walk always ends at
    the lineage root.

    Raises:
        NotExist: If the node was never created
    """
    path = [node_id]
    node = view.get_node(node_id)
    while node.parent is not None:
        path.append(node.parent)
        node = view.get_node(node.parent)
    return path


def lineage_nodes(view: ForestView, node_id: NodeId) -> List[Node]:
    """Node records of the whole lineage containing `node_id`, in creation order."""
    return [view.get_node(member) for member in view.lineage(node_id)]


def outstanding_value(view: ForestView, node_id: NodeId) -> int:
    """Unspent value across the lineage containing `node_id`."""
    return sum(node.value for node in lineage_nodes(view, node_id))


def level_profile(view: ForestView, node_id: NodeId) -> np.ndarray:
    """
    Unspent value held at each level of a lineage.

    Returns:
        Integer array of length hierarchy + 1, where entry k is the total
        value of nodes at level k.
    """
    nodes = lineage_nodes(view, node_id)
    depth = view.hierarchy(node_id)
    levels = np.fromiter((node.level for node in nodes), dtype=np.int64, count=len(nodes))
    values = np.fromiter((node.value for node in nodes), dtype=np.int64, count=len(nodes))
    # np.add.at keeps integer precision; bincount weights would go through float64
    profile = np.zeros(depth + 1, dtype=np.int64)
    np.add.at(profile, levels, values)
    return profile


def lineage_summary(view: ForestView, node_id: NodeId) -> Dict[str, Any]:
    """
    Summarize the lineage containing `node_id`.

    Returns:
        Dict with keys:
        - 'root': lineage root id
        - 'nodes': number of nodes ever created in the lineage
        - 'live_nodes': nodes with value left
        - 'outstanding': unspent value
        - 'depth': deepest level reached (hierarchy counter)
        - 'profile': list of unspent value per level
    """
    nodes = lineage_nodes(view, node_id)
    profile = level_profile(view, node_id)
    return {
        'root': view.root(node_id),
        'nodes': len(nodes),
        'live_nodes': sum(1 for node in nodes if not node.is_spent),
        'outstanding': int(profile.sum()),
        'depth': view.hierarchy(node_id),
        'profile': [int(v) for v in profile],
    }
