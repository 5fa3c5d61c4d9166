"""
Core types and pure functions for the forest ledger.

This module provides the foundational data structures and protocols for the forest:
1. Protocols: ForestView for read-only access, SpendGuard for spend policies
2. Immutable data structures: Node, NodeSpec, Restriction, events
3. Exceptions: ForestError and domain-specific error types
4. Identifier generation: compute_node_id

All functions in this module are pure and operate on read-only views.
No function can mutate forest state directly.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
import hashlib
import json
from typing import (
    Callable, List, Optional, Protocol, Tuple, Union, runtime_checkable
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Domain separation tag mixed into every node identifier.
DOMAIN_TAG = "forest-node"

# Default upper bound on the number of inputs to a single merge.
MAX_MERGE_INPUTS = 16


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Hex-encoded SHA-256 digest prefixed with "0x".
NodeId = str

# Identity entitled to spend a node (wallet, account, address).
Identity = str


def is_null_identity(identity: Optional[str]) -> bool:
    """Return True for None or a blank identity."""
    return identity is None or not str(identity).strip()


# ============================================================================
# IDENTIFIER GENERATION
# ============================================================================

def compute_node_id(domain: str, creator: Identity, nonce: int) -> NodeId:
    """
    Derive a node identifier from (domain, creator, nonce).

    The caller owns the nonce: this function only reads it. Two different
    (creator, nonce) pairs yield different identifiers with overwhelming
    probability; `domain` separates forests sharing creators.

    Raises:
        ValueError: If creator is blank or nonce is negative.
    """
    if is_null_identity(creator):
        raise ValueError("Node creator cannot be empty")
    if not isinstance(nonce, int) or isinstance(nonce, bool) or nonce < 0:
        raise ValueError(f"Nonce must be a non-negative int, got {nonce!r}")
    # JSON array encoding keeps field boundaries unambiguous
    content = json.dumps([DOMAIN_TAG, str(domain), str(creator), nonce], separators=(",", ":"))
    return "0x" + hashlib.sha256(content.encode()).hexdigest()


def _check_quantity(name: str, value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"{name} must be int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


# ============================================================================
# EXCEPTIONS
# ============================================================================

class ForestError(Exception):
    """Base exception for all forest-related errors."""
    pass


class ZeroValue(ForestError):
    """Raised when a create or spend is attempted with a zero quantity."""
    pass


class Unauthorized(ForestError):
    """Raised when the caller is not the current owner of the referenced node."""
    pass


class Insufficient(ForestError):
    """Raised when a spend amount exceeds the node's remaining value."""

    def __init__(self, current: int, requested: int):
        self.current = current
        self.requested = requested
        super().__init__(f"insufficient value: current {current}, requested {requested}")


class NotExist(ForestError):
    """Raised when a referenced node id has never been created."""
    pass


class InvalidOwner(ForestError):
    """Raised when a node would be created for the null identity."""
    pass


class MergeSizeExceed(ForestError):
    """Raised when merge is invoked with more inputs than the configured bound."""
    pass


class InvalidMerge(ForestError):
    """Raised for an empty or duplicated merge input, or a mismatch in strict mode."""
    pass


class Frozen(ForestError):
    """Raised by a spend guard when freeze or partition policy denies the operation."""
    pass


# ============================================================================
# NODES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Node:
    """
    One accounted unit of custody in the forest.

    Attributes:
        id: Unique identifier assigned at creation.
        root: Identifier of the lineage root, or None if this node is a root.
        parent: Identifier of the node this one was spent from, or None if minted.
        value: Remaining unspent quantity. Zero marks a fully spent node.
        level: Distance from the lineage root (0 for a root).
        owner: Identity currently entitled to spend this node.

    Nodes are never deleted and never mutated in place; the store swaps in
    a replaced copy when the value changes.
    """
    id: NodeId
    root: Optional[NodeId]
    parent: Optional[NodeId]
    value: int
    level: int
    owner: Identity

    def __post_init__(self):
        if not self.id:
            raise ValueError("Node id cannot be empty")
        _check_quantity("Node value", self.value)
        _check_quantity("Node level", self.level)

    @property
    def lineage_root(self) -> NodeId:
        """The root of this node's lineage (itself for a root node)."""
        return self.root if self.root is not None else self.id

    @property
    def is_root(self) -> bool:
        return self.root is None

    @property
    def is_spent(self) -> bool:
        return self.value == 0

    def __repr__(self) -> str:
        return (f"Node({self.id[:10]}… value={self.value} level={self.level} "
                f"owner={self.owner} root={self.lineage_root[:10]}…)")


@dataclass(frozen=True, slots=True)
class NodeSpec:
    """
    Input to Forest.create(): everything about a node except its identifier.

    Leave root and parent as None to mint a new lineage root.
    """
    value: int
    owner: Optional[Identity]
    root: Optional[NodeId] = None
    parent: Optional[NodeId] = None
    level: int = 0

    def __post_init__(self):
        _check_quantity("NodeSpec value", self.value)
        _check_quantity("NodeSpec level", self.level)


# ============================================================================
# RESTRICTIONS
# ============================================================================

class RestrictionKind(Enum):
    """
    Shape of a per-lineage level restriction.

    NONE:    Never blocks.
    EQUAL:   Blocks nodes at exactly `start`.
    LESS:    Blocks nodes shallower than `start`.
    GREATER: Blocks nodes deeper than `start`.
    BETWEEN: Blocks nodes strictly between `start` and `end`.
    """
    NONE = "none"
    EQUAL = "equal"
    LESS = "less"
    GREATER = "greater"
    BETWEEN = "between"


@dataclass(frozen=True, slots=True)
class Restriction:
    """Restriction record stored per lineage root."""
    kind: RestrictionKind
    start: int
    end: int
    enabled: bool = True

    def __post_init__(self):
        if not isinstance(self.kind, RestrictionKind):
            raise ValueError(f"Restriction kind must be RestrictionKind, got {self.kind!r}")
        _check_quantity("Restriction start", self.start)
        _check_quantity("Restriction end", self.end)


# ============================================================================
# EVENTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class NodeCreated:
    """A node was stored. Emitted by create, spend (child) and merge (output)."""
    root: NodeId
    node_id: NodeId
    creator: Identity
    owner: Identity
    value: int
    level: int
    sequence_number: int = -1


@dataclass(frozen=True, slots=True)
class NodeSpent:
    """
    Value left a node.

    recipient is None for a burn or a merge input; merged_into names the
    merge output for the latter, so a burn has both fields None.
    """
    root: NodeId
    node_id: NodeId
    amount: int
    recipient: Optional[Identity] = None
    merged_into: Optional[NodeId] = None
    sequence_number: int = -1

    @property
    def is_burn(self) -> bool:
        return self.recipient is None and self.merged_into is None


@dataclass(frozen=True, slots=True)
class NodesMerged:
    """
    Several nodes were folded into node_id.

    skipped lists inputs left untouched because their root or owner did not
    match the first input.
    """
    root: NodeId
    node_id: NodeId
    inputs: Tuple[NodeId, ...]
    skipped: Tuple[NodeId, ...] = ()
    sequence_number: int = -1


@dataclass(frozen=True, slots=True)
class PartitionSet:
    root: NodeId
    restriction: Restriction
    sequence_number: int = -1


@dataclass(frozen=True, slots=True)
class PartitionCleared:
    root: NodeId
    sequence_number: int = -1


ForestEvent = Union[NodeCreated, NodeSpent, NodesMerged, PartitionSet, PartitionCleared]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class ForestView(Protocol):
    """
    Read-only interface to forest state.

    Spend guards and lineage queries accept a ForestView to declare their
    read-only intent. The Forest class implements this protocol but also
    provides mutation methods.
    """

    def exists(self, node_id: NodeId) -> bool:
        """Return True if the node was ever created (spent nodes included)."""
        ...

    def get_node(self, node_id: NodeId) -> Node:
        """Return the node record. Raises NotExist for unknown ids."""
        ...

    def root(self, node_id: NodeId) -> NodeId:
        """Return the lineage root of a node."""
        ...

    def hierarchy(self, node_id: NodeId) -> int:
        """Return the deepest level ever reached in the node's lineage."""
        ...

    def get_partition(self, node_id: NodeId) -> Optional[Restriction]:
        """Return the restriction on the node's lineage, if any."""
        ...

    def lineage(self, node_id: NodeId) -> List[NodeId]:
        """Return the ids of every node in the lineage, in creation order."""
        ...


class SpendGuard(Protocol):
    """
    Protocol for pluggable spend policies.

    A guard inspects the node about to lose value and raises Frozen to deny
    the operation. Guards run before any write, so a denial leaves the forest
    untouched. Plain callables with the same signature are accepted too.
    """

    def check_spend(self, view: ForestView, node: Node, amount: int) -> None:
        """
        Raise Frozen if `amount` may not leave `node`.

        Args:
            view: Read-only forest access
            node: Node about to be spent or merged
            amount: Quantity leaving the node
        """
        ...


# Callable form of a spend guard.
GuardFunction = Callable[[ForestView, Node, int], None]
