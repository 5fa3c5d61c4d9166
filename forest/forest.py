"""
forest.py - Stateful Ledger Graph Engine

The Forest class is the central state manager for the forest ledger.
It is the only module that mutates the NodeStore, ensuring controlled and
auditable changes.

Key responsibilities:
    - Implements ForestView protocol for safe read-only access by guards and queries
    - Creates, spends and merges nodes atomically (all writes succeed or none happen)
    - Maintains per-creator sequences and per-root hierarchy counters
    - Consults pluggable spend guards (partitions, freezes) before any write
    - Publishes committed events to the event log and to subscribed observers
"""

from __future__ import annotations
from collections import deque
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Sequence
import threading

from .core import (
    # Types
    Node, NodeId, NodeSpec, Identity, Restriction, RestrictionKind,
    ForestEvent, NodeCreated, NodeSpent, NodesMerged, PartitionSet, PartitionCleared,
    SpendGuard, GuardFunction,
    # Constants
    MAX_MERGE_INPUTS,
    # Exceptions
    ForestError, ZeroValue, Unauthorized, Insufficient,
    InvalidOwner, MergeSizeExceed, InvalidMerge, Frozen,
    # Helpers
    compute_node_id, is_null_identity,
)
from .restriction import PartitionGuard
from .store import NodeStore


Observer = Callable[[ForestEvent], None]


def _check_amount(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise ValueError(f"Amount must be int, got {type(amount).__name__}")
    if amount < 0:
        raise ValueError(f"Amount must be non-negative, got {amount}")


class Forest:
    """
    Forest-of-custody ledger with provenance-aware compliance checks.

    Every node stores its lineage root directly, so lineage-wide policies
    (partition by level, freeze by root or parent) are enforced with a fixed
    number of lookups, never a walk of the lineage.

    Design Principles:
        - Validate first: every precondition of an operation is checked before
          its first write. A failed operation leaves no trace.
        - Soft deletion: spent nodes keep value 0 and stay queryable forever.
        - Monotonic bookkeeping: hierarchy counters only ever increase.

    Thread Safety:
        Mutating operations are serialized through a single re-entrant lock,
        so concurrent callers observe a single total order of operations.

    Example:
        forest = Forest("main")
        a = forest.mint("alice", 1000)
        b = forest.spend(a, "alice", "bob", 300)
        forest.set_partition(a, 1, 1, RestrictionKind.EQUAL)
        forest.spend(b, "bob", "carol", 10)   # raises Frozen
    """

    def __init__(
        self,
        name: str,
        domain: Optional[str] = None,
        guards: Optional[Iterable[Any]] = None,
        max_merge_inputs: int = MAX_MERGE_INPUTS,
        verbose: bool = True,
    ):
        """
        Create a forest.

        Args:
            name: Forest identifier
            domain: Execution-domain id mixed into node ids (default: name)
            guards: Spend guards to consult (default: [PartitionGuard()])
            max_merge_inputs: Largest number of ids accepted by merge()
            verbose: Print one line per applied or rejected operation (default: True)
        """
        if not isinstance(max_merge_inputs, int) or max_merge_inputs < 1:
            raise ValueError(f"max_merge_inputs must be a positive int, got {max_merge_inputs!r}")
        self.name = name
        self.domain = domain if domain is not None else name
        self.store = NodeStore()
        self.guards: List[Any] = [PartitionGuard()] if guards is None else list(guards)
        self.max_merge_inputs = max_merge_inputs
        self.verbose = verbose
        self.event_log: List[ForestEvent] = []
        self._next_sequence: int = 0
        self._observers: List[Observer] = []
        # Committed events not yet delivered to observers
        self._pending: Deque[ForestEvent] = deque()
        self._delivering = False
        self._lock = threading.RLock()

    # ========================================================================
    # ForestView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    def exists(self, node_id: NodeId) -> bool:
        """True if the node was ever created (spent nodes included)."""
        return self.store.exists(node_id)

    def get_node(self, node_id: NodeId) -> Node:
        """
        Get a node record.

        Raises:
            NotExist: If the node was never created
        """
        return self.store.require(node_id)

    def root(self, node_id: NodeId) -> NodeId:
        """Lineage root of a node (the node's own id if it is a root)."""
        return self.store.require(node_id).lineage_root

    def parent(self, node_id: NodeId) -> Optional[NodeId]:
        """Parent of a node, or None for a minted root."""
        return self.store.require(node_id).parent

    def level(self, node_id: NodeId) -> int:
        return self.store.require(node_id).level

    def value(self, node_id: NodeId) -> int:
        return self.store.require(node_id).value

    def owner(self, node_id: NodeId) -> Identity:
        return self.store.require(node_id).owner

    def hierarchy(self, node_id: NodeId) -> int:
        """
        Deepest level ever reached in the lineage of `node_id`.

        Accepts the root itself or any member of the lineage.
        """
        return self.store.hierarchy_of(self.root(node_id))

    def sequence(self, creator: Identity) -> int:
        """Number of nodes created so far on behalf of `creator`."""
        return self.store.next_sequence(creator)

    def get_partition(self, node_id: NodeId) -> Optional[Restriction]:
        """Restriction on the lineage of `node_id`, or None."""
        return self.store.restriction_of(self.root(node_id))

    def lineage(self, node_id: NodeId) -> List[NodeId]:
        """Ids of every node in the lineage of `node_id`, in creation order."""
        return self.store.lineage(self.root(node_id))

    def roots(self) -> List[NodeId]:
        """Ids of every lineage root, in creation order."""
        return self.store.roots()

    def node_count(self) -> int:
        return self.store.node_count()

    def total_value(self) -> int:
        """Unspent value across every node in the forest."""
        return sum(node.value for node in self.store.nodes.values())

    def is_spendable(self, node_id: NodeId) -> bool:
        """
        True if every installed guard currently allows spending the node.

        Raises:
            NotExist: If the node was never created
        """
        node = self.store.require(node_id)
        try:
            self._check_guards(node, node.value)
        except Frozen:
            return False
        return True

    # ========================================================================
    # GUARDS AND OBSERVERS
    # ========================================================================

    def add_guard(self, guard: SpendGuard | GuardFunction) -> None:
        """Install a spend guard (object with check_spend, or a plain callable)."""
        with self._lock:
            self.guards.append(guard)

    def remove_guard(self, guard: SpendGuard | GuardFunction) -> None:
        with self._lock:
            self.guards.remove(guard)

    def subscribe(self, observer: Observer) -> None:
        """Register a callback receiving every committed event, in order."""
        with self._lock:
            self._observers.append(observer)

    def unsubscribe(self, observer: Observer) -> None:
        with self._lock:
            self._observers.remove(observer)

    def _check_guards(self, node: Node, amount: int) -> None:
        for guard in self.guards:
            # Support both objects with check_spend and plain callables
            if hasattr(guard, 'check_spend'):
                guard.check_spend(self, node, amount)
            else:
                guard(self, node, amount)

    # ========================================================================
    # NODE OPERATIONS (Mutating)
    # ========================================================================

    def create(self, spec: NodeSpec, creator: Identity) -> NodeId:
        """
        Store a new node described by `spec`, attributed to `creator`.

        Leave spec.root and spec.parent as None to start a new lineage at
        level 0. When spec.parent is given, the node joins the parent's
        lineage and must sit deeper than the parent.

        Args:
            spec: Value, owner and placement of the node
            creator: Identity whose sequence counter derives the new id

        Returns:
            The new node id

        Raises:
            ZeroValue: If spec.value is zero
            InvalidOwner: If spec.owner is null
            NotExist: If spec.root or spec.parent was never created
            ValueError: If the placement is inconsistent
        """
        with self._lock:
            with self._rejections("create"):
                root = self._validate_spec(spec, creator)
                events: List[ForestEvent] = []
                node = self._store_node(
                    spec.value, spec.owner, root, spec.parent, spec.level, creator, events
                )
                self.store.record_issue(node.lineage_root, node.value)
                self._print(f"✓ CREATED {node!r}")
            self._publish(events)
            return node.id

    def mint(self, owner: Identity, value: int, creator: Optional[Identity] = None) -> NodeId:
        """Start a new lineage: a root node at level 0 owned by `owner`."""
        return self.create(NodeSpec(value=value, owner=owner), creator or owner)

    def spend(
        self,
        node_id: NodeId,
        spender: Identity,
        recipient: Optional[Identity],
        amount: int,
    ) -> Optional[NodeId]:
        """
        Move `amount` out of a node.

        The node keeps its residual value and can be spent again later. If a
        recipient is given, a child node is created one level deeper in the
        same lineage; with no recipient the amount is burned.

        Args:
            node_id: Node to spend from
            spender: Caller identity; must be the node's owner
            recipient: Owner of the new child node, or None to burn
            amount: Quantity to move (0 < amount <= node value)

        Returns:
            Id of the child node, or None for a burn

        Raises:
            ValueError: If amount is not a non-negative int
            NotExist: If the node was never created
            ZeroValue: If amount is zero
            Unauthorized: If spender is not the owner
            Insufficient: If amount exceeds the remaining value
            Frozen: If a spend guard denies the spend
        """
        with self._lock:
            with self._rejections("spend"):
                _check_amount(amount)
                node = self.store.require(node_id)
                if amount == 0:
                    raise ZeroValue(f"Cannot spend zero from {node_id}")
                if spender != node.owner:
                    raise Unauthorized(f"{spender} does not own {node_id}")
                if amount > node.value:
                    raise Insufficient(node.value, amount)
                self._check_guards(node, amount)

                # Validation passed - apply
                events: List[ForestEvent] = []
                root = node.lineage_root
                self.store.replace(replace(node, value=node.value - amount))
                child_id: Optional[NodeId] = None
                if is_null_identity(recipient):
                    recipient = None
                    self.store.record_burn(root, amount)
                else:
                    child = self._store_node(
                        amount, recipient, root, node.id, node.level + 1, spender, events
                    )
                    child_id = child.id
                events.append(NodeSpent(root, node.id, amount, recipient))
                self._print(
                    f"✓ SPENT {amount} from {node.id[:10]}… "
                    f"{'→ ' + recipient if recipient else '(burned)'}"
                )
            self._publish(events)
            return child_id

    def burn(self, node_id: NodeId, spender: Identity, amount: int) -> None:
        """Destroy `amount` of a node's value (spend with no recipient)."""
        self.spend(node_id, spender, None, amount)

    def merge(self, ids: Sequence[NodeId], caller: Identity, strict: bool = False) -> NodeId:
        """
        Recombine sibling nodes of one owner and lineage into a single node.

        ids[0] is the accumulator. Every later id sharing its lineage root and
        owner is folded in: its value moves to the output and its own value
        drops to zero. The output sits one level below the deepest folded
        input, with ids[0] as its parent.

        Inputs whose root or owner differ are left untouched and reported in
        the NodesMerged event. With strict=True such a mismatch instead fails
        the whole merge before any write.

        Args:
            ids: Input node ids, accumulator first
            caller: Caller identity; must own ids[0]
            strict: Fail on a root/owner mismatch instead of skipping

        Returns:
            Id of the merged node

        Raises:
            InvalidMerge: Empty input, repeated id, or a mismatch when strict
            MergeSizeExceed: More than max_merge_inputs ids
            NotExist: Any id never created
            Unauthorized: caller does not own ids[0]
            ZeroValue: Folded inputs hold no value
            Frozen: A spend guard denies one of the folded inputs
        """
        with self._lock:
            with self._rejections("merge"):
                ids = list(ids)
                if not ids:
                    raise InvalidMerge("Merge requires at least one input")
                if len(ids) > self.max_merge_inputs:
                    raise MergeSizeExceed(
                        f"Merge of {len(ids)} inputs exceeds limit {self.max_merge_inputs}"
                    )
                if len(set(ids)) != len(ids):
                    raise InvalidMerge("Merge inputs must be distinct")
                nodes = [self.store.require(node_id) for node_id in ids]
                head = nodes[0]
                if caller != head.owner:
                    raise Unauthorized(f"{caller} does not own {head.id}")

                root = head.lineage_root
                folded: List[Node] = [head]
                skipped: List[NodeId] = []
                for node in nodes[1:]:
                    if node.lineage_root == root and node.owner == head.owner:
                        folded.append(node)
                    else:
                        skipped.append(node.id)
                if strict and skipped:
                    raise InvalidMerge(f"Inputs do not match root/owner of {head.id}: {skipped}")

                total = sum(node.value for node in folded)
                if total == 0:
                    raise ZeroValue(f"Merge inputs of {head.id} hold no value")
                for node in folded:
                    if node.value:
                        self._check_guards(node, node.value)
                level = max(node.level for node in folded) + 1

                # Validation passed - apply
                consumed = [node for node in folded if node.value]
                for node in consumed:
                    self.store.replace(replace(node, value=0))
                created: List[ForestEvent] = []
                merged = self._store_node(total, caller, root, head.id, level, caller, created)
                events: List[ForestEvent] = [
                    NodeSpent(root, node.id, node.value, None, merged_into=merged.id)
                    for node in consumed
                ]
                events.extend(created)
                events.append(NodesMerged(
                    root, merged.id,
                    tuple(node.id for node in folded),
                    tuple(skipped),
                ))
                self._print(
                    f"✓ MERGED {len(folded)} nodes into {merged!r}"
                    + (f" (skipped {len(skipped)})" if skipped else "")
                )
            self._publish(events)
            return merged.id

    # ========================================================================
    # RESTRICTION INDEX (Mutating)
    # ========================================================================

    def set_partition(
        self,
        node_id: NodeId,
        start: int,
        end: int,
        kind: RestrictionKind,
    ) -> Restriction:
        """
        Restrict spends by level across the whole lineage of `node_id`.

        Overwrites any previous restriction on that lineage. One write,
        whatever the size of the lineage.

        Raises:
            NotExist: If the node was never created
            ValueError: If kind, start or end is malformed
        """
        with self._lock:
            with self._rejections("set_partition"):
                root = self.root(node_id)
                restriction = Restriction(kind=kind, start=start, end=end)
                self.store.set_restriction(root, restriction)
                events: List[ForestEvent] = [PartitionSet(root, restriction)]
                self._print(f"✓ PARTITION {kind.name} [{start}, {end}] on root {root[:10]}…")
            self._publish(events)
            return restriction

    def clear_partition(self, node_id: NodeId) -> bool:
        """
        Remove the restriction on the lineage of `node_id`.

        Returns:
            True if a restriction was removed
        """
        with self._lock:
            with self._rejections("clear_partition"):
                root = self.root(node_id)
                removed = self.store.clear_restriction(root)
                events: List[ForestEvent] = [PartitionCleared(root)] if removed else []
                if removed:
                    self._print(f"✓ PARTITION CLEARED on root {root[:10]}…")
            self._publish(events)
            return removed

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _validate_spec(self, spec: NodeSpec, creator: Identity) -> Optional[NodeId]:
        """
        Check a NodeSpec and resolve the lineage root the node will carry.

        Returns:
            Lineage root id, or None if the node starts a new lineage
        """
        if is_null_identity(creator):
            raise ValueError("Node creator cannot be empty")
        if spec.value == 0:
            raise ZeroValue("Cannot create a node with zero value")
        if is_null_identity(spec.owner):
            raise InvalidOwner("Cannot create a node for the null identity")

        if spec.parent is not None:
            parent = self.store.require(spec.parent)
            root = parent.lineage_root
            if spec.root is not None and self.store.require(spec.root).lineage_root != root:
                raise ValueError(f"Root {spec.root} is not the lineage root of parent {spec.parent}")
            if spec.level <= parent.level:
                raise ValueError(
                    f"Level {spec.level} must be deeper than parent level {parent.level}"
                )
            return root
        if spec.root is not None:
            root = self.store.require(spec.root).lineage_root
            if spec.level == 0:
                raise ValueError("Only a lineage root may sit at level 0")
            return root
        if spec.level != 0:
            raise ValueError(f"A new lineage root must sit at level 0, got {spec.level}")
        return None

    def _store_node(
        self,
        value: int,
        owner: Identity,
        root: Optional[NodeId],
        parent: Optional[NodeId],
        level: int,
        creator: Identity,
        events: List[ForestEvent],
    ) -> Node:
        """Allocate an id, store the node, advance the creator's sequence and hierarchy."""
        node_id = compute_node_id(self.domain, creator, self.store.next_sequence(creator))
        node = Node(id=node_id, root=root, parent=parent, value=value, level=level, owner=owner)
        self.store.put_new(node)
        self.store.advance_sequence(creator)
        self.store.raise_hierarchy(node.lineage_root, level)
        events.append(NodeCreated(node.lineage_root, node.id, creator, owner, value, level))
        return node

    def _publish(self, events: List[ForestEvent]) -> None:
        """
        Number committed events, append them to the log and notify observers.

        Operations started by an observer publish from inside this loop; their
        events are queued behind the ones still pending, and only the
        outermost call delivers. Every observer sees every event. The first
        observer exception is raised once the queue is drained.
        """
        for event in events:
            event = replace(event, sequence_number=self._next_sequence)
            self._next_sequence += 1
            self.event_log.append(event)
            self._pending.append(event)
        if self._delivering:
            return

        errors: List[Exception] = []
        self._delivering = True
        try:
            while self._pending:
                event = self._pending.popleft()
                for observer in list(self._observers):
                    try:
                        observer(event)
                    except Exception as exc:
                        errors.append(exc)
        finally:
            self._delivering = False
        if errors:
            raise errors[0]

    @contextmanager
    def _rejections(self, operation: str):
        """Report a rejected operation before re-raising its error."""
        try:
            yield
        except (ForestError, ValueError) as exc:
            self._print(f"✗ REJECTED {operation}: {type(exc).__name__}: {exc}")
            raise

    def _print(self, message: str) -> None:
        if self.verbose:
            print(message)

    # ========================================================================
    # VERIFICATION
    # ========================================================================

    def verify_conservation(self, node_id: Optional[NodeId] = None) -> Dict[str, Any]:
        """
        Verify that spend and merge neither created nor destroyed value.

        For every lineage:
            issued == outstanding + burned
        where issued counts value entering through create/mint, burned counts
        value leaving through spends with no recipient, and outstanding sums
        the remaining value of every node in the lineage.

        Args:
            node_id: Restrict the check to this node's lineage (default: all)

        Returns:
            Dict with keys:
            - 'valid': bool - True if every lineage balances
            - 'lineages': Dict[root, Dict] - issued, burned, outstanding per root
            - 'discrepancies': List[Dict] - lineages that do not balance

        Example:
            result = forest.verify_conservation()
            assert result['valid'], f"Conservation violated: {result['discrepancies']}"
        """
        roots = [self.root(node_id)] if node_id is not None else self.store.roots()
        lineages: Dict[NodeId, Dict[str, int]] = {}
        discrepancies: List[Dict[str, Any]] = []

        for root in roots:
            issued = self.store.issued.get(root, 0)
            burned = self.store.burned.get(root, 0)
            outstanding = sum(self.store.nodes[i].value for i in self.store.lineage(root))
            lineages[root] = {
                'issued': issued,
                'burned': burned,
                'outstanding': outstanding,
            }
            if issued != outstanding + burned:
                discrepancies.append({
                    'root': root,
                    'issued': issued,
                    'burned': burned,
                    'outstanding': outstanding,
                    'difference': issued - outstanding - burned,
                })

        return {
            'valid': len(discrepancies) == 0,
            'lineages': lineages,
            'discrepancies': discrepancies,
        }

    def __repr__(self) -> str:
        return (f"Forest({self.name!r}, {self.node_count()} nodes, "
                f"{len(self.store.roots())} lineages, {len(self.guards)} guards)")
