"""
test_forest_operations.py - Unit tests for Forest create/spend/merge

Tests:
- create(): validation, placement, counters, events
- spend(): partial spends, child placement, burns, error taxonomy
- merge(): folding, skipping, strict mode, bounds
- Read accessors and observers
"""

import pytest

from forest import (
    Forest, NodeSpec, NodeCreated, NodeSpent, NodesMerged,
    ZeroValue, Unauthorized, Insufficient, NotExist, InvalidOwner,
    MergeSizeExceed, InvalidMerge, ForestError, compute_node_id,
)


class TestForestCreation:

    def test_create_forest(self):
        forest = Forest("test", verbose=False)
        assert forest.name == "test"
        assert forest.domain == "test"
        assert forest.node_count() == 0

    def test_explicit_domain(self):
        forest = Forest("test", domain="chain-1", verbose=False)
        node_id = forest.mint("alice", 10)
        assert node_id == compute_node_id("chain-1", "alice", 0)

    def test_invalid_merge_bound_raises(self):
        with pytest.raises(ValueError, match="max_merge_inputs"):
            Forest("test", max_merge_inputs=0, verbose=False)

    def test_default_guard_is_partition_guard(self):
        from forest import PartitionGuard
        forest = Forest("test", verbose=False)
        assert len(forest.guards) == 1
        assert isinstance(forest.guards[0], PartitionGuard)


class TestCreate:
    """Tests for create() and mint()."""

    def test_mint_creates_root(self, forest):
        a = forest.mint("alice", 1000)
        node = forest.get_node(a)
        assert node.root is None
        assert node.parent is None
        assert node.level == 0
        assert node.value == 1000
        assert node.owner == "alice"
        assert forest.root(a) == a
        assert forest.hierarchy(a) == 0

    def test_id_derived_from_creator_sequence(self, forest):
        a = forest.mint("alice", 1000)
        assert a == compute_node_id("test", "alice", 0)
        assert forest.sequence("alice") == 1

    def test_creator_distinct_from_owner(self, forest):
        a = forest.mint("alice", 1000, creator="issuer")
        assert a == compute_node_id("test", "issuer", 0)
        assert forest.sequence("issuer") == 1
        assert forest.sequence("alice") == 0
        assert forest.owner(a) == "alice"

    def test_consecutive_mints_get_distinct_ids(self, forest):
        ids = {forest.mint("alice", 1) for _ in range(20)}
        assert len(ids) == 20
        assert forest.sequence("alice") == 20

    def test_create_zero_value_raises(self, forest):
        with pytest.raises(ZeroValue):
            forest.create(NodeSpec(value=0, owner="alice"), "alice")
        assert forest.node_count() == 0
        assert forest.sequence("alice") == 0

    @pytest.mark.parametrize("owner", [None, "", "  "])
    def test_create_null_owner_raises(self, forest, owner):
        with pytest.raises(InvalidOwner):
            forest.create(NodeSpec(value=10, owner=owner), "alice")
        assert forest.node_count() == 0

    def test_create_blank_creator_raises(self, forest):
        with pytest.raises(ValueError, match="creator"):
            forest.create(NodeSpec(value=10, owner="alice"), "")

    def test_create_unknown_parent_raises(self, forest):
        with pytest.raises(NotExist):
            forest.create(NodeSpec(value=10, owner="alice", parent="0xdead", level=1), "alice")

    def test_create_unknown_root_raises(self, forest):
        with pytest.raises(NotExist):
            forest.create(NodeSpec(value=10, owner="alice", root="0xdead", level=1), "alice")

    def test_create_under_parent_joins_lineage(self, forest):
        a = forest.mint("alice", 1000)
        c = forest.create(NodeSpec(value=50, owner="bob", parent=a, level=3), "issuer")
        node = forest.get_node(c)
        assert node.root == a
        assert node.parent == a
        assert forest.hierarchy(a) == 3
        assert c in forest.lineage(a)

    def test_create_root_level_must_be_zero(self, forest):
        with pytest.raises(ValueError, match="level 0"):
            forest.create(NodeSpec(value=10, owner="alice", level=2), "alice")

    def test_create_child_must_be_deeper_than_parent(self, forest):
        a = forest.mint("alice", 1000)
        with pytest.raises(ValueError, match="deeper"):
            forest.create(NodeSpec(value=10, owner="bob", parent=a, level=0), "alice")

    def test_create_root_mismatching_parent_raises(self, forest):
        a = forest.mint("alice", 1000)
        x = forest.mint("carol", 1000)
        with pytest.raises(ValueError, match="lineage root"):
            forest.create(NodeSpec(value=10, owner="bob", root=x, parent=a, level=1), "alice")

    def test_create_with_member_as_root_resolves_to_lineage_root(self, forest):
        a = forest.mint("alice", 1000)
        b = forest.spend(a, "alice", "bob", 100)
        c = forest.create(NodeSpec(value=10, owner="bob", root=b, level=2), "issuer")
        assert forest.get_node(c).root == a

    def test_create_emits_node_created(self, forest):
        a = forest.mint("alice", 1000)
        event = forest.event_log[-1]
        assert isinstance(event, NodeCreated)
        assert event.root == a
        assert event.node_id == a
        assert event.creator == "alice"
        assert event.value == 1000


class TestSpend:
    """Tests for spend()."""

    def test_spend_creates_child(self, forest):
        a = forest.mint("alice", 1000)
        b = forest.spend(a, "alice", "bob", 300)

        child = forest.get_node(b)
        assert child.root == a
        assert child.parent == a
        assert child.level == 1
        assert child.value == 300
        assert child.owner == "bob"
        assert forest.value(a) == 700

    def test_spend_raises_hierarchy(self, forest):
        a = forest.mint("alice", 1000)
        b = forest.spend(a, "alice", "bob", 300)
        c = forest.spend(b, "bob", "carol", 100)
        assert forest.level(c) == 2
        assert forest.hierarchy(a) == 2
        assert forest.hierarchy(c) == 2

    def test_root_is_denormalized_on_deep_nodes(self, forest):
        node = forest.mint("w0", 100)
        a = node
        for i in range(1, 10):
            node = forest.spend(node, f"w{i-1}", f"w{i}", 100 - i)
        assert forest.get_node(node).root == a
        assert forest.get_node(node).level == 9

    def test_child_id_uses_spender_sequence(self, forest):
        a = forest.mint("alice", 1000)
        b = forest.spend(a, "alice", "bob", 300)
        assert b == compute_node_id("test", "alice", 1)
        assert forest.sequence("alice") == 2
        assert forest.sequence("bob") == 0

    def test_partial_spends_until_empty(self, forest):
        a = forest.mint("alice", 100)
        forest.spend(a, "alice", "bob", 40)
        forest.spend(a, "alice", "bob", 60)
        assert forest.value(a) == 0
        assert forest.exists(a)
        with pytest.raises(Insufficient) as exc_info:
            forest.spend(a, "alice", "bob", 1)
        assert exc_info.value.current == 0
        assert exc_info.value.requested == 1

    def test_spend_entire_value(self, forest):
        a = forest.mint("alice", 100)
        b = forest.spend(a, "alice", "bob", 100)
        assert forest.value(a) == 0
        assert forest.value(b) == 100
        assert forest.get_node(a).is_spent

    def test_spend_to_self(self, forest):
        a = forest.mint("alice", 100)
        b = forest.spend(a, "alice", "alice", 10)
        assert forest.owner(b) == "alice"
        assert forest.level(b) == 1

    def test_unauthorized(self, forest):
        a = forest.mint("alice", 1000)
        with pytest.raises(Unauthorized):
            forest.spend(a, "mallory", "mallory", 10)
        assert forest.value(a) == 1000

    def test_insufficient(self, forest):
        a = forest.mint("alice", 1000)
        with pytest.raises(Insufficient) as exc_info:
            forest.spend(a, "alice", "bob", 1001)
        assert exc_info.value.current == 1000
        assert exc_info.value.requested == 1001
        assert forest.value(a) == 1000

    def test_zero_amount(self, forest):
        a = forest.mint("alice", 1000)
        with pytest.raises(ZeroValue):
            forest.spend(a, "alice", "bob", 0)

    def test_negative_amount(self, forest):
        a = forest.mint("alice", 1000)
        with pytest.raises(ValueError, match="non-negative"):
            forest.spend(a, "alice", "bob", -5)

    def test_float_amount(self, forest):
        a = forest.mint("alice", 1000)
        with pytest.raises(ValueError, match="must be int"):
            forest.spend(a, "alice", "bob", 5.0)

    def test_unknown_node(self, forest):
        with pytest.raises(NotExist):
            forest.spend("0x" + "0" * 64, "alice", "bob", 1)

    def test_unauthorized_checked_before_insufficient(self, forest):
        a = forest.mint("alice", 10)
        with pytest.raises(Unauthorized):
            forest.spend(a, "mallory", "bob", 1000)

    def test_spend_events(self, forest):
        a = forest.mint("alice", 1000)
        b = forest.spend(a, "alice", "bob", 300)
        created, spent = forest.event_log[-2:]
        assert isinstance(created, NodeCreated)
        assert created.node_id == b
        assert created.root == a
        assert created.level == 1
        assert isinstance(spent, NodeSpent)
        assert spent.node_id == a
        assert spent.amount == 300
        assert spent.recipient == "bob"


class TestBurn:

    def test_burn_reduces_value_without_child(self, forest):
        a = forest.mint("alice", 1000)
        count = forest.node_count()
        assert forest.spend(a, "alice", None, 250) is None
        assert forest.value(a) == 750
        assert forest.node_count() == count

    def test_burn_helper(self, forest):
        a = forest.mint("alice", 1000)
        forest.burn(a, "alice", 1000)
        assert forest.value(a) == 0
        event = forest.event_log[-1]
        assert isinstance(event, NodeSpent)
        assert event.recipient is None

    def test_blank_recipient_burns(self, forest):
        a = forest.mint("alice", 1000)
        assert forest.spend(a, "alice", "", 10) is None

    def test_burn_keeps_conservation(self, forest):
        a = forest.mint("alice", 1000)
        forest.spend(a, "alice", "bob", 400)
        forest.burn(a, "alice", 100)
        result = forest.verify_conservation()
        assert result["valid"]
        assert result["lineages"][a] == {"issued": 1000, "burned": 100, "outstanding": 900}


class TestMerge:
    """Tests for merge()."""

    def test_merge_siblings(self, lineage):
        forest, ids = lineage
        d = forest.merge([ids["B"], ids["C"]], "bob")

        node = forest.get_node(d)
        assert node.value == 500
        assert node.level == 2
        assert node.root == ids["A"]
        assert node.parent == ids["B"]
        assert node.owner == "bob"
        assert forest.value(ids["B"]) == 0
        assert forest.value(ids["C"]) == 0
        assert forest.hierarchy(ids["A"]) == 2

    def test_merge_level_uses_deepest_input(self, lineage):
        forest, ids = lineage
        deep = forest.spend(ids["C"], "bob", "bob", 50)     # level 2
        d = forest.merge([ids["B"], deep], "bob")
        assert forest.level(d) == 3
        assert forest.level(ids["B"]) == 1

    def test_merge_single_input(self, lineage):
        forest, ids = lineage
        d = forest.merge([ids["B"]], "bob")
        assert forest.value(d) == 300
        assert forest.level(d) == 2
        assert forest.value(ids["B"]) == 0

    def test_merge_skips_other_root(self, lineage):
        forest, ids = lineage
        x = forest.mint("bob", 50)
        d = forest.merge([ids["B"], x], "bob")

        assert forest.value(d) == 300
        assert forest.value(x) == 50
        event = forest.event_log[-1]
        assert isinstance(event, NodesMerged)
        assert event.inputs == (ids["B"],)
        assert event.skipped == (x,)

    def test_merge_skips_other_owner(self, lineage):
        forest, ids = lineage
        carol_node = forest.spend(ids["A"], "alice", "carol", 100)
        d = forest.merge([ids["B"], ids["C"], carol_node], "bob")
        assert forest.value(d) == 500
        assert forest.value(carol_node) == 100

    def test_merge_strict_rejects_mismatch(self, lineage):
        forest, ids = lineage
        x = forest.mint("bob", 50)
        count = forest.node_count()
        with pytest.raises(InvalidMerge, match="do not match"):
            forest.merge([ids["B"], ids["C"], x], "bob", strict=True)
        assert forest.value(ids["B"]) == 300
        assert forest.value(ids["C"]) == 200
        assert forest.node_count() == count

    def test_merge_requires_owner_of_first(self, lineage):
        forest, ids = lineage
        with pytest.raises(Unauthorized):
            forest.merge([ids["B"], ids["C"]], "alice")

    def test_merge_empty(self, forest):
        with pytest.raises(InvalidMerge, match="at least one"):
            forest.merge([], "bob")

    def test_merge_duplicates(self, lineage):
        forest, ids = lineage
        with pytest.raises(InvalidMerge, match="distinct"):
            forest.merge([ids["B"], ids["B"]], "bob")
        assert forest.value(ids["B"]) == 300

    def test_merge_size_exceed(self):
        forest = Forest("test", max_merge_inputs=2, verbose=False)
        a = forest.mint("alice", 100)
        ids = [forest.spend(a, "alice", "bob", 10) for _ in range(3)]
        with pytest.raises(MergeSizeExceed):
            forest.merge(ids, "bob")
        assert forest.merge(ids[:2], "bob")

    def test_merge_unknown_input(self, lineage):
        forest, ids = lineage
        with pytest.raises(NotExist):
            forest.merge([ids["B"], "0xmissing"], "bob")
        assert forest.value(ids["B"]) == 300

    def test_merge_of_spent_inputs_raises_zero_value(self, lineage):
        forest, ids = lineage
        forest.spend(ids["B"], "bob", "carol", 300)
        forest.spend(ids["C"], "bob", "carol", 200)
        with pytest.raises(ZeroValue):
            forest.merge([ids["B"], ids["C"]], "bob")

    def test_merge_events(self, lineage):
        forest, ids = lineage
        before = len(forest.event_log)
        d = forest.merge([ids["B"], ids["C"]], "bob")
        events = forest.event_log[before:]
        assert [type(e) for e in events] == [NodeSpent, NodeSpent, NodeCreated, NodesMerged]
        assert {e.node_id for e in events[:2]} == {ids["B"], ids["C"]}
        assert events[2].node_id == d
        assert events[3].inputs == (ids["B"], ids["C"])
        assert all(e.merged_into == d and e.recipient is None for e in events[:2])
        assert not any(e.is_burn for e in events[:2])

    def test_burn_event_has_no_merge_target(self, lineage):
        forest, ids = lineage
        forest.burn(ids["B"], "bob", 10)
        event = forest.event_log[-1]
        assert event.merged_into is None
        assert event.is_burn

    def test_merge_conserves_value(self, lineage):
        forest, ids = lineage
        forest.merge([ids["B"], ids["C"]], "bob")
        assert forest.verify_conservation()["valid"]


class TestAccessors:

    def test_accessors_raise_not_exist(self, forest):
        for accessor in (forest.get_node, forest.root, forest.parent, forest.level,
                         forest.value, forest.owner, forest.hierarchy, forest.lineage):
            with pytest.raises(NotExist):
                accessor("0xmissing")

    def test_exists_means_ever_created(self, forest):
        a = forest.mint("alice", 10)
        forest.burn(a, "alice", 10)
        assert forest.exists(a)
        assert not forest.exists("0xmissing")

    def test_sequence_of_unknown_creator_is_zero(self, forest):
        assert forest.sequence("nobody") == 0

    def test_lineage_in_creation_order(self, lineage):
        forest, ids = lineage
        assert forest.lineage(ids["C"]) == [ids["A"], ids["B"], ids["C"]]

    def test_roots(self, forest):
        a = forest.mint("alice", 10)
        b = forest.mint("bob", 10)
        forest.spend(a, "alice", "bob", 5)
        assert forest.roots() == [a, b]

    def test_total_value(self, lineage):
        forest, ids = lineage
        assert forest.total_value() == 1000

    def test_repr(self, lineage):
        forest, _ = lineage
        assert "3 nodes" in repr(forest)


class TestObservers:

    def test_subscribe_receives_committed_events(self, forest):
        received = []
        forest.subscribe(received.append)
        a = forest.mint("alice", 100)
        forest.spend(a, "alice", "bob", 10)
        assert received == forest.event_log
        assert [e.sequence_number for e in received] == [0, 1, 2]

    def test_rejected_operation_publishes_nothing(self, forest):
        received = []
        forest.subscribe(received.append)
        a = forest.mint("alice", 100)
        with pytest.raises(Insufficient):
            forest.spend(a, "alice", "bob", 1000)
        assert len(received) == 1

    def test_unsubscribe(self, forest):
        received = []
        forest.subscribe(received.append)
        forest.unsubscribe(received.append)
        forest.mint("alice", 100)
        assert received == []

    def test_nested_operations_delivered_in_sequence_order(self, forest):
        a = forest.mint("alice", 1000)
        received = []

        def forward_from_bob(event):
            received.append(event.sequence_number)
            if isinstance(event, NodeCreated) and event.owner == "bob":
                forest.spend(event.node_id, "bob", "carol", 1)

        forest.subscribe(forward_from_bob)
        b = forest.spend(a, "alice", "bob", 300)

        assert received == [1, 2, 3, 4]
        assert [e.sequence_number for e in forest.event_log] == [0, 1, 2, 3, 4]
        assert forest.value(b) == 299

    def test_failing_observer_does_not_starve_others(self, forest):
        a = forest.mint("alice", 1000)
        got = []

        def failing(event):
            raise RuntimeError(f"observer down at {event.sequence_number}")

        forest.subscribe(failing)
        forest.subscribe(got.append)
        with pytest.raises(RuntimeError, match="observer down at 1"):
            forest.spend(a, "alice", "bob", 10)

        assert [e.sequence_number for e in got] == [1, 2]
        assert got == forest.event_log[1:]

    def test_delivery_resumes_after_observer_error(self, forest):
        got = []
        calls = []

        def fails_once(event):
            calls.append(event)
            if len(calls) == 1:
                raise RuntimeError("first call")

        forest.subscribe(fails_once)
        forest.subscribe(got.append)
        with pytest.raises(RuntimeError):
            forest.mint("alice", 100)
        forest.mint("bob", 100)
        assert [e.sequence_number for e in got] == [0, 1]
        assert len(calls) == 2

    def test_observer_error_propagates_after_commit(self, forest):
        def failing(event):
            raise RuntimeError("observer down")

        forest.subscribe(failing)
        with pytest.raises(RuntimeError, match="observer down"):
            forest.mint("alice", 100)
        assert forest.node_count() == 1


class TestVerboseOutput:

    def test_applied_and_rejected_lines(self, capsys):
        forest = Forest("test", verbose=True)
        a = forest.mint("alice", 100)
        forest.spend(a, "alice", "bob", 10)
        with pytest.raises(ForestError):
            forest.spend(a, "bob", "bob", 10)
        out = capsys.readouterr().out
        assert "✓ CREATED" in out
        assert "✓ SPENT 10" in out
        assert "✗ REJECTED spend: Unauthorized" in out

    def test_quiet_when_not_verbose(self, forest, capsys):
        forest.mint("alice", 100)
        assert capsys.readouterr().out == ""
