"""Tests for pure tree operations."""

from __future__ import annotations

import pytest

from autodraft.graph import GraphCorruptionError, NodeNotFoundError
from autodraft.graph import tree
from autodraft.models import Node, NodeType


def _root() -> Node:
    return Node(id="root", type=NodeType.ROOT, title="Story")


def _chain(parent_id: str, ids: list[str], node_type: NodeType = NodeType.OUTLINE) -> list[Node]:
    nodes = []
    prev = None
    for nid in ids:
        nodes.append(Node(id=nid, type=node_type, title=nid, parent_id=parent_id, prev_node_id=prev))
        prev = nid
    return nodes


def _tree(ids: list[str]) -> list[Node]:
    root = _root().model_copy(update={"children_ids": list(ids)})
    return [root, *_chain("root", ids)]


def _new(nid: str) -> Node:
    return Node(id=nid, type=NodeType.OUTLINE, title=nid)


class TestInsertChildren:
    def test_append_links_to_tail(self) -> None:
        nodes = tree.insert_children(_tree(["a", "b"]), "root", [_new("c"), _new("d")])
        by_id = tree.index_by_id(nodes)

        assert by_id["root"].children_ids == ["a", "b", "c", "d"]
        assert by_id["c"].prev_node_id == "b"
        assert by_id["d"].prev_node_id == "c"
        assert tree.validate_invariants(nodes) == []

    def test_insert_after_relinks_successor(self) -> None:
        """The sibling that followed the anchor now follows the last new node."""
        nodes = tree.insert_children(_tree(["a", "b"]), "root", [_new("x"), _new("y")], after_id="a")
        by_id = tree.index_by_id(nodes)

        assert by_id["root"].children_ids == ["a", "x", "y", "b"]
        assert by_id["x"].prev_node_id == "a"
        assert by_id["b"].prev_node_id == "y"
        assert tree.validate_invariants(nodes) == []

    def test_insert_at_front(self) -> None:
        nodes = tree.insert_children(_tree(["a", "b"]), "root", [_new("z")], at_front=True)
        by_id = tree.index_by_id(nodes)

        assert by_id["root"].children_ids == ["z", "a", "b"]
        assert by_id["z"].prev_node_id is None
        assert by_id["a"].prev_node_id == "z"
        assert tree.validate_invariants(nodes) == []

    def test_unknown_anchor_appends(self) -> None:
        nodes = tree.insert_children(_tree(["a"]), "root", [_new("b")], after_id="ghost")
        assert tree.index_by_id(nodes)["root"].children_ids == ["a", "b"]

    def test_clears_collapsed(self) -> None:
        nodes = _tree([])
        nodes[0] = nodes[0].model_copy(update={"collapsed": True})
        result = tree.insert_children(nodes, "root", [_new("a")])
        assert tree.index_by_id(result)["root"].collapsed is False

    def test_inputs_not_mutated(self) -> None:
        original = _tree(["a"])
        tree.insert_children(original, "root", [_new("b")])
        assert original[0].children_ids == ["a"]

    def test_missing_parent(self) -> None:
        with pytest.raises(NodeNotFoundError):
            tree.insert_children(_tree([]), "nope", [_new("a")])


class TestRemoveNode:
    def test_relinks_chain_and_drops_descendants(self) -> None:
        nodes = _tree(["a", "b", "c"])
        plot = Node(id="p1", type=NodeType.PLOT, parent_id="b")
        nodes = tree.update_node(nodes, "b", children_ids=["p1"])
        nodes.append(plot)

        result = tree.remove_node(nodes, "b")
        by_id = tree.index_by_id(result)

        assert "b" not in by_id
        assert "p1" not in by_id
        assert by_id["root"].children_ids == ["a", "c"]
        assert by_id["c"].prev_node_id == "a"
        assert tree.validate_invariants(result) == []

    def test_strips_associations_to_removed_resource(self) -> None:
        nodes = _tree(["a"])
        nodes.append(Node(id="r1", type=NodeType.CHARACTER, title="Lin"))
        nodes = tree.update_node(nodes, "a", associations=["r1"])

        result = tree.remove_node(nodes, "r1")
        assert tree.index_by_id(result)["a"].associations == []


class TestAncestors:
    def test_root_first(self) -> None:
        nodes = _tree(["a"])
        nodes = tree.update_node(nodes, "a", children_ids=["p"])
        nodes.append(Node(id="p", type=NodeType.PLOT, parent_id="a"))
        assert [n.id for n in tree.ancestors(nodes, "p")] == ["root", "a"]

    def test_cycle_detected(self) -> None:
        nodes = [
            Node(id="x", type=NodeType.OUTLINE, parent_id="y"),
            Node(id="y", type=NodeType.OUTLINE, parent_id="x"),
        ]
        with pytest.raises(GraphCorruptionError, match="cycle"):
            tree.ancestors(nodes, "x")

    def test_depth_bound(self) -> None:
        """A chain deeper than the hierarchy is reported, not walked forever."""
        nodes = [Node(id=f"n{i}", type=NodeType.CHAPTER, parent_id=f"n{i + 1}") for i in range(6)]
        nodes.append(Node(id="n6", type=NodeType.ROOT))
        with pytest.raises(GraphCorruptionError, match="depth"):
            tree.ancestors(nodes, "n0")

    def test_missing_node(self) -> None:
        with pytest.raises(NodeNotFoundError):
            tree.ancestors(_tree([]), "ghost")


class TestValidateInvariants:
    def test_wrong_child_type(self) -> None:
        nodes = [
            _root().model_copy(update={"children_ids": ["c"]}),
            Node(id="c", type=NodeType.CHAPTER, parent_id="root"),
        ]
        violations = tree.validate_invariants(nodes)
        assert any("cannot be a child of ROOT" in v for v in violations)

    def test_forked_chain(self) -> None:
        nodes = _tree(["a", "b", "c"])
        nodes = tree.update_node(nodes, "c", prev_node_id="a")
        violations = tree.validate_invariants(nodes)
        assert any("fork" in v for v in violations)

    def test_resource_with_parent(self) -> None:
        nodes = [_root(), Node(id="r", type=NodeType.ITEM, parent_id="root")]
        assert any("tree links" in v for v in tree.validate_invariants(nodes))

    def test_association_to_story_node(self) -> None:
        nodes = _tree(["a", "b"])
        nodes = tree.update_node(nodes, "a", associations=["b"])
        assert any("non-resource" in v for v in tree.validate_invariants(nodes))


class TestQueries:
    def test_children_filtered_by_type(self) -> None:
        nodes = _tree(["a"])
        assert [n.id for n in tree.children_of(nodes, "root", NodeType.OUTLINE)] == ["a"]
        assert tree.children_of(nodes, "root", NodeType.PLOT) == []

    def test_descendants_breadth_first(self) -> None:
        nodes = _tree(["a", "b"])
        nodes = tree.update_node(nodes, "a", children_ids=["p"])
        nodes.append(Node(id="p", type=NodeType.PLOT, parent_id="a"))
        assert tree.descendant_ids(nodes, "root") == ["a", "b", "p"]
