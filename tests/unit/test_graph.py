"""Tests for StoryGraph writes over immediate and deferred stores."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from autodraft.graph import (
    DeferredNodeStore,
    InMemoryNodeStore,
    JsonFileNodeStore,
    NodeNotFoundError,
    StoryGraph,
    load_nodes,
    new_root,
)
from autodraft.models import NodeType
from autodraft.observability import RunLog

if TYPE_CHECKING:
    from pathlib import Path


class TestWrites:
    @pytest.mark.asyncio
    async def test_insert_children_in_order(self, graph: StoryGraph) -> None:
        ids = await graph.insert_children(
            "root-1", NodeType.OUTLINE, [("One", "first"), ("Two", "second")]
        )
        children = graph.children("root-1")

        assert [c.id for c in children] == ids
        assert children[0].content == "first"
        assert children[1].prev_node_id == ids[0]

    @pytest.mark.asyncio
    async def test_chapters_start_without_prose(self, graph: StoryGraph) -> None:
        [outline] = await graph.insert_children("root-1", NodeType.OUTLINE, [("O", "o")])
        [plot] = await graph.insert_children(outline, NodeType.PLOT, [("P", "p")])
        [chapter] = await graph.insert_children(plot, NodeType.CHAPTER, [("C", "summary")])

        node = graph.require(chapter)
        assert node.summary == "summary"
        assert node.content == ""

    @pytest.mark.asyncio
    async def test_set_text_targets_effective_field(self, graph: StoryGraph) -> None:
        """Chapters take prose in content; other nodes take it as summary."""
        [outline] = await graph.insert_children("root-1", NodeType.OUTLINE, [("O", "old")])
        [plot] = await graph.insert_children(outline, NodeType.PLOT, [("P", "p")])
        [chapter] = await graph.insert_children(plot, NodeType.CHAPTER, [("C", "c")])

        await graph.set_text(outline, "new", title="Renamed")
        await graph.set_text(chapter, "prose")

        assert graph.require(outline).summary == "new"
        assert graph.require(outline).title == "Renamed"
        assert graph.require(chapter).content == "prose"
        assert graph.require(chapter).summary == "c"

    @pytest.mark.asyncio
    async def test_associate_unions_in_order(self, graph: StoryGraph) -> None:
        r1, r2 = await graph.add_resources(
            [(NodeType.CHARACTER, "Lin", ""), (NodeType.ITEM, "Sword", "")]
        )
        assert await graph.associate("root-1", [r1]) == [r1]
        assert await graph.associate("root-1", [r2, r1, r2]) == [r2]
        assert graph.require("root-1").associations == [r1, r2]

    @pytest.mark.asyncio
    async def test_delete_node(self, graph: StoryGraph) -> None:
        ids = await graph.insert_children("root-1", NodeType.OUTLINE, [("A", ""), ("B", "")])
        await graph.delete_node(ids[0])
        assert [c.id for c in graph.children("root-1")] == [ids[1]]
        assert graph.validate_invariants() == []

    @pytest.mark.asyncio
    async def test_update_missing_node_raises(self, graph: StoryGraph) -> None:
        with pytest.raises(NodeNotFoundError):
            await graph.update_node("ghost", title="x")


class TestLevel:
    @pytest.mark.asyncio
    async def test_tree_order_across_parents(self, graph: StoryGraph) -> None:
        o1, o2 = await graph.insert_children("root-1", NodeType.OUTLINE, [("1", ""), ("2", "")])
        p2 = await graph.insert_children(o2, NodeType.PLOT, [("2a", "")])
        p1 = await graph.insert_children(o1, NodeType.PLOT, [("1a", ""), ("1b", "")])

        assert [n.id for n in graph.level(NodeType.PLOT)] == [*p1, *p2]
        assert graph.level(NodeType.CHAPTER) == []


class TestDeferredVisibility:
    """Writes to a store that applies mutations later."""

    @pytest.mark.asyncio
    async def test_write_waits_until_visible(self) -> None:
        store = DeferredNodeStore([new_root("S")], delay=0.02)
        graph = StoryGraph(store, wait_timeout=1.0, poll_interval=0.005)

        ids = await graph.insert_children("root-1", NodeType.OUTLINE, [("A", "a")])

        assert store.pending == 0
        assert graph.has_node(ids[0])
        assert graph.visibility_timeouts == 0

    @pytest.mark.asyncio
    async def test_timeout_is_logged_and_counted(self) -> None:
        """A write that never shows up within the wait is counted, not raised."""
        store = DeferredNodeStore([new_root("S")], delay=0.5)
        run_log = RunLog()
        graph = StoryGraph(store, wait_timeout=0.02, poll_interval=0.005, run_log=run_log)

        await graph.update_node("root-1", title="Later")

        assert graph.visibility_timeouts == 1
        assert graph.require("root-1").title == "S"
        assert any("not visible" in line for line in run_log.lines())


class TestJsonFileStore:
    @pytest.mark.asyncio
    async def test_persists_after_every_write(self, tmp_path: Path) -> None:
        path = tmp_path / "tree.json"
        store = JsonFileNodeStore(path)
        store.mutate(lambda nodes: [new_root("Saga", summary="idea")])
        graph = StoryGraph(store, wait_timeout=0.5, poll_interval=0.01)

        await graph.insert_children("root-1", NodeType.OUTLINE, [("Vol", "v")])

        reloaded = load_nodes(path)
        assert [n.type for n in reloaded] == [NodeType.ROOT, NodeType.OUTLINE]
        assert JsonFileNodeStore(path).snapshot()[1].parent_id == "root-1"

    def test_camel_case_on_disk(self, tmp_path: Path) -> None:
        path = tmp_path / "tree.json"
        store = JsonFileNodeStore(path)
        store.mutate(lambda nodes: [new_root("Saga")])
        text = path.read_text()
        assert '"childrenIds"' in text
        assert '"statusFlags"' in text

    def test_load_rejects_non_list(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text('{"nodes": {"id": "x"}}')
        with pytest.raises(ValueError, match="node list"):
            load_nodes(path)


class TestInMemoryStore:
    def test_snapshot_is_a_copy(self) -> None:
        store = InMemoryNodeStore([new_root("S")])
        snap = store.snapshot()
        snap.clear()
        assert len(store) == 1
