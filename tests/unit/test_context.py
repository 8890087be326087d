"""Tests for prompt context formatting."""

from __future__ import annotations

import pytest

from autodraft.graph import StoryGraph
from autodraft.models import NodeType
from autodraft.pipeline.context import (
    NONE_TEXT,
    format_chain,
    node_resources,
    position_for_children,
    position_of,
    previous_chapter,
    world_context,
)


async def _build(graph: StoryGraph) -> dict[str, list[str]]:
    """Two volumes, one plot each, two chapters per plot."""
    outlines = await graph.insert_children("root-1", NodeType.OUTLINE, [("V1", "a"), ("V2", "b")])
    plots = []
    chapters = []
    for outline in outlines:
        [plot] = await graph.insert_children(outline, NodeType.PLOT, [("P", "p")])
        plots.append(plot)
        chapters += await graph.insert_children(plot, NodeType.CHAPTER, [("C1", "x"), ("C2", "y")])
    return {"outlines": outlines, "plots": plots, "chapters": chapters}


class TestPosition:
    @pytest.mark.asyncio
    async def test_global_chapter_index(self, graph: StoryGraph) -> None:
        ids = await _build(graph)
        position = position_of(graph, graph.require(ids["chapters"][2]))

        assert position.volume_index == 2
        assert position.plot_index == 1
        assert position.chapter_index == 1
        assert position.global_chapter_index == 3
        assert "chapter 3 of the book" in position.describe()

    @pytest.mark.asyncio
    async def test_next_child_position(self, graph: StoryGraph) -> None:
        ids = await _build(graph)
        position = position_for_children(graph, graph.require(ids["plots"][1]))
        assert position.chapter_index == 3
        assert position.global_chapter_index == 5

    def test_start_of_book(self, graph: StoryGraph) -> None:
        position = position_for_children(graph, graph.root())
        assert position.volume_index == 1
        assert position.describe() == "Volume 1"


class TestPreviousChapter:
    @pytest.mark.asyncio
    async def test_crosses_plot_boundary(self, graph: StoryGraph) -> None:
        ids = await _build(graph)
        first_of_second_plot = graph.require(ids["chapters"][2])
        prev = previous_chapter(graph, first_of_second_plot)
        assert prev is not None
        assert prev.id == ids["chapters"][1]

    @pytest.mark.asyncio
    async def test_first_chapter_has_none(self, graph: StoryGraph) -> None:
        ids = await _build(graph)
        assert previous_chapter(graph, graph.require(ids["chapters"][0])) is None


class TestFormatting:
    def test_world_context_includes_root_and_pool(self, graph: StoryGraph) -> None:
        text = world_context(graph)
        assert "sky citadel" in text
        assert NONE_TEXT in text

    def test_empty_chain(self) -> None:
        assert format_chain([]) == NONE_TEXT

    @pytest.mark.asyncio
    async def test_chain_with_length(self, graph: StoryGraph) -> None:
        ids = await graph.insert_children("root-1", NodeType.OUTLINE, [("V1", "abcd")])
        text = format_chain(graph.children("root-1"), with_length=True)
        assert f"[ID: {ids[0]}]" in text
        assert "CONTENT LENGTH: 4 chars" in text

    @pytest.mark.asyncio
    async def test_resources_fall_back_to_parent(self, graph: StoryGraph) -> None:
        [res] = await graph.add_resources([(NodeType.LOCATION, "Gate", "stone")])
        await graph.associate("root-1", [res])
        [outline] = await graph.insert_children("root-1", NodeType.OUTLINE, [("V1", "")])

        assert [r.id for r in node_resources(graph, graph.require(outline))] == [res]
