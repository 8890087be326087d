"""Prompt context formatting for pipeline steps.

Helpers here turn tree state into the text blocks the prompt templates
expect: the world bible, node listings, sibling chains, and the position
of a node in the book.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from autodraft.models.node import CHILD_TYPE, Node, NodeType

if TYPE_CHECKING:
    from collections.abc import Sequence

    from autodraft.graph.graph import StoryGraph

WORLD_BIBLE_CHARS = 1000
RESOURCE_SUMMARY_CHARS = 100
PREVIOUS_ENDING_CHARS = 500
NONE_TEXT = "(none)"


@dataclass(frozen=True)
class PositionContext:
    """Where a node (or the next generated child) sits in the book, 1-based."""

    volume_index: int | None = None
    plot_index: int | None = None
    chapter_index: int | None = None
    global_chapter_index: int | None = None

    def describe(self) -> str:
        parts: list[str] = []
        if self.volume_index:
            parts.append(f"Volume {self.volume_index}")
        if self.plot_index:
            parts.append(f"plot point {self.plot_index}")
        if self.chapter_index:
            parts.append(f"chapter {self.chapter_index}")
        text = " - ".join(parts)
        if self.global_chapter_index:
            text += f" (chapter {self.global_chapter_index} of the book)"
        return text.strip() or "Start of the book"


def _index_in(siblings: Sequence[Node], node_id: str) -> int | None:
    for i, sibling in enumerate(siblings, start=1):
        if sibling.id == node_id:
            return i
    return None


def position_of(graph: StoryGraph, node: Node) -> PositionContext:
    """Compute a node's position from its ancestry."""
    chain = [*graph.ancestors(node.id), node]
    indexes: dict[NodeType, int | None] = {}
    for parent, child in zip(chain, chain[1:], strict=False):
        indexes[child.type] = _index_in(graph.children(parent.id, child.type), child.id)

    global_index = None
    if node.type == NodeType.CHAPTER:
        global_index = _index_in(graph.level(NodeType.CHAPTER), node.id)

    return PositionContext(
        volume_index=indexes.get(NodeType.OUTLINE),
        plot_index=indexes.get(NodeType.PLOT),
        chapter_index=indexes.get(NodeType.CHAPTER),
        global_chapter_index=global_index,
    )


def position_for_children(graph: StoryGraph, parent: Node) -> PositionContext:
    """Position of the next child *parent* would receive."""
    base = position_of(graph, parent) if parent.type != NodeType.ROOT else PositionContext()
    child_type = CHILD_TYPE.get(parent.type)
    if child_type is None:
        return base
    next_index = len(graph.children(parent.id, child_type)) + 1

    if child_type == NodeType.OUTLINE:
        return PositionContext(volume_index=next_index)
    if child_type == NodeType.PLOT:
        return PositionContext(volume_index=base.volume_index, plot_index=next_index)

    # Chapters: count every chapter that precedes this plot in reading order
    preceding = 0
    for chapter in graph.level(NodeType.CHAPTER):
        if chapter.parent_id == parent.id:
            break
        preceding += 1
    return PositionContext(
        volume_index=base.volume_index,
        plot_index=base.plot_index,
        chapter_index=next_index,
        global_chapter_index=preceding + next_index,
    )


def node_line(node: Node) -> str:
    return f"[ID: {node.id}] {node.title}: {node.summary}"


def format_chain(nodes: Sequence[Node], *, with_length: bool = False) -> str:
    """List nodes for a consistency or pacing prompt, one block per node."""
    if not nodes:
        return NONE_TEXT
    if not with_length:
        return "\n".join(node_line(n) for n in nodes)
    blocks = [
        f"[ID: {n.id}] [Type: {n.type}]\nTITLE: {n.title}\n"
        f"CONTENT LENGTH: {len(n.summary)} chars\nCONTENT: {n.summary}"
        for n in nodes
    ]
    return "\n----------------\n".join(blocks)


def format_resources(resources: Sequence[Node], *, brief: bool = False) -> str:
    if not resources:
        return NONE_TEXT
    if brief:
        return "\n".join(f"[ID: {r.id}] {r.title}" for r in resources)
    return "\n".join(
        f"[ID: {r.id}] Type: {r.type} Title: {r.title} "
        f"Summary: {r.summary[:RESOURCE_SUMMARY_CHARS]}"
        for r in resources
    )


def world_context(graph: StoryGraph) -> str:
    """World bible (ROOT text) plus the resource pool, for every generation prompt."""
    root = graph.root()
    bible = (root.content or root.summary)[:WORLD_BIBLE_CHARS]
    pool = "\n".join(f"{r.title}: {r.summary}" for r in graph.resources()) or NONE_TEXT
    return f"[World]\n{bible}\n[Resources]\n{pool}"


def node_resources(graph: StoryGraph, node: Node) -> list[Node]:
    """Resources associated with *node*, falling back to its parent's."""
    if node.associations:
        return graph.resources(node.associations)
    if node.parent_id:
        parent = graph.get_node(node.parent_id)
        if parent is not None:
            return graph.resources(parent.associations)
    return []


def audit_context(graph: StoryGraph, node: Node) -> str:
    """World bible, parent, and previous sibling for a quality audit or rewrite."""
    lines = [world_context(graph)]
    if node.parent_id:
        parent = graph.get_node(node.parent_id)
        if parent is not None and parent.type != NodeType.ROOT:
            lines.append(f"[Parent] {parent.title}: {parent.summary}")
    prev = graph.previous_sibling(node)
    if prev is not None:
        lines.append(f"[Previous] {prev.title}: {prev.summary}")
    return "\n".join(lines)


def previous_chapter(graph: StoryGraph, chapter: Node) -> Node | None:
    """Chapter immediately before *chapter* in reading order, across plot boundaries."""
    prev = graph.previous_sibling(chapter)
    if prev is not None:
        return prev
    chapters = graph.level(NodeType.CHAPTER)
    index = _index_in(chapters, chapter.id)
    if index is None or index == 1:
        return None
    return chapters[index - 2]


def text_or_none(text: str | None) -> str:
    return text if text else NONE_TEXT
