"""Pure operations on the node collection.

Every mutation here takes the full node list and returns a new list; nodes
that change are replaced with updated copies, never modified in place. These
functions are what StoryGraph hands to ``NodeStore.mutate``.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from autodraft.graph.errors import GraphCorruptionError, NodeNotFoundError
from autodraft.models.node import CHILD_TYPE, MAX_DEPTH, Node, NodeType

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence


def new_node_id() -> str:
    """Generate a fresh node id."""
    return uuid.uuid4().hex[:12]


def index_by_id(nodes: Iterable[Node]) -> dict[str, Node]:
    return {n.id: n for n in nodes}


def get_root(nodes: Sequence[Node]) -> Node | None:
    for node in nodes:
        if node.type == NodeType.ROOT:
            return node
    return None


def children_of(
    nodes: Sequence[Node], parent_id: str, node_type: NodeType | None = None
) -> list[Node]:
    """Children of *parent_id* in ``children_ids`` order, optionally filtered by type."""
    by_id = index_by_id(nodes)
    parent = by_id.get(parent_id)
    if parent is None:
        return []
    children = [by_id[cid] for cid in parent.children_ids if cid in by_id]
    if node_type is not None:
        children = [c for c in children if c.type == node_type]
    return children


def descendant_ids(nodes: Sequence[Node], node_id: str) -> list[str]:
    """All ids below *node_id*, breadth-first. The node itself is excluded."""
    by_id = index_by_id(nodes)
    seen: set[str] = {node_id}
    result: list[str] = []
    queue = list(by_id[node_id].children_ids) if node_id in by_id else []
    while queue:
        cid = queue.pop(0)
        if cid in seen or cid not in by_id:
            continue
        seen.add(cid)
        result.append(cid)
        queue.extend(by_id[cid].children_ids)
    return result


def ancestors(nodes: Sequence[Node], node_id: str) -> list[Node]:
    """Ancestors of *node_id*, root first, excluding the node itself.

    The walk is iterative and bounded by the hierarchy depth.

    Raises:
        NodeNotFoundError: If *node_id* does not exist.
        GraphCorruptionError: If the parent chain loops or is deeper than
            the hierarchy allows.
    """
    by_id = index_by_id(nodes)
    node = by_id.get(node_id)
    if node is None:
        raise NodeNotFoundError(node_id, context="ancestors")

    chain: list[Node] = []
    visited: set[str] = {node_id}
    parent_id = node.parent_id
    while parent_id is not None:
        if parent_id in visited:
            raise GraphCorruptionError(node_id, [n.id for n in chain] + [parent_id], "cycle")
        if len(chain) >= MAX_DEPTH - 1:
            raise GraphCorruptionError(node_id, [n.id for n in chain], "depth")
        parent = by_id.get(parent_id)
        if parent is None:
            break
        visited.add(parent_id)
        chain.append(parent)
        parent_id = parent.parent_id

    chain.reverse()
    return chain


def insert_children(
    nodes: Sequence[Node],
    parent_id: str,
    new_nodes: Sequence[Node],
    *,
    after_id: str | None = None,
    at_front: bool = False,
) -> list[Node]:
    """Splice *new_nodes* into the parent's children and the sibling chain.

    Without *after_id* the nodes are appended; with it they are placed right
    after that sibling, and the sibling that used to follow it is re-linked
    to the last new node. With *at_front* they become the first children.
    The parent's ``collapsed`` flag is cleared.

    Raises:
        NodeNotFoundError: If the parent does not exist.
    """
    by_id = index_by_id(nodes)
    parent = by_id.get(parent_id)
    if parent is None:
        raise NodeNotFoundError(parent_id, context="insert_children")
    if not new_nodes:
        return list(nodes)

    siblings = list(parent.children_ids)
    if at_front:
        position = 0
        anchor: str | None = None
    elif after_id is not None and after_id in siblings:
        position = siblings.index(after_id) + 1
        anchor = after_id
    else:
        position = len(siblings)
        anchor = _chain_tail(by_id, siblings)

    # Whoever pointed at the anchor now follows the inserted run
    successor_id: str | None = None
    if at_front:
        successor_id = _chain_head(by_id, siblings)
    else:
        for sid in siblings:
            sibling = by_id.get(sid)
            if sibling is not None and sibling.prev_node_id == anchor and anchor is not None:
                successor_id = sid
                break

    linked: list[Node] = []
    prev = anchor
    for node in new_nodes:
        linked.append(node.model_copy(update={"parent_id": parent_id, "prev_node_id": prev}))
        prev = node.id
    last_new_id = prev

    new_ids = [n.id for n in linked]
    result: list[Node] = []
    for node in nodes:
        if node.id == parent_id:
            children = siblings[:position] + new_ids + siblings[position:]
            result.append(node.model_copy(update={"children_ids": children, "collapsed": False}))
        elif node.id == successor_id:
            result.append(node.model_copy(update={"prev_node_id": last_new_id}))
        else:
            result.append(node)
    result.extend(linked)
    return result


def _chain_tail(by_id: dict[str, Node], sibling_ids: list[str]) -> str | None:
    """Last sibling in narrative order: the one nobody points back to."""
    if not sibling_ids:
        return None
    pointed_at = {by_id[s].prev_node_id for s in sibling_ids if s in by_id}
    for sid in reversed(sibling_ids):
        if sid not in pointed_at:
            return sid
    return sibling_ids[-1]


def _chain_head(by_id: dict[str, Node], sibling_ids: list[str]) -> str | None:
    for sid in sibling_ids:
        node = by_id.get(sid)
        if node is not None and node.prev_node_id is None:
            return sid
    return sibling_ids[0] if sibling_ids else None


def remove_node(nodes: Sequence[Node], node_id: str) -> list[Node]:
    """Delete *node_id* and its descendants, keeping the sibling chain intact.

    The sibling that pointed at the removed node is re-linked to the removed
    node's predecessor, the id is stripped from its parent, and any
    associations naming a removed node are dropped.

    Raises:
        NodeNotFoundError: If the node does not exist.
    """
    by_id = index_by_id(nodes)
    target = by_id.get(node_id)
    if target is None:
        raise NodeNotFoundError(node_id, context="remove_node")

    doomed = {node_id, *descendant_ids(nodes, node_id)}
    result: list[Node] = []
    for node in nodes:
        if node.id in doomed:
            continue
        updates: dict[str, Any] = {}
        if node.id == target.parent_id:
            updates["children_ids"] = [c for c in node.children_ids if c != node_id]
        if node.prev_node_id == node_id:
            updates["prev_node_id"] = target.prev_node_id
        if doomed.intersection(node.associations):
            updates["associations"] = [a for a in node.associations if a not in doomed]
        result.append(node.model_copy(update=updates) if updates else node)
    return result


def update_node(nodes: Sequence[Node], node_id: str, **fields: Any) -> list[Node]:
    """Replace *node_id* with a copy carrying *fields*.

    Raises:
        NodeNotFoundError: If the node does not exist.
    """
    found = False
    result: list[Node] = []
    for node in nodes:
        if node.id == node_id:
            found = True
            result.append(node.model_copy(update=fields))
        else:
            result.append(node)
    if not found:
        raise NodeNotFoundError(node_id, context="update_node - node must exist before updating")
    return result


def add_nodes(nodes: Sequence[Node], new_nodes: Sequence[Node]) -> list[Node]:
    """Append free-standing nodes (the resource pool)."""
    return [*nodes, *new_nodes]


def validate_invariants(nodes: Sequence[Node]) -> list[str]:
    """Check tree invariants and return any violations.

    This is for detecting code bugs or data corruption, not for judging
    generated content. Call after mutations to ensure the tree is valid.

    Returns:
        List of violation messages (empty if valid).
    """
    violations: list[str] = []
    by_id = index_by_id(nodes)
    if len(by_id) != len(nodes):
        violations.append("Duplicate node ids")

    roots = [n for n in nodes if n.type == NodeType.ROOT]
    if len(roots) != 1:
        violations.append(f"Expected exactly one ROOT, found {len(roots)}")

    for node in nodes:
        if node.is_resource:
            if node.parent_id is not None or node.children_ids or node.prev_node_id is not None:
                violations.append(f"Resource '{node.id}' has tree links")
            continue

        if node.type != NodeType.ROOT:
            parent = by_id.get(node.parent_id) if node.parent_id else None
            if parent is None:
                violations.append(f"'{node.id}' has missing parent '{node.parent_id}'")
            else:
                if CHILD_TYPE.get(parent.type) != node.type:
                    violations.append(
                        f"'{node.id}' ({node.type}) cannot be a child of {parent.type}"
                    )
                if node.id not in parent.children_ids:
                    violations.append(f"'{node.id}' not listed in parent '{parent.id}'")

        for cid in node.children_ids:
            child = by_id.get(cid)
            if child is None:
                violations.append(f"'{node.id}' lists missing child '{cid}'")
            elif child.parent_id != node.id:
                violations.append(f"Child '{cid}' does not point back to '{node.id}'")

        if node.prev_node_id is not None:
            prev = by_id.get(node.prev_node_id)
            if prev is None:
                violations.append(f"'{node.id}' has missing prev '{node.prev_node_id}'")
            elif prev.parent_id != node.parent_id:
                violations.append(f"'{node.id}' prev '{prev.id}' is not a sibling")

        for rid in node.associations:
            res = by_id.get(rid)
            if res is None or not res.is_resource:
                violations.append(f"'{node.id}' associates non-resource '{rid}'")

        try:
            ancestors(nodes, node.id)
        except GraphCorruptionError as e:
            violations.append(str(e))

    # prev chain among siblings: no forks, single head
    for node in nodes:
        if not node.children_ids:
            continue
        kids = [by_id[c] for c in node.children_ids if c in by_id]
        prevs = [k.prev_node_id for k in kids]
        heads = [k for k in kids if k.prev_node_id is None]
        if len(heads) != 1:
            violations.append(f"Children of '{node.id}' have {len(heads)} chain heads")
        linked = [p for p in prevs if p is not None]
        if len(linked) != len(set(linked)):
            violations.append(f"Children of '{node.id}' fork in the prev chain")

    return violations
