"""Story tree facade over a NodeStore.

StoryGraph is the only way pipeline components touch the tree. Reads go
straight to the store snapshot. Writes are expressed as pure functions from
``graph.tree``, handed to ``NodeStore.mutate``, and then awaited until the
change is observably present, because the store may apply mutations
asynchronously. A visibility wait that times out logs a warning and the
caller proceeds optimistically.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from autodraft.graph import tree
from autodraft.graph.errors import NodeNotFoundError
from autodraft.graph.store import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_WAIT_TIMEOUT,
    NodeStore,
    wait_for,
)
from autodraft.models.node import CHILD_TYPE, RESOURCE_TYPES, Node, NodeType
from autodraft.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from autodraft.observability.run_log import RunLog

log = get_logger(__name__)


class StoryGraph:
    """Tree operations with visibility-checked writes.

    Attributes:
        wait_timeout: Seconds to wait for a write to become visible.
        poll_interval: Seconds between visibility polls.
    """

    def __init__(
        self,
        store: NodeStore,
        *,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        run_log: RunLog | None = None,
    ) -> None:
        self._store = store
        self.wait_timeout = wait_timeout
        self.poll_interval = poll_interval
        self._run_log = run_log
        self.visibility_timeouts = 0

    @property
    def store(self) -> NodeStore:
        return self._store

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def nodes(self) -> list[Node]:
        return self._store.snapshot()

    def get_node(self, node_id: str) -> Node | None:
        for node in self._store.snapshot():
            if node.id == node_id:
                return node
        return None

    def has_node(self, node_id: str) -> bool:
        return self.get_node(node_id) is not None

    def require(self, node_id: str) -> Node:
        """Get a node by ID.

        Raises:
            NodeNotFoundError: If the node doesn't exist.
        """
        node = self.get_node(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def root(self) -> Node:
        root = tree.get_root(self._store.snapshot())
        if root is None:
            raise NodeNotFoundError("ROOT", context="tree has no root node")
        return root

    def children(self, parent_id: str, node_type: NodeType | None = None) -> list[Node]:
        return tree.children_of(self._store.snapshot(), parent_id, node_type)

    def ancestors(self, node_id: str) -> list[Node]:
        """Root-first ancestors; see ``tree.ancestors``."""
        return tree.ancestors(self._store.snapshot(), node_id)

    def previous_sibling(self, node: Node) -> Node | None:
        if node.prev_node_id is None:
            return None
        return self.get_node(node.prev_node_id)

    def resources(self, ids: Iterable[str] | None = None) -> list[Node]:
        """Resource-pool nodes, optionally restricted to *ids* (in that order)."""
        pool = [n for n in self._store.snapshot() if n.type in RESOURCE_TYPES]
        if ids is None:
            return pool
        by_id = {n.id: n for n in pool}
        return [by_id[i] for i in ids if i in by_id]

    def level(self, node_type: NodeType) -> list[Node]:
        """All story nodes of *node_type* in tree order (parents in order, then children)."""
        snapshot = self._store.snapshot()
        root = tree.get_root(snapshot)
        if root is None:
            return []
        frontier = [root]
        while frontier and frontier[0].type != node_type:
            child_type = CHILD_TYPE.get(frontier[0].type)
            if child_type is None:
                return []
            frontier = [c for p in frontier for c in tree.children_of(snapshot, p.id, child_type)]
        return frontier

    def validate_invariants(self) -> list[str]:
        return tree.validate_invariants(self._store.snapshot())

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def insert_children(
        self,
        parent_id: str,
        node_type: NodeType,
        items: Sequence[tuple[str, str]],
        *,
        after_id: str | None = None,
        at_front: bool = False,
    ) -> list[str]:
        """Create children from ``(title, summary)`` pairs and splice them in.

        Non-chapter nodes mirror their summary into ``content``; chapters
        start with empty content, which holds prose once drafted.

        Returns:
            The new node ids, in insertion order.
        """
        new_nodes = [
            Node(
                id=tree.new_node_id(),
                type=node_type,
                title=title,
                summary=summary,
                content="" if node_type == NodeType.CHAPTER else summary,
            )
            for title, summary in items
        ]
        if not new_nodes:
            return []
        new_ids = [n.id for n in new_nodes]

        def _apply(nodes: list[Node]) -> list[Node]:
            return tree.insert_children(
                nodes, parent_id, new_nodes, after_id=after_id, at_front=at_front
            )

        def _visible(nodes: list[Node]) -> bool:
            present = {n.id for n in nodes}
            return all(i in present for i in new_ids)

        await self._commit(_apply, _visible, "insert_children", parent_id=parent_id)
        log.debug(
            "children_inserted",
            parent_id=parent_id,
            node_type=str(node_type),
            count=len(new_ids),
            after_id=after_id,
        )
        return new_ids

    async def update_node(self, node_id: str, **fields: Any) -> None:
        """Update fields on an existing node.

        Raises:
            NodeNotFoundError: If the node doesn't exist.
        """
        self.require(node_id)

        def _apply(nodes: list[Node]) -> list[Node]:
            return tree.update_node(nodes, node_id, **fields)

        def _visible(nodes: list[Node]) -> bool:
            for n in nodes:
                if n.id == node_id:
                    return all(getattr(n, k) == v for k, v in fields.items())
            return False

        await self._commit(_apply, _visible, "update_node", node_id=node_id)

    async def set_text(self, node_id: str, text: str, *, title: str | None = None) -> None:
        """Replace a node's working text (prose for chapters, summary otherwise)."""
        node = self.require(node_id)
        fields: dict[str, Any]
        if node.type == NodeType.CHAPTER:
            fields = {"content": text}
        else:
            fields = {"summary": text, "content": text}
        if title:
            fields["title"] = title
        await self.update_node(node_id, **fields)

    async def delete_node(self, node_id: str) -> None:
        """Remove a node and its descendants, re-linking the sibling chain.

        Raises:
            NodeNotFoundError: If the node doesn't exist.
        """
        self.require(node_id)

        def _apply(nodes: list[Node]) -> list[Node]:
            return tree.remove_node(nodes, node_id)

        def _visible(nodes: list[Node]) -> bool:
            return all(n.id != node_id for n in nodes)

        await self._commit(_apply, _visible, "delete_node", node_id=node_id)

    async def add_resources(self, items: Sequence[tuple[NodeType, str, str]]) -> list[str]:
        """Create resource-pool nodes from ``(type, title, summary)`` triples."""
        new_nodes = [
            Node(id=tree.new_node_id(), type=t, title=title, summary=summary)
            for t, title, summary in items
        ]
        if not new_nodes:
            return []
        new_ids = [n.id for n in new_nodes]

        def _apply(nodes: list[Node]) -> list[Node]:
            return tree.add_nodes(nodes, new_nodes)

        def _visible(nodes: list[Node]) -> bool:
            present = {n.id for n in nodes}
            return all(i in present for i in new_ids)

        await self._commit(_apply, _visible, "add_resources")
        return new_ids

    async def associate(self, node_id: str, resource_ids: Iterable[str]) -> list[str]:
        """Union *resource_ids* into a node's associations, keeping order.

        Returns:
            The ids that were newly added.
        """
        node = self.require(node_id)
        added = [r for r in dict.fromkeys(resource_ids) if r not in node.associations]
        if added:
            await self.update_node(node_id, associations=[*node.associations, *added])
        return added

    async def _commit(
        self,
        update_fn: Callable[[list[Node]], list[Node]],
        visible: Callable[[list[Node]], bool],
        operation: str,
        **context: Any,
    ) -> None:
        self._store.mutate(update_fn)
        ok = await wait_for(
            self._store, visible, timeout=self.wait_timeout, interval=self.poll_interval
        )
        if not ok:
            self.visibility_timeouts += 1
            log.warning(
                "visibility_timeout", operation=operation, timeout=self.wait_timeout, **context
            )
            if self._run_log is not None:
                self._run_log.warning(
                    f"[store] {operation} not visible after {self.wait_timeout:.0f}s; continuing"
                )
