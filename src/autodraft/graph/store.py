"""Node storage protocol and implementations.

The NodeStore protocol has two operations: a snapshot read and a single
functional ``mutate(update_fn)`` entry point, where ``update_fn`` receives and
returns the full node collection. Mutations may become visible to readers
later than the call returns, so callers that depend on a write poll with
``wait_for`` before proceeding.

InMemoryNodeStore applies mutations immediately. DeferredNodeStore applies
them on a later event-loop tick, matching an externally owned store.
JsonFileNodeStore is an in-memory store that persists after every mutation.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from autodraft.models.node import Node, NodeType
from autodraft.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

log = get_logger(__name__)

DEFAULT_WAIT_TIMEOUT = 10.0
DEFAULT_POLL_INTERVAL = 0.05


@runtime_checkable
class NodeStore(Protocol):
    """Storage backend protocol for StoryGraph.

    Implementations hold the node collection. StoryGraph wraps a NodeStore
    and adds tree operations, lookups, and visibility waits on top.
    """

    def snapshot(self) -> list[Node]:
        """Return the currently visible node collection."""
        ...

    def mutate(self, update_fn: Callable[[list[Node]], list[Node]]) -> None:
        """Apply *update_fn* to the collection, possibly asynchronously."""
        ...


class InMemoryNodeStore:
    """Store whose mutations are visible as soon as ``mutate`` returns."""

    def __init__(self, nodes: Sequence[Node] | None = None) -> None:
        self._nodes: list[Node] = list(nodes or [])

    def snapshot(self) -> list[Node]:
        return list(self._nodes)

    def mutate(self, update_fn: Callable[[list[Node]], list[Node]]) -> None:
        self._nodes = update_fn(list(self._nodes))

    def __len__(self) -> int:
        return len(self._nodes)


class DeferredNodeStore(InMemoryNodeStore):
    """Store that applies each mutation after *delay* seconds on the running loop.

    Mutations are applied in submission order. Must be mutated from inside
    a running event loop.
    """

    def __init__(self, nodes: Sequence[Node] | None = None, delay: float = 0.0) -> None:
        super().__init__(nodes)
        self.delay = delay
        self._pending = 0

    def mutate(self, update_fn: Callable[[list[Node]], list[Node]]) -> None:
        loop = asyncio.get_running_loop()
        self._pending += 1
        loop.call_later(self.delay, self._apply, update_fn)

    def _apply(self, update_fn: Callable[[list[Node]], list[Node]]) -> None:
        self._pending -= 1
        super().mutate(update_fn)

    @property
    def pending(self) -> int:
        """Number of mutations not yet applied."""
        return self._pending


class JsonFileNodeStore(InMemoryNodeStore):
    """In-memory store persisted to a JSON file after every mutation.

    The file holds ``{"nodes": [...]}`` with camelCase node fields.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        super().__init__(load_nodes(self.path) if self.path.exists() else [])

    def mutate(self, update_fn: Callable[[list[Node]], list[Node]]) -> None:
        super().mutate(update_fn)
        self.save()

    def save(self) -> None:
        save_nodes(self.path, self._nodes)


def load_nodes(path: Path) -> list[Node]:
    """Load a node collection from a JSON file.

    Accepts either ``{"nodes": [...]}`` or a bare list.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValueError: If the file is not valid JSON or holds invalid nodes.
    """
    with path.open(encoding="utf-8") as f:
        data: Any = json.load(f)
    raw = data.get("nodes", []) if isinstance(data, dict) else data
    if not isinstance(raw, list):
        raise ValueError(f"Expected a node list in {path}")
    return [Node.model_validate(item) for item in raw]


def save_nodes(path: Path, nodes: Sequence[Node]) -> None:
    """Write *nodes* to *path* atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    payload = {"nodes": [n.to_wire() for n in nodes]}
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
    tmp.replace(path)
    log.debug("nodes_saved", path=str(path), count=len(nodes))


def new_root(title: str, summary: str = "", root_id: str = "root-1") -> Node:
    """Create a ROOT node for a fresh tree."""
    return Node(id=root_id, type=NodeType.ROOT, title=title, summary=summary, content=summary)


async def wait_for(
    store: NodeStore,
    predicate: Callable[[list[Node]], bool],
    *,
    timeout: float = DEFAULT_WAIT_TIMEOUT,
    interval: float = DEFAULT_POLL_INTERVAL,
) -> bool:
    """Poll *store* until *predicate* holds for its snapshot.

    Returns:
        True once the predicate holds, False if *timeout* elapsed first.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        if predicate(store.snapshot()):
            return True
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(interval)
