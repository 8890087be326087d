"""Story tree storage, tree operations, and progress tracking."""

from autodraft.graph.errors import (
    GraphCorruptionError,
    GraphIntegrityError,
    InvalidPhaseTransitionError,
    NodeNotFoundError,
)
from autodraft.graph.graph import StoryGraph
from autodraft.graph.progress import TRANSITIONS, ProgressTracker
from autodraft.graph.store import (
    DeferredNodeStore,
    InMemoryNodeStore,
    JsonFileNodeStore,
    NodeStore,
    load_nodes,
    new_root,
    save_nodes,
    wait_for,
)

__all__ = [
    "TRANSITIONS",
    "DeferredNodeStore",
    "GraphCorruptionError",
    "GraphIntegrityError",
    "InMemoryNodeStore",
    "InvalidPhaseTransitionError",
    "JsonFileNodeStore",
    "NodeNotFoundError",
    "NodeStore",
    "ProgressTracker",
    "StoryGraph",
    "load_nodes",
    "new_root",
    "save_nodes",
    "wait_for",
]
