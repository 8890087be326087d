"""Story-tree error types.

These are raised when tree operations reference missing nodes, when an
ancestor walk finds a cycle or exceeds the hierarchy depth, or when a
progress phase is moved through an illegal transition.
"""

from __future__ import annotations

from dataclasses import dataclass, field


class GraphIntegrityError(Exception):
    """Base class for story-tree integrity violations."""


@dataclass
class NodeNotFoundError(GraphIntegrityError):
    """Raised when referencing a non-existent node.

    Attributes:
        node_id: The ID that was referenced but doesn't exist.
        context: Description of where the reference occurred.
    """

    node_id: str
    context: str = ""

    def __post_init__(self) -> None:
        msg = f"Node '{self.node_id}' not found"
        if self.context:
            msg += f" ({self.context})"
        super().__init__(msg)


@dataclass
class GraphCorruptionError(GraphIntegrityError):
    """Raised when the parent chain is cyclic or deeper than the hierarchy allows.

    Attributes:
        node_id: Node whose ancestor walk failed.
        path: Ids visited before the walk was aborted, nearest first.
        reason: Short description (``cycle`` or ``depth``).
    """

    node_id: str
    path: list[str] = field(default_factory=list)
    reason: str = "cycle"

    def __post_init__(self) -> None:
        trail = " -> ".join([self.node_id, *self.path])
        super().__init__(f"Corrupt parent chain at '{self.node_id}' ({self.reason}): {trail}")


@dataclass
class InvalidPhaseTransitionError(GraphIntegrityError):
    """Raised when a progress phase is moved through a disallowed transition."""

    node_id: str
    phase: str
    current: str
    target: str

    def __post_init__(self) -> None:
        super().__init__(
            f"Invalid transition for '{self.node_id}' phase {self.phase}: "
            f"{self.current} -> {self.target}"
        )
