"""Per-node phase tracking for resumable runs.

Each node carries a map of Phase -> PhaseState. Work is bracketed by
``begin`` and ``mark_done``; a node left ``in_progress`` by an interrupted
run may be begun again. Any other move is rejected.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from autodraft.graph.errors import InvalidPhaseTransitionError
from autodraft.models.node import Phase, PhaseState
from autodraft.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from autodraft.graph.graph import StoryGraph

log = get_logger(__name__)

TRANSITIONS: dict[PhaseState, frozenset[PhaseState]] = {
    PhaseState.NOT_STARTED: frozenset({PhaseState.IN_PROGRESS}),
    PhaseState.IN_PROGRESS: frozenset({PhaseState.IN_PROGRESS, PhaseState.DONE}),
    PhaseState.DONE: frozenset(),
}


class ProgressTracker:
    """Reads and advances phase state stored on each node.

    Args:
        graph: Tree the states are persisted in.
        completed_node_ids: Resume hint; these nodes report every phase done
            without touching their stored state.
    """

    def __init__(self, graph: StoryGraph, completed_node_ids: Iterable[str] = ()) -> None:
        self._graph = graph
        self._completed = frozenset(completed_node_ids)

    def state(self, node_id: str, phase: Phase) -> PhaseState:
        if node_id in self._completed:
            return PhaseState.DONE
        return self._graph.require(node_id).phase_state(phase)

    def is_done(self, node_id: str, phase: Phase) -> bool:
        return self.state(node_id, phase) == PhaseState.DONE

    def is_interrupted(self, node_id: str, phase: Phase) -> bool:
        """True if a previous run began *phase* and never finished it."""
        return self.state(node_id, phase) == PhaseState.IN_PROGRESS

    async def begin(self, node_id: str, phase: Phase) -> None:
        await self._transition(node_id, phase, PhaseState.IN_PROGRESS)

    async def mark_done(self, node_id: str, phase: Phase) -> None:
        await self._transition(node_id, phase, PhaseState.DONE)

    async def _transition(self, node_id: str, phase: Phase, target: PhaseState) -> None:
        current = self.state(node_id, phase)
        if target not in TRANSITIONS[current]:
            raise InvalidPhaseTransitionError(node_id, str(phase), str(current), str(target))
        if current == target:
            return
        node = self._graph.require(node_id)
        progress = dict(node.progress)
        progress[phase] = target
        await self._graph.update_node(node_id, progress=progress)
        log.debug("phase_transition", node_id=node_id, phase=str(phase), state=str(target))
