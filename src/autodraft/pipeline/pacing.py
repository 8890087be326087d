"""Pacing, coverage and structural count advice."""

from __future__ import annotations

from typing import TYPE_CHECKING

from autodraft.models.node import Phase
from autodraft.models.responses import CoverageAnalysis, PacingAnalysis, StructureAdvice
from autodraft.observability.logging import get_logger
from autodraft.pipeline.context import format_chain

if TYPE_CHECKING:
    from autodraft.graph.graph import StoryGraph
    from autodraft.graph.progress import ProgressTracker
    from autodraft.models.node import NodeType
    from autodraft.observability.run_log import RunLog
    from autodraft.pipeline.config import RunConfig
    from autodraft.pipeline.llm_helper import LLMHelper

log = get_logger(__name__)

TRANSITION_TITLE = "Transition"
MAX_ADVICE_FACTOR = 3

# Coverage anchor key for nodes whose anchor is not a sibling
_APPEND = "__append__"


class PacingAnalyzer:
    """Inserts transition and missing nodes into a finished sibling group."""

    def __init__(
        self,
        graph: StoryGraph,
        llm: LLMHelper,
        config: RunConfig,
        tracker: ProgressTracker,
        *,
        run_log: RunLog | None = None,
    ) -> None:
        self._graph = graph
        self._llm = llm
        self._config = config
        self._tracker = tracker
        self._run_log = run_log

    async def apply(self, parent_id: str, node_type: NodeType) -> bool:
        """Run the pacing pass then the coverage pass, once per parent.

        Returns:
            True if the passes ran, False if they were already applied.
        """
        if self._tracker.is_done(parent_id, Phase.PACING_APPLIED):
            return False
        await self._tracker.begin(parent_id, Phase.PACING_APPLIED)
        await self._pacing(parent_id, node_type)
        await self._coverage(parent_id, node_type)
        await self._tracker.mark_done(parent_id, Phase.PACING_APPLIED)
        return True

    async def _pacing(self, parent_id: str, node_type: NodeType) -> None:
        siblings = self._graph.children(parent_id, node_type)
        if not siblings:
            return
        parent = self._graph.require(parent_id)
        result = await self._llm.generate_structured(
            "pacing",
            {
                "parent_title": parent.title,
                "nodes": format_chain(siblings),
                "pacing": str(self._config.pacing),
            },
            PacingAnalysis,
        )

        sibling_ids = {s.id for s in siblings}
        # Several insertions after one anchor keep their order
        last_after: dict[str, str] = {}
        inserted = 0
        for insertion in result.insertions:
            anchor = insertion.insert_after_id
            if anchor not in sibling_ids:
                log.warning("pacing_anchor_unknown", anchor=anchor, parent_id=parent_id)
                continue
            if not insertion.new_summary:
                continue
            new_ids = await self._graph.insert_children(
                parent_id,
                node_type,
                [(TRANSITION_TITLE, insertion.new_summary)],
                after_id=last_after.get(anchor, anchor),
            )
            last_after[anchor] = new_ids[-1]
            inserted += 1

        if inserted:
            self._info(f"[pacing] {parent.title}: inserted {inserted} transition(s)")
        log.info("pacing_applied", parent_id=parent_id, inserted=inserted)

    async def _coverage(self, parent_id: str, node_type: NodeType) -> None:
        siblings = self._graph.children(parent_id, node_type)
        parent = self._graph.require(parent_id)
        result = await self._llm.generate_structured(
            "coverage",
            {
                "parent_title": parent.title,
                "parent_summary": parent.summary,
                "nodes": format_chain(siblings),
            },
            CoverageAnalysis,
        )

        sibling_ids = {s.id for s in siblings}
        last_after: dict[str | None, str] = {}
        inserted = 0
        for missing in result.missing_nodes:
            if not (missing.title or missing.summary):
                continue
            anchor = missing.insert_after_id
            if anchor is not None and anchor not in sibling_ids:
                log.warning("coverage_anchor_unknown", anchor=anchor, parent_id=parent_id)
                anchor_key: str | None = _APPEND
            else:
                anchor_key = anchor

            item = [(missing.title or str(node_type).title(), missing.summary)]
            previous = last_after.get(anchor_key)
            if previous is not None:
                new_ids = await self._graph.insert_children(
                    parent_id, node_type, item, after_id=previous
                )
            elif anchor_key is None:
                new_ids = await self._graph.insert_children(
                    parent_id, node_type, item, at_front=True
                )
            elif anchor_key == _APPEND:
                new_ids = await self._graph.insert_children(parent_id, node_type, item)
            else:
                new_ids = await self._graph.insert_children(
                    parent_id, node_type, item, after_id=anchor_key
                )
            last_after[anchor_key] = new_ids[-1]
            inserted += 1

        if inserted:
            self._info(f"[coverage] {parent.title}: filled {inserted} gap(s)")
        log.info("coverage_applied", parent_id=parent_id, inserted=inserted)

    async def advise_count(self, parent_id: str, child_type: NodeType, base: int) -> int:
        """Ask how many children *parent_id* should get.

        The answer is clamped to ``[1, 3 * base]``; a missing or unusable
        answer falls back to *base*.
        """
        parent = self._graph.require(parent_id)
        advice = await self._llm.generate_structured(
            "structure_advice",
            {
                "parent_type": str(parent.type),
                "parent_title": parent.title,
                "parent_summary": parent.summary,
                "child_type": str(child_type),
                "pacing": str(self._config.pacing),
                "base_count": base,
            },
            StructureAdvice,
        )
        if advice.count is None or advice.count < 1:
            return base
        count = max(1, min(advice.count, MAX_ADVICE_FACTOR * base))
        if count != base:
            self._info(f"[advice] {parent.title}: {count} {child_type} ({advice.reason})")
        return count

    def _info(self, message: str) -> None:
        if self._run_log is not None:
            self._run_log.info(message)
