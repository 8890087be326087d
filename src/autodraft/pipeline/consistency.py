"""Sibling-group consistency auditing.

A parent's children are validated in chunks of ten, each carrying the last
two nodes of the previous chunk as read-only context. Fixes rewrite,
rename, or delete nodes in the chunk. A single sequence-level pass over the
final sibling list then catches gaps that only show up across chunks.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from autodraft.models.node import NodeType, Phase
from autodraft.models.responses import BatchValidation, SequenceValidation
from autodraft.observability.logging import get_logger
from autodraft.pipeline.context import audit_context, format_chain, world_context

if TYPE_CHECKING:
    from autodraft.graph.graph import StoryGraph
    from autodraft.graph.progress import ProgressTracker
    from autodraft.models.node import Node
    from autodraft.observability.run_log import RunLog
    from autodraft.pipeline.llm_helper import LLMHelper

log = get_logger(__name__)

CHUNK_SIZE = 10
CONTEXT_NODES = 2

PLOT_FORMAT_RULES = """\
Strict rules for PLOT nodes:
- A PLOT node is an event list ("1. ... 2. ... 3. ..."), never prose.
- Dialogue or scenery inside a PLOT node is a format error and must be fixed."""


class ConsistencyAuditor:
    """Validates and repairs one sibling group per parent."""

    def __init__(
        self,
        graph: StoryGraph,
        llm: LLMHelper,
        tracker: ProgressTracker,
        *,
        run_log: RunLog | None = None,
    ) -> None:
        self._graph = graph
        self._llm = llm
        self._tracker = tracker
        self._run_log = run_log

    async def audit_siblings(self, parent_id: str, node_type: NodeType) -> bool:
        """Audit the children of *parent_id* once per run.

        Returns:
            True if the audit ran, False if the parent was already audited.
        """
        if self._tracker.is_done(parent_id, Phase.SIBLINGS_AUDITED):
            return False
        await self._tracker.begin(parent_id, Phase.SIBLINGS_AUDITED)

        siblings = self._graph.children(parent_id, node_type)
        if len(siblings) >= 2:
            await self._validate_chunks(parent_id, node_type, siblings)
            await self._validate_sequence(parent_id, node_type)
        else:
            log.debug("sibling_audit_skipped", parent_id=parent_id, count=len(siblings))

        await self._tracker.mark_done(parent_id, Phase.SIBLINGS_AUDITED)
        return True

    async def _validate_chunks(
        self, parent_id: str, node_type: NodeType, siblings: list[Node]
    ) -> None:
        parent = self._graph.require(parent_id)
        ids = [s.id for s in siblings]
        strict_rules = PLOT_FORMAT_RULES if node_type == NodeType.PLOT else ""

        for start in range(0, len(ids), CHUNK_SIZE):
            chunk = [n for n in (self._graph.get_node(i) for i in ids[start : start + CHUNK_SIZE]) if n]
            if not chunk:
                continue
            context = [
                n for n in (self._graph.get_node(i) for i in ids[max(0, start - CONTEXT_NODES) : start]) if n
            ]
            self._info(f"[consistency] checking {node_type} {start + 1}-{start + len(chunk)}")
            result = await self._llm.generate_structured(
                "batch_validate",
                {
                    "world": world_context(self._graph),
                    "parent_title": parent.title,
                    "parent_summary": parent.summary,
                    "context_nodes": format_chain(context),
                    "nodes": format_chain(chunk, with_length=True),
                    "strict_rules": strict_rules,
                },
                BatchValidation,
            )
            if not result.has_conflicts and not result.fixes:
                continue

            chunk_ids = {n.id for n in chunk}
            for fix in result.fixes:
                if fix.id not in chunk_ids:
                    log.warning("fix_outside_chunk", node_id=fix.id, parent_id=parent_id)
                    continue
                if fix.delete:
                    await self._delete(parent_id, node_type, fix.id)
                else:
                    await self._rewrite(fix.id, fix.instruction, fix.new_title)

    async def _validate_sequence(self, parent_id: str, node_type: NodeType) -> None:
        siblings = self._graph.children(parent_id, node_type)
        if len(siblings) < 2:
            return
        parent = self._graph.require(parent_id)
        result = await self._llm.generate_structured(
            "sequence_validate",
            {
                "child_type": str(node_type),
                "parent_title": parent.title,
                "parent_summary": parent.summary,
                "nodes": format_chain(siblings),
            },
            SequenceValidation,
        )
        if not result.has_gap and not result.fix_suggestions:
            return
        if result.gap_analysis:
            self._info(f"[sequence] {parent.title}: {result.gap_analysis}")

        sibling_ids = {s.id for s in siblings}
        for fix in result.fix_suggestions:
            if fix.target_id not in sibling_ids:
                log.warning("fix_outside_sequence", node_id=fix.target_id, parent_id=parent_id)
                continue
            await self._rewrite(fix.target_id, fix.instruction, fix.new_title)

    async def _rewrite(self, node_id: str, instruction: str, new_title: str | None) -> None:
        node = self._graph.get_node(node_id)
        if node is None:
            return
        # Chapters are audited as outlines here; their prose is handled later
        text = node.summary
        rewritten = text
        if instruction:
            rewritten = await self._llm.rewrite(
                text, instruction, context_text=audit_context(self._graph, node)
            )
        if rewritten == text and not new_title:
            return

        if node.type == NodeType.CHAPTER:
            fields: dict[str, str] = {"summary": rewritten}
            if new_title:
                fields["title"] = new_title
            await self._graph.update_node(node_id, **fields)
        else:
            await self._graph.set_text(node_id, rewritten, title=new_title)
        self._info(f"[fix] {new_title or node.title}")

    async def _delete(self, parent_id: str, node_type: NodeType, node_id: str) -> None:
        remaining = self._graph.children(parent_id, node_type)
        if len(remaining) <= 1:
            log.warning("delete_refused_last_sibling", node_id=node_id, parent_id=parent_id)
            return
        node = self._graph.get_node(node_id)
        if node is None:
            return
        await self._graph.delete_node(node_id)
        self._info(f"[delete] {node.title}")
        log.info("node_deleted", node_id=node_id, parent_id=parent_id)

    def _info(self, message: str) -> None:
        if self._run_log is not None:
            self._run_log.info(message)
