"""Per-node quality checks.

Each check is bracketed by its own phase on the node, so a resumed run
skips checks that already finished and repeats one that was interrupted:

- expansion check (``structureValidated``): rewrite once if the node's
  effective text is under its length floor;
- span check (``spanChecked``): make sure a container holds enough
  distinct sub-events for the children it is about to receive;
- quality audit (``qualityOptimized``): level-specific rubric, ``PASS`` or
  a single rewrite;
- ending check (``endingValidated``): chapter prose must not close on
  foreshadowing or a summary; only the trailing slice is rewritten;
- outline audit (``outlineRefined``): a chapter's outline, before any prose
  exists, must plan three concrete events.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from autodraft.models.node import CHILD_TYPE, CONTAINER_TYPES, NodeType, Phase
from autodraft.models.responses import EndingValidation, SpanCheck, is_pass
from autodraft.observability.logging import get_logger
from autodraft.pipeline.context import (
    audit_context,
    format_resources,
    node_resources,
    position_of,
    text_or_none,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from autodraft.graph.graph import StoryGraph
    from autodraft.graph.progress import ProgressTracker
    from autodraft.models.node import Node
    from autodraft.observability.run_log import RunLog
    from autodraft.pipeline.config import RunConfig
    from autodraft.pipeline.llm_helper import LLMHelper

log = get_logger(__name__)

ENDING_TAIL_CHARS = 800
ENDING_MIN_CHARS = 200
MAX_ENDING_FIXES = 2
DRAFT_PREVIEW_CHARS = 3000

ROLES: dict[NodeType, str] = {
    NodeType.ROOT: "Chief story architect",
    NodeType.OUTLINE: "Volume planner (map progression)",
    NodeType.PLOT: "Plot designer (event lists)",
    NodeType.CHAPTER: "Serial fiction writer (scene driven)",
}

FOCUS: dict[NodeType, str] = {
    NodeType.ROOT: """\
Focus (ROOT):
1. Main arc: is there a clear ultimate goal and a complete path from beginning to end?
2. World hooks: does the core setting have enough appeal to carry a long story?
3. Scale: is the setting broad enough for the planned number of volumes?""",
    NodeType.OUTLINE: """\
Focus (OUTLINE):
1. Map progression: which regions does the volume cover, and is the climb from the fringe to
   the core clear?
2. Volume goal: what must the protagonist achieve before the volume ends?
3. Climax: is there a volume-level confrontation that pays off the setup?""",
    NodeType.PLOT: """\
Focus (PLOT):
1. Format: this must be an event list ("1. ... 2. ... 3. ..."), never prose with dialogue
   or description.
2. Event density: every item is a concrete choice, action and consequence.
3. Power levels: does the protagonist's strength stay consistent with the previous plot point?""",
    NodeType.CHAPTER: """\
Focus (CHAPTER):
1. Concrete action: every scene is driven by what characters do and say, not narration.
2. At least three complete events (choice, action, consequence) happen in the chapter.
3. No filler: no scenery paragraphs, no inner monologue padding.""",
}

GOLDEN_OPENING = """\
Golden opening (first chapter of the book):
1. Open on conflict in the first paragraph: a threat, a humiliation, or a crisis.
2. Establish the protagonist's goal and edge within the chapter.
3. No world-building exposition before the first event."""

OUTLINE_ROLE = "Chapter planner (event outline)"
CHAPTER_OUTLINE_FOCUS = """\
Focus (CHAPTER outline):
1. Three events: the outline plans at least three concrete events, each a choice, an action
   and a consequence.
2. Continuity: the chapter picks up where the previous chapter left off and serves its plot point.
3. Outline form: a short event plan, not prose; no dialogue or scenery."""

DENSITY_INSTRUCTION = (
    "The content is too thin. Broaden it: add concrete events, obstacles and turns so "
    "that the plot density supports the next level. Reach at least {min} characters."
)
DETAIL_INSTRUCTION = (
    "The prose is too short. Enrich it with concrete action, dialogue and descriptive "
    "detail for the existing events without changing the plot. Reach at least {min} characters."
)


class QualityGate:
    """Length, span, rubric and ending checks for single nodes."""

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

    async def check_container(self, node_id: str, child_count: int | None) -> None:
        """Quality audit, expansion check, then span check if children will follow."""
        await self.quality_audit(node_id)
        await self.expansion_check(node_id)
        if child_count:
            await self.span_check(node_id, child_count)

    async def check_prose(self, node_id: str) -> None:
        """Quality audit, expansion check and ending check for a drafted chapter."""
        await self.quality_audit(node_id)
        await self.expansion_check(node_id)
        await self.ending_check(node_id)

    async def _gated(
        self, node_id: str, phase: Phase, work: Callable[[Node], Awaitable[None]]
    ) -> bool:
        if self._tracker.is_done(node_id, phase):
            return False
        await self._tracker.begin(node_id, phase)
        await work(self._graph.require(node_id))
        await self._tracker.mark_done(node_id, phase)
        return True

    # -------------------------------------------------------------------------
    # Expansion
    # -------------------------------------------------------------------------

    async def expansion_check(self, node_id: str) -> bool:
        """Rewrite once if the node is below its length floor.

        Returns:
            True if the check ran, False if it was already done.
        """
        return await self._gated(node_id, Phase.STRUCTURE_VALIDATED, self._expand)

    async def _expand(self, node: Node) -> None:
        minimum = self._config.min_length_for(node.type)
        text = node.effective_text
        if len(text) >= minimum:
            return

        template = DETAIL_INSTRUCTION if node.type == NodeType.CHAPTER else DENSITY_INSTRUCTION
        self._info(f"[expand] {node.title}: {len(text)}/{minimum} chars")
        expanded = await self._llm.rewrite(
            text,
            template.format(min=minimum),
            context_text=audit_context(self._graph, node),
            operation="expand_length",
        )
        if expanded != text:
            await self._graph.set_text(node.id, expanded)
        log.info(
            "expansion_applied",
            node_id=node.id,
            before=len(text),
            after=len(expanded),
            minimum=minimum,
        )

    # -------------------------------------------------------------------------
    # Span
    # -------------------------------------------------------------------------

    async def span_check(self, node_id: str, child_count: int) -> bool:
        """Make sure a container can be split into *child_count* children."""

        async def work(node: Node) -> None:
            await self._span(node, child_count)

        return await self._gated(node_id, Phase.SPAN_CHECKED, work)

    async def _span(self, node: Node, child_count: int) -> None:
        if node.type not in CONTAINER_TYPES:
            return
        result = await self._llm.generate_structured(
            "span_check",
            {
                "node_type": str(node.type),
                "title": node.title,
                "summary": node.summary,
                "count": child_count,
                "child_type": str(CHILD_TYPE[node.type]),
                "min_arcs": math.ceil(child_count / 4),
                "max_arcs": math.ceil(child_count / 2),
            },
            SpanCheck,
        )
        if result.sufficient or not result.fix_instruction:
            return

        self._info(f"[span] {node.title}: widening for {child_count} children")
        widened = await self._llm.rewrite(
            node.summary,
            result.fix_instruction,
            context_text=audit_context(self._graph, node),
        )
        if widened != node.summary:
            await self._graph.set_text(node.id, widened)

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    async def quality_audit(self, node_id: str) -> bool:
        """Audit against the level's rubric; rewrite once unless the verdict is PASS."""
        return await self._gated(node_id, Phase.QUALITY_OPTIMIZED, self._audit)

    def _focus_for(self, node: Node) -> str:
        focus = FOCUS.get(node.type, "")
        if node.type == NodeType.CHAPTER and position_of(self._graph, node).global_chapter_index == 1:
            focus = f"{focus}\n\n{GOLDEN_OPENING}"
        return focus

    async def _audit(self, node: Node) -> None:
        if node.type not in ROLES:
            return
        rewritten = await self._critique(
            node,
            node.effective_text,
            role=ROLES[node.type],
            focus=self._focus_for(node),
            target_length=self._config.min_length_for(node.type),
        )
        if rewritten is not None:
            await self._graph.set_text(node.id, rewritten)

    async def outline_audit(self, node_id: str) -> bool:
        """Audit a chapter's outline before drafting; rewrite the summary once unless PASS.

        Runs under its own phase so the prose audit (``qualityOptimized``)
        is still pending when the chapter is drafted.
        """
        return await self._gated(node_id, Phase.OUTLINE_REFINED, self._audit_outline)

    async def _audit_outline(self, node: Node) -> None:
        if node.type != NodeType.CHAPTER:
            return
        rewritten = await self._critique(
            node,
            node.summary,
            role=OUTLINE_ROLE,
            focus=CHAPTER_OUTLINE_FOCUS,
            target_length=self._config.min_effective_length,
        )
        if rewritten is not None:
            await self._graph.update_node(node.id, summary=rewritten)

    async def _critique(
        self, node: Node, draft: str, *, role: str, focus: str, target_length: int
    ) -> str | None:
        """Ask for a verdict on *draft*; return the rewrite, or None on PASS or no change."""
        context = audit_context(self._graph, node)
        verdict = await self._llm.generate_text(
            "quality_audit",
            {
                "role": role,
                "context": context,
                "resources": format_resources(node_resources(self._graph, node)),
                "idea": text_or_none(self._config.idea),
                "node_type": str(node.type),
                "title": node.title,
                "draft": draft[:DRAFT_PREVIEW_CHARS],
                "length": len(draft),
                "focus": focus,
                "target_length": target_length,
            },
        )
        if not verdict or is_pass(verdict):
            self._info(f"[audit] {node.title}: PASS")
            return None

        self._info(f"[audit] {node.title}: rewriting")
        rewritten = await self._llm.rewrite(draft, verdict, context_text=context)
        log.info("audit_rewrite", node_id=node.id, before=len(draft), after=len(rewritten))
        return rewritten if rewritten != draft else None

    # -------------------------------------------------------------------------
    # Ending
    # -------------------------------------------------------------------------

    async def ending_check(self, node_id: str) -> bool:
        """Check the closing passage of chapter prose; fix the tail at most twice."""
        return await self._gated(node_id, Phase.ENDING_VALIDATED, self._ending)

    async def _ending(self, node: Node) -> None:
        if node.type != NodeType.CHAPTER:
            return
        text = node.content
        if len(text) < ENDING_MIN_CHARS:
            return

        for attempt in range(1, MAX_ENDING_FIXES + 1):
            head, tail = text[:-ENDING_TAIL_CHARS], text[-ENDING_TAIL_CHARS:]
            verdict = await self._llm.generate_structured(
                "ending_check", {"tail": tail}, EndingValidation
            )
            if verdict.is_valid:
                return
            self._info(f"[ending] {node.title}: fixing closing passage (attempt {attempt})")
            fixed = await self._llm.rewrite(
                tail, verdict.fix_instruction, operation="fix_ending"
            )
            if fixed == tail:
                log.info("ending_fix_unchanged", node_id=node.id, attempt=attempt)
                return
            text = f"{head}{fixed}"
            await self._graph.set_text(node.id, text)

        log.info("ending_fix_budget_spent", node_id=node.id, attempts=MAX_ENDING_FIXES)

    def _info(self, message: str) -> None:
        if self._run_log is not None:
            self._run_log.info(message)
