"""Draft orchestrator: drives a story tree from ROOT down to prose."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from autodraft.graph.progress import ProgressTracker
from autodraft.models.node import CHILD_TYPE, NodeType, Phase
from autodraft.observability.logging import get_logger, run_context
from autodraft.observability.run_log import RunLog
from autodraft.pipeline.config import TargetDepth
from autodraft.pipeline.consistency import ConsistencyAuditor
from autodraft.pipeline.context import (
    NONE_TEXT,
    PREVIOUS_ENDING_CHARS,
    format_resources,
    node_resources,
    position_for_children,
    position_of,
    previous_chapter,
    world_context,
)
from autodraft.pipeline.llm_helper import LLMHelper
from autodraft.pipeline.pacing import PacingAnalyzer
from autodraft.pipeline.quality import GOLDEN_OPENING, QualityGate
from autodraft.pipeline.resources import ResourceLifecycleManager
from autodraft.pipeline.sequencer import Sequencer
from autodraft.pipeline.stop import RunStopped, StopSignal

if TYPE_CHECKING:
    from autodraft.graph.graph import StoryGraph
    from autodraft.models.node import Node
    from autodraft.pipeline.config import RunConfig, WritingConfig
    from autodraft.prompts.loader import PromptLoader
    from autodraft.providers.gate import RequestGate

log = get_logger(__name__)


class RunState(StrEnum):
    ROOT_AUDIT = "ROOT_AUDIT"
    STRUCTURE_OUTLINE = "STRUCTURE_OUTLINE"
    STRUCTURE_PLOT = "STRUCTURE_PLOT"
    STRUCTURE_CHAPTER = "STRUCTURE_CHAPTER"
    WRITE_PROSE = "WRITE_PROSE"
    DONE = "DONE"


class RunStatus(StrEnum):
    COMPLETED = "completed"
    STOPPED = "stopped"
    ERROR = "error"


STRUCTURE_LEVELS: dict[RunState, NodeType] = {
    RunState.STRUCTURE_OUTLINE: NodeType.OUTLINE,
    RunState.STRUCTURE_PLOT: NodeType.PLOT,
    RunState.STRUCTURE_CHAPTER: NodeType.CHAPTER,
}


def plan_states(target_depth: TargetDepth) -> list[RunState]:
    """States a run passes through for *target_depth*, ending with DONE."""
    states = [RunState.ROOT_AUDIT]
    for state, node_type in STRUCTURE_LEVELS.items():
        if TargetDepth(node_type.value).rank <= target_depth.rank:
            states.append(state)
    if target_depth == TargetDepth.PROSE:
        states.append(RunState.WRITE_PROSE)
    states.append(RunState.DONE)
    return states


@dataclass
class RunResult:
    """Outcome of one orchestrator run."""

    status: RunStatus
    state: RunState
    llm_calls: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    log_lines: list[str] = field(default_factory=list)


class DraftOrchestrator:
    """Runs the ROOT audit, the structure levels, and prose drafting.

    Structure levels are processed breadth-first: every parent at one level
    is expanded and checked before the next level starts. Prose is written
    depth-first over chapters in reading order. Every step is gated by a
    phase on the node it touches, so running again on the same tree only
    does what is left.

    Attributes:
        state: Current (or last reached) run state.
        run_log: Operator-visible log of the run.
    """

    def __init__(
        self,
        graph: StoryGraph,
        gate: RequestGate,
        config: RunConfig,
        *,
        writing: WritingConfig | None = None,
        run_log: RunLog | None = None,
        stop_signal: StopSignal | None = None,
        loader: PromptLoader | None = None,
    ) -> None:
        self._graph = graph
        self._config = config
        self.run_log = run_log or RunLog()
        self._stop = stop_signal or StopSignal()
        self.state = RunState.ROOT_AUDIT
        self._errors: list[str] = []

        self._llm = LLMHelper(gate, writing, loader)
        self._tracker = ProgressTracker(graph, config.completed_node_ids)
        self._sequencer = Sequencer(
            graph, self._llm, config, run_log=self.run_log, stop=self._stop
        )
        self._quality = QualityGate(graph, self._llm, config, self._tracker, run_log=self.run_log)
        self._auditor = ConsistencyAuditor(graph, self._llm, self._tracker, run_log=self.run_log)
        self._pacing = PacingAnalyzer(graph, self._llm, config, self._tracker, run_log=self.run_log)
        self._resources = ResourceLifecycleManager(
            graph, self._llm, self._tracker, run_log=self.run_log
        )

    @property
    def llm_calls(self) -> int:
        return self._llm.calls

    def stop(self) -> None:
        """Ask the run to wind down at the next node-level step."""
        self._stop.request()
        self.run_log.warning("[stop] stop requested; finishing the current step")

    async def run(self) -> RunResult:
        """Drive the tree to the configured target depth.

        Never raises: stops and failures are reported in the result, and
        everything committed so far stays valid for a later resume.
        """
        start = time.perf_counter()
        errors: list[str] = []
        self._errors = errors
        status = RunStatus.COMPLETED
        self.run_log.info(f"[start] target depth {self._config.target_depth}")
        log.info(
            "run_started",
            target_depth=str(self._config.target_depth),
            strategy=str(self._config.strategy),
        )

        try:
            for state in plan_states(self._config.target_depth):
                self.state = state
                self._check_stop()
                with run_context(run_state=str(state)):
                    if state == RunState.ROOT_AUDIT:
                        await self._root_audit()
                    elif state in STRUCTURE_LEVELS:
                        await self._structure(STRUCTURE_LEVELS[state])
                    elif state == RunState.WRITE_PROSE:
                        await self._write_prose()
        except RunStopped:
            status = RunStatus.STOPPED
            self.run_log.warning(f"[stop] run stopped during {self.state}")
            log.info("run_stopped", state=str(self.state))
        except Exception as e:
            status = RunStatus.ERROR
            errors.append(str(e))
            self.run_log.error(f"[error] {e}")
            log.error("run_failed", state=str(self.state), error=str(e), exc_info=True)

        violations = self._graph.validate_invariants()
        for violation in violations:
            log.warning("invariant_violation", violation=violation)
            self.run_log.warning(f"[integrity] {violation}")
        errors.extend(violations)

        duration = time.perf_counter() - start
        if status == RunStatus.COMPLETED:
            self.run_log.info(f"[done] {self._llm.calls} model calls in {duration:.1f}s")
        log.info(
            "run_finished",
            status=str(status),
            state=str(self.state),
            llm_calls=self._llm.calls,
            duration=f"{duration:.2f}s",
        )
        return RunResult(
            status=status,
            state=self.state,
            llm_calls=self._llm.calls,
            errors=errors,
            duration_seconds=duration,
            log_lines=self.run_log.lines(),
        )

    # -------------------------------------------------------------------------
    # States
    # -------------------------------------------------------------------------

    async def _root_audit(self) -> None:
        if self._config.skip_root_audit:
            self.run_log.info("[skip] ROOT audit")
            return
        root = self._graph.root()
        await self._quality.check_container(
            root.id, self._config.count_for(NodeType.OUTLINE)
        )

    async def _structure(self, child_type: NodeType) -> None:
        parent_type = next(p for p, c in CHILD_TYPE.items() if c == child_type)
        parents = self._graph.level(parent_type)
        self.run_log.info(f"[level] {child_type}: {len(parents)} parent(s)")

        for parent in parents:
            self._check_stop()
            await self._expand_parent(parent, child_type)

            for child in self._graph.children(parent.id, child_type):
                self._check_stop()
                with run_context(node_id=child.id):
                    await self._ancestry_audit(child)
                    if child_type == NodeType.CHAPTER:
                        await self._quality.outline_audit(child.id)
                    else:
                        await self._quality.check_container(
                            child.id, self._next_count(child_type)
                        )

            self._check_stop()
            await self._auditor.audit_siblings(parent.id, child_type)

            for child in self._graph.children(parent.id, child_type):
                self._check_stop()
                await self._resources.sync(child.id)

    async def _expand_parent(self, parent: Node, child_type: NodeType) -> None:
        if self._tracker.is_done(parent.id, Phase.STRUCTURE_EXPANDED):
            return
        await self._tracker.begin(parent.id, Phase.STRUCTURE_EXPANDED)

        count = self._config.count_for(child_type)
        if self._config.dynamic_counts:
            count = await self._pacing.advise_count(parent.id, child_type, count)

        await self._sequencer.ensure_children(
            parent.id, child_type, count, position_for_children(self._graph, parent)
        )
        if child_type == NodeType.PLOT and self._config.enable_plot_analysis:
            await self._pacing.apply(parent.id, child_type)

        await self._tracker.mark_done(parent.id, Phase.STRUCTURE_EXPANDED)

    def _next_count(self, child_type: NodeType) -> int | None:
        """Configured grandchild count, if that level is part of this run."""
        next_type = CHILD_TYPE.get(child_type)
        if next_type is None:
            return None
        if TargetDepth(next_type.value).rank > self._config.target_depth.rank:
            return None
        return self._config.count_for(next_type)

    async def _ancestry_audit(self, node: Node) -> None:
        """Finish any container check an interrupted run left open above *node*."""
        for ancestor in self._graph.ancestors(node.id):
            if ancestor.type == NodeType.ROOT and self._config.skip_root_audit:
                continue
            await self._quality.check_container(ancestor.id, self._next_count(ancestor.type))

    async def _write_prose(self) -> None:
        chapters = self._graph.level(NodeType.CHAPTER)
        self.run_log.info(f"[level] prose: {len(chapters)} chapter(s)")

        for chapter in chapters:
            self._check_stop()
            if self._tracker.is_done(chapter.id, Phase.PROSE_DRAFTED):
                continue
            with run_context(node_id=chapter.id):
                await self._draft_chapter(chapter)

    async def _draft_chapter(self, chapter: Node) -> None:
        await self._ancestry_audit(chapter)
        # Only prose from our own interrupted attempt is kept; imported trees
        # may carry the outline in content
        resumed = self._tracker.is_interrupted(chapter.id, Phase.PROSE_DRAFTED)
        await self._tracker.begin(chapter.id, Phase.PROSE_DRAFTED)

        current = self._graph.require(chapter.id)
        if resumed and current.content:
            self.run_log.info(f"[resume] {current.title}: keeping stored prose")
        else:
            prose = await self._draft_prose(current)
            if not prose:
                message = f"{current.title}: backend returned no prose; chapter left undrafted"
                self.run_log.error(f"[prose] {message}")
                log.error("prose_empty", node_id=current.id)
                self._errors.append(message)
                return
            await self._graph.set_text(current.id, prose)

        self._check_stop()
        await self._quality.check_prose(current.id)
        await self._tracker.mark_done(current.id, Phase.PROSE_DRAFTED)

    async def _draft_prose(self, chapter: Node) -> str:
        position = position_of(self._graph, chapter)
        parent = self._graph.get_node(chapter.parent_id) if chapter.parent_id else None
        prev = previous_chapter(self._graph, chapter)
        prev_ending = prev.content[-PREVIOUS_ENDING_CHARS:] if prev and prev.content else NONE_TEXT
        opening = GOLDEN_OPENING if position.global_chapter_index == 1 else ""
        lore = world_context(self._graph)
        resources = node_resources(self._graph, chapter)
        if resources:
            lore = f"{lore}\n[Scene resources]\n{format_resources(resources)}"

        self.run_log.info(f"[prose] {chapter.title} ({position.describe()})")
        return await self._llm.generate_text(
            "chapter_prose",
            {
                "position": position.describe(),
                "title": chapter.title,
                "summary": chapter.summary,
                "parent_title": parent.title if parent else NONE_TEXT,
                "parent_summary": parent.summary if parent else "",
                "prev_ending": prev_ending,
                "world": lore,
                "opening_instruction": opening,
                "word_count": self._config.word_count_per_chapter,
            },
        )

    def _check_stop(self) -> None:
        if self._stop.requested:
            raise RunStopped()
