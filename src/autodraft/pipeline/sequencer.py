"""Child-node generation strategies.

``Sequencer.ensure_children`` leaves a parent with exactly the requested
number of children of one type. Three strategies produce them:

linear_batch
    Batches of up to five. The first batch expands the parent; later
    batches continue from the last sibling.
one_pass
    PLOT level only: everything remaining in one call. Falls back to
    linear_batch if the call yields nothing.
spanning
    For eight or more children on an empty parent: a few keyframes that
    span the parent's whole scope, then infill batches between each pair.

Whatever a strategy leaves short is topped up linearly. If the backend
returns nothing for two batches in a row, the remainder is filled with
placeholder nodes so the count always comes out exact.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from autodraft.models.node import CHILD_TYPE, Node, NodeType
from autodraft.models.responses import ExpansionItem, ExpansionResult
from autodraft.observability.logging import get_logger
from autodraft.pipeline.config import Strategy
from autodraft.pipeline.context import (
    PositionContext,
    position_for_children,
    text_or_none,
    world_context,
)
from autodraft.pipeline.stop import RunStopped

if TYPE_CHECKING:
    from autodraft.graph.graph import StoryGraph
    from autodraft.observability.run_log import RunLog
    from autodraft.pipeline.config import RunConfig
    from autodraft.pipeline.llm_helper import LLMHelper
    from autodraft.pipeline.stop import StopSignal

log = get_logger(__name__)

BATCH_SIZE = 5
SPANNING_THRESHOLD = 8
MIN_KEYFRAMES = 2
MAX_KEYFRAMES = 5
MAX_EMPTY_BATCHES = 2

EXPAND_TEMPLATES: dict[NodeType, str] = {
    NodeType.ROOT: "expand_root",
    NodeType.OUTLINE: "expand_outline",
    NodeType.PLOT: "expand_plot",
}


def keyframe_count(needed: int) -> int:
    """Number of keyframes for *needed* children: one per five, clamped to 2-5."""
    return max(MIN_KEYFRAMES, min(MAX_KEYFRAMES, math.ceil(needed / BATCH_SIZE)))


def distribute(total: int, gaps: int) -> list[int]:
    """Split *total* evenly over *gaps*, remainder to the earliest gaps."""
    if gaps <= 0:
        return []
    base, remainder = divmod(total, gaps)
    return [base + (1 if i < remainder else 0) for i in range(gaps)]


class Sequencer:
    """Creates child nodes under a parent until a target count is reached."""

    def __init__(
        self,
        graph: StoryGraph,
        llm: LLMHelper,
        config: RunConfig,
        *,
        run_log: RunLog | None = None,
        stop: StopSignal | None = None,
    ) -> None:
        self._graph = graph
        self._llm = llm
        self._config = config
        self._run_log = run_log
        self._stop = stop

    async def ensure_children(
        self,
        parent_id: str,
        node_type: NodeType,
        target_count: int,
        position: PositionContext | None = None,
    ) -> list[str]:
        """Make sure *parent_id* has exactly *target_count* children of *node_type*.

        Existing children count toward the target; a parent that already
        has enough is left untouched.

        Returns:
            The first *target_count* child ids in order.

        Raises:
            RunStopped: If the stop signal was raised between batches.
        """
        existing = self._graph.children(parent_id, node_type)
        if len(existing) >= target_count:
            self._info(
                f"[skip] {self._graph.require(parent_id).title} already has "
                f"{len(existing)} {node_type} (target {target_count})"
            )
            return [c.id for c in existing[:target_count]]

        needed = target_count - len(existing)
        if existing:
            self._info(f"[resume] {len(existing)} {node_type} present, {needed} to go")

        strategy = self._config.strategy
        if strategy == Strategy.ONE_PASS and node_type == NodeType.PLOT:
            await self._one_pass(parent_id, node_type, needed, position)
        elif strategy == Strategy.SPANNING and needed >= SPANNING_THRESHOLD and not existing:
            await self._spanning(parent_id, node_type, needed, position)

        await self._linear(parent_id, node_type, target_count, position)

        children = self._graph.children(parent_id, node_type)
        log.info(
            "children_ensured",
            parent_id=parent_id,
            node_type=str(node_type),
            count=len(children),
            target=target_count,
            strategy=str(strategy),
        )
        return [c.id for c in children[:target_count]]

    # -------------------------------------------------------------------------
    # Strategies
    # -------------------------------------------------------------------------

    async def _linear(
        self,
        parent_id: str,
        node_type: NodeType,
        target_count: int,
        position: PositionContext | None,
    ) -> None:
        empty_streak = 0
        while True:
            children = self._graph.children(parent_id, node_type)
            remaining = target_count - len(children)
            if remaining <= 0:
                return
            self._check_stop()

            batch = min(BATCH_SIZE, remaining)
            self._info(f"[generate] {node_type} {len(children)}/{target_count}...")
            if children:
                items = await self._request_continue(parent_id, node_type, children[-1], batch, position)
            else:
                items = await self._request_expand(parent_id, node_type, batch, position)

            if items:
                empty_streak = 0
                await self._append(parent_id, node_type, items[:batch])
                continue

            empty_streak += 1
            if empty_streak >= MAX_EMPTY_BATCHES:
                await self._fill_placeholders(parent_id, node_type, len(children), remaining)
                return

    async def _one_pass(
        self,
        parent_id: str,
        node_type: NodeType,
        needed: int,
        position: PositionContext | None,
    ) -> None:
        self._check_stop()
        children = self._graph.children(parent_id, node_type)
        self._info(f"[generate] {needed} {node_type} in one pass")
        if children:
            items = await self._request_continue(parent_id, node_type, children[-1], needed, position)
        else:
            items = await self._request_expand(parent_id, node_type, needed, position)
        if not items:
            log.warning("one_pass_empty", parent_id=parent_id, needed=needed)
            self._warn("[fallback] one-pass generation returned nothing; switching to batches")
            return
        await self._append(parent_id, node_type, items[:needed])

    async def _spanning(
        self,
        parent_id: str,
        node_type: NodeType,
        needed: int,
        position: PositionContext | None,
    ) -> None:
        self._check_stop()
        k = keyframe_count(needed)
        self._info(f"[generate] {k} keyframes spanning {needed} {node_type}")
        parent = self._graph.require(parent_id)
        result = await self._llm.generate_structured(
            "keyframes",
            {
                **self._parent_context(parent, node_type, k, position),
            },
            ExpansionResult,
        )
        keyframes = result.items[:k]
        if len(keyframes) < MIN_KEYFRAMES:
            log.warning("keyframes_insufficient", parent_id=parent_id, got=len(keyframes))
            self._warn("[fallback] keyframe pass returned too little; switching to batches")
            if keyframes:
                await self._append(parent_id, node_type, keyframes)
            return

        keyframe_ids = await self._append(parent_id, node_type, keyframes)
        shares = distribute(needed - len(keyframe_ids), len(keyframe_ids) - 1)

        for i, share in enumerate(shares):
            left_id, right_id = keyframe_ids[i], keyframe_ids[i + 1]
            anchor_id = left_id
            to_fill = share
            while to_fill > 0:
                self._check_stop()
                batch = min(BATCH_SIZE, to_fill)
                anchor = self._graph.require(anchor_id)
                right = self._graph.require(right_id)
                items = await self._llm.generate_structured(
                    "infill",
                    {
                        **self._parent_context(parent, node_type, batch, position),
                        "start_title": anchor.title,
                        "start_summary": anchor.summary,
                        "end_title": right.title,
                        "end_summary": right.summary,
                    },
                    ExpansionResult,
                )
                if not items.items:
                    log.warning("infill_empty", parent_id=parent_id, gap=i + 1)
                    break
                new_ids = await self._graph.insert_children(
                    parent_id,
                    node_type,
                    [(it.title, it.summary) for it in items.items[:batch]],
                    after_id=anchor_id,
                )
                anchor_id = new_ids[-1]
                to_fill -= len(new_ids)

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    def _parent_context(
        self,
        parent: Node,
        node_type: NodeType,
        count: int,
        position: PositionContext | None,
    ) -> dict[str, object]:
        where = position or position_for_children(self._graph, parent)
        return {
            "parent_type": str(parent.type),
            "parent_title": parent.title,
            "parent_summary": parent.summary or parent.content,
            "child_type": str(node_type),
            "count": count,
            "position": f"Current position: {where.describe()}",
            "world": world_context(self._graph),
            "word_count": self._config.word_count_per_chapter,
        }

    async def _request_expand(
        self,
        parent_id: str,
        node_type: NodeType,
        count: int,
        position: PositionContext | None,
    ) -> list[ExpansionItem]:
        parent = self._graph.require(parent_id)
        template = EXPAND_TEMPLATES.get(parent.type)
        if template is None or CHILD_TYPE.get(parent.type) != node_type:
            raise ValueError(f"{parent.type} cannot be expanded into {node_type}")

        prev = self._graph.previous_sibling(parent) if parent.type != NodeType.ROOT else None
        if prev is not None:
            prev_block = f"Previous sibling: {prev.title} ({prev.summary})"
        else:
            prev_block = "Nothing has been generated yet; start from the very beginning."

        result = await self._llm.generate_structured(
            template,
            {
                **self._parent_context(parent, node_type, count, position),
                "prev_title": text_or_none(prev.title if prev else None),
                "prev_summary": prev.summary if prev else "",
                "prev_block": prev_block,
            },
            ExpansionResult,
        )
        return result.items

    async def _request_continue(
        self,
        parent_id: str,
        node_type: NodeType,
        last: Node,
        count: int,
        position: PositionContext | None,
    ) -> list[ExpansionItem]:
        parent = self._graph.require(parent_id)
        result = await self._llm.generate_structured(
            "continue",
            {
                **self._parent_context(parent, node_type, count, position),
                "prev_title": last.title,
                "prev_summary": last.summary,
            },
            ExpansionResult,
        )
        return result.items

    # -------------------------------------------------------------------------
    # Insertion
    # -------------------------------------------------------------------------

    async def _append(
        self, parent_id: str, node_type: NodeType, items: list[ExpansionItem]
    ) -> list[str]:
        return await self._graph.insert_children(
            parent_id, node_type, [(it.title or f"{node_type.title()}", it.summary) for it in items]
        )

    async def _fill_placeholders(
        self, parent_id: str, node_type: NodeType, have: int, missing: int
    ) -> None:
        log.warning(
            "placeholder_fill",
            parent_id=parent_id,
            node_type=str(node_type),
            missing=missing,
        )
        self._warn(f"[placeholder] backend returned nothing twice; adding {missing} empty {node_type}")
        titles = [(f"{node_type.title()} {have + i + 1}", "") for i in range(missing)]
        await self._graph.insert_children(parent_id, node_type, titles)

    def _check_stop(self) -> None:
        if self._stop is not None and self._stop.requested:
            raise RunStopped()

    def _info(self, message: str) -> None:
        if self._run_log is not None:
            self._run_log.info(message)

    def _warn(self, message: str) -> None:
        if self._run_log is not None:
            self._run_log.warning(message)
