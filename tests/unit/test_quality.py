"""Tests for the per-node quality checks."""

from __future__ import annotations

import json

import pytest

from autodraft.graph import ProgressTracker, StoryGraph
from autodraft.models import NodeType, Phase, PhaseState
from autodraft.pipeline import LLMHelper, QualityGate, RunConfig
from autodraft.pipeline.quality import ENDING_TAIL_CHARS, GOLDEN_OPENING
from tests.fixtures.fake_client import ScriptedClient, long_prose

INVALID_ENDING = json.dumps({"isValid": False, "fixInstruction": "End on the door slamming."})
VALID_ENDING = json.dumps({"isValid": True})


async def _chapters(graph: StoryGraph, count: int = 1) -> list[str]:
    [outline] = await graph.insert_children("root-1", NodeType.OUTLINE, [("Vol", "v" * 150)])
    [plot] = await graph.insert_children(outline, NodeType.PLOT, [("Plot", "p" * 150)])
    return await graph.insert_children(
        plot, NodeType.CHAPTER, [(f"Ch{i}", "outline of events") for i in range(count)]
    )


@pytest.fixture
def tracker(graph: StoryGraph) -> ProgressTracker:
    return ProgressTracker(graph)


@pytest.fixture
def quality(
    graph: StoryGraph, llm: LLMHelper, config: RunConfig, tracker: ProgressTracker
) -> QualityGate:
    return QualityGate(graph, llm, config, tracker)


class TestExpansionCheck:
    @pytest.mark.asyncio
    async def test_short_summary_expanded(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient
    ) -> None:
        [outline] = await graph.insert_children("root-1", NodeType.OUTLINE, [("Vol", "short")])

        assert await quality.expansion_check(outline) is True

        node = graph.require(outline)
        assert client.operations() == ["expand_length"]
        assert node.summary.startswith("short ")
        assert len(node.summary) > 100
        assert "at least 100 characters" in client.calls[0].user_prompt

    @pytest.mark.asyncio
    async def test_long_enough_makes_no_call(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient,
        tracker: ProgressTracker,
    ) -> None:
        [outline] = await graph.insert_children("root-1", NodeType.OUTLINE, [("Vol", "x" * 120)])

        await quality.expansion_check(outline)

        assert client.calls == []
        assert tracker.is_done(outline, Phase.STRUCTURE_VALIDATED)

    @pytest.mark.asyncio
    async def test_chapter_measured_on_prose(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient
    ) -> None:
        """Chapters use the prose floor and the detail instruction."""
        [chapter] = await _chapters(graph)
        await graph.set_text(chapter, "A short scene.")

        await quality.expansion_check(chapter)

        assert "at least 1000 characters" in client.calls[0].user_prompt
        assert "too short" in client.calls[0].user_prompt
        assert len(graph.require(chapter).content) > 1000
        assert graph.require(chapter).summary == "outline of events"

    @pytest.mark.asyncio
    async def test_done_phase_skipped(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient,
        tracker: ProgressTracker,
    ) -> None:
        [outline] = await graph.insert_children("root-1", NodeType.OUTLINE, [("Vol", "short")])
        await tracker.begin(outline, Phase.STRUCTURE_VALIDATED)
        await tracker.mark_done(outline, Phase.STRUCTURE_VALIDATED)

        assert await quality.expansion_check(outline) is False
        assert client.calls == []


class TestSpanCheck:
    @pytest.mark.asyncio
    async def test_sufficient_span_keeps_text(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient
    ) -> None:
        await quality.span_check("root-1", 8)

        assert client.operations() == ["span_check"]
        assert "at least 2~4 distinct" in client.calls[0].user_prompt

    @pytest.mark.asyncio
    async def test_insufficient_span_rewrites(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient
    ) -> None:
        client.route(
            "span_check", json.dumps({"sufficient": False, "fixInstruction": "Add two arcs."})
        )
        client.route("rewrite", "A wider synopsis with many arcs.")

        await quality.span_check("root-1", 3)

        assert client.operations() == ["span_check", "rewrite"]
        assert "Instruction: Add two arcs." in client.calls[1].user_prompt
        assert graph.root().summary == "A wider synopsis with many arcs."

    @pytest.mark.asyncio
    async def test_chapter_never_span_checked(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient,
        tracker: ProgressTracker,
    ) -> None:
        [chapter] = await _chapters(graph)
        await quality.span_check(chapter, 4)
        assert client.calls == []
        assert tracker.is_done(chapter, Phase.SPAN_CHECKED)


class TestQualityAudit:
    @pytest.mark.asyncio
    async def test_pass_leaves_text(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient
    ) -> None:
        before = graph.root().summary
        await quality.quality_audit("root-1")

        assert client.operations() == ["quality_audit"]
        assert graph.root().summary == before

    @pytest.mark.asyncio
    async def test_critique_drives_rewrite(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient
    ) -> None:
        client.route("quality_audit", "No main-arc goal. Give the hero a clear aim.")
        client.route("rewrite", "The apprentice must reach the citadel before the eclipse.")

        await quality.quality_audit("root-1")

        rewrite = client.calls[1]
        assert "Instruction: No main-arc goal." in rewrite.user_prompt
        assert "[World]" in rewrite.user_prompt
        assert graph.root().summary.startswith("The apprentice must reach")

    @pytest.mark.asyncio
    async def test_rubric_uses_level_focus_and_idea(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient
    ) -> None:
        [outline] = await graph.insert_children("root-1", NodeType.OUTLINE, [("Vol", "v")])
        await quality.quality_audit(outline)

        prompt = client.calls[0].user_prompt
        assert "Focus (OUTLINE)" in prompt
        assert "disgraced sword apprentice" in prompt

    @pytest.mark.asyncio
    async def test_golden_opening_only_for_first_chapter(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient
    ) -> None:
        first, second = await _chapters(graph, count=2)
        await quality.quality_audit(first)
        await quality.quality_audit(second)

        first_line = GOLDEN_OPENING.splitlines()[0]
        assert first_line in client.calls[0].user_prompt
        assert first_line not in client.calls[1].user_prompt

    @pytest.mark.asyncio
    async def test_interrupted_audit_reruns(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient,
        tracker: ProgressTracker,
    ) -> None:
        await tracker.begin("root-1", Phase.QUALITY_OPTIMIZED)

        assert await quality.quality_audit("root-1") is True
        assert tracker.state("root-1", Phase.QUALITY_OPTIMIZED) == PhaseState.DONE


class TestEndingCheck:
    @pytest.mark.asyncio
    async def test_short_prose_passes_without_call(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient
    ) -> None:
        [chapter] = await _chapters(graph)
        await graph.set_text(chapter, "Too short to judge.")

        await quality.ending_check(chapter)

        assert client.calls == []

    @pytest.mark.asyncio
    async def test_only_tail_is_replaced(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient
    ) -> None:
        [chapter] = await _chapters(graph)
        prose = long_prose(1500)
        await graph.set_text(chapter, prose)
        client.route("ending_check", [INVALID_ENDING, VALID_ENDING])

        await quality.ending_check(chapter)

        content = graph.require(chapter).content
        assert client.operations() == ["ending_check", "fix_ending", "ending_check"]
        assert content.startswith(prose[:-ENDING_TAIL_CHARS])
        assert content.endswith("and shut the door.")
        assert client.calls[0].user_prompt.count(prose[-ENDING_TAIL_CHARS:]) == 1

    @pytest.mark.asyncio
    async def test_fix_budget_is_two(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient,
        tracker: ProgressTracker,
    ) -> None:
        """A verdict that never turns valid stops after two fixes."""
        [chapter] = await _chapters(graph)
        await graph.set_text(chapter, long_prose(1500))
        client.route("ending_check", INVALID_ENDING)

        await quality.ending_check(chapter)

        assert client.count("ending_check") == 2
        assert client.count("fix_ending") == 2
        assert tracker.is_done(chapter, Phase.ENDING_VALIDATED)

    @pytest.mark.asyncio
    async def test_unchanged_fix_stops_checking(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient,
        tracker: ProgressTracker,
    ) -> None:
        """A fix that returns the passage as it was ends the check."""
        [chapter] = await _chapters(graph)
        prose = "a" * 700 + "b" * ENDING_TAIL_CHARS
        await graph.set_text(chapter, prose)
        client.route("ending_check", INVALID_ENDING)
        client.route("fix_ending", "b" * ENDING_TAIL_CHARS)

        await quality.ending_check(chapter)

        assert client.operations() == ["ending_check", "fix_ending"]
        assert graph.require(chapter).content == prose
        assert tracker.is_done(chapter, Phase.ENDING_VALIDATED)

    @pytest.mark.asyncio
    async def test_containers_skipped(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient
    ) -> None:
        await quality.ending_check("root-1")
        assert client.calls == []


class TestOutlineAudit:
    @pytest.mark.asyncio
    async def test_pass_leaves_outline(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient,
        tracker: ProgressTracker,
    ) -> None:
        [chapter] = await _chapters(graph)

        await quality.outline_audit(chapter)

        assert client.operations() == ["quality_audit"]
        assert "Focus (CHAPTER outline)" in client.calls[0].user_prompt
        assert graph.require(chapter).summary == "outline of events"
        assert tracker.is_done(chapter, Phase.OUTLINE_REFINED)
        assert not tracker.is_done(chapter, Phase.QUALITY_OPTIMIZED)

    @pytest.mark.asyncio
    async def test_critique_rewrites_summary_only(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient
    ) -> None:
        [chapter] = await _chapters(graph)
        client.route("quality_audit", "One event only. Plan three.")
        client.route("rewrite", "1. Lin is cornered. 2. Lin bargains. 3. Lin escapes.")

        await quality.outline_audit(chapter)

        node = graph.require(chapter)
        assert node.summary.startswith("1. Lin is cornered.")
        assert node.content == ""
        assert "Original text:\n\"outline of events\"" in client.calls[1].user_prompt

    @pytest.mark.asyncio
    async def test_containers_skipped(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient
    ) -> None:
        await quality.outline_audit("root-1")
        assert client.calls == []


class TestCompositeChecks:
    @pytest.mark.asyncio
    async def test_container_order(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient
    ) -> None:
        [outline] = await graph.insert_children("root-1", NodeType.OUTLINE, [("Vol", "brief")])

        await quality.check_container(outline, 2)

        assert client.operations() == ["quality_audit", "expand_length", "span_check"]

    @pytest.mark.asyncio
    async def test_container_without_children_skips_span(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient
    ) -> None:
        await quality.check_container("root-1", None)
        assert "span_check" not in client.operations()

    @pytest.mark.asyncio
    async def test_second_pass_is_free(
        self, graph: StoryGraph, quality: QualityGate, client: ScriptedClient
    ) -> None:
        [chapter] = await _chapters(graph)
        await graph.set_text(chapter, long_prose(1200))

        await quality.check_prose(chapter)
        made = len(client.calls)
        await quality.check_prose(chapter)

        assert made == 2
        assert len(client.calls) == made
