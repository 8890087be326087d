"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from autodraft.graph import InMemoryNodeStore, StoryGraph, new_root
from autodraft.observability import RunLog
from autodraft.pipeline import LLMHelper, RunConfig
from autodraft.providers import RequestGate
from tests.fixtures.fake_client import ScriptedClient, story_client

ROOT_IDEA = (
    "A disgraced sword apprentice climbs from the border villages to the sky "
    "citadel to clear his master's name, gaining power one sealed region at a time."
)


async def no_sleep(_seconds: float) -> None:
    """Replacement for asyncio.sleep that returns immediately."""


@pytest.fixture
def run_log() -> RunLog:
    return RunLog()


@pytest.fixture
def graph(run_log: RunLog) -> StoryGraph:
    """Story graph holding only a ROOT node."""
    store = InMemoryNodeStore([new_root("Sky Citadel", summary=ROOT_IDEA)])
    return StoryGraph(store, wait_timeout=1.0, poll_interval=0.01, run_log=run_log)


@pytest.fixture
def client() -> ScriptedClient:
    return story_client()


@pytest_asyncio.fixture
async def gate(client: ScriptedClient, run_log: RunLog) -> AsyncIterator[RequestGate]:
    """Request gate with no spacing or retry delays."""
    async with RequestGate(client, spacing=0.0, run_log=run_log, sleep=no_sleep) as g:
        yield g


@pytest.fixture
def llm(gate: RequestGate) -> LLMHelper:
    return LLMHelper(gate)


@pytest.fixture
def config() -> RunConfig:
    return RunConfig(
        idea=ROOT_IDEA,
        volume_count=1,
        plot_points_per_volume=1,
        chapters_per_plot=1,
        word_count_per_chapter=1000,
        min_effective_length=100,
    )
