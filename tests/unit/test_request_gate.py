"""Tests for the request gate."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from autodraft.observability import LLMLogger, RunLog
from autodraft.providers import (
    GateClosedError,
    GenerationRequest,
    ProviderConnectionError,
    ProviderRateLimitError,
    ProviderTransientError,
    RequestGate,
)
from tests.fixtures.fake_client import ScriptedClient, failing

if TYPE_CHECKING:
    from pathlib import Path


def _request(operation: str = "op", prompt: str = "hello") -> GenerationRequest:
    return GenerationRequest(system_instruction="sys", user_prompt=prompt, operation=operation)


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class ConcurrencyRecorder:
    """Client that tracks how many calls overlap."""

    def __init__(self) -> None:
        self.active = 0
        self.max_active = 0
        self.order: list[str] = []

    async def generate(self, request: GenerationRequest) -> str:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        self.order.append(request.user_prompt)
        self.active -= 1
        return f"echo:{request.user_prompt}"


class TestOrdering:
    """Requests are served FIFO and one at a time."""

    @pytest.mark.asyncio
    async def test_fifo_single_flight(self) -> None:
        """Concurrent callers are dispatched strictly in submission order."""
        recorder = ConcurrencyRecorder()
        async with RequestGate(recorder, spacing=0.0, sleep=SleepRecorder()) as gate:
            prompts = [f"p{i}" for i in range(6)]
            results = await asyncio.gather(*(gate.invoke(_request(prompt=p)) for p in prompts))

        assert recorder.order == prompts
        assert recorder.max_active == 1
        assert results == [f"echo:{p}" for p in prompts]

    @pytest.mark.asyncio
    async def test_spacing_before_every_dispatch(self) -> None:
        """The spacing delay precedes each request."""
        sleeps = SleepRecorder()
        client = ScriptedClient(default="ok")
        async with RequestGate(client, spacing=2.0, sleep=sleeps) as gate:
            await gate.invoke(_request())
            await gate.invoke(_request())

        assert sleeps.calls == [2.0, 2.0]
        assert gate.dispatch_count == 2


class TestRetry:
    """Retry and backoff behaviour."""

    @pytest.mark.asyncio
    async def test_rate_limit_uses_exponential_backoff(self) -> None:
        """Rate-limit failures wait base, then twice the base."""
        sleeps = SleepRecorder()
        client = ScriptedClient(
            {"op": failing(lambda: ProviderRateLimitError("fake", "429"), times=2, then="done")}
        )
        async with RequestGate(
            client, spacing=1.0, backoff_base=2.0, retry_delay=9.0, sleep=sleeps
        ) as gate:
            result = await gate.invoke(_request())

        assert result == "done"
        assert sleeps.calls == [1.0, 2.0, 4.0]
        assert gate.dispatch_count == 3

    @pytest.mark.asyncio
    async def test_other_errors_use_fixed_delay(self) -> None:
        """Non-rate-limit failures wait the fixed retry delay."""
        sleeps = SleepRecorder()
        client = ScriptedClient(
            {"op": failing(lambda: ProviderConnectionError("fake", "down"), times=1, then="ok")}
        )
        async with RequestGate(
            client, spacing=0.5, backoff_base=2.0, retry_delay=3.0, sleep=sleeps
        ) as gate:
            assert await gate.invoke(_request()) == "ok"

        assert sleeps.calls == [0.5, 3.0]

    @pytest.mark.asyncio
    async def test_exhaustion_raises_transient_error(self) -> None:
        """After max attempts the last failure is chained to a transient error."""
        client = ScriptedClient({"op": failing(lambda: ProviderConnectionError("fake", "down"), 5, "")})
        run_log = RunLog()
        async with RequestGate(
            client, spacing=0.0, max_attempts=3, run_log=run_log, sleep=SleepRecorder()
        ) as gate:
            with pytest.raises(ProviderTransientError) as exc_info:
                await gate.invoke(_request())

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, ProviderConnectionError)
        assert client.count("op") == 3
        assert any("gave up after 3 attempts" in line for line in run_log.lines())

    @pytest.mark.asyncio
    async def test_failure_does_not_block_later_requests(self) -> None:
        """A request that exhausts its budget leaves the worker running."""
        client = ScriptedClient(
            {
                "bad": ProviderConnectionError("fake", "down"),
                "good": "fine",
            }
        )
        async with RequestGate(client, spacing=0.0, max_attempts=2, sleep=SleepRecorder()) as gate:
            with pytest.raises(ProviderTransientError):
                await gate.invoke(_request("bad"))
            assert await gate.invoke(_request("good")) == "fine"

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            RequestGate(ScriptedClient(), max_attempts=0)


class TestLogging:
    """Run log and call log output."""

    @pytest.mark.asyncio
    async def test_run_log_records_request_and_response(self) -> None:
        run_log = RunLog()
        client = ScriptedClient({"expand_root": "[]"})
        async with RequestGate(client, spacing=0.0, run_log=run_log, sleep=SleepRecorder()) as gate:
            await gate.invoke(_request("expand_root"))

        kinds = [e.kind for e in run_log.entries()]
        assert kinds == ["request", "response"]

    @pytest.mark.asyncio
    async def test_llm_logger_records_every_attempt(self, tmp_path: Path) -> None:
        """Failed attempts are logged with their error, the success with content."""
        llm_logger = LLMLogger(tmp_path)
        client = ScriptedClient(
            {"op": failing(lambda: ProviderRateLimitError("fake", "slow down"), times=1, then="yes")}
        )
        async with RequestGate(
            client, spacing=0.0, llm_logger=llm_logger, sleep=SleepRecorder()
        ) as gate:
            await gate.invoke(_request())

        entries = llm_logger.read_entries()
        assert [e.attempt for e in entries] == [1, 2]
        assert entries[0].error is not None
        assert entries[1].content == "yes"
        assert entries[1].operation == "op"


class TestClose:
    @pytest.mark.asyncio
    async def test_invoke_after_close_raises(self) -> None:
        gate = RequestGate(ScriptedClient(default="x"), spacing=0.0, sleep=SleepRecorder())
        await gate.aclose()
        with pytest.raises(GateClosedError):
            await gate.invoke(_request())

    @pytest.mark.asyncio
    async def test_close_fails_pending_requests(self) -> None:
        """In-flight and queued requests get GateClosedError when the gate closes."""
        started = asyncio.Event()
        release = asyncio.Event()

        class Blocking:
            async def generate(self, request: GenerationRequest) -> str:
                started.set()
                await release.wait()
                return "late"

        gate = RequestGate(Blocking(), spacing=0.0, sleep=SleepRecorder())
        first = asyncio.create_task(gate.invoke(_request(prompt="first")))
        second = asyncio.create_task(gate.invoke(_request(prompt="second")))
        await started.wait()
        await gate.aclose()

        with pytest.raises(GateClosedError):
            await first
        with pytest.raises(GateClosedError):
            await second
