"""Process-wide request gate for the generation backend.

All model calls pass through one bounded FIFO queue drained by a single
worker task, so at most one call is in flight at any time. Each dispatch
is preceded by a fixed spacing delay; rate-limit failures are retried with
exponential backoff and other failures with a fixed delay, up to
``max_attempts`` in total.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from autodraft.observability.logging import get_logger
from autodraft.providers.base import (
    GenerationClient,
    GenerationRequest,
    ProviderError,
    ProviderTransientError,
)
from autodraft.providers.langchain_client import is_rate_limit_error

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from autodraft.observability.llm_logger import LLMLogger
    from autodraft.observability.run_log import RunLog

log = get_logger(__name__)

DEFAULT_SPACING_SECONDS = 2.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE_SECONDS = 2.0
DEFAULT_RETRY_DELAY_SECONDS = 2.0
DEFAULT_MAX_PENDING = 64


class GateClosedError(ProviderError):
    """Raised when a request is submitted to (or pending on) a closed gate."""

    def __init__(self) -> None:
        super().__init__("gate", "Request gate is closed")


@dataclass
class _Job:
    request: GenerationRequest
    future: asyncio.Future[str]


class RequestGate:
    """Serialize every generation call into a single FIFO worker.

    Attributes:
        spacing: Delay before each dispatch, in seconds.
        max_attempts: Total attempts per request (first try included).
        backoff_base: Base of the exponential rate-limit backoff, in seconds.
        retry_delay: Fixed delay before retrying a non-rate-limit failure.
        dispatch_count: Number of backend calls made so far (retries included).
    """

    def __init__(
        self,
        client: GenerationClient,
        *,
        spacing: float = DEFAULT_SPACING_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF_BASE_SECONDS,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        max_pending: int = DEFAULT_MAX_PENDING,
        run_log: RunLog | None = None,
        llm_logger: LLMLogger | None = None,
        provider_name: str = "backend",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._client = client
        self.spacing = spacing
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.retry_delay = retry_delay
        self._run_log = run_log
        self._llm_logger = llm_logger
        self._provider_name = provider_name
        self._sleep = sleep
        self._queue: asyncio.Queue[_Job] = asyncio.Queue(maxsize=max_pending)
        self._worker: asyncio.Task[None] | None = None
        self._current: _Job | None = None
        self._closed = False
        self.dispatch_count = 0

    async def invoke(self, request: GenerationRequest) -> str:
        """Queue *request* and wait for its response text.

        Raises:
            ProviderTransientError: If every attempt failed.
            GateClosedError: If the gate was closed before the request ran.
        """
        if self._closed:
            raise GateClosedError()
        self._ensure_worker()

        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        await self._queue.put(_Job(request=request, future=future))
        return await future

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name="autodraft-request-gate")

    async def _drain(self) -> None:
        while True:
            job = await self._queue.get()
            self._current = job
            try:
                if job.future.done():
                    # Caller gave up while waiting in the queue
                    continue
                try:
                    result = await self._dispatch(job.request)
                except Exception as e:
                    if not job.future.done():
                        job.future.set_exception(e)
                else:
                    if not job.future.done():
                        job.future.set_result(result)
            finally:
                self._current = None
                self._queue.task_done()

    async def _dispatch(self, request: GenerationRequest) -> str:
        await self._sleep(self.spacing)
        if self._run_log is not None:
            self._run_log.request(request.operation, request.user_prompt)

        last_error: Exception | None = None
        rate_limited = False
        for attempt in range(1, self.max_attempts + 1):
            self.dispatch_count += 1
            log.debug("gate_dispatch", operation=request.operation, attempt=attempt)
            start = time.perf_counter()
            try:
                content = await self._client.generate(request)
            except Exception as e:
                duration = time.perf_counter() - start
                last_error = e
                rate_limited = is_rate_limit_error(e)
                self._record(request, "", attempt, duration, error=str(e))
                if attempt == self.max_attempts:
                    break
                wait = (
                    self.backoff_base * (2 ** (attempt - 1)) if rate_limited else self.retry_delay
                )
                log.warning(
                    "gate_retry",
                    operation=request.operation,
                    attempt=attempt,
                    rate_limited=rate_limited,
                    wait_seconds=wait,
                    error=str(e),
                )
                if self._run_log is not None:
                    reason = "rate limited" if rate_limited else f"failed: {e}"
                    self._run_log.warning(
                        f"[api] {request.operation} attempt {attempt} {reason}; "
                        f"retrying in {wait:.1f}s"
                    )
                await self._sleep(wait)
                continue

            duration = time.perf_counter() - start
            self._record(request, content, attempt, duration)
            if self._run_log is not None:
                self._run_log.response(request.operation, content)
            return content

        kind = "rate limit" if rate_limited else "backend failure"
        log.error(
            "gate_exhausted",
            operation=request.operation,
            attempts=self.max_attempts,
            kind=kind,
            error=str(last_error),
        )
        if self._run_log is not None:
            self._run_log.error(
                f"[api] {request.operation} gave up after {self.max_attempts} attempts ({kind})"
            )
        raise ProviderTransientError(
            self._provider_name,
            f"{request.operation}: {kind} after {self.max_attempts} attempts: {last_error}",
            attempts=self.max_attempts,
        ) from last_error

    def _record(
        self,
        request: GenerationRequest,
        content: str,
        attempt: int,
        duration: float,
        error: str | None = None,
    ) -> None:
        if self._llm_logger is None:
            return
        self._llm_logger.log(
            self._llm_logger.create_entry(
                operation=request.operation,
                system_instruction=request.system_instruction,
                user_prompt=request.user_prompt,
                json_mode=request.json_mode,
                content=content,
                attempt=attempt,
                duration_seconds=duration,
                error=error,
            )
        )

    async def aclose(self) -> None:
        """Stop the worker and fail the in-flight request and any still queued."""
        self._closed = True
        in_flight = self._current
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
        if in_flight is not None and not in_flight.future.done():
            in_flight.future.set_exception(GateClosedError())

        while not self._queue.empty():
            job = self._queue.get_nowait()
            if not job.future.done():
                job.future.set_exception(GateClosedError())
            self._queue.task_done()

    async def __aenter__(self) -> RequestGate:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()
