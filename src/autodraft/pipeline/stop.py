"""Cooperative stop signal shared by the orchestrator and its components."""

from __future__ import annotations


class StopSignal:
    """A flag polled between node-level steps and between generation batches.

    In-flight backend calls are never interrupted; the run winds down at
    the next poll.
    """

    def __init__(self) -> None:
        self._requested = False

    def request(self) -> None:
        self._requested = True

    @property
    def requested(self) -> bool:
        return self._requested

    def __bool__(self) -> bool:
        return self._requested


class RunStopped(Exception):
    """Raised inside a run when the stop signal is seen; never escapes ``run()``."""
