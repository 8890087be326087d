"""Operator-visible run log.

Every orchestration step, model request, model response and recovery is
appended here as a timestamped human-readable line. Listeners (the CLI's
live status panel, tests) are notified on every append.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Callable

RunLogKind = Literal["info", "warning", "error", "request", "response"]


@dataclass(frozen=True)
class RunLogEntry:
    """A single line of the run log."""

    timestamp: datetime
    kind: RunLogKind
    message: str

    def format(self) -> str:
        return f"[{self.timestamp:%H:%M:%S}] {self.message}"


class RunLog:
    """Append-only log surfaced to the operator during a run."""

    def __init__(self, max_preview: int = 200) -> None:
        self._entries: list[RunLogEntry] = []
        self._listeners: list[Callable[[RunLogEntry], None]] = []
        self._max_preview = max_preview

    def subscribe(self, listener: Callable[[RunLogEntry], None]) -> None:
        self._listeners.append(listener)

    def append(self, message: str, kind: RunLogKind = "info") -> RunLogEntry:
        entry = RunLogEntry(timestamp=datetime.now(), kind=kind, message=message)
        self._entries.append(entry)
        for listener in self._listeners:
            listener(entry)
        return entry

    def info(self, message: str) -> None:
        self.append(message, "info")

    def warning(self, message: str) -> None:
        self.append(message, "warning")

    def error(self, message: str) -> None:
        self.append(message, "error")

    def request(self, operation: str, user_prompt: str) -> None:
        preview = user_prompt.strip()[: self._max_preview]
        self.append(f"[request] {operation}: {preview}", "request")

    def response(self, operation: str, content: str) -> None:
        preview = content.strip()[: self._max_preview]
        self.append(f"[response] {operation}: {preview}", "response")

    @property
    def entries(self) -> list[RunLogEntry]:
        return list(self._entries)

    def lines(self) -> list[str]:
        return [entry.format() for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)
