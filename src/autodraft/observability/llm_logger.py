"""JSONL logger for generation calls.

Writes one structured entry per dispatched call to logs/llm_calls.jsonl.
Prompts and responses are never truncated.

Only active when the --log flag is passed to the CLI.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path


@dataclass
class LLMLogEntry:
    """Entry for generation call logging."""

    timestamp: str
    operation: str

    # Request
    system_instruction: str
    user_prompt: str
    json_mode: bool

    # Response
    content: str
    attempt: int
    duration_seconds: float

    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class LLMLogger:
    """Logger for generation calls in JSONL format.

    Attributes:
        log_path: Path to the JSONL log file.
        enabled: Whether logging is enabled.
    """

    def __init__(self, project_path: Path, enabled: bool = True) -> None:
        self.enabled = enabled
        self.log_path = project_path / "logs" / "llm_calls.jsonl"
        if enabled:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, entry: LLMLogEntry) -> None:
        """Append an entry to the JSONL log."""
        if not self.enabled:
            return

        with self.log_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(asdict(entry), ensure_ascii=False) + "\n")

    @staticmethod
    def create_entry(
        operation: str,
        system_instruction: str,
        user_prompt: str,
        json_mode: bool,
        content: str,
        attempt: int,
        duration_seconds: float,
        error: str | None = None,
        **metadata: Any,
    ) -> LLMLogEntry:
        """Create a log entry stamped with the current time.

        Args:
            operation: Name of the calling operation (prompt template name).
            system_instruction: System message sent with the request.
            user_prompt: User message sent with the request.
            json_mode: Whether a JSON response was requested.
            content: Raw response text ("" on failure).
            attempt: 1-based attempt number within the retry loop.
            duration_seconds: Wall time of the backend call.
            error: Error message if the call failed.
            **metadata: Additional metadata.

        Returns:
            LLMLogEntry ready for logging.
        """
        return LLMLogEntry(
            timestamp=datetime.now(UTC).isoformat(),
            operation=operation,
            system_instruction=system_instruction,
            user_prompt=user_prompt,
            json_mode=json_mode,
            content=content,
            attempt=attempt,
            duration_seconds=duration_seconds,
            error=error,
            metadata=dict(metadata),
        )

    def read_entries(self) -> list[LLMLogEntry]:
        """Read all entries from the log file."""
        if not self.log_path.exists():
            return []

        entries = []
        with self.log_path.open(encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    entries.append(LLMLogEntry(**json.loads(line)))
        return entries
