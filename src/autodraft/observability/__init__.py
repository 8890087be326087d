"""Observability module for AutoDraft.

Provides structured logging, the generation call log, and the
operator-visible run log.
"""

from autodraft.observability.llm_logger import LLMLogEntry, LLMLogger
from autodraft.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logger,
    get_logs_dir,
    run_context,
)
from autodraft.observability.run_log import RunLog, RunLogEntry

__all__ = [
    "LLMLogEntry",
    "LLMLogger",
    "RunLog",
    "RunLogEntry",
    "close_file_logging",
    "configure_logging",
    "get_logger",
    "get_logs_dir",
    "run_context",
]
