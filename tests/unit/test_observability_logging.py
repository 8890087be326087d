"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import pytest

from autodraft.observability import (
    close_file_logging,
    configure_logging,
    get_logger,
    get_logs_dir,
    run_context,
)

if TYPE_CHECKING:
    from pathlib import Path


def test_configure_logging_sets_level_warning() -> None:
    """Default verbosity (0) sets WARNING level."""
    configure_logging(verbosity=0)

    assert logging.getLogger().level == logging.WARNING


def test_configure_logging_verbose_sets_debug_root() -> None:
    """Any verbosity opens the root logger; the console handler filters."""
    configure_logging(verbosity=1)

    assert logging.getLogger().level == logging.DEBUG


def test_configure_logging_suppresses_noisy_loggers() -> None:
    configure_logging(verbosity=2)

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("langchain_core").level == logging.WARNING


def test_get_logger_auto_configures() -> None:
    """get_logger configures logging if not already done."""
    import autodraft.observability.logging as log_module

    log_module._configured = False

    logger = get_logger("test")

    assert log_module._configured is True
    assert hasattr(logger, "info")


def test_file_logging_writes_jsonl(tmp_path: Path) -> None:
    """Events land in logs/debug.jsonl with their bound fields."""
    configure_logging(verbosity=0, log_to_file=True, project_path=tmp_path)
    assert get_logs_dir() == tmp_path / "logs"

    get_logger("autodraft.test").info("node_inserted", node_id="n-1")
    close_file_logging()

    lines = (tmp_path / "logs" / "debug.jsonl").read_text().splitlines()
    events = [json.loads(line) for line in lines]
    event = next(e for e in events if e["message"] == "node_inserted")
    assert event["node_id"] == "n-1"
    assert event["level"] == "INFO"


def test_run_context_binds_fields_inside_block(tmp_path: Path) -> None:
    """Fields bound by run_context reach every event in the block, and only those."""
    configure_logging(verbosity=0, log_to_file=True, project_path=tmp_path)
    logger = get_logger("autodraft.test")

    with run_context(run_state="STRUCTURE_PLOT"):
        with run_context(node_id="n-7"):
            logger.info("audit_rewrite")
        logger.info("level_done")
    logger.info("run_finished")
    close_file_logging()

    lines = (tmp_path / "logs" / "debug.jsonl").read_text().splitlines()
    events = {e["message"]: e for e in map(json.loads, lines)}
    assert events["audit_rewrite"]["run_state"] == "STRUCTURE_PLOT"
    assert events["audit_rewrite"]["node_id"] == "n-7"
    assert events["level_done"]["run_state"] == "STRUCTURE_PLOT"
    assert "node_id" not in events["level_done"]
    assert "run_state" not in events["run_finished"]

def test_configure_logging_without_file_logging(tmp_path: Path) -> None:
    configure_logging(verbosity=0, log_to_file=False, project_path=tmp_path)

    assert not (tmp_path / "logs").exists()


def test_configure_logging_requires_project_path_for_file_logging() -> None:
    with pytest.raises(ValueError, match="project_path is required"):
        configure_logging(verbosity=0, log_to_file=True, project_path=None)


def test_configure_logging_reconfiguration_closes_handler(tmp_path: Path) -> None:
    """Reconfiguring logging closes previous file handler."""
    import autodraft.observability.logging as log_module

    configure_logging(verbosity=0, log_to_file=True, project_path=tmp_path)
    first_handler = log_module._file_handler
    assert first_handler is not None

    configure_logging(verbosity=0)

    assert first_handler.stream is None or first_handler.stream.closed
    assert log_module._file_handler is None
