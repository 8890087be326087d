"""Draft pipeline: configuration, generation steps, and the orchestrator."""

from autodraft.pipeline.config import (
    GateConfig,
    Pacing,
    ProjectConfig,
    ProjectConfigError,
    RunConfig,
    Strategy,
    TargetDepth,
    WritingConfig,
    create_default_config,
    load_project_config,
    write_project_config,
)
from autodraft.pipeline.consistency import ConsistencyAuditor
from autodraft.pipeline.llm_helper import LLMHelper
from autodraft.pipeline.orchestrator import (
    DraftOrchestrator,
    RunResult,
    RunState,
    RunStatus,
    plan_states,
)
from autodraft.pipeline.pacing import PacingAnalyzer
from autodraft.pipeline.quality import QualityGate
from autodraft.pipeline.resources import ResourceLifecycleManager
from autodraft.pipeline.sequencer import Sequencer
from autodraft.pipeline.stop import RunStopped, StopSignal

__all__ = [
    "ConsistencyAuditor",
    "DraftOrchestrator",
    "GateConfig",
    "LLMHelper",
    "Pacing",
    "PacingAnalyzer",
    "ProjectConfig",
    "ProjectConfigError",
    "QualityGate",
    "ResourceLifecycleManager",
    "RunConfig",
    "RunResult",
    "RunState",
    "RunStatus",
    "RunStopped",
    "Sequencer",
    "StopSignal",
    "Strategy",
    "TargetDepth",
    "WritingConfig",
    "create_default_config",
    "load_project_config",
    "plan_states",
    "write_project_config",
]
