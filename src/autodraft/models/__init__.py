"""Pydantic models for tree nodes and backend responses."""

from autodraft.models.node import (
    CHILD_TYPE,
    CONTAINER_TYPES,
    MAX_DEPTH,
    RESOURCE_TYPES,
    STORY_TYPES,
    Node,
    NodeType,
    Phase,
    PhaseState,
)
from autodraft.models.responses import (
    PASS_SENTINEL,
    BatchFix,
    BatchValidation,
    CoverageAnalysis,
    EndingValidation,
    ExpansionItem,
    ExpansionResult,
    MissingNode,
    NewResource,
    PacingAnalysis,
    PacingInsertion,
    ResourceSelection,
    ResourceUpdate,
    SequenceFix,
    SequenceValidation,
    SpanCheck,
    StructureAdvice,
    WorldStateAnalysis,
    decode_response,
    is_pass,
)

__all__ = [
    "CHILD_TYPE",
    "CONTAINER_TYPES",
    "MAX_DEPTH",
    "PASS_SENTINEL",
    "RESOURCE_TYPES",
    "STORY_TYPES",
    "BatchFix",
    "BatchValidation",
    "CoverageAnalysis",
    "EndingValidation",
    "ExpansionItem",
    "ExpansionResult",
    "MissingNode",
    "NewResource",
    "Node",
    "NodeType",
    "PacingAnalysis",
    "PacingInsertion",
    "Phase",
    "PhaseState",
    "ResourceSelection",
    "ResourceUpdate",
    "SequenceFix",
    "SequenceValidation",
    "SpanCheck",
    "StructureAdvice",
    "WorldStateAnalysis",
    "decode_response",
    "is_pass",
]
