"""Pydantic models for story-tree nodes.

A single ``Node`` record covers both the story hierarchy
(ROOT > OUTLINE > PLOT > CHAPTER) and the flat resource pool
(CHARACTER, ITEM, LOCATION, FACTION). Field names are snake_case in
Python and camelCase on the wire.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NodeType(StrEnum):
    """Kinds of node in the document tree."""

    ROOT = "ROOT"
    OUTLINE = "OUTLINE"
    PLOT = "PLOT"
    CHAPTER = "CHAPTER"
    CHARACTER = "CHARACTER"
    ITEM = "ITEM"
    LOCATION = "LOCATION"
    FACTION = "FACTION"


STORY_TYPES: frozenset[NodeType] = frozenset(
    {NodeType.ROOT, NodeType.OUTLINE, NodeType.PLOT, NodeType.CHAPTER}
)
RESOURCE_TYPES: frozenset[NodeType] = frozenset(
    {NodeType.CHARACTER, NodeType.ITEM, NodeType.LOCATION, NodeType.FACTION}
)
CONTAINER_TYPES: frozenset[NodeType] = frozenset(
    {NodeType.ROOT, NodeType.OUTLINE, NodeType.PLOT}
)

# Story hierarchy: each container has exactly one child type.
CHILD_TYPE: dict[NodeType, NodeType] = {
    NodeType.ROOT: NodeType.OUTLINE,
    NodeType.OUTLINE: NodeType.PLOT,
    NodeType.PLOT: NodeType.CHAPTER,
}

# ROOT(0) > OUTLINE(1) > PLOT(2) > CHAPTER(3)
MAX_DEPTH = 4


class Phase(StrEnum):
    """Per-node pipeline phases tracked for resumption."""

    STRUCTURE_EXPANDED = "structureExpanded"
    QUALITY_OPTIMIZED = "qualityOptimized"
    STRUCTURE_VALIDATED = "structureValidated"
    ENDING_VALIDATED = "endingValidated"
    RESOURCE_SYNCED = "resourceSynced"
    PROSE_DRAFTED = "proseDrafted"
    SPAN_CHECKED = "spanChecked"
    SIBLINGS_AUDITED = "siblingsAudited"
    PACING_APPLIED = "pacingApplied"
    OUTLINE_REFINED = "outlineRefined"


class PhaseState(StrEnum):
    """State of one phase on one node."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class Node(BaseModel):
    """One record in the document tree.

    ``content`` holds prose for chapters and long-form notes elsewhere;
    ``summary`` is the working text for every non-chapter node.
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=False)

    id: str = Field(min_length=1)
    type: NodeType
    title: str = ""
    summary: str = ""
    content: str = ""
    parent_id: str | None = Field(default=None, alias="parentId")
    children_ids: list[str] = Field(default_factory=list, alias="childrenIds")
    prev_node_id: str | None = Field(default=None, alias="prevNodeId")
    associations: list[str] = Field(default_factory=list)
    progress: dict[Phase, PhaseState] = Field(default_factory=dict, alias="statusFlags")
    collapsed: bool = False

    @field_validator("progress", mode="before")
    @classmethod
    def _coerce_boolean_flags(cls, value: Any) -> Any:
        """Accept legacy ``{phase: bool}`` maps alongside phase states."""
        if not isinstance(value, dict):
            return value
        coerced: dict[Any, Any] = {}
        for phase, state in value.items():
            if state is True:
                coerced[phase] = PhaseState.DONE
            elif state is False:
                continue
            else:
                coerced[phase] = state
        return coerced

    @property
    def is_resource(self) -> bool:
        return self.type in RESOURCE_TYPES

    @property
    def effective_text(self) -> str:
        """Text the quality checks measure: prose for chapters, summary otherwise."""
        if self.type == NodeType.CHAPTER:
            return self.content
        return self.summary

    def phase_state(self, phase: Phase) -> PhaseState:
        return self.progress.get(phase, PhaseState.NOT_STARTED)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
