"""Typed schemas for JSON responses from the generation backend.

Every JSON-mode operation decodes its response through ``decode_response``.
Malformed payloads never raise: they decode to the schema's empty instance,
whose defaults are the safe no-op answer for that operation (no conflicts,
span sufficient, ending valid, nothing to insert).
"""

from __future__ import annotations

import json
import re
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from autodraft.models.node import NodeType
from autodraft.observability.logging import get_logger

log = get_logger(__name__)

PASS_SENTINEL = "PASS"

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL | re.IGNORECASE)


class ResponseModel(BaseModel):
    """Base for backend response schemas: camelCase aliases, extra keys ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ExpansionItem(ResponseModel):
    """One generated child node."""

    title: str = ""
    summary: str = ""


class ExpansionResult(ResponseModel):
    """Node expansion: a bare array, or an object wrapping it in ``items``/``nodes``."""

    items: list[ExpansionItem] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, data: Any) -> Any:
        if isinstance(data, list):
            return {"items": data}
        if isinstance(data, dict) and "items" not in data and "nodes" in data:
            return {"items": data["nodes"]}
        return data

    @model_validator(mode="after")
    def _drop_blank(self) -> ExpansionResult:
        self.items = [i for i in self.items if i.title.strip() or i.summary.strip()]
        return self


class BatchFix(ResponseModel):
    id: str
    instruction: str = ""
    delete: bool = False
    new_title: str | None = Field(default=None, alias="newTitle")


class BatchValidation(ResponseModel):
    """Chunk-level sibling consistency check."""

    has_conflicts: bool = Field(default=False, alias="hasConflicts")
    fixes: list[BatchFix] = Field(default_factory=list)


class SequenceFix(ResponseModel):
    target_id: str = Field(alias="targetId")
    instruction: str = ""
    new_title: str | None = Field(default=None, alias="newTitle")


class SequenceValidation(ResponseModel):
    """Whole-sequence gap check over a finished sibling list."""

    has_gap: bool = Field(default=False, alias="hasGap")
    gap_analysis: str = Field(default="", alias="gapAnalysis")
    fix_suggestions: list[SequenceFix] = Field(default_factory=list, alias="fixSuggestions")


class EndingValidation(ResponseModel):
    is_valid: bool = Field(default=True, alias="isValid")
    fix_instruction: str = Field(default="", alias="fixInstruction")


class SpanCheck(ResponseModel):
    sufficient: bool = True
    fix_instruction: str = Field(default="", alias="fixInstruction")


class StructureAdvice(ResponseModel):
    """Advised child count for a parent; ``count`` is None when no advice was given."""

    count: int | None = None
    reason: str = ""


class PacingInsertion(ResponseModel):
    insert_after_id: str = Field(alias="insertAfterId")
    new_summary: str = Field(default="", alias="newSummary")


class PacingAnalysis(ResponseModel):
    insertions: list[PacingInsertion] = Field(default_factory=list)


class MissingNode(ResponseModel):
    title: str = ""
    summary: str = ""
    insert_after_id: str | None = Field(default=None, alias="insertAfterId")


class CoverageAnalysis(ResponseModel):
    missing_nodes: list[MissingNode] = Field(default_factory=list, alias="missingNodes")


class NewResource(ResponseModel):
    type: NodeType
    title: str
    summary: str = ""

    @model_validator(mode="after")
    def _resource_type_only(self) -> NewResource:
        if self.type in (NodeType.ROOT, NodeType.OUTLINE, NodeType.PLOT, NodeType.CHAPTER):
            raise ValueError(f"{self.type} is not a resource type")
        return self


class ResourceUpdate(ResponseModel):
    id: str
    new_summary: str = Field(default="", alias="newSummary")
    change_log: str = Field(default="", alias="changeLog")


class WorldStateAnalysis(ResponseModel):
    """Resource extraction: new entities, state changes, and mentions."""

    new_resources: list[NewResource] = Field(default_factory=list, alias="newResources")
    updates: list[ResourceUpdate] = Field(default_factory=list)
    mentioned_ids: list[str] = Field(default_factory=list, alias="mentionedIds")


class ResourceSelection(ResponseModel):
    selected_ids: list[str] = Field(default_factory=list, alias="selectedIds")


ResponseT = TypeVar("ResponseT", bound=ResponseModel)


def extract_json_text(text: str) -> str:
    """Pull the JSON document out of a response.

    Handles raw JSON, JSON wrapped in ```json``` fences, and JSON with
    leading or trailing chatter.
    """
    fence_match = _FENCE_PATTERN.search(text)
    if fence_match:
        return fence_match.group(1).strip()

    stripped = text.strip()
    starts = [i for i in (stripped.find("{"), stripped.find("[")) if i >= 0]
    if not starts:
        return stripped
    start = min(starts)
    closer = "}" if stripped[start] == "{" else "]"
    end = stripped.rfind(closer)
    if end < start:
        return stripped[start:]
    return stripped[start : end + 1]


def decode_response(text: str, schema: type[ResponseT], operation: str = "") -> ResponseT:
    """Decode *text* into *schema*, falling back to the schema's empty instance.

    Args:
        text: Raw backend response.
        schema: Target response schema.
        operation: Calling operation, for the warning log.

    Returns:
        The validated response, or ``schema()`` if the payload was malformed.
    """
    try:
        data = json.loads(extract_json_text(text))
        return schema.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        log.warning(
            "response_decode_failed",
            operation=operation or schema.__name__,
            error=str(e).splitlines()[0] if str(e) else type(e).__name__,
            preview=text[:120],
        )
        return schema()


def is_pass(text: str) -> bool:
    """True if an audit response is the pass sentinel."""
    return text.strip().strip("\"'`").upper().startswith(PASS_SENTINEL)
