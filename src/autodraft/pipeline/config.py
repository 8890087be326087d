"""Run and project configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML

from autodraft.models.node import NodeType

DEFAULT_PROVIDER = "ollama"
DEFAULT_MODEL = "qwen3:8b"
DEFAULT_STYLE = "Eastern fantasy / cultivation"
DEFAULT_SYSTEM_INSTRUCTION = """\
You are a top-tier web-serial architect.
Core method: map progression plus high event density.
1. Structure: the story advances through large regions or "instances". Each volume \
spans two or three of them and climbs from the fringe to the core to the layer above.
2. Events drive everything. The smallest narrative unit is one event: the protagonist \
faces a choice, acts, and a consequence follows (dialogue, fight result, item gained, \
relationship changed). A chapter contains at least three complete events.
3. Logic is strict. Foreshadowing, item acquisition, and power growth follow a clear \
causal chain."""

PROJECT_FILE = "project.yaml"
TREE_FILE = "tree.json"


class TargetDepth(StrEnum):
    """How far down the hierarchy a run goes."""

    OUTLINE = "OUTLINE"
    PLOT = "PLOT"
    CHAPTER = "CHAPTER"
    PROSE = "PROSE"

    @property
    def rank(self) -> int:
        return list(TargetDepth).index(self)


class Pacing(StrEnum):
    FAST = "Fast"
    NORMAL = "Normal"
    SLOW = "Slow"


class Strategy(StrEnum):
    """How the Sequencer produces a batch of children."""

    LINEAR_BATCH = "linear_batch"
    SPANNING = "spanning"
    ONE_PASS = "one_pass"


def _enum_value(enum_cls: type[StrEnum], value: Any, field_name: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValueError(f"{field_name} must be one of: {allowed} (got {value!r})") from None


@dataclass(frozen=True)
class RunConfig:
    """Immutable settings for one orchestrator run.

    Attributes:
        idea: Free-text creative intent fed to the quality audits.
        target_depth: Deepest level the run produces.
        volume_count: OUTLINE children of the ROOT.
        plot_points_per_volume: PLOT children of each OUTLINE.
        chapters_per_plot: CHAPTER children of each PLOT.
        word_count_per_chapter: Prose length floor for chapters.
        min_effective_length: Length floor for every other node.
        pacing: Rhythm hint for count advice and transition insertion.
        strategy: Sequencer generation strategy.
        enable_plot_analysis: Run the pacing and coverage sub-flow at PLOT level.
        dynamic_counts: Ask for structural count advice before each expansion.
        completed_node_ids: Resume hint; nodes treated as fully done.
        skip_root_audit: Resume hint; skip the ROOT audit state.
    """

    idea: str = ""
    target_depth: TargetDepth = TargetDepth.PROSE
    volume_count: int = 3
    plot_points_per_volume: int = 10
    chapters_per_plot: int = 3
    word_count_per_chapter: int = 2000
    min_effective_length: int = 500
    pacing: Pacing = Pacing.NORMAL
    strategy: Strategy = Strategy.LINEAR_BATCH
    enable_plot_analysis: bool = True
    dynamic_counts: bool = False
    completed_node_ids: tuple[str, ...] = ()
    skip_root_audit: bool = False

    def __post_init__(self) -> None:
        for name in ("volume_count", "plot_points_per_volume", "chapters_per_plot"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")
        if self.word_count_per_chapter < 0 or self.min_effective_length < 0:
            raise ValueError("length floors must not be negative")

    def count_for(self, child_type: NodeType) -> int:
        """Configured number of children of *child_type* per parent."""
        counts = {
            NodeType.OUTLINE: self.volume_count,
            NodeType.PLOT: self.plot_points_per_volume,
            NodeType.CHAPTER: self.chapters_per_plot,
        }
        return counts[child_type]

    def min_length_for(self, node_type: NodeType) -> int:
        if node_type == NodeType.CHAPTER:
            return self.word_count_per_chapter
        return self.min_effective_length

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunConfig:
        """Create a run config from a dict using snake_case or camelCase keys.

        Raises:
            ValueError: If a field holds an invalid value.
        """

        def pick(snake: str, camel: str, default: Any) -> Any:
            if snake in data:
                return data[snake]
            return data.get(camel, default)

        defaults = cls()
        completed = pick("completed_node_ids", "completedNodeIds", ())
        return cls(
            idea=str(pick("idea", "idea", defaults.idea) or ""),
            target_depth=_enum_value(
                TargetDepth, pick("target_depth", "targetDepth", defaults.target_depth),
                "target_depth",
            ),
            volume_count=int(pick("volume_count", "volumeCount", defaults.volume_count)),
            plot_points_per_volume=int(
                pick("plot_points_per_volume", "plotPointsPerVolume", defaults.plot_points_per_volume)
            ),
            chapters_per_plot=int(
                pick("chapters_per_plot", "chaptersPerPlot", defaults.chapters_per_plot)
            ),
            word_count_per_chapter=int(
                pick("word_count_per_chapter", "wordCountPerChapter", defaults.word_count_per_chapter)
            ),
            min_effective_length=int(
                pick("min_effective_length", "minEffectiveLength", defaults.min_effective_length)
            ),
            pacing=_enum_value(Pacing, pick("pacing", "pacing", defaults.pacing), "pacing"),
            strategy=_enum_value(
                Strategy, pick("strategy", "strategy", defaults.strategy), "strategy"
            ),
            enable_plot_analysis=bool(
                pick("enable_plot_analysis", "enablePlotAnalysis", defaults.enable_plot_analysis)
            ),
            dynamic_counts=bool(pick("dynamic_counts", "dynamicCounts", defaults.dynamic_counts)),
            completed_node_ids=tuple(str(i) for i in completed or ()),
            skip_root_audit=bool(pick("skip_root_audit", "skipRootAudit", defaults.skip_root_audit)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "idea": self.idea,
            "target_depth": self.target_depth.value,
            "volume_count": self.volume_count,
            "plot_points_per_volume": self.plot_points_per_volume,
            "chapters_per_plot": self.chapters_per_plot,
            "word_count_per_chapter": self.word_count_per_chapter,
            "min_effective_length": self.min_effective_length,
            "pacing": self.pacing.value,
            "strategy": self.strategy.value,
            "enable_plot_analysis": self.enable_plot_analysis,
            "dynamic_counts": self.dynamic_counts,
        }


@dataclass
class GateConfig:
    """Request gate timing."""

    spacing_seconds: float = 2.0
    max_attempts: int = 3
    backoff_base_seconds: float = 2.0
    retry_delay_seconds: float = 2.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GateConfig:
        return cls(
            spacing_seconds=float(data.get("spacing_seconds", 2.0)),
            max_attempts=int(data.get("max_attempts", 3)),
            backoff_base_seconds=float(data.get("backoff_base_seconds", 2.0)),
            retry_delay_seconds=float(data.get("retry_delay_seconds", 2.0)),
        )


@dataclass
class WritingConfig:
    """House style passed to every prompt."""

    style: str = DEFAULT_STYLE
    system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WritingConfig:
        return cls(
            style=data.get("style", DEFAULT_STYLE),
            system_instruction=data.get("system_instruction", DEFAULT_SYSTEM_INSTRUCTION),
        )


@dataclass
class ProjectConfig:
    """Configuration for an AutoDraft project."""

    name: str
    version: int = 1
    provider: str = f"{DEFAULT_PROVIDER}/{DEFAULT_MODEL}"
    temperature: float | None = None
    writing: WritingConfig = field(default_factory=WritingConfig)
    gate: GateConfig = field(default_factory=GateConfig)
    run: RunConfig = field(default_factory=RunConfig)
    tree_file: str = TREE_FILE

    def get_provider(self) -> str:
        """Effective provider string; ``AUTODRAFT_PROVIDER`` overrides the config."""
        return os.getenv("AUTODRAFT_PROVIDER") or self.provider

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectConfig:
        providers = data.get("providers", {}) or {}
        temperature = data.get("temperature")
        return cls(
            name=data.get("name", "unnamed"),
            version=data.get("version", 1),
            provider=providers.get("default", f"{DEFAULT_PROVIDER}/{DEFAULT_MODEL}"),
            temperature=float(temperature) if temperature is not None else None,
            writing=WritingConfig.from_dict(dict(data.get("writing", {}) or {})),
            gate=GateConfig.from_dict(dict(data.get("gate", {}) or {})),
            run=RunConfig.from_dict(dict(data.get("run", {}) or {})),
            tree_file=data.get("tree_file", TREE_FILE),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "providers": {"default": self.provider},
            "writing": {
                "style": self.writing.style,
                "system_instruction": self.writing.system_instruction,
            },
            "gate": {
                "spacing_seconds": self.gate.spacing_seconds,
                "max_attempts": self.gate.max_attempts,
                "backoff_base_seconds": self.gate.backoff_base_seconds,
                "retry_delay_seconds": self.gate.retry_delay_seconds,
            },
            "run": self.run.to_dict(),
            "tree_file": self.tree_file,
        }
        if self.temperature is not None:
            data["temperature"] = self.temperature
        return data


class ProjectConfigError(Exception):
    """Raised when project configuration cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load project config at {path}: {reason}")


def load_project_config(project_path: Path) -> ProjectConfig:
    """Load project configuration from project.yaml.

    Args:
        project_path: Path to the project root directory.

    Returns:
        ProjectConfig instance.

    Raises:
        ProjectConfigError: If config cannot be loaded.
    """
    config_path = project_path / PROJECT_FILE

    if not config_path.exists():
        raise ProjectConfigError(config_path, "File not found")

    yaml = YAML(typ="safe")
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)
    except Exception as e:
        raise ProjectConfigError(config_path, str(e)) from e

    if data is None:
        raise ProjectConfigError(config_path, "Empty file")
    if not isinstance(data, dict):
        raise ProjectConfigError(config_path, "Top level must be a mapping")

    try:
        return ProjectConfig.from_dict(dict(data))
    except (TypeError, ValueError) as e:
        raise ProjectConfigError(config_path, str(e)) from e


def write_project_config(project_path: Path, config: ProjectConfig) -> Path:
    """Write *config* to ``project.yaml`` under *project_path*."""
    config_path = project_path / PROJECT_FILE
    yaml_writer = YAML()
    yaml_writer.default_flow_style = False
    with config_path.open("w", encoding="utf-8") as f:
        yaml_writer.dump(config.to_dict(), f)
    return config_path


def create_default_config(
    name: str,
    provider: str | None = None,
    idea: str = "",
) -> ProjectConfig:
    """Create a default project configuration.

    Args:
        name: Project name.
        provider: Optional provider string (e.g., "ollama/qwen3:8b").
            If not provided, uses the system default.
        idea: Optional creative intent stored in the run section.
    """
    provider_string = provider or f"{DEFAULT_PROVIDER}/{DEFAULT_MODEL}"
    if "/" not in provider_string:
        from autodraft.providers.factory import get_default_model

        model = get_default_model(provider_string) or DEFAULT_MODEL
        provider_string = f"{provider_string}/{model}"

    return ProjectConfig(name=name, provider=provider_string, run=RunConfig(idea=idea))
