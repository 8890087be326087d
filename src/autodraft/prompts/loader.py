"""Template loading for generation prompts."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML

DEFAULT_TEMPLATES_PATH = Path(__file__).parent / "templates"


@dataclass
class PromptTemplate:
    """A loaded prompt template.

    Attributes:
        name: Template name (the file stem unless overridden).
        description: What the prompt asks for.
        system: System instruction text, with ``{placeholders}``.
        user: User prompt text, with ``{placeholders}``.
        json_mode: Whether the response is expected to be JSON.
    """

    name: str
    description: str
    system: str
    user: str
    json_mode: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any], name: str) -> PromptTemplate:
        return cls(
            name=data.get("name", name),
            description=data.get("description", ""),
            system=str(data.get("system", "")),
            user=str(data.get("user", "")),
            json_mode=bool(data.get("json_mode", False)),
        )


class TemplateNotFoundError(Exception):
    """Raised when a template file cannot be found."""

    def __init__(self, template_name: str, path: Path) -> None:
        self.template_name = template_name
        self.path = path
        super().__init__(f"Template not found: {template_name} at {path}")


class TemplateParseError(Exception):
    """Raised when a template file cannot be parsed."""

    def __init__(self, template_name: str, reason: str) -> None:
        self.template_name = template_name
        self.reason = reason
        super().__init__(f"Failed to parse template '{template_name}': {reason}")


class PromptLoader:
    """Load prompt templates from disk.

    Templates are YAML files named ``<template>.yaml``. Loaded templates
    are cached per loader.

    Attributes:
        templates_path: Directory holding the template files.
    """

    def __init__(self, templates_path: Path | None = None) -> None:
        self.templates_path = templates_path or DEFAULT_TEMPLATES_PATH
        self._yaml = YAML(typ="safe")
        self._cache: dict[str, PromptTemplate] = {}

    def _get_template_path(self, template_name: str) -> Path:
        return self.templates_path / f"{template_name}.yaml"

    def load(self, template_name: str) -> PromptTemplate:
        """Load a template by name.

        Args:
            template_name: Name of the template (without .yaml extension).

        Returns:
            Loaded PromptTemplate.

        Raises:
            TemplateNotFoundError: If the template file doesn't exist.
            TemplateParseError: If the template cannot be parsed.
        """
        if template_name in self._cache:
            return self._cache[template_name]

        path = self._get_template_path(template_name)
        if not path.exists():
            raise TemplateNotFoundError(template_name, path)

        try:
            with path.open("r", encoding="utf-8") as f:
                data = self._yaml.load(f)
        except Exception as e:
            raise TemplateParseError(template_name, str(e)) from e

        if data is None:
            raise TemplateParseError(template_name, "Empty file")
        if not isinstance(data, dict):
            raise TemplateParseError(template_name, "Top level must be a mapping")

        template = PromptTemplate.from_dict(dict(data), template_name)
        self._cache[template_name] = template
        return template

    def exists(self, template_name: str) -> bool:
        return self._get_template_path(template_name).exists()

    def list_templates(self) -> list[str]:
        """List available template names (without .yaml extension)."""
        if not self.templates_path.exists():
            return []
        return sorted(p.stem for p in self.templates_path.glob("*.yaml") if p.is_file())

    def clear_cache(self) -> None:
        self._cache.clear()


_default_loader: PromptLoader | None = None


def get_loader() -> PromptLoader:
    """Get or create the module-level PromptLoader for packaged templates."""
    global _default_loader
    if _default_loader is None:
        _default_loader = PromptLoader()
    return _default_loader
