"""Placeholder substitution for prompt templates."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from autodraft.prompts.loader import PromptLoader, get_loader

if TYPE_CHECKING:
    from collections.abc import Mapping

# {name} only; JSON examples such as { "title": "string" } never match
_PLACEHOLDER = re.compile(r"\{(\w+)\}")


@dataclass(frozen=True)
class CompiledPrompt:
    """A filled template ready for the request gate."""

    template_name: str
    system: str
    user: str
    json_mode: bool


def safe_format(text: str, context: Mapping[str, Any]) -> str:
    """Fill ``{name}`` placeholders from *context*.

    Placeholders with no matching key are left verbatim, and other braces
    are not interpreted, so templates can embed JSON examples.
    """

    def _sub(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in context:
            return match.group(0)
        value = context[key]
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_sub, text)


def compile_prompt(
    template_name: str,
    context: Mapping[str, Any],
    loader: PromptLoader | None = None,
) -> CompiledPrompt:
    """Load *template_name* and fill both of its parts from *context*."""
    template = (loader or get_loader()).load(template_name)
    return CompiledPrompt(
        template_name=template.name,
        system=safe_format(template.system, context).strip(),
        user=safe_format(template.user, context).strip(),
        json_mode=template.json_mode,
    )
