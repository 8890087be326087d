"""Prompt templates and template loading."""

from autodraft.prompts.compiler import CompiledPrompt, compile_prompt, safe_format
from autodraft.prompts.loader import (
    PromptLoader,
    PromptTemplate,
    TemplateNotFoundError,
    TemplateParseError,
    get_loader,
)

__all__ = [
    "CompiledPrompt",
    "PromptLoader",
    "PromptTemplate",
    "TemplateNotFoundError",
    "TemplateParseError",
    "compile_prompt",
    "get_loader",
    "safe_format",
]
