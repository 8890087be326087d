"""Template-driven calls through the request gate.

Every pipeline component talks to the backend through LLMHelper:
load a prompt template, inject context, send it through the gate, and
(for JSON operations) decode the response into a typed schema.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, TypeVar

from autodraft.models.responses import ResponseModel, decode_response
from autodraft.observability.logging import get_logger
from autodraft.pipeline.config import WritingConfig
from autodraft.prompts.compiler import compile_prompt
from autodraft.providers.base import GenerationRequest

if TYPE_CHECKING:
    from autodraft.prompts.loader import PromptLoader
    from autodraft.providers.gate import RequestGate

log = get_logger(__name__)

T = TypeVar("T", bound=ResponseModel)

_WRAPPING_FENCE = re.compile(r"^```[\w-]*\s*\n(.*?)\n?```\s*$", re.DOTALL)


class LLMHelper:
    """Compile templates and dispatch them through the gate.

    Attributes:
        calls: Number of requests issued through this helper.
    """

    def __init__(
        self,
        gate: RequestGate,
        writing: WritingConfig | None = None,
        loader: PromptLoader | None = None,
    ) -> None:
        self._gate = gate
        self._writing = writing or WritingConfig()
        self._loader = loader
        self.calls = 0

    def _base_context(self) -> dict[str, Any]:
        return {
            "system_instruction": self._writing.system_instruction,
            "style": self._writing.style,
        }

    async def _invoke(self, template_name: str, context: dict[str, Any]) -> str:
        prompt = compile_prompt(template_name, {**self._base_context(), **context}, self._loader)
        request = GenerationRequest(
            system_instruction=prompt.system,
            user_prompt=prompt.user,
            json_mode=prompt.json_mode,
            operation=template_name,
        )
        self.calls += 1
        log.debug("llm_call", template=template_name, json_mode=prompt.json_mode)
        return await self._gate.invoke(request)

    async def generate_text(self, template_name: str, context: dict[str, Any]) -> str:
        """Return the backend's free-text answer, with a wrapping code fence removed."""
        text = await self._invoke(template_name, context)
        return strip_wrapping_fence(text).strip()

    async def generate_structured(
        self, template_name: str, context: dict[str, Any], schema: type[T]
    ) -> T:
        """Return the response decoded into *schema* (empty instance if malformed)."""
        text = await self._invoke(template_name, context)
        return decode_response(text, schema, operation=template_name)

    async def rewrite(
        self,
        text: str,
        instruction: str,
        *,
        context_text: str = "",
        operation: str = "rewrite",
    ) -> str:
        """Rewrite *text* following *instruction*.

        Returns the original text unchanged if the backend returns nothing.
        """
        result = await self.generate_text(
            operation,
            {
                "text": text,
                "instruction": instruction,
                "context_block": f"[Context]\n{context_text}\n" if context_text else "",
            },
        )
        if not result:
            log.warning("rewrite_empty", operation=operation)
            return text
        return result


def strip_wrapping_fence(text: str) -> str:
    match = _WRAPPING_FENCE.match(text.strip())
    if match:
        return match.group(1)
    return text
