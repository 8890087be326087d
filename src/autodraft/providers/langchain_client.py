"""LangChain adapter for the GenerationClient protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from autodraft.providers.base import (
    GenerationRequest,
    ProviderConnectionError,
    ProviderError,
    ProviderRateLimitError,
)

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

JSON_ONLY_SUFFIX = "\nIMPORTANT: You must output valid JSON only."


def is_rate_limit_error(exc: BaseException) -> bool:
    """Check whether an exception signals backend rate limiting.

    Recognises HTTP 429 status codes on httpx errors and SDK exceptions
    (``status_code`` attribute or ``RateLimitError`` class names). Walks the
    ``__cause__`` chain so LangChain-wrapped errors are also detected.
    """
    if isinstance(exc, ProviderRateLimitError):
        return True
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429:
        return True
    if getattr(exc, "status_code", None) == 429:
        return True
    if "RateLimit" in type(exc).__name__:
        return True

    cause = exc.__cause__
    if cause is not None:
        return is_rate_limit_error(cause)
    return False


def is_connectivity_error(exc: BaseException) -> bool:
    """Check if an exception indicates provider connectivity loss."""
    if isinstance(
        exc,
        (
            httpx.NetworkError,
            httpx.TimeoutException,
            ConnectionError,
            TimeoutError,
            ProviderConnectionError,
        ),
    ):
        return True

    cause = exc.__cause__
    if cause is not None:
        return is_connectivity_error(cause)
    return False


class LangChainGenerationClient:
    """Adapts a LangChain chat model to the GenerationClient protocol.

    Attributes:
        provider_name: Provider identifier used in error messages.
        model_name: Model identifier used in error messages.
    """

    def __init__(self, model: BaseChatModel, provider_name: str, model_name: str) -> None:
        self._model = model
        self.provider_name = provider_name
        self.model_name = model_name

    async def generate(self, request: GenerationRequest) -> str:
        system_text = request.system_instruction
        lc_model: Any = self._model
        if request.json_mode:
            system_text = f"{system_text}{JSON_ONLY_SUFFIX}"
            if self.provider_name == "openai":
                lc_model = lc_model.bind(response_format={"type": "json_object"})

        messages: list[SystemMessage | HumanMessage] = []
        if system_text:
            messages.append(SystemMessage(content=system_text))
        messages.append(HumanMessage(content=request.user_prompt))

        try:
            response: AIMessage = await lc_model.ainvoke(messages)
        except Exception as e:
            if is_rate_limit_error(e):
                raise ProviderRateLimitError(self.provider_name, str(e)) from e
            if is_connectivity_error(e):
                raise ProviderConnectionError(self.provider_name, str(e)) from e
            raise ProviderError(self.provider_name, f"Completion failed: {e}") from e

        return _extract_text(response)

    async def close(self) -> None:
        """Close the client (no-op for LangChain)."""
        pass


def _extract_text(response: AIMessage) -> str:
    """Flatten message content, which may be a string or content blocks."""
    content = response.content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict):
                parts.append(str(block.get("text", "")))
            else:
                parts.append(str(block))
        return "".join(parts)
    return str(content)
