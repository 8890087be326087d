"""Base protocol and types for generation backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class GenerationRequest:
    """A single prompt sent to the generation backend.

    Attributes:
        system_instruction: System message (persona and house rules).
        user_prompt: Task prompt.
        json_mode: Whether the caller expects a JSON document back.
        operation: Name of the calling operation, used for logging and
            for routing in scripted test clients.
    """

    system_instruction: str
    user_prompt: str
    json_mode: bool = False
    operation: str = "generate"


class GenerationClient(Protocol):
    """Protocol for generation backends.

    Implementations turn a GenerationRequest into raw response text and
    signal failures with ProviderError subclasses. Rate limiting must be
    reported as ProviderRateLimitError so the RequestGate can back off.
    """

    async def generate(self, request: GenerationRequest) -> str:
        """Return the backend's raw text response for *request*.

        Raises:
            ProviderRateLimitError: If the backend rejected the call for rate limiting.
            ProviderConnectionError: If the backend could not be reached.
            ProviderError: For any other backend failure.
        """
        ...


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class ProviderConnectionError(ProviderError):
    """Raised when connection to the provider fails."""

    pass


class ProviderRateLimitError(ProviderError):
    """Raised when rate limit is exceeded."""

    pass


class ProviderTransientError(ProviderError):
    """Raised by the RequestGate once its retry budget is exhausted."""

    def __init__(self, provider: str, message: str, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(provider, message)
