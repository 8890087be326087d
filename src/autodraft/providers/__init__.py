"""Generation backends, the LangChain adapter, and the request gate."""

from autodraft.providers.base import (
    GenerationClient,
    GenerationRequest,
    ProviderConnectionError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTransientError,
)
from autodraft.providers.factory import (
    create_chat_model,
    create_generation_client,
    get_default_model,
    parse_provider_string,
)
from autodraft.providers.gate import GateClosedError, RequestGate
from autodraft.providers.langchain_client import LangChainGenerationClient

__all__ = [
    "GateClosedError",
    "GenerationClient",
    "GenerationRequest",
    "LangChainGenerationClient",
    "ProviderConnectionError",
    "ProviderError",
    "ProviderRateLimitError",
    "ProviderTransientError",
    "RequestGate",
    "create_chat_model",
    "create_generation_client",
    "get_default_model",
    "parse_provider_string",
]
