"""Factory for creating generation clients.

Uses LangChain's init_chat_model abstraction for unified provider
instantiation. Provider-specific configuration (hosts, API keys) is
resolved before the unified call.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

from autodraft.observability.logging import get_logger
from autodraft.providers.base import ProviderError
from autodraft.providers.langchain_client import LangChainGenerationClient

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

log = get_logger(__name__)

# None means the model must be explicitly specified
PROVIDER_DEFAULTS: dict[str, str | None] = {
    "ollama": None,
    "openai": "gpt-4o-mini",
    "anthropic": "claude-sonnet-4-20250514",
    "google": "gemini-2.5-flash",
}

_KNOWN_PROVIDERS = frozenset(PROVIDER_DEFAULTS)

_API_KEY_ENV: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
}


def get_default_model(provider_name: str) -> str | None:
    """Get the default model for a provider, or None if it must be explicit."""
    return PROVIDER_DEFAULTS.get(provider_name.lower())


def parse_provider_string(provider_string: str) -> tuple[str, str]:
    """Split ``provider/model`` into its parts, resolving default models.

    Raises:
        ProviderError: If no model is given and the provider has no default.
    """
    if "/" in provider_string:
        provider_name, model = provider_string.split("/", 1)
        return provider_name.strip().lower(), model.strip()

    provider_name = provider_string.strip().lower()
    default_model = get_default_model(provider_name)
    if default_model is None:
        raise ProviderError(
            provider_name,
            f"Provider '{provider_name}' requires explicit model. "
            f"Use --provider {provider_name}/<model-name>",
        )
    return provider_name, default_model


def create_chat_model(provider_name: str, model: str, **kwargs: Any) -> BaseChatModel:
    """Create a LangChain BaseChatModel.

    Args:
        provider_name: Provider identifier (ollama, openai, anthropic, google).
        model: Model name/identifier.
        **kwargs: Additional provider-specific options (temperature, host, api_key).

    Returns:
        Configured BaseChatModel.

    Raises:
        ProviderError: If provider unavailable or misconfigured.
    """
    provider = provider_name.lower()
    if provider not in _KNOWN_PROVIDERS:
        log.error("provider_unknown", provider=provider)
        raise ProviderError(provider, f"Unknown provider: {provider}")

    kwargs = _preprocess_provider_kwargs(provider, kwargs)
    provider_for_init = "google_genai" if provider == "google" else provider

    try:
        from langchain.chat_models import init_chat_model

        chat_model: BaseChatModel = init_chat_model(
            model=model, model_provider=provider_for_init, **kwargs
        )
    except ImportError as e:
        package = _get_package_for_provider(provider)
        log.error("provider_import_error", provider=provider, package=package)
        raise ProviderError(provider, f"{package} not installed. Run: pip install {package}") from e

    log.info("chat_model_created", provider=provider, model=model)
    return chat_model


def create_generation_client(
    provider_string: str,
    temperature: float | None = None,
) -> LangChainGenerationClient:
    """Create a GenerationClient from a ``provider/model`` string."""
    provider_name, model = parse_provider_string(provider_string)
    kwargs: dict[str, Any] = {}
    if temperature is not None:
        kwargs["temperature"] = temperature
    chat_model = create_chat_model(provider_name, model, **kwargs)
    return LangChainGenerationClient(chat_model, provider_name=provider_name, model_name=model)


def _preprocess_provider_kwargs(provider: str, kwargs: dict[str, Any]) -> dict[str, Any]:
    """Resolve hosts and API keys from kwargs or the environment.

    Raises:
        ProviderError: If required configuration is missing.
    """
    kwargs = dict(kwargs)

    if provider == "ollama":
        host = kwargs.pop("host", None) or os.getenv("OLLAMA_HOST")
        if not host:
            log.error("provider_config_error", provider="ollama", missing="OLLAMA_HOST")
            raise ProviderError(
                "ollama",
                "OLLAMA_HOST not configured. Set OLLAMA_HOST environment variable.",
            )
        kwargs["base_url"] = host
        return kwargs

    env_var = _API_KEY_ENV[provider]
    api_key = kwargs.get("api_key") or os.getenv(env_var)
    if not api_key:
        log.error("provider_config_error", provider=provider, missing=env_var)
        raise ProviderError(provider, f"API key required. Set {env_var} environment variable.")
    kwargs["api_key"] = api_key

    if provider == "openai" and os.getenv("OPENAI_BASE_URL"):
        kwargs.setdefault("base_url", os.getenv("OPENAI_BASE_URL"))

    return kwargs


def _get_package_for_provider(provider: str) -> str:
    packages = {
        "ollama": "langchain-ollama",
        "openai": "langchain-openai",
        "anthropic": "langchain-anthropic",
        "google": "langchain-google-genai",
    }
    return packages.get(provider, f"langchain-{provider}")
