"""Core LLM service operations."""

from typing import Any

from altwatch.services.llm.openrouter import configure_openrouter_kwargs
from altwatch.services.llm.types import LiteLLMOptions


def build_litellm_model_name(provider: str, model: str) -> str:
    """Build the LiteLLM model name with proper provider prefix.

    Args:
        provider: Provider name (e.g., "openrouter", "openai")
        model: Model name

    Returns:
        LiteLLM-compatible model string (e.g., "openrouter/google/gemma-3-27b-it")

    """
    if provider == "openrouter":
        if model.startswith("openrouter/"):
            return model
        return f"openrouter/{model}"
    # OpenAI-compatible providers use the bare model name plus base_url
    return model


def prepare_litellm_kwargs(
    provider: str,
    model: str,
    messages: list,
    api_key: str,
    *,
    options: LiteLLMOptions | None = None,
) -> dict[str, Any]:
    """Prepare kwargs for ``litellm.acompletion()``.

    Args:
        provider: Provider name (e.g., "openrouter")
        model: Model name
        messages: List of OpenAI-format message dicts
        api_key: API key to use
        options: Optional configuration bundle

    Returns:
        Dict of kwargs ready to pass to litellm.acompletion()

    """
    options = options or LiteLLMOptions()

    kwargs: dict[str, Any] = {
        "model": build_litellm_model_name(provider, model),
        "messages": messages,
        "api_key": api_key,
    }

    if options.max_tokens is not None:
        kwargs["max_tokens"] = options.max_tokens
    if options.temperature is not None:
        kwargs["temperature"] = options.temperature
    if options.timeout is not None:
        kwargs["timeout"] = options.timeout
    if options.base_url:
        kwargs["api_base"] = options.base_url

    if provider == "openrouter":
        configure_openrouter_kwargs(kwargs, options.extra_headers)
    elif options.extra_headers:
        kwargs["extra_headers"] = options.extra_headers

    return kwargs
