from __future__ import annotations

import pytest

from altwatch.services.llm import (
    LiteLLMOptions,
    build_litellm_model_name,
    prepare_litellm_kwargs,
)
from altwatch.services.llm import openrouter as openrouter_mod


def test_openrouter_model_name_prefix() -> None:
    assert (
        build_litellm_model_name("openrouter", "google/gemma-3-27b-it")
        == "openrouter/google/gemma-3-27b-it"
    )
    assert (
        build_litellm_model_name("openrouter", "openrouter/free")
        == "openrouter/free"
    )


def test_openrouter_kwargs_carry_attribution_headers(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv(openrouter_mod.OPENROUTER_SITE_URL_ENV, "https://example.social")
    monkeypatch.delenv(openrouter_mod.OPENROUTER_APP_NAME_ENV, raising=False)

    kwargs = prepare_litellm_kwargs(
        "openrouter",
        "google/gemma-3-27b-it",
        [{"role": "user", "content": "hi"}],
        "key",
        options=LiteLLMOptions(
            base_url="https://openrouter.ai/api/v1",
            max_tokens=300,
            timeout=20.0,
        ),
    )

    assert kwargs["model"] == "openrouter/google/gemma-3-27b-it"
    assert kwargs["api_base"] == "https://openrouter.ai/api/v1"
    assert kwargs["max_tokens"] == 300
    assert kwargs["timeout"] == 20.0
    assert "temperature" not in kwargs
    assert kwargs["extra_headers"] == {
        "X-Title": "altwatch",
        "HTTP-Referer": "https://example.social",
    }
