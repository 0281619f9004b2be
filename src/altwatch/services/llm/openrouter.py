"""OpenRouter attribution headers."""

from __future__ import annotations

import os
from typing import Any

OPENROUTER_SITE_URL_ENV = "OR_SITE_URL"
OPENROUTER_APP_NAME_ENV = "OR_APP_NAME"
DEFAULT_APP_NAME = "altwatch"


def build_openrouter_headers() -> dict[str, str]:
    """Return the ``HTTP-Referer``/``X-Title`` headers OpenRouter ranks apps by."""
    headers = {"X-Title": os.getenv(OPENROUTER_APP_NAME_ENV) or DEFAULT_APP_NAME}
    if site_url := os.getenv(OPENROUTER_SITE_URL_ENV):
        headers["HTTP-Referer"] = site_url
    return headers


def configure_openrouter_kwargs(
    kwargs: dict[str, Any],
    extra_headers: dict[str, str] | None = None,
) -> None:
    """Configure OpenRouter-specific kwargs."""
    openrouter_headers = build_openrouter_headers()
    if extra_headers:
        openrouter_headers = {**openrouter_headers, **extra_headers}
    kwargs["extra_headers"] = openrouter_headers
