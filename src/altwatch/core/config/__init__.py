"""Configuration loading and constants for altwatch.

This package exposes the split configuration modules as a single interface.
"""

from altwatch.core.config.http import (
    DEFAULT_USER_AGENT,
    HttpxClientOptions,
    create_httpx_client,
)
from altwatch.core.config.manager import (
    CONFIG_CACHE_TTL,
    CONFIG_PATH_ENV,
    ConfigFileEmptyError,
    ConfigFileNotFoundError,
    clear_config_cache,
    get_config,
)
from altwatch.core.config.settings import (
    BackoffSettings,
    DescriberSettings,
    GatewaySettings,
    MastodonSettings,
    MediaSettings,
    PipelineSettings,
    PromptSettings,
    Settings,
    TranscriptionSettings,
)

__all__ = [
    "CONFIG_CACHE_TTL",
    "CONFIG_PATH_ENV",
    "DEFAULT_USER_AGENT",
    "BackoffSettings",
    "ConfigFileEmptyError",
    "ConfigFileNotFoundError",
    "DescriberSettings",
    "GatewaySettings",
    "HttpxClientOptions",
    "MastodonSettings",
    "MediaSettings",
    "PipelineSettings",
    "PromptSettings",
    "Settings",
    "TranscriptionSettings",
    "clear_config_cache",
    "create_httpx_client",
    "get_config",
]
