"""Typed views over the raw YAML configuration."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from altwatch.core.config import constants
from altwatch.core.exceptions import ConfigError

ACCESS_TOKEN_ENV = "MASTODON_ACCESS_TOKEN"
DESCRIBER_API_KEY_ENV = "OPENROUTER_API_KEY"
TRANSCRIPTION_API_KEY_ENV = "TRANSCRIPTION_API_KEY"
LOG_LEVEL_ENV = "ALTWATCH_LOG_LEVEL"


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        message = f"Config section '{name}' must be a mapping."
        raise ConfigError(message)
    return value


def _float(raw_value: Any, default: float, *, allow_zero: bool) -> float:
    """Coerce a config value to a float, falling back on invalid input.

    Negative values always fall back; zero only when ``allow_zero`` is false.
    """
    if raw_value is None or isinstance(raw_value, bool):
        return default
    try:
        value = float(raw_value)
    except (TypeError, ValueError):
        return default
    if value < 0 or (value == 0 and not allow_zero):
        return default
    return value


def _positive_float(raw_value: Any, default: float) -> float:
    return _float(raw_value, default, allow_zero=False)


def _non_negative_float(raw_value: Any, default: float) -> float:
    return _float(raw_value, default, allow_zero=True)


def _non_negative_int(raw_value: Any, default: int) -> int:
    """Coerce a config value to a non-negative int with safe fallback."""
    if raw_value is None or isinstance(raw_value, bool):
        return default
    try:
        value = int(raw_value)
    except (TypeError, ValueError):
        return default
    if value < 0:
        return default
    return value


def _bool(raw_value: object, *, default: bool) -> bool:
    if isinstance(raw_value, bool):
        return raw_value
    if isinstance(raw_value, str):
        return raw_value.strip().lower() in {"1", "true", "yes", "on"}
    return default


def _required_str(section: Mapping[str, Any], key: str, path: str) -> str:
    value = section.get(key)
    if not isinstance(value, str) or not value.strip():
        message = f"Missing required config value '{path}'."
        raise ConfigError(message)
    return value.strip()


def _optional_str(raw_value: object) -> str | None:
    if isinstance(raw_value, str) and raw_value.strip():
        return raw_value.strip()
    return None


@dataclass(frozen=True, slots=True)
class MastodonSettings:
    """Platform connection settings."""

    instance_url: str
    access_token: str
    idle_timeout_seconds: float = constants.DEFAULT_IDLE_TIMEOUT_SECONDS
    max_auth_failures: int = constants.DEFAULT_MAX_AUTH_FAILURES
    process_edits: bool = True
    backfill_count: int = 0
    backfill_pause_seconds: float = constants.DEFAULT_BACKFILL_PAUSE_SECONDS
    request_timeout_seconds: float = constants.DEFAULT_REQUEST_TIMEOUT_SECONDS


@dataclass(frozen=True, slots=True)
class DescriberSettings:
    """Description generator settings (OpenRouter via LiteLLM)."""

    model: str
    api_key: str
    text_model: str
    base_url: str = constants.DEFAULT_DESCRIBER_BASE_URL
    max_tokens: int = constants.DEFAULT_MAX_TOKENS
    timeout_seconds: float = constants.DEFAULT_DESCRIBER_TIMEOUT_SECONDS
    max_retries: int = constants.DEFAULT_DESCRIBER_MAX_RETRIES


@dataclass(frozen=True, slots=True)
class GatewaySettings:
    """Outbound call pacing."""

    max_concurrent: int = constants.DEFAULT_MAX_CONCURRENT
    min_interval_seconds: float = constants.DEFAULT_MIN_INTERVAL_SECONDS


@dataclass(frozen=True, slots=True)
class BackoffSettings:
    """Reconnection and throttling delays."""

    base_seconds: float = constants.DEFAULT_BACKOFF_BASE_SECONDS
    max_seconds: float = constants.DEFAULT_BACKOFF_MAX_SECONDS
    jitter: float = constants.DEFAULT_BACKOFF_JITTER


@dataclass(frozen=True, slots=True)
class MediaSettings:
    """Media download and transform limits."""

    max_size_mb: float = constants.DEFAULT_MAX_MEDIA_SIZE_MB
    resize_max_dimension: int = constants.DEFAULT_RESIZE_MAX_DIMENSION
    transform_timeout_seconds: float = constants.DEFAULT_TRANSFORM_TIMEOUT_SECONDS


@dataclass(frozen=True, slots=True)
class TranscriptionSettings:
    """Speech-to-text for audio and video attachments."""

    enabled: bool = False
    model: str = constants.DEFAULT_TRANSCRIPTION_MODEL
    api_key: str | None = None
    base_url: str | None = None


@dataclass(frozen=True, slots=True)
class PipelineSettings:
    """Dedup, fan-out and shutdown limits."""

    processed_set_capacity: int = constants.MAX_PROCESSED_EVENTS
    max_concurrent_items_per_event: int = constants.DEFAULT_MAX_CONCURRENT_ITEMS_PER_EVENT
    shutdown_grace_seconds: float = constants.DEFAULT_SHUTDOWN_GRACE_SECONDS


@dataclass(frozen=True, slots=True)
class PromptSettings:
    """Prompt language selection."""

    default_language: str = constants.DEFAULT_LANGUAGE
    templates: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Settings:
    """All settings needed to run the service."""

    mastodon: MastodonSettings
    describer: DescriberSettings
    gateway: GatewaySettings = field(default_factory=GatewaySettings)
    backoff: BackoffSettings = field(default_factory=BackoffSettings)
    media: MediaSettings = field(default_factory=MediaSettings)
    transcription: TranscriptionSettings = field(
        default_factory=TranscriptionSettings,
    )
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    prompts: PromptSettings = field(default_factory=PromptSettings)
    log_level: str = "INFO"
    host: str | None = None
    port: int = constants.DEFAULT_PORT

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> Settings:
        """Build settings from a loaded config mapping.

        Secrets may be supplied through the environment instead of the file.

        Raises:
            ConfigError: When a required value is missing or a section is
                malformed.

        """
        mastodon_raw = dict(_section(config, "mastodon"))
        if token := os.environ.get(ACCESS_TOKEN_ENV):
            mastodon_raw["access_token"] = token
        describer_raw = dict(_section(config, "describer"))
        if api_key := os.environ.get(DESCRIBER_API_KEY_ENV):
            describer_raw["api_key"] = api_key

        mastodon = MastodonSettings(
            instance_url=_required_str(
                mastodon_raw,
                "instance_url",
                "mastodon.instance_url",
            ).rstrip("/"),
            access_token=_required_str(
                mastodon_raw,
                "access_token",
                "mastodon.access_token",
            ),
            idle_timeout_seconds=_positive_float(
                mastodon_raw.get("idle_timeout_seconds"),
                constants.DEFAULT_IDLE_TIMEOUT_SECONDS,
            ),
            max_auth_failures=max(
                1,
                _non_negative_int(
                    mastodon_raw.get("max_auth_failures"),
                    constants.DEFAULT_MAX_AUTH_FAILURES,
                ),
            ),
            process_edits=_bool(mastodon_raw.get("process_edits"), default=True),
            backfill_count=_non_negative_int(mastodon_raw.get("backfill_count"), 0),
            backfill_pause_seconds=_positive_float(
                mastodon_raw.get("backfill_pause_seconds"),
                constants.DEFAULT_BACKFILL_PAUSE_SECONDS,
            ),
            request_timeout_seconds=_positive_float(
                mastodon_raw.get("request_timeout_seconds"),
                constants.DEFAULT_REQUEST_TIMEOUT_SECONDS,
            ),
        )

        model = _required_str(describer_raw, "model", "describer.model")
        describer = DescriberSettings(
            model=model,
            api_key=_required_str(describer_raw, "api_key", "describer.api_key"),
            text_model=_optional_str(describer_raw.get("text_model")) or model,
            base_url=_optional_str(describer_raw.get("base_url"))
            or constants.DEFAULT_DESCRIBER_BASE_URL,
            max_tokens=_non_negative_int(
                describer_raw.get("max_tokens"),
                constants.DEFAULT_MAX_TOKENS,
            )
            or constants.DEFAULT_MAX_TOKENS,
            timeout_seconds=_positive_float(
                describer_raw.get("timeout_seconds"),
                constants.DEFAULT_DESCRIBER_TIMEOUT_SECONDS,
            ),
            max_retries=_non_negative_int(
                describer_raw.get("max_retries"),
                constants.DEFAULT_DESCRIBER_MAX_RETRIES,
            ),
        )

        gateway_raw = _section(config, "gateway")
        gateway = GatewaySettings(
            max_concurrent=max(
                1,
                _non_negative_int(
                    gateway_raw.get("max_concurrent"),
                    constants.DEFAULT_MAX_CONCURRENT,
                ),
            ),
            min_interval_seconds=_non_negative_float(
                gateway_raw.get("min_interval_seconds"),
                constants.DEFAULT_MIN_INTERVAL_SECONDS,
            ),
        )

        backoff_raw = _section(config, "backoff")
        base_seconds = _positive_float(
            backoff_raw.get("base_seconds"),
            constants.DEFAULT_BACKOFF_BASE_SECONDS,
        )
        backoff = BackoffSettings(
            base_seconds=base_seconds,
            max_seconds=max(
                base_seconds,
                _positive_float(
                    backoff_raw.get("max_seconds"),
                    constants.DEFAULT_BACKOFF_MAX_SECONDS,
                ),
            ),
            jitter=min(
                _non_negative_float(
                    backoff_raw.get("jitter"),
                    constants.DEFAULT_BACKOFF_JITTER,
                ),
                1.0,
            ),
        )

        media_raw = _section(config, "media")
        media = MediaSettings(
            max_size_mb=_positive_float(
                media_raw.get("max_size_mb"),
                constants.DEFAULT_MAX_MEDIA_SIZE_MB,
            ),
            resize_max_dimension=_non_negative_int(
                media_raw.get("resize_max_dimension"),
                constants.DEFAULT_RESIZE_MAX_DIMENSION,
            )
            or constants.DEFAULT_RESIZE_MAX_DIMENSION,
            transform_timeout_seconds=_positive_float(
                media_raw.get("transform_timeout_seconds"),
                constants.DEFAULT_TRANSFORM_TIMEOUT_SECONDS,
            ),
        )

        transcription_raw = _section(config, "transcription")
        transcription = TranscriptionSettings(
            enabled=_bool(transcription_raw.get("enabled"), default=False),
            model=_optional_str(transcription_raw.get("model"))
            or constants.DEFAULT_TRANSCRIPTION_MODEL,
            api_key=os.environ.get(TRANSCRIPTION_API_KEY_ENV)
            or _optional_str(transcription_raw.get("api_key")),
            base_url=_optional_str(transcription_raw.get("base_url")),
        )

        pipeline_raw = _section(config, "pipeline")
        pipeline = PipelineSettings(
            processed_set_capacity=max(
                1,
                _non_negative_int(
                    pipeline_raw.get("processed_set_capacity"),
                    constants.MAX_PROCESSED_EVENTS,
                ),
            ),
            max_concurrent_items_per_event=max(
                1,
                _non_negative_int(
                    pipeline_raw.get("max_concurrent_items_per_event"),
                    constants.DEFAULT_MAX_CONCURRENT_ITEMS_PER_EVENT,
                ),
            ),
            shutdown_grace_seconds=_positive_float(
                pipeline_raw.get("shutdown_grace_seconds"),
                constants.DEFAULT_SHUTDOWN_GRACE_SECONDS,
            ),
        )

        prompts_raw = _section(config, "prompts")
        templates_raw = prompts_raw.get("templates") or {}
        if not isinstance(templates_raw, Mapping):
            message = "Config value 'prompts.templates' must be a mapping."
            raise ConfigError(message)
        prompts = PromptSettings(
            default_language=_optional_str(prompts_raw.get("default_language"))
            or constants.DEFAULT_LANGUAGE,
            templates={
                str(language).lower(): str(template)
                for language, template in templates_raw.items()
            },
        )

        logging_raw = _section(config, "logging")
        log_level = (
            os.environ.get(LOG_LEVEL_ENV)
            or _optional_str(logging_raw.get("level"))
            or "INFO"
        )

        return cls(
            mastodon=mastodon,
            describer=describer,
            gateway=gateway,
            backoff=backoff,
            media=media,
            transcription=transcription,
            pipeline=pipeline,
            prompts=prompts,
            log_level=log_level.upper(),
            host=_optional_str(config.get("host")),
            port=_non_negative_int(config.get("port"), constants.DEFAULT_PORT)
            or constants.DEFAULT_PORT,
        )
