"""Constant definitions for altwatch."""

# Stream connection
DEFAULT_IDLE_TIMEOUT_SECONDS = 120.0
DEFAULT_MAX_AUTH_FAILURES = 3
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0

# Backoff
DEFAULT_BACKOFF_BASE_SECONDS = 1.0
DEFAULT_BACKOFF_MAX_SECONDS = 60.0
DEFAULT_BACKOFF_JITTER = 0.2

# Dispatch gateway
DEFAULT_MAX_CONCURRENT = 2
DEFAULT_MIN_INTERVAL_SECONDS = 1.0

# Description generation
DEFAULT_DESCRIBER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MAX_TOKENS = 1500
DEFAULT_DESCRIBER_TIMEOUT_SECONDS = 60.0
DEFAULT_DESCRIBER_MAX_RETRIES = 2
MAX_DESCRIPTION_LENGTH = 1500

# Media
DEFAULT_MAX_MEDIA_SIZE_MB = 10
DEFAULT_RESIZE_MAX_DIMENSION = 2048
DEFAULT_TRANSFORM_TIMEOUT_SECONDS = 120.0
DEFAULT_TRANSCRIPTION_MODEL = "whisper-1"

# Pipeline
MAX_PROCESSED_EVENTS = 5000
DEFAULT_MAX_CONCURRENT_ITEMS_PER_EVENT = 4
DEFAULT_SHUTDOWN_GRACE_SECONDS = 10.0
DEFAULT_BACKFILL_PAUSE_SECONDS = 60.0

# Prompts
DEFAULT_LANGUAGE = "en"

# Health server
DEFAULT_PORT = 8001
