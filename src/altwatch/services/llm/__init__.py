"""LLM service entrypoints and exports."""

from altwatch.services.llm.core import build_litellm_model_name, prepare_litellm_kwargs
from altwatch.services.llm.describer import (
    DescriptionGenerator,
    sanitize_description,
    truncate_description,
)
from altwatch.services.llm.errors import classify_describer_error
from altwatch.services.llm.types import LiteLLMOptions

__all__ = [
    "DescriptionGenerator",
    "LiteLLMOptions",
    "build_litellm_model_name",
    "classify_describer_error",
    "prepare_litellm_kwargs",
    "sanitize_description",
    "truncate_description",
]
