"""Description generation through LiteLLM."""

from __future__ import annotations

import base64
import logging
import re
import unicodedata
from typing import TYPE_CHECKING, Any

import litellm

from altwatch.core.config import constants
from altwatch.core.exceptions import TransportError
from altwatch.core.models import ImagePayload, TextPayload
from altwatch.services.llm.core import prepare_litellm_kwargs
from altwatch.services.llm.errors import (
    PROVIDER_CALL_EXCEPTIONS,
    classify_describer_error,
    raise_for_openrouter_payload_error,
)
from altwatch.services.llm.types import LiteLLMOptions

if TYPE_CHECKING:
    from altwatch.core.config import DescriberSettings
    from altwatch.core.models import DescribablePayload

logger = logging.getLogger(__name__)

PROVIDER = "openrouter"
ELLIPSIS = "…"
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_description(text: str) -> str:
    """Drop control characters and collapse whitespace."""
    cleaned = "".join(
        char
        for char in text
        if char.isspace() or not unicodedata.category(char).startswith("C")
    )
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in "\"'":
        cleaned = cleaned[1:-1].strip()
    return cleaned


def truncate_description(
    text: str,
    limit: int = constants.MAX_DESCRIPTION_LENGTH,
) -> str:
    """Shorten ``text`` to at most ``limit`` characters at a word boundary."""
    if len(text) <= limit:
        return text
    cut = text[: limit - len(ELLIPSIS)]
    boundary = cut.rfind(" ")
    if boundary > limit // 2:
        cut = cut[:boundary]
    return cut.rstrip(" ,;:-") + ELLIPSIS


def _build_messages(payload: DescribablePayload, prompt: str) -> list[dict[str, Any]]:
    if isinstance(payload, ImagePayload):
        encoded = base64.b64encode(payload.data).decode("ascii")
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{payload.mime_type};base64,{encoded}"},
                    },
                ],
            },
        ]
    return [
        {
            "role": "user",
            "content": f"{prompt}\n\nTranscript:\n{payload.text}",
        },
    ]


class DescriptionGenerator:
    """Turn a transformed media payload into alt text."""

    def __init__(self, settings: DescriberSettings) -> None:
        self._settings = settings

    def model_for(self, payload: DescribablePayload) -> str:
        """Return the model used for the payload's kind."""
        if isinstance(payload, TextPayload):
            return self._settings.text_model
        return self._settings.model

    async def describe(self, payload: DescribablePayload, prompt: str) -> str:
        """Generate a description.

        Raises:
            ThrottledError: The provider rate-limited us.
            QuotaExceededError: Credits, tokens or authorization ran out.
            TransportError: Timeouts, connection problems, 5xx or an empty
                answer.

        """
        model = self.model_for(payload)
        kwargs = prepare_litellm_kwargs(
            provider=PROVIDER,
            model=model,
            messages=_build_messages(payload, prompt),
            api_key=self._settings.api_key,
            options=LiteLLMOptions(
                base_url=self._settings.base_url,
                max_tokens=self._settings.max_tokens,
                timeout=self._settings.timeout_seconds,
            ),
        )
        logger.debug("Requesting description from %s", model)

        try:
            response = await litellm.acompletion(**kwargs)
            raise_for_openrouter_payload_error(response)
        except PROVIDER_CALL_EXCEPTIONS as exc:
            raise classify_describer_error(exc) from exc

        content = response.choices[0].message.content or ""
        description = truncate_description(sanitize_description(content))
        if not description:
            message = f"{model} returned an empty description"
            raise TransportError(message)
        return description
