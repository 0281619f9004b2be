"""OpenRouter error parsing and classification.

OpenRouter returns a JSON error envelope:

    {"error": {"code": <int>, "message": <str>, "metadata": {...}?}}

LiteLLM surfaces it in a few shapes (exceptions with a ``status_code``,
exceptions whose text embeds the JSON, response objects with ``.error``).
This module normalizes those shapes and maps them onto the altwatch error
taxonomy so the dispatch gateway can tell throttling, quota exhaustion and
transport failures apart.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, cast

import httpx
import litellm

from altwatch.core.exceptions import (
    AltwatchError,
    QuotaExceededError,
    ThrottledError,
    TransportError,
)
from altwatch.services.http import parse_retry_after_seconds

HTTP_UNAUTHORIZED = 401
HTTP_PAYMENT_REQUIRED = 402
HTTP_FORBIDDEN = 403
HTTP_TOO_MANY_REQUESTS = 429
HTTP_BAD_GATEWAY = 502

_JSON_SUBSTRING_RE = re.compile(r"\{.*\}", flags=re.DOTALL)
_QUOTA_MESSAGE_RE = re.compile(
    r"insufficient (credits|balance|quota)|credit limit|token limit"
    r"|max(imum)? tokens? (limit|exceeded)|budget exceeded|quota exceeded",
    flags=re.IGNORECASE,
)


def _collect_litellm_exceptions() -> tuple[type[Exception], ...]:
    return tuple(
        dict.fromkeys(
            exception_type
            for exception_type in vars(litellm.exceptions).values()
            if isinstance(exception_type, type)
            and issubclass(exception_type, Exception)
        ),
    )


LITELLM_ERRORS = _collect_litellm_exceptions()

# Everything a provider call may raise that maps onto the altwatch taxonomy.
PROVIDER_CALL_EXCEPTIONS = (
    AltwatchError,
    TimeoutError,
    httpx.HTTPError,
    OSError,
    RuntimeError,
    ValueError,
    KeyError,
    AttributeError,
    *LITELLM_ERRORS,
)


@dataclass(slots=True)
class OpenRouterErrorDetails:
    """Normalized view of an OpenRouter error."""

    http_status: int | None
    code: int | str | None
    message: str
    metadata: dict[str, Any] | None


class OpenRouterAPIError(RuntimeError):
    """Raised when a completion response carries an error payload."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: int | str | None = None,
    ) -> None:
        """Create an OpenRouterAPIError.

        Args:
            message: Human-readable error message.
            status_code: HTTP status code when known.
            code: OpenRouter error code (numeric HTTP code or string code).

        """
        super().__init__(message)
        self.status_code = status_code
        self.code = code


def _get_exception_status_code(error: BaseException) -> int | None:
    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        return status_code

    response = getattr(error, "response", None)
    if response is not None:
        resp_code = getattr(response, "status_code", None)
        if isinstance(resp_code, int):
            return resp_code

    return None


def _get_exception_retry_after(error: BaseException) -> float | None:
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    try:
        raw_value = headers.get("retry-after")
    except AttributeError:
        return None
    return parse_retry_after_seconds(raw_value if isinstance(raw_value, str) else None)


def _extract_json_from_text(text: str) -> object | None:
    """Best-effort JSON extraction from an exception string."""
    raw = text.strip()
    if not raw:
        return None
    for candidate in (raw, *(m.group(0) for m in _JSON_SUBSTRING_RE.finditer(raw))):
        try:
            return json.loads(candidate)
        except (TypeError, ValueError):
            continue
    return None


def extract_openrouter_error_details(obj: object) -> OpenRouterErrorDetails | None:
    """Extract error details from a dict payload or an object with ``.error``."""
    error_obj: object = None
    if isinstance(obj, dict):
        error_obj = cast("dict[str, Any]", obj).get("error")
    if error_obj is None:
        error_obj = getattr(obj, "error", None)

    if isinstance(error_obj, dict):
        error_map = cast("dict[str, Any]", error_obj)
        code = error_map.get("code")
        message = error_map.get("message")
        metadata = error_map.get("metadata")
    elif error_obj is not None:
        code = getattr(error_obj, "code", None)
        message = getattr(error_obj, "message", None)
        metadata = None
    else:
        return None

    if not isinstance(message, str) or not message.strip():
        return None

    return OpenRouterErrorDetails(
        http_status=code if isinstance(code, int) else None,
        code=code if isinstance(code, (int, str)) else None,
        message=message.strip(),
        metadata=metadata if isinstance(metadata, dict) else None,
    )


def format_openrouter_error(details: OpenRouterErrorDetails) -> str:
    """Format error details into a stable, human-readable string."""
    suffix = ""
    if details.metadata:
        provider_name = details.metadata.get("provider_name")
        if isinstance(provider_name, str) and provider_name.strip():
            suffix = f" | provider={provider_name.strip()}"

    if details.http_status is not None:
        return f"OpenRouter HTTP {details.http_status}: {details.message}{suffix}"
    if details.code is not None:
        return f"OpenRouter error ({details.code}): {details.message}{suffix}"
    return f"OpenRouter error: {details.message}{suffix}"


def raise_for_openrouter_payload_error(payload_obj: object) -> None:
    """Raise when a completion response embeds an OpenRouter error."""
    details = extract_openrouter_error_details(payload_obj)
    if details is None:
        return
    raise OpenRouterAPIError(
        format_openrouter_error(details),
        status_code=details.http_status,
        code=details.code,
    )


def _infer_http_status_from_code(code: int | str | None) -> int | None:
    if isinstance(code, int):
        return code
    if not isinstance(code, str) or not code:
        return None

    code_lower = code.lower()
    if "rate_limit" in code_lower or "too_many_requests" in code_lower:
        return HTTP_TOO_MANY_REQUESTS
    if "invalid_api_key" in code_lower or "unauthorized" in code_lower:
        return HTTP_UNAUTHORIZED
    if "insufficient" in code_lower or "payment" in code_lower:
        return HTTP_PAYMENT_REQUIRED
    if "server_error" in code_lower or "provider" in code_lower:
        return HTTP_BAD_GATEWAY
    return None


def classify_describer_error(error: Exception) -> AltwatchError:
    """Map a LiteLLM/OpenRouter exception onto the altwatch taxonomy.

    Returns:
        ``ThrottledError`` for rate limits, ``QuotaExceededError`` for credit,
        token and authorization problems (terminal for the item), and
        ``TransportError`` for everything else, including timeouts,
        connection failures and 5xx responses.

    """
    if isinstance(error, AltwatchError):
        return error

    if isinstance(error, (TimeoutError, httpx.TimeoutException)):
        return TransportError(f"Description request timed out: {error!r}")
    if isinstance(error, httpx.RequestError):
        return TransportError(f"Description request failed: {error!r}")

    raw_text = str(error).strip()
    http_status = _get_exception_status_code(error)
    code: int | str | None = getattr(error, "code", None)
    message = raw_text or type(error).__name__

    parsed = _extract_json_from_text(raw_text)
    details = extract_openrouter_error_details(parsed) if parsed is not None else None
    if details is not None:
        message = format_openrouter_error(details)
        code = details.code
        if details.http_status is not None:
            http_status = details.http_status

    if http_status is None:
        http_status = _infer_http_status_from_code(code)

    if http_status == HTTP_TOO_MANY_REQUESTS:
        return ThrottledError(message, retry_after=_get_exception_retry_after(error))
    if http_status in {HTTP_PAYMENT_REQUIRED, HTTP_UNAUTHORIZED, HTTP_FORBIDDEN}:
        return QuotaExceededError(message)
    if _QUOTA_MESSAGE_RE.search(message):
        return QuotaExceededError(message)
    return TransportError(message)
