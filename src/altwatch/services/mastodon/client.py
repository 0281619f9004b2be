"""Mastodon REST and streaming client."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import httpx

from altwatch.core.exceptions import (
    AuthenticationFailedError,
    MalformedFrameError,
    MediaNotFoundError,
    StreamDisconnectedError,
    ThrottledError,
    TransportError,
    WriteError,
)
from altwatch.core.models import MediaSnapshot
from altwatch.services.http import (
    HTTP_FORBIDDEN,
    HTTP_NOT_FOUND,
    HTTP_SERVER_ERROR_MIN,
    HTTP_TOO_MANY_REQUESTS,
    HTTP_UNAUTHORIZED,
    RetryOptions,
    request_with_retries,
    retry_after_from_response,
)
from altwatch.services.mastodon.parsing import (
    parse_status,
    parse_status_source,
    snapshot_from_status,
)
from altwatch.services.mastodon.sse import iter_sse_frames

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from altwatch.core.config import MastodonSettings
    from altwatch.core.models import StatusSource, StreamEvent
    from altwatch.services.mastodon.sse import SseFrame

logger = logging.getLogger(__name__)

AUTH_STATUSES = frozenset({HTTP_UNAUTHORIZED, HTTP_FORBIDDEN})
MAX_ERROR_CHARS = 300
STREAM_CONNECT_TIMEOUT_SECONDS = 10.0
MAX_STATUSES_PER_PAGE = 40


def _error_text(response: httpx.Response) -> str:
    try:
        return response.text[:MAX_ERROR_CHARS]
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        return ""


def _json_body(response: httpx.Response, context: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        message = f"Invalid JSON from {context}: {exc}"
        raise MalformedFrameError(message) from exc


class MastodonClient:
    """Read and edit statuses of the authenticated account.

    Reads are retried on transient failures; writes are attempted once.
    """

    def __init__(
        self,
        settings: MastodonSettings,
        http_client: httpx.AsyncClient,
        *,
        read_retries: RetryOptions | None = None,
    ) -> None:
        self._settings = settings
        self._http = http_client
        self._read_retries = read_retries or RetryOptions(
            timeout_seconds=settings.request_timeout_seconds,
        )
        self._write_retries = RetryOptions(
            retries=0,
            timeout_seconds=settings.request_timeout_seconds,
        )

    @property
    def instance_url(self) -> str:
        """Base URL of the instance, without trailing slash."""
        return self._settings.instance_url

    def _url(self, path: str) -> str:
        return f"{self._settings.instance_url}{path}"

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._settings.access_token}"}

    async def _get(self, path: str, *, params: dict[str, Any] | None = None) -> httpx.Response:
        return await request_with_retries(
            lambda: self._http.get(
                self._url(path),
                params=params,
                headers=self._auth_headers(),
            ),
            options=self._read_retries,
            log_context=f"GET {path}",
        )

    def _raise_for_read(self, response: httpx.Response, path: str) -> None:
        if response.is_success:
            return
        status = response.status_code
        if status in AUTH_STATUSES:
            message = f"Mastodon rejected the access token ({status}) on {path}"
            raise AuthenticationFailedError(message, status_code=status)
        if status == HTTP_NOT_FOUND:
            message = f"Mastodon returned 404 for {path}"
            raise MediaNotFoundError(message)
        message = f"Mastodon returned {status} for {path}: {_error_text(response)}"
        raise TransportError(message)

    async def verify_credentials(self) -> str:
        """Return the id of the account the access token belongs to.

        Raises:
            AuthenticationFailedError: The token is invalid or revoked.
            TransportError: The instance could not be reached.

        """
        path = "/api/v1/accounts/verify_credentials"
        response = await self._get(path)
        self._raise_for_read(response, path)
        payload = _json_body(response, path)
        account_id = payload.get("id") if isinstance(payload, dict) else None
        if account_id is None:
            message = "verify_credentials response has no account id"
            raise MalformedFrameError(message)
        logger.info(
            "Authenticated as @%s (%s)",
            payload.get("acct", "?"),
            account_id,
        )
        return str(account_id)

    async def fetch_status(self, status_id: str) -> dict[str, Any]:
        """Return the raw status entity."""
        path = f"/api/v1/statuses/{status_id}"
        response = await self._get(path)
        self._raise_for_read(response, path)
        payload = _json_body(response, path)
        if not isinstance(payload, dict):
            message = f"{path} did not return an object"
            raise MalformedFrameError(message)
        return payload

    async def fetch_media_snapshot(self, status_id: str, media_id: str) -> MediaSnapshot:
        """Read the live state of one attachment.

        A deleted status yields a snapshot with ``media_present=False``.
        """
        try:
            payload = await self.fetch_status(status_id)
        except MediaNotFoundError:
            return MediaSnapshot(
                status_id=status_id,
                media_id=media_id,
                media_present=False,
                description=None,
                edited_at=None,
            )
        return snapshot_from_status(payload, media_id)

    async def fetch_status_source(
        self,
        status_id: str,
        status_payload: dict[str, Any] | None = None,
    ) -> StatusSource:
        """Return the editable fields of a status."""
        path = f"/api/v1/statuses/{status_id}/source"
        response = await self._get(path)
        self._raise_for_read(response, path)
        source_payload = _json_body(response, path)
        if status_payload is None:
            status_payload = await self.fetch_status(status_id)
        return parse_status_source(source_payload, status_payload)

    async def update_description(
        self,
        status_id: str,
        media_id: str,
        description: str,
        *,
        source: StatusSource | None = None,
    ) -> MediaSnapshot:
        """Set one attachment's description by editing the status.

        Every other editable field is resent unchanged so the edit only
        touches the description.

        Returns:
            The attachment's snapshot after the edit.

        Raises:
            MediaNotFoundError: The status or attachment is gone.
            ThrottledError: The instance rate-limited the edit.
            WriteError: The instance refused the edit.
            TransportError: The request timed out or failed to connect.

        """
        if source is None:
            source = await self.fetch_status_source(status_id)

        form: dict[str, Any] = {
            "status": source.text,
            "spoiler_text": source.spoiler_text,
            "sensitive": "true" if source.sensitive else "false",
            "media_ids[]": source.media_ids,
            "media_attributes[0][id]": media_id,
            "media_attributes[0][description]": description,
        }
        if source.language:
            form["language"] = source.language

        path = f"/api/v1/statuses/{status_id}"
        response = await request_with_retries(
            lambda: self._http.put(
                self._url(path),
                data=form,
                headers=self._auth_headers(),
            ),
            options=self._write_retries,
            log_context=f"PUT {path}",
        )

        status = response.status_code
        if status == HTTP_NOT_FOUND:
            message = f"Status {status_id} no longer exists"
            raise MediaNotFoundError(message)
        if status == HTTP_TOO_MANY_REQUESTS:
            message = f"Mastodon rate-limited the edit of {status_id}"
            raise ThrottledError(message, retry_after=retry_after_from_response(response))
        if status >= HTTP_SERVER_ERROR_MIN:
            message = f"Mastodon returned {status} while editing {status_id}"
            raise TransportError(message)
        if not response.is_success:
            message = (
                f"Mastodon refused the edit of {status_id} ({status}): "
                f"{_error_text(response)}"
            )
            raise WriteError(message, status_code=status)

        return snapshot_from_status(_json_body(response, path), media_id)

    async def fetch_recent_statuses(
        self,
        account_id: str,
        limit: int,
    ) -> list[StreamEvent]:
        """Return the account's most recent own statuses with media, newest first."""
        if limit <= 0:
            return []
        path = f"/api/v1/accounts/{account_id}/statuses"
        response = await self._get(
            path,
            params={
                "limit": min(limit, MAX_STATUSES_PER_PAGE),
                "only_media": "true",
                "exclude_reblogs": "true",
            },
        )
        self._raise_for_read(response, path)
        payload = _json_body(response, path)
        if not isinstance(payload, list):
            message = f"{path} did not return a list"
            raise MalformedFrameError(message)

        events: list[StreamEvent] = []
        for raw in payload[:limit]:
            try:
                events.append(parse_status(raw))
            except MalformedFrameError as exc:
                logger.warning("Skipping malformed status in backfill: %s", exc)
        return events


class MastodonStreamTransport:
    """Open the authenticated user stream over server-sent events."""

    def __init__(self, settings: MastodonSettings, http_client: httpx.AsyncClient) -> None:
        self._settings = settings
        self._http = http_client

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[AsyncIterator[SseFrame]]:
        """Connect and yield the frame iterator.

        Raises:
            AuthenticationFailedError: On 401/403.
            StreamDisconnectedError: On any other failure to connect.

        """
        url = f"{self._settings.instance_url}/api/v1/streaming/user"
        # Idle detection happens per frame in the connection manager.
        timeout = httpx.Timeout(STREAM_CONNECT_TIMEOUT_SECONDS, read=None)
        try:
            async with self._http.stream(
                "GET",
                url,
                headers={
                    "Authorization": f"Bearer {self._settings.access_token}",
                    "Accept": "text/event-stream",
                },
                timeout=timeout,
            ) as response:
                status = response.status_code
                if status in AUTH_STATUSES:
                    message = f"Streaming API rejected the access token ({status})"
                    raise AuthenticationFailedError(message, status_code=status)
                if not response.is_success:
                    message = f"Streaming API returned {status}"
                    raise StreamDisconnectedError(message)
                logger.info("Connected to %s", url)
                yield iter_sse_frames(response.aiter_lines())
        except httpx.HTTPError as exc:
            message = f"Stream connection failed: {exc!r}"
            raise StreamDisconnectedError(message) from exc
