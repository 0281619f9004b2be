"""HTTP client configuration and factory."""

from dataclasses import dataclass

import httpx

DEFAULT_USER_AGENT = "altwatch/0.1 (+https://joinmastodon.org)"


@dataclass(frozen=True, slots=True)
class HttpxClientOptions:
    """Options for configuring an httpx.AsyncClient."""

    timeout: float = 30.0
    connect_timeout: float = 10.0
    max_connections: int = 20
    max_keepalive: int = 10
    headers: dict[str, str] | None = None
    follow_redirects: bool = True


def create_httpx_client(options: HttpxClientOptions | None = None) -> httpx.AsyncClient:
    """Create the process-wide httpx client.

    One client serves the Mastodon API, the event stream and media
    downloads, so its connection pool is shared.
    """
    effective_options = options or HttpxClientOptions()
    final_headers = {
        "User-Agent": DEFAULT_USER_AGENT,
        **(effective_options.headers or {}),
    }

    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            effective_options.timeout,
            connect=effective_options.connect_timeout,
        ),
        limits=httpx.Limits(
            max_connections=effective_options.max_connections,
            max_keepalive_connections=effective_options.max_keepalive,
        ),
        headers=final_headers,
        follow_redirects=effective_options.follow_redirects,
    )
