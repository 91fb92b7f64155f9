"""Shared HTTP client for direct JavaScript downloads.

Used when no authenticated browser context is available (the standalone
`download` command, or downloads with the browser path disabled). Redirects
are followed manually by the downloader so the hop count stays bounded.
"""

import httpx
from httpx_retries import Retry, RetryTransport

from getjs.config import DownloadConfig

DOWNLOAD_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_HEADERS = {
    "User-Agent": DOWNLOAD_USER_AGENT,
    "Accept": "*/*",
}


def create_http_client(
    config: DownloadConfig,
    headers: dict[str, str] | None = None,
    *,
    max_connections: int = 50,
    max_keepalive_connections: int = 20,
) -> httpx.AsyncClient:
    """Create an httpx client with retry logic for fetching scripts.

    Args:
        config: Download configuration (timeout, retries, concurrency)
        headers: User headers merged over the browser-like defaults
        max_connections: Maximum total connections
        max_keepalive_connections: Maximum keepalive connections

    Returns:
        Configured httpx AsyncClient (TLS verification off, no auto redirects)
    """
    retry_policy = Retry(
        total=config.max_retries,
        backoff_factor=0.5,
        backoff_jitter=0.1,
        status_forcelist=[429, 500, 502, 503, 504],
        respect_retry_after_header=True,
        allowed_methods=["HEAD", "GET"],
    )

    base_transport = httpx.AsyncHTTPTransport(
        verify=False,
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive_connections,
        ),
        retries=0,
    )

    transport = RetryTransport(transport=base_transport, retry=retry_policy)

    timeout_seconds = config.timeout_ms / 1000
    return httpx.AsyncClient(
        transport=transport,
        timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
        follow_redirects=False,
        headers={**DEFAULT_HEADERS, **(headers or {})},
    )
