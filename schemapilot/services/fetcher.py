"""Fetch gateway: a direct request first, one CORS-relay retry on network failure."""

import logging
from typing import Optional
from urllib.parse import quote, urlparse

import httpx

from schemapilot.exceptions import NetworkError

logger = logging.getLogger(__name__)

CORS_PROXY = "https://api.allorigins.win/raw?url="
TIMEOUT = 30  # seconds, per attempt
ALLOWED_SCHEMES = {"http", "https"}
USER_AGENT = "SchemaPilot/1.0 (+structured-data assistant)"


def _validate_url(url: str) -> None:
    """Raise ValueError if *url* is not an absolute http(s) URL."""
    parsed = urlparse(url)

    if parsed.scheme not in ALLOWED_SCHEMES:
        raise ValueError(f"Scheme '{parsed.scheme}' is not allowed. Use http or https.")

    if not parsed.hostname:
        raise ValueError("URL must have a valid hostname.")


def proxied_url(url: str) -> str:
    """Return the relay URL that fetches *url* on our behalf."""
    return f"{CORS_PROXY}{quote(url, safe='')}"


async def fetch(
    url: str,
    *,
    method: str = "GET",
    allow_proxy: bool = True,
    client: Optional[httpx.AsyncClient] = None,
    **kwargs,
) -> httpx.Response:
    """Send a request to *url* and return the response, whatever its status.

    A network-level failure (connection refused, DNS, TLS, timeout) of the
    direct attempt is retried once through :data:`CORS_PROXY`.  HTTP error
    statuses are returned to the caller untouched: the relay cannot fix a
    server-side error.  Callers sending credentials pass
    ``allow_proxy=False`` so the relay never sees them.

    Raises:
        ValueError: if *url* is not an absolute http(s) URL.
        NetworkError: when every permitted attempt failed at network level.
    """
    _validate_url(url)

    if client is None:
        async with httpx.AsyncClient(
            timeout=TIMEOUT,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        ) as own_client:
            return await fetch(
                url, method=method, allow_proxy=allow_proxy, client=own_client, **kwargs
            )

    try:
        return await client.request(method, url, **kwargs)
    except httpx.TransportError as exc:
        if not allow_proxy:
            raise NetworkError(f"Request to {url} failed: {exc}") from exc
        logger.warning("Direct fetch for %s failed (%s), retrying through proxy", url, exc)
    except httpx.RequestError as exc:
        # Redirect loops and other non-network failures are not retried
        raise NetworkError(f"Request to {url} failed: {exc}") from exc

    try:
        return await client.request(method, proxied_url(url), **kwargs)
    except httpx.RequestError as exc:
        logger.error("Proxy fetch also failed for %s: %s", url, exc)
        raise NetworkError(
            "Failed to fetch via both direct connection and proxy. "
            "The server may be down or blocking requests."
        ) from exc
