"""Shared httpx.AsyncClient for connection pooling.

The messaging gateway is called once per reminder, so a tick over many
organizations issues bursts of short requests. Reusing one client keeps
connections alive across those calls; it is closed on shutdown.
"""

import httpx

from clinic_notify.config import get_settings

_client: httpx.AsyncClient | None = None


def get_http_client() -> httpx.AsyncClient:
    """Return the shared httpx.AsyncClient, creating it lazily."""
    global _client
    if _client is None or _client.is_closed:
        settings = get_settings()
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.GATEWAY_TIMEOUT_SECONDS, connect=5),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
    return _client


async def close_http_client() -> None:
    """Close the shared client (call from app shutdown hook)."""
    global _client
    if _client is not None and not _client.is_closed:
        await _client.aclose()
        _client = None
